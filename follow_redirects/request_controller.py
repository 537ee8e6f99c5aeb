"""Request Controller - the redirect-following request facade.

RedirectableRequest looks like a single outbound request: the caller writes a
body, edits headers, tunes the socket, listens for ``response``, ``error``,
``abort`` and ``socket``, and may abort. Behind it, one ClientHandle is issued
per hop. Redirect responses are closed and replaced by a new hop built by the
redirect policy; only the terminal response reaches the caller.

State machine:

    ACCUMULATING --end()--> IN_FLIGHT --response--> EVALUATING
    EVALUATING --redirect--> REDIRECTING --next hop sent--> IN_FLIGHT
    EVALUATING --terminal--> RESPONDED
    any non-terminal state --abort()--> ABORTED
    any non-terminal state --failure--> ERRORED
    RESPONDED / ABORTED / ERRORED --close()--> DONE

The chain runs synchronously inside end(). Hops are strictly sequential and
the caller sees at most one ``response`` and at most one ``error``.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import httpx

from follow_redirects.body_buffer import BodyBuffer, to_bytes
from follow_redirects.errors import (
    MaxBodyLengthExceededError,
    MaxRedirectsExceededError,
    UnsupportedProtocolError,
    WriteAfterEndError,
)
from follow_redirects.events import EventEmitter, Listener
from follow_redirects.history import RedirectHistory
from follow_redirects.models import (
    NextRequest,
    RedirectDetails,
    RequestOptions,
    headers_to_lists,
)
from follow_redirects.pools import PoolSelector, PoolUsage
from follow_redirects.redirect_policy import (
    evaluate_redirect,
    find_header,
    remove_matching_headers,
)
from follow_redirects.response import RedirectedResponse
from follow_redirects.transport import ClientHandle, issue_request

logger = logging.getLogger(__name__)


class RequestState(Enum):
    ACCUMULATING = "accumulating"
    IN_FLIGHT = "in_flight"
    EVALUATING = "evaluating"
    REDIRECTING = "redirecting"
    RESPONDED = "responded"
    ABORTED = "aborted"
    ERRORED = "errored"
    DONE = "done"


_TERMINAL_STATES = frozenset({
    RequestState.RESPONDED,
    RequestState.ABORTED,
    RequestState.ERRORED,
    RequestState.DONE,
})


@dataclass
class Hop:
    """One issued request. Hops link back to the hop that redirected to them."""

    url: str
    method: str
    handle: ClientHandle
    pool: httpx.Client
    previous: Hop | None = None
    status_code: int | None = None


def _header_pattern(name: str) -> re.Pattern[str]:
    return re.compile(f"^{re.escape(name)}$", re.IGNORECASE)


class RedirectableRequest:
    """A request whose identity survives every redirect it follows.

    Usage:
        req = RedirectableRequest(RequestOptions(url="http://example.org/a", method="POST"))
        req.on("response", handle_response)
        req.on("error", handle_error)
        req.write(b"payload")
        req.end()

    Raises:
        UnsupportedProtocolError: At construction, if the first URL's scheme
            is not supported. Later hops report it on the ``error`` event.
    """

    def __init__(
        self,
        options: RequestOptions,
        callback: Callable[[RedirectedResponse], Any] | None = None,
    ) -> None:
        self.options = options
        self.aborted: float | None = None
        self.error: BaseException | None = None
        self.response: RedirectedResponse | None = None

        self._state = RequestState.ACCUMULATING
        self._events = EventEmitter()
        self._method = options.method
        self._url = options.url
        self._headers = dict(options.headers)
        self._body = BodyBuffer(options.max_body_length)
        self._history = RedirectHistory(enabled=options.track_redirects)
        self._pools = PoolSelector(options.agents)
        # Socket controls replayed, in call order, onto every new handle
        self._controls: list[tuple[str, tuple[Any, ...]]] = []
        self._current_hop: Hop | None = None
        # Next hop while REDIRECTING; header edits land here
        self._pending: NextRequest | None = None
        self._redirect_count = 0
        self._ended = False

        if callback is not None:
            self.on("response", callback)
        self._perform_request()

    def on(self, event: str, listener: Listener) -> RedirectableRequest:
        self._events.on(event, listener)
        return self

    def once(self, event: str, listener: Listener) -> RedirectableRequest:
        self._events.once(event, listener)
        return self

    def off(self, event: str, listener: Listener) -> RedirectableRequest:
        self._events.off(event, listener)
        return self

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def url(self) -> str:
        """URL of the current hop."""
        return self._url

    @property
    def method(self) -> str:
        """Method of the current hop."""
        return self._method

    @property
    def redirect_count(self) -> int:
        return self._redirect_count

    @property
    def socket(self) -> Any:
        """Socket of the current hop, None until one is acquired."""
        if self._current_hop is None:
            return None
        return self._current_hop.handle.socket

    @property
    def connection(self) -> Any:
        return self.socket

    @property
    def pool_usage(self) -> list[PoolUsage]:
        return list(self._pools.usage)

    @property
    def hops(self) -> list[Hop]:
        """Every hop issued so far, first hop first."""
        chain: list[Hop] = []
        hop = self._current_hop
        while hop is not None:
            chain.append(hop)
            hop = hop.previous
        chain.reverse()
        return chain

    @property
    def _active_handle(self) -> ClientHandle | None:
        """The handle that control calls apply to right now, if any."""
        if self._current_hop is None:
            return None
        if self._state is RequestState.REDIRECTING or self._state in _TERMINAL_STATES:
            return None
        return self._current_hop.handle

    def write(
        self,
        data: Any,
        encoding: str | Callable[[], Any] | None = None,
        callback: Callable[[], Any] | None = None,
    ) -> None:
        """Write a body chunk.

        Args:
            data: str or bytes-like chunk. Empty chunks only run the callback.
            encoding: Text encoding for str data (default utf-8), or the callback.
            callback: Called once the chunk has been accepted.

        Raises:
            InvalidChunkTypeError: If ``data`` is neither str nor bytes-like.
            WriteAfterEndError: If end() was already called.
        """
        if callable(encoding) and callback is None:
            encoding, callback = None, encoding
        chunk = to_bytes(data, encoding)
        if self._ended:
            raise WriteAfterEndError("write after end")
        if self._state in _TERMINAL_STATES:
            return

        if chunk and not self._buffer_chunk(chunk):
            return
        if callback is not None:
            callback()

    def end(
        self,
        data: Any = None,
        encoding: str | Callable[[], Any] | None = None,
        callback: Callable[[], Any] | None = None,
    ) -> None:
        """Finish the body and run the redirect chain.

        Accepts the same arguments as write(); ``data`` may also be the
        callback. The callback runs once the first hop's request has been
        handed to its pool.
        """
        if callable(data) and encoding is None and callback is None:
            data, callback = None, data
        elif callable(encoding) and callback is None:
            encoding, callback = None, encoding
        chunk = to_bytes(data, encoding) if data is not None else b""
        if self._ended:
            raise WriteAfterEndError("end called twice")
        if self._state in _TERMINAL_STATES:
            return

        if chunk and not self._buffer_chunk(chunk):
            return
        self._ended = True
        self._send(callback)

    def _buffer_chunk(self, chunk: bytes) -> bool:
        """Buffer a chunk and hand it to the current hop. False if the limit tripped."""
        try:
            self._body.append(chunk)
        except MaxBodyLengthExceededError as exc:
            self._fail(exc)
            return False
        self._current_hop.handle.write(chunk)
        return True

    def _control(self, name: str, *args: Any) -> None:
        self._controls.append((name, args))
        handle = self._active_handle
        if handle is not None:
            getattr(handle, name)(*args)

    def set_timeout(self, seconds: float | None) -> None:
        """Timeout for the current hop and every hop after it."""
        self._control("set_timeout", seconds)

    def set_no_delay(self, no_delay: bool = True) -> None:
        self._control("set_no_delay", no_delay)

    def set_socket_keep_alive(self, enable: bool = True) -> None:
        self._control("set_socket_keep_alive", enable)

    def flush_headers(self) -> None:
        self._control("flush_headers")

    def get_header(self, name: str) -> str | None:
        return find_header(self._descriptor_headers(), name)

    def set_header(self, name: str, value: Any) -> None:
        """Set a header on the current hop and on every later hop.

        Raises:
            HeadersSentError: If the current hop's headers were already sent.
        """
        value = str(value)
        handle = self._active_handle
        if handle is not None:
            handle.set_header(name, value)
        headers = self._descriptor_headers()
        remove_matching_headers(_header_pattern(name), headers)
        headers[name] = value

    def remove_header(self, name: str) -> None:
        handle = self._active_handle
        if handle is not None:
            handle.remove_header(name)
        remove_matching_headers(_header_pattern(name), self._descriptor_headers())

    def _descriptor_headers(self) -> dict[str, str]:
        """Headers later hops are built from. While redirecting, the pending next hop's."""
        if self._pending is not None:
            return self._pending.headers
        return self._headers

    def abort(self) -> None:
        """Cancel the chain. Emits ``abort`` once; later calls do nothing."""
        if self._state in _TERMINAL_STATES:
            return
        self.aborted = time.time()
        self._state = RequestState.ABORTED
        self._body.clear()
        if self._current_hop is not None:
            self._current_hop.handle.abort()
        logger.debug("Aborted request to %s after %d redirect(s)", self._url, self._redirect_count)
        self._events.emit("abort")

    def close(self) -> None:
        """Release the current hop and any unread response."""
        if self._current_hop is not None:
            if self._state not in _TERMINAL_STATES:
                self._current_hop.handle.abort()
            self._current_hop.handle.close()
        self._state = RequestState.DONE

    def __enter__(self) -> RedirectableRequest:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _perform_request(self) -> None:
        """Issue a handle for the current URL. Redirect hops get the buffered body."""
        pool = self._pools.select(self._url)
        handle = issue_request(pool, self._method, self._url, self._headers)
        self._current_hop = Hop(
            url=self._url,
            method=self._method,
            handle=handle,
            pool=pool,
            previous=self._current_hop,
        )
        for event, listener in self._forwarding_table(handle).items():
            handle.on(event, listener)
        for name, args in self._controls:
            getattr(handle, name)(*args)

        if self._redirect_count == 0:
            self._state = RequestState.ACCUMULATING
            return

        for chunk in self._body:
            handle.write(chunk)

    def _forwarding_table(self, handle: ClientHandle) -> dict[str, Listener]:
        return {
            "response": lambda response: self._on_response(handle, response),
            "error": lambda exc: self._on_handle_error(handle, exc),
            "socket": lambda sock: self._on_socket(handle, sock),
        }

    def _send(self, callback: Callable[[], Any] | None = None) -> None:
        """Send the current hop, then one hop per redirect until the chain settles.

        _on_response leaves the state at REDIRECTING when another hop is due;
        the stack depth stays the same however long the chain is.
        """
        while True:
            hop = self._current_hop
            self._state = RequestState.IN_FLIGHT
            logger.debug("Hop %d: %s %s", self._redirect_count + 1, hop.method, hop.url)
            hop.handle.end(callback)
            if self._state is not RequestState.REDIRECTING:
                return
            callback = None
            try:
                self._perform_request()
            except (UnsupportedProtocolError, httpx.InvalidURL) as exc:
                self._fail(exc)
                return

    def _is_current(self, handle: ClientHandle) -> bool:
        return self._current_hop is not None and self._current_hop.handle is handle

    def _on_socket(self, handle: ClientHandle, sock: Any) -> None:
        if self._state is RequestState.ABORTED or not self._is_current(handle):
            return
        self._events.emit("socket", sock)

    def _on_handle_error(self, handle: ClientHandle, exc: BaseException) -> None:
        if self._state is RequestState.ABORTED or not self._is_current(handle):
            logger.debug("Suppressed error from discarded request: %r", exc)
            return
        self._fail(exc)

    def _on_response(self, handle: ClientHandle, response: httpx.Response) -> None:
        if self._state is RequestState.ABORTED or not self._is_current(handle):
            response.close()
            return

        self._state = RequestState.EVALUATING
        self._current_hop.status_code = response.status_code
        self._history.record(self._url, response)

        decision = None
        if self.options.follow_redirects:
            try:
                decision = evaluate_redirect(
                    response.status_code,
                    self._method,
                    self._headers,
                    self._url,
                    response.headers.get("location"),
                    drop_credentials_on_cross_host=self.options.drop_credentials_on_cross_host,
                )
            except (UnsupportedProtocolError, httpx.InvalidURL) as exc:
                response.close()
                self._fail(exc)
                return

        if decision is None:
            self._respond(response)
            return

        # Redirect bodies are never read
        response.close()
        self._redirect_count += 1
        if self._redirect_count > self.options.max_redirects:
            self._fail(MaxRedirectsExceededError())
            return

        self._state = RequestState.REDIRECTING
        details = RedirectDetails(
            url=self._url,
            status_code=response.status_code,
            headers=headers_to_lists(response.headers),
        )
        if not decision.preserve_body:
            self._body.clear()

        self._pending = NextRequest(url=decision.url, method=decision.method, headers=decision.headers)
        try:
            if self.options.before_redirect is not None:
                self.options.before_redirect(self._pending, details)
        finally:
            next_request, self._pending = self._pending, None
        if self._state is not RequestState.REDIRECTING:
            return
        self._method = next_request.method
        self._url = next_request.url
        self._headers = dict(next_request.headers)

    def _respond(self, response: httpx.Response) -> None:
        self._state = RequestState.RESPONDED
        self._body.clear()
        self.response = RedirectedResponse(
            response,
            response_url=self._url,
            redirects=self._history.records,
        )
        logger.debug(
            "Response %d from %s after %d redirect(s)",
            response.status_code, self._url, self._redirect_count,
        )
        self._events.emit("response", self.response)

    def _fail(self, exc: BaseException) -> None:
        if self._state in _TERMINAL_STATES:
            return
        self._state = RequestState.ERRORED
        self.error = exc
        self._body.clear()
        if self._current_hop is not None:
            self._current_hop.handle.abort()
        if not self._events.emit("error", exc):
            logger.warning("Unhandled error for request to %s: %s", self._url, exc)

    def __repr__(self) -> str:
        return f"<RedirectableRequest {self._method} {self._url} [{self._state.value}]>"
