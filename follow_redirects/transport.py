"""Transport - One-hop client binding over httpx.

A ClientHandle wraps exactly one outbound request. It collects body chunks
until end(), then sends through the connection pool (an httpx.Client) with
stream=True and reports the outcome as events:

    socket(sock)        TCP socket acquired (or reused) for this hop
    response(response)  httpx.Response with an unread body stream
    error(exc)          httpx exception, unwrapped
    abort()             the handle was aborted

Once aborted, a handle goes quiet: late responses are closed and late errors
are dropped.
"""

from __future__ import annotations

import logging
import socket
from typing import Any, Callable, Mapping

import httpx

from follow_redirects.errors import HeadersSentError, WriteAfterEndError
from follow_redirects.events import EventEmitter, Listener

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOLS = ("http", "https")

# httpcore trace event fired once a new TCP connection is open.
# info["return_value"] is the network stream.
_TCP_CONNECT_COMPLETE = "connection.connect_tcp.complete"

# Request extension carrying the sending handle's callback for the pool's
# response hook. httpcore ignores extension keys it does not know.
_RECEIVED_EXTENSION = "follow_redirects.received"


def _record_received(response: httpx.Response) -> None:
    received = response.request.extensions.get(_RECEIVED_EXTENSION)
    if received is not None:
        received(response)


def _install_response_hook(pool: httpx.Client) -> None:
    """Register _record_received on ``pool`` once.

    httpx builds a follow-up request for every redirect response, even with
    follow_redirects=False, and raises InvalidURL when the Location is not a
    usable http(s) URL. The hook sees the response before that happens.
    """
    hooks = pool.event_hooks["response"]
    if _record_received not in hooks:
        hooks.append(_record_received)


class ClientHandle:
    """One underlying request/response exchange."""

    def __init__(
        self,
        pool: httpx.Client,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.pool = pool
        self.method = method
        self.url = url
        self.socket: socket.socket | None = None
        self.response: httpx.Response | None = None
        self.headers_sent = False
        self.finished = False
        self.aborted = False

        self._headers = httpx.Headers(dict(headers or {}))
        self._chunks: list[bytes] = []
        self._timeout: float | None = None
        self._timeout_set = False
        self._no_delay: bool | None = None
        self._keep_alive: bool | None = None
        self._received: httpx.Response | None = None
        self._events = EventEmitter()

    def on(self, event: str, listener: Listener) -> None:
        self._events.on(event, listener)

    def write(self, chunk: bytes) -> None:
        if self.finished:
            raise WriteAfterEndError("write after end")
        self._chunks.append(chunk)

    def end(self, callback: Callable[[], Any] | None = None) -> None:
        """Send the request and emit the outcome.

        Args:
            callback: Called once the request, body included, has been handed
                to the pool, before the response is awaited.
        """
        if self.finished:
            raise WriteAfterEndError("end called twice")
        self.finished = True
        self.headers_sent = True
        if self.aborted:
            return

        try:
            request = self._build_request()
        except httpx.InvalidURL as exc:
            self._emit_error(exc)
            return
        if callback is not None:
            callback()

        _install_response_hook(self.pool)
        logger.debug("Sending %s %s", self.method, self.url)
        try:
            response = self.pool.send(request, stream=True)
        except (httpx.InvalidURL, httpx.HTTPError) as exc:
            if self._received is None:
                self._emit_error(exc)
                return
            # A redirect whose Location httpx cannot turn into a request.
            # The response is already closed; the redirect policy judges it.
            logger.debug("httpx rejected the Location from %s: %s", self.url, exc)
            response = self._received

        if self.aborted:
            response.close()
            return

        self.response = response
        self._acquire_socket(response.extensions.get("network_stream"))
        self._events.emit("response", response)

    def _emit_error(self, exc: Exception) -> None:
        if self.aborted:
            logger.debug("Dropping error from aborted request to %s: %r", self.url, exc)
            return
        self._events.emit("error", exc)

    def _on_received(self, response: httpx.Response) -> None:
        self._received = response

    def _build_request(self) -> httpx.Request:
        kwargs: dict[str, Any] = {
            "headers": self._headers,
            "content": b"".join(self._chunks) if self._chunks else None,
            "extensions": {"trace": self._trace, _RECEIVED_EXTENSION: self._on_received},
        }
        if self._timeout_set:
            kwargs["timeout"] = self._timeout
        return self.pool.build_request(self.method, self.url, **kwargs)

    def _trace(self, event_name: str, info: dict[str, Any]) -> None:
        if event_name == _TCP_CONNECT_COMPLETE:
            self._acquire_socket(info.get("return_value"))

    def _acquire_socket(self, stream: Any) -> None:
        """Record the socket behind an httpcore network stream and announce it."""
        if stream is None or self.socket is not None:
            return
        get_extra_info = getattr(stream, "get_extra_info", None)
        if not callable(get_extra_info):
            return
        sock = get_extra_info("socket")
        if sock is None:
            return
        self.socket = sock
        self._apply_socket_options()
        self._events.emit("socket", sock)

    def _apply_socket_options(self) -> None:
        if self.socket is None:
            return
        try:
            if self._no_delay is not None:
                self.socket.setsockopt(
                    socket.IPPROTO_TCP, socket.TCP_NODELAY, int(self._no_delay)
                )
            if self._keep_alive is not None:
                self.socket.setsockopt(
                    socket.SOL_SOCKET, socket.SO_KEEPALIVE, int(self._keep_alive)
                )
        except OSError as e:
            # Socket may already be closed by the peer
            logger.debug("Could not apply socket options to %s: %s", self.url, e)

    def abort(self) -> None:
        if self.aborted:
            return
        self.aborted = True
        if self.response is not None:
            self.response.close()
        self._events.emit("abort")

    def close(self) -> None:
        """Release the response stream, if any."""
        if self.response is not None:
            self.response.close()

    def set_timeout(self, seconds: float | None) -> None:
        """Timeout (connect, read, write and pool) for this hop. None disables it."""
        self._timeout = seconds
        self._timeout_set = True
        if self.finished:
            logger.debug("Timeout set after %s was sent; applies to no further I/O", self.url)

    def set_no_delay(self, no_delay: bool = True) -> None:
        self._no_delay = no_delay
        self._apply_socket_options()

    def set_socket_keep_alive(self, enable: bool = True) -> None:
        self._keep_alive = enable
        self._apply_socket_options()

    def flush_headers(self) -> None:
        """Freeze the header set. httpx sends headers together with the body."""
        self.headers_sent = True

    def get_header(self, name: str) -> str | None:
        return self._headers.get(name)

    def set_header(self, name: str, value: str) -> None:
        if self.headers_sent:
            raise HeadersSentError("Cannot set headers after they are sent to the server")
        self._headers[name] = value

    def remove_header(self, name: str) -> None:
        if self.headers_sent:
            raise HeadersSentError("Cannot remove headers after they are sent to the server")
        if name in self._headers:
            del self._headers[name]


def issue_request(
    pool: httpx.Client,
    method: str,
    url: str,
    headers: Mapping[str, str] | None = None,
) -> ClientHandle:
    """Create the handle for one hop. Nothing is sent until handle.end()."""
    return ClientHandle(pool, method, url, headers)
