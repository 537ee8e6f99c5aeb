"""Public entry points.

request() and get() return the event-driven RedirectableRequest; fetch() is
the blocking form that returns the terminal response or raises.

Example:
    response = fetch("http://localhost:8000/a", track_redirects=True)
    response.response_url        # URL of the hop that answered
    [r.status_code for r in response.redirects]
"""

from __future__ import annotations

from typing import Any, Callable

import httpx
from pydantic import ValidationError

from follow_redirects.errors import ConfigError, RequestAbortedError
from follow_redirects.models import RequestOptions
from follow_redirects.request_controller import RedirectableRequest
from follow_redirects.response import RedirectedResponse

ResponseCallback = Callable[[RedirectedResponse], Any]


def build_options(url: str | httpx.URL | RequestOptions, **options: Any) -> RequestOptions:
    """Validate request options, layering keyword overrides on a RequestOptions.

    Raises:
        ConfigError: If an option is unknown or invalid.
    """
    try:
        if isinstance(url, RequestOptions):
            if not options:
                return url
            return RequestOptions.model_validate({**url.model_dump(), **options})
        return RequestOptions(url=url, **options)
    except ValidationError as e:
        raise ConfigError(f"Invalid request options: {e}") from e


def request(
    url: str | httpx.URL | RequestOptions,
    callback: ResponseCallback | None = None,
    **options: Any,
) -> RedirectableRequest:
    """Create a request. Nothing is sent until end() is called.

    Args:
        url: Target URL, or a complete RequestOptions.
        callback: Registered as a ``response`` listener.
        **options: RequestOptions fields (method, headers, max_redirects, ...).
    """
    return RedirectableRequest(build_options(url, **options), callback)


def get(
    url: str | httpx.URL | RequestOptions,
    callback: ResponseCallback | None = None,
    **options: Any,
) -> RedirectableRequest:
    """Create a GET request and send it immediately.

    Listeners added after get() returns miss the outcome; pass ``callback``
    or use request() and end() yourself to observe errors.
    """
    req = request(url, callback, **{**options, "method": "GET"})
    req.end()
    return req


def fetch(
    url: str | httpx.URL | RequestOptions,
    method: str | None = None,
    content: str | bytes | None = None,
    **options: Any,
) -> RedirectedResponse:
    """Run a redirect chain to completion.

    Returns:
        The terminal response. Its body stream is unread; use read() or
        iter_bytes(), and close() when done.

    Raises:
        ConfigError: If an option is invalid.
        UnsupportedProtocolError: If a URL in the chain has an unsupported scheme.
        LimitExceededError: If max_redirects or max_body_length is exceeded.
        httpx.HTTPError: Connection failures, unwrapped.
        RequestAbortedError: If the chain was aborted (e.g. by before_redirect).
    """
    if method is not None:
        options["method"] = method
    req = request(url, **options)
    outcome: dict[str, BaseException] = {}
    req.on("error", lambda exc: outcome.setdefault("error", exc))
    req.end(content)

    if "error" in outcome:
        raise outcome["error"]
    if req.response is None:
        raise RequestAbortedError(f"Request to {req.url} was aborted")
    return req.response
