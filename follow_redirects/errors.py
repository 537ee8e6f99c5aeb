"""Error taxonomy for follow-redirects.

Two signaling paths exist and never mix:

- Programmer errors detectable at the call site (bad chunk type, writing after
  end, touching headers after they were sent) are raised synchronously.
- Runtime conditions (limits, unsupported redirect targets, connection
  failures) are emitted on the request's ``error`` event.

Connection failures are not wrapped: the httpx exception raised by the
underlying transport is emitted as-is.
"""

from __future__ import annotations


class FollowRedirectsError(Exception):
    """Base class for follow-redirects errors."""


class LimitExceededError(FollowRedirectsError):
    """A global limit on the redirect chain was exceeded."""


class MaxRedirectsExceededError(LimitExceededError):
    """The chain needed more redirects than max_redirects allows."""

    def __init__(self, message: str = "Max redirects exceeded.") -> None:
        super().__init__(message)


class MaxBodyLengthExceededError(LimitExceededError):
    """The buffered request body grew past max_body_length."""

    def __init__(
        self, message: str = "Request body larger than maxBodyLength limit"
    ) -> None:
        super().__init__(message)


class UnsupportedProtocolError(FollowRedirectsError):
    """A hop targets a scheme no client binding supports."""

    def __init__(self, scheme: str) -> None:
        self.scheme = scheme
        super().__init__(f"Unsupported protocol {scheme}:")


class InvalidChunkTypeError(FollowRedirectsError, TypeError):
    """A body chunk was neither text nor bytes-like."""

    def __init__(self, chunk: object) -> None:
        self.chunk_type = type(chunk).__name__
        super().__init__("data should be a string, bytes, bytearray or memoryview")


class HeadersSentError(FollowRedirectsError, RuntimeError):
    """Headers were modified after they were flushed or sent."""


class WriteAfterEndError(FollowRedirectsError, RuntimeError):
    """write() or end() was called after end()."""


class RequestAbortedError(FollowRedirectsError):
    """Raised by fetch() when the chain was aborted before a response."""


class ConfigError(FollowRedirectsError):
    """Raised when defaults or request options fail validation."""
