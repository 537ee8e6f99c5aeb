"""The terminal response handed to the caller."""

from __future__ import annotations

from typing import Any, Iterator

import httpx

from follow_redirects.models import RedirectRecord


class RedirectedResponse:
    """An httpx.Response plus where the chain ended and how it got there.

    Status, headers and body stream are the terminal hop's, untouched.
    Anything not defined here is read from the wrapped httpx.Response.
    """

    def __init__(
        self,
        response: httpx.Response,
        response_url: str,
        redirects: list[RedirectRecord],
    ) -> None:
        self.raw = response
        self.response_url = response_url
        self.redirects = redirects

    @property
    def status_code(self) -> int:
        return self.raw.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self.raw.headers

    def iter_bytes(self, chunk_size: int | None = None) -> Iterator[bytes]:
        return self.raw.iter_bytes(chunk_size)

    def read(self) -> bytes:
        return self.raw.read()

    def close(self) -> None:
        self.raw.close()

    def __getattr__(self, name: str) -> Any:
        return getattr(self.raw, name)

    def __enter__(self) -> RedirectedResponse:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<RedirectedResponse [{self.status_code}] {self.response_url}>"
