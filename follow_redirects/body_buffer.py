"""Body Buffer - keeps written request body chunks for replay on redirect."""

from __future__ import annotations

from typing import Any, Iterator

from follow_redirects.errors import InvalidChunkTypeError, MaxBodyLengthExceededError


def to_bytes(data: Any, encoding: str | None = None) -> bytes:
    """Convert a body chunk to bytes.

    str is encoded with ``encoding`` (utf-8 when omitted); bytes-like objects
    are copied.

    Raises:
        InvalidChunkTypeError: For any other type.
    """
    if isinstance(data, str):
        return data.encode(encoding or "utf-8")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise InvalidChunkTypeError(data)


class BodyBuffer:
    """Ordered chunks plus a running total that never exceeds max_body_length."""

    def __init__(self, max_body_length: int) -> None:
        self.max_body_length = max_body_length
        self._chunks: list[bytes] = []
        self._total = 0

    @property
    def total(self) -> int:
        return self._total

    def append(self, chunk: bytes) -> None:
        """Add a chunk.

        Raises:
            MaxBodyLengthExceededError: If the chunk would push the total past
                the limit. The chunk is not kept.
        """
        if self._total + len(chunk) > self.max_body_length:
            raise MaxBodyLengthExceededError()
        self._chunks.append(chunk)
        self._total += len(chunk)

    def clear(self) -> None:
        """Drop buffered chunks. The running total is kept for limit checks."""
        self._chunks = []

    def __iter__(self) -> Iterator[bytes]:
        return iter(list(self._chunks))

    def __len__(self) -> int:
        return len(self._chunks)

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)
