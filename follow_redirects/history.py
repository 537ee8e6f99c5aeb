"""Redirect History - append-only log of every hop's response."""

from __future__ import annotations

from typing import Iterator

import httpx

from follow_redirects.models import RedirectRecord, headers_to_lists


class RedirectHistory:
    """Records one RedirectRecord per hop when tracking is enabled.

    The terminal hop is recorded like any redirecting hop, so after a chain
    completes len(history) equals the number of hops issued.
    """

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled
        self._records: list[RedirectRecord] = []

    def record(self, url: str, response: httpx.Response) -> None:
        if not self.enabled:
            return
        self._records.append(RedirectRecord(
            url=url,
            status_code=response.status_code,
            headers=headers_to_lists(response.headers),
        ))

    @property
    def records(self) -> list[RedirectRecord]:
        """A copy of the records, in chain order."""
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[RedirectRecord]:
        return iter(self._records)
