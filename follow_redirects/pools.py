"""Connection Pool Selector - picks the httpx.Client that serves each hop.

By default every scheme gets one process-wide client, created on first use
and shared by all chains. A request may override the pool per scheme; the
selector then uses the override for every hop on that scheme, so an
http -> https -> http chain moves between two independent pools.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Mapping

import httpx

from follow_redirects.errors import UnsupportedProtocolError
from follow_redirects.transport import SUPPORTED_PROTOCOLS

logger = logging.getLogger(__name__)

_default_pools: dict[str, httpx.Client] = {}
_default_pools_lock = Lock()


def default_pool(scheme: str) -> httpx.Client:
    """Return the shared client for ``scheme``, creating it on first use.

    Raises:
        UnsupportedProtocolError: If no client binding supports ``scheme``.
    """
    if scheme not in SUPPORTED_PROTOCOLS:
        raise UnsupportedProtocolError(scheme)
    with _default_pools_lock:
        pool = _default_pools.get(scheme)
        if pool is None or pool.is_closed:
            # Redirects are handled by the request controller, never by httpx
            pool = httpx.Client(follow_redirects=False)
            _default_pools[scheme] = pool
        return pool


def close_default_pools() -> None:
    """Close every shared client. The next request creates fresh ones."""
    with _default_pools_lock:
        pools = list(_default_pools.values())
        _default_pools.clear()
    for pool in pools:
        pool.close()


@dataclass(frozen=True)
class PoolUsage:
    """Which pool served which hop."""

    scheme: str
    url: str
    pool: httpx.Client


class PoolSelector:
    """Maps each hop's scheme to a pool and records the choice.

    Usage:
        selector = PoolSelector({"https": tls_client})
        pool = selector.select("https://example.org/a")
        selector.usage  # [PoolUsage(scheme="https", url=..., pool=tls_client)]
    """

    def __init__(self, overrides: Mapping[str, httpx.Client] | None = None) -> None:
        self._overrides = dict(overrides or {})
        self.usage: list[PoolUsage] = []

    def select(self, url: str | httpx.URL) -> httpx.Client:
        """Return the pool for the scheme of ``url``.

        Raises:
            UnsupportedProtocolError: If the scheme is not http or https.
        """
        parsed = url if isinstance(url, httpx.URL) else httpx.URL(url)
        scheme = parsed.scheme
        if scheme not in SUPPORTED_PROTOCOLS:
            raise UnsupportedProtocolError(scheme)

        pool = self._overrides.get(scheme)
        if pool is None:
            pool = default_pool(scheme)
        logger.debug("Selected %s pool %#x for %s", scheme, id(pool), parsed)
        self.usage.append(PoolUsage(scheme=scheme, url=str(parsed), pool=pool))
        return pool

    def hops_served_by(self, pool: httpx.Client) -> list[str]:
        """URLs of the hops that ``pool`` served, in chain order."""
        return [entry.url for entry in self.usage if entry.pool is pool]
