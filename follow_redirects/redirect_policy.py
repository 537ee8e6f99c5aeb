"""Redirect Policy - decides whether a response redirects and what the next hop looks like.

evaluate_redirect() is a pure function: it never touches the network and
never mutates its arguments.

Rules:
    - Only 300, 301, 302, 303, 307 and 308 with a Location header redirect.
      Anything else, including a 3xx without Location, is terminal.
    - 307 and 308 keep the method and the body.
    - 300-303 keep GET, HEAD, OPTIONS and TRACE. Any other method becomes GET,
      and the body and its Content-* / Transfer-Encoding headers are dropped.
    - If the target authority differs from the current host (the caller's Host
      header if set, else the current URL's authority), the Host header is
      removed so the transport derives it from the new URL.
    - Authorization and Cookie survive cross-host hops unless the caller opts
      into dropping them.
    - Targets whose scheme no client binding supports raise
      UnsupportedProtocolError.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Mapping

import httpx

from follow_redirects.errors import UnsupportedProtocolError
from follow_redirects.transport import SUPPORTED_PROTOCOLS

logger = logging.getLogger(__name__)

REDIRECT_STATUS_CODES = frozenset({300, 301, 302, 303, 307, 308})
BODY_PRESERVING_STATUS_CODES = frozenset({307, 308})
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})

_ENTITY_HEADER = re.compile(r"^(?:content-.*|transfer-encoding)$", re.IGNORECASE)
_HOST_HEADER = re.compile(r"^host$", re.IGNORECASE)
_CREDENTIAL_HEADER = re.compile(r"^(?:authorization|cookie)$", re.IGNORECASE)


@dataclass(frozen=True)
class RedirectDecision:
    """How to issue the next hop."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    preserve_body: bool = True


def find_header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup. The last matching key wins."""
    name_lower = name.lower()
    found = None
    for key, value in headers.items():
        if key.lower() == name_lower:
            found = value
    return found


def remove_matching_headers(pattern: re.Pattern[str], headers: dict[str, str]) -> str | None:
    """Delete every header whose name matches ``pattern``, in place.

    Returns:
        The value of the last removed header, or None if nothing matched.
    """
    last_value = None
    for key in list(headers):
        if pattern.match(key):
            last_value = headers.pop(key)
    return last_value


def authority(url: httpx.URL) -> str:
    """host[:port] as it would appear in a Host header (default ports omitted)."""
    host = url.host
    if ":" in host:
        host = f"[{host}]"
    if url.port is None:
        return host
    return f"{host}:{url.port}"


def is_redirect(status_code: int, location: str | None) -> bool:
    return status_code in REDIRECT_STATUS_CODES and bool(location)


def resolve_location(current_url: str, location: str) -> httpx.URL:
    """Resolve a possibly relative Location against the URL that returned it."""
    return httpx.URL(current_url).join(location)


def _is_same_or_subdomain(target_host: str, current_host: str) -> bool:
    target_host = target_host.lower()
    current_host = current_host.lower()
    return target_host == current_host or target_host.endswith("." + current_host)


def evaluate_redirect(
    status_code: int,
    method: str,
    headers: Mapping[str, str],
    current_url: str,
    location: str | None,
    *,
    supported_protocols: Iterable[str] = SUPPORTED_PROTOCOLS,
    drop_credentials_on_cross_host: bool = False,
) -> RedirectDecision | None:
    """Decide the next hop for a response.

    Args:
        status_code: Status of the response just received.
        method: Method of the request that produced it.
        headers: Headers of that request.
        current_url: URL of that request.
        location: The response's Location header, if any.
        supported_protocols: Schemes the next hop may use.
        drop_credentials_on_cross_host: Strip Authorization and Cookie when the
            target host is neither the current host nor one of its subdomains.

    Returns:
        None when the response is terminal, otherwise the RedirectDecision.

    Raises:
        UnsupportedProtocolError: If the Location resolves to a scheme outside
            ``supported_protocols``.
    """
    if not is_redirect(status_code, location):
        return None

    target = resolve_location(current_url, location)
    if target.scheme not in tuple(supported_protocols):
        raise UnsupportedProtocolError(target.scheme)

    next_headers = dict(headers)
    next_method = method.upper()
    preserve_body = True

    if status_code not in BODY_PRESERVING_STATUS_CODES and next_method not in SAFE_METHODS:
        next_method = "GET"
        preserve_body = False
        remove_matching_headers(_ENTITY_HEADER, next_headers)

    current = httpx.URL(current_url)
    host_header = find_header(next_headers, "host")
    current_host = host_header or authority(current)
    target_authority = authority(target)

    if target_authority.lower() != current_host.lower():
        remove_matching_headers(_HOST_HEADER, next_headers)
        # Compare hostnames only: a port change does not leave the site
        current_hostname = current_host.rsplit(":", 1)[0] if host_header else current.host
        if drop_credentials_on_cross_host and not _is_same_or_subdomain(
            target.host, current_hostname
        ):
            remove_matching_headers(_CREDENTIAL_HEADER, next_headers)

    logger.debug(
        "%d redirect: %s %s -> %s %s",
        status_code, method, current_url, next_method, target,
    )
    return RedirectDecision(
        method=next_method,
        url=str(target),
        headers=next_headers,
        preserve_body=preserve_body,
    )
