"""Data models for follow-redirects.

All models use Pydantic v2. RequestOptions is the caller-facing request
descriptor; the other models describe individual hops of a redirect chain.
"""

from __future__ import annotations

from typing import Any, Callable

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from follow_redirects.config import get_defaults


def _coerce_headers(value: Any) -> Any:
    """Accept header mappings with non-string values (e.g. an int Content-Length)."""
    if value is None:
        return {}
    if isinstance(value, httpx.Headers):
        return dict(value.items())
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}
    return value


def headers_to_lists(headers: httpx.Headers) -> dict[str, list[str]]:
    """Snapshot response headers as lowercase keys with list values."""
    result: dict[str, list[str]] = {}
    for key, value in headers.multi_items():
        key_lower = key.lower()
        if key_lower not in result:
            result[key_lower] = []
        result[key_lower].append(value)
    return result


# =============================================================================
# Hook Payloads
# =============================================================================


class RedirectDetails(BaseModel):
    """The redirecting response, as shown to the before_redirect hook."""

    model_config = ConfigDict(extra="forbid")

    url: str = Field(description="URL of the hop that answered with a redirect")
    status_code: int = Field(description="Redirect status code")
    headers: dict[str, list[str]] = Field(
        default_factory=dict, description="Response headers (lowercase keys, array values)"
    )


class NextRequest(BaseModel):
    """The next hop about to be issued. The before_redirect hook may edit it in place."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    url: str = Field(description="Absolute URL of the next hop")
    method: str = Field(description="HTTP method of the next hop")
    headers: dict[str, str] = Field(default_factory=dict, description="Headers of the next hop")

    @field_validator("method")
    @classmethod
    def upper_method(cls, v: str) -> str:
        return v.upper()

    @field_validator("headers", mode="before")
    @classmethod
    def coerce_headers(cls, v: Any) -> Any:
        return _coerce_headers(v)


BeforeRedirectHook = Callable[[NextRequest, RedirectDetails], None]


# =============================================================================
# Request Descriptor
# =============================================================================


class RequestOptions(BaseModel):
    """Everything the caller configures for one logical request.

    max_redirects and max_body_length are read from the process-wide defaults
    when the options are built; later changes to the defaults do not apply.
    Header names are matched case-insensitively by the redirect policy and the
    request controller; the dict keeps the caller's spelling and order.
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    url: str = Field(description="Absolute URL of the first hop")
    method: str = Field(default="GET", description="HTTP method (GET, POST, etc.)")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    max_redirects: int = Field(
        default_factory=lambda: get_defaults().max_redirects,
        ge=0,
        description="Redirects allowed before the chain fails",
    )
    max_body_length: int = Field(
        default_factory=lambda: get_defaults().max_body_length,
        ge=0,
        description="Request body ceiling in bytes",
    )
    follow_redirects: bool = Field(default=True, description="False makes every response terminal")
    track_redirects: bool = Field(default=False, description="Record every hop on the response")
    agents: dict[str, httpx.Client] = Field(
        default_factory=dict, description="Per-scheme connection pool overrides"
    )
    before_redirect: BeforeRedirectHook | None = Field(
        default=None, description="Called with (next_request, redirect_details) before each re-issue"
    )
    drop_credentials_on_cross_host: bool = Field(
        default=False,
        description="Strip Authorization and Cookie when a redirect leaves the current host",
    )

    @field_validator("url", mode="before")
    @classmethod
    def coerce_url(cls, v: Any) -> Any:
        if isinstance(v, httpx.URL):
            return str(v)
        return v

    @field_validator("method")
    @classmethod
    def upper_method(cls, v: str) -> str:
        return v.upper()

    @field_validator("headers", mode="before")
    @classmethod
    def coerce_headers(cls, v: Any) -> Any:
        return _coerce_headers(v)

    @field_validator("agents")
    @classmethod
    def normalize_schemes(cls, v: dict[str, httpx.Client]) -> dict[str, httpx.Client]:
        # Accept "https:" as well as "https"
        return {scheme.rstrip(":").lower(): pool for scheme, pool in v.items()}


# =============================================================================
# Redirect History
# =============================================================================


class RedirectRecord(BaseModel):
    """One observed hop: the URL requested and the response it produced."""

    model_config = ConfigDict(extra="forbid")

    url: str = Field(description="URL requested by this hop")
    status_code: int = Field(description="HTTP status code received")
    headers: dict[str, list[str]] = Field(
        default_factory=dict, description="Response headers (lowercase keys, array values)"
    )
