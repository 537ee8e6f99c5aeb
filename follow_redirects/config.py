"""Process-wide defaults for redirect chains.

Defaults are held in one immutable RedirectDefaults snapshot. Requests copy
the values they need when their options are built, so replacing the defaults
never changes a chain that already exists.
"""

from __future__ import annotations

import os
from threading import Lock
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from follow_redirects.errors import ConfigError

DEFAULT_MAX_REDIRECTS = 21
DEFAULT_MAX_BODY_LENGTH = 10 * 1024 * 1024

ENV_MAX_REDIRECTS = "FOLLOW_REDIRECTS_MAX_REDIRECTS"
ENV_MAX_BODY_LENGTH = "FOLLOW_REDIRECTS_MAX_BODY_LENGTH"


class RedirectDefaults(BaseModel):
    """Default limits applied to requests that do not set their own."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_redirects: int = Field(
        default=DEFAULT_MAX_REDIRECTS, ge=0, description="Redirects allowed per chain"
    )
    max_body_length: int = Field(
        default=DEFAULT_MAX_BODY_LENGTH, ge=0, description="Request body ceiling in bytes"
    )


_defaults = RedirectDefaults()
_defaults_lock = Lock()


def get_defaults() -> RedirectDefaults:
    """Return the current defaults snapshot."""
    return _defaults


def set_defaults(**changes: Any) -> RedirectDefaults:
    """Replace the defaults with a copy that has ``changes`` applied.

    Raises:
        ConfigError: If a field is unknown or a value is invalid.
    """
    global _defaults
    with _defaults_lock:
        merged = {**_defaults.model_dump(), **changes}
        try:
            _defaults = RedirectDefaults.model_validate(merged)
        except ValidationError as e:
            raise ConfigError(f"Invalid redirect defaults: {e}") from e
        return _defaults


def reset_defaults() -> RedirectDefaults:
    """Restore the built-in defaults (21 redirects, 10 MiB body)."""
    global _defaults
    with _defaults_lock:
        _defaults = RedirectDefaults()
        return _defaults


def defaults_from_env(environ: Mapping[str, str] | None = None) -> RedirectDefaults:
    """Apply FOLLOW_REDIRECTS_* environment variables on top of the current defaults.

    Unset variables leave the corresponding default untouched.
    """
    env = os.environ if environ is None else environ
    changes: dict[str, int] = {}
    for var_name, field_name in (
        (ENV_MAX_REDIRECTS, "max_redirects"),
        (ENV_MAX_BODY_LENGTH, "max_body_length"),
    ):
        raw = env.get(var_name)
        if raw is None or raw.strip() == "":
            continue
        try:
            changes[field_name] = int(raw)
        except ValueError as e:
            raise ConfigError(f"{var_name} must be an integer, got {raw!r}") from e
    if not changes:
        return get_defaults()
    return set_defaults(**changes)
