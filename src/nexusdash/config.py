"""nexusdash configuration loading and validation.

All settings come from environment variables and are returned as validated
dataclasses.  Missing required values raise :class:`ConfigError` naming the
variable, never its value.
"""

from __future__ import annotations

import enum
import os
from collections.abc import Mapping
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_CALENDAR_ID = "primary"
DEFAULT_OWNER_ID = "bootstrap-owner"

ENV_CLIENT_ID = "GOOGLE_CLIENT_ID"
ENV_CLIENT_SECRET = "GOOGLE_CLIENT_SECRET"
ENV_REDIRECT_URI = "GOOGLE_REDIRECT_URI"
ENV_CALENDAR_ID = "GOOGLE_CALENDAR_ID"
ENV_RUNTIME = "NEXUSDASH_ENV"
ENV_DEFAULT_OWNER_ID = "NEXUSDASH_DEFAULT_OWNER_ID"
ENV_TIMEZONE = "NEXUSDASH_TIMEZONE"
ENV_LOG_LEVEL = "NEXUSDASH_LOG_LEVEL"
ENV_LOG_FORMAT = "NEXUSDASH_LOG_FORMAT"
ENV_LOG_ROOT = "NEXUSDASH_LOG_ROOT"

_VALID_LOG_FORMATS = {"text", "json"}


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


class RuntimeEnvironment(enum.StrEnum):
    """Deployment environment the process runs in."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


@dataclass(frozen=True)
class GoogleOAuthConfig:
    """OAuth client registration used for the consent and token flows."""

    client_id: str
    client_secret: str
    redirect_uri: str

    def __repr__(self) -> str:
        return (
            f"GoogleOAuthConfig(client_id={self.client_id!r}, "
            f"client_secret=<REDACTED>, redirect_uri={self.redirect_uri!r})"
        )

    __str__ = __repr__


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


def _read_env(name: str, env: Mapping[str, str] | None = None) -> str | None:
    source = os.environ if env is None else env
    value = source.get(name)
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def require_env(name: str, env: Mapping[str, str] | None = None) -> str:
    """Return a required, non-blank environment value."""
    value = _read_env(name, env)
    if value is None:
        raise ConfigError(f"Missing required environment variable: {name}")
    return value


def runtime_environment(env: Mapping[str, str] | None = None) -> RuntimeEnvironment:
    """Resolve the runtime environment, defaulting to development."""
    raw = (_read_env(ENV_RUNTIME, env) or "").lower()
    if raw in (RuntimeEnvironment.PRODUCTION, RuntimeEnvironment.TEST):
        return RuntimeEnvironment(raw)
    return RuntimeEnvironment.DEVELOPMENT


def is_production(env: Mapping[str, str] | None = None) -> bool:
    return runtime_environment(env) is RuntimeEnvironment.PRODUCTION


def load_google_oauth_config(env: Mapping[str, str] | None = None) -> GoogleOAuthConfig:
    """Read the Google OAuth client registration.

    Raises
    ------
    ConfigError
        If any of ``GOOGLE_CLIENT_ID``, ``GOOGLE_CLIENT_SECRET`` or
        ``GOOGLE_REDIRECT_URI`` is unset or blank.
    """
    return GoogleOAuthConfig(
        client_id=require_env(ENV_CLIENT_ID, env),
        client_secret=require_env(ENV_CLIENT_SECRET, env),
        redirect_uri=require_env(ENV_REDIRECT_URI, env),
    )


def google_calendar_id(env: Mapping[str, str] | None = None) -> str:
    """Return the target calendar id, falling back to Google's ``primary``."""
    return _read_env(ENV_CALENDAR_ID, env) or DEFAULT_CALENDAR_ID


def default_owner_id(env: Mapping[str, str] | None = None) -> str:
    """Owner used when a request carries no actor header."""
    return _read_env(ENV_DEFAULT_OWNER_ID, env) or DEFAULT_OWNER_ID


def calendar_timezone(env: Mapping[str, str] | None = None) -> ZoneInfo | None:
    """Return the zone used for "local" week boundaries, or None for the host zone."""
    name = _read_env(ENV_TIMEZONE, env)
    if name is None:
        return None
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError as exc:
        raise ConfigError(f"{ENV_TIMEZONE} is not a known IANA timezone: {name!r}") from exc


def load_logging_config(env: Mapping[str, str] | None = None) -> LoggingConfig:
    """Read logging settings; JSON output is the production default."""
    default_format = "json" if is_production(env) else "text"
    fmt = (_read_env(ENV_LOG_FORMAT, env) or default_format).lower()
    if fmt not in _VALID_LOG_FORMATS:
        raise ConfigError(
            f"{ENV_LOG_FORMAT} must be one of {sorted(_VALID_LOG_FORMATS)}, got {fmt!r}"
        )
    return LoggingConfig(
        level=(_read_env(ENV_LOG_LEVEL, env) or "INFO").upper(),
        format=fmt,
        log_root=_read_env(ENV_LOG_ROOT, env),
    )
