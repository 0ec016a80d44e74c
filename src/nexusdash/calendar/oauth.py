"""Google OAuth token exchange for the calendar integration.

Covers both grants the integration uses:

- ``authorization_code``: once, when the owner connects a calendar.
- ``refresh_token``: whenever the stored access token is stale.

Token endpoint failures surface the provider's ``error`` code (e.g.
``invalid_grant``) through :class:`TokenRequestError` so callers can tell a
revoked grant from a transient failure.  Secret material (client secret,
codes, tokens) is never logged.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ConfigDict

from nexusdash.calendar.errors import (
    TOKEN_REQUEST_FAILED,
    TokenRequestError,
    TokenResponseError,
)
from nexusdash.config import GoogleOAuthConfig

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"

GOOGLE_SCOPE_PREFIX = "https://www.googleapis.com/auth/"
GOOGLE_CALENDAR_SCOPE_EVENTS = f"{GOOGLE_SCOPE_PREFIX}calendar.events"

# Subtracted once when an expiry is stored and again when freshness is checked.
EXPIRY_SAFETY_MARGIN = timedelta(seconds=30)

DEFAULT_RETURN_TO_PATH = "/projects"


class TokenResponse(BaseModel):
    """Validated token endpoint payload."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    expires_in: int
    refresh_token: str | None = None
    token_type: str | None = None
    scope: str | None = None

    def __repr__(self) -> str:
        return (
            f"TokenResponse(access_token=<REDACTED>, expires_in={self.expires_in!r}, "
            f"refresh_token={'<REDACTED>' if self.refresh_token else None}, "
            f"token_type={self.token_type!r}, scope={self.scope!r})"
        )

    __str__ = __repr__


def parse_token_response(payload: Any) -> TokenResponse:
    """Validate a token endpoint JSON body.

    ``access_token`` must be a string and ``expires_in`` a number; the
    optional fields are kept only when they are strings.

    Raises
    ------
    TokenResponseError
        If the payload is not an object or lacks the required fields.
    """
    if not isinstance(payload, dict):
        raise TokenResponseError("Invalid token response from Google")

    access_token = payload.get("access_token")
    expires_in = payload.get("expires_in")
    if (
        not isinstance(access_token, str)
        or isinstance(expires_in, bool)
        or not isinstance(expires_in, int | float)
    ):
        raise TokenResponseError("Token response is missing access_token or expires_in")

    return TokenResponse(
        access_token=access_token,
        expires_in=int(expires_in),
        refresh_token=_optional_str(payload.get("refresh_token")),
        token_type=_optional_str(payload.get("token_type")),
        scope=_optional_str(payload.get("scope")),
    )


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _token_error_code(payload: Any) -> str:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, str) and error.strip():
            return error.strip()
    return TOKEN_REQUEST_FAILED


def create_expiry_date(expires_in_seconds: float, now: datetime | None = None) -> datetime:
    """Return the absolute expiry to store for a token valid *expires_in_seconds*.

    The stored expiry sits 30 seconds before the provider's so the token is
    never treated as fresh right up to the literal expiry instant.
    """
    current = now or datetime.now(UTC)
    lifetime = max(0.0, float(expires_in_seconds) - EXPIRY_SAFETY_MARGIN.total_seconds())
    return current + timedelta(seconds=lifetime)


def is_access_token_fresh(expires_at: datetime | None, now: datetime | None = None) -> bool:
    """True when more than 30 seconds remain before *expires_at*."""
    if expires_at is None:
        return False
    current = now or datetime.now(UTC)
    return expires_at - current > EXPIRY_SAFETY_MARGIN


def normalize_return_to_path(value: str | None) -> str:
    """Accept only same-origin absolute paths as a post-consent redirect."""
    if not value:
        return DEFAULT_RETURN_TO_PATH
    if value.startswith("/") and not value.startswith("//") and "\\" not in value:
        return value
    return DEFAULT_RETURN_TO_PATH


class GoogleOAuthClient:
    """Token endpoint client for the authorization-code and refresh grants.

    The HTTP client is injected and owned by the caller (one per process).
    """

    def __init__(
        self,
        config: GoogleOAuthConfig,
        http_client: httpx.AsyncClient,
        *,
        token_url: str = GOOGLE_OAUTH_TOKEN_URL,
        scope: str = GOOGLE_CALENDAR_SCOPE_EVENTS,
    ) -> None:
        self._config = config
        self._http_client = http_client
        self._token_url = token_url
        self._scope = scope

    @property
    def config(self) -> GoogleOAuthConfig:
        return self._config

    def build_authorization_url(self, state: str) -> str:
        params = {
            "client_id": self._config.client_id,
            "redirect_uri": self._config.redirect_uri,
            "response_type": "code",
            "access_type": "offline",
            "prompt": "consent",  # Force a refresh token on every consent
            "include_granted_scopes": "true",
            "scope": self._scope,
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenResponse:
        """Exchange an authorization code for the initial token set."""
        return await self._post_token_form(
            {
                "code": code,
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
                "redirect_uri": self._config.redirect_uri,
                "grant_type": "authorization_code",
            },
            grant="authorization_code",
        )

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """Mint a new access token from *refresh_token*."""
        return await self._post_token_form(
            {
                "refresh_token": refresh_token,
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
                "grant_type": "refresh_token",
            },
            grant="refresh_token",
        )

    async def _post_token_form(self, form: dict[str, str], *, grant: str) -> TokenResponse:
        try:
            response = await self._http_client.post(
                self._token_url,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenRequestError(
                TOKEN_REQUEST_FAILED,
                f"Google OAuth token request failed ({grant}): {type(exc).__name__}",
            ) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code < 200 or response.status_code >= 300:
            error_code = _token_error_code(payload)
            logger.warning(
                "Google OAuth token request rejected (grant=%s, status=%d, error=%s)",
                grant,
                response.status_code,
                error_code,
            )
            raise TokenRequestError(error_code)

        token = parse_token_response(payload)
        logger.debug("Google OAuth %s grant succeeded (scope=%s)", grant, token.scope)
        return token
