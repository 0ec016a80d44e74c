"""Google Calendar connect flow.

  1. GET /api/auth/google?returnTo=/projects/123
     - Generates a random state token (CSRF protection) and remembers it
       together with the owner and the sanitized return path (TTL 10 min).
     - Redirects to Google's consent screen.  When the OAuth client is not
       configured, redirects back to the return path with
       ``error=calendar-config-missing`` instead.

  2. GET /api/auth/callback/google
     - Consumes the state token (one-time use).
     - Exchanges the authorization code and stores the credential for the
       owner that started the flow.
     - Redirects to the return path with ``status=calendar-connected`` or
       ``error=<reason>``.

Security notes:
  - The state store is process-local; run a single worker process.
  - Codes and tokens are never logged or echoed back.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from nexusdash.api.deps import (
    CalendarServices,
    get_calendar_id,
    get_credential_store,
    get_owner_id,
    get_services,
)
from nexusdash.calendar.credential_store import CalendarCredentialStore
from nexusdash.calendar.oauth import GoogleOAuthClient, normalize_return_to_path
from nexusdash.config import ConfigError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["oauth"])

AUTH_CANCELLED = "calendar-auth-cancelled"
AUTH_STATE_INVALID = "calendar-auth-state-invalid"
AUTH_CODE_MISSING = "calendar-auth-code-missing"
AUTH_FAILED = "calendar-auth-failed"
CONFIG_MISSING = "calendar-config-missing"
CONNECTED = "calendar-connected"

# ---------------------------------------------------------------------------
# In-memory CSRF state store
# ---------------------------------------------------------------------------

_STATE_TTL_SECONDS = 600  # 10 minutes


@dataclass(frozen=True)
class _PendingAuthorization:
    owner_id: str
    return_to: str
    expires_at: float


# Maps state token → pending authorization (monotonic expiry)
_state_store: dict[str, _PendingAuthorization] = {}


def _generate_state() -> str:
    return secrets.token_hex(24)


def _store_state(state: str, *, owner_id: str, return_to: str) -> None:
    _state_store[state] = _PendingAuthorization(
        owner_id=owner_id,
        return_to=return_to,
        expires_at=time.monotonic() + _STATE_TTL_SECONDS,
    )
    _evict_expired_states()


def _consume_state(state: str | None) -> _PendingAuthorization | None:
    """Pop *state* from the store; ``None`` when unknown or expired."""
    _evict_expired_states()
    if not state:
        return None
    pending = _state_store.pop(state, None)
    if pending is None or time.monotonic() >= pending.expires_at:
        return None
    return pending


def _evict_expired_states() -> None:
    now = time.monotonic()
    expired = [k for k, pending in _state_store.items() if now >= pending.expires_at]
    for k in expired:
        del _state_store[k]


def _clear_state_store() -> None:
    """Clear all state entries. Used in tests."""
    _state_store.clear()


# ---------------------------------------------------------------------------
# Redirect helpers
# ---------------------------------------------------------------------------


def _redirect_to(path: str, **query: str) -> RedirectResponse:
    """Redirect to a same-origin *path* with *query* merged into its query string."""
    parts = urlsplit(path)
    params = dict(parse_qsl(parts.query, keep_blank_values=True))
    params.update(query)
    target = urlunsplit(("", "", parts.path, urlencode(params), parts.fragment))
    return RedirectResponse(url=target, status_code=302)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/google")
async def google_auth_start(
    return_to_raw: str | None = Query(default=None, alias="returnTo"),
    owner_id: str = Depends(get_owner_id),
    services: CalendarServices = Depends(get_services),
) -> RedirectResponse:
    """Begin the consent flow for the requesting owner."""
    return_to = normalize_return_to_path(return_to_raw)
    try:
        oauth_client: GoogleOAuthClient = services.oauth_client
    except ConfigError as exc:
        logger.error("Google OAuth start failed: %s", exc)
        return _redirect_to(return_to, error=CONFIG_MISSING)

    state = _generate_state()
    _store_state(state, owner_id=owner_id, return_to=return_to)
    logger.info("Google Calendar consent started (state=%s...)", state[:8])
    return RedirectResponse(url=oauth_client.build_authorization_url(state), status_code=302)


@router.get("/callback/google")
async def google_auth_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    services: CalendarServices = Depends(get_services),
    store: CalendarCredentialStore = Depends(get_credential_store),
    calendar_id: str = Depends(get_calendar_id),
) -> RedirectResponse:
    """Finish the consent flow and store the owner's calendar credential."""
    pending = _consume_state(state)
    return_to = pending.return_to if pending is not None else normalize_return_to_path(None)

    if error:
        logger.warning("Google OAuth consent not granted: %s", error)
        return _redirect_to(return_to, error=AUTH_CANCELLED)
    if pending is None:
        logger.warning("Google OAuth callback received invalid or expired state token")
        return _redirect_to(return_to, error=AUTH_STATE_INVALID)
    if not code:
        return _redirect_to(return_to, error=AUTH_CODE_MISSING)

    try:
        tokens = await services.oauth_client.exchange_code(code)
        await store.upsert(pending.owner_id, tokens, calendar_id=calendar_id)
    except Exception:
        logger.exception("Google Calendar connect failed (owner=%s)", pending.owner_id)
        return _redirect_to(return_to, error=AUTH_FAILED)

    logger.info("Google Calendar connected (owner=%s)", pending.owner_id)
    return _redirect_to(return_to, status=CONNECTED)
