"""Calendar access resolution and write-scope checks.

:class:`CalendarAccessResolver` is the only path from an owner id to a usable
access token.  Every calendar-touching operation goes through it so the
refresh policy lives in one place.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime

from nexusdash.calendar.credential_store import (
    CalendarCredential,
    CalendarCredentialStore,
    TokenUpdate,
)
from nexusdash.calendar.errors import (
    NOT_CONNECTED,
    REAUTHORIZATION_REQUIRED,
    TokenRequestError,
)
from nexusdash.calendar.oauth import (
    GOOGLE_SCOPE_PREFIX,
    GoogleOAuthClient,
    is_access_token_fresh,
)
from nexusdash.calendar.results import Fail, Ok

logger = logging.getLogger(__name__)

# Short names after GOOGLE_SCOPE_PREFIX is dropped.
_WRITE_SCOPES = frozenset({"calendar.events", "calendar"})

_INVALID_GRANT = "invalid_grant"


@dataclass(frozen=True)
class CalendarAccess:
    """A usable bearer token plus the calendar it targets."""

    access_token: str
    calendar_id: str
    scope: str | None

    def __repr__(self) -> str:
        return (
            f"CalendarAccess(access_token=<REDACTED>, calendar_id={self.calendar_id!r}, "
            f"scope={self.scope!r})"
        )

    __str__ = __repr__


def has_write_scope(scope: str | None) -> bool:
    """Return True when *scope* grants calendar event writes.

    *scope* is the space-separated grant string.  Both the full scope URLs
    and their short names are recognized.
    """
    if not scope:
        return False
    for token in scope.split():
        if token.startswith(GOOGLE_SCOPE_PREFIX):
            token = token[len(GOOGLE_SCOPE_PREFIX) :]
        if token in _WRITE_SCOPES:
            return True
    return False


class CalendarAccessResolver:
    """Resolve an owner's calendar credential into a fresh access token.

    Parameters
    ----------
    store:
        Credential persistence.
    oauth_client:
        Token endpoint client used for refresh grants.

    Refreshes for the same owner are serialized behind a per-owner lock and
    the credential is re-read once the lock is held, so concurrent requests
    in this process share one refresh.  Separate processes still race, with
    the last write winning.
    """

    def __init__(
        self,
        store: CalendarCredentialStore,
        oauth_client: GoogleOAuthClient,
    ) -> None:
        self._store = store
        self._oauth_client = oauth_client
        # Entries vanish once no request holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def resolve(
        self, owner_id: str, *, now: datetime | None = None
    ) -> Ok[CalendarAccess] | Fail:
        credential = await self._store.find(owner_id)
        if credential is None:
            return Fail(401, NOT_CONNECTED)

        if credential.access_token and is_access_token_fresh(credential.expires_at, now):
            return Ok(_access_from(credential, credential.access_token))

        return await self._refresh(owner_id, now=now, stale_token=None)

    async def force_refresh(
        self,
        owner_id: str,
        *,
        stale_token: str | None = None,
        now: datetime | None = None,
    ) -> Ok[CalendarAccess] | Fail:
        """Refresh regardless of the stored expiry.

        Used after the provider rejected *stale_token*.  If another request
        already replaced that token, the replacement is returned instead of
        refreshing a second time.
        """
        return await self._refresh(owner_id, now=now, stale_token=stale_token, force=True)

    def _lock_for(self, owner_id: str) -> asyncio.Lock:
        lock = self._locks.get(owner_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[owner_id] = lock
        return lock

    async def _refresh(
        self,
        owner_id: str,
        *,
        now: datetime | None,
        stale_token: str | None,
        force: bool = False,
    ) -> Ok[CalendarAccess] | Fail:
        lock = self._lock_for(owner_id)
        async with lock:
            credential = await self._store.find(owner_id)
            if credential is None:
                return Fail(401, NOT_CONNECTED)

            reusable = _reusable_token(credential, now=now, stale_token=stale_token, force=force)
            if reusable is not None:
                return Ok(_access_from(credential, reusable))

            try:
                tokens = await self._oauth_client.refresh(credential.refresh_token)
            except TokenRequestError as exc:
                logger.warning(
                    "Calendar token refresh failed (owner=%s, error=%s)",
                    owner_id,
                    exc.error_code,
                )
                if exc.error_code == _INVALID_GRANT:
                    await self._store.mark_revoked(owner_id, now=now)
                return Fail(401, REAUTHORIZATION_REQUIRED)

            update = TokenUpdate(
                access_token=tokens.access_token,
                expires_in=tokens.expires_in,
                refresh_token=tokens.refresh_token or credential.refresh_token,
                token_type=tokens.token_type or credential.token_type,
                scope=tokens.scope or credential.scope,
            )
            await self._store.update(owner_id, update, now=now)

        if not update.access_token:
            return Fail(401, REAUTHORIZATION_REQUIRED)
        return Ok(
            CalendarAccess(
                access_token=update.access_token,
                calendar_id=credential.calendar_id,
                scope=update.scope,
            )
        )


def _reusable_token(
    credential: CalendarCredential,
    *,
    now: datetime | None,
    stale_token: str | None,
    force: bool,
) -> str | None:
    """Stored access token another request already refreshed, if any."""
    token = credential.access_token
    if not token or not is_access_token_fresh(credential.expires_at, now):
        return None
    # A forced refresh only reuses a token that differs from the rejected one.
    if force and (stale_token is None or token == stale_token):
        return None
    return token


def _access_from(credential: CalendarCredential, access_token: str) -> CalendarAccess:
    return CalendarAccess(
        access_token=access_token,
        calendar_id=credential.calendar_id,
        scope=credential.scope,
    )
