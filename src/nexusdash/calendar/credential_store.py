"""Persistence of Google Calendar OAuth credentials, one row per owner.

Backed by the ``google_calendar_credentials`` table.  A row only exists once
an owner has completed the consent flow, and it always carries a non-empty
refresh token: writes that cannot establish one fail with
:class:`~nexusdash.calendar.errors.MissingRefreshTokenError` before touching
the table.

Usage, storing tokens after the authorization-code exchange::

    store = CalendarCredentialStore(pool)
    await store.upsert(owner_id, token_response, calendar_id="primary")

Usage, persisting a refreshed access token::

    await store.update(owner_id, TokenUpdate(access_token=..., expires_in=3600,
                                             refresh_token=..., token_type=None,
                                             scope=None))

Token values are NEVER logged and are redacted from ``repr``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from nexusdash.calendar.errors import MissingRefreshTokenError
from nexusdash.calendar.oauth import TokenResponse, create_expiry_date
from nexusdash.config import DEFAULT_CALENDAR_ID

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_TABLE = "google_calendar_credentials"

_CREDENTIALS_TABLE_DDL = f"""
CREATE TABLE IF NOT EXISTS {_TABLE} (
    owner_id      TEXT PRIMARY KEY,
    access_token  TEXT,
    refresh_token TEXT NOT NULL CHECK (refresh_token <> ''),
    expires_at    TIMESTAMPTZ,
    token_type    TEXT,
    scope         TEXT,
    calendar_id   TEXT NOT NULL DEFAULT '{DEFAULT_CALENDAR_ID}',
    revoked_at    TIMESTAMPTZ,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_SELECT_COLUMNS = (
    "owner_id, access_token, refresh_token, expires_at, token_type, scope, "
    "calendar_id, revoked_at"
)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class CalendarCredential(BaseModel):
    """One stored calendar connection."""

    model_config = ConfigDict(frozen=True)

    owner_id: str
    access_token: str | None = None
    refresh_token: str = Field(min_length=1)
    expires_at: datetime | None = None
    token_type: str | None = None
    scope: str | None = None
    calendar_id: str = DEFAULT_CALENDAR_ID
    revoked_at: datetime | None = None

    def __repr__(self) -> str:
        return (
            f"CalendarCredential(owner_id={self.owner_id!r}, "
            f"access_token={'<REDACTED>' if self.access_token else None}, "
            f"refresh_token=<REDACTED>, expires_at={self.expires_at!r}, "
            f"scope={self.scope!r}, calendar_id={self.calendar_id!r}, "
            f"revoked_at={self.revoked_at!r})"
        )

    __str__ = __repr__


class TokenUpdate(BaseModel):
    """Token fields written after a successful refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    expires_in: int
    refresh_token: str = Field(min_length=1)
    token_type: str | None = None
    scope: str | None = None

    def __repr__(self) -> str:
        return (
            f"TokenUpdate(access_token=<REDACTED>, expires_in={self.expires_in!r}, "
            f"refresh_token=<REDACTED>, token_type={self.token_type!r}, scope={self.scope!r})"
        )

    __str__ = __repr__


# ---------------------------------------------------------------------------
# CalendarCredentialStore
# ---------------------------------------------------------------------------


class CalendarCredentialStore:
    """Async store for calendar credentials backed by an asyncpg pool.

    Each call performs its own reads and writes; nothing is retried and no
    transaction spans a read followed by a refresh and a write.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def find(self, owner_id: str) -> CalendarCredential | None:
        """Return the credential for *owner_id*, or ``None`` if not connected."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_SELECT_COLUMNS} FROM {_TABLE} WHERE owner_id = $1",
                owner_id,
            )
        if row is None:
            return None
        return _row_to_credential(row)

    async def update(
        self,
        owner_id: str,
        tokens: TokenUpdate,
        *,
        now: datetime | None = None,
    ) -> None:
        """Persist refreshed tokens and clear any revoked marker."""
        expires_at = create_expiry_date(tokens.expires_in, now)
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                f"""
                UPDATE {_TABLE} SET
                    access_token  = $2,
                    refresh_token = $3,
                    token_type    = $4,
                    scope         = $5,
                    expires_at    = $6,
                    revoked_at    = NULL,
                    updated_at    = now()
                WHERE owner_id = $1
                """,
                owner_id,
                tokens.access_token,
                tokens.refresh_token,
                tokens.token_type,
                tokens.scope,
                expires_at,
            )
        if _affected_rows(result) == 0:
            logger.warning("Calendar credential update matched no row (owner=%s)", owner_id)
            return
        logger.info("Calendar credential tokens refreshed (owner=%s)", owner_id)

    async def upsert(
        self,
        owner_id: str,
        tokens: TokenResponse,
        *,
        calendar_id: str = DEFAULT_CALENDAR_ID,
        now: datetime | None = None,
    ) -> None:
        """Insert or replace the credential after an authorization-code exchange.

        The refresh token is taken from *tokens*, else reused from the stored
        row; when neither exists nothing is written.

        Raises
        ------
        MissingRefreshTokenError
            If no refresh token can be established.
        """
        refresh_token = tokens.refresh_token or None
        if refresh_token is None:
            async with self.pool.acquire() as conn:
                refresh_token = await conn.fetchval(
                    f"SELECT refresh_token FROM {_TABLE} WHERE owner_id = $1",
                    owner_id,
                )
        if not refresh_token:
            raise MissingRefreshTokenError(
                f"No refresh token available for calendar owner {owner_id!r}"
            )

        expires_at = create_expiry_date(tokens.expires_in, now)
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {_TABLE}
                    (owner_id, access_token, refresh_token, token_type, scope,
                     expires_at, calendar_id, revoked_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, NULL)
                ON CONFLICT (owner_id) DO UPDATE SET
                    access_token  = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    token_type    = EXCLUDED.token_type,
                    scope         = EXCLUDED.scope,
                    expires_at    = EXCLUDED.expires_at,
                    calendar_id   = EXCLUDED.calendar_id,
                    revoked_at    = NULL,
                    updated_at    = now()
                """,
                owner_id,
                tokens.access_token,
                refresh_token,
                tokens.token_type,
                tokens.scope,
                expires_at,
                calendar_id,
            )

        logger.info(
            "Calendar credential stored (owner=%s, calendar_id=%s, scope=%s)",
            owner_id,
            calendar_id,
            tokens.scope,
        )

    async def mark_revoked(self, owner_id: str, *, now: datetime | None = None) -> None:
        """Stamp ``revoked_at`` after the provider rejected the refresh token."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"UPDATE {_TABLE} SET revoked_at = $2, updated_at = now() WHERE owner_id = $1",
                owner_id,
                now or datetime.now(UTC),
            )
        logger.info("Calendar credential marked revoked (owner=%s)", owner_id)

    def __repr__(self) -> str:
        return f"CalendarCredentialStore(pool={self.pool!r})"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ensure_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC timezone to a naive datetime returned by asyncpg."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def _row_to_credential(row: Any) -> CalendarCredential:
    return CalendarCredential(
        owner_id=row["owner_id"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        expires_at=_ensure_utc(row["expires_at"]),
        token_type=row["token_type"],
        scope=row["scope"],
        calendar_id=row["calendar_id"] or DEFAULT_CALENDAR_ID,
        revoked_at=_ensure_utc(row["revoked_at"]),
    )


def _affected_rows(result: str | None) -> int:
    # asyncpg returns a status string like "UPDATE 1"
    if not result:
        return 0
    try:
        return int(result.split()[-1])
    except ValueError:
        return 0


async def ensure_credentials_schema(pool: asyncpg.Pool) -> None:
    """Ensure ``google_calendar_credentials`` exists on the target database."""
    async with pool.acquire() as conn:
        await conn.execute(_CREDENTIALS_TABLE_DDL)
    logger.info("Ensured %s table exists", _TABLE)
