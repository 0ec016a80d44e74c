"""Shared fixtures for the nexusdash test suite.

Nothing here touches the network or a real database: Google endpoints are
faked with ``httpx.MockTransport`` and asyncpg pools with ``AsyncMock``.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from nexusdash.calendar.credential_store import CalendarCredential
from nexusdash.config import GoogleOAuthConfig

NOW = datetime(2026, 2, 14, 8, 0, 0, tzinfo=UTC)


def make_pool(
    *,
    fetchrow_return=None,
    fetchval_return=None,
    execute_return: str = "UPDATE 1",
) -> MagicMock:
    """Build a minimal asyncpg pool mock; the connection is at ``pool._conn``."""
    conn = AsyncMock()
    conn.fetchrow.return_value = fetchrow_return
    conn.fetchval.return_value = fetchval_return
    conn.execute.return_value = execute_return

    cm = AsyncMock()
    cm.__aenter__ = AsyncMock(return_value=conn)
    cm.__aexit__ = AsyncMock(return_value=False)

    pool = MagicMock()
    pool.acquire.return_value = cm
    pool._conn = conn
    return pool


def make_credential(**overrides) -> CalendarCredential:
    """A connected credential whose access token is still fresh at ``NOW``."""
    fields = {
        "owner_id": "owner-1",
        "access_token": "access-old",
        "refresh_token": "refresh-old",
        "expires_at": NOW + timedelta(minutes=30),
        "token_type": "Bearer",
        "scope": "https://www.googleapis.com/auth/calendar.events",
        "calendar_id": "primary",
        "revoked_at": None,
    }
    fields.update(overrides)
    return CalendarCredential(**fields)


@pytest.fixture
def oauth_config() -> GoogleOAuthConfig:
    return GoogleOAuthConfig(
        client_id="client-123.apps.googleusercontent.com",
        client_secret="very-secret",
        redirect_uri="http://localhost:3000/api/auth/callback/google",
    )


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "NEXUSDASH_DEFAULT_OWNER_ID",
        "NEXUSDASH_TIMEZONE",
        "NEXUSDASH_ENV",
        "GOOGLE_CALENDAR_ID",
    ):
        monkeypatch.delenv(name, raising=False)
