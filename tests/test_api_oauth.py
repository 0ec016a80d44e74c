"""Tests for the Google Calendar connect flow.

Verifies the API contract for:
- GET /api/auth/google: state generation and the consent redirect
- GET /api/auth/callback/google: state validation, code exchange, error paths

The token exchange is an AsyncMock so no Google request is made.
"""

from __future__ import annotations

import time
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from nexusdash.api.app import create_app
from nexusdash.api.deps import get_credential_store, get_services
from nexusdash.api.routers.oauth import (
    _clear_state_store,
    _consume_state,
    _generate_state,
    _PendingAuthorization,
    _redirect_to,
    _state_store,
    _store_state,
)
from nexusdash.calendar.errors import TokenRequestError
from nexusdash.calendar.oauth import GoogleOAuthClient, TokenResponse
from nexusdash.config import ConfigError

pytestmark = pytest.mark.unit

_TOKENS = TokenResponse(
    access_token="ya29.fake_access_token",
    expires_in=3600,
    refresh_token="1//fake_refresh_token",
    token_type="Bearer",
    scope="https://www.googleapis.com/auth/calendar.events",
)


@pytest.fixture(autouse=True)
def clear_states():
    """Ensure state store is empty before and after each test."""
    _clear_state_store()
    yield
    _clear_state_store()


class _Services:
    def __init__(self, oauth_client, calendar_id: str = "primary") -> None:
        self.oauth_client = oauth_client
        self.calendar_id = calendar_id


class _UnconfiguredServices:
    calendar_id = "primary"

    @property
    def oauth_client(self):
        raise ConfigError("Google OAuth client is not configured")


def _app(services, store=None):
    app = create_app()
    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_credential_store] = lambda: store or MagicMock()
    return app


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
        follow_redirects=False,
    )


def _query(location: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(location).query).items()}


# ---------------------------------------------------------------------------
# State store helpers
# ---------------------------------------------------------------------------


class TestStateStore:
    def test_generate_state_is_unique_hex(self) -> None:
        first, second = _generate_state(), _generate_state()
        assert first != second
        assert len(first) == 48
        int(first, 16)

    def test_state_is_single_use(self) -> None:
        _store_state("s1", owner_id="owner-1", return_to="/projects/p-1")

        pending = _consume_state("s1")

        assert pending is not None
        assert pending.owner_id == "owner-1"
        assert pending.return_to == "/projects/p-1"
        assert _consume_state("s1") is None

    def test_unknown_or_blank_state(self) -> None:
        assert _consume_state(None) is None
        assert _consume_state("") is None
        assert _consume_state("never-issued") is None

    def test_expired_state_is_rejected_and_evicted(self) -> None:
        _state_store["old"] = _PendingAuthorization(
            owner_id="owner-1", return_to="/projects", expires_at=time.monotonic() - 1
        )
        assert _consume_state("old") is None
        assert "old" not in _state_store

    def test_redirect_merges_existing_query(self) -> None:
        resp = _redirect_to("/projects/p-1?tab=calendar", status="calendar-connected")
        assert resp.status_code == 302
        location = resp.headers["location"]
        assert location.startswith("/projects/p-1?")
        assert _query(location) == {"tab": "calendar", "status": "calendar-connected"}


# ---------------------------------------------------------------------------
# GET /api/auth/google
# ---------------------------------------------------------------------------


class TestAuthStart:
    async def test_redirects_to_google_consent(self, oauth_config) -> None:
        oauth_client = GoogleOAuthClient(oauth_config, httpx.AsyncClient())

        async with _client(_app(_Services(oauth_client))) as client:
            resp = await client.get(
                "/api/auth/google",
                params={"returnTo": "/projects/p-1"},
                headers={"x-nexus-user-id": "owner-7"},
            )

        assert resp.status_code == 302
        location = resp.headers["location"]
        assert location.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        params = _query(location)
        assert params["client_id"] == oauth_config.client_id
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"

        pending = _state_store[params["state"]]
        assert pending.owner_id == "owner-7"
        assert pending.return_to == "/projects/p-1"

    async def test_unsafe_return_path_is_replaced(self, oauth_config) -> None:
        oauth_client = GoogleOAuthClient(oauth_config, httpx.AsyncClient())

        async with _client(_app(_Services(oauth_client))) as client:
            resp = await client.get(
                "/api/auth/google", params={"returnTo": "//evil.example.com/phish"}
            )

        state = _query(resp.headers["location"])["state"]
        assert _state_store[state].return_to == "/projects"

    async def test_missing_config_redirects_back(self) -> None:
        async with _client(_app(_UnconfiguredServices())) as client:
            resp = await client.get("/api/auth/google", params={"returnTo": "/projects/p-1"})

        assert resp.status_code == 302
        assert resp.headers["location"] == "/projects/p-1?error=calendar-config-missing"
        assert _state_store == {}


# ---------------------------------------------------------------------------
# GET /api/auth/callback/google
# ---------------------------------------------------------------------------


class TestAuthCallback:
    def _oauth_client(self, **kwargs) -> MagicMock:
        client = MagicMock()
        client.exchange_code = AsyncMock(**kwargs)
        return client

    async def test_success_stores_credential_for_initiating_owner(self) -> None:
        _store_state("state-1", owner_id="owner-7", return_to="/projects/p-1")
        oauth_client = self._oauth_client(return_value=_TOKENS)
        store = MagicMock()
        store.upsert = AsyncMock()

        app = _app(_Services(oauth_client, calendar_id="team@group"), store)
        async with _client(app) as client:
            resp = await client.get(
                "/api/auth/callback/google", params={"code": "4/auth-code", "state": "state-1"}
            )

        assert resp.status_code == 302
        assert resp.headers["location"] == "/projects/p-1?status=calendar-connected"
        oauth_client.exchange_code.assert_awaited_once_with("4/auth-code")
        store.upsert.assert_awaited_once_with("owner-7", _TOKENS, calendar_id="team@group")

    async def test_provider_error_means_cancelled(self) -> None:
        _store_state("state-1", owner_id="owner-7", return_to="/projects/p-1")
        oauth_client = self._oauth_client()

        async with _client(_app(_Services(oauth_client))) as client:
            resp = await client.get(
                "/api/auth/callback/google", params={"error": "access_denied", "state": "state-1"}
            )

        assert resp.headers["location"] == "/projects/p-1?error=calendar-auth-cancelled"
        oauth_client.exchange_code.assert_not_awaited()
        # The state is consumed even on cancellation
        assert "state-1" not in _state_store

    async def test_unknown_state(self) -> None:
        oauth_client = self._oauth_client()

        async with _client(_app(_Services(oauth_client))) as client:
            resp = await client.get(
                "/api/auth/callback/google", params={"code": "4/code", "state": "forged"}
            )

        assert resp.headers["location"] == "/projects?error=calendar-auth-state-invalid"
        oauth_client.exchange_code.assert_not_awaited()

    async def test_missing_code(self) -> None:
        _store_state("state-1", owner_id="owner-7", return_to="/projects/p-1")

        async with _client(_app(_Services(self._oauth_client()))) as client:
            resp = await client.get("/api/auth/callback/google", params={"state": "state-1"})

        assert resp.headers["location"] == "/projects/p-1?error=calendar-auth-code-missing"

    async def test_exchange_failure(self) -> None:
        _store_state("state-1", owner_id="owner-7", return_to="/projects/p-1")
        oauth_client = self._oauth_client(side_effect=TokenRequestError("invalid_grant"))

        async with _client(_app(_Services(oauth_client))) as client:
            resp = await client.get(
                "/api/auth/callback/google", params={"code": "4/code", "state": "state-1"}
            )

        assert resp.headers["location"] == "/projects/p-1?error=calendar-auth-failed"

    async def test_persistence_failure_does_not_leak_tokens(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        _store_state("state-1", owner_id="owner-7", return_to="/projects")
        store = MagicMock()
        store.upsert = AsyncMock(side_effect=RuntimeError("db down"))

        app = _app(_Services(self._oauth_client(return_value=_TOKENS)), store)
        async with _client(app) as client:
            resp = await client.get(
                "/api/auth/callback/google", params={"code": "4/secret-code", "state": "state-1"}
            )

        assert resp.headers["location"] == "/projects?error=calendar-auth-failed"
        assert "fake_access_token" not in caplog.text
        assert "fake_refresh_token" not in caplog.text
        assert "4/secret-code" not in resp.headers["location"]
