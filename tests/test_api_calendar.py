"""Tests for the /api/calendar endpoints.

The event proxy and credential store are swapped out through
``app.dependency_overrides`` so these tests only cover the HTTP contract.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from nexusdash.api.app import create_app
from nexusdash.api.deps import (
    get_calendar_timezone,
    get_credential_store,
    get_event_proxy,
    get_services,
)
from nexusdash.calendar.events import CalendarEvent
from nexusdash.calendar.results import Fail, Ok
from nexusdash.calendar.service import CalendarEventList, build_query_window
from nexusdash.config import ConfigError
from nexusdash.core.logging import get_owner_id as logging_owner_id
from tests.conftest import NOW, make_credential

pytestmark = pytest.mark.unit

EVENT = CalendarEvent(
    id="evt-1",
    summary="Kickoff",
    start="2026-02-14T08:00:00.000Z",
    end=None,
    is_all_day=False,
)


def _app(proxy=None, store=None):
    app = create_app()
    if proxy is not None:
        app.dependency_overrides[get_event_proxy] = lambda: proxy
        app.dependency_overrides[get_calendar_timezone] = lambda: None
    if store is not None:
        app.dependency_overrides[get_credential_store] = lambda: store
    return app


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


def _proxy(**methods) -> MagicMock:
    proxy = MagicMock()
    for name, result in methods.items():
        setattr(proxy, name, AsyncMock(return_value=result))
    return proxy


# ---------------------------------------------------------------------------
# GET /api/calendar/events
# ---------------------------------------------------------------------------


class TestListEvents:
    async def test_success_payload(self) -> None:
        listing = CalendarEventList(
            calendar_id="primary",
            window=build_query_window(None, "7", now=NOW),
            synced_at=NOW,
            events=[EVENT],
        )
        proxy = _proxy(list_events=Ok(listing))

        async with _client(_app(proxy)) as client:
            resp = await client.get("/api/calendar/events", params={"days": "7"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["connected"] is True
        assert body["calendarId"] == "primary"
        assert body["range"] == "rolling-days"
        assert body["days"] == 7
        assert body["timeMin"] == "2026-02-14T08:00:00.000Z"
        assert body["timeMax"] == "2026-02-21T08:00:00.000Z"
        assert body["syncedAt"] == "2026-02-14T08:00:00.000Z"
        assert body["events"] == [EVENT.to_payload()]
        proxy.list_events.assert_awaited_once_with(
            "bootstrap-owner", range_raw=None, days_raw="7", tz=None
        )

    async def test_range_query_and_owner_header_are_forwarded(self) -> None:
        proxy = _proxy(list_events=Fail(401, "not-connected"))

        async with _client(_app(proxy)) as client:
            await client.get(
                "/api/calendar/events",
                params={"range": "current-week"},
                headers={"x-nexus-user-id": "owner-7"},
            )

        proxy.list_events.assert_awaited_once_with(
            "owner-7", range_raw="current-week", days_raw=None, tz=None
        )

    async def test_owner_is_bound_to_log_context_for_the_handler(self) -> None:
        seen: list[str | None] = []

        async def list_events(owner_id, **_kwargs):
            seen.append(logging_owner_id())
            return Fail(401, "not-connected")

        proxy = MagicMock()
        proxy.list_events = AsyncMock(side_effect=list_events)

        async with _client(_app(proxy)) as client:
            await client.get("/api/calendar/events", headers={"x-nexus-user-id": "owner-7"})

        assert seen == ["owner-7"]

    @pytest.mark.parametrize(
        ("failure", "connected"),
        [
            (Fail(401, "not-connected"), False),
            (Fail(401, "reauthorization-required"), False),
            (Fail(403, "insufficient-scope"), True),
            (Fail(502, "calendar-fetch-failed"), True),
            (Fail(500, "calendar-internal-error"), False),
        ],
    )
    async def test_failure_reports_connection_state(self, failure: Fail, connected: bool) -> None:
        async with _client(_app(_proxy(list_events=failure))) as client:
            resp = await client.get("/api/calendar/events")

        assert resp.status_code == failure.status
        assert resp.json() == {"connected": connected, "error": failure.error}

    async def test_missing_oauth_config_is_503(self) -> None:
        class Unconfigured:
            @property
            def proxy(self):
                raise ConfigError("Google OAuth client is not configured")

            timezone = None

        app = create_app()
        app.dependency_overrides[get_services] = Unconfigured

        async with _client(app) as client:
            resp = await client.get("/api/calendar/events")

        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "CONFIG_ERROR"


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class TestWrites:
    async def test_create_returns_201_event(self) -> None:
        proxy = _proxy(create_event=Ok(EVENT, status=201))
        draft = {
            "summary": "Kickoff",
            "start": "2026-02-14T08:00:00Z",
            "end": "2026-02-14T09:00:00Z",
        }

        async with _client(_app(proxy)) as client:
            resp = await client.post("/api/calendar/events", json=draft)

        assert resp.status_code == 201
        assert resp.json() == {"event": EVENT.to_payload()}
        proxy.create_event.assert_awaited_once_with("bootstrap-owner", draft)

    async def test_non_json_body_is_forwarded_as_none(self) -> None:
        proxy = _proxy(create_event=Fail(400, "invalid-payload"))

        async with _client(_app(proxy)) as client:
            resp = await client.post(
                "/api/calendar/events",
                content=b"not json",
                headers={"content-type": "application/json"},
            )

        assert resp.status_code == 400
        assert resp.json() == {"error": "invalid-payload"}
        proxy.create_event.assert_awaited_once_with("bootstrap-owner", None)

    async def test_update_forwards_event_id(self) -> None:
        proxy = _proxy(update_event=Ok(EVENT))

        async with _client(_app(proxy)) as client:
            resp = await client.patch("/api/calendar/events/evt-1", json={"summary": "x"})

        assert resp.status_code == 200
        assert resp.json() == {"event": EVENT.to_payload()}
        proxy.update_event.assert_awaited_once_with("bootstrap-owner", "evt-1", {"summary": "x"})

    async def test_update_not_found(self) -> None:
        proxy = _proxy(update_event=Fail(404, "event-not-found"))

        async with _client(_app(proxy)) as client:
            resp = await client.patch("/api/calendar/events/gone", json={})

        assert resp.status_code == 404
        assert resp.json() == {"error": "event-not-found"}

    async def test_delete_ok(self) -> None:
        proxy = _proxy(delete_event=Ok(None))

        async with _client(_app(proxy)) as client:
            resp = await client.delete(
                "/api/calendar/events/evt-1", headers={"x-nexus-user-id": "owner-7"}
            )

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        proxy.delete_event.assert_awaited_once_with("owner-7", "evt-1")

    async def test_delete_insufficient_scope(self) -> None:
        proxy = _proxy(delete_event=Fail(403, "insufficient-scope"))

        async with _client(_app(proxy)) as client:
            resp = await client.delete("/api/calendar/events/evt-1")

        assert resp.status_code == 403
        assert resp.json() == {"error": "insufficient-scope"}


# ---------------------------------------------------------------------------
# GET /api/calendar/status
# ---------------------------------------------------------------------------


class TestStatus:
    async def test_not_connected(self) -> None:
        store = MagicMock()
        store.find = AsyncMock(return_value=None)

        async with _client(_app(store=store)) as client:
            resp = await client.get("/api/calendar/status")

        assert resp.status_code == 200
        assert resp.json() == {
            "connected": False,
            "revoked": False,
            "canWrite": False,
            "calendarId": None,
            "expiresAt": None,
        }

    async def test_connected_never_exposes_tokens(self) -> None:
        store = MagicMock()
        store.find = AsyncMock(
            return_value=make_credential(
                access_token="ya29.secret",
                refresh_token="1//secret",
                revoked_at=NOW - timedelta(hours=1),
            )
        )

        async with _client(_app(store=store)) as client:
            resp = await client.get(
                "/api/calendar/status", headers={"x-nexus-user-id": "owner-1"}
            )

        body = resp.json()
        assert body["connected"] is True
        assert body["revoked"] is True
        assert body["canWrite"] is True
        assert body["calendarId"] == "primary"
        assert body["expiresAt"].startswith("2026-02-14T08:30:00")
        assert "secret" not in resp.text
        store.find.assert_awaited_once_with("owner-1")
