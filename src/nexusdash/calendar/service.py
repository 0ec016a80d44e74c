"""Calendar event proxy over the Google Calendar REST API.

Every operation resolves access through :class:`CalendarAccessResolver`,
classifies upstream failures into the calendar error kinds and returns an
``Ok | Fail`` value.  Unexpected exceptions are caught at the outermost level
of each operation and reported as ``calendar-internal-error``.

Only :meth:`CalendarEventProxy.list_events` retries: one refresh and one
repeat after an upstream 401.  Writes never retry because the resolver has
already produced a fresh token for them.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Any, Literal
from urllib.parse import quote

import httpx

from nexusdash.calendar.access import CalendarAccess, CalendarAccessResolver, has_write_scope
from nexusdash.calendar.errors import (
    CALENDAR_CREATE_FAILED,
    CALENDAR_DELETE_FAILED,
    CALENDAR_FETCH_FAILED,
    CALENDAR_INTERNAL_ERROR,
    CALENDAR_UPDATE_FAILED,
    EVENT_NOT_FOUND,
    INSUFFICIENT_SCOPE,
    REAUTHORIZATION_REQUIRED,
    DraftValidationError,
)
from nexusdash.calendar.events import (
    INSUFFICIENT_PERMISSIONS_REASON,
    CalendarEvent,
    build_google_event_request,
    normalize_google_event,
    parse_event_draft,
    parse_google_error,
    summarize_google_api_error,
)
from nexusdash.calendar.results import Fail, Ok

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"

RANGE_CURRENT_WEEK = "current-week"
RANGE_ROLLING_DAYS = "rolling-days"

DEFAULT_ROLLING_DAYS = 14
MIN_ROLLING_DAYS = 1
MAX_ROLLING_DAYS = 60
LIST_MAX_RESULTS = 250

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")

RangeKind = Literal["current-week", "rolling-days"]


# ---------------------------------------------------------------------------
# Query window
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QueryWindow:
    range: RangeKind
    days: int
    time_min: datetime
    time_max: datetime


def _read_days(days_raw: str | None) -> int:
    match = _LEADING_INT_RE.match(days_raw) if days_raw is not None else None
    if match is None:
        return DEFAULT_ROLLING_DAYS
    return min(max(int(match.group(1)), MIN_ROLLING_DAYS), MAX_ROLLING_DAYS)


def build_query_window(
    range_raw: str | None,
    days_raw: str | None,
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> QueryWindow:
    """Compute the list window.

    ``current-week`` runs from Monday 00:00 to the following Monday 00:00 in
    *tz* (the host zone when ``None``).  Anything else is a rolling window of
    ``days_raw`` days from *now*, clamped to 1..60 and defaulting to 14.
    """
    current = now or datetime.now(UTC)

    if range_raw == RANGE_CURRENT_WEEK:
        today = current.astimezone(tz).date()
        # weekday() is 0 for Monday
        monday = today - timedelta(days=today.weekday())
        week_start = _local_midnight(monday, tz)
        week_end = _local_midnight(monday + timedelta(days=7), tz)
        return QueryWindow(
            range=RANGE_CURRENT_WEEK,
            days=7,
            time_min=week_start,
            time_max=week_end,
        )

    days = _read_days(days_raw)
    return QueryWindow(
        range=RANGE_ROLLING_DAYS,
        days=days,
        time_min=current,
        time_max=current + timedelta(days=days),
    )


def _local_midnight(day: date, tz: tzinfo | None) -> datetime:
    """Midnight of *day* with the offset in force on that date."""
    midnight = datetime.combine(day, time())
    if tz is None:
        # Naive astimezone() reads the host zone rules for that date.
        return midnight.astimezone()
    return midnight.replace(tzinfo=tz)


def format_instant(value: datetime) -> str:
    """UTC ISO-8601 with milliseconds and ``Z``, as Google expects for timeMin/timeMax."""
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CalendarEventList:
    calendar_id: str
    window: QueryWindow
    synced_at: datetime
    events: list[CalendarEvent] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "calendarId": self.calendar_id,
            "range": self.window.range,
            "days": self.window.days,
            "timeMin": format_instant(self.window.time_min),
            "timeMax": format_instant(self.window.time_max),
            "syncedAt": format_instant(self.synced_at),
            "events": [event.to_payload() for event in self.events],
        }


# ---------------------------------------------------------------------------
# Refresh-and-retry combinator
# ---------------------------------------------------------------------------


async def refresh_and_retry_once(
    send: Callable[[str], Awaitable[httpx.Response]],
    access: CalendarAccess,
    refresh: Callable[[str], Awaitable[Ok[CalendarAccess] | Fail]],
) -> Ok[httpx.Response] | Fail:
    """Send with *access*; on a 401 refresh once and send once more.

    *send* receives the bearer token.  *refresh* receives the rejected token
    and returns fresh access.  A failed refresh or a second 401 yields
    ``Fail(401, "reauthorization-required")``; any other response is returned
    for the caller to classify.
    """
    response = await send(access.access_token)
    if response.status_code != 401:
        return Ok(response)

    refreshed = await refresh(access.access_token)
    if not refreshed.ok:
        return Fail(401, REAUTHORIZATION_REQUIRED)

    response = await send(refreshed.value.access_token)
    if response.status_code == 401:
        return Fail(401, REAUTHORIZATION_REQUIRED)
    return Ok(response)


# ---------------------------------------------------------------------------
# Proxy
# ---------------------------------------------------------------------------


def _is_success(response: httpx.Response) -> bool:
    return 200 <= response.status_code < 300


def _response_json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class CalendarEventProxy:
    """List, create, update and delete events on an owner's Google calendar.

    Parameters
    ----------
    resolver:
        Produces a fresh access token per owner.
    http_client:
        Shared client, owned by the caller for the process lifetime.
    api_base_url:
        Google Calendar API root.
    """

    def __init__(
        self,
        resolver: CalendarAccessResolver,
        http_client: httpx.AsyncClient,
        *,
        api_base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
    ) -> None:
        self._resolver = resolver
        self._http_client = http_client
        self._api_base_url = api_base_url.rstrip("/")

    def _events_url(self, calendar_id: str, event_id: str | None = None) -> str:
        url = f"{self._api_base_url}/calendars/{quote(calendar_id, safe='')}/events"
        if event_id is not None:
            url = f"{url}/{quote(event_id, safe='')}"
        return url

    # ------------------------------------------------------------------
    # list
    # ------------------------------------------------------------------

    async def list_events(
        self,
        owner_id: str,
        *,
        range_raw: str | None = None,
        days_raw: str | None = None,
        now: datetime | None = None,
        tz: tzinfo | None = None,
    ) -> Ok[CalendarEventList] | Fail:
        current = now or datetime.now(UTC)
        try:
            window = build_query_window(range_raw, days_raw, now=current, tz=tz)

            resolved = await self._resolver.resolve(owner_id, now=now)
            if not resolved.ok:
                return resolved
            access = resolved.value

            params = {
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": str(LIST_MAX_RESULTS),
                "showDeleted": "false",
                "timeMin": format_instant(window.time_min),
                "timeMax": format_instant(window.time_max),
            }
            url = self._events_url(access.calendar_id)

            async def send(token: str) -> httpx.Response:
                return await self._http_client.get(
                    url, params=params, headers={"Authorization": f"Bearer {token}"}
                )

            async def refresh(stale_token: str) -> Ok[CalendarAccess] | Fail:
                return await self._resolver.force_refresh(
                    owner_id, stale_token=stale_token, now=now
                )

            sent = await refresh_and_retry_once(send, access, refresh)
            if not sent.ok:
                logger.info("Calendar list needs reauthorization (owner=%s)", owner_id)
                return sent
            response = sent.value

            payload = _response_json(response)
            if not _is_success(response):
                return self._classify_failure(
                    "list",
                    response,
                    payload,
                    failed_kind=CALENDAR_FETCH_FAILED,
                    owner_id=owner_id,
                )
            if not isinstance(payload, dict):
                logger.warning(
                    "Google Calendar list returned a non-object body (owner=%s)", owner_id
                )
                return Fail(502, CALENDAR_FETCH_FAILED)

            items = payload.get("items")
            events: list[CalendarEvent] = []
            for item in items if isinstance(items, list) else []:
                event = normalize_google_event(item)
                if event is not None:
                    events.append(event)

            return Ok(
                CalendarEventList(
                    calendar_id=access.calendar_id,
                    window=window,
                    synced_at=current,
                    events=events,
                )
            )
        except Exception:
            logger.exception("Calendar list failed unexpectedly (owner=%s)", owner_id)
            return Fail(500, CALENDAR_INTERNAL_ERROR)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    async def _writable_access(self, owner_id: str) -> CalendarAccess | Fail:
        resolved = await self._resolver.resolve(owner_id)
        if not resolved.ok:
            return resolved
        if not has_write_scope(resolved.value.scope):
            return Fail(403, INSUFFICIENT_SCOPE)
        return resolved.value

    async def create_event(self, owner_id: str, raw_draft: Any) -> Ok[CalendarEvent] | Fail:
        try:
            access = await self._writable_access(owner_id)
            if isinstance(access, Fail):
                return access
            try:
                draft = parse_event_draft(raw_draft)
            except DraftValidationError as exc:
                return Fail(400, exc.kind)

            response = await self._http_client.post(
                self._events_url(access.calendar_id),
                json=build_google_event_request(draft),
                headers={"Authorization": f"Bearer {access.access_token}"},
            )
            return self._event_result(
                "create",
                response,
                failed_kind=CALENDAR_CREATE_FAILED,
                success_status=201,
                owner_id=owner_id,
            )
        except Exception:
            logger.exception("Calendar create failed unexpectedly (owner=%s)", owner_id)
            return Fail(500, CALENDAR_INTERNAL_ERROR)

    async def update_event(
        self, owner_id: str, event_id: str, raw_draft: Any
    ) -> Ok[CalendarEvent] | Fail:
        try:
            access = await self._writable_access(owner_id)
            if isinstance(access, Fail):
                return access
            try:
                draft = parse_event_draft(raw_draft)
            except DraftValidationError as exc:
                return Fail(400, exc.kind)

            response = await self._http_client.patch(
                self._events_url(access.calendar_id, event_id),
                json=build_google_event_request(draft),
                headers={"Authorization": f"Bearer {access.access_token}"},
            )
            return self._event_result(
                "update",
                response,
                failed_kind=CALENDAR_UPDATE_FAILED,
                success_status=200,
                owner_id=owner_id,
                not_found=True,
            )
        except Exception:
            logger.exception(
                "Calendar update failed unexpectedly (owner=%s, event_id=%s)", owner_id, event_id
            )
            return Fail(500, CALENDAR_INTERNAL_ERROR)

    async def delete_event(self, owner_id: str, event_id: str) -> Ok[None] | Fail:
        try:
            access = await self._writable_access(owner_id)
            if isinstance(access, Fail):
                return access

            response = await self._http_client.delete(
                self._events_url(access.calendar_id, event_id),
                headers={"Authorization": f"Bearer {access.access_token}"},
            )
            if not _is_success(response):
                return self._classify_failure(
                    "delete",
                    response,
                    _response_json(response),
                    failed_kind=CALENDAR_DELETE_FAILED,
                    owner_id=owner_id,
                    not_found=True,
                )
            return Ok(None)
        except Exception:
            logger.exception(
                "Calendar delete failed unexpectedly (owner=%s, event_id=%s)", owner_id, event_id
            )
            return Fail(500, CALENDAR_INTERNAL_ERROR)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _event_result(
        self,
        operation: str,
        response: httpx.Response,
        *,
        failed_kind: str,
        success_status: int,
        owner_id: str,
        not_found: bool = False,
    ) -> Ok[CalendarEvent] | Fail:
        payload = _response_json(response)
        if not _is_success(response):
            return self._classify_failure(
                operation,
                response,
                payload,
                failed_kind=failed_kind,
                owner_id=owner_id,
                not_found=not_found,
            )

        event = normalize_google_event(payload)
        if event is None:
            logger.warning(
                "Google Calendar %s returned a malformed event (owner=%s)", operation, owner_id
            )
            return Fail(502, failed_kind)
        return Ok(event, status=success_status)

    @staticmethod
    def _classify_failure(
        operation: str,
        response: httpx.Response,
        payload: Any,
        *,
        failed_kind: str,
        owner_id: str,
        not_found: bool = False,
    ) -> Fail:
        error = parse_google_error(payload)
        status = response.status_code

        if status == 403 and error.reason == INSUFFICIENT_PERMISSIONS_REASON:
            return Fail(403, INSUFFICIENT_SCOPE)
        if status == 401:
            return Fail(401, REAUTHORIZATION_REQUIRED)
        if status == 404 and not_found:
            return Fail(404, EVENT_NOT_FOUND)

        logger.warning(
            "Google Calendar %s failed (owner=%s): %s",
            operation,
            owner_id,
            summarize_google_api_error(
                status_code=status,
                reason_phrase=response.reason_phrase,
                error=error,
            ),
        )
        return Fail(502, failed_kind)
