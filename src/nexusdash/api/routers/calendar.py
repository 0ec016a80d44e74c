"""Calendar event endpoints.

Thin adapters over :class:`CalendarEventProxy`: each handler forwards the
request, then turns the ``Ok | Fail`` result into a JSON response with the
result's status code.
"""

from __future__ import annotations

import logging
from datetime import tzinfo
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from nexusdash.api.deps import (
    get_calendar_timezone,
    get_credential_store,
    get_event_proxy,
    get_owner_id,
)
from nexusdash.api.models import CalendarStatusResponse
from nexusdash.calendar.access import has_write_scope
from nexusdash.calendar.credential_store import CalendarCredentialStore
from nexusdash.calendar.errors import CALENDAR_FETCH_FAILED, INSUFFICIENT_SCOPE
from nexusdash.calendar.results import Fail
from nexusdash.calendar.service import CalendarEventProxy

router = APIRouter(prefix="/api/calendar", tags=["calendar"])
logger = logging.getLogger(__name__)

# List failures where the calendar is still connected; every other kind is not.
_CONNECTED_LIST_FAILURES = frozenset({INSUFFICIENT_SCOPE, CALENDAR_FETCH_FAILED})


def _fail_response(result: Fail, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=result.status, content={**extra, "error": result.error})


async def _read_json_body(request: Request) -> Any:
    """Parsed JSON body, or ``None`` when the body is empty or not JSON."""
    try:
        return await request.json()
    except ValueError:
        return None


@router.get("/events")
async def list_events(
    range_raw: str | None = Query(default=None, alias="range"),
    days_raw: str | None = Query(default=None, alias="days"),
    owner_id: str = Depends(get_owner_id),
    proxy: CalendarEventProxy = Depends(get_event_proxy),
    tz: tzinfo | None = Depends(get_calendar_timezone),
) -> JSONResponse:
    """List events in the current week or a rolling window of days."""
    result = await proxy.list_events(owner_id, range_raw=range_raw, days_raw=days_raw, tz=tz)
    if isinstance(result, Fail):
        return _fail_response(result, connected=result.error in _CONNECTED_LIST_FAILURES)
    return JSONResponse(
        status_code=result.status,
        content={"connected": True, **result.value.to_payload()},
    )


@router.post("/events")
async def create_event(
    request: Request,
    owner_id: str = Depends(get_owner_id),
    proxy: CalendarEventProxy = Depends(get_event_proxy),
) -> JSONResponse:
    result = await proxy.create_event(owner_id, await _read_json_body(request))
    if isinstance(result, Fail):
        return _fail_response(result)
    return JSONResponse(status_code=result.status, content={"event": result.value.to_payload()})


@router.patch("/events/{event_id}")
async def update_event(
    event_id: str,
    request: Request,
    owner_id: str = Depends(get_owner_id),
    proxy: CalendarEventProxy = Depends(get_event_proxy),
) -> JSONResponse:
    result = await proxy.update_event(owner_id, event_id, await _read_json_body(request))
    if isinstance(result, Fail):
        return _fail_response(result)
    return JSONResponse(status_code=result.status, content={"event": result.value.to_payload()})


@router.delete("/events/{event_id}")
async def delete_event(
    event_id: str,
    owner_id: str = Depends(get_owner_id),
    proxy: CalendarEventProxy = Depends(get_event_proxy),
) -> JSONResponse:
    result = await proxy.delete_event(owner_id, event_id)
    if isinstance(result, Fail):
        return _fail_response(result)
    return JSONResponse(status_code=result.status, content={"ok": True})


@router.get("/status", response_model=CalendarStatusResponse, response_model_by_alias=True)
async def calendar_status(
    owner_id: str = Depends(get_owner_id),
    store: CalendarCredentialStore = Depends(get_credential_store),
) -> CalendarStatusResponse:
    """Report whether the owner has a usable calendar connection."""
    credential = await store.find(owner_id)
    if credential is None:
        return CalendarStatusResponse(connected=False)
    return CalendarStatusResponse(
        connected=True,
        revoked=credential.revoked_at is not None,
        can_write=has_write_scope(credential.scope),
        calendar_id=credential.calendar_id,
        expires_at=credential.expires_at,
    )
