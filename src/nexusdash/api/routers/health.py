"""Liveness and readiness probes."""

from __future__ import annotations

import time
from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from nexusdash.api.deps import get_database
from nexusdash.core.logging import get_request_id
from nexusdash.db import Database

router = APIRouter(prefix="/api/health", tags=["health"])

SERVICE_NAME = "nexusdash"

_STARTED_AT = time.monotonic()
_NO_STORE = {"Cache-Control": "no-store"}


def _timestamp() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@router.get("/live")
async def live() -> JSONResponse:
    return JSONResponse(
        content={
            "status": "ok",
            "service": SERVICE_NAME,
            "timestamp": _timestamp(),
            "uptimeSeconds": int(time.monotonic() - _STARTED_AT),
            "requestId": get_request_id(),
        },
        headers=_NO_STORE,
    )


@router.get("/ready")
async def ready(database: Database = Depends(get_database)) -> JSONResponse:
    """200 when the database answers, 503 otherwise."""
    if await database.ping():
        return JSONResponse(
            content={
                "status": "ready",
                "service": SERVICE_NAME,
                "timestamp": _timestamp(),
                "checks": {"database": "ok"},
                "requestId": get_request_id(),
            },
            headers=_NO_STORE,
        )
    return JSONResponse(
        status_code=503,
        content={
            "status": "degraded",
            "service": SERVICE_NAME,
            "timestamp": _timestamp(),
            "checks": {"database": "error"},
            "requestId": get_request_id(),
            "error": "database-unreachable",
        },
        headers=_NO_STORE,
    )
