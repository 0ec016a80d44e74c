"""API middleware for request ids and consistent error responses.

Unhandled failures become ``{"error": {"code": "...", "message": "..."}}``
JSON responses.

Status code mapping:
- ``ConfigError`` → 503 Service Unavailable
- ``CalendarError`` that escaped the core → 500 with the error kind as code
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging
import re
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from nexusdash.api.models import ErrorDetail, ErrorResponse
from nexusdash.calendar.errors import CalendarError
from nexusdash.config import ConfigError
from nexusdash.core.logging import bind_request_context, reset_request_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def resolve_request_id(raw: str | None) -> str:
    """Accept a caller-supplied request id only when it is short and URL-safe."""
    if raw is not None and _REQUEST_ID_RE.match(raw):
        return raw
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id into the logging context and echo it on the response."""

    async def dispatch(self, request: Request, call_next):
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = bind_request_context(request_id)
        try:
            response = await call_next(request)
        finally:
            reset_request_context(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


async def _handle_config_error(
    request: Request,
    exc: ConfigError,
) -> JSONResponse:
    """Return 503 when a required integration is not configured."""
    logger.warning("Configuration error on %s: %s", request.url.path, exc)
    body = ErrorResponse(
        error=ErrorDetail(
            code="CONFIG_ERROR",
            message="Service is not configured for this operation",
        )
    )
    return JSONResponse(status_code=503, content=body.model_dump())


async def _handle_calendar_error(
    request: Request,
    exc: CalendarError,
) -> JSONResponse:
    logger.error("Calendar error on %s: %s", request.url.path, exc.kind, exc_info=exc)
    body = ErrorResponse(
        error=ErrorDetail(
            code=exc.kind,
            message="Calendar operation failed",
        )
    )
    return JSONResponse(status_code=500, content=body.model_dump())


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500.

    This sits above the Starlette exception handler layer, so exceptions
    without a registered handler still get the standard error envelope.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                exc_info=True,
            )
            body = ErrorResponse(
                error=ErrorDetail(
                    code="INTERNAL_ERROR",
                    message="Internal server error",
                )
            )
            return JSONResponse(status_code=500, content=body.model_dump())


def register_error_handlers(app: FastAPI) -> None:
    """Attach exception handlers and the catch-all middleware.

    Call this from ``create_app()`` after constructing the ``FastAPI`` instance.
    """
    app.add_exception_handler(ConfigError, _handle_config_error)  # type: ignore[arg-type]
    app.add_exception_handler(CalendarError, _handle_calendar_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
