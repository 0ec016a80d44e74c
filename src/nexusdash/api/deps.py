"""Process-wide services and FastAPI dependency functions.

One :class:`CalendarServices` container is built at startup and holds the
shared HTTP client, the database pool and the calendar components built on
them.  Route handlers receive the pieces they need through ``Depends``;
tests swap them out with ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import tzinfo
from functools import cached_property

import asyncpg
import httpx
from fastapi import Depends, Request

from nexusdash.calendar.access import CalendarAccessResolver
from nexusdash.calendar.credential_store import CalendarCredentialStore
from nexusdash.calendar.oauth import GoogleOAuthClient
from nexusdash.calendar.service import CalendarEventProxy
from nexusdash.config import (
    DEFAULT_CALENDAR_ID,
    ConfigError,
    GoogleOAuthConfig,
    calendar_timezone,
    default_owner_id,
    google_calendar_id,
    load_google_oauth_config,
)
from nexusdash.core.logging import bind_owner_context
from nexusdash.db import Database

logger = logging.getLogger(__name__)

OWNER_HEADER = "x-nexus-user-id"

_HTTP_TIMEOUT_SECONDS = 30.0


class CalendarServices:
    """Calendar components sharing one HTTP client and one database pool."""

    def __init__(
        self,
        *,
        database: Database,
        http_client: httpx.AsyncClient,
        oauth_config: GoogleOAuthConfig | None,
        calendar_id: str = DEFAULT_CALENDAR_ID,
        timezone: tzinfo | None = None,
    ) -> None:
        self.database = database
        self.http_client = http_client
        self.oauth_config = oauth_config
        self.calendar_id = calendar_id
        self.timezone = timezone

    @cached_property
    def store(self) -> CalendarCredentialStore:
        return CalendarCredentialStore(self.database.require_pool())

    @cached_property
    def oauth_client(self) -> GoogleOAuthClient:
        if self.oauth_config is None:
            raise ConfigError("Google OAuth client is not configured")
        return GoogleOAuthClient(self.oauth_config, self.http_client)

    @cached_property
    def resolver(self) -> CalendarAccessResolver:
        return CalendarAccessResolver(self.store, self.oauth_client)

    @cached_property
    def proxy(self) -> CalendarEventProxy:
        return CalendarEventProxy(self.resolver, self.http_client)

    async def close(self) -> None:
        await self.http_client.aclose()
        await self.database.close()


# ---------------------------------------------------------------------------
# Singleton lifecycle
# ---------------------------------------------------------------------------

_services: CalendarServices | None = None


async def init_services(env: Mapping[str, str] | None = None) -> CalendarServices:
    """Build the services singleton.  Called once from the app lifespan.

    A missing OAuth configuration or an unreachable database is logged and
    left for the affected endpoints to report; an invalid timezone aborts
    startup.
    """
    global _services  # noqa: PLW0603

    timezone = calendar_timezone(env)

    try:
        oauth_config: GoogleOAuthConfig | None = load_google_oauth_config(env)
    except ConfigError as exc:
        logger.warning("Google Calendar integration disabled: %s", exc)
        oauth_config = None

    database = Database.from_env(env)
    try:
        await database.connect()
    except (OSError, asyncpg.PostgresError):
        logger.warning(
            "Failed to connect to PostgreSQL; calendar endpoints will be unavailable",
            exc_info=True,
        )

    _services = CalendarServices(
        database=database,
        http_client=httpx.AsyncClient(timeout=_HTTP_TIMEOUT_SECONDS),
        oauth_config=oauth_config,
        calendar_id=google_calendar_id(env),
        timezone=timezone,
    )
    return _services


async def shutdown_services() -> None:
    """Close the services singleton. Called during app shutdown."""
    global _services  # noqa: PLW0603
    if _services is not None:
        await _services.close()
        _services = None


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_services() -> CalendarServices:
    """FastAPI dependency: provides the CalendarServices singleton."""
    if _services is None:
        raise RuntimeError("CalendarServices not initialized; call init_services() first")
    return _services


def get_event_proxy(services: CalendarServices = Depends(get_services)) -> CalendarEventProxy:
    return services.proxy


def get_credential_store(
    services: CalendarServices = Depends(get_services),
) -> CalendarCredentialStore:
    return services.store


def get_calendar_id(services: CalendarServices = Depends(get_services)) -> str:
    return services.calendar_id


def get_calendar_timezone(services: CalendarServices = Depends(get_services)) -> tzinfo | None:
    return services.timezone


def get_database(services: CalendarServices = Depends(get_services)) -> Database:
    return services.database


async def get_owner_id(request: Request) -> str:
    """Calendar owner for the request.

    The ``x-nexus-user-id`` header wins; otherwise the configured default
    owner is used.  Declared ``async`` so the owner binding lands in the
    request task rather than a threadpool copy of its context.
    """
    header = request.headers.get(OWNER_HEADER, "").strip()
    owner_id = header or default_owner_id()
    bind_owner_context(owner_id)
    return owner_id
