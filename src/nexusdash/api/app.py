"""nexusdash API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- Lifespan handler that builds and closes the shared calendar services
- Request-id middleware and the standard error envelope
- Calendar, OAuth connect and health routers
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from nexusdash import __version__
from nexusdash.api.deps import init_services, shutdown_services
from nexusdash.api.middleware import RequestIdMiddleware, register_error_handlers
from nexusdash.api.routers.calendar import router as calendar_router
from nexusdash.api.routers.health import router as health_router
from nexusdash.api.routers.oauth import router as oauth_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the services singleton on startup and close it on shutdown."""
    await init_services()
    logger.info("nexusdash API started")

    yield

    await shutdown_services()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="nexusdash calendar API",
        version=__version__,
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False

    register_error_handlers(app)
    # Added last so it wraps the catch-all and tags its 500 responses too
    app.add_middleware(RequestIdMiddleware)

    app.include_router(calendar_router)
    app.include_router(oauth_router)
    app.include_router(health_router)

    return app
