"""CLI for nexusdash: run the calendar API and prepare its database."""

from __future__ import annotations

import asyncio
import logging
import sys

import asyncpg
import click
import uvicorn

from nexusdash import __version__
from nexusdash.calendar.credential_store import ensure_credentials_schema
from nexusdash.config import ConfigError, load_logging_config
from nexusdash.core.logging import configure_logging
from nexusdash.db import Database

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """nexusdash: Google Calendar connection and event API."""
    try:
        logging_config = load_logging_config()
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)
    configure_logging(
        level=logging_config.level,
        fmt=logging_config.format,
        log_root=logging_config.log_root,
    )


@cli.command()
@click.option("--host", default=DEFAULT_HOST, show_default=True, help="Interface to bind")
@click.option("--port", type=int, default=DEFAULT_PORT, show_default=True, help="Port to bind")
@click.option("--reload", is_flag=True, help="Reload on code changes (development only)")
def serve(host: str, port: int, reload: bool) -> None:
    """Run the HTTP API."""
    click.echo(f"Starting nexusdash API on {host}:{port}")
    uvicorn.run(
        "nexusdash.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        # Keep the structlog handlers installed by the group callback
        log_config=None,
    )


@cli.command("init-db")
def init_db() -> None:
    """Create the calendar credential table if it does not exist."""
    try:
        asyncio.run(_init_db())
    except (OSError, asyncpg.PostgresError) as exc:
        click.echo(f"Database initialization failed: {exc}", err=True)
        sys.exit(1)
    click.echo("Database schema is up to date")


async def _init_db() -> None:
    database = Database.from_env()
    pool = await database.connect()
    try:
        await ensure_credentials_schema(pool)
    finally:
        await database.close()


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
