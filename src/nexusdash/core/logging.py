"""Structured logging for nexusdash.

structlog's ProcessorFormatter sits behind the stdlib root logger, so modules
keep logging through ``logging.getLogger(__name__)``.

Two output formats:
- ``text``: human-readable console output (development default)
- ``json``: JSON lines (production default)

The current request id and calendar owner are injected from ContextVars set
by the HTTP middleware; OTel trace ids come from the active span.

When ``log_root`` is set, a JSON copy of every record is written to
``{log_root}/nexusdash.log`` and HTTP server records additionally to
``{log_root}/uvicorn.log``.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar, Token
from pathlib import Path

import structlog
from opentelemetry import trace

# ---------------------------------------------------------------------------
# Request context (asyncio-safe via ContextVar)
# ---------------------------------------------------------------------------

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)
_owner_id: ContextVar[str | None] = ContextVar("owner_id", default=None)


def bind_request_context(request_id: str) -> Token[str | None]:
    """Set the request id for the current async context."""
    return _request_id.set(request_id)


def reset_request_context(token: Token[str | None]) -> None:
    _request_id.reset(token)


def get_request_id() -> str | None:
    return _request_id.get()


def bind_owner_context(owner_id: str) -> None:
    """Set the calendar owner for the current async context."""
    _owner_id.set(owner_id)


def get_owner_id() -> str | None:
    return _owner_id.get()


# ---------------------------------------------------------------------------
# Structlog processors
# ---------------------------------------------------------------------------


def add_request_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``request_id`` and ``owner_id`` when they are bound."""
    request_id = _request_id.get()
    if request_id is not None:
        event_dict["request_id"] = request_id
    owner_id = _owner_id.get()
    if owner_id is not None:
        event_dict["owner_id"] = owner_id
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``trace_id`` and ``span_id`` from the current OTel span."""
    ctx = trace.get_current_span().get_span_context()
    if ctx and ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


# ---------------------------------------------------------------------------
# Noise suppression
# ---------------------------------------------------------------------------

_NOISE_LOGGERS = (
    "uvicorn.access",
    "uvicorn.error",
    "httpx",
    "httpcore",
    "asyncpg",
)

_APP_LOG_FILE = "nexusdash.log"
_SERVER_LOG_FILE = "uvicorn.log"


def _build_processors(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_request_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _make_file_handler(path: Path, processors: list) -> logging.FileHandler:
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=processors,
    )
    handler = logging.FileHandler(path)
    handler.setFormatter(formatter)
    handler.setLevel(logging.DEBUG)
    return handler


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
) -> None:
    """Configure structured logging for the process.

    Parameters
    ----------
    level:
        Root log level (e.g. "DEBUG", "INFO", "WARNING").
    fmt:
        ``"text"`` for console output, ``"json"`` for JSON lines.
    log_root:
        Directory for JSON log files; created when missing.
    """
    if fmt == "json":
        console_processors = _build_processors(time_fmt="iso")
        renderer = structlog.processors.JSONRenderer()
    else:
        console_processors = _build_processors(time_fmt="%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=console_processors,
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    # Reconfiguration replaces handlers instead of stacking them
    root.handlers.clear()
    root.addHandler(console_handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        log_dir = Path(log_root)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_processors = _build_processors(time_fmt="iso")

        root.addHandler(_make_file_handler(log_dir / _APP_LOG_FILE, file_processors))

        server_handler = _make_file_handler(log_dir / _SERVER_LOG_FILE, file_processors)
        for name in ("uvicorn.access", "uvicorn.error"):
            logging.getLogger(name).addHandler(server_handler)

    structlog.configure(
        processors=[
            *console_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
