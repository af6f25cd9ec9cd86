"""LLM Remote — Structured logging configuration.

Uses structlog for structured, levelled logging with consistent key names
across all layers.  All log entries include:
    - timestamp (ISO-8601)
    - level
    - module (Python logger name)
    - request_id / chat_type of the inbound request being admitted

``SecurityManager.admit`` binds the request context; every record logged
afterwards in the same task carries it.  Values under secret-looking keys
(``pin``, ``passphrase``, ``token`` ...) are masked before rendering.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

_REDACTED = "***"
_SECRET_KEYS = frozenset({"pin", "passphrase", "master_password", "password", "token"})

# Context of the request currently handled by this task, empty when idle.
_ctx_request: ContextVar[tuple[tuple[str, str], ...]] = ContextVar("request_context", default=())


def bind_request_context(request_id: str | None = None, chat_type: str | None = None) -> None:
    """Replace the request context of the current async task / thread.

    Calling it with no arguments clears the context.
    """
    fields = (("request_id", request_id), ("chat_type", chat_type))
    _ctx_request.set(tuple((key, value) for key, value in fields if value is not None))


def current_request_context() -> dict[str, str]:
    return dict(_ctx_request.get())


# ---------------------------------------------------------------------------
# Custom processors
# ---------------------------------------------------------------------------


def _inject_request_context(
    _logger: WrappedLogger, _method: str, event_dict: EventDict
) -> EventDict:
    """Add the bound request fields to every log record."""
    for key, value in _ctx_request.get():
        event_dict.setdefault(key, value)
    return event_dict


def _redact_secrets(
    _logger: WrappedLogger, _method: str, event_dict: EventDict
) -> EventDict:
    for key in _SECRET_KEYS.intersection(event_dict):
        event_dict[key] = _REDACTED
    return event_dict


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "info",
    format: str = "console",
    log_file: str | None = None,
) -> None:
    """Configure structlog and stdlib logging.

    Call once at startup, before any log statements.

    Args:
        level:    One of debug, info, warning, error, critical.
        format:   ``"console"`` for human-readable output, ``"json"`` for
                  machine-readable structured logs.
        log_file: Optional path to write logs to in addition to stdout.
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _inject_request_context,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handlers: list[logging.Handler] = []

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(level.upper())

    for noisy in ("asyncio",):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger for *name*.

    Usage::

        log = get_logger(__name__)
        log.info("session_restored", count=2)
    """
    return structlog.get_logger(name)
