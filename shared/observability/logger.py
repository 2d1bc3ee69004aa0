"""Logging helpers integrating structlog and loguru with batch context."""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from types import FrameType
from typing import Any, Iterator, Mapping

import structlog
from loguru import logger as loguru_logger

__all__ = [
    "batch_context",
    "configure_logging",
    "generate_batch_id",
    "get_batch_id",
    "get_logger",
]

_BATCH_ID: ContextVar[str | None] = ContextVar("batch_id", default=None)
_CONFIGURED: bool = False
_SERVICE_NAME: str | None = None


def _format_record(record: Mapping[str, Any]) -> str:
    """Return the loguru format string for a single log line."""

    timestamp = record["time"].isoformat()
    level = record["level"].name
    extra = record.get("extra") or {}
    service = extra.get("service", "-")
    batch_id = extra.get("batch_id") or extra.get("correlation_id") or "-"
    message = record.get("message", "")
    if not isinstance(message, str):
        message = str(message)
    # loguru re-applies ``str.format`` to the returned template and the
    # structlog payloads are JSON, so braces must be escaped.
    message = message.replace("{", "{{").replace("}", "}}")
    return f"{timestamp} | {level:<8} | {service} | {batch_id} | {message}\n"


def _coerce_level(level: str | int) -> tuple[int, str]:
    """Normalize ``level`` to logging and loguru compatible representations."""

    if isinstance(level, int):
        numeric = level
    else:
        normalized = logging.getLevelName(level.upper())
        if not isinstance(normalized, int):
            raise ValueError(f"Unknown log level: {level}")
        numeric = normalized
    name = logging.getLevelName(numeric)
    if not isinstance(name, str):  # pragma: no cover - custom numeric levels
        name = "INFO"
    return numeric, name


def get_batch_id() -> str | None:
    """Return the batch identifier bound to the current context, if any."""

    return _BATCH_ID.get()


def generate_batch_id() -> str:
    """Return a new opaque batch identifier."""

    return uuid.uuid4().hex


class LoguruInterceptHandler(logging.Handler):
    """Route standard logging records through loguru, keeping the batch id."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - thin wrapper
        level: str | int
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame: FrameType | None = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        bound = loguru_logger.bind(logger=record.name)
        batch_id = get_batch_id()
        if batch_id:
            bound = bound.bind(batch_id=batch_id)

        bound.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _configure_structlog(*, json: bool) -> None:
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def configure_logging(
    *,
    service_name: str | None = None,
    level: str | int = "INFO",
    json: bool = True,
) -> None:
    """Configure the loguru/structlog integration for the current process.

    Idempotent: the sinks are installed once, later calls only rebind the
    service name.
    """

    global _CONFIGURED, _SERVICE_NAME

    numeric_level, level_name = _coerce_level(level)

    if not _CONFIGURED:
        loguru_logger.remove()
        loguru_logger.add(
            sys.stderr,
            level=level_name,
            enqueue=False,
            backtrace=False,
            diagnose=False,
            format=_format_record,
        )

        logging.basicConfig(
            handlers=[LoguruInterceptHandler()],
            level=numeric_level,
            force=True,
        )
        logging.captureWarnings(True)

        _configure_structlog(json=json)
        _CONFIGURED = True

    if service_name:
        _SERVICE_NAME = service_name
        loguru_logger.configure(extra={"service": service_name})
        structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog bound logger with the given ``name``."""

    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)


@contextmanager
def batch_context(batch_id: str | None = None, **extra: Any) -> Iterator[str]:
    """Bind ``batch_id`` and extra context for the lifetime of the block.

    Values bound before entering the block are restored on exit so nested
    batches (for example a CLI processing several files) keep their outer
    context intact.
    """

    extra.pop("batch_id", None)

    bid = batch_id or generate_batch_id()
    token = _BATCH_ID.set(bid)
    context_values = dict(extra)
    if _SERVICE_NAME and "service" not in context_values:
        context_values["service"] = _SERVICE_NAME

    context_api = structlog.contextvars
    previous_context = context_api.get_contextvars()
    context_api.bind_contextvars(batch_id=bid, **context_values)
    bound_keys = list(dict.fromkeys(["batch_id", *context_values.keys()]))

    with loguru_logger.contextualize(batch_id=bid, **extra):
        try:
            yield bid
        finally:
            context_api.unbind_contextvars(*bound_keys)
            restore = {
                key: previous_context[key]
                for key in bound_keys
                if key in previous_context
            }
            if restore:
                context_api.bind_contextvars(**restore)
            _BATCH_ID.reset(token)
