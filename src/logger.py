"""Structured logging configuration using structlog.

JSON lines in production, colored console output in development. Every
HTTP request binds a short request id through contextvars, so the search
fan-out, session and stream events it triggers can be grouped.
"""

import logging
import re
import sys
import uuid
from contextlib import AbstractContextManager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from src.config import settings

# Magnets carry a tracker list that dwarfs the useful part
MAGNET_HASH_RE = re.compile(r"^magnet:\?.*?xt=urn:btih:([a-zA-Z0-9]+)", re.IGNORECASE)

# Private tracker announce URLs embed the account passkey
PASSKEY_RE = re.compile(r"(passkey=|/announce/)[A-Za-z0-9]{16,}", re.IGNORECASE)

SENSITIVE_KEYS = ("token", "password", "api_key", "secret", "authorization", "cookie", "passkey")


def add_log_level(_logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add log level to the event dict."""
    if method_name == "warn":
        # Structlog uses "warn", but we want "warning"
        event_dict["level"] = "warning"
    else:
        event_dict["level"] = method_name
    return event_dict


def _scrub(key: str, value: Any) -> Any:
    if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
        return "***"
    if isinstance(value, str):
        match = MAGNET_HASH_RE.match(value)
        if match:
            return f"magnet:{match.group(1).upper()}"
        return PASSKEY_RE.sub(r"\1***", value)
    if isinstance(value, list | tuple):
        return [_scrub(key, item) for item in value]
    if isinstance(value, dict):
        return {k: _scrub(k, v) for k, v in value.items()}
    return value


def scrub_locators(_logger: logging.Logger, _method_name: str, event_dict: EventDict) -> EventDict:
    """Shorten magnet locators and mask credentials.

    A magnet becomes ``magnet:<INFOHASH>``; passkeys in tracker URLs and
    values under credential-like keys are replaced with ``***``.
    """
    return {
        key: value if key == "event" else _scrub(key, value) for key, value in event_dict.items()
    }


def shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        scrub_locators,
    ]


def configure_logging(level_name: str | None = None, json_output: bool | None = None) -> None:
    """Configure structlog and route stdlib (and uvicorn) logging through it.

    Args:
        level_name: Level to use (default: ``settings.effective_log_level``)
        json_output: Render JSON lines (default: in production)
    """
    level = getattr(logging, level_name or settings.effective_log_level)
    if json_output is None:
        json_output = settings.is_production

    if json_output:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=shared_processors() + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # uvicorn installs its own handlers; route them through ours
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True

    # httpx logs every provider request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def request_context(method: str, path: str) -> AbstractContextManager:
    """Bind a fresh request id plus method and path for the enclosed block."""
    return structlog.contextvars.bound_contextvars(
        request_id=uuid.uuid4().hex[:8],
        method=method,
        path=path,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("session_added", content_id="ABCD", files=3)
    """
    return structlog.get_logger(name)


# Configure logging on module import
configure_logging()
