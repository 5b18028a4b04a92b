"""Structured logging for the ORD aggregator.

structlog renders on top of the stdlib ``logging`` module so records from
httpx, aiosqlite and uvicorn come out in the same format as ours. Output
goes to stderr; the CLI keeps stdout for results.

Environment Variables:
    ORDA_LOG_FORMAT: "json" for JSON lines, "console" for colored output
    ORDA_LOG_LEVEL: Minimum level (DEBUG, INFO, WARNING, ERROR)
    ORDA_SERVICE_NAME: Value of the ``service`` field on every record
    ORDA_DEBUG: "true" or "1" disables redaction of credential-like fields

Example:
    >>> from orda.observability.logging import configure_logging, get_logger
    >>> configure_logging(log_format="json")
    >>> get_logger("orda.crawler").info("orda.crawl.started", provider_id="s4")
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from typing import Any

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

ENV_LOG_FORMAT = "ORDA_LOG_FORMAT"
ENV_LOG_LEVEL = "ORDA_LOG_LEVEL"
ENV_SERVICE_NAME = "ORDA_SERVICE_NAME"
ENV_DEBUG = "ORDA_DEBUG"

REDACTED_PLACEHOLDER = "***REDACTED***"

# Substrings (case-insensitive) of field names that carry credentials, e.g.
# access strategy hints or request headers
_SENSITIVE_KEY_PATTERNS = (
    "password",
    "token",
    "secret",
    "key",
    "authorization",
    "auth",
    "credential",
    "cookie",
)
_TRUTHY = frozenset({"true", "1", "yes", "on"})

_configured = False


@dataclass(frozen=True)
class LogSettings:
    """Resolved logging settings; explicit arguments win over the environment."""

    log_format: str = "console"
    log_level: str = "INFO"
    service_name: str = "ord-aggregator"

    @classmethod
    def resolve(
        cls,
        log_format: str | None = None,
        log_level: str | None = None,
        service_name: str | None = None,
    ) -> LogSettings:
        return cls(
            log_format=(log_format or os.environ.get(ENV_LOG_FORMAT, cls.log_format)).lower(),
            log_level=(log_level or os.environ.get(ENV_LOG_LEVEL, cls.log_level)).upper(),
            service_name=service_name or os.environ.get(ENV_SERVICE_NAME, cls.service_name),
        )


def is_debug_mode() -> bool:
    """True if ORDA_DEBUG holds a truthy value."""
    return os.environ.get(ENV_DEBUG, "").strip().lower() in _TRUTHY


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED_PLACEHOLDER if _is_sensitive(str(k)) else _redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def sanitize_for_logging(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``data`` with credential-like fields replaced, at any depth.

    Returned unchanged when ORDA_DEBUG is enabled.

    Example:
        >>> sanitize_for_logging({"url": "/doc", "Authorization": "Bearer abc"})
        {'url': '/doc', 'Authorization': '***REDACTED***'}
    """
    if not data:
        return {}
    if is_debug_mode():
        return dict(data)
    redacted: dict[str, Any] = _redact(data)
    return redacted


def redact_sensitive_fields(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """structlog processor applying :func:`sanitize_for_logging` to every record."""
    return sanitize_for_logging(dict(event_dict))


def _processor_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        redact_sensitive_fields,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(), exception_formatter=structlog.dev.plain_traceback
    )


def configure_logging(
    log_format: str | None = None,
    log_level: str | None = None,
    service_name: str | None = None,
    force: bool = False,
) -> None:
    """Install the stderr handler and the structlog pipeline.

    Repeated calls are no-ops unless ``force`` is set; the CLI forces a
    reconfiguration for ``--verbose``.

    Args:
        log_format: "json" or "console"; defaults to ORDA_LOG_FORMAT
        log_level: Minimum level; defaults to ORDA_LOG_LEVEL or INFO
        service_name: Bound as ``service``; defaults to ORDA_SERVICE_NAME
        force: Reconfigure even if logging was already set up
    """
    global _configured

    if _configured and not force:
        return

    settings = LogSettings.resolve(log_format, log_level, service_name)
    chain = _processor_chain()

    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(settings.log_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level, logging.INFO))

    structlog.contextvars.bind_contextvars(service=settings.service_name)
    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger for ``name``; configures defaults on first use."""
    if not _configured:
        configure_logging()
    return structlog.stdlib.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind fields to every later record in the current context.

    The orchestrator binds ``provider_id`` inside each provider task;
    asyncio gives every task its own copy of the context.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
