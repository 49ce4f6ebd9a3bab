"""structlog wiring plus scrubbing of Lark and Anthropic credentials."""

from __future__ import annotations

import logging
import re
import sys

import structlog

_REDACTED = "***REDACTED***"

# Applied in order; "Authorization: Bearer <t>" must lose the token before
# the key=value rule rewrites the header name
_REDACTION: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(Bearer)\s+[\w\-\.]+", re.IGNORECASE), rf"\1 {_REDACTED}"),
    (
        re.compile(
            r"(token|key|secret|password|authorization)[\"']?\s*[:=]\s*[\"']?[\w\-\.]+",
            re.IGNORECASE,
        ),
        rf"\1={_REDACTED}",
    ),
)

# Event keys whose values are never logged verbatim
_SENSITIVE_KEYS = frozenset({
    "access_token",
    "app_access_token",
    "tenant_access_token",
    "app_secret",
    "api_key",
    "encrypt_key",
    "verification_token",
})

# Chatty at INFO: every Lark/Claude request and every webhook delivery
_QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "aiohttp.access")


def _redact_value(value: str) -> str:
    for pattern, replacement in _REDACTION:
        value = pattern.sub(replacement, value)
    return value


def _filter_sensitive(
    _logger: structlog.types.WrappedLogger,
    _method: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    for key, value in event_dict.items():
        if key in _SENSITIVE_KEYS and value:
            event_dict[key] = _REDACTED
        elif isinstance(value, str):
            event_dict[key] = _redact_value(value)
    return event_dict


def _stderr_handler(json_output: bool) -> logging.Handler:
    """Stdlib handler that renders both structlog and plain logging records."""
    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    return handler


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            _filter_sensitive,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_stderr_handler(json_output))
    root.setLevel(numeric_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    if numeric_level <= logging.DEBUG:
        get_logger(__name__).warning(
            "debug_logging_enabled",
            detail="transcript text and Claude replies will be logged",
        )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
