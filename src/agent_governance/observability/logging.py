"""Structured logging setup over structlog with redaction support.

Services log through ``structlog.get_logger(__name__)`` (or an injected
logger) with snake_case event names and key/value context. This module owns
the process-wide processor chain: context-var merge, level filtering, UTC
timestamps, secret redaction, and a JSON or console renderer.
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from typing import IO, Any, Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_REDACTED_VALUE: Final[str] = "***REDACTED***"

_CORRELATION_KEYS: Final[tuple[str, ...]] = (
    "tenant_id",
    "workspace_id",
    "trace_id",
    "actor",
    "request_id",
)

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
    "client_secret",
)

# Token counts are operational data, not credentials.
_NON_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset(
    {"input_tokens", "output_tokens", "total_tokens", "max_output_tokens", "tokens"}
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|client_secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_OPENAI_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"\bsk-[A-Za-z0-9]{12,}\b")
_ANTHROPIC_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"\bsk-ant-[A-Za-z0-9_-]{12,}\b")

_LOG_LEVELS: Final[dict[str, int]] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def configure_logging(
    level: int | str = "INFO",
    *,
    json_logs: bool = True,
    stream: IO[str] | None = None,
) -> None:
    """Configure the structlog processor chain for the current process."""

    level_value = _parse_log_level(level)
    renderer: structlog.types.Processor
    if json_logs:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_event_dict,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        logger_factory=structlog.PrintLoggerFactory(file=stream if stream is not None else sys.stderr),
        cache_logger_on_first_use=False,
    )


def configure_from_config(config: Mapping[str, Any], *, stream: IO[str] | None = None) -> None:
    """Apply the ``observability`` section of an effective config."""

    section = config.get("observability", {})
    level = section.get("log_level", "INFO") if isinstance(section, Mapping) else "INFO"
    json_logs = bool(section.get("json_logs", True)) if isinstance(section, Mapping) else True
    configure_logging(level, json_logs=json_logs, stream=stream)


@contextmanager
def bind_context(**fields: str | None) -> Iterator[None]:
    """Temporarily bind correlation fields for every log event in scope."""

    bound = {}
    for key, value in fields.items():
        if key not in _CORRELATION_KEYS:
            raise ValueError(f"unsupported correlation key: {key!r}")
        if value is not None:
            bound[key] = value
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def redact_event_dict(
    logger: object, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking secret-looking keys and inline credentials."""

    del logger, method_name
    for key in list(event_dict):
        event_dict[key] = _redact_value(event_dict[key], key_context=key)
    return event_dict


def redact(value: JSONValue) -> JSONValue:
    """Deep redaction for secrets in arbitrary JSON-like values."""

    return _redact_value(value, key_context=None)


def _redact_value(value: Any, *, key_context: str | None) -> Any:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return _REDACTED_VALUE

    if isinstance(value, str):
        return _redact_string(value)

    if isinstance(value, (list, tuple)):
        return [_redact_value(item, key_context=None) for item in value]

    if isinstance(value, Mapping):
        return {key: _redact_value(item, key_context=str(key)) for key, item in value.items()}

    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    if key_lower in _NON_SENSITIVE_KEYS:
        return False
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def _redact_string(text: str) -> str:
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", text
    )
    redacted = _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", redacted)
    redacted = _ANTHROPIC_KEY_PATTERN.sub(_REDACTED_VALUE, redacted)
    redacted = _OPENAI_KEY_PATTERN.sub(_REDACTED_VALUE, redacted)
    return redacted


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, bool):
        raise ValueError("log level must be a level name or integer")
    if isinstance(value, int):
        return value
    normalized = value.strip().upper()
    if normalized not in _LOG_LEVELS:
        allowed = ", ".join(_LOG_LEVELS)
        raise ValueError(f"unsupported log level {value!r}; expected one of: {allowed}")
    return _LOG_LEVELS[normalized]


__all__ = [
    "JSONScalar",
    "JSONValue",
    "bind_context",
    "configure_from_config",
    "configure_logging",
    "redact",
    "redact_event_dict",
]
