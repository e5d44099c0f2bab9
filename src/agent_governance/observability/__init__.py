"""Observability: structlog configuration, redaction, correlation context."""

from agent_governance.observability.logging import (
    bind_context,
    configure_from_config,
    configure_logging,
    redact,
    redact_event_dict,
)

__all__ = [
    "bind_context",
    "configure_from_config",
    "configure_logging",
    "redact",
    "redact_event_dict",
]
