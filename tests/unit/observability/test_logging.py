"""
agent-governance — unit tests for observability logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate structured JSON logging with redaction and correlation metadata.

What this test file should cover
- JSON line validity and redaction guarantees.
- Correlation field propagation through bound context.
- Level filtering from the effective config.
"""

from __future__ import annotations

import io
import json
from typing import TYPE_CHECKING

import pytest
import structlog

from agent_governance.observability.logging import (
    bind_context,
    configure_from_config,
    configure_logging,
    redact,
)

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def _json_lines(stream: io.StringIO) -> list[dict[str, object]]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_json_logging_redacts_secrets_and_keeps_token_counts() -> None:
    stream = io.StringIO()
    configure_logging("INFO", json_logs=True, stream=stream)
    logger = structlog.get_logger("agent_governance.tests")

    logger.info(
        "provider_call token=tok-FAKE",
        api_key="sk-FAKE123456789012345",
        input_tokens=120,
        nested={"password": "hunter2", "safe": "ok"},
    )

    (record,) = _json_lines(stream)
    assert record["event"] == "provider_call token=***REDACTED***"
    assert record["api_key"] == "***REDACTED***"
    assert record["input_tokens"] == 120
    assert record["nested"] == {"password": "***REDACTED***", "safe": "ok"}
    assert record["level"] == "info"
    assert "timestamp" in record


def test_bound_correlation_fields_appear_on_every_event() -> None:
    stream = io.StringIO()
    configure_logging("DEBUG", stream=stream)
    logger = structlog.get_logger("agent_governance.tests")

    with bind_context(tenant_id="t1", workspace_id="ws-1", actor=None):
        logger.info("first")
        logger.debug("second")
    logger.info("outside")

    records = _json_lines(stream)
    assert [item["event"] for item in records] == ["first", "second", "outside"]
    assert records[0]["tenant_id"] == "t1"
    assert records[1]["workspace_id"] == "ws-1"
    assert "actor" not in records[0]
    assert "tenant_id" not in records[2]


def test_bind_context_rejects_unknown_keys() -> None:
    with pytest.raises(ValueError, match="unsupported correlation key"):
        with bind_context(user="alice"):
            pass


def test_configure_from_config_filters_below_level() -> None:
    stream = io.StringIO()
    configure_from_config({"observability": {"log_level": "WARNING", "json_logs": True}}, stream=stream)
    logger = structlog.get_logger("agent_governance.tests")

    logger.info("dropped")
    logger.warning("kept")

    assert [item["event"] for item in _json_lines(stream)] == ["kept"]


def test_configure_logging_rejects_unknown_level() -> None:
    with pytest.raises(ValueError, match="unsupported log level"):
        configure_logging("TRACE")


def test_redact_handles_nested_json_values() -> None:
    payload = {
        "headers": {"Authorization": "Bearer abc.def"},
        "items": ["plain", "key sk-ant-abcdefghijklmnop"],
    }
    assert redact(payload) == {
        "headers": {"Authorization": "***REDACTED***"},
        "items": ["plain", "key ***REDACTED***"],
    }
