"""Stable constants shared across governance components."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 2
SKILL_MANIFEST_SCHEMA_VERSION: Final[int] = 1
AUDIT_DETAILS_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the config file directory unless overridden).
STATE_DIR: Final[PurePosixPath] = PurePosixPath("state")
DEFAULT_DB_FILENAME: Final[str] = "governance.sqlite3"

# Entity id prefixes.
TRACE_ID_PREFIX: Final[str] = "trc"
AUDIT_ID_PREFIX: Final[str] = "aud"

# Pagination.
DEFAULT_PAGE_SIZE: Final[int] = 50
MAX_PAGE_SIZE: Final[int] = 1_000
DEFAULT_LOOKUP_LIMIT: Final[int] = 100

# Risk levels in ascending order of severity.
RISK_LEVELS: Final[tuple[str, ...]] = ("low", "medium", "high", "critical")

# Standard environments in promotion order.
STANDARD_ENVIRONMENTS: Final[tuple[str, ...]] = ("dev", "staging", "prod")
DEFAULT_PIN_ENVIRONMENT: Final[str] = "default"

# Tenant recorded on audit entries for entities that are not tenant-scoped (skills).
SYSTEM_TENANT_ID: Final[str] = "system"

# Built-in PII detectors, in match priority order, and how a match is rewritten.
PII_PATTERN_NAMES: Final[tuple[str, ...]] = (
    "email",
    "ssn",
    "credit_card",
    "phone",
    "ip_address",
    "api_key",
    "jwt",
    "password_field",
    "address",
    "name",
)
REDACTION_STRATEGIES: Final[tuple[str, ...]] = ("mask", "hash", "drop", "summarize")

__all__ = [
    "AUDIT_DETAILS_SCHEMA_VERSION",
    "AUDIT_ID_PREFIX",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_DB_FILENAME",
    "DEFAULT_LOOKUP_LIMIT",
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_PIN_ENVIRONMENT",
    "MAX_PAGE_SIZE",
    "PII_PATTERN_NAMES",
    "REDACTION_STRATEGIES",
    "RISK_LEVELS",
    "SKILL_MANIFEST_SCHEMA_VERSION",
    "STANDARD_ENVIRONMENTS",
    "STATE_DB_SCHEMA_VERSION",
    "STATE_DIR",
    "SYSTEM_TENANT_ID",
    "TRACE_ID_PREFIX",
]
