"""
agent-governance — configuration schema and validation.

File: src/agent_governance/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown keys so typos never silently fall back to defaults.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from agent_governance.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_DB_FILENAME,
    PII_PATTERN_NAMES,
    REDACTION_STRATEGIES,
    STATE_DIR,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
DEEP_LINK_KINDS: Final[tuple[str, ...]] = ("task", "document", "message")
REDACTED_VALUE: Final[str] = "***REDACTED***"

_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "credential", "credentials", "auth"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("database", "path"), ("workspace", "root"))


class MetaConfig(TypedDict):
    schema_version: int


class DatabaseConfig(TypedDict):
    path: str
    busy_timeout_ms: int


class WorkspaceConfig(TypedDict):
    root: str


class BudgetsConfig(TypedDict):
    alert_threshold: float
    hard_limit: bool
    default_max_output_tokens: int


class RetentionConfig(TypedDict):
    default_days: int
    sample_rate: float


class RiskConfig(TypedDict):
    high_risk_threshold: int


class PromotionConfig(TypedDict):
    default_model: str
    cost_change_threshold_percent: float


class DeepLinksConfig(TypedDict):
    task: str
    document: str
    message: str


class OpsConfig(TypedDict):
    deep_links: DeepLinksConfig


class RedactionConfig(TypedDict):
    enabled: bool
    strategy: Literal["mask", "hash", "drop", "summarize"]
    patterns: list[str]


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    json_logs: bool


class GovernanceConfig(TypedDict):
    meta: MetaConfig
    database: DatabaseConfig
    workspace: WorkspaceConfig
    budgets: BudgetsConfig
    retention: RetentionConfig
    risk: RiskConfig
    promotion: PromotionConfig
    ops: OpsConfig
    redaction: RedactionConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[GovernanceConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "database": {
        "path": (STATE_DIR / DEFAULT_DB_FILENAME).as_posix(),
        "busy_timeout_ms": 5_000,
    },
    "workspace": {
        "root": "workspace",
    },
    "budgets": {
        "alert_threshold": 0.8,
        "hard_limit": True,
        "default_max_output_tokens": 1_000,
    },
    "retention": {
        "default_days": 90,
        "sample_rate": 0.1,
    },
    "risk": {
        "high_risk_threshold": 50,
    },
    "promotion": {
        "default_model": "gpt-4o-mini",
        "cost_change_threshold_percent": 20.0,
    },
    "ops": {
        "deep_links": {
            "task": "",
            "document": "",
            "message": "",
        },
    },
    "redaction": {
        "enabled": True,
        "strategy": "mask",
        "patterns": [],
    },
    "observability": {
        "log_level": "INFO",
        "json_logs": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> GovernanceConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade governance.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the agent-governance runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    sections = {
        "meta": _validate_meta,
        "database": _validate_database,
        "workspace": _validate_workspace,
        "budgets": _validate_budgets,
        "retention": _validate_retention,
        "risk": _validate_risk,
        "promotion": _validate_promotion,
        "ops": _validate_ops,
        "redaction": _validate_redaction,
        "observability": _validate_observability,
    }
    _reject_unknown_keys(payload, set(sections), "", issues)
    _require_keys(payload, set(sections), "", issues)

    out: dict[str, Any] = {}
    for key in sorted(sections):
        raw = payload.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is None:
            continue
        out[key] = sections[key](section, key, issues)
    return out


def _validate_meta(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)
    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(payload["schema_version"], _join(path, "schema_version"), issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_database(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"path", "busy_timeout_ms"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "path" in payload:
        db_path = _as_str(payload["path"], _join(path, "path"), issues)
        if db_path is not None:
            if "\x00" in db_path:
                issues.add(_join(path, "path"), "must not contain NUL bytes")
            else:
                out["path"] = db_path
    if "busy_timeout_ms" in payload:
        timeout = _as_int(payload["busy_timeout_ms"], _join(path, "busy_timeout_ms"), issues, minimum=0)
        if timeout is not None:
            out["busy_timeout_ms"] = timeout
    return out


def _validate_workspace(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"root"}, path, issues)
    _require_keys(payload, {"root"}, path, issues)
    out: dict[str, Any] = {}
    if "root" in payload:
        root = _as_str(payload["root"], _join(path, "root"), issues)
        if root is not None:
            if "\x00" in root:
                issues.add(_join(path, "root"), "must not contain NUL bytes")
            else:
                out["root"] = root
    return out


def _validate_budgets(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"alert_threshold", "hard_limit", "default_max_output_tokens"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "alert_threshold" in payload:
        threshold = _as_float(payload["alert_threshold"], _join(path, "alert_threshold"), issues)
        if threshold is not None:
            if not 0.0 < threshold <= 1.0:
                issues.add(_join(path, "alert_threshold"), "must be in (0, 1]")
            else:
                out["alert_threshold"] = threshold
    if "hard_limit" in payload:
        hard_limit = _as_bool(payload["hard_limit"], _join(path, "hard_limit"), issues)
        if hard_limit is not None:
            out["hard_limit"] = hard_limit
    if "default_max_output_tokens" in payload:
        tokens = _as_int(
            payload["default_max_output_tokens"],
            _join(path, "default_max_output_tokens"),
            issues,
            minimum=1,
        )
        if tokens is not None:
            out["default_max_output_tokens"] = tokens
    return out


def _validate_retention(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"default_days", "sample_rate"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "default_days" in payload:
        days = _as_int(payload["default_days"], _join(path, "default_days"), issues, minimum=1)
        if days is not None:
            out["default_days"] = days
    if "sample_rate" in payload:
        rate = _as_float(payload["sample_rate"], _join(path, "sample_rate"), issues, minimum=0.0)
        if rate is not None:
            if rate > 1.0:
                issues.add(_join(path, "sample_rate"), "must be <= 1")
            else:
                out["sample_rate"] = rate
    return out


def _validate_risk(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"high_risk_threshold"}, path, issues)
    _require_keys(payload, {"high_risk_threshold"}, path, issues)
    out: dict[str, Any] = {}
    if "high_risk_threshold" in payload:
        threshold = _as_int(
            payload["high_risk_threshold"], _join(path, "high_risk_threshold"), issues, minimum=0
        )
        if threshold is not None:
            if threshold > 100:
                issues.add(_join(path, "high_risk_threshold"), "must be <= 100")
            else:
                out["high_risk_threshold"] = threshold
    return out


def _validate_promotion(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"default_model", "cost_change_threshold_percent"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "default_model" in payload:
        model = _as_str(payload["default_model"], _join(path, "default_model"), issues)
        if model is not None:
            out["default_model"] = model
    if "cost_change_threshold_percent" in payload:
        key_path = _join(path, "cost_change_threshold_percent")
        percent = _as_float(payload["cost_change_threshold_percent"], key_path, issues)
        if percent is not None:
            if percent <= 0:
                issues.add(key_path, "must be > 0")
            else:
                out["cost_change_threshold_percent"] = percent
    return out


def _validate_ops(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"deep_links"}, path, issues)
    out: dict[str, Any] = {"deep_links": {kind: "" for kind in DEEP_LINK_KINDS}}
    raw_links = payload.get("deep_links")
    if raw_links is None:
        return out
    links_path = _join(path, "deep_links")
    links = _as_object(raw_links, links_path, issues)
    if links is None:
        return out
    _reject_unknown_keys(links, set(DEEP_LINK_KINDS), links_path, issues)
    for kind in DEEP_LINK_KINDS:
        if kind not in links:
            continue
        value = links[kind]
        key_path = _join(links_path, kind)
        if not isinstance(value, str):
            issues.add(key_path, f"expected string, got {type(value).__name__}")
            continue
        template = value.strip()
        if template and "{id}" not in template:
            issues.add(key_path, "deep link template must contain '{id}'")
            continue
        out["deep_links"][kind] = template
    return out


def _validate_redaction(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"enabled", "strategy", "patterns"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "enabled" in payload:
        enabled = _as_bool(payload["enabled"], _join(path, "enabled"), issues)
        if enabled is not None:
            out["enabled"] = enabled
    if "strategy" in payload:
        strategy = _as_enum(
            payload["strategy"], _join(path, "strategy"), issues, allowed_values=REDACTION_STRATEGIES
        )
        if strategy is not None:
            out["strategy"] = strategy
    if "patterns" in payload:
        key_path = _join(path, "patterns")
        raw = payload["patterns"]
        if isinstance(raw, str) or not isinstance(raw, Sequence):
            issues.add(key_path, f"expected list of pattern names, got {type(raw).__name__}")
        else:
            names: list[str] = []
            for index, item in enumerate(raw):
                name = _as_enum(
                    item, f"{key_path}[{index}]", issues, allowed_values=PII_PATTERN_NAMES
                )
                if name is not None and name not in names:
                    names.append(name)
            out["patterns"] = names
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"log_level", "json_logs"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "log_level" in payload:
        level = _as_enum(
            payload["log_level"], _join(path, "log_level"), issues, allowed_values=LOG_LEVELS
        )
        if level is not None:
            out["log_level"] = level
    if "json_logs" in payload:
        json_logs = _as_bool(payload["json_logs"], _join(path, "json_logs"), issues)
        if json_logs is not None:
            out["json_logs"] = json_logs
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(key_path, "embedded secret values are forbidden in governance config")
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def looks_sensitive_key(key: str) -> bool:
    """Return ``True`` when ``key`` names something that must not be logged."""

    return _looks_sensitive_key(key)


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: copy.deepcopy(value[key]) for key in sorted(value)}


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if isinstance(key, str) and _looks_sensitive_key(key):
                out[key] = REDACTED_VALUE
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEEP_LINK_KINDS",
    "DEFAULT_CONFIG",
    "GovernanceConfig",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "REDACTED_VALUE",
    "assert_valid_config",
    "default_config",
    "looks_sensitive_key",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
