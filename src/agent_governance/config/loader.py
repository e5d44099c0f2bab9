"""
agent-governance — runtime config loader.

File: src/agent_governance/config/loader.py

Purpose
- Build the effective governance config from defaults, ``governance.toml``,
  ``AGENT_GOVERNANCE_*`` environment variables and CLI overrides, in that
  order of increasing precedence.

Functional requirements
- Only the settings listed in ``ENV_SETTINGS`` can come from the environment;
  deep-link templates and the schema version are file-only.
- ``database.path`` and ``workspace.root`` resolve against the config file's
  directory so a checked-in config works from any cwd.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from agent_governance.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "governance.toml"
ENV_PREFIX: Final[str] = "AGENT_GOVERNANCE_"

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be read or an override cannot be coerced."""


def _parse_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


def _parse_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError("must be an integer") from None


def _parse_float(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError("must be a number") from None


@dataclass(frozen=True, slots=True)
class EnvSetting:
    """One governance setting that may be supplied through the environment."""

    section: str
    key: str
    parse: Callable[[str], object] = str

    @property
    def env_name(self) -> str:
        return f"{ENV_PREFIX}{self.section.upper()}_{self.key.upper()}"


ENV_SETTINGS: Final[tuple[EnvSetting, ...]] = (
    EnvSetting("database", "path"),
    EnvSetting("database", "busy_timeout_ms", _parse_int),
    EnvSetting("workspace", "root"),
    EnvSetting("budgets", "alert_threshold", _parse_float),
    EnvSetting("budgets", "hard_limit", _parse_bool),
    EnvSetting("budgets", "default_max_output_tokens", _parse_int),
    EnvSetting("retention", "default_days", _parse_int),
    EnvSetting("retention", "sample_rate", _parse_float),
    EnvSetting("risk", "high_risk_threshold", _parse_int),
    EnvSetting("promotion", "default_model"),
    EnvSetting("promotion", "cost_change_threshold_percent", _parse_float),
    EnvSetting("redaction", "enabled", _parse_bool),
    EnvSetting("redaction", "strategy"),
    EnvSetting("observability", "log_level", str.upper),
    EnvSetting("observability", "json_logs", _parse_bool),
)


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence: CLI > env > file > defaults."""

    path = (
        (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
        if config_path is None
        else Path(config_path).expanduser().resolve()
    )
    from_file = _read_toml(path, required=config_path is not None)
    from_env = env_overrides(os.environ if environ is None else environ)
    from_cli = _cli_overrides(cli_overrides or {})

    merged = merge_config(default_config(), from_file)
    merged = merge_config(merged, from_env)
    merged = merge_config(merged, from_cli)
    return _resolve_paths(assert_valid_config(merged), base_dir=path.parent)


def env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    """Collect ``AGENT_GOVERNANCE_*`` settings as a partial config payload."""

    payload: dict[str, dict[str, object]] = {}
    for setting in ENV_SETTINGS:
        raw = environ.get(setting.env_name)
        if raw is None:
            continue
        try:
            value = setting.parse(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{setting.env_name} -> {setting.section}.{setting.key} {exc}") from exc
        payload.setdefault(setting.section, {})[setting.key] = value
    return payload


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of redacted effective config."""

    return json.dumps(redact_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _cli_overrides(overrides: Mapping[str, object]) -> dict[str, dict[str, object]]:
    payload: dict[str, dict[str, object]] = {}
    for dotted, value in overrides.items():
        section, _, key = dotted.partition(".")
        if not section or not key:
            raise ConfigLoadError(f"CLI override must be 'section.key', got {dotted!r}")
        payload.setdefault(section, {})[key] = value
    return payload


def _resolve_paths(config: dict[str, Any], *, base_dir: Path) -> dict[str, Any]:
    for section, key in PATH_FIELDS:
        raw = config[section][key]
        candidate = Path(os.path.expandvars(raw)).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        config[section][key] = Path(os.path.normpath(candidate)).as_posix()
    return config


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ENV_SETTINGS",
    "EnvSetting",
    "dump_effective_config",
    "env_overrides",
    "load_config",
]
