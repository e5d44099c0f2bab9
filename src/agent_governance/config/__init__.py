"""Configuration loading and validation."""

from agent_governance.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ENV_SETTINGS,
    ConfigLoadError,
    EnvSetting,
    dump_effective_config,
    env_overrides,
    load_config,
)
from agent_governance.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    GovernanceConfig,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)

__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ENV_SETTINGS",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "EnvSetting",
    "GovernanceConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "env_overrides",
    "load_config",
    "merge_config",
    "redact_config",
    "validate_config",
]
