"""
jmeter-runner config package public API.

File: src/jmeter_runner/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``jmeter-runner.toml`` + ``JMETER_RUNNER_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from jmeter_runner.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    LoggingConfig,
    RunnerSettings,
    dump_effective_config,
    load_config,
    load_settings,
    normalize_paths,
)
from jmeter_runner.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    RunnerConfig,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "LoggingConfig",
    "PATH_FIELDS",
    "RunnerConfig",
    "RunnerSettings",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "load_settings",
    "merge_config",
    "migration_guidance",
    "normalize_paths",
    "redact_config",
    "validate_config",
]
