"""
fp-harness config package public API.

Loads ``fpt.toml`` + ``FPT_`` environment overrides and validates the result
against a strict schema.
"""

from fp_harness.config.loader import (
    CONFIG_ENV_VAR,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
    locate_config_file,
    normalize_paths,
)
from fp_harness.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigValidationError,
    ConfigValidationIssue,
    HarnessConfig,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)

__all__ = [
    "CONFIG_ENV_VAR",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG",
    "ENV_PREFIX",
    "HarnessConfig",
    "PATH_FIELDS",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "locate_config_file",
    "merge_config",
    "normalize_paths",
    "validate_config",
]
