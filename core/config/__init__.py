"""Config package facade."""

from .loader import load_config
from .schema import (
    ConfigError,
    LoadedConfig,
    RunConfiguration,
    build_run_configuration,
    default_output_dir,
)
from .validate import MAX_PROGRAM_INDEX, validate_config

__all__ = [
    "ConfigError",
    "LoadedConfig",
    "MAX_PROGRAM_INDEX",
    "RunConfiguration",
    "build_run_configuration",
    "default_output_dir",
    "load_config",
    "validate_config",
]
