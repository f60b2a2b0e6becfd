"""Configuration loading and validation for the Stackyard control plane.

Main components:
- ConfigLoader: Resolve PlatformConfig from YAML, environment and CLI flags
- load_platform_config: One-call helper for CLI commands
- Environment variable substitution (${VAR_NAME} pattern)
- Validation utilities for configuration data
"""

from stackyard.config.env_loader import get_env_var, load_env_file, substitute_env_vars
from stackyard.config.loader import ConfigLoader, load_platform_config

__all__ = [
    "ConfigLoader",
    "load_platform_config",
    "substitute_env_vars",
    "get_env_var",
    "load_env_file",
]
