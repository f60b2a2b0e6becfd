"""Configuration loader for the Stackyard control plane.

This module provides the ConfigLoader class for loading, parsing, and
validating control-plane configuration from YAML files and the environment.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from stackyard.config.defaults import DEFAULT_CONFIG_FILENAMES
from stackyard.config.env_loader import load_env_file, substitute_env_vars
from stackyard.config.validator import dotted_keys, flatten_pydantic_errors
from stackyard.lib.errors import ConfigError
from stackyard.lib.logging_config import get_logger
from stackyard.models.config import PlatformConfig

logger = get_logger(__name__)

# Dotted config field to environment variable mapping
ENV_VAR_MAP = {
    "manifest_path": "STACKYARD_MANIFEST_PATH",
    "workspace_root": "STACKYARD_WORKSPACE_ROOT",
    "stack_name": "STACKYARD_STACK_NAME",
    "registry.url": "STACKYARD_REGISTRY_URL",
    "routing.domain_suffix": "STACKYARD_DOMAIN_SUFFIX",
    "routing.network": "STACKYARD_NETWORK",
    "server.host": "STACKYARD_HOST",
    "server.port": "STACKYARD_PORT",
    "event_buffer_size": "STACKYARD_EVENT_BUFFER_SIZE",
    "shutdown_grace_seconds": "STACKYARD_SHUTDOWN_GRACE_SECONDS",
    "teardown_timeout_seconds": "STACKYARD_TEARDOWN_TIMEOUT_SECONDS",
    "teardown_on_shutdown": "STACKYARD_TEARDOWN_ON_SHUTDOWN",
    "control_plane_container": "STACKYARD_CONTROL_PLANE_CONTAINER",
}


def _set_dotted(target: dict[str, Any], dotted: str, value: Any) -> None:
    """Set ``a.b.c`` style keys into nested dictionaries (in-place)."""
    *parents, leaf = dotted.split(".")
    node = target
    for key in parents:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[leaf] = value


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    """Deep merge override dict into base dict (in-place).

    For nested dicts, merging is recursive.
    For other types, override completely replaces base.
    """
    for key, override_value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(override_value, dict)
        ):
            _deep_merge(base[key], override_value)
        else:
            base[key] = override_value


class ConfigLoader:
    """Loads and validates control-plane configuration.

    Configuration precedence (highest to lowest):
    1. Explicit overrides (CLI flags)
    2. The YAML configuration file
    3. ``STACKYARD_*`` environment variables
    4. Built-in defaults
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        """Initialize the loader.

        Args:
            env: Environment to read overrides from (defaults to ``os.environ``)
        """
        self._env = env

    @property
    def env(self) -> Mapping[str, str]:
        return os.environ if self._env is None else self._env

    def find_config_file(self, directory: Path | None = None) -> Path | None:
        """Return the first ``stackyard.yml``/``stackyard.yaml`` in ``directory``."""
        base = directory or Path.cwd()
        for filename in DEFAULT_CONFIG_FILENAMES:
            candidate = base / filename
            if candidate.is_file():
                return candidate
        return None

    def parse_yaml(self, file_path: Path) -> dict[str, Any]:
        """Parse a YAML file after ``${VAR}`` substitution.

        Raises:
            ConfigError: If the file cannot be read or parsed
        """
        try:
            raw_text = file_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(
                "config_file", f"Configuration file not found at {file_path}"
            ) from e

        substituted = substitute_env_vars(raw_text, dict(self.env))
        try:
            content = yaml.safe_load(substituted)
        except yaml.YAMLError as e:
            raise ConfigError(
                "yaml_parse", f"Failed to parse YAML file {file_path}: {str(e)}"
            ) from e

        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigError(
                "yaml_parse", f"{file_path} must contain a mapping at the top level"
            )
        return content

    def env_overrides(self) -> dict[str, Any]:
        """Collect ``STACKYARD_*`` overrides as a nested dictionary."""
        overrides: dict[str, Any] = {}
        for dotted, env_var_name in ENV_VAR_MAP.items():
            value = self.env.get(env_var_name)
            if value:
                _set_dotted(overrides, dotted, value)
        return overrides

    def env_origins(self) -> dict[str, str]:
        """Map each dotted key set from the environment to its variable name."""
        return {
            dotted: env_var_name
            for dotted, env_var_name in ENV_VAR_MAP.items()
            if self.env.get(env_var_name)
        }

    def load(
        self,
        config_path: Path | str | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> PlatformConfig:
        """Resolve the effective PlatformConfig.

        Args:
            config_path: Explicit YAML file; searched in the working
                directory when omitted
            overrides: Dotted-key overrides (e.g. ``{"server.port": 8080}``);
                ``None`` values are ignored

        Returns:
            Validated PlatformConfig

        Raises:
            ConfigError: If the file is invalid or validation fails
        """
        merged = self.env_overrides()
        origins = self.env_origins()

        path = Path(config_path) if config_path else self.find_config_file()
        if path is not None:
            logger.debug(f"Loading configuration from {path}")
            content = self.parse_yaml(path)
            _deep_merge(merged, content)
            origins.update(dict.fromkeys(dotted_keys(content), path.name))

        cli_overrides: dict[str, Any] = {}
        for dotted, value in (overrides or {}).items():
            if value is not None:
                _set_dotted(cli_overrides, dotted, value)
                origins[dotted] = "command line"
        _deep_merge(merged, cli_overrides)

        try:
            return PlatformConfig(**merged)
        except PydanticValidationError as e:
            error_text = "\n".join(flatten_pydantic_errors(e, origins))
            source = f" in {path}" if path else ""
            raise ConfigError(
                "platform_validation",
                f"Invalid control plane configuration{source}:\n{error_text}",
            ) from e


def load_platform_config(
    config_path: Path | str | None = None,
    overrides: Mapping[str, Any] | None = None,
    env_file: Path | str | None = ".env",
) -> PlatformConfig:
    """Load ``.env`` and resolve the control-plane configuration in one call.

    Args:
        config_path: Optional YAML configuration file
        overrides: Dotted-key overrides from CLI flags
        env_file: Dotenv file loaded before resolving (None to skip)

    Returns:
        Validated PlatformConfig
    """
    if env_file:
        loaded = load_env_file(env_file)
        if loaded:
            logger.debug(f"Loaded {len(loaded)} variable(s) from {env_file}")
    return ConfigLoader().load(config_path, overrides)
