"""Environment variable loading and ``${VAR}`` substitution."""

from __future__ import annotations

import os
import re
from pathlib import Path

from dotenv import dotenv_values, load_dotenv

from stackyard.lib.errors import ConfigError

ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def load_env_file(path: str | Path = ".env", override: bool = False) -> dict[str, str]:
    """Load a dotenv file into ``os.environ``.

    Args:
        path: Path of the dotenv file; a missing file is not an error
        override: Whether file values replace variables already set

    Returns:
        The variables defined in the file (empty if it does not exist)
    """
    env_path = Path(path)
    if not env_path.is_file():
        return {}
    load_dotenv(env_path, override=override)
    return {key: value for key, value in dotenv_values(env_path).items() if value is not None}


def get_env_var(name: str, default: str | None = None) -> str | None:
    """Return an environment variable, or ``default`` when unset or empty."""
    value = os.environ.get(name)
    return value if value else default


def substitute_env_vars(text: str, env: dict[str, str] | None = None) -> str:
    """Replace every ``${VAR}`` reference in ``text``.

    Args:
        text: Raw text (typically a YAML document)
        env: Variables to resolve against (defaults to ``os.environ``)

    Returns:
        Text with references replaced by their values

    Raises:
        ConfigError: If a referenced variable is not set

    Example:
        >>> substitute_env_vars("url: ${HOST}:5000", {"HOST": "registry"})
        'url: registry:5000'
    """
    variables = os.environ if env is None else env

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in variables:
            raise ConfigError(name, f"environment variable '{name}' is not set")
        return variables[name]

    return ENV_REFERENCE.sub(_replace, text)
