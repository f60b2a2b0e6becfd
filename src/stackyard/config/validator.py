"""Validation utilities for Stackyard configuration.

Configuration is merged from several places (environment variables, the
YAML file, CLI flags) before it is validated, so a bare pydantic error
says *what* is wrong but not *where* the value came from. The helpers here
keep a map from dotted field paths to their origin and fold it into the
flattened messages.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError


def dotted_keys(data: Mapping[str, Any], prefix: str = "") -> list[str]:
    """List the dotted paths of every leaf value in a nested mapping.

    Example:
        >>> dotted_keys({"server": {"port": 1, "host": "x"}, "stack_name": "s"})
        ['server.port', 'server.host', 'stack_name']
    """
    keys: list[str] = []
    for key, value in data.items():
        path = f"{prefix}{key}"
        if isinstance(value, Mapping) and value:
            keys.extend(dotted_keys(value, f"{path}."))
        else:
            keys.append(path)
    return keys


def origin_of(field_path: str, origins: Mapping[str, str]) -> str | None:
    """Return the origin of ``field_path`` or of its closest recorded parent.

    List indices and nested model fields resolve to the key that supplied
    the enclosing value (``server.cors_origins.0`` → ``server.cors_origins``).
    """
    parts = field_path.split(".")
    while parts:
        origin = origins.get(".".join(parts))
        if origin is not None:
            return origin
        parts.pop()
    return None


def flatten_pydantic_errors(
    exc: PydanticValidationError, origins: Mapping[str, str] | None = None
) -> list[str]:
    """Flatten Pydantic ValidationError into human-readable messages.

    Args:
        exc: Pydantic ValidationError exception
        origins: Dotted field path to a description of where the value came
            from (``STACKYARD_PORT``, ``stackyard.yml``, ``--port``)

    Returns:
        List of human-readable error messages, one per field error
    """
    errors: list[str] = []

    for error in exc.errors():
        loc = error.get("loc", ())
        field_path = ".".join(str(item) for item in loc) if loc else "unknown"

        label = f"Field '{field_path}'"
        origin = origin_of(field_path, origins or {})
        if origin:
            label += f" (from {origin})"

        msg = error.get("msg", "Unknown error")
        if error.get("type", "") == "value_error":
            errors.append(f"{label}: {msg} (received: {error.get('input')!r})")
        else:
            errors.append(f"{label}: {msg}")

    return errors if errors else ["Validation failed with unknown error"]
