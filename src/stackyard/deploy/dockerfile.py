"""Dockerfile generation from language presets.

Each ``AppKind`` maps to a ``BuildPreset`` (base image, install and run
commands). An application's install/build/run overrides replace the
preset values. A repository that ships its own Dockerfile keeps it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from jinja2 import Template

from stackyard.lib.errors import ValidationError
from stackyard.models.app import AppKind, ApplicationSpec

# Jinja2 template for generating Dockerfiles
STACKYARD_DOCKERFILE_TEMPLATE = """\
# Stackyard application image
# Auto-generated Dockerfile for {{ app_name }} ({{ kind }} preset)
# Generated at: {{ created }}

FROM {{ base_image }}

{% for key, value in labels.items() %}
LABEL {{ key }}={{ value | tojson_str }}
{% endfor %}

WORKDIR /app
COPY . .
RUN {{ install_command }}
{% if build_command %}
RUN {{ build_command }}
{% endif %}

{% for key, value in environment.items() %}
ENV {{ key }}={{ value | tojson_str }}
{% endfor %}
ENV PORT="{{ port }}"
EXPOSE {{ port }}

CMD ["sh", "-c", {{ run_command | tojson_str }}]
"""

DOCKERIGNORE_ENTRIES = (".git", "node_modules")


@dataclass(frozen=True)
class BuildPreset:
    """Build defaults for one application kind."""

    kind: AppKind
    base_image: str
    install_command: str
    run_command: str


PRESETS: dict[AppKind, BuildPreset] = {
    AppKind.NODE: BuildPreset(
        kind=AppKind.NODE,
        base_image="oven/bun:latest",
        install_command="bun install",
        run_command="bun start",
    ),
    AppKind.PYTHON: BuildPreset(
        kind=AppKind.PYTHON,
        base_image="python:3.12-slim",
        install_command="pip install --no-cache-dir -r requirements.txt",
        run_command="python app.py",
    ),
}


def resolve_preset(kind: AppKind | str) -> BuildPreset:
    """Return the build preset for an application kind.

    Raises:
        ValidationError: If no preset exists for ``kind``
    """
    try:
        return PRESETS[AppKind(kind)]
    except (KeyError, ValueError) as e:
        supported = ", ".join(k.value for k in PRESETS)
        raise ValidationError(
            "kind", f"unsupported application kind '{kind}' (supported: {supported})"
        ) from e


def _tojson_str(value: object) -> str:
    return json.dumps(str(value), ensure_ascii=False)


def generate_dockerfile(
    spec: ApplicationSpec,
    *,
    port: int,
    labels: dict[str, str] | None = None,
) -> str:
    """Generate a Dockerfile for an application from its kind preset.

    Args:
        spec: Application being built
        port: Port the application listens on
        labels: Image labels to declare

    Returns:
        Generated Dockerfile content as a string

    Example:
        >>> spec = ApplicationSpec(name="demo", sourceURL="https://x/demo.git")
        >>> print(generate_dockerfile(spec, port=3000).splitlines()[0])
        # Stackyard application image
    """
    preset = resolve_preset(spec.kind)
    template = Template(STACKYARD_DOCKERFILE_TEMPLATE, trim_blocks=True)
    template.environment.filters["tojson_str"] = _tojson_str

    return template.render(
        app_name=spec.name,
        kind=preset.kind.value,
        created=datetime.now(timezone.utc).isoformat(),
        base_image=preset.base_image,
        labels=labels or {},
        install_command=spec.install_command or preset.install_command,
        build_command=spec.build_command,
        environment=spec.env,
        port=port,
        run_command=spec.run_command or preset.run_command,
    )


def write_build_files(
    spec: ApplicationSpec,
    context_dir: Path,
    *,
    port: int,
    labels: dict[str, str] | None = None,
) -> bool:
    """Prepare a build context for ``spec``.

    Writes a preset Dockerfile unless the context already has one, and a
    ``.dockerignore`` excluding VCS metadata and dependency folders unless
    one exists.

    Returns:
        True if a Dockerfile was generated, False if the repository's own
        Dockerfile is kept
    """
    ignore_path = context_dir / ".dockerignore"
    if not ignore_path.exists():
        ignore_path.write_text("\n".join(DOCKERIGNORE_ENTRIES) + "\n", encoding="utf-8")

    dockerfile_path = context_dir / "Dockerfile"
    if dockerfile_path.exists():
        return False

    dockerfile_path.write_text(
        generate_dockerfile(spec, port=port, labels=labels), encoding="utf-8"
    )
    return True
