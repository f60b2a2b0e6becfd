"""Rendering of manifest service blocks and the initial manifest document."""

from __future__ import annotations

import json

from jinja2 import Environment, StrictUndefined

from stackyard.models.app import ApplicationSpec
from stackyard.models.config import RegistryConfig, ResourceLimits, RoutingConfig

DEFAULT_REGISTRY_PORT = 5000

SERVICE_BLOCK_TEMPLATE = """\
{{ name }}:
  image: {{ image | quote }}
  networks:
    - {{ network }}
  deploy:
    replicas: {{ replicas }}
    restart_policy:
      condition: on-failure
      delay: 5s
      max_attempts: 3
    resources:
      limits:
        cpus: {{ resources.cpus | quote }}
        memory: {{ resources.memory }}
    labels:
{% for label in labels %}
      - {{ label | quote }}
{% endfor %}
{% if environment %}
  environment:
{% for key, value in environment.items() %}
    {{ key }}: {{ value | quote }}
{% endfor %}
{% endif %}
"""

MANIFEST_TEMPLATE = """\
version: "3.8"

networks:
  {{ network }}:
    name: {{ network }}
    driver: overlay
    attachable: true

volumes:
  registry-data: {}

services:
  traefik:
    image: "traefik:v3.0"
    command:
      - "--providers.swarm=true"
      - "--providers.swarm.exposedbydefault=false"
      - "--providers.swarm.network={{ network }}"
      - "--entrypoints.{{ entrypoint }}.address=:80"
    ports:
      - "80:80"
    volumes:
      - /var/run/docker.sock:/var/run/docker.sock:ro
    networks:
      - {{ network }}
    deploy:
      replicas: 1
      restart_policy:
        condition: on-failure
        delay: 5s
        max_attempts: 3
      placement:
        constraints:
          - node.role == manager
  registry:
    image: "registry:2"
    ports:
      - "{{ registry_port }}:5000"
    volumes:
      - registry-data:/var/lib/registry
    networks:
      - {{ network }}
    deploy:
      replicas: 1
      restart_policy:
        condition: on-failure
        delay: 5s
        max_attempts: 3
      placement:
        constraints:
          - node.role == manager
"""


def _quote(value: object) -> str:
    # JSON strings are valid YAML double-quoted scalars
    return json.dumps(str(value), ensure_ascii=False)


_env = Environment(
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    autoescape=False,  # noqa: S701  # nosec B701 - renders YAML, not HTML
)
_env.filters["quote"] = _quote


def routing_labels(spec: ApplicationSpec, routing: RoutingConfig) -> dict[str, str]:
    """Return the reverse-proxy labels routing ``spec.domain`` to the service."""
    name = spec.name
    return {
        "traefik.enable": "true",
        f"traefik.http.routers.{name}.rule": f"Host(`{spec.domain}`)",
        f"traefik.http.routers.{name}.entrypoints": routing.entrypoint,
        f"traefik.http.services.{name}.loadbalancer.server.port": str(
            routing.app_port
        ),
        "traefik.docker.network": routing.network,
    }


def render_service_block(
    spec: ApplicationSpec,
    *,
    image: str,
    replicas: int,
    resources: ResourceLimits,
    routing: RoutingConfig,
    indent: int = 2,
) -> str:
    """Render the service block declaring ``spec``.

    Args:
        spec: Application to declare
        image: Image reference the service runs
        replicas: Desired replica count
        resources: Per-replica resource limits
        routing: Routing configuration for the reverse proxy labels
        indent: Indentation of the service key in the target document

    Returns:
        Block text, every line ending with a newline
    """
    labels = {**routing_labels(spec, routing), **spec.to_labels(image=image)}
    rendered = _env.from_string(SERVICE_BLOCK_TEMPLATE).render(
        name=spec.name,
        image=image,
        network=routing.network,
        environment=spec.env,
        replicas=replicas,
        resources=resources,
        labels=[f"{key}={value}" for key, value in labels.items()],
    )
    prefix = " " * indent
    return "".join(
        f"{prefix}{line}" if line.strip() else line
        for line in rendered.splitlines(keepends=True)
    )


def registry_port(registry: RegistryConfig) -> int:
    """Host port the bundled registry publishes, taken from the registry URL.

    Example:
        >>> registry_port(RegistryConfig(url="localhost:5001"))
        5001
    """
    _, _, port = registry.url.rpartition(":")
    return int(port) if port.isdigit() else DEFAULT_REGISTRY_PORT


def render_manifest(
    routing: RoutingConfig, registry: RegistryConfig | None = None
) -> str:
    """Render a new manifest document.

    The document declares the overlay network, the reverse proxy serving
    the routing labels and the registry images are published to.
    """
    return _env.from_string(MANIFEST_TEMPLATE).render(
        network=routing.network,
        entrypoint=routing.entrypoint,
        registry_port=registry_port(registry or RegistryConfig()),
    )
