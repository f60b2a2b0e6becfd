"""Read-back model of a manifest service block."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stackyard.models.app import ApplicationSpec
from stackyard.models.config import ResourceLimits


class ServiceBlock(BaseModel):
    """A service declaration as parsed back from the manifest document.

    Attributes:
        name: Service key (the application name)
        image: Image reference the service runs
        replicas: Desired replica count
        resources: Resource limits, if declared
        labels: Deploy labels (routing rules and ``com.stackyard.*`` metadata)
        environment: Environment variables
        networks: Networks the service is attached to
    """

    model_config = ConfigDict(extra="ignore")

    name: str
    image: str | None = None
    replicas: int | None = Field(default=None, ge=0)
    resources: ResourceLimits | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    environment: dict[str, str] = Field(default_factory=dict)
    networks: list[str] = Field(default_factory=list)

    @classmethod
    def from_compose(cls, name: str, body: dict[str, Any]) -> ServiceBlock:
        """Build a ServiceBlock from the parsed mapping under the service key.

        Labels and environment may be given either as ``KEY=value`` lists
        or as mappings, as both forms are valid in compose files.
        """
        deploy = body.get("deploy") or {}
        limits = ((deploy.get("resources") or {}).get("limits")) or None
        resources = None
        if limits:
            resources = ResourceLimits(
                cpus=str(limits.get("cpus", ResourceLimits().cpus)),
                memory=str(limits.get("memory", ResourceLimits().memory)),
            )
        return cls(
            name=name,
            image=body.get("image"),
            replicas=deploy.get("replicas"),
            resources=resources,
            labels=_as_mapping(deploy.get("labels")),
            environment=_as_mapping(body.get("environment")),
            networks=list(body.get("networks") or []),
        )

    def to_spec(self) -> ApplicationSpec:
        """Reconstruct the ApplicationSpec recorded in the block's labels."""
        return ApplicationSpec.from_labels(self.labels, self.environment)


def _as_mapping(value: Any) -> dict[str, str]:
    if not value:
        return {}
    if isinstance(value, dict):
        return {str(k): "" if v is None else str(v) for k, v in value.items()}
    mapping: dict[str, str] = {}
    for item in value:
        key, _, val = str(item).partition("=")
        mapping[key] = val
    return mapping
