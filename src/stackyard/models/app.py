"""Pydantic models describing deployable applications.

An ``ApplicationSpec`` is created once per deployment request and never
mutated afterwards; its fields are re-expressed as ``com.stackyard.*`` labels
on both the container image and the manifest service block so that the
application can be rediscovered later.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

LABEL_PREFIX = "com.stackyard"
DEFAULT_DOMAIN_SUFFIX = "localhost"

# DNS label: lowercase alphanumerics and hyphens, no leading/trailing hyphen
APP_NAME_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
ENV_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# Hostname: dot-separated DNS labels
HOSTNAME_PATTERN = re.compile(
    r"^(?=.{1,253}$)"
    r"[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?"
    r"(\.[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)*$"
)


class AppKind(str, Enum):
    """Application profiles; each one selects a build preset."""

    NODE = "node"
    PYTHON = "python"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApplicationSpec(BaseModel):
    """Immutable descriptor of an application to deploy.

    Attributes:
        name: Unique application key, DNS-label safe
        kind: Application profile selecting the build preset
        source_url: Git URL of the application source
        install_command: Optional override of the preset install step
        build_command: Optional build step run after install
        run_command: Optional override of the preset start command
        workdir: Optional subdirectory of the repository holding the app
        env: Extra environment variables for the running service
        domain: Routing host, derived as ``<name>.localhost`` when omitted
        created_at: Creation timestamp, derived when omitted
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    name: str = Field(default="", description="Unique application name")
    kind: AppKind = Field(default=AppKind.NODE, description="Application profile")
    source_url: str = Field(
        default="", alias="sourceURL", description="Source repository URL"
    )
    install_command: str | None = Field(
        default=None, description="Override of the preset install command"
    )
    build_command: str | None = Field(default=None, description="Build command")
    run_command: str | None = Field(
        default=None, description="Override of the preset run command"
    )
    workdir: str | None = Field(
        default=None, description="Application subdirectory in the repository"
    )
    env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment variables"
    )
    domain: str = Field(default="", description="Routing host for the application")
    created_at: datetime = Field(
        default_factory=_utcnow, description="Creation timestamp (UTC)"
    )

    @model_validator(mode="before")
    @classmethod
    def derive_domain(cls, data: Any) -> Any:
        """Fill ``domain`` from ``name`` when it is not given explicitly.

        Names that are not valid DNS labels get no domain; the request
        checks reject them before any job starts.
        """
        if isinstance(data, dict) and not data.get("domain"):
            name = data.get("name") or ""
            if APP_NAME_PATTERN.match(name):
                data = {**data, "domain": f"{name}.{DEFAULT_DOMAIN_SUFFIX}"}
        return data

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        """Validate the routing host is a plain hostname."""
        if v and not HOSTNAME_PATTERN.match(v):
            raise ValueError(f"Invalid domain: {v!r}. Must be a DNS hostname.")
        return v

    def image_name(self, registry: str) -> str:
        """Return the image repository for this app inside ``registry``."""
        return f"{registry}/{self.name.lower()}"

    def image_ref(self, registry: str, tag: str = "latest") -> str:
        """Return the full image reference (``registry/name:tag``)."""
        return f"{self.image_name(registry)}:{tag}"

    def to_labels(self, image: str | None = None) -> dict[str, str]:
        """Express the spec as ``com.stackyard.*`` metadata labels.

        Optional overrides are only included when set.

        Args:
            image: Optional image reference to record alongside the spec

        Returns:
            Ordered mapping of label keys to values
        """
        labels = {
            f"{LABEL_PREFIX}.name": self.name,
            f"{LABEL_PREFIX}.kind": self.kind.value,
            f"{LABEL_PREFIX}.source_url": self.source_url,
            f"{LABEL_PREFIX}.domain": self.domain,
            f"{LABEL_PREFIX}.created_at": self.created_at.isoformat(),
        }
        if image:
            labels[f"{LABEL_PREFIX}.image"] = image
        optional = {
            "install_command": self.install_command,
            "build_command": self.build_command,
            "run_command": self.run_command,
            "workdir": self.workdir,
        }
        for key, value in optional.items():
            if value:
                labels[f"{LABEL_PREFIX}.{key}"] = value
        return labels

    @classmethod
    def from_labels(
        cls, labels: dict[str, str], env: dict[str, str] | None = None
    ) -> ApplicationSpec:
        """Rebuild a spec from labels produced by ``to_labels``.

        Args:
            labels: Label mapping (extra, non-stackyard labels are ignored)
            env: Environment variables declared alongside the labels

        Returns:
            The reconstructed ApplicationSpec
        """
        prefix = f"{LABEL_PREFIX}."
        fields = {
            key[len(prefix) :]: value
            for key, value in labels.items()
            if key.startswith(prefix)
        }
        fields.pop("image", None)
        return cls.model_validate({**fields, "env": dict(env or {})})


class AppInfo(BaseModel):
    """Application entry returned by the app listing."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    app_name: str
    kind: str | None = None
    source_url: str | None = Field(default=None, alias="sourceURL")
    domain: str | None = None
    created_at: str | None = None
    image: str | None = None
    replicas: int = 0
    running: int = 0
    status: str = "unknown"
    service_id: str | None = None
