"""Pydantic models for control-plane configuration.

This module defines the configuration schema for a Stackyard control plane:
the image registry, default resource limits and routing for deployed
services, filesystem locations, and lifecycle timeouts.
"""

import re
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stackyard.models.app import HOSTNAME_PATTERN

MEMORY_PATTERN = re.compile(r"^\d+[KMG]$")
STACK_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


class RegistryConfig(BaseModel):
    """Container registry that built images are published to.

    Attributes:
        url: Registry host (and optional port), e.g. ``localhost:5000``
        tag: Tag applied to every published image
    """

    model_config = ConfigDict(extra="forbid")

    url: str = Field(default="localhost:5000", description="Registry host")
    tag: str = Field(default="latest", description="Tag for published images")


class ResourceLimits(BaseModel):
    """Per-replica resource limits written into each service block.

    Attributes:
        cpus: CPU share as a decimal string (e.g. "0.50")
        memory: Memory limit with unit suffix (e.g. 256M)
    """

    model_config = ConfigDict(extra="forbid")

    cpus: str = Field(default="0.50", description="CPU limit per replica")
    memory: str = Field(default="256M", description="Memory limit per replica")

    @field_validator("cpus")
    @classmethod
    def validate_cpus(cls, v: str) -> str:
        """Validate CPU limit is a positive decimal."""
        try:
            value = float(v)
        except ValueError as e:
            raise ValueError(f"Invalid cpus value: {v}. Must be a decimal.") from e
        if value <= 0:
            raise ValueError(f"Invalid cpus value: {v}. Must be positive.")
        return v

    @field_validator("memory")
    @classmethod
    def validate_memory(cls, v: str) -> str:
        """Validate memory format (e.g., 256M, 1G)."""
        if not MEMORY_PATTERN.match(v):
            raise ValueError(
                f"Invalid memory format: {v}. Must be a number followed by K, M or G."
            )
        return v


class RoutingConfig(BaseModel):
    """Reverse-proxy routing applied to every deployed application.

    Attributes:
        domain_suffix: Suffix appended to the app name to form its host
        entrypoint: Router entrypoint name
        app_port: Port the application listens on inside its container
        network: Overlay network shared by the router and the apps
    """

    model_config = ConfigDict(extra="forbid")

    domain_suffix: str = Field(default="localhost", description="Host suffix")
    entrypoint: str = Field(default="web", description="Router entrypoint")
    app_port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=3000, description="Container port of deployed apps"
    )
    network: str = Field(default="stackyard_overlay", description="Overlay network")

    @field_validator("domain_suffix")
    @classmethod
    def validate_domain_suffix(cls, v: str) -> str:
        """Validate the suffix is a hostname."""
        if not HOSTNAME_PATTERN.match(v):
            raise ValueError(f"Invalid domain suffix: {v}. Must be a DNS hostname.")
        return v


class ServerConfig(BaseModel):
    """HTTP control-plane listener settings."""

    model_config = ConfigDict(extra="forbid")

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=3030, description="Listen port"
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:4173"],
        description="Allowed CORS origins",
    )


class PlatformConfig(BaseModel):
    """Top-level control-plane configuration.

    Attributes:
        manifest_path: Declarative manifest document (compose file)
        workspace_root: Directory where job workspaces are created
        stack_name: Orchestrator stack the manifest is deployed as
        registry: Image registry configuration
        resources: Default resource limits for new service blocks
        routing: Reverse-proxy routing configuration
        server: HTTP listener configuration
        event_buffer_size: Capacity of the status event ring buffer
        shutdown_grace_seconds: Time in-flight jobs get to finish on shutdown
        teardown_timeout_seconds: Upper bound on orchestrator teardown
        teardown_on_shutdown: Remove the stack when the control plane stops
        control_plane_container: Container to detach from the overlay network
    """

    model_config = ConfigDict(extra="forbid")

    manifest_path: Path = Field(
        default=Path("stack.yml"), description="Manifest document path"
    )
    workspace_root: Path = Field(
        default=Path.home() / ".cache" / "stackyard",
        description="Root directory for job workspaces",
    )
    stack_name: str = Field(default="stackyard", description="Orchestrator stack")
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    resources: ResourceLimits = Field(default_factory=ResourceLimits)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    event_buffer_size: Annotated[int, Field(ge=1)] = Field(
        default=256, description="Status event ring buffer capacity"
    )
    shutdown_grace_seconds: Annotated[float, Field(ge=0)] = Field(
        default=30.0, description="Grace period for in-flight jobs"
    )
    teardown_timeout_seconds: Annotated[float, Field(gt=0)] = Field(
        default=20.0, description="Timeout for orchestrator teardown"
    )
    teardown_on_shutdown: bool = Field(
        default=True, description="Remove the stack on shutdown"
    )
    control_plane_container: str | None = Field(
        default=None, description="Container to detach from the overlay network"
    )

    @field_validator("stack_name")
    @classmethod
    def validate_stack_name(cls, v: str) -> str:
        """Validate stack name pattern."""
        if not STACK_NAME_PATTERN.match(v):
            raise ValueError(
                f"Invalid stack name: {v}. "
                "Must contain only lowercase letters, numbers, '_' and '-'"
            )
        return v
