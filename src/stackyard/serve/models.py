"""Request and response models for the control-plane HTTP API."""

from __future__ import annotations

from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from stackyard.config.validator import flatten_pydantic_errors
from stackyard.lib.errors import ValidationError
from stackyard.models.app import (
    APP_NAME_PATTERN,
    DEFAULT_DOMAIN_SUFFIX,
    AppInfo,
    AppKind,
    ApplicationSpec,
)


class ServerState(str, Enum):
    """Lifecycle states of the control-plane server."""

    INITIALIZING = "initializing"
    READY = "ready"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class CreateAppRequest(BaseModel):
    """Body of ``POST /create``.

    Field names follow the client's camelCase convention (``appName``,
    ``sourceURL``, ``installCommand``, ...).
    """

    model_config = ConfigDict(
        extra="ignore", populate_by_name=True, alias_generator=to_camel
    )

    app_name: str = Field(
        default="",
        validation_alias=AliasChoices("appName", "app_name", "name"),
        description="Application name",
    )
    kind: AppKind = Field(
        default=AppKind.NODE,
        validation_alias=AliasChoices("kind", "appType", "app_type"),
        description="Application profile",
    )
    source_url: str = Field(
        default="",
        validation_alias=AliasChoices("sourceURL", "sourceUrl", "githubUrl", "source_url"),
        description="Git URL of the application source",
    )
    install_command: str | None = None
    build_command: str | None = None
    run_command: str | None = None
    workdir: str | None = None
    env: dict[str, str] = Field(default_factory=dict)

    def to_spec(self, domain_suffix: str = DEFAULT_DOMAIN_SUFFIX) -> ApplicationSpec:
        """Convert the request into an immutable ApplicationSpec.

        The routing host is always ``<app_name>.<domain_suffix>``; a client
        supplied ``domain`` is ignored along with any other unknown field.

        Args:
            domain_suffix: Suffix forming the routing host
        """
        data = self.model_dump(exclude_none=True, exclude={"app_name", "source_url"})
        if APP_NAME_PATTERN.match(self.app_name):
            data["domain"] = f"{self.app_name}.{domain_suffix}"
        try:
            return ApplicationSpec(
                name=self.app_name, source_url=self.source_url, **data
            )
        except PydanticValidationError as exc:
            messages = "; ".join(flatten_pydantic_errors(exc))
            raise ValidationError("domain", messages) from exc


class AppNameRequest(BaseModel):
    """Body of ``POST /start``, ``/stop`` and ``/remove``."""

    model_config = ConfigDict(extra="ignore")

    app_name: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("appName", "app_name", "name")
    )


class AcceptedResponse(BaseModel):
    """Acknowledgment of an accepted deployment."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    status: str = "accepted"
    app_name: str
    job_id: str
    domain: str


class OperationResponse(BaseModel):
    """Acknowledgment of a completed start/stop/remove operation."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    status: str = "success"
    app_name: str
    message: str


class AppListResponse(BaseModel):
    """Envelope returned by ``GET /apps``."""

    status: str = "success"
    apps: list[AppInfo]
    total: int


class HealthResponse(BaseModel):
    """Health check response."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    status: str
    state: ServerState
    accepting_jobs: bool
    active_jobs: int
    subscribers: int
    uptime_seconds: float
