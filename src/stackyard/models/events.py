"""Deployment status events broadcast on the status event bus."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DeploymentPhase(str, Enum):
    """States of the deployment pipeline, in execution order."""

    RECEIVED = "received"
    VALIDATING = "validating"
    FETCHING_SOURCE = "fetching_source"
    PREPARING_BUILD_SPEC = "preparing_build_spec"
    BUILDING = "building"
    PUBLISHING = "publishing"
    RESOLVING = "resolving"
    MUTATING_MANIFEST = "mutating_manifest"
    RECONCILING = "reconciling"
    COMPLETED = "completed"
    FAILED = "failed"


class Severity(str, Enum):
    """Severity of a status event."""

    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    ERROR = "error"
    TERMINAL = "terminal"


class StatusEvent(BaseModel):
    """One pipeline progress notification.

    Immutable once constructed; serialized with camelCase keys for clients.

    Attributes:
        app_name: Application the event refers to
        phase: Pipeline phase that produced the event
        severity: in_progress, success, error or terminal
        message: Human-readable description
        timestamp: Emission time (UTC)
        payload: Optional structured data (e.g. the deployment summary)
        job_id: Identifier of the job that emitted the event, if any
    """

    model_config = ConfigDict(
        frozen=True, populate_by_name=True, alias_generator=to_camel
    )

    type: Literal["status"] = "status"
    app_name: str
    phase: DeploymentPhase
    severity: Severity
    message: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: dict[str, Any] | None = None
    job_id: str | None = None

    @property
    def is_final(self) -> bool:
        """Whether this is the last event a job emits."""
        return self.phase == DeploymentPhase.FAILED or (
            self.phase == DeploymentPhase.COMPLETED
            and self.severity == Severity.TERMINAL
        )

    def to_json(self) -> str:
        """Serialize with camelCase keys."""
        return self.model_dump_json(by_alias=True)


class LagNotice(BaseModel):
    """Delivered to a subscriber in place of events it fell too far behind on."""

    model_config = ConfigDict(frozen=True)

    type: Literal["lagged"] = "lagged"
    missed: int = Field(..., ge=1, description="Number of events skipped")

    def to_json(self) -> str:
        """Serialize for transport."""
        return self.model_dump_json()
