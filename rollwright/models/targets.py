"""Deployment target models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from rollwright.models.artifacts import ArtifactReference


class TargetStatus(str, Enum):
    UNKNOWN = "unknown"
    CONVERGING = "converging"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"


class HealthCheck(BaseModel):
    """HTTP health endpoint for a target.

    ``url`` may contain ``{endpoint}``, filled in with the target's
    endpoint at probe time.
    """

    model_config = ConfigDict(frozen=True)

    url: str = "http://{endpoint}/health"
    expected_status: int = 200

    def render(self, endpoint: str | None) -> str:
        return self.url.replace("{endpoint}", endpoint or "localhost")


class WorkloadSpec(BaseModel):
    """How the container workload runs on the target."""

    model_config = ConfigDict(frozen=True)

    name: str = "app"
    ports: list[str] = []  # docker publish specs, e.g. "80:8080"
    env: dict[str, str] = {}


class DeploymentTarget(BaseModel):
    """A single host able to run one workload instance.

    Owned by the Target Registry.  Updates produce a new instance via
    ``model_copy``.
    """

    model_config = ConfigDict(frozen=True)

    target_id: str
    endpoint: str | None = None
    credentials_ref: str = ""
    current_artifact: ArtifactReference | None = None
    health_check: HealthCheck = HealthCheck()
    workload: WorkloadSpec = WorkloadSpec()
    status: TargetStatus = TargetStatus.UNKNOWN
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
