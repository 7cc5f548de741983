"""Deployment policy and aggregate result models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from rollwright.models.artifacts import ArtifactReference
from rollwright.models.rollout import RolloutOutcome
from rollwright.models.targets import TargetStatus

EXIT_SUCCESS = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_TOTAL_FAILURE = 2


class DeploymentPolicy(str, Enum):
    HALT_ON_FAILURE = "halt"
    BEST_EFFORT = "best-effort"


class DeploymentOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class TargetOutcome(BaseModel):
    """What happened to one target during a deployment."""

    model_config = ConfigDict(frozen=True)

    target_id: str
    status: TargetStatus = TargetStatus.UNKNOWN
    attempted: bool = True
    rollout_outcome: RolloutOutcome | None = None
    error_code: str = ""
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return (
            self.rollout_outcome == RolloutOutcome.SUCCESS
            and self.status == TargetStatus.HEALTHY
        )


class DeploymentResult(BaseModel):
    """Aggregate of per-target outcomes, in request order."""

    model_config = ConfigDict(frozen=True)

    deployment_id: str
    artifact: ArtifactReference | None = None
    policy: DeploymentPolicy
    outcomes: list[TargetOutcome] = []
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime | None = None
    error_code: str = ""  # set when the deployment failed before any target
    detail: str = ""

    def outcome_for(self, target_id: str) -> TargetOutcome | None:
        return next((o for o in self.outcomes if o.target_id == target_id), None)

    @property
    def overall(self) -> DeploymentOutcome:
        succeeded = sum(1 for o in self.outcomes if o.succeeded)
        if self.outcomes and succeeded == len(self.outcomes):
            return DeploymentOutcome.SUCCESS
        if succeeded:
            return DeploymentOutcome.PARTIAL
        return DeploymentOutcome.FAILED

    @property
    def exit_code(self) -> int:
        return {
            DeploymentOutcome.SUCCESS: EXIT_SUCCESS,
            DeploymentOutcome.PARTIAL: EXIT_PARTIAL_FAILURE,
            DeploymentOutcome.FAILED: EXIT_TOTAL_FAILURE,
        }[self.overall]
