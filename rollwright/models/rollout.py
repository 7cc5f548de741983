"""Rollout state machine models and the rollout audit record."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from rollwright.models.artifacts import ArtifactReference


class RolloutState(str, Enum):
    """States of a single rollout attempt."""

    IDLE = "idle"
    PULLING = "pulling"
    STOPPING = "stopping"
    STARTING = "starting"
    HEALTH_CHECKING = "health_checking"
    HEALTHY = "healthy"
    ROLLING_BACK = "rolling_back"
    FAILED = "failed"


# Enforced by RolloutAttempt.to.  HEALTHY and FAILED are
# terminal for an attempt; IDLE is only re-entered after a rollback.
VALID_TRANSITIONS: dict[RolloutState, set[RolloutState]] = {
    RolloutState.IDLE: {RolloutState.PULLING},
    RolloutState.PULLING: {RolloutState.STOPPING, RolloutState.FAILED},
    RolloutState.STOPPING: {RolloutState.STARTING, RolloutState.FAILED},
    RolloutState.STARTING: {
        RolloutState.HEALTH_CHECKING,
        RolloutState.ROLLING_BACK,
        RolloutState.FAILED,
    },
    RolloutState.HEALTH_CHECKING: {
        RolloutState.HEALTHY,
        RolloutState.ROLLING_BACK,
        RolloutState.FAILED,
    },
    RolloutState.ROLLING_BACK: {RolloutState.IDLE, RolloutState.FAILED},
    RolloutState.HEALTHY: set(),
    RolloutState.FAILED: set(),
}

TERMINAL_STATES = frozenset({RolloutState.HEALTHY, RolloutState.FAILED})


class RolloutOutcome(str, Enum):
    SUCCESS = "success"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class RolloutRecord(BaseModel):
    """One rollout attempt, appended to the ledger once it has finished.

    ``previous_record_hash`` and ``record_hash`` chain the records of one
    target together; both are filled in by ``RolloutLedger.append``.
    """

    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    target_id: str
    artifact: ArtifactReference
    previous_artifact: ArtifactReference | None = None
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    outcome: RolloutOutcome
    transitions: list[str] = []  # "from->to", in order
    error_code: str = ""
    detail: str = ""
    previous_record_hash: str = ""
    record_hash: str = ""
