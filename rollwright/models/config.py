"""Explicit configuration objects passed into every component.

Nothing in the core reads the environment; ``RollwrightConfig`` builds a
``DeployConfig`` and callers hand it down.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class LockMode(str, Enum):
    """What a second converge on a busy target does."""

    FAIL_FAST = "fail_fast"
    BLOCK = "block"


class RetryPolicy(BaseModel):
    """Bounded exponential backoff."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 8.0
    multiplier: float = 2.0


class HealthCheckPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    probe_timeout: float = 5.0
    retry: RetryPolicy = RetryPolicy(max_attempts=6, initial_delay=1.0, max_delay=15.0)


class Timeouts(BaseModel):
    """Per-operation bounds, in seconds."""

    model_config = ConfigDict(frozen=True)

    registry: float = 10.0
    provision: float = 900.0
    refresh: float = 120.0
    remote_exec: float = 60.0
    pull: float = 300.0
    stop_grace: float = 20.0
    lock_wait: float = 30.0


class DeployConfig(BaseModel):
    """Everything the orchestrator and its components need to know."""

    model_config = ConfigDict(frozen=True)

    state_db_path: Path = Path(".rollwright/state.db")
    timeouts: Timeouts = Timeouts()
    registry_retry: RetryPolicy = RetryPolicy()
    health: HealthCheckPolicy = HealthCheckPolicy()
    convergence_lock_mode: LockMode = LockMode.FAIL_FAST
    max_parallel_targets: int = 4
    lease_ttl: float = 60.0
