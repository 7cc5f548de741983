"""Rollwright: infrastructure convergence and safe container rollouts.

  - Artifact references resolved to immutable digests before any rollout
  - Idempotent, hash-short-circuited infrastructure convergence
  - Per-target rollout state machine with health checks and rollback
  - Hash-chained rollout audit log in SQLite
  - Halt-on-failure and best-effort multi-target deployments
"""

__version__ = "0.1.0"
__description__ = "Infrastructure convergence and health-checked container rollouts"

from rollwright.core.orchestrator import DeploymentOrchestrator

__all__ = ["DeploymentOrchestrator", "__version__"]
