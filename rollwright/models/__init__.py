"""Rollwright data models: all Pydantic v2, all frozen (immutable)."""

from rollwright.models.artifacts import ArtifactReference
from rollwright.models.config import (
    DeployConfig,
    HealthCheckPolicy,
    LockMode,
    RetryPolicy,
    Timeouts,
)
from rollwright.models.deployment import (
    DeploymentOutcome,
    DeploymentPolicy,
    DeploymentResult,
    TargetOutcome,
)
from rollwright.models.infra import (
    ApplyResult,
    DesiredInfraState,
    DriftReport,
    IngressRule,
    InstanceSpec,
    NetworkSpec,
    ObservedInfraState,
    ProvisionPlan,
    ResourceChange,
)
from rollwright.models.inventory import Inventory, TargetSpec
from rollwright.models.rollout import (
    VALID_TRANSITIONS,
    RolloutOutcome,
    RolloutRecord,
    RolloutState,
)
from rollwright.models.targets import (
    DeploymentTarget,
    HealthCheck,
    TargetStatus,
    WorkloadSpec,
)

__all__ = [
    # artifacts
    "ArtifactReference",
    # infra
    "InstanceSpec",
    "IngressRule",
    "NetworkSpec",
    "DesiredInfraState",
    "ObservedInfraState",
    "ResourceChange",
    "ProvisionPlan",
    "ApplyResult",
    "DriftReport",
    # targets
    "TargetStatus",
    "HealthCheck",
    "WorkloadSpec",
    "DeploymentTarget",
    # rollout
    "RolloutState",
    "RolloutOutcome",
    "RolloutRecord",
    "VALID_TRANSITIONS",
    # deployment
    "DeploymentPolicy",
    "DeploymentOutcome",
    "TargetOutcome",
    "DeploymentResult",
    # inventory
    "TargetSpec",
    "Inventory",
    # config
    "LockMode",
    "RetryPolicy",
    "HealthCheckPolicy",
    "Timeouts",
    "DeployConfig",
]
