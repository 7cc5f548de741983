"""Desired and observed infrastructure state models."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class InstanceSpec(BaseModel):
    """Compute instance to provision for a target."""

    model_config = ConfigDict(frozen=True)

    region: str
    size: str
    image: str  # machine image id, not the container artifact


class IngressRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    port: int
    protocol: str = "tcp"
    cidr: str = "0.0.0.0/0"


class NetworkSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    ports: list[int] = []
    ingress: list[IngressRule] = []


class DesiredInfraState(BaseModel):
    """What the operator wants a target's infrastructure to look like.

    Owned by the caller (the inventory file).  Its canonical hash is the
    convergence engine's short-circuit key.
    """

    model_config = ConfigDict(frozen=True)

    target_id: str
    instance_spec: InstanceSpec
    network_spec: NetworkSpec = NetworkSpec()
    key_material_ref: str = ""


class ObservedInfraState(BaseModel):
    """What the convergence engine last applied and saw.

    Written only by the convergence engine (and the rollout controller's
    probe bookkeeping).  ``state_hash`` is empty while the state is partial
    or an apply has not completed.
    """

    model_config = ConfigDict(frozen=True)

    target_id: str
    instance_id: str = ""
    public_endpoint: str = ""
    last_converged_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    state_hash: str = ""
    resources: list[str] = []  # resource addresses known to exist
    partial: bool = False
    last_probe_ok: bool = False


class ResourceChange(BaseModel):
    """One planned change reported by a provisioning engine."""

    model_config = ConfigDict(frozen=True)

    address: str
    action: str  # "create" | "update" | "delete" | "replace"


class ProvisionPlan(BaseModel):
    """A provisioning engine's plan for one target.

    ``handle`` is an engine-specific token (e.g. a saved plan file path)
    passed back to ``apply``.
    """

    model_config = ConfigDict(frozen=True)

    target_id: str
    desired: DesiredInfraState
    changes: list[ResourceChange] = []
    handle: str = ""

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)


class ApplyResult(BaseModel):
    """Outcome of an apply.  ``complete`` is False on a partial apply."""

    model_config = ConfigDict(frozen=True)

    target_id: str
    complete: bool
    instance_id: str = ""
    public_endpoint: str = ""
    resources: list[str] = []
    detail: str = ""


class DriftReport(BaseModel):
    """Difference between declared, recorded and live infrastructure."""

    model_config = ConfigDict(frozen=True)

    target_id: str
    drifted: bool
    reasons: list[str] = []
    stored: ObservedInfraState | None = None
    live: ObservedInfraState | None = None
