"""Operator inventory: the declared targets and their desired infrastructure.

Loaded from a JSON file::

    {
      "targets": [
        {
          "target_id": "web-1",
          "credentials_ref": "~/.ssh/deploy_key",
          "health_check": {"url": "http://{endpoint}:8080/health"},
          "workload": {"name": "app", "ports": ["8080:8080"]},
          "desired": {
            "target_id": "web-1",
            "instance_spec": {"region": "eu-west-1", "size": "t3.small",
                              "image": "ami-0abc"},
            "network_spec": {"ports": [22, 8080]}
          }
        }
      ]
    }
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, model_validator

from rollwright.models.infra import DesiredInfraState
from rollwright.models.targets import DeploymentTarget, HealthCheck, WorkloadSpec


class TargetSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_id: str
    credentials_ref: str = ""
    health_check: HealthCheck = HealthCheck()
    workload: WorkloadSpec = WorkloadSpec()
    desired: DesiredInfraState

    @model_validator(mode="after")
    def _ids_match(self) -> TargetSpec:
        if self.desired.target_id != self.target_id:
            raise ValueError(
                f"desired.target_id {self.desired.target_id!r} does not match "
                f"target_id {self.target_id!r}"
            )
        return self

    def to_target(self) -> DeploymentTarget:
        """A fresh registry entry for this spec."""
        return DeploymentTarget(
            target_id=self.target_id,
            credentials_ref=self.credentials_ref,
            health_check=self.health_check,
            workload=self.workload,
        )


class Inventory(BaseModel):
    model_config = ConfigDict(frozen=True)

    targets: list[TargetSpec] = []

    @model_validator(mode="after")
    def _unique_ids(self) -> Inventory:
        ids = [t.target_id for t in self.targets]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"duplicate target ids in inventory: {dupes}")
        return self

    def get(self, target_id: str) -> TargetSpec | None:
        return next((t for t in self.targets if t.target_id == target_id), None)

    @property
    def target_ids(self) -> list[str]:
        return [t.target_id for t in self.targets]

    @classmethod
    def load(cls, path: Path) -> Inventory:
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))
