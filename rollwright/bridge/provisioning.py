"""Provisioning engines behind a declarative-state interface.

The convergence engine only sees ``plan``/``apply``/``refresh``.
``TerraformEngine`` drives the terraform CLI: one shared module directory,
one terraform workspace and one tfvars file per target.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from rollwright.bridge.process import ExecResult, run_process
from rollwright.core.cancellation import CancelToken
from rollwright.core.errors import (
    ConvergenceError,
    DeploymentCancelled,
    RemoteExecutionError,
)
from rollwright.models.infra import (
    ApplyResult,
    DesiredInfraState,
    ObservedInfraState,
    ProvisionPlan,
    ResourceChange,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class ProvisioningEngine(Protocol):
    """Protocol for infrastructure provisioning backends."""

    def plan(
        self,
        desired: DesiredInfraState,
        observed: ObservedInfraState | None,
        *,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> ProvisionPlan:
        """Compute the changes needed to reach *desired*.

        Must not mutate infrastructure.  Raises ``ConvergenceError``
        (non-partial) if planning fails.
        """
        ...

    def apply(
        self,
        plan: ProvisionPlan,
        *,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> ApplyResult:
        """Apply *plan*.

        A failure after mutation started is reported as
        ``ApplyResult(complete=False)`` listing the resources that exist,
        never raised.
        """
        ...

    def refresh(
        self,
        target_id: str,
        *,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> ObservedInfraState | None:
        """Read live infrastructure for *target_id*; None if nothing exists."""
        ...


_ACTION_NAMES = {
    ("create",): "create",
    ("update",): "update",
    ("delete",): "delete",
    ("delete", "create"): "replace",
    ("create", "delete"): "replace",
}


class TerraformEngine:
    """Terraform CLI adapter.

    Parameters
    ----------
    module_dir:
        Terraform root module.  It must accept the variables written by
        :meth:`tfvars` and expose ``instance_id`` and ``public_endpoint``
        outputs.
    work_dir:
        Where per-target tfvars and plan files are written.
    binary:
        Terraform executable.
    """

    def __init__(
        self,
        module_dir: Path,
        work_dir: Path,
        *,
        binary: str = "terraform",
    ) -> None:
        self._module_dir = Path(module_dir).resolve()
        self._work_dir = Path(work_dir).resolve()
        self._work_dir.mkdir(parents=True, exist_ok=True)
        self._binary = binary
        self._init_lock = threading.Lock()
        self._initialized = False
        self._workspaces: set[str] = set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def tfvars(desired: DesiredInfraState) -> dict[str, Any]:
        """Flatten a desired state into terraform variables."""
        return {
            "target_id": desired.target_id,
            "region": desired.instance_spec.region,
            "instance_size": desired.instance_spec.size,
            "machine_image": desired.instance_spec.image,
            "ports": desired.network_spec.ports,
            "ingress": [r.model_dump() for r in desired.network_spec.ingress],
            "key_material_ref": desired.key_material_ref,
        }

    def _tf(
        self,
        args: list[str],
        *,
        target_id: str | None,
        timeout: float,
        cancel: CancelToken | None,
    ) -> ExecResult:
        env = dict(os.environ)
        env["TF_IN_AUTOMATION"] = "1"
        if target_id:
            env["TF_WORKSPACE"] = target_id
        argv = [self._binary, f"-chdir={self._module_dir}", *args]
        try:
            return run_process(argv, timeout=timeout, cancel=cancel, env=env)
        except RemoteExecutionError as exc:
            raise ConvergenceError(str(exc)) from exc

    def _prepare(self, target_id: str, timeout: float, cancel: CancelToken | None) -> None:
        with self._init_lock:
            if not self._initialized:
                result = self._tf(
                    ["init", "-input=false", "-no-color"],
                    target_id=None, timeout=timeout, cancel=cancel,
                )
                if not result.ok:
                    raise ConvergenceError(f"terraform init failed: {result.stderr.strip()}")
                self._initialized = True
            if target_id not in self._workspaces:
                # Fails harmlessly when the workspace already exists.
                self._tf(
                    ["workspace", "new", "-no-color", target_id],
                    target_id=None, timeout=timeout, cancel=cancel,
                )
                self._workspaces.add(target_id)

    def _paths(self, target_id: str) -> tuple[Path, Path]:
        return (
            self._work_dir / f"{target_id}.tfvars.json",
            self._work_dir / f"{target_id}.tfplan",
        )

    def _show_json(
        self, plan_file: Path, target_id: str, timeout: float, cancel: CancelToken | None
    ) -> dict[str, Any]:
        result = self._tf(
            ["show", "-json", "-no-color", str(plan_file)],
            target_id=target_id, timeout=timeout, cancel=cancel,
        )
        if not result.ok:
            raise ConvergenceError(f"terraform show failed: {result.stderr.strip()}")
        return json.loads(result.stdout or "{}")

    # ------------------------------------------------------------------
    # ProvisioningEngine
    # ------------------------------------------------------------------

    def plan(
        self,
        desired: DesiredInfraState,
        observed: ObservedInfraState | None,
        *,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> ProvisionPlan:
        target_id = desired.target_id
        self._prepare(target_id, timeout, cancel)
        var_file, plan_file = self._paths(target_id)
        var_file.write_text(json.dumps(self.tfvars(desired), indent=2), encoding="utf-8")

        result = self._tf(
            [
                "plan", "-input=false", "-no-color", "-detailed-exitcode",
                f"-var-file={var_file}", f"-out={plan_file}",
            ],
            target_id=target_id, timeout=timeout, cancel=cancel,
        )
        # -detailed-exitcode: 0 = no changes, 2 = changes, 1 = error
        if result.exit_code == 0:
            return ProvisionPlan(target_id=target_id, desired=desired, handle=str(plan_file))
        if result.exit_code != 2:
            raise ConvergenceError(f"terraform plan failed: {result.stderr.strip()}")

        shown = self._show_json(plan_file, target_id, timeout, cancel)
        changes = []
        for rc in shown.get("resource_changes", []):
            actions = tuple(rc.get("change", {}).get("actions", []))
            action = _ACTION_NAMES.get(actions)
            if action:
                changes.append(ResourceChange(address=rc["address"], action=action))
        return ProvisionPlan(
            target_id=target_id, desired=desired, changes=changes, handle=str(plan_file)
        )

    def apply(
        self,
        plan: ProvisionPlan,
        *,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> ApplyResult:
        target_id = plan.target_id
        try:
            result = self._tf(
                ["apply", "-input=false", "-no-color", "-auto-approve", plan.handle],
                target_id=target_id, timeout=timeout, cancel=cancel,
            )
            complete, detail = result.ok, ("" if result.ok else result.stderr.strip())
        except (ConvergenceError, DeploymentCancelled) as exc:
            logger.error("terraform apply for %s interrupted: %s", target_id, exc)
            complete, detail = False, str(exc)
        # Read back state even after an interrupted apply; the cancel token
        # may already be set, so these run on the timeout alone.
        outputs = self._outputs(target_id, timeout, None)
        resources = self._state_list(target_id, timeout, None)
        return ApplyResult(
            target_id=target_id,
            complete=complete,
            instance_id=outputs.get("instance_id", ""),
            public_endpoint=outputs.get("public_endpoint", ""),
            resources=resources,
            detail=detail,
        )

    def refresh(
        self,
        target_id: str,
        *,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> ObservedInfraState | None:
        self._prepare(target_id, timeout, cancel)
        var_file, _ = self._paths(target_id)
        refresh_file = self._work_dir / f"{target_id}.refresh.tfplan"
        args = ["plan", "-refresh-only", "-input=false", "-no-color", f"-out={refresh_file}"]
        if var_file.exists():
            args.append(f"-var-file={var_file}")
        result = self._tf(args, target_id=target_id, timeout=timeout, cancel=cancel)
        if not result.ok:
            raise ConvergenceError(f"terraform refresh failed: {result.stderr.strip()}")

        planned = self._show_json(refresh_file, target_id, timeout, cancel).get(
            "planned_values", {}
        )
        resources = [
            r["address"] for r in planned.get("root_module", {}).get("resources", [])
        ]
        if not resources:
            return None
        outputs = {k: v.get("value", "") for k, v in planned.get("outputs", {}).items()}
        return ObservedInfraState(
            target_id=target_id,
            instance_id=str(outputs.get("instance_id", "")),
            public_endpoint=str(outputs.get("public_endpoint", "")),
            resources=resources,
        )

    def _outputs(
        self, target_id: str, timeout: float, cancel: CancelToken | None
    ) -> dict[str, str]:
        result = self._tf(
            ["output", "-json", "-no-color"],
            target_id=target_id, timeout=timeout, cancel=cancel,
        )
        if not result.ok:
            return {}
        raw = json.loads(result.stdout or "{}")
        return {k: str(v.get("value", "")) for k, v in raw.items()}

    def _state_list(
        self, target_id: str, timeout: float, cancel: CancelToken | None
    ) -> list[str]:
        result = self._tf(
            ["state", "list", "-no-color"],
            target_id=target_id, timeout=timeout, cancel=cancel,
        )
        if not result.ok:
            return []
        return [line for line in result.stdout.splitlines() if line.strip()]
