"""Infrastructure convergence: desired state in, observed state out.

The engine trusts its persisted ObservedInfraState only when the desired
state hash matches, the state is complete, no apply is pending and the
last probe succeeded.  Anything else goes through the provisioning
engine's plan/apply cycle.  An apply that fails midway is persisted as a
partial state listing what exists, then reported as a partial
``ConvergenceError``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from rollwright.bridge.provisioning import ProvisioningEngine
from rollwright.core.cancellation import CancelToken
from rollwright.core.errors import (
    ConvergenceError,
    ConvergenceInProgress,
    DeploymentCancelled,
    RemoteExecutionError,
)
from rollwright.core.hasher import compute_desired_state_hash
from rollwright.core.infra_state import ObservedStateStore
from rollwright.core.target_registry import TargetBusy, TargetRegistry
from rollwright.models.config import DeployConfig, LockMode
from rollwright.models.infra import (
    DesiredInfraState,
    DriftReport,
    ObservedInfraState,
    ProvisionPlan,
)
from rollwright.models.targets import TargetStatus

logger = logging.getLogger(__name__)

# Statuses that only describe infrastructure; a successful convergence
# cannot vouch for the workload, so they reset to UNKNOWN.
_INFRA_STATUSES = frozenset({TargetStatus.CONVERGING, TargetStatus.DEGRADED})


class ConvergenceEngine:
    """Converges one target at a time, serialized per target.

    Parameters
    ----------
    engine:
        The provisioning backend.
    registry:
        Target registry; supplies the per-target lock and receives status
        and endpoint updates.
    store:
        Durable ObservedInfraState store.
    config:
        Timeouts and lock mode.
    """

    def __init__(
        self,
        engine: ProvisioningEngine,
        registry: TargetRegistry,
        store: ObservedStateStore,
        config: DeployConfig,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._store = store
        self._config = config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def converge(
        self, desired: DesiredInfraState, cancel: CancelToken | None = None
    ) -> ObservedInfraState:
        """Bring *desired.target_id*'s infrastructure to *desired*.

        Raises ``ConvergenceInProgress`` when another operation holds the
        target, ``ConvergenceError`` when provisioning fails.
        """
        cancel = cancel or CancelToken()
        try:
            with self._hold(desired.target_id):
                return self._converge_locked(desired, cancel)
        except TargetBusy as exc:
            raise ConvergenceInProgress(
                f"another operation is in progress on {desired.target_id}"
            ) from exc

    def detect_drift(
        self, desired: DesiredInfraState, cancel: CancelToken | None = None
    ) -> DriftReport:
        """Compare declared, recorded and live infrastructure for one target."""
        cancel = cancel or CancelToken()
        target_id = desired.target_id
        try:
            with self._hold(target_id):
                stored = self._store.get(target_id)
                pending = self._store.pending_apply(target_id)
                live = self._engine.refresh(
                    target_id, timeout=self._config.timeouts.provision, cancel=cancel
                )
        except TargetBusy as exc:
            raise ConvergenceInProgress(
                f"another operation is in progress on {target_id}"
            ) from exc

        reasons: list[str] = []
        if stored is None:
            reasons.append("target has never been converged")
        else:
            if pending:
                reasons.append("an apply started and never finished")
            if stored.partial:
                reasons.append("last convergence was partial")
            if stored.state_hash and stored.state_hash != compute_desired_state_hash(desired):
                reasons.append("desired state changed since last convergence")

        if live is None:
            if stored is not None and stored.resources:
                reasons.append("live infrastructure is missing")
        elif stored is not None:
            if live.instance_id != stored.instance_id:
                reasons.append(
                    f"instance changed: {stored.instance_id or '-'} -> {live.instance_id or '-'}"
                )
            if live.public_endpoint != stored.public_endpoint:
                reasons.append(
                    f"endpoint changed: {stored.public_endpoint or '-'} -> "
                    f"{live.public_endpoint or '-'}"
                )
            missing = sorted(set(stored.resources) - set(live.resources))
            extra = sorted(set(live.resources) - set(stored.resources))
            if missing:
                reasons.append(f"resources missing: {', '.join(missing)}")
            if extra:
                reasons.append(f"unrecorded resources: {', '.join(extra)}")

        if reasons:
            logger.warning("Drift on %s: %s", target_id, "; ".join(reasons))
        return DriftReport(
            target_id=target_id,
            drifted=bool(reasons),
            reasons=reasons,
            stored=stored,
            live=live,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _hold(self, target_id: str):
        if self._config.convergence_lock_mode == LockMode.BLOCK:
            return self._registry.locked(
                target_id, blocking=True, timeout=self._config.timeouts.lock_wait
            )
        return self._registry.locked(target_id, blocking=False)

    def _converge_locked(
        self, desired: DesiredInfraState, cancel: CancelToken
    ) -> ObservedInfraState:
        target_id = desired.target_id
        desired_hash = compute_desired_state_hash(desired)
        stored = self._store.get(target_id)
        pending = self._store.pending_apply(target_id)

        if (
            stored is not None
            and not pending
            and not stored.partial
            and stored.state_hash == desired_hash
            and stored.last_probe_ok
        ):
            logger.info("Target %s already converged (%s)", target_id, desired_hash[:19])
            return stored

        if pending:
            logger.warning(
                "Target %s has an unfinished apply of %s; re-planning", target_id, pending[:19]
            )

        cancel.raise_if_cancelled()
        target = self._registry.get(target_id)
        prior_status = target.status if target else None
        self._set_status(target_id, TargetStatus.CONVERGING)

        applying = False
        try:
            plan = self._engine.plan(
                desired, stored, timeout=self._config.timeouts.provision, cancel=cancel
            )
            if plan.has_changes:
                applying = True
                instance_id, endpoint, resources = self._apply(plan, desired_hash, stored, cancel)
            else:
                instance_id, endpoint, resources = self._known(target_id, stored, cancel)
                logger.info("Plan for %s has no changes", target_id)
        except ConvergenceError as exc:
            if not exc.partial:
                self._restore_status(target_id, prior_status)
            raise
        except DeploymentCancelled:
            self._restore_status(target_id, prior_status)
            raise
        except Exception:
            logger.exception("Convergence of %s crashed", target_id)
            if applying:
                self._record_partial(self._salvage(target_id, stored), target_id)
            else:
                self._restore_status(target_id, prior_status)
            raise

        # Only a failed probe clears last_probe_ok; a first or recovered
        # convergence counts the engine reporting an instance as its check.
        if stored is not None and not stored.partial:
            last_probe_ok = stored.last_probe_ok
        else:
            last_probe_ok = bool(instance_id)
        replaced = stored is not None and bool(stored.instance_id) and (
            stored.instance_id != instance_id
        )
        if replaced:
            logger.warning(
                "Target %s instance replaced: %s -> %s",
                target_id, stored.instance_id, instance_id or "-",
            )

        observed = self._store.put(
            ObservedInfraState(
                target_id=target_id,
                instance_id=instance_id,
                public_endpoint=endpoint,
                last_converged_at=datetime.now(timezone.utc),
                state_hash=desired_hash,
                resources=resources,
                partial=False,
                last_probe_ok=last_probe_ok,
            )
        )

        if target is not None:
            changes: dict = {"endpoint": endpoint or target.endpoint}
            status = prior_status
            if replaced:
                # Nothing runs on the new instance yet.
                status = TargetStatus.UNKNOWN
                changes["current_artifact"] = None
            elif status is None or status in _INFRA_STATUSES:
                status = TargetStatus.UNKNOWN
            self._registry.update(target_id, status=status, **changes)
        logger.info("Target %s converged: %s at %s", target_id, instance_id, endpoint)
        return observed

    def _apply(
        self,
        plan: ProvisionPlan,
        desired_hash: str,
        stored: ObservedInfraState | None,
        cancel: CancelToken,
    ) -> tuple[str, str, list[str]]:
        target_id = plan.target_id
        logger.info(
            "Applying %d change(s) to %s: %s",
            len(plan.changes),
            target_id,
            ", ".join(f"{c.action} {c.address}" for c in plan.changes),
        )
        self._store.begin_apply(target_id, desired_hash)
        try:
            result = self._engine.apply(
                plan, timeout=self._config.timeouts.provision, cancel=cancel
            )
        except (ConvergenceError, RemoteExecutionError, DeploymentCancelled) as exc:
            self._record_partial(self._salvage(target_id, stored), target_id)
            raise ConvergenceError(
                f"apply on {target_id} interrupted: {exc}", partial=True
            ) from exc

        if not result.complete:
            self._record_partial(
                ObservedInfraState(
                    target_id=target_id,
                    instance_id=result.instance_id,
                    public_endpoint=result.public_endpoint,
                    resources=result.resources,
                ),
                target_id,
            )
            raise ConvergenceError(
                f"apply on {target_id} incomplete: {result.detail or 'unknown error'}",
                partial=True,
            )
        return result.instance_id, result.public_endpoint, result.resources

    def _known(
        self, target_id: str, stored: ObservedInfraState | None, cancel: CancelToken
    ) -> tuple[str, str, list[str]]:
        known = stored
        if known is None or known.partial or not known.public_endpoint:
            known = self._engine.refresh(
                target_id, timeout=self._config.timeouts.provision, cancel=cancel
            )
        if known is None:
            return "", "", []
        return known.instance_id, known.public_endpoint, known.resources

    def _salvage(
        self, target_id: str, stored: ObservedInfraState | None
    ) -> ObservedInfraState:
        """What exists after an interrupted apply, read back from the engine.

        The refresh ignores the cancel token and runs under its own bound.
        Falls back to *stored* when the refresh fails too.
        """
        try:
            live = self._engine.refresh(
                target_id, timeout=self._config.timeouts.refresh, cancel=None
            )
        except Exception:
            logger.exception("Could not read back %s after a failed apply", target_id)
            return stored or ObservedInfraState(target_id=target_id)
        return live or ObservedInfraState(target_id=target_id)

    def _record_partial(self, state: ObservedInfraState, target_id: str) -> None:
        partial = state.model_copy(
            update={
                "partial": True,
                "state_hash": "",
                "last_probe_ok": False,
                "last_converged_at": datetime.now(timezone.utc),
            }
        )
        self._store.put(partial)
        if self._registry.get(target_id) is not None:
            changes: dict = {"status": TargetStatus.DEGRADED}
            if partial.public_endpoint:
                changes["endpoint"] = partial.public_endpoint
            self._registry.update(target_id, **changes)
        logger.error(
            "Partial convergence of %s; known resources: %s",
            target_id, ", ".join(partial.resources) or "none",
        )

    def _set_status(self, target_id: str, status: TargetStatus) -> None:
        if self._registry.get(target_id) is not None:
            self._registry.update(target_id, status=status)

    def _restore_status(self, target_id: str, status: TargetStatus | None) -> None:
        if status == TargetStatus.CONVERGING:
            status = TargetStatus.UNKNOWN
        if status is not None:
            self._set_status(target_id, status)
