"""Deployment orchestrator: the central coordinator for Rollwright deployments.

The DeploymentOrchestrator wires together the ArtifactResolver, the
TargetRegistry, the ConvergenceEngine, the RolloutController and the
RolloutLedger into one deployment flow:

    resolve artifact once -> for each target: register, converge, roll out

Targets run strictly in order under ``halt`` and concurrently (bounded by
``max_parallel_targets``) under ``best-effort``.  Outcomes are always
reported in request order.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from rollwright.bridge.health import HealthProbe
from rollwright.bridge.provisioning import ProvisioningEngine
from rollwright.bridge.registry import RegistryClient
from rollwright.core.artifact_resolver import ArtifactResolver
from rollwright.core.cancellation import CancelToken
from rollwright.core.convergence import ConvergenceEngine
from rollwright.core.errors import DeploymentCancelled, RollwrightError, UnknownTarget
from rollwright.core.infra_state import ObservedStateStore
from rollwright.core.rollout_controller import ExecutorFactory, RolloutController
from rollwright.core.rollout_ledger import RolloutLedger
from rollwright.core.target_registry import TargetRegistry
from rollwright.models.artifacts import ArtifactReference
from rollwright.models.config import DeployConfig
from rollwright.models.deployment import DeploymentPolicy, DeploymentResult, TargetOutcome
from rollwright.models.infra import DriftReport
from rollwright.models.inventory import Inventory, TargetSpec
from rollwright.models.targets import DeploymentTarget, TargetStatus

logger = logging.getLogger(__name__)


class DeploymentOrchestrator:
    """Central deployment coordinator.

    Parameters
    ----------
    config:
        Explicit deployment configuration (state path, timeouts, policies).
    inventory:
        The declared targets and their desired infrastructure.
    registry_client:
        Container registry backend used for digest resolution.
    engine:
        Provisioning backend used for convergence.
    probe:
        Health probe backend.
    executor_factory:
        Builds the command transport for a target.
    """

    def __init__(
        self,
        config: DeployConfig,
        inventory: Inventory,
        *,
        registry_client: RegistryClient,
        engine: ProvisioningEngine,
        probe: HealthProbe,
        executor_factory: ExecutorFactory,
    ) -> None:
        self.config = config
        self.inventory = inventory

        # Durable state; the three stores share one database file
        self.targets = TargetRegistry(config.state_db_path, lease_ttl=config.lease_ttl)
        self.observed = ObservedStateStore(config.state_db_path)
        self.ledger = RolloutLedger(config.state_db_path)

        # Components
        self.resolver = ArtifactResolver(
            registry_client,
            timeout=config.timeouts.registry,
            retry=config.registry_retry,
        )
        self.convergence = ConvergenceEngine(engine, self.targets, self.observed, config)
        self.controller = RolloutController(
            self.targets, self.ledger, self.observed, probe, executor_factory, config
        )

        # Shared by every operation started through this orchestrator
        self._cancel = CancelToken()

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    def deploy(
        self,
        artifact_ref: str,
        target_ids: Sequence[str],
        policy: DeploymentPolicy = DeploymentPolicy.HALT_ON_FAILURE,
    ) -> DeploymentResult:
        """Deploy *artifact_ref* to *target_ids* under *policy*.

        Per-target failures are reported in the result; this method only
        raises for unexpected (non-Rollwright) errors.
        """
        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        deployment_id = f"dep-{ts}-{uuid.uuid4().hex[:6]}"
        started_at = datetime.now(timezone.utc)
        policy = DeploymentPolicy(policy)

        ids = list(dict.fromkeys(target_ids))
        if len(ids) != len(target_ids):
            logger.warning("Ignoring duplicate target ids in %s", list(target_ids))

        logger.info(
            "Deployment %s: %s -> %s (%s)", deployment_id, artifact_ref, ids, policy.value
        )

        # 1. Resolve once; without a digest nothing is attempted
        try:
            artifact = self.resolver.resolve(artifact_ref, self._cancel)
        except RollwrightError as exc:
            logger.error("Deployment %s: cannot resolve %s: %s", deployment_id, artifact_ref, exc)
            return DeploymentResult(
                deployment_id=deployment_id,
                policy=policy,
                outcomes=[
                    self._not_attempted(t, exc.code, f"artifact not resolved: {exc}")
                    for t in ids
                ],
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                error_code=exc.code,
                detail=str(exc),
            )

        # 2. Per-target converge + rollout
        if policy == DeploymentPolicy.HALT_ON_FAILURE:
            outcomes = self._deploy_in_order(ids, artifact)
        else:
            outcomes = self._deploy_concurrently(ids, artifact)

        result = DeploymentResult(
            deployment_id=deployment_id,
            artifact=artifact,
            policy=policy,
            outcomes=outcomes,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Deployment %s finished: %s (%d/%d healthy)",
            deployment_id,
            result.overall.value,
            sum(1 for o in outcomes if o.succeeded),
            len(outcomes),
        )
        return result

    def cancel(self, reason: str = "cancelled by operator") -> None:
        """Abort all in-flight work.  A cancelled orchestrator stays cancelled."""
        logger.warning("Cancelling deployment: %s", reason)
        self._cancel.cancel(reason)

    @property
    def cancelled(self) -> bool:
        return self._cancel.cancelled

    def _deploy_in_order(
        self, ids: list[str], artifact: ArtifactReference
    ) -> list[TargetOutcome]:
        outcomes: list[TargetOutcome] = []
        failed: str | None = None
        for target_id in ids:
            # A cancelled run reports the cancellation, not the halt.
            if failed is not None and not self._cancel.cancelled:
                outcomes.append(
                    self._not_attempted(target_id, "", f"halted after {failed} failed")
                )
                continue
            outcome = self._deploy_target(target_id, artifact)
            outcomes.append(outcome)
            if not outcome.succeeded:
                failed = target_id
                logger.warning("Halting deployment: %s did not become healthy", target_id)
        return outcomes

    def _deploy_concurrently(
        self, ids: list[str], artifact: ArtifactReference
    ) -> list[TargetOutcome]:
        if not ids:
            return []
        workers = max(1, min(self.config.max_parallel_targets, len(ids)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rollwright") as pool:
            return list(pool.map(lambda t: self._deploy_target(t, artifact), ids))

    def _deploy_target(self, target_id: str, artifact: ArtifactReference) -> TargetOutcome:
        """Register, converge and roll out one target; never raises RollwrightError."""
        if self._cancel.cancelled:
            return self._not_attempted(
                target_id, DeploymentCancelled.code, self._cancel.reason
            )
        try:
            spec = self.ensure_registered(target_id)
            self.convergence.converge(spec.desired, self._cancel)
            record = self.controller.rollout(target_id, artifact, self._cancel)
        except RollwrightError as exc:
            logger.error("Target %s failed: %s: %s", target_id, exc.code, exc)
            return TargetOutcome(
                target_id=target_id,
                status=self._status_of(target_id),
                error_code=exc.code,
                detail=str(exc),
            )
        return TargetOutcome(
            target_id=target_id,
            status=self._status_of(target_id),
            rollout_outcome=record.outcome,
            error_code=record.error_code,
            detail=record.detail,
        )

    # ------------------------------------------------------------------
    # Inventory and drift
    # ------------------------------------------------------------------

    def ensure_registered(self, target_id: str) -> TargetSpec:
        """Make sure *target_id* is in the registry with its inventory settings.

        A target already registered keeps its status, endpoint and current
        artifact.  Raises ``UnknownTarget`` if it is not in the inventory.
        """
        spec = self.inventory.get(target_id)
        if spec is None:
            raise UnknownTarget(f"target {target_id!r} is not in the inventory")
        if self.targets.get(target_id) is None:
            self.targets.upsert(spec.to_target())
            logger.info("Registered target %s", target_id)
        else:
            self.targets.update(
                target_id,
                credentials_ref=spec.credentials_ref,
                health_check=spec.health_check,
                workload=spec.workload,
            )
        return spec

    def register_inventory(self) -> list[DeploymentTarget]:
        """Register every inventory target; returns the registry entries."""
        for target_id in self.inventory.target_ids:
            self.ensure_registered(target_id)
        return [self.targets.require(t) for t in self.inventory.target_ids]

    def drift(self, target_ids: Sequence[str] | None = None) -> list[DriftReport]:
        """Drift reports for *target_ids* (default: the whole inventory)."""
        reports = []
        for target_id in target_ids or self.inventory.target_ids:
            spec = self.inventory.get(target_id)
            if spec is None:
                raise UnknownTarget(f"target {target_id!r} is not in the inventory")
            reports.append(self.convergence.detect_drift(spec.desired, self._cancel))
        return reports

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _status_of(self, target_id: str) -> TargetStatus:
        target = self.targets.get(target_id)
        return target.status if target else TargetStatus.UNKNOWN

    def _not_attempted(self, target_id: str, error_code: str, detail: str) -> TargetOutcome:
        return TargetOutcome(
            target_id=target_id,
            status=self._status_of(target_id),
            attempted=False,
            error_code=error_code,
            detail=detail,
        )
