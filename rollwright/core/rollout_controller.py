"""Per-target rollout state machine with health verification and rollback.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- One rollout per target at a time (non-blocking target lock)
- A failed pull never touches the running workload
- A failed start or health check rolls back to the previous artifact
- A failed rollback is terminal and never retried
- Every attempt appends exactly one RolloutRecord
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from rollwright.bridge.health import HealthProbe
from rollwright.bridge.remote import RemoteExecutor
from rollwright.bridge.workload import DockerWorkloadDriver
from rollwright.core.cancellation import CancelToken
from rollwright.core.errors import (
    DeploymentCancelled,
    HealthCheckTimeout,
    InvalidReference,
    PullFailure,
    RemoteExecutionError,
    RollbackFailure,
    RollwrightError,
    RolloutInProgress,
)
from rollwright.core.infra_state import ObservedStateStore
from rollwright.core.retry import backoff_delays
from rollwright.core.rollout_ledger import RolloutLedger
from rollwright.core.target_registry import TargetBusy, TargetRegistry
from rollwright.models.artifacts import ArtifactReference
from rollwright.models.config import DeployConfig
from rollwright.models.rollout import (
    VALID_TRANSITIONS,
    RolloutOutcome,
    RolloutRecord,
    RolloutState,
)
from rollwright.models.targets import DeploymentTarget, TargetStatus

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[DeploymentTarget], RemoteExecutor]


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class RolloutAttempt:
    """State of one rollout attempt.  Always starts at IDLE."""

    def __init__(self, target_id: str) -> None:
        self.target_id = target_id
        self.state = RolloutState.IDLE
        self.transitions: list[str] = []
        self.touched_workload = False

    def to(self, target_state: RolloutState) -> None:
        allowed = VALID_TRANSITIONS.get(self.state, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition rollout on {self.target_id} from "
                f"{self.state.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        self.transitions.append(f"{self.state.value}->{target_state.value}")
        logger.info(
            "Rollout %s: %s -> %s", self.target_id, self.state.value, target_state.value
        )
        if target_state == RolloutState.STOPPING:
            self.touched_workload = True
        self.state = target_state

    def abort(self) -> None:
        """Move to FAILED if the current state allows it."""
        if RolloutState.FAILED in VALID_TRANSITIONS.get(self.state, set()):
            self.to(RolloutState.FAILED)


class RolloutController:
    """Drives rollouts and records their outcome.

    Parameters
    ----------
    registry:
        Target registry (lock, target data, status updates).
    ledger:
        Rollout audit log; also the source of the previous artifact.
    store:
        Observed infrastructure store; receives probe results.
    probe:
        Health probe backend.
    executor_factory:
        Builds the command transport for a target.
    config:
        Timeouts and health-check policy.
    """

    def __init__(
        self,
        registry: TargetRegistry,
        ledger: RolloutLedger,
        store: ObservedStateStore,
        probe: HealthProbe,
        executor_factory: ExecutorFactory,
        config: DeployConfig,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._store = store
        self._probe = probe
        self._executor_factory = executor_factory
        self._config = config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def rollout(
        self,
        target_id: str,
        artifact: ArtifactReference,
        cancel: CancelToken | None = None,
    ) -> RolloutRecord:
        """Roll *artifact* out onto *target_id* and return the sealed record.

        Failures during the rollout are reported through the record's
        outcome and ``error_code``.  Raises ``RolloutInProgress`` if the
        target is busy, ``UnknownTarget`` if it is not registered.
        """
        if not artifact.is_resolved:
            raise InvalidReference(
                f"{artifact} must be resolved to a digest before rollout"
            )
        cancel = cancel or CancelToken()
        try:
            with self._registry.locked(target_id, blocking=False):
                return self._run(target_id, artifact, cancel)
        except TargetBusy as exc:
            raise RolloutInProgress(
                f"a rollout or convergence is already running on {target_id}"
            ) from exc

    def previous_artifact(self, target: DeploymentTarget) -> ArtifactReference | None:
        """What a rollback returns to: last successful rollout, else what is recorded as running."""
        return self._ledger.last_successful_artifact(target.target_id) or target.current_artifact

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _run(
        self, target_id: str, artifact: ArtifactReference, cancel: CancelToken
    ) -> RolloutRecord:
        target = self._registry.require(target_id)
        previous = self.previous_artifact(target)
        attempt = RolloutAttempt(target_id)
        started_at = datetime.now(timezone.utc)

        def finish(
            outcome: RolloutOutcome, error: BaseException | None = None, detail: str = ""
        ) -> RolloutRecord:
            return self._record(
                attempt, artifact, previous, started_at, outcome, error, detail
            )

        try:
            try:
                driver = DockerWorkloadDriver(
                    self._executor_factory(target), target.workload, self._config.timeouts
                )
            except RemoteExecutionError as exc:
                logger.error("No transport to %s: %s", target_id, exc)
                return finish(RolloutOutcome.FAILED, exc)

            # Pulling: the running workload is not touched until this succeeds.
            attempt.to(RolloutState.PULLING)
            try:
                driver.pull(artifact, cancel)
            except PullFailure as exc:
                attempt.to(RolloutState.FAILED)
                return finish(RolloutOutcome.FAILED, exc)

            attempt.to(RolloutState.STOPPING)
            try:
                driver.stop(cancel)
            except RemoteExecutionError as exc:
                attempt.to(RolloutState.FAILED)
                self._mark_failed(target_id)
                return finish(RolloutOutcome.FAILED, exc)

            attempt.to(RolloutState.STARTING)
            try:
                driver.start(artifact, cancel)
            except RemoteExecutionError as exc:
                return self._roll_back(attempt, driver, previous, exc, cancel, finish)

            attempt.to(RolloutState.HEALTH_CHECKING)
            try:
                self._await_healthy(target_id, cancel)
            except HealthCheckTimeout as exc:
                return self._roll_back(attempt, driver, previous, exc, cancel, finish)

            attempt.to(RolloutState.HEALTHY)
            self._store.set_probe_result(target_id, True)
            self._registry.update(
                target_id, status=TargetStatus.HEALTHY, current_artifact=artifact
            )
            return finish(RolloutOutcome.SUCCESS)

        except DeploymentCancelled as exc:
            logger.warning("Rollout on %s cancelled in %s", target_id, attempt.state.value)
            attempt.abort()
            if attempt.touched_workload:
                self._mark_failed(target_id)
            return finish(RolloutOutcome.FAILED, exc)

        except Exception as exc:
            logger.exception("Rollout on %s crashed in %s", target_id, attempt.state.value)
            attempt.abort()
            if attempt.touched_workload:
                self._mark_failed(target_id)
            finish(RolloutOutcome.FAILED, exc)
            raise

    def _roll_back(
        self,
        attempt: RolloutAttempt,
        driver: DockerWorkloadDriver,
        previous: ArtifactReference | None,
        cause: RollwrightError,
        cancel: CancelToken,
        finish: Callable[..., RolloutRecord],
    ) -> RolloutRecord:
        target_id = attempt.target_id
        attempt.to(RolloutState.ROLLING_BACK)
        logger.warning("Rolling back %s after %s: %s", target_id, cause.code, cause)

        if previous is None:
            try:
                driver.stop(cancel)
            except RemoteExecutionError as exc:
                logger.error("Could not stop failed workload on %s: %s", target_id, exc)
            attempt.to(RolloutState.FAILED)
            self._mark_failed(target_id)
            return finish(
                RolloutOutcome.FAILED,
                RollbackFailure(f"no previous artifact to roll back to ({cause})"),
            )

        try:
            driver.stop(cancel)
            driver.start(previous, cancel)
            self._await_healthy(target_id, cancel)
        except (RemoteExecutionError, HealthCheckTimeout) as exc:
            attempt.to(RolloutState.FAILED)
            self._mark_failed(target_id)
            logger.error(
                "Rollback of %s to %s failed; operator action required: %s",
                target_id, previous.pull_reference, exc,
            )
            return finish(
                RolloutOutcome.FAILED,
                RollbackFailure(f"rollback to {previous.pull_reference} failed: {exc}"),
                detail=f"rollout failed first: {cause}",
            )

        attempt.to(RolloutState.IDLE)
        self._store.set_probe_result(target_id, True)
        self._registry.update(
            target_id, status=TargetStatus.HEALTHY, current_artifact=previous
        )
        return finish(
            RolloutOutcome.ROLLED_BACK,
            cause,
            detail=f"restored {previous.pull_reference}",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _await_healthy(self, target_id: str, cancel: CancelToken) -> int:
        """Poll the health endpoint with bounded exponential backoff.

        Returns the number of polls used; raises ``HealthCheckTimeout``.
        """
        target = self._registry.require(target_id)
        url = target.health_check.render(target.endpoint)
        expected = target.health_check.expected_status
        policy = self._config.health
        delays = backoff_delays(policy.retry)
        polls = 0
        while True:
            polls += 1
            cancel.raise_if_cancelled()
            try:
                status = self._probe.probe(url, timeout=policy.probe_timeout)
                healthy, last = status == expected, f"HTTP {status}"
            except OSError as exc:
                healthy, last = False, str(exc)
            if healthy:
                logger.info("%s healthy after %d poll(s)", url, polls)
                return polls

            delay = next(delays, None)
            if delay is None:
                raise HealthCheckTimeout(
                    f"{url} not healthy after {polls} poll(s) (last: {last})"
                )
            logger.debug("%s poll %d: %s; next in %.2fs", url, polls, last, delay)
            if cancel.wait(delay):
                cancel.raise_if_cancelled()

    def _mark_failed(self, target_id: str) -> None:
        self._store.set_probe_result(target_id, False)
        self._registry.update(target_id, status=TargetStatus.FAILED)

    def _record(
        self,
        attempt: RolloutAttempt,
        artifact: ArtifactReference,
        previous: ArtifactReference | None,
        started_at: datetime,
        outcome: RolloutOutcome,
        error: BaseException | None,
        detail: str,
    ) -> RolloutRecord:
        error_code = ""
        if error is not None:
            error_code = getattr(error, "code", "internal_error")
            detail = f"{error}; {detail}" if detail else str(error)
        record = self._ledger.append(
            RolloutRecord(
                target_id=attempt.target_id,
                artifact=artifact,
                previous_artifact=previous,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                outcome=outcome,
                transitions=list(attempt.transitions),
                error_code=error_code,
                detail=detail,
            )
        )
        log = logger.info if outcome == RolloutOutcome.SUCCESS else logger.warning
        log(
            "Rollout of %s on %s finished: %s%s",
            artifact.pull_reference, attempt.target_id, outcome.value,
            f" ({error_code})" if error_code else "",
        )
        return record
