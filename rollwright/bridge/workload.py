"""Container workload operations on a target, expressed as docker CLI calls.

Every call goes through a ``RemoteExecutor`` so the driver never knows
whether it is talking over ssh, locally, or to a simulated host.
"""

from __future__ import annotations

import logging

from rollwright.bridge.process import ExecResult
from rollwright.bridge.remote import RemoteExecutor
from rollwright.core.cancellation import CancelToken
from rollwright.core.errors import PullFailure, RemoteExecutionError
from rollwright.models.artifacts import ArtifactReference
from rollwright.models.config import Timeouts
from rollwright.models.targets import WorkloadSpec

logger = logging.getLogger(__name__)


class DockerWorkloadDriver:
    """Pull, stop and start one named container on one target.

    Parameters
    ----------
    executor:
        Command transport to the target.
    workload:
        Container name, published ports and environment.
    timeouts:
        ``pull`` bounds image fetches, ``stop_grace`` the graceful stop,
        ``remote_exec`` everything else.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        workload: WorkloadSpec,
        timeouts: Timeouts,
    ) -> None:
        self._executor = executor
        self._workload = workload
        self._timeouts = timeouts

    def _run(
        self, argv: list[str], cancel: CancelToken | None, timeout: float | None = None
    ) -> ExecResult:
        return self._executor.run(
            argv,
            timeout=timeout if timeout is not None else self._timeouts.remote_exec,
            cancel=cancel,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def running_image(self, cancel: CancelToken | None = None) -> str | None:
        """Image reference of the workload container, or None if absent."""
        result = self._run(
            ["docker", "inspect", "--format", "{{.Config.Image}}", self._workload.name],
            cancel,
        )
        if not result.ok:
            return None
        return result.stdout.strip() or None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def pull(self, artifact: ArtifactReference, cancel: CancelToken | None = None) -> None:
        """Fetch *artifact* onto the target.  Raises ``PullFailure``."""
        ref = artifact.pull_reference
        try:
            result = self._run(["docker", "pull", ref], cancel, self._timeouts.pull)
        except RemoteExecutionError as exc:
            raise PullFailure(f"pull of {ref} did not complete: {exc}") from exc
        if not result.ok:
            raise PullFailure(f"pull of {ref} failed: {result.stderr.strip()}")
        logger.info("Pulled %s", ref)

    def stop(self, cancel: CancelToken | None = None) -> bool:
        """Stop and remove the workload container.

        Graceful stop first, bounded by ``stop_grace``; a timeout or error
        forces a kill.  Returns False if there was nothing to stop.
        """
        name = self._workload.name
        if self.running_image(cancel) is None:
            return False

        grace = self._timeouts.stop_grace
        graceful = False
        try:
            result = self._run(
                ["docker", "stop", "--time", str(int(grace)), name],
                cancel,
                grace + self._timeouts.remote_exec,
            )
            graceful = result.ok
        except RemoteExecutionError as exc:
            logger.warning("Graceful stop of %s did not finish: %s", name, exc)

        if not graceful:
            logger.warning("Force-killing %s", name)
            self._run(["docker", "kill", name], cancel)

        result = self._run(["docker", "rm", "-f", name], cancel)
        if not result.ok:
            raise RemoteExecutionError(
                f"could not remove container {name}: {result.stderr.strip()}"
            )
        return True

    def start(self, artifact: ArtifactReference, cancel: CancelToken | None = None) -> None:
        """Start *artifact* as the workload container."""
        argv = [
            "docker", "run", "-d",
            "--name", self._workload.name,
            "--restart", "unless-stopped",
        ]
        for spec in self._workload.ports:
            argv += ["-p", spec]
        for key, value in sorted(self._workload.env.items()):
            argv += ["-e", f"{key}={value}"]
        argv.append(artifact.pull_reference)

        result = self._run(argv, cancel)
        if not result.ok:
            raise RemoteExecutionError(
                f"could not start {artifact.pull_reference}: {result.stderr.strip()}"
            )
        logger.info("Started %s as %s", artifact.pull_reference, self._workload.name)
