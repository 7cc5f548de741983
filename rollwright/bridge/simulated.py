"""In-process stand-ins for the registry, provisioning engine and hosts.

Used by ``rollwright demo`` and the test suite.  ``SimulatedHost`` speaks
the same docker argv as a real host, so the real ``DockerWorkloadDriver``
runs against it unchanged.  Each simulator counts its calls and takes
failure injections.
"""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Sequence
from urllib.parse import urlsplit

from rollwright.bridge.process import ExecResult
from rollwright.core.cancellation import CancelToken
from rollwright.core.errors import (
    ConvergenceError,
    RegistryUnreachable,
    RemoteExecutionError,
    TagNotFound,
)
from rollwright.models.artifacts import ArtifactReference
from rollwright.models.infra import (
    ApplyResult,
    DesiredInfraState,
    ObservedInfraState,
    ProvisionPlan,
    ResourceChange,
)
from rollwright.models.targets import DeploymentTarget


def fake_digest(seed: str) -> str:
    return "sha256:" + hashlib.sha256(seed.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class SimulatedRegistry:
    """Tag table keyed by ``registry/repository:tag``.

    ``transient_failures`` makes the next N lookups raise
    ``RegistryUnreachable``; ``unreachable`` makes every lookup fail.
    """

    def __init__(self) -> None:
        self._tags: dict[str, str] = {}
        self.calls = 0
        self.transient_failures = 0
        self.unreachable = False

    def publish(self, name: str, tag: str, digest: str | None = None) -> str:
        digest = digest or fake_digest(f"{name}:{tag}")
        self._tags[f"{name}:{tag}"] = digest
        return digest

    def resolve_digest(self, reference: ArtifactReference, *, timeout: float) -> str:
        self.calls += 1
        if self.unreachable:
            raise RegistryUnreachable(f"registry {reference.registry} unreachable")
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise RegistryUnreachable(f"registry {reference.registry} timed out")
        digest = self._tags.get(f"{reference.name}:{reference.tag}")
        if digest is None:
            raise TagNotFound(f"tag {reference.tag!r} not found in {reference.name}")
        return digest


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------


class SimulatedProvisioningEngine:
    """Two resources per target: an instance and its firewall.

    ``partial_failures`` holds target ids whose next apply creates the
    instance but fails on the firewall.  ``plan_failures`` holds target
    ids whose plan fails.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._live: dict[str, ObservedInfraState] = {}
        self._applied: dict[str, DesiredInfraState] = {}
        self.plan_calls = 0
        self.apply_calls = 0
        self.refresh_calls = 0
        self.partial_failures: set[str] = set()
        self.plan_failures: set[str] = set()

    @staticmethod
    def _addresses(target_id: str) -> list[str]:
        return [f"sim_instance.{target_id}", f"sim_firewall.{target_id}"]

    def plan(
        self,
        desired: DesiredInfraState,
        observed: ObservedInfraState | None,
        *,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> ProvisionPlan:
        with self._lock:
            self.plan_calls += 1
            target_id = desired.target_id
            if target_id in self.plan_failures:
                raise ConvergenceError(f"plan failed for {target_id}")
            live = self._live.get(target_id)
            existing = set(live.resources) if live else set()
            changes = []
            for address in self._addresses(target_id):
                if address not in existing:
                    changes.append(ResourceChange(address=address, action="create"))
                elif self._applied.get(target_id) != desired:
                    changes.append(ResourceChange(address=address, action="update"))
            return ProvisionPlan(target_id=target_id, desired=desired, changes=changes)

    def apply(
        self,
        plan: ProvisionPlan,
        *,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> ApplyResult:
        with self._lock:
            self.apply_calls += 1
            target_id = plan.target_id
            instance, firewall = self._addresses(target_id)
            instance_id = "i-" + fake_digest(target_id)[7:15]
            endpoint = f"{target_id}.sim.local"

            if target_id in self.partial_failures:
                self.partial_failures.discard(target_id)
                self._live[target_id] = ObservedInfraState(
                    target_id=target_id,
                    instance_id=instance_id,
                    public_endpoint=endpoint,
                    resources=[instance],
                )
                return ApplyResult(
                    target_id=target_id,
                    complete=False,
                    instance_id=instance_id,
                    public_endpoint=endpoint,
                    resources=[instance],
                    detail=f"error creating {firewall}: quota exceeded",
                )

            self._live[target_id] = ObservedInfraState(
                target_id=target_id,
                instance_id=instance_id,
                public_endpoint=endpoint,
                resources=[instance, firewall],
            )
            self._applied[target_id] = plan.desired
            return ApplyResult(
                target_id=target_id,
                complete=True,
                instance_id=instance_id,
                public_endpoint=endpoint,
                resources=[instance, firewall],
            )

    def refresh(
        self,
        target_id: str,
        *,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> ObservedInfraState | None:
        with self._lock:
            self.refresh_calls += 1
            return self._live.get(target_id)

    # -- drift injection ----------------------------------------------------

    def destroy(self, target_id: str) -> None:
        """Simulate out-of-band deletion of a target's infrastructure."""
        with self._lock:
            self._live.pop(target_id, None)
            self._applied.pop(target_id, None)

    def replace_instance(self, target_id: str, instance_id: str) -> None:
        """Simulate an out-of-band instance replacement."""
        with self._lock:
            live = self._live[target_id]
            self._live[target_id] = live.model_copy(update={"instance_id": instance_id})


# ---------------------------------------------------------------------------
# Hosts
# ---------------------------------------------------------------------------


class SimulatedHost:
    """A docker host that understands the argv ``DockerWorkloadDriver`` sends.

    Failure injection:

    - ``pull_failures``: image references whose pull fails (``"*"`` = all)
    - ``start_failures``: image references whose ``docker run`` fails
    - ``unhealthy_images``: images that never pass a health probe
    - ``healthy_after``: polls a fresh container needs before it is healthy
    - ``stop_hangs``: graceful stop times out, forcing a kill
    """

    def __init__(self, name: str = "host") -> None:
        self.name = name
        self._lock = threading.Lock()
        self.containers: dict[str, str] = {}  # container name -> image
        self.images: set[str] = set()
        self.commands: list[list[str]] = []
        self.pull_failures: set[str] = set()
        self.start_failures: set[str] = set()
        self.unhealthy_images: set[str] = set()
        self.healthy_after = 1
        self.stop_hangs = False
        self.killed: list[str] = []
        self._polls_since_start = 0

    @property
    def running_image(self) -> str | None:
        with self._lock:
            return next(iter(self.containers.values()), None)

    def seed(self, container: str, image: str) -> None:
        """Pretend *image* is already running as *container*."""
        with self._lock:
            self.images.add(image)
            self.containers[container] = image
            self._polls_since_start = self.healthy_after

    def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> ExecResult:
        if cancel is not None:
            cancel.raise_if_cancelled()
        argv = list(argv)
        with self._lock:
            self.commands.append(argv)
            if argv[:1] != ["docker"] or len(argv) < 2:
                return ExecResult(argv=argv, exit_code=127, stderr="command not found")
            handler = getattr(self, f"_docker_{argv[1]}", None)
            if handler is None:
                return ExecResult(argv=argv, exit_code=1, stderr=f"unknown command {argv[1]}")
            return handler(argv)

    # -- docker subcommands (called with the lock held) ---------------------

    def _docker_inspect(self, argv: list[str]) -> ExecResult:
        name = argv[-1]
        if name not in self.containers:
            return ExecResult(argv=argv, exit_code=1, stderr=f"No such object: {name}")
        return ExecResult(argv=argv, exit_code=0, stdout=self.containers[name] + "\n")

    def _docker_pull(self, argv: list[str]) -> ExecResult:
        ref = argv[-1]
        if ref in self.pull_failures or "*" in self.pull_failures:
            return ExecResult(argv=argv, exit_code=1, stderr=f"pull access denied for {ref}")
        self.images.add(ref)
        return ExecResult(argv=argv, exit_code=0, stdout=f"Status: Downloaded {ref}\n")

    def _docker_stop(self, argv: list[str]) -> ExecResult:
        if self.stop_hangs:
            raise RemoteExecutionError(f"command timed out: {' '.join(argv)}")
        return ExecResult(argv=argv, exit_code=0, stdout=argv[-1] + "\n")

    def _docker_kill(self, argv: list[str]) -> ExecResult:
        self.killed.append(argv[-1])
        return ExecResult(argv=argv, exit_code=0, stdout=argv[-1] + "\n")

    def _docker_rm(self, argv: list[str]) -> ExecResult:
        self.containers.pop(argv[-1], None)
        return ExecResult(argv=argv, exit_code=0, stdout=argv[-1] + "\n")

    def _docker_run(self, argv: list[str]) -> ExecResult:
        name = argv[argv.index("--name") + 1]
        image = argv[-1]
        if name in self.containers:
            return ExecResult(
                argv=argv, exit_code=125, stderr=f"container name {name} already in use"
            )
        if image in self.start_failures:
            return ExecResult(argv=argv, exit_code=125, stderr=f"failed to start {image}")
        if image not in self.images:
            return ExecResult(argv=argv, exit_code=125, stderr=f"image {image} not present")
        self.containers[name] = image
        self._polls_since_start = 0
        return ExecResult(argv=argv, exit_code=0, stdout=fake_digest(name)[7:19] + "\n")

    # -- health -------------------------------------------------------------

    def health_status(self) -> int:
        with self._lock:
            image = next(iter(self.containers.values()), None)
            if image is None:
                raise ConnectionError(f"{self.name}: connection refused")
            self._polls_since_start += 1
            if image in self.unhealthy_images:
                return 503
            if self._polls_since_start < self.healthy_after:
                return 503
            return 200


class SimulatedFleet:
    """Hosts keyed by endpoint, plus the matching executor factory and probe."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.hosts: dict[str, SimulatedHost] = {}

    def host(self, endpoint: str) -> SimulatedHost:
        with self._lock:
            if endpoint not in self.hosts:
                self.hosts[endpoint] = SimulatedHost(endpoint)
            return self.hosts[endpoint]

    def executor_for(self, target: DeploymentTarget) -> SimulatedHost:
        return self.host(target.endpoint or target.target_id)

    def probe(self, url: str, *, timeout: float) -> int:
        hostname = urlsplit(url).hostname or ""
        with self._lock:
            host = self.hosts.get(hostname)
        if host is None:
            raise ConnectionError(f"{hostname}: name does not resolve")
        return host.health_status()
