"""Shared test fixtures for Rollwright."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from rollwright.bridge.simulated import (
    SimulatedFleet,
    SimulatedProvisioningEngine,
    SimulatedRegistry,
    fake_digest,
)
from rollwright.core.convergence import ConvergenceEngine
from rollwright.core.infra_state import ObservedStateStore
from rollwright.core.orchestrator import DeploymentOrchestrator
from rollwright.core.rollout_controller import RolloutController
from rollwright.core.rollout_ledger import RolloutLedger
from rollwright.core.target_registry import TargetRegistry
from rollwright.models.artifacts import ArtifactReference
from rollwright.models.config import DeployConfig, HealthCheckPolicy, RetryPolicy
from rollwright.models.infra import DesiredInfraState, InstanceSpec, NetworkSpec
from rollwright.models.inventory import Inventory, TargetSpec
from rollwright.models.targets import DeploymentTarget, WorkloadSpec

APP = "docker.io/repo/app"


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test state."""
    return tmp_path


@pytest.fixture
def db_path(tmp_dir: Path) -> Path:
    return tmp_dir / "state.db"


@pytest.fixture
def config(db_path: Path) -> DeployConfig:
    """DeployConfig with zero backoff so retries and health polls are instant."""
    return DeployConfig(
        state_db_path=db_path,
        registry_retry=RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0),
        health=HealthCheckPolicy(
            probe_timeout=1.0,
            retry=RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0),
        ),
        max_parallel_targets=4,
    )


@pytest.fixture
def registry(db_path: Path) -> TargetRegistry:
    """Provide a fresh TargetRegistry backed by a temp SQLite database."""
    return TargetRegistry(db_path)


@pytest.fixture
def ledger(db_path: Path) -> RolloutLedger:
    return RolloutLedger(db_path)


@pytest.fixture
def store(db_path: Path) -> ObservedStateStore:
    return ObservedStateStore(db_path)


@pytest.fixture
def sim_registry() -> SimulatedRegistry:
    """A simulated container registry with ``repo/app:sha123`` published."""
    sim = SimulatedRegistry()
    sim.publish(APP, "sha123")
    return sim


@pytest.fixture
def engine() -> SimulatedProvisioningEngine:
    return SimulatedProvisioningEngine()


@pytest.fixture
def fleet() -> SimulatedFleet:
    return SimulatedFleet()


@pytest.fixture
def convergence(
    engine: SimulatedProvisioningEngine,
    registry: TargetRegistry,
    store: ObservedStateStore,
    config: DeployConfig,
) -> ConvergenceEngine:
    return ConvergenceEngine(engine, registry, store, config)


@pytest.fixture
def controller(
    registry: TargetRegistry,
    ledger: RolloutLedger,
    store: ObservedStateStore,
    fleet: SimulatedFleet,
    config: DeployConfig,
) -> RolloutController:
    """A RolloutController whose hosts and probe come from the simulated fleet."""
    return RolloutController(registry, ledger, store, fleet, fleet.executor_for, config)


# ---------------------------------------------------------------------------
# Model factories: shared across test modules
# ---------------------------------------------------------------------------


@pytest.fixture
def make_desired() -> Callable[..., DesiredInfraState]:
    """Factory fixture: build a DesiredInfraState with sensible defaults."""

    def _factory(target_id: str = "t1", **overrides: Any) -> DesiredInfraState:
        defaults: dict[str, Any] = {
            "target_id": target_id,
            "instance_spec": InstanceSpec(region="sim-1", size="small", image="img-1"),
            "network_spec": NetworkSpec(ports=[22, 80]),
        }
        defaults.update(overrides)
        return DesiredInfraState(**defaults)

    return _factory


@pytest.fixture
def make_inventory(make_desired) -> Callable[..., Inventory]:
    """Factory fixture: an Inventory with one default TargetSpec per id."""

    def _factory(*target_ids: str) -> Inventory:
        return Inventory(
            targets=[
                TargetSpec(
                    target_id=target_id,
                    workload=WorkloadSpec(name="app", ports=["80:8080"]),
                    desired=make_desired(target_id),
                )
                for target_id in target_ids
            ]
        )

    return _factory


@pytest.fixture
def make_artifact() -> Callable[..., ArtifactReference]:
    """Factory fixture: a resolved ArtifactReference for ``repo/app``."""

    def _factory(tag: str = "v1", **overrides: Any) -> ArtifactReference:
        defaults: dict[str, Any] = {
            "registry": "docker.io",
            "repository": "repo/app",
            "tag": tag,
            "digest": fake_digest(f"{APP}:{tag}"),
        }
        defaults.update(overrides)
        return ArtifactReference(**defaults)

    return _factory


@pytest.fixture
def provisioned_target(
    registry: TargetRegistry,
    convergence: ConvergenceEngine,
    make_desired,
) -> Callable[..., DeploymentTarget]:
    """Factory fixture: register and converge a target, return its registry entry."""

    def _factory(target_id: str = "t1") -> DeploymentTarget:
        registry.upsert(
            DeploymentTarget(
                target_id=target_id,
                workload=WorkloadSpec(name="app", ports=["80:8080"]),
            )
        )
        convergence.converge(make_desired(target_id))
        return registry.require(target_id)

    return _factory


@pytest.fixture
def make_orchestrator(
    config: DeployConfig,
    make_inventory,
    sim_registry: SimulatedRegistry,
    engine: SimulatedProvisioningEngine,
    fleet: SimulatedFleet,
) -> Callable[..., DeploymentOrchestrator]:
    """Factory fixture: an orchestrator over simulated collaborators."""

    def _factory(*target_ids: str, **config_overrides: Any) -> DeploymentOrchestrator:
        return DeploymentOrchestrator(
            config.model_copy(update=config_overrides),
            make_inventory(*target_ids),
            registry_client=sim_registry,
            engine=engine,
            probe=fleet,
            executor_factory=fleet.executor_for,
        )

    return _factory
