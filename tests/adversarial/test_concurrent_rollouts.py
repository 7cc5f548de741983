"""Adversarial tests: overlapping operations on the same target.

At most one converge or rollout may run against a target at a time; a
second one is rejected, never interleaved.  Different targets proceed
independently.
"""

from __future__ import annotations

import threading

import pytest

from rollwright.bridge.simulated import SimulatedFleet
from rollwright.core.convergence import ConvergenceEngine
from rollwright.core.errors import ConvergenceInProgress, RolloutInProgress
from rollwright.core.rollout_controller import RolloutController
from rollwright.core.target_registry import TargetRegistry
from rollwright.models.deployment import DeploymentPolicy
from rollwright.models.rollout import RolloutOutcome


class GatedProbe:
    """Health probe that parks every caller until ``release`` is set."""

    def __init__(self, fleet: SimulatedFleet) -> None:
        self._fleet = fleet
        self.entered = threading.Event()
        self.release = threading.Event()

    def probe(self, url: str, *, timeout: float) -> int:
        self.entered.set()
        self.release.wait(5)
        return self._fleet.probe(url, timeout=timeout)


@pytest.fixture
def gate(fleet) -> GatedProbe:
    return GatedProbe(fleet)


@pytest.fixture
def gated_controller(registry, ledger, store, fleet, config, gate) -> RolloutController:
    return RolloutController(registry, ledger, store, gate, fleet.executor_for, config)


def _start_rollout(controller, target_id, artifact, results):
    def run():
        results.append(controller.rollout(target_id, artifact))

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread


class TestSameTargetIsolation:
    def test_second_rollout_rejected(
        self, gated_controller, gate, provisioned_target, make_artifact, fleet, ledger
    ):
        provisioned_target("t1")
        v1, v2 = make_artifact("v1"), make_artifact("v2")
        results: list = []
        thread = _start_rollout(gated_controller, "t1", v1, results)
        assert gate.entered.wait(5)

        with pytest.raises(RolloutInProgress):
            gated_controller.rollout("t1", v2)
        commands_during = list(fleet.host("t1.sim.local").commands)

        gate.release.set()
        thread.join(5)

        (record,) = results
        assert record.outcome == RolloutOutcome.SUCCESS
        assert [r.artifact for r in ledger.history("t1")] == [v1]
        assert not any(v2.pull_reference in argv for argv in commands_during)
        assert fleet.host("t1.sim.local").running_image == v1.pull_reference

    def test_converge_rejected_during_rollout(
        self, gated_controller, gate, provisioned_target, convergence, make_desired,
        make_artifact, engine,
    ):
        provisioned_target("t1")
        results: list = []
        thread = _start_rollout(gated_controller, "t1", make_artifact("v1"), results)
        assert gate.entered.wait(5)
        plans = engine.plan_calls

        with pytest.raises(ConvergenceInProgress):
            convergence.converge(make_desired("t1"))
        assert engine.plan_calls == plans

        gate.release.set()
        thread.join(5)
        assert results[0].outcome == RolloutOutcome.SUCCESS

    def test_rollout_allowed_after_release(
        self, gated_controller, gate, provisioned_target, make_artifact
    ):
        provisioned_target("t1")
        gate.release.set()
        first = gated_controller.rollout("t1", make_artifact("v1"))
        second = gated_controller.rollout("t1", make_artifact("v2"))
        assert first.outcome == second.outcome == RolloutOutcome.SUCCESS
        assert second.previous_artifact == make_artifact("v1")


class TestIndependentTargets:
    def test_other_target_not_blocked(
        self, gated_controller, gate, provisioned_target, make_artifact, controller
    ):
        provisioned_target("t1")
        provisioned_target("t2")
        results: list = []
        thread = _start_rollout(gated_controller, "t1", make_artifact("v1"), results)
        assert gate.entered.wait(5)

        # t2 goes through the ungated controller while t1 is parked.
        record = controller.rollout("t2", make_artifact("v1"))
        assert record.outcome == RolloutOutcome.SUCCESS

        gate.release.set()
        thread.join(5)
        assert results[0].outcome == RolloutOutcome.SUCCESS

    def test_parallel_deploy_records_every_target(self, make_orchestrator):
        ids = [f"t{i}" for i in range(8)]
        orch = make_orchestrator(*ids, max_parallel_targets=8)
        result = orch.deploy("repo/app:sha123", ids, DeploymentPolicy.BEST_EFFORT)

        assert result.exit_code == 0
        for target_id in ids:
            assert len(orch.ledger.history(target_id)) == 1
            assert orch.ledger.verify_chain(target_id)


class TestSharedDatabaseIsolation:
    """Separate registries on one state database behave like separate processes."""

    def test_rollout_rejected_across_registries(
        self, gated_controller, gate, provisioned_target, make_artifact,
        db_path, ledger, store, fleet, config,
    ):
        provisioned_target("t1")
        results: list = []
        thread = _start_rollout(gated_controller, "t1", make_artifact("v1"), results)
        assert gate.entered.wait(5)

        elsewhere = RolloutController(
            TargetRegistry(db_path), ledger, store, fleet, fleet.executor_for, config
        )
        with pytest.raises(RolloutInProgress):
            elsewhere.rollout("t1", make_artifact("v2"))

        gate.release.set()
        thread.join(5)
        assert results[0].outcome == RolloutOutcome.SUCCESS
        assert len(ledger.history("t1")) == 1

    def test_converge_rejected_across_registries(
        self, gated_controller, gate, provisioned_target, make_artifact, make_desired,
        db_path, store, engine, config,
    ):
        provisioned_target("t1")
        results: list = []
        thread = _start_rollout(gated_controller, "t1", make_artifact("v1"), results)
        assert gate.entered.wait(5)

        elsewhere = ConvergenceEngine(engine, TargetRegistry(db_path), store, config)
        with pytest.raises(ConvergenceInProgress):
            elsewhere.converge(make_desired("t1"))

        gate.release.set()
        thread.join(5)
        assert results[0].outcome == RolloutOutcome.SUCCESS
