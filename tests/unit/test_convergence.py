"""Tests for the ConvergenceEngine: idempotence, partial failure, locking, drift."""

from __future__ import annotations

import threading

import pytest

from rollwright.bridge.simulated import SimulatedProvisioningEngine
from rollwright.core.convergence import ConvergenceEngine
from rollwright.core.errors import ConvergenceError, ConvergenceInProgress
from rollwright.core.hasher import compute_desired_state_hash
from rollwright.core.infra_state import ObservedStateStore
from rollwright.core.target_registry import TargetRegistry
from rollwright.models.config import DeployConfig, LockMode, Timeouts
from rollwright.models.infra import InstanceSpec
from rollwright.models.targets import DeploymentTarget, TargetStatus


@pytest.fixture
def target(registry: TargetRegistry) -> DeploymentTarget:
    return registry.upsert(DeploymentTarget(target_id="t1"))


def hold_lock(registry: TargetRegistry, target_id: str):
    """Hold *target_id*'s lock from another thread until the returned event is set."""
    acquired = threading.Event()
    release = threading.Event()

    def _holder():
        with registry.locked(target_id):
            acquired.set()
            release.wait(5)

    thread = threading.Thread(target=_holder, daemon=True)
    thread.start()
    assert acquired.wait(5)
    return release, thread


class TestConverge:
    def test_first_converge_provisions(
        self, convergence, engine, store, registry, target, make_desired
    ):
        desired = make_desired("t1")
        observed = convergence.converge(desired)

        assert observed.public_endpoint == "t1.sim.local"
        assert observed.instance_id.startswith("i-")
        assert observed.state_hash == compute_desired_state_hash(desired)
        assert observed.partial is False
        assert sorted(observed.resources) == ["sim_firewall.t1", "sim_instance.t1"]
        assert engine.apply_calls == 1
        assert store.get("t1") == observed
        assert registry.require("t1").endpoint == "t1.sim.local"

    def test_second_converge_is_noop(self, convergence, engine, target, make_desired):
        desired = make_desired("t1")
        first = convergence.converge(desired)
        plans, applies = engine.plan_calls, engine.apply_calls

        second = convergence.converge(desired)

        assert second.state_hash == first.state_hash
        assert second.instance_id == first.instance_id
        assert second.public_endpoint == first.public_endpoint
        assert (engine.plan_calls, engine.apply_calls) == (plans, applies)

    def test_changed_desired_state_applies(self, convergence, engine, target, make_desired):
        convergence.converge(make_desired("t1"))
        bigger = make_desired(
            "t1", instance_spec=InstanceSpec(region="sim-1", size="large", image="img-1")
        )
        observed = convergence.converge(bigger)

        assert engine.apply_calls == 2
        assert observed.state_hash == compute_desired_state_hash(bigger)

    def test_failed_probe_forces_replan(self, convergence, engine, store, target, make_desired):
        desired = make_desired("t1")
        convergence.converge(desired)
        store.set_probe_result("t1", False)

        observed = convergence.converge(desired)

        assert engine.plan_calls == 2
        assert engine.apply_calls == 1  # nothing changed, so no apply
        assert observed.last_probe_ok is False  # only a passing probe sets it

        store.set_probe_result("t1", True)
        convergence.converge(desired)
        assert engine.plan_calls == 2

    def test_pending_apply_forces_replan(self, convergence, engine, store, target, make_desired):
        desired = make_desired("t1")
        convergence.converge(desired)
        store.begin_apply("t1", compute_desired_state_hash(desired))

        convergence.converge(desired)

        assert engine.plan_calls == 2
        assert store.pending_apply("t1") == ""

    def test_unregistered_target_still_converges(self, convergence, registry, make_desired):
        observed = convergence.converge(make_desired("loose"))
        assert observed.public_endpoint == "loose.sim.local"
        assert registry.get("loose") is None


class TestConvergeStatus:
    def test_new_target_ends_unknown(self, convergence, registry, target, make_desired):
        convergence.converge(make_desired("t1"))
        assert registry.require("t1").status == TargetStatus.UNKNOWN

    def test_healthy_target_stays_healthy(self, convergence, registry, target, make_desired):
        registry.update("t1", status=TargetStatus.HEALTHY)
        convergence.converge(make_desired("t1"))
        assert registry.require("t1").status == TargetStatus.HEALTHY

    def test_plan_failure_restores_status(
        self, convergence, engine, registry, target, make_desired
    ):
        registry.update("t1", status=TargetStatus.HEALTHY)
        engine.plan_failures.add("t1")

        with pytest.raises(ConvergenceError) as exc_info:
            convergence.converge(make_desired("t1"))

        assert exc_info.value.partial is False
        assert registry.require("t1").status == TargetStatus.HEALTHY

    def test_plan_crash_restores_status(self, registry, store, config, target, make_desired):
        class CrashingEngine(SimulatedProvisioningEngine):
            def plan(self, desired, observed, *, timeout, cancel=None):
                raise ValueError("malformed plan output")

        registry.update("t1", status=TargetStatus.HEALTHY)
        convergence = ConvergenceEngine(CrashingEngine(), registry, store, config)

        with pytest.raises(ValueError):
            convergence.converge(make_desired("t1"))

        assert registry.require("t1").status == TargetStatus.HEALTHY
        assert store.get("t1") is None

    def test_apply_crash_marks_degraded(self, registry, store, config, target, make_desired):
        class CrashingEngine(SimulatedProvisioningEngine):
            def apply(self, plan, *, timeout, cancel=None):
                super().apply(plan, timeout=timeout, cancel=cancel)
                raise ValueError("malformed output")

        convergence = ConvergenceEngine(CrashingEngine(), registry, store, config)

        with pytest.raises(ValueError):
            convergence.converge(make_desired("t1"))

        state = store.get("t1")
        assert state.partial is True
        assert sorted(state.resources) == ["sim_firewall.t1", "sim_instance.t1"]
        assert store.pending_apply("t1") == ""
        assert registry.require("t1").status == TargetStatus.DEGRADED

    def test_replaced_instance_resets_status(
        self, registry, store, config, target, make_desired, make_artifact
    ):
        class ReplacingEngine(SimulatedProvisioningEngine):
            new_instance = ""

            def apply(self, plan, *, timeout, cancel=None):
                result = super().apply(plan, timeout=timeout, cancel=cancel)
                if self.new_instance:
                    result = result.model_copy(update={"instance_id": self.new_instance})
                return result

        engine = ReplacingEngine()
        convergence = ConvergenceEngine(engine, registry, store, config)
        first = convergence.converge(make_desired("t1"))
        registry.update(
            "t1", status=TargetStatus.HEALTHY, current_artifact=make_artifact("v1")
        )

        engine.new_instance = "i-replacement"
        bigger = make_desired(
            "t1", instance_spec=InstanceSpec(region="sim-1", size="large", image="img-1")
        )
        observed = convergence.converge(bigger)

        assert observed.instance_id == "i-replacement" != first.instance_id
        target = registry.require("t1")
        assert target.status == TargetStatus.UNKNOWN
        assert target.current_artifact is None

    def test_in_place_update_keeps_probe_result(
        self, convergence, store, registry, target, make_desired
    ):
        convergence.converge(make_desired("t1"))
        store.set_probe_result("t1", False)
        registry.update("t1", status=TargetStatus.HEALTHY)

        bigger = make_desired(
            "t1", instance_spec=InstanceSpec(region="sim-1", size="large", image="img-1")
        )
        observed = convergence.converge(bigger)

        assert observed.last_probe_ok is False
        assert registry.require("t1").status == TargetStatus.HEALTHY


class TestPartialConvergence:
    def test_partial_apply_is_recorded(
        self, convergence, engine, store, registry, target, make_desired
    ):
        engine.partial_failures.add("t1")

        with pytest.raises(ConvergenceError) as exc_info:
            convergence.converge(make_desired("t1"))

        assert exc_info.value.partial is True
        assert "quota exceeded" in exc_info.value.detail
        state = store.get("t1")
        assert state.partial is True
        assert state.resources == ["sim_instance.t1"]
        assert state.state_hash == ""
        assert store.pending_apply("t1") == ""
        assert registry.require("t1").status == TargetStatus.DEGRADED

    def test_next_converge_completes(
        self, convergence, engine, store, registry, target, make_desired
    ):
        engine.partial_failures.add("t1")
        with pytest.raises(ConvergenceError):
            convergence.converge(make_desired("t1"))

        observed = convergence.converge(make_desired("t1"))

        assert observed.partial is False
        assert sorted(observed.resources) == ["sim_firewall.t1", "sim_instance.t1"]
        assert registry.require("t1").status == TargetStatus.UNKNOWN

    def test_apply_exception_is_partial(
        self, registry, store, config, target, make_desired
    ):
        class ExplodingEngine(SimulatedProvisioningEngine):
            def apply(self, plan, *, timeout, cancel=None):
                raise ConvergenceError("provider crashed")

        engine = ExplodingEngine()
        convergence = ConvergenceEngine(engine, registry, store, config)

        with pytest.raises(ConvergenceError) as exc_info:
            convergence.converge(make_desired("t1"))

        assert exc_info.value.partial is True
        assert store.get("t1").partial is True

    def test_interrupted_apply_records_live_resources(
        self, registry, store, config, target, make_desired
    ):
        class HalfwayEngine(SimulatedProvisioningEngine):
            def apply(self, plan, *, timeout, cancel=None):
                self.partial_failures.add(plan.target_id)
                super().apply(plan, timeout=timeout, cancel=cancel)
                raise ConvergenceError("terraform apply timed out")

        engine = HalfwayEngine()
        convergence = ConvergenceEngine(engine, registry, store, config)

        with pytest.raises(ConvergenceError) as exc_info:
            convergence.converge(make_desired("t1"))

        assert exc_info.value.partial is True
        state = store.get("t1")
        assert state.partial is True
        assert state.resources == ["sim_instance.t1"]
        assert state.instance_id.startswith("i-")
        assert state.public_endpoint == "t1.sim.local"
        assert registry.require("t1").endpoint == "t1.sim.local"

    def test_unreadable_state_falls_back_to_stored(
        self, registry, store, config, target, make_desired
    ):
        class BlindEngine(SimulatedProvisioningEngine):
            broken = False

            def apply(self, plan, *, timeout, cancel=None):
                if self.broken:
                    raise ConvergenceError("provider crashed")
                return super().apply(plan, timeout=timeout, cancel=cancel)

            def refresh(self, target_id, *, timeout, cancel=None):
                if self.broken:
                    raise ConvergenceError("state backend unreachable")
                return super().refresh(target_id, timeout=timeout, cancel=cancel)

        engine = BlindEngine()
        convergence = ConvergenceEngine(engine, registry, store, config)
        convergence.converge(make_desired("t1"))

        engine.broken = True
        bigger = make_desired(
            "t1", instance_spec=InstanceSpec(region="sim-1", size="large", image="img-1")
        )
        with pytest.raises(ConvergenceError):
            convergence.converge(bigger)

        state = store.get("t1")
        assert state.partial is True
        assert sorted(state.resources) == ["sim_firewall.t1", "sim_instance.t1"]


class TestConvergeLocking:
    def test_fail_fast_when_busy(self, convergence, registry, target, make_desired):
        release, thread = hold_lock(registry, "t1")
        try:
            with pytest.raises(ConvergenceInProgress):
                convergence.converge(make_desired("t1"))
        finally:
            release.set()
            thread.join(5)

    def test_block_mode_times_out(
        self, engine, registry, store, config: DeployConfig, target, make_desired
    ):
        blocking = config.model_copy(
            update={
                "convergence_lock_mode": LockMode.BLOCK,
                "timeouts": Timeouts(lock_wait=0.1),
            }
        )
        convergence = ConvergenceEngine(engine, registry, store, blocking)
        release, thread = hold_lock(registry, "t1")
        try:
            with pytest.raises(ConvergenceInProgress):
                convergence.converge(make_desired("t1"))
        finally:
            release.set()
            thread.join(5)

    def test_block_mode_waits_for_release(
        self, engine, registry, store, config: DeployConfig, target, make_desired
    ):
        blocking = config.model_copy(
            update={
                "convergence_lock_mode": LockMode.BLOCK,
                "timeouts": Timeouts(lock_wait=5.0),
            }
        )
        convergence = ConvergenceEngine(engine, registry, store, blocking)
        release, thread = hold_lock(registry, "t1")
        threading.Timer(0.1, release.set).start()

        observed = convergence.converge(make_desired("t1"))

        thread.join(5)
        assert observed.public_endpoint == "t1.sim.local"

    def test_different_targets_do_not_block(self, convergence, registry, make_desired):
        registry.upsert(DeploymentTarget(target_id="t2"))
        release, thread = hold_lock(registry, "t1")
        try:
            observed = convergence.converge(make_desired("t2"))
        finally:
            release.set()
            thread.join(5)
        assert observed.public_endpoint == "t2.sim.local"


class TestDriftDetection:
    def test_never_converged(self, convergence, target, make_desired):
        report = convergence.detect_drift(make_desired("t1"))
        assert report.drifted
        assert "target has never been converged" in report.reasons

    def test_in_sync_after_converge(self, convergence, target, make_desired):
        convergence.converge(make_desired("t1"))
        report = convergence.detect_drift(make_desired("t1"))
        assert not report.drifted
        assert report.reasons == []
        assert report.live is not None

    def test_destroyed_infrastructure(self, convergence, engine, target, make_desired):
        convergence.converge(make_desired("t1"))
        engine.destroy("t1")
        report = convergence.detect_drift(make_desired("t1"))
        assert report.drifted
        assert "live infrastructure is missing" in report.reasons

    def test_replaced_instance(self, convergence, engine, target, make_desired):
        convergence.converge(make_desired("t1"))
        engine.replace_instance("t1", "i-intruder")
        report = convergence.detect_drift(make_desired("t1"))
        assert any(r.startswith("instance changed") for r in report.reasons)

    def test_desired_state_changed(self, convergence, target, make_desired):
        convergence.converge(make_desired("t1"))
        changed = make_desired(
            "t1", instance_spec=InstanceSpec(region="sim-2", size="small", image="img-1")
        )
        report = convergence.detect_drift(changed)
        assert "desired state changed since last convergence" in report.reasons

    def test_drift_check_does_not_mutate(self, convergence, engine, store, target, make_desired):
        convergence.converge(make_desired("t1"))
        before = store.get("t1")
        engine.destroy("t1")
        convergence.detect_drift(make_desired("t1"))
        assert store.get("t1") == before
        assert engine.apply_calls == 1
