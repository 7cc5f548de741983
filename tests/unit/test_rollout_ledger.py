"""Tests for the RolloutLedger: append-only, per-target hash chains."""

from __future__ import annotations

import pytest

from rollwright.core.rollout_ledger import RolloutLedger
from rollwright.models.rollout import RolloutOutcome, RolloutRecord


@pytest.fixture
def make_record(make_artifact):
    def _factory(target_id: str = "t1", tag: str = "v1", **overrides) -> RolloutRecord:
        defaults = {
            "target_id": target_id,
            "artifact": make_artifact(tag),
            "outcome": RolloutOutcome.SUCCESS,
            "transitions": ["idle->pulling", "pulling->stopping"],
        }
        defaults.update(overrides)
        return RolloutRecord(**defaults)

    return _factory


class TestRolloutLedger:
    def test_append_seals_record(self, ledger: RolloutLedger, make_record):
        sealed = ledger.append(make_record())
        assert len(sealed.record_hash) == 64
        assert sealed.previous_record_hash == ""

    def test_chain_links_per_target(self, ledger: RolloutLedger, make_record):
        a1 = ledger.append(make_record("a"))
        b1 = ledger.append(make_record("b"))
        a2 = ledger.append(make_record("a", "v2"))

        assert a2.previous_record_hash == a1.record_hash
        assert b1.previous_record_hash == ""

    def test_history_in_order(self, ledger: RolloutLedger, make_record):
        for tag in ("v1", "v2", "v3"):
            ledger.append(make_record(tag=tag))
        assert [r.artifact.tag for r in ledger.history("t1")] == ["v1", "v2", "v3"]

    def test_history_round_trips_record(self, ledger: RolloutLedger, make_record, make_artifact):
        sealed = ledger.append(
            make_record(
                outcome=RolloutOutcome.ROLLED_BACK,
                previous_artifact=make_artifact("v0"),
                error_code="health_check_timeout",
            )
        )
        assert ledger.history("t1") == [sealed]

    def test_last_successful_skips_failures(self, ledger: RolloutLedger, make_record):
        ledger.append(make_record(tag="v1"))
        ledger.append(make_record(tag="v2", outcome=RolloutOutcome.FAILED))
        ledger.append(make_record(tag="v3", outcome=RolloutOutcome.ROLLED_BACK))

        assert ledger.last_successful("t1").artifact.tag == "v1"
        assert ledger.last_successful_artifact("t1").tag == "v1"

    def test_last_successful_none(self, ledger: RolloutLedger):
        assert ledger.last_successful_artifact("t1") is None
        assert ledger.history("t1") == []

    def test_target_ids(self, ledger: RolloutLedger, make_record):
        ledger.append(make_record("b"))
        ledger.append(make_record("a"))
        ledger.append(make_record("b"))
        assert ledger.target_ids() == ["a", "b"]

    def test_verify_chain_valid(self, ledger: RolloutLedger, make_record):
        for tag in ("v1", "v2", "v3"):
            ledger.append(make_record(tag=tag))
        assert ledger.verify_chain("t1") is True

    def test_verify_empty_chain(self, ledger: RolloutLedger):
        assert ledger.verify_chain("nobody") is True

    def test_ledger_has_no_mutators(self):
        for name in ("update", "delete", "remove", "clear"):
            assert not hasattr(RolloutLedger, name)
