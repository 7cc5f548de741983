"""Append-only, hash-chained rollout audit log backed by SQLite.

Design:
- Append-only: only `append()` writes; no update, no delete.
- Hash-chained per target: each record carries the hash of the target's
  previous record.
- One record per rollout attempt, written once the attempt has finished.
"""

from __future__ import annotations

from rollwright.core.hasher import compute_record_hash
from rollwright.core.sqlite_store import SqliteStore
from rollwright.models.artifacts import ArtifactReference
from rollwright.models.rollout import RolloutOutcome, RolloutRecord

_CREATE_RECORDS = """
CREATE TABLE IF NOT EXISTS rollout_records (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id             TEXT NOT NULL UNIQUE,
    target_id             TEXT NOT NULL,
    outcome               TEXT NOT NULL,
    started_at            TEXT NOT NULL,
    finished_at           TEXT NOT NULL,
    payload_json          TEXT NOT NULL,
    previous_record_hash  TEXT NOT NULL DEFAULT '',
    record_hash           TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_TARGET = """
CREATE INDEX IF NOT EXISTS idx_rollout_target ON rollout_records(target_id, id);
"""


class LedgerIntegrityError(RuntimeError):
    """Raised when a target's hash chain is broken."""


class RolloutLedger(SqliteStore):
    """Audit log of rollout attempts.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    _SCHEMA = (_CREATE_RECORDS, _CREATE_IDX_TARGET)

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, record: RolloutRecord) -> RolloutRecord:
        """Seal *record* into the target's chain and persist it.

        Returns the record with ``previous_record_hash`` and
        ``record_hash`` set.
        """
        previous_hash = self._latest_hash(record.target_id)
        record_dict = record.model_dump(mode="json")
        record_dict["previous_record_hash"] = previous_hash
        record_dict["record_hash"] = ""
        sealed = record.model_copy(
            update={
                "previous_record_hash": previous_hash,
                "record_hash": compute_record_hash(record_dict),
            }
        )

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO rollout_records
                    (record_id, target_id, outcome, started_at, finished_at,
                     payload_json, previous_record_hash, record_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    sealed.record_id,
                    sealed.target_id,
                    sealed.outcome.value,
                    sealed.started_at.isoformat(),
                    sealed.finished_at.isoformat(),
                    sealed.model_dump_json(),
                    sealed.previous_record_hash,
                    sealed.record_hash,
                ),
            )
            conn.commit()
        return sealed

    def _latest_hash(self, target_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT record_hash FROM rollout_records WHERE target_id = ? "
                "ORDER BY id DESC LIMIT 1",
                (target_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def history(self, target_id: str) -> list[RolloutRecord]:
        """All records for *target_id*, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT payload_json FROM rollout_records WHERE target_id = ? "
                "ORDER BY id ASC",
                (target_id,),
            ).fetchall()
        return [RolloutRecord.model_validate_json(r[0]) for r in rows]

    def last_successful(self, target_id: str) -> RolloutRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload_json FROM rollout_records "
                "WHERE target_id = ? AND outcome = ? ORDER BY id DESC LIMIT 1",
                (target_id, RolloutOutcome.SUCCESS.value),
            ).fetchone()
        return RolloutRecord.model_validate_json(row[0]) if row else None

    def last_successful_artifact(self, target_id: str) -> ArtifactReference | None:
        record = self.last_successful(target_id)
        return record.artifact if record else None

    def target_ids(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT target_id FROM rollout_records ORDER BY target_id"
            ).fetchall()
        return [r[0] for r in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, target_id: str) -> bool:
        """Recompute every record hash for *target_id* and check the links.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for record in self.history(target_id):
            if record.previous_record_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at record {record.record_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {record.previous_record_hash!r}"
                )
            expected = compute_record_hash(record.model_dump(mode="json"))
            if record.record_hash != expected:
                raise LedgerIntegrityError(
                    f"Tampered record {record.record_id}: "
                    f"expected hash={expected!r}, got {record.record_hash!r}"
                )
            prev_hash = record.record_hash
        return True
