"""Durable ObservedInfraState store, keyed by target_id.

Besides the observed state itself each row carries an ``applying_hash``:
the hash of a desired state whose apply has started but not finished.
A row with a pending apply is never trusted for a no-op short-circuit.
"""

from __future__ import annotations

from datetime import datetime, timezone

from rollwright.core.sqlite_store import SqliteStore
from rollwright.models.infra import ObservedInfraState

_CREATE_OBSERVED = """
CREATE TABLE IF NOT EXISTS observed_infra_state (
    target_id      TEXT PRIMARY KEY,
    payload_json   TEXT,
    applying_hash  TEXT NOT NULL DEFAULT '',
    updated_at     TEXT NOT NULL
);
"""


class ObservedStateStore(SqliteStore):
    """Persistence for the convergence engine's view of each target."""

    _SCHEMA = (_CREATE_OBSERVED,)

    def get(self, target_id: str) -> ObservedInfraState | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload_json FROM observed_infra_state WHERE target_id = ?",
                (target_id,),
            ).fetchone()
        if not row or row[0] is None:
            return None
        return ObservedInfraState.model_validate_json(row[0])

    def pending_apply(self, target_id: str) -> str:
        """Hash of an apply that started and never finished, or ``""``."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT applying_hash FROM observed_infra_state WHERE target_id = ?",
                (target_id,),
            ).fetchone()
        return row[0] if row else ""

    def begin_apply(self, target_id: str, desired_hash: str) -> None:
        """Record that an apply of *desired_hash* is about to mutate infrastructure."""
        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO observed_infra_state (target_id, payload_json, applying_hash, updated_at)
                VALUES (?, NULL, ?, ?)
                ON CONFLICT(target_id) DO UPDATE SET
                    applying_hash = excluded.applying_hash,
                    updated_at = excluded.updated_at
                """,
                (target_id, desired_hash, now),
            )
            conn.commit()

    def put(self, state: ObservedInfraState) -> ObservedInfraState:
        """Persist *state* and clear any pending-apply marker."""
        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO observed_infra_state (target_id, payload_json, applying_hash, updated_at)
                VALUES (?, ?, '', ?)
                ON CONFLICT(target_id) DO UPDATE SET
                    payload_json = excluded.payload_json,
                    applying_hash = '',
                    updated_at = excluded.updated_at
                """,
                (state.target_id, state.model_dump_json(), now),
            )
            conn.commit()
        return state

    def set_probe_result(self, target_id: str, ok: bool) -> ObservedInfraState | None:
        """Record the outcome of the latest health probe against *target_id*."""
        current = self.get(target_id)
        if current is None:
            return None
        updated = current.model_copy(update={"last_probe_ok": ok})
        with self._connect() as conn:
            conn.execute(
                "UPDATE observed_infra_state SET payload_json = ?, updated_at = ? "
                "WHERE target_id = ?",
                (
                    updated.model_dump_json(),
                    datetime.now(timezone.utc).isoformat(),
                    target_id,
                ),
            )
            conn.commit()
        return updated
