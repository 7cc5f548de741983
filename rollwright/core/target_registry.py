"""Durable catalog of deployment targets with per-target mutual exclusion.

Pure data access.  The per-target lock is what serializes convergence and
rollout on one host.  It has two layers: a re-entrant in-process lock, so
the holder can keep calling ``update`` while it owns the target, and a
lease row in the state database, so two processes sharing one database
also exclude each other.  A lease is renewed while held and expires if its
holder dies.
"""

from __future__ import annotations

import logging
import os
import socket
import sqlite3
import threading
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rollwright.core.errors import UnknownTarget
from rollwright.core.sqlite_store import SqliteStore
from rollwright.models.targets import DeploymentTarget, TargetStatus

logger = logging.getLogger(__name__)

_CREATE_TARGETS = """
CREATE TABLE IF NOT EXISTS deployment_targets (
    target_id     TEXT PRIMARY KEY,
    status        TEXT NOT NULL,
    payload_json  TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);
"""

_CREATE_IDX_STATUS = """
CREATE INDEX IF NOT EXISTS idx_target_status ON deployment_targets(status);
"""

_CREATE_LEASES = """
CREATE TABLE IF NOT EXISTS target_leases (
    target_id   TEXT PRIMARY KEY,
    holder      TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
"""

_LEASE_POLL_INTERVAL = 0.05


class TargetBusy(RuntimeError):
    """Raised when a target's lock could not be acquired."""


class TargetRegistry(SqliteStore):
    """SQLite-backed target catalog.

    Parameters
    ----------
    db_path:
        Path to the state database.
    lease_ttl:
        Seconds a held lease stays valid without renewal.  Holders renew
        at a third of this, so only a dead holder's lease ever expires.
    """

    _SCHEMA = (_CREATE_TARGETS, _CREATE_IDX_STATUS, _CREATE_LEASES)

    def __init__(self, db_path: Path, *, lease_ttl: float = 60.0) -> None:
        super().__init__(db_path)
        self._lease_ttl = lease_ttl
        self._holder = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"
        self._locks: dict[str, threading.RLock] = {}
        self._depth: dict[str, int] = {}
        self._locks_guard = threading.Lock()

    @property
    def holder(self) -> str:
        """Identity written into the lease rows this registry takes."""
        return self._holder

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _lock_for(self, target_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(target_id)
            if lock is None:
                lock = self._locks[target_id] = threading.RLock()
            return lock

    @contextmanager
    def locked(
        self,
        target_id: str,
        *,
        blocking: bool = True,
        timeout: float | None = None,
    ) -> Iterator[None]:
        """Hold *target_id*'s lock for the duration of the block.

        Non-blocking, or blocking past *timeout*, raises ``TargetBusy``.
        The wait covers both the in-process lock and the database lease.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        lock = self._lock_for(target_id)
        if not blocking:
            acquired = lock.acquire(blocking=False)
        else:
            acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise TargetBusy(f"target {target_id} is busy")

        try:
            # Only the thread owning the RLock touches its depth entry.
            depth = self._depth.get(target_id, 0)
            if depth == 0 and not self._acquire_lease(target_id, blocking, deadline):
                raise TargetBusy(f"target {target_id} is leased by another process")
            self._depth[target_id] = depth + 1
            try:
                if depth == 0:
                    with self._renewing(target_id):
                        yield
                else:
                    yield
            finally:
                self._depth[target_id] = depth
                if depth == 0:
                    self._release_lease(target_id)
        finally:
            lock.release()

    def lease_holder(self, target_id: str) -> str | None:
        """Holder of *target_id*'s unexpired lease, if any."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT holder, expires_at FROM target_leases WHERE target_id = ?",
                (target_id,),
            ).fetchone()
        if row is None or row[1] <= time.time():
            return None
        return row[0]

    def _acquire_lease(
        self, target_id: str, blocking: bool, deadline: float | None
    ) -> bool:
        while True:
            if self._try_lease(target_id):
                return True
            if not blocking:
                return False
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                time.sleep(min(_LEASE_POLL_INTERVAL, remaining))
            else:
                time.sleep(_LEASE_POLL_INTERVAL)

    def _try_lease(self, target_id: str) -> bool:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT holder, expires_at FROM target_leases WHERE target_id = ?",
                (target_id,),
            ).fetchone()
            now = time.time()
            if row is not None and row[0] != self._holder and row[1] > now:
                conn.rollback()
                return False
            if row is not None and row[0] != self._holder:
                logger.warning(
                    "Taking over expired lease on %s from %s", target_id, row[0]
                )
            conn.execute(
                """
                INSERT INTO target_leases (target_id, holder, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(target_id) DO UPDATE SET
                    holder = excluded.holder,
                    expires_at = excluded.expires_at
                """,
                (target_id, self._holder, now + self._lease_ttl),
            )
            conn.commit()
            return True
        finally:
            conn.close()

    def _renew_lease(self, target_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE target_leases SET expires_at = ? "
                "WHERE target_id = ? AND holder = ?",
                (time.time() + self._lease_ttl, target_id, self._holder),
            )
            conn.commit()
            return cursor.rowcount == 1

    def _release_lease(self, target_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM target_leases WHERE target_id = ? AND holder = ?",
                (target_id, self._holder),
            )
            conn.commit()

    @contextmanager
    def _renewing(self, target_id: str) -> Iterator[None]:
        stop = threading.Event()

        def _heartbeat() -> None:
            while not stop.wait(self._lease_ttl / 3):
                try:
                    renewed = self._renew_lease(target_id)
                except sqlite3.Error:
                    logger.exception("Could not renew lease on %s", target_id)
                    continue
                if not renewed:
                    logger.error("Lost lease on %s", target_id)
                    return

        thread = threading.Thread(
            target=_heartbeat, name=f"lease-{target_id}", daemon=True
        )
        thread.start()
        try:
            yield
        finally:
            stop.set()
            thread.join()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, target_id: str) -> DeploymentTarget | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload_json FROM deployment_targets WHERE target_id = ?",
                (target_id,),
            ).fetchone()
        return DeploymentTarget.model_validate_json(row[0]) if row else None

    def require(self, target_id: str) -> DeploymentTarget:
        target = self.get(target_id)
        if target is None:
            raise UnknownTarget(f"target {target_id!r} is not registered")
        return target

    def list_by_status(self, status: TargetStatus) -> list[DeploymentTarget]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT payload_json FROM deployment_targets WHERE status = ? "
                "ORDER BY target_id",
                (TargetStatus(status).value,),
            ).fetchall()
        return [DeploymentTarget.model_validate_json(r[0]) for r in rows]

    def list_all(self) -> list[DeploymentTarget]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT payload_json FROM deployment_targets ORDER BY target_id"
            ).fetchall()
        return [DeploymentTarget.model_validate_json(r[0]) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, target: DeploymentTarget) -> DeploymentTarget:
        """Insert or replace *target*, stamping ``updated_at``."""
        stamped = target.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        with self._lock_for(target.target_id):
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO deployment_targets (target_id, status, payload_json, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(target_id) DO UPDATE SET
                        status = excluded.status,
                        payload_json = excluded.payload_json,
                        updated_at = excluded.updated_at
                    """,
                    (
                        stamped.target_id,
                        stamped.status.value,
                        stamped.model_dump_json(),
                        stamped.updated_at.isoformat(),
                    ),
                )
                conn.commit()
        return stamped

    def update(self, target_id: str, **changes: Any) -> DeploymentTarget:
        """Read-modify-write one target under its lock."""
        with self._lock_for(target_id):
            current = self.require(target_id)
            updated = DeploymentTarget.model_validate(
                {**current.model_dump(), **changes}
            )
            if "status" in changes and changes["status"] != current.status:
                logger.info(
                    "Target %s: %s -> %s",
                    target_id, current.status.value, updated.status.value,
                )
            return self.upsert(updated)
