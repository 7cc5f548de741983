"""Canonical hashing helpers for convergence short-circuits and ledger seals."""

from __future__ import annotations

import hashlib
import json
from typing import Any

from rollwright.models.infra import DesiredInfraState


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce deterministic canonical JSON bytes (sorted keys, compact)."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object as ``sha256:<hex>``."""
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def compute_desired_state_hash(desired: DesiredInfraState) -> str:
    """Hash of a desired state; equal states hash equal regardless of key order."""
    return content_address(desired.model_dump(mode="json"))


def compute_record_hash(record_dict: dict[str, Any]) -> str:
    """SHA-256 of a rollout record, excluding the ``record_hash`` field itself."""
    d = {k: v for k, v in record_dict.items() if k != "record_hash"}
    return sha256_hex(canonical_json_bytes(d))
