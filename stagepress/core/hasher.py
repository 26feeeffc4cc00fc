"""Canonical hashing helpers for idempotence checks and ledger sealing."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def artifact_hash(data: bytes) -> str:
    """Content hash of a single rendered artifact, ``sha256:<hex>``."""
    return f"sha256:{sha256_hex(data)}"


def artifact_set_hash(artifacts: Mapping[str, bytes]) -> str:
    """Content hash of a set of artifacts keyed by relative key.

    Two sets hash equal iff they contain the same keys with the same bytes.
    """
    digests = {key: sha256_hex(data) for key, data in artifacts.items()}
    return artifact_set_hash_from_digests(digests)


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a ledger entry (excluding the entry_hash field itself).

    This is the seal that makes each entry tamper-evident.
    """
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))


def artifact_set_hash_from_digests(digests: Mapping[str, str]) -> str:
    """Same as ``artifact_set_hash`` but from per-key SHA-256 hex digests."""
    return f"sha256:{sha256_hex(canonical_json_bytes(dict(digests)))}"
