"""Idempotency key derivation."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def content_hash(message: str) -> str:
    return hashlib.sha256(message.encode("utf-8")).hexdigest()


def canonical_key(fields: dict[str, Any]) -> str:
    """SHA-256 over the sorted, compact JSON form of ``fields``."""
    canonical = json.dumps(fields, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def idempotency_key(tutor_id: str, session_id: str, message: str) -> str:
    """Deterministic key for one logical notification.

    Pure function of (tutor id, session id, message content).
    """
    return canonical_key(
        {"tutor_id": tutor_id, "session_id": session_id, "message": content_hash(message)}
    )
