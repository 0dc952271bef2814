# src/activitypub_stage/utils/hash.py
"""BLAKE3 helper for public key cache keys."""

from __future__ import annotations

from blake3 import blake3


def blake3_hexdigest(value: str | bytes) -> str:
    """Return the hex BLAKE3 digest of a string or byte payload."""
    payload = value.encode("utf-8") if isinstance(value, str) else value
    return blake3(payload).hexdigest()
