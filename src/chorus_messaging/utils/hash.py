# src/chorus_messaging/utils/hash.py
"""BLAKE3 hashing helpers."""

from __future__ import annotations

from blake3 import blake3


def blake3_digest(data: bytes) -> bytes:
    """Return the BLAKE3 digest for ``data``."""
    return blake3(data).digest()


def blake3_hexdigest(data: bytes) -> str:
    """Return the hexadecimal BLAKE3 digest for ``data``."""
    return blake3(data).hexdigest()
