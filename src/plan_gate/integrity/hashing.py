"""Content digests for plan artifacts."""

from __future__ import annotations

import hashlib

DIGEST_ALGORITHM = "SHA2_256"
DIGEST_SIZE = hashlib.sha256().digest_size


def compute_hash(data: bytes) -> bytes:
    """Return the SHA-256 digest of ``data``. Same bytes, same digest."""
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError(f"expected bytes, got {type(data).__name__}")
    return hashlib.sha256(bytes(data)).digest()


def digest_hex(digest: bytes) -> str:
    return digest.hex()
