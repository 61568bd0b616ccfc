"""
Content fingerprints used as the deduplication key.

hash_bytes and hash_file use the same digest (SHA-256, hex encoded), so a
payload hashed in memory and the same payload hashed on disk always agree.
"""

import hashlib
from pathlib import Path
from typing import Union

CHUNK_SIZE = 1024 * 1024


def hash_bytes(data: bytes) -> str:
    """SHA-256 hex digest of an in-memory payload (empty input is fine)."""
    return hashlib.sha256(data or b"").hexdigest()


def hash_file(path: Union[str, Path]) -> str:
    """SHA-256 hex digest of a file on disk, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as file:
        for chunk in iter(lambda: file.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()
