"""
Content Digests

SHA-256 over the whole artifact, read back from disk in fixed-size
blocks so the digest always describes the bytes actually stored.
Used for accidental-corruption detection, not authentication.
"""

import hashlib
from pathlib import Path

import aiofiles

from .metrics import MIB

HASH_BLOCK_SIZE = 1 * MIB


async def compute_file_checksum(path: Path, block_size: int = HASH_BLOCK_SIZE) -> str:
    """Hex SHA-256 of a file."""
    hasher = hashlib.sha256()

    async with aiofiles.open(path, 'rb') as f:
        while True:
            block = await f.read(block_size)
            if not block:
                break
            hasher.update(block)

    return hasher.hexdigest()


def compute_checksum(data: bytes) -> str:
    """Hex SHA-256 of an in-memory buffer."""
    return hashlib.sha256(data).hexdigest()
