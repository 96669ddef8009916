"""
Tile Diff

Compares two tile checksum manifests and reports the tiles a client must
fetch to catch up with the current artifact.

The comparison is one-sided: tiles only the client knows about are never
reported, because the protocol tells a client what to fetch, not what to
discard. A side without a manifest means there is nothing to compare
against, so the result is empty rather than "everything".
"""

from typing import Dict, List, Optional, Tuple

from ..errors import InvalidTileKey
from .metadata import MapMetadata, TileUpdate


def parse_tile_key(key: str) -> Tuple[int, int, int]:
    """
    Parse "z/x/y" into integers.

    Raises:
        InvalidTileKey: if the key is not exactly three integers
    """
    parts = key.split('/')
    if len(parts) != 3:
        raise InvalidTileKey(key)
    try:
        z, x, y = (int(p) for p in parts)
    except ValueError:
        raise InvalidTileKey(key) from None
    return z, x, y


def diff_manifests(current: Optional[Dict[str, str]],
                   client: Optional[Dict[str, str]]) -> List[TileUpdate]:
    """
    Tiles whose checksum in `current` differs from (or is missing in) `client`.

    Every key in `current` is validated, matched or not; one malformed key
    fails the whole diff with InvalidTileKey. Client keys are never parsed.
    """
    if current is None or client is None:
        return []

    updates = []
    for key, checksum in current.items():
        z, x, y = parse_tile_key(key)
        if client.get(key) != checksum:
            updates.append(TileUpdate(z=z, x=x, y=y, checksum=checksum))

    return updates


def diff_tiles(current: MapMetadata, client: MapMetadata) -> List[TileUpdate]:
    """Diff two metadata records by their tile manifests."""
    return diff_manifests(current.tile_checksums, client.tile_checksums)
