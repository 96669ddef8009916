"""
MBTiles Inspection

Design Decision: What to Extract
================================

An .mbtiles artifact is an SQLite database with two tables we care about:
- metadata(name, value): bounds, center, zoom range, attribution, format
- tiles(zoom_level, tile_column, tile_row, tile_data)

Extracted at upload time:
- Bounds info from the metadata table, field by field, with the record
  defaults for anything missing or unparsable
- One SHA-256 digest per tile, keyed "z/x/y", which becomes the baseline
  manifest for incremental sync

Tile rows are stored in the TMS scheme (row 0 at the bottom); manifest keys
use the XYZ scheme clients request tiles in, y = 2^z - 1 - tile_row.

An artifact that isn't a readable MBTiles database is not an error: the
record simply gets default bounds and no manifest. Tile rows with missing
or out-of-grid coordinates are left out of the manifest.
"""

import hashlib
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Tuple

import aiosqlite

from ..logs import get_logger
from .metadata import BoundsInfo


@dataclass
class ArtifactInfo:
    """What could be read out of an artifact."""
    bounds_info: BoundsInfo
    tile_checksums: Optional[Dict[str, str]] = None


def _parse_floats(value: Optional[str], count: int) -> Optional[List[float]]:
    if not value:
        return None
    try:
        numbers = [float(v) for v in value.split(',')]
    except ValueError:
        return None
    return numbers if len(numbers) == count else None


def _parse_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


MAX_TILE_ZOOM = 30


def valid_tile_row(zoom, column, row) -> bool:
    """True for integer coordinates inside the tile grid of their zoom level."""
    if not all(isinstance(v, int) for v in (zoom, column, row)):
        return False
    if not 0 <= zoom <= MAX_TILE_ZOOM:
        return False
    size = 1 << zoom
    return 0 <= column < size and 0 <= row < size


def tms_to_xyz(zoom: int, row: int) -> int:
    """Flip a TMS tile row into an XYZ y coordinate."""
    return (1 << zoom) - 1 - row


def bounds_from_metadata(meta: Dict[str, str], default_format: str) -> BoundsInfo:
    """Build BoundsInfo from an MBTiles metadata table, keeping defaults for gaps."""
    info = BoundsInfo(format=default_format)

    bounds = _parse_floats(meta.get('bounds'), 4)
    if bounds:
        info.bounds = bounds
    center = _parse_floats(meta.get('center'), 3)
    if center:
        info.center = center

    min_zoom = _parse_int(meta.get('minzoom'))
    if min_zoom is not None:
        info.min_zoom = min_zoom
    max_zoom = _parse_int(meta.get('maxzoom'))
    if max_zoom is not None:
        info.max_zoom = max_zoom

    if meta.get('attribution'):
        info.attribution = meta['attribution']
    if meta.get('format'):
        info.format = meta['format']

    return info


class MbtilesReader:
    """Read-only access to an .mbtiles database."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._connection: Optional[aiosqlite.Connection] = None
        self.skipped_rows = 0

    async def connect(self):
        """Open the database read-only."""
        uri = f"{self.path.resolve().as_uri()}?mode=ro"
        self._connection = await aiosqlite.connect(uri, uri=True)

    async def close(self):
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> 'MbtilesReader':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def read_metadata(self) -> Dict[str, str]:
        """The name/value metadata table as a dict."""
        async with self._connection.execute("SELECT name, value FROM metadata") as cursor:
            rows = await cursor.fetchall()
        return {str(name): str(value) for name, value in rows if value is not None}

    async def iter_tiles(self) -> AsyncIterator[Tuple[int, int, int, bytes]]:
        """
        Yield (z, x, y, data) in XYZ coordinates.

        Rows with missing or out-of-grid coordinates are counted in
        skipped_rows and left out.
        """
        async with self._connection.execute(
            "SELECT zoom_level, tile_column, tile_row, tile_data FROM tiles"
        ) as cursor:
            async for zoom, column, row, data in cursor:
                if not valid_tile_row(zoom, column, row):
                    self.skipped_rows += 1
                    continue
                yield zoom, column, tms_to_xyz(zoom, row), data

    async def tile_checksums(self) -> Dict[str, str]:
        """Digest of every tile, keyed "z/x/y"."""
        checksums = {}
        async for z, x, y, data in self.iter_tiles():
            blob = data if isinstance(data, (bytes, bytearray)) else str(data or '').encode()
            checksums[f"{z}/{x}/{y}"] = hashlib.sha256(blob).hexdigest()
        return checksums


async def inspect_artifact(path: Path, default_format: str = 'mbtiles',
                           with_tiles: bool = True,
                           log=None) -> Optional[ArtifactInfo]:
    """
    Read bounds and tile digests from an artifact.

    Returns:
        ArtifactInfo, or None if the file isn't a readable MBTiles database
    """
    log = log if log is not None else get_logger()

    try:
        async with MbtilesReader(path) as reader:
            meta = await reader.read_metadata()
            tile_checksums = await reader.tile_checksums() if with_tiles else None
            skipped = reader.skipped_rows
    except sqlite3.Error as e:
        log.warning(
            'artifact_inspect_skipped',
            path=str(path),
            error=str(e),
        )
        return None

    if skipped:
        log.warning('artifact_tiles_skipped', path=str(path), skipped_rows=skipped)

    return ArtifactInfo(
        bounds_info=bounds_from_metadata(meta, default_format),
        tile_checksums=tile_checksums,
    )
