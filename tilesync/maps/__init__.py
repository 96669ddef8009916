"""
Maps Module - Metadata Records and Tile Manifests

This module holds the map record model, MBTiles inspection and the
incremental tile diff.
"""

from .metadata import MapMetadata, BoundsInfo, TileUpdate, build_metadata
from .diff import diff_tiles, diff_manifests, parse_tile_key
from .mbtiles import MbtilesReader, inspect_artifact

__all__ = [
    'MapMetadata',
    'BoundsInfo',
    'TileUpdate',
    'build_metadata',
    'diff_tiles',
    'diff_manifests',
    'parse_tile_key',
    'MbtilesReader',
    'inspect_artifact',
]
