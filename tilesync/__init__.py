"""
Tile Sync - Map Artifact Distribution

Serves large tiled-map artifacts, accepts new versions, and tells clients
which tiles changed since their last copy.
"""

from .config import Config, load_config
from .errors import (
    TileSyncError,
    NotFound,
    InvalidInput,
    StreamFailure,
    NoValidRecords,
    UnknownInternal,
)
from .logs import get_logger, setup_logging
from .service import MapService, LatestVersion

__version__ = '1.0.0'

__all__ = [
    'Config',
    'load_config',
    'TileSyncError',
    'NotFound',
    'InvalidInput',
    'StreamFailure',
    'NoValidRecords',
    'UnknownInternal',
    'get_logger',
    'setup_logging',
    'MapService',
    'LatestVersion',
]
