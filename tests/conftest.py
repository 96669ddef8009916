"""Shared fixtures for the tile sync tests."""

import sqlite3
from pathlib import Path
from typing import Dict, Optional

import pytest
import structlog
from structlog.testing import LogCapture

from tilesync.config import Config
from tilesync.service import MapService


def capturing_logger(capture: LogCapture):
    return structlog.wrap_logger(
        None, processors=[capture], wrapper_class=structlog.BoundLogger
    )


def make_mbtiles(path: Path, tiles: Dict[tuple, bytes],
                 metadata: Optional[Dict[str, str]] = None) -> Path:
    """
    Build a small MBTiles database.

    tiles maps (z, x, tms_row) to tile bytes.
    """
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE metadata (name TEXT, value TEXT)")
    conn.execute(
        "CREATE TABLE tiles (zoom_level INTEGER, tile_column INTEGER, "
        "tile_row INTEGER, tile_data BLOB)"
    )
    for name, value in (metadata or {}).items():
        conn.execute("INSERT INTO metadata VALUES (?, ?)", (name, value))
    for (z, x, row), data in tiles.items():
        conn.execute("INSERT INTO tiles VALUES (?, ?, ?, ?)", (z, x, row, data))
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def log_capture():
    return LogCapture()


@pytest.fixture
def log(log_capture):
    """Logger whose events land in log_capture.entries."""
    return capturing_logger(log_capture)


@pytest.fixture
def config(tmp_path):
    return Config(storage_dir=tmp_path / 'maps')


@pytest.fixture
def service(config, log):
    return MapService(config, log=log)


@pytest.fixture
def mbtiles_bytes(tmp_path) -> bytes:
    path = make_mbtiles(
        tmp_path / 'source.mbtiles',
        {
            (0, 0, 0): b'world',
            (1, 0, 0): b'south-west',
            (1, 1, 1): b'north-east',
        },
        metadata={
            'name': 'Test Map',
            'bounds': '-10.0,-5.0,10.0,5.0',
            'center': '0.0,0.0,1',
            'minzoom': '0',
            'maxzoom': '1',
            'format': 'png',
            'attribution': 'Test data',
        },
    )
    return path.read_bytes()


def event_names(capture: LogCapture):
    return [e['event'] for e in capture.entries]


def events_named(capture: LogCapture, name: str):
    return [e for e in capture.entries if e['event'] == name]
