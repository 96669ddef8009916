"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field, replace
from typing import Optional
import json

from dotenv import load_dotenv

from .transfer.metrics import KIB, MIB


@dataclass
class Config:
    """
    Map distribution service configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (TILESYNC_*)
    2. Config file (config.json)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'
    port: int = 5045

    # Storage
    storage_dir: Path = field(default_factory=lambda: Path('./archives/maps'))
    artifact_extension: str = 'mbtiles'

    # Transfers
    read_buffer_size: int = 64 * KIB
    write_chunk_size: int = 1 * MIB
    chunked_write_threshold: int = 10 * MIB
    progress_bucket: int = 5
    max_upload_size: int = 5000 * MIB
    extract_tile_checksums: bool = True

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, base: Optional['Config'] = None) -> 'Config':
        """
        Load configuration from environment variables.

        Only variables that are actually set are applied, on top of `base`
        (defaults if omitted).
        """
        load_dotenv()

        config = replace(base) if base is not None else cls()

        # Network
        config.host = os.getenv('TILESYNC_HOST', config.host)
        config.port = int(os.getenv('TILESYNC_PORT', os.getenv('PORT', config.port)))

        # Storage (STORAGE_BASE_PATH kept for existing deployments)
        storage_dir = os.getenv('TILESYNC_STORAGE_DIR') or os.getenv('STORAGE_BASE_PATH')
        if storage_dir:
            config.storage_dir = Path(storage_dir)
        config.artifact_extension = os.getenv(
            'TILESYNC_ARTIFACT_EXTENSION', config.artifact_extension
        ).lstrip('.')

        # Transfers
        config.read_buffer_size = int(
            os.getenv('TILESYNC_READ_BUFFER_SIZE', config.read_buffer_size)
        )
        config.write_chunk_size = int(
            os.getenv('TILESYNC_WRITE_CHUNK_SIZE', config.write_chunk_size)
        )
        config.chunked_write_threshold = int(
            os.getenv('TILESYNC_CHUNKED_WRITE_THRESHOLD', config.chunked_write_threshold)
        )
        config.progress_bucket = int(
            os.getenv('TILESYNC_PROGRESS_BUCKET', config.progress_bucket)
        )
        config.max_upload_size = int(
            os.getenv('TILESYNC_MAX_UPLOAD_SIZE', config.max_upload_size)
        )
        extract = os.getenv('TILESYNC_EXTRACT_TILE_CHECKSUMS')
        if extract is not None:
            config.extract_tile_checksums = extract.lower() == 'true'

        # Logging
        config.log_level = os.getenv('TILESYNC_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Network
        config.host = data.get('host', config.host)
        config.port = data.get('port', config.port)

        # Storage
        if 'storage_dir' in data:
            config.storage_dir = Path(data['storage_dir'])
        config.artifact_extension = data.get(
            'artifact_extension', config.artifact_extension
        ).lstrip('.')

        # Transfers
        config.read_buffer_size = data.get('read_buffer_size', config.read_buffer_size)
        config.write_chunk_size = data.get('write_chunk_size', config.write_chunk_size)
        config.chunked_write_threshold = data.get(
            'chunked_write_threshold', config.chunked_write_threshold
        )
        config.progress_bucket = data.get('progress_bucket', config.progress_bucket)
        config.max_upload_size = data.get('max_upload_size', config.max_upload_size)
        config.extract_tile_checksums = data.get(
            'extract_tile_checksums', config.extract_tile_checksums
        )

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'storage_dir': str(self.storage_dir),
            'artifact_extension': self.artifact_extension,
            'read_buffer_size': self.read_buffer_size,
            'write_chunk_size': self.write_chunk_size,
            'chunked_write_threshold': self.chunked_write_threshold,
            'progress_bucket': self.progress_bucket,
            'max_upload_size': self.max_upload_size,
            'extract_tile_checksums': self.extract_tile_checksums,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    config = Config()

    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    # Every variable that is set wins, even one equal to the default
    return Config.from_env(base=config)


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "port": 5045,
  "storage_dir": "./archives/maps",
  "artifact_extension": "mbtiles",
  "read_buffer_size": 65536,
  "write_chunk_size": 1048576,
  "chunked_write_threshold": 10485760,
  "progress_bucket": 5,
  "max_upload_size": 5242880000,
  "extract_tile_checksums": true,
  "log_level": "INFO"
}
"""
