"""
Map Service - Main Controller

This is the entry point that wires the components together and exposes
the transport-agnostic operations:
- download(map_id): Stream an artifact
- get_metadata(map_id): Look up a record
- get_latest_version(): Resolve the newest version
- upload(payload, filename, ...): Store a new artifact version
- diff_tiles(map_id, client_checksums): Tiles a client must fetch
"""

from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Tuple

from .config import Config
from .errors import NotFound
from .logs import get_logger
from .maps.diff import diff_manifests
from .maps.metadata import MapMetadata, TileUpdate
from .storage.metadata_store import MetadataStore
from .transfer.checksum import compute_file_checksum
from .transfer.downloader import ArtifactStream, ArtifactStreamer
from .transfer.transaction import UploadTransaction
from .transfer.uploader import ArtifactWriter, Payload


@dataclass
class LatestVersion:
    """Answer to a latest-version query."""
    map_id: str
    version: str
    metadata: MapMetadata

    def to_dict(self) -> Dict:
        return {
            'mapId': self.map_id,
            'version': self.version,
            'metadata': self.metadata.to_dict(),
        }


class MapService:
    """
    Map distribution service.

    Each operation is independent; the only shared state is the storage
    directory, and every upload writes under a freshly minted id.
    """

    def __init__(self, config: Config = None, log=None):
        """
        Initialize the service.

        Args:
            config: Service configuration (uses defaults if not provided)
            log: Logger shared by all components
        """
        self.config = config or Config()
        self.log = log if log is not None else get_logger()
        self.storage_dir = Path(self.config.storage_dir)
        self.extension = self.config.artifact_extension.lstrip('.').lower()

        # Initialize components
        self.store = MetadataStore(self.storage_dir, log=self.log)

        self.streamer = ArtifactStreamer(
            buffer_size=self.config.read_buffer_size,
            progress_bucket=self.config.progress_bucket,
            log=self.log,
        )

        self.writer = ArtifactWriter(
            chunk_size=self.config.write_chunk_size,
            threshold=self.config.chunked_write_threshold,
            log=self.log,
        )

        self.uploads = UploadTransaction(
            self.storage_dir,
            self.store,
            writer=self.writer,
            extension=self.extension,
            max_upload_size=self.config.max_upload_size,
            extract_tile_checksums=self.config.extract_tile_checksums,
            log=self.log,
        )

    def artifact_path(self, record: MapMetadata) -> Path:
        """Where a record's artifact lives."""
        return self.storage_dir / Path(record.artifact_filename).name

    # === Download ===

    async def open_download(self, map_id: str) -> Tuple[MapMetadata, ArtifactStream]:
        """
        Resolve a map and prepare its outbound stream.

        Both the record and the artifact are checked before any byte is
        sent, so a miss is reported cleanly instead of mid-stream.

        Raises:
            NotFound: if the record or the artifact is missing
        """
        record = await self.store.get(map_id)
        stream = await self.streamer.open(
            self.artifact_path(record),
            log=self.log.bind(map_id=map_id, direction='download'),
        )
        return record, stream

    async def download(self, map_id: str) -> AsyncIterator[bytes]:
        """
        Stream an artifact.

        Raises:
            NotFound: if the record or the artifact is missing
            StreamFailure: on I/O error mid-stream (no resend)
        """
        _, stream = await self.open_download(map_id)
        return stream.chunks()

    # === Metadata ===

    async def get_metadata(self, map_id: str) -> MapMetadata:
        """Look up a record. Raises NotFound."""
        return await self.store.get(map_id)

    async def list_maps(self) -> List[MapMetadata]:
        """Every readable record, in storage listing order."""
        return await self.store.list_records()

    async def get_latest_version(self) -> LatestVersion:
        """
        Newest map by version number.

        Equal versions keep the first record listed.

        Raises:
            NoValidRecords: if no readable record exists
        """
        log = self.log.bind(metadata_dir=str(self.store.metadata_dir))
        log.info('get_latest_version_start')

        latest = await self.store.latest_by_version()

        log.info(
            'get_latest_version_success',
            latest_map_id=latest.map_id,
            latest_version=latest.version,
        )
        return LatestVersion(map_id=latest.map_id, version=latest.version, metadata=latest)

    # === Upload ===

    async def upload(self, payload: Payload, filename: str,
                     name: Optional[str] = None,
                     description: Optional[str] = None,
                     version: Optional[str] = None,
                     declared_length: Optional[int] = None) -> MapMetadata:
        """Store a new artifact version. See UploadTransaction.run."""
        return await self.uploads.run(
            payload,
            filename,
            name=name,
            description=description,
            version=version,
            declared_length=declared_length,
        )

    # === Incremental Sync ===

    async def diff_tiles(self, map_id: str,
                         client_checksums: Optional[Dict[str, str]]) -> List[TileUpdate]:
        """
        Tiles the client must fetch to match `map_id`.

        Raises:
            NotFound: if the record is missing
            InvalidTileKey: if the stored manifest holds a malformed key
        """
        current = await self.store.get(map_id)
        return diff_manifests(current.tile_checksums, client_checksums)

    async def verify_artifact(self, map_id: str) -> bool:
        """Recompute an artifact's digest and compare it with its record."""
        record = await self.store.get(map_id)
        path = self.artifact_path(record)
        if not path.exists():
            raise NotFound(f"Map file not found for ID: {map_id}")
        return await compute_file_checksum(path) == record.checksum
