"""
Upload Transaction

Design Decision: All-or-Nothing Uploads
=======================================

The filesystem gives us no transactions, so an upload is made
all-or-nothing from the caller's point of view:

1. Mint a fresh id
2. Validate filename extension, payload presence and size
3. Provision the artifact and metadata directories
4. Write the artifact (inbound path)
5. Digest the written artifact
6. Inspect it for bounds / tile digests, build the record
7. Persist the record

Validation runs before anything touches the disk, so a rejected upload
leaves no trace. Any failure after that deletes both the artifact and the
metadata file, best effort; cleanup problems are reported but never
replace the original error.

Known limitation: a process crash between steps 4 and 7 leaves an orphaned
artifact with no record. Nothing here corrects that.
"""

import asyncio
from pathlib import Path
from typing import Callable, Optional

import aiofiles.os

from ..errors import InvalidInput, PayloadTooLarge, TileSyncError, UnknownInternal
from ..logs import get_logger
from ..maps.mbtiles import inspect_artifact
from ..maps.metadata import MapMetadata, build_metadata, generate_map_id
from ..storage.metadata_store import MetadataStore
from .checksum import compute_file_checksum
from .uploader import ArtifactWriter, Payload, require_payload


class UploadTransaction:
    """
    Runs one upload end to end.

    Holds configuration and collaborators only; each run() is independent.
    """

    def __init__(self, base_dir: Path, store: MetadataStore,
                 writer: Optional[ArtifactWriter] = None,
                 extension: str = 'mbtiles',
                 max_upload_size: Optional[int] = None,
                 extract_tile_checksums: bool = True,
                 log=None,
                 id_factory: Callable[[], str] = generate_map_id):
        """
        Args:
            base_dir: Artifact directory
            store: Where records are persisted
            writer: Inbound path (default settings if omitted)
            extension: Required filename extension, without the dot
            max_upload_size: Reject larger payloads (None = no limit)
            extract_tile_checksums: Build a tile manifest from MBTiles artifacts
            log: Logger for transaction events
            id_factory: Id generator
        """
        self.base_dir = Path(base_dir)
        self.store = store
        self.log = log if log is not None else get_logger()
        self.writer = writer or ArtifactWriter(log=self.log)
        self.extension = extension.lstrip('.').lower()
        self.max_upload_size = max_upload_size
        self.extract_tile_checksums = extract_tile_checksums
        self.id_factory = id_factory

    def artifact_path(self, map_id: str) -> Path:
        return self.base_dir / f"{map_id}.{self.extension}"

    def validate(self, payload: Optional[Payload], filename: str,
                 declared_length: Optional[int] = None):
        """
        Check everything that can be checked without touching the disk.

        Raises:
            InvalidInput: bad extension, missing payload
            PayloadTooLarge: payload (or declared length) over the limit
        """
        if not filename or not filename.lower().endswith(f".{self.extension}"):
            raise InvalidInput(
                f"Invalid file type. Only .{self.extension} files are supported."
            )
        require_payload(payload)
        if declared_length == 0:
            raise InvalidInput("No file provided")

        size = declared_length
        if isinstance(payload, (bytes, bytearray, memoryview)):
            size = len(payload)
        if self.max_upload_size is not None and size is not None and size > self.max_upload_size:
            raise PayloadTooLarge(size, self.max_upload_size)

    async def run(self, payload: Payload, filename: str,
                  name: Optional[str] = None,
                  description: Optional[str] = None,
                  version: Optional[str] = None,
                  declared_length: Optional[int] = None) -> MapMetadata:
        """
        Store a new artifact version and return its record.

        Raises:
            InvalidInput: rejected before any filesystem change
            StreamFailure: write failed (after rollback)
            UnknownInternal: anything else (after rollback)
        """
        map_id = self.id_factory()
        log = self.log.bind(map_id=map_id)
        artifact_path = self.artifact_path(map_id)
        metadata_path = self.store.metadata_path(map_id)

        log.info(
            'upload_map_start',
            original_filename=filename,
            declared_size=(
                len(payload) if isinstance(payload, (bytes, bytearray, memoryview))
                else declared_length
            ),
        )

        try:
            self.validate(payload, filename, declared_length)
        except InvalidInput as e:
            log.warning(
                'upload_map_rejected',
                original_filename=filename,
                error=str(e),
            )
            raise

        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            self.store.ensure_directory()

            result = await self.writer.write(
                payload,
                artifact_path,
                declared_length=declared_length,
                max_size=self.max_upload_size,
                log=log,
            )
            if result.bytes_written == 0:
                raise InvalidInput("No file provided")
            log.info(
                'upload_file_saved',
                path=str(artifact_path),
                bytes_written=result.bytes_written,
                chunked=result.chunked,
            )

            checksum = await compute_file_checksum(artifact_path)
            info = await inspect_artifact(
                artifact_path,
                default_format=self.extension,
                with_tiles=self.extract_tile_checksums,
                log=log,
            )

            record = build_metadata(
                map_id,
                filename,
                size=result.bytes_written,
                checksum=checksum,
                extension=self.extension,
                name=name,
                description=description,
                version=version,
            )
            if info is not None:
                record.bounds_info = info.bounds_info
                record.tile_checksums = info.tile_checksums

            await self.store.persist(record)
            log.info(
                'upload_metadata_saved',
                path=str(metadata_path),
            )
        except asyncio.CancelledError:
            log.warning(
                'upload_map_cancelled',
                original_filename=filename,
            )
            await self._rollback(map_id, artifact_path, log)
            raise
        except Exception as e:
            log.error(
                'upload_map_error',
                original_filename=filename,
                error=str(e),
            )
            await self._rollback(map_id, artifact_path, log)
            if isinstance(e, TileSyncError):
                raise
            raise UnknownInternal(f"Upload failed: {e}") from e

        log.info(
            'upload_map_success',
            size=record.size,
            version=record.version,
        )
        return record

    async def _rollback(self, map_id: str, artifact_path: Path, log):
        """Delete whatever the failed upload left behind. Never raises."""
        removed = []
        for path in (artifact_path, self.store.metadata_path(map_id)):
            try:
                await aiofiles.os.remove(path)
                removed.append(path.name)
            except FileNotFoundError:
                continue
            except OSError as e:
                log.warning(
                    'upload_cleanup_error',
                    path=str(path),
                    error=str(e),
                )
        log.warning(
            'upload_cleanup',
            removed=removed,
        )
