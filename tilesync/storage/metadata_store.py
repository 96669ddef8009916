"""
Metadata Store

Design Decision: Storage Layout
===============================

Options Considered:
1. One JSON file per record
   - Trivial to inspect and back up
   - A corrupt file only loses one record
2. Single index file
   - One read for listings, but one bad write corrupts everything
3. SQLite
   - Queries for free, but a second storage system beside the artifacts

Decision: One JSON file per record
- metadata/<map_id>.json next to the artifacts
- Writes overwrite the whole document (no merge)
- Listings tolerate corrupt files: they are reported and skipped

Storage Layout:
```
<base>/
├── <map_id>.mbtiles      # Artifacts
└── metadata/
    └── <map_id>.json     # One record per artifact
```

Listings are not isolated from concurrent uploads: a record written while
a listing is in progress may or may not be seen.
"""

import json
from pathlib import Path
from typing import AsyncIterator, Iterable, List

import aiofiles
import aiofiles.os

from ..errors import NoValidRecords, NotFound
from ..logs import get_logger
from ..maps.metadata import MapMetadata, parse_timestamp

METADATA_DIRNAME = 'metadata'

# Errors that mark a single record as unreadable
_RECORD_ERRORS = (OSError, ValueError, KeyError, TypeError, AttributeError)


def _version_segment(part: str) -> int:
    # ASCII digits only; int() would also take "1_0", " 2" and non-Latin digits
    if part.isascii() and part.isdigit():
        return int(part)
    return 0


def compare_versions(version1: str, version2: str) -> int:
    """
    Compare dot-separated versions segment by segment.

    Non-numeric or missing segments count as 0, so "1.2" == "1.2.0" and
    "1.0-beta" == "1.0". Returns 1, -1 or 0.
    """
    v1_parts = [_version_segment(p) for p in str(version1).split('.')]
    v2_parts = [_version_segment(p) for p in str(version2).split('.')]

    max_length = max(len(v1_parts), len(v2_parts))
    v1_parts += [0] * (max_length - len(v1_parts))
    v2_parts += [0] * (max_length - len(v2_parts))

    for a, b in zip(v1_parts, v2_parts):
        if a > b:
            return 1
        if a < b:
            return -1
    return 0


def resolve_latest_by_version(records: Iterable[MapMetadata]) -> MapMetadata:
    """
    Record with the highest version.

    Only a strictly greater version replaces the running latest, so among
    equal versions the first one encountered wins.

    Raises:
        NoValidRecords: if `records` is empty
    """
    latest = None
    for record in records:
        if latest is None or compare_versions(record.version, latest.version) > 0:
            latest = record

    if latest is None:
        raise NoValidRecords("No map metadata records found")
    return latest


def resolve_latest_by_upload_time(records: Iterable[MapMetadata],
                                  log=None) -> MapMetadata:
    """
    Record with the latest createdAt.

    Records whose timestamp cannot be parsed are reported and skipped.
    Ties keep the first record encountered.

    Raises:
        NoValidRecords: if no record has a valid timestamp
    """
    log = log if log is not None else get_logger()
    latest = None
    latest_time = None

    for record in records:
        try:
            created = parse_timestamp(record.created_at)
        except (ValueError, TypeError) as e:
            log.warning(
                'timestamp_parse_skipped',
                map_id=record.map_id,
                created_at=record.created_at,
                error=str(e),
            )
            continue

        if latest is None or created > latest_time:
            latest = record
            latest_time = created

    if latest is None:
        raise NoValidRecords("No map metadata record has a valid upload time")
    return latest


class MetadataStore:
    """
    Reads and writes metadata records under <base>/metadata/.

    Provides:
    - Lookup by id
    - Lazy listing that skips unreadable records
    - Whole-document persist and delete
    """

    def __init__(self, base_dir: Path, log=None):
        """
        Initialize the store.

        Args:
            base_dir: Storage root (artifacts live here, records in metadata/)
            log: Logger for skip/parse warnings
        """
        self.base_dir = Path(base_dir)
        self.metadata_dir = self.base_dir / METADATA_DIRNAME
        self.log = log if log is not None else get_logger()

    def metadata_path(self, map_id: str) -> Path:
        """Filesystem path for a record."""
        return self.metadata_dir / f"{map_id}.json"

    def ensure_directory(self):
        """Create the metadata directory if it doesn't exist."""
        self.metadata_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _check_id(map_id: str):
        if not map_id or map_id in ('.', '..') or '/' in map_id or '\\' in map_id:
            raise NotFound(f"Map metadata not found for ID: {map_id}")

    async def _read(self, path: Path) -> MapMetadata:
        async with aiofiles.open(path, 'r', encoding='utf-8') as f:
            content = await f.read()
        return MapMetadata.from_json(content)

    # === Record Operations ===

    async def get(self, map_id: str) -> MapMetadata:
        """
        Load a record by id.

        Raises:
            NotFound: if the record is missing or unreadable
        """
        self._check_id(map_id)
        path = self.metadata_path(map_id)

        try:
            return await self._read(path)
        except FileNotFoundError:
            raise NotFound(f"Map metadata not found for ID: {map_id}") from None
        except _RECORD_ERRORS as e:
            self.log.error(
                'metadata_read_error',
                map_id=map_id,
                path=str(path),
                error=str(e),
            )
            raise NotFound(f"Map metadata not found for ID: {map_id}") from e

    async def exists(self, map_id: str) -> bool:
        """Check if a record file exists."""
        return await aiofiles.os.path.exists(self.metadata_path(map_id))

    async def list_all(self) -> AsyncIterator[MapMetadata]:
        """
        Yield every readable record, in directory listing order.

        Unreadable records are reported and skipped; they never abort
        the listing.
        """
        if not self.metadata_dir.is_dir():
            return

        for path in self.metadata_dir.glob('*.json'):
            try:
                record = await self._read(path)
            except _RECORD_ERRORS as e:
                self.log.warning(
                    'metadata_parse_skipped',
                    file=path.name,
                    error=str(e),
                )
                continue
            yield record

    async def list_records(self) -> List[MapMetadata]:
        """Materialize list_all()."""
        return [record async for record in self.list_all()]

    async def persist(self, record: MapMetadata) -> Path:
        """
        Write a record, replacing any existing document with the same id.

        Returns:
            Path of the written document
        """
        self.ensure_directory()
        path = self.metadata_path(record.map_id)

        async with aiofiles.open(path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(record.to_dict(), indent=2))

        return path

    async def delete(self, map_id: str) -> bool:
        """Delete a record. Returns False if it did not exist."""
        try:
            await aiofiles.os.remove(self.metadata_path(map_id))
        except FileNotFoundError:
            return False
        return True

    # === Latest Version ===

    async def latest_by_version(self) -> MapMetadata:
        """Highest-versioned readable record."""
        return resolve_latest_by_version(await self.list_records())

    async def latest_by_upload_time(self) -> MapMetadata:
        """Most recently created readable record."""
        return resolve_latest_by_upload_time(await self.list_records(), self.log)
