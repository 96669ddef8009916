"""
Map Metadata

Design Decision: Record Format
==============================

One JSON document per artifact version, stored next to the artifacts
under metadata/<map_id>.json.

Options Considered:
1. JSON - Human readable, easy to diff and inspect
2. SQLite row - Queryable, but a second storage system to keep in sync
3. Embedded in the artifact - No extra file, but artifacts are opaque

Decision: JSON
- Records are small and read whole
- Key names match the documents written by earlier deployments
  (mapId, basename, metadata, ...), so existing archives stay readable

Records are immutable once persisted. A new version of a map is a new
record with a new id.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

DEFAULT_BOUNDS = [-180.0, -85.0, 180.0, 85.0]
DEFAULT_CENTER = [0.0, 0.0, 2.0]
DEFAULT_FORMAT = 'mbtiles'
DEFAULT_MIN_ZOOM = 0
DEFAULT_MAX_ZOOM = 18
DEFAULT_ATTRIBUTION = 'Map data upload'
DEFAULT_VERSION = '1.0.0'


def generate_map_id() -> str:
    """Fresh 128-bit random identifier."""
    return str(uuid.uuid4())


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-05-01T10:00:00.000Z"""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    Naive timestamps are taken as UTC. Raises ValueError/TypeError on
    anything unparsable.
    """
    if not isinstance(value, str):
        raise TypeError(f"Timestamp must be a string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class BoundsInfo:
    """Geographic extent and zoom range of an artifact."""
    bounds: List[float] = field(default_factory=lambda: list(DEFAULT_BOUNDS))
    center: List[float] = field(default_factory=lambda: list(DEFAULT_CENTER))
    format: str = DEFAULT_FORMAT
    min_zoom: int = DEFAULT_MIN_ZOOM
    max_zoom: int = DEFAULT_MAX_ZOOM
    attribution: str = DEFAULT_ATTRIBUTION

    def to_dict(self) -> Dict:
        return {
            'bounds': list(self.bounds),
            'center': list(self.center),
            'format': self.format,
            'minzoom': self.min_zoom,
            'maxzoom': self.max_zoom,
            'attribution': self.attribution,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'BoundsInfo':
        if not data:
            return cls()
        return cls(
            bounds=[float(v) for v in data.get('bounds', DEFAULT_BOUNDS)],
            center=[float(v) for v in data.get('center', DEFAULT_CENTER)],
            format=data.get('format', DEFAULT_FORMAT),
            min_zoom=int(data.get('minzoom', DEFAULT_MIN_ZOOM)),
            max_zoom=int(data.get('maxzoom', DEFAULT_MAX_ZOOM)),
            attribution=data.get('attribution', DEFAULT_ATTRIBUTION),
        )


@dataclass
class MapMetadata:
    """
    One record per artifact version.

    tile_checksums maps "z/x/y" to a digest string. None means no
    baseline is available for incremental sync.
    """
    map_id: str
    name: str
    description: str
    artifact_filename: str
    created_at: str
    updated_at: str
    version: str
    size: int
    checksum: str
    bounds_info: BoundsInfo = field(default_factory=BoundsInfo)
    tile_checksums: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict:
        """Serialize using the persisted key names."""
        data = {
            'mapId': self.map_id,
            'name': self.name,
            'basename': self.artifact_filename,
            'description': self.description,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'version': self.version,
            'metadata': self.bounds_info.to_dict(),
            'size': self.size,
            'checksum': self.checksum,
        }
        if self.tile_checksums is not None:
            data['tileChecksums'] = dict(self.tile_checksums)
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'MapMetadata':
        """Deserialize; raises KeyError/TypeError/ValueError on bad documents."""
        if not isinstance(data, dict):
            raise TypeError(f"Metadata document must be an object, got {type(data).__name__}")
        tile_checksums = data.get('tileChecksums')
        if tile_checksums is not None:
            tile_checksums = {str(k): str(v) for k, v in tile_checksums.items()}
        return cls(
            map_id=data['mapId'],
            name=data.get('name', ''),
            description=data.get('description', ''),
            artifact_filename=data['basename'],
            created_at=data.get('createdAt', ''),
            updated_at=data.get('updatedAt', data.get('createdAt', '')),
            version=str(data.get('version', DEFAULT_VERSION)),
            size=int(data['size']),
            checksum=data.get('checksum', ''),
            bounds_info=BoundsInfo.from_dict(data.get('metadata')),
            tile_checksums=tile_checksums,
        )

    def to_json(self, indent: int = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> 'MapMetadata':
        return cls.from_dict(json.loads(json_str))


@dataclass(frozen=True)
class TileUpdate:
    """A tile the client must fetch. Never persisted."""
    z: int
    x: int
    y: int
    checksum: str

    @property
    def key(self) -> str:
        return f"{self.z}/{self.x}/{self.y}"

    def to_dict(self) -> Dict:
        return {'z': self.z, 'x': self.x, 'y': self.y, 'checksum': self.checksum}


def build_metadata(map_id: str, original_filename: str, size: int, checksum: str,
                   extension: str = DEFAULT_FORMAT, name: Optional[str] = None,
                   description: Optional[str] = None,
                   version: Optional[str] = None,
                   tile_checksums: Optional[Dict[str, str]] = None) -> MapMetadata:
    """
    Build a fresh record for an uploaded artifact.

    Caller-supplied name/description/version win; otherwise they are
    derived from the uploaded filename.
    """
    timestamp = utc_timestamp()
    stem = Path(original_filename).name
    suffix = f".{extension}"
    if stem.lower().endswith(suffix.lower()):
        stem = stem[:-len(suffix)]

    return MapMetadata(
        map_id=map_id,
        name=name or stem,
        description=description or f"Map uploaded from {original_filename}",
        artifact_filename=f"{map_id}.{extension}",
        created_at=timestamp,
        updated_at=timestamp,
        version=version or DEFAULT_VERSION,
        size=size,
        checksum=checksum,
        bounds_info=BoundsInfo(format=extension),
        tile_checksums=tile_checksums,
    )
