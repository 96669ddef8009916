"""
Error Taxonomy

Every failure surfaced by the core is one of five kinds. Callers (the REST
adapter, the CLI) switch on the kind, never on the message text.
"""

from typing import Optional


class TileSyncError(Exception):
    """Base class for all errors raised by the core."""
    kind = 'unknown_internal'


class NotFound(TileSyncError):
    """Lookup miss on a metadata record or an artifact."""
    kind = 'not_found'


class InvalidInput(TileSyncError):
    """Bad extension, missing or oversized payload, malformed caller data."""
    kind = 'invalid_input'


class InvalidTileKey(InvalidInput):
    """A manifest key that is not three '/'-separated integers."""

    def __init__(self, key: str):
        super().__init__(f"Malformed tile key: {key!r} (expected 'z/x/y')")
        self.key = key


class PayloadTooLarge(InvalidInput):
    """Upload exceeds the configured size limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"File too large: {size} bytes (limit {limit} bytes)")
        self.size = size
        self.limit = limit


class StreamFailure(TileSyncError):
    """
    I/O error in the middle of a transfer.
    
    Some bytes may already have been delivered; the caller must restart
    the whole transfer.
    """
    kind = 'stream_failure'

    def __init__(self, message: str, bytes_transferred: int = 0,
                 metrics: Optional[dict] = None):
        super().__init__(message)
        self.bytes_transferred = bytes_transferred
        self.metrics = metrics


class NoValidRecords(TileSyncError):
    """A listing produced no parseable / usable metadata record."""
    kind = 'no_valid_records'


class UnknownInternal(TileSyncError):
    """Anything not anticipated by the other kinds."""
    kind = 'unknown_internal'
