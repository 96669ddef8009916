"""
Storage Module - Persistent Metadata Storage

One JSON document per map version, next to the artifacts.
"""

from .metadata_store import (
    MetadataStore,
    compare_versions,
    resolve_latest_by_version,
    resolve_latest_by_upload_time,
)

__all__ = [
    'MetadataStore',
    'compare_versions',
    'resolve_latest_by_version',
    'resolve_latest_by_upload_time',
]
