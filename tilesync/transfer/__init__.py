"""
Transfer Module - Streaming Download/Upload

Bounded-memory artifact transfers, their metrics, and the upload
transaction built on top of them.
"""

from .metrics import (
    TransferMetrics,
    NetworkMetrics,
    compute_metrics,
    compute_network_metrics,
    format_bytes,
    format_speed,
    format_duration,
    should_emit_progress,
)
from .downloader import ArtifactStream, ArtifactStreamer, StreamSummary
from .uploader import ArtifactWriter, WriteResult
from .transaction import UploadTransaction

__all__ = [
    'TransferMetrics',
    'NetworkMetrics',
    'compute_metrics',
    'compute_network_metrics',
    'format_bytes',
    'format_speed',
    'format_duration',
    'should_emit_progress',
    'ArtifactStream',
    'ArtifactStreamer',
    'StreamSummary',
    'ArtifactWriter',
    'WriteResult',
    'UploadTransaction',
]
