"""
Artifact Writer (inbound path)

Design Decision: Write Strategy
===============================

| Payload     | Strategy                  | Why                                   |
|-------------|---------------------------|---------------------------------------|
| < 10 MiB    | One write call            | Per-chunk overhead buys nothing       |
| >= 10 MiB   | Sequential 1 MiB slices   | No second full copy, visible progress |
| Stream      | Write chunks as they come | Body never held in memory             |

Slices are memoryviews over the payload, so chunked writes never copy the
buffer. On failure the destination may be partially written; deleting it
is the caller's job.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterable, Optional, Union

import aiofiles

from ..errors import InvalidInput, PayloadTooLarge, StreamFailure, TileSyncError
from ..logs import get_logger
from .metrics import MIB, compute_metrics, format_bytes, now_ms, should_emit_progress

WRITE_CHUNK_SIZE = 1 * MIB
CHUNKED_WRITE_THRESHOLD = 10 * MIB
LOG_EVERY_N_CHUNKS = 5

Payload = Union[bytes, bytearray, memoryview, AsyncIterable[bytes]]


@dataclass
class WriteResult:
    """Outcome of one inbound write."""
    path: Path
    bytes_written: int
    chunk_count: int
    chunked: bool
    elapsed_seconds: float


class ArtifactWriter:
    """
    Writes uploaded payloads to artifact files in bounded memory.

    Stateless between calls; each write keeps its counters locally.
    """

    def __init__(self, chunk_size: int = WRITE_CHUNK_SIZE,
                 threshold: int = CHUNKED_WRITE_THRESHOLD,
                 log=None,
                 clock=now_ms):
        self.chunk_size = chunk_size
        self.threshold = threshold
        self.log = log if log is not None else get_logger()
        self.clock = clock

    async def write(self, payload: Payload, dest: Path,
                    declared_length: Optional[int] = None,
                    max_size: Optional[int] = None,
                    log=None) -> WriteResult:
        """Write bytes or an async byte stream to `dest`."""
        if isinstance(payload, (bytes, bytearray, memoryview)):
            return await self.write_bytes(payload, dest, log)
        return await self.write_stream(payload, dest, declared_length, max_size, log)

    async def write_bytes(self, data: Union[bytes, bytearray, memoryview], dest: Path,
                          log=None) -> WriteResult:
        """
        Write an in-memory payload.

        Raises:
            StreamFailure: on I/O error or short write
        """
        log = log if log is not None else self.log
        dest = Path(dest)
        view = memoryview(data)
        total = len(view)
        start = self.clock()
        written = 0
        chunk_count = 0
        chunked = total >= self.threshold

        try:
            async with aiofiles.open(dest, 'wb') as f:
                if not chunked:
                    await f.write(view)
                    written = total
                    chunk_count = 1
                else:
                    total_chunks = -(-total // self.chunk_size)
                    ten_percent = max(1, total_chunks // 10)
                    log.info(
                        'upload_chunked_write_start',
                        total_size=format_bytes(total),
                        total_chunks=total_chunks,
                    )
                    for offset in range(0, total, self.chunk_size):
                        piece = view[offset:offset + self.chunk_size]
                        await f.write(piece)
                        written += len(piece)
                        chunk_count += 1

                        if chunk_count % ten_percent == 0 or chunk_count % LOG_EVERY_N_CHUNKS == 0:
                            metrics = compute_metrics(written, total, start, self.clock())
                            log.info(
                                'upload_write_progress',
                                progress=metrics.progress,
                                chunk=chunk_count,
                                total_chunks=total_chunks,
                                bytes_written=written,
                                speed=metrics.speed_formatted,
                            )
        except OSError as e:
            self._fail(log, e, written, total, start)

        if written != total:
            raise StreamFailure(
                f"Short write: {written} of {total} bytes",
                bytes_transferred=written,
            )

        return WriteResult(
            path=dest,
            bytes_written=written,
            chunk_count=chunk_count,
            chunked=chunked,
            elapsed_seconds=(self.clock() - start) / 1000,
        )

    async def write_stream(self, chunks: AsyncIterable[bytes], dest: Path,
                           declared_length: Optional[int] = None,
                           max_size: Optional[int] = None,
                           log=None) -> WriteResult:
        """
        Write chunks from an async source as they arrive.

        Args:
            chunks: Byte source (e.g. a request body stream)
            dest: Destination file
            declared_length: Expected length; a mismatch fails the write
            max_size: Upper bound; exceeding it fails with PayloadTooLarge

        Raises:
            PayloadTooLarge: if more than max_size bytes arrive
            StreamFailure: on I/O error, source failure or length
                mismatch
        """
        log = log if log is not None else self.log
        dest = Path(dest)
        start = self.clock()
        written = 0
        chunk_count = 0
        last_progress = 0

        try:
            async with aiofiles.open(dest, 'wb') as f:
                async for data in chunks:
                    if not data:
                        continue
                    if max_size is not None and written + len(data) > max_size:
                        raise PayloadTooLarge(written + len(data), max_size)

                    await f.write(data)
                    written += len(data)
                    chunk_count += 1

                    if declared_length:
                        metrics = compute_metrics(written, declared_length, start, self.clock())
                        if should_emit_progress(metrics.progress, last_progress):
                            last_progress = metrics.progress
                            log.info(
                                'upload_write_progress',
                                progress=metrics.progress,
                                bytes_written=written,
                                total_size=declared_length,
                                speed=metrics.speed_formatted,
                            )
                    elif chunk_count % LOG_EVERY_N_CHUNKS == 0:
                        log.info(
                            'upload_write_progress',
                            received=format_bytes(written),
                            bytes_written=written,
                            chunk=chunk_count,
                        )
        except TileSyncError:
            raise
        except Exception as e:
            # I/O error, or the source itself failed (client disconnect)
            self._fail(log, e, written, declared_length or 0, start)

        if declared_length is not None and written != declared_length:
            raise StreamFailure(
                f"Incomplete upload: received {written} of {declared_length} bytes",
                bytes_transferred=written,
            )

        return WriteResult(
            path=dest,
            bytes_written=written,
            chunk_count=chunk_count,
            chunked=True,
            elapsed_seconds=(self.clock() - start) / 1000,
        )

    def _fail(self, log, error: Exception, written: int,
              total: int, start: float):
        snapshot = compute_metrics(written, total, start, self.clock()).to_dict()
        log.error('upload_write_error', error=str(error), **snapshot)
        raise StreamFailure(
            f"Write failed after {written} bytes: {error}",
            bytes_transferred=written,
            metrics=snapshot,
        ) from error


def require_payload(payload: Optional[Payload]):
    """Reject a missing or empty in-memory payload."""
    if payload is None:
        raise InvalidInput("No file provided")
    if isinstance(payload, (bytes, bytearray, memoryview)) and len(payload) == 0:
        raise InvalidInput("No file provided")
