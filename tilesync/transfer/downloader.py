"""
Artifact Streamer (outbound path)

Design Decision: Streaming Model
================================

Options Considered:
1. Read the whole artifact, then send
   - Simple, but memory grows with the artifact (multi-GB)
2. Push-based reader with a callback per chunk
   - Needs explicit pause/resume to respect a slow consumer
3. Pull-based async generator
   - The reader only advances when the consumer asks for the next chunk
   - Backpressure falls out of `await`
   - Closing the generator closes the file handle

Decision: Pull-based async generator over aiofiles
- Fixed 64 KiB read buffer
- Consumer disconnect closes the generator, which closes the file
- No retry: a failed stream must be restarted by the caller

Progress Reporting:
- Metrics are recomputed after every buffer (O(1) work)
- An event is emitted only when progress crosses a 5% bucket, or when
  another 10 whole seconds have elapsed and progress has moved since the
  last event. Fast transfers don't flood, slow ones stay visible.
"""

import asyncio
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

import aiofiles
import aiofiles.os

from ..errors import NotFound, StreamFailure
from ..logs import get_logger
from .metrics import (
    KIB,
    TransferMetrics,
    compute_metrics,
    compute_network_metrics,
    format_bytes,
    format_duration,
    now_ms,
    should_emit_progress,
)

READ_BUFFER_SIZE = 64 * KIB
PROGRESS_BUCKET = 5
TIME_INTERVAL_SECONDS = 10

Clock = Callable[[], float]


@dataclass
class StreamSummary:
    """Final figures for a completed outbound transfer."""
    bytes_read: int
    total_size: int
    elapsed_seconds: float
    average_speed: str
    throughput_mbps: float
    total_packets: int
    efficiency: float  # bytes_read / total_size * 100

    def to_dict(self) -> Dict:
        return asdict(self)


class ArtifactStream:
    """
    One outbound transfer of one artifact.

    Iterate it (async for) to receive chunks. Counters are readable at any
    time; `summary` is set once the artifact has been fully read.
    """

    def __init__(self, path: Path, total_size: int,
                 buffer_size: int = READ_BUFFER_SIZE,
                 progress_bucket: int = PROGRESS_BUCKET,
                 time_interval: int = TIME_INTERVAL_SECONDS,
                 log=None,
                 clock: Clock = now_ms):
        self.path = Path(path)
        self.total_size = total_size
        self.buffer_size = buffer_size
        self.progress_bucket = progress_bucket
        self.time_interval = time_interval
        self.log = log if log is not None else get_logger()
        self.clock = clock

        self.bytes_read = 0
        self.packet_count = 0
        self.start_time: Optional[float] = None
        self.last_emitted_progress = 0
        self._last_tick = 0
        self.summary: Optional[StreamSummary] = None

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.chunks()

    def snapshot(self) -> TransferMetrics:
        """Metrics for the bytes read so far."""
        start = self.start_time if self.start_time is not None else self.clock()
        return compute_metrics(self.bytes_read, self.total_size, start, self.clock())

    async def chunks(self) -> AsyncIterator[bytes]:
        """
        Yield the artifact in buffer_size pieces.

        Raises:
            NotFound: if the artifact disappeared before it was opened
            StreamFailure: on any I/O error after the stream started
        """
        self.start_time = self.clock()
        self.log.info('stream_start', path=str(self.path), total_size=self.total_size)

        try:
            f = await aiofiles.open(self.path, 'rb')
        except FileNotFoundError:
            raise NotFound(f"Map file not found: {self.path.name}") from None
        except OSError as e:
            self._fail(e)

        try:
            while True:
                try:
                    data = await f.read(self.buffer_size)
                except OSError as e:
                    self._fail(e)
                if not data:
                    break

                self.bytes_read += len(data)
                self.packet_count += 1
                self._maybe_emit_progress()

                yield data
        except (GeneratorExit, asyncio.CancelledError):
            self.log.warning(
                'stream_aborted',
                bytes_read=self.bytes_read,
                total_size=self.total_size,
            )
            raise
        finally:
            await f.close()

        self._complete()

    def _maybe_emit_progress(self):
        metrics = self.snapshot()
        tick = int(metrics.elapsed_seconds) // self.time_interval

        emit = should_emit_progress(
            metrics.progress, self.last_emitted_progress, self.progress_bucket
        )
        if not emit and tick > self._last_tick and metrics.progress > self.last_emitted_progress:
            emit = True

        if not emit:
            return

        self.last_emitted_progress = metrics.progress
        self._last_tick = tick
        fields = {
            'progress': metrics.progress,
            'bytes_read': self.bytes_read,
            'total_size': self.total_size,
            'speed': metrics.speed_formatted,
            'elapsed': format_duration(metrics.elapsed_seconds),
        }
        if metrics.eta_seconds is not None:
            fields['eta'] = format_duration(metrics.eta_seconds)
        self.log.info('stream_progress', **fields)

    def _complete(self):
        metrics = self.snapshot()
        network = compute_network_metrics(
            self.bytes_read, metrics.elapsed_seconds, self.packet_count
        )
        efficiency = (
            self.bytes_read / self.total_size * 100 if self.total_size > 0 else 100.0
        )
        self.summary = StreamSummary(
            bytes_read=self.bytes_read,
            total_size=self.total_size,
            elapsed_seconds=metrics.elapsed_seconds,
            average_speed=metrics.speed_formatted,
            throughput_mbps=network.throughput_mbps,
            total_packets=self.packet_count,
            efficiency=efficiency,
        )
        self.log.info(
            'stream_complete',
            total_time=format_duration(metrics.elapsed_seconds),
            total_size=format_bytes(self.total_size),
            average_speed=metrics.speed_formatted,
            throughput=f"{network.throughput_mbps:.2f} Mbps",
            total_packets=self.packet_count,
            efficiency=f"{efficiency:.1f}%",
        )

    def _fail(self, error: OSError):
        snapshot = self.snapshot().to_dict()
        self.log.error('stream_error', error=str(error), **snapshot)
        raise StreamFailure(
            f"Stream failed after {self.bytes_read} bytes: {error}",
            bytes_transferred=self.bytes_read,
            metrics=snapshot,
        ) from error


class ArtifactStreamer:
    """
    Factory for outbound transfers.

    Holds configuration only; every transfer gets its own ArtifactStream,
    so concurrent downloads share no mutable state.
    """

    def __init__(self, buffer_size: int = READ_BUFFER_SIZE,
                 progress_bucket: int = PROGRESS_BUCKET,
                 log=None,
                 clock: Clock = now_ms):
        self.buffer_size = buffer_size
        self.progress_bucket = progress_bucket
        self.log = log if log is not None else get_logger()
        self.clock = clock

    async def open(self, path: Path, total_size: Optional[int] = None,
                   log=None) -> ArtifactStream:
        """
        Prepare a stream over an artifact.

        Args:
            path: Artifact file
            total_size: Known size; read from the filesystem if omitted
            log: Per-transfer logger (defaults to the streamer's)

        Raises:
            NotFound: if the artifact doesn't exist
        """
        path = Path(path)
        if total_size is None:
            try:
                stat = await aiofiles.os.stat(path)
            except FileNotFoundError:
                raise NotFound(f"Map file not found: {path.name}") from None
            total_size = stat.st_size

        return ArtifactStream(
            path,
            total_size,
            buffer_size=self.buffer_size,
            progress_bucket=self.progress_bucket,
            log=log if log is not None else self.log,
            clock=self.clock,
        )


async def copy_stream(stream: ArtifactStream,
                      write: Callable[[bytes], Awaitable[object]]) -> StreamSummary:
    """
    Drain a stream into an async writer.

    The next buffer is read only after `write` returns. If `write`
    raises, the reader is closed before the error propagates.
    """
    chunks = stream.chunks()
    try:
        async for data in chunks:
            await write(data)
    finally:
        await chunks.aclose()
    return stream.summary
