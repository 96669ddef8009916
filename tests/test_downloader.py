"""Tests for the outbound artifact stream."""

import aiofiles
import pytest

from tilesync.errors import NotFound, StreamFailure
from tilesync.transfer.downloader import ArtifactStream, ArtifactStreamer, copy_stream

from conftest import event_names, events_named


class FakeClock:
    """Advances a fixed step on every read."""

    def __init__(self, step_ms=0.0):
        self.now = 1_000_000.0
        self.step_ms = step_ms

    def __call__(self):
        self.now += self.step_ms
        return self.now


class FailingFile:
    """Serves `good_reads` buffers of data, then raises an I/O error."""

    def __init__(self, good_reads):
        self.good_reads = good_reads
        self.reads = 0
        self.closed = False

    async def read(self, size):
        if self.reads == self.good_reads:
            raise OSError(5, 'Input/output error')
        self.reads += 1
        return b'x' * size

    async def close(self):
        self.closed = True


def write_artifact(tmp_path, size, name='map.mbtiles'):
    path = tmp_path / name
    path.write_bytes(bytes(i % 251 for i in range(size)))
    return path


class TestArtifactStream:

    @pytest.mark.asyncio
    async def test_streams_whole_file(self, tmp_path, log, log_capture):
        path = write_artifact(tmp_path, 10_000)
        streamer = ArtifactStreamer(buffer_size=1024, log=log)

        stream = await streamer.open(path)
        received = b''.join([chunk async for chunk in stream])

        assert received == path.read_bytes()
        assert stream.total_size == 10_000
        assert stream.packet_count == 10
        assert stream.summary.bytes_read == 10_000
        assert stream.summary.efficiency == 100.0
        assert event_names(log_capture)[0] == 'stream_start'
        assert event_names(log_capture)[-1] == 'stream_complete'

    @pytest.mark.asyncio
    async def test_progress_is_throttled_to_buckets(self, tmp_path, log, log_capture):
        path = write_artifact(tmp_path, 100 * 100)
        streamer = ArtifactStreamer(buffer_size=100, progress_bucket=5,
                                    log=log, clock=FakeClock())

        stream = await streamer.open(path)
        async for _ in stream:
            pass

        progress = [e['progress'] for e in events_named(log_capture, 'stream_progress')]
        assert progress == list(range(5, 101, 5))

    @pytest.mark.asyncio
    async def test_slow_stream_reports_on_time_interval(self, tmp_path, log, log_capture):
        path = write_artifact(tmp_path, 1000)
        # 10% per read, 4s per read: 10s ticks land on reads 3, 5, 8 and 10
        stream = ArtifactStream(path, 1000, buffer_size=100, progress_bucket=50,
                                log=log, clock=FakeClock(step_ms=4_000))

        async for _ in stream:
            pass

        progress = events_named(log_capture, 'stream_progress')
        # 30 and 80 come from ticks, 50 and 100 from bucket crossings
        assert [e['progress'] for e in progress] == [30, 50, 80, 100]
        assert [e['bytes_read'] for e in progress] == [300, 500, 800, 1000]

    @pytest.mark.asyncio
    async def test_no_time_event_without_progress(self, tmp_path, log, log_capture):
        path = write_artifact(tmp_path, 1000)
        # Declared size so large that progress stays at 0% while 20s pass per read
        stream = ArtifactStream(path, 10**9, buffer_size=100,
                                log=log, clock=FakeClock(step_ms=20_000))

        async for _ in stream:
            pass

        assert events_named(log_capture, 'stream_progress') == []
        assert event_names(log_capture) == ['stream_start', 'stream_complete']

    @pytest.mark.asyncio
    async def test_bound_context_reaches_events(self, tmp_path, log, log_capture):
        path = write_artifact(tmp_path, 10)
        streamer = ArtifactStreamer(log=log)

        stream = await streamer.open(path, log=log.bind(map_id='m1'))
        async for _ in stream:
            pass

        assert log_capture.entries
        assert all(e['map_id'] == 'm1' for e in log_capture.entries)

    @pytest.mark.asyncio
    async def test_empty_file(self, tmp_path, log):
        path = write_artifact(tmp_path, 0)
        stream = await ArtifactStreamer(log=log).open(path)
        assert [c async for c in stream] == []
        assert stream.summary.efficiency == 100.0

    @pytest.mark.asyncio
    async def test_missing_artifact(self, tmp_path, log):
        streamer = ArtifactStreamer(log=log)
        with pytest.raises(NotFound):
            await streamer.open(tmp_path / 'gone.mbtiles')

    @pytest.mark.asyncio
    async def test_artifact_removed_after_open(self, tmp_path, log):
        path = write_artifact(tmp_path, 10)
        stream = await ArtifactStreamer(log=log).open(path)
        path.unlink()
        with pytest.raises(NotFound):
            async for _ in stream:
                pass

    @pytest.mark.asyncio
    async def test_read_error_mid_stream(self, tmp_path, monkeypatch, log, log_capture):
        source = FailingFile(good_reads=1)

        async def fake_open(path, mode='rb'):
            return source

        monkeypatch.setattr(aiofiles, 'open', fake_open)
        stream = ArtifactStream(tmp_path / 'map.mbtiles', 10_000, buffer_size=1000,
                                log=log, clock=FakeClock(step_ms=100))

        received = []
        with pytest.raises(StreamFailure) as exc_info:
            async for chunk in stream:
                received.append(chunk)

        assert b''.join(received) == b'x' * 1000
        assert exc_info.value.bytes_transferred == 1000
        assert exc_info.value.metrics['bytes_transferred'] == 1000
        assert exc_info.value.metrics['progress'] == 10
        assert source.closed
        assert stream.summary is None

        assert event_names(log_capture) == ['stream_start', 'stream_progress', 'stream_error']
        error = log_capture.entries[-1]
        assert error['log_level'] == 'error'
        assert error['bytes_transferred'] == 1000
        assert 'Input/output error' in error['error']

    @pytest.mark.asyncio
    async def test_consumer_abort(self, tmp_path, log, log_capture):
        path = write_artifact(tmp_path, 10_000)
        stream = await ArtifactStreamer(buffer_size=1000, log=log).open(path)

        chunks = stream.chunks()
        await chunks.__anext__()
        await chunks.aclose()

        assert stream.summary is None
        aborted = events_named(log_capture, 'stream_aborted')
        assert len(aborted) == 1
        assert aborted[0]['bytes_read'] == 1000
        assert aborted[0]['log_level'] == 'warning'


class TestCopyStream:

    @pytest.mark.asyncio
    async def test_copies_into_writer(self, tmp_path, log):
        path = write_artifact(tmp_path, 5000)
        received = []

        async def write(data):
            received.append(data)

        stream = await ArtifactStreamer(buffer_size=2048, log=log).open(path)
        summary = await copy_stream(stream, write)

        assert b''.join(received) == path.read_bytes()
        assert summary is stream.summary
        assert summary.total_packets == 3

    @pytest.mark.asyncio
    async def test_writer_failure_closes_reader(self, tmp_path, log, log_capture):
        path = write_artifact(tmp_path, 5000)

        async def write(data):
            raise StreamFailure("client went away")

        stream = await ArtifactStreamer(buffer_size=1000, log=log).open(path)
        with pytest.raises(StreamFailure):
            await copy_stream(stream, write)

        assert 'stream_aborted' in event_names(log_capture)
        assert 'stream_complete' not in event_names(log_capture)
