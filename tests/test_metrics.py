"""Tests for transfer metrics and formatting."""

from tilesync.transfer.metrics import (
    compute_metrics,
    compute_network_metrics,
    format_bytes,
    format_duration,
    format_speed,
    should_emit_progress,
)


class TestFormatting:
    """Human readable sizes, speeds and durations."""

    def test_format_bytes(self):
        assert format_bytes(0) == "0.00 B"
        assert format_bytes(1536) == "1.50 KB"
        assert format_bytes(2 ** 30) == "1.00 GB"
        assert format_bytes(5 * 2 ** 40) == "5.00 TB"

    def test_format_bytes_caps_at_terabytes(self):
        assert format_bytes(2048 * 2 ** 40) == "2048.00 TB"

    def test_format_speed(self):
        assert format_speed(0.5) == "512.00 KB/s"
        assert format_speed(12.25) == "12.25 MB/s"
        assert format_speed(2048) == "2.00 GB/s"

    def test_format_duration(self):
        assert format_duration(12.5) == "12.5s"
        assert format_duration(200) == "3m 20s"
        assert format_duration(7500) == "2h 5m"


class TestProgressThrottle:
    """Bucket crossing."""

    def test_same_bucket_is_suppressed(self):
        assert should_emit_progress(24, 20, 10) is False

    def test_new_bucket_is_emitted(self):
        assert should_emit_progress(30, 24, 10) is True

    def test_custom_bucket(self):
        assert should_emit_progress(5, 4, 5) is True
        assert should_emit_progress(9, 5, 5) is False


class TestComputeMetrics:
    """Progress, speed and ETA."""

    def test_complete_transfer(self):
        total = 4 * 1024 * 1024
        m = compute_metrics(total, total, 0, 1000)
        assert m.progress == 100
        assert m.eta_seconds is None
        assert m.speed == 4.0
        assert m.speed_formatted == "4.00 MB/s"

    def test_partial_transfer_has_eta(self):
        m = compute_metrics(1024 * 1024, 4 * 1024 * 1024, 0, 1000)
        assert m.progress == 25
        assert m.eta_seconds == 3.0

    def test_progress_rounds_half_up(self):
        assert compute_metrics(1, 8, 0, 1000).progress == 13  # 12.5
        assert compute_metrics(1, 200, 0, 1000).progress == 1  # 0.5

    def test_zero_elapsed_has_no_speed(self):
        m = compute_metrics(100, 1000, 5000, 5000)
        assert m.speed == 0
        assert m.eta_seconds is None

    def test_empty_total_is_complete(self):
        m = compute_metrics(0, 0, 0, 1000)
        assert m.progress == 100
        assert m.eta_seconds is None


class TestNetworkMetrics:
    """Bit rates and packet figures."""

    def test_throughput(self):
        n = compute_network_metrics(1024 * 1024, 1.0, packet_count=16)
        assert n.throughput_mbps == 8.0
        assert n.avg_packet_size == 65536
        assert n.packets_per_sec == 16

    def test_zero_elapsed(self):
        n = compute_network_metrics(1024, 0, packet_count=1)
        assert n.throughput_mbps == 0
        assert n.packets_per_sec == 0

    def test_no_packet_count(self):
        n = compute_network_metrics(1024, 2.0)
        assert n.avg_packet_size is None
        assert n.packets_per_sec is None
