"""
Transfer Metrics

Pure functions over counters supplied by the caller: progress, speed,
ETA, human readable formatting and progress throttling.

All timestamps are milliseconds since the epoch; durations handed back
are seconds.
"""

import math
import time
from dataclasses import dataclass, asdict
from typing import Dict, Optional

KIB = 1024
MIB = 1024 * 1024

_BYTE_UNITS = ['B', 'KB', 'MB', 'GB', 'TB']


@dataclass
class TransferMetrics:
    """Snapshot of one transfer at one point in time."""
    bytes_transferred: int
    total_size: int
    progress: int  # percent, not clamped
    speed: float  # MB/s
    speed_formatted: str
    elapsed_seconds: float
    eta_seconds: Optional[float] = None
    throughput_bytes_per_sec: Optional[float] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class NetworkMetrics:
    """Bit-oriented throughput, plus packet figures when a count is known."""
    throughput_mbps: float
    avg_packet_size: Optional[float] = None
    packets_per_sec: Optional[float] = None

    def to_dict(self) -> Dict:
        return asdict(self)


def now_ms() -> float:
    """Current wall clock in milliseconds."""
    return time.time() * 1000


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_metrics(transferred: int, total: int, start_time: float,
                    now: Optional[float] = None) -> TransferMetrics:
    """
    Compute progress, speed and ETA for a transfer.

    Args:
        transferred: Bytes moved so far
        total: Expected total bytes
        start_time: Transfer start (ms)
        now: Current time (ms), defaults to the wall clock

    Returns:
        TransferMetrics. eta_seconds is None unless speed > 0 and
        progress < 100. An empty transfer (total == 0) reports 100%.
    """
    if now is None:
        now = now_ms()

    elapsed_seconds = (now - start_time) / 1000
    if total > 0:
        progress = _round_half_up(transferred / total * 100)
    else:
        progress = 100

    bytes_per_sec = transferred / elapsed_seconds if elapsed_seconds > 0 else 0.0
    mb_per_sec = bytes_per_sec / MIB

    eta_seconds = None
    if bytes_per_sec > 0 and progress < 100:
        eta_seconds = (total - transferred) / bytes_per_sec

    return TransferMetrics(
        bytes_transferred=transferred,
        total_size=total,
        progress=progress,
        speed=mb_per_sec,
        speed_formatted=format_speed(mb_per_sec),
        elapsed_seconds=elapsed_seconds,
        eta_seconds=eta_seconds,
        throughput_bytes_per_sec=bytes_per_sec,
    )


def format_bytes(n: float) -> str:
    """Format a byte count, e.g. 1536 -> '1.50 KB'."""
    size = float(n)
    unit_index = 0
    while size >= 1024 and unit_index < len(_BYTE_UNITS) - 1:
        size /= 1024
        unit_index += 1
    return f"{size:.2f} {_BYTE_UNITS[unit_index]}"


def format_speed(mb_per_sec: float) -> str:
    """Format a speed given in MB/s."""
    if mb_per_sec >= 1024:
        return f"{mb_per_sec / 1024:.2f} GB/s"
    elif mb_per_sec >= 1:
        return f"{mb_per_sec:.2f} MB/s"
    else:
        return f"{mb_per_sec * 1024:.2f} KB/s"


def format_duration(seconds: float) -> str:
    """Format a duration: '12.5s', '3m 20s' or '2h 5m'."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        remaining = seconds % 60
        return f"{minutes}m {remaining:.0f}s"
    else:
        hours = int(seconds // 3600)
        remaining_minutes = int((seconds % 3600) // 60)
        return f"{hours}h {remaining_minutes}m"


def should_emit_progress(progress: float, last_emitted: float,
                         bucket_size: int = 10) -> bool:
    """True only when progress crosses into a new bucket."""
    return math.floor(progress / bucket_size) > math.floor(last_emitted / bucket_size)


def compute_network_metrics(transferred: int, elapsed_seconds: float,
                            packet_count: Optional[int] = None) -> NetworkMetrics:
    """
    Throughput in Mbps (2^20 bits), plus packet statistics.

    A non-positive elapsed time yields zero rates instead of dividing
    by zero.
    """
    if elapsed_seconds > 0:
        throughput_mbps = transferred / elapsed_seconds * 8 / MIB
    else:
        throughput_mbps = 0.0

    metrics = NetworkMetrics(throughput_mbps=throughput_mbps)

    if packet_count and packet_count > 0:
        metrics.avg_packet_size = transferred / packet_count
        metrics.packets_per_sec = (
            packet_count / elapsed_seconds if elapsed_seconds > 0 else 0.0
        )

    return metrics
