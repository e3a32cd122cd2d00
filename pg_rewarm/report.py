"""
RunStatistics - figures derived from a RestoreReport for display.

"Buffer pool restored %" divides the live occupancy after the restore by
the occupancy recorded when the image was captured. If the two servers
have different shared_buffers sizes, or other sessions touched the buffer
pool meanwhile, the figure is only an approximation of re-warm
completeness.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from .manager import RestoreReport


def _percent(part: Optional[float], whole: Optional[float]) -> Optional[float]:
    if part is None or not whole:
        return None
    return part / whole * 100


@dataclass
class RunStatistics:
    """Derived restore statistics."""
    run_time: float                        # seconds, sum of timed phases
    fetch_time: float
    pages_fetched: int
    pages_attempted: int
    pages_failed: int
    fetch_speed: Optional[float]           # pages per second
    data_read_delta: Optional[int]         # bytes read from disk during the run
    occupancy_before: Optional[float]      # % of shared_buffers holding data
    occupancy_after: Optional[float]
    restored_percent: Optional[float]      # approximate, see module docstring
    cancelled: bool = False

    @classmethod
    def from_restore(cls, report: RestoreReport) -> 'RunStatistics':
        before = report.status_before or {}
        after = report.status_after or {}
        fetch_time = report.timings.get("fetch", 0.0)

        data_read_delta = None
        if before.get("data_read") is not None and after.get("data_read") is not None:
            data_read_delta = after["data_read"] - before["data_read"]

        return cls(
            run_time=sum(report.timings.values()),
            fetch_time=fetch_time,
            pages_fetched=report.pages_fetched,
            pages_attempted=report.pages_attempted,
            pages_failed=report.pages_failed,
            fetch_speed=report.pages_fetched / fetch_time if fetch_time > 0 else None,
            data_read_delta=data_read_delta,
            occupancy_before=_percent(
                before.get("buffer_pool_pages_data"), before.get("buffer_pool_pages_total")
            ),
            occupancy_after=_percent(
                after.get("buffer_pool_pages_data"), after.get("buffer_pool_pages_total")
            ),
            restored_percent=_percent(
                after.get("buffer_pool_pages_data"), report.metadata.buffer_pool_pages_data
            ),
            cancelled=report.cancelled,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def format_bytes(value: Optional[int]) -> str:
    """Human-readable byte count (1024-based)."""
    if value is None:
        return "n/a"
    size = float(value)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if abs(size) < 1024 or unit == "TiB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TiB"
