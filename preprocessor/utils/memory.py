"""Resident memory tracking for long shard-writing runs."""
import gc
import time
from dataclasses import dataclass

import psutil

from preprocessor.core.logging import log

# Minimum seconds between two forced collections
GC_INTERVAL_SECONDS = 5.0


@dataclass
class MemorySample:
    rss_bytes: int
    peak_bytes: int
    over_threshold: bool


class MemoryTracker:
    """Samples process RSS, keeps the peak and requests GC near the ceiling."""

    def __init__(self, limit_mb: int, gc_fraction: float = 0.8):
        """
        Args:
            limit_mb: Memory ceiling in MiB
            gc_fraction: Fraction of the ceiling above which gc.collect() runs
        """
        self.limit_bytes = limit_mb * 1024 * 1024
        self.threshold_bytes = int(self.limit_bytes * gc_fraction)
        self.peak_bytes = 0
        self.collections = 0
        self._process = psutil.Process()
        self._last_collect = 0.0

    def current_rss(self) -> int:
        try:
            return self._process.memory_info().rss
        except psutil.Error as e:
            log.debug(f"Failed to read memory info: {e}")
            return 0

    def sample(self) -> MemorySample:
        rss = self.current_rss()
        self.peak_bytes = max(self.peak_bytes, rss)

        over = rss > self.threshold_bytes
        if over:
            self._maybe_collect(rss)
        return MemorySample(rss_bytes=rss, peak_bytes=self.peak_bytes, over_threshold=over)

    def _maybe_collect(self, rss: int):
        now = time.monotonic()
        if now - self._last_collect < GC_INTERVAL_SECONDS:
            return
        self._last_collect = now
        self.collections += 1
        log.warning(f"Memory usage {rss / 1024 / 1024:.1f} MiB above {self.threshold_bytes / 1024 / 1024:.1f} MiB, collecting")
        gc.collect()
