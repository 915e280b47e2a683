"""
Sweep Monitor
=============
Run-level counters and degraded-coverage warnings.

Tracks:
- Targets started / completed
- Probes issued and probe failures
- Ranges swept, ranges failed, result pages loaded
- Payloads and bytes saved, duplicates dropped
- Challenges detected / cleared / failed
- Warnings (partial coverage) for the run summary

Async-safe: all mutators use an asyncio.Lock so concurrent range sweeps
can share one monitor.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)


@dataclass
class SweepMetrics:
    """Snapshot of all sweep metrics at a point in time."""
    # Targets
    targets_started: int = 0
    targets_completed: int = 0

    # Planning
    probes: int = 0
    probe_failures: int = 0
    leaf_ranges: int = 0

    # Sweeping
    ranges_swept: int = 0
    ranges_failed: int = 0
    pages_loaded: int = 0
    payloads_saved: int = 0
    duplicates_dropped: int = 0
    total_bytes: int = 0

    # Challenges
    challenges_detected: int = 0
    challenges_cleared: int = 0
    challenges_failed: int = 0

    # Run
    cursor_start: int = 0
    cursor_end: int = 0
    elapsed_sec: float = 0.0
    stop_reason: str = ""
    warnings: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


class SweepMonitor:
    """
    Usage::

        monitor = SweepMonitor()
        await monitor.start()
        await monitor.incr('probes')
        await monitor.warn("HouseA [2000, +inf): CaptureEmpty")
        metrics = await monitor.snapshot()
        await monitor.stop("completed")
    """

    _COUNTERS = (
        'targets_started', 'targets_completed', 'probes', 'probe_failures',
        'leaf_ranges', 'ranges_swept', 'ranges_failed', 'pages_loaded',
        'payloads_saved', 'duplicates_dropped', 'total_bytes',
        'challenges_detected', 'challenges_cleared', 'challenges_failed',
    )

    def __init__(self):
        self._lock = asyncio.Lock()
        self._start_time: float = 0.0
        self._end_time: float = 0.0
        self._counts = {name: 0 for name in self._COUNTERS}
        self._warnings: List[str] = []
        self._stop_reason = ""
        self.cursor_start = 0
        self.cursor_end = 0

    async def start(self) -> None:
        self._start_time = time.monotonic()
        self._end_time = 0.0

    async def stop(self, reason: str = "completed") -> None:
        self._end_time = time.monotonic()
        self._stop_reason = reason

    async def incr(self, name: str, amount: int = 1) -> None:
        if name not in self._counts:
            raise KeyError(f"unknown counter: {name}")
        async with self._lock:
            self._counts[name] += amount

    async def warn(self, message: str) -> None:
        logger.warning(f"[MONITOR] {message}")
        async with self._lock:
            self._warnings.append(message)

    async def snapshot(self) -> SweepMetrics:
        """Take a consistent snapshot of all metrics."""
        async with self._lock:
            end = self._end_time or time.monotonic()
            elapsed = end - self._start_time if self._start_time else 0.0
            return SweepMetrics(
                **self._counts,
                cursor_start=self.cursor_start,
                cursor_end=self.cursor_end,
                elapsed_sec=round(elapsed, 2),
                stop_reason=self._stop_reason,
                warnings=list(self._warnings),
            )

    @staticmethod
    def format_summary(metrics: SweepMetrics) -> str:
        """Format a human-readable summary string."""
        lines = [
            "=" * 65,
            "  SWEEP SUMMARY",
            "=" * 65,
            f"  Targets completed:   {metrics.targets_completed}/{metrics.targets_started}",
            f"  Cursor:              {metrics.cursor_start} -> {metrics.cursor_end}",
            "-" * 65,
            f"  Probes:              {metrics.probes} ({metrics.probe_failures} failed)",
            f"  Leaf ranges:         {metrics.leaf_ranges}",
            f"  Ranges swept:        {metrics.ranges_swept} ({metrics.ranges_failed} failed)",
            f"  Result pages:        {metrics.pages_loaded}",
            f"  Payloads saved:      {metrics.payloads_saved}",
            f"  Duplicates dropped:  {metrics.duplicates_dropped}",
            f"  Total bytes:         {metrics.total_bytes:,}",
            "-" * 65,
            f"  Challenges:          {metrics.challenges_detected} detected, "
            f"{metrics.challenges_cleared} cleared, {metrics.challenges_failed} failed",
            f"  Elapsed time:        {metrics.elapsed_sec:.1f} s",
            f"  Stop reason:         {metrics.stop_reason}",
        ]
        if metrics.warnings:
            lines.append("-" * 65)
            lines.append(f"  WARNING: partial coverage ({len(metrics.warnings)} issue(s))")
            for message in metrics.warnings[:20]:
                lines.append(f"    - {message}")
            if len(metrics.warnings) > 20:
                lines.append(f"    ... and {len(metrics.warnings) - 20} more")
        lines.append("=" * 65)
        return "\n".join(lines)
