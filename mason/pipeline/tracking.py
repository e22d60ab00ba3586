"""
Build Timing and Parallelism Tracking

- BuildTimer: named phase stopwatch (phases may nest or interleave)
- ParallelBuildTracker: per-level concurrency statistics

Both are shared by concurrent build tasks; every mutation happens inside a
single lock acquisition.

Usage:
    timer = BuildTimer()
    timer.start("Module Compilation")
    ...
    timer.end("Module Compilation")
    timer.summarize()
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


@dataclass
class PhaseTiming:
    """One completed phase with its share of total measured time."""
    phase: str
    duration_seconds: float
    percentage: float


class BuildTimer:
    """Records durations of named build phases."""

    def __init__(self, clock=time.perf_counter):
        self._clock = clock
        self._lock = threading.Lock()
        self._timers: Dict[str, float] = {}
        self._measurements: List[Tuple[str, float]] = []

    def start(self, phase: str) -> None:
        with self._lock:
            self._timers[phase] = self._clock()
        logger.debug(f"Starting phase: {phase}")

    def end(self, phase: str) -> Optional[float]:
        """Stop a phase and record its duration. Unknown phases are ignored."""
        with self._lock:
            started = self._timers.pop(phase, None)
            if started is None:
                duration = None
            else:
                duration = self._clock() - started
                self._measurements.append((phase, duration))

        if duration is None:
            logger.warning(f"Attempted to end timer for unknown phase: {phase}")
        else:
            logger.debug(f"{phase} completed in {duration:.2f}s")
        return duration

    @contextmanager
    def phase(self, phase: str) -> Iterator[None]:
        """Time the enclosed block as `phase`, even if it raises."""
        self.start(phase)
        try:
            yield
        finally:
            self.end(phase)

    def reset(self) -> None:
        with self._lock:
            self._timers.clear()
            self._measurements.clear()

    def measurements(self) -> List[Tuple[str, float]]:
        with self._lock:
            return list(self._measurements)

    def summarize(self) -> List[PhaseTiming]:
        """
        Summarize recorded phases, longest first.

        Percentages are relative to the sum of all recorded durations.
        """
        measurements = self.measurements()
        if not measurements:
            return []

        total = sum(duration for _, duration in measurements)
        rows = [
            PhaseTiming(
                phase=phase,
                duration_seconds=duration,
                percentage=(duration / total * 100) if total > 0 else 0.0,
            )
            for phase, duration in sorted(measurements, key=lambda m: m[1], reverse=True)
        ]

        lines = ["Build Summary:", "-" * 13]
        for row in rows:
            lines.append(f"{row.phase}: {row.duration_seconds:.2f}s ({row.percentage:.1f}%)")
        lines.append("-" * 13)
        lines.append(f"Total Build Time: {total:.2f}s")
        logger.info("\n".join(lines))

        return rows


@dataclass
class LevelStatistics:
    """Concurrency statistics for one completed build level."""
    level: int
    modules_built: int
    max_concurrent: int
    average_seconds: float
    max_seconds: float
    time_saved_seconds: float


class ParallelBuildTracker:
    """Tracks in-flight modules and build durations for the current level."""

    def __init__(self, clock=time.perf_counter):
        self._clock = clock
        self._lock = threading.Lock()
        self._building: Set[str] = set()
        self._times: Dict[str, Tuple[float, Optional[float]]] = {}
        self._max_concurrent = 0
        self._levels: List[LevelStatistics] = []

    def module_started(self, module: str) -> None:
        with self._lock:
            self._building.add(module)
            self._times[module] = (self._clock(), None)
            self._max_concurrent = max(self._max_concurrent, len(self._building))
            in_flight = len(self._building)
        logger.info(f"Started building {module} (Currently building: {in_flight} modules)")

    def module_finished(self, module: str) -> None:
        with self._lock:
            self._building.discard(module)
            started, _ = self._times.get(module, (self._clock(), None))
            self._times[module] = (started, self._clock())
            remaining = len(self._building)
        logger.info(f"Finished building {module} (Remaining: {remaining} modules)")

    def level_statistics(self, level: int) -> LevelStatistics:
        """Compute statistics for the level just finished and clear level state."""
        with self._lock:
            durations = [end - start for start, end in self._times.values() if end is not None]
            total = sum(durations)
            longest = max(durations, default=0.0)
            stats = LevelStatistics(
                level=level,
                modules_built=len(durations),
                max_concurrent=self._max_concurrent,
                average_seconds=total / len(durations) if durations else 0.0,
                max_seconds=longest,
                time_saved_seconds=total - longest,
            )
            self._times.clear()
            self._max_concurrent = 0
            self._levels.append(stats)

        logger.info(
            f"Level {level} build statistics:\n"
            f"  - Modules built: {stats.modules_built}\n"
            f"  - Maximum concurrent builds: {stats.max_concurrent}\n"
            f"  - Average build time: {stats.average_seconds:.2f}s\n"
            f"  - Maximum build time: {stats.max_seconds:.2f}s\n"
            f"  - Time saved via parallelization: {stats.time_saved_seconds:.2f}s"
        )
        return stats

    def final_statistics(self) -> List[LevelStatistics]:
        with self._lock:
            levels = list(self._levels)
        saved = sum(s.time_saved_seconds for s in levels)
        logger.info(f"Build complete! {len(levels)} levels, {saved:.2f}s saved via parallelization")
        return levels
