"""
Run metrics: per-node row counts, batch timings and node progress.
"""
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, Optional, TextIO


@dataclass
class TimerMetric:
    """Accumulated durations for one named operation."""
    total_time: float = 0.0
    count: int = 0
    longest: float = 0.0

    def record(self, duration: float):
        self.total_time += duration
        self.count += 1
        self.longest = max(self.longest, duration)

    def average(self) -> float:
        return self.total_time / self.count if self.count > 0 else 0.0


@dataclass
class CounterMetric:
    """Tracks counts and rates."""
    count: int = 0
    start_time: float = field(default_factory=time.time)

    def increment(self, amount: int = 1):
        self.count += amount

    def rate(self) -> float:
        """Items per second since the counter was created."""
        elapsed = time.time() - self.start_time
        return self.count / elapsed if elapsed > 0 else 0.0


class MetricsCollector:
    """
    Collects run metrics from the collector workers and the writer.
    Thread-safe; timers keep their start time on the caller's stack so
    several workers can time the same operation at once.
    """

    def __init__(self):
        self._timers: Dict[str, TimerMetric] = {}
        self._counters: Dict[str, CounterMetric] = {}
        self._lock = Lock()
        self._start_time = time.time()

    @contextmanager
    def timed(self, name: str):
        """Time the enclosed block under ``name``, even when it raises."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.record_duration(name, time.perf_counter() - started)

    def record_duration(self, name: str, duration: float):
        with self._lock:
            if name not in self._timers:
                self._timers[name] = TimerMetric()
            self._timers[name].record(duration)

    def record_count(self, name: str, amount: int = 1):
        """Record a count increment."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = CounterMetric()
            self._counters[name].increment(amount)

    def get_count(self, name: str) -> int:
        with self._lock:
            counter = self._counters.get(name)
            return counter.count if counter else 0

    def get_timer_stats(self, name: str) -> Dict[str, float]:
        with self._lock:
            timer = self._timers.get(name)
            if timer:
                return {
                    "total": timer.total_time,
                    "count": timer.count,
                    "average": timer.average(),
                    "longest": timer.longest,
                }
        return {"total": 0.0, "count": 0, "average": 0.0, "longest": 0.0}

    def elapsed_time(self) -> float:
        return time.time() - self._start_time

    def format_summary(self) -> str:
        """Format complete metrics summary."""
        with self._lock:
            lines = ["", "Run Metrics:", "=" * 50]

            lines.append(f"Total execution time: {self._format_duration(self.elapsed_time())}")
            lines.append("")

            if self._counters:
                lines.append("Counts:")
                for name, counter in sorted(self._counters.items()):
                    lines.append(f"  {name}: {counter.count:,} ({counter.rate():.1f}/s)")
                lines.append("")

            if self._timers:
                lines.append("Operation timings:")
                for name, timer in sorted(self._timers.items()):
                    if timer.count > 0:
                        lines.append(
                            f"  {name}: {timer.count} ops, "
                            f"avg {timer.average():.3f}s, max {timer.longest:.3f}s, "
                            f"total {timer.total_time:.1f}s"
                        )
                lines.append("")

            lines.append("=" * 50)
            return "\n".join(lines)

    @staticmethod
    def _format_duration(seconds: float) -> str:
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            return f"{seconds / 60:.1f}m"
        else:
            return f"{seconds / 3600:.1f}h"


class ProgressBar:
    """
    Single-line progress display, updated from worker threads.
    A disabled bar still counts but renders nothing.
    """

    def __init__(
        self,
        total: int,
        desc: str = "",
        width: int = 40,
        stream: Optional[TextIO] = None,
        enabled: bool = True,
    ):
        self.total = total
        self.desc = desc
        self.width = width
        self.stream = stream
        self.enabled = enabled
        self.current = 0
        self.start_time = time.time()
        self._lock = Lock()

    def update(self, amount: int = 1):
        with self._lock:
            self.current += amount
            self._render()

    def _render(self):
        if not self.enabled or self.total == 0:
            return

        progress = self.current / self.total
        filled = int(self.width * progress)
        bar = "█" * filled + "░" * (self.width - filled)

        elapsed = time.time() - self.start_time
        output = (
            f"\r{self.desc} {bar} {progress * 100:.1f}% | "
            f"{self.current:,}/{self.total:,} | {elapsed:.1f}s"
        )

        stream = self.stream or sys.stdout
        stream.write(output)
        stream.flush()

    def finish(self):
        """Terminate the progress line."""
        with self._lock:
            if not self.enabled or self.total == 0:
                return
            self._render()
            stream = self.stream or sys.stdout
            stream.write("\n")
            stream.flush()
