"""
Algorithm Metrics Registry

Process-lifetime call, latency and error counters per algorithm id. A
registry is created once at start-up and handed explicitly to the engine
and to the flush worker.

All counters of all algorithms are guarded by one lock, so
``snapshot_and_reset`` swaps every accumulator in a single step: a
concurrent ``record`` lands wholly before the swap (and is in the snapshot)
or wholly after it (and is in the next one).

Besides the live counters the registry keeps a per-day baseline: counts
restored from the durable store at start-up plus counts a flush has
written. The baseline is never drained again, so ``daily_totals`` shows
the day's persisted totals plus live counts without anything being
persisted twice.
"""

import math
import time
import datetime
import threading
import contextlib
from typing import Dict, Iterable, List, Optional, Tuple

from amas.common.logger import app_logger
from amas.common.utils import day_key, utc_now
from amas.types import ALL_ALGORITHM_IDS, MetricsSnapshot

logger = app_logger.getChild("metrics.registry")

# Upper bounds (inclusive) of the latency histogram buckets, in microseconds
LATENCY_BUCKETS: Tuple[float, ...] = (100, 500, 1_000, 5_000, 10_000, math.inf)
BUCKET_MIDPOINTS: Tuple[float, ...] = (50.0, 300.0, 750.0, 3000.0, 7500.0, 15000.0)


class AlgorithmCounters:
    """Live counters of one algorithm. Not thread-safe on its own."""

    __slots__ = ("call_count", "total_latency_us", "error_count", "latency_buckets", "last_called_at")

    def __init__(self):
        self.call_count = 0
        self.total_latency_us = 0
        self.error_count = 0
        self.latency_buckets: List[int] = [0] * len(LATENCY_BUCKETS)
        self.last_called_at: Optional[datetime.datetime] = None

    def record(self, latency_us: int, is_error: bool, at: datetime.datetime) -> None:
        self.call_count += 1
        self.total_latency_us += latency_us
        if is_error:
            self.error_count += 1
        for i, upper in enumerate(LATENCY_BUCKETS):
            if latency_us <= upper:
                self.latency_buckets[i] += 1
                break
        self.last_called_at = at

    def to_snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            call_count=self.call_count,
            total_latency_us=self.total_latency_us,
            error_count=self.error_count,
        )

    def percentiles(self) -> Tuple[float, float, float]:
        """Approximate p50/p95/p99 latency from the histogram (bucket midpoints)."""
        total = sum(self.latency_buckets)
        if total == 0:
            return 0.0, 0.0, 0.0

        def percentile(pct: float) -> float:
            target = math.ceil(pct / 100.0 * total)
            cumulative = 0
            for count, midpoint in zip(self.latency_buckets, BUCKET_MIDPOINTS):
                cumulative += count
                if cumulative >= target:
                    return midpoint
            return BUCKET_MIDPOINTS[-1]

        return percentile(50.0), percentile(95.0), percentile(99.0)


def _to_latency_us(latency_us) -> int:
    if latency_us is None:
        return 0
    try:
        value = float(latency_us)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(value) or value < 0:
        return 0
    return int(value)


class MetricsRegistry:
    """
    Thread-safe per-algorithm call counters.

    Args:
        algorithm_ids: Algorithms reported even before their first call
    """

    def __init__(self, algorithm_ids: Iterable[str] = ALL_ALGORITHM_IDS):
        self._lock = threading.Lock()
        self._known_ids = [str(a) for a in algorithm_ids]
        self._live: Dict[str, AlgorithmCounters] = self._fresh_counters()
        self._baseline: Dict[str, MetricsSnapshot] = {}
        self._baseline_day: Optional[str] = None

    def _fresh_counters(self) -> Dict[str, AlgorithmCounters]:
        return {algorithm_id: AlgorithmCounters() for algorithm_id in self._known_ids}

    def record(self, algorithm_id: str, latency_us, is_error: bool = False) -> None:
        """
        Count one call.

        Args:
            algorithm_id: Algorithm that was called
            latency_us: Call latency in microseconds (invalid values count as 0)
            is_error: Whether the call failed
        """
        algorithm_id = str(algorithm_id)
        latency = _to_latency_us(latency_us)
        now = utc_now()
        with self._lock:
            counters = self._live.get(algorithm_id)
            if counters is None:
                if algorithm_id not in self._known_ids:
                    self._known_ids.append(algorithm_id)
                counters = self._live[algorithm_id] = AlgorithmCounters()
            counters.record(latency, bool(is_error), now)

    @contextlib.contextmanager
    def track(self, algorithm_id: str):
        """
        Context manager that records the latency of its block.

        An exception escaping the block is counted as an error and re-raised.

        Example:
            with registry.track("heuristic"):
                candidate = heuristic.generate(state, feature, config)
        """
        start = time.perf_counter()
        is_error = False
        try:
            yield
        except BaseException:
            is_error = True
            raise
        finally:
            self.record(algorithm_id, (time.perf_counter() - start) * 1_000_000, is_error)

    def snapshot(self) -> Dict[str, MetricsSnapshot]:
        """Copy of the live counters; the accumulators are left untouched."""
        with self._lock:
            return {algorithm_id: c.to_snapshot() for algorithm_id, c in self._live.items()}

    def snapshot_and_reset(self) -> Dict[str, MetricsSnapshot]:
        """
        Atomically read and zero every live counter.

        Returns:
            Counters accumulated since the previous reset
        """
        with self._lock:
            drained = self._live
            self._live = self._fresh_counters()
            for algorithm_id, counters in drained.items():
                self._live.setdefault(algorithm_id, AlgorithmCounters()).last_called_at = counters.last_called_at
        return {algorithm_id: c.to_snapshot() for algorithm_id, c in drained.items()}

    def carry(self, day, snapshots: Dict[str, MetricsSnapshot]) -> None:
        """
        Add drained counts that were persisted for ``day`` to its baseline.

        Only counts that reached the durable store belong here; counts whose
        write failed are simply not carried.
        """
        day = day_key(day)
        with self._lock:
            if self._baseline_day != day:
                self._baseline = {}
                self._baseline_day = day
            for algorithm_id, counters in snapshots.items():
                if counters.is_empty:
                    continue
                self._baseline[str(algorithm_id)] = self._baseline.get(str(algorithm_id), MetricsSnapshot()) + counters

    def restore(self, algorithm_id: str, snapshot: MetricsSnapshot, day=None) -> None:
        """
        Seed the daily baseline with counts already persisted for ``day``.

        Restored counts show up in ``daily_totals`` but never in
        ``snapshot_and_reset``.
        """
        algorithm_id = str(algorithm_id)
        day = day_key(day)
        with self._lock:
            if self._baseline_day != day:
                self._baseline = {}
                self._baseline_day = day
            self._baseline[algorithm_id] = snapshot.model_copy()
            if algorithm_id not in self._known_ids:
                self._known_ids.append(algorithm_id)
                self._live.setdefault(algorithm_id, AlgorithmCounters())

    def daily_totals(self, day=None) -> Dict[str, MetricsSnapshot]:
        """Baseline plus live counters for ``day`` (today by default)."""
        day = day_key(day)
        with self._lock:
            totals = {algorithm_id: c.to_snapshot() for algorithm_id, c in self._live.items()}
            if self._baseline_day == day:
                for algorithm_id, counters in self._baseline.items():
                    totals[algorithm_id] = totals.get(algorithm_id, MetricsSnapshot()) + counters
        return totals

    def percentiles(self, algorithm_id: str) -> Tuple[float, float, float]:
        """Approximate p50/p95/p99 latency (µs) since the last reset."""
        with self._lock:
            counters = self._live.get(str(algorithm_id))
            return counters.percentiles() if counters is not None else (0.0, 0.0, 0.0)

    def last_called_at(self, algorithm_id: str) -> Optional[datetime.datetime]:
        with self._lock:
            counters = self._live.get(str(algorithm_id))
            return counters.last_called_at if counters is not None else None

    def reset(self) -> None:
        """Drop live counters and the baseline."""
        with self._lock:
            self._live = self._fresh_counters()
            self._baseline = {}
            self._baseline_day = None
