"""
Metrics Persistence

Moves registry counters into durable daily buckets and seeds a fresh
registry from them after a restart. Each algorithm's bucket is merged on its
own, so one failed write never blocks the others, and decisions never wait
on any of this.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from amas.common.exceptions import PersistenceWriteFailure, SerializationFailure
from amas.common.logger import app_logger
from amas.common.utils import day_key
from amas.metrics.registry import MetricsRegistry
from amas.store.repository import MetricsRepository
from amas.types import MetricsSnapshot

logger = app_logger.getChild("metrics.persistence")


@dataclass
class FlushReport:
    """Outcome of one flush cycle."""
    day: str
    merged: Dict[str, MetricsSnapshot] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    failures: List[PersistenceWriteFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def flush_metrics(
    registry: MetricsRegistry,
    repository: MetricsRepository,
    day=None
) -> FlushReport:
    """
    Drain the registry into the durable daily buckets.

    For every algorithm with activity since the last flush, the drained
    counters are added to whatever is stored for ``day``. An unreadable
    bucket counts as zero. Deltas that were written are carried into the
    registry's daily baseline. A failed write is logged and reported; the
    counters of that algorithm for this cycle are lost and never show up
    in ``daily_totals``.

    Args:
        registry: Registry to drain
        repository: Durable metrics store
        day: Bucket day (defaults to today, UTC)

    Returns:
        Report with the merged totals per algorithm and any failures
    """
    day = day_key(day)
    drained = registry.snapshot_and_reset()
    report = FlushReport(day=day)
    persisted = {}

    for algorithm_id, delta in drained.items():
        if delta.is_empty:
            report.skipped.append(algorithm_id)
            continue
        try:
            report.merged[algorithm_id] = repository.merge_metrics_daily(day, algorithm_id, delta)
            persisted[algorithm_id] = delta
        except Exception as e:
            failure = PersistenceWriteFailure(algorithm_id, day, e)
            logger.error(f"{failure.message}: {e}")
            report.failures.append(failure)

    registry.carry(day, persisted)
    logger.debug(
        f"Metrics flushed for {day}: {len(report.merged)} merged, "
        f"{len(report.skipped)} idle, {len(report.failures)} failed"
    )
    return report


def restore_from_store(
    registry: MetricsRegistry,
    repository: MetricsRepository,
    day=None,
    algorithm_ids: Optional[List[str]] = None
) -> Dict[str, MetricsSnapshot]:
    """
    Seed the registry's daily baseline from the durable buckets of ``day``.

    Best effort: missing or undecodable buckets and store errors leave the
    registry at zero.

    Returns:
        The snapshots that were restored
    """
    day = day_key(day)
    restored = {}
    try:
        if algorithm_ids is None:
            buckets = repository.iter_metrics_daily(day)
        else:
            buckets = {}
            for algorithm_id in algorithm_ids:
                try:
                    snapshot = repository.get_metrics_daily(day, algorithm_id)
                except SerializationFailure as e:
                    logger.warning(f"{e.message}, starting from zero")
                    continue
                if snapshot is not None:
                    buckets[algorithm_id] = snapshot
    except Exception as e:
        logger.warning(f"Could not restore metrics for {day}: {e}")
        return restored

    for algorithm_id, snapshot in buckets.items():
        registry.restore(algorithm_id, snapshot, day)
        restored[algorithm_id] = snapshot

    logger.debug(f"Metrics restored from store for {day}: {sorted(restored)}")
    return restored
