"""
Tests for metrics persistence: flushing the registry into daily buckets and
restoring a registry after a restart. Every test runs against the in-memory
and the SQLite store.
"""

import pytest

from amas.common.exceptions import SerializationFailure
from amas.metrics.persistence import flush_metrics, restore_from_store
from amas.metrics.registry import MetricsRegistry
from amas.store.repository import METRICS_DAILY_PARTITION, MetricsRepository, metrics_daily_key
from amas.types import MetricsSnapshot


class FailingMetricsRepository(MetricsRepository):
    """Repository whose writes fail for one algorithm."""

    def __init__(self, store, failing_id):
        super().__init__(store)
        self.failing_id = failing_id

    def merge_metrics_daily(self, day, algorithm_id, delta):
        if algorithm_id == self.failing_id:
            raise IOError("disk full")
        return super().merge_metrics_daily(day, algorithm_id, delta)


class BrokenMetricsRepository(MetricsRepository):
    def iter_metrics_daily(self, day=None):
        raise IOError("store offline")


def record_batch(registry, algorithm_id="heuristic", calls=5):
    for i in range(calls):
        registry.record(algorithm_id, 100, is_error=(i == 0))


def test_flush_accumulates_across_cycles(registry, metrics_repository, day):
    """5 -> 10 -> 10 (idle) -> 15, with nothing counted twice"""
    record_batch(registry)
    flush_metrics(registry, metrics_repository, day)
    assert metrics_repository.get_metrics_daily(day, "heuristic").call_count == 5

    record_batch(registry)
    flush_metrics(registry, metrics_repository, day)
    assert metrics_repository.get_metrics_daily(day, "heuristic").call_count == 10

    report = flush_metrics(registry, metrics_repository, day)
    assert "heuristic" in report.skipped
    assert metrics_repository.get_metrics_daily(day, "heuristic").call_count == 10

    record_batch(registry)
    report = flush_metrics(registry, metrics_repository, day)
    stored = metrics_repository.get_metrics_daily(day, "heuristic")
    assert stored == MetricsSnapshot(call_count=15, total_latency_us=1500, error_count=3)
    assert report.merged["heuristic"] == stored
    assert report.ok


def test_idle_algorithms_are_not_written(registry, metrics_repository, day):
    record_batch(registry, "ige", 1)
    report = flush_metrics(registry, metrics_repository, day)

    assert list(report.merged) == ["ige"]
    assert metrics_repository.get_metrics_daily(day, "swd") is None
    assert set(metrics_repository.iter_metrics_daily(day)) == {"ige"}


def test_undecodable_bucket_counts_as_zero(registry, metrics_repository, store, day):
    store.put(METRICS_DAILY_PARTITION, metrics_daily_key(day, "heuristic"), "not json")
    with pytest.raises(SerializationFailure):
        metrics_repository.get_metrics_daily(day, "heuristic")

    record_batch(registry)
    flush_metrics(registry, metrics_repository, day)

    assert metrics_repository.get_metrics_daily(day, "heuristic").call_count == 5


def test_one_failed_write_does_not_block_others(registry, store, day):
    repository = FailingMetricsRepository(store, "ige")
    record_batch(registry, "heuristic")
    record_batch(registry, "ige")

    report = flush_metrics(registry, repository, day)

    assert not report.ok
    assert [f.algorithm_id for f in report.failures] == ["ige"]
    assert report.failures[0].day == day
    assert repository.get_metrics_daily(day, "heuristic").call_count == 5
    assert repository.get_metrics_daily(day, "ige") is None


def test_failed_write_is_not_in_daily_totals(registry, store, day):
    repository = FailingMetricsRepository(store, "heuristic")
    record_batch(registry, "heuristic")
    record_batch(registry, "ige", 2)

    report = flush_metrics(registry, repository, day)

    assert [f.algorithm_id for f in report.failures] == ["heuristic"]
    assert repository.get_metrics_daily(day, "heuristic") is None
    totals = registry.daily_totals(day)
    assert totals["heuristic"].call_count == 0
    assert totals["ige"].call_count == 2

    # a restart sees the same totals
    restarted = MetricsRegistry()
    restore_from_store(restarted, repository, day)
    assert restarted.daily_totals(day)["heuristic"].call_count == 0
    assert restarted.daily_totals(day)["ige"].call_count == 2


def test_restart_restores_without_double_counting(metrics_repository, day):
    metrics_repository.upsert_metrics_daily(day, "heuristic", MetricsSnapshot(call_count=7, total_latency_us=700))

    registry = MetricsRegistry()
    restored = restore_from_store(registry, metrics_repository, day)

    assert restored["heuristic"].call_count == 7
    assert registry.daily_totals(day)["heuristic"].call_count == 7
    assert registry.snapshot()["heuristic"].call_count == 0

    record_batch(registry, calls=3)
    flush_metrics(registry, metrics_repository, day)

    assert metrics_repository.get_metrics_daily(day, "heuristic").call_count == 10
    assert registry.daily_totals(day)["heuristic"].call_count == 10


def test_restore_from_empty_store(metrics_repository, day):
    registry = MetricsRegistry()
    assert restore_from_store(registry, metrics_repository, day) == {}
    assert all(s.is_empty for s in registry.daily_totals(day).values())


def test_restore_selected_algorithms(metrics_repository, store, day):
    metrics_repository.upsert_metrics_daily(day, "swd", MetricsSnapshot(call_count=2))
    store.put(METRICS_DAILY_PARTITION, metrics_daily_key(day, "ige"), "{broken")

    registry = MetricsRegistry()
    restored = restore_from_store(registry, metrics_repository, day, algorithm_ids=["swd", "ige", "mdm"])

    assert set(restored) == {"swd"}
    assert registry.daily_totals(day)["ige"].is_empty


def test_restore_skips_undecodable_buckets(metrics_repository, store, day):
    metrics_repository.upsert_metrics_daily(day, "mdm", MetricsSnapshot(call_count=4))
    store.put(METRICS_DAILY_PARTITION, metrics_daily_key(day, "heuristic"), "[]")

    registry = MetricsRegistry()
    restored = restore_from_store(registry, metrics_repository, day)

    assert set(restored) == {"mdm"}
    assert registry.daily_totals(day)["mdm"].call_count == 4


def test_restore_tolerates_store_errors(store, day):
    registry = MetricsRegistry()
    assert restore_from_store(registry, BrokenMetricsRepository(store), day) == {}


def test_buckets_are_per_day(registry, metrics_repository):
    record_batch(registry, calls=2)
    flush_metrics(registry, metrics_repository, "2024-01-01")
    record_batch(registry, calls=3)
    flush_metrics(registry, metrics_repository, "2024-01-02")

    assert metrics_repository.get_metrics_daily("2024-01-01", "heuristic").call_count == 2
    assert metrics_repository.get_metrics_daily("2024-01-02", "heuristic").call_count == 3
