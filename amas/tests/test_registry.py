"""
Tests for the in-process metrics registry.

Focus:
1. Recording, snapshots and resets
2. No counts lost when recording races with snapshot_and_reset
3. Latency percentiles and the daily baseline
"""

import threading

import pytest

from amas.metrics.registry import MetricsRegistry
from amas.types import ALL_ALGORITHM_IDS, MetricsSnapshot


def test_known_algorithms_start_at_zero(registry):
    snapshot = registry.snapshot()

    assert set(snapshot) == set(ALL_ALGORITHM_IDS)
    assert all(s.is_empty for s in snapshot.values())


def test_record_and_snapshot(registry):
    registry.record("heuristic", 120)
    registry.record("heuristic", 80, is_error=True)
    registry.record("ige", 10)

    snapshot = registry.snapshot()
    assert snapshot["heuristic"] == MetricsSnapshot(call_count=2, total_latency_us=200, error_count=1)
    assert snapshot["ige"].call_count == 1
    assert snapshot["heuristic"].average_latency_us == pytest.approx(100.0)

    # snapshot() does not reset
    assert registry.snapshot()["heuristic"].call_count == 2


def test_snapshot_and_reset(registry):
    registry.record("swd", 50)
    registry.record("swd", 50)

    drained = registry.snapshot_and_reset()
    assert drained["swd"].call_count == 2
    assert drained["swd"].total_latency_us == 100
    assert registry.snapshot()["swd"].is_empty


def test_unknown_algorithm_is_accepted(registry):
    registry.record("custom", 5)
    assert registry.snapshot()["custom"].call_count == 1


@pytest.mark.parametrize("latency", [-10, float("nan"), float("inf"), None, "fast"])
def test_invalid_latency_counts_as_zero(registry, latency):
    registry.record("mdm", latency)

    snapshot = registry.snapshot()["mdm"]
    assert snapshot.call_count == 1
    assert snapshot.total_latency_us == 0


def test_track_counts_success_and_errors(registry):
    with registry.track("heuristic"):
        pass

    with pytest.raises(RuntimeError):
        with registry.track("heuristic"):
            raise RuntimeError("boom")

    snapshot = registry.snapshot()["heuristic"]
    assert snapshot.call_count == 2
    assert snapshot.error_count == 1


def test_percentiles(registry):
    assert registry.percentiles("ige") == (0.0, 0.0, 0.0)

    for _ in range(90):
        registry.record("ige", 50)
    for _ in range(10):
        registry.record("ige", 20000)

    p50, p95, p99 = registry.percentiles("ige")
    assert p50 == 50.0
    assert p95 == 15000.0
    assert p99 == 15000.0


def test_last_called_survives_reset(registry):
    assert registry.last_called_at("swd") is None
    registry.record("swd", 1)
    called = registry.last_called_at("swd")
    assert called is not None

    registry.snapshot_and_reset()
    assert registry.last_called_at("swd") == called
    assert registry.percentiles("swd") == (0.0, 0.0, 0.0)


def test_concurrent_record_and_reset_loses_nothing():
    """Every recorded call ends up in exactly one drained snapshot"""
    registry = MetricsRegistry()
    threads_count = 8
    calls_per_thread = 2000
    drained_calls = []
    drained_latency = []
    done = threading.Event()

    def writer():
        for _ in range(calls_per_thread):
            registry.record("heuristic", 3)

    def drainer():
        while not done.is_set():
            snapshot = registry.snapshot_and_reset()["heuristic"]
            drained_calls.append(snapshot.call_count)
            drained_latency.append(snapshot.total_latency_us)

    reader = threading.Thread(target=drainer)
    reader.start()
    writers = [threading.Thread(target=writer) for _ in range(threads_count)]
    for t in writers:
        t.start()
    for t in writers:
        t.join()
    done.set()
    reader.join()

    final = registry.snapshot_and_reset()["heuristic"]
    total = threads_count * calls_per_thread
    assert sum(drained_calls) + final.call_count == total
    assert sum(drained_latency) + final.total_latency_us == total * 3


def test_restore_feeds_daily_totals_only(registry, day):
    registry.restore("heuristic", MetricsSnapshot(call_count=10, total_latency_us=1000, error_count=1), day=day)

    assert registry.daily_totals(day)["heuristic"].call_count == 10
    assert registry.snapshot()["heuristic"].call_count == 0

    registry.record("heuristic", 100)
    assert registry.daily_totals(day)["heuristic"].call_count == 11
    assert registry.snapshot_and_reset()["heuristic"].call_count == 1
    assert registry.daily_totals(day)["heuristic"].call_count == 10


def test_carried_counts_stay_in_daily_totals(registry, day):
    registry.record("ige", 40)
    registry.record("ige", 60)

    drained = registry.snapshot_and_reset()
    assert drained["ige"].call_count == 2
    assert registry.daily_totals(day)["ige"].call_count == 0

    registry.carry(day, drained)

    totals = registry.daily_totals(day)["ige"]
    assert totals.call_count == 2
    assert totals.total_latency_us == 100

    # another day does not see the baseline
    assert registry.daily_totals("1999-01-01")["ige"].call_count == 0


def test_reset_clears_everything(registry, day):
    registry.record("mdm", 5)
    registry.restore("mdm", MetricsSnapshot(call_count=3), day=day)
    registry.reset()

    assert registry.snapshot()["mdm"].is_empty
    assert registry.daily_totals(day)["mdm"].is_empty
