"""
Tests for the key-value stores and the typed repositories.

Both backends must honour the same contract:
1. Versioned writes and compare-and-swap
2. Ordered prefix iteration and deletes
3. Bounded CAS retries
"""

import threading

import pytest

from amas.common.exceptions import ContentionExhausted, SerializationFailure
from amas.decision.ensemble import TrustScores
from amas.decision.ige import IgeState
from amas.decision.swd import SwdState
from amas.memory.evm import EvmState
from amas.memory.mastery import WordMemoryState
from amas.memory.mdm import MdmState
from amas.store.base import MAX_CAS_RETRIES, update_with_retry
from amas.store.memory import InMemoryStore
from amas.store.repository import (
    ALGO_STATE_PARTITION, TRUST_STATE, WORD_STATE_PARTITION, MemoryStateRepository,
    algo_state_key, word_state_key
)
from amas.store.sql import KeyValueEntry, SqlAlchemyStore
from amas.types import MasteryLevel


class NeverWinsStore(InMemoryStore):
    """Store whose compare-and-swap always loses the race."""

    def __init__(self):
        super().__init__()
        self.cas_calls = 0

    def compare_and_swap(self, partition, key, expected_version, value):
        self.cas_calls += 1
        return False


class TestKeyValueStore:
    """Contract tests run on every backend."""

    def test_get_missing(self, store):
        assert store.get("p", "missing") is None

    def test_put_increments_version(self, store):
        assert store.put("p", "k", "a") == 1
        assert store.put("p", "k", "b") == 2

        stored = store.get("p", "k")
        assert stored.value == "b"
        assert stored.version == 2

    def test_partitions_are_isolated(self, store):
        store.put("p1", "k", "a")
        assert store.get("p2", "k") is None

    def test_compare_and_swap(self, store):
        assert store.compare_and_swap("p", "k", None, "first") is True
        # insert-if-absent loses once the record exists
        assert store.compare_and_swap("p", "k", None, "again") is False
        assert store.compare_and_swap("p", "k", 1, "second") is True
        # stale version
        assert store.compare_and_swap("p", "k", 1, "stale") is False

        stored = store.get("p", "k")
        assert stored.value == "second"
        assert stored.version == 2

    def test_compare_and_swap_on_missing_record(self, store):
        assert store.compare_and_swap("p", "absent", 3, "value") is False
        assert store.get("p", "absent") is None

    def test_iterate_prefix_in_key_order(self, store):
        for key in ("u1:b", "u2:a", "u1:a", "u1_x"):
            store.put("p", key, key)

        keys = [k for k, _ in store.iterate("p", prefix="u1:")]
        assert keys == ["u1:a", "u1:b"]
        assert [k for k, _ in store.iterate("p")] == ["u1:a", "u1:b", "u1_x", "u2:a"]

    def test_iterate_escapes_wildcards(self, store):
        store.put("p", "a%b", "1")
        store.put("p", "axb", "2")
        assert [k for k, _ in store.iterate("p", prefix="a%")] == ["a%b"]

    def test_delete(self, store):
        store.put("p", "k", "v")
        assert store.delete("p", "k") is True
        assert store.delete("p", "k") is False
        assert store.get("p", "k") is None

    def test_update_with_retry_creates_and_updates(self, store):
        seen = []

        def increment(raw):
            seen.append(raw)
            return str(int(raw or "0") + 1)

        assert update_with_retry(store, "p", "counter", increment) == "1"
        assert update_with_retry(store, "p", "counter", increment) == "2"
        assert seen == [None, "1"]


def test_contention_is_bounded():
    store = NeverWinsStore()

    with pytest.raises(ContentionExhausted) as exc_info:
        update_with_retry(store, "p", "k", lambda raw: "value")

    assert exc_info.value.attempts == MAX_CAS_RETRIES
    assert store.cas_calls == MAX_CAS_RETRIES


def test_concurrent_increments_are_not_lost():
    store = InMemoryStore()
    threads_count = 4
    increments = 25

    def worker():
        for _ in range(increments):
            update_with_retry(store, "p", "counter", lambda raw: str(int(raw or "0") + 1))

    threads = [threading.Thread(target=worker) for _ in range(threads_count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get("p", "counter").value == str(threads_count * increments)


def test_sql_store_table():
    store = SqlAlchemyStore("sqlite://")
    store.put("p", "k", "v")

    with store._session_factory() as session:
        row = session.get(KeyValueEntry, ("p", "k"))
        assert row.value == "v"
        assert row.version == 1
        assert "kv_entries" in KeyValueEntry.__table__.name
        assert "version=1" in repr(row)
    store.close()


def test_sql_store_shares_engine():
    first = SqlAlchemyStore("sqlite://")
    second = SqlAlchemyStore(first.engine, create_tables=False)

    first.put("p", "k", "shared")
    assert second.get("p", "k").value == "shared"
    first.close()


class TestMemoryStateRepository:
    """Test typed access to word records and algorithm states."""

    def test_word_state_created_on_miss(self, memory_repository):
        state = memory_repository.get_word_state("u1", "w1")

        assert state.word_id == "w1"
        assert state.mastery_level == MasteryLevel.NEW
        assert state.total_attempts == 0

    def test_word_state_round_trip(self, memory_repository, now):
        state = WordMemoryState(
            word_id="w1",
            mdm=MdmState(memory_strength=0.4, last_review_at=now, review_count=2),
            evm=EvmState(context_count=2, diversity_score=0.33),
            mastery_level=MasteryLevel.LEARNING,
            total_attempts=2,
        )
        memory_repository.put_word_state("u1", state)

        assert memory_repository.get_word_state("u1", "w1") == state
        assert memory_repository.get_mdm("u1", "w1") == state.mdm
        assert memory_repository.get_evm("u1", "w1") == state.evm

    def test_put_mdm_and_evm(self, memory_repository, now):
        memory_repository.put_mdm("u1", "w1", MdmState(memory_strength=0.7, last_review_at=now, review_count=1))
        memory_repository.put_evm("u1", "w1", EvmState(context_count=4, diversity_score=0.55))

        record = memory_repository.get_word_state("u1", "w1")
        assert record.mdm.memory_strength == pytest.approx(0.7)
        assert record.evm.context_count == 4

    def test_update_word_state_returns_result(self, memory_repository):
        def bump(record):
            record.total_attempts += 1
            return record.total_attempts

        record, result = memory_repository.update_word_state("u1", "w1", bump)
        assert result == 1
        record, result = memory_repository.update_word_state("u1", "w1", bump)
        assert result == 2
        assert memory_repository.get_word_state("u1", "w1").total_attempts == 2

    def test_undecodable_word_state_falls_back(self, memory_repository, store):
        store.put(WORD_STATE_PARTITION, word_state_key("u1", "w1"), "{oops")
        assert memory_repository.get_word_state("u1", "w1") == WordMemoryState(word_id="w1")

    def test_decode_raises_serialization_failure(self, memory_repository):
        with pytest.raises(SerializationFailure) as exc_info:
            memory_repository._decode(WordMemoryState, WORD_STATE_PARTITION, "u1:w1", "not json")
        assert exc_info.value.key == "u1:w1"

    def test_iter_word_states(self, memory_repository, store):
        memory_repository.put_word_state("u1", WordMemoryState(word_id="a"))
        memory_repository.put_word_state("u1", WordMemoryState(word_id="b"))
        memory_repository.put_word_state("u2", WordMemoryState(word_id="c"))
        store.put(WORD_STATE_PARTITION, word_state_key("u1", "bad"), "garbage")

        assert sorted(memory_repository.iter_word_states("u1")) == ["a", "b"]

    def test_algorithm_states_round_trip(self, memory_repository):
        trust = TrustScores(scores={"heuristic": 0.8})
        ige_state = IgeState(total_explorations=3)
        swd_state = SwdState()

        memory_repository.put_trust("u1", trust)
        memory_repository.put_ige("u1", ige_state)
        memory_repository.put_swd("u1", swd_state)

        assert memory_repository.get_trust("u1") == trust
        assert memory_repository.get_ige("u1") == ige_state
        assert memory_repository.get_swd("u1") == swd_state

    def test_algorithm_state_defaults(self, memory_repository):
        assert memory_repository.get_trust("nobody") == TrustScores()
        assert memory_repository.get_ige("nobody").total_explorations == 0
        assert memory_repository.get_swd("nobody").strategy_history == []

    def test_update_algo_state(self, memory_repository):
        def raise_trust(scores):
            scores.scores["ige"] = 0.9

        memory_repository.update_algo_state("u1", TRUST_STATE, TrustScores, raise_trust)
        assert memory_repository.get_trust("u1").get("ige") == pytest.approx(0.9)

    def test_reset_algorithm_states(self, memory_repository, store):
        memory_repository.put_trust("u1", TrustScores(scores={"swd": 0.1}))
        memory_repository.put_ige("u1", IgeState(total_explorations=5))
        memory_repository.reset_algorithm_states("u1")

        assert store.get(ALGO_STATE_PARTITION, algo_state_key("u1", TRUST_STATE)) is None
        assert memory_repository.get_ige("u1").total_explorations == 0

    def test_contention_surfaces_from_repository(self):
        repository = MemoryStateRepository(NeverWinsStore())
        with pytest.raises(ContentionExhausted):
            repository.update_word_state("u1", "w1", lambda record: None)
