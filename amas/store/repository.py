"""
Engine Repositories

Typed access to the key-value store. ``MemoryStateRepository`` keeps the
per-(user, word) memory records and the per-user algorithm states;
``MetricsRepository`` keeps the daily per-algorithm metrics buckets;
``MonitoringRepository`` keeps sampled decision monitoring events.

Records are stored as camelCase JSON. Undecodable records raise
``SerializationFailure`` from the strict getters and are treated as absent
everywhere else.
"""

from typing import Callable, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from pydantic import ValidationError

from amas.common.exceptions import SerializationFailure
from amas.common.logger import app_logger
from amas.common.utils import day_key
from amas.decision.ensemble import TrustScores
from amas.decision.ige import IgeState
from amas.decision.swd import SwdState
from amas.memory.evm import EvmState
from amas.memory.mastery import WordMemoryState
from amas.memory.mdm import MdmState
from amas.monitoring import MonitoringEvent
from amas.store.base import KeyValueStore, update_with_retry
from amas.types import CamelModel, MetricsSnapshot

# Type variables for generics
T = TypeVar('T', bound=CamelModel)
R = TypeVar('R')

logger = app_logger.getChild("store.repository")

WORD_STATE_PARTITION = "word_memory"
ALGO_STATE_PARTITION = "algorithm_states"
METRICS_DAILY_PARTITION = "metrics_daily"
MONITORING_PARTITION = "monitoring_events"

TRUST_STATE = "trust"
IGE_STATE = "ige"
SWD_STATE = "swd"


def word_state_key(user_id: str, word_id: str) -> str:
    return f"{user_id}:{word_id}"


def algo_state_key(user_id: str, algorithm: str) -> str:
    return f"{user_id}:{algorithm}"


def metrics_daily_key(day: str, algorithm_id: str) -> str:
    return f"{day}:{algorithm_id}"


def monitoring_event_key(event: MonitoringEvent) -> str:
    return f"{day_key(event.timestamp)}:{event.timestamp.isoformat()}:{event.id}"


class _JsonRepository(Generic[T]):
    """Shared encode/decode helpers."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _decode(self, model: Type[T], partition: str, key: str, raw: str) -> T:
        try:
            return model.from_json(raw)
        except (ValidationError, ValueError) as e:
            raise SerializationFailure(partition, key, e) from e

    def _load_or_default(self, model: Type[T], partition: str, key: str, raw: Optional[str], default: Callable[[], T]) -> T:
        if raw is None:
            return default()
        try:
            return self._decode(model, partition, key, raw)
        except SerializationFailure as e:
            logger.warning(f"{e.message}, using default: {e.original_exception}")
            return default()

    def _update(
        self,
        model: Type[T],
        partition: str,
        key: str,
        default: Callable[[], T],
        mutate: Callable[[T], R]
    ) -> Tuple[T, R]:
        outcome = {}

        def apply(raw: Optional[str]) -> str:
            record = self._load_or_default(model, partition, key, raw, default)
            outcome["result"] = mutate(record)
            outcome["record"] = record
            return record.to_json()

        update_with_retry(self.store, partition, key, apply)
        return outcome["record"], outcome["result"]


class MemoryStateRepository(_JsonRepository):
    """Per-(user, word) memory records and per-user algorithm states."""

    # Word memory

    def get_word_state(self, user_id: str, word_id: str) -> WordMemoryState:
        """Memory record of a word, created empty on miss."""
        key = word_state_key(user_id, word_id)
        current = self.store.get(WORD_STATE_PARTITION, key)
        return self._load_or_default(
            WordMemoryState, WORD_STATE_PARTITION, key,
            current.value if current is not None else None,
            lambda: WordMemoryState(word_id=word_id)
        )

    def put_word_state(self, user_id: str, state: WordMemoryState) -> None:
        self.store.put(WORD_STATE_PARTITION, word_state_key(user_id, state.word_id), state.to_json())

    def update_word_state(
        self,
        user_id: str,
        word_id: str,
        mutate: Callable[[WordMemoryState], R]
    ) -> Tuple[WordMemoryState, R]:
        """
        Read-modify-write a word record with compare-and-swap.

        ``mutate`` changes the record in place and may run more than once.

        Returns:
            The stored record and the value returned by the last ``mutate`` call

        Raises:
            ContentionExhausted: If the record stayed contended for every retry
        """
        return self._update(
            WordMemoryState, WORD_STATE_PARTITION, word_state_key(user_id, word_id),
            lambda: WordMemoryState(word_id=word_id), mutate
        )

    def get_mdm(self, user_id: str, word_id: str) -> MdmState:
        return self.get_word_state(user_id, word_id).mdm

    def put_mdm(self, user_id: str, word_id: str, state: MdmState) -> None:
        def replace(record: WordMemoryState) -> None:
            record.mdm = state.model_copy()
        self.update_word_state(user_id, word_id, replace)

    def get_evm(self, user_id: str, word_id: str) -> EvmState:
        return self.get_word_state(user_id, word_id).evm

    def put_evm(self, user_id: str, word_id: str, state: EvmState) -> None:
        def replace(record: WordMemoryState) -> None:
            record.evm = state.model_copy()
        self.update_word_state(user_id, word_id, replace)

    def iter_word_states(self, user_id: str) -> Dict[str, WordMemoryState]:
        """All decodable word records of a user, keyed by word id."""
        states = {}
        for key, stored in self.store.iterate(WORD_STATE_PARTITION, prefix=f"{user_id}:"):
            try:
                state = self._decode(WordMemoryState, WORD_STATE_PARTITION, key, stored.value)
            except SerializationFailure as e:
                logger.warning(f"Skipping {e.message}")
                continue
            states[state.word_id] = state
        return states

    # Algorithm states

    def _get_algo_state(self, user_id: str, algorithm: str, model: Type[T]) -> T:
        key = algo_state_key(user_id, algorithm)
        current = self.store.get(ALGO_STATE_PARTITION, key)
        return self._load_or_default(
            model, ALGO_STATE_PARTITION, key, current.value if current is not None else None, model
        )

    def _put_algo_state(self, user_id: str, algorithm: str, state: CamelModel) -> None:
        self.store.put(ALGO_STATE_PARTITION, algo_state_key(user_id, algorithm), state.to_json())

    def update_algo_state(
        self,
        user_id: str,
        algorithm: str,
        model: Type[T],
        mutate: Callable[[T], R]
    ) -> Tuple[T, R]:
        """Compare-and-swap update of one per-user algorithm state."""
        return self._update(model, ALGO_STATE_PARTITION, algo_state_key(user_id, algorithm), model, mutate)

    def get_trust(self, user_id: str) -> TrustScores:
        return self._get_algo_state(user_id, TRUST_STATE, TrustScores)

    def put_trust(self, user_id: str, scores: TrustScores) -> None:
        self._put_algo_state(user_id, TRUST_STATE, scores)

    def get_ige(self, user_id: str) -> IgeState:
        return self._get_algo_state(user_id, IGE_STATE, IgeState)

    def put_ige(self, user_id: str, state: IgeState) -> None:
        self._put_algo_state(user_id, IGE_STATE, state)

    def get_swd(self, user_id: str) -> SwdState:
        return self._get_algo_state(user_id, SWD_STATE, SwdState)

    def put_swd(self, user_id: str, state: SwdState) -> None:
        self._put_algo_state(user_id, SWD_STATE, state)

    def reset_algorithm_states(self, user_id: str) -> None:
        """Forget everything the adaptive algorithms learned about a user."""
        for algorithm in (TRUST_STATE, IGE_STATE, SWD_STATE):
            self.store.delete(ALGO_STATE_PARTITION, algo_state_key(user_id, algorithm))


class MetricsRepository(_JsonRepository):
    """Daily per-algorithm metrics buckets."""

    def get_metrics_daily(self, day, algorithm_id: str) -> Optional[MetricsSnapshot]:
        """
        Read one daily bucket.

        Args:
            day: Day (date, datetime or ``YYYY-MM-DD``)
            algorithm_id: Algorithm id

        Returns:
            The persisted counters, or None if absent

        Raises:
            SerializationFailure: If the stored bucket cannot be decoded
        """
        key = metrics_daily_key(day_key(day), str(algorithm_id))
        current = self.store.get(METRICS_DAILY_PARTITION, key)
        if current is None:
            return None
        return self._decode(MetricsSnapshot, METRICS_DAILY_PARTITION, key, current.value)

    def upsert_metrics_daily(self, day, algorithm_id: str, snapshot: MetricsSnapshot) -> None:
        """Overwrite one daily bucket."""
        key = metrics_daily_key(day_key(day), str(algorithm_id))
        self.store.put(METRICS_DAILY_PARTITION, key, snapshot.to_json())

    def merge_metrics_daily(self, day, algorithm_id: str, delta: MetricsSnapshot) -> MetricsSnapshot:
        """
        Add ``delta`` to a daily bucket with compare-and-swap.

        An undecodable bucket is treated as zero and overwritten.

        Returns:
            The merged counters

        Raises:
            ContentionExhausted: If the bucket stayed contended for every retry
        """
        key = metrics_daily_key(day_key(day), str(algorithm_id))

        def add(existing: MetricsSnapshot) -> MetricsSnapshot:
            merged = existing + delta
            existing.call_count = merged.call_count
            existing.total_latency_us = merged.total_latency_us
            existing.error_count = merged.error_count
            return merged

        record, _ = self._update(MetricsSnapshot, METRICS_DAILY_PARTITION, key, MetricsSnapshot, add)
        return record

    def iter_metrics_daily(self, day=None) -> Dict[str, MetricsSnapshot]:
        """All decodable buckets of a day, keyed by algorithm id."""
        prefix = f"{day_key(day)}:"
        buckets = {}
        for key, stored in self.store.iterate(METRICS_DAILY_PARTITION, prefix=prefix):
            try:
                buckets[key[len(prefix):]] = self._decode(MetricsSnapshot, METRICS_DAILY_PARTITION, key, stored.value)
            except SerializationFailure as e:
                logger.warning(f"Skipping {e.message}")
        return buckets


class MonitoringRepository(_JsonRepository):
    """Sampled decision monitoring events, keyed by day and time."""

    def insert_event(self, event: MonitoringEvent) -> None:
        self.store.put(MONITORING_PARTITION, monitoring_event_key(event), event.to_json())

    def iter_events(self, day=None, user_id: Optional[str] = None) -> List[MonitoringEvent]:
        """Decodable events of a day in time order, optionally for one learner."""
        events = []
        for key, stored in self.store.iterate(MONITORING_PARTITION, prefix=f"{day_key(day)}:"):
            try:
                event = self._decode(MonitoringEvent, MONITORING_PARTITION, key, stored.value)
            except SerializationFailure as e:
                logger.warning(f"Skipping {e.message}")
                continue
            if user_id is None or event.user_id == user_id:
                events.append(event)
        return sorted(events, key=lambda e: e.timestamp)
