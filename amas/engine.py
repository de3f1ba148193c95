"""
AMAS Decision Engine

Facade used by request handlers. For every learning event it runs the
enabled candidate generators, blends their proposals with the ensemble,
applies the safety constraints, updates the word's memory record and lets
the adaptive algorithms learn from the outcome.

Every algorithm call is counted in the ``MetricsRegistry`` passed to the
engine, and every finished decision is checked against the range
invariants by a ``DecisionMonitor``. ``decide`` and ``process_event``
never raise: any internal error is logged and the caller gets the default
strategy.
"""

import time
import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from amas.common.config import AMASConfig, ConstraintConfig, RewardConfig
from amas.common.exceptions import EmptyCandidateSet
from amas.common.logger import app_logger, log_execution_time, with_context
from amas.common.utils import utc_now
from amas.decision import ensemble
from amas.decision import ige as ige_model
from amas.decision import swd as swd_model
from amas.decision.base import CandidateGenerator, DecisionContext
from amas.decision.ensemble import ExponentialTrustAdapter, TrustAdapter, TrustScores
from amas.decision.heuristic import HeuristicGenerator
from amas.decision.ige import IgeGenerator, IgeState
from amas.decision.memory import MdmGenerator
from amas.decision.swd import SwdGenerator, SwdState
from amas.features import RawEvent, build_feature_vector, update_user_state
from amas.memory import evm as evm_model
from amas.memory.mastery import WordMemoryState, update_mastery
from amas.memory.mdm import adaptive_desired_retention
from amas.metrics.registry import MetricsRegistry
from amas.monitoring import DECIDE, PROCESS_EVENT, DecisionMonitor
from amas.store.memory import InMemoryStore
from amas.store.repository import IGE_STATE, SWD_STATE, TRUST_STATE, MemoryStateRepository, MonitoringRepository
from amas.types import (
    AlgorithmId, ColdStartPhase, DecisionResult, FeatureVector, MetricsSnapshot,
    StrategyCandidate, StrategyParams, UserState, WordMasteryDecision, clamp
)

logger = app_logger.getChild("engine")


def default_generators() -> List[CandidateGenerator]:
    return [HeuristicGenerator(), IgeGenerator(), SwdGenerator(), MdmGenerator()]


def compute_reward(feature: FeatureVector, state: UserState, config: Optional[RewardConfig] = None) -> float:
    """
    Reward (-1 to 1) of the learner's latest answer.

    Accuracy and speed are rewarded; high fatigue and frustration (strongly
    negative motivation) are penalised.
    """
    config = config or RewardConfig()
    reward = feature.accuracy + feature.response_speed * config.speed_reward_scale
    if state.fatigue > config.fatigue_penalty_threshold:
        reward -= state.fatigue * config.fatigue_penalty_scale
    if state.motivation < config.frustration_penalty_threshold:
        reward -= -state.motivation * config.frustration_penalty_scale
    return clamp(reward, -1.0, 1.0, 0.0)


def apply_constraints(strategy: StrategyParams, state: UserState, config: Optional[AMASConfig] = None) -> StrategyParams:
    """
    Enforce the safety limits on a final strategy.

    Very tired learners get small, easy, review-heavy batches; distracted
    learners only review; demotivated learners get easier material. The
    batch never exceeds the daily word target.
    """
    config = config or AMASConfig()
    c: ConstraintConfig = config.constraints
    strategy = strategy.model_copy()

    if state.fatigue > c.high_fatigue_threshold:
        strategy.batch_size = min(strategy.batch_size, c.max_batch_size_when_fatigued)
        strategy.new_ratio = min(strategy.new_ratio, c.max_new_ratio_when_fatigued)
        strategy.difficulty = min(strategy.difficulty, c.max_difficulty_when_fatigued)

    if state.attention < c.low_attention_threshold:
        strategy.review_mode = True
        strategy.new_ratio = 0.0

    if state.motivation < c.low_motivation_threshold:
        strategy.difficulty = max(strategy.difficulty - c.low_motivation_difficulty_drop, c.min_difficulty)
        strategy.new_ratio = max(strategy.new_ratio - c.low_motivation_ratio_drop, 0.0)

    strategy.batch_size = min(strategy.batch_size, config.study.daily_word_target)
    return strategy.clamped(min_interval_scale=c.min_interval_scale, min_batch_size=config.study.min_batch_size)


def cold_start_phase(total_event_count: int, config: Optional[AMASConfig] = None) -> ColdStartPhase:
    config = config or AMASConfig()
    cs = config.cold_start
    if total_event_count < cs.classify_to_explore_events:
        return ColdStartPhase.CLASSIFY
    if total_event_count < cs.explore_to_exploit_events:
        return ColdStartPhase.EXPLORE
    return ColdStartPhase.EXPLOIT


def is_new_context(feature: FeatureVector, config: Optional[AMASConfig] = None) -> bool:
    """A first event of a session or one after a long gap starts a new study context."""
    config = config or AMASConfig()
    return (
        feature.session_event_count == 0
        or feature.time_since_last_event_secs >= config.evm.new_context_gap_secs
    )


class AMASEngine:
    """
    Adaptive study-strategy engine.

    Args:
        config: Engine configuration
        memory_repository: Store of word memory records and algorithm states
        registry: Metrics registry shared with the flush worker
        trust_adapter: Rule used to learn per-algorithm trust
        generators: Candidate generators (defaults to heuristic, IGE, SWD, MDM)
        monitor: Decision monitor (defaults to one storing events next to the memory records)
    """

    def __init__(
        self,
        config: Optional[AMASConfig] = None,
        memory_repository: Optional[MemoryStateRepository] = None,
        registry: Optional[MetricsRegistry] = None,
        trust_adapter: Optional[TrustAdapter] = None,
        generators: Optional[Sequence[CandidateGenerator]] = None,
        monitor: Optional[DecisionMonitor] = None
    ):
        self.config = config or AMASConfig()
        self.repository = memory_repository or MemoryStateRepository(InMemoryStore())
        self.registry = registry if registry is not None else MetricsRegistry()
        self.trust_adapter = trust_adapter or ExponentialTrustAdapter.from_config(self.config.trust)
        self.generators = list(generators) if generators is not None else default_generators()
        self.monitor = monitor or DecisionMonitor(MonitoringRepository(self.repository.store))

    def reload_config(self, config: AMASConfig) -> None:
        """Swap in a new configuration for subsequent decisions."""
        self.config = config
        logger.info("AMAS config reloaded")

    # Public API

    def decide(
        self,
        user_id: str,
        word_id: Optional[str],
        user_state: UserState,
        feature_vector: FeatureVector,
        is_correct: Optional[bool] = None,
        now: Optional[datetime.datetime] = None
    ) -> StrategyParams:
        """
        Decide the next study strategy.

        Updates the word's memory record and the adaptive algorithm states
        and counts every algorithm call. Never raises.

        Args:
            user_id: Learner id
            word_id: Word that was answered, or None
            user_state: Learner state (not modified)
            feature_vector: Features of the answer
            is_correct: Whether the answer was correct (derived from accuracy if omitted)
            now: Decision time

        Returns:
            Strategy for the next study step; the default strategy on error
        """
        now = now or utc_now()
        start = time.perf_counter()
        try:
            result, proposed = self._run(user_id, word_id, user_state, feature_vector, is_correct, now)
        except Exception as e:
            self._log_failure(user_id, word_id, e)
            return StrategyParams()

        self._observe(user_id, result, proposed, start, DECIDE, now)
        return result.strategy

    def process_event(
        self,
        user_id: str,
        raw_event: RawEvent,
        user_state: Optional[UserState] = None,
        now: Optional[datetime.datetime] = None
    ) -> DecisionResult:
        """
        Full pipeline for a raw answer event: features, learner state update
        and decision. Never raises.

        Returns:
            Decision result including the learner state to store for the next event
        """
        now = now or utc_now()
        start = time.perf_counter()
        user_state = (user_state or UserState()).clamped()
        word_id = raw_event.word_id or None

        try:
            feature = build_feature_vector(raw_event, user_state, self.config.modeling, now)
            updated = update_user_state(user_state, feature, self.config.modeling)
        except Exception as e:
            self._log_failure(user_id, word_id, e)
            return DecisionResult(strategy=StrategyParams(), state=user_state)

        next_state = updated.model_copy(update={
            "session_event_count": updated.session_event_count + 1,
            "total_event_count": updated.total_event_count + 1,
            "last_active_at": now,
        })

        try:
            result, proposed = self._run(user_id, word_id, updated, feature, raw_event.is_correct, now)
        except Exception as e:
            self._log_failure(user_id, word_id, e)
            return DecisionResult(
                strategy=StrategyParams(),
                state=next_state,
                cold_start_phase=cold_start_phase(updated.total_event_count, self.config),
            )

        result = result.model_copy(update={"state": next_state})
        self._observe(user_id, result, proposed, start, PROCESS_EVENT, now)
        return result

    def metrics_snapshot(self) -> Dict[str, MetricsSnapshot]:
        """Live per-algorithm counters since the last flush."""
        return self.registry.snapshot()

    def daily_metrics(self) -> Dict[str, MetricsSnapshot]:
        """Today's per-algorithm totals, including flushed and restored counts."""
        return self.registry.daily_totals()

    # Pipeline

    @log_execution_time(logger)
    def _run(
        self,
        user_id: str,
        word_id: Optional[str],
        user_state: UserState,
        feature: FeatureVector,
        is_correct: Optional[bool],
        now: datetime.datetime
    ) -> Tuple[DecisionResult, StrategyParams]:
        """Returns the decision and the blended strategy before the safety constraints."""
        config = self.config
        state = user_state.clamped()
        feature = feature.clamped()

        trust = self.repository.get_trust(user_id)
        context = DecisionContext(
            config=config,
            word_state=self.repository.get_word_state(user_id, word_id) if word_id else None,
            ige_state=self.repository.get_ige(user_id),
            swd_state=self.repository.get_swd(user_id),
            now=now,
        )

        candidates = self.generate_candidates(state, feature, context)
        strategy, weights = self.ensemble_or_fallback(candidates, state, trust)
        reward = compute_reward(feature, state, config.reward)

        word_mastery = None
        if word_id:
            if is_correct is None:
                is_correct = feature.accuracy >= 0.5
            word_mastery = self._update_memory(user_id, word_id, state, feature, strategy, is_correct, now)

        final = apply_constraints(strategy, state, config)
        self._adapt(user_id, candidates, state, reward, now)

        result = DecisionResult(
            strategy=final,
            state=state,
            word_mastery=word_mastery,
            weights=weights,
            cold_start_phase=cold_start_phase(state.total_event_count, config),
            reward=reward,
        )
        return result, strategy

    def generate_candidates(
        self,
        user_state: UserState,
        feature: FeatureVector,
        context: DecisionContext
    ) -> List[StrategyCandidate]:
        """Run every enabled generator; a failing generator is counted and skipped."""
        candidates = []
        for generator in self.generators:
            if not generator.is_enabled(context.config):
                continue
            try:
                with self.registry.track(generator.algorithm_id):
                    candidate = generator.generate(user_state, feature, context)
            except Exception as e:
                logger.warning(f"Generator {generator.algorithm_id} failed: {e}", exc_info=True)
                continue
            candidates.append(candidate)
        return candidates

    def ensemble_or_fallback(
        self,
        candidates: Sequence[StrategyCandidate],
        user_state: UserState,
        trust: TrustScores
    ) -> Tuple[StrategyParams, Dict[str, float]]:
        """
        Blend the candidates, or pick the most confident one when the
        ensemble is disabled or there are too few candidates.

        Raises:
            EmptyCandidateSet: If there are no candidates
        """
        if not candidates:
            raise EmptyCandidateSet()

        config = self.config
        if config.feature_flags.ensemble_enabled and len(candidates) >= max(config.ensemble.min_candidates, 1):
            with self.registry.track(AlgorithmId.ENSEMBLE.value):
                weights = ensemble.get_weights_for_candidates(
                    candidates, user_state.total_event_count, trust, config.ensemble
                )
                strategy = ensemble.combine(
                    candidates, weights,
                    min_interval_scale=config.constraints.min_interval_scale,
                    min_batch_size=config.study.min_batch_size
                )
            return strategy, weights

        chosen = max(candidates, key=lambda c: c.confidence)
        return chosen.strategy.clamped(config.constraints.min_interval_scale, config.study.min_batch_size), {chosen.algorithm_id: 1.0}

    def _update_memory(
        self,
        user_id: str,
        word_id: str,
        state: UserState,
        feature: FeatureVector,
        strategy: StrategyParams,
        is_correct: bool,
        now: datetime.datetime
    ) -> Optional[WordMasteryDecision]:
        config = self.config
        retention = adaptive_desired_retention(
            config.memory.base_desired_retention, feature.accuracy, state.fatigue, state.motivation
        )
        new_context = is_new_context(feature, config)

        def apply(record: WordMemoryState) -> WordMasteryDecision:
            evm_model.record_context(record.evm, new_context, config.evm)
            return update_mastery(
                record, is_correct, feature.quality, strategy.interval_scale, retention,
                config=config.memory, now=now, evm_config=config.evm
            )

        try:
            with self.registry.track(AlgorithmId.MASTERY.value):
                _, decision = self.repository.update_word_state(user_id, word_id, apply)
        except Exception as e:
            with_context(user_id=user_id, word_id=word_id).warning(f"Memory update skipped: {e}")
            return None
        return decision

    def _adapt(
        self,
        user_id: str,
        candidates: Sequence[StrategyCandidate],
        state: UserState,
        reward: float,
        now: datetime.datetime
    ) -> None:
        """Let trust, IGE and SWD learn from the reward. Failures are logged only."""
        log = with_context(user_id=user_id)
        by_id = {c.algorithm_id: c for c in candidates}

        def adapt_trust(scores: TrustScores) -> None:
            for algorithm_id in by_id:
                self.trust_adapter.adapt(scores, algorithm_id, reward)

        updates = [(TRUST_STATE, TrustScores, adapt_trust)]
        if AlgorithmId.IGE.value in by_id:
            tried = by_id[AlgorithmId.IGE.value].strategy
            updates.append((IGE_STATE, IgeState, lambda s: ige_model.update(s, tried, reward)))
        if AlgorithmId.SWD.value in by_id:
            proposed = by_id[AlgorithmId.SWD.value].strategy
            updates.append((
                SWD_STATE, SwdState,
                lambda s: swd_model.update(s, state, proposed, reward, self.config, now)
            ))

        for algorithm, model, mutate in updates:
            try:
                self.repository.update_algo_state(user_id, algorithm, model, mutate)
            except Exception as e:
                log.warning(f"Could not update {algorithm} state: {e}")

    def _observe(
        self,
        user_id: str,
        result: DecisionResult,
        proposed: StrategyParams,
        start: float,
        event_type: str,
        now: datetime.datetime
    ) -> None:
        latency_ms = (time.perf_counter() - start) * 1000
        try:
            self.monitor.observe(
                user_id, result, proposed, self.config,
                latency_ms=latency_ms, event_type=event_type, now=now
            )
        except Exception as e:
            with_context(user_id=user_id).error(f"Decision monitor failed: {e}")

    def _log_failure(self, user_id: str, word_id: Optional[str], error: Exception) -> None:
        with_context(user_id=user_id, word_id=word_id).error(
            f"Decision failed, falling back to default strategy: {error}", exc_info=True
        )
