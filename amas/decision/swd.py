"""
Similarity-Weighted Decision

Keeps a bounded history of (learner state, strategy, reward) triples per
user and proposes the average of past strategies weighted by how similar
the learner's state was at the time. Strategies that went badly are left
out of the average.
"""

import math
import datetime
from typing import List, Optional

from pydantic import Field

from amas.common.config import AMASConfig
from amas.common.logger import app_logger
from amas.common.utils import utc_now
from amas.decision.base import CandidateGenerator, DecisionContext
from amas.types import (
    AlgorithmId, CamelModel, FeatureVector, StrategyCandidate, StrategyParams, UserState, clamp
)

logger = app_logger.getChild("decision.swd")


class UserStateSnapshot(CamelModel):
    attention: float
    fatigue: float
    motivation: float
    total_event_count: int


class StrategyRewardEntry(CamelModel):
    """One remembered decision and its outcome."""
    user_state_snapshot: UserStateSnapshot
    strategy: StrategyParams
    reward: float
    recorded_at: Optional[datetime.datetime] = None


class SwdState(CamelModel):
    strategy_history: List[StrategyRewardEntry] = Field(default_factory=list)


def similarity(current: UserState, past: UserStateSnapshot) -> float:
    """
    Similarity (0-1] of two learner states.

    Inverse of the Euclidean distance over attention, fatigue, motivation
    and the log event count.
    """
    distance = math.sqrt(
        (current.attention - past.attention) ** 2
        + (current.fatigue - past.fatigue) ** 2
        + (current.motivation - past.motivation) ** 2
        + (math.log1p(current.total_event_count) - math.log1p(past.total_event_count)) ** 2
    )
    return 1.0 / (1.0 + distance)


def _fallback_candidate(config: AMASConfig) -> StrategyCandidate:
    return StrategyCandidate(
        algorithm_id=AlgorithmId.SWD.value,
        strategy=StrategyParams(),
        confidence=config.swd.fallback_confidence,
        explanation="SWD fallback",
    )


def generate(
    user_state: UserState,
    state: Optional[SwdState],
    config: Optional[AMASConfig] = None
) -> StrategyCandidate:
    """
    Propose the similarity-weighted mean of successful past strategies.

    Args:
        user_state: Current learner state
        state: Strategy history of the learner
        config: Engine configuration

    Returns:
        SWD candidate; the default strategy with low confidence when there is
        no usable history
    """
    config = config or AMASConfig()
    if state is None or not state.strategy_history:
        return _fallback_candidate(config)

    user_state = user_state.clamped()
    threshold = config.swd.history_filter_threshold

    difficulty = new_ratio = interval_scale = batch_size = 0.0
    total_weight = 0.0
    review_for = review_against = 0.0

    for entry in state.strategy_history:
        if entry.reward <= threshold:
            continue
        sim = similarity(user_state, entry.user_state_snapshot)
        total_weight += sim
        difficulty += entry.strategy.difficulty * sim
        new_ratio += entry.strategy.new_ratio * sim
        interval_scale += entry.strategy.interval_scale * sim
        batch_size += entry.strategy.batch_size * sim
        if entry.strategy.review_mode:
            review_for += sim
        else:
            review_against += sim

    if total_weight <= 0.0:
        return _fallback_candidate(config)

    strategy = StrategyParams(
        difficulty=difficulty / total_weight,
        new_ratio=new_ratio / total_weight,
        batch_size=int(round(batch_size / total_weight)),
        interval_scale=interval_scale / total_weight,
        review_mode=review_for > review_against,
    ).clamped(config.constraints.min_interval_scale, config.study.min_batch_size)

    confidence = clamp(total_weight / len(state.strategy_history), 0.2, 0.9)
    return StrategyCandidate(
        algorithm_id=AlgorithmId.SWD.value,
        strategy=strategy,
        confidence=confidence,
        explanation="Similarity-weighted strategy",
    )


def update(
    state: SwdState,
    user_state: UserState,
    strategy: StrategyParams,
    reward: float,
    config: Optional[AMASConfig] = None,
    now: Optional[datetime.datetime] = None
) -> SwdState:
    """
    Append an outcome to the history in place, dropping the oldest entries
    beyond ``max_history_size``.
    """
    config = config or AMASConfig()
    user_state = user_state.clamped()
    state.strategy_history.append(StrategyRewardEntry(
        user_state_snapshot=UserStateSnapshot(
            attention=user_state.attention,
            fatigue=user_state.fatigue,
            motivation=user_state.motivation,
            total_event_count=user_state.total_event_count,
        ),
        strategy=strategy.model_copy(),
        reward=clamp(reward, -1.0, 1.0, 0.0),
        recorded_at=now or utc_now(),
    ))
    overflow = len(state.strategy_history) - config.swd.max_history_size
    if overflow > 0:
        del state.strategy_history[:overflow]
    return state


class SwdGenerator(CandidateGenerator):
    """Similarity-weighted replay of successful strategies."""

    algorithm_id = AlgorithmId.SWD.value

    def generate(self, user_state: UserState, feature: FeatureVector, context: DecisionContext) -> StrategyCandidate:
        return generate(user_state, context.swd_state, context.config)

    def is_enabled(self, config: AMASConfig) -> bool:
        return config.feature_flags.swd_enabled
