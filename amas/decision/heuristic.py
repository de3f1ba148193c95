"""
Heuristic Candidate Generator

Rule-based strategy proposal. The rules encode a few robust tendencies:
tired or distracted learners get easier, smaller, review-heavy batches;
accurate and fast learners get harder material; new learners get a fixed,
conservative strategy until enough events have been observed.

The generator is total over its input domain: inputs are clamped first and
the output always satisfies the ``StrategyParams`` invariants.
"""

from typing import Optional

from amas.common.config import AMASConfig, HeuristicConfig
from amas.common.logger import app_logger
from amas.decision.base import CandidateGenerator, DecisionContext
from amas.types import AlgorithmId, FeatureVector, StrategyCandidate, StrategyParams, UserState

logger = app_logger.getChild("decision.heuristic")


def compute_confidence(total_event_count: int, config: HeuristicConfig) -> float:
    """
    Confidence of the rules for a learner with ``total_event_count`` events.

    The rules are most useful early on and lose confidence as the adaptive
    generators accumulate data.
    """
    decay = min(max(total_event_count, 0) / config.confidence_decay_scale, config.confidence_decay_cap)
    return max(config.confidence_base - decay, config.confidence_min)


def generate(
    user_state: UserState,
    feature: FeatureVector,
    config: Optional[AMASConfig] = None
) -> StrategyCandidate:
    """
    Propose a strategy from the learner state and the current event.

    Args:
        user_state: Learner state
        feature: Features of the current event
        config: Engine configuration

    Returns:
        Heuristic candidate
    """
    config = config or AMASConfig()
    h = config.heuristic
    c = config.constraints
    user_state = user_state.clamped()
    feature = feature.clamped()

    strategy = StrategyParams()
    reasons = []

    if user_state.fatigue > c.high_fatigue_threshold:
        strategy.difficulty = min(strategy.difficulty, h.fatigue_difficulty_cap)
        strategy.batch_size = min(strategy.batch_size, h.fatigue_batch_size_cap)
        strategy.new_ratio = min(strategy.new_ratio, h.fatigue_new_ratio_cap)
        reasons.append("fatigue")

    if user_state.attention < c.low_attention_threshold:
        strategy.review_mode = True
        strategy.new_ratio = 0.0
        reasons.append("low attention")

    if feature.accuracy > 0.5 and feature.response_speed > 0.7:
        strategy.difficulty = min(strategy.difficulty + h.accuracy_speed_difficulty_boost, 1.0)
        reasons.append("fast and accurate")

    if feature.accuracy < 0.5:
        strategy.difficulty = max(
            strategy.difficulty - h.low_accuracy_difficulty_drop, h.low_accuracy_difficulty_floor
        )
        strategy.new_ratio = max(strategy.new_ratio - h.low_accuracy_ratio_drop, 0.0)
        reasons.append("low accuracy")

    if user_state.motivation < c.low_motivation_threshold:
        strategy.difficulty = max(
            strategy.difficulty - h.low_motivation_difficulty_drop, h.low_motivation_difficulty_floor
        )
        strategy.batch_size = min(strategy.batch_size, h.low_motivation_max_batch)
        reasons.append("low motivation")

    # Cold start overrides every rule above.
    if user_state.total_event_count < h.cold_start_event_threshold:
        strategy.difficulty = h.cold_start_difficulty
        strategy.batch_size = h.cold_start_batch_size
        strategy.new_ratio = h.cold_start_new_ratio
        reasons = ["cold start"]

    strategy.batch_size = min(strategy.batch_size, config.study.daily_word_target)
    strategy = strategy.clamped(
        min_interval_scale=c.min_interval_scale,
        min_batch_size=config.study.min_batch_size
    )

    return StrategyCandidate(
        algorithm_id=AlgorithmId.HEURISTIC.value,
        strategy=strategy,
        confidence=compute_confidence(user_state.total_event_count, h),
        explanation="Rule-based strategy" + (f" ({', '.join(reasons)})" if reasons else ""),
    )


class HeuristicGenerator(CandidateGenerator):
    """``CandidateGenerator`` wrapper around :func:`generate`."""

    algorithm_id = AlgorithmId.HEURISTIC.value

    def generate(self, user_state: UserState, feature: FeatureVector, context: DecisionContext) -> StrategyCandidate:
        return generate(user_state, feature, context.config)

    def is_enabled(self, config: AMASConfig) -> bool:
        return config.feature_flags.heuristic_enabled
