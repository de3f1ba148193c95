"""
Information-Gain Exploration

Treats difficulty and new-word ratio as two independent multi-armed bandits
whose arms are fixed value bins. Each decision picks the bin with the best
UCB1 score; the observed reward is folded back into the chosen bins with a
running mean and variance.
"""

import math
from typing import List, Optional

from pydantic import Field

from amas.common.config import AMASConfig
from amas.common.logger import app_logger
from amas.decision.base import CandidateGenerator, DecisionContext
from amas.types import (
    AlgorithmId, CamelModel, FeatureVector, StrategyCandidate, StrategyParams, UserState, clamp
)

logger = app_logger.getChild("decision.ige")

UNEXPLORED_BIN_SCORE = 1e6


class BinStats(CamelModel):
    """Reward statistics of one value bin ``[range_start, range_end)``."""
    range_start: float
    range_end: float
    count: int = 0
    avg_reward: float = 0.0
    variance: float = 0.0

    @property
    def midpoint(self) -> float:
        return (self.range_start + self.range_end) / 2.0

    def contains(self, value: float, is_last: bool = False) -> bool:
        if is_last:
            return self.range_start <= value <= self.range_end
        return self.range_start <= value < self.range_end


def _make_bins(edges: List[float]) -> List[BinStats]:
    return [BinStats(range_start=lo, range_end=hi) for lo, hi in zip(edges, edges[1:])]


def _default_difficulty_bins() -> List[BinStats]:
    return _make_bins([0.0, 0.2, 0.4, 0.6, 0.8, 1.0])


def _default_ratio_bins() -> List[BinStats]:
    return _make_bins([0.0, 0.25, 0.5, 0.75, 1.0])


class IgeState(CamelModel):
    """Per-user exploration statistics."""
    difficulty_bins: List[BinStats] = Field(default_factory=_default_difficulty_bins)
    ratio_bins: List[BinStats] = Field(default_factory=_default_ratio_bins)
    total_explorations: int = 0


def ucb_score(bin_stats: BinStats, total: float, coeff: float) -> float:
    """UCB1 score of a bin; unexplored bins always win."""
    if bin_stats.count == 0:
        return UNEXPLORED_BIN_SCORE
    return bin_stats.avg_reward + math.sqrt(coeff * math.log(total) / bin_stats.count)


def best_bin(bins: List[BinStats], coeff: float) -> Optional[BinStats]:
    """
    Bin with the highest UCB score.

    Ties go to the earliest bin, so the choice is deterministic.
    """
    if not bins:
        return None
    total = float(max(sum(b.count for b in bins), 1))
    best = bins[0]
    best_score = ucb_score(best, total, coeff)
    for candidate in bins[1:]:
        score = ucb_score(candidate, total, coeff)
        if score > best_score:
            best, best_score = candidate, score
    return best


def generate(state: Optional[IgeState], config: Optional[AMASConfig] = None) -> StrategyCandidate:
    """
    Propose the most informative strategy to try next.

    Args:
        state: Exploration statistics of the learner
        config: Engine configuration

    Returns:
        IGE candidate
    """
    config = config or AMASConfig()
    ige = config.ige
    state = state or IgeState()

    diff_bin = best_bin(state.difficulty_bins, ige.ucb_confidence_coeff)
    ratio_bin = best_bin(state.ratio_bins, ige.ucb_confidence_coeff)
    difficulty = diff_bin.midpoint if diff_bin is not None else 0.5
    new_ratio = ratio_bin.midpoint if ratio_bin is not None else 0.375

    strategy = StrategyParams(
        difficulty=clamp(difficulty, 0.0, 1.0),
        new_ratio=clamp(new_ratio, 0.0, 1.0),
        batch_size=ige.batch_size,
        interval_scale=ige.interval_scale,
        review_mode=False,
    ).clamped(config.constraints.min_interval_scale, config.study.min_batch_size)

    return StrategyCandidate(
        algorithm_id=AlgorithmId.IGE.value,
        strategy=strategy,
        confidence=ige.default_confidence,
        explanation="IGE exploration strategy",
    )


def _find_bin(bins: List[BinStats], value: float) -> Optional[BinStats]:
    value = clamp(value, 0.0, 1.0)
    last = len(bins) - 1
    for i, bin_stats in enumerate(bins):
        if bin_stats.contains(value, is_last=(i == last)):
            return bin_stats
    return None


def _update_bin(bin_stats: BinStats, reward: float) -> None:
    # Welford's online mean/variance; variance is the sample variance.
    old_avg = bin_stats.avg_reward
    old_count = bin_stats.count
    bin_stats.count += 1
    n = bin_stats.count
    bin_stats.avg_reward += (reward - old_avg) / n
    m2 = bin_stats.variance * max(old_count - 1, 0) + (reward - old_avg) * (reward - bin_stats.avg_reward)
    bin_stats.variance = m2 / (n - 1) if n > 1 else 0.0


def update(state: IgeState, strategy: StrategyParams, reward: float) -> IgeState:
    """
    Record the reward observed for ``strategy`` in place.

    Args:
        state: Exploration statistics
        strategy: Strategy that was tried
        reward: Observed reward (-1 to 1)

    Returns:
        The same, updated, state object
    """
    reward = clamp(reward, -1.0, 1.0, 0.0)
    diff_bin = _find_bin(state.difficulty_bins, strategy.difficulty)
    if diff_bin is not None:
        _update_bin(diff_bin, reward)
    ratio_bin = _find_bin(state.ratio_bins, strategy.new_ratio)
    if ratio_bin is not None:
        _update_bin(ratio_bin, reward)
    state.total_explorations += 1
    return state


class IgeGenerator(CandidateGenerator):
    """UCB exploration over difficulty and new-ratio bins."""

    algorithm_id = AlgorithmId.IGE.value

    def generate(self, user_state: UserState, feature: FeatureVector, context: DecisionContext) -> StrategyCandidate:
        return generate(context.ige_state, context.config)

    def is_enabled(self, config: AMASConfig) -> bool:
        return config.feature_flags.ige_enabled
