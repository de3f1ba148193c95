"""
Ensemble Decision Engine

Blends the candidates of several generators into one strategy. Weights come
from a maturity-gated mix of a cold-start prior and learned per-algorithm
trust: new learners follow the prior, experienced learners increasingly
follow the algorithms that have earned trust.

Weights are always non-negative and sum to 1.0 whatever the trust map
looks like; trust entries for algorithms without a candidate are ignored.
"""

import math
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import Field

from amas.common.config import EnsembleConfig, TrustConfig
from amas.common.exceptions import EmptyCandidateSet
from amas.common.logger import app_logger
from amas.types import CamelModel, StrategyCandidate, StrategyParams, clamp

logger = app_logger.getChild("decision.ensemble")


class TrustScores(CamelModel):
    """Learned confidence (0-1) per algorithm id."""
    scores: Dict[str, float] = Field(default_factory=dict)
    default_score: float = 0.5

    def get(self, algorithm_id: str) -> float:
        """Trust of an algorithm, ``default_score`` when unknown."""
        value = self.lookup(algorithm_id)
        return self.default_score if value is None else value

    def lookup(self, algorithm_id: str) -> Optional[float]:
        """Trust of an algorithm, or None when it has no usable entry."""
        value = self.scores.get(str(algorithm_id))
        if value is None or not isinstance(value, (int, float)) or not math.isfinite(value):
            return None
        return clamp(value, 0.0, 1.0)


def _unique(ids: Iterable[str]) -> List[str]:
    seen = []
    for algorithm_id in ids:
        algorithm_id = str(algorithm_id)
        if algorithm_id not in seen:
            seen.append(algorithm_id)
    return seen


def _normalize(raw: Dict[str, float]) -> Dict[str, float]:
    total = sum(raw.values())
    if not raw:
        return {}
    if total <= 0 or not math.isfinite(total):
        equal = 1.0 / len(raw)
        return {k: equal for k in raw}
    return {k: v / total for k, v in raw.items()}


def blend_factor(total_event_count: int, config: EnsembleConfig) -> float:
    """
    Share of the weight driven by trust rather than the prior.

    Zero during warm-up, then grows linearly up to ``blend_max``.
    """
    n = max(int(total_event_count or 0), 0)
    if n < config.warmup_samples:
        return 0.0
    return min((n - config.warmup_samples) / config.blend_scale, config.blend_max)


def prior_weights(algorithm_ids: Sequence[str], config: EnsembleConfig) -> Dict[str, float]:
    """Cold-start prior over ``algorithm_ids``; equal unless base weights are configured."""
    ids = _unique(algorithm_ids)
    if not ids:
        return {}
    if config.base_weights:
        return _normalize({a: max(config.base_weights.get(a, 0.0), 0.0) for a in ids})
    return _normalize({a: 1.0 for a in ids})


def get_weights(
    total_event_count: int,
    trust_scores: Optional[TrustScores],
    config: Optional[EnsembleConfig] = None,
    algorithm_ids: Optional[Sequence[str]] = None
) -> Dict[str, float]:
    """
    Compute normalised ensemble weights.

    Args:
        total_event_count: Number of events observed for the learner
        trust_scores: Learned trust per algorithm
        config: Ensemble configuration
        algorithm_ids: Algorithms to weight (defaults to ``config.algorithms``)

    Returns:
        Mapping of algorithm id to weight; the weights sum to 1.0
    """
    config = config or EnsembleConfig()
    trust_scores = trust_scores or TrustScores()
    ids = _unique(config.algorithms if algorithm_ids is None else algorithm_ids)
    if not ids:
        return {}

    prior = prior_weights(ids, config)
    blend = blend_factor(total_event_count, config)

    raw = {}
    for algorithm_id in ids:
        trust = trust_scores.lookup(algorithm_id)
        if trust is None:
            trust = prior[algorithm_id]
        raw[algorithm_id] = max((1.0 - blend) * prior[algorithm_id] + blend * trust, config.min_weight)

    return _normalize(raw)


def get_weights_for_candidates(
    candidates: Sequence[StrategyCandidate],
    total_event_count: int,
    trust_scores: Optional[TrustScores],
    config: Optional[EnsembleConfig] = None
) -> Dict[str, float]:
    """Weights over exactly the algorithms that produced a candidate."""
    ids = [c.algorithm_id for c in candidates]
    return get_weights(total_event_count, trust_scores, config, algorithm_ids=ids)


def combine(
    candidates: Sequence[StrategyCandidate],
    weights: Dict[str, float],
    min_interval_scale: float = 0.1,
    min_batch_size: int = 1
) -> StrategyParams:
    """
    Merge candidates into a single strategy.

    Continuous fields are weighted means, the batch size is the rounded
    weighted mean and review mode is decided by weighted vote. Candidates
    without a weight count with weight 0.

    Args:
        candidates: Candidates to merge
        weights: Weight per algorithm id
        min_interval_scale: Lower bound of the merged interval scale
        min_batch_size: Lower bound of the merged batch size

    Returns:
        Merged strategy satisfying every range constraint

    Raises:
        EmptyCandidateSet: If there are no candidates
    """
    if not candidates:
        raise EmptyCandidateSet()

    per_candidate = []
    for candidate in candidates:
        w = weights.get(candidate.algorithm_id)
        if w is None:
            logger.warning(f"Missing weight for {candidate.algorithm_id} in ensemble merge, defaulting to 0")
            w = 0.0
        per_candidate.append(clamp(w, 0.0, math.inf, 0.0))

    total = sum(per_candidate)
    if total <= 0 or not math.isfinite(total):
        per_candidate = [1.0 / len(candidates)] * len(candidates)
    else:
        per_candidate = [w / total for w in per_candidate]

    difficulty = new_ratio = interval_scale = batch_size = 0.0
    review_for = review_against = 0.0
    for w, candidate in zip(per_candidate, candidates):
        strategy = candidate.strategy
        difficulty += w * strategy.difficulty
        new_ratio += w * strategy.new_ratio
        interval_scale += w * strategy.interval_scale
        batch_size += w * strategy.batch_size
        if strategy.review_mode:
            review_for += w
        else:
            review_against += w

    merged = StrategyParams(
        difficulty=difficulty,
        new_ratio=new_ratio,
        batch_size=int(round(batch_size)) if math.isfinite(batch_size) else StrategyParams().batch_size,
        interval_scale=interval_scale,
        review_mode=review_for > review_against,
    )
    return merged.clamped(min_interval_scale=min_interval_scale, min_batch_size=min_batch_size)


def update_trust(
    trust_scores: TrustScores,
    algorithm_id: str,
    reward: float,
    learning_rate: float
) -> float:
    """
    Move an algorithm's trust towards the observed reward.

    The reward (-1 to 1) is mapped to 0-1 and blended in with an exponential
    moving average, so negative outcomes lower trust.

    Returns:
        The new trust score
    """
    algorithm_id = str(algorithm_id)
    learning_rate = clamp(learning_rate, 0.0, 1.0, 0.0)
    normalized = (clamp(reward, -1.0, 1.0, 0.0) + 1.0) / 2.0
    current = trust_scores.get(algorithm_id)
    updated = clamp(current * (1.0 - learning_rate) + normalized * learning_rate, 0.0, 1.0)
    trust_scores.scores[algorithm_id] = updated
    return updated


class TrustAdapter(ABC):
    """Strategy for adapting trust scores from decision outcomes."""

    @abstractmethod
    def adapt(self, trust_scores: TrustScores, algorithm_id: str, reward: float) -> float:
        """Fold one outcome into ``trust_scores`` and return the new score."""
        pass


class ExponentialTrustAdapter(TrustAdapter):
    """Exponential moving average of the normalised reward."""

    def __init__(self, learning_rate: float = 0.05):
        self.learning_rate = learning_rate

    @classmethod
    def from_config(cls, config: TrustConfig) -> 'ExponentialTrustAdapter':
        return cls(learning_rate=config.learning_rate)

    def adapt(self, trust_scores: TrustScores, algorithm_id: str, reward: float) -> float:
        return update_trust(trust_scores, algorithm_id, reward, self.learning_rate)
