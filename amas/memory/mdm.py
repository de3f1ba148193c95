"""
Multi-factor Decay Model

This module implements the per-(user, word) memory strength model. Strength is
tracked on three time scales (short, medium, long term) plus a slow
consolidation factor, and collapses into a single ``memory_strength`` that
sets the half-life of an exponential forgetting curve:

    R(t) = exp(-t / ((s + eps) * unit))

where ``t`` is the time since the last review, ``s`` is the memory strength
and ``unit`` is one day by default. The curve is non-increasing in ``t`` for a
fixed strength, and the review interval for a target retention ``r`` is its
inverse ``t = -half_life * ln(r)``.
"""

import math
import datetime
from typing import Optional

from amas.common.config import MemoryModelConfig
from amas.common.logger import app_logger
from amas.common.utils import elapsed_seconds, utc_now
from amas.types import CamelModel, clamp

logger = app_logger.getChild("memory.mdm")

_DEFAULT_CONFIG = MemoryModelConfig()

MIN_TARGET_RETENTION = 1e-6
MIN_INTERVAL_SCALE = 0.1


class MdmState(CamelModel):
    """Memory strength record of one (user, word) pair."""
    memory_strength: float = 0.0
    short_term_strength: float = 0.0
    medium_term_strength: float = 0.0
    long_term_strength: float = 0.0
    consolidation: float = 0.0
    last_review_at: Optional[datetime.datetime] = None
    review_count: int = 0


def composite_strength(state: MdmState, config: Optional[MemoryModelConfig] = None) -> float:
    """
    Weighted blend of the three time-scale strengths.

    Args:
        state: Memory state
        config: Model configuration

    Returns:
        Composite strength (0-1)
    """
    config = config or _DEFAULT_CONFIG
    composite = (
        config.composite_weight_short * state.short_term_strength
        + config.composite_weight_medium * state.medium_term_strength
        + config.composite_weight_long * state.long_term_strength
    )
    return clamp(composite, 0.0, 1.0)


def update_strength(
    state: MdmState,
    quality: float,
    alpha: float,
    config: Optional[MemoryModelConfig] = None,
    now: Optional[datetime.datetime] = None
) -> MdmState:
    """
    Apply a review outcome to ``state`` in place.

    Args:
        state: Memory state to update
        quality: Review quality (0-1)
        alpha: Learning rate for the overall strength (0-1)
        config: Model configuration
        now: Review time (defaults to the current UTC time)

    Returns:
        The same, updated, state object
    """
    config = config or _DEFAULT_CONFIG
    quality = clamp(quality, 0.0, 1.0)
    alpha = clamp(alpha, 0.0, 1.0)

    state.short_term_strength = clamp(
        state.short_term_strength + config.short_term_learning_rate * (quality - state.short_term_strength),
        0.0, 1.0
    )
    state.medium_term_strength = clamp(
        state.medium_term_strength + config.medium_term_learning_rate * (quality - state.medium_term_strength),
        0.0, 1.0
    )
    state.long_term_strength = clamp(
        state.long_term_strength + config.long_term_learning_rate * (quality - state.long_term_strength),
        0.0, 1.0
    )

    # Consolidation only grows.
    state.consolidation = clamp(
        state.consolidation + config.consolidation_rate_scale * quality, 0.0, 1.0
    )

    target = composite_strength(state, config) * (1.0 + state.consolidation * config.consolidation_bonus)
    state.memory_strength = clamp(
        state.memory_strength + alpha * (target - state.memory_strength), 0.0, 1.0
    )

    state.review_count += 1
    state.last_review_at = now or utc_now()
    return state


def half_life_seconds(state: MdmState, config: Optional[MemoryModelConfig] = None) -> float:
    """Half-life of the forgetting curve in seconds."""
    config = config or _DEFAULT_CONFIG
    strength = max(state.memory_strength, 0.0)
    return (strength + config.half_life_base_epsilon) * config.half_life_time_unit_secs


def recall_probability(
    state: MdmState,
    at_time: Optional[datetime.datetime] = None,
    config: Optional[MemoryModelConfig] = None
) -> float:
    """
    Predicted probability of recalling the word at ``at_time``.

    A word that was never reviewed has zero recall probability.

    Args:
        state: Memory state
        at_time: Query time (defaults to now)
        config: Model configuration

    Returns:
        Recall probability (0-1)
    """
    if state.last_review_at is None:
        return 0.0
    delta = elapsed_seconds(state.last_review_at, at_time or utc_now())
    return clamp(math.exp(-delta / half_life_seconds(state, config)), 0.0, 1.0)


def compute_interval(
    state: MdmState,
    target_retention: float,
    scale: float = 1.0,
    config: Optional[MemoryModelConfig] = None
) -> float:
    """
    Seconds until predicted recall falls to ``target_retention``.

    Args:
        state: Memory state
        target_retention: Desired recall probability at review time (0-1)
        scale: Multiplier applied to the interval (>0)
        config: Model configuration

    Returns:
        Interval in seconds, never negative and capped by ``max_interval_secs``
    """
    config = config or _DEFAULT_CONFIG
    if target_retention is None or math.isnan(target_retention):
        target_retention = config.base_desired_retention
    if scale is None or math.isnan(scale):
        scale = 1.0
    target = max(target_retention, MIN_TARGET_RETENTION)
    interval = -half_life_seconds(state, config) * math.log(target)
    interval *= max(scale, MIN_INTERVAL_SCALE)
    return clamp(interval, 0.0, config.max_interval_secs)


def adaptive_desired_retention(
    base_retention: float,
    accuracy: float,
    fatigue: float,
    motivation: float
) -> float:
    """
    Adjust the target retention to the learner's current condition.

    Accurate learners are pushed a little harder; tired or unmotivated ones
    get an easier target.
    """
    retention = base_retention
    if accuracy > 0.9:
        retention += 0.02
    if fatigue > 0.6:
        retention -= 0.05
    if motivation < -0.2:
        retention -= 0.03
    return clamp(retention, 0.70, 0.95)
