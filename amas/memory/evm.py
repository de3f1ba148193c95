"""
Encoding Variability Model

Words studied across more distinct contexts are retained longer. The model
counts the contexts a word has been seen in and turns that count into a
bounded, diminishing-returns bonus on the review interval.
"""

import math
from typing import Optional

from amas.common.config import EvmConfig
from amas.types import CamelModel, clamp

_DEFAULT_CONFIG = EvmConfig()


class EvmState(CamelModel):
    """Context exposure record of one (user, word) pair."""
    context_count: int = 0
    diversity_score: float = 0.0


def diversity_score(context_count: int, config: Optional[EvmConfig] = None) -> float:
    """Exponential saturation of the context count (0-1)."""
    config = config or _DEFAULT_CONFIG
    count = max(context_count, 0)
    return clamp(1.0 - math.exp(-config.diversity_growth_rate * count), 0.0, 1.0)


def record_context(state: EvmState, is_new_context: bool, config: Optional[EvmConfig] = None) -> EvmState:
    """
    Register one study exposure.

    Args:
        state: State to update in place
        is_new_context: Whether the exposure happened in a context not seen before
        config: Model configuration

    Returns:
        The same, updated, state object
    """
    if is_new_context:
        state.context_count += 1
    state.diversity_score = diversity_score(state.context_count, config)
    return state


def context_diversity_bonus(state: EvmState, config: Optional[EvmConfig] = None) -> float:
    """
    Retention bonus earned by context diversity.

    Grows with ``ln(1 + count)`` scaled by the diversity score and is capped
    by ``diversity_bonus_cap``.
    """
    config = config or _DEFAULT_CONFIG
    count = max(state.context_count, 0)
    raw = math.log1p(count) / math.log(config.diversity_log_divisor)
    return clamp(raw * state.diversity_score, 0.0, config.diversity_bonus_cap)


def interval_modifier(state: EvmState, config: Optional[EvmConfig] = None) -> float:
    """Multiplier applied to review intervals, never below 1.0."""
    return 1.0 + context_diversity_bonus(state, config)
