"""
Word Mastery Tracking

Combines the decay model and the encoding variability model into one record
per (user, word), keeps answer statistics and classifies the word into a
mastery level after every review.
"""

import datetime
from typing import Optional

from pydantic import Field

from amas.common.config import EvmConfig, MemoryModelConfig
from amas.common.logger import app_logger
from amas.common.utils import safe_divide, utc_now
from amas.memory import evm as evm_model
from amas.memory import mdm as mdm_model
from amas.memory.evm import EvmState
from amas.memory.mdm import MdmState
from amas.types import CamelModel, MasteryLevel, WordMasteryDecision, clamp

logger = app_logger.getChild("memory.mastery")

_DEFAULT_CONFIG = MemoryModelConfig()


class WordMemoryState(CamelModel):
    """Everything the engine remembers about one word for one user."""
    word_id: str
    mdm: MdmState = Field(default_factory=MdmState)
    evm: EvmState = Field(default_factory=EvmState)
    mastery_level: MasteryLevel = MasteryLevel.NEW
    correct_streak: int = 0
    total_attempts: int = 0
    total_correct: int = 0

    @property
    def accuracy(self) -> float:
        return safe_divide(self.total_correct, self.total_attempts)


def learning_rate_for(interval_scale: float, config: Optional[MemoryModelConfig] = None) -> float:
    """Strength learning rate derived from the decided interval scale."""
    config = config or _DEFAULT_CONFIG
    return clamp(interval_scale * config.alpha_scale, config.alpha_min, config.alpha_max, config.alpha_min)


def classify_level(
    state: WordMemoryState,
    at_time: Optional[datetime.datetime] = None,
    config: Optional[MemoryModelConfig] = None
) -> MasteryLevel:
    """
    Mastery level of a word at ``at_time``.

    Args:
        state: Word memory record
        at_time: Query time (defaults to now)
        config: Model configuration

    Returns:
        Mastery level
    """
    config = config or _DEFAULT_CONFIG
    if state.total_attempts == 0:
        return MasteryLevel.NEW

    composite = mdm_model.composite_strength(state.mdm, config)
    if (
        composite > config.mastery_composite_threshold
        and state.accuracy > config.mastery_accuracy_threshold
        and state.correct_streak >= config.mastery_streak_threshold
    ):
        return MasteryLevel.MASTERED

    recall = mdm_model.recall_probability(state.mdm, at_time, config)
    if recall < config.forgetting_threshold:
        return MasteryLevel.FORGOTTEN
    if composite > config.reviewing_threshold:
        return MasteryLevel.REVIEWING
    return MasteryLevel.LEARNING


def update_mastery(
    state: WordMemoryState,
    is_correct: bool,
    quality: float,
    interval_scale: float,
    desired_retention: float,
    config: Optional[MemoryModelConfig] = None,
    now: Optional[datetime.datetime] = None,
    evm_config: Optional[EvmConfig] = None
) -> WordMasteryDecision:
    """
    Apply one answer to a word record in place.

    A word that had already decayed below the forgetting threshold and was
    answered wrongly is classified as forgotten; otherwise the level is
    derived from the updated strength and answer history.

    Args:
        state: Word memory record
        is_correct: Whether the answer was correct
        quality: Answer quality (0-1)
        interval_scale: Interval scale of the current strategy
        desired_retention: Target recall probability at the next review
        config: Memory model configuration
        now: Review time
        evm_config: Encoding variability configuration

    Returns:
        Decision describing the word after the update
    """
    config = config or _DEFAULT_CONFIG
    now = now or utc_now()

    recall_before = mdm_model.recall_probability(state.mdm, now, config)
    was_reviewed = state.mdm.last_review_at is not None

    alpha = learning_rate_for(interval_scale, config)
    mdm_model.update_strength(state.mdm, quality, alpha, config, now=now)

    state.total_attempts += 1
    if is_correct:
        state.total_correct += 1
        state.correct_streak += 1
    else:
        state.correct_streak = 0

    if was_reviewed and not is_correct and recall_before < config.forgetting_threshold:
        state.mastery_level = MasteryLevel.FORGOTTEN
    else:
        state.mastery_level = classify_level(state, now, config)

    scale = interval_scale * evm_model.interval_modifier(state.evm, evm_config)
    interval = mdm_model.compute_interval(state.mdm, desired_retention, scale, config)

    logger.debug(
        f"Word {state.word_id}: strength={state.mdm.memory_strength:.3f} "
        f"level={state.mastery_level.value} interval={interval:.0f}s"
    )

    return WordMasteryDecision(
        word_id=state.word_id,
        memory_strength=state.mdm.memory_strength,
        recall_probability=mdm_model.recall_probability(state.mdm, now, config),
        next_review_interval_secs=interval,
        mastery_level=state.mastery_level,
    )
