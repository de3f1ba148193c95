"""
Memory-Informed Candidate Generator

Proposes a strategy from the memory record of the word being answered:
well-remembered words push difficulty and spacing up, fading words push
towards review.
"""

from typing import Optional

from amas.common.config import AMASConfig
from amas.decision.base import CandidateGenerator, DecisionContext
from amas.memory import evm as evm_model
from amas.memory import mdm as mdm_model
from amas.memory.mastery import WordMemoryState
from amas.types import AlgorithmId, FeatureVector, StrategyCandidate, StrategyParams, UserState, clamp


def generate(
    word_state: Optional[WordMemoryState],
    config: Optional[AMASConfig] = None,
    now=None
) -> StrategyCandidate:
    """
    Propose a strategy from a word's memory record.

    Args:
        word_state: Memory record of the current word, if any
        config: Engine configuration
        now: Decision time

    Returns:
        MDM candidate
    """
    config = config or AMASConfig()
    memory = config.memory

    if word_state is None or word_state.mdm.last_review_at is None:
        return StrategyCandidate(
            algorithm_id=AlgorithmId.MDM.value,
            strategy=StrategyParams().clamped(config.constraints.min_interval_scale, config.study.min_batch_size),
            confidence=memory.candidate_confidence / 2.0,
            explanation="No memory record yet",
        )

    strength = word_state.mdm.memory_strength
    recall = mdm_model.recall_probability(word_state.mdm, now, memory)
    modifier = evm_model.interval_modifier(word_state.evm, config.evm)
    fading = recall < memory.forgetting_threshold

    strategy = StrategyParams(
        difficulty=clamp(0.3 + 0.5 * strength, 0.0, 1.0),
        new_ratio=0.0 if fading else clamp(0.1 + 0.3 * recall, 0.0, 1.0),
        interval_scale=(0.5 + strength) * modifier,
        review_mode=fading,
    ).clamped(config.constraints.min_interval_scale, config.study.min_batch_size)

    return StrategyCandidate(
        algorithm_id=AlgorithmId.MDM.value,
        strategy=strategy,
        confidence=memory.candidate_confidence,
        explanation=f"Memory strength {strength:.2f}, recall {recall:.2f}",
    )


class MdmGenerator(CandidateGenerator):
    """Strategy proposal from the current word's decay model."""

    algorithm_id = AlgorithmId.MDM.value

    def generate(self, user_state: UserState, feature: FeatureVector, context: DecisionContext) -> StrategyCandidate:
        return generate(context.word_state, context.config, context.now)

    def is_enabled(self, config: AMASConfig) -> bool:
        return config.feature_flags.mdm_enabled
