"""
Memory Models

Pure per-(user, word) models of memory strength and retention.
"""

# Multi-factor decay model
from amas.memory.mdm import (
    MdmState,
    composite_strength,
    update_strength,
    half_life_seconds,
    recall_probability,
    compute_interval,
    adaptive_desired_retention
)

# Encoding variability model
from amas.memory.evm import (
    EvmState,
    record_context,
    context_diversity_bonus,
    interval_modifier
)

# Word mastery tracking
from amas.memory.mastery import (
    WordMemoryState,
    classify_level,
    update_mastery
)

__all__ = [
    'MdmState',
    'composite_strength',
    'update_strength',
    'half_life_seconds',
    'recall_probability',
    'compute_interval',
    'adaptive_desired_retention',

    'EvmState',
    'record_context',
    'context_diversity_bonus',
    'interval_modifier',

    'WordMemoryState',
    'classify_level',
    'update_mastery'
]
