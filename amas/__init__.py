"""
AMAS Adaptive Study-Strategy Engine

Decides, for every learning event, what a learner should study next:
difficulty, ratio of new to review words, batch size and spacing-interval
scale. The decision blends several independently maintained algorithms with
adaptively learned trust weights.

Key components:
1. Memory Models - Decay model, encoding variability and word mastery
2. Candidate Generators - Heuristic rules, exploration, similarity replay
3. Ensemble - Maturity-gated weighting and strategy merging
4. Metrics - Per-algorithm counters and their daily persistence
5. Monitoring - Range checks and sampled events for every decision
"""

from amas.types import (
    AlgorithmId,
    MasteryLevel,
    UserState,
    FeatureVector,
    StrategyParams,
    StrategyCandidate,
    MetricsSnapshot,
    WordMasteryDecision,
    ColdStartPhase,
    DecisionResult
)
from amas.common.config import AMASConfig, load_config
from amas.engine import AMASEngine

__version__ = "0.1.0"

__all__ = [
    'AlgorithmId',
    'MasteryLevel',
    'UserState',
    'FeatureVector',
    'StrategyParams',
    'StrategyCandidate',
    'MetricsSnapshot',
    'WordMasteryDecision',
    'ColdStartPhase',
    'DecisionResult',
    'AMASConfig',
    'load_config',
    'AMASEngine'
]
