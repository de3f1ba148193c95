"""
Strategy Decision

Candidate generators and the ensemble that blends their proposals.
"""

from amas.decision.base import CandidateGenerator, DecisionContext
from amas.decision.heuristic import HeuristicGenerator
from amas.decision.ige import IgeGenerator, IgeState
from amas.decision.swd import SwdGenerator, SwdState
from amas.decision.memory import MdmGenerator
from amas.decision.ensemble import (
    TrustScores,
    TrustAdapter,
    ExponentialTrustAdapter,
    get_weights,
    get_weights_for_candidates,
    combine,
    update_trust
)

__all__ = [
    'CandidateGenerator',
    'DecisionContext',
    'HeuristicGenerator',
    'IgeGenerator',
    'IgeState',
    'SwdGenerator',
    'SwdState',
    'MdmGenerator',
    'TrustScores',
    'TrustAdapter',
    'ExponentialTrustAdapter',
    'get_weights',
    'get_weights_for_candidates',
    'combine',
    'update_trust'
]
