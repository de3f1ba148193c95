"""
Candidate Generator Interface

Every algorithm that proposes a study strategy implements
``CandidateGenerator``. The ensemble only depends on this capability, so new
generators can be registered under a new algorithm id without touching it.
"""

import datetime
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from amas.common.config import AMASConfig
from amas.common.utils import utc_now
from amas.types import FeatureVector, StrategyCandidate, UserState

if TYPE_CHECKING:
    from amas.decision.ige import IgeState
    from amas.decision.swd import SwdState
    from amas.memory.mastery import WordMemoryState


@dataclass
class DecisionContext:
    """
    Inputs shared by all generators for one decision.

    The per-user algorithm states are owned by the caller; generators only
    read them. ``word_state`` is absent when the event is not tied to a word.
    """
    config: AMASConfig = field(default_factory=AMASConfig)
    word_state: Optional["WordMemoryState"] = None
    ige_state: Optional["IgeState"] = None
    swd_state: Optional["SwdState"] = None
    now: datetime.datetime = field(default_factory=utc_now)


class CandidateGenerator(ABC):
    """A strategy-proposing algorithm."""

    algorithm_id: str = ""

    @abstractmethod
    def generate(
        self,
        user_state: UserState,
        feature: FeatureVector,
        context: DecisionContext
    ) -> StrategyCandidate:
        """
        Propose a strategy.

        Args:
            user_state: Current learner state
            feature: Features of the current event
            context: Shared decision inputs

        Returns:
            Candidate strategy tagged with this generator's algorithm id
        """
        pass

    def is_enabled(self, config: AMASConfig) -> bool:
        """Whether the feature flags allow this generator to run."""
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(algorithm_id={self.algorithm_id!r})"
