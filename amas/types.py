"""
Engine Data Types

Records exchanged between the engine and its callers. All of them are pydantic
models serialised with camelCase aliases, so ``to_json``/``from_json`` round
trip field for field.
"""

import enum
import math
import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from amas.common.exceptions import InvalidInputRange
from amas.common.logger import app_logger

logger = app_logger.getChild("types")


class AlgorithmId(str, enum.Enum):
    """Stable identifiers of the algorithms tracked by the engine."""
    HEURISTIC = "heuristic"
    IGE = "ige"
    SWD = "swd"
    MDM = "mdm"
    ENSEMBLE = "ensemble"
    MASTERY = "mastery"

    def __str__(self) -> str:
        return self.value


ALL_ALGORITHM_IDS = tuple(a.value for a in AlgorithmId)


class MasteryLevel(str, enum.Enum):
    """Mastery classification of a single word."""
    NEW = "new"
    LEARNING = "learning"
    REVIEWING = "reviewing"
    MASTERED = "mastered"
    FORGOTTEN = "forgotten"


class CamelModel(BaseModel):
    """Base model with camelCase wire names and JSON helpers."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Create from dictionary."""
        return cls.model_validate(data)

    @classmethod
    def from_json(cls, raw: str):
        return cls.model_validate_json(raw)


def clamp(value: float, low: float, high: float, default: Optional[float] = None) -> float:
    """
    Clamp ``value`` into ``[low, high]``.

    Non-finite values map to ``default`` (or ``low`` when no default is given).
    """
    if value is None or not math.isfinite(value):
        return low if default is None else default
    return min(max(value, low), high)


def _sanitize(field: str, value: float, low: float, high: float, default: float) -> float:
    result = clamp(value, low, high, default)
    if result != value:
        logger.debug(str(InvalidInputRange(field, value, low, high)))
    return result


class UserState(CamelModel):
    """Per-user learning state snapshot. Owned by the caller."""
    attention: float = 0.7
    fatigue: float = 0.0
    motivation: float = 0.0
    confidence: float = 0.1
    session_event_count: int = 0
    total_event_count: int = 0
    last_active_at: Optional[datetime.datetime] = None

    def clamped(self) -> 'UserState':
        """Return a copy with every field inside its declared domain."""
        return self.model_copy(update={
            "attention": _sanitize("attention", self.attention, 0.0, 1.0, 0.7),
            "fatigue": _sanitize("fatigue", self.fatigue, 0.0, 1.0, 0.0),
            "motivation": _sanitize("motivation", self.motivation, -1.0, 1.0, 0.0),
            "confidence": _sanitize("confidence", self.confidence, 0.0, 1.0, 0.1),
            "session_event_count": max(0, self.session_event_count),
            "total_event_count": max(0, self.total_event_count),
        })


class FeatureVector(CamelModel):
    """Signals derived from a single learning event."""
    accuracy: float = 0.0
    response_speed: float = 0.0
    quality: float = 0.0
    engagement: float = 1.0
    hint_penalty: float = 0.0
    time_since_last_event_secs: float = 0.0
    session_event_count: int = 0
    is_quit: bool = False

    def clamped(self) -> 'FeatureVector':
        """Return a copy with every field inside its declared domain."""
        time_since = self.time_since_last_event_secs
        if time_since is None or math.isnan(time_since) or time_since < 0:
            time_since = 0.0
        return self.model_copy(update={
            "accuracy": _sanitize("accuracy", self.accuracy, 0.0, 1.0, 0.0),
            "response_speed": _sanitize("response_speed", self.response_speed, 0.0, 1.0, 0.0),
            "quality": _sanitize("quality", self.quality, 0.0, 1.0, 0.0),
            "engagement": _sanitize("engagement", self.engagement, 0.0, 1.0, 1.0),
            "hint_penalty": _sanitize("hint_penalty", self.hint_penalty, 0.0, 1.0, 0.0),
            "time_since_last_event_secs": time_since,
            "session_event_count": max(0, self.session_event_count),
        })


class StrategyParams(CamelModel):
    """The decided study strategy."""
    difficulty: float = 0.5
    new_ratio: float = 0.3
    batch_size: int = 10
    interval_scale: float = 1.0
    review_mode: bool = False

    def clamped(self, min_interval_scale: float = 0.1, min_batch_size: int = 1) -> 'StrategyParams':
        """Return a copy that satisfies every range and positivity constraint."""
        defaults = StrategyParams()
        if isinstance(self.batch_size, (int, float)) and math.isfinite(self.batch_size):
            batch_size = max(int(round(self.batch_size)), min_batch_size, 1)
        else:
            batch_size = max(defaults.batch_size, min_batch_size)
        interval_scale = self.interval_scale
        if interval_scale is None or not math.isfinite(interval_scale):
            interval_scale = defaults.interval_scale
        return self.model_copy(update={
            "difficulty": clamp(self.difficulty, 0.0, 1.0, defaults.difficulty),
            "new_ratio": clamp(self.new_ratio, 0.0, 1.0, defaults.new_ratio),
            "batch_size": batch_size,
            "interval_scale": max(interval_scale, min_interval_scale),
        })


class StrategyCandidate(CamelModel):
    """A strategy proposed by one algorithm."""
    algorithm_id: str
    strategy: StrategyParams
    confidence: float = 0.5
    explanation: str = ""


class MetricsSnapshot(CamelModel):
    """Counters for one algorithm."""
    call_count: int = 0
    total_latency_us: int = 0
    error_count: int = 0

    def __add__(self, other: 'MetricsSnapshot') -> 'MetricsSnapshot':
        return MetricsSnapshot(
            call_count=self.call_count + other.call_count,
            total_latency_us=self.total_latency_us + other.total_latency_us,
            error_count=self.error_count + other.error_count,
        )

    @property
    def is_empty(self) -> bool:
        return self.call_count == 0 and self.total_latency_us == 0 and self.error_count == 0

    @property
    def average_latency_us(self) -> float:
        if self.call_count == 0:
            return 0.0
        return self.total_latency_us / self.call_count


class WordMasteryDecision(CamelModel):
    """Outcome of a memory update for one word."""
    word_id: str
    memory_strength: float
    recall_probability: float
    next_review_interval_secs: float
    mastery_level: MasteryLevel


class ColdStartPhase(str, enum.Enum):
    CLASSIFY = "classify"
    EXPLORE = "explore"
    EXPLOIT = "exploit"


class DecisionResult(CamelModel):
    """Everything produced while processing one raw event."""
    strategy: StrategyParams
    state: UserState
    word_mastery: Optional[WordMasteryDecision] = None
    weights: Dict[str, float] = Field(default_factory=dict)
    cold_start_phase: ColdStartPhase = ColdStartPhase.EXPLOIT
    reward: float = 0.0
