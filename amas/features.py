"""
Feature and State Extraction

Turns a raw answer event into the ``FeatureVector`` consumed by the decision
engine and folds that vector into the learner's ``UserState``. Callers that
already maintain their own learner model can skip this module and hand
``AMASEngine.decide`` ready-made values.
"""

import math
import datetime
from typing import Optional

from amas.common.config import ModelingConfig
from amas.common.logger import app_logger
from amas.common.utils import elapsed_seconds, utc_now
from amas.types import CamelModel, FeatureVector, UserState, clamp

logger = app_logger.getChild("features")

_DEFAULT_CONFIG = ModelingConfig()


class RawEvent(CamelModel):
    """A single answer submitted by a learner."""
    word_id: str = ""
    is_correct: bool = False
    response_time_ms: int = 1000
    session_id: Optional[str] = None
    is_quit: bool = False
    hint_used: bool = False
    dwell_time_ms: Optional[int] = None
    pause_count: Optional[int] = None
    switch_count: Optional[int] = None
    retry_count: Optional[int] = None
    focus_loss_duration_ms: Optional[int] = None


def compute_engagement(event: RawEvent, config: Optional[ModelingConfig] = None) -> float:
    """
    Engagement score (0-1) for an event.

    Pauses, window switches and lost focus each subtract a capped penalty
    from full engagement.
    """
    config = config or _DEFAULT_CONFIG
    cap = config.engagement_penalty_max
    score = 1.0
    if event.pause_count is not None:
        score -= min(max(event.pause_count, 0) * config.engagement_pause_penalty, cap)
    if event.switch_count is not None:
        score -= min(max(event.switch_count, 0) * config.engagement_switch_penalty, cap)
    if event.focus_loss_duration_ms is not None:
        score -= min(max(event.focus_loss_duration_ms, 0) / config.engagement_focus_loss_base_ms, cap)
    return clamp(score, 0.0, 1.0)


def build_feature_vector(
    event: RawEvent,
    state: UserState,
    config: Optional[ModelingConfig] = None,
    now: Optional[datetime.datetime] = None
) -> FeatureVector:
    """
    Derive the feature vector of an event.

    Args:
        event: Raw answer event
        state: Learner state before the event
        config: Modelling configuration
        now: Event time (defaults to now)

    Returns:
        Feature vector with every field inside its domain
    """
    config = config or _DEFAULT_CONFIG
    now = now or utc_now()

    accuracy = 1.0 if event.is_correct else 0.0
    response_speed = clamp(1.0 - event.response_time_ms / config.response_speed_max_ms, 0.0, 1.0)
    hint_penalty = config.hint_penalty if event.hint_used else 0.0
    quality = clamp(
        accuracy * config.quality_accuracy_weight
        + response_speed * config.quality_speed_weight
        - hint_penalty,
        0.0, 1.0
    )

    return FeatureVector(
        accuracy=accuracy,
        response_speed=response_speed,
        quality=quality,
        engagement=compute_engagement(event, config),
        hint_penalty=hint_penalty,
        time_since_last_event_secs=elapsed_seconds(state.last_active_at, now),
        session_event_count=state.session_event_count,
        is_quit=event.is_quit,
    )


def update_user_state(
    state: UserState,
    feature: FeatureVector,
    config: Optional[ModelingConfig] = None
) -> UserState:
    """
    Fold one feature vector into the learner state.

    The input state is left untouched; a new state is returned. Event
    counters and ``last_active_at`` are maintained by the engine.

    Args:
        state: Current learner state
        feature: Feature vector of the event
        config: Modelling configuration

    Returns:
        Updated learner state
    """
    config = config or _DEFAULT_CONFIG
    state = state.clamped()
    feature = feature.clamped()

    smoothing = config.attention_smoothing
    attention = clamp(state.attention * (1.0 - smoothing) + feature.engagement * smoothing, 0.0, 1.0)

    increase = config.fatigue_quit_increase if feature.is_quit else config.fatigue_increase_rate
    fatigue = min(state.fatigue + increase, 1.0)

    # Rest recovers fatigue: a long break resets it, a short one decays it.
    gap = feature.time_since_last_event_secs
    if gap >= config.fatigue_full_reset_secs:
        fatigue = 0.0
    elif gap > config.fatigue_decay_start_secs:
        fatigue *= math.exp(-gap / config.fatigue_decay_time_constant_secs)

    signal = config.motivation_positive_signal if feature.accuracy > 0.5 else config.motivation_negative_signal
    momentum = config.motivation_momentum
    motivation = clamp(state.motivation * (1.0 - momentum) + signal * momentum, -1.0, 1.0)

    confidence_signal = config.confidence_signal if feature.quality > 0.5 else -config.confidence_signal
    confidence = clamp(
        state.confidence * config.confidence_decay + confidence_signal,
        config.min_confidence, 1.0
    )

    return state.model_copy(update={
        "attention": attention,
        "fatigue": clamp(fatigue, 0.0, 1.0),
        "motivation": motivation,
        "confidence": confidence,
    })
