"""
Decision Monitoring

Health checks on every processed decision. ``check_invariants`` verifies
that the learner state and the final strategy are inside their declared
ranges; a decision that breaks any of them is an anomaly and is logged at
warning level with the learner it belongs to.

Anomalies, cold-start decisions and a random sample of the remaining
decisions are also written to the store as ``MonitoringEvent`` records for
offline inspection. Monitoring never fails a decision: every error in here
is logged and dropped.
"""

import math
import uuid
import random
import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import Field

from amas.common.config import AMASConfig
from amas.common.logger import app_logger, with_context
from amas.common.utils import utc_now
from amas.types import CamelModel, ColdStartPhase, DecisionResult, StrategyParams

logger = app_logger.getChild("monitoring")

PROCESS_EVENT = "process_event"
DECIDE = "decide"


class InvariantViolation(CamelModel):
    """One value found outside its allowed range."""
    field: str
    # None when the value was not a number at all
    value: Optional[float] = None
    expected_range: str


class MonitoringEvent(CamelModel):
    """Sampled record of one processed decision."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    session_id: Optional[str] = None
    event_type: str = PROCESS_EVENT
    timestamp: datetime.datetime
    latency_ms: float = 0.0
    is_anomaly: bool = False
    invariant_violations: List[InvariantViolation] = Field(default_factory=list)
    user_state: Dict[str, Any] = Field(default_factory=dict)
    strategy: Dict[str, Any] = Field(default_factory=dict)
    cold_start_phase: Optional[ColdStartPhase] = None
    # False when the safety constraints changed the blended strategy
    selection_constraints_met: bool = True
    reward: Optional[float] = None


def _check_range(violations: List[InvariantViolation], field: str, value, low: float, high: float) -> None:
    expected = f"[{low}, {high}]"
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if math.isnan(number):
        violations.append(InvariantViolation(field=field, value=None, expected_range=expected))
    elif not low <= number <= high:
        violations.append(InvariantViolation(field=field, value=number, expected_range=expected))


def check_invariants(result: DecisionResult) -> List[InvariantViolation]:
    """
    Check a decision result against the engine's range invariants.

    Learner state: attention, fatigue and confidence in [0, 1], motivation
    in [-1, 1]. Strategy: difficulty and new_ratio in [0, 1], batch_size at
    least 1 and a positive, finite interval_scale. NaN always violates.

    Returns:
        The violations found, empty for a healthy decision
    """
    violations: List[InvariantViolation] = []
    state = result.state
    _check_range(violations, "attention", state.attention, 0.0, 1.0)
    _check_range(violations, "fatigue", state.fatigue, 0.0, 1.0)
    _check_range(violations, "confidence", state.confidence, 0.0, 1.0)
    _check_range(violations, "motivation", state.motivation, -1.0, 1.0)

    strategy = result.strategy
    _check_range(violations, "difficulty", strategy.difficulty, 0.0, 1.0)
    _check_range(violations, "new_ratio", strategy.new_ratio, 0.0, 1.0)

    if strategy.batch_size < 1:
        violations.append(InvariantViolation(field="batch_size", value=float(strategy.batch_size), expected_range=">= 1"))

    scale = strategy.interval_scale
    if not (math.isfinite(scale) and scale > 0):
        violations.append(InvariantViolation(
            field="interval_scale", value=None if math.isnan(scale) else scale, expected_range="> 0"
        ))

    return violations


def should_sample(
    is_anomaly: bool,
    cold_start_phase: Optional[ColdStartPhase],
    sample_rate: float,
    rng: Callable[[], float] = random.random
) -> bool:
    """
    Whether a decision is kept as a monitoring event.

    Anomalies and decisions taken before the learner reaches the exploit
    phase are always kept; the rest with probability ``sample_rate``.
    """
    if is_anomaly:
        return True
    if cold_start_phase is not None and cold_start_phase != ColdStartPhase.EXPLOIT:
        return True
    return rng() < sample_rate


class DecisionMonitor:
    """
    Checks processed decisions and records sampled monitoring events.

    Args:
        repository: Where sampled events are stored (events are only logged when None)
        rng: Source of uniform numbers in [0, 1) for sampling
    """

    def __init__(self, repository=None, rng: Callable[[], float] = random.random):
        self.repository = repository
        self.rng = rng

    def observe(
        self,
        user_id: str,
        result: DecisionResult,
        proposed: Optional[StrategyParams],
        config: AMASConfig,
        latency_ms: float = 0.0,
        session_id: Optional[str] = None,
        event_type: str = PROCESS_EVENT,
        now: Optional[datetime.datetime] = None
    ) -> Optional[MonitoringEvent]:
        """
        Check one decision and record it when sampled.

        Args:
            user_id: Learner id
            result: Final decision result
            proposed: Strategy before the safety constraints (None if unknown)
            config: Engine configuration (sample rate)
            latency_ms: Time taken by the decision
            session_id: Optional session id
            event_type: Kind of call that produced the decision
            now: Event time

        Returns:
            The recorded event, or None when not sampled or on error
        """
        try:
            violations = check_invariants(result)
            is_anomaly = bool(violations)
            if is_anomaly:
                with_context(logger.name, user_id=user_id, session_id=session_id).warning(
                    "AMAS invariant violation: " + ", ".join(
                        f"{v.field}={v.value} expected {v.expected_range}" for v in violations
                    )
                )

            if not should_sample(is_anomaly, result.cold_start_phase, config.monitoring.sample_rate, self.rng):
                return None

            reward = result.reward if math.isfinite(result.reward) else None
            event = MonitoringEvent(
                user_id=user_id,
                session_id=session_id,
                event_type=event_type,
                timestamp=now or utc_now(),
                latency_ms=latency_ms,
                is_anomaly=is_anomaly,
                invariant_violations=violations,
                user_state=result.state.to_dict(),
                strategy=result.strategy.to_dict(),
                cold_start_phase=result.cold_start_phase,
                selection_constraints_met=proposed is None or result.strategy == proposed,
                reward=reward,
            )
        except Exception as e:
            logger.error(f"Could not check decision for {user_id}: {e}", exc_info=True)
            return None

        if self.repository is not None:
            try:
                self.repository.insert_event(event)
            except Exception as e:
                logger.error(f"Failed to persist monitoring event {event.id}: {e}")
                return None
        return event
