"""Closed set of events emitted by the cruise scheduler."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Union

from ..models import AgentState


class CruiseEventType(str, Enum):
    HEALTH_CHECK_FINISHED = "health_check_finished"
    OPTIMIZATION_FINISHED = "optimization_finished"
    CYCLE_SKIPPED = "cycle_skipped"
    CYCLE_ABANDONED = "cycle_abandoned"
    STATE_CHANGED = "state_changed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class HealthCheckFinished:
    agent_id: str
    success: bool
    duration_s: float
    health_score: float | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    type: CruiseEventType = field(default=CruiseEventType.HEALTH_CHECK_FINISHED, init=False)


@dataclass(frozen=True)
class OptimizationFinished:
    agent_id: str
    success: bool
    duration_s: float
    plan_executed: bool = False
    actions_executed: int = 0
    actions_succeeded: int = 0
    expected_improvement: float | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    type: CruiseEventType = field(default=CruiseEventType.OPTIMIZATION_FINISHED, init=False)


@dataclass(frozen=True)
class CycleSkipped:
    """A cycle was not started because the agent's previous one is in flight."""

    agent_id: str
    reason: str
    timestamp: datetime = field(default_factory=_utcnow)
    type: CruiseEventType = field(default=CruiseEventType.CYCLE_SKIPPED, init=False)


@dataclass(frozen=True)
class CycleAbandoned:
    """A cycle was cancelled at shutdown after the grace period."""

    agent_id: str
    timestamp: datetime = field(default_factory=_utcnow)
    type: CruiseEventType = field(default=CruiseEventType.CYCLE_ABANDONED, init=False)


@dataclass(frozen=True)
class StateChanged:
    agent_id: str
    previous: AgentState
    current: AgentState
    last_error: str | None = None
    recovery_attempts: int = 0
    timestamp: datetime = field(default_factory=_utcnow)
    type: CruiseEventType = field(default=CruiseEventType.STATE_CHANGED, init=False)


CruiseEvent = Union[
    HealthCheckFinished,
    OptimizationFinished,
    CycleSkipped,
    CycleAbandoned,
    StateChanged,
]
