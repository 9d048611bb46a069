"""Cruise scheduler module."""

from .events import (
    CruiseEvent,
    CruiseEventType,
    CycleAbandoned,
    CycleSkipped,
    HealthCheckFinished,
    OptimizationFinished,
    StateChanged,
)
from .guard import ReentrancyGuard
from .metrics import CruiseMetrics
from .scheduler import CruiseScheduler, ICruiseScheduler, SchedulerState

__all__ = [
    "CruiseEvent",
    "CruiseEventType",
    "CruiseMetrics",
    "CruiseScheduler",
    "CycleAbandoned",
    "CycleSkipped",
    "HealthCheckFinished",
    "ICruiseScheduler",
    "OptimizationFinished",
    "ReentrancyGuard",
    "SchedulerState",
    "StateChanged",
]
