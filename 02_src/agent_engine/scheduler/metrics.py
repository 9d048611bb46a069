"""Cruise metrics: counters derived from scheduler events."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable

from ..logging_config import get_logger
from ..models import AgentState
from .events import (
    CruiseEvent,
    CycleAbandoned,
    CycleSkipped,
    HealthCheckFinished,
    OptimizationFinished,
    StateChanged,
)

logger = get_logger(__name__)


@dataclass
class AgentCounters:
    """Per-agent counters. Read-only to everything but CruiseMetrics."""

    health_checks_total: int = 0
    health_checks_succeeded: int = 0
    health_checks_failed: int = 0
    health_check_time_total_s: float = 0.0
    last_health_score: float | None = None
    last_health_check_at: datetime | None = None

    optimizations_total: int = 0
    optimizations_succeeded: int = 0
    optimizations_failed: int = 0
    plans_executed: int = 0
    actions_executed: int = 0
    actions_succeeded: int = 0
    improvement_total: float = 0.0
    last_optimization_at: datetime | None = None

    cycles_skipped: int = 0
    cycles_abandoned: int = 0
    errors: int = 0
    state_transitions: int = 0

    current_state: AgentState = AgentState.IDLE
    last_error: str | None = None
    recovery_attempts: int = 0

    @property
    def average_health_check_time_s(self) -> float:
        if not self.health_checks_total:
            return 0.0
        return self.health_check_time_total_s / self.health_checks_total

    @property
    def average_improvement(self) -> float:
        if not self.plans_executed:
            return 0.0
        return self.improvement_total / self.plans_executed

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("health_check_time_total_s")
        data.pop("improvement_total")
        data["current_state"] = self.current_state.value
        data["average_health_check_time_s"] = round(self.average_health_check_time_s, 6)
        data["average_improvement"] = round(self.average_improvement, 6)
        for key in ("last_health_check_at", "last_optimization_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


_SUMMED = (
    "health_checks_total",
    "health_checks_succeeded",
    "health_checks_failed",
    "optimizations_total",
    "optimizations_succeeded",
    "optimizations_failed",
    "plans_executed",
    "actions_executed",
    "actions_succeeded",
    "cycles_skipped",
    "cycles_abandoned",
    "errors",
    "state_transitions",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CruiseMetrics:
    """Aggregates scheduler events into per-agent and total counters."""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or _utcnow
        self._started_at = self._clock()
        self._agents: dict[str, AgentCounters] = {}

    def register(self, agent_id: str, state: AgentState = AgentState.IDLE) -> None:
        counters = self._agents.setdefault(agent_id, AgentCounters())
        counters.current_state = state

    def unregister(self, agent_id: str) -> None:
        self._agents.pop(agent_id, None)

    def reset_uptime(self) -> None:
        self._started_at = self._clock()

    def record(self, event: CruiseEvent) -> None:
        """Apply one event. Events for unregistered agents are ignored."""
        counters = self._agents.get(event.agent_id)
        if counters is None:
            logger.debug("Dropping %s for unregistered agent %s", event.type.value, event.agent_id)
            return

        if isinstance(event, HealthCheckFinished):
            counters.health_checks_total += 1
            counters.health_check_time_total_s += event.duration_s
            counters.last_health_check_at = event.timestamp
            if event.success:
                counters.health_checks_succeeded += 1
                counters.last_health_score = event.health_score
            else:
                counters.health_checks_failed += 1
                counters.errors += 1

        elif isinstance(event, OptimizationFinished):
            counters.optimizations_total += 1
            counters.last_optimization_at = event.timestamp
            counters.actions_executed += event.actions_executed
            counters.actions_succeeded += event.actions_succeeded
            if event.plan_executed:
                counters.plans_executed += 1
                counters.improvement_total += event.expected_improvement or 0.0
            if event.success:
                counters.optimizations_succeeded += 1
            else:
                counters.optimizations_failed += 1
                counters.errors += 1

        elif isinstance(event, CycleSkipped):
            counters.cycles_skipped += 1

        elif isinstance(event, CycleAbandoned):
            counters.cycles_abandoned += 1

        elif isinstance(event, StateChanged):
            counters.state_transitions += 1
            counters.current_state = event.current
            counters.last_error = event.last_error
            counters.recovery_attempts = event.recovery_attempts

    def get_agent_metrics(self, agent_id: str) -> dict | None:
        counters = self._agents.get(agent_id)
        return counters.to_dict() if counters else None

    def get_metrics(self) -> dict:
        """Counters summed over all registered agents."""
        totals = {name: 0 for name in _SUMMED}
        states: dict[str, int] = {}
        for counters in self._agents.values():
            for name in _SUMMED:
                totals[name] += getattr(counters, name)
            states[counters.current_state.value] = (
                states.get(counters.current_state.value, 0) + 1
            )

        return {
            **totals,
            "agents_by_state": states,
            "uptime_s": round((self._clock() - self._started_at).total_seconds(), 3),
        }
