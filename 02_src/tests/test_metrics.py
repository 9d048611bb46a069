"""Tests for CruiseMetrics and the cruise event types."""

import pytest

from agent_engine.models import AgentState
from agent_engine.scheduler import (
    CruiseEventType,
    CruiseMetrics,
    CycleAbandoned,
    CycleSkipped,
    HealthCheckFinished,
    OptimizationFinished,
    StateChanged,
)


@pytest.fixture
def metrics(clock):
    m = CruiseMetrics(clock=clock)
    m.register("agent-1", AgentState.RUNNING)
    return m


class TestCruiseEvents:
    """Tests for event payloads."""

    def test_event_types(self):
        """Test each event carries its discriminator."""
        assert HealthCheckFinished("a", True, 0.1).type is CruiseEventType.HEALTH_CHECK_FINISHED
        assert OptimizationFinished("a", True, 0.1).type is CruiseEventType.OPTIMIZATION_FINISHED
        assert CycleSkipped("a", "busy").type is CruiseEventType.CYCLE_SKIPPED
        assert CycleAbandoned("a").type is CruiseEventType.CYCLE_ABANDONED
        assert (
            StateChanged("a", AgentState.IDLE, AgentState.RUNNING).type
            is CruiseEventType.STATE_CHANGED
        )


class TestCruiseMetrics:
    """Tests for counter aggregation."""

    def test_health_checks(self, metrics):
        """Test health check counters and averages."""
        metrics.record(HealthCheckFinished("agent-1", True, 0.2, health_score=4.0))
        metrics.record(HealthCheckFinished("agent-1", False, 0.4, error="boom"))

        data = metrics.get_agent_metrics("agent-1")
        assert data["health_checks_total"] == 2
        assert data["health_checks_succeeded"] == 1
        assert data["health_checks_failed"] == 1
        assert data["errors"] == 1
        assert data["last_health_score"] == 4.0
        assert data["average_health_check_time_s"] == pytest.approx(0.3)
        assert data["last_health_check_at"] is not None

    def test_optimizations(self, metrics):
        """Test optimization counters and average improvement."""
        metrics.record(
            OptimizationFinished(
                "agent-1",
                True,
                0.1,
                plan_executed=True,
                actions_executed=2,
                actions_succeeded=2,
                expected_improvement=0.2,
            )
        )
        metrics.record(
            OptimizationFinished(
                "agent-1",
                False,
                0.1,
                plan_executed=True,
                actions_executed=1,
                actions_succeeded=0,
                expected_improvement=0.1,
                error="rejected",
            )
        )
        metrics.record(OptimizationFinished("agent-1", True, 0.1))

        data = metrics.get_agent_metrics("agent-1")
        assert data["optimizations_total"] == 3
        assert data["optimizations_succeeded"] == 2
        assert data["optimizations_failed"] == 1
        assert data["plans_executed"] == 2
        assert data["actions_executed"] == 3
        assert data["actions_succeeded"] == 2
        assert data["average_improvement"] == pytest.approx(0.15)

    def test_cycles_and_state(self, metrics):
        """Test skipped and abandoned cycles and state tracking."""
        metrics.record(CycleSkipped("agent-1", "cycle in flight"))
        metrics.record(CycleAbandoned("agent-1"))
        metrics.record(
            StateChanged(
                "agent-1",
                AgentState.RUNNING,
                AgentState.RECOVERING,
                last_error="rpc down",
                recovery_attempts=1,
            )
        )

        data = metrics.get_agent_metrics("agent-1")
        assert data["cycles_skipped"] == 1
        assert data["cycles_abandoned"] == 1
        assert data["state_transitions"] == 1
        assert data["current_state"] == "recovering"
        assert data["last_error"] == "rpc down"
        assert data["recovery_attempts"] == 1

    def test_unregistered_agent_ignored(self, metrics):
        """Test events for unknown agents are dropped."""
        metrics.record(CycleSkipped("nobody", "cycle in flight"))
        assert metrics.get_agent_metrics("nobody") is None
        assert metrics.get_metrics()["cycles_skipped"] == 0

    def test_unregister(self, metrics):
        """Test unregistering drops the counters."""
        metrics.unregister("agent-1")
        assert metrics.get_agent_metrics("agent-1") is None

    def test_register_keeps_counters(self, metrics):
        """Test re-registering updates the state but keeps counts."""
        metrics.record(CycleSkipped("agent-1", "cycle in flight"))
        metrics.register("agent-1", AgentState.WAITING)

        data = metrics.get_agent_metrics("agent-1")
        assert data["cycles_skipped"] == 1
        assert data["current_state"] == "waiting"

    def test_totals(self, metrics, clock):
        """Test aggregate counters over several agents."""
        metrics.register("agent-2", AgentState.WAITING)
        metrics.record(HealthCheckFinished("agent-1", True, 0.1))
        metrics.record(HealthCheckFinished("agent-2", False, 0.1))
        clock.advance(90)

        totals = metrics.get_metrics()
        assert totals["health_checks_total"] == 2
        assert totals["errors"] == 1
        assert totals["agents_by_state"] == {"running": 1, "waiting": 1}
        assert totals["uptime_s"] == 90

    def test_reset_uptime(self, metrics, clock):
        """Test uptime restarts on reset."""
        clock.advance(30)
        metrics.reset_uptime()
        clock.advance(5)
        assert metrics.get_metrics()["uptime_s"] == 5
