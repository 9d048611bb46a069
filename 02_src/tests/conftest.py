"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


class FakeClock:
    """Manually advanced clock for time-dependent behavior."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    """Create a fake clock."""
    return FakeClock()


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from agent_engine.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def persistence():
    """Create in-memory state persistence."""
    from agent_engine.storage import MemoryStatePersistence

    return MemoryStatePersistence()


@pytest.fixture
def sm_settings():
    """Short, round thresholds for state machine tests."""
    from agent_engine.config import StateMachineSettings

    return StateMachineSettings(
        medium_risk_duration_s=600,
        high_risk_duration_s=300,
        state_timeout_s=1800,
        max_recovery_attempts=3,
        recovery_confirmation_s=120,
        history_capacity=10,
    )


@pytest.fixture
def agent_config():
    """Create a default agent config."""
    from agent_engine.models import AgentConfig, RiskLevel

    return AgentConfig(
        id="agent-1",
        name="Test Agent",
        wallet_address="wallet-1",
        risk_level=RiskLevel.MEDIUM,
        min_position_size=1.0,
        max_position_size=25.0,
        rebalance_threshold=0.05,
        max_positions=5,
        min_reserve_sol=0.0,
    )


@pytest.fixture
def make_machine(persistence, sm_settings, clock):
    """Factory for state machines sharing persistence, settings and clock."""
    from agent_engine.state_machine import AgentStateMachine

    def _make(config, **kwargs):
        return AgentStateMachine(
            config,
            persistence=kwargs.pop("persistence", persistence),
            settings=kwargs.pop("settings", sm_settings),
            clock=kwargs.pop("clock", clock),
        )

    return _make


@pytest.fixture
def machine(make_machine, agent_config):
    """Create a state machine for the default agent."""
    return make_machine(agent_config)


@pytest.fixture
def mock_scoring():
    """Create mock scoring client with no recommendations."""
    scoring = Mock()
    scoring.get_pool_recommendations = AsyncMock(return_value=None)
    scoring.get_candidate_pools = AsyncMock(return_value=[])
    return scoring


@pytest.fixture
def mock_funds():
    """Create mock funds manager that allows every transaction."""
    from agent_engine.models import FundsStatus

    funds = Mock()
    funds.get_funds_status = AsyncMock(
        return_value=FundsStatus(total_value_sol=100.0, available_balance=40.0)
    )
    funds.check_transaction_limit = AsyncMock(return_value=True)
    funds.check_funds_safety = AsyncMock(return_value=True)
    funds.record_transaction = AsyncMock(return_value=None)
    return funds


@pytest.fixture
def mock_risk():
    """Create mock risk controller reporting LOW risk."""
    from agent_engine.models import RiskAssessment, RiskLevel

    risk = Mock()
    risk.assess_risk = AsyncMock(
        return_value=RiskAssessment(level=RiskLevel.LOW, health_score=4.5)
    )
    return risk


@pytest.fixture
def mock_executor():
    """Create mock transaction executor that always succeeds."""
    from agent_engine.models import TransactionResult

    executor = Mock()
    executor.execute = AsyncMock(return_value=TransactionResult(success=True, message="ok"))
    return executor


@pytest.fixture
def cruise_settings(sm_settings):
    """Scheduler settings with a tick too long to fire during a test."""
    from agent_engine.config import CruiseSettings

    return CruiseSettings(
        tick_interval_s=3600,
        max_concurrent_cycles=4,
        call_timeout_s=0.5,
        shutdown_grace_s=0.5,
        min_improvement=0.01,
        state_machine=sm_settings,
    )


@pytest.fixture
def optimizer(mock_scoring, clock):
    """Create optimizer on top of the mock scoring client."""
    from agent_engine.optimizer import PositionOptimizer

    return PositionOptimizer(mock_scoring, lookup_timeout_s=0.5, clock=clock)


@pytest.fixture
def make_scheduler(optimizer, mock_funds, mock_risk, mock_executor, persistence, cruise_settings):
    """Factory for schedulers over the mock collaborators."""
    from agent_engine.scheduler import CruiseScheduler

    def _make(**kwargs):
        return CruiseScheduler(
            optimizer=kwargs.pop("optimizer", optimizer),
            funds_manager=kwargs.pop("funds_manager", mock_funds),
            risk_controller=kwargs.pop("risk_controller", mock_risk),
            executor=kwargs.pop("executor", mock_executor),
            persistence=kwargs.pop("persistence", persistence),
            settings=kwargs.pop("settings", cruise_settings),
            **kwargs,
        )

    return _make


@pytest_asyncio.fixture
async def scheduler(make_scheduler):
    """Create scheduler and stop it after the test."""
    sched = make_scheduler()
    yield sched
    await sched.stop()
