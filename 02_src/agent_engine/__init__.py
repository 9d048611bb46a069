"""Agent engine: lifecycle manager for autonomous liquidity agents."""

from .app import Application, IApplication
from .collaborators import (
    FundsRiskController,
    HttpScoringClient,
    HttpTransactionExecutor,
    IFundsManager,
    InMemoryFundsManager,
    IRiskController,
    IScoringClient,
    ITransactionExecutor,
)
from .config import CruiseSettings, StateMachineSettings
from .errors import (
    AgentEngineError,
    InvalidTransitionError,
    PersistenceError,
    PlanComputationError,
    TransientCollaboratorError,
)
from .models import (
    AgentConfig,
    AgentEvent,
    AgentState,
    AgentStatus,
    FundsStatus,
    OptimizationPlan,
    Position,
    RiskAssessment,
    RiskLevel,
)
from .optimizer import PositionOptimizer
from .scheduler import CruiseMetrics, CruiseScheduler, ICruiseScheduler, ReentrancyGuard
from .state_machine import AgentStateMachine, RingBuffer
from .storage import IStatePersistence, IStorage, MemoryStatePersistence, Storage

__all__ = [
    # Application
    "Application",
    "IApplication",
    # Settings
    "CruiseSettings",
    "StateMachineSettings",
    # Errors
    "AgentEngineError",
    "InvalidTransitionError",
    "PersistenceError",
    "PlanComputationError",
    "TransientCollaboratorError",
    # Models
    "AgentConfig",
    "AgentEvent",
    "AgentState",
    "AgentStatus",
    "FundsStatus",
    "OptimizationPlan",
    "Position",
    "RiskAssessment",
    "RiskLevel",
    # Components
    "AgentStateMachine",
    "RingBuffer",
    "PositionOptimizer",
    "CruiseScheduler",
    "ICruiseScheduler",
    "CruiseMetrics",
    "ReentrancyGuard",
    "IStatePersistence",
    "IStorage",
    "Storage",
    "MemoryStatePersistence",
    # Collaborators
    "IFundsManager",
    "InMemoryFundsManager",
    "IRiskController",
    "FundsRiskController",
    "IScoringClient",
    "HttpScoringClient",
    "ITransactionExecutor",
    "HttpTransactionExecutor",
]
