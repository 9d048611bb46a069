"""Core data models for the agent engine."""

from .agents import (
    AgentConfig,
    AgentEvent,
    AgentState,
    AgentStatus,
    RiskHistoryRecord,
    StateChangeRecord,
)
from .funds import FundsStatus, Position, Returns
from .optimization import (
    ActionType,
    AddAction,
    AdjustAction,
    OptimizationAction,
    OptimizationPlan,
    PoolRecommendation,
    RemoveAction,
    TargetBin,
)
from .risk import RiskAssessment, RiskLevel
from .transactions import TransactionRequest, TransactionResult, TransactionType

__all__ = [
    # Agents
    "AgentConfig",
    "AgentEvent",
    "AgentState",
    "AgentStatus",
    "StateChangeRecord",
    "RiskHistoryRecord",
    # Funds
    "FundsStatus",
    "Position",
    "Returns",
    # Risk
    "RiskAssessment",
    "RiskLevel",
    # Optimization
    "ActionType",
    "AddAction",
    "AdjustAction",
    "RemoveAction",
    "OptimizationAction",
    "OptimizationPlan",
    "PoolRecommendation",
    "TargetBin",
    # Transactions
    "TransactionRequest",
    "TransactionResult",
    "TransactionType",
]
