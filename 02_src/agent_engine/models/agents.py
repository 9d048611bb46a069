"""Agent-related data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .funds import FundsStatus
from .risk import RiskAssessment, RiskLevel


class AgentState(str, Enum):
    """Lifecycle states of an agent."""

    IDLE = "idle"
    RUNNING = "running"
    WAITING = "waiting"
    RECOVERING = "recovering"
    STOPPED = "stopped"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentState.STOPPED, AgentState.ERROR)


class AgentEvent(str, Enum):
    """Inputs that drive AgentState transitions."""

    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    RISK_ELEVATED = "risk_elevated"
    RISK_RESOLVED = "risk_resolved"
    FAULT = "fault"
    RECOVERED = "recovered"
    EMERGENCY_EXIT = "emergency_exit"
    STOP = "stop"
    FAIL = "fail"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AgentConfig:
    """Immutable per-agent configuration supplied at registration."""

    id: str
    name: str = ""
    wallet_address: str = ""
    risk_level: RiskLevel = RiskLevel.MEDIUM  # tolerance, not current posture
    min_position_size: float = 0.1
    max_position_size: float = 10.0
    target_apy: float = 0.0
    max_slippage: float = 0.01
    rebalance_threshold: float = 0.05
    pool_types: tuple[str, ...] = ()
    max_positions: int = 5
    min_reserve_sol: float = 0.1
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "wallet_address": self.wallet_address,
            "risk_level": self.risk_level.value,
            "min_position_size": self.min_position_size,
            "max_position_size": self.max_position_size,
            "target_apy": self.target_apy,
            "max_slippage": self.max_slippage,
            "rebalance_threshold": self.rebalance_threshold,
            "pool_types": list(self.pool_types),
            "max_positions": self.max_positions,
            "min_reserve_sol": self.min_reserve_sol,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AgentConfig":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            wallet_address=data.get("wallet_address", ""),
            risk_level=RiskLevel(data.get("risk_level", RiskLevel.MEDIUM.value)),
            min_position_size=float(data.get("min_position_size", 0.1)),
            max_position_size=float(data.get("max_position_size", 10.0)),
            target_apy=float(data.get("target_apy", 0.0)),
            max_slippage=float(data.get("max_slippage", 0.01)),
            rebalance_threshold=float(data.get("rebalance_threshold", 0.05)),
            pool_types=tuple(data.get("pool_types", ())),
            max_positions=int(data.get("max_positions", 5)),
            min_reserve_sol=float(data.get("min_reserve_sol", 0.1)),
            created_at=datetime.fromisoformat(data["created_at"])
            if data.get("created_at")
            else _utcnow(),
            updated_at=datetime.fromisoformat(data["updated_at"])
            if data.get("updated_at")
            else _utcnow(),
        )


@dataclass
class AgentStatus:
    """Mutable runtime record owned by one AgentStateMachine."""

    agent_id: str
    state: AgentState = AgentState.IDLE
    funds: FundsStatus | None = None
    last_error: str | None = None
    state_entered_at: datetime = field(default_factory=_utcnow)
    recovery_attempts: int = 0
    exit_requested: bool = False

    def to_dict(self) -> dict:
        return {
            "agent_id": self.agent_id,
            "state": self.state.value,
            "funds": self.funds.to_dict() if self.funds else None,
            "last_error": self.last_error,
            "state_entered_at": self.state_entered_at.isoformat(),
            "recovery_attempts": self.recovery_attempts,
            "exit_requested": self.exit_requested,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AgentStatus":
        entered = datetime.fromisoformat(data["state_entered_at"])
        if entered.tzinfo is None:
            entered = entered.replace(tzinfo=timezone.utc)
        return cls(
            agent_id=data["agent_id"],
            state=AgentState(data["state"]),
            funds=FundsStatus.from_dict(data["funds"]) if data.get("funds") else None,
            last_error=data.get("last_error"),
            state_entered_at=entered,
            recovery_attempts=int(data.get("recovery_attempts", 0)),
            exit_requested=bool(data.get("exit_requested", False)),
        )


@dataclass(frozen=True)
class StateChangeRecord:
    """One applied transition."""

    state: AgentState
    timestamp: datetime


@dataclass(frozen=True)
class RiskHistoryRecord:
    """One received risk assessment."""

    assessment: RiskAssessment
    timestamp: datetime
