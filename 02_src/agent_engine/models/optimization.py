"""Optimization plan and pool recommendation models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class ActionType(str, Enum):
    """Kinds of OptimizationAction."""

    ADD = "add"
    REMOVE = "remove"
    ADJUST = "adjust"


@dataclass(frozen=True)
class TargetBin:
    """Share of a position to place in one DLMM bin."""

    bin_id: int
    percentage: float


@dataclass(frozen=True)
class AddAction:
    """Deploy idle capital into a pool."""

    pool_address: str
    amount_sol: float
    target_bins: tuple[TargetBin, ...] = ()
    type: ActionType = field(default=ActionType.ADD, init=False)


@dataclass(frozen=True)
class RemoveAction:
    """Withdraw part or all of a position."""

    pool_address: str
    amount_sol: float
    current_amount_sol: float
    full_exit: bool = False
    type: ActionType = field(default=ActionType.REMOVE, init=False)


@dataclass(frozen=True)
class AdjustAction:
    """Re-center a position's bin range without exiting it."""

    pool_address: str
    current_amount_sol: float
    target_amount_sol: float
    target_bins: tuple[TargetBin, ...] = ()
    type: ActionType = field(default=ActionType.ADJUST, init=False)


OptimizationAction = Union[AddAction, RemoveAction, AdjustAction]


@dataclass
class OptimizationPlan:
    """Actions recommended for one agent in one cycle."""

    agent_id: str
    total_value_sol: float
    actions: list[OptimizationAction] = field(default_factory=list)
    expected_health_improvement: float = 0.0

    def actions_of(self, action_type: ActionType) -> list[OptimizationAction]:
        return [a for a in self.actions if a.type is action_type]

    @property
    def total_add_sol(self) -> float:
        return sum(a.amount_sol for a in self.actions if isinstance(a, AddAction))


@dataclass
class PoolRecommendation:
    """Scoring-service view of one pool."""

    pool_address: str
    health_score: float  # 0 (worst) .. 5 (best)
    action: str = "maintain"  # add | maintain | reduce | rebalance
    price: float | None = None
    price_change_24h: float = 0.0
    volume_change: float = 0.0
    liquidity_change: float = 0.0
    apy: float = 0.0
    pool_type: str | None = None
    adjustment_percentage: float | None = None
    target_bins: tuple[TargetBin, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "PoolRecommendation":
        price = data.get("price")
        return cls(
            pool_address=data["pool_address"],
            health_score=float(data.get("health_score", 0.0)),
            action=data.get("action", "maintain"),
            price=float(price) if price is not None else None,
            price_change_24h=float(data.get("price_change_24h", 0.0)),
            volume_change=float(data.get("volume_change", 0.0)),
            liquidity_change=float(data.get("liquidity_change", 0.0)),
            apy=float(data.get("apy", 0.0)),
            pool_type=data.get("pool_type"),
            adjustment_percentage=data.get("adjustment_percentage"),
            target_bins=tuple(
                TargetBin(bin_id=int(b["bin_id"]), percentage=float(b["percentage"]))
                for b in data.get("target_bins", [])
            ),
        )
