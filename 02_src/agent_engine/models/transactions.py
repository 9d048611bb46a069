"""Transaction pipeline data models."""

from dataclasses import dataclass, field
from enum import Enum


class TransactionType(str, Enum):
    """Kinds of request the transaction pipeline accepts."""

    ADD_LIQUIDITY = "add_liquidity"
    REMOVE_LIQUIDITY = "remove_liquidity"
    REBALANCE = "rebalance"


@dataclass
class TransactionRequest:
    """A single OptimizationAction translated for the transaction pipeline."""

    agent_id: str
    type: TransactionType
    pool_address: str
    amount_sol: float
    wallet_address: str = ""
    target_bins: list[dict] = field(default_factory=list)
    max_slippage: float = 0.01


@dataclass
class TransactionResult:
    """Outcome reported by the transaction pipeline."""

    success: bool
    message: str = ""
