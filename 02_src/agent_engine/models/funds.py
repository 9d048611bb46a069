"""Funds-related data models."""

from dataclasses import dataclass, field


@dataclass
class Position:
    """Liquidity deployed into one pool."""

    pool_address: str
    value_sol: float
    value_usd: float = 0.0


@dataclass
class FundsStatus:
    """Snapshot of an agent's capital as reported by the funds collaborator."""

    total_value_sol: float
    available_balance: float
    reserved_balance: float = 0.0
    positions: list[Position] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "FundsStatus":
        return cls(total_value_sol=0.0, available_balance=0.0)

    def to_dict(self) -> dict:
        return {
            "total_value_sol": self.total_value_sol,
            "available_balance": self.available_balance,
            "reserved_balance": self.reserved_balance,
            "positions": [
                {
                    "pool_address": p.pool_address,
                    "value_sol": p.value_sol,
                    "value_usd": p.value_usd,
                }
                for p in self.positions
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FundsStatus":
        return cls(
            total_value_sol=float(data["total_value_sol"]),
            available_balance=float(data["available_balance"]),
            reserved_balance=float(data.get("reserved_balance", 0.0)),
            positions=[
                Position(
                    pool_address=p["pool_address"],
                    value_sol=float(p["value_sol"]),
                    value_usd=float(p.get("value_usd", 0.0)),
                )
                for p in data.get("positions", [])
            ],
        )


@dataclass
class Returns:
    """Fractional returns over standard windows."""

    total_returns: float = 0.0
    daily_returns: float = 0.0
    weekly_returns: float = 0.0
    monthly_returns: float = 0.0
