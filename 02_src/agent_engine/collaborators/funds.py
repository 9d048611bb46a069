"""Funds collaborator: balances, transaction limits and returns."""

import copy
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from ..logging_config import get_logger
from ..models import FundsStatus, Returns, TransactionType

logger = get_logger(__name__)


class IFundsManager(Protocol):
    """Source of truth for an agent's capital."""

    async def get_funds_status(self, agent_id: str, wallet_address: str) -> FundsStatus:
        """Get the current funds snapshot for an agent."""
        ...

    async def check_transaction_limit(
        self, agent_id: str, amount: float, transaction_type: TransactionType
    ) -> bool:
        """Check whether a transaction of this size is allowed now."""
        ...

    async def update_funds_status(
        self, agent_id: str, wallet_address: str, **changes
    ) -> FundsStatus:
        """Merge changes into the stored snapshot and return it."""
        ...

    async def calculate_returns(self, agent_id: str) -> Returns:
        """Compute returns over total/daily/weekly/monthly windows."""
        ...

    async def record_transaction(
        self, agent_id: str, amount: float, transaction_type: TransactionType
    ) -> None:
        """Record an executed transaction against the daily limit."""
        ...

    async def get_wallet_balance(self, wallet_address: str) -> float:
        """Get the SOL balance of a wallet."""
        ...

    async def check_funds_safety(self, agent_id: str) -> bool:
        """Check that the agent's funds are consistent enough to deploy capital."""
        ...


@dataclass(frozen=True)
class TransactionLimits:
    """Limits as fractions of the agent's total value, plus a SOL floor."""

    single_transaction: float = 0.3
    daily_limit: float = 0.7
    min_sol_balance: float = 0.1


@dataclass(frozen=True)
class _TransactionRecord:
    timestamp: datetime
    amount: float
    type: TransactionType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryFundsManager:
    """In-process funds manager keeping snapshots, wallets and transaction history."""

    def __init__(
        self,
        limits: TransactionLimits | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._limits = limits or TransactionLimits()
        self._clock = clock or _utcnow
        self._funds: dict[str, FundsStatus] = {}
        self._wallets: dict[str, float] = {}
        self._transactions: dict[str, list[_TransactionRecord]] = {}
        self._value_snapshots: dict[str, list[tuple[datetime, float]]] = {}

    @property
    def limits(self) -> TransactionLimits:
        return self._limits

    def set_wallet_balance(self, wallet_address: str, balance_sol: float) -> None:
        self._wallets[wallet_address] = balance_sol

    async def get_wallet_balance(self, wallet_address: str) -> float:
        """Get the SOL balance of a wallet."""
        return self._wallets.get(wallet_address, 0.0)

    async def get_funds_status(self, agent_id: str, wallet_address: str) -> FundsStatus:
        """Get the current funds snapshot; unknown agents start from the wallet balance."""
        if agent_id not in self._funds:
            balance = await self.get_wallet_balance(wallet_address)
            self._store(
                agent_id,
                FundsStatus(total_value_sol=balance, available_balance=balance),
            )
        return copy.deepcopy(self._funds[agent_id])

    async def update_funds_status(
        self, agent_id: str, wallet_address: str, **changes
    ) -> FundsStatus:
        """Merge changes into the stored snapshot and return it."""
        current = await self.get_funds_status(agent_id, wallet_address)
        for key, value in changes.items():
            if not hasattr(current, key):
                raise ValueError(f"Unknown funds field: {key}")
            setattr(current, key, value)

        self._store(agent_id, current)
        logger.info(
            "Updated funds status for agent %s",
            agent_id,
            extra={"context": {"agent_id": agent_id}},
        )
        return copy.deepcopy(current)

    async def check_transaction_limit(
        self, agent_id: str, amount: float, transaction_type: TransactionType
    ) -> bool:
        """Check single-transaction, daily and minimum-balance limits."""
        funds = self._funds.get(agent_id)
        if funds is None or amount <= 0:
            return False

        single_limit = funds.total_value_sol * self._limits.single_transaction
        if amount > single_limit:
            logger.warning(
                "Amount %.4f exceeds single transaction limit %.4f for agent %s",
                amount,
                single_limit,
                agent_id,
            )
            return False

        daily_limit = funds.total_value_sol * self._limits.daily_limit
        if self._spent_today(agent_id) + amount > daily_limit:
            logger.warning(
                "Amount %.4f would exceed daily limit %.4f for agent %s",
                amount,
                daily_limit,
                agent_id,
            )
            return False

        # Deploying liquidity spends idle SOL; keep a floor for fees
        if (
            transaction_type is TransactionType.ADD_LIQUIDITY
            and funds.available_balance - amount < self._limits.min_sol_balance
        ):
            logger.warning(
                "Amount %.4f would leave agent %s below minimum SOL balance %.4f",
                amount,
                agent_id,
                self._limits.min_sol_balance,
            )
            return False

        return True

    async def record_transaction(
        self, agent_id: str, amount: float, transaction_type: TransactionType
    ) -> None:
        """Record an executed transaction against the daily limit."""
        self._transactions.setdefault(agent_id, []).append(
            _TransactionRecord(self._clock(), amount, transaction_type)
        )
        logger.info(
            "Recorded %s transaction of %.4f SOL for agent %s",
            transaction_type.value,
            amount,
            agent_id,
            extra={"context": {"agent_id": agent_id}},
        )

    def get_transactions(self, agent_id: str) -> list[tuple[datetime, float, TransactionType]]:
        return [
            (tx.timestamp, tx.amount, tx.type)
            for tx in self._transactions.get(agent_id, [])
        ]

    async def calculate_returns(self, agent_id: str) -> Returns:
        """Returns relative to the value recorded at the start of each window."""
        snapshots = self._value_snapshots.get(agent_id, [])
        if not snapshots:
            return Returns()

        now = self._clock()
        return Returns(
            total_returns=self._return_since(snapshots, None),
            daily_returns=self._return_since(snapshots, now - timedelta(days=1)),
            weekly_returns=self._return_since(snapshots, now - timedelta(weeks=1)),
            monthly_returns=self._return_since(snapshots, now - timedelta(days=30)),
        )

    async def check_funds_safety(self, agent_id: str) -> bool:
        """Positive total, available within total, available above the SOL floor."""
        funds = self._funds.get(agent_id)
        if funds is None:
            return False
        return (
            funds.total_value_sol > 0
            and funds.available_balance <= funds.total_value_sol
            and funds.available_balance >= self._limits.min_sol_balance
        )

    def _store(self, agent_id: str, funds: FundsStatus) -> None:
        self._funds[agent_id] = copy.deepcopy(funds)
        self._value_snapshots.setdefault(agent_id, []).append(
            (self._clock(), funds.total_value_sol)
        )

    def _spent_today(self, agent_id: str) -> float:
        now = self._clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return sum(
            tx.amount
            for tx in self._transactions.get(agent_id, [])
            if tx.timestamp >= start_of_day
        )

    @staticmethod
    def _return_since(
        snapshots: list[tuple[datetime, float]], since: datetime | None
    ) -> float:
        baseline = snapshots[0][1]
        if since is not None:
            for timestamp, value in snapshots:
                if timestamp > since:
                    break
                baseline = value

        latest = snapshots[-1][1]
        if baseline <= 0:
            return 0.0
        return (latest - baseline) / baseline
