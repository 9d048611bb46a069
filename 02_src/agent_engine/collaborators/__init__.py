"""External collaborator ports and reference implementations."""

from .executor import HttpTransactionExecutor, ITransactionExecutor
from .funds import IFundsManager, InMemoryFundsManager, TransactionLimits
from .risk import FundsRiskController, IRiskController, RiskThresholds
from .scoring import HttpScoringClient, IScoringClient

__all__ = [
    "FundsRiskController",
    "HttpScoringClient",
    "HttpTransactionExecutor",
    "IFundsManager",
    "IRiskController",
    "IScoringClient",
    "ITransactionExecutor",
    "InMemoryFundsManager",
    "RiskThresholds",
    "TransactionLimits",
]
