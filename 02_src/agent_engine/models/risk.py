"""Risk assessment data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class RiskLevel(str, Enum):
    """Overall risk band for an agent."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class RiskAssessment:
    """Risk posture produced by the risk collaborator each cycle."""

    level: RiskLevel
    health_score: float = 5.0  # 0 (worst) .. 5 (best)
    position_scores: dict[str, float] = field(default_factory=dict)  # pool -> score
    warnings: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
