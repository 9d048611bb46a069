"""Risk collaborator: derives a RiskAssessment from an agent's funds."""

from dataclasses import dataclass
from typing import Protocol

from ..errors import TransientCollaboratorError
from ..logging_config import get_logger
from ..models import FundsStatus, RiskAssessment, RiskLevel
from .funds import IFundsManager
from .scoring import IScoringClient

logger = get_logger(__name__)


class IRiskController(Protocol):
    """Produces the risk posture of one agent."""

    async def assess_risk(self, agent_id: str, wallet_address: str) -> RiskAssessment:
        """Assess the agent's current risk."""
        ...


@dataclass(frozen=True)
class RiskThresholds:
    """Health-score band edges on the 0..5 scale."""

    high: float = 1.5
    medium: float = 2.5
    min_available_ratio: float = 0.1


class FundsRiskController:
    """
    Scores an agent's health from its idle-capital ratio and position
    concentration, and attaches per-pool scores from the scoring service.
    """

    def __init__(
        self,
        funds_manager: IFundsManager,
        scoring: IScoringClient | None = None,
        thresholds: RiskThresholds | None = None,
    ):
        self._funds = funds_manager
        self._scoring = scoring
        self._thresholds = thresholds or RiskThresholds()

    def level_for(self, health_score: float) -> RiskLevel:
        if health_score <= self._thresholds.high:
            return RiskLevel.HIGH
        if health_score <= self._thresholds.medium:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    async def assess_risk(self, agent_id: str, wallet_address: str) -> RiskAssessment:
        """Assess the agent's current risk."""
        funds = await self._funds.get_funds_status(agent_id, wallet_address)
        health_score, warnings = self._score(funds)
        position_scores = await self._position_scores(funds)

        assessment = RiskAssessment(
            level=self.level_for(health_score),
            health_score=health_score,
            position_scores=position_scores,
            warnings=warnings,
        )
        logger.info(
            "Risk assessment for agent %s: health score %.2f, level %s",
            agent_id,
            health_score,
            assessment.level.value,
            extra={"context": {"agent_id": agent_id}},
        )
        return assessment

    def _score(self, funds: FundsStatus) -> tuple[float, list[str]]:
        score = 5.0
        warnings: list[str] = []

        if funds.total_value_sol <= 0:
            return 0.0, ["no capital under management"]

        ratio = funds.available_balance / funds.total_value_sol
        if ratio < self._thresholds.min_available_ratio:
            # One point per 0.05 below the minimum ratio
            score -= (self._thresholds.min_available_ratio - ratio) * 20
            warnings.append(f"available balance ratio {ratio:.3f} below minimum")

        if len(funds.positions) == 1:
            score -= 1.0
            warnings.append("capital concentrated in a single position")

        return max(0.0, min(5.0, score)), warnings

    async def _position_scores(self, funds: FundsStatus) -> dict[str, float]:
        if not self._scoring:
            return {}

        scores: dict[str, float] = {}
        for position in funds.positions:
            try:
                recommendation = await self._scoring.get_pool_recommendations(
                    position.pool_address
                )
            except TransientCollaboratorError as e:
                logger.warning(
                    "No score for pool %s: %s", position.pool_address, e
                )
                continue
            if recommendation:
                scores[position.pool_address] = recommendation.health_score
        return scores
