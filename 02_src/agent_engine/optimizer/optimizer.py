"""PositionOptimizer implementation."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

from ..errors import PlanComputationError
from ..logging_config import get_logger
from ..models import (
    AddAction,
    AdjustAction,
    AgentConfig,
    FundsStatus,
    OptimizationPlan,
    PoolRecommendation,
    Position,
    RemoveAction,
    RiskAssessment,
    RiskLevel,
)
from ..collaborators.scoring import IScoringClient

logger = get_logger(__name__)


# Per-position score below which a position is unhealthy, by risk tolerance.
# Below half the threshold the position is exited in full.
UNHEALTHY_THRESHOLDS: dict[RiskLevel, float] = {
    RiskLevel.LOW: 3.5,
    RiskLevel.MEDIUM: 3.0,
    RiskLevel.HIGH: 2.0,
}

DEFAULT_REDUCTION = 0.3

RISK_WEIGHT = 0.6
YIELD_WEIGHT = 0.4
ADJUST_WEIGHT = 0.2

_EPSILON = 1e-9


@dataclass
class _PriceBaseline:
    price: float
    recorded_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PositionOptimizer:
    """
    Turns an agent's funds, risk assessment and pool recommendations into
    an OptimizationPlan: removals first, then adjustments, then additions.

    The only state kept between calls is the per-pool price baseline used
    to detect significant moves; it expires after `price_cache_ttl_s`.
    """

    def __init__(
        self,
        scoring: IScoringClient,
        min_improvement: float = 0.01,
        price_cache_ttl_s: float = 1800.0,
        lookup_timeout_s: float = 10.0,
        candidate_limit: int = 20,
        clock: Callable[[], datetime] | None = None,
    ):
        self._scoring = scoring
        self._min_improvement = min_improvement
        self._price_cache_ttl_s = price_cache_ttl_s
        self._lookup_timeout_s = lookup_timeout_s
        self._candidate_limit = candidate_limit
        self._clock = clock or _utcnow

        # (agent_id, pool_address) -> baseline / last observed change
        self._price_history_cache: dict[tuple[str, str], _PriceBaseline] = {}
        self._recent_price_changes: dict[tuple[str, str], tuple[float, datetime]] = {}

    async def calculate_optimal_positions(
        self,
        agent_id: str,
        funds: FundsStatus,
        config: AgentConfig,
        assessment: RiskAssessment | None = None,
        allow_additions: bool = True,
        exit_all: bool = False,
    ) -> OptimizationPlan | None:
        """
        Build the plan for one agent.

        Args:
            agent_id: Agent the plan is for
            funds: Latest funds snapshot
            config: Agent config (thresholds, sizes, pool filters)
            assessment: Latest risk assessment, if any
            allow_additions: False while the agent is WAITING
            exit_all: Fully exit every position and plan nothing else

        Returns:
            The plan, or None when nothing clears the minimum improvement

        Raises:
            PlanComputationError: If the funds aggregates are inconsistent
        """
        self._validate(agent_id, funds)
        positions = [p for p in funds.positions if p.value_sol > 0]

        removes: list[RemoveAction] = []
        adjusts: list[AdjustAction] = []
        adds: list[AddAction] = []

        if exit_all:
            for position in sorted(positions, key=lambda p: -p.value_sol):
                removes.extend(
                    self._chunked_removal(
                        position, position.value_sol, True, config.max_position_size
                    )
                )
        else:
            recommendations = await self._lookup_all(p.pool_address for p in positions)

            removes = await self.identify_unhealthy_positions(
                positions,
                assessment,
                risk_tolerance=config.risk_level,
                recommendations=recommendations,
                max_action_size=config.max_position_size,
            )
            reducing = {r.pool_address for r in removes}

            adjusts = await self.check_for_significant_changes(
                agent_id,
                [p for p in positions if p.pool_address not in reducing],
                threshold=config.rebalance_threshold,
                recommendations=recommendations,
            )

            if allow_additions:
                exiting = {r.pool_address for r in removes if r.full_exit}
                budget = max(0.0, funds.available_balance - config.min_reserve_sol)
                adds = await self.identify_addition_actions(
                    agent_id,
                    held_pools={p.pool_address for p in positions},
                    budget=budget,
                    config=config,
                    slots=config.max_positions - len(positions) + len(exiting),
                )

        actions = [*removes, *adjusts, *adds]
        if not actions:
            logger.debug("No actions for agent %s", agent_id)
            return None

        plan = OptimizationPlan(
            agent_id=agent_id,
            total_value_sol=funds.total_value_sol,
            actions=actions,
            expected_health_improvement=self._expected_improvement(
                funds, positions, removes, adjusts, adds
            ),
        )

        if plan.expected_health_improvement < self._min_improvement:
            logger.info(
                "Plan for agent %s below minimum improvement (%.4f < %.4f)",
                agent_id,
                plan.expected_health_improvement,
                self._min_improvement,
                extra={"context": {"agent_id": agent_id}},
            )
            return None

        logger.info(
            "Optimization plan for agent %s: %d remove, %d adjust, %d add, "
            "expected improvement %.3f",
            agent_id,
            len(removes),
            len(adjusts),
            len(adds),
            plan.expected_health_improvement,
            extra={"context": {"agent_id": agent_id}},
        )
        return plan

    async def identify_unhealthy_positions(
        self,
        positions: list[Position],
        assessment: RiskAssessment | None,
        risk_tolerance: RiskLevel = RiskLevel.MEDIUM,
        recommendations: dict[str, PoolRecommendation] | None = None,
        max_action_size: float | None = None,
    ) -> list[RemoveAction]:
        """
        Positions scoring below the tolerance threshold become removals.

        Per-position scores come from the assessment, falling back to the
        scoring service. Lowest score first; equal scores remove the larger
        position first.
        """
        position_scores = assessment.position_scores if assessment else {}
        threshold = UNHEALTHY_THRESHOLDS[risk_tolerance]

        if recommendations is None:
            recommendations = await self._lookup_all(p.pool_address for p in positions)

        flagged: list[tuple[float, Position, float, bool]] = []
        for position in positions:
            if position.value_sol <= 0:
                continue

            recommendation = recommendations.get(position.pool_address)
            if position.pool_address in position_scores:
                score = position_scores[position.pool_address]
            elif recommendation is not None:
                score = recommendation.health_score
            else:
                continue

            reduce_advised = recommendation is not None and recommendation.action == "reduce"
            if score >= threshold and not reduce_advised:
                continue

            full_exit = score < threshold / 2
            if full_exit:
                amount = position.value_sol
            else:
                fraction = DEFAULT_REDUCTION
                if recommendation and recommendation.adjustment_percentage:
                    fraction = min(1.0, max(0.0, recommendation.adjustment_percentage))
                amount = position.value_sol * fraction
                full_exit = fraction >= 1.0

            if amount <= 0:
                continue
            flagged.append((score, position, amount, full_exit))

        flagged.sort(key=lambda item: (item[0], -item[1].value_sol))

        actions: list[RemoveAction] = []
        for _, position, amount, full_exit in flagged:
            actions.extend(
                self._chunked_removal(position, amount, full_exit, max_action_size)
            )
        return actions

    async def check_for_significant_changes(
        self,
        agent_id: str,
        positions: list[Position],
        threshold: float = 0.05,
        recommendations: dict[str, PoolRecommendation] | None = None,
    ) -> list[AdjustAction]:
        """Positions whose pool price moved beyond `threshold` become adjustments."""
        if recommendations is None:
            recommendations = await self._lookup_all(p.pool_address for p in positions)

        now = self._clock()
        actions: list[AdjustAction] = []
        for position in positions:
            recommendation = recommendations.get(position.pool_address)
            if recommendation is None:
                continue

            key = (agent_id, position.pool_address)
            change = self._price_change(key, recommendation, now)
            self._recent_price_changes[key] = (change, now)

            rebalance_advised = (
                recommendation.action == "rebalance" and bool(recommendation.target_bins)
            )
            if abs(change) <= threshold and not rebalance_advised:
                continue

            logger.info(
                "Significant change in pool %s for agent %s: price change %.4f",
                position.pool_address,
                agent_id,
                change,
                extra={"context": {"agent_id": agent_id}},
            )
            actions.append(
                AdjustAction(
                    pool_address=position.pool_address,
                    current_amount_sol=position.value_sol,
                    target_amount_sol=position.value_sol,
                    target_bins=recommendation.target_bins,
                )
            )
            # Re-centered: later moves are measured from here
            if recommendation.price is not None:
                self._price_history_cache[key] = _PriceBaseline(recommendation.price, now)

        return actions

    async def identify_addition_actions(
        self,
        agent_id: str,
        held_pools: set[str],
        budget: float,
        config: AgentConfig,
        slots: int,
    ) -> list[AddAction]:
        """
        Spread `budget` over the best eligible pools, at most
        `config.max_position_size` each and `slots` new positions.
        """
        if budget < config.min_position_size or slots <= 0:
            return []

        try:
            candidates = await asyncio.wait_for(
                self._scoring.get_candidate_pools(
                    config.pool_types, self._candidate_limit
                ),
                timeout=self._lookup_timeout_s,
            )
        except Exception as e:
            logger.warning(
                "Candidate pool lookup failed for agent %s: %s",
                agent_id,
                e,
                extra={"context": {"agent_id": agent_id}},
            )
            return []

        threshold = UNHEALTHY_THRESHOLDS[config.risk_level]
        eligible = [
            c
            for c in candidates
            if c.pool_address not in held_pools
            and (not config.pool_types or c.pool_type in config.pool_types)
            and c.health_score >= threshold
            and c.action != "reduce"
            and (config.target_apy <= 0 or c.apy <= 0 or c.apy >= config.target_apy)
        ]
        # Higher recommendation first; address keeps equal scores deterministic
        eligible.sort(key=lambda c: (-c.health_score, c.pool_address))

        actions: list[AddAction] = []
        remaining = budget
        seen: set[str] = set()
        for candidate in eligible:
            if len(actions) >= slots:
                break
            if candidate.pool_address in seen:
                continue
            amount = min(config.max_position_size, remaining)
            if amount < config.min_position_size:
                break
            actions.append(
                AddAction(
                    pool_address=candidate.pool_address,
                    amount_sol=amount,
                    target_bins=candidate.target_bins,
                )
            )
            seen.add(candidate.pool_address)
            remaining -= amount

        return actions

    def get_recent_price_change(self, agent_id: str, pool_address: str) -> float | None:
        """Last observed change for a pool, if still within the cache TTL."""
        entry = self._recent_price_changes.get((agent_id, pool_address))
        if entry is None:
            return None
        change, observed_at = entry
        if (self._clock() - observed_at).total_seconds() > self._price_cache_ttl_s:
            return None
        return change

    def forget_agent(self, agent_id: str) -> None:
        """Drop cached prices for an unregistered agent."""
        for cache in (self._price_history_cache, self._recent_price_changes):
            for key in [k for k in cache if k[0] == agent_id]:
                del cache[key]

    # Internals

    @staticmethod
    def _validate(agent_id: str, funds: FundsStatus) -> None:
        if funds.total_value_sol < 0 or funds.available_balance < 0:
            raise PlanComputationError(agent_id, "negative funds aggregate")
        if funds.reserved_balance < 0:
            raise PlanComputationError(agent_id, "negative reserved balance")
        if any(p.value_sol < 0 for p in funds.positions):
            raise PlanComputationError(agent_id, "negative position value")
        if funds.available_balance > funds.total_value_sol + _EPSILON:
            raise PlanComputationError(
                agent_id,
                f"available balance {funds.available_balance} exceeds "
                f"total value {funds.total_value_sol}",
            )

    async def _lookup(self, pool_address: str) -> PoolRecommendation | None:
        try:
            return await asyncio.wait_for(
                self._scoring.get_pool_recommendations(pool_address),
                timeout=self._lookup_timeout_s,
            )
        except Exception as e:
            # One failed lookup only drops that pool from this plan
            logger.warning("Recommendation lookup failed for pool %s: %s", pool_address, e)
            return None

    async def _lookup_all(
        self, pool_addresses: Iterable[str]
    ) -> dict[str, PoolRecommendation]:
        pools = list(dict.fromkeys(pool_addresses))
        if not pools:
            return {}
        results = await asyncio.gather(*[self._lookup(pool) for pool in pools])
        return {
            pool: recommendation
            for pool, recommendation in zip(pools, results)
            if recommendation is not None
        }

    def _price_change(
        self,
        key: tuple[str, str],
        recommendation: PoolRecommendation,
        now: datetime,
    ) -> float:
        if recommendation.price is None:
            return recommendation.price_change_24h

        baseline = self._price_history_cache.get(key)
        expired = (
            baseline is not None
            and (now - baseline.recorded_at).total_seconds() > self._price_cache_ttl_s
        )
        if baseline is None or expired or baseline.price <= 0:
            self._price_history_cache[key] = _PriceBaseline(recommendation.price, now)
            return recommendation.price_change_24h

        return (recommendation.price - baseline.price) / baseline.price

    @staticmethod
    def _chunked_removal(
        position: Position,
        amount: float,
        full_exit: bool,
        max_action_size: float | None,
    ) -> list[RemoveAction]:
        if not max_action_size or amount <= max_action_size:
            return [
                RemoveAction(
                    pool_address=position.pool_address,
                    amount_sol=amount,
                    current_amount_sol=position.value_sol,
                    full_exit=full_exit,
                )
            ]

        # No single withdrawal may exceed the per-action size cap
        actions = []
        remaining = amount
        while remaining > _EPSILON:
            chunk = min(max_action_size, remaining)
            remaining -= chunk
            actions.append(
                RemoveAction(
                    pool_address=position.pool_address,
                    amount_sol=chunk,
                    current_amount_sol=position.value_sol,
                    full_exit=full_exit and remaining <= _EPSILON,
                )
            )
        return actions

    @staticmethod
    def _expected_improvement(
        funds: FundsStatus,
        positions: list[Position],
        removes: list[RemoveAction],
        adjusts: list[AdjustAction],
        adds: list[AddAction],
    ) -> float:
        total = funds.total_value_sol
        if total <= 0:
            return 0.0

        freed_risk = sum(r.amount_sol for r in removes) / total
        added_yield = sum(a.amount_sol for a in adds) / total
        adjusted = len(adjusts) / max(1, len(positions))

        score = (
            RISK_WEIGHT * freed_risk
            + YIELD_WEIGHT * added_yield
            + ADJUST_WEIGHT * adjusted
        )
        return round(min(1.0, score), 6)
