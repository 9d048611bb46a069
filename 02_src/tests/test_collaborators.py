"""Tests for the funds, risk, scoring and transaction collaborators."""

import json

import httpx
import pytest

from agent_engine.collaborators import (
    FundsRiskController,
    HttpScoringClient,
    HttpTransactionExecutor,
    InMemoryFundsManager,
    RiskThresholds,
)
from agent_engine.errors import TransientCollaboratorError
from agent_engine.models import (
    FundsStatus,
    PoolRecommendation,
    Position,
    RiskLevel,
    TransactionRequest,
    TransactionType,
)


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestInMemoryFundsManager:
    """Tests for InMemoryFundsManager."""

    @pytest.mark.asyncio
    async def test_new_agent_starts_from_wallet(self, clock):
        """Test an unknown agent is seeded from its wallet balance."""
        funds = InMemoryFundsManager(clock=clock)
        funds.set_wallet_balance("wallet-1", 50.0)

        status = await funds.get_funds_status("agent-1", "wallet-1")
        assert status.total_value_sol == 50.0
        assert status.available_balance == 50.0
        assert await funds.get_wallet_balance("unknown") == 0.0

    @pytest.mark.asyncio
    async def test_update_funds_status(self, clock):
        """Test merging changes into the snapshot."""
        funds = InMemoryFundsManager(clock=clock)
        updated = await funds.update_funds_status(
            "agent-1",
            "wallet-1",
            total_value_sol=100.0,
            available_balance=40.0,
            positions=[Position("pool-a", 60.0)],
        )
        assert updated.total_value_sol == 100.0
        status = await funds.get_funds_status("agent-1", "wallet-1")
        assert status.positions == [Position("pool-a", 60.0)]

        with pytest.raises(ValueError):
            await funds.update_funds_status("agent-1", "wallet-1", bogus=1)

    @pytest.mark.asyncio
    async def test_returned_status_is_a_copy(self, clock):
        """Test callers cannot mutate the stored snapshot."""
        funds = InMemoryFundsManager(clock=clock)
        funds.set_wallet_balance("wallet-1", 10.0)
        status = await funds.get_funds_status("agent-1", "wallet-1")
        status.available_balance = 0.0
        assert (await funds.get_funds_status("agent-1", "wallet-1")).available_balance == 10.0

    @pytest.mark.asyncio
    async def test_transaction_limits(self, clock):
        """Test single, daily and minimum-balance limits."""
        funds = InMemoryFundsManager(clock=clock)
        await funds.update_funds_status(
            "agent-1", "wallet-1", total_value_sol=100.0, available_balance=50.0
        )
        add = TransactionType.ADD_LIQUIDITY

        assert await funds.check_transaction_limit("agent-1", 30.0, add) is True
        assert await funds.check_transaction_limit("agent-1", 31.0, add) is False
        assert await funds.check_transaction_limit("agent-1", 0.0, add) is False
        assert await funds.check_transaction_limit("nobody", 1.0, add) is False

        await funds.record_transaction("agent-1", 30.0, add)
        await funds.record_transaction("agent-1", 30.0, add)
        assert await funds.check_transaction_limit("agent-1", 15.0, add) is False
        assert await funds.check_transaction_limit("agent-1", 10.0, add) is True

        # Daily spend resets on a new day
        clock.advance(24 * 3600)
        assert await funds.check_transaction_limit("agent-1", 30.0, add) is True

    @pytest.mark.asyncio
    async def test_minimum_balance_only_for_additions(self, clock):
        """Test the SOL floor applies to additions but not removals."""
        funds = InMemoryFundsManager(clock=clock)
        await funds.update_funds_status(
            "agent-1", "wallet-1", total_value_sol=100.0, available_balance=5.0
        )
        assert (
            await funds.check_transaction_limit("agent-1", 5.0, TransactionType.ADD_LIQUIDITY)
            is False
        )
        assert (
            await funds.check_transaction_limit(
                "agent-1", 5.0, TransactionType.REMOVE_LIQUIDITY
            )
            is True
        )

    @pytest.mark.asyncio
    async def test_record_transaction(self, clock):
        """Test executed transactions are kept."""
        funds = InMemoryFundsManager(clock=clock)
        await funds.record_transaction("agent-1", 2.0, TransactionType.REBALANCE)
        assert funds.get_transactions("agent-1") == [
            (clock(), 2.0, TransactionType.REBALANCE)
        ]

    @pytest.mark.asyncio
    async def test_calculate_returns(self, clock):
        """Test returns against the value at each window start."""
        funds = InMemoryFundsManager(clock=clock)
        funds.set_wallet_balance("wallet-1", 100.0)
        assert (await funds.calculate_returns("agent-1")).total_returns == 0.0

        await funds.get_funds_status("agent-1", "wallet-1")
        clock.advance(2 * 24 * 3600)
        await funds.update_funds_status("agent-1", "wallet-1", total_value_sol=110.0)
        clock.advance(2 * 24 * 3600)
        await funds.update_funds_status("agent-1", "wallet-1", total_value_sol=121.0)

        returns = await funds.calculate_returns("agent-1")
        assert returns.total_returns == pytest.approx(0.21)
        assert returns.daily_returns == pytest.approx(0.1)
        assert returns.weekly_returns == pytest.approx(0.21)

    @pytest.mark.asyncio
    async def test_check_funds_safety(self, clock):
        """Test the consistency check used before additions."""
        funds = InMemoryFundsManager(clock=clock)
        assert await funds.check_funds_safety("agent-1") is False

        await funds.update_funds_status(
            "agent-1", "wallet-1", total_value_sol=10.0, available_balance=5.0
        )
        assert await funds.check_funds_safety("agent-1") is True

        await funds.update_funds_status("agent-1", "wallet-1", available_balance=0.05)
        assert await funds.check_funds_safety("agent-1") is False


class TestFundsRiskController:
    """Tests for FundsRiskController."""

    @pytest.mark.asyncio
    async def test_healthy_portfolio(self, clock):
        """Test a diversified portfolio with idle capital is LOW risk."""
        funds = InMemoryFundsManager(clock=clock)
        await funds.update_funds_status(
            "agent-1",
            "wallet-1",
            total_value_sol=100.0,
            available_balance=40.0,
            positions=[Position("pool-a", 30.0), Position("pool-b", 30.0)],
        )
        assessment = await FundsRiskController(funds).assess_risk("agent-1", "wallet-1")

        assert assessment.level is RiskLevel.LOW
        assert assessment.health_score == 5.0
        assert assessment.warnings == []

    @pytest.mark.asyncio
    async def test_concentrated_and_illiquid(self, clock):
        """Test penalties for low idle capital and a single position."""
        funds = InMemoryFundsManager(clock=clock)
        await funds.update_funds_status(
            "agent-1",
            "wallet-1",
            total_value_sol=100.0,
            available_balance=0.0,
            positions=[Position("pool-a", 100.0)],
        )
        assessment = await FundsRiskController(funds).assess_risk("agent-1", "wallet-1")

        assert assessment.health_score == pytest.approx(2.0)
        assert assessment.level is RiskLevel.MEDIUM
        assert len(assessment.warnings) == 2

    @pytest.mark.asyncio
    async def test_no_capital_is_high_risk(self, clock):
        """Test an empty agent scores zero."""
        funds = InMemoryFundsManager(clock=clock)
        assessment = await FundsRiskController(funds).assess_risk("agent-1", "wallet-1")
        assert assessment.health_score == 0.0
        assert assessment.level is RiskLevel.HIGH

    def test_level_bands(self):
        """Test score to level mapping."""
        controller = FundsRiskController(None, thresholds=RiskThresholds())
        assert controller.level_for(1.5) is RiskLevel.HIGH
        assert controller.level_for(2.5) is RiskLevel.MEDIUM
        assert controller.level_for(2.6) is RiskLevel.LOW

    @pytest.mark.asyncio
    async def test_position_scores_from_scoring(self, clock, mock_scoring):
        """Test per-pool scores are attached and failed lookups skipped."""

        async def lookup(pool_address):
            if pool_address == "pool-b":
                raise TransientCollaboratorError("scoring", "503")
            return PoolRecommendation(pool_address, 3.3)

        mock_scoring.get_pool_recommendations.side_effect = lookup
        funds = InMemoryFundsManager(clock=clock)
        await funds.update_funds_status(
            "agent-1",
            "wallet-1",
            total_value_sol=100.0,
            available_balance=40.0,
            positions=[Position("pool-a", 30.0), Position("pool-b", 30.0)],
        )

        assessment = await FundsRiskController(funds, mock_scoring).assess_risk(
            "agent-1", "wallet-1"
        )
        assert assessment.position_scores == {"pool-a": 3.3}


class TestHttpScoringClient:
    """Tests for HttpScoringClient."""

    @pytest.mark.asyncio
    async def test_pool_recommendation(self):
        """Test parsing an enveloped recommendation."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/pools/pool-a/recommendation"
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {
                        "health_score": 4.2,
                        "action": "rebalance",
                        "price": 1.5,
                        "target_bins": [{"bin_id": 7, "percentage": 1.0}],
                    },
                },
            )

        async with client_for(handler) as http:
            scoring = HttpScoringClient("http://scoring/", client=http)
            rec = await scoring.get_pool_recommendations("pool-a")

        assert rec.pool_address == "pool-a"
        assert rec.health_score == 4.2
        assert rec.action == "rebalance"
        assert rec.target_bins[0].bin_id == 7

    @pytest.mark.asyncio
    async def test_unknown_pool(self):
        """Test a 404 means no recommendation."""
        async with client_for(lambda request: httpx.Response(404)) as http:
            scoring = HttpScoringClient("http://scoring", client=http)
            assert await scoring.get_pool_recommendations("pool-x") is None

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        """Test 5xx raises TransientCollaboratorError."""
        async with client_for(lambda request: httpx.Response(503)) as http:
            scoring = HttpScoringClient("http://scoring", client=http)
            with pytest.raises(TransientCollaboratorError):
                await scoring.get_pool_recommendations("pool-a")

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self):
        """Test connection failures raise TransientCollaboratorError."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with client_for(handler) as http:
            scoring = HttpScoringClient("http://scoring", client=http)
            with pytest.raises(TransientCollaboratorError):
                await scoring.get_candidate_pools(["dlmm"], 5)

    @pytest.mark.asyncio
    async def test_candidate_pools(self):
        """Test query parameters and skipping malformed entries."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.url.params)
            return httpx.Response(
                200,
                json=[
                    {"pool_address": "pool-a", "health_score": 4.5, "apy": 0.3},
                    {"health_score": 4.0},
                ],
            )

        async with client_for(handler) as http:
            scoring = HttpScoringClient("http://scoring", client=http)
            pools = await scoring.get_candidate_pools(["dlmm", "amm"], 5)

        assert seen == {"limit": "5", "types": "dlmm,amm"}
        assert [p.pool_address for p in pools] == ["pool-a"]


class TestHttpTransactionExecutor:
    """Tests for HttpTransactionExecutor."""

    @staticmethod
    def request() -> TransactionRequest:
        return TransactionRequest(
            agent_id="agent-1",
            type=TransactionType.ADD_LIQUIDITY,
            pool_address="pool-a",
            amount_sol=5.0,
            wallet_address="wallet-1",
        )

    @pytest.mark.asyncio
    async def test_success(self):
        """Test the request body and a successful result."""
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "message": "sig-123"})

        async with client_for(handler) as http:
            executor = HttpTransactionExecutor("http://tx", client=http)
            result = await executor.execute(self.request())

        assert result.success is True
        assert result.message == "sig-123"
        assert bodies[0]["type"] == "add_liquidity"
        assert bodies[0]["amount_sol"] == 5.0

    @pytest.mark.asyncio
    async def test_rejected(self):
        """Test a 4xx is a failed transaction, not an exception."""
        async with client_for(
            lambda request: httpx.Response(400, json={"error": "slippage exceeded"})
        ) as http:
            executor = HttpTransactionExecutor("http://tx", client=http)
            result = await executor.execute(self.request())

        assert result.success is False
        assert result.message == "slippage exceeded"

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        """Test 5xx raises TransientCollaboratorError."""
        async with client_for(lambda request: httpx.Response(502)) as http:
            executor = HttpTransactionExecutor("http://tx", client=http)
            with pytest.raises(TransientCollaboratorError):
                await executor.execute(self.request())
