"""Agent registry API routes."""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ...app import Application
from ...logging_config import get_logger
from ...models import AgentConfig, AgentEvent, RiskLevel
from ...state_machine import AgentStateMachine
from ..responses import ApiResponse, fail, ok
from .cruise import INVALID_AGENT_ID_MESSAGE, is_valid_agent_id

logger = get_logger(__name__)


class AgentConfigRequest(BaseModel):
    """Request model for registering an agent."""

    id: str
    name: str = ""
    wallet_address: str = ""
    risk_level: RiskLevel = RiskLevel.MEDIUM
    min_position_size: float = Field(0.1, ge=0)
    max_position_size: float = Field(10.0, gt=0)
    target_apy: float = Field(0.0, ge=0)
    max_slippage: float = Field(0.01, ge=0, le=1)
    rebalance_threshold: float = Field(0.05, ge=0)
    pool_types: list[str] = Field(default_factory=list)
    max_positions: int = Field(5, ge=1)
    min_reserve_sol: float = Field(0.1, ge=0)
    initialize: bool = True

    def to_config(self) -> AgentConfig:
        return AgentConfig(
            id=self.id,
            name=self.name,
            wallet_address=self.wallet_address,
            risk_level=self.risk_level,
            min_position_size=self.min_position_size,
            max_position_size=self.max_position_size,
            target_apy=self.target_apy,
            max_slippage=self.max_slippage,
            rebalance_threshold=self.rebalance_threshold,
            pool_types=tuple(self.pool_types),
            max_positions=self.max_positions,
            min_reserve_sol=self.min_reserve_sol,
        )


class AgentEventRequest(BaseModel):
    """Request model for an operator event."""

    event: AgentEvent


def _agent_summary(machine: AgentStateMachine) -> dict:
    return {
        "agent_id": machine.agent_id,
        "name": machine.config.name,
        "state": machine.state.value,
    }


def _agent_detail(machine: AgentStateMachine) -> dict:
    return {
        "config": machine.config.to_dict(),
        "status": machine.get_status().to_dict(),
        "state_duration_s": round(machine.get_current_state_duration(), 3),
        "state_history": [
            {"state": r.state.value, "timestamp": r.timestamp.isoformat()}
            for r in machine.get_state_history()
        ],
        "risk_history": [
            {
                "level": r.assessment.level.value,
                "health_score": r.assessment.health_score,
                "warnings": r.assessment.warnings,
                "timestamp": r.timestamp.isoformat(),
            }
            for r in machine.get_risk_history()
        ],
    }


def create_agents_router(app: Application) -> APIRouter:
    """Create agent registry router."""
    router = APIRouter(prefix="/cruise/agents", tags=["agents"])

    @router.get("", response_model=ApiResponse, response_model_exclude_none=True)
    async def list_agents():
        """Registered agents with their current state."""
        try:
            machines = app.scheduler.list_agents()
            return ok([_agent_summary(m) for m in machines])
        except Exception as e:
            logger.error(f"Error listing agents: {e}", exc_info=True)
            return fail(500, "Failed to list agents", str(e))

    @router.post(
        "",
        status_code=201,
        response_model=ApiResponse,
        response_model_exclude_none=True,
    )
    async def register_agent(request: AgentConfigRequest):
        """Register (or re-register) an agent."""
        if not is_valid_agent_id(request.id):
            return fail(400, "Invalid agent ID", INVALID_AGENT_ID_MESSAGE)
        if request.min_position_size > request.max_position_size:
            return fail(
                400,
                "Invalid agent config",
                "min_position_size must not exceed max_position_size",
            )

        try:
            machine = await app.add_agent(request.to_config(), initialize=request.initialize)
        except Exception as e:
            logger.error(f"Error registering agent {request.id}: {e}", exc_info=True)
            return fail(500, "Failed to register agent", str(e))

        return ok(_agent_summary(machine), message=f"Agent {request.id} registered")

    @router.get("/{agent_id}", response_model=ApiResponse, response_model_exclude_none=True)
    async def get_agent(agent_id: str):
        """Status, config and histories of one agent."""
        if not is_valid_agent_id(agent_id):
            return fail(400, "Invalid agent ID", INVALID_AGENT_ID_MESSAGE)
        try:
            machine = app.scheduler.get_agent(agent_id)
        except Exception as e:
            logger.error(f"Error getting agent {agent_id}: {e}", exc_info=True)
            return fail(500, "Failed to get agent", str(e))

        if machine is None:
            return fail(404, "Agent not found", f"Agent not registered: {agent_id}")
        return ok(_agent_detail(machine))

    @router.delete("/{agent_id}", response_model=ApiResponse, response_model_exclude_none=True)
    async def unregister_agent(agent_id: str):
        """Unregister an agent and forget its saved state."""
        if not is_valid_agent_id(agent_id):
            return fail(400, "Invalid agent ID", INVALID_AGENT_ID_MESSAGE)
        try:
            removed = await app.remove_agent(agent_id)
        except Exception as e:
            logger.error(f"Error unregistering agent {agent_id}: {e}", exc_info=True)
            return fail(500, "Failed to unregister agent", str(e))

        if not removed:
            return fail(404, "Agent not found", f"Agent not registered: {agent_id}")
        return ok(message=f"Agent {agent_id} unregistered")

    @router.post(
        "/{agent_id}/events",
        response_model=ApiResponse,
        response_model_exclude_none=True,
    )
    async def send_event(agent_id: str, request: AgentEventRequest):
        """Apply an operator event (pause, resume, emergency_exit, stop, ...)."""
        if not is_valid_agent_id(agent_id):
            return fail(400, "Invalid agent ID", INVALID_AGENT_ID_MESSAGE)
        try:
            scheduler = app.scheduler
            machine = scheduler.get_agent(agent_id)
            if machine is None:
                return fail(404, "Agent not found", f"Agent not registered: {agent_id}")

            if not await scheduler.apply_event(agent_id, request.event):
                return fail(
                    400,
                    "Event rejected",
                    f"{request.event.value} not applicable in state "
                    f"{machine.state.value} or agent busy",
                )
            return ok(_agent_summary(machine))
        except Exception as e:
            logger.error(f"Error applying event to {agent_id}: {e}", exc_info=True)
            return fail(500, "Failed to apply event", str(e))

    return router
