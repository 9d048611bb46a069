"""Cruise control API routes."""

import re

from fastapi import APIRouter

from ...app import Application
from ...logging_config import get_logger
from ..responses import ApiResponse, fail, ok

logger = get_logger(__name__)


AGENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}$")
INVALID_AGENT_ID_MESSAGE = "Agent ID must be 1-128 letters, digits or _ . : - characters"


def is_valid_agent_id(agent_id: str | None) -> bool:
    return bool(agent_id) and AGENT_ID_PATTERN.match(agent_id) is not None


def create_cruise_router(app: Application) -> APIRouter:
    """Create cruise control router."""
    router = APIRouter(prefix="/cruise", tags=["cruise"])

    @router.get("/status", response_model=ApiResponse, response_model_exclude_none=True)
    async def get_status():
        """Scheduler running flag and registered agent count."""
        try:
            return ok(app.scheduler.get_status())
        except Exception as e:
            logger.error(f"Error getting cruise status: {e}", exc_info=True)
            return fail(500, "Failed to get cruise status", str(e))

    @router.get("/metrics", response_model=ApiResponse, response_model_exclude_none=True)
    async def get_metrics():
        """Aggregate counters across all agents."""
        try:
            return ok(app.scheduler.get_metrics())
        except Exception as e:
            logger.error(f"Error getting cruise metrics: {e}", exc_info=True)
            return fail(500, "Failed to get cruise metrics", str(e))

    @router.get(
        "/metrics/{agent_id}",
        response_model=ApiResponse,
        response_model_exclude_none=True,
    )
    async def get_agent_metrics(agent_id: str):
        """Per-agent counters."""
        if not is_valid_agent_id(agent_id):
            return fail(400, "Invalid agent ID", INVALID_AGENT_ID_MESSAGE)
        try:
            metrics = app.scheduler.get_agent_metrics(agent_id)
        except Exception as e:
            logger.error(f"Error getting agent metrics: {e}", exc_info=True)
            return fail(500, "Failed to get agent metrics", str(e))

        if metrics is None:
            return fail(404, "Agent not found", f"No metrics found for agent: {agent_id}")
        return ok(metrics)

    @router.post(
        "/agents/{agent_id}/health-check",
        response_model=ApiResponse,
        response_model_exclude_none=True,
    )
    async def perform_health_check(agent_id: str):
        """Force one out-of-cycle health check."""
        if not is_valid_agent_id(agent_id):
            return fail(400, "Invalid agent ID", INVALID_AGENT_ID_MESSAGE)

        logger.info(f"Performing health check for agent: {agent_id}")
        return await _trigger(agent_id, "health check", "trigger_health_check")

    @router.post(
        "/agents/{agent_id}/optimize",
        response_model=ApiResponse,
        response_model_exclude_none=True,
    )
    async def optimize_positions(agent_id: str):
        """Force one out-of-cycle optimization."""
        if not is_valid_agent_id(agent_id):
            return fail(400, "Invalid agent ID", INVALID_AGENT_ID_MESSAGE)

        logger.info(f"Optimizing positions for agent: {agent_id}")
        return await _trigger(agent_id, "optimization", "trigger_optimization")

    async def _trigger(agent_id: str, label: str, method: str):
        try:
            scheduler = app.scheduler
            if not scheduler.is_running:
                return fail(400, "Scheduler not running", f"Cannot run {label} now")
            if scheduler.get_agent(agent_id) is None:
                return fail(404, "Agent not found", f"Agent not registered: {agent_id}")

            if await getattr(scheduler, method)(agent_id):
                return ok(message=f"{label.capitalize()} completed for agent {agent_id}")
            return fail(
                400,
                f"{label.capitalize()} failed",
                f"{label.capitalize()} did not complete for agent {agent_id}",
            )
        except Exception as e:
            logger.error(f"Error running {label} for {agent_id}: {e}", exc_info=True)
            return fail(500, f"Failed to perform {label}", str(e))

    return router
