"""Application bootstrap and lifecycle management."""

import os
from typing import Protocol

from .collaborators import (
    FundsRiskController,
    HttpScoringClient,
    HttpTransactionExecutor,
    IFundsManager,
    InMemoryFundsManager,
    IRiskController,
    IScoringClient,
    ITransactionExecutor,
)
from .config import CruiseSettings, resolve_db_path
from .logging_config import get_logger
from .models import AgentConfig, AgentState
from .optimizer import PositionOptimizer
from .scheduler import CruiseScheduler
from .state_machine import AgentStateMachine
from .storage import IStorage, Storage

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def add_agent(
        self, config: AgentConfig, initialize: bool = True
    ) -> AgentStateMachine:
        """Persist a config and register its agent with the scheduler."""
        ...

    async def remove_agent(self, agent_id: str) -> bool:
        """Unregister an agent and forget its config and saved state."""
        ...


class Application:
    """Main application bootstrap."""

    def __init__(
        self,
        db_path: str | None = None,
        settings: CruiseSettings | None = None,
        funds_manager: IFundsManager | None = None,
        risk_controller: IRiskController | None = None,
        scoring: IScoringClient | None = None,
        executor: ITransactionExecutor | None = None,
    ):
        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._settings = settings or CruiseSettings.from_env()

        # Injected collaborators win over the defaults built in start()
        self._funds_override = funds_manager
        self._risk_override = risk_controller
        self._scoring_override = scoring
        self._executor_override = executor

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._scoring: IScoringClient | None = None
        self._executor: ITransactionExecutor | None = None
        self._funds: IFundsManager | None = None
        self._risk: IRiskController | None = None
        self._optimizer: PositionOptimizer | None = None
        self._scheduler: CruiseScheduler | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 2. External collaborators
        self._scoring = self._scoring_override or HttpScoringClient(
            self._settings.scoring_service_url, timeout=self._settings.call_timeout_s
        )
        self._executor = self._executor_override or HttpTransactionExecutor(
            self._settings.transaction_service_url,
            timeout=self._settings.call_timeout_s,
        )
        self._funds = self._funds_override or InMemoryFundsManager()
        self._risk = self._risk_override or FundsRiskController(
            self._funds, self._scoring
        )
        logger.info("Collaborators initialized")

        # 3. PositionOptimizer (depends on scoring)
        self._optimizer = PositionOptimizer(
            self._scoring,
            min_improvement=self._settings.min_improvement,
            price_cache_ttl_s=self._settings.price_cache_ttl_s,
            lookup_timeout_s=self._settings.call_timeout_s,
        )

        # 4. CruiseScheduler (depends on everything above)
        self._scheduler = CruiseScheduler(
            optimizer=self._optimizer,
            funds_manager=self._funds,
            risk_controller=self._risk,
            executor=self._executor,
            persistence=self._storage,
            settings=self._settings,
        )

        # 5. Re-register known agents; the scheduler resumes their saved state
        configs = await self._storage.get_agent_configs()
        for config in configs:
            await self._scheduler.register_agent(config.id, self._build_machine(config))
        await self._scheduler.start()

        for machine in self._scheduler.list_agents():
            if machine.state is AgentState.IDLE:
                await machine.initialize()

        logger.info("All components initialized successfully (%d agents)", len(configs))

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._scheduler:
            await self._scheduler.stop()
            logger.info("Scheduler stopped")
        if self._executor and not self._executor_override:
            await self._executor.close()
        if self._scoring and not self._scoring_override:
            await self._scoring.close()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def add_agent(
        self, config: AgentConfig, initialize: bool = True
    ) -> AgentStateMachine:
        """Persist a config and register its agent, resuming any saved state."""
        storage = self.storage
        scheduler = self.scheduler

        await storage.save_agent_config(config)
        machine = self._build_machine(config)

        saved = await storage.load_state(config.id)
        if saved is not None:
            await machine.restore(saved)
        elif initialize:
            await machine.initialize()

        await scheduler.register_agent(config.id, machine)
        return machine

    async def remove_agent(self, agent_id: str) -> bool:
        """Unregister an agent and forget its config and saved state."""
        removed = await self.scheduler.unregister_agent(agent_id)
        if removed:
            await self.storage.delete_agent_config(agent_id)
            await self.storage.delete_state(agent_id)
        return removed

    def _build_machine(self, config: AgentConfig) -> AgentStateMachine:
        return AgentStateMachine(
            config,
            persistence=self.storage,
            settings=self._settings.state_machine,
        )

    @property
    def settings(self) -> CruiseSettings:
        return self._settings

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def scheduler(self) -> CruiseScheduler:
        """Get scheduler instance."""
        if not self._scheduler:
            raise RuntimeError("Application not started")
        return self._scheduler

    @property
    def funds_manager(self) -> IFundsManager:
        """Get funds manager instance."""
        if not self._funds:
            raise RuntimeError("Application not started")
        return self._funds
