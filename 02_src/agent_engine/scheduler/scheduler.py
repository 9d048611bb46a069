"""CruiseScheduler implementation."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Protocol, TypeVar

from ..collaborators import (
    IFundsManager,
    IRiskController,
    ITransactionExecutor,
)
from ..config import CruiseSettings
from ..errors import TransientCollaboratorError
from ..logging_config import get_logger
from ..models import (
    ActionType,
    AddAction,
    AdjustAction,
    AgentEvent,
    AgentState,
    AgentStatus,
    OptimizationAction,
    OptimizationPlan,
    RemoveAction,
    RiskAssessment,
    TransactionRequest,
    TransactionType,
)
from ..optimizer import PositionOptimizer
from ..state_machine import AgentStateMachine, StateChangeListener
from ..storage import IStatePersistence
from .events import (
    CycleAbandoned,
    CycleSkipped,
    HealthCheckFinished,
    OptimizationFinished,
    StateChanged,
)
from .guard import ReentrancyGuard
from .metrics import CruiseMetrics

logger = get_logger(__name__)

T = TypeVar("T")


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


OPTIMIZABLE_STATES = (AgentState.RUNNING, AgentState.WAITING)


class ICruiseScheduler(Protocol):
    """Periodic health-check and optimization loop over registered agents."""

    async def start(self) -> None:
        """Resume saved agent states and start the tick loop."""
        ...

    async def stop(self) -> None:
        """Drain in-flight cycles and stop the tick loop."""
        ...

    async def trigger_health_check(self, agent_id: str) -> bool:
        """Run one out-of-cycle health check."""
        ...

    async def trigger_optimization(self, agent_id: str) -> bool:
        """Run one out-of-cycle optimization."""
        ...


@dataclass
class _AgentEntry:
    state_machine: AgentStateMachine
    listener: StateChangeListener
    last_cycle_time: datetime | None = None
    last_assessment: RiskAssessment | None = None


@dataclass
class _ActionOutcome:
    executed: bool
    success: bool
    message: str = ""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CruiseScheduler:
    """
    Owns the agent registry and the tick loop.

    Every tick starts one cycle per registered agent (health check, then
    optimization when the agent is RUNNING or WAITING). Cycles run
    concurrently up to `max_concurrent_cycles`; a cycle for an agent that
    is still busy with its previous one is skipped.
    """

    def __init__(
        self,
        optimizer: PositionOptimizer,
        funds_manager: IFundsManager,
        risk_controller: IRiskController,
        executor: ITransactionExecutor,
        persistence: IStatePersistence,
        settings: CruiseSettings | None = None,
        guard: ReentrancyGuard | None = None,
        metrics: CruiseMetrics | None = None,
    ):
        self._optimizer = optimizer
        self._funds = funds_manager
        self._risk = risk_controller
        self._executor = executor
        self._persistence = persistence
        self._settings = settings or CruiseSettings()
        self._guard = guard or ReentrancyGuard()
        self._metrics = metrics or CruiseMetrics()

        self._agents: dict[str, _AgentEntry] = {}
        self._registry_lock = asyncio.Lock()
        self._pool = asyncio.Semaphore(max(1, self._settings.max_concurrent_cycles))
        self._inflight: dict[asyncio.Task, str] = {}

        self._state = SchedulerState.STOPPED
        self._task: asyncio.Task | None = None

    # Introspection

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    @property
    def metrics(self) -> CruiseMetrics:
        return self._metrics

    def get_agent(self, agent_id: str) -> AgentStateMachine | None:
        entry = self._agents.get(agent_id)
        return entry.state_machine if entry else None

    def list_agents(self) -> list[AgentStateMachine]:
        return [entry.state_machine for entry in list(self._agents.values())]

    def get_status(self) -> dict:
        return {"is_running": self.is_running, "agent_count": len(self._agents)}

    def get_metrics(self) -> dict:
        """Aggregate counters across all agents."""
        metrics = self._metrics.get_metrics()
        machines = self.list_agents()
        metrics.update(
            {
                "is_running": self.is_running,
                "agent_count": len(machines),
                "persistence_failures": sum(m.persistence_failures for m in machines),
                "cycles_in_flight": len(self._inflight),
            }
        )
        return metrics

    def get_agent_metrics(self, agent_id: str) -> dict | None:
        """Per-agent counters, or None if the agent is not registered."""
        entry = self._agents.get(agent_id)
        if entry is None:
            return None

        metrics = self._metrics.get_agent_metrics(agent_id) or {}
        machine = entry.state_machine
        status = machine.get_status()
        metrics.update(
            {
                "agent_id": agent_id,
                "current_state": status.state.value,
                "last_error": status.last_error,
                "recovery_attempts": status.recovery_attempts,
                "exit_requested": status.exit_requested,
                "persistence_failures": machine.persistence_failures,
                "last_cycle_time": entry.last_cycle_time.isoformat()
                if entry.last_cycle_time
                else None,
            }
        )
        return metrics

    # Registry

    async def register_agent(self, agent_id: str, state_machine: AgentStateMachine) -> None:
        """Register (or replace) the state machine for an agent."""
        if state_machine.agent_id != agent_id:
            raise ValueError(
                f"State machine for {state_machine.agent_id} registered as {agent_id}"
            )

        async with self._registry_lock:
            previous = self._agents.get(agent_id)
            if previous is not None:
                previous.state_machine.remove_state_change_listener(previous.listener)
                if previous.state_machine is not state_machine:
                    previous.state_machine.retire()

            listener = self._make_listener(agent_id)
            state_machine.add_state_change_listener(listener)
            self._agents[agent_id] = _AgentEntry(state_machine=state_machine, listener=listener)
            self._metrics.register(agent_id, state_machine.state)

        logger.info(
            "Agent %s %s",
            agent_id,
            "re-registered" if previous else "registered",
            extra={"context": {"agent_id": agent_id}},
        )

    async def unregister_agent(self, agent_id: str) -> bool:
        """Drop an agent. Returns False if it was not registered."""
        async with self._registry_lock:
            entry = self._agents.pop(agent_id, None)
            if entry is None:
                return False
            entry.state_machine.remove_state_change_listener(entry.listener)
            # An in-flight cycle may still hold the machine
            entry.state_machine.retire()
            self._metrics.unregister(agent_id)
            self._optimizer.forget_agent(agent_id)

        logger.info("Agent %s unregistered", agent_id, extra={"context": {"agent_id": agent_id}})
        return True

    # Lifecycle

    async def start(self) -> None:
        """Resume saved agent states and start the tick loop. No-op if not stopped."""
        if self._state is not SchedulerState.STOPPED:
            return

        self._state = SchedulerState.STARTING
        logger.info("Starting cruise scheduler")

        async with self._registry_lock:
            snapshot = list(self._agents.items())

        for agent_id, entry in snapshot:
            await self._resume(agent_id, entry.state_machine)

        self._metrics.reset_uptime()
        self._state = SchedulerState.RUNNING
        self._task = asyncio.create_task(self._run())
        logger.info("Cruise scheduler running with %d agents", len(snapshot))

    async def stop(self) -> None:
        """Let in-flight cycles finish up to the grace period, then abandon the rest."""
        if self._state is not SchedulerState.RUNNING:
            return

        self._state = SchedulerState.STOPPING
        logger.info("Stopping cruise scheduler")

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        pending = set(self._inflight)
        if pending:
            _, pending = await asyncio.wait(
                pending, timeout=self._settings.shutdown_grace_s
            )

        for task in pending:
            agent_id = self._inflight.get(task, "unknown")
            logger.warning(
                "Abandoning incomplete cycle for agent %s",
                agent_id,
                extra={"context": {"agent_id": agent_id}},
            )
            self._metrics.record(CycleAbandoned(agent_id=agent_id))
            task.cancel()

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self._state = SchedulerState.STOPPED
        logger.info("Cruise scheduler stopped")

    # Operations

    async def perform_health_check(self, agent_id: str) -> bool:
        """Run one guarded health check. False if unregistered, busy or failed."""
        entry = self._agents.get(agent_id)
        if entry is None:
            return False
        task = self._spawn(agent_id, lambda: self._health_check(agent_id, entry))
        if task is None:
            return False
        return await task

    async def optimize_positions(self, agent_id: str) -> bool:
        """Run one guarded optimization. False if unregistered, busy or failed."""
        entry = self._agents.get(agent_id)
        if entry is None:
            return False
        task = self._spawn(agent_id, lambda: self._optimize(agent_id, entry))
        if task is None:
            return False
        return await task

    async def trigger_health_check(self, agent_id: str) -> bool:
        """Operator-initiated health check. Refused unless running."""
        if not self.is_running:
            logger.warning("Health check for %s refused: scheduler not running", agent_id)
            return False
        return await self.perform_health_check(agent_id)

    async def trigger_optimization(self, agent_id: str) -> bool:
        """Operator-initiated optimization. Refused unless running."""
        if not self.is_running:
            logger.warning("Optimization for %s refused: scheduler not running", agent_id)
            return False
        return await self.optimize_positions(agent_id)

    async def apply_event(self, agent_id: str, event: AgentEvent) -> bool:
        """Apply an operator event between cycles. False if unknown, busy or rejected."""
        entry = self._agents.get(agent_id)
        if entry is None:
            return False
        task = self._spawn(agent_id, lambda: entry.state_machine.handle_event(event))
        if task is None:
            return False
        return await task

    async def run_tick(self) -> None:
        """Start one cycle for every registered agent; does not wait for them."""
        async with self._registry_lock:
            snapshot = list(self._agents.items())

        for agent_id, entry in snapshot:
            if entry.state_machine.state.is_terminal:
                continue
            self._spawn(agent_id, lambda a=agent_id, e=entry: self._cycle(a, e))

    # Internals

    async def _run(self) -> None:
        """Tick loop. The first tick fires one interval after start."""
        while self._state is SchedulerState.RUNNING:
            try:
                await asyncio.sleep(self._settings.tick_interval_s)
                await self.run_tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Cruise tick error: {e}", exc_info=True)

    async def _resume(self, agent_id: str, machine: AgentStateMachine) -> None:
        try:
            saved: AgentStatus | None = await self._persistence.load_state(agent_id)
        except Exception as e:
            logger.warning(
                "Could not load saved state for agent %s: %s",
                agent_id,
                e,
                extra={"context": {"agent_id": agent_id}},
            )
            return
        if saved is not None:
            await machine.restore(saved)
            self._metrics.register(agent_id, machine.state)

    def _spawn(
        self, agent_id: str, work: Callable[[], Awaitable[bool]]
    ) -> "asyncio.Task[bool] | None":
        if not self._guard.try_acquire(agent_id):
            logger.info(
                "Skipping cycle for agent %s: previous cycle still in flight",
                agent_id,
                extra={"context": {"agent_id": agent_id}},
            )
            self._metrics.record(CycleSkipped(agent_id=agent_id, reason="cycle in flight"))
            return None

        task = asyncio.create_task(self._guarded(agent_id, work))
        self._inflight[task] = agent_id
        task.add_done_callback(lambda t: self._inflight.pop(t, None))
        return task

    async def _guarded(self, agent_id: str, work: Callable[[], Awaitable[bool]]) -> bool:
        try:
            async with self._pool:
                return await work()
        finally:
            self._guard.release(agent_id)

    async def _cycle(self, agent_id: str, entry: _AgentEntry) -> bool:
        """One cruise cycle: health check, then optimization if the state allows."""
        healthy = await self._health_check(agent_id, entry)
        optimized = True
        if entry.state_machine.state in OPTIMIZABLE_STATES:
            optimized = await self._optimize(agent_id, entry)
        entry.last_cycle_time = _utcnow()
        return healthy and optimized

    async def _call(self, collaborator: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._settings.call_timeout_s)
        except asyncio.TimeoutError:
            raise TransientCollaboratorError(
                collaborator, f"timed out after {self._settings.call_timeout_s}s"
            ) from None

    async def _health_check(self, agent_id: str, entry: _AgentEntry) -> bool:
        machine = entry.state_machine
        wallet = machine.config.wallet_address
        loop = asyncio.get_running_loop()
        started = loop.time()

        success = True
        error: str | None = None
        health_score: float | None = None
        try:
            funds = await self._call("funds", self._funds.get_funds_status(agent_id, wallet))
            assessment = await self._call("risk", self._risk.assess_risk(agent_id, wallet))
            await machine.update_funds(funds)
            await machine.handle_risk_assessment(assessment)
            entry.last_assessment = assessment
            health_score = assessment.health_score
        except Exception as e:
            success = False
            error = str(e)
            logger.error(
                "Health check failed for agent %s: %s",
                agent_id,
                e,
                exc_info=True,
                extra={"context": {"agent_id": agent_id}},
            )
            await machine.set_error(f"health check failed: {e}")

        await machine.periodic_check()

        self._metrics.record(
            HealthCheckFinished(
                agent_id=agent_id,
                success=success,
                duration_s=loop.time() - started,
                health_score=health_score,
                error=error,
            )
        )
        return success

    async def _optimize(self, agent_id: str, entry: _AgentEntry) -> bool:
        machine = entry.state_machine
        status = machine.get_status()
        if status.state not in OPTIMIZABLE_STATES:
            logger.info(
                "Skipping optimization for agent %s in state %s",
                agent_id,
                status.state.value,
                extra={"context": {"agent_id": agent_id}},
            )
            return False

        loop = asyncio.get_running_loop()
        started = loop.time()

        try:
            funds = status.funds
            if funds is None:
                funds = await self._call(
                    "funds",
                    self._funds.get_funds_status(agent_id, machine.config.wallet_address),
                )
                await machine.update_funds(funds)

            plan = await self._optimizer.calculate_optimal_positions(
                agent_id,
                funds,
                machine.config,
                entry.last_assessment,
                allow_additions=status.state is AgentState.RUNNING,
                exit_all=status.exit_requested,
            )
        except Exception as e:
            logger.error(
                "Optimization failed for agent %s: %s",
                agent_id,
                e,
                extra={"context": {"agent_id": agent_id}},
            )
            await machine.set_error(f"optimization failed: {e}")
            self._metrics.record(
                OptimizationFinished(
                    agent_id=agent_id,
                    success=False,
                    duration_s=loop.time() - started,
                    error=str(e),
                )
            )
            return False

        if plan is None:
            self._metrics.record(
                OptimizationFinished(
                    agent_id=agent_id, success=True, duration_s=loop.time() - started
                )
            )
            return True

        outcomes = await self._execute_plan(machine, plan)
        executed = [o for o in outcomes if o.executed]
        failures = [o for o in executed if not o.success]

        if failures:
            await machine.set_error(f"transaction failed: {failures[0].message}")
        else:
            await machine.clear_error()

        self._metrics.record(
            OptimizationFinished(
                agent_id=agent_id,
                success=not failures,
                duration_s=loop.time() - started,
                plan_executed=True,
                actions_executed=len(executed),
                actions_succeeded=len(executed) - len(failures),
                expected_improvement=plan.expected_health_improvement,
                error=failures[0].message if failures else None,
            )
        )
        return not failures

    async def _execute_plan(
        self, machine: AgentStateMachine, plan: OptimizationPlan
    ) -> list[_ActionOutcome]:
        agent_id = plan.agent_id
        outcomes: list[_ActionOutcome] = []

        adds_allowed = True
        if plan.actions_of(ActionType.ADD):
            try:
                adds_allowed = await self._call(
                    "funds", self._funds.check_funds_safety(agent_id)
                )
            except Exception as e:
                logger.warning("Funds safety check failed for agent %s: %s", agent_id, e)
                adds_allowed = False
            if not adds_allowed:
                logger.warning(
                    "Funds safety check failed for agent %s, skipping additions",
                    agent_id,
                    extra={"context": {"agent_id": agent_id}},
                )

        for action in plan.actions:
            outcome = await self._execute_action(machine, action, adds_allowed)
            outcomes.append(outcome)
        return outcomes

    async def _execute_action(
        self,
        machine: AgentStateMachine,
        action: OptimizationAction,
        adds_allowed: bool,
    ) -> _ActionOutcome:
        agent_id = machine.agent_id
        request = self._to_request(machine, action)

        if isinstance(action, AddAction):
            if not adds_allowed:
                return _ActionOutcome(executed=False, success=False, message="funds unsafe")
            try:
                within_limit = await self._call(
                    "funds",
                    self._funds.check_transaction_limit(
                        agent_id, request.amount_sol, request.type
                    ),
                )
            except Exception as e:
                return _ActionOutcome(executed=True, success=False, message=str(e))
            if not within_limit:
                logger.info(
                    "Addition of %.4f SOL to %s skipped: transaction limit",
                    request.amount_sol,
                    request.pool_address,
                    extra={"context": {"agent_id": agent_id}},
                )
                return _ActionOutcome(executed=False, success=False, message="limit")

        try:
            result = await self._call("transactions", self._executor.execute(request))
        except Exception as e:
            logger.error(
                "Transaction %s on %s failed for agent %s: %s",
                request.type.value,
                request.pool_address,
                agent_id,
                e,
                extra={"context": {"agent_id": agent_id}},
            )
            return _ActionOutcome(executed=True, success=False, message=str(e))

        if not result.success:
            logger.warning(
                "Transaction %s on %s rejected for agent %s: %s",
                request.type.value,
                request.pool_address,
                agent_id,
                result.message,
                extra={"context": {"agent_id": agent_id}},
            )
            return _ActionOutcome(executed=True, success=False, message=result.message)

        try:
            await self._call(
                "funds",
                self._funds.record_transaction(agent_id, request.amount_sol, request.type),
            )
        except Exception as e:
            logger.warning("Could not record transaction for agent %s: %s", agent_id, e)

        return _ActionOutcome(executed=True, success=True, message=result.message)

    @staticmethod
    def _to_request(
        machine: AgentStateMachine, action: OptimizationAction
    ) -> TransactionRequest:
        config = machine.config
        if isinstance(action, AddAction):
            tx_type = TransactionType.ADD_LIQUIDITY
            amount = action.amount_sol
            bins = action.target_bins
        elif isinstance(action, RemoveAction):
            tx_type = TransactionType.REMOVE_LIQUIDITY
            amount = action.amount_sol
            bins = ()
        elif isinstance(action, AdjustAction):
            tx_type = TransactionType.REBALANCE
            amount = action.target_amount_sol
            bins = action.target_bins
        else:
            raise TypeError(f"Unknown action: {action!r}")

        return TransactionRequest(
            agent_id=machine.agent_id,
            type=tx_type,
            pool_address=action.pool_address,
            amount_sol=amount,
            wallet_address=config.wallet_address,
            target_bins=[{"bin_id": b.bin_id, "percentage": b.percentage} for b in bins],
            max_slippage=config.max_slippage,
        )

    def _make_listener(self, agent_id: str) -> StateChangeListener:
        async def on_state_change(status: AgentStatus, previous: AgentState) -> None:
            self._metrics.record(
                StateChanged(
                    agent_id=agent_id,
                    previous=previous,
                    current=status.state,
                    last_error=status.last_error,
                    recovery_attempts=status.recovery_attempts,
                )
            )

        return on_state_change
