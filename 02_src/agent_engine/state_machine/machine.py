"""AgentStateMachine implementation."""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Awaitable, Callable

from ..config import StateMachineSettings
from ..errors import InvalidTransitionError
from ..logging_config import get_logger
from ..models import (
    AgentConfig,
    AgentEvent,
    AgentState,
    AgentStatus,
    FundsStatus,
    RiskAssessment,
    RiskHistoryRecord,
    RiskLevel,
    StateChangeRecord,
)
from ..storage import IStatePersistence
from .history import RingBuffer

logger = get_logger(__name__)


StateChangeListener = Callable[[AgentStatus, AgentState], Awaitable[None]]
Clock = Callable[[], datetime]


# (state, event) -> target state. STOPPED and ERROR have no entries.
TRANSITIONS: dict[tuple[AgentState, AgentEvent], AgentState] = {
    (AgentState.IDLE, AgentEvent.START): AgentState.RUNNING,
    (AgentState.IDLE, AgentEvent.STOP): AgentState.STOPPED,
    (AgentState.IDLE, AgentEvent.FAIL): AgentState.ERROR,
    (AgentState.RUNNING, AgentEvent.PAUSE): AgentState.WAITING,
    (AgentState.RUNNING, AgentEvent.RISK_ELEVATED): AgentState.WAITING,
    (AgentState.RUNNING, AgentEvent.EMERGENCY_EXIT): AgentState.WAITING,
    (AgentState.RUNNING, AgentEvent.FAULT): AgentState.RECOVERING,
    (AgentState.RUNNING, AgentEvent.STOP): AgentState.STOPPED,
    (AgentState.RUNNING, AgentEvent.FAIL): AgentState.ERROR,
    (AgentState.WAITING, AgentEvent.RESUME): AgentState.RUNNING,
    (AgentState.WAITING, AgentEvent.RISK_RESOLVED): AgentState.RUNNING,
    (AgentState.WAITING, AgentEvent.EMERGENCY_EXIT): AgentState.WAITING,
    (AgentState.WAITING, AgentEvent.FAULT): AgentState.RECOVERING,
    (AgentState.WAITING, AgentEvent.STOP): AgentState.STOPPED,
    (AgentState.WAITING, AgentEvent.FAIL): AgentState.ERROR,
    (AgentState.RECOVERING, AgentEvent.RECOVERED): AgentState.RUNNING,
    (AgentState.RECOVERING, AgentEvent.RISK_ELEVATED): AgentState.WAITING,
    (AgentState.RECOVERING, AgentEvent.EMERGENCY_EXIT): AgentState.WAITING,
    (AgentState.RECOVERING, AgentEvent.STOP): AgentState.STOPPED,
    (AgentState.RECOVERING, AgentEvent.FAIL): AgentState.ERROR,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentStateMachine:
    """
    Owns one agent's lifecycle state, funds snapshot and risk history.

    Every state change goes through the transition table, is persisted
    through the injected StatePersistence and only then reported to
    listeners. Callers must not drive the same instance from two
    concurrent tasks; the scheduler's reentrancy guard ensures this.
    """

    def __init__(
        self,
        config: AgentConfig,
        persistence: IStatePersistence,
        settings: StateMachineSettings | None = None,
        clock: Clock | None = None,
    ):
        self._config = config
        self._persistence = persistence
        self._settings = settings or StateMachineSettings()
        self._clock = clock or _utcnow

        self._status = AgentStatus(agent_id=config.id, state_entered_at=self._clock())
        self._state_history: RingBuffer[StateChangeRecord] = RingBuffer(
            self._settings.history_capacity
        )
        self._risk_history: RingBuffer[RiskHistoryRecord] = RingBuffer(
            self._settings.history_capacity
        )
        self._listeners: list[StateChangeListener] = []

        # Sustained-risk bookkeeping
        self._medium_risk_started_at: datetime | None = None
        self._high_risk_started_at: datetime | None = None
        self._medium_risk_escalated = False
        self._high_risk_escalated = False

        # Set on return to RUNNING, cleared once attempts are confirmed reset
        self._recovered_at: datetime | None = None

        self._persistence_failures = 0
        self._retired = False

    # Introspection

    @property
    def agent_id(self) -> str:
        return self._config.id

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def state(self) -> AgentState:
        return self._status.state

    @property
    def persistence_failures(self) -> int:
        """Number of saves that failed since this instance was created."""
        return self._persistence_failures

    def get_status(self) -> AgentStatus:
        """Get a copy of the current status."""
        return copy.deepcopy(self._status)

    def get_state_history(self) -> list[StateChangeRecord]:
        """Applied transitions, oldest first."""
        return self._state_history.get_all()

    def get_risk_history(self) -> list[RiskHistoryRecord]:
        """Received risk assessments, oldest first."""
        return self._risk_history.get_all()

    def get_current_state_duration(self) -> float:
        """Seconds spent in the current state."""
        return (self._clock() - self._status.state_entered_at).total_seconds()

    def get_recovery_attempts(self) -> int:
        return self._status.recovery_attempts

    @staticmethod
    def is_valid_transition(state: AgentState, event: AgentEvent) -> bool:
        return (state, event) in TRANSITIONS

    # Listeners

    def add_state_change_listener(self, listener: StateChangeListener) -> None:
        """Register an async callback invoked after each persisted transition."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_state_change_listener(self, listener: StateChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def retire(self) -> None:
        """
        Detach from persistence and listeners once the agent is unregistered.

        A cycle still running for the agent may keep mutating this instance,
        but nothing it does is saved or reported any more.
        """
        self._retired = True

    # Operations

    async def initialize(self) -> bool:
        """IDLE -> RUNNING. Returns False from any other state."""
        return await self._apply(AgentEvent.START)

    async def handle_event(self, event: AgentEvent) -> bool:
        """Apply an event through the transition table. Returns whether it applied."""
        return await self._apply(event)

    async def restore(self, status: AgentStatus) -> None:
        """Resume from a previously persisted status instead of IDLE."""
        if status.agent_id != self.agent_id:
            raise ValueError(
                f"Status for {status.agent_id} cannot restore agent {self.agent_id}"
            )

        self._status = copy.deepcopy(status)
        self._medium_risk_started_at = None
        self._high_risk_started_at = None
        self._medium_risk_escalated = False
        self._high_risk_escalated = False
        self._recovered_at = (
            status.state_entered_at
            if status.state is AgentState.RUNNING and status.recovery_attempts
            else None
        )

        logger.info(
            "Restored agent %s in state %s",
            self.agent_id,
            status.state.value,
            extra={"context": {"agent_id": self.agent_id}},
        )

    async def update_funds(self, funds: FundsStatus) -> None:
        """Replace the funds snapshot. Never changes state."""
        self._status.funds = copy.deepcopy(funds)
        await self._persist()

    async def handle_risk_assessment(self, assessment: RiskAssessment) -> None:
        """Record an assessment and apply sustained-risk transitions."""
        now = self._clock()
        self._risk_history.append(RiskHistoryRecord(assessment=assessment, timestamp=now))

        state = self._status.state
        if state.is_terminal:
            return

        if assessment.level is RiskLevel.HIGH:
            if self._high_risk_started_at is None:
                self._high_risk_started_at = now

            sustained = (now - self._high_risk_started_at).total_seconds()
            if (
                not self._high_risk_escalated
                and sustained >= self._settings.high_risk_duration_s
                and state in (AgentState.RUNNING, AgentState.RECOVERING)
            ):
                logger.warning(
                    "High risk sustained for %.0fs on agent %s",
                    sustained,
                    self.agent_id,
                    extra={"context": {"agent_id": self.agent_id}},
                )
                self._high_risk_escalated = await self._apply(AgentEvent.RISK_ELEVATED)

        elif assessment.level is RiskLevel.MEDIUM:
            self._high_risk_started_at = None
            self._high_risk_escalated = False
            if self._medium_risk_started_at is None:
                self._medium_risk_started_at = now

            sustained = (now - self._medium_risk_started_at).total_seconds()
            if (
                not self._medium_risk_escalated
                and sustained >= self._settings.medium_risk_duration_s
                and state is AgentState.RUNNING
            ):
                logger.warning(
                    "Medium risk sustained for %.0fs on agent %s",
                    sustained,
                    self.agent_id,
                    extra={"context": {"agent_id": self.agent_id}},
                )
                self._medium_risk_escalated = await self._apply(
                    AgentEvent.RISK_ELEVATED
                )

        else:
            self._medium_risk_started_at = None
            self._high_risk_started_at = None
            self._medium_risk_escalated = False
            self._high_risk_escalated = False

            # An operator emergency exit outlives the risk episode
            if state is AgentState.WAITING and not self._status.exit_requested:
                logger.info(
                    "Risk resolved for agent %s",
                    self.agent_id,
                    extra={"context": {"agent_id": self.agent_id}},
                )
                await self._apply(AgentEvent.RISK_RESOLVED)

    async def set_error(self, message: str) -> None:
        """Record a fault and move towards RECOVERING (or STOPPED once exhausted)."""
        logger.error(
            "Error in agent %s: %s",
            self.agent_id,
            message,
            extra={"context": {"agent_id": self.agent_id}},
        )
        self._status.last_error = message
        state = self._status.state

        if state.is_terminal or state is AgentState.IDLE:
            await self._persist()
            return

        if self._status.recovery_attempts >= self._settings.max_recovery_attempts:
            await self._exhaust_recovery()
            return

        self._status.recovery_attempts += 1
        if state is AgentState.RECOVERING:
            await self._persist()
        else:
            self._recovered_at = None
            await self._apply(AgentEvent.FAULT)

    async def clear_error(self) -> None:
        """Return RECOVERING -> RUNNING. No-op in terminal states."""
        state = self._status.state
        if state.is_terminal:
            return

        if state is AgentState.RECOVERING:
            self._status.last_error = None
            await self._apply(AgentEvent.RECOVERED)
            return

        if self._status.last_error is not None:
            self._status.last_error = None
            await self._persist()
        await self._confirm_recovery()

    async def periodic_check(self) -> None:
        """Per-tick housekeeping: recovery exhaustion, state timeout, confirmation."""
        state = self._status.state

        if state is AgentState.RECOVERING:
            if self._status.recovery_attempts >= self._settings.max_recovery_attempts:
                await self._exhaust_recovery()
            elif self.get_current_state_duration() > self._settings.state_timeout_s:
                await self._attempt_state_recovery()
        elif state is AgentState.RUNNING:
            await self._confirm_recovery()

    # Internals

    async def _attempt_state_recovery(self) -> None:
        self._status.recovery_attempts += 1
        logger.info(
            "Attempting state recovery for agent %s, attempt %d",
            self.agent_id,
            self._status.recovery_attempts,
            extra={"context": {"agent_id": self.agent_id}},
        )
        await self._apply(AgentEvent.RECOVERED)

    async def _exhaust_recovery(self) -> None:
        attempts = self._status.recovery_attempts
        logger.error(
            "Recovery exhausted for agent %s after %d attempts, stopping",
            self.agent_id,
            attempts,
            extra={"context": {"agent_id": self.agent_id}},
        )
        last = self._status.last_error
        self._status.last_error = (
            f"recovery exhausted after {attempts} attempts: {last}"
            if last
            else f"recovery exhausted after {attempts} attempts"
        )
        await self._apply(AgentEvent.STOP)

    async def _confirm_recovery(self) -> None:
        if self._recovered_at is None or self._status.state is not AgentState.RUNNING:
            return
        stable_for = (self._clock() - self._recovered_at).total_seconds()
        if stable_for < self._settings.recovery_confirmation_s:
            return

        self._recovered_at = None
        if self._status.recovery_attempts:
            logger.info(
                "Recovery confirmed for agent %s",
                self.agent_id,
                extra={"context": {"agent_id": self.agent_id}},
            )
            self._status.recovery_attempts = 0
            await self._persist()

    def _target_for(self, event: AgentEvent) -> AgentState:
        target = TRANSITIONS.get((self._status.state, event))
        if target is None:
            raise InvalidTransitionError(self._status.state, event)
        return target

    async def _apply(self, event: AgentEvent) -> bool:
        try:
            target = self._target_for(event)
        except InvalidTransitionError as e:
            logger.warning(
                "Rejected event for agent %s: %s",
                self.agent_id,
                e,
                extra={"context": {"agent_id": self.agent_id}},
            )
            return False

        previous = self._status.state

        if event is AgentEvent.EMERGENCY_EXIT:
            self._status.exit_requested = True
        elif event is AgentEvent.RESUME:
            self._status.exit_requested = False

        if target is previous:
            await self._persist()
            return True

        now = self._clock()
        self._status.state = target
        self._status.state_entered_at = now
        if target is AgentState.RUNNING and self._status.recovery_attempts:
            # Attempts reset once RUNNING holds for the confirmation window
            self._recovered_at = now
        self._state_history.append(StateChangeRecord(state=target, timestamp=now))

        logger.info(
            "Agent %s: %s -> %s on %s",
            self.agent_id,
            previous.value,
            target.value,
            event.value,
            extra={"context": {"agent_id": self.agent_id}},
        )

        # A cancelled caller must not leave storage or listeners behind memory
        await asyncio.shield(self._commit(previous))
        return True

    async def _commit(self, previous: AgentState) -> None:
        await self._persist()
        await self._notify(previous)

    async def _persist(self) -> None:
        if self._retired:
            return
        try:
            await asyncio.shield(
                self._persistence.save_state(self.agent_id, copy.deepcopy(self._status))
            )
        except Exception:
            # The in-memory transition stands; the failure surfaces via metrics
            self._persistence_failures += 1
            logger.warning(
                "Failed to persist state for agent %s",
                self.agent_id,
                exc_info=True,
                extra={"context": {"agent_id": self.agent_id}},
            )

    async def _notify(self, previous: AgentState) -> None:
        if self._retired or not self._listeners:
            return

        snapshot = self.get_status()
        results = await asyncio.gather(
            *[listener(snapshot, previous) for listener in list(self._listeners)],
            return_exceptions=True,
        )

        for i, result in enumerate(results):
            if isinstance(result, Exception):
                logger.error("Error in state listener %s: %s", i, result)
