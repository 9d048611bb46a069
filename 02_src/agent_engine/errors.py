"""Exception types raised inside the agent engine."""


class AgentEngineError(Exception):
    """Base class for agent engine errors."""


class InvalidTransitionError(AgentEngineError):
    """A state change was requested that the transition table does not allow."""

    def __init__(self, state, event):
        self.state = state
        self.event = event
        super().__init__(f"Invalid transition: {state.value} on {event.value}")


class TransientCollaboratorError(AgentEngineError):
    """An external collaborator call failed or timed out; retry next tick."""

    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {message}")


class PlanComputationError(AgentEngineError):
    """The optimizer could not build a plan from the agent's aggregates."""

    def __init__(self, agent_id: str, message: str):
        self.agent_id = agent_id
        super().__init__(f"Plan computation failed for {agent_id}: {message}")


class PersistenceError(AgentEngineError, RuntimeError):
    """The state persistence backend failed to read or write."""
