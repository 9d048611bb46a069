"""In-memory StatePersistence, used in tests and as the default backend."""

from ..models import AgentStatus


class MemoryStatePersistence:
    """Keeps serialized AgentStatus records in a dict keyed by agent id."""

    def __init__(self):
        self._states: dict[str, dict] = {}

    async def save_state(self, agent_id: str, status: AgentStatus) -> None:
        # Stored serialized so later mutation of the live status cannot leak in
        self._states[agent_id] = status.to_dict()

    async def load_state(self, agent_id: str) -> AgentStatus | None:
        data = self._states.get(agent_id)
        return AgentStatus.from_dict(data) if data else None

    async def delete_state(self, agent_id: str) -> None:
        self._states.pop(agent_id, None)
