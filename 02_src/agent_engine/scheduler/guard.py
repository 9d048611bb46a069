"""Per-agent reentrancy guard."""


class ReentrancyGuard:
    """
    Busy flag keyed by agent id. A cycle that cannot acquire the flag is
    skipped, never queued.

    Acquire and release happen without awaiting in between the check and
    the update, so a plain set is safe on a single event loop.
    """

    def __init__(self):
        self._busy: set[str] = set()

    def try_acquire(self, agent_id: str) -> bool:
        """Mark the agent busy. Returns False if it already was."""
        if agent_id in self._busy:
            return False
        self._busy.add(agent_id)
        return True

    def release(self, agent_id: str) -> None:
        self._busy.discard(agent_id)

    def is_busy(self, agent_id: str) -> bool:
        return agent_id in self._busy

    @property
    def busy(self) -> frozenset[str]:
        return frozenset(self._busy)
