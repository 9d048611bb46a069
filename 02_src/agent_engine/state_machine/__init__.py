"""Agent state machine module."""

from .history import RingBuffer
from .machine import TRANSITIONS, AgentStateMachine, StateChangeListener

__all__ = ["AgentStateMachine", "RingBuffer", "StateChangeListener", "TRANSITIONS"]
