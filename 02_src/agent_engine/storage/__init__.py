"""Storage module."""

from .memory import MemoryStatePersistence
from .storage import IStatePersistence, IStorage, Storage

__all__ = ["IStatePersistence", "IStorage", "MemoryStatePersistence", "Storage"]
