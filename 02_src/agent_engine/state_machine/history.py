"""RingBuffer implementation."""

from typing import Generic, Iterator, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Fixed-capacity, append-only history. Oldest entries are overwritten."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._slots: list[T | None] = [None] * capacity
        self._capacity = capacity
        self._start = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[T]:
        for i in range(self._size):
            yield self._slots[(self._start + i) % self._capacity]  # type: ignore[misc]

    def append(self, item: T) -> None:
        """Append an item, evicting the oldest one when full."""
        if self._size < self._capacity:
            self._slots[(self._start + self._size) % self._capacity] = item
            self._size += 1
        else:
            self._slots[self._start] = item
            self._start = (self._start + 1) % self._capacity

    def last(self) -> T | None:
        """Most recent item, or None if empty."""
        if not self._size:
            return None
        return self._slots[(self._start + self._size - 1) % self._capacity]

    def get_all(self) -> list[T]:
        """Get all items, oldest first."""
        return list(self)

    def clear(self) -> None:
        """Clear the buffer."""
        self._slots = [None] * self._capacity
        self._start = 0
        self._size = 0
