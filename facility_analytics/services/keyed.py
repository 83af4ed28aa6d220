from __future__ import annotations

import threading
from typing import Callable, Generic, TypeVar

S = TypeVar("S")

Key = tuple[str, str]


class Slot(Generic[S]):
    """State for one (entity_id, metric) key plus the lock guarding it."""

    __slots__ = ("lock", "state")

    def __init__(self, state: S) -> None:
        self.lock = threading.Lock()
        self.state = state


class KeyedSlots(Generic[S]):
    """Registry of per-key slots.

    The registry lock is held only long enough to look up or create a slot;
    all work on a key's state happens under that slot's own lock, so writers
    to different keys never wait on each other.
    """

    def __init__(self, factory: Callable[[], S]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._slots: dict[Key, Slot[S]] = {}

    def get(self, key: Key) -> Slot[S] | None:
        with self._lock:
            return self._slots.get(key)

    def get_or_create(self, key: Key) -> Slot[S]:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = Slot(self._factory())
                self._slots[key] = slot
            return slot

    def items(self) -> list[tuple[Key, Slot[S]]]:
        with self._lock:
            return list(self._slots.items())

    def keys(self) -> list[Key]:
        with self._lock:
            return list(self._slots)

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)
