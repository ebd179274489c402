"""
In-memory implementation of the IBoundedStore interface.

Entries live in a Python dict ordered by insertion and are lost on restart.
When an insert pushes the store past capacity, entries with the oldest
timestamp are evicted until the store is back at capacity.
"""

from datetime import datetime
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from studybuddy.models.interfaces import IBoundedStore

K = TypeVar("K")
V = TypeVar("V")


class InMemoryBoundedStore(IBoundedStore[K, V], Generic[K, V]):
    """Capacity-bounded dict with oldest-timestamp-first eviction."""

    def __init__(
        self,
        capacity: int,
        timestamp_of: Callable[[V], datetime],
        on_evict: Optional[Callable[[K, V], None]] = None,
    ):
        """
        Args:
            capacity: Maximum number of entries retained
            timestamp_of: Extracts the eviction timestamp from an entry
            on_evict: Called with (key, value) for every evicted entry
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._timestamp_of = timestamp_of
        self._on_evict = on_evict
        self._items: Dict[K, V] = {}

    def put(self, key: K, value: V) -> List[V]:
        is_new = key not in self._items
        self._items[key] = value
        if is_new and len(self._items) > self.capacity:
            return self._evict()
        return []

    def _evict(self) -> List[V]:
        overflow = len(self._items) - self.capacity
        # stable sort keeps insertion order among equal timestamps
        oldest = sorted(self._items.items(), key=lambda kv: self._timestamp_of(kv[1]))[:overflow]
        evicted = []
        for key, value in oldest:
            del self._items[key]
            evicted.append(value)
            if self._on_evict:
                self._on_evict(key, value)
        return evicted

    def get(self, key: K) -> Optional[V]:
        return self._items.get(key)

    def remove(self, key: K) -> Optional[V]:
        return self._items.pop(key, None)

    def values(self) -> List[V]:
        return list(self._items.values())

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)
