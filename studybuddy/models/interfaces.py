"""Abstract interfaces for stores, notification and metric sources."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, TypeVar

from studybuddy.models.health import HealthMetric

K = TypeVar("K")
V = TypeVar("V")


class IBoundedStore(ABC, Generic[K, V]):
    """Abstract capacity-bounded key/value store.

    Each bounded collection in the error-handling core (correlations, alerts,
    feedback) is owned by exactly one component and held behind this
    interface, so a durable backing can be injected in place of the
    in-memory implementation.

    Eviction Contract:
        - Eviction runs synchronously after every insert of a new key
        - The entry with the oldest timestamp is evicted first
        - ``on_evict`` callbacks fire once per evicted entry, in eviction order
    """

    @abstractmethod
    def put(self, key: K, value: V) -> List[V]:
        """Insert or replace an entry.

        Args:
            key: Entry key
            value: Entry value

        Returns:
            The entries evicted to bring the store back under capacity
        """
        pass

    @abstractmethod
    def get(self, key: K) -> Optional[V]:
        """Return the entry for key, or None."""
        pass

    @abstractmethod
    def remove(self, key: K) -> Optional[V]:
        """Delete and return the entry for key, or None if absent."""
        pass

    @abstractmethod
    def values(self) -> List[V]:
        """Return all entries, oldest first."""
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass

    def __contains__(self, key: K) -> bool:
        return self.get(key) is not None

    def __iter__(self) -> Iterator[V]:
        return iter(self.values())


class INotifier(ABC):
    """Notification sink for alerts.

    Channels are named strings (``log``, ``console``, ``webhook``). Delivery
    is best-effort: implementations log delivery failures rather than raise,
    because an unreachable alert channel must never break request handling.
    """

    @abstractmethod
    def notify(self, title: str, payload: Dict[str, Any], channels: List[str]) -> None:
        """Dispatch an alert payload to the given channels.

        Args:
            title: Short human-readable alert title
            payload: JSON-compatible alert body
            channels: Channel names to deliver to
        """
        pass


class IMetricSource(ABC):
    """Source of live values for per-layer health metrics.

    The system health monitor asks its source for a fresh value for each
    metric on every check cycle. Returning None keeps the previous value.
    """

    @abstractmethod
    async def sample(self, layer: int, metric: HealthMetric) -> Optional[float]:
        """Return the current value of ``metric`` on ``layer``, or None."""
        pass


MetricProbe = Callable[[], Any]
