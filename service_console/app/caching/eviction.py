"""
LRU access tracking and eviction for keyed caches.
"""

from collections import OrderedDict
from typing import Callable, List, Optional

from shared.logging import get_logger
from .store import CacheStore

DEFAULT_CAPACITY = 50


class LruEvictionPolicy:
    """Keeps key recency (most recent last) and trims the store to capacity."""

    def __init__(
        self,
        store: CacheStore,
        capacity: int = DEFAULT_CAPACITY,
        on_evict: Optional[Callable[[int], None]] = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.store = store
        self.capacity = capacity
        self.on_evict = on_evict
        self.logger = get_logger(f"console.cache.{store.name}.lru")
        self._order: "OrderedDict[int, None]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, key: int) -> bool:
        return key in self._order

    @property
    def access_order(self) -> List[int]:
        """Keys from least to most recently used."""
        return list(self._order)

    def mark_accessed(self, key: int) -> None:
        """Move ``key`` to the most-recently-used position."""
        if key in self._order:
            self._order.move_to_end(key)
        else:
            self._order[key] = None

    def forget(self, key: int) -> None:
        """Drop ``key`` from the recency record without touching the store."""
        self._order.pop(key, None)

    def evict(self) -> List[int]:
        """Remove least-recently-used keys until the store fits the capacity."""
        evicted: List[int] = []
        while len(self._order) > self.capacity:
            key, _ = self._order.popitem(last=False)
            self.store.delete(key)
            if self.on_evict is not None:
                self.on_evict(key)
            evicted.append(key)

        if evicted:
            self.logger.debug(
                "Evicted least recently used keys",
                keys=evicted,
                capacity=self.capacity,
                remaining=len(self._order)
            )
        return evicted
