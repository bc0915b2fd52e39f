"""
Per-key cache entries and the store that owns them.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Generic, Iterator, List, Optional, TypeVar

from shared.logging import get_logger

T = TypeVar("T")


class CacheStatus(str, Enum):
    """Lifecycle status of one cached key."""
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Snapshot of one key's data.

    Entries are never mutated in place; the store swaps in a new entry on
    every change so a snapshot taken before a load is a safe rollback point.
    """
    items: List[T] = field(default_factory=list)
    status: CacheStatus = CacheStatus.IDLE
    last_loaded_at: Optional[datetime] = None
    has_more: bool = True

    def patch(self, **changes) -> "CacheEntry[T]":
        """Return a copy with the given fields replaced."""
        if "items" in changes:
            changes["items"] = list(changes["items"])
        return replace(self, **changes)


VIRGIN_ENTRY: CacheEntry = CacheEntry()


class CacheStore(Generic[T]):
    """Mapping of resource key to cache entry; the single source of truth."""

    def __init__(self, name: str = "cache"):
        self.name = name
        self.logger = get_logger(f"console.cache.{name}.store")
        self._entries: Dict[int, CacheEntry[T]] = {}
        self._observers: List[Callable[[int], None]] = []
        self.version = 0

    def __contains__(self, key: int) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[int]:
        return iter(self._entries)

    def get(self, key: int) -> Optional[CacheEntry[T]]:
        """Return the stored entry or None when the key is absent."""
        return self._entries.get(key)

    def snapshot(self, key: int) -> CacheEntry[T]:
        """Return the stored entry, or the virgin entry for absent keys."""
        return self._entries.get(key, VIRGIN_ENTRY)

    def put(self, key: int, entry: CacheEntry[T]) -> None:
        """Replace the entry for ``key``."""
        self._entries[key] = entry
        self._changed()

    def update(self, key: int, **changes) -> CacheEntry[T]:
        """Patch the entry for ``key``, creating it from the virgin entry if needed."""
        entry = self.snapshot(key).patch(**changes)
        self.put(key, entry)
        return entry

    def delete(self, key: int) -> bool:
        """Drop ``key``; returns whether it was present."""
        if self._entries.pop(key, None) is None:
            return False
        self._changed()
        return True

    def keys(self) -> List[int]:
        """Cached keys in ascending order."""
        return sorted(self._entries)

    def subscribe(self, callback: Callable[[int], None]) -> Callable[[], None]:
        """Register an observer called with the new version after each change.

        Returns a function that removes the observer again.
        """
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def _changed(self) -> None:
        self.version += 1
        for callback in list(self._observers):
            try:
                callback(self.version)
            except Exception as e:
                self.logger.error("Cache observer failed", version=self.version, error=str(e))
