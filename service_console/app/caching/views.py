"""
Read-only projections over a cache store.

Nothing here holds data of its own: every property re-reads the store, so a
view of an evicted or never-loaded key reads exactly like a virgin key.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from .store import CacheEntry, CacheStatus, CacheStore

T = TypeVar("T")


def sort_key(value: Any):
    # None sorts last; strings compare case-insensitively
    if value is None:
        return (1, "")
    if isinstance(value, str):
        return (0, value.casefold())
    return (0, value)


def _as_number(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class KeyView(Generic[T]):
    """Derived values for one key of one cache."""

    def __init__(self, store: CacheStore, key: int):
        self._store = store
        self.key = key

    @property
    def entry(self) -> CacheEntry[T]:
        return self._store.snapshot(self.key)

    @property
    def items(self) -> List[T]:
        return list(self.entry.items)

    @property
    def status(self) -> CacheStatus:
        return self.entry.status

    @property
    def is_idle(self) -> bool:
        return self.status == CacheStatus.IDLE

    @property
    def is_loading(self) -> bool:
        return self.status == CacheStatus.LOADING

    @property
    def is_success(self) -> bool:
        return self.status == CacheStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status == CacheStatus.ERROR

    @property
    def last_loaded_at(self) -> Optional[datetime]:
        return self.entry.last_loaded_at

    @property
    def has_more(self) -> bool:
        return self.entry.has_more

    @property
    def count(self) -> int:
        return len(self.entry.items)

    @property
    def is_empty(self) -> bool:
        return self.count == 0

    def total(self, attr: str) -> float:
        """Numeric sum of ``attr`` over the items; missing values count as 0."""
        return sum(_as_number(getattr(item, attr, None)) for item in self.entry.items)

    def sorted_by(self, attr: str, reverse: bool = False) -> List[T]:
        """Items ordered by ``attr`` (stable)."""
        return sorted(self.entry.items, key=lambda item: sort_key(getattr(item, attr, None)), reverse=reverse)

    def matching(self, query: Optional[str], *attrs: str) -> List[T]:
        """Items where any of ``attrs`` contains ``query`` (case-insensitive)."""
        needle = (query or "").strip().casefold()
        if not needle:
            return self.items
        return [
            item for item in self.entry.items
            if any(needle in str(getattr(item, attr, "") or "").casefold() for attr in attrs)
        ]

    def where(self, predicate: Callable[[T], bool]) -> List[T]:
        return [item for item in self.entry.items if predicate(item)]

    def first(self, attr: str, value: Any) -> Optional[T]:
        """First item whose ``attr`` equals ``value``."""
        for item in self.entry.items:
            if getattr(item, attr, None) == value:
                return item
        return None

    def as_dict(self) -> Dict[str, Any]:
        """Serializable summary used by the console API."""
        entry = self.entry
        return {
            "key": self.key,
            "status": entry.status.value,
            "lastLoadedAt": entry.last_loaded_at.isoformat() if entry.last_loaded_at else None,
            "hasMore": entry.has_more,
            "count": len(entry.items),
        }


class DerivedViewLayer(Generic[T]):
    """Per-key view handles plus cross-key projections."""

    def __init__(self, store: CacheStore):
        self.store = store
        self._handles: Dict[int, KeyView[T]] = {}

    def view(self, key: int) -> KeyView[T]:
        """Handle for ``key``, built on first access.

        Handles are only retained for keys present in the store so the handle
        map never outgrows the cache.
        """
        handle = self._handles.get(key)
        if handle is None:
            handle = KeyView(self.store, key)
            if key in self.store:
                self._handles[key] = handle
        return handle

    def drop(self, key: int) -> None:
        """Forget the handle for an evicted key."""
        self._handles.pop(key, None)

    @property
    def handle_keys(self) -> List[int]:
        return sorted(self._handles)

    def cached_keys(self) -> List[int]:
        return self.store.keys()

    def all_items(self) -> List[T]:
        """Items of every cached key, concatenated in ascending key order."""
        items: List[T] = []
        for key in self.store.keys():
            items.extend(self.store.snapshot(key).items)
        return items

    def total_items(self) -> int:
        return sum(len(self.store.snapshot(key).items) for key in self.store)
