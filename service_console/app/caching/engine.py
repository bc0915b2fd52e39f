"""
Keyed resource cache: the public face of one domain cache.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar

from shared.metrics import MetricsCollector
from .coordinator import DomainTransform, LoadCoordinator, LoadOptions, Reporter, Transport, is_valid_key, utc_now
from .eviction import DEFAULT_CAPACITY, LruEvictionPolicy
from .recovery import ErrorRecoveryPolicy
from .store import CacheEntry, CacheStatus, CacheStore
from .views import DerivedViewLayer, KeyView

T = TypeVar("T")


class KeyedResourceCache(Generic[T]):
    """Caches lists of ``T`` per positive integer key.

    Concurrent loads of one key share a single transport call, the number of
    cached keys is bounded by ``capacity`` (least recently used keys go
    first), and a failed refresh keeps already-visible data unless the
    backend says the resource is gone.
    """

    def __init__(
        self,
        name: str,
        transport: Transport,
        transform: DomainTransform,
        reporter: Reporter,
        *,
        fallback_message: str,
        not_found_message: Optional[str] = None,
        key_label: str = "resource",
        id_attr: str = "id",
        capacity: int = DEFAULT_CAPACITY,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.name = name
        self.key_label = key_label
        self.id_attr = id_attr
        self.store: CacheStore[T] = CacheStore(name)
        self.views: DerivedViewLayer[T] = DerivedViewLayer(self.store)
        self.policy = LruEvictionPolicy(self.store, capacity, on_evict=self.views.drop)
        self.coordinator: LoadCoordinator[T] = LoadCoordinator(
            name=name,
            store=self.store,
            policy=self.policy,
            transport=transport,
            transform=transform,
            reporter=reporter,
            recovery=ErrorRecoveryPolicy(fallback_message, not_found_message),
            invalid_key_message=f"Invalid {key_label} ID",
            metrics=metrics,
            clock=clock,
        )

    # Loading

    def load(self, key: int, options: Optional[LoadOptions] = None) -> "asyncio.Task[List[T]]":
        """Load ``key``; concurrent callers receive the same task."""
        return self.coordinator.load(key, options)

    def refresh(self, key: int, options: Optional[LoadOptions] = None) -> "asyncio.Task[List[T]]":
        """Reload ``key`` from the first page."""
        return self.coordinator.load(key, (options or LoadOptions()).first_page())

    def touch(self, key: int) -> bool:
        """Refresh the recency of a cached key without loading it."""
        if key not in self.store:
            return False
        self.policy.mark_accessed(key)
        return True

    def validate_key(self, key: Any) -> None:
        """Raise ValidationError (and publish it) for an unusable key."""
        if not is_valid_key(key):
            self.coordinator.reject_key(key)

    def reject(self, message: str) -> None:
        """Publish and raise a ValidationError for any other caller-supplied value."""
        self.coordinator.fail_validation(message)

    async def mutate(
        self,
        key: int,
        request: Callable[[], Awaitable[Any]],
        apply: Callable[[List[T], Any], List[T]],
        fallback_message: str,
        raise_errors: bool = False,
    ) -> Optional[Any]:
        """Run a write against the backend and fold its result into ``key``.

        ``apply`` receives the items cached before the write and the backend
        result, and returns the new item list. The write waits for any load
        or write of ``key`` already in flight, and loads started meanwhile
        wait for it. On failure the entry is put back exactly as it was and
        None is returned, or the classified error is raised when
        ``raise_errors`` is set.
        """
        self.validate_key(key)
        coordinator = self.coordinator

        async with coordinator.exclusive(key):
            existed = key in self.store
            previous = self.store.snapshot(key)

            coordinator.last_error = None
            coordinator.write(key, previous.patch(status=CacheStatus.LOADING))
            try:
                result = await request()
                items = apply(list(previous.items), result)
            except asyncio.CancelledError:
                self._restore(key, previous, existed)
                raise
            except Exception as e:
                failure = coordinator.record_failure(e, ErrorRecoveryPolicy(fallback_message))
                self._restore(key, previous, existed)
                coordinator.logger.warning("Mutation failed", key=key, kind=failure.kind.value, error=str(e))
                if raise_errors:
                    raise failure.to_exception() from e
                return None

            coordinator.write(key, CacheEntry(
                items=items,
                status=CacheStatus.SUCCESS,
                last_loaded_at=coordinator.clock(),
                has_more=previous.has_more,
            ))
            coordinator.reporter.clear_error()
            coordinator.settle()
            return result

    def _restore(self, key: int, previous: CacheEntry[T], existed: bool) -> None:
        if existed:
            self.coordinator.write(key, previous)
        else:
            self.store.delete(key)
            self.policy.forget(key)
            self.views.drop(key)
        self.coordinator.settle()

    # Error signal

    @property
    def error(self) -> Optional[str]:
        """Message of the most recent failure, or None."""
        return self.coordinator.last_error

    def clear_error(self) -> None:
        self.coordinator.last_error = None

    # Views

    def view(self, key: int) -> KeyView[T]:
        return self.views.view(key)

    def items(self, key: int) -> List[T]:
        return self.views.view(key).items

    def status(self, key: int) -> CacheStatus:
        return self.views.view(key).status

    def find_by_id(self, key: int, item_id: Any) -> Optional[T]:
        """Look up an item by identity within one cached key; no I/O."""
        return self.views.view(key).first(self.id_attr, item_id)

    def cached_keys(self) -> List[int]:
        return self.views.cached_keys()

    def all_items(self) -> List[T]:
        return self.views.all_items()

    def total_items(self) -> int:
        return self.views.total_items()

    def pending_keys(self) -> List[int]:
        return sorted(self.coordinator.pending)

    def subscribe(self, callback: Callable[[int], None]) -> Callable[[], None]:
        """Observe store changes; see CacheStore.subscribe."""
        return self.store.subscribe(callback)

    @property
    def capacity(self) -> int:
        return self.policy.capacity

    @property
    def version(self) -> int:
        return self.store.version

    def stats(self) -> dict:
        return {
            "name": self.name,
            "capacity": self.capacity,
            "size": len(self.store),
            "keys": self.cached_keys(),
            "pending": self.pending_keys(),
            "version": self.version,
            "error": self.error,
        }
