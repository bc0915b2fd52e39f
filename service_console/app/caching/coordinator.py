"""
Load coordination for keyed caches: validate, coalesce, fetch, commit or roll back.
"""

import asyncio
import contextlib
import functools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Generic, List, Optional, Protocol, TypeVar

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .eviction import LruEvictionPolicy
from .recovery import ClassifiedError, ErrorRecoveryPolicy
from .store import CacheEntry, CacheStatus, CacheStore

T = TypeVar("T")

DomainTransform = Callable[[Any], List[T]]


@dataclass(frozen=True)
class LoadOptions:
    """Pagination forwarded to the transport."""
    limit: Optional[int] = None
    offset: Optional[int] = None

    @property
    def is_append(self) -> bool:
        """Offsets past the first page extend the cached list."""
        return self.offset is not None and self.offset > 0

    def as_params(self) -> Dict[str, int]:
        """Query parameters for the backend request."""
        params: Dict[str, int] = {}
        if self.limit is not None:
            params["limit"] = self.limit
        if self.offset is not None:
            params["offset"] = self.offset
        return params

    def first_page(self) -> "LoadOptions":
        """Same limit, pagination reset."""
        return LoadOptions(limit=self.limit)


class Transport(Protocol):
    """Fetches the raw payload for one key."""

    async def fetch(self, key: int, options: LoadOptions) -> Any:
        ...


class Reporter(Protocol):
    """Side channel for surfacing errors."""

    def report_error(self, message: str, details: Any = None) -> None:
        ...

    def clear_error(self) -> None:
        ...


def is_valid_key(key: Any) -> bool:
    """Resource keys are positive integers (bools excluded)."""
    return isinstance(key, int) and not isinstance(key, bool) and key > 0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LoadCoordinator(Generic[T]):
    """Runs loads for one cache; at most one transport call per key in flight.

    Writes (see ``exclusive``) never overlap a load or another write of the
    same key: a write waits for in-flight work on its key, and a load started
    during a write takes its rollback snapshot only once the write is done.
    """

    def __init__(
        self,
        name: str,
        store: CacheStore,
        policy: LruEvictionPolicy,
        transport: Transport,
        transform: DomainTransform,
        reporter: Reporter,
        recovery: ErrorRecoveryPolicy,
        invalid_key_message: str,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.name = name
        self.store = store
        self.policy = policy
        self.transport = transport
        self.transform = transform
        self.reporter = reporter
        self.recovery = recovery
        self.invalid_key_message = invalid_key_message
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger(f"console.cache.{name}")

        self.pending: Dict[int, "asyncio.Task[List[T]]"] = {}
        self.writes: Dict[int, "asyncio.Future[None]"] = {}
        self.last_error: Optional[str] = None
        self.last_failure: Optional[ClassifiedError] = None

    def load(self, key: int, options: Optional[LoadOptions] = None) -> "asyncio.Task[List[T]]":
        """Start (or join) a load for ``key`` and return the shared task.

        Raises ValidationError synchronously for invalid keys; nothing is
        fetched or stored in that case.
        """
        if not is_valid_key(key):
            self.reject_key(key)

        pending = self.pending.get(key)
        if pending is not None:
            self.logger.debug("Joining in-flight load", key=key)
            if self.metrics:
                self.metrics.increment_counter("cache_coalesced_total", cache=self.name)
            return pending

        loop = asyncio.get_running_loop()
        options = options or LoadOptions()
        self.last_error = None

        previous: Optional[CacheEntry[T]] = None
        if key not in self.writes:
            previous = self._begin(key)

        task = loop.create_task(self._run(key, options, previous))
        self.pending[key] = task
        task.add_done_callback(functools.partial(self._release, key, previous))
        self.logger.debug("Load started", key=key, deferred=previous is None, **options.as_params())
        return task

    @contextlib.asynccontextmanager
    async def exclusive(self, key: int) -> AsyncIterator[None]:
        """Hold ``key`` for a write until the block exits."""
        while True:
            blocker = self.pending.get(key) or self.writes.get(key)
            if blocker is None:
                break
            await asyncio.wait([blocker])

        done: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()
        self.writes[key] = done
        try:
            yield
        finally:
            del self.writes[key]
            done.set_result(None)

    def reject_key(self, key: Any) -> None:
        """Record and raise the validation failure for an unusable key."""
        self.logger.warning("Rejected invalid key", key=repr(key))
        self.fail_validation(self.invalid_key_message, details={"key": repr(key)})

    def fail_validation(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Publish ``message`` as the error signal and raise ValidationError."""
        self.last_error = message
        self.reporter.report_error(message)
        raise ValidationError(message, details=details)

    def write(self, key: int, entry: CacheEntry[T]) -> None:
        """Store ``entry`` and mark the key as most recently used."""
        self.store.put(key, entry)
        self.policy.mark_accessed(key)

    def settle(self) -> List[int]:
        """Apply eviction after a settled mutation."""
        evicted = self.policy.evict()
        if self.metrics:
            if evicted:
                self.metrics.increment_counter("cache_evictions_total", len(evicted), cache=self.name)
            self.metrics.record_cache_size(self.name, len(self.store))
        return evicted

    def record_failure(self, error: BaseException, recovery: Optional[ErrorRecoveryPolicy] = None) -> ClassifiedError:
        """Classify ``error``, publish its message, and report it once."""
        failure = (recovery or self.recovery).classify(error)
        self.last_error = failure.message
        self.last_failure = failure
        self.reporter.report_error(failure.message, details=error)
        return failure

    def _begin(self, key: int) -> CacheEntry[T]:
        """Snapshot ``key`` for rollback and mark it loading."""
        previous = self.store.snapshot(key)
        self.write(key, previous.patch(status=CacheStatus.LOADING))
        return previous

    async def _run(self, key: int, options: LoadOptions, previous: Optional[CacheEntry[T]]) -> List[T]:
        try:
            if previous is None:
                while key in self.writes:
                    await asyncio.wait([self.writes[key]])
                previous = self._begin(key)
            try:
                raw = await self.transport.fetch(key, options)
                fetched = list(self.transform(raw))
            except asyncio.CancelledError:
                self.write(key, previous)
                raise
            except Exception as e:
                return self._rollback(key, previous, e)
            return self._commit(key, options, previous, fetched)
        finally:
            self.pending.pop(key, None)
            self.settle()

    def _release(self, key: int, previous: Optional[CacheEntry[T]], task: "asyncio.Task[List[T]]") -> None:
        # A task cancelled before its first step never reaches _run's cleanup
        if self.pending.get(key) is task:
            self.pending.pop(key)
            if previous is not None:
                self.write(key, previous)
            self.settle()

    def _commit(self, key: int, options: LoadOptions, previous: CacheEntry[T], fetched: List[T]) -> List[T]:
        items = list(previous.items) + fetched if options.is_append else fetched
        has_more = options.limit is not None and len(fetched) >= options.limit

        self.write(key, CacheEntry(
            items=list(items),
            status=CacheStatus.SUCCESS,
            last_loaded_at=self.clock(),
            has_more=has_more,
        ))
        self.last_failure = None
        self.reporter.clear_error()

        self.logger.info("Load committed", key=key, count=len(items), appended=options.is_append)
        if self.metrics:
            self.metrics.record_cache_load(self.name, "success")
        return list(items)

    def _rollback(self, key: int, previous: CacheEntry[T], error: Exception) -> List[T]:
        failure = self.record_failure(error)

        if failure.retains_data and previous.status == CacheStatus.SUCCESS:
            self.write(key, previous)
            outcome = "rollback"
            result = list(previous.items)
        else:
            self.write(key, CacheEntry(items=[], status=CacheStatus.ERROR, last_loaded_at=None, has_more=False))
            outcome = "error"
            result = []

        self.logger.warning(
            "Load failed",
            key=key,
            kind=failure.kind.value,
            status_code=failure.status_code,
            outcome=outcome,
            error=str(error),
        )
        if self.metrics:
            self.metrics.record_cache_load(self.name, outcome)
        return result
