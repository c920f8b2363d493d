"""
A single cached query: state, subscribers, timers and its fetcher.
"""

import asyncio
import math
from typing import Any, List, Optional, TYPE_CHECKING

from .config import QueryConfig
from .fetcher import FetchAttempt, QueryFetcher, QueryFn
from .shared.logging import get_logger
from .shared.metrics import MetricsCollector
from .state import (
    ExternalSet,
    Init,
    MarkForGC,
    MarkStale,
    QueryEvent,
    QueryState,
    QueryStatus,
    Succeeded,
    transition,
)
from .subscriptions import QueryInstance, StateListener, notify_instances
from .timers import QueryTimers

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .cache import QueryCache


class Query:
    """Cache entry for one canonical query key.

    Queries are mutable singletons owned by their cache: rebuilding the same
    key updates ``query_fn`` and ``config`` in place.
    """

    def __init__(self, cache: "QueryCache", query_key: List[Any], query_hash: str,
                 query_fn: Optional[QueryFn], config: QueryConfig):
        self.cache = cache
        self.query_key = query_key
        self.query_hash = query_hash
        self.query_fn = query_fn
        self.config = config
        self.instances: List[QueryInstance] = []
        self.timers = QueryTimers()
        self.fetcher = QueryFetcher(self)
        self.was_suspended = False
        self.retry_paused = False
        self.logger = get_logger("query_cache.query")

        initial_data = config.initial_data() if callable(config.initial_data) else config.initial_data
        has_initial_data = initial_data is not None

        if has_initial_data:
            initial_status = QueryStatus.SUCCESS
        elif config.enabled:
            initial_status = QueryStatus.LOADING
        else:
            initial_status = QueryStatus.IDLE

        self.state: QueryState = transition(None, Init(
            initial_status=initial_status,
            initial_data=initial_data,
            has_initial_data=has_initial_data,
            is_stale=not config.enabled or not has_initial_data,
        ))

    def __repr__(self) -> str:
        return f"Query(query_hash={self.query_hash!r}, status={self.state.status.value!r})"

    @property
    def metrics(self) -> MetricsCollector:
        return self.cache.metrics

    @property
    def in_flight(self) -> Optional[FetchAttempt]:
        return self.fetcher.in_flight

    def dispatch(self, event: QueryEvent) -> None:
        """Apply an event, then notify subscribers and cache listeners."""
        self.state = transition(self.state, event)
        notify_instances(self.instances, self.state)
        self.cache.notify_global_listeners()

    # Timers

    def schedule_stale_timeout(self) -> None:
        self.timers.schedule_stale(self.config.stale_time, self._on_stale_timeout)

    def _on_stale_timeout(self) -> None:
        if self.cache.queries.get(self.query_hash) is self:
            self.invalidate()

    def invalidate(self) -> None:
        """Mark the query stale without refetching."""
        self.timers.cancel_stale()
        self.dispatch(MarkStale())

    def schedule_garbage_collection(self) -> None:
        if math.isinf(self.config.cache_time):
            return

        self.dispatch(MarkForGC())
        has_data = self.state.data is not None
        delay = self.config.cache_time if has_data or self.state.is_error else 0.0
        self.timers.schedule_gc(delay, self._on_gc_timeout)

    def _on_gc_timeout(self) -> None:
        query_hash = self.query_hash
        removed = self.cache.remove_queries(
            lambda query: (
                query.query_hash == query_hash
                and query.state.marked_for_garbage_collection
                and not query.instances
            )
        )
        if removed:
            self.metrics.record_eviction()
            self.logger.debug("Query garbage collected", query_hash=query_hash)

    def heal(self) -> None:
        """Stop a pending garbage collection."""
        self.timers.cancel_gc()

    def start_interval(self) -> None:
        """Replace the refetch interval from the current config."""
        self.timers.cancel_interval()
        if self.config.refetch_interval:
            self.timers.schedule_interval(self.config.refetch_interval, self._on_interval)

    def _on_interval(self) -> None:
        if self.cache.activity.is_active() or self.config.refetch_interval_in_background:
            self.fetch().add_done_callback(self._consume_background_result)

    def _consume_background_result(self, task: "asyncio.Task[Any]") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.debug("Interval refetch failed", query_hash=self.query_hash, error=str(error))

    def cancel_interval(self) -> None:
        self.timers.cancel_interval()

    # Fetching

    def fetch(self, query_fn: Optional[QueryFn] = None) -> "asyncio.Task[Any]":
        """Start or join the query's single in-flight fetch."""
        return self.fetcher.fetch(query_fn)

    def cancel(self) -> bool:
        """Cancel the in-flight fetch and the refetch interval."""
        self.cancel_interval()
        return self.fetcher.cancel()

    # Direct updates

    def set_state(self, updater) -> None:
        self.dispatch(ExternalSet(updater))

    def set_data(self, updater) -> None:
        """Commit data as a successful fetch would, then restart the stale timer."""
        self.dispatch(Succeeded(updater))
        self.schedule_stale_timeout()

    # Teardown

    def clear(self) -> None:
        self.timers.cancel_all()
        self.cancel()

    def remove(self) -> None:
        self.cancel()
        self.timers.cancel_all()
        if self.cache.queries.get(self.query_hash) is self:
            del self.cache.queries[self.query_hash]

    # Subscribers

    def subscribe(self, on_state_update: Optional[StateListener] = None) -> QueryInstance:
        """Add a consumer; pending garbage collection is cancelled first."""
        self.heal()
        instance = QueryInstance(self, on_state_update)
        self.instances.append(instance)
        return instance

    def remove_instance(self, instance: QueryInstance) -> None:
        remaining = [d for d in self.instances if d.id != instance.id]
        if len(remaining) == len(self.instances):
            return
        self.instances = remaining

        if not self.instances:
            self.cancel()
            self.schedule_garbage_collection()
