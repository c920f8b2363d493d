"""
Query cache directory.

Maps canonical query hashes to :class:`~query_cache.query.Query` entries and
provides the bulk operations consumers use: lookups by key or predicate,
invalidation, cancellation, removal, prefetching and direct data updates.
"""

import asyncio
from typing import Any, Callable, Dict, List, Mapping, Optional, TYPE_CHECKING, Union

from .activity import ActivityMonitor
from .config import QueryConfig
from .fetcher import QueryFn
from .keys import match_serialized
from .query import Query
from .shared.config import QueryCacheSettings, get_settings
from .shared.logging import get_logger
from .shared.metrics import MetricsCollector, get_metrics_collector
from .subscriptions import CacheListener, CacheListeners

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .registry import CacheRegistry


QueryPredicate = Union[bool, Callable[[Query], bool], Any]


async def pending_forever(*args: Any) -> Any:
    """Fetch function for placeholder queries; never completes."""
    await asyncio.get_running_loop().create_future()


class QueryCache:
    """Directory of queries keyed by canonical hash."""

    def __init__(
        self,
        defaults: Optional[Mapping[str, Any]] = None,
        *,
        activity: Optional[ActivityMonitor] = None,
        registry: Optional["CacheRegistry"] = None,
        settings: Optional[QueryCacheSettings] = None,
        metrics: Optional[MetricsCollector] = None,
        name: str = "default",
    ):
        self.name = name
        self.queries: Dict[str, Query] = {}
        self.is_fetching = 0
        self.activity = activity or ActivityMonitor()
        self.metrics = metrics or get_metrics_collector(name)
        self.logger = get_logger("query_cache.cache")

        self.settings = settings or get_settings()
        self.defaults = QueryConfig.from_settings(self.settings).merge(defaults)

        self._listeners = CacheListeners()
        self._registry = registry
        if registry is not None:
            registry.register(self)

    def __repr__(self) -> str:
        return f"QueryCache(name={self.name!r}, queries={len(self.queries)})"

    # Notifications

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        """Observe every change in the cache; returns an unsubscribe function."""
        return self._listeners.subscribe(listener)

    def notify_global_listeners(self) -> None:
        self.is_fetching = sum(1 for query in self.queries.values() if query.state.is_fetching)
        self.metrics.set_directory_size(len(self.queries), self.is_fetching)
        self._listeners.notify(self)

    # Configuration

    def resolve_config(self, overrides: Optional[Mapping[str, Any]] = None) -> QueryConfig:
        """Merge per-query options over the cache defaults."""
        return self.defaults.merge(overrides)

    # Lookups

    def get_queries(self, predicate: QueryPredicate = True, exact: bool = False) -> List[Query]:
        """Return queries matching ``True`` (all), a callable, or a query key.

        Keys match exactly by hash with ``exact``, otherwise any query whose
        key deep-includes the given key matches.
        """
        if predicate is True:
            return list(self.queries.values())

        if callable(predicate):
            return [query for query in list(self.queries.values()) if predicate(query)]

        target_hash, target_key = self.defaults.query_key_serializer(predicate)
        return [
            query for query in list(self.queries.values())
            if match_serialized(query.query_hash, query.query_key, target_hash, target_key, exact=exact)
        ]

    def get_query(self, query_key: Any) -> Optional[Query]:
        queries = self.get_queries(query_key, exact=True)
        return queries[0] if queries else None

    def get_query_data(self, query_key: Any) -> Any:
        query = self.get_query(query_key)
        return query.state.data if query else None

    # Bulk operations

    def remove_queries(self, predicate: QueryPredicate = True, exact: bool = False) -> List[Query]:
        """Remove matching queries; returns the removed queries."""
        removed = self.get_queries(predicate, exact=exact)
        for query in removed:
            query.remove()
        if removed:
            self.notify_global_listeners()
        return removed

    def cancel_queries(self, predicate: QueryPredicate = True, exact: bool = False) -> List[Query]:
        """Cancel in-flight fetches of matching queries."""
        queries = self.get_queries(predicate, exact=exact)
        for query in queries:
            query.cancel()
        return queries

    async def invalidate_queries(
        self,
        predicate: QueryPredicate = True,
        refetch_active: bool = True,
        exact: bool = False,
        throw_on_error: bool = True,
    ) -> List[Any]:
        """Refetch matching queries that have subscribers and mark the rest stale.

        Refetches run concurrently. The first refetch error is raised unless
        ``throw_on_error`` is False, in which case failures are swallowed.
        """
        refetches = []
        for query in self.get_queries(predicate, exact=exact):
            if refetch_active and query.instances:
                refetches.append(query.fetch())
            else:
                query.invalidate()

        if not refetches:
            return []

        try:
            return list(await asyncio.gather(*(asyncio.shield(task) for task in refetches)))
        except Exception as exc:
            if throw_on_error:
                raise
            self.logger.debug("Suppressed invalidation error", error=str(exc))
            return []

    def clear(self) -> None:
        """Cancel everything and empty the cache."""
        for query in list(self.queries.values()):
            query.clear()
        self.queries = {}
        self.notify_global_listeners()

    def close(self) -> None:
        """Clear the cache and drop it from its registry."""
        self.clear()
        if self._registry is not None:
            self._registry.unregister(self)

    # Building and populating

    def build_query(self, query_key: Any, query_fn: Optional[QueryFn] = None,
                    config: Optional[Mapping[str, Any]] = None) -> Query:
        """Look up the query for ``query_key``, creating it if needed."""
        resolved = self.resolve_config(config)
        query_hash, canonical_key = resolved.query_key_serializer(query_key)

        query = self.queries.get(query_hash)
        if query is not None:
            if query_fn is not None:
                query.query_fn = query_fn
            query.config = resolved
        else:
            query = Query(self, canonical_key, query_hash, query_fn, resolved)

            if query.state.data is not None:
                query.schedule_stale_timeout()
                # Nothing may subscribe, so collect unless something heals it.
                query.heal()
                query.schedule_garbage_collection()

            self.queries[query_hash] = query
            self.logger.debug("Query built", query_hash=query_hash, cache=self.name)
            # Defer so listeners never observe a half-built directory.
            asyncio.get_running_loop().call_soon(self.notify_global_listeners)

        query.start_interval()
        return query

    async def prefetch_query(self, query_key: Any, query_fn: QueryFn,
                             config: Optional[Mapping[str, Any]] = None,
                             throw_on_error: bool = False) -> Any:
        """Fetch a query ahead of use and return its data."""
        query = self.build_query(query_key, query_fn, config)

        try:
            await asyncio.shield(query.fetch())
        except Exception:
            if throw_on_error:
                raise

        return query.state.data

    async def read_query(self, query_key: Any, query_fn: QueryFn,
                         config: Optional[Mapping[str, Any]] = None) -> Any:
        """Suspending read: return fresh data or block on the shared fetch.

        While blocked, the query's own callbacks are notified on settle as if
        the reader were a subscriber.
        """
        query = self.build_query(query_key, query_fn, config)
        if query.state.data is not None and not query.state.is_stale:
            return query.state.data

        query.was_suspended = True
        await asyncio.shield(query.fetch())
        return query.state.data

    def set_query_data(self, query_key: Any, updater: Any, exact: bool = False, **config) -> None:
        """Set data on matching queries, creating a placeholder when none match."""
        queries = self.get_queries(query_key, exact=exact)

        if not queries and not callable(query_key):
            queries = [self.build_query(query_key, pending_forever, config)]

        for query in queries:
            query.set_data(updater)
