"""
Unit tests for query entries: initial state, staleness and garbage collection.
"""

import asyncio

import pytest

from query_cache.cache import QueryCache
from query_cache.state import QueryStatus


async def fetch_value(*key):
    return "value"


@pytest.fixture
def cache():
    """Create a cache with its own metrics registry."""
    return QueryCache(name="query-tests")


class TestInitialState:
    """Test cases for a newly built query."""

    @pytest.mark.asyncio
    async def test_enabled_query_starts_loading(self, cache):
        """Test that an enabled query without data starts loading."""
        query = cache.build_query("todos", fetch_value)

        assert query.state.status == QueryStatus.LOADING
        assert query.state.is_fetching is True
        assert query.state.is_stale is True

    @pytest.mark.asyncio
    async def test_disabled_query_starts_idle(self, cache):
        """Test that a disabled query starts idle and stale."""
        query = cache.build_query("todos", fetch_value, {"enabled": False})

        assert query.state.status == QueryStatus.IDLE
        assert query.state.is_fetching is False
        assert query.state.is_stale is True

    @pytest.mark.asyncio
    async def test_initial_data(self, cache):
        """Test that initial data starts a fresh success state."""
        query = cache.build_query("todos", fetch_value, {"initial_data": ["a"], "stale_time": 60})

        assert query.state.status == QueryStatus.SUCCESS
        assert query.state.data == ["a"]
        assert query.state.is_stale is False
        assert query.state.updated_at > 0
        assert query.timers.has_pending_stale
        assert query.timers.has_pending_gc

    @pytest.mark.asyncio
    async def test_callable_initial_data(self, cache):
        """Test that initial data may be computed lazily."""
        query = cache.build_query("todos", fetch_value, {"initial_data": lambda: ["computed"]})

        assert query.state.data == ["computed"]

    @pytest.mark.asyncio
    async def test_disabled_query_with_initial_data_is_stale(self, cache):
        """Test that disabled queries are always stale."""
        query = cache.build_query("todos", fetch_value, {"enabled": False, "initial_data": ["a"]})

        assert query.state.status == QueryStatus.SUCCESS
        assert query.state.is_stale is True


class TestStaleness:
    """Test cases for the stale timer."""

    @pytest.mark.asyncio
    async def test_data_goes_stale_after_stale_time(self, cache):
        """Test that fetched data is fresh until stale_time passes."""
        query = cache.build_query("todos", fetch_value, {"stale_time": 0.05})

        await query.fetch()
        assert query.state.is_stale is False

        await asyncio.sleep(0.1)
        assert query.state.is_stale is True

    @pytest.mark.asyncio
    async def test_infinite_stale_time_never_goes_stale(self, cache):
        """Test that unbounded stale_time keeps data fresh."""
        query = cache.build_query("todos", fetch_value, {"stale_time": float("inf")})

        await query.fetch()

        assert query.state.is_stale is False
        assert not query.timers.has_pending_stale

    @pytest.mark.asyncio
    async def test_invalidate(self, cache):
        """Test marking a query stale manually."""
        query = cache.build_query("todos", fetch_value, {"stale_time": 60})
        await query.fetch()

        query.invalidate()

        assert query.state.is_stale is True
        assert not query.timers.has_pending_stale

    @pytest.mark.asyncio
    async def test_stale_timer_ignores_removed_query(self, cache):
        """Test that a detached query is not marked stale by its timer."""
        query = cache.build_query("todos", fetch_value, {"stale_time": 0.01})
        await query.fetch()
        del cache.queries[query.query_hash]

        await asyncio.sleep(0.03)

        assert query.state.is_stale is False

    @pytest.mark.asyncio
    async def test_set_data_restarts_stale_timer(self, cache):
        """Test that setting data makes the query fresh again."""
        query = cache.build_query("todos", fetch_value, {"stale_time": 60})
        query.invalidate()

        query.set_data(lambda old: "manual")

        assert query.state.data == "manual"
        assert query.state.is_stale is False
        assert query.timers.has_pending_stale


class TestGarbageCollection:
    """Test cases for collecting unobserved queries."""

    @pytest.mark.asyncio
    async def test_unsubscribed_query_without_data_is_collected(self, cache):
        """Test that a query without data is collected right away."""
        query = cache.build_query("todos", fetch_value, {"cache_time": 10})
        instance = query.subscribe()

        instance.unsubscribe()
        assert query.state.marked_for_garbage_collection is True

        await asyncio.sleep(0.01)

        assert cache.get_query("todos") is None
        assert cache.metrics.get_sample("query_cache_gc_evictions_total") == 1.0

    @pytest.mark.asyncio
    async def test_resubscribe_before_tick_prevents_collection(self, cache):
        """Test that subscribing again before the next tick keeps the query."""
        query = cache.build_query("todos", fetch_value, {"cache_time": 0})
        query.subscribe().unsubscribe()

        query.subscribe()
        await asyncio.sleep(0.01)

        assert cache.get_query("todos") is query

    @pytest.mark.asyncio
    async def test_query_with_data_kept_for_cache_time(self, cache):
        """Test that cached data survives until cache_time passes."""
        query = cache.build_query("todos", fetch_value, {"cache_time": 0.05, "stale_time": 60})
        instance = query.subscribe()
        await query.fetch()

        instance.unsubscribe()
        await asyncio.sleep(0.01)
        assert cache.get_query("todos") is query

        await asyncio.sleep(0.1)
        assert cache.get_query("todos") is None

    @pytest.mark.asyncio
    async def test_subscribe_heals(self, cache):
        """Test that subscribing before collection keeps the query."""
        query = cache.build_query("todos", fetch_value, {"cache_time": 0.03, "initial_data": "cached"})
        assert query.timers.has_pending_gc

        query.subscribe()
        assert not query.timers.has_pending_gc

        await asyncio.sleep(0.06)
        assert cache.get_query("todos") is query

    @pytest.mark.asyncio
    async def test_infinite_cache_time_never_collects(self, cache):
        """Test that unbounded cache_time disables collection."""
        query = cache.build_query("todos", fetch_value, {"cache_time": float("inf")})
        instance = query.subscribe()

        instance.unsubscribe()

        assert query.state.marked_for_garbage_collection is False
        assert not query.timers.has_pending_gc

    @pytest.mark.asyncio
    async def test_last_unsubscribe_cancels_fetch(self, cache):
        """Test that losing the last subscriber cancels the in-flight fetch."""
        started = asyncio.Event()

        async def slow_fetch(key):
            started.set()
            await asyncio.sleep(10)

        query = cache.build_query("todos", slow_fetch)
        instance = query.subscribe()
        task = query.fetch()
        await started.wait()

        instance.unsubscribe()

        assert query.state.is_fetching is False
        assert await task is None

    @pytest.mark.asyncio
    async def test_remove_detaches_query(self, cache):
        """Test removing a query cancels its timers and fetch."""
        query = cache.build_query("todos", fetch_value, {"refetch_interval": 10, "initial_data": "x"})
        task = query.fetch()

        query.remove()

        assert cache.get_query("todos") is None
        assert not query.timers.has_interval
        assert not query.timers.has_pending_gc
        assert await task is None
