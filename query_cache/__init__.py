"""
Client-side cache for asynchronous query results.

Queries are identified by serializable keys. The cache deduplicates concurrent
fetches, retries failures with backoff, tracks staleness, refetches on
demand or on an interval and garbage-collects entries nobody observes.
"""

from .activity import ActivityMonitor
from .cache import QueryCache
from .config import QueryConfig
from .keys import deep_includes, match_query_key, serialize_query_key
from .query import Query
from .registry import CacheRegistry
from .shared.config import QueryCacheSettings, get_settings
from .shared.errors import (
    ConfigurationError,
    ErrorResponse,
    InvalidQueryKeyError,
    InvalidTransitionError,
    QueryCacheException,
    QueryCancelledError,
    describe_error,
)
from .shared.logging import configure_logging
from .state import QueryState, QueryStatus
from .subscriptions import QueryInstance

__version__ = "1.0.0"

__all__ = [
    "ActivityMonitor",
    "CacheRegistry",
    "ConfigurationError",
    "ErrorResponse",
    "InvalidQueryKeyError",
    "InvalidTransitionError",
    "Query",
    "QueryCache",
    "QueryCacheException",
    "QueryCacheSettings",
    "QueryCancelledError",
    "QueryConfig",
    "QueryInstance",
    "QueryState",
    "QueryStatus",
    "configure_logging",
    "deep_includes",
    "describe_error",
    "get_settings",
    "match_query_key",
    "serialize_query_key",
]
