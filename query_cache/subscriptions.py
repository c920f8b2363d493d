"""
Query subscribers and cache-wide listeners.
"""

import asyncio
import uuid
from typing import Any, Callable, List, Optional, TYPE_CHECKING

from .config import QueryConfig
from .shared.errors import describe_error
from .shared.logging import get_logger
from .state import QueryState

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .cache import QueryCache
    from .query import Query


StateListener = Callable[[QueryState], Any]
CacheListener = Callable[["QueryCache"], Any]


def _noop(state: QueryState) -> None:
    return None


class QueryInstance:
    """A consumer subscribed to one query."""

    def __init__(self, query: "Query", on_state_update: Optional[StateListener] = None,
                 config: Optional[QueryConfig] = None):
        self.id = str(uuid.uuid4())
        self.query = query
        self.on_state_update = on_state_update or _noop
        self.config = config or query.config
        self.logger = get_logger("query_cache.subscriptions")

    def update_config(self, config: QueryConfig) -> None:
        """Replace the callbacks this consumer receives on settle."""
        self.config = config

    async def run(self) -> None:
        """Refetch on mount or update when the query is stale.

        Only the sole subscriber refetches unless ``refetch_on_mount`` is set.
        A failure here has no other observer, so it is logged and not raised.
        """
        query = self.query
        if (
            query.config.enabled
            and not query.was_suspended
            and query.state.is_stale
            and (query.config.refetch_on_mount or len(query.instances) == 1)
        ):
            try:
                await asyncio.shield(query.fetch())
            except Exception as exc:
                self.logger.error(
                    "Query refetch on mount failed",
                    query_hash=query.query_hash,
                    instance_id=self.id,
                    error=describe_error(exc).model_dump(),
                )

        query.was_suspended = False

    def unsubscribe(self) -> None:
        """Detach from the query, scheduling collection when it was the last one."""
        self.query.remove_instance(self)


def notify_instances(instances: List[QueryInstance], state: QueryState) -> None:
    """Deliver a state update to subscribers in subscription order.

    A failing subscriber is logged and skipped so the transition that
    triggered the update still completes.
    """
    # Callbacks may unsubscribe while we iterate.
    for instance in list(instances):
        try:
            instance.on_state_update(state)
        except Exception as exc:
            instance.logger.error(
                "Subscriber state update failed",
                query_hash=instance.query.query_hash,
                instance_id=instance.id,
                error=describe_error(exc).model_dump(),
            )


class CacheListeners:
    """Listeners observing a whole cache."""

    def __init__(self):
        self._listeners: List[CacheListener] = []
        self.logger = get_logger("query_cache.subscriptions")

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        """Add a listener; returns a function removing it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, cache: "QueryCache") -> None:
        for listener in list(self._listeners):
            try:
                listener(cache)
            except Exception as exc:
                self.logger.error(
                    "Cache listener failed",
                    cache=cache.name,
                    error=describe_error(exc).model_dump(),
                )
