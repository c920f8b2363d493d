"""
Registry of live query caches.
"""

from typing import Iterator, List, TYPE_CHECKING

from .shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .cache import QueryCache


class CacheRegistry:
    """Tracks caches for lifecycle bookkeeping by an embedding application."""

    def __init__(self):
        self._caches: List["QueryCache"] = []
        self.logger = get_logger("query_cache.registry")

    def __contains__(self, cache: "QueryCache") -> bool:
        return any(registered is cache for registered in self._caches)

    def __iter__(self) -> Iterator["QueryCache"]:
        return iter(list(self._caches))

    def __len__(self) -> int:
        return len(self._caches)

    def register(self, cache: "QueryCache") -> None:
        if cache in self:
            return
        self._caches.append(cache)
        self.logger.debug("Cache registered", cache=cache.name)

    def unregister(self, cache: "QueryCache") -> bool:
        """Remove a cache; unknown caches are ignored."""
        for index, registered in enumerate(self._caches):
            if registered is cache:
                del self._caches[index]
                self.logger.debug("Cache unregistered", cache=cache.name)
                return True
        return False

    def close_all(self) -> None:
        """Close every registered cache."""
        for cache in list(self._caches):
            cache.close()
