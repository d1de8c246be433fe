"""Registry of caches scoped to one container."""

import logging
from typing import Any, Dict, Iterator, List

logger = logging.getLogger(__name__)


class CacheRegistry:
    """Owns every cache of a container (catalog, schema).

    Caches are cleared in reverse registration order so that child caches
    registered after their parent cache are reset first.
    """

    def __init__(self, owner_label: str):
        self.owner_label = owner_label
        self._caches: Dict[str, Any] = {}

    def register(self, cache: Any) -> Any:
        """Register a cache under its collection name.

        Returns:
            The cache, for assignment chaining

        Raises:
            ValueError: If a cache with that name is already registered
        """
        if cache.name in self._caches:
            raise ValueError(f"Cache {cache.name!r} already registered for {self.owner_label}")
        self._caches[cache.name] = cache
        return cache

    def get(self, name: str) -> Any:
        try:
            return self._caches[name]
        except KeyError:
            raise KeyError(f"No {name!r} cache registered for {self.owner_label}") from None

    def names(self) -> List[str]:
        return list(self._caches)

    def __contains__(self, name: object) -> bool:
        return name in self._caches

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._caches.values()))

    def __len__(self) -> int:
        return len(self._caches)

    def clear_all(self) -> None:
        """Invalidate every registered cache."""
        logger.debug("Clearing %d caches of %s", len(self._caches), self.owner_label)
        for cache in reversed(list(self._caches.values())):
            cache.clear_cache()

    def close(self) -> None:
        """Invalidate and forget every cache."""
        self.clear_all()
        self._caches.clear()
