"""Object cache with a narrow single-name fetch path."""

import logging
import threading
from typing import Any, List, Optional, TypeVar

from .factory import ObjectFactory
from .object_cache import ObjectCache, owner_label
from .rows import LoadContext, RowSource

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LookupCache(ObjectCache[T]):
    """ObjectCache that can resolve one name without a full enumeration.

    Resolving a single reference (a foreign key target, a table named in an
    editor) issues a query narrowed by name instead of loading every object
    of the owner. Objects found that way are inserted into the collection
    while it stays NOT_LOADED; a later full load merges with them by name so
    their identity survives.
    """

    def __init__(
        self,
        owner: Any,
        name: str,
        source: RowSource,
        factory: ObjectFactory[T],
        lookup_source: RowSource,
        **kwargs: Any,
    ):
        """Initialize lookup cache.

        Args:
            owner: Container whose children are cached
            name: Collection name
            source: Row source for the full enumeration
            factory: Converts rows into objects
            lookup_source: Row source opened with key=name for single lookups
            **kwargs: Additional args for ObjectCache
        """
        super().__init__(owner, name, source, factory, **kwargs)
        self.lookup_source = lookup_source
        self._lookup_lock = threading.Lock()

    def get_object(self, ctx: LoadContext, name: str) -> Optional[T]:
        """Get one object by name.

        Args:
            ctx: Load context
            name: Object name (compared under the cache's name policy)

        Returns:
            The object or None if the remote system has no such object

        Raises:
            CacheLoadError: If the narrow query failed
        """
        if self.is_loaded:
            return self.get_cached_object(name)

        found = self._collection.get(name)
        if found is not None:
            return found

        with self._lookup_lock:
            found = self._collection.get(name)
            if found is not None:
                return found

            objects, complete = self._populate(ctx, "lookup", key=name, source=self.lookup_source)
            return self._install_narrow(name, objects, complete)

    def _install_narrow(self, name: str, objects: List[T], complete: bool) -> Optional[T]:
        match: Optional[T] = None
        with self._collection.lock:
            if self._collection.is_loaded:
                # A full load finished meanwhile and supersedes this result
                logger.debug(
                    "Lookup of %r in %s of %s superseded by full load",
                    name,
                    self.name,
                    owner_label(self.owner),
                )
                return self._collection.get(name)

            for obj in objects:
                stored = self._collection.insert(obj) if complete else obj
                if match is None and self.policy.same(self._collection.name_of(obj), name):
                    match = stored
        return match
