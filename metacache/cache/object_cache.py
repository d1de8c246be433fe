"""Lazy, single-flight cache of one owner's named objects.

Population runs synchronously in the caller's thread:

1. Fast path: a LOADED collection is returned without touching the source.
2. Otherwise the cache's load lock is taken; callers arriving while a
   population is in flight block on it and return the winner's result.
3. Rows are converted one by one; cancellation is polled before each row.
4. Only a fully consumed stream marks the collection LOADED.
"""

import logging
import threading
from typing import Any, Callable, Generic, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict

from ..exceptions import CacheLoadError, FatalSourceError, RowConversionError
from .collection import CachedCollection, LoadState
from .factory import ObjectFactory
from .naming import NamePolicy
from .refresh import MergeResult, RefreshCoordinator
from .rows import LoadContext, Row, RowSource

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheEvent(BaseModel):
    """Invalidation notification sent to cache listeners."""

    model_config = ConfigDict(frozen=True)

    cache: str
    owner: str
    kind: str  # "cleared" or "refreshed"


def owner_label(owner: Any) -> str:
    """Human readable owner name for logs and errors."""
    label = getattr(owner, "qualified_name", None) or getattr(owner, "name", None)
    return str(label) if label is not None else repr(owner)


class CacheListeners:
    """Invalidation listeners shared by the cache engines.

    Subclasses provide ``name`` and ``owner`` and call ``_init_listeners()``.
    """

    def _init_listeners(self) -> None:
        self._listeners: List[Callable[[CacheEvent], None]] = []

    def add_listener(self, listener: Callable[[CacheEvent], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[CacheEvent], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _fire(self, kind: str) -> None:
        event = CacheEvent(cache=self.name, owner=owner_label(self.owner), kind=kind)
        for listener in list(self._listeners):
            listener(event)


class ObjectCache(CacheListeners, Generic[T]):
    """Maps one owner to a loaded, named, ordered collection of objects."""

    def __init__(
        self,
        owner: Any,
        name: str,
        source: RowSource,
        factory: ObjectFactory[T],
        policy: Optional[NamePolicy] = None,
        sort_key: Optional[Callable[[T], Any]] = None,
        refresher: Optional[RefreshCoordinator] = None,
    ):
        """Initialize object cache.

        Args:
            owner: Container whose children are cached
            name: Collection name; the owner's collection of that name is
                used when it has one (CatalogEntity), otherwise the cache
                keeps its own
            source: Row source for the full enumeration
            factory: Converts rows into objects
            policy: Name comparison policy
            sort_key: Optional post-sort applied after population
            refresher: Merge strategy for refresh()
        """
        self.owner = owner
        self.name = name
        self.source = source
        self.factory = factory
        self.policy = policy or NamePolicy()
        self.sort_key = sort_key
        self.refresher = refresher or RefreshCoordinator(self.policy)

        finder = getattr(owner, "find_collection", None)
        collection = finder(name) if finder else None
        self._collection: CachedCollection[T] = collection or CachedCollection(name)
        self._collection.bind_policy(self.policy)

        self._load_lock = threading.RLock()
        self._init_listeners()

    @property
    def collection(self) -> CachedCollection[T]:
        return self._collection

    @property
    def state(self) -> LoadState:
        return self._collection.state

    @property
    def is_loaded(self) -> bool:
        return self._collection.is_loaded

    # === Access ===

    def get_all_objects(self, ctx: LoadContext) -> List[T]:
        """Get every object, populating the collection on first access.

        Args:
            ctx: Load context (session, cancellation predicate)

        Returns:
            Ordered objects; a partial list if the caller cancelled

        Raises:
            CacheLoadError: If the row source failed
        """
        if self._collection.is_loaded:
            return self._collection.objects()

        with self._load_lock:
            if self._collection.is_loaded:
                return self._collection.objects()

            self._collection.mark(LoadState.LOADING)
            installed = False
            try:
                objects, complete = self._populate(ctx, "load")
                if not complete:
                    return objects
                self._install(objects)
                installed = True
            finally:
                if not installed:
                    self._collection.mark(LoadState.NOT_LOADED)

        return self._collection.objects()

    def get_cached_object(self, name: str) -> Optional[T]:
        """Look up a loaded object by name without any remote access."""
        if not self._collection.is_loaded:
            return None
        return self._collection.get(name)

    def get_cached_objects(self) -> List[T]:
        """Objects currently held, whatever the load state."""
        return self._collection.objects()

    # === Invalidation ===

    def clear_cache(self) -> None:
        """Reset to NOT_LOADED. Objects already handed out stay valid."""
        with self._load_lock:
            self._collection.reset()
        logger.debug("Cleared %s cache of %s", self.name, owner_label(self.owner))
        self._fire("cleared")

    def set_cache(self, objects: List[T]) -> None:
        """Seed the collection and mark it LOADED without a query."""
        with self._load_lock:
            self._collection.replace(objects, LoadState.LOADED)

    def refresh(self, ctx: LoadContext) -> MergeResult:
        """Re-fetch and merge by name, keeping identity of surviving objects.

        A collection that was never loaded is simply loaded. A cancelled
        refresh leaves the previous state untouched.

        Raises:
            CacheLoadError: If the row source failed
        """
        with self._load_lock:
            if not self._collection.is_loaded:
                objects = self.get_all_objects(ctx)
                return MergeResult(objects=objects, added=objects, complete=self.is_loaded)

            objects, complete = self._populate(ctx, "refresh")
            if not complete:
                return MergeResult(objects=self._collection.objects(), complete=False)

            with self._collection.lock:
                result = self.refresher.merge(self._collection.objects(), objects)
                self._collection.replace(result.objects, LoadState.LOADED)

        logger.debug(
            "Refreshed %s of %s: %d kept, %d added, %d removed",
            self.name,
            owner_label(self.owner),
            len(result.kept),
            len(result.added),
            len(result.removed),
        )
        self._fire("refreshed")
        return result

    # === Population internals ===

    def _populate(
        self,
        ctx: LoadContext,
        operation: str,
        key: Optional[str] = None,
        source: Optional[RowSource] = None,
    ) -> Tuple[List[T], bool]:
        """Run a source and convert its rows.

        Returns:
            (objects, complete) where complete is False on cancellation
        """
        source = source or self.source
        label = owner_label(self.owner)

        if ctx.cancelled():
            logger.debug("%s of %s for %s cancelled before start", operation, self.name, label)
            return [], False

        logger.debug("Populating %s of %s (%s, key=%r)", self.name, label, operation, key)
        objects: List[T] = []
        rows_read = 0
        try:
            with source.open(ctx, self.owner, key) as cursor:
                for row in cursor:
                    if ctx.cancelled():
                        logger.debug(
                            "%s of %s for %s cancelled after %d rows",
                            operation,
                            self.name,
                            label,
                            rows_read,
                        )
                        return objects, False
                    rows_read += 1
                    objects.extend(self._convert(row))
        except FatalSourceError as e:
            raise self._load_error(operation, e) from e

        if self.sort_key is not None:
            objects.sort(key=self.sort_key)
        ctx.report(self.name, rows_read)
        return objects, True

    def _convert(self, row: Row) -> List[T]:
        try:
            return list(self.factory.convert(self.owner, row))
        except RowConversionError as e:
            logger.debug("Skipping %s row of %s: %s", self.name, owner_label(self.owner), e)
            return []

    def _install(self, objects: List[T]) -> None:
        """Store a complete fetch, merging with objects found by narrow lookups."""
        with self._collection.lock:
            partial = self._collection.objects()
            if partial:
                objects = self.refresher.merge(partial, objects).objects
            self._collection.replace(objects, LoadState.LOADED)

    def _load_error(self, operation: str, cause: Exception) -> CacheLoadError:
        label = owner_label(self.owner)
        logger.error("Failed to %s %s for %s: %s", operation, self.name, label, cause)
        return CacheLoadError(
            f"Failed to {operation} {self.name} for {label}",
            context={"owner": label, "object_type": self.name, "operation": operation},
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, owner={owner_label(self.owner)!r}, state={self.state.value})"
