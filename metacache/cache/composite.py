"""Two level cache joining a parent stream with grouped child rows.

One ordered query (sorted by parent key, then object key, then ordinal)
loads the children of every parent at once, or of a single parent when the
source is opened with that parent's key. The stream is folded into an
immutable ``parent key -> children`` map; children are attached to their
parents only after the whole stream was consumed, so a failed or cancelled
population never leaves a parent with a truncated child list.
"""

import logging
import threading
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

from ..exceptions import CacheLoadError, FatalSourceError, RowConversionError
from .collection import CachedCollection, LoadState, object_name
from .factory import CompositeFactory
from .naming import NamePolicy
from .object_cache import CacheListeners, ObjectCache, owner_label
from .refresh import MergeResult, RefreshCoordinator
from .rows import LoadContext, Row, RowSource

logger = logging.getLogger(__name__)

P = TypeVar("P")
O = TypeVar("O")
E = TypeVar("E")

Groups = Dict[str, Tuple[Any, Tuple[Any, ...]]]


class CompositeCache(CacheListeners, Generic[P, O, E]):
    """Children of every parent of a parent cache, loaded in one query."""

    def __init__(
        self,
        owner: Any,
        name: str,
        parent_cache: ObjectCache[P],
        source: RowSource,
        factory: CompositeFactory[P, O, E],
        parent_column: str,
        object_column: Optional[str] = None,
        policy: Optional[NamePolicy] = None,
        sort_key: Optional[Callable[[O], Any]] = None,
        refresher: Optional[RefreshCoordinator] = None,
    ):
        """Initialize composite cache.

        Args:
            owner: Container of the parents (schema)
            name: Name of the child collection on each parent (indexes)
            parent_cache: Cache holding the parents (tables)
            source: Ordered row source; opened with key=parent name in
                single-parent mode
            factory: Builds objects and their elements from rows
            parent_column: Row field holding the parent name
            object_column: Row field grouping rows into one object (index
                name); None means every row is its own object
            policy: Name comparison policy
            sort_key: Optional post-sort of each parent's children
            refresher: Merge strategy for refresh()
        """
        self.owner = owner
        self.name = name
        self.parent_cache = parent_cache
        self.source = source
        self.factory = factory
        self.parent_column = parent_column
        self.object_column = object_column
        self.policy = policy or NamePolicy()
        self.sort_key = sort_key
        self.refresher = refresher or RefreshCoordinator(self.policy)

        self._load_lock = threading.RLock()
        self._all_loaded = False
        self._init_listeners()

    @property
    def is_loaded(self) -> bool:
        """True once the children of all parents were loaded together."""
        return self._loaded_for(None)

    def supports(self, parent: P) -> bool:
        """Check whether a parent carries the collection this cache fills."""
        return self._find_collection(parent) is not None

    def child_collection(self, parent: P) -> CachedCollection[O]:
        """Get the child collection this cache fills on a parent.

        Raises:
            TypeError: If the parent does not carry such a collection
        """
        collection = self._find_collection(parent)
        if collection is None:
            raise TypeError(f"{owner_label(parent)} has no {self.name} collection")
        return collection

    def _find_collection(self, parent: P) -> Optional[CachedCollection[O]]:
        finder = getattr(parent, "find_collection", None)
        collection = finder(self.name) if finder else None
        if collection is not None and collection.policy != self.policy:
            collection.bind_policy(self.policy)
        return collection

    def _supported_parents(self) -> List[P]:
        return [p for p in self.parent_cache.get_cached_objects() if self.supports(p)]

    # === Access ===

    def get_objects(self, ctx: LoadContext, parent: Optional[P] = None) -> List[O]:
        """Get children of one parent, or of every parent in parent order.

        Args:
            ctx: Load context
            parent: Restrict loading to this parent (single-parent mode)

        Returns:
            Child objects; partial if the caller cancelled

        Raises:
            CacheLoadError: If the row source failed
        """
        if self._loaded_for(parent):
            return self._loaded_objects(parent)

        with self._load_lock:
            if self._loaded_for(parent):
                return self._loaded_objects(parent)

            groups, complete = self._load(ctx, parent, "load")
            if not complete:
                return [obj for _, children in groups.values() for obj in children]
            self._attach(groups, parent, merge=False)

        return self._loaded_objects(parent)

    def get_object(self, ctx: LoadContext, parent: P, name: str) -> Optional[O]:
        """Get one child of a parent by name."""
        self.get_objects(ctx, parent)
        collection = self.child_collection(parent)
        if not collection.is_loaded:
            return None
        return collection.get(name)

    # === Invalidation ===

    def clear_cache(self) -> None:
        """Reset the child collection of every cached parent."""
        with self._load_lock:
            for parent in self._supported_parents():
                self.child_collection(parent).reset()
            self._all_loaded = False
        logger.debug("Cleared %s cache of %s", self.name, owner_label(self.owner))
        self._fire("cleared")

    def refresh(self, ctx: LoadContext, parent: Optional[P] = None) -> MergeResult:
        """Re-fetch children and merge them parent by parent.

        Children that keep their name keep their identity. Parents that lost
        all their rows end up with an empty collection.

        Raises:
            CacheLoadError: If the row source failed
        """
        with self._load_lock:
            groups, complete = self._load(ctx, parent, "refresh")
            if not complete:
                return MergeResult(complete=False)
            result = self._attach(groups, parent, merge=True)

        logger.debug(
            "Refreshed %s of %s: %d kept, %d added, %d removed",
            self.name,
            owner_label(parent if parent is not None else self.owner),
            len(result.kept),
            len(result.added),
            len(result.removed),
        )
        self._fire("refreshed")
        return result

    # === Population internals ===

    def _loaded_for(self, parent: Optional[P]) -> bool:
        if parent is not None:
            return self.child_collection(parent).is_loaded
        # Parents replaced by a parent refresh or clear need their own load
        if not (self._all_loaded and self.parent_cache.is_loaded):
            return False
        return all(self.child_collection(p).is_loaded for p in self._supported_parents())

    def _loaded_objects(self, parent: Optional[P]) -> List[O]:
        if parent is not None:
            return self.child_collection(parent).objects()
        objects: List[O] = []
        for candidate in self._supported_parents():
            collection = self.child_collection(candidate)
            if collection.is_loaded:
                objects.extend(collection.objects())
        return objects

    def _load(self, ctx: LoadContext, parent: Optional[P], operation: str) -> Tuple[Groups, bool]:
        if ctx.cancelled():
            return {}, False

        if parent is None:
            self.parent_cache.get_all_objects(ctx)
            if not self.parent_cache.is_loaded:
                return {}, False

        key = object_name(parent) if parent is not None else None
        skip_loaded = operation == "load"
        logger.debug("Populating %s of %s (%s, parent=%r)", self.name, owner_label(self.owner), operation, key)
        try:
            with self.source.open(ctx, self.owner, key) as cursor:
                return self._fold(ctx, cursor, parent, skip_loaded)
        except FatalSourceError as e:
            raise self._load_error(operation, parent, e) from e

    def _fold(
        self,
        ctx: LoadContext,
        rows: Iterable[Row],
        single_parent: Optional[P],
        skip_loaded: bool,
    ) -> Tuple[Groups, bool]:
        """Fold the ordered stream into finalized children per parent key.

        Returns:
            (groups, complete) where complete is False on cancellation
        """
        groups: Groups = {}
        parents: Dict[str, Optional[P]] = {}
        current_key: Optional[str] = None
        buffer: List[Row] = []
        rows_read = 0

        for row in rows:
            if ctx.cancelled():
                if current_key is not None:
                    self._finalize(groups, current_key, parents[current_key], buffer)
                logger.debug("Loading %s cancelled after %d rows", self.name, rows_read)
                return groups, False

            rows_read += 1
            raw_key = row.get_str(self.parent_column)
            if not raw_key:
                logger.debug("Skipping %s row without %s", self.name, self.parent_column)
                continue

            key = self.policy.key(raw_key)
            if key != current_key:
                if current_key is not None:
                    self._finalize(groups, current_key, parents[current_key], buffer)
                buffer = []
                current_key = key
                if key not in parents:
                    parents[key] = self._resolve_parent(raw_key, row, single_parent, skip_loaded)

            if parents[current_key] is not None:
                buffer.append(row)

        if current_key is not None:
            self._finalize(groups, current_key, parents[current_key], buffer)

        ctx.report(self.name, rows_read)
        return groups, True

    def _resolve_parent(
        self,
        raw_key: str,
        row: Row,
        single_parent: Optional[P],
        skip_loaded: bool,
    ) -> Optional[P]:
        if single_parent is not None:
            if self.policy.same(object_name(single_parent), raw_key):
                return single_parent
            logger.debug("Ignoring %s rows of %r while loading %r", self.name, raw_key, object_name(single_parent))
            return None

        parent = self.parent_cache.collection.get(raw_key)
        if parent is None:
            try:
                parent = self.factory.make_parent(self.owner, raw_key, row)
            except RowConversionError as e:
                logger.debug("Cannot construct %s owner %r: %s", self.name, raw_key, e)
                parent = None
            if parent is None:
                logger.warning(
                    "Owner %r of %s in %s not found, rows dropped",
                    raw_key,
                    self.name,
                    owner_label(self.owner),
                )
                return None
            parent = self.parent_cache.collection.insert(parent)

        if not self.supports(parent):
            logger.debug("%s has no %s, rows dropped", owner_label(parent), self.name)
            return None
        if skip_loaded and self.child_collection(parent).is_loaded:
            # Already read in single-parent mode
            return None
        return parent

    def _finalize(self, groups: Groups, key: str, parent: Optional[P], buffer: List[Row]) -> None:
        if parent is None:
            return
        children = self._build_children(parent, buffer)
        if key in groups:
            logger.debug("Rows of %r in %s are not contiguous", key, self.name)
            children = groups[key][1] + children
        groups[key] = (parent, children)

    def _build_children(self, parent: P, rows: List[Row]) -> Tuple[O, ...]:
        entries: List[Tuple[O, List[E]]] = []
        by_key: Dict[str, Tuple[O, List[E]]] = {}

        for row in rows:
            try:
                entry = None
                object_key = None
                if self.object_column:
                    raw_name = row.get_str(self.object_column)
                    if not raw_name:
                        raise RowConversionError(f"Row has no {self.object_column}")
                    object_key = self.policy.key(raw_name)
                    entry = by_key.get(object_key)

                if entry is not None:
                    entry[1].extend(list(self.factory.make_elements(parent, entry[0], row)))
                    continue

                obj = self.factory.make_object(parent, row)
                if obj is None:
                    continue
                entry = (obj, list(self.factory.make_elements(parent, obj, row)))
                entries.append(entry)
                if object_key is not None:
                    by_key[object_key] = entry
            except RowConversionError as e:
                logger.debug("Skipping %s row of %s: %s", self.name, owner_label(parent), e)

        for obj, elements in entries:
            self.factory.attach_elements(obj, elements)
        return tuple(obj for obj, _ in entries)

    def _attach(self, groups: Groups, parent: Optional[P], merge: bool) -> MergeResult:
        """Install finalized children on their parents."""
        targets: List[Tuple[P, Tuple[O, ...]]] = []
        if parent is not None:
            key = self.policy.key(object_name(parent))
            targets.append((parent, groups[key][1] if key in groups else ()))
        else:
            for candidate in self._supported_parents():
                key = self.policy.key(object_name(candidate))
                if key in groups:
                    targets.append((candidate, groups[key][1]))
                elif merge or not self.child_collection(candidate).is_loaded:
                    targets.append((candidate, ()))

        result = MergeResult()
        for target, children in targets:
            collection = self.child_collection(target)
            objects = list(children)
            if self.sort_key is not None:
                objects.sort(key=self.sort_key)

            if merge and collection.is_loaded:
                with collection.lock:
                    merged = self.refresher.merge(collection.objects(), objects)
                    collection.replace(merged.objects, LoadState.LOADED)
                result.extend(merged)
            else:
                stored = collection.replace(objects, LoadState.LOADED)
                result.extend(MergeResult(objects=stored, added=stored))

        if parent is None:
            self._all_loaded = True
        return result

    def _load_error(self, operation: str, parent: Optional[P], cause: Exception) -> CacheLoadError:
        label = owner_label(parent if parent is not None else self.owner)
        logger.error("Failed to %s %s for %s: %s", operation, self.name, label, cause)
        return CacheLoadError(
            f"Failed to {operation} {self.name} for {label}",
            context={"owner": label, "object_type": self.name, "operation": operation},
        )

    def __repr__(self) -> str:
        return f"CompositeCache({self.name!r}, owner={owner_label(self.owner)!r}, loaded={self._all_loaded})"
