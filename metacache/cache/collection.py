"""Ordered, named collection with a load state.

A collection is created empty together with its owner and is populated by
exactly one cache. All mutations swap state under the collection lock so
readers never observe a partially replaced list.
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Generic, Iterable, Iterator, List, Optional, TypeVar

from .naming import NamePolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LoadState(str, Enum):
    """Population state of a collection."""

    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    LOADED = "loaded"


def object_name(obj: Any) -> str:
    """Default name accessor for cached objects."""
    return obj.name


class CachedCollection(Generic[T]):
    """Ordered sequence of uniquely named objects."""

    def __init__(
        self,
        name: str,
        policy: Optional[NamePolicy] = None,
        name_of: Callable[[Any], str] = object_name,
    ):
        """Initialize an empty, not loaded collection.

        Args:
            name: Collection name (tables, columns, indexes, ...)
            policy: Name comparison policy (rebound by the owning cache)
            name_of: Accessor returning an object's name
        """
        self.name = name
        self.policy = policy or NamePolicy()
        self.name_of = name_of
        self.lock = threading.RLock()
        self._state = LoadState.NOT_LOADED
        self._objects: List[T] = []
        self._index: Dict[str, T] = {}

    def bind_policy(self, policy: NamePolicy) -> None:
        """Switch the name policy and rebuild the lookup index."""
        with self.lock:
            self.policy = policy
            self._index = {}
            for obj in self._objects:
                self._index.setdefault(policy.key(self.name_of(obj)), obj)

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def is_loaded(self) -> bool:
        return self._state is LoadState.LOADED

    def mark(self, state: LoadState) -> None:
        with self.lock:
            self._state = state

    def objects(self) -> List[T]:
        """Snapshot of the cached objects in order."""
        with self.lock:
            return list(self._objects)

    def get(self, name: Optional[str]) -> Optional[T]:
        """Find an object by name regardless of the load state."""
        if name is None:
            return None
        with self.lock:
            return self._index.get(self.policy.key(name))

    def insert(self, obj: T) -> T:
        """Append an object unless its name is already present.

        Returns:
            The object now stored under that name
        """
        key = self.policy.key(self.name_of(obj))
        with self.lock:
            existing = self._index.get(key)
            if existing is not None:
                return existing
            self._objects.append(obj)
            self._index[key] = obj
            return obj

    def replace(self, objects: Iterable[T], state: LoadState = LoadState.LOADED) -> List[T]:
        """Atomically replace the contents.

        Duplicate names are dropped (first occurrence wins).

        Args:
            objects: New objects in order
            state: State to set once replaced

        Returns:
            Accepted objects in order
        """
        accepted: List[T] = []
        index: Dict[str, T] = {}
        for obj in objects:
            key = self.policy.key(self.name_of(obj))
            if key in index:
                logger.warning(
                    "Duplicate name %r in %s collection, keeping first occurrence",
                    self.name_of(obj),
                    self.name,
                )
                continue
            index[key] = obj
            accepted.append(obj)

        with self.lock:
            self._objects = accepted
            self._index = index
            self._state = state
        return list(accepted)

    def reset(self) -> None:
        """Forget all objects and return to NOT_LOADED."""
        with self.lock:
            self._objects = []
            self._index = {}
            self._state = LoadState.NOT_LOADED

    def __len__(self) -> int:
        return len(self._objects)

    def __iter__(self) -> Iterator[T]:
        return iter(self.objects())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __repr__(self) -> str:
        return f"CachedCollection({self.name!r}, state={self._state.value}, size={len(self._objects)})"
