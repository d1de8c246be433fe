"""Lazy hierarchical metadata cache engine.

Provides:
- ObjectCache: single-flight, cancellable population of one owner's objects
- LookupCache: narrow single-name fetch path on top of ObjectCache
- CompositeCache: one ordered query joined into per-parent child collections
- RefreshCoordinator: identity preserving merge on refresh
"""

from .collection import CachedCollection, LoadState
from .composite import CompositeCache
from .factory import CompositeFactory, FunctionFactory, ObjectFactory
from .lookup import LookupCache
from .naming import NameMode, NamePolicy
from .object_cache import CacheEvent, ObjectCache
from .refresh import MergeResult, RefreshCoordinator
from .registry import CacheRegistry
from .rows import LoadContext, Row, RowCursor, RowSource

__all__ = [
    "CacheEvent",
    "CacheRegistry",
    "CachedCollection",
    "CompositeCache",
    "CompositeFactory",
    "FunctionFactory",
    "LoadContext",
    "LoadState",
    "LookupCache",
    "MergeResult",
    "NameMode",
    "NamePolicy",
    "ObjectCache",
    "ObjectFactory",
    "RefreshCoordinator",
    "Row",
    "RowCursor",
    "RowSource",
]
