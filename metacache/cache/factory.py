"""Row to object conversion strategies.

Vendor specifics live here instead of in class hierarchies: a vendor supplies
factory objects, the caches stay generic.
"""

import types
from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

from .rows import Row

T = TypeVar("T")
P = TypeVar("P")
O = TypeVar("O")
E = TypeVar("E")


def as_objects(result: Any) -> List[Any]:
    """Normalize a conversion result (None, one object or several) to a list."""
    if result is None:
        return []
    if isinstance(result, (list, tuple, types.GeneratorType)):
        return [obj for obj in result if obj is not None]
    return [result]


class ObjectFactory(ABC, Generic[T]):
    """Converts one row into zero or more objects."""

    @abstractmethod
    def convert(self, owner: Any, row: Row) -> Iterable[T]:
        """Build objects from a row.

        Raises:
            RowConversionError: To skip this row
            FatalSourceError: To abort the whole population
        """
        pass


class FunctionFactory(ObjectFactory[T]):
    """ObjectFactory backed by a plain callable(owner, row)."""

    def __init__(self, func: Callable[[Any, Row], Any]):
        self._func = func

    def convert(self, owner: Any, row: Row) -> List[T]:
        return as_objects(self._func(owner, row))


class CompositeFactory(ABC, Generic[P, O, E]):
    """Conversion strategy for a two level composite cache.

    Rows belong to a parent (table) and are grouped into objects (index,
    constraint); every row may contribute elements (key columns) to its
    object.
    """

    @abstractmethod
    def make_object(self, parent: P, row: Row) -> Optional[O]:
        """Create the object on the first row of its group."""
        pass

    def make_elements(self, parent: P, obj: O, row: Row) -> Iterable[E]:
        """Create the elements a row contributes to its object."""
        return ()

    def attach_elements(self, obj: O, elements: List[E]) -> None:
        """Store the finalized elements on the object."""
        pass

    def make_parent(self, owner: Any, name: str, row: Row) -> Optional[P]:
        """Construct a parent missing from the parent cache.

        Returns None by default: rows of unknown parents are dropped.
        """
        return None
