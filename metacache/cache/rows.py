"""Row source abstraction.

A RowSource executes one catalog query (or a combination of several) and
yields rows with named, typed field access. Sources are external
collaborators: the cache never keeps the session they use between calls.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Optional

from ..exceptions import RowConversionError

_TRUE_STRINGS = frozenset({"y", "yes", "true", "t", "1"})


class LoadContext:
    """Per-call context for a population attempt.

    Carries the remote session and a plain cancellation predicate polled once
    per row.
    """

    def __init__(
        self,
        session: Any = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
        fetch_size: int = 500,
        progress_callback: Optional[Callable[[str, int], None]] = None,
    ):
        """Initialize load context.

        Args:
            session: Connection or session handed to row sources
            is_cancelled: Predicate returning True once the caller gave up
            fetch_size: Rows fetched per round trip by batching sources
            progress_callback: Optional callback(object_type, rows_read)
        """
        self.session = session
        self.is_cancelled = is_cancelled or (lambda: False)
        self.fetch_size = fetch_size
        self.progress_callback = progress_callback

    def cancelled(self) -> bool:
        return bool(self.is_cancelled())

    def report(self, object_type: str, rows_read: int) -> None:
        if self.progress_callback:
            self.progress_callback(object_type, rows_read)


class Row(Mapping[str, Any]):
    """One result row with case-insensitive field names."""

    def __init__(self, values: Mapping[str, Any]):
        self._values: Dict[str, Any] = {str(k).upper(): v for k, v in values.items()}

    def __getitem__(self, name: str) -> Any:
        return self._values[name.upper()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Row({self._values!r})"

    def get_str(self, name: str) -> Optional[str]:
        value = self.get(name.upper())
        if value is None:
            return None
        return str(value)

    def get_str_trimmed(self, name: str) -> Optional[str]:
        """Get a string with blank padding removed (CHAR catalog columns)."""
        value = self.get_str(name)
        return value.strip() if value is not None else None

    def get_int(self, name: str, default: int = 0) -> int:
        """Get an integer field.

        Raises:
            RowConversionError: If the value is not numeric
        """
        value = self.get(name.upper())
        if value is None:
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            raise RowConversionError(
                f"Field {name} is not an integer: {value!r}", context={"field": name}
            ) from None

    def get_optional_int(self, name: str) -> Optional[int]:
        if self.get(name.upper()) is None:
            return None
        return self.get_int(name)

    def get_bool(self, name: str) -> bool:
        value = self.get(name.upper())
        if value is None:
            return False
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_STRINGS
        return bool(value)


class RowCursor:
    """Closable iterator over rows returned by RowSource.open()."""

    def __init__(
        self,
        rows: Iterable[Row],
        on_close: Optional[Callable[[], None]] = None,
    ):
        self._rows = rows
        self._on_close = on_close
        self._closed = False

    def __iter__(self) -> Iterator[Row]:
        return iter(self._rows)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            if self._on_close:
                self._on_close()

    def __enter__(self) -> "RowCursor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class RowSource(ABC):
    """Abstract base class for row sources."""

    @property
    def name(self) -> str:
        """Get a label for logging."""
        return type(self).__name__

    @abstractmethod
    def open(self, ctx: LoadContext, owner: Any, key: Optional[str] = None) -> RowCursor:
        """Run the query for an owner.

        Args:
            ctx: Load context carrying the session
            owner: Container whose children are being loaded
            key: Optional name narrowing the query to one object (lookup)
                or one parent (composite single-parent mode)

        Returns:
            Cursor over the rows

        Raises:
            SourceConnectionError: If the session is unusable
            QueryError: If the statement fails
        """
        pass
