"""
Exception hierarchy for metacache.

All exceptions inherit from MetaCacheError, which carries optional structured
context (owner, object type, attempted operation) for logging and for UI
layers that want to render a contextual message without inspecting internals.
"""

from __future__ import annotations

from typing import Any


class MetaCacheError(Exception):
    """Base exception for all metacache errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(MetaCacheError):
    """Raised when a configuration file is invalid."""

    pass


class FatalSourceError(MetaCacheError):
    """Raised when a row source fails in a way that aborts the population.

    Factories may raise it directly when a row reveals the whole result set
    is unusable.
    """

    pass


class SourceConnectionError(FatalSourceError):
    """Raised when the remote connection or session is unusable."""

    pass


class QueryError(FatalSourceError):
    """Raised when the remote system rejects or fails a catalog statement.

    Context should include:
        - query: The statement text (possibly truncated)
    """

    pass


class RowConversionError(MetaCacheError):
    """Raised by a factory for a single row that cannot be converted.

    Recoverable: the row is logged and skipped, population continues.

    Examples:
        - Unknown remote type code
        - Reference to a column or parent that does not exist
    """

    pass


class CacheLoadError(MetaCacheError):
    """Raised to callers when a population attempt failed.

    Wraps the FatalSourceError that aborted it (available as ``__cause__``).

    Context always includes:
        - owner: Name of the owning container
        - object_type: Name of the cached collection (tables, indexes, ...)
        - operation: What was attempted (load, lookup, refresh)
    """

    @property
    def owner(self) -> Any:
        return self.context.get("owner")

    @property
    def object_type(self) -> Any:
        return self.context.get("object_type")

    @property
    def operation(self) -> Any:
        return self.context.get("operation")
