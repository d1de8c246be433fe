"""Row sources for concrete database engines."""

from .duckdb_source import DuckDBRowSource

__all__ = ["DuckDBRowSource"]
