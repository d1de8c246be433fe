"""Catalog adapters built on the cache engines."""

from .duckdb_catalog import DuckDBCatalog

__all__ = ["DuckDBCatalog"]
