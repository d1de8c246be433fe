"""DuckDB catalog wired from the generic cache engines.

Structure::

    catalog (root entity)
      schemas     LookupCache     duckdb schemata
        tables    LookupCache     duckdb_tables() + duckdb_views()
        columns   CompositeCache  information_schema.columns
        constraints CompositeCache duckdb_constraints()
        indexes   CompositeCache  duckdb_indexes()

Per-schema caches are created together with the schema entity and live in
the schema's registry.
"""

import logging
import re
from typing import Any, Iterable, List, Optional, Tuple

from ..cache import (
    CompositeCache,
    CompositeFactory,
    FunctionFactory,
    LoadContext,
    LookupCache,
    MergeResult,
    Row,
)
from ..config import Config
from ..exceptions import RowConversionError
from ..models import (
    Capability,
    CatalogEntity,
    Column,
    Constraint,
    ConstraintColumn,
    ConstraintType,
    EntityKind,
    Index,
    IndexColumn,
    IndexType,
)
from ..sources import DuckDBRowSource

logger = logging.getLogger(__name__)

SYSTEM_SCHEMAS = frozenset({"information_schema", "pg_catalog"})
DEFAULT_SCHEMA = "main"

CHILD_CACHES = ("columns", "constraints", "indexes")

SCHEMAS_SQL = """
SELECT schema_name, catalog_name
FROM information_schema.schemata
WHERE catalog_name = current_database()
{filter}
ORDER BY schema_name
"""

TABLES_SQL = """
SELECT table_name, table_type, sql
FROM (
    SELECT table_name, schema_name, database_name, sql,
           CASE WHEN internal THEN 'SYSTEM TABLE' ELSE 'BASE TABLE' END AS table_type
    FROM duckdb_tables()
    UNION ALL
    SELECT view_name, schema_name, database_name, sql,
           CASE WHEN internal THEN 'SYSTEM VIEW' ELSE 'VIEW' END
    FROM duckdb_views()
) AS t
WHERE database_name = current_database() AND schema_name = ?
{filter}
ORDER BY table_name
"""

COLUMNS_SQL = """
SELECT table_name, column_name, ordinal_position, data_type, is_nullable,
       column_default, character_maximum_length, numeric_precision, numeric_scale
FROM information_schema.columns
WHERE table_catalog = current_database() AND table_schema = ?
{filter}
ORDER BY table_name, ordinal_position
"""

CONSTRAINTS_SQL = """
SELECT table_name,
       table_name || '_' || lower(replace(constraint_type, ' ', '_'))
           || '_' || CAST(constraint_index AS VARCHAR) AS constraint_name,
       constraint_type, constraint_text, constraint_column_names
FROM duckdb_constraints()
WHERE database_name = current_database() AND schema_name = ?
{filter}
ORDER BY table_name, constraint_index
"""

INDEXES_SQL = """
SELECT table_name, index_name, is_unique, is_primary, expressions, sql
FROM duckdb_indexes()
WHERE database_name = current_database() AND schema_name = ?
{filter}
ORDER BY table_name, index_name
"""


def _statements(template: str, column: str) -> Tuple[str, str]:
    """Full statement plus the variant narrowed by one trailing name."""
    narrowed = f"AND lower({column}) = lower(?)"
    return template.format(filter=""), template.format(filter=narrowed)


def _schema_params(schema: CatalogEntity) -> Tuple[str]:
    return (schema.name,)


def _parse_name_list(value: Any) -> List[str]:
    """Parse a DuckDB list value or its "[a, b]" text rendering."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        text = str(value).strip()
        if text.startswith("[") and text.endswith("]"):
            text = text[1:-1]
        items = text.split(",")
    return [item.strip().strip("'\"") for item in items if item.strip()]


class ColumnFactory(CompositeFactory[CatalogEntity, Column, None]):
    """One information_schema.columns row per column."""

    def make_object(self, table: CatalogEntity, row: Row) -> Column:
        name = row.get_str("column_name")
        if not name:
            raise RowConversionError("Column row without column_name")
        return Column(
            name=name,
            type_name=row.get_str("data_type") or "UNKNOWN",
            ordinal=row.get_int("ordinal_position"),
            nullable=row.get_bool("is_nullable"),
            default=row.get_str("column_default"),
            max_length=row.get_optional_int("character_maximum_length"),
            precision=row.get_optional_int("numeric_precision"),
            scale=row.get_optional_int("numeric_scale"),
        ).with_parent(table)


class ConstraintFactory(CompositeFactory[CatalogEntity, Constraint, ConstraintColumn]):
    """Key constraints; NOT NULL rows are skipped as unsupported types."""

    def make_object(self, table: CatalogEntity, row: Row) -> Constraint:
        return Constraint(
            name=row.get_str("constraint_name"),
            constraint_type=ConstraintType.parse(row.get_str("constraint_type")),
            description=row.get_str("constraint_text"),
        ).with_parent(table)

    def make_elements(
        self, table: CatalogEntity, constraint: Constraint, row: Row
    ) -> Iterable[ConstraintColumn]:
        columns = table.find_collection(Capability.COLUMNS)
        elements = []
        for ordinal, column_name in enumerate(_parse_name_list(row.get("constraint_column_names")), 1):
            if columns is not None and columns.is_loaded and columns.get(column_name) is None:
                raise RowConversionError(
                    f"Column {column_name!r} of {constraint.name} not found in {table.qualified_name}",
                    context={"column": column_name},
                )
            elements.append(ConstraintColumn(name=column_name, ordinal=ordinal).with_parent(constraint))
        return elements

    def attach_elements(self, constraint: Constraint, elements: List[ConstraintColumn]) -> None:
        constraint.columns = elements


class IndexFactory(CompositeFactory[CatalogEntity, Index, IndexColumn]):
    """User created indexes; key columns come from the expression list."""

    _COLUMN_LIST = re.compile(r"\((.*)\)", re.DOTALL)

    def make_object(self, table: CatalogEntity, row: Row) -> Index:
        name = row.get_str("index_name")
        if not name:
            raise RowConversionError("Index row without index_name")
        return Index(
            name=name,
            unique=row.get_bool("is_unique"),
            index_type=IndexType.OTHER,
            qualifier="primary" if row.get_bool("is_primary") else None,
            ddl=row.get_str("sql"),
        ).with_parent(table)

    def make_elements(self, table: CatalogEntity, index: Index, row: Row) -> Iterable[IndexColumn]:
        names = _parse_name_list(row.get("expressions"))
        if not names and index.ddl:
            match = self._COLUMN_LIST.search(index.ddl)
            if match:
                names = _parse_name_list(match.group(1))
        return [
            IndexColumn(name=column_name, ordinal=ordinal).with_parent(index)
            for ordinal, column_name in enumerate(names, 1)
        ]

    def attach_elements(self, index: Index, elements: List[IndexColumn]) -> None:
        index.columns = elements


class DuckDBCatalog:
    """Lazily cached structure of one DuckDB database."""

    def __init__(self, name: str = "memory", config: Optional[Config] = None):
        """Initialize catalog.

        Args:
            name: Catalog label (database name)
            config: Configuration; defaults apply when None
        """
        self.config = config or Config()
        self.policy = self.config.naming.to_policy()
        self.root = CatalogEntity(
            name=name,
            kind=EntityKind.CATALOG,
            capabilities=frozenset({Capability.SCHEMAS}),
        )

        full_sql, key_sql = _statements(SCHEMAS_SQL, "schema_name")
        source = DuckDBRowSource(full_sql, key_sql, name="schemas")
        self.schemas: LookupCache[CatalogEntity] = self.root.registry.register(
            LookupCache(
                self.root,
                "schemas",
                source,
                FunctionFactory(self._make_schema),
                lookup_source=source,
                policy=self.policy,
                sort_key=self._sort_key,
            )
        )

    @property
    def _sort_key(self):
        if not self.config.catalog.sort_objects:
            return None
        return lambda obj: self.policy.key(obj.name)

    def context(self, connection: Any, is_cancelled=None, progress_callback=None) -> LoadContext:
        """Build a load context for a DuckDB connection."""
        return LoadContext(
            session=connection,
            is_cancelled=is_cancelled,
            fetch_size=self.config.catalog.fetch_size,
            progress_callback=progress_callback,
        )

    # === Object factories ===

    def _make_schema(self, catalog: CatalogEntity, row: Row) -> Optional[CatalogEntity]:
        name = row.get_str("schema_name")
        if not name:
            raise RowConversionError("Schema row without schema_name")
        if name.lower() in SYSTEM_SCHEMAS and not self.config.catalog.show_system_objects:
            return None

        schema = CatalogEntity(
            name=name,
            kind=EntityKind.SCHEMA,
            capabilities=frozenset({Capability.TABLES}),
        ).with_parent(catalog)
        self._register_schema_caches(schema)
        return schema

    def _make_table(self, schema: CatalogEntity, row: Row) -> Optional[CatalogEntity]:
        name = row.get_str("table_name")
        if not name:
            raise RowConversionError("Table row without table_name")

        table_type = (row.get_str("table_type") or "").upper()
        if "SYSTEM" in table_type:
            if not self.config.catalog.show_system_objects:
                return None
            kind = EntityKind.SYSTEM_TABLE
            capabilities = {Capability.COLUMNS, Capability.DDL}
        elif "VIEW" in table_type:
            kind = EntityKind.VIEW
            capabilities = {Capability.COLUMNS, Capability.DDL}
        else:
            kind = EntityKind.TABLE
            capabilities = {
                Capability.COLUMNS,
                Capability.CONSTRAINTS,
                Capability.INDEXES,
                Capability.DDL,
            }

        return CatalogEntity(
            name=name,
            kind=kind,
            capabilities=frozenset(capabilities),
            properties={"table_type": table_type},
            ddl=row.get_str("sql"),
        ).with_parent(schema)

    def _register_schema_caches(self, schema: CatalogEntity) -> None:
        full_sql, key_sql = _statements(TABLES_SQL, "table_name")
        tables_source = DuckDBRowSource(full_sql, key_sql, params=_schema_params, name="tables")
        tables = schema.registry.register(
            LookupCache(
                schema,
                "tables",
                tables_source,
                FunctionFactory(self._make_table),
                lookup_source=tables_source,
                policy=self.policy,
                sort_key=self._sort_key,
            )
        )

        children = (
            ("columns", COLUMNS_SQL, ColumnFactory(), None),
            ("constraints", CONSTRAINTS_SQL, ConstraintFactory(), "constraint_name"),
            ("indexes", INDEXES_SQL, IndexFactory(), "index_name"),
        )
        for cache_name, template, factory, object_column in children:
            full_sql, key_sql = _statements(template, "table_name")
            schema.registry.register(
                CompositeCache(
                    schema,
                    cache_name,
                    tables,
                    DuckDBRowSource(full_sql, key_sql, params=_schema_params, name=cache_name),
                    factory,
                    parent_column="table_name",
                    object_column=object_column,
                    policy=self.policy,
                )
            )

    # === Navigation ===

    def get_schemas(self, ctx: LoadContext) -> List[CatalogEntity]:
        return self.schemas.get_all_objects(ctx)

    def get_schema(self, ctx: LoadContext, name: str) -> Optional[CatalogEntity]:
        return self.schemas.get_object(ctx, name)

    def get_tables(self, ctx: LoadContext, schema: CatalogEntity) -> List[CatalogEntity]:
        return schema.registry.get("tables").get_all_objects(ctx)

    def get_table(self, ctx: LoadContext, schema: CatalogEntity, name: str) -> Optional[CatalogEntity]:
        return schema.registry.get("tables").get_object(ctx, name)

    def find_table(self, ctx: LoadContext, path: str) -> Optional[CatalogEntity]:
        """Resolve "schema.table" (or "table" in the default schema) by name.

        Only the schema and the table themselves are queried, not their
        siblings.
        """
        schema_name, _, table_name = path.rpartition(".")
        schema = self.get_schema(ctx, schema_name or DEFAULT_SCHEMA)
        if schema is None:
            return None
        return self.get_table(ctx, schema, table_name)

    def get_columns(self, ctx: LoadContext, table: CatalogEntity) -> List[Column]:
        return self._children(ctx, table, "columns")

    def get_constraints(self, ctx: LoadContext, table: CatalogEntity) -> List[Constraint]:
        return self._children(ctx, table, "constraints")

    def get_indexes(self, ctx: LoadContext, table: CatalogEntity) -> List[Index]:
        return self._children(ctx, table, "indexes")

    def _children(self, ctx: LoadContext, table: CatalogEntity, name: str) -> List[Any]:
        if table.find_collection(name) is None:
            return []
        return table.parent.registry.get(name).get_objects(ctx, table)

    def cache_structure(self, ctx: LoadContext, schema: CatalogEntity) -> None:
        """Load tables and every child collection of a schema in bulk."""
        self.get_tables(ctx, schema)
        for name in CHILD_CACHES:
            if ctx.cancelled():
                return
            schema.registry.get(name).get_objects(ctx)

    # === Invalidation ===

    def refresh(self, ctx: LoadContext) -> MergeResult:
        """Re-read everything loaded so far, keeping object identity."""
        result = MergeResult()
        if self.schemas.is_loaded:
            result.extend(self.schemas.refresh(ctx))
        for schema in self.schemas.get_cached_objects():
            result.extend(self.refresh_schema(ctx, schema))
        return result

    def refresh_schema(self, ctx: LoadContext, schema: CatalogEntity) -> MergeResult:
        result = MergeResult()
        tables = schema.registry.get("tables")
        if tables.is_loaded:
            result.extend(tables.refresh(ctx))

        for name in CHILD_CACHES:
            cache = schema.registry.get(name)
            if cache.is_loaded:
                result.extend(cache.refresh(ctx))
                continue
            for table in tables.get_cached_objects():
                if cache.supports(table) and cache.child_collection(table).is_loaded:
                    result.extend(cache.refresh(ctx, table))
        return result

    def clear(self) -> None:
        """Drop every cached object; the next access queries again."""
        for schema in self.schemas.get_cached_objects():
            schema.registry.clear_all()
        self.root.registry.clear_all()
        logger.info("Cleared catalog cache of %s", self.root.name)
