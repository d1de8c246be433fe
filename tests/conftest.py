"""Shared fixtures: an in-memory row source and small factories."""

import threading
from typing import Any, Dict, List, Optional

import pytest

from metacache.cache import (
    CompositeFactory,
    FunctionFactory,
    LoadContext,
    NamePolicy,
    ObjectCache,
    Row,
    RowCursor,
    RowSource,
)
from metacache.exceptions import QueryError, RowConversionError
from metacache.models import (
    Capability,
    CatalogEntity,
    EntityKind,
    Index,
    IndexColumn,
    IndexType,
)


class FakeRowSource(RowSource):
    """Row source serving fixed rows and recording every open()."""

    def __init__(
        self,
        rows: Optional[List[Dict[str, Any]]] = None,
        key_column: Optional[str] = None,
        fail: Optional[Exception] = None,
        fail_after: Optional[int] = None,
    ):
        self.rows = list(rows or [])
        self.key_column = key_column
        self.fail = fail
        self.fail_after = fail_after
        self.opens: List[Optional[str]] = []
        self.closed = 0
        # Set when iteration starts; iteration waits for `release` if given
        self.started = threading.Event()
        self.release: Optional[threading.Event] = None

    @property
    def open_count(self) -> int:
        return len(self.opens)

    def open(self, ctx: LoadContext, owner: Any, key: Optional[str] = None) -> RowCursor:
        self.opens.append(key)
        if self.fail is not None:
            raise self.fail

        rows = self.rows
        if key is not None and self.key_column:
            rows = [r for r in rows if str(r.get(self.key_column, "")).lower() == key.lower()]
        return RowCursor(self._iterate(list(rows)), on_close=self._close)

    def _iterate(self, rows):
        self.started.set()
        if self.release is not None:
            self.release.wait(5)
        for i, values in enumerate(rows):
            if self.fail_after is not None and i >= self.fail_after:
                raise QueryError("connection reset while fetching")
            yield Row(values)

    def _close(self):
        self.closed += 1


def make_table(owner, row):
    name = row.get_str("name")
    if not name:
        raise RowConversionError("row without name")
    return CatalogEntity(
        name=name,
        kind=EntityKind.TABLE,
        capabilities=frozenset({Capability.COLUMNS, Capability.INDEXES}),
        description=row.get_str("remarks"),
    ).with_parent(owner)


class IndexRowFactory(CompositeFactory[CatalogEntity, Index, IndexColumn]):
    """One row per index key column, JDBC getIndexInfo style."""

    def make_object(self, table, row):
        return Index(
            name=row.get_str("index_name"),
            unique=not row.get_bool("non_unique"),
            index_type=IndexType.from_code(row.get_int("type", 3)),
        ).with_parent(table)

    def make_elements(self, table, index, row):
        yield IndexColumn(
            name=row.get_str("column_name"),
            ordinal=row.get_int("ordinal"),
        ).with_parent(index)

    def attach_elements(self, index, elements):
        index.columns = elements


def index_row(table, index, column, ordinal, type_code=3):
    return {
        "table_name": table,
        "index_name": index,
        "column_name": column,
        "ordinal": ordinal,
        "type": type_code,
    }


@pytest.fixture
def catalog():
    return CatalogEntity(
        name="WAREHOUSE",
        kind=EntityKind.CATALOG,
        capabilities=frozenset({Capability.SCHEMAS}),
    )


@pytest.fixture
def schema(catalog):
    return CatalogEntity(
        name="SALES",
        kind=EntityKind.SCHEMA,
        capabilities=frozenset({Capability.TABLES}),
    ).with_parent(catalog)


@pytest.fixture
def ctx():
    return LoadContext()


@pytest.fixture
def table_rows():
    return [
        {"name": "ORDERS", "remarks": "customer orders"},
        {"name": "CUSTOMERS", "remarks": None},
        {"name": "ITEMS", "remarks": "order lines"},
    ]


@pytest.fixture
def table_source(table_rows):
    return FakeRowSource(table_rows, key_column="name")


@pytest.fixture
def upper_policy():
    return NamePolicy(mode="upper")


@pytest.fixture
def table_cache(schema, table_source, upper_policy):
    return ObjectCache(schema, "tables", table_source, FunctionFactory(make_table), policy=upper_policy)
