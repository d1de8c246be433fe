"""Tests for composite (parent, object, element) population."""

import logging
import threading

import pytest
from conftest import FakeRowSource, IndexRowFactory, index_row, make_table

from metacache.cache import CompositeCache, FunctionFactory, LoadContext, LoadState, ObjectCache
from metacache.exceptions import CacheLoadError, QueryError
from metacache.models import Capability, CatalogEntity, EntityKind


@pytest.fixture
def tables(schema, upper_policy):
    source = FakeRowSource([{"name": "T1"}, {"name": "T2"}, {"name": "T3"}], key_column="name")
    return ObjectCache(schema, "tables", source, FunctionFactory(make_table), policy=upper_policy)


@pytest.fixture
def index_source():
    return FakeRowSource(
        [
            index_row("T1", "IDX_A", "C1", 1),
            index_row("T1", "IDX_A", "C2", 2),
            index_row("T1", "IDX_B", "C3", 1),
            index_row("T2", "IDX_C", "C4", 1),
        ],
        key_column="table_name",
    )


def make_indexes(schema, tables, source, policy, factory=None):
    return CompositeCache(
        schema,
        "indexes",
        tables,
        source,
        factory or IndexRowFactory(),
        parent_column="table_name",
        object_column="index_name",
        policy=policy,
    )


@pytest.fixture
def indexes(schema, tables, index_source, upper_policy):
    return make_indexes(schema, tables, index_source, upper_policy)


def index_names(table):
    return [index.name for index in table.children("indexes")]


class TestGrouping:
    """Tests for folding the ordered stream into per-parent children."""

    def test_rows_grouped_by_parent_and_object(self, indexes, tables, index_source, ctx):
        all_indexes = indexes.get_objects(ctx)
        t1 = tables.get_cached_object("T1")
        t2 = tables.get_cached_object("T2")

        assert [i.name for i in all_indexes] == ["IDX_A", "IDX_B", "IDX_C"]
        assert index_names(t1) == ["IDX_A", "IDX_B"]
        assert index_names(t2) == ["IDX_C"]
        assert t1.children("indexes")[0].column_names == ["C1", "C2"]
        assert t1.children("indexes")[1].column_names == ["C3"]
        assert t2.children("indexes")[0].column_names == ["C4"]
        assert index_source.opens == [None]
        assert indexes.is_loaded

    def test_children_bound_to_parent(self, indexes, tables, ctx):
        idx_a = indexes.get_objects(ctx)[0]
        assert idx_a.parent is tables.get_cached_object("T1")
        assert idx_a.columns[0].parent is idx_a
        assert idx_a.qualified_name == "SALES.T1.IDX_A"

    def test_parent_without_rows_gets_empty_loaded_collection(self, indexes, tables, ctx):
        indexes.get_objects(ctx)
        t3 = tables.get_cached_object("T3")

        assert t3.collection("indexes").state is LoadState.LOADED
        assert t3.children("indexes") == []

    def test_second_call_does_not_query(self, indexes, index_source, ctx):
        first = indexes.get_objects(ctx)
        second = indexes.get_objects(ctx)
        assert index_source.open_count == 1
        assert all(a is b for a, b in zip(first, second))

    def test_get_object_by_name(self, indexes, tables, ctx):
        tables.get_all_objects(ctx)
        t1 = tables.get_cached_object("T1")
        assert indexes.get_object(ctx, t1, "idx_b").name == "IDX_B"
        assert indexes.get_object(ctx, t1, "IDX_C") is None

    def test_non_contiguous_rows_merged(self, schema, tables, upper_policy, ctx):
        source = FakeRowSource(
            [
                index_row("T1", "IDX_A", "C1", 1),
                index_row("T2", "IDX_C", "C4", 1),
                index_row("T1", "IDX_B", "C3", 1),
            ]
        )
        make_indexes(schema, tables, source, upper_policy).get_objects(ctx)
        assert index_names(tables.get_cached_object("T1")) == ["IDX_A", "IDX_B"]

    def test_row_without_parent_key_skipped(self, schema, tables, upper_policy, ctx):
        source = FakeRowSource([index_row(None, "IDX_X", "C1", 1), index_row("T1", "IDX_A", "C1", 1)])
        make_indexes(schema, tables, source, upper_policy).get_objects(ctx)
        assert index_names(tables.get_cached_object("T1")) == ["IDX_A"]


class TestSingleParent:
    """Tests for loading the children of one parent."""

    def test_loads_only_that_parent(self, indexes, tables, index_source, ctx):
        tables.get_all_objects(ctx)
        t1 = tables.get_cached_object("T1")
        t2 = tables.get_cached_object("T2")

        assert [i.name for i in indexes.get_objects(ctx, t2)] == ["IDX_C"]
        assert index_source.opens == ["T2"]
        assert t1.collection("indexes").state is LoadState.NOT_LOADED
        assert not indexes.is_loaded

    def test_full_load_keeps_single_parent_children(self, indexes, tables, ctx):
        tables.get_all_objects(ctx)
        t2 = tables.get_cached_object("T2")
        idx_c = indexes.get_objects(ctx, t2)[0]

        indexes.get_objects(ctx)
        assert t2.children("indexes")[0] is idx_c
        assert index_names(tables.get_cached_object("T1")) == ["IDX_A", "IDX_B"]

    def test_single_parent_without_rows(self, indexes, tables, ctx):
        tables.get_all_objects(ctx)
        t3 = tables.get_cached_object("T3")
        assert indexes.get_objects(ctx, t3) == []
        assert t3.collection("indexes").is_loaded


class TestRowErrors:
    """Tests for malformed and dangling rows."""

    def test_unknown_index_type_row_dropped(self, schema, tables, upper_policy, ctx):
        source = FakeRowSource(
            [
                index_row("T1", "IDX_A", "C1", 1),
                index_row("T1", "IDX_A", "C2", 2),
                index_row("T1", "IDX_BAD", "C9", 1, type_code=9),
                index_row("T1", "IDX_B", "C3", 1),
                index_row("T2", "IDX_C", "C4", 1),
            ]
        )
        cache = make_indexes(schema, tables, source, upper_policy)
        cache.get_objects(ctx)

        assert index_names(tables.get_cached_object("T1")) == ["IDX_A", "IDX_B"]
        assert index_names(tables.get_cached_object("T2")) == ["IDX_C"]
        assert cache.is_loaded

    def test_dangling_parent_rows_dropped(self, schema, tables, upper_policy, ctx, caplog):
        source = FakeRowSource([index_row("T1", "IDX_A", "C1", 1), index_row("GONE", "IDX_Z", "C1", 1)])
        cache = make_indexes(schema, tables, source, upper_policy)

        with caplog.at_level(logging.WARNING, logger="metacache.cache.composite"):
            objects = cache.get_objects(ctx)

        assert [i.name for i in objects] == ["IDX_A"]
        assert tables.get_cached_object("GONE") is None
        assert "'GONE'" in caplog.text

    def test_missing_parent_constructed_by_factory(self, schema, tables, upper_policy, ctx):
        class CreatingFactory(IndexRowFactory):
            def make_parent(self, owner, name, row):
                return CatalogEntity(
                    name=name,
                    kind=EntityKind.TABLE,
                    capabilities=frozenset({Capability.INDEXES}),
                ).with_parent(owner)

        source = FakeRowSource([index_row("T1", "IDX_A", "C1", 1), index_row("NEW", "IDX_Z", "C1", 1)])
        cache = make_indexes(schema, tables, source, upper_policy, CreatingFactory())
        cache.get_objects(ctx)

        created = tables.collection.get("NEW")
        assert created is not None
        assert index_names(created) == ["IDX_Z"]


class TestFailures:
    """Tests for fatal errors and cancellation."""

    def test_source_error_leaves_everything_not_loaded(self, indexes, tables, index_source, ctx):
        index_source.fail = QueryError("permission denied")

        with pytest.raises(CacheLoadError) as excinfo:
            indexes.get_objects(ctx)

        assert excinfo.value.object_type == "indexes"
        assert not indexes.is_loaded
        for table in tables.get_cached_objects():
            assert table.collection("indexes").state is LoadState.NOT_LOADED

    def test_failure_mid_stream_attaches_nothing(self, indexes, tables, index_source, ctx):
        index_source.fail_after = 3

        with pytest.raises(CacheLoadError):
            indexes.get_objects(ctx)

        assert tables.get_cached_object("T1").collection("indexes").state is LoadState.NOT_LOADED

    def test_single_parent_error_names_parent(self, indexes, tables, index_source, ctx):
        tables.get_all_objects(ctx)
        index_source.fail = QueryError("permission denied")

        with pytest.raises(CacheLoadError) as excinfo:
            indexes.get_objects(ctx, tables.get_cached_object("T1"))
        assert excinfo.value.owner == "SALES.T1"

    def test_cancellation_returns_partial_and_attaches_nothing(self, indexes, tables, index_source, ctx):
        tables.get_all_objects(ctx)
        calls = {"n": 0}

        def is_cancelled():
            calls["n"] += 1
            return calls["n"] > 3

        partial = indexes.get_objects(LoadContext(is_cancelled=is_cancelled))

        assert [i.name for i in partial] == ["IDX_A"]
        assert not indexes.is_loaded
        assert tables.get_cached_object("T1").collection("indexes").state is LoadState.NOT_LOADED

        indexes.get_objects(ctx)
        assert index_names(tables.get_cached_object("T1")) == ["IDX_A", "IDX_B"]
        assert index_source.open_count == 2


class TestRefreshAndClear:
    """Tests for per-parent merge and invalidation."""

    def test_refresh_preserves_identity(self, indexes, tables, index_source, ctx):
        indexes.get_objects(ctx)
        t1 = tables.get_cached_object("T1")
        idx_a, idx_b = t1.children("indexes")
        assert idx_a.unique

        index_source.rows = [
            dict(index_row("T1", "IDX_A", "C1", 1), non_unique=True),
            index_row("T1", "IDX_D", "C5", 1),
            index_row("T2", "IDX_C", "C4", 1),
        ]
        result = indexes.refresh(ctx)

        refreshed = t1.children("indexes")
        assert [i.name for i in refreshed] == ["IDX_A", "IDX_D"]
        assert refreshed[0] is idx_a
        assert idx_a.column_names == ["C1"]
        assert idx_a.columns[0].parent is idx_a
        assert not idx_a.unique
        assert idx_b in result.removed
        assert [i.name for i in result.added] == ["IDX_D"]
        assert result.complete

    def test_refresh_empties_parent_that_lost_rows(self, indexes, tables, index_source, ctx):
        indexes.get_objects(ctx)
        index_source.rows = [index_row("T1", "IDX_A", "C1", 1)]

        indexes.refresh(ctx)
        assert index_names(tables.get_cached_object("T2")) == []

    def test_refresh_single_parent(self, indexes, tables, index_source, ctx):
        indexes.get_objects(ctx)
        t2 = tables.get_cached_object("T2")
        idx_c = t2.children("indexes")[0]
        index_source.rows.append(index_row("T2", "IDX_E", "C6", 1))

        indexes.refresh(ctx, t2)

        assert index_source.opens[-1] == "T2"
        assert t2.children("indexes")[0] is idx_c
        assert index_names(t2) == ["IDX_C", "IDX_E"]

    def test_cancelled_refresh_keeps_previous_children(self, indexes, tables, index_source, ctx):
        indexes.get_objects(ctx)
        result = indexes.refresh(LoadContext(is_cancelled=lambda: True))

        assert not result.complete
        assert index_names(tables.get_cached_object("T1")) == ["IDX_A", "IDX_B"]

    def test_clear_cache_forces_requery(self, indexes, tables, index_source, ctx):
        indexes.get_objects(ctx)
        indexes.clear_cache()

        assert not indexes.is_loaded
        assert tables.get_cached_object("T1").collection("indexes").state is LoadState.NOT_LOADED
        indexes.get_objects(ctx)
        assert index_source.open_count == 2

    def test_parent_added_by_parent_refresh_gets_loaded(self, indexes, tables, index_source, ctx):
        tables.source.rows = [{"name": "T1"}, {"name": "T2"}]
        assert [i.name for i in indexes.get_objects(ctx)] == ["IDX_A", "IDX_B", "IDX_C"]

        tables.source.rows.append({"name": "T4"})
        index_source.rows.append(index_row("T4", "IDX_D", "C7", 1))
        tables.refresh(ctx)

        assert not indexes.is_loaded
        assert [i.name for i in indexes.get_objects(ctx)] == ["IDX_A", "IDX_B", "IDX_C", "IDX_D"]
        assert tables.get_cached_object("T4").collection("indexes").is_loaded
        assert index_source.open_count == 2
        assert indexes.is_loaded

    def test_parent_cache_clear_forces_reload(self, indexes, tables, index_source, ctx):
        indexes.get_objects(ctx)
        tables.clear_cache()
        tables.get_all_objects(ctx)

        assert not indexes.is_loaded
        assert [i.name for i in indexes.get_objects(ctx)] == ["IDX_A", "IDX_B", "IDX_C"]
        assert index_names(tables.get_cached_object("T1")) == ["IDX_A", "IDX_B"]
        assert index_source.open_count == 2

    def test_parent_cache_cleared_but_not_reloaded(self, indexes, tables, index_source, ctx):
        indexes.get_objects(ctx)
        tables.clear_cache()

        assert not indexes.is_loaded
        assert [i.name for i in indexes.get_objects(ctx)] == ["IDX_A", "IDX_B", "IDX_C"]
        assert tables.is_loaded


class TestConcurrency:
    """Tests for concurrent callers."""

    def test_concurrent_callers_share_one_query(self, indexes, index_source):
        index_source.release = threading.Event()
        results = []

        def load():
            results.append(indexes.get_objects(LoadContext()))

        threads = [threading.Thread(target=load) for _ in range(2)]
        for thread in threads:
            thread.start()
        assert index_source.started.wait(5)
        index_source.release.set()
        for thread in threads:
            thread.join(5)

        assert index_source.open_count == 1
        assert len(results) == 2
        assert [i.name for i in results[0]] == ["IDX_A", "IDX_B", "IDX_C"]
        assert all(a is b for a, b in zip(results[0], results[1]))
