"""Tests for identity preserving refresh."""

import pytest

from metacache.cache import LoadContext, NameMode, NamePolicy, RefreshCoordinator
from metacache.models import Capability, CatalogEntity, Column, EntityKind


class TestRefreshCoordinator:
    """Tests for merge by name."""

    def test_kept_added_removed(self):
        old_id, old_name = Column(name="ID", type_name="INTEGER"), Column(name="NAME")
        new_id = Column(name="ID", type_name="BIGINT")
        new_email = Column(name="EMAIL")

        result = RefreshCoordinator().merge([old_id, old_name], [new_email, new_id])

        assert result.objects == [new_email, old_id]
        assert result.objects[1] is old_id
        assert old_id.type_name == "BIGINT"
        assert result.kept == [old_id]
        assert result.added == [new_email]
        assert result.removed == [old_name]
        assert result.changed

    def test_unchanged_set(self):
        old = [Column(name="ID")]
        result = RefreshCoordinator().merge(old, [Column(name="ID")])
        assert result.objects[0] is old[0]
        assert not result.changed

    def test_policy_matches_names(self):
        old = Column(name="ID")
        result = RefreshCoordinator(NamePolicy(mode=NameMode.UPPER)).merge([old], [Column(name="id")])
        assert result.objects == [old]

    def test_duplicate_new_names_ignored(self):
        result = RefreshCoordinator().merge([], [Column(name="ID", ordinal=1), Column(name="ID", ordinal=2)])
        assert [c.ordinal for c in result.objects] == [1]

    def test_custom_copy_hook(self):
        copied = []
        coordinator = RefreshCoordinator(copy_fields=lambda target, source: copied.append((target, source)))
        old, new = Column(name="ID"), Column(name="ID")
        coordinator.merge([old], [new])
        assert copied == [(old, new)]

    def test_objects_without_copy_from_rejected(self):
        class Plain:
            def __init__(self, name):
                self.name = name

        with pytest.raises(TypeError):
            RefreshCoordinator().merge([Plain("A")], [Plain("A")])

    def test_rejected_merge_modifies_nothing(self):
        class Plain:
            def __init__(self, name):
                self.name = name

        old_id = Column(name="ID", type_name="INTEGER")
        with pytest.raises(TypeError):
            RefreshCoordinator().merge(
                [old_id, Plain("B")],
                [Column(name="ID", type_name="BIGINT"), Plain("B")],
            )
        assert old_id.type_name == "INTEGER"

    def test_entity_keeps_identity_fields_and_collections(self):
        old = CatalogEntity(
            name="ORDERS",
            kind=EntityKind.TABLE,
            capabilities=frozenset({Capability.COLUMNS}),
            description="old",
        )
        columns = old.collection("columns")
        new = CatalogEntity(name="ORDERS", kind=EntityKind.VIEW, description="new")

        old.copy_from(new)

        assert old.description == "new"
        assert old.kind is EntityKind.VIEW
        assert old.has(Capability.COLUMNS)
        assert old.collection("columns") is columns


class TestObjectCacheRefresh:
    """Tests for ObjectCache.refresh."""

    def test_refresh_preserves_identity(self, table_cache, table_source, ctx):
        orders, customers, items = table_cache.get_all_objects(ctx)
        table_source.rows = [
            {"name": "ORDERS", "remarks": "all orders"},
            {"name": "ITEMS", "remarks": "order lines"},
            {"name": "RETURNS", "remarks": None},
        ]

        result = table_cache.refresh(ctx)
        refreshed = table_cache.get_all_objects(ctx)

        assert [t.name for t in refreshed] == ["ORDERS", "ITEMS", "RETURNS"]
        assert refreshed[0] is orders
        assert orders.description == "all orders"
        assert refreshed[1] is items
        assert table_cache.get_cached_object("CUSTOMERS") is None
        assert result.removed == [customers]
        assert [t.name for t in result.added] == ["RETURNS"]
        assert table_source.open_count == 2

    def test_refresh_keeps_child_collections(self, table_cache, ctx):
        orders = table_cache.get_all_objects(ctx)[0]
        columns = orders.collection("columns")
        columns.replace([Column(name="ID")])

        table_cache.refresh(ctx)

        assert orders.collection("columns") is columns
        assert columns.is_loaded

    def test_refresh_of_unloaded_cache_loads(self, table_cache, table_source, ctx):
        result = table_cache.refresh(ctx)
        assert table_cache.is_loaded
        assert len(result.added) == 3
        assert table_source.open_count == 1

    def test_cancelled_refresh_keeps_previous_state(self, table_cache, table_source, ctx):
        before = table_cache.get_all_objects(ctx)
        table_source.rows = []

        result = table_cache.refresh(LoadContext(is_cancelled=lambda: True))

        assert not result.complete
        assert table_cache.is_loaded
        assert table_cache.get_all_objects(ctx) == before
