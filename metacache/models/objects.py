"""Domain models for cached catalog objects.

One entity type (CatalogEntity) parameterized by a capability set covers
catalogs, schemas, tables and views. Leaf objects (columns, indexes,
constraints) are small pydantic models owned by an entity.
"""

from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from ..cache.collection import CachedCollection
from ..cache.registry import CacheRegistry
from ..exceptions import RowConversionError


class Capability(str, Enum):
    """What an entity can own. Every capability but DDL is a child collection."""

    SCHEMAS = "schemas"
    TABLES = "tables"
    COLUMNS = "columns"
    INDEXES = "indexes"
    CONSTRAINTS = "constraints"
    DDL = "ddl"


COLLECTION_CAPABILITIES = frozenset(c for c in Capability if c is not Capability.DDL)


class EntityKind(str, Enum):
    """Kind of container entity."""

    CATALOG = "catalog"
    SCHEMA = "schema"
    TABLE = "table"
    VIEW = "view"
    SYSTEM_TABLE = "system table"


class DBObject(BaseModel):
    """Base for every cached object.

    Objects are mutable so that a refresh can copy new field values onto the
    instance other components already hold.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # Fields that define identity and are never overwritten by a refresh
    IDENTITY_FIELDS: ClassVar[FrozenSet[str]] = frozenset({"name"})

    name: str
    description: Optional[str] = Field(default=None, description="Remarks or comment")

    _parent: Any = PrivateAttr(default=None)

    @property
    def parent(self) -> Any:
        return self._parent

    def with_parent(self, parent: Any) -> "DBObject":
        """Bind the owning object and return self."""
        self._parent = parent
        return self

    @property
    def qualified_name(self) -> str:
        """Dotted name below the root container (schema.table.column)."""
        names = [self.name]
        parent = self._parent
        while parent is not None and getattr(parent, "parent", None) is not None:
            names.append(parent.name)
            parent = parent.parent
        return ".".join(reversed(names))

    def copy_from(self, other: "DBObject") -> None:
        """Copy mutable fields from a freshly fetched instance."""
        for field_name in type(self).model_fields:
            if field_name in self.IDENTITY_FIELDS:
                continue
            setattr(self, field_name, getattr(other, field_name))


class CatalogEntity(DBObject):
    """Container entity: catalog, schema, table or view."""

    IDENTITY_FIELDS: ClassVar[FrozenSet[str]] = frozenset({"name", "capabilities"})

    kind: EntityKind
    capabilities: FrozenSet[Capability] = Field(default_factory=frozenset)
    properties: Dict[str, Any] = Field(default_factory=dict)
    ddl: Optional[str] = Field(default=None, description="Source DDL if known")

    _collections: Dict[str, CachedCollection] = PrivateAttr(default_factory=dict)
    _registry: Optional[CacheRegistry] = PrivateAttr(default=None)

    def model_post_init(self, __context: Any) -> None:
        for capability in sorted(self.capabilities, key=lambda c: c.value):
            if capability in COLLECTION_CAPABILITIES:
                self._collections[capability.value] = CachedCollection(capability.value)

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def find_collection(self, name: str) -> Optional[CachedCollection]:
        """Get a child collection by name, None if the entity lacks it."""
        return self._collections.get(str(getattr(name, "value", name)))

    def collection(self, name: str) -> CachedCollection:
        """Get a child collection by name.

        Raises:
            KeyError: If the entity does not have that capability
        """
        found = self.find_collection(name)
        if found is None:
            raise KeyError(f"{self.kind.value} {self.name!r} has no {name} collection")
        return found

    @property
    def registry(self) -> CacheRegistry:
        """Caches scoped to this entity (created on first use)."""
        if self._registry is None:
            self._registry = CacheRegistry(self.qualified_name)
        return self._registry

    def children(self, name: str) -> List[Any]:
        """Objects currently cached in a child collection."""
        return self.collection(name).objects()


class Column(DBObject):
    """Table column."""

    type_name: str = Field(default="UNKNOWN")
    ordinal: int = Field(default=0, ge=0)
    nullable: bool = Field(default=True)
    default: Optional[str] = Field(default=None)
    max_length: Optional[int] = Field(default=None)
    precision: Optional[int] = Field(default=None)
    scale: Optional[int] = Field(default=None)


class IndexType(str, Enum):
    """Index type as reported by JDBC style catalog queries."""

    STATISTIC = "statistic"
    CLUSTERED = "clustered"
    HASHED = "hashed"
    OTHER = "other"

    @classmethod
    def from_code(cls, code: int) -> "IndexType":
        """Map a numeric catalog type code.

        Raises:
            RowConversionError: For codes outside 0..3
        """
        try:
            return _INDEX_TYPE_CODES[code]
        except KeyError:
            raise RowConversionError(
                f"Unknown index type code {code}", context={"code": code}
            ) from None


_INDEX_TYPE_CODES = {
    0: IndexType.STATISTIC,
    1: IndexType.CLUSTERED,
    2: IndexType.HASHED,
    3: IndexType.OTHER,
}


class IndexColumn(DBObject):
    """Column reference inside an index key."""

    ordinal: int = Field(default=0, ge=0)
    ascending: bool = Field(default=True)


class Index(DBObject):
    """Table index with its ordered key columns."""

    unique: bool = Field(default=False)
    index_type: IndexType = Field(default=IndexType.OTHER)
    qualifier: Optional[str] = Field(default=None)
    ddl: Optional[str] = Field(default=None)
    columns: List[IndexColumn] = Field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def copy_from(self, other: "Index") -> None:
        super().copy_from(other)
        for column in self.columns:
            column.with_parent(self)


class ConstraintType(str, Enum):
    """Table constraint type."""

    PRIMARY_KEY = "PRIMARY KEY"
    UNIQUE = "UNIQUE"
    FOREIGN_KEY = "FOREIGN KEY"
    CHECK = "CHECK"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ConstraintType":
        """Parse a catalog constraint type string.

        Raises:
            RowConversionError: For unknown types (NOT NULL, vendor specific)
        """
        normalized = (value or "").strip().upper()
        for member in cls:
            if member.value == normalized:
                return member
        raise RowConversionError(
            f"Unsupported constraint type {value!r}", context={"type": value}
        )


class ConstraintColumn(DBObject):
    """Column participating in a key constraint."""

    ordinal: int = Field(default=0, ge=0)


class Constraint(DBObject):
    """Table constraint with its ordered columns."""

    constraint_type: ConstraintType
    columns: List[ConstraintColumn] = Field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def copy_from(self, other: "Constraint") -> None:
        super().copy_from(other)
        for column in self.columns:
            column.with_parent(self)
