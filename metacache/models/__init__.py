"""Domain models for cached catalog objects."""

from .objects import (
    Capability,
    CatalogEntity,
    Column,
    Constraint,
    ConstraintColumn,
    ConstraintType,
    DBObject,
    EntityKind,
    Index,
    IndexColumn,
    IndexType,
)

__all__ = [
    "Capability",
    "CatalogEntity",
    "Column",
    "Constraint",
    "ConstraintColumn",
    "ConstraintType",
    "DBObject",
    "EntityKind",
    "Index",
    "IndexColumn",
    "IndexType",
]
