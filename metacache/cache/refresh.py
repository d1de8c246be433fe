"""Identity preserving merge applied when a loaded collection is refreshed."""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .collection import object_name
from .naming import NamePolicy

logger = logging.getLogger(__name__)


class MergeResult(BaseModel):
    """Outcome of a refresh merge."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    objects: List[Any] = Field(default_factory=list, description="Merged objects in new order")
    kept: List[Any] = Field(default_factory=list, description="Old instances updated in place")
    added: List[Any] = Field(default_factory=list, description="Objects only in the new fetch")
    removed: List[Any] = Field(default_factory=list, description="Objects only in the old set")
    complete: bool = Field(default=True, description="False if the refresh was cancelled")

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)

    def extend(self, other: "MergeResult") -> None:
        """Accumulate another result (composite refresh over many parents)."""
        self.objects.extend(other.objects)
        self.kept.extend(other.kept)
        self.added.extend(other.added)
        self.removed.extend(other.removed)
        self.complete = self.complete and other.complete


def require_copy_from(target: Any) -> None:
    """Check that the default copy hook can update a target.

    Raises:
        TypeError: If the target type has no copy_from method
    """
    if getattr(target, "copy_from", None) is None:
        raise TypeError(
            f"{type(target).__name__} has no copy_from(); "
            "pass copy_fields to RefreshCoordinator"
        )


def copy_object_fields(target: Any, source: Any) -> None:
    """Default field copy hook: delegates to target.copy_from(source)."""
    require_copy_from(target)
    target.copy_from(source)


class RefreshCoordinator:
    """Merges a fresh fetch into the previously loaded objects by name."""

    def __init__(
        self,
        policy: Optional[NamePolicy] = None,
        copy_fields: Callable[[Any, Any], None] = copy_object_fields,
        name_of: Callable[[Any], str] = object_name,
    ):
        """Initialize refresh coordinator.

        Args:
            policy: Name policy used to match old and new objects
            copy_fields: Hook copying mutable fields (target, source); it runs
                only after the whole merge was planned and must not fail
            name_of: Accessor returning an object's name
        """
        self.policy = policy or NamePolicy()
        self.copy_fields = copy_fields
        self.name_of = name_of

    def merge(self, old: Sequence[Any], new: Sequence[Any]) -> MergeResult:
        """Merge new objects into old ones.

        Args:
            old: Previously loaded objects
            new: Objects from the fresh fetch, in fetch order

        Returns:
            MergeResult whose objects follow the new order

        Raises:
            TypeError: If a kept object cannot be updated by the default
                hook; no object is modified in that case
        """
        previous: Dict[str, Any] = {}
        for obj in old:
            previous.setdefault(self.policy.key(self.name_of(obj)), obj)

        merged: List[Any] = []
        kept: List[Any] = []
        updates: List[Tuple[Any, Any]] = []
        added: List[Any] = []
        seen = set()

        for obj in new:
            key = self.policy.key(self.name_of(obj))
            if key in seen:
                logger.warning("Duplicate name %r in refreshed set, ignored", self.name_of(obj))
                continue
            seen.add(key)

            existing = previous.get(key)
            if existing is None:
                added.append(obj)
                merged.append(obj)
                continue
            if existing is not obj:
                updates.append((existing, obj))
            kept.append(existing)
            merged.append(existing)

        removed = [obj for key, obj in previous.items() if key not in seen]

        if self.copy_fields is copy_object_fields:
            for existing, _ in updates:
                require_copy_from(existing)
        for existing, obj in updates:
            self.copy_fields(existing, obj)

        return MergeResult(objects=merged, kept=kept, added=added, removed=removed)
