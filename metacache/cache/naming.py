"""Name comparison policy for cached collections.

Applied uniformly to lookup, uniqueness checks and merge-by-name.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class NameMode(str, Enum):
    """How names are compared inside a collection."""

    EXACT = "exact"
    UPPER = "upper"
    LOWER = "lower"


class NamePolicy(BaseModel):
    """Name comparison configuration.

    Catalogs that fold unquoted identifiers (Oracle, DB2 fold to upper case,
    PostgreSQL to lower case) use the matching mode so that ``tbl`` and ``TBL``
    resolve to the same object. ``trim`` strips blank padding that some
    drivers leave on CHAR catalog columns.
    """

    model_config = ConfigDict(frozen=True)

    mode: NameMode = Field(default=NameMode.EXACT)
    trim: bool = Field(default=False)

    def key(self, name: Optional[str]) -> str:
        """Build the comparison key for a name.

        Args:
            name: Object name as returned by the remote system or a caller

        Returns:
            Normalized key (empty string for None)
        """
        if name is None:
            return ""
        if self.trim:
            name = name.strip()
        if self.mode is NameMode.UPPER:
            return name.upper()
        if self.mode is NameMode.LOWER:
            return name.lower()
        return name

    def same(self, first: Optional[str], second: Optional[str]) -> bool:
        """Check whether two names refer to the same object."""
        return self.key(first) == self.key(second)


EXACT = NamePolicy()
