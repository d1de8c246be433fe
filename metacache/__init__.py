"""metacache - lazy hierarchical cache of database metadata."""

__version__ = "0.1.0"
