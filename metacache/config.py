"""Configuration management for metacache."""

import logging
import os
from typing import Optional

import toml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .cache.naming import NameMode, NamePolicy
from .exceptions import ConfigurationError


class NamingConfig(BaseModel):
    """Configuration for name comparison."""

    mode: NameMode = Field(
        default=NameMode.LOWER,
        description="Name comparison mode: exact, upper or lower. "
        "DuckDB identifiers are case-insensitive, hence lower.",
    )
    trim: bool = Field(
        default=False,
        description="Strip blank padding from names before comparing",
    )

    def to_policy(self) -> NamePolicy:
        """Build the name policy handed to caches."""
        return NamePolicy(mode=self.mode, trim=self.trim)


class CatalogConfig(BaseModel):
    """Configuration for catalog loading."""

    show_system_objects: bool = Field(
        default=False,
        description="Include system schemas and system tables",
    )
    fetch_size: int = Field(
        default=500,
        ge=10,
        le=10000,
        description="Rows fetched per round trip",
    )
    sort_objects: bool = Field(
        default=False,
        description="Sort cached objects by name instead of keeping query order",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="WARNING", pattern="^(DEBUG|INFO|WARNING|ERROR)$")

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v):
        """Accept lower case level names."""
        return v.upper() if isinstance(v, str) else v

    @property
    def level_number(self) -> int:
        return logging.getLevelName(self.level)


class Config(BaseModel):
    """Main configuration class."""

    naming: NamingConfig = Field(default_factory=NamingConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigManager:
    """Manages configuration loading and access."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file. If None, searches standard locations.
        """
        self.config_path = config_path or self._find_config_file()
        self._config: Optional[Config] = None

    def _find_config_file(self) -> str:
        """Find configuration file in standard locations."""
        search_paths = [
            os.path.expanduser("~/.config/metacache/config.toml"),
            "metacache.toml",
        ]

        for path in search_paths:
            if os.path.exists(path):
                return path

        # Return default path even if it doesn't exist
        return search_paths[0]

    @property
    def config(self) -> Config:
        """Get configuration, loading if necessary."""
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def _load_config(self) -> Config:
        """Load configuration from TOML file."""
        if not os.path.exists(self.config_path):
            # Return default configuration if file doesn't exist
            return Config()

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                config_data = toml.load(f)
            return Config(**config_data)
        except (toml.TomlDecodeError, ValidationError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid configuration file {self.config_path}: {e}",
                context={"path": self.config_path},
            ) from e

    def reload(self):
        """Reload configuration."""
        self._config = None


# Global configuration manager instance
config_manager = ConfigManager()
