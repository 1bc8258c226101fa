"""
Engine configuration schema.

Frozen dataclasses produced by the loader from a YAML configuration set.
Defaults here are the values used when a key is omitted from the YAML.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class ConfigurationError(ValueError):
    """A configuration set is malformed or holds an out-of-range value."""


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection and locking settings for the inventory store."""

    url: str = "sqlite:///pharmacy.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    # PostgreSQL lock wait bound per sale transaction; None = server default
    lock_timeout_ms: int | None = 5000
    # SQLite wait for the database write lock
    sqlite_busy_timeout_s: float = 15.0


@dataclass(frozen=True)
class SalesConfig:
    """Sale engine policy."""

    max_attempts: int = 3
    retry_backoff_ms: int = 50
    money_decimal_places: int = 2


@dataclass(frozen=True)
class EngineConfig:
    """The runtime configuration artifact returned by get_active_config()."""

    config_id: str
    version: int
    checksum: str
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    sales: SalesConfig = field(default_factory=SalesConfig)
