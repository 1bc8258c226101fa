"""
YAML loader for engine configuration sets.

* ``load_yaml_file`` reads one YAML document with ``yaml.safe_load``.
* ``parse_engine_config`` turns the parsed mapping into an ``EngineConfig``,
  rejecting unknown keys and out-of-range values.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  effective configuration (after environment overrides).

Failure modes:
* Missing file      -> ``FileNotFoundError`` propagates.
* Malformed YAML    -> ``yaml.YAMLError`` propagates.
* Invalid contents  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from pharmacy_config.schema import (
    ConfigurationError,
    DatabaseConfig,
    EngineConfig,
    SalesConfig,
)

# Environment variable that replaces database.url
DATABASE_URL_ENV = "PHARMACY_DATABASE_URL"

_TOP_LEVEL_KEYS = frozenset({"config_id", "version", "database", "sales"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    return data


def apply_environment(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Return a copy of ``data`` with environment overrides applied."""
    result = dict(data)
    url = environ.get(DATABASE_URL_ENV)
    if url:
        result["database"] = {**(result.get("database") or {}), "url": url}
    return result


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{name}' must be a mapping")
    return section


def _check_keys(section: dict[str, Any], name: str, allowed: set[str]) -> None:
    unknown = sorted(set(section) - allowed)
    if unknown:
        raise ConfigurationError(f"Unknown key(s) in '{name}': {', '.join(unknown)}")


def _int(section: dict[str, Any], key: str, default: int, minimum: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"'{key}' must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigurationError(f"'{key}' must be >= {minimum}, got {value}")
    return value


def parse_database(section: dict[str, Any]) -> DatabaseConfig:
    _check_keys(section, "database", {f.name for f in fields(DatabaseConfig)})
    defaults = DatabaseConfig()

    url = section.get("url", defaults.url)
    if not isinstance(url, str) or not url:
        raise ConfigurationError("'database.url' must be a non-empty string")

    lock_timeout_ms = section.get("lock_timeout_ms", defaults.lock_timeout_ms)
    if lock_timeout_ms is not None:
        lock_timeout_ms = _int(section, "lock_timeout_ms", defaults.lock_timeout_ms, 1)

    busy_timeout = section.get("sqlite_busy_timeout_s", defaults.sqlite_busy_timeout_s)
    if isinstance(busy_timeout, bool) or not isinstance(busy_timeout, (int, float)):
        raise ConfigurationError(
            f"'sqlite_busy_timeout_s' must be a number, got {busy_timeout!r}"
        )
    if busy_timeout < 0:
        raise ConfigurationError(
            f"'sqlite_busy_timeout_s' must be >= 0, got {busy_timeout}"
        )

    return DatabaseConfig(
        url=url,
        echo=bool(section.get("echo", defaults.echo)),
        pool_size=_int(section, "pool_size", defaults.pool_size, 1),
        max_overflow=_int(section, "max_overflow", defaults.max_overflow, 0),
        pool_timeout=_int(section, "pool_timeout", defaults.pool_timeout, 1),
        lock_timeout_ms=lock_timeout_ms,
        sqlite_busy_timeout_s=float(busy_timeout),
    )


def parse_sales(section: dict[str, Any]) -> SalesConfig:
    _check_keys(section, "sales", {f.name for f in fields(SalesConfig)})
    defaults = SalesConfig()

    decimal_places = _int(
        section, "money_decimal_places", defaults.money_decimal_places, 0
    )
    if decimal_places > 9:
        raise ConfigurationError(
            f"'money_decimal_places' must be <= 9, got {decimal_places}"
        )

    return SalesConfig(
        max_attempts=_int(section, "max_attempts", defaults.max_attempts, 1),
        retry_backoff_ms=_int(section, "retry_backoff_ms", defaults.retry_backoff_ms, 0),
        money_decimal_places=decimal_places,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """Build an EngineConfig from a parsed (and env-overridden) YAML mapping."""
    _check_keys(data, "<root>", set(_TOP_LEVEL_KEYS))

    config_id = data.get("config_id", "default")
    if not isinstance(config_id, str) or not config_id:
        raise ConfigurationError("'config_id' must be a non-empty string")

    return EngineConfig(
        config_id=config_id,
        version=_int(data, "version", 1, 1),
        checksum=compute_checksum(data),
        database=parse_database(_section(data, "database")),
        sales=parse_sales(_section(data, "sales")),
    )
