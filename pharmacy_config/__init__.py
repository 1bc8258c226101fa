"""
pharmacy_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits above ``pharmacy_kernel``.  The kernel MUST NEVER
    import from ``pharmacy_config``; ``pharmacy_config.bridges`` turns a
    loaded config into kernel objects.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``ConfigurationError`` (a ``ValueError``) -- unknown keys or
      out-of-range values.

Every successful ``get_active_config()`` call emits a
``pharmacy_config_loaded`` log entry with the config id, version and
checksum.  The database URL is never logged.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from sqlalchemy.engine import make_url

from pharmacy_config.loader import apply_environment, load_yaml_file, parse_engine_config
from pharmacy_config.schema import (
    ConfigurationError,
    DatabaseConfig,
    EngineConfig,
    SalesConfig,
)

_logger = logging.getLogger("pharmacy_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to
            ``pharmacy_config/sets/default.yaml``.
        environ: Environment mapping for overrides.  Defaults to
            ``os.environ``.

    Returns:
        EngineConfig -- frozen, validated.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    env = os.environ if environ is None else environ

    data = apply_environment(load_yaml_file(path), env)
    config = parse_engine_config(data)

    _logger.info(
        "pharmacy_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(path),
            "dialect": make_url(config.database.url).get_backend_name(),
            "max_attempts": config.sales.max_attempts,
        },
    )
    return config


__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "EngineConfig",
    "SalesConfig",
    "get_active_config",
]
