"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration -- sits above ``ledger_kernel`` and below
    ``ledger_services``.  The kernel MUST NEVER import from
    ``ledger_config``; services pass the relevant values into kernel
    constructors.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ConfigError`` -- malformed YAML or out-of-range values.

Audit relevance:
    Every successful ``get_active_config()`` call emits a ``config_trace``
    log entry with the file path, config id, version and checksum.
"""

from __future__ import annotations

import os
from pathlib import Path

from ledger_config.loader import ConfigError, load_yaml_file, parse_config
from ledger_config.schema import (
    DatabaseConfig,
    LedgerConfig,
    LockingConfig,
    PropagationConfig,
    RoundingConfig,
)
from ledger_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

DATABASE_URL_ENV = "LEDGER_DATABASE_URL"


def get_active_config(config_path: Path | str | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to
            ``ledger_config/sets/default.yaml``.

    Returns:
        Frozen LedgerConfig.  ``LEDGER_DATABASE_URL``, when set, replaces
        ``database.url``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigError: If validation fails.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)
    config = parse_config(data, url_override=os.environ.get(DATABASE_URL_ENV))

    _logger.info(
        "config_trace",
        extra={
            "config_path": str(path),
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "database_url_overridden": DATABASE_URL_ENV in os.environ,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "ConfigError",
    "LedgerConfig",
    "DatabaseConfig",
    "RoundingConfig",
    "LockingConfig",
    "PropagationConfig",
]
