"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen dataclasses
of ``ledger_config.schema``.  The public entry point for runtime config is
``ledger_config.get_active_config()``.

Invariants enforced
-------------------
* Every parse or range error raises ``ConfigError`` with a descriptive
  message; no silent defaults for required fields.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document for configuration identity.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML or invalid values  -> ``ConfigError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    DatabaseConfig,
    LedgerConfig,
    LockingConfig,
    PropagationConfig,
    RoundingConfig,
)

# Storage scale of Numeric(38, 9)
_MAX_PLACES = 9


class ConfigError(ValueError):
    """Configuration file is malformed or holds out-of-range values."""


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        ConfigError: if the file is not valid YAML or not a mapping.
    """
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return section


def _places(value: Any, field: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= _MAX_PLACES:
        raise ConfigError(f"{field} must be an integer between 0 and {_MAX_PLACES}, got {value!r}")
    return value


def parse_database(data: dict[str, Any], url_override: str | None = None) -> DatabaseConfig:
    url = url_override or data.get("url")
    if not url:
        raise ConfigError("database.url is required")
    return DatabaseConfig(
        url=url,
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
    )


def parse_rounding(data: dict[str, Any]) -> RoundingConfig:
    return RoundingConfig(
        quantity_places=_places(data.get("quantity_places", 9), "rounding.quantity_places"),
        money_places=_places(data.get("money_places", 2), "rounding.money_places"),
    )


def parse_locking(data: dict[str, Any]) -> LockingConfig:
    timeout = float(data.get("lock_timeout_seconds", 10.0))
    retries = data.get("max_conflict_retries", 3)
    if timeout <= 0:
        raise ConfigError(f"locking.lock_timeout_seconds must be positive, got {timeout}")
    if not isinstance(retries, int) or retries < 0:
        raise ConfigError(f"locking.max_conflict_retries must be >= 0, got {retries!r}")
    return LockingConfig(lock_timeout_seconds=timeout, max_conflict_retries=retries)


def parse_propagation(data: dict[str, Any]) -> PropagationConfig:
    return PropagationConfig(enabled=bool(data.get("enabled", True)))


def parse_config(data: dict[str, Any], url_override: str | None = None) -> LedgerConfig:
    """Parse a loaded YAML document into a LedgerConfig."""
    config_id = data.get("config_id")
    if not config_id:
        raise ConfigError("config_id is required")
    return LedgerConfig(
        config_id=str(config_id),
        version=int(data.get("version", 1)),
        checksum=compute_checksum(data),
        database=parse_database(_section(data, "database"), url_override),
        rounding=parse_rounding(_section(data, "rounding")),
        locking=parse_locking(_section(data, "locking")),
        propagation=parse_propagation(_section(data, "propagation")),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
