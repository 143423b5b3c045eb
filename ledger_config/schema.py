"""
LedgerConfig schema.

Frozen dataclasses the YAML configuration set is parsed into.  The runtime
only ever sees these types; it never reads YAML or environment variables.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class RoundingConfig:
    """Decimal places for converted quantities/unit costs and for account amounts."""

    quantity_places: int = 9
    money_places: int = 2


@dataclass(frozen=True)
class LockingConfig:
    lock_timeout_seconds: float = 10.0
    max_conflict_retries: int = 3


@dataclass(frozen=True)
class PropagationConfig:
    """Recipe-cost propagation after a purchase is committed."""

    enabled: bool = True


@dataclass(frozen=True)
class LedgerConfig:
    config_id: str
    version: int
    checksum: str
    database: DatabaseConfig
    rounding: RoundingConfig
    locking: LockingConfig
    propagation: PropagationConfig
