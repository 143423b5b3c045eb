"""
Module: ledger_kernel.db.types
Responsibility: Column types shared by every ledger model.  Centralizes the
    decimal precision of quantities and amounts and the UTC handling of event
    timestamps so that every model stores them identically.
Architecture position: Kernel > DB.  May be imported by models/, services/,
    and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Quantities, unit costs and amounts are Decimal stored as Numeric(38, 9).
      No floats anywhere in the ledger.
    - Event timestamps are stored as naive UTC and always read back as
      timezone-aware UTC, so (date, sequence) ordering is identical in SQL
      and in Python on every backend.

Failure modes:
    - ValueError if a non-datetime value is bound to a UTCDateTime column.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Annotated

from sqlalchemy import BigInteger, DateTime, Numeric, String
from sqlalchemy.types import TypeDecorator

# Signed stock quantity in the consumption unit
Quantity = Annotated[Decimal, Numeric(38, 9)]

# Monetary amount (unit cost, total cost, balance)
Money = Annotated[Decimal, Numeric(38, 9)]

# Monotonic insertion sequence, the tiebreaker of the ledger ordering key
Sequence = Annotated[int, BigInteger]

# Short identifier strings (unit codes, material codes)
ShortCode = Annotated[str, String(50)]

# Free text (reasons, descriptions)
LongText = Annotated[str, String(1000)]


class UTCDateTime(TypeDecorator):
    """
    Timestamp stored as naive UTC, returned as aware UTC.

    Contract:
        Aware datetimes are converted to UTC before storage.  Naive datetimes
        are interpreted as already being UTC.

    Guarantees:
        - process_result_value always returns tzinfo=UTC (or None).
        - Comparison operators bind through this type, so SQL range filters
          see the same normalized value as stored rows.
    """

    impl = DateTime(timezone=False)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, datetime):
            raise ValueError(f"UTCDateTime expects datetime, got {type(value).__name__}")
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
