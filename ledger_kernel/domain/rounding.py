"""
Decimal rounding policy for quantities, unit costs and money.

Quantities and unit costs are kept at 9 decimal places, the scale of the
Numeric(38, 9) columns, so a value survives a database round trip
unchanged.  Account amounts are money and are kept at 2 places.
All rounding is ROUND_HALF_UP.
"""

from decimal import ROUND_HALF_UP, Decimal

QUANTITY_PLACES = 9
MONEY_PLACES = 2

# Tolerance used when comparing stored snapshots with a replayed chain
CHAIN_TOLERANCE = Decimal("1e-9")


def _exponent(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def round_quantity(value: Decimal, places: int = QUANTITY_PLACES) -> Decimal:
    """Quantize a stock quantity or unit cost."""
    return Decimal(value).quantize(_exponent(places), rounding=ROUND_HALF_UP)


def round_money(value: Decimal, places: int = MONEY_PLACES) -> Decimal:
    """Quantize an account amount."""
    return Decimal(value).quantize(_exponent(places), rounding=ROUND_HALF_UP)


def to_decimal(value: object) -> Decimal:
    """
    Coerce an int, str or Decimal to Decimal.

    Floats are rejected: binary floating point has no place in the ledger.
    """
    if isinstance(value, bool):
        raise TypeError("bool is not a valid ledger number")
    if isinstance(value, float):
        raise TypeError("float is not a valid ledger number; use Decimal or str")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, str)):
        return Decimal(value)
    raise TypeError(f"Cannot convert {type(value).__name__} to Decimal")
