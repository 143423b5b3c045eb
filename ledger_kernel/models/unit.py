"""
Module: ledger_kernel.models.unit
Responsibility: ORM persistence for units of measure and their base-unit
    conversion factors (kg/gr, lt/ml, adet/paket, ...).
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - conversion_factor > 0 (ck_unit_factor_positive).
    - A base unit (base_unit_id IS NULL) has conversion_factor 1.  A non-base
      unit points at another unit; the unit graph loader multiplies factors
      along the chain and rejects cycles.

Failure modes:
    - IntegrityError on duplicate code or non-positive factor.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class Unit(TrackedBase):
    """
    Unit of measure.

    Contract:
        quantity_in_base = quantity * conversion_factor.  Two units are
        convertible iff they resolve to the same base unit.

    Non-goals:
        - Units are reference data; this model does not convert anything.
          See ledger_kernel.domain.units.UnitGraph.
    """

    __tablename__ = "units"

    __table_args__ = (
        UniqueConstraint("code", name="uq_unit_code"),
        CheckConstraint("conversion_factor > 0", name="ck_unit_factor_positive"),
    )

    # Short code, e.g. "kg", "gr", "lt"
    code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # NULL means this unit is itself a base unit
    base_unit_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("units.id"),
        nullable=True,
    )

    # Ratio to the base unit (gr -> kg = 0.001)
    conversion_factor: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("1"),
    )

    @property
    def is_base(self) -> bool:
        return self.base_unit_id is None

    def __repr__(self) -> str:
        return f"<Unit {self.code} x{self.conversion_factor}>"
