"""
Module: ledger_kernel.models.material
Responsibility: ORM persistence for warehouses and materials (stock items).
    Material carries the cached stock/cost projections of the movement ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - current_stock, average_cost and last_purchase_price are projections of
      the movement ledger.  Only StockAggregatorService writes them; they can
      be rebuilt from stock_movements at any time.

Failure modes:
    - IntegrityError on duplicate code or unknown unit reference.

Audit relevance:
    A disagreement between current_stock and the ledger sum is a
    consistency defect, reported by StockSelector.check_consistency and
    repaired by ReconciliationService.rebuild_stock.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class Warehouse(TrackedBase):
    """Physical stock location (kitchen, cold room, depot)."""

    __tablename__ = "warehouses"

    __table_args__ = (
        UniqueConstraint("code", name="uq_warehouse_code"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    def __repr__(self) -> str:
        return f"<Warehouse {self.code}>"


class Material(TrackedBase):
    """
    Stock item bought in a purchase unit and consumed in a consumption unit.

    Contract:
        Documents are entered in the purchase unit; the ledger is kept in
        the consumption unit.

    Guarantees:
        - current_stock is in the consumption unit, summed across all
          warehouses (including untracked movements).
        - average_cost is the consumption-unit cost of the most recently
          recorded purchase (last-purchase-cost policy).
        - last_purchase_price is in the purchase unit.

    Non-goals:
        - Does NOT store per-warehouse stock; that is derived from the ledger.
    """

    __tablename__ = "materials"

    __table_args__ = (
        UniqueConstraint("code", name="uq_material_code"),
        Index("idx_material_active", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    purchase_unit_id: Mapped[UUID] = mapped_column(
        ForeignKey("units.id"),
        nullable=False,
    )

    consumption_unit_id: Mapped[UUID] = mapped_column(
        ForeignKey("units.id"),
        nullable=False,
    )

    # Cached projections
    current_stock: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    average_cost: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    last_purchase_price: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    def __repr__(self) -> str:
        return f"<Material {self.code}: stock={self.current_stock}>"
