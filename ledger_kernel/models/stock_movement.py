"""
Module: ledger_kernel.models.stock_movement
Responsibility: ORM persistence for the inventory movement ledger.  One row
    is one signed quantity delta for a (material, warehouse) key with its
    cached running-balance snapshot.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Ordering key is (movement_date, sequence).  sequence is allocated from
      the "stock_movement" sequence and is unique, so the order is total.
    - For each key, in ordering-key order:
          stock_after[i]  == stock_before[i] + quantity[i]
          stock_before[i+1] == stock_after[i]
          stock_before[0] == 0
      Rows are written only by MovementLedgerService.
    - warehouse_id IS NULL is a key of its own (untracked stock).

Failure modes:
    - IntegrityError on duplicate sequence or unknown material/warehouse.

Audit relevance:
    source_reference ties every row to the document that produced it; the
    source_* columns keep the line exactly as entered before conversion.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class StockMovement(TrackedBase):
    """
    One entry of the inventory movement ledger.

    Contract:
        quantity is signed and in the material's consumption unit.
        unit_cost and total_cost are in the consumption unit; total_cost is
        an unsigned magnitude.

    Guarantees:
        - (movement_date, sequence) is unique and totally ordered.
        - stock_before/stock_after are consistent with every earlier row of
          the same key after any ledger service call returns.

    Non-goals:
        - Does NOT enforce the chain at the database level; see
          ledger_kernel.domain.chain.find_chain_violations.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint("sequence", name="uq_stock_movement_sequence"),
        Index(
            "idx_stock_movement_key_order",
            "material_id",
            "warehouse_id",
            "movement_date",
            "sequence",
        ),
        Index("idx_stock_movement_source", "source_reference"),
    )

    material_id: Mapped[UUID] = mapped_column(
        ForeignKey("materials.id"),
        nullable=False,
    )

    warehouse_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("warehouses.id"),
        nullable=True,
    )

    # Business event time (not row creation time)
    movement_date: Mapped[datetime] = mapped_column(nullable=False)

    # Insertion tiebreaker
    sequence: Mapped[int] = mapped_column(nullable=False)

    # When the ledger service wrote the row (injected clock)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    # IN, OUT, ADJUSTMENT, WASTE, TRANSFER
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    total_cost: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    # Cached running balance
    stock_before: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    stock_after: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    # PURCHASE, SALE, RETURN, MANUAL
    source_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="MANUAL",
    )

    source_reference: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    # Document line as entered (document unit)
    source_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)

    source_unit_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("units.id"),
        nullable=True,
    )

    source_unit_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<StockMovement #{self.sequence} {self.movement_type} "
            f"{self.quantity} @ {self.movement_date:%Y-%m-%d}>"
        )
