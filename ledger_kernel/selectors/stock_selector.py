"""
Stock query selector.

Read-only access to the inventory movement ledger and its cached
projections on Material.

Key design decisions:
- Stock is always derived from stock_movements; Material.current_stock is
  only compared against it (check_consistency), never trusted.
- Quantities are summed in Python so Decimal precision is identical on
  every backend (SQLite SUM returns float).
- Ordering is always (movement_date, sequence).
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.db.types import as_utc
from ledger_kernel.domain.chain import ChainEntry, ChainViolation, find_chain_violations
from ledger_kernel.domain.dtos import (
    MovementType,
    SourceType,
    StockMovementRecord,
)
from ledger_kernel.domain.keys import StockLedgerKey
from ledger_kernel.models.material import Material
from ledger_kernel.models.stock_movement import StockMovement
from ledger_kernel.selectors.base import BaseSelector


class _AllWarehouses:
    def __repr__(self) -> str:
        return "ALL_WAREHOUSES"


# Passed as warehouse_id to mean "every chain of the material"; None means
# the untracked chain.
ALL_WAREHOUSES = _AllWarehouses()


@dataclass(frozen=True)
class StockConsistencyReport:
    """Cached Material.current_stock against the ledger sum."""

    material_id: UUID
    material_code: str
    cached_stock: Decimal
    ledger_stock: Decimal

    @property
    def difference(self) -> Decimal:
        return self.cached_stock - self.ledger_stock

    @property
    def is_consistent(self) -> bool:
        return self.difference == 0


def movement_to_record(row: StockMovement) -> StockMovementRecord:
    return StockMovementRecord(
        id=row.id,
        material_id=row.material_id,
        warehouse_id=row.warehouse_id,
        movement_date=row.movement_date,
        sequence=row.sequence,
        movement_type=MovementType(row.movement_type),
        quantity=row.quantity,
        unit_cost=row.unit_cost,
        total_cost=row.total_cost,
        stock_before=row.stock_before,
        stock_after=row.stock_after,
        source_type=SourceType(row.source_type),
        source_reference=row.source_reference,
        reason=row.reason,
        recorded_at=row.recorded_at,
        source_quantity=row.source_quantity,
        source_unit_id=row.source_unit_id,
        source_unit_price=row.source_unit_price,
    )


def key_filter(key: StockLedgerKey):
    """WHERE clause selecting exactly one stock chain."""
    if key.warehouse_id is None:
        return (
            StockMovement.material_id == key.material_id,
            StockMovement.warehouse_id.is_(None),
        )
    return (
        StockMovement.material_id == key.material_id,
        StockMovement.warehouse_id == key.warehouse_id,
    )


def _sum(values) -> Decimal:
    return sum(values, Decimal("0"))


class StockSelector(BaseSelector):
    """Read-only queries over stock_movements."""

    def current_stock(self, material_id: UUID, warehouse_id=ALL_WAREHOUSES) -> Decimal:
        """
        Ledger stock of a material, in its consumption unit.

        With the default ``ALL_WAREHOUSES`` this sums every chain of the
        material; otherwise only the chain of ``warehouse_id`` (None being
        the untracked chain).
        """
        stmt = select(StockMovement.quantity)
        if warehouse_id is ALL_WAREHOUSES:
            stmt = stmt.where(StockMovement.material_id == material_id)
        else:
            stmt = stmt.where(*key_filter(StockLedgerKey(material_id, warehouse_id)))
        return _sum(self.session.scalars(stmt))

    def stock_at(
        self,
        material_id: UUID,
        warehouse_id,
        as_of: datetime,
    ) -> Decimal:
        """Historical stock including every movement dated at or before ``as_of``."""
        stmt = select(StockMovement.quantity).where(
            StockMovement.movement_date <= as_utc(as_of)
        )
        if warehouse_id is ALL_WAREHOUSES:
            stmt = stmt.where(StockMovement.material_id == material_id)
        else:
            stmt = stmt.where(*key_filter(StockLedgerKey(material_id, warehouse_id)))
        return _sum(self.session.scalars(stmt))

    def movement_history(
        self,
        key: StockLedgerKey,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[StockMovementRecord]:
        stmt = select(StockMovement).where(*key_filter(key))
        if date_from is not None:
            stmt = stmt.where(StockMovement.movement_date >= as_utc(date_from))
        if date_to is not None:
            stmt = stmt.where(StockMovement.movement_date <= as_utc(date_to))
        stmt = stmt.order_by(StockMovement.movement_date, StockMovement.sequence)
        return [movement_to_record(row) for row in self.session.scalars(stmt)]

    def keys_for_material(self, material_id: UUID) -> list[StockLedgerKey]:
        """Every chain the material has movements in, in lock order."""
        warehouse_ids = self.session.scalars(
            select(StockMovement.warehouse_id)
            .where(StockMovement.material_id == material_id)
            .distinct()
        )
        keys = {StockLedgerKey(material_id, w) for w in warehouse_ids}
        return sorted(keys, key=lambda k: k.lock_name)

    def latest_purchase(self, material_id: UUID) -> StockMovementRecord | None:
        """Most recently recorded PURCHASE-sourced IN movement."""
        row = self.session.scalars(
            select(StockMovement)
            .where(
                StockMovement.material_id == material_id,
                StockMovement.movement_type == MovementType.IN.value,
                StockMovement.source_type == SourceType.PURCHASE.value,
            )
            .order_by(StockMovement.sequence.desc())
            .limit(1)
        ).first()
        return movement_to_record(row) if row is not None else None

    def verify_chain(self, key: StockLedgerKey) -> list[ChainViolation]:
        entries = [
            ChainEntry(
                entry_id=record.id,
                delta=record.quantity,
                before=record.stock_before,
                after=record.stock_after,
            )
            for record in self.movement_history(key)
        ]
        return find_chain_violations(Decimal("0"), entries)

    def check_consistency(self, material_id: UUID | None = None) -> list[StockConsistencyReport]:
        """Compare every (or one) material's cached stock with the ledger."""
        stmt = select(Material).order_by(Material.code)
        if material_id is not None:
            stmt = stmt.where(Material.id == material_id)
        reports = []
        for material in self.session.scalars(stmt):
            reports.append(
                StockConsistencyReport(
                    material_id=material.id,
                    material_code=material.code,
                    cached_stock=material.current_stock,
                    ledger_stock=self.current_stock(material.id),
                )
            )
        return reports
