"""
MovementLedgerService -- the inventory movement ledger.

Responsibility:
    Owns every write to stock_movements.  Inserts and deletes movements at
    any point in time and re-derives the running stock_before/stock_after
    snapshots of every later movement of the same (material, warehouse) key.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes, never commits.
    Callers must hold the key's lock (LedgerLockService) for the whole
    read-modify-write cycle.

Invariants enforced:
    - Ordering key is (movement_date, sequence); sequence comes from the
      "stock_movement" sequence, so equal dates are ordered oldest-inserted
      first.
    - After every public mutating call the chain of each touched key
      satisfies stock_before[0] == 0 and
      stock_after[i] == stock_before[i] + quantity[i] == stock_before[i+1].
    - Recompute is a full forward fold from the affected point, never an
      incremental patch.
    - Sign rules: IN > 0, OUT and WASTE < 0, ADJUSTMENT and TRANSFER != 0.

Failure modes:
    - MaterialNotFoundError / WarehouseNotFoundError for unknown references.
    - InvalidMovementError for sign violations or negative unit cost.
    - StockMovementNotFoundError on delete of an unknown id.

Audit relevance:
    Each insert, delete and recompute is logged with the ledger key and the
    number of rows whose snapshot changed.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import as_utc
from ledger_kernel.domain.chain import fold_chain
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import (
    MovementSpec,
    MovementType,
    RecomputeResult,
    SourceType,
    StockMovementRecord,
)
from ledger_kernel.domain.keys import StockLedgerKey
from ledger_kernel.domain.rounding import round_quantity
from ledger_kernel.exceptions import (
    InvalidMovementError,
    MaterialNotFoundError,
    StockMovementNotFoundError,
    WarehouseNotFoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.material import Material, Warehouse
from ledger_kernel.models.stock_movement import StockMovement
from ledger_kernel.selectors.stock_selector import key_filter, movement_to_record
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.movement_ledger")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class MovementRetraction:
    """Movements removed for one source document and the recomputes that followed."""

    source_reference: str
    removed: tuple[StockMovementRecord, ...]
    recomputes: tuple[RecomputeResult, ...]

    @property
    def keys(self) -> tuple[StockLedgerKey, ...]:
        return tuple(r.key for r in self.removed)


def check_movement_sign(movement_type: MovementType, quantity: Decimal) -> None:
    """Raise InvalidMovementError if ``quantity`` has the wrong sign for its type."""
    if movement_type is MovementType.IN and quantity <= 0:
        raise InvalidMovementError(movement_type.value, quantity, "IN quantity must be positive")
    if movement_type in (MovementType.OUT, MovementType.WASTE) and quantity >= 0:
        raise InvalidMovementError(
            movement_type.value, quantity, f"{movement_type.value} quantity must be negative"
        )
    if quantity == 0:
        raise InvalidMovementError(movement_type.value, quantity, "quantity must be non-zero")


class MovementLedgerService(BaseService):
    """
    Insert / delete / recompute over the inventory movement ledger.

    Contract:
        Quantities in MovementSpec are signed and already in the material's
        consumption unit.  Unit conversion happens before this service.

    Guarantees:
        - insert and delete leave the chain of the affected key consistent.
        - Only rows whose snapshot actually changed are written back.

    Non-goals:
        - Does NOT refresh Material caches (StockAggregatorService does).
        - Does NOT lock; the caller holds the key lock.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
    ):
        super().__init__(session, clock)
        self._sequences = sequence_service or SequenceService(session)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, spec: MovementSpec) -> StockMovementRecord:
        """
        Insert a movement at ``spec.movement_date`` and fix every later snapshot.

        Preconditions:
            - The caller holds the lock of ``spec.key``.
        Postconditions:
            - stock_before = sum of every earlier movement of the key.
            - Every later movement of the key is re-folded from the new row.
        """
        movement_type = MovementType(spec.movement_type)
        quantity = round_quantity(spec.quantity)
        unit_cost = round_quantity(spec.unit_cost)
        check_movement_sign(movement_type, quantity)
        if unit_cost < 0:
            raise InvalidMovementError(movement_type.value, quantity, "unit cost must be non-negative")
        self._require_references(spec.material_id, spec.warehouse_id)

        key = spec.key
        movement_date = as_utc(spec.movement_date)
        sequence = self._sequences.next_value(SequenceService.STOCK_MOVEMENT)

        stock_before = self._sum_before(key, movement_date, sequence)
        row = StockMovement(
            material_id=spec.material_id,
            warehouse_id=spec.warehouse_id,
            movement_date=movement_date,
            sequence=sequence,
            recorded_at=self.clock.now(),
            movement_type=movement_type.value,
            quantity=quantity,
            unit_cost=unit_cost,
            total_cost=round_quantity(abs(quantity * unit_cost)),
            stock_before=stock_before,
            stock_after=stock_before + quantity,
            source_type=SourceType(spec.source_type).value,
            source_reference=spec.source_reference,
            source_quantity=spec.source_quantity,
            source_unit_id=spec.source_unit_id,
            source_unit_price=spec.source_unit_price,
            reason=spec.reason,
        )
        self.session.add(row)
        self.session.flush()

        later = self._rows_after(key, movement_date, sequence)
        updated, _ = self._refold(later, row.stock_after)
        self.session.flush()

        logger.info(
            "movement_inserted",
            extra={
                "ledger_key": key.lock_name,
                "movement_id": str(row.id),
                "movement_type": movement_type.value,
                "sequence": sequence,
                "quantity": str(quantity),
                "stock_before": str(row.stock_before),
                "stock_after": str(row.stock_after),
                "later_rows_updated": updated,
            },
        )
        return movement_to_record(row)

    def delete(self, movement_id: UUID) -> RecomputeResult:
        """Remove a movement and forward-recompute its key from its date."""
        row = self.session.get(StockMovement, movement_id)
        if row is None:
            raise StockMovementNotFoundError(movement_id)
        key = StockLedgerKey(row.material_id, row.warehouse_id)
        movement_date = row.movement_date
        sequence = row.sequence

        self.session.delete(row)
        self.session.flush()
        logger.info(
            "movement_deleted",
            extra={
                "ledger_key": key.lock_name,
                "movement_id": str(movement_id),
                "sequence": sequence,
            },
        )
        return self.recompute_from(key, movement_date)

    def retract_source(self, source_reference: str) -> MovementRetraction:
        """
        Delete every movement of a source document.

        Each affected key is recomputed once, from its earliest retracted
        date, after all deletions.
        """
        rows = self.session.scalars(
            select(StockMovement)
            .where(StockMovement.source_reference == source_reference)
            .order_by(StockMovement.sequence)
        ).all()
        removed = tuple(movement_to_record(row) for row in rows)

        earliest: dict[StockLedgerKey, datetime] = {}
        for row in rows:
            key = StockLedgerKey(row.material_id, row.warehouse_id)
            if key not in earliest or row.movement_date < earliest[key]:
                earliest[key] = row.movement_date
            self.session.delete(row)
        self.session.flush()

        recomputes = tuple(
            self.recompute_from(key, earliest[key])
            for key in sorted(earliest, key=lambda k: k.lock_name)
        )
        if removed:
            logger.info(
                "source_movements_retracted",
                extra={
                    "source_reference": source_reference,
                    "removed": len(removed),
                    "keys": [k.lock_name for k in earliest],
                },
            )
        return MovementRetraction(
            source_reference=source_reference,
            removed=removed,
            recomputes=recomputes,
        )

    def recompute_from(self, key: StockLedgerKey, from_date: datetime | None) -> RecomputeResult:
        """
        Re-fold every movement of ``key`` dated at or after ``from_date``.

        The opening balance is calculate_stock_at_date(key, from_date).
        ``from_date`` None recomputes the whole chain from zero.
        """
        stmt = select(StockMovement).where(*key_filter(key))
        if from_date is None:
            opening = _ZERO
        else:
            from_date = as_utc(from_date)
            opening = self.calculate_stock_at_date(key, from_date)
            stmt = stmt.where(StockMovement.movement_date >= from_date)
        rows = self.session.scalars(
            stmt.order_by(StockMovement.movement_date, StockMovement.sequence)
        ).all()

        updated, closing = self._refold(rows, opening)
        self.session.flush()

        logger.debug(
            "chain_recomputed",
            extra={
                "ledger_key": key.lock_name,
                "from_date": from_date,
                "rows_examined": len(rows),
                "rows_updated": updated,
                "closing": str(closing),
            },
        )
        return RecomputeResult(
            ledger_key=key.lock_name,
            from_date=from_date,
            opening=opening,
            closing=closing,
            entries_examined=len(rows),
            entries_updated=updated,
        )

    # ------------------------------------------------------------------
    # Reads used by the write path
    # ------------------------------------------------------------------

    def calculate_stock_at_date(self, key: StockLedgerKey, at: datetime) -> Decimal:
        """Sum of every movement of ``key`` dated strictly before ``at``."""
        quantities = self.session.scalars(
            select(StockMovement.quantity).where(
                *key_filter(key),
                StockMovement.movement_date < as_utc(at),
            )
        )
        return sum(quantities, _ZERO)

    def find_by_source(self, source_reference: str) -> list[StockMovementRecord]:
        rows = self.session.scalars(
            select(StockMovement)
            .where(StockMovement.source_reference == source_reference)
            .order_by(StockMovement.sequence)
        )
        return [movement_to_record(row) for row in rows]

    def keys_for_source(self, source_reference: str) -> set[StockLedgerKey]:
        rows = self.session.execute(
            select(StockMovement.material_id, StockMovement.warehouse_id)
            .where(StockMovement.source_reference == source_reference)
            .distinct()
        )
        return {StockLedgerKey(m, w) for m, w in rows}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_references(self, material_id: UUID, warehouse_id: UUID | None) -> None:
        if self.session.get(Material, material_id) is None:
            raise MaterialNotFoundError(material_id)
        if warehouse_id is not None and self.session.get(Warehouse, warehouse_id) is None:
            raise WarehouseNotFoundError(warehouse_id)

    def _sum_before(self, key: StockLedgerKey, at: datetime, sequence: int) -> Decimal:
        quantities = self.session.scalars(
            select(StockMovement.quantity).where(
                *key_filter(key),
                or_(
                    StockMovement.movement_date < at,
                    and_(
                        StockMovement.movement_date == at,
                        StockMovement.sequence < sequence,
                    ),
                ),
            )
        )
        return sum(quantities, _ZERO)

    def _rows_after(self, key: StockLedgerKey, at: datetime, sequence: int) -> list[StockMovement]:
        return self.session.scalars(
            select(StockMovement)
            .where(
                *key_filter(key),
                or_(
                    StockMovement.movement_date > at,
                    and_(
                        StockMovement.movement_date == at,
                        StockMovement.sequence > sequence,
                    ),
                ),
            )
            .order_by(StockMovement.movement_date, StockMovement.sequence)
        ).all()

    def _refold(self, rows: list[StockMovement], opening: Decimal) -> tuple[int, Decimal]:
        """Rewrite snapshots of ordered rows; return (rows changed, closing balance)."""
        updated = 0
        closing = opening
        for row, snap in zip(rows, fold_chain(opening, [r.quantity for r in rows])):
            if row.stock_before != snap.before or row.stock_after != snap.after:
                row.stock_before = snap.before
                row.stock_after = snap.after
                updated += 1
            closing = snap.after
        return updated, closing

