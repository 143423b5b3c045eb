"""
StockAggregatorService -- Material cache projections of the movement ledger.

Responsibility:
    Re-derives Material.current_stock, average_cost and last_purchase_price
    from stock_movements after every ledger mutation touching the material.

Architecture position:
    Kernel > Services.  The only writer of those three Material columns.

Invariants enforced:
    - current_stock == sum of the quantities of every movement of the
      material, across all warehouses and the untracked chain.
    - average_cost follows the last-purchase-cost policy: it is the
      consumption-unit unit cost of the most recently recorded (highest
      sequence) PURCHASE-sourced IN movement.  It is NOT a running
      weighted average.  With no such movement it is 0.
    - last_purchase_price is that movement's price in the unit it was
      entered in.
    Every value is a pure function of the ledger, so a refresh after any
    insert, delete or retraction (including retraction of the latest
    purchase) yields the same caches a full rebuild would.

Failure modes:
    - MaterialNotFoundError for an unknown material id.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import MaterialAggregate
from ledger_kernel.exceptions import MaterialNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.material import Material
from ledger_kernel.selectors.stock_selector import ALL_WAREHOUSES, StockSelector
from ledger_kernel.services.base import BaseService

logger = get_logger("services.stock_aggregator")


class StockAggregatorService(BaseService):
    """Refreshes Material caches from the movement ledger."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._stock = StockSelector(session)

    def current_stock(self, material_id: UUID, warehouse_id=ALL_WAREHOUSES) -> Decimal:
        """Ledger-derived stock; see StockSelector.current_stock."""
        return self._stock.current_stock(material_id, warehouse_id)

    def refresh_material(self, material_id: UUID) -> MaterialAggregate:
        material = self.session.get(Material, material_id)
        if material is None:
            raise MaterialNotFoundError(material_id)

        current_stock = self._stock.current_stock(material_id)
        latest = self._stock.latest_purchase(material_id)
        if latest is None:
            average_cost = Decimal("0")
            last_purchase_price = Decimal("0")
        else:
            average_cost = latest.unit_cost
            last_purchase_price = (
                latest.source_unit_price
                if latest.source_unit_price is not None
                else latest.unit_cost
            )

        changed = (
            material.current_stock != current_stock
            or material.average_cost != average_cost
            or material.last_purchase_price != last_purchase_price
        )
        material.current_stock = current_stock
        material.average_cost = average_cost
        material.last_purchase_price = last_purchase_price
        self.session.flush()

        logger.info(
            "material_aggregate_refreshed",
            extra={
                "material_id": str(material_id),
                "current_stock": str(current_stock),
                "average_cost": str(average_cost),
                "last_purchase_price": str(last_purchase_price),
                "changed": changed,
            },
        )
        return MaterialAggregate(
            material_id=material_id,
            current_stock=current_stock,
            average_cost=average_cost,
            last_purchase_price=last_purchase_price,
        )

    def refresh_materials(self, material_ids: Iterable[UUID]) -> list[MaterialAggregate]:
        return [self.refresh_material(m) for m in sorted(set(material_ids), key=str)]

