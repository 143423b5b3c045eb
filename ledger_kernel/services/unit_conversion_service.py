"""
UnitConversionService -- unit graph loaded from the units table.

Responsibility:
    Builds a UnitGraph from Unit rows and converts document lines from the
    unit they were entered in to the material's consumption unit.

Architecture position:
    Kernel > Services.  Read-only: never writes.  Called by the
    orchestrator during validation, before any ledger write.

Failure modes:
    - UnitNotFoundError for an unknown unit id.
    - MaterialNotFoundError for an unknown material id.
    - IncompatibleUnitsError when the units resolve to different bases.
    - InvalidUnitGraphError when the units table itself is malformed.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.units import ConversionResult, UnitDefinition, UnitGraph
from ledger_kernel.exceptions import MaterialNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.material import Material
from ledger_kernel.models.unit import Unit

logger = get_logger("services.unit_conversion")


class UnitConversionService:
    """
    Converts quantities and unit costs using the persisted unit graph.

    Guarantees:
        - The graph is loaded once per service instance; units are
          reference data and do not change during a mutation.
    """

    def __init__(self, session: Session):
        self.session = session
        self._graph: UnitGraph | None = None

    @property
    def graph(self) -> UnitGraph:
        if self._graph is None:
            units = self.session.scalars(select(Unit)).all()
            self._graph = UnitGraph(
                UnitDefinition(
                    unit_id=u.id,
                    code=u.code,
                    base_unit_id=u.base_unit_id,
                    conversion_factor=u.conversion_factor,
                )
                for u in units
            )
            logger.debug("unit_graph_loaded", extra={"unit_count": len(units)})
        return self._graph

    def convert(
        self,
        quantity: Decimal,
        unit_cost: Decimal,
        from_unit_id: UUID,
        to_unit_id: UUID,
    ) -> ConversionResult:
        return self.graph.convert(quantity, unit_cost, from_unit_id, to_unit_id)

    def to_consumption_unit(
        self,
        material: Material | UUID,
        quantity: Decimal,
        unit_price: Decimal,
        unit_id: UUID | None = None,
    ) -> ConversionResult:
        """
        Convert a line entered in ``unit_id`` (default: the material's
        purchase unit) into the material's consumption unit.
        """
        if not isinstance(material, Material):
            material_id = material
            material = self.session.get(Material, material_id)
            if material is None:
                raise MaterialNotFoundError(material_id)
        source_unit = unit_id if unit_id is not None else material.purchase_unit_id
        return self.convert(quantity, unit_price, source_unit, material.consumption_unit_id)
