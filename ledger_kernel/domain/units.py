"""
Unit graph -- base-unit + factor conversion.

Responsibility:
    Convert a (quantity, unit cost) pair between two units that share a base
    unit, preserving total cost.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The graph is built
    from Unit rows by UnitConversionService and is read-only afterwards.

Invariants enforced:
    - quantity' = quantity * factor(from) / factor(to)
    - unit_cost' = unit_cost * factor(to) / factor(from)
    - quantity' * unit_cost' == quantity * unit_cost up to the rounding
      policy in ledger_kernel.domain.rounding.
    - Every factor is strictly positive and the base-unit relation is
      acyclic; violations raise InvalidUnitGraphError at construction.

Failure modes:
    - UnitNotFoundError for an id the graph does not contain.
    - IncompatibleUnitsError when the units resolve to different bases.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from ledger_kernel.domain.rounding import round_quantity
from ledger_kernel.exceptions import (
    IncompatibleUnitsError,
    InvalidUnitGraphError,
    UnitNotFoundError,
)


@dataclass(frozen=True)
class UnitDefinition:
    unit_id: UUID
    code: str
    base_unit_id: UUID | None
    conversion_factor: Decimal


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of a conversion; ``factor`` is what the quantity was multiplied by."""

    quantity: Decimal
    unit_cost: Decimal
    from_unit_id: UUID
    to_unit_id: UUID
    factor: Decimal

    @property
    def total_cost(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass(frozen=True)
class _Resolved:
    base_id: UUID
    factor_to_base: Decimal


class UnitGraph:
    """
    Immutable view over unit definitions.

    Contract:
        Built once from the full set of definitions.  Each unit resolves to
        exactly one base unit and a cumulative factor to it.

    Guarantees:
        - Construction fails fast on cycles, dangling base references or
          non-positive factors.
        - Identity conversion returns the input unchanged (no rounding).
    """

    def __init__(self, definitions: Iterable[UnitDefinition]):
        self._units: dict[UUID, UnitDefinition] = {d.unit_id: d for d in definitions}
        self._resolved: dict[UUID, _Resolved] = {}
        for unit_id in self._units:
            self._resolved[unit_id] = self._walk(unit_id)

    def _walk(self, unit_id: UUID) -> _Resolved:
        factor = Decimal("1")
        seen: set[UUID] = set()
        current = self._units[unit_id]
        while True:
            if current.conversion_factor <= 0:
                raise InvalidUnitGraphError(
                    current.unit_id, "conversion factor must be positive"
                )
            if current.unit_id in seen:
                raise InvalidUnitGraphError(unit_id, "base unit cycle")
            seen.add(current.unit_id)
            if current.base_unit_id is None:
                return _Resolved(base_id=current.unit_id, factor_to_base=factor)
            factor *= current.conversion_factor
            parent = self._units.get(current.base_unit_id)
            if parent is None:
                raise InvalidUnitGraphError(
                    current.unit_id,
                    f"base unit {current.base_unit_id} is not defined",
                )
            current = parent

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units

    def definition(self, unit_id: UUID) -> UnitDefinition:
        try:
            return self._units[unit_id]
        except KeyError:
            raise UnitNotFoundError(unit_id) from None

    def resolve_base(self, unit_id: UUID) -> UUID:
        """Return the id of the base unit ``unit_id`` reduces to."""
        return self._resolve(unit_id).base_id

    def _resolve(self, unit_id: UUID) -> _Resolved:
        try:
            return self._resolved[unit_id]
        except KeyError:
            raise UnitNotFoundError(unit_id) from None

    def factor_between(self, from_unit: UUID, to_unit: UUID) -> Decimal:
        """
        Multiplier taking a quantity in ``from_unit`` to ``to_unit``.

        Raises:
            IncompatibleUnitsError: If the units do not share a base.
        """
        source = self._resolve(from_unit)
        target = self._resolve(to_unit)
        if source.base_id != target.base_id:
            raise IncompatibleUnitsError(
                self._units[from_unit].code,
                self._units[to_unit].code,
                self._units[source.base_id].code,
                self._units[target.base_id].code,
            )
        return source.factor_to_base / target.factor_to_base

    def convert(
        self,
        quantity: Decimal,
        unit_cost: Decimal,
        from_unit: UUID,
        to_unit: UUID,
    ) -> ConversionResult:
        """Convert quantity and unit cost; the cost moves by the reciprocal factor."""
        if from_unit == to_unit:
            self._resolve(from_unit)
            return ConversionResult(
                quantity=quantity,
                unit_cost=unit_cost,
                from_unit_id=from_unit,
                to_unit_id=to_unit,
                factor=Decimal("1"),
            )
        factor = self.factor_between(from_unit, to_unit)
        return ConversionResult(
            quantity=round_quantity(quantity * factor),
            unit_cost=round_quantity(unit_cost / factor),
            from_unit_id=from_unit,
            to_unit_id=to_unit,
            factor=factor,
        )
