"""
Unit graph conversion tests.

The graph is pure: these tests build UnitDefinitions directly, no database.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.units import UnitDefinition, UnitGraph
from ledger_kernel.exceptions import (
    IncompatibleUnitsError,
    InvalidUnitGraphError,
    UnitNotFoundError,
)

KG, GR, MG, LT, ML, KOLI, ADET = (uuid4() for _ in range(7))


@pytest.fixture
def graph() -> UnitGraph:
    return UnitGraph(
        [
            UnitDefinition(KG, "kg", None, Decimal("1")),
            UnitDefinition(GR, "gr", KG, Decimal("0.001")),
            # two hops: mg -> gr -> kg
            UnitDefinition(MG, "mg", GR, Decimal("0.001")),
            UnitDefinition(LT, "lt", None, Decimal("1")),
            UnitDefinition(ML, "ml", LT, Decimal("0.001")),
            UnitDefinition(ADET, "adet", None, Decimal("1")),
            UnitDefinition(KOLI, "koli", ADET, Decimal("30")),
        ]
    )


class TestConvert:
    def test_kg_to_gr_scales_quantity_up_and_cost_down(self, graph):
        result = graph.convert(Decimal("2"), Decimal("40"), KG, GR)

        assert result.quantity == Decimal("2000")
        assert result.unit_cost == Decimal("0.04")
        assert result.factor == Decimal("1000")

    def test_case_to_pieces(self, graph):
        result = graph.convert(Decimal("3"), Decimal("150"), KOLI, ADET)

        assert result.quantity == Decimal("90")
        assert result.unit_cost == Decimal("5")

    def test_total_cost_preserved(self, graph):
        result = graph.convert(Decimal("2.5"), Decimal("36.80"), KG, GR)

        assert result.total_cost == Decimal("2.5") * Decimal("36.80")

    def test_identity_returns_input_unchanged(self, graph):
        result = graph.convert(Decimal("1.23456789012"), Decimal("7"), KG, KG)

        assert result.quantity == Decimal("1.23456789012")
        assert result.unit_cost == Decimal("7")
        assert result.factor == Decimal("1")

    def test_multi_hop_factors_multiply(self, graph):
        assert graph.factor_between(KG, MG) == Decimal("1000000")
        assert graph.resolve_base(MG) == KG

    def test_reverse_direction(self, graph):
        result = graph.convert(Decimal("500"), Decimal("0.02"), GR, KG)

        assert result.quantity == Decimal("0.5")
        assert result.unit_cost == Decimal("20")

    def test_results_rounded_to_nine_places(self, graph):
        result = graph.convert(Decimal("1"), Decimal("1"), KOLI, ADET)
        inverse = graph.convert(Decimal("1"), Decimal("1"), ADET, KOLI)

        assert result.quantity == Decimal("30")
        assert inverse.quantity == Decimal("0.033333333")
        assert inverse.unit_cost == Decimal("30")


class TestIncompatibleUnits:
    def test_different_bases_rejected(self, graph):
        with pytest.raises(IncompatibleUnitsError) as exc_info:
            graph.convert(Decimal("1"), Decimal("1"), KG, LT)

        assert exc_info.value.code == "INCOMPATIBLE_UNITS"
        assert exc_info.value.from_unit == "kg"
        assert exc_info.value.to_base == "lt"

    def test_unknown_unit(self, graph):
        with pytest.raises(UnitNotFoundError):
            graph.convert(Decimal("1"), Decimal("1"), uuid4(), KG)

    def test_identity_on_unknown_unit_still_rejected(self, graph):
        missing = uuid4()
        with pytest.raises(UnitNotFoundError):
            graph.convert(Decimal("1"), Decimal("1"), missing, missing)


class TestGraphValidation:
    def test_cycle_rejected(self):
        a, b = uuid4(), uuid4()
        with pytest.raises(InvalidUnitGraphError, match="cycle"):
            UnitGraph(
                [
                    UnitDefinition(a, "a", b, Decimal("2")),
                    UnitDefinition(b, "b", a, Decimal("0.5")),
                ]
            )

    def test_non_positive_factor_rejected(self):
        base, bad = uuid4(), uuid4()
        with pytest.raises(InvalidUnitGraphError, match="positive"):
            UnitGraph(
                [
                    UnitDefinition(base, "kg", None, Decimal("1")),
                    UnitDefinition(bad, "bad", base, Decimal("0")),
                ]
            )

    def test_dangling_base_rejected(self):
        with pytest.raises(InvalidUnitGraphError, match="not defined"):
            UnitGraph([UnitDefinition(uuid4(), "orphan", uuid4(), Decimal("2"))])

    def test_membership(self, graph):
        assert KG in graph
        assert uuid4() not in graph
        assert graph.definition(GR).code == "gr"
