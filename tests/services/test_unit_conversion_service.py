"""UnitConversionService over the seeded units table."""

from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import (
    IncompatibleUnitsError,
    MaterialNotFoundError,
    UnitNotFoundError,
)

D = Decimal


class TestToConsumptionUnit:
    def test_purchase_unit_is_default(self, unit_conversion, seed):
        result = unit_conversion.to_consumption_unit(seed.material("SUGAR"), D("2"), D("40"))

        assert result.quantity == D("2000")
        assert result.unit_cost == D("0.04")

    def test_explicit_unit(self, unit_conversion, seed):
        result = unit_conversion.to_consumption_unit(
            seed.material("SUGAR"), D("500"), D("0.05"), seed.unit("gr")
        )
        assert result.quantity == D("500")
        assert result.unit_cost == D("0.05")

    def test_case_to_pieces(self, unit_conversion, seed):
        result = unit_conversion.to_consumption_unit(seed.material("EGG"), D("3"), D("150"))

        assert result.quantity == D("90")
        assert result.unit_cost == D("5")

    def test_same_unit_is_identity(self, unit_conversion, seed):
        result = unit_conversion.to_consumption_unit(seed.material("FLOUR"), D("10"), D("180"))
        assert (result.quantity, result.unit_cost) == (D("10"), D("180"))

    def test_incompatible(self, unit_conversion, seed):
        with pytest.raises(IncompatibleUnitsError):
            unit_conversion.to_consumption_unit(seed.material("BROKEN"), D("1"), D("1"))

    def test_unknown_material(self, unit_conversion, seed):
        with pytest.raises(MaterialNotFoundError):
            unit_conversion.to_consumption_unit(uuid4(), D("1"), D("1"))

    def test_unknown_unit(self, unit_conversion, seed):
        with pytest.raises(UnitNotFoundError):
            unit_conversion.to_consumption_unit(seed.material("FLOUR"), D("1"), D("1"), uuid4())


def test_convert_between_siblings(unit_conversion, seed):
    result = unit_conversion.convert(D("1500"), D("0.002"), seed.unit("ml"), seed.unit("lt"))
    assert result.quantity == D("1.5")
    assert result.unit_cost == D("2")
