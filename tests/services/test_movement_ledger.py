"""
MovementLedgerService tests.

Covers out-of-order insert, delete, source retraction and forward
recompute on a single (material, warehouse) chain, plus the equal-date
tiebreak and reference/sign validation.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from ledger_kernel.domain.dtos import MovementSpec, MovementType, SourceType
from ledger_kernel.domain.keys import StockLedgerKey
from ledger_kernel.exceptions import (
    InvalidMovementError,
    MaterialNotFoundError,
    StockMovementNotFoundError,
    WarehouseNotFoundError,
)
from ledger_kernel.models.stock_movement import StockMovement
from tests.support import utc

D = Decimal


@pytest.fixture
def flour_main(seed) -> StockLedgerKey:
    return StockLedgerKey(seed.material("FLOUR"), seed.warehouse("MAIN"))


def _afters(stock_selector, key):
    return [m.stock_after for m in stock_selector.movement_history(key)]


class TestBackdatedInsert:
    def test_backdate_shifts_later_snapshots(self, add_movement, stock_selector, flour_main):
        add_movement(1, "10")
        jan10 = add_movement(10, "-3")
        assert jan10.stock_before == D("10")
        assert jan10.stock_after == D("7")

        inserted = add_movement(5, "5")

        assert inserted.stock_before == D("10")
        assert inserted.stock_after == D("15")
        history = stock_selector.movement_history(flour_main)
        assert [m.stock_after for m in history] == [D("10"), D("15"), D("12")]
        assert history[2].id == jan10.id
        assert history[2].stock_before == D("15")

    def test_insert_before_everything(self, add_movement, stock_selector, flour_main):
        add_movement(10, "4")
        add_movement(20, "-1")

        first = add_movement(1, "2")

        assert first.stock_before == D("0")
        assert _afters(stock_selector, flour_main) == [D("2"), D("6"), D("5")]

    def test_chain_verified_after_each_insert(self, add_movement, stock_selector, flour_main):
        for day, qty in [(15, "8"), (3, "2"), (9, "-1"), (1, "4"), (30, "-6")]:
            add_movement(day, qty)
            assert stock_selector.verify_chain(flour_main) == []


class TestDelete:
    def test_delete_restores_original_sequence(
        self, add_movement, movement_ledger, stock_selector, flour_main
    ):
        add_movement(1, "10")
        add_movement(10, "-3")
        jan5 = add_movement(5, "5")

        result = movement_ledger.delete(jan5.id)

        assert _afters(stock_selector, flour_main) == [D("10"), D("7")]
        assert result.ledger_key == flour_main.lock_name
        assert result.entries_updated == 1
        assert result.closing == D("7")

    def test_delete_first_movement(self, add_movement, movement_ledger, stock_selector, flour_main):
        first = add_movement(1, "10")
        add_movement(2, "5")

        movement_ledger.delete(first.id)

        history = stock_selector.movement_history(flour_main)
        assert history[0].stock_before == D("0")
        assert history[0].stock_after == D("5")

    def test_delete_unknown(self, movement_ledger, seed):
        with pytest.raises(StockMovementNotFoundError):
            movement_ledger.delete(uuid4())


class TestTiebreak:
    def test_equal_dates_ordered_by_insertion(self, add_movement, stock_selector, flour_main):
        a = add_movement(5, "10")
        b = add_movement(5, "-4")
        c = add_movement(5, "1")

        history = stock_selector.movement_history(flour_main)

        assert [m.id for m in history] == [a.id, b.id, c.id]
        assert [m.stock_after for m in history] == [D("10"), D("6"), D("7")]
        assert a.sequence < b.sequence < c.sequence

    def test_same_day_insert_goes_after_existing_same_day(
        self, add_movement, stock_selector, flour_main
    ):
        add_movement(5, "10")
        add_movement(6, "-2")

        late = add_movement(5, "3")

        assert late.stock_before == D("10")
        assert _afters(stock_selector, flour_main) == [D("10"), D("13"), D("11")]


class TestKeysAreIndependent:
    def test_warehouses_do_not_share_a_chain(self, add_movement, stock_selector, seed):
        add_movement(1, "10", warehouse="MAIN")
        cold = add_movement(5, "3", warehouse="COLD")

        assert cold.stock_before == D("0")
        assert stock_selector.current_stock(seed.material("FLOUR"), seed.warehouse("MAIN")) == D("10")
        assert stock_selector.current_stock(seed.material("FLOUR"), seed.warehouse("COLD")) == D("3")
        assert stock_selector.current_stock(seed.material("FLOUR")) == D("13")

    def test_untracked_movements_form_their_own_chain(self, add_movement, stock_selector, seed):
        add_movement(1, "10", warehouse="MAIN")
        untracked = add_movement(2, "4", warehouse=None)

        assert untracked.stock_before == D("0")
        material = seed.material("FLOUR")
        assert stock_selector.current_stock(material, None) == D("4")
        assert stock_selector.current_stock(material, seed.warehouse("MAIN")) == D("10")
        assert stock_selector.current_stock(material) == D("14")


class TestValidation:
    @pytest.mark.parametrize(
        "movement_type, quantity",
        [
            (MovementType.IN, "-1"),
            (MovementType.OUT, "1"),
            (MovementType.WASTE, "2"),
            (MovementType.ADJUSTMENT, "0"),
            (MovementType.TRANSFER, "0"),
        ],
    )
    def test_sign_rules(self, add_movement, movement_type, quantity):
        with pytest.raises(InvalidMovementError):
            add_movement(1, quantity, movement_type=movement_type)

    def test_adjustment_may_go_either_way(self, add_movement):
        add_movement(1, "5", movement_type=MovementType.ADJUSTMENT)
        down = add_movement(2, "-2", movement_type=MovementType.ADJUSTMENT)
        assert down.stock_after == D("3")

    def test_negative_unit_cost_rejected(self, add_movement):
        with pytest.raises(InvalidMovementError, match="unit cost"):
            add_movement(1, "5", unit_cost="-1")

    def test_unknown_material(self, movement_ledger, seed):
        with pytest.raises(MaterialNotFoundError):
            movement_ledger.insert(
                MovementSpec(uuid4(), seed.warehouse("MAIN"), utc(2024, 1, 1), MovementType.IN, D("1"))
            )

    def test_unknown_warehouse(self, movement_ledger, seed):
        with pytest.raises(WarehouseNotFoundError):
            movement_ledger.insert(
                MovementSpec(seed.material("FLOUR"), uuid4(), utc(2024, 1, 1), MovementType.IN, D("1"))
            )

    def test_nothing_written_on_rejection(self, add_movement, session):
        with pytest.raises(InvalidMovementError):
            add_movement(1, "-1", movement_type=MovementType.IN)
        assert session.scalars(select(StockMovement)).all() == []


class TestRetractSource:
    def _spec(self, seed, day, qty, warehouse="MAIN", ref="INV-1"):
        return MovementSpec(
            material_id=seed.material("FLOUR"),
            warehouse_id=seed.warehouse(warehouse),
            movement_date=utc(2024, 1, day),
            movement_type=MovementType.IN,
            quantity=D(qty),
            unit_cost=D("2"),
            source_type=SourceType.PURCHASE,
            source_reference=ref,
        )

    def test_retract_removes_all_and_recomputes_each_key_once(
        self, movement_ledger, stock_selector, add_movement, seed, flour_main
    ):
        add_movement(1, "1")
        movement_ledger.insert(self._spec(seed, 5, "10"))
        movement_ledger.insert(self._spec(seed, 3, "2"))
        movement_ledger.insert(self._spec(seed, 4, "7", warehouse="COLD"))
        add_movement(20, "-1")

        retraction = movement_ledger.retract_source("INV-1")

        assert len(retraction.removed) == 3
        assert len(retraction.recomputes) == 2
        assert _afters(stock_selector, flour_main) == [D("1"), D("0")]
        assert movement_ledger.find_by_source("INV-1") == []

    def test_retract_unknown_reference_is_noop(self, movement_ledger, seed):
        retraction = movement_ledger.retract_source("NOPE")
        assert retraction.removed == ()
        assert retraction.recomputes == ()

    def test_keys_for_source(self, movement_ledger, seed):
        movement_ledger.insert(self._spec(seed, 5, "10"))
        movement_ledger.insert(self._spec(seed, 6, "1", warehouse="COLD"))

        keys = movement_ledger.keys_for_source("INV-1")

        assert keys == {
            StockLedgerKey(seed.material("FLOUR"), seed.warehouse("MAIN")),
            StockLedgerKey(seed.material("FLOUR"), seed.warehouse("COLD")),
        }


class TestRecompute:
    def test_repairs_corrupted_snapshots(
        self, add_movement, movement_ledger, stock_selector, session, flour_main
    ):
        add_movement(1, "10")
        add_movement(2, "-3")
        add_movement(3, "4")
        row = session.scalars(
            select(StockMovement).order_by(StockMovement.sequence).offset(1).limit(1)
        ).one()
        row.stock_after = D("999")
        session.flush()
        assert stock_selector.verify_chain(flour_main) != []

        result = movement_ledger.recompute_from(flour_main, None)

        assert result.entries_examined == 3
        assert result.entries_updated == 1
        assert stock_selector.verify_chain(flour_main) == []

    def test_recompute_of_consistent_chain_writes_nothing(
        self, add_movement, movement_ledger, flour_main
    ):
        add_movement(1, "10")
        add_movement(2, "-3")

        result = movement_ledger.recompute_from(flour_main, utc(2024, 1, 1))

        assert result.entries_updated == 0
        assert result.opening == D("0")
        assert result.closing == D("7")

    def test_stock_at_date_is_strictly_before(self, add_movement, movement_ledger, flour_main):
        add_movement(1, "10")
        add_movement(5, "5")

        assert movement_ledger.calculate_stock_at_date(flour_main, utc(2024, 1, 5)) == D("10")
        assert movement_ledger.calculate_stock_at_date(flour_main, utc(2024, 1, 6)) == D("15")


class TestAudit:
    def test_recorded_at_comes_from_clock(self, add_movement, deterministic_clock):
        deterministic_clock.advance(3600)
        movement = add_movement(1, "1")
        assert movement.recorded_at == deterministic_clock.now()

    def test_insert_logged(self, add_movement, captured_logs, flour_main):
        add_movement(1, "1")

        inserted = [r for r in captured_logs() if r["message"] == "movement_inserted"]
        assert len(inserted) == 1
        assert inserted[0]["ledger_key"] == flour_main.lock_name
