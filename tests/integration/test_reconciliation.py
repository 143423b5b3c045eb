"""ReconciliationService: rebuild caches and snapshots from the ledgers."""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from ledger_kernel.exceptions import (
    ChainIntegrityError,
    CurrentAccountNotFoundError,
    MaterialNotFoundError,
)
from ledger_kernel.models.current_account import CurrentAccount, CurrentAccountTransaction
from ledger_kernel.models.material import Material
from ledger_kernel.models.stock_movement import StockMovement

D = Decimal


@pytest.fixture
def applied(orchestrator, purchase):
    orchestrator.apply_document_mutation(purchase("INV-1", [("FLOUR", "10", "180")], day=1))
    orchestrator.apply_document_mutation(purchase("INV-2", [("FLOUR", "5", "200")], day=5))
    orchestrator.apply_document_mutation(purchase("INV-3", [("MILK", "2", "20")], day=7))


def _corrupt_flour(session, seed):
    rows = session.scalars(
        select(StockMovement)
        .where(StockMovement.material_id == seed.material("FLOUR"))
        .order_by(StockMovement.sequence)
    ).all()
    rows[1].stock_before = D("0")
    rows[1].stock_after = D("5")
    flour = session.get(Material, seed.material("FLOUR"))
    flour.current_stock = D("99")
    flour.average_cost = D("1")
    session.commit()


class TestRebuildStock:
    def test_consistent_ledger_is_untouched(self, reconciliation, applied):
        summary = reconciliation.rebuild_stock()

        assert summary.was_consistent
        assert summary.materials_checked == 5
        assert summary.chains_recomputed == 2

    def test_repairs_snapshots_and_caches(self, reconciliation, applied, session, seed):
        _corrupt_flour(session, seed)

        summary = reconciliation.rebuild_stock(seed.material("FLOUR"))

        assert summary.rows_updated == 1
        assert summary.materials_corrected == (seed.material("FLOUR"),)
        assert not summary.was_consistent
        flour = session.get(Material, seed.material("FLOUR"))
        assert flour.current_stock == D("15")
        assert flour.average_cost == D("200")
        assert reconciliation.verify_ledgers() > 0

    def test_second_rebuild_is_a_noop(self, reconciliation, applied, session, seed):
        _corrupt_flour(session, seed)
        reconciliation.rebuild_stock()

        assert reconciliation.rebuild_stock().was_consistent

    def test_unknown_material(self, reconciliation, seed):
        with pytest.raises(MaterialNotFoundError):
            reconciliation.rebuild_stock(uuid4())

    def test_rebuild_logged(self, reconciliation, applied, captured_logs):
        reconciliation.rebuild_stock()
        assert any(r["message"] == "stock_rebuilt" for r in captured_logs())


class TestRecalculateAccounts:
    def test_repairs_balances(self, reconciliation, applied, session):
        account = session.scalars(select(CurrentAccount)).one()
        first = session.scalars(
            select(CurrentAccountTransaction).order_by(CurrentAccountTransaction.sequence)
        ).first()
        first.balance_after = D("7")
        account.current_balance = D("0")
        session.commit()

        summary = reconciliation.recalculate_account_balances()

        assert summary.accounts_checked == 1
        assert summary.rows_updated == 1
        assert summary.accounts_corrected == (account.id,)
        assert session.get(CurrentAccount, account.id).current_balance == D("2840")

    def test_consistent_accounts(self, reconciliation, applied):
        assert reconciliation.recalculate_account_balances().was_consistent

    def test_unknown_account(self, reconciliation, seed):
        with pytest.raises(CurrentAccountNotFoundError):
            reconciliation.recalculate_account_balances(uuid4())


class TestVerifyLedgers:
    def test_clean(self, reconciliation, applied):
        # two stock chains and one account chain
        assert reconciliation.verify_ledgers() == 3

    def test_reports_broken_chain(self, reconciliation, applied, session, seed):
        _corrupt_flour(session, seed)

        with pytest.raises(ChainIntegrityError) as exc_info:
            reconciliation.verify_ledgers()

        assert exc_info.value.ledger_key.startswith(f"stock:{seed.material('FLOUR')}")
        assert exc_info.value.violations == 1
