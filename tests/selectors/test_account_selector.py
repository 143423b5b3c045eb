"""AccountSelector: balances and statements derived from the account ledger."""

from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import AccountKind, Counterparty, TransactionType
from ledger_kernel.exceptions import CurrentAccountNotFoundError
from ledger_kernel.models.current_account import CurrentAccount
from tests.support import utc

D = Decimal


@pytest.fixture
def account(account_ledger):
    info = account_ledger.get_or_create_account(
        Counterparty("S9", AccountKind.SUPPLIER, "Dairy Co")
    )
    account_ledger.insert(info.id, TransactionType.DEBT, D("100"), utc(2024, 1, 1))
    account_ledger.insert(info.id, TransactionType.DEBT, D("50"), utc(2024, 1, 10))
    account_ledger.insert(info.id, TransactionType.CREDIT, D("30"), utc(2024, 1, 20))
    return info


class TestBalance:
    def test_ledger_and_cache_agree(self, account_selector, account):
        balance = account_selector.balance(account.id)

        assert balance.ledger_balance == D("120")
        assert balance.cached_balance == D("120")
        assert balance.is_consistent
        assert balance.kind is AccountKind.SUPPLIER

    def test_stale_cache_detected(self, account_selector, session, account):
        session.get(CurrentAccount, account.id).current_balance = D("1")
        session.flush()

        assert not account_selector.balance(account.id).is_consistent

    def test_unknown_account(self, account_selector):
        with pytest.raises(CurrentAccountNotFoundError):
            account_selector.balance(uuid4())


class TestStatement:
    def test_window_brackets_balances(self, account_selector, account):
        statement = account_selector.statement(account.id, utc(2024, 1, 5), utc(2024, 1, 31))

        assert statement.opening_balance == D("100")
        assert statement.total_debt == D("50")
        assert statement.total_credit == D("30")
        assert statement.closing_balance == D("120")
        assert len(statement.transactions) == 2
        assert statement.name == "Dairy Co"

    def test_unbounded_statement(self, account_selector, account):
        statement = account_selector.statement(account.id)

        assert statement.opening_balance == D("0")
        assert statement.closing_balance == D("120")
        assert len(statement.transactions) == 3

    def test_closing_matches_last_snapshot(self, account_selector, account):
        statement = account_selector.statement(account.id, date_to=utc(2024, 1, 10))
        assert statement.closing_balance == statement.transactions[-1].balance_after


def test_verify_chain_clean(account_selector, account):
    assert account_selector.verify_chain(account.id) == []
