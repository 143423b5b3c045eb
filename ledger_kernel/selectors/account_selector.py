"""
Current account query selector.

Read-only access to the account balance ledger.  The balance is derived from
opening_balance plus the signed transaction amounts; the cached
CurrentAccount.current_balance is reported alongside, never trusted.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.db.types import as_utc
from ledger_kernel.domain.chain import ChainEntry, ChainViolation, find_chain_violations
from ledger_kernel.domain.dtos import (
    AccountKind,
    AccountTransactionRecord,
    SourceType,
    TransactionType,
)
from ledger_kernel.exceptions import CurrentAccountNotFoundError
from ledger_kernel.models.current_account import (
    CurrentAccount,
    CurrentAccountTransaction,
)
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AccountBalanceDTO:
    account_id: UUID
    code: str
    kind: AccountKind
    opening_balance: Decimal
    ledger_balance: Decimal
    cached_balance: Decimal

    @property
    def is_consistent(self) -> bool:
        return self.ledger_balance == self.cached_balance


@dataclass(frozen=True)
class AccountStatement:
    """Transactions of one account in a date window with bracketing balances."""

    account_id: UUID
    code: str
    name: str
    date_from: datetime | None
    date_to: datetime | None
    opening_balance: Decimal
    closing_balance: Decimal
    total_debt: Decimal
    total_credit: Decimal
    transactions: tuple[AccountTransactionRecord, ...]


def transaction_to_record(row: CurrentAccountTransaction) -> AccountTransactionRecord:
    return AccountTransactionRecord(
        id=row.id,
        current_account_id=row.current_account_id,
        transaction_type=TransactionType(row.transaction_type),
        amount=row.amount,
        balance_before=row.balance_before,
        balance_after=row.balance_after,
        transaction_date=row.transaction_date,
        sequence=row.sequence,
        source_type=SourceType(row.source_type),
        source_reference=row.source_reference,
        description=row.description,
    )


class AccountSelector(BaseSelector):
    """Read-only queries over current_account_transactions."""

    def _account(self, account_id: UUID) -> CurrentAccount:
        account = self.session.get(CurrentAccount, account_id)
        if account is None:
            raise CurrentAccountNotFoundError(account_id)
        return account

    def transactions(
        self,
        account_id: UUID,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[AccountTransactionRecord]:
        stmt = select(CurrentAccountTransaction).where(
            CurrentAccountTransaction.current_account_id == account_id
        )
        if date_from is not None:
            stmt = stmt.where(CurrentAccountTransaction.transaction_date >= as_utc(date_from))
        if date_to is not None:
            stmt = stmt.where(CurrentAccountTransaction.transaction_date <= as_utc(date_to))
        stmt = stmt.order_by(
            CurrentAccountTransaction.transaction_date,
            CurrentAccountTransaction.sequence,
        )
        return [transaction_to_record(row) for row in self.session.scalars(stmt)]

    def balance(self, account_id: UUID) -> AccountBalanceDTO:
        account = self._account(account_id)
        ledger = account.opening_balance + sum(
            (t.signed_amount for t in self.transactions(account_id)), Decimal("0")
        )
        return AccountBalanceDTO(
            account_id=account.id,
            code=account.code,
            kind=AccountKind(account.kind),
            opening_balance=account.opening_balance,
            ledger_balance=ledger,
            cached_balance=account.current_balance,
        )

    def statement(
        self,
        account_id: UUID,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> AccountStatement:
        account = self._account(account_id)
        opening = account.opening_balance
        if date_from is not None:
            earlier = self.session.scalars(
                select(CurrentAccountTransaction).where(
                    CurrentAccountTransaction.current_account_id == account_id,
                    CurrentAccountTransaction.transaction_date < as_utc(date_from),
                )
            )
            opening += sum(
                (TransactionType(t.transaction_type).signed(t.amount) for t in earlier),
                Decimal("0"),
            )

        rows = self.transactions(account_id, date_from, date_to)
        debt = sum(
            (t.amount for t in rows if t.transaction_type is TransactionType.DEBT),
            Decimal("0"),
        )
        credit = sum(
            (t.amount for t in rows if t.transaction_type is TransactionType.CREDIT),
            Decimal("0"),
        )
        return AccountStatement(
            account_id=account.id,
            code=account.code,
            name=account.name,
            date_from=date_from,
            date_to=date_to,
            opening_balance=opening,
            closing_balance=opening + debt - credit,
            total_debt=debt,
            total_credit=credit,
            transactions=tuple(rows),
        )

    def verify_chain(self, account_id: UUID) -> list[ChainViolation]:
        account = self._account(account_id)
        entries = [
            ChainEntry(
                entry_id=t.id,
                delta=t.signed_amount,
                before=t.balance_before,
                after=t.balance_after,
            )
            for t in self.transactions(account_id)
        ]
        return find_chain_violations(account.opening_balance, entries)
