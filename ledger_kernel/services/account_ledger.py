"""
AccountLedgerService -- the current account balance ledger.

Responsibility:
    Owns every write to current_account_transactions and to
    CurrentAccount.current_balance.  Inserts, updates and deletes
    transactions at any point in time and re-derives balance_before /
    balance_after of every later transaction of the account.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes, never commits.
    Callers must hold the account's lock for the read-modify-write cycle.

Invariants enforced:
    - Ordering key is (transaction_date, sequence).
    - balance_before[0] == opening_balance; DEBT adds the amount, CREDIT
      subtracts it; balance_before[i+1] == balance_after[i].
    - current_balance == balance_after of the last transaction, or
      opening_balance for an empty chain, after every public mutating call.
    - Amounts are unsigned and rounded to money precision.

Failure modes:
    - CurrentAccountNotFoundError / AccountTransactionNotFoundError.
    - LedgerInputError for a negative amount.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.db.types import as_utc
from ledger_kernel.domain.chain import fold_chain
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import (
    AccountKind,
    AccountTransactionRecord,
    Counterparty,
    RecomputeResult,
    SourceType,
    TransactionType,
)
from ledger_kernel.domain.keys import AccountLedgerKey
from ledger_kernel.domain.rounding import MONEY_PLACES, round_money
from ledger_kernel.exceptions import (
    AccountTransactionNotFoundError,
    CurrentAccountNotFoundError,
    LedgerInputError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.current_account import (
    CurrentAccount,
    CurrentAccountTransaction,
)
from ledger_kernel.selectors.account_selector import transaction_to_record
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.account_ledger")

_ZERO = Decimal("0")

_CODE_PREFIX = {
    AccountKind.SUPPLIER: "SUP",
    AccountKind.CUSTOMER: "CUS",
}


@dataclass(frozen=True)
class CurrentAccountInfo:
    id: UUID
    code: str
    name: str
    kind: AccountKind
    counterparty_ref: str
    opening_balance: Decimal
    current_balance: Decimal
    created: bool = False


def _signed(row: CurrentAccountTransaction) -> Decimal:
    return TransactionType(row.transaction_type).signed(row.amount)


class AccountLedgerService(BaseService):
    """
    Insert / update / delete / recompute over an account's transaction chain.

    Contract:
        Unlike stock movements, a transaction's amount, type and date may be
        edited in place; ``update`` re-folds from the earlier of the old and
        new dates.

    Guarantees:
        - An update that changes nothing rewrites no snapshot.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
        money_places: int = MONEY_PLACES,
    ):
        super().__init__(session, clock)
        self._sequences = sequence_service or SequenceService(session)
        self.money_places = money_places

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def _account(self, account_id: UUID) -> CurrentAccount:
        account = self.session.get(CurrentAccount, account_id)
        if account is None:
            raise CurrentAccountNotFoundError(account_id)
        return account

    def get_account(self, account_id: UUID) -> CurrentAccountInfo:
        return self._to_info(self._account(account_id))

    def find_by_counterparty(self, counterparty_ref: str) -> CurrentAccountInfo | None:
        account = self._by_counterparty(counterparty_ref)
        return self._to_info(account) if account is not None else None

    def get_or_create_account(self, counterparty: Counterparty) -> CurrentAccountInfo:
        """
        Find the account of a counterparty, creating it with a zero opening
        balance on first use.
        """
        existing = self._by_counterparty(counterparty.counterparty_ref)
        if existing is not None:
            return self._to_info(existing)

        savepoint = self.session.begin_nested()
        try:
            account = CurrentAccount(
                code=f"{_CODE_PREFIX[counterparty.kind]}-{counterparty.counterparty_ref}"[:50],
                name=counterparty.name,
                kind=counterparty.kind.value,
                counterparty_ref=counterparty.counterparty_ref,
                opening_balance=_ZERO,
                current_balance=_ZERO,
            )
            self.session.add(account)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            account = self._by_counterparty(counterparty.counterparty_ref)
            if account is None:
                raise
            return self._to_info(account)

        logger.info(
            "current_account_created",
            extra={
                "account_id": str(account.id),
                "account_code": account.code,
                "counterparty_ref": counterparty.counterparty_ref,
                "kind": counterparty.kind.value,
            },
        )
        return self._to_info(account, created=True)

    def _by_counterparty(self, counterparty_ref: str) -> CurrentAccount | None:
        return self.session.scalars(
            select(CurrentAccount).where(CurrentAccount.counterparty_ref == counterparty_ref)
        ).first()

    def _to_info(self, account: CurrentAccount, created: bool = False) -> CurrentAccountInfo:
        return CurrentAccountInfo(
            id=account.id,
            code=account.code,
            name=account.name,
            kind=AccountKind(account.kind),
            counterparty_ref=account.counterparty_ref,
            opening_balance=account.opening_balance,
            current_balance=account.current_balance,
            created=created,
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def insert(
        self,
        account_id: UUID,
        transaction_type: TransactionType,
        amount: Decimal,
        transaction_date: datetime,
        source_type: SourceType = SourceType.MANUAL,
        source_reference: str | None = None,
        description: str | None = None,
    ) -> AccountTransactionRecord:
        account = self._account(account_id)
        transaction_type = TransactionType(transaction_type)
        amount = self._checked_amount(amount)
        transaction_date = as_utc(transaction_date)
        sequence = self._sequences.next_value(SequenceService.ACCOUNT_TRANSACTION)

        balance_before = account.opening_balance + self._signed_sum_before(
            account_id, transaction_date, sequence
        )
        row = CurrentAccountTransaction(
            current_account_id=account_id,
            transaction_type=transaction_type.value,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_before + transaction_type.signed(amount),
            transaction_date=transaction_date,
            sequence=sequence,
            source_type=SourceType(source_type).value,
            source_reference=source_reference,
            description=description,
        )
        self.session.add(row)
        self.session.flush()

        later = self._rows_after(account_id, transaction_date, sequence)
        updated, closing = self._refold(later, row.balance_after)
        account.current_balance = closing
        self.session.flush()

        logger.info(
            "account_transaction_inserted",
            extra={
                "ledger_key": AccountLedgerKey(account_id).lock_name,
                "transaction_id": str(row.id),
                "transaction_type": transaction_type.value,
                "amount": str(amount),
                "balance_before": str(row.balance_before),
                "balance_after": str(row.balance_after),
                "later_rows_updated": updated,
                "current_balance": str(closing),
            },
        )
        return transaction_to_record(row)

    def update(
        self,
        transaction_id: UUID,
        amount: Decimal,
        transaction_type: TransactionType | None = None,
        transaction_date: datetime | None = None,
    ) -> AccountTransactionRecord:
        """
        Edit a transaction in place and re-fold from the earliest affected date.
        """
        row = self._transaction(transaction_id)
        amount = self._checked_amount(amount)
        old_date = row.transaction_date
        new_date = as_utc(transaction_date) if transaction_date is not None else old_date

        row.amount = amount
        if transaction_type is not None:
            row.transaction_type = TransactionType(transaction_type).value
        row.transaction_date = new_date
        self.session.flush()

        result = self.recompute_from(row.current_account_id, min(old_date, new_date))
        logger.info(
            "account_transaction_updated",
            extra={
                "ledger_key": result.ledger_key,
                "transaction_id": str(transaction_id),
                "amount": str(amount),
                "rows_updated": result.entries_updated,
            },
        )
        return transaction_to_record(row)

    def delete(self, transaction_id: UUID) -> RecomputeResult:
        row = self._transaction(transaction_id)
        account_id = row.current_account_id
        transaction_date = row.transaction_date

        self.session.delete(row)
        self.session.flush()
        logger.info(
            "account_transaction_deleted",
            extra={
                "ledger_key": AccountLedgerKey(account_id).lock_name,
                "transaction_id": str(transaction_id),
            },
        )
        return self.recompute_from(account_id, transaction_date)

    def recompute_from(self, account_id: UUID, from_date: datetime | None) -> RecomputeResult:
        """
        Re-fold every transaction of the account dated at or after
        ``from_date`` (all of them when None) and refresh current_balance.
        """
        account = self._account(account_id)
        stmt = select(CurrentAccountTransaction).where(
            CurrentAccountTransaction.current_account_id == account_id
        )
        opening = account.opening_balance
        if from_date is not None:
            from_date = as_utc(from_date)
            opening += self.balance_delta_before(account_id, from_date)
            stmt = stmt.where(CurrentAccountTransaction.transaction_date >= from_date)
        rows = self.session.scalars(
            stmt.order_by(
                CurrentAccountTransaction.transaction_date,
                CurrentAccountTransaction.sequence,
            )
        ).all()

        updated, closing = self._refold(rows, opening)
        account.current_balance = closing
        self.session.flush()

        key = AccountLedgerKey(account_id).lock_name
        logger.debug(
            "chain_recomputed",
            extra={
                "ledger_key": key,
                "from_date": from_date,
                "rows_examined": len(rows),
                "rows_updated": updated,
                "closing": str(closing),
            },
        )
        return RecomputeResult(
            ledger_key=key,
            from_date=from_date,
            opening=opening,
            closing=closing,
            entries_examined=len(rows),
            entries_updated=updated,
        )

    def balance_delta_before(self, account_id: UUID, at: datetime) -> Decimal:
        """Signed sum of every transaction dated strictly before ``at``."""
        rows = self.session.scalars(
            select(CurrentAccountTransaction).where(
                CurrentAccountTransaction.current_account_id == account_id,
                CurrentAccountTransaction.transaction_date < as_utc(at),
            )
        )
        return sum((_signed(r) for r in rows), _ZERO)

    def find_for_source(self, source_reference: str) -> AccountTransactionRecord | None:
        row = self.session.scalars(
            select(CurrentAccountTransaction)
            .where(CurrentAccountTransaction.source_reference == source_reference)
            .order_by(CurrentAccountTransaction.sequence)
            .limit(1)
        ).first()
        return transaction_to_record(row) if row is not None else None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transaction(self, transaction_id: UUID) -> CurrentAccountTransaction:
        row = self.session.get(CurrentAccountTransaction, transaction_id)
        if row is None:
            raise AccountTransactionNotFoundError(transaction_id)
        return row

    def _checked_amount(self, amount: Decimal) -> Decimal:
        amount = round_money(amount, self.money_places)
        if amount < 0:
            raise LedgerInputError(f"Transaction amount must be non-negative, got {amount}")
        return amount

    def _signed_sum_before(self, account_id: UUID, at: datetime, sequence: int) -> Decimal:
        rows = self.session.scalars(
            select(CurrentAccountTransaction).where(
                CurrentAccountTransaction.current_account_id == account_id,
                or_(
                    CurrentAccountTransaction.transaction_date < at,
                    and_(
                        CurrentAccountTransaction.transaction_date == at,
                        CurrentAccountTransaction.sequence < sequence,
                    ),
                ),
            )
        )
        return sum((_signed(r) for r in rows), _ZERO)

    def _rows_after(
        self, account_id: UUID, at: datetime, sequence: int
    ) -> list[CurrentAccountTransaction]:
        return self.session.scalars(
            select(CurrentAccountTransaction)
            .where(
                CurrentAccountTransaction.current_account_id == account_id,
                or_(
                    CurrentAccountTransaction.transaction_date > at,
                    and_(
                        CurrentAccountTransaction.transaction_date == at,
                        CurrentAccountTransaction.sequence > sequence,
                    ),
                ),
            )
            .order_by(
                CurrentAccountTransaction.transaction_date,
                CurrentAccountTransaction.sequence,
            )
        ).all()

    def _refold(
        self, rows: list[CurrentAccountTransaction], opening: Decimal
    ) -> tuple[int, Decimal]:
        updated = 0
        closing = opening
        for row, snap in zip(rows, fold_chain(opening, [_signed(r) for r in rows])):
            if row.balance_before != snap.before or row.balance_after != snap.after:
                row.balance_before = snap.before
                row.balance_after = snap.after
                updated += 1
            closing = snap.after
        return updated, closing
