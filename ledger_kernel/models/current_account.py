"""
Module: ledger_kernel.models.current_account
Responsibility: ORM persistence for current (supplier/customer) accounts and
    the account balance ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Ordering key is (transaction_date, sequence).
    - For each account, in ordering-key order:
          balance_before[0]   == opening_balance
          balance_after[i]    == balance_before[i] + signed(amount[i])
          balance_before[i+1] == balance_after[i]
      where DEBT is +amount and CREDIT is -amount.
    - current_balance == balance_after of the last transaction, or
      opening_balance when the chain is empty.
    - amount is an unsigned magnitude (ck_account_txn_amount_non_negative).

Failure modes:
    - IntegrityError on duplicate code/counterparty_ref or negative amount.

Audit relevance:
    A positive balance is the net amount owed to the counterparty.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class CurrentAccount(TrackedBase):
    """
    Running account with a supplier or a customer.

    Guarantees:
        - counterparty_ref is unique: one account per counterparty.
        - current_balance is written only by AccountLedgerService.
    """

    __tablename__ = "current_accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_current_account_code"),
        UniqueConstraint("counterparty_ref", name="uq_current_account_counterparty"),
        Index("idx_current_account_kind", "kind"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # SUPPLIER or CUSTOMER
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    # External id of the supplier/customer record
    counterparty_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    opening_balance: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    # Cached projection of the transaction chain
    current_balance: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    def __repr__(self) -> str:
        return f"<CurrentAccount {self.code}: balance={self.current_balance}>"


class CurrentAccountTransaction(TrackedBase):
    """
    One entry of the account balance ledger.

    Contract:
        amount is unsigned; transaction_type decides the sign.  Unlike stock
        movements, amount, type and date may be edited in place through
        AccountLedgerService.update.
    """

    __tablename__ = "current_account_transactions"

    __table_args__ = (
        UniqueConstraint("sequence", name="uq_account_txn_sequence"),
        CheckConstraint("amount >= 0", name="ck_account_txn_amount_non_negative"),
        Index(
            "idx_account_txn_order",
            "current_account_id",
            "transaction_date",
            "sequence",
        ),
        Index("idx_account_txn_source", "source_reference"),
    )

    current_account_id: Mapped[UUID] = mapped_column(
        ForeignKey("current_accounts.id"),
        nullable=False,
    )

    # DEBT or CREDIT
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    balance_before: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    balance_after: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    transaction_date: Mapped[datetime] = mapped_column(nullable=False)

    sequence: Mapped[int] = mapped_column(nullable=False)

    # PURCHASE, SALE, RETURN, MANUAL
    source_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="MANUAL",
    )

    source_reference: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<CurrentAccountTransaction #{self.sequence} "
            f"{self.transaction_type} {self.amount}>"
        )
