"""
Module: ledger_kernel.models.ledger_control
Responsibility: Control objects for ledger writers: the ordering sequences
    (database sequences where the dialect has them, counter rows otherwise)
    and per-key ledger locks.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - SequenceCounter.current_value only increases, under row lock.
    - The database sequences never take a row lock, so writers of different
      ledger keys never wait on each other for an ordering value.
    - LedgerLock.version only increases; every completed mutation of a
      ledger key bumps it exactly once.

Failure modes:
    - IntegrityError when two transactions create the same row at once
      (handled by the services with a savepoint retry).
"""

from sqlalchemy import BigInteger, Sequence, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    # "stock_movement", "account_transaction"
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class LedgerLock(Base):
    """
    One row per ledger key, locked FOR UPDATE while the key is mutated.

    name is "stock:<material>:<warehouse|->" or "account:<account>".
    """

    __tablename__ = "ledger_locks"

    name: Mapped[str] = mapped_column(
        String(120),
        nullable=False,
        unique=True,
    )

    version: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<LedgerLock {self.name} v{self.version}>"


# Created with the tables on dialects that support sequences (PostgreSQL).
STOCK_MOVEMENT_SEQUENCE = Sequence("stock_movement_seq", metadata=Base.metadata)
ACCOUNT_TRANSACTION_SEQUENCE = Sequence("account_transaction_seq", metadata=Base.metadata)
