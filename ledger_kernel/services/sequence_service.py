"""
SequenceService -- monotonic ordering values for ledger entries.

Responsibility:
    Provides strictly increasing insertion sequences for stock movements
    and account transactions.  The sequence is the explicit tiebreaker of
    the ledger ordering key (date, sequence).

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by MovementLedgerService and AccountLedgerService.

Invariants enforced:
    - Sequence monotonicity.  The SQL aggregate-max-plus-one pattern is
      never used.
    - The two ledger sequences come from database sequences where the
      dialect has them.  ``nextval`` takes no row lock, so writers of
      disjoint ledger keys never serialize on the allocator.  Values used by
      a rolled-back transaction are skipped, never reused.
    - Any other name, and every name on dialects without sequences
      (SQLite, whose single writer already serializes transactions), uses a
      locked counter row.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.ledger_control import (
    ACCOUNT_TRANSACTION_SEQUENCE,
    STOCK_MOVEMENT_SEQUENCE,
    SequenceCounter,
)

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating sequence numbers.

    Guarantees:
        - Strictly monotonic values per sequence name.
        - Counter rows are read ``SELECT ... FOR UPDATE``, which serializes
          concurrent allocations for the same counter.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    STOCK_MOVEMENT = "stock_movement"
    ACCOUNT_TRANSACTION = "account_transaction"

    _DATABASE_SEQUENCES = {
        STOCK_MOVEMENT: STOCK_MOVEMENT_SEQUENCE,
        ACCOUNT_TRANSACTION: ACCOUNT_TRANSACTION_SEQUENCE,
    }

    def __init__(self, session: Session):
        self._session = session

    def uses_database_sequence(self, sequence_name: str) -> bool:
        return (
            sequence_name in self._DATABASE_SEQUENCES
            and self._session.get_bind().dialect.supports_sequences
        )

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Postconditions:
            - Returns an integer > 0, strictly greater than any value
              previously returned for this name.
            - A counter row stays locked until the transaction completes.
        """
        if self.uses_database_sequence(sequence_name):
            sequence = self._DATABASE_SEQUENCES[sequence_name]
            value = self._session.execute(select(sequence.next_value())).scalar_one()
            logger.debug(
                "sequence_allocated",
                extra={"sequence_name": sequence_name, "value": value},
            )
            return value

        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use.  A savepoint keeps the caller's work intact if
            # another transaction creates the row first.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a counter-backed sequence, or None."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None
