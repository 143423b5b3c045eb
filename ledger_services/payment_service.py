"""
PaymentService -- payments against current accounts.

Responsibility:
    Applies a CREATE / EDIT / DELETE of a payment to the account ledger.
    A COMPLETED payment is one CREDIT transaction sourced PAYMENT and
    referenced by the payment id; a PENDING payment posts nothing.

Architecture position:
    Services layer, beside RecalculationOrchestrator.  Owns the transaction
    boundary and reads configuration.

Invariants enforced:
    - The payment's document key and every account key it touches (the
      target account and the account of the existing posting) are locked
      in sorted order before the first write, and the posting is read
      again once they are held.
    - A backdated posting re-folds every later transaction of the account
      before commit.
    - A completed payment never goes back to PENDING while it is posted.
    - A payment id already used by an invoice is rejected.

Failure modes:
    Same taxonomy as RecalculationOrchestrator: expected failures come back
    as a non-APPLIED AggregateUpdateResult after rollback, conflicts are
    retried up to ``locking.max_conflict_retries`` times.
"""

from __future__ import annotations

import time
from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

from sqlalchemy.orm import Session

from ledger_config import LedgerConfig, get_active_config
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AccountTransactionRecord,
    AggregateUpdateResult,
    MutationKind,
    MutationStatus,
    PaymentMutation,
    PaymentStatus,
    RecomputeResult,
    SourceType,
    TransactionType,
)
from ledger_kernel.domain.keys import AccountLedgerKey, DocumentKey, LedgerKey
from ledger_kernel.domain.rounding import round_money
from ledger_kernel.exceptions import (
    ConcurrentMutationConflictError,
    DocumentAlreadyAppliedError,
    InvalidDocumentError,
    LedgerInputError,
    LedgerKernelError,
    UnknownEntityError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.services.account_ledger import AccountLedgerService
from ledger_kernel.services.ledger_lock_service import KeyLockRegistry, LedgerLockService
from ledger_kernel.services.movement_ledger import MovementLedgerService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.payment")


class PaymentService:
    """
    Posts payments to current accounts.

    Usage:
        payments = PaymentService(session)
        result = payments.apply_payment_mutation(
            PaymentMutation(
                payment_id="PAY-17",
                kind=MutationKind.CREATE,
                current_account_id=account_id,
                payment_date=paid_at,
                amount=Decimal("250.00"),
            )
        )
        result.account_balance  # balance after the payment
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
        lock_registry: KeyLockRegistry | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._lock_registry = lock_registry
        self._auto_commit = auto_commit

        sequences = SequenceService(session)
        self._movements = MovementLedgerService(session, self._clock, sequences)
        self._accounts = AccountLedgerService(
            session,
            self._clock,
            sequences,
            money_places=self._config.rounding.money_places,
        )

    def apply_payment_mutation(self, mutation: PaymentMutation) -> AggregateUpdateResult:
        """Apply one payment mutation.  Check ``is_success`` on the result."""
        with LogContext.bind(
            correlation_id=str(uuid4()),
            document_id=mutation.payment_id,
            actor_id=mutation.actor_id,
        ):
            logger.info(
                "payment_mutation_started",
                extra={"kind": mutation.kind, "status": mutation.status},
            )
            t0 = time.monotonic()
            max_attempts = 1 + self._config.locking.max_conflict_retries
            attempts = 0
            try:
                while True:
                    attempts += 1
                    try:
                        result = self._do_apply(mutation, attempts)
                        break
                    except ConcurrentMutationConflictError as exc:
                        self._session.rollback()
                        if attempts >= max_attempts:
                            result = self._rejected(
                                mutation, MutationStatus.CONFLICT, exc, attempts
                            )
                            break
                        logger.warning(
                            "payment_mutation_conflict_retry",
                            extra={"attempt": attempts, "ledger_key": exc.ledger_key},
                        )
                    except UnknownEntityError as exc:
                        self._session.rollback()
                        result = self._rejected(
                            mutation, MutationStatus.REJECTED_UNKNOWN_ENTITY, exc, attempts
                        )
                        break
                    except LedgerInputError as exc:
                        self._session.rollback()
                        result = self._rejected(
                            mutation, MutationStatus.REJECTED_INVALID, exc, attempts
                        )
                        break
            except Exception:
                self._session.rollback()
                logger.error(
                    "payment_mutation_failed",
                    extra={"kind": mutation.kind, "attempts": attempts},
                    exc_info=True,
                )
                raise

            result = replace(result, duration_ms=round((time.monotonic() - t0) * 1000, 2))
            if result.is_success:
                logger.info(
                    "payment_mutation_completed",
                    extra={
                        "posted": result.account_transaction is not None,
                        "retracted": result.retracted_transaction,
                        "account_balance": result.account_balance,
                        "attempts": attempts,
                        "duration_ms": result.duration_ms,
                    },
                )
            else:
                logger.warning(
                    "payment_mutation_rejected",
                    extra={
                        "status": result.status,
                        "error_code": result.error_code,
                        "reason": result.message,
                        "attempts": attempts,
                    },
                )
            return result

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _do_apply(self, mutation: PaymentMutation, attempt: int) -> AggregateUpdateResult:
        keys: set[LedgerKey] = {DocumentKey(mutation.payment_id)}
        existing = self._posting(mutation)
        if existing is not None:
            keys.add(existing.key)
        if mutation.current_account_id is not None and mutation.kind is not MutationKind.DELETE:
            # Unknown accounts are rejected before any lock is taken.
            self._accounts.get_account(mutation.current_account_id)
            keys.add(AccountLedgerKey(mutation.current_account_id))

        locks = LedgerLockService(
            self._session,
            timeout_seconds=self._config.locking.lock_timeout_seconds,
            registry=self._lock_registry,
        )
        with locks.hold(keys):
            try:
                result = self._write(mutation, locks, attempt)
                locks.bump_versions()
                if self._auto_commit:
                    self._session.commit()
            except BaseException:
                self._session.rollback()
                raise
        return result

    def _write(
        self, mutation: PaymentMutation, locks: LedgerLockService, attempt: int
    ) -> AggregateUpdateResult:
        existing = self._posting(mutation)
        if existing is not None and existing.key.lock_name not in locks.held:
            raise ConcurrentMutationConflictError(
                existing.key.lock_name, "payment changed after planning"
            )

        recomputes: list[RecomputeResult] = []
        transaction = None
        retracted = False

        if mutation.kind is MutationKind.CREATE and existing is not None:
            raise DocumentAlreadyAppliedError(mutation.payment_id, 1)

        if mutation.kind is MutationKind.DELETE:
            if existing is not None:
                recomputes.append(self._accounts.delete(existing.id))
                retracted = True
        elif mutation.status is PaymentStatus.PENDING:
            if existing is not None:
                raise InvalidDocumentError(
                    mutation.payment_id, "a completed payment cannot go back to PENDING"
                )
        elif existing is not None and existing.current_account_id == mutation.current_account_id:
            transaction = self._accounts.update(
                existing.id,
                self._amount(mutation),
                transaction_type=TransactionType.CREDIT,
                transaction_date=mutation.payment_date,
            )
        else:
            if existing is not None:
                recomputes.append(self._accounts.delete(existing.id))
                retracted = True
            transaction = self._accounts.insert(
                mutation.current_account_id,
                TransactionType.CREDIT,
                self._amount(mutation),
                mutation.payment_date,
                source_type=SourceType.PAYMENT,
                source_reference=mutation.payment_id,
                description=mutation.description,
            )

        balance_account = mutation.current_account_id
        if balance_account is None and existing is not None:
            balance_account = existing.current_account_id
        account_balance = None
        if balance_account is not None:
            account_balance = self._accounts.get_account(balance_account).current_balance

        return AggregateUpdateResult(
            status=MutationStatus.APPLIED,
            document_id=mutation.payment_id,
            kind=mutation.kind,
            account_transaction=transaction,
            account_balance=account_balance,
            retracted_transaction=retracted,
            recomputes=tuple(recomputes),
            attempts=attempt,
        )

    def _posting(self, mutation: PaymentMutation) -> AccountTransactionRecord | None:
        """The payment's current posting; any other use of the id is an error."""
        if self._movements.find_by_source(mutation.payment_id):
            raise InvalidDocumentError(
                mutation.payment_id, "reference already used by a stock document"
            )
        existing = self._accounts.find_for_source(mutation.payment_id)
        if existing is not None and existing.source_type is not SourceType.PAYMENT:
            raise InvalidDocumentError(
                mutation.payment_id,
                f"reference already used by a {existing.source_type.value} transaction",
            )
        return existing

    def _amount(self, mutation: PaymentMutation) -> Decimal:
        return round_money(mutation.amount, self._config.rounding.money_places)

    def _rejected(
        self,
        mutation: PaymentMutation,
        status: MutationStatus,
        exc: LedgerKernelError,
        attempts: int,
    ) -> AggregateUpdateResult:
        return AggregateUpdateResult(
            status=status,
            document_id=mutation.payment_id,
            kind=mutation.kind,
            message=str(exc),
            error_code=exc.code,
            attempts=attempts,
        )
