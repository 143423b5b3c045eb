"""
RecalculationOrchestrator -- one source-document mutation, end to end.

Responsibility:
    Applies a CREATE / EDIT / DELETE of an invoice to both ledgers in one
    atomic unit of work:

        validate + convert  ->  lock keys  ->  retract  ->  write
            ->  aggregate  ->  commit  ->  propagate

Architecture position:
    Services layer.  The only component that knows the movement ledger and
    the account ledger must move in lockstep for one document.  Owns the
    transaction boundary (commit / rollback) and reads configuration.

Invariants enforced:
    - Every line is validated and converted before the first write, so an
      unknown entity or incompatible unit rejects the mutation with nothing
      written.
    - Every affected ledger key, plus the document's own key, is locked in
      sorted order before retraction starts, and stays locked until commit.
      Once the locks are held the document is read again: a CREATE of a
      document that appeared meanwhile is rejected, and an EDIT or DELETE
      whose entries moved to an unlocked key is retried from planning.
    - Retraction (including its forward recompute) completes before the
      first new entry is inserted.
    - Both ledgers and the material caches commit together or not at all.
    - Recipe-cost propagation runs after commit and can never change the
      returned status.

Failure modes:
    - Expected failures come back as an AggregateUpdateResult whose status
      is one of REJECTED_UNKNOWN_ENTITY, REJECTED_INCOMPATIBLE_UNITS,
      REJECTED_INVALID or CONFLICT.  The session is rolled back first.
    - ConcurrentMutationConflictError is retried from planning up to
      ``locking.max_conflict_retries`` times, then reported as CONFLICT.
    - Anything else is rolled back, logged and re-raised.

Audit relevance:
    Every mutation runs under a LogContext carrying correlation_id,
    document_id and actor_id, and logs document_mutation_started plus one of
    _completed / _rejected / _failed.
"""

from __future__ import annotations

import time
from concurrent.futures import Executor
from dataclasses import dataclass, replace
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from ledger_config import LedgerConfig, get_active_config
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AccountKind,
    AccountTransactionRecord,
    AggregateUpdateResult,
    DocumentLine,
    DocumentMutation,
    DocumentType,
    MovementSpec,
    MovementType,
    MutationKind,
    MutationStatus,
    RecomputeResult,
    SourceType,
    StockMovementRecord,
    TransactionType,
)
from ledger_kernel.domain.keys import (
    AccountLedgerKey,
    DocumentKey,
    LedgerKey,
    StockLedgerKey,
)
from ledger_kernel.domain.rounding import round_money, round_quantity
from ledger_kernel.exceptions import (
    ConcurrentMutationConflictError,
    CurrentAccountNotFoundError,
    DocumentAlreadyAppliedError,
    IncompatibleUnitsError,
    InvalidDocumentError,
    LedgerInputError,
    LedgerKernelError,
    MaterialNotFoundError,
    UnitError,
    UnknownEntityError,
    WarehouseNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.current_account import CurrentAccount
from ledger_kernel.models.material import Material, Warehouse
from ledger_kernel.services.account_ledger import AccountLedgerService
from ledger_kernel.services.ledger_lock_service import KeyLockRegistry, LedgerLockService
from ledger_kernel.services.movement_ledger import MovementLedgerService
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.services.stock_aggregator import StockAggregatorService
from ledger_kernel.services.unit_conversion_service import UnitConversionService
from ledger_services.recipe_cost import RecipeCostPropagator, RecipeCostTrigger

logger = get_logger("services.recalculation_orchestrator")

_MOVEMENT_TYPE = {
    DocumentType.PURCHASE: MovementType.IN,
    DocumentType.SALE: MovementType.OUT,
    DocumentType.RETURN: MovementType.OUT,
}

# Document types that post to the counterparty's current account.
_TRANSACTION_TYPE = {
    DocumentType.PURCHASE: TransactionType.DEBT,
    DocumentType.RETURN: TransactionType.CREDIT,
}


@dataclass(frozen=True)
class _ConvertedLine:
    """A document line after validation, in the material's consumption unit."""

    line: DocumentLine
    source_unit_id: UUID
    quantity: Decimal
    unit_cost: Decimal

    @property
    def key(self) -> StockLedgerKey:
        return StockLedgerKey(self.line.material_id, self.line.warehouse_id)


@dataclass(frozen=True)
class _Plan:
    """Everything resolved before the first write."""

    lines: tuple[_ConvertedLine, ...]
    account_id: UUID | None
    keys: tuple[LedgerKey, ...]


class RecalculationOrchestrator:
    """
    Applies document mutations to the movement and account ledgers.

    Contract:
        One instance per session.  With ``auto_commit`` (the default) each
        successful mutation is committed before locks are released; with
        ``auto_commit=False`` the caller owns the commit and the in-process
        key locks are released when the call returns.

    Usage:
        orchestrator = RecalculationOrchestrator(session)
        result = orchestrator.apply_document_mutation(
            DocumentMutation(
                document_id="INV-1001",
                kind=MutationKind.CREATE,
                document_type=DocumentType.PURCHASE,
                document_date=invoice_date,
                lines=(DocumentLine(material_id, warehouse_id, Decimal("10"), Decimal("180")),),
                counterparty=Counterparty("SUPP-7", AccountKind.SUPPLIER, "Acme Foods"),
            )
        )
        if not result.is_success:
            raise HTTPError(result.message)
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
        recipe_cost_trigger: RecipeCostTrigger | None = None,
        propagation_executor: Executor | None = None,
        lock_registry: KeyLockRegistry | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._lock_registry = lock_registry
        self._auto_commit = auto_commit
        self._propagator = RecipeCostPropagator(recipe_cost_trigger, propagation_executor)

        sequences = SequenceService(session)
        self._units = UnitConversionService(session)
        self._movements = MovementLedgerService(session, self._clock, sequences)
        self._accounts = AccountLedgerService(
            session,
            self._clock,
            sequences,
            money_places=self._config.rounding.money_places,
        )
        self._aggregator = StockAggregatorService(session, self._clock)

    @property
    def propagator(self) -> RecipeCostPropagator:
        return self._propagator

    def apply_document_mutation(self, mutation: DocumentMutation) -> AggregateUpdateResult:
        """
        Apply one CREATE / EDIT / DELETE to both ledgers.

        Returns:
            AggregateUpdateResult.  Check ``is_success``.

        Raises:
            Any exception outside the ledger taxonomy, after rollback.
        """
        correlation_id = str(uuid4())
        with LogContext.bind(
            correlation_id=correlation_id,
            document_id=mutation.document_id,
            actor_id=mutation.actor_id,
        ):
            logger.info(
                "document_mutation_started",
                extra={
                    "kind": mutation.kind.value,
                    "document_type": (
                        mutation.document_type.value if mutation.document_type else None
                    ),
                    "line_count": len(mutation.lines),
                },
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
                            "document_mutation_conflict_retry",
                            extra={"attempt": attempts, "ledger_key": exc.ledger_key},
                        )
                    except UnknownEntityError as exc:
                        self._session.rollback()
                        result = self._rejected(
                            mutation, MutationStatus.REJECTED_UNKNOWN_ENTITY, exc, attempts
                        )
                        break
                    except IncompatibleUnitsError as exc:
                        self._session.rollback()
                        result = self._rejected(
                            mutation, MutationStatus.REJECTED_INCOMPATIBLE_UNITS, exc, attempts
                        )
                        break
                    except (LedgerInputError, UnitError) as exc:
                        self._session.rollback()
                        result = self._rejected(
                            mutation, MutationStatus.REJECTED_INVALID, exc, attempts
                        )
                        break
            except Exception:
                self._session.rollback()
                logger.error(
                    "document_mutation_failed",
                    extra={"kind": mutation.kind.value, "attempts": attempts},
                    exc_info=True,
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            if not result.is_success:
                logger.warning(
                    "document_mutation_rejected",
                    extra={
                        "status": result.status.value,
                        "error_code": result.error_code,
                        "reason": result.message,
                        "attempts": attempts,
                        "duration_ms": duration_ms,
                    },
                )
                return replace(result, duration_ms=duration_ms)

            propagated = self._propagate(result)
            logger.info(
                "document_mutation_completed",
                extra={
                    "status": result.status.value,
                    "movements_written": len(result.movements),
                    "movements_retracted": result.retracted_movements,
                    "account_balance": (
                        str(result.account_balance)
                        if result.account_balance is not None
                        else None
                    ),
                    "attempts": attempts,
                    "duration_ms": duration_ms,
                },
            )
            return replace(result, duration_ms=duration_ms, propagated_materials=propagated)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _do_apply(self, mutation: DocumentMutation, attempt: int) -> AggregateUpdateResult:
        plan = self._plan(mutation)
        locks = LedgerLockService(
            self._session,
            timeout_seconds=self._config.locking.lock_timeout_seconds,
            registry=self._lock_registry,
        )
        with locks.hold(plan.keys):
            try:
                result = self._write(mutation, plan, locks, attempt)
                locks.bump_versions()
                if self._auto_commit:
                    self._session.commit()
            except BaseException:
                # Row locks end here, before the in-process locks are released.
                self._session.rollback()
                raise
        return result

    def _write(
        self,
        mutation: DocumentMutation,
        plan: _Plan,
        locks: LedgerLockService,
        attempt: int,
    ) -> AggregateUpdateResult:
        # The document may have changed between planning and locking.
        if mutation.kind is MutationKind.CREATE:
            self._require_not_applied(mutation.document_id)
        else:
            for key in self._applied_keys(mutation.document_id):
                if key.lock_name not in locks.held:
                    raise ConcurrentMutationConflictError(
                        key.lock_name, "document changed after planning"
                    )

        # Retract
        retraction = None
        if mutation.kind is not MutationKind.CREATE:
            retraction = self._movements.retract_source(mutation.document_id)
        recomputes: list[RecomputeResult] = list(retraction.recomputes) if retraction else []

        account_id = plan.account_id
        if (
            account_id is None
            and mutation.counterparty is not None
            and mutation.document_type in _TRANSACTION_TYPE
        ):
            account_id = self._accounts.get_or_create_account(mutation.counterparty).id
            locks.acquire([AccountLedgerKey(account_id)])

        existing = None
        if mutation.kind is not MutationKind.CREATE:
            existing = self._accounts.find_for_source(mutation.document_id)
        keep_existing = (
            existing is not None
            and mutation.kind is MutationKind.EDIT
            and mutation.document_type in _TRANSACTION_TYPE
            and account_id == existing.current_account_id
        )
        retracted_transaction = False
        if existing is not None and not keep_existing:
            recomputes.append(self._accounts.delete(existing.id))
            retracted_transaction = True

        # Write
        movements = tuple(self._insert_line(mutation, c) for c in plan.lines)
        transaction = self._write_transaction(
            mutation, account_id, existing if keep_existing else None
        )

        # Aggregate
        touched = {c.line.material_id for c in plan.lines}
        cost_changed = {
            m.material_id for m in movements if m.source_type is SourceType.PURCHASE
        }
        if retraction is not None:
            touched.update(r.material_id for r in retraction.removed)
            cost_changed.update(
                r.material_id
                for r in retraction.removed
                if r.source_type is SourceType.PURCHASE
            )
        materials = tuple(self._aggregator.refresh_materials(touched))

        balance_account = account_id
        if balance_account is None and existing is not None:
            balance_account = existing.current_account_id
        account_balance = None
        if balance_account is not None:
            account_balance = self._accounts.get_account(balance_account).current_balance

        return AggregateUpdateResult(
            status=MutationStatus.APPLIED,
            document_id=mutation.document_id,
            kind=mutation.kind,
            movements=movements,
            account_transaction=transaction,
            account_balance=account_balance,
            materials=materials,
            retracted_movements=len(retraction.removed) if retraction else 0,
            retracted_transaction=retracted_transaction,
            recomputes=tuple(recomputes),
            attempts=attempt,
            propagated_materials=tuple(sorted(cost_changed, key=str)),
        )

    def _plan(self, mutation: DocumentMutation) -> _Plan:
        """Validate and convert; no writes."""
        keys: set[LedgerKey] = {DocumentKey(mutation.document_id)}
        if mutation.kind is MutationKind.CREATE:
            self._require_not_applied(mutation.document_id)
        else:
            keys.update(self._applied_keys(mutation.document_id))

        lines = tuple(self._convert_line(line) for line in mutation.lines)
        keys.update(c.key for c in lines)

        account_id = None
        if mutation.document_type in _TRANSACTION_TYPE:
            kind = None
            if mutation.current_account_id is not None:
                account = self._session.get(CurrentAccount, mutation.current_account_id)
                if account is None:
                    raise CurrentAccountNotFoundError(mutation.current_account_id)
                account_id, kind = account.id, AccountKind(account.kind)
            elif mutation.counterparty is not None:
                kind = mutation.counterparty.kind
                found = self._accounts.find_by_counterparty(mutation.counterparty.counterparty_ref)
                if found is not None:
                    account_id, kind = found.id, found.kind
            if kind is not None and kind is not AccountKind.SUPPLIER:
                raise InvalidDocumentError(
                    mutation.document_id,
                    f"{mutation.document_type.value} documents post to supplier accounts, not {kind.value}",
                )
        if account_id is not None:
            keys.add(AccountLedgerKey(account_id))

        return _Plan(lines=lines, account_id=account_id, keys=tuple(keys))

    def _require_not_applied(self, document_id: str) -> None:
        existing = len(self._movements.find_by_source(document_id))
        if self._accounts.find_for_source(document_id) is not None:
            existing += 1
        if existing:
            raise DocumentAlreadyAppliedError(document_id, existing)

    def _applied_keys(self, document_id: str) -> set[LedgerKey]:
        """Ledger keys holding entries of the document right now."""
        keys: set[LedgerKey] = set(self._movements.keys_for_source(document_id))
        previous = self._accounts.find_for_source(document_id)
        if previous is not None:
            keys.add(previous.key)
        return keys

    def _convert_line(self, line: DocumentLine) -> _ConvertedLine:
        material = self._session.get(Material, line.material_id)
        if material is None:
            raise MaterialNotFoundError(line.material_id)
        if self._session.get(Warehouse, line.warehouse_id) is None:
            raise WarehouseNotFoundError(line.warehouse_id)

        converted = self._units.to_consumption_unit(
            material, line.quantity, line.unit_price, line.unit_id
        )
        places = self._config.rounding.quantity_places
        return _ConvertedLine(
            line=line,
            source_unit_id=converted.from_unit_id,
            quantity=round_quantity(converted.quantity, places),
            unit_cost=round_quantity(converted.unit_cost, places),
        )

    def _insert_line(
        self, mutation: DocumentMutation, converted: _ConvertedLine
    ) -> StockMovementRecord:
        movement_type = _MOVEMENT_TYPE[mutation.document_type]
        quantity = converted.quantity if movement_type is MovementType.IN else -converted.quantity
        return self._movements.insert(
            MovementSpec(
                material_id=converted.line.material_id,
                warehouse_id=converted.line.warehouse_id,
                movement_date=mutation.document_date,
                movement_type=movement_type,
                quantity=quantity,
                unit_cost=converted.unit_cost,
                source_type=mutation.document_type.source_type,
                source_reference=mutation.document_id,
                source_quantity=converted.line.quantity,
                source_unit_id=converted.source_unit_id,
                source_unit_price=converted.line.unit_price,
                reason=mutation.description,
            )
        )

    def _write_transaction(
        self,
        mutation: DocumentMutation,
        account_id: UUID | None,
        existing: AccountTransactionRecord | None,
    ) -> AccountTransactionRecord | None:
        transaction_type = _TRANSACTION_TYPE.get(mutation.document_type)
        if transaction_type is None or account_id is None:
            return None
        amount = round_money(mutation.document_total, self._config.rounding.money_places)
        if existing is not None:
            return self._accounts.update(
                existing.id,
                amount,
                transaction_type=transaction_type,
                transaction_date=mutation.document_date,
            )
        return self._accounts.insert(
            account_id,
            transaction_type,
            amount,
            mutation.document_date,
            source_type=mutation.document_type.source_type,
            source_reference=mutation.document_id,
            description=mutation.description,
        )

    # ------------------------------------------------------------------
    # After commit
    # ------------------------------------------------------------------

    def _propagate(self, result: AggregateUpdateResult) -> tuple[UUID, ...]:
        """Notify recipe costing for every material whose purchase history changed."""
        if not self._config.propagation.enabled or not result.propagated_materials:
            return ()
        self._propagator.dispatch(result.propagated_materials)
        return result.propagated_materials

    def _rejected(
        self,
        mutation: DocumentMutation,
        status: MutationStatus,
        exc: LedgerKernelError,
        attempts: int,
    ) -> AggregateUpdateResult:
        return AggregateUpdateResult(
            status=status,
            document_id=mutation.document_id,
            kind=mutation.kind,
            message=str(exc),
            error_code=exc.code,
            attempts=attempts,
        )
