"""
Data Transfer Objects -- immutable values crossing kernel boundaries.

Responsibility:
    Typed, frozen value objects for ledger inputs (MovementSpec,
    DocumentLine, DocumentMutation, PaymentMutation), ledger outputs (records, recompute and
    aggregate results) and the enums that classify them.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Services turn ORM rows into these DTOs before returning them, so
    callers never hold a live ORM object.

Invariants enforced:
    - DocumentLine: UUID ids, Decimal quantity > 0, Decimal unit price >= 0.
      Floats are rejected.
    - DocumentMutation: DELETE carries no lines; CREATE and EDIT carry at
      least one line, a document type and a document date.
    - PaymentMutation: DELETE carries only the payment id; CREATE and EDIT
      carry an account, a date and a positive Decimal amount.

Failure modes:
    - ValueError / TypeError from __post_init__ on malformed input.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_kernel.domain.keys import AccountLedgerKey, StockLedgerKey


class MovementType(str, Enum):
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"
    WASTE = "WASTE"
    TRANSFER = "TRANSFER"


class SourceType(str, Enum):
    """What produced a ledger entry."""

    PURCHASE = "PURCHASE"
    SALE = "SALE"
    RETURN = "RETURN"
    PAYMENT = "PAYMENT"
    MANUAL = "MANUAL"


class DocumentType(str, Enum):
    PURCHASE = "PURCHASE"
    SALE = "SALE"
    RETURN = "RETURN"

    @property
    def source_type(self) -> SourceType:
        return SourceType(self.value)


class MutationKind(str, Enum):
    CREATE = "CREATE"
    EDIT = "EDIT"
    DELETE = "DELETE"


class TransactionType(str, Enum):
    """DEBT raises the amount owed to the counterparty, CREDIT lowers it."""

    DEBT = "DEBT"
    CREDIT = "CREDIT"

    def signed(self, amount: Decimal) -> Decimal:
        return amount if self is TransactionType.DEBT else -amount


class AccountKind(str, Enum):
    SUPPLIER = "SUPPLIER"
    CUSTOMER = "CUSTOMER"


class PaymentStatus(str, Enum):
    """Only a completed payment posts to the account."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class MutationStatus(str, Enum):
    """Outcome of one document mutation."""

    APPLIED = "applied"
    REJECTED_UNKNOWN_ENTITY = "rejected_unknown_entity"
    REJECTED_INCOMPATIBLE_UNITS = "rejected_incompatible_units"
    REJECTED_INVALID = "rejected_invalid"
    CONFLICT = "conflict"


def _require_uuid(name: str, value: object, optional: bool = False) -> None:
    if value is None and optional:
        return
    if not isinstance(value, UUID):
        raise TypeError(f"{name} must be a UUID, got {type(value).__name__}")


def _require_decimal(name: str, value: object) -> None:
    if not isinstance(value, Decimal):
        raise TypeError(f"{name} must be a Decimal, got {type(value).__name__}")
    if not value.is_finite():
        raise ValueError(f"{name} must be finite, got {value}")


# ---------------------------------------------------------------------------
# Ledger inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MovementSpec:
    """
    A movement to insert into the inventory ledger.

    quantity is signed and already in the material's consumption unit.
    Sign rules are checked by MovementLedgerService.insert.
    """

    material_id: UUID
    warehouse_id: UUID | None
    movement_date: datetime
    movement_type: MovementType
    quantity: Decimal
    unit_cost: Decimal = Decimal("0")
    source_type: SourceType = SourceType.MANUAL
    source_reference: str | None = None
    source_quantity: Decimal | None = None
    source_unit_id: UUID | None = None
    source_unit_price: Decimal | None = None
    reason: str | None = None

    @property
    def key(self) -> StockLedgerKey:
        return StockLedgerKey(self.material_id, self.warehouse_id)


@dataclass(frozen=True)
class DocumentLine:
    """
    One invoice line as supplied by the document collaborator.

    quantity and unit_price are in ``unit_id``; when unit_id is None the
    material's purchase unit is assumed.
    """

    material_id: UUID
    warehouse_id: UUID
    quantity: Decimal
    unit_price: Decimal
    unit_id: UUID | None = None

    def __post_init__(self) -> None:
        _require_uuid("material_id", self.material_id)
        _require_uuid("warehouse_id", self.warehouse_id)
        _require_uuid("unit_id", self.unit_id, optional=True)
        _require_decimal("quantity", self.quantity)
        _require_decimal("unit_price", self.unit_price)
        if self.quantity <= 0:
            raise ValueError(f"Line quantity must be positive, got {self.quantity}")
        if self.unit_price < 0:
            raise ValueError(f"Line unit price must be non-negative, got {self.unit_price}")

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class Counterparty:
    """Supplier or customer a document is issued against."""

    counterparty_ref: str
    kind: AccountKind
    name: str

    def __post_init__(self) -> None:
        if not self.counterparty_ref or not self.counterparty_ref.strip():
            raise ValueError("counterparty_ref must be non-empty")
        if not isinstance(self.kind, AccountKind):
            raise TypeError("kind must be an AccountKind")


@dataclass(frozen=True)
class DocumentMutation:
    """
    One CREATE / EDIT / DELETE of a source document.

    Contract:
        - The account is either ``current_account_id`` (must exist) or
          ``counterparty`` (found or created), never both.
        - ``total_amount`` overrides the sum of line totals when the
          document carries tax or discounts.
    """

    document_id: str
    kind: MutationKind
    document_type: DocumentType | None = None
    document_date: datetime | None = None
    lines: tuple[DocumentLine, ...] = ()
    current_account_id: UUID | None = None
    counterparty: Counterparty | None = None
    total_amount: Decimal | None = None
    description: str | None = None
    actor_id: str | None = None

    def __post_init__(self) -> None:
        if not self.document_id or not str(self.document_id).strip():
            raise ValueError("document_id must be non-empty")
        object.__setattr__(self, "kind", MutationKind(self.kind))
        if self.document_type is not None:
            object.__setattr__(self, "document_type", DocumentType(self.document_type))
        if not isinstance(self.lines, tuple):
            object.__setattr__(self, "lines", tuple(self.lines))
        for line in self.lines:
            if not isinstance(line, DocumentLine):
                raise TypeError("lines must contain DocumentLine values")

        if self.kind is MutationKind.DELETE:
            if self.lines:
                raise ValueError("DELETE mutation must not carry lines")
            return

        if not self.lines:
            raise ValueError(f"{self.kind.value} mutation requires at least one line")
        if self.document_type is None:
            raise ValueError(f"{self.kind.value} mutation requires a document_type")
        if self.document_date is None:
            raise ValueError(f"{self.kind.value} mutation requires a document_date")
        _require_uuid("current_account_id", self.current_account_id, optional=True)
        if self.current_account_id is not None and self.counterparty is not None:
            raise ValueError("Give either current_account_id or counterparty, not both")
        if self.total_amount is not None:
            _require_decimal("total_amount", self.total_amount)
            if self.total_amount < 0:
                raise ValueError("total_amount must be non-negative")

    @property
    def document_total(self) -> Decimal:
        if self.total_amount is not None:
            return self.total_amount
        return sum((line.line_total for line in self.lines), Decimal("0"))


@dataclass(frozen=True)
class PaymentMutation:
    """
    One CREATE / EDIT / DELETE of a payment against a current account.

    A COMPLETED payment posts one CREDIT for ``amount``; a PENDING one posts
    nothing until an EDIT completes it.
    """

    payment_id: str
    kind: MutationKind
    current_account_id: UUID | None = None
    payment_date: datetime | None = None
    amount: Decimal | None = None
    status: PaymentStatus = PaymentStatus.COMPLETED
    description: str | None = None
    actor_id: str | None = None

    def __post_init__(self) -> None:
        if not self.payment_id or not str(self.payment_id).strip():
            raise ValueError("payment_id must be non-empty")
        object.__setattr__(self, "kind", MutationKind(self.kind))
        object.__setattr__(self, "status", PaymentStatus(self.status))
        if self.kind is MutationKind.DELETE:
            return

        _require_uuid("current_account_id", self.current_account_id)
        if self.payment_date is None:
            raise ValueError(f"{self.kind.value} payment requires a payment_date")
        _require_decimal("amount", self.amount)
        if self.amount <= 0:
            raise ValueError("amount must be positive")


# ---------------------------------------------------------------------------
# Ledger outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StockMovementRecord:
    id: UUID
    material_id: UUID
    warehouse_id: UUID | None
    movement_date: datetime
    sequence: int
    movement_type: MovementType
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    stock_before: Decimal
    stock_after: Decimal
    source_type: SourceType
    source_reference: str | None
    reason: str | None
    recorded_at: datetime
    source_quantity: Decimal | None = None
    source_unit_id: UUID | None = None
    source_unit_price: Decimal | None = None

    @property
    def key(self) -> StockLedgerKey:
        return StockLedgerKey(self.material_id, self.warehouse_id)


@dataclass(frozen=True)
class AccountTransactionRecord:
    id: UUID
    current_account_id: UUID
    transaction_type: TransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    transaction_date: datetime
    sequence: int
    source_type: SourceType
    source_reference: str | None
    description: str | None

    @property
    def signed_amount(self) -> Decimal:
        return self.transaction_type.signed(self.amount)

    @property
    def key(self) -> AccountLedgerKey:
        return AccountLedgerKey(self.current_account_id)


@dataclass(frozen=True)
class RecomputeResult:
    """Summary of one forward recompute."""

    ledger_key: str
    from_date: datetime | None
    opening: Decimal
    closing: Decimal
    entries_examined: int
    entries_updated: int


@dataclass(frozen=True)
class MaterialAggregate:
    material_id: UUID
    current_stock: Decimal
    average_cost: Decimal
    last_purchase_price: Decimal


@dataclass(frozen=True)
class AggregateUpdateResult:
    """
    Result of RecalculationOrchestrator.apply_document_mutation.

    On anything but APPLIED nothing was written; ``message`` carries the
    human-readable reason and ``error_code`` the exception code.
    """

    status: MutationStatus
    document_id: str
    kind: MutationKind
    message: str | None = None
    error_code: str | None = None
    movements: tuple[StockMovementRecord, ...] = ()
    account_transaction: AccountTransactionRecord | None = None
    account_balance: Decimal | None = None
    materials: tuple[MaterialAggregate, ...] = ()
    retracted_movements: int = 0
    retracted_transaction: bool = False
    recomputes: tuple[RecomputeResult, ...] = ()
    attempts: int = 1
    duration_ms: float = 0.0
    propagated_materials: tuple[UUID, ...] = field(default=())

    @property
    def is_success(self) -> bool:
        return self.status is MutationStatus.APPLIED
