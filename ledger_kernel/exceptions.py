"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The orchestrator maps failures to result statuses and callers decide whether
to retry.  Both decisions must be made by exception TYPE and CODE, never by
parsing messages:

    try:
        orchestrator.apply_document_mutation(mutation)
    except ConcurrentMutationConflictError as e:
        retry_later(e.ledger_key)           # retryable, nothing was written
    except IncompatibleUnitsError as e:
        reject(e.code, e.from_unit, e.to_unit)

Every exception has a class-level ``code`` and carries its context as
attributes so it survives logging and serialization.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- UnknownEntityError
    |   +-- MaterialNotFoundError
    |   +-- WarehouseNotFoundError
    |   +-- UnitNotFoundError
    |   +-- CurrentAccountNotFoundError
    |   +-- StockMovementNotFoundError
    |   +-- AccountTransactionNotFoundError
    |
    +-- UnitError
    |   +-- IncompatibleUnitsError
    |   +-- InvalidUnitGraphError
    |
    +-- LedgerInputError
    |   +-- InvalidMovementError
    |   +-- InvalidDocumentError
    |   +-- DocumentAlreadyAppliedError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentMutationConflictError
    |
    +-- PropagationError
    |   +-- PropagationFailureError
    |
    +-- ChainIntegrityError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Entity          | UNKNOWN_ENTITY                | Referenced row does not exist
                | MATERIAL_NOT_FOUND            | Material id unknown
                | WAREHOUSE_NOT_FOUND           | Warehouse id unknown
                | UNIT_NOT_FOUND                | Unit id unknown
                | CURRENT_ACCOUNT_NOT_FOUND     | Current account id unknown
                | STOCK_MOVEMENT_NOT_FOUND      | Movement id unknown
                | ACCOUNT_TRANSACTION_NOT_FOUND | Account transaction id unknown
----------------|-------------------------------|---------------------------------------
Unit            | INCOMPATIBLE_UNITS            | Units reduce to different bases
                | INVALID_UNIT_GRAPH            | Cycle, chained base or bad factor
----------------|-------------------------------|---------------------------------------
Input           | INVALID_MOVEMENT              | Sign/type mismatch, zero quantity
                | INVALID_DOCUMENT              | Malformed document mutation
                | DOCUMENT_ALREADY_APPLIED      | CREATE for a document with entries
----------------|-------------------------------|---------------------------------------
Concurrency     | CONCURRENT_MUTATION_CONFLICT  | Ledger key lock not obtained (retry)
----------------|-------------------------------|---------------------------------------
Propagation     | PROPAGATION_FAILURE           | Downstream recompute failed (logged)
----------------|-------------------------------|---------------------------------------
Integrity       | CHAIN_INTEGRITY_VIOLATION     | Stored before/after values disagree

===============================================================================
HANDLING PATTERNS
===============================================================================

1. UnknownEntityError, UnitError and LedgerInputError reject the mutation
   before anything is written.  The caller must fix the input.

2. ConcurrentMutationConflictError is the only retryable error.  The
   ``retryable`` class attribute is True on it and False everywhere else.

3. PropagationFailureError never escapes the orchestrator.  It is logged
   with its structured fields and the primary mutation stays committed.

===============================================================================
"""


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"
    retryable: bool = False


# Unknown entity exceptions


class UnknownEntityError(LedgerKernelError):
    """A referenced material, warehouse, unit, account or entry does not exist."""

    code: str = "UNKNOWN_ENTITY"

    def __init__(self, entity_type: str, entity_id: str, message: str | None = None):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(message or f"{entity_type} not found: {entity_id}")


class MaterialNotFoundError(UnknownEntityError):
    """Material with given ID was not found."""

    code: str = "MATERIAL_NOT_FOUND"

    def __init__(self, material_id: str):
        self.material_id = str(material_id)
        super().__init__("Material", material_id)


class WarehouseNotFoundError(UnknownEntityError):
    """Warehouse with given ID was not found."""

    code: str = "WAREHOUSE_NOT_FOUND"

    def __init__(self, warehouse_id: str):
        self.warehouse_id = str(warehouse_id)
        super().__init__("Warehouse", warehouse_id)


class UnitNotFoundError(UnknownEntityError):
    """Unit with given ID was not found."""

    code: str = "UNIT_NOT_FOUND"

    def __init__(self, unit_id: str):
        self.unit_id = str(unit_id)
        super().__init__("Unit", unit_id)


class CurrentAccountNotFoundError(UnknownEntityError):
    """Current account with given ID was not found."""

    code: str = "CURRENT_ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = str(account_id)
        super().__init__("CurrentAccount", account_id)


class StockMovementNotFoundError(UnknownEntityError):
    """Stock movement with given ID was not found."""

    code: str = "STOCK_MOVEMENT_NOT_FOUND"

    def __init__(self, movement_id: str):
        self.movement_id = str(movement_id)
        super().__init__("StockMovement", movement_id)


class AccountTransactionNotFoundError(UnknownEntityError):
    """Account transaction with given ID was not found."""

    code: str = "ACCOUNT_TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = str(transaction_id)
        super().__init__("CurrentAccountTransaction", transaction_id)


# Unit exceptions


class UnitError(LedgerKernelError):
    """Base exception for unit conversion errors."""

    code: str = "UNIT_ERROR"


class IncompatibleUnitsError(UnitError):
    """Two units reduce to different base units and cannot be converted."""

    code: str = "INCOMPATIBLE_UNITS"

    def __init__(
        self,
        from_unit: str,
        to_unit: str,
        from_base: str | None = None,
        to_base: str | None = None,
    ):
        self.from_unit = str(from_unit)
        self.to_unit = str(to_unit)
        self.from_base = None if from_base is None else str(from_base)
        self.to_base = None if to_base is None else str(to_base)
        super().__init__(
            f"Cannot convert {from_unit} to {to_unit}: "
            f"base {from_base} != base {to_base}"
        )


class InvalidUnitGraphError(UnitError):
    """Unit definitions are malformed (cycle, chained base, non-positive factor)."""

    code: str = "INVALID_UNIT_GRAPH"

    def __init__(self, unit_id: str, reason: str):
        self.unit_id = str(unit_id)
        self.reason = reason
        super().__init__(f"Invalid unit {unit_id}: {reason}")


# Input exceptions


class LedgerInputError(LedgerKernelError):
    """Base exception for malformed ledger input."""

    code: str = "LEDGER_INPUT_ERROR"


class InvalidMovementError(LedgerInputError):
    """Movement quantity does not match its movement type."""

    code: str = "INVALID_MOVEMENT"

    def __init__(self, movement_type: str, quantity: object, reason: str):
        self.movement_type = movement_type
        self.quantity = str(quantity)
        self.reason = reason
        super().__init__(
            f"Invalid {movement_type} movement with quantity {quantity}: {reason}"
        )


class InvalidDocumentError(LedgerInputError):
    """Document mutation is malformed."""

    code: str = "INVALID_DOCUMENT"

    def __init__(self, document_id: str, reason: str):
        self.document_id = str(document_id)
        self.reason = reason
        super().__init__(f"Invalid document {document_id}: {reason}")


class DocumentAlreadyAppliedError(LedgerInputError):
    """CREATE was issued for a document that already has ledger entries."""

    code: str = "DOCUMENT_ALREADY_APPLIED"

    def __init__(self, document_id: str, existing_entries: int):
        self.document_id = str(document_id)
        self.existing_entries = existing_entries
        super().__init__(
            f"Document {document_id} already has {existing_entries} ledger entries"
        )


# Concurrency exceptions


class ConcurrencyError(LedgerKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentMutationConflictError(ConcurrencyError):
    """A ledger key could not be locked, or its version moved underneath us."""

    code: str = "CONCURRENT_MUTATION_CONFLICT"
    retryable: bool = True

    def __init__(self, ledger_key: str, reason: str = "lock not acquired"):
        self.ledger_key = ledger_key
        self.reason = reason
        super().__init__(f"Concurrent mutation on {ledger_key}: {reason}")


# Propagation exceptions


class PropagationError(LedgerKernelError):
    """Base exception for downstream propagation errors."""

    code: str = "PROPAGATION_ERROR"


class PropagationFailureError(PropagationError):
    """A downstream recompute failed after the primary mutation committed."""

    code: str = "PROPAGATION_FAILURE"

    def __init__(self, material_id: str, target: str, cause: str):
        self.material_id = str(material_id)
        self.target = target
        self.cause = cause
        super().__init__(
            f"Propagation to {target} for material {material_id} failed: {cause}"
        )


# Integrity exceptions


class ChainIntegrityError(LedgerKernelError):
    """Stored running-balance values disagree with the replayed chain."""

    code: str = "CHAIN_INTEGRITY_VIOLATION"

    def __init__(self, ledger_key: str, violations: int):
        self.ledger_key = ledger_key
        self.violations = violations
        super().__init__(
            f"Ledger {ledger_key} has {violations} chain violation(s)"
        )
