"""
Pure domain layer.

Value objects and pure functions with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (except the injectable Clock itself)
- I/O
"""

from ledger_kernel.domain.chain import (
    ChainEntry,
    ChainViolation,
    Snapshot,
    find_chain_violations,
    fold_chain,
)
from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.dtos import (
    AccountKind,
    AccountTransactionRecord,
    AggregateUpdateResult,
    Counterparty,
    DocumentLine,
    DocumentMutation,
    DocumentType,
    MaterialAggregate,
    MovementSpec,
    MovementType,
    MutationKind,
    MutationStatus,
    PaymentMutation,
    PaymentStatus,
    RecomputeResult,
    SourceType,
    StockMovementRecord,
    TransactionType,
)
from ledger_kernel.domain.keys import AccountLedgerKey, DocumentKey, StockLedgerKey
from ledger_kernel.domain.units import ConversionResult, UnitDefinition, UnitGraph

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "Snapshot",
    "ChainEntry",
    "ChainViolation",
    "fold_chain",
    "find_chain_violations",
    "StockLedgerKey",
    "AccountLedgerKey",
    "DocumentKey",
    "UnitDefinition",
    "UnitGraph",
    "ConversionResult",
    "MovementType",
    "SourceType",
    "DocumentType",
    "MutationKind",
    "MutationStatus",
    "TransactionType",
    "AccountKind",
    "PaymentStatus",
    "MovementSpec",
    "DocumentLine",
    "Counterparty",
    "DocumentMutation",
    "PaymentMutation",
    "StockMovementRecord",
    "AccountTransactionRecord",
    "RecomputeResult",
    "MaterialAggregate",
    "AggregateUpdateResult",
]
