"""Ledger services (write side)."""

from ledger_kernel.services.account_ledger import AccountLedgerService, CurrentAccountInfo
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.ledger_lock_service import KeyLockRegistry, LedgerLockService
from ledger_kernel.services.movement_ledger import MovementLedgerService, MovementRetraction
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.services.stock_aggregator import StockAggregatorService
from ledger_kernel.services.unit_conversion_service import UnitConversionService

__all__ = [
    "BaseService",
    "SequenceService",
    "KeyLockRegistry",
    "LedgerLockService",
    "UnitConversionService",
    "MovementLedgerService",
    "MovementRetraction",
    "StockAggregatorService",
    "AccountLedgerService",
    "CurrentAccountInfo",
]
