"""ORM models for the ledger kernel."""

from ledger_kernel.models.current_account import (
    CurrentAccount,
    CurrentAccountTransaction,
)
from ledger_kernel.models.ledger_control import LedgerLock, SequenceCounter
from ledger_kernel.models.material import Material, Warehouse
from ledger_kernel.models.stock_movement import StockMovement
from ledger_kernel.models.unit import Unit

__all__ = [
    "Unit",
    "Warehouse",
    "Material",
    "StockMovement",
    "CurrentAccount",
    "CurrentAccountTransaction",
    "SequenceCounter",
    "LedgerLock",
]
