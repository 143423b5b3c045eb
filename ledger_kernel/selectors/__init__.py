"""Read-only selectors (query side)."""

from ledger_kernel.selectors.account_selector import (
    AccountBalanceDTO,
    AccountSelector,
    AccountStatement,
)
from ledger_kernel.selectors.base import BaseSelector
from ledger_kernel.selectors.stock_selector import (
    ALL_WAREHOUSES,
    StockConsistencyReport,
    StockSelector,
)

__all__ = [
    "BaseSelector",
    "StockSelector",
    "StockConsistencyReport",
    "ALL_WAREHOUSES",
    "AccountSelector",
    "AccountBalanceDTO",
    "AccountStatement",
]
