"""
ledger_services -- use-case layer over the ledger kernel.

Owns transaction boundaries and reads configuration; the kernel below it
only flushes.
"""

from ledger_services.payment_service import PaymentService
from ledger_services.recalculation_orchestrator import RecalculationOrchestrator
from ledger_services.recipe_cost import (
    CallbackRecipeCostTrigger,
    NullRecipeCostTrigger,
    RecipeCostPropagator,
    RecipeCostTrigger,
)
from ledger_services.reconciliation_service import (
    AccountRebuildSummary,
    ReconciliationService,
    StockRebuildSummary,
)

__all__ = [
    "RecalculationOrchestrator",
    "PaymentService",
    "RecipeCostTrigger",
    "NullRecipeCostTrigger",
    "CallbackRecipeCostTrigger",
    "RecipeCostPropagator",
    "ReconciliationService",
    "StockRebuildSummary",
    "AccountRebuildSummary",
]
