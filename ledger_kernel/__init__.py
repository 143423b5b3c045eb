"""
Ledger Kernel - temporal ledger consistency engine

Keeps two running-balance ledgers consistent under out-of-order edits:
- Inventory movement ledger per (material, warehouse)
- Current account balance ledger per account
- Unit-conversion-aware cost arithmetic
- Cached stock / cost / balance projections rebuildable from the ledgers
"""

__version__ = "0.1.0"
