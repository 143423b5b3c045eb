"""
Ledger keys -- the unit of ordering and of mutual exclusion.

A stock chain is keyed by (material, warehouse); warehouse None is its own
key.  An account chain is keyed by the account.  A source document has a
key of its own so two writers of the same document never interleave.  Each
key has a stable ``lock_name`` and keys sort deterministically, so any set
of keys can be locked in one global order without deadlock.
"""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class StockLedgerKey:
    material_id: UUID
    warehouse_id: UUID | None = None

    @property
    def lock_name(self) -> str:
        warehouse = str(self.warehouse_id) if self.warehouse_id is not None else "-"
        return f"stock:{self.material_id}:{warehouse}"

    def __lt__(self, other: "LedgerKey") -> bool:
        return self.lock_name < other.lock_name

    def __str__(self) -> str:
        return self.lock_name


@dataclass(frozen=True)
class AccountLedgerKey:
    current_account_id: UUID

    @property
    def lock_name(self) -> str:
        return f"account:{self.current_account_id}"

    def __lt__(self, other: "LedgerKey") -> bool:
        return self.lock_name < other.lock_name

    def __str__(self) -> str:
        return self.lock_name


@dataclass(frozen=True)
class DocumentKey:
    """Serializes mutations of one source document, whatever ledgers it touches."""

    source_reference: str

    @property
    def lock_name(self) -> str:
        return f"document:{self.source_reference}"

    def __lt__(self, other: "LedgerKey") -> bool:
        return self.lock_name < other.lock_name

    def __str__(self) -> str:
        return self.lock_name


LedgerKey = StockLedgerKey | AccountLedgerKey | DocumentKey


def sorted_keys(keys) -> list[LedgerKey]:
    """Deduplicate and sort keys into lock-acquisition order."""
    return sorted(set(keys), key=lambda k: k.lock_name)
