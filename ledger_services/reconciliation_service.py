"""
ReconciliationService -- rebuild cached state from the ledgers.

Responsibility:
    Re-derives every stock chain from its first movement and every account
    chain from its opening balance, then refreshes the caches that depend on
    them (Material.current_stock / average_cost / last_purchase_price and
    CurrentAccount.current_balance).  Used to repair drift, after a bulk
    import, and as the operator-facing "recalculate balances" action.

Architecture position:
    Services layer.  Locks every key it rewrites and owns the commit.

Invariants enforced:
    - Rebuilding a consistent ledger changes nothing (zero rows updated).
    - Keys are locked in sorted order and held until commit.

Failure modes:
    - MaterialNotFoundError / CurrentAccountNotFoundError for an unknown id.
    - ConcurrentMutationConflictError when a key stays locked past the
      timeout.  Nothing is written in that case.
    - ChainIntegrityError from verify_ledgers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config import LedgerConfig, get_active_config
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.keys import AccountLedgerKey
from ledger_kernel.exceptions import (
    ChainIntegrityError,
    CurrentAccountNotFoundError,
    MaterialNotFoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.current_account import CurrentAccount
from ledger_kernel.models.material import Material
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.selectors.stock_selector import StockSelector
from ledger_kernel.services.account_ledger import AccountLedgerService
from ledger_kernel.services.ledger_lock_service import KeyLockRegistry, LedgerLockService
from ledger_kernel.services.movement_ledger import MovementLedgerService
from ledger_kernel.services.stock_aggregator import StockAggregatorService

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class StockRebuildSummary:
    materials_checked: int
    chains_recomputed: int
    rows_updated: int
    materials_corrected: tuple[UUID, ...]
    duration_ms: float = 0.0

    @property
    def was_consistent(self) -> bool:
        return self.rows_updated == 0 and not self.materials_corrected


@dataclass(frozen=True)
class AccountRebuildSummary:
    accounts_checked: int
    rows_updated: int
    accounts_corrected: tuple[UUID, ...]
    duration_ms: float = 0.0

    @property
    def was_consistent(self) -> bool:
        return self.rows_updated == 0 and not self.accounts_corrected


class ReconciliationService:
    """
    Full rebuild of both ledgers' snapshots and caches.

    Contract:
        ``material_id`` / ``account_id`` None means every material / account.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
        lock_registry: KeyLockRegistry | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._config = config or get_active_config()
        self._lock_registry = lock_registry
        self._auto_commit = auto_commit
        self._stock = StockSelector(session)
        self._account_selector = AccountSelector(session)
        self._movements = MovementLedgerService(session, clock)
        self._aggregator = StockAggregatorService(session, clock)
        self._accounts = AccountLedgerService(
            session, clock, money_places=self._config.rounding.money_places
        )

    def _locks(self) -> LedgerLockService:
        return LedgerLockService(
            self._session,
            timeout_seconds=self._config.locking.lock_timeout_seconds,
            registry=self._lock_registry,
        )

    def rebuild_stock(self, material_id: UUID | None = None) -> StockRebuildSummary:
        """Recompute every stock chain of the material(s) and refresh their caches."""
        t0 = time.monotonic()
        if material_id is not None:
            if self._session.get(Material, material_id) is None:
                raise MaterialNotFoundError(material_id)
            material_ids = [material_id]
        else:
            material_ids = list(self._session.scalars(select(Material.id)).all())

        keys = [k for m in material_ids for k in self._stock.keys_for_material(m)]
        locks = self._locks()
        with locks.hold(keys):
            try:
                cached = {m: self._cached_material(m) for m in material_ids}
                recomputes = [self._movements.recompute_from(k, None) for k in keys]
                aggregates = self._aggregator.refresh_materials(material_ids)
                locks.bump_versions()
                if self._auto_commit:
                    self._session.commit()
            except BaseException:
                self._session.rollback()
                raise

        corrected = tuple(
            a.material_id
            for a in aggregates
            if cached[a.material_id]
            != (a.current_stock, a.average_cost, a.last_purchase_price)
        )
        summary = StockRebuildSummary(
            materials_checked=len(material_ids),
            chains_recomputed=len(recomputes),
            rows_updated=sum(r.entries_updated for r in recomputes),
            materials_corrected=corrected,
            duration_ms=round((time.monotonic() - t0) * 1000, 2),
        )
        logger.info(
            "stock_rebuilt",
            extra={
                "materials_checked": summary.materials_checked,
                "chains_recomputed": summary.chains_recomputed,
                "rows_updated": summary.rows_updated,
                "materials_corrected": [str(m) for m in corrected],
                "duration_ms": summary.duration_ms,
            },
        )
        return summary

    def recalculate_account_balances(
        self, account_id: UUID | None = None
    ) -> AccountRebuildSummary:
        """Re-fold every account chain from its opening balance."""
        t0 = time.monotonic()
        if account_id is not None:
            if self._session.get(CurrentAccount, account_id) is None:
                raise CurrentAccountNotFoundError(account_id)
            account_ids = [account_id]
        else:
            account_ids = list(self._session.scalars(select(CurrentAccount.id)).all())

        locks = self._locks()
        with locks.hold(AccountLedgerKey(a) for a in account_ids):
            try:
                cached = {
                    a: self._session.get(CurrentAccount, a).current_balance
                    for a in account_ids
                }
                recomputes = {a: self._accounts.recompute_from(a, None) for a in account_ids}
                locks.bump_versions()
                if self._auto_commit:
                    self._session.commit()
            except BaseException:
                self._session.rollback()
                raise

        corrected = tuple(
            a for a, result in recomputes.items() if result.closing != cached[a]
        )
        summary = AccountRebuildSummary(
            accounts_checked=len(account_ids),
            rows_updated=sum(r.entries_updated for r in recomputes.values()),
            accounts_corrected=corrected,
            duration_ms=round((time.monotonic() - t0) * 1000, 2),
        )
        logger.info(
            "account_balances_recalculated",
            extra={
                "accounts_checked": summary.accounts_checked,
                "rows_updated": summary.rows_updated,
                "accounts_corrected": [str(a) for a in corrected],
                "duration_ms": summary.duration_ms,
            },
        )
        return summary

    def verify_ledgers(self) -> int:
        """
        Check every stock and account chain without writing.

        Returns:
            Number of chains checked.

        Raises:
            ChainIntegrityError: For the first chain whose stored snapshots
                disagree with a replay.
        """
        checked = 0
        for material_id in self._session.scalars(select(Material.id).order_by(Material.code)).all():
            for key in self._stock.keys_for_material(material_id):
                violations = self._stock.verify_chain(key)
                checked += 1
                if violations:
                    raise ChainIntegrityError(key.lock_name, len(violations))
        for account_id in self._session.scalars(
            select(CurrentAccount.id).order_by(CurrentAccount.code)
        ).all():
            violations = self._account_selector.verify_chain(account_id)
            checked += 1
            if violations:
                raise ChainIntegrityError(AccountLedgerKey(account_id).lock_name, len(violations))
        logger.info("ledgers_verified", extra={"chains_checked": checked})
        return checked

    def _cached_material(self, material_id: UUID) -> tuple[Decimal, Decimal, Decimal]:
        material = self._session.get(Material, material_id)
        return (material.current_stock, material.average_cost, material.last_purchase_price)
