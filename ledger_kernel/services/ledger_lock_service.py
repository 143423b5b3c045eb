"""
LedgerLockService -- per-key mutual exclusion for ledger writers.

Responsibility:
    Serializes mutations of the same ledger key (a (material, warehouse)
    stock chain or an account chain) for the whole retract + write +
    recompute cycle, while mutations of different keys run in parallel.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Used by RecalculationOrchestrator and ReconciliationService.

Invariants enforced:
    - Two layers of exclusion per key:
        1. an in-process lock from KeyLockRegistry (bounded wait), and
        2. ``SELECT ... FOR UPDATE`` on the key's LedgerLock row, which
           serializes writers in other processes on PostgreSQL.
    - Keys are always acquired in sorted lock-name order, so two writers
      touching overlapping key sets cannot deadlock.
    - Each completed mutation bumps the key's LedgerLock.version with a
      compare-and-set against the version read at acquisition.

Failure modes:
    - ConcurrentMutationConflictError when the in-process lock is not
      obtained within the timeout, or when the version compare-and-set
      finds that another writer committed in between.  Retryable.
"""

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.keys import LedgerKey, sorted_keys
from ledger_kernel.exceptions import ConcurrentMutationConflictError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.ledger_control import LedgerLock

logger = get_logger("services.ledger_lock")


class KeyLockRegistry:
    """
    Process-wide registry of named locks.

    Contract:
        ``acquire(name, timeout)`` returns True once the caller owns the
        lock for ``name`` and False if the timeout elapsed first.
        A timeout <= 0 means "try once, do not wait".
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = threading.Lock()
                self._locks[name] = lock
            return lock

    def acquire(self, name: str, timeout: float) -> bool:
        lock = self._lock_for(name)
        if timeout <= 0:
            return lock.acquire(blocking=False)
        return lock.acquire(timeout=timeout)

    def release(self, name: str) -> None:
        self._lock_for(name).release()

    def is_locked(self, name: str) -> bool:
        return self._lock_for(name).locked()


_DEFAULT_REGISTRY = KeyLockRegistry()


class LedgerLockService:
    """
    Holds ledger key locks for one unit of work.

    Contract:
        One instance per transaction.  ``hold(keys)`` acquires every key in
        sorted order and on exit releases every in-process lock the instance
        holds, including keys acquired inside the block.  Before the caller
        commits it must call ``bump_versions()``.

    Guarantees:
        - Re-entrant: acquiring a key this instance already holds is a no-op.
        - On a failed acquisition every lock taken so far is released.

    Non-goals:
        - Does NOT commit.  Row locks end with the caller's transaction.
    """

    def __init__(
        self,
        session: Session,
        timeout_seconds: float = 10.0,
        registry: KeyLockRegistry | None = None,
    ):
        self.session = session
        self.timeout_seconds = timeout_seconds
        self._registry = registry or _DEFAULT_REGISTRY
        # lock name -> version read under row lock
        self._held: dict[str, int] = {}
        self._order: list[str] = []

    @property
    def held(self) -> tuple[str, ...]:
        return tuple(self._order)

    def acquire(self, keys: Iterable[LedgerKey]) -> list[str]:
        """
        Acquire every key not yet held, in sorted order.

        Raises:
            ConcurrentMutationConflictError: If any key cannot be obtained.
        """
        acquired: list[str] = []
        try:
            for key in sorted_keys(keys):
                name = key.lock_name
                if name in self._held:
                    continue
                if not self._registry.acquire(name, self.timeout_seconds):
                    logger.warning(
                        "ledger_lock_timeout",
                        extra={
                            "ledger_key": name,
                            "timeout_seconds": self.timeout_seconds,
                        },
                    )
                    raise ConcurrentMutationConflictError(
                        name, f"lock not acquired within {self.timeout_seconds}s"
                    )
                acquired.append(name)
                self._order.append(name)
                self._held[name] = 0
                self._held[name] = self._lock_row(name).version
        except BaseException:
            for name in reversed(acquired):
                self._forget(name)
            raise

        if acquired:
            logger.debug("ledger_locks_acquired", extra={"ledger_keys": acquired})
        return acquired

    def _lock_row(self, name: str) -> LedgerLock:
        row = self._select_for_update(name)
        if row is not None:
            return row
        savepoint = self.session.begin_nested()
        try:
            row = LedgerLock(name=name, version=0)
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
            return row
        except IntegrityError:
            savepoint.rollback()
            row = self._select_for_update(name)
            if row is None:
                raise
            return row

    def _select_for_update(self, name: str) -> LedgerLock | None:
        return self.session.execute(
            select(LedgerLock)
            .where(LedgerLock.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def bump_versions(self) -> None:
        """
        Compare-and-set every held key's version to version + 1.

        Raises:
            ConcurrentMutationConflictError: If a row's version moved since
                it was read, meaning another writer got in between.
        """
        for name in self._order:
            seen = self._held[name]
            result = self.session.execute(
                update(LedgerLock)
                .where(LedgerLock.name == name, LedgerLock.version == seen)
                .values(version=seen + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrentMutationConflictError(
                    name, f"version changed from {seen}"
                )
            self._held[name] = seen + 1
        self.session.flush()

    def _forget(self, name: str) -> None:
        if name not in self._held:
            return
        del self._held[name]
        self._order.remove(name)
        self._registry.release(name)

    def release_all(self) -> None:
        """Release every in-process lock held by this instance."""
        for name in reversed(list(self._order)):
            self._forget(name)

    @contextmanager
    def hold(self, keys: Iterable[LedgerKey]) -> Iterator["LedgerLockService"]:
        self.acquire(keys)
        try:
            yield self
        finally:
            self.release_all()
