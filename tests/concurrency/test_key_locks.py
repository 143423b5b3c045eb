"""
Concurrency tests for per-key locking.

The registry tests run everywhere.  The orchestrator race needs PostgreSQL:
SQLite serializes the whole database, so it cannot show that different
keys proceed in parallel.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy import text

from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import (
    AccountKind,
    Counterparty,
    DocumentLine,
    DocumentMutation,
    DocumentType,
    MutationKind,
    MutationStatus,
)
from ledger_kernel.domain.keys import StockLedgerKey
from ledger_kernel.models.material import Material, Warehouse
from ledger_kernel.models.unit import Unit
from ledger_kernel.selectors.stock_selector import StockSelector
from ledger_kernel.services.ledger_lock_service import KeyLockRegistry
from ledger_services.recalculation_orchestrator import RecalculationOrchestrator
from tests.support import requires_postgres, utc


class TestRegistryThreads:
    def test_same_name_is_mutually_exclusive(self):
        registry = KeyLockRegistry()
        inside = 0
        peak = 0
        guard = threading.Lock()

        def critical():
            nonlocal inside, peak
            assert registry.acquire("stock:a:b", 5)
            try:
                with guard:
                    inside += 1
                    peak = max(peak, inside)
                time.sleep(0.005)
                with guard:
                    inside -= 1
            finally:
                registry.release("stock:a:b")

        with ThreadPoolExecutor(max_workers=8) as pool:
            for future in [pool.submit(critical) for _ in range(32)]:
                future.result()

        assert peak == 1

    def test_different_names_do_not_block(self):
        registry = KeyLockRegistry()
        registry.acquire("stock:a:-", 1)
        acquired = []

        worker = threading.Thread(target=lambda: acquired.append(registry.acquire("stock:b:-", 1)))
        worker.start()
        worker.join(timeout=5)

        assert acquired == [True]

    def test_waiter_times_out(self):
        registry = KeyLockRegistry()
        registry.acquire("account:x", 1)
        results = []

        worker = threading.Thread(target=lambda: results.append(registry.acquire("account:x", 0.05)))
        worker.start()
        worker.join(timeout=5)

        assert results == [False]

    def test_waiter_proceeds_after_release(self):
        registry = KeyLockRegistry()
        registry.acquire("account:x", 1)
        results = []

        worker = threading.Thread(target=lambda: results.append(registry.acquire("account:x", 5)))
        worker.start()
        time.sleep(0.02)
        registry.release("account:x")
        worker.join(timeout=5)

        assert results == [True]


@pytest.fixture
def committed_seed(session_factory):
    """Reference data committed for real, visible to every connection."""
    with session_factory() as s:
        kg = Unit(code="kg", name="Kilogram", conversion_factor=Decimal("1"))
        s.add(kg)
        s.flush()
        main = Warehouse(code="MAIN", name="Main depot")
        flour = Material(code="FLOUR", name="Flour", purchase_unit_id=kg.id, consumption_unit_id=kg.id)
        sugar = Material(code="SUGAR", name="Sugar", purchase_unit_id=kg.id, consumption_unit_id=kg.id)
        s.add_all([main, flour, sugar])
        s.commit()
        return {"warehouse": main.id, "FLOUR": flour.id, "SUGAR": sugar.id}


def _purchase(seed, document_id, material, day, supplier):
    return DocumentMutation(
        document_id=document_id,
        kind=MutationKind.CREATE,
        document_type=DocumentType.PURCHASE,
        document_date=utc(2024, 1, day),
        lines=(DocumentLine(seed[material], seed["warehouse"], Decimal("1"), Decimal("10")),),
        counterparty=Counterparty(supplier, AccountKind.SUPPLIER, supplier),
    )


@pytest.mark.postgres
@requires_postgres
class TestConcurrentMutations:
    def test_parallel_writers_on_one_key_keep_the_chain_linked(
        self, session_factory, committed_seed, ledger_config
    ):
        registry = KeyLockRegistry()
        documents = [(f"INV-{i}", "FLOUR", (i % 28) + 1, f"SUP-{i % 3}") for i in range(20)]

        def apply(document):
            session = session_factory()
            orchestrator = RecalculationOrchestrator(
                session,
                clock=DeterministicClock(),
                config=ledger_config,
                lock_registry=registry,
            )
            return orchestrator.apply_document_mutation(_purchase(committed_seed, *document))

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(apply, documents))

        assert all(r.is_success for r in results)
        reader = session_factory()
        key = StockLedgerKey(committed_seed["FLOUR"], committed_seed["warehouse"])
        selector = StockSelector(reader)
        assert selector.verify_chain(key) == []
        assert selector.current_stock(committed_seed["FLOUR"]) == Decimal("20")
        assert reader.get(Material, committed_seed["FLOUR"]).current_stock == Decimal("20")

    def test_disjoint_keys_do_not_wait_on_each_other(
        self, session_factory, committed_seed, ledger_config
    ):
        registry = KeyLockRegistry()
        holder = session_factory()
        first = RecalculationOrchestrator(
            holder,
            clock=DeterministicClock(),
            config=ledger_config,
            lock_registry=registry,
            auto_commit=False,
        )
        assert first.apply_document_mutation(
            _purchase(committed_seed, "INV-A", "FLOUR", 1, "SUP-A")
        ).is_success

        # holder's transaction is still open and keeps its row locks
        other = session_factory()
        other.execute(text("SET LOCAL lock_timeout = '2s'"))
        second = RecalculationOrchestrator(
            other,
            clock=DeterministicClock(),
            config=ledger_config,
            lock_registry=registry,
        )
        result = second.apply_document_mutation(
            _purchase(committed_seed, "INV-B", "SUGAR", 1, "SUP-B")
        )

        assert result.status is MutationStatus.APPLIED
        assert result.attempts == 1
        holder.commit()
        assert StockSelector(session_factory()).current_stock(committed_seed["FLOUR"]) == Decimal("1")

    def test_parallel_creates_of_one_document_apply_once(
        self, session_factory, committed_seed, ledger_config
    ):
        registry = KeyLockRegistry()

        def apply(_):
            orchestrator = RecalculationOrchestrator(
                session_factory(),
                clock=DeterministicClock(),
                config=ledger_config,
                lock_registry=registry,
            )
            return orchestrator.apply_document_mutation(
                _purchase(committed_seed, "INV-1", "FLOUR", 3, "SUP-1")
            )

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(apply, range(4)))

        statuses = sorted(r.status.value for r in results)
        assert statuses.count(MutationStatus.APPLIED.value) == 1
        assert statuses.count(MutationStatus.REJECTED_INVALID.value) == 3
        assert StockSelector(session_factory()).current_stock(committed_seed["FLOUR"]) == Decimal("1")
