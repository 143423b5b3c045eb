"""Tests for the pure running-balance fold shared by both ledgers."""

from decimal import Decimal

from ledger_kernel.domain.chain import (
    ChainEntry,
    closing_balance,
    find_chain_violations,
    fold_chain,
)

D = Decimal


class TestFoldChain:
    def test_empty(self):
        assert fold_chain(D("0"), []) == []

    def test_running_balance(self):
        snaps = fold_chain(D("0"), [D("10"), D("5"), D("-3")])

        assert [(s.before, s.after) for s in snaps] == [
            (D("0"), D("10")),
            (D("10"), D("15")),
            (D("15"), D("12")),
        ]

    def test_opening_balance_carried(self):
        snaps = fold_chain(D("100"), [D("-40")])

        assert snaps[0].before == D("100")
        assert snaps[0].after == D("60")

    def test_closing_balance_matches_last_snapshot(self):
        deltas = [D("1.5"), D("-0.25"), D("7")]
        assert closing_balance(D("2"), deltas) == fold_chain(D("2"), deltas)[-1].after


class TestFindChainViolations:
    def _entries(self, rows):
        return [ChainEntry(i, D(d), D(b), D(a)) for i, (d, b, a) in enumerate(rows)]

    def test_consistent_chain(self):
        entries = self._entries([("10", "0", "10"), ("-3", "10", "7")])
        assert find_chain_violations(D("0"), entries) == []

    def test_stale_snapshot_reported(self):
        # Jan 10 row still shows its pre-backdate snapshot
        entries = self._entries([("10", "0", "10"), ("5", "10", "15"), ("-3", "10", "7")])

        violations = find_chain_violations(D("0"), entries)

        assert len(violations) == 1
        assert violations[0].position == 2
        assert violations[0].expected_before == D("15")
        assert violations[0].actual_after == D("7")

    def test_tolerance(self):
        entries = self._entries([("1", "0", "1.0000000001")])

        assert find_chain_violations(D("0"), entries) == []
        assert len(find_chain_violations(D("0"), entries, tolerance=D("0"))) == 1
