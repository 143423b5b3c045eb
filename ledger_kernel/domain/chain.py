"""
Chain -- the running-balance fold shared by both ledgers.

Responsibility:
    Given an opening balance and the signed deltas of a ledger key in
    ordering-key order, produce every entry's (before, after) snapshot, and
    check stored snapshots against that fold.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Used by
    MovementLedgerService, AccountLedgerService and the selectors.

Invariants enforced:
    For entries e[0..n) sorted by ordering key:
        before[0]   == opening
        after[i]    == before[i] + delta[i]
        before[i+1] == after[i]
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from ledger_kernel.domain.rounding import CHAIN_TOLERANCE


@dataclass(frozen=True)
class Snapshot:
    """Running balance around one entry."""

    before: Decimal
    after: Decimal


@dataclass(frozen=True)
class ChainEntry:
    """Stored view of one entry, for verification."""

    entry_id: object
    delta: Decimal
    before: Decimal
    after: Decimal


@dataclass(frozen=True)
class ChainViolation:
    """An entry whose stored snapshot disagrees with the replayed fold."""

    position: int
    entry_id: object
    expected_before: Decimal
    expected_after: Decimal
    actual_before: Decimal
    actual_after: Decimal


def fold_chain(opening: Decimal, deltas: Iterable[Decimal]) -> list[Snapshot]:
    """Replay deltas from ``opening`` and return one snapshot per delta."""
    snapshots: list[Snapshot] = []
    running = opening
    for delta in deltas:
        after = running + delta
        snapshots.append(Snapshot(before=running, after=after))
        running = after
    return snapshots


def closing_balance(opening: Decimal, deltas: Iterable[Decimal]) -> Decimal:
    total = opening
    for delta in deltas:
        total += delta
    return total


def find_chain_violations(
    opening: Decimal,
    entries: Sequence[ChainEntry],
    tolerance: Decimal = CHAIN_TOLERANCE,
) -> list[ChainViolation]:
    """
    Compare stored snapshots with the replayed fold.

    Entries must already be in ordering-key order.  Returns an empty list
    for a consistent chain.
    """
    violations: list[ChainViolation] = []
    expected = fold_chain(opening, (e.delta for e in entries))
    for position, (entry, snap) in enumerate(zip(entries, expected)):
        if (
            abs(entry.before - snap.before) > tolerance
            or abs(entry.after - snap.after) > tolerance
        ):
            violations.append(
                ChainViolation(
                    position=position,
                    entry_id=entry.entry_id,
                    expected_before=snap.before,
                    expected_after=snap.after,
                    actual_before=entry.before,
                    actual_after=entry.after,
                )
            )
    return violations
