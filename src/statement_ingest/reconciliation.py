"""Running-balance reconciliation.

Checks that consecutive stated balances agree with the amounts between
them, and summarizes the statement as a whole (opening balance, movement
total, inferred vs. stated closing balance).

Reconciliation is diagnostic only: it never rejects a movement. It is a
pure function of its input, so running it twice on the same list yields the
same report.

Ordering: statements list the most recent movement first, so among
movements sharing a date the one appearing earlier in the file is the
chronologically later one. :func:`chronological_order` encodes that rule.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from decimal import Decimal

from statement_ingest.models import (
    BalanceDiscrepancy,
    DiscrepancySeverity,
    RawMovement,
    ReconciliationReport,
    StatementSummary,
)

logger = logging.getLogger(__name__)

# Differences up to this are rounding noise.
ROUNDING_TOLERANCE = Decimal("0.02")
# Differences up to this are minor; anything above is severe.
MINOR_LIMIT = Decimal("1.00")

_UNKNOWN_BALANCE = Decimal("0")


def chronological_order(movements: Sequence[RawMovement]) -> list[int]:
    """Return indices of *movements* sorted oldest first.

    Primary key is the date; ties are broken by reverse original index.
    """
    return sorted(range(len(movements)), key=lambda i: (movements[i].date, -i))


def is_chronological(movements: Sequence[RawMovement]) -> bool:
    """True if no movement is dated earlier than its predecessor."""
    return all(
        movements[i].date >= movements[i - 1].date for i in range(1, len(movements))
    )


def classify_difference(difference: Decimal) -> DiscrepancySeverity | None:
    """Map an absolute balance difference to a severity tier.

    Returns ``None`` for differences within the rounding tolerance.
    """
    if difference <= ROUNDING_TOLERANCE:
        return None
    if difference <= MINOR_LIMIT:
        return DiscrepancySeverity.MINOR
    return DiscrepancySeverity.SEVERE


def reconcile(movements: Sequence[RawMovement]) -> ReconciliationReport:
    """Check running balances across *movements*.

    *movements* must be in original file order; the chronological ordering
    is derived here so that same-day ties resolve correctly.

    For each adjacent pair in chronological order the expected balance is
    ``previous.balance + current.amount``. Pairs where either balance is
    exactly zero (the parsers' "unknown" default) are skipped.

    Args:
        movements: Movements in the order the source listed them.

    Returns:
        A :class:`ReconciliationReport` listing every discrepancy above the
        rounding tolerance and, when the oldest and newest balances are
        known, a whole-statement summary.
    """
    report = ReconciliationReport()
    if not movements:
        return report

    order = chronological_order(movements)

    for prev_idx, cur_idx in zip(order, order[1:]):
        previous = movements[prev_idx]
        current = movements[cur_idx]
        if previous.balance == _UNKNOWN_BALANCE or current.balance == _UNKNOWN_BALANCE:
            report.skipped += 1
            continue

        report.checked += 1
        expected = previous.balance + current.amount
        difference = abs(expected - current.balance)
        severity = classify_difference(difference)
        if severity is None:
            continue

        report.discrepancies.append(
            BalanceDiscrepancy(
                index=cur_idx,
                date=current.date,
                description=current.description,
                expected_balance=expected,
                stated_balance=current.balance,
                difference=difference,
                severity=severity,
            )
        )

    report.summary = _summarize(movements, order)

    if report.discrepancies:
        logger.debug(
            "Reconciliation found %d minor and %d severe balance mismatch(es)",
            len(report.minor),
            len(report.severe),
        )
    return report


def _summarize(movements: Sequence[RawMovement], order: list[int]) -> StatementSummary | None:
    """Whole-statement arithmetic, or ``None`` if an end balance is unknown."""
    oldest = movements[order[0]]
    newest = movements[order[-1]]
    if oldest.balance == _UNKNOWN_BALANCE or newest.balance == _UNKNOWN_BALANCE:
        return None

    opening = oldest.balance - oldest.amount
    total = sum((m.amount for m in movements), Decimal("0"))
    inferred_closing = opening + total
    return StatementSummary(
        opening_balance=opening,
        total_amount=total,
        inferred_closing_balance=inferred_closing,
        stated_closing_balance=newest.balance,
        difference=newest.balance - inferred_closing,
    )
