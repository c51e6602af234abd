"""Duplicate detection against movements that are already stored.

The validator only looks for repeats inside one batch. Before a batch is
persisted, callers usually also want to know which movements were imported
before, e.g. from an overlapping statement download. The stored movements
are supplied by the caller; this module never touches storage.

Scoring of a new movement against the stored ones:

    100  same date, amount and description
     95  same date and amount, description word similarity above 0.8
     70  same date and amount, description word similarity above 0.5
     60  same amount within 3 days, description word similarity above 0.7
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from statement_ingest.models import RawMovement
from statement_ingest.normalizer import round_cents

NEARBY_DAYS = 3
AMOUNT_TOLERANCE = Decimal("0.01")

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")
_REFERENCE_NUMBER_RE = re.compile(r"\b\d{6,}\b")


@dataclass
class DuplicateMatch:
    """Verdict for one new movement.

    Attributes:
        is_duplicate: Whether the movement looks already imported.
        confidence: 0-100 certainty of the verdict.
        reason: Short human-readable explanation.
        matched: The stored (or earlier in-batch) movement it matched.
    """

    is_duplicate: bool
    confidence: int
    reason: str
    matched: RawMovement | None = None


NOT_DUPLICATE = DuplicateMatch(is_duplicate=False, confidence=0, reason="no duplicate found")


def description_similarity(first: str, second: str) -> float:
    """Jaccard similarity of the two descriptions' word sets, in ``[0, 1]``."""
    words_a = _normalize_words(first)
    words_b = _normalize_words(second)
    if words_a == words_b:
        return 1.0
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def detect_duplicate(movement: RawMovement, existing: list[RawMovement]) -> DuplicateMatch:
    """Compare *movement* with the stored movements and score the best hit."""
    for stored in existing:
        if _identical(movement, stored):
            return DuplicateMatch(True, 100, "same date, amount and description", stored)

    same_day = [
        stored
        for stored in existing
        if stored.date == movement.date and stored.amount == movement.amount
    ]
    if same_day:
        best = same_day[0]
        similarity = description_similarity(movement.description, best.description)
        if similarity > 0.8:
            return DuplicateMatch(True, 95, "same date and amount, similar description", best)
        if similarity > 0.5:
            return DuplicateMatch(
                True, 70, "same date and amount, partially similar description", best
            )

    window = timedelta(days=NEARBY_DAYS)
    for stored in existing:
        if (
            abs(stored.date - movement.date) <= window
            and abs(stored.amount - movement.amount) < AMOUNT_TOLERANCE
            and description_similarity(movement.description, stored.description) > 0.7
        ):
            return DuplicateMatch(True, 60, "similar movement on a nearby date", stored)

    return NOT_DUPLICATE


def detect_batch_duplicates(
    movements: list[RawMovement],
    existing: list[RawMovement],
) -> dict[int, DuplicateMatch]:
    """Score a whole batch.

    Returns:
        Batch index -> match, for duplicates only. Besides hits against
        *existing*, a movement identical to an earlier one in the same batch
        is reported at confidence 100.
    """
    results: dict[int, DuplicateMatch] = {}
    for idx, movement in enumerate(movements):
        match = detect_duplicate(movement, existing)
        if match.is_duplicate:
            results[idx] = match

    for i, first in enumerate(movements):
        if i in results:
            continue
        for j in range(i + 1, len(movements)):
            if j not in results and _identical(first, movements[j]):
                results[j] = DuplicateMatch(True, 100, "repeated within the imported batch", first)

    return results


def filter_duplicates(
    movements: list[RawMovement],
    existing: list[RawMovement],
) -> tuple[list[RawMovement], list[RawMovement]]:
    """Split *movements* into ``(clean, duplicates)``, keeping input order."""
    flagged = detect_batch_duplicates(movements, existing)
    clean = [m for idx, m in enumerate(movements) if idx not in flagged]
    duplicates = [m for idx, m in enumerate(movements) if idx in flagged]
    return clean, duplicates


def movement_fingerprint(movement: RawMovement, account_id: str) -> str:
    """Generate a deterministic storage key for a movement.

    The key is a 16-character hex string derived from a SHA-256 hash of the
    pipe-delimited ISO date, amount rounded to cents, normalized description
    and account id. Long reference numbers (six or more digits) are dropped
    from the description and only its first 50 characters are used, so the
    same movement exported twice with a different transaction reference
    still gets the same key.

    Args:
        movement: The movement to fingerprint.
        account_id: Identifier of the account the movement belongs to.

    Returns:
        A 16-character lowercase hex string.
    """
    description = _WHITESPACE_RE.sub(" ", movement.description.strip().lower())
    description = _REFERENCE_NUMBER_RE.sub("", description)[:50]
    amount = round_cents(Decimal(movement.amount))
    raw = f"{movement.date.isoformat()}|{amount}|{description}|{account_id}"
    return hashlib.sha256(raw.encode()).hexdigest()[:16]


def _identical(first: RawMovement, second: RawMovement) -> bool:
    return (
        first.date == second.date
        and first.amount == second.amount
        and first.description == second.description
    )


def _normalize_words(text: str) -> set[str]:
    normalized = _PUNCTUATION_RE.sub("", text.lower())
    normalized = _WHITESPACE_RE.sub(" ", normalized).strip()
    return set(normalized.split(" ")) if normalized else set()
