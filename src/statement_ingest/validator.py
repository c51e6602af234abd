"""Per-record validation of parsed movements.

Applies the same acceptance rules regardless of which parser produced the
movements: a date window, description shape, and numeric bounds. Failing
movements are excluded with every reason found; nothing is raised. Also
detects duplicates within the batch and, optionally, reports running-balance
mismatches among the valid movements.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal

from statement_ingest.exceptions import NormalizationError
from statement_ingest.models import InvalidMovement, ParserConfig, RawMovement, ValidationResult
from statement_ingest.normalizer import parse_locale_date, round_cents
from statement_ingest.reconciliation import reconcile

logger = logging.getLogger(__name__)

MIN_DESCRIPTION_LENGTH = 3
MAX_DESCRIPTION_LENGTH = 500
FORBIDDEN_DESCRIPTION_CHARS = re.compile(r"[<>{}]")

AMOUNT_LIMIT = Decimal("1000000")
BALANCE_MIN = Decimal("-1000000")
BALANCE_MAX = Decimal("10000000")
MAX_DECIMALS = 2

_LOCALE_DATE_RE = re.compile(r"\d{2}/\d{2}/\d{4}")
_LOCALE_AMOUNT_RE = re.compile(r"-?(?:\d{1,3}(?:\.\d{3})+|\d+),\d{2}")
_AMOUNT_CANDIDATE_RE = re.compile(r"-?[\d.]+,\d{2}")
_WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate(
    movements: list[RawMovement],
    config: ParserConfig | None = None,
) -> ValidationResult:
    """Validate each movement and report cross-record findings.

    Args:
        movements: Movements from any parser, in source order.
        config: Date window and duplicate/balance switches. Defaults to
            ``2020-01-01`` through tomorrow, duplicates reported but kept,
            balances checked.

    Returns:
        A :class:`ValidationResult`. ``valid`` is False when at least one
        movement was rejected; duplicates and balance mismatches are only
        ever warnings.
    """
    config = config or ParserConfig()
    min_date = config.min_date
    max_date = config.max_date or date.today() + timedelta(days=1)

    result = ValidationResult()

    for idx, movement in enumerate(movements):
        reasons = check_movement(movement, min_date, max_date)
        if reasons:
            result.invalid_movements.append(InvalidMovement(movement=movement, errors=reasons))
            result.errors.extend(f"movement {idx + 1}: {reason}" for reason in reasons)
        else:
            result.valid_movements.append(movement)

    result.valid = not result.invalid_movements

    if not config.ignore_duplicates:
        result.duplicates = find_duplicates(movements)
        if result.duplicates:
            result.warnings.append(f"found {len(result.duplicates)} duplicate movement(s)")
            if config.exclude_duplicates:
                result.valid_movements = drop_repeats(result.valid_movements)

    if config.validate_balances and len(result.valid_movements) > 1:
        result.warnings.extend(reconcile(result.valid_movements).messages())

    if result.invalid_movements:
        logger.info(
            "Validation rejected %d of %d movement(s)",
            len(result.invalid_movements),
            len(movements),
        )
    return result


def validate_and_clean(
    movements: list[RawMovement],
    config: ParserConfig | None = None,
) -> ValidationResult:
    """Validate, then tidy the movements that passed.

    Descriptions get their whitespace normalized and amounts/balances are
    rounded half-up to cents. The input movements are not modified; the
    returned ``valid_movements`` are new objects.
    """
    result = validate(movements, config)
    result.valid_movements = [clean_movement(m) for m in result.valid_movements]
    return result


def clean_movement(movement: RawMovement) -> RawMovement:
    """Return a copy of *movement* with tidy description and cent amounts."""
    return replace(
        movement,
        description=normalize_description(movement.description),
        amount=round_cents(Decimal(movement.amount)),
        balance=round_cents(Decimal(movement.balance)),
    )


def check_movement(movement: RawMovement, min_date: date, max_date: date) -> list[str]:
    """Return every reason *movement* fails validation (empty if valid)."""
    reasons: list[str] = []
    for check in (
        _check_date(movement.date, min_date, max_date),
        _check_description(movement.description),
        _check_number("amount", movement.amount, -AMOUNT_LIMIT, AMOUNT_LIMIT),
        _check_number("balance", movement.balance, BALANCE_MIN, BALANCE_MAX),
    ):
        if check:
            reasons.append(check)
    return reasons


# ---------------------------------------------------------------------------
# Duplicates
# ---------------------------------------------------------------------------


def duplicate_key(movement: RawMovement) -> tuple[object, object, str]:
    """Identity of a movement for duplicate detection."""
    amount = movement.amount
    if isinstance(amount, Decimal) and amount.is_finite():
        amount = amount.normalize()
    return movement.date, amount, normalize_description(movement.description or "").lower()


def find_duplicates(movements: list[RawMovement]) -> list[RawMovement]:
    """Return every later occurrence of an already-seen movement."""
    seen: set[tuple[object, object, str]] = set()
    duplicates: list[RawMovement] = []
    for movement in movements:
        key = duplicate_key(movement)
        if key in seen:
            duplicates.append(movement)
        else:
            seen.add(key)
    return duplicates


def drop_repeats(movements: list[RawMovement]) -> list[RawMovement]:
    """Keep the first occurrence of each duplicate key, in order."""
    seen: set[tuple[object, object, str]] = set()
    kept: list[RawMovement] = []
    for movement in movements:
        key = duplicate_key(movement)
        if key not in seen:
            seen.add(key)
            kept.append(movement)
    return kept


# ---------------------------------------------------------------------------
# String helpers
# ---------------------------------------------------------------------------


def normalize_description(description: str) -> str:
    """Trim and collapse internal whitespace runs to single spaces."""
    return _WHITESPACE_RE.sub(" ", description).strip()


def is_locale_date_string(value: str) -> bool:
    """True for a calendar-valid ``DD/MM/YYYY`` string."""
    if not _LOCALE_DATE_RE.fullmatch(value.strip()):
        return False
    try:
        parse_locale_date(value)
    except NormalizationError:
        return False
    return True


def is_locale_amount_string(value: str) -> bool:
    """True for an amount shaped like ``-1.234,56``."""
    return bool(_LOCALE_AMOUNT_RE.fullmatch(value.strip()))


def looks_like_movement_line(line: str) -> bool:
    """True if *line* holds a date followed somewhere by a locale amount."""
    date_match = _LOCALE_DATE_RE.search(line)
    if date_match is None:
        return False
    return any(
        is_locale_amount_string(candidate)
        for candidate in _AMOUNT_CANDIDATE_RE.findall(line, date_match.end())
    )


# ---------------------------------------------------------------------------
# Field checks
# ---------------------------------------------------------------------------


def _check_date(value: object, min_date: date, max_date: date) -> str | None:
    if isinstance(value, datetime):
        value = value.date()
    elif isinstance(value, str):
        try:
            value = parse_locale_date(value, extended=True)
        except NormalizationError:
            return f"invalid date: {value!r}"
    if not isinstance(value, date):
        return f"invalid date: {value!r}"

    if value < min_date:
        return f"date {value.isoformat()} is before the earliest allowed date {min_date.isoformat()}"
    if value > max_date:
        return f"date {value.isoformat()} is after the latest allowed date {max_date.isoformat()}"
    return None


def _check_description(value: object) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return "description must not be empty"
    if len(value.strip()) < MIN_DESCRIPTION_LENGTH:
        return f"description is too short (minimum {MIN_DESCRIPTION_LENGTH} characters)"
    if len(value) > MAX_DESCRIPTION_LENGTH:
        return f"description is too long (maximum {MAX_DESCRIPTION_LENGTH} characters)"
    if FORBIDDEN_DESCRIPTION_CHARS.search(value):
        return "description contains forbidden characters (< > { })"
    return None


def _check_number(field: str, value: object, low: Decimal, high: Decimal) -> str | None:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return f"invalid {field}: {value!r}"
    if isinstance(value, float):
        if not math.isfinite(value):
            return f"{field} must be a finite number"
        value = Decimal(str(value))
    elif isinstance(value, Decimal) and not value.is_finite():
        return f"{field} must be a finite number"

    number = Decimal(value)
    if number < low or number > high:
        return f"{field} out of range: {number}"
    if -number.as_tuple().exponent > MAX_DECIMALS and number != round_cents(number):
        return f"{field} has more than {MAX_DECIMALS} decimal places: {number}"
    return None
