"""Locale-aware date and amount normalization.

Pure functions that turn the institution's Spanish-locale strings into
canonical values:

- Dates: ``DD/MM/YYYY`` (primary). Tabular sources additionally use
  ``DD-MM-YYYY``, ``YYYY-MM-DD``, spreadsheet serial numbers, and native
  ``date``/``datetime`` cells; pass ``extended=True`` to accept those.
- Amounts: dot as thousands separator, comma as decimal separator
  (``-1.234,56`` -> ``Decimal("-1234.56")``). A bare ``1.500`` is fifteen
  hundred, never one and a half.

Every failure raises a subclass of
:class:`~statement_ingest.exceptions.NormalizationError`; the parsers decide
whether that becomes a warning or a hard failure.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from statement_ingest.exceptions import InvalidAmountError, InvalidDateError

CENT = Decimal("0.01")

# Day zero of the 1900 spreadsheet date system (accounts for the fictitious
# 1900-02-29).
_SPREADSHEET_EPOCH = date(1899, 12, 30)

_DMY_SLASH_RE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
_DMY_DASH_RE = re.compile(r"(\d{1,2})-(\d{1,2})-(\d{4})")
_ISO_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})(?:[ T][\d:.]*)?")

_CURRENCY_RE = re.compile(r"EUR|€", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")
_NUMERIC_BODY_RE = re.compile(r"[\d.,]+")

_COMMA_DECIMAL_RE = re.compile(r"\d+(?:\.\d{3})*,\d+")
_DOT_THOUSANDS_RE = re.compile(r"\d{1,3}(?:\.\d{3})+")
_PLAIN_DECIMAL_RE = re.compile(r"\d+(?:\.\d+)?")
_US_GROUPED_RE = re.compile(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?")


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def parse_locale_date(value: object, *, extended: bool = False) -> date:
    """Convert a locale date value to a :class:`datetime.date`.

    Args:
        value: The raw value. Strings are always accepted in
            ``DD/MM/YYYY`` form.
        extended: Also accept ``DD-MM-YYYY``, ``YYYY-MM-DD``, spreadsheet
            serial numbers, and native ``date``/``datetime`` objects.

    Returns:
        The parsed date.

    Raises:
        InvalidDateError: If the value is not in an accepted form or names
            a day that does not exist (``31/02/2023``). Invalid days are
            never clamped.
    """
    if extended:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return excel_serial_to_date(value)

    if not isinstance(value, str):
        raise InvalidDateError(value, "unsupported date value")

    text = value.strip()
    slash = _DMY_SLASH_RE.fullmatch(text)
    dash = _DMY_DASH_RE.fullmatch(text) if extended else None
    iso = _ISO_RE.fullmatch(text) if extended else None
    if slash:
        day, month, year = slash.groups()
    elif dash:
        day, month, year = dash.groups()
    elif iso:
        year, month, day = iso.groups()
    else:
        raise InvalidDateError(value, "unrecognised date format")

    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        raise InvalidDateError(value, "invalid calendar date") from None


def excel_serial_to_date(serial: float) -> date:
    """Convert a spreadsheet serial day number to a date.

    Fractional parts (time of day) are discarded.

    Raises:
        InvalidDateError: If *serial* is not a positive finite number or
            falls outside the representable date range.
    """
    if not math.isfinite(serial) or serial < 1:
        raise InvalidDateError(serial, "invalid spreadsheet serial date")
    try:
        return _SPREADSHEET_EPOCH + timedelta(days=int(serial))
    except OverflowError:
        raise InvalidDateError(serial, "spreadsheet serial date out of range") from None


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------


def parse_locale_amount(value: object) -> Decimal:
    """Convert a locale amount value to a signed :class:`~decimal.Decimal`.

    Native numbers (spreadsheet cells) are accepted as-is; floats are
    rounded to cents to drop binary representation noise.

    For strings, the interpretation order is:

    1. Comma decimal with optional dot grouping: ``-1.234,56``.
    2. Dot grouping with no comma: ``1.500`` -> ``1500``. Groups after the
       first must be exactly three digits.
    3. Plain dot decimal: ``1234.56``.
    4. American comma grouping: ``1,234.56``. Only reached when no
       comma-decimal reading exists.

    The sign comes from a leading ``-``. An explicit marker elsewhere in the
    string (a trailing ``-`` or ``+``, or wrapping parentheses) overrides it.

    Raises:
        InvalidAmountError: On empty input, non-numeric residue, or a
            non-finite number.
    """
    if isinstance(value, bool):
        raise InvalidAmountError(value, "not a number")
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidAmountError(value, "amount is not finite")
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidAmountError(value, "amount is not finite")
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    if not isinstance(value, str):
        raise InvalidAmountError(value, "unsupported amount value")

    text = value.replace('"', "")
    text = _CURRENCY_RE.sub("", text)
    text = _WHITESPACE_RE.sub("", text)
    if not text:
        raise InvalidAmountError(value, "empty amount")

    marker: str | None = None
    if text.startswith("(") and text.endswith(")"):
        marker = "-"
        text = text[1:-1]
    elif text[-1] in "+-" and len(text) > 1:
        marker = text[-1]
        text = text[:-1]

    leading = ""
    if text[:1] in ("+", "-"):
        leading = text[0]
        text = text[1:]

    if not _NUMERIC_BODY_RE.fullmatch(text):
        raise InvalidAmountError(value, "non-numeric amount")

    magnitude = _parse_magnitude(text, value)
    negative = marker == "-" if marker is not None else leading == "-"
    return -magnitude if negative else magnitude


def _parse_magnitude(body: str, original: object) -> Decimal:
    """Interpret an unsigned run of digits, dots and commas."""
    if _COMMA_DECIMAL_RE.fullmatch(body):
        normalized = body.replace(".", "").replace(",", ".")
    elif _DOT_THOUSANDS_RE.fullmatch(body):
        normalized = body.replace(".", "")
    elif _PLAIN_DECIMAL_RE.fullmatch(body):
        normalized = body
    elif _US_GROUPED_RE.fullmatch(body):
        normalized = body.replace(",", "")
    else:
        raise InvalidAmountError(original, "non-numeric amount")

    try:
        return Decimal(normalized)
    except InvalidOperation:
        raise InvalidAmountError(original, "non-numeric amount") from None


def round_cents(value: Decimal) -> Decimal:
    """Round *value* half-up to two decimal places."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
