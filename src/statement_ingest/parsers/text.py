"""Plain-text statement parser.

Input is a single text blob, typically a statement pasted from the bank's
web view. Typical line shapes::

    01/12/2023 MERCADONA COMPRA SUPERMERCADO -45,67 EUR 1.234,56 EUR
    01/12/2023 MERCADONA COMPRA SUPERMERCADO -45,67 1.234,56
    01/12/2023<TAB>MERCADONA<TAB>-45,67<TAB>1.234,56
    "01/12/2023";"MERCADONA";"-45,67";"1.234,56"

Algorithm:

1. Normalize line endings and whitespace, collapse blank-line runs.
2. Check for institution markers, falling back to a structural check (a
   date and an amount anywhere). Neither means zero movements plus a
   diagnostic.
3. Try the named line patterns in order against the whole text; the first
   pattern with at least one match is the active format.
4. Otherwise fall back to a per-line heuristic: a date token followed by
   two amount tokens (amount, then balance).
5. Malformed records are skipped with a warning, or escalated in strict
   mode.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass

from statement_ingest.exceptions import NormalizationError
from statement_ingest.models import (
    DetectedFormat,
    ParseMetadata,
    ParseResult,
    ParserConfig,
    RawMovement,
)
from statement_ingest.normalizer import parse_locale_amount, parse_locale_date
from statement_ingest.parsers.common import clean_description, fill_date_range, record_failure
from statement_ingest.validator import is_locale_date_string, looks_like_movement_line

INSTITUTION_MARKERS = [
    "ING DIRECT",
    "ing.es",
    "Cuenta NÓMINA",
    "Cuenta NARANJA",
    "Saldo inicial",
    "Saldo final",
]

GENERIC_PATTERN_NAME = "generic"

_DATE = r"\d{2}/\d{2}/\d{4}"
_AMOUNT = r"-?\d+(?:\.\d{3})*,\d{2}"
_CURRENCY = r"(?:EUR|€)"

DATE_TOKEN_RE = re.compile(_DATE)
AMOUNT_TOKEN_RE = re.compile(_AMOUNT)
_PERIOD_RE = re.compile(
    rf"(?:del|desde)\s+({_DATE})\s+(?:al|hasta)\s+({_DATE})", re.IGNORECASE
)


@dataclass(frozen=True)
class LinePattern:
    """A named whole-line regular expression.

    The regex must define the named groups ``date``, ``description``,
    ``amount`` and ``balance``; it may define ``category`` for an
    institution category column.
    """

    name: str
    regex: re.Pattern[str]


LINE_PATTERNS = [
    LinePattern(
        "full_with_currency",
        re.compile(
            rf"^(?P<date>{_DATE})[ \t]+(?P<description>.+?)[ \t]+"
            rf"(?P<amount>{_AMOUNT})[ \t]*{_CURRENCY}[ \t]+"
            rf"(?P<balance>{_AMOUNT})[ \t]*{_CURRENCY}"
            rf"(?:[ \t]+(?P<category>\S.*?))?[ \t]*$",
            re.MULTILINE,
        ),
    ),
    LinePattern(
        "no_currency",
        re.compile(
            rf"^(?P<date>{_DATE})[ \t]+(?P<description>.+?)[ \t]+"
            rf"(?P<amount>{_AMOUNT})[ \t]+(?P<balance>{_AMOUNT})[ \t]*$",
            re.MULTILINE,
        ),
    ),
    LinePattern(
        "tab_delimited",
        re.compile(
            rf"^(?P<date>{_DATE})\t(?P<description>[^\t\n]+?)\t"
            rf"(?P<amount>{_AMOUNT})\t(?P<balance>{_AMOUNT})",
            re.MULTILINE,
        ),
    ),
    LinePattern(
        "quoted_csv",
        re.compile(
            rf'^"?(?P<date>{_DATE})"?[,;]"?(?P<description>.+?)"?[,;]'
            rf'"?(?P<amount>{_AMOUNT})"?[,;]"?(?P<balance>{_AMOUNT})"?',
            re.MULTILINE,
        ),
    ),
]

# Keyword -> (category, subcategory) used to fill ``source_category`` when
# the text carries no category column of its own.
SOURCE_CATEGORY_KEYWORDS = [
    (re.compile(r"BIZUM\s+(?:ENVIADO|RECIBIDO)", re.IGNORECASE), "Bizum", "Transferencia"),
    (re.compile(r"MERCADONA", re.IGNORECASE), "Alimentación", "Supermercado"),
    (re.compile(r"\b(?:REPSOL|BP|CEPSA|SHELL)\b", re.IGNORECASE), "Transporte", "Gasolina"),
    (re.compile(r"AMAZON", re.IGNORECASE), "Compras Online", "Amazon"),
    (re.compile(r"RETIRADA\s+CAJERO", re.IGNORECASE), "Efectivo", "Cajero"),
    (re.compile(r"TRANSFERENCIA", re.IGNORECASE), "Transferencias", "Transferencia"),
    (re.compile(r"RECIBO", re.IGNORECASE), "Gastos Fijos", "Recibo"),
    (re.compile(r"NOMINA|NÓMINA", re.IGNORECASE), "Ingresos", "Nómina"),
]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse(text: str, config: ParserConfig | None = None) -> ParseResult:
    """Parse a pasted statement into movements.

    Args:
        text: The statement text.
        config: Parser configuration. Defaults to tolerant mode.

    Returns:
        A :class:`ParseResult` with ``detected_format`` ``plain-text``.
        Unrecognisable text yields zero movements and a diagnostic.

    Raises:
        MalformedRecordError: Only in strict mode, on the first malformed
            line.
    """
    config = config or ParserConfig()
    cleaned = clean_text(text or "")

    if not looks_like_statement(cleaned):
        return ParseResult(
            movements=[],
            detected_format=DetectedFormat.PLAIN_TEXT,
            errors=[
                "text not recognised as a bank statement "
                "(no institution markers and no date/amount data)"
            ],
        )

    return parse_statement_lines(cleaned, config, DetectedFormat.PLAIN_TEXT)


def clean_text(text: str) -> str:
    """Normalize line endings and whitespace, collapse blank-line runs."""
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\xa0", " ")
    lines = [line.rstrip() for line in text.strip().split("\n")]
    return re.sub(r"\n{2,}", "\n", "\n".join(lines))


def has_institution_markers(text: str, markers: list[str] | None = None) -> bool:
    """True if any of *markers* occurs in *text*, case-insensitively."""
    haystack = text.casefold()
    return any(marker.casefold() in haystack for marker in markers or INSTITUTION_MARKERS)


def looks_like_statement(text: str) -> bool:
    """Institution markers, or a date and an amount somewhere in the text."""
    if not text:
        return False
    if has_institution_markers(text):
        return True
    return bool(DATE_TOKEN_RE.search(text) and AMOUNT_TOKEN_RE.search(text))


def detect_source_category(description: str) -> tuple[str | None, str | None]:
    """Look *description* up in the keyword table.

    Returns:
        ``(category, subcategory)``, or ``(None, None)`` if no keyword
        matches.
    """
    for regex, category, subcategory in SOURCE_CATEGORY_KEYWORDS:
        if regex.search(description):
            return category, subcategory
    return None, None


def parse_statement_lines(
    text: str,
    config: ParserConfig,
    detected_format: DetectedFormat,
) -> ParseResult:
    """Parse already-cleaned statement text that passed detection.

    Shared by the plain-text and PDF-derived parsers.
    """
    errors: list[str] = []
    movements: list[RawMovement] = []
    metadata = _extract_metadata(text)

    pattern, records = _select_records(text, errors, config)
    metadata.pattern = pattern

    for location, fields in records:
        try:
            movements.append(_build_movement(fields, config))
        except NormalizationError as exc:
            record_failure(errors, location, str(exc), config)

    fill_date_range(metadata, movements)
    metadata.error_count = len(errors)

    return ParseResult(
        movements=movements,
        detected_format=detected_format,
        errors=errors,
        metadata=metadata,
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _select_records(
    text: str,
    errors: list[str],
    config: ParserConfig,
) -> tuple[str, Iterator[tuple[str, dict[str, str | None]]]]:
    """Pick the first line pattern that matches, or the generic fallback."""
    for pattern in LINE_PATTERNS:
        matches = list(pattern.regex.finditer(text))
        if matches:
            return pattern.name, (
                (f"line {text.count(chr(10), 0, m.start()) + 1}", m.groupdict())
                for m in matches
            )
    return GENERIC_PATTERN_NAME, _generic_records(text, errors, config)


def _generic_records(
    text: str,
    errors: list[str],
    config: ParserConfig,
) -> Iterator[tuple[str, dict[str, str | None]]]:
    """Per-line fallback: date token, then amount and balance tokens.

    The description is the text strictly between the date and the first
    amount. Lines without a date or with fewer than two amounts are not
    movement lines and are ignored silently.
    """
    for line_no, line in enumerate(text.split("\n"), start=1):
        date_match = DATE_TOKEN_RE.search(line)
        if date_match is None:
            continue
        amounts = list(AMOUNT_TOKEN_RE.finditer(line, date_match.end()))
        if len(amounts) < 2:
            continue

        description = line[date_match.end() : amounts[0].start()]
        if not clean_description(description):
            record_failure(errors, f"line {line_no}", "missing description", config)
            continue

        yield f"line {line_no}", {
            "date": date_match.group(0),
            "description": description,
            "amount": amounts[0].group(0),
            "balance": amounts[1].group(0),
            "category": None,
        }


def _build_movement(fields: dict[str, str | None], config: ParserConfig) -> RawMovement:
    """Turn matched string fields into a :class:`RawMovement`."""
    description = clean_description(fields["description"] or "")
    if not description:
        raise NormalizationError(fields["description"], "missing description")

    movement = RawMovement(
        date=parse_locale_date(fields["date"]),
        description=description,
        amount=parse_locale_amount(fields["amount"]),
        balance=parse_locale_amount(fields["balance"]),
    )

    column = (fields.get("category") or "").strip()
    if column:
        # The institution's own category column is carried over verbatim.
        movement.source_category = column
    elif config.detect_source_categories:
        movement.source_category, movement.source_subcategory = detect_source_category(
            description
        )
    return movement


def _extract_metadata(text: str) -> ParseMetadata:
    """Statement period and the number of movement-shaped lines."""
    metadata = ParseMetadata()

    period = _PERIOD_RE.search(text)
    if period and all(is_locale_date_string(period.group(i)) for i in (1, 2)):
        metadata.period_start = parse_locale_date(period.group(1))
        metadata.period_end = parse_locale_date(period.group(2))

    metadata.total_lines = sum(1 for line in text.split("\n") if looks_like_movement_line(line))
    return metadata
