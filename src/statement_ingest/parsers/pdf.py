"""Parser for text already extracted from a statement PDF.

Text extraction is the caller's job. This parser checks the preamble for
the institution's PDF markers, then reuses the plain-text line parser and
adds the account name printed on the statement.
"""

from __future__ import annotations

import re

from statement_ingest.models import DetectedFormat, ParseResult, ParserConfig
from statement_ingest.parsers import text as text_parser

PDF_MARKERS = [
    "ING DIRECT",
    "ing.es",
    "Cuenta NÓMINA",
    "Cuenta NARANJA",
    "Saldo al inicio",
    "Saldo al final",
]

_ACCOUNT_RE = re.compile(
    r"Cuenta\s+(NÓMINA|NARANJA|SIN\s+NÓMINA)[ \t]*([A-Z0-9 ]*)", re.IGNORECASE
)


def parse(text: str, config: ParserConfig | None = None) -> ParseResult:
    """Parse pre-extracted PDF text into movements.

    Args:
        text: Plain text extracted from the PDF.
        config: Parser configuration. Defaults to tolerant mode.

    Returns:
        A :class:`ParseResult` with ``detected_format`` ``pdf-derived``.
        Text without the institution's PDF markers yields zero movements
        and a diagnostic.

    Raises:
        MalformedRecordError: Only in strict mode, on the first malformed
            line.
    """
    config = config or ParserConfig()
    cleaned = text_parser.clean_text(text or "")

    if not text_parser.has_institution_markers(cleaned, PDF_MARKERS):
        return ParseResult(
            movements=[],
            detected_format=DetectedFormat.PDF_DERIVED,
            errors=["PDF text does not look like a statement from this institution"],
        )

    result = text_parser.parse_statement_lines(cleaned, config, DetectedFormat.PDF_DERIVED)
    result.metadata.account_name = extract_account_name(cleaned)
    return result


def extract_account_name(text: str) -> str | None:
    """Return the account label, e.g. ``"Cuenta NÓMINA 1234"``, if printed."""
    match = _ACCOUNT_RE.search(text)
    if match is None:
        return None
    kind = re.sub(r"\s+", " ", match.group(1)).upper()
    suffix = match.group(2).strip()
    return f"Cuenta {kind} {suffix}".strip()
