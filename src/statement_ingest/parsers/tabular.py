"""Spreadsheet (tabular) statement parser.

Input is a 2-D grid of cell values as read from the institution's
spreadsheet export (see :func:`statement_ingest.workbook.read_grid`). The
export usually opens with a few lines of account details before the
header row, so the header is searched for rather than assumed.

Recognised header synonyms (accent- and case-insensitive):
    date         Fecha, F. operación, Date
    value_date   F. valor, Fecha valor, Value date
    description  Concepto, Descripción, Description, Detalle
    amount       Importe, Cantidad, Amount
    balance      Saldo, Balance
    category     Categoría, Category
    subcategory  Subcategoría, Subcategory

The institution lists the most recent movement first. Balances are
reconciled against that original order, then the output is reordered
oldest first.
"""

from __future__ import annotations

import logging
import unicodedata
from decimal import Decimal

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
from statement_ingest.reconciliation import chronological_order, is_chronological, reconcile

logger = logging.getLogger(__name__)

HEADER_SEARCH_ROWS = 15
MIN_HEADER_ROLES = 2
REQUIRED_ROLES = ("date", "description", "amount")

# Checked in order; the first synonym contained in a header cell wins.
# "subcategor" must precede "categor" and the value-date synonyms must
# precede the generic date ones.
ROLE_SYNONYMS = [
    ("subcategory", ("subcategor",)),
    ("category", ("categor",)),
    ("value_date", ("valor", "value date")),
    ("date", ("fecha", "operacion", "date")),
    ("description", ("concepto", "descripcion", "description", "detalle")),
    ("amount", ("importe", "cantidad", "amount")),
    ("balance", ("saldo", "balance")),
]

_ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse(grid: list[list[object]] | None, config: ParserConfig | None = None) -> ParseResult:
    """Parse a spreadsheet grid into movements.

    Args:
        grid: Rows of cell values, or ``None`` when the workbook had no
            sheet.
        config: Parser configuration. Defaults to tolerant mode.

    Returns:
        A :class:`ParseResult` with ``detected_format`` ``tabular``. Movements
        are in chronological order; reconciliation diagnostics (computed on
        the original order) and any reorder notice are in ``errors``.

    Raises:
        MalformedRecordError: Only in strict mode, on the first malformed
            row.
    """
    config = config or ParserConfig()

    if grid is None:
        return _failed("no sheet present in workbook")
    if not any(_row_has_values(row) for row in grid):
        return _failed("sheet is empty")

    header = find_header_row(grid)
    if header is None:
        return _failed(
            f"no header row found in the first {HEADER_SEARCH_ROWS} rows "
            "(expected columns such as Fecha, Concepto, Importe, Saldo)"
        )
    header_idx, columns = header

    errors: list[str] = []
    metadata = ParseMetadata(header_row=header_idx, columns=dict(columns))

    missing = [role for role in REQUIRED_ROLES if not _has_role(columns, role)]
    if missing:
        return _failed(
            f"header row {header_idx + 1} is missing required column(s): {', '.join(missing)}",
            metadata,
        )

    movements: list[RawMovement] = []
    data_rows = grid[header_idx + 1 :]
    for offset, row in enumerate(data_rows):
        if not _row_has_values(row):
            continue
        metadata.total_lines += 1
        row_no = header_idx + offset + 2
        try:
            movements.append(_build_movement(row, columns, row_no, errors, config))
        except NormalizationError as exc:
            record_failure(errors, f"row {row_no}", str(exc), config)

    # Balances only agree with the order the institution wrote them in.
    if config.validate_balances and len(movements) >= 2:
        report = reconcile(movements)
        metadata.reconciliation = report
        errors.extend(report.messages())

    if not is_chronological(movements):
        movements = [movements[i] for i in chronological_order(movements)]
        metadata.reordered = True
        errors.append(
            "rows were not in chronological order; output reordered oldest first by value date"
        )
        logger.info("Reordered %d tabular movements chronologically", len(movements))

    fill_date_range(metadata, movements)
    metadata.error_count = len(errors)

    return ParseResult(
        movements=movements,
        detected_format=DetectedFormat.TABULAR,
        errors=errors,
        metadata=metadata,
    )


def find_header_row(grid: list[list[object]]) -> tuple[int, dict[str, int]] | None:
    """Locate the header row among the first rows of *grid*.

    Returns:
        ``(row_index, {role: column_index})`` for the first row mapping to
        at least two distinct roles, or ``None``.
    """
    for idx, row in enumerate(grid[:HEADER_SEARCH_ROWS]):
        columns = map_columns(row)
        if len(columns) >= MIN_HEADER_ROLES:
            return idx, columns
    return None


def map_columns(row: list[object]) -> dict[str, int]:
    """Map header cells to column roles; the first cell for a role wins."""
    columns: dict[str, int] = {}
    for col_idx, cell in enumerate(row):
        role = header_role(cell)
        if role is not None and role not in columns:
            columns[role] = col_idx
    return columns


def header_role(cell: object) -> str | None:
    """Return the column role a header cell names, or ``None``."""
    if not isinstance(cell, str):
        return None
    label = _fold(cell)
    if not label:
        return None
    for role, synonyms in ROLE_SYNONYMS:
        if any(synonym in label for synonym in synonyms):
            return role
    return None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _failed(message: str, metadata: ParseMetadata | None = None) -> ParseResult:
    return ParseResult(
        movements=[],
        detected_format=DetectedFormat.TABULAR,
        errors=[message],
        metadata=metadata or ParseMetadata(),
    )


def _fold(text: str) -> str:
    """Lowercase, strip accents and collapse whitespace."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.lower().split())


def _is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _row_has_values(row: list[object] | None) -> bool:
    return bool(row) and not all(_is_blank(cell) for cell in row)


def _cell(row: list[object], columns: dict[str, int], role: str) -> object:
    idx = columns.get(role)
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def _date_role(columns: dict[str, int]) -> str | None:
    """Value date wins over the operation date when both are present."""
    if "value_date" in columns:
        return "value_date"
    if "date" in columns:
        return "date"
    return None


def _has_role(columns: dict[str, int], role: str) -> bool:
    if role == "date":
        return _date_role(columns) is not None
    return role in columns


def _optional_label(value: object) -> str | None:
    if _is_blank(value):
        return None
    return str(value).strip()


def _build_movement(
    row: list[object],
    columns: dict[str, int],
    row_no: int,
    errors: list[str],
    config: ParserConfig,
) -> RawMovement:
    """Build a movement from one data row.

    An unreadable balance defaults to 0 with a warning in tolerant mode.

    Raises:
        NormalizationError: If a required cell is missing or unparseable,
            or the balance is unreadable in strict mode.
    """
    date_role = _date_role(columns)
    raw_date = _cell(row, columns, date_role)
    if date_role == "value_date" and _is_blank(raw_date):
        raw_date = _cell(row, columns, "date")
    if _is_blank(raw_date):
        raise NormalizationError(raw_date, "missing date")

    raw_description = _cell(row, columns, "description")
    description = "" if _is_blank(raw_description) else clean_description(str(raw_description))
    if not description:
        raise NormalizationError(raw_description, "missing description")

    raw_amount = _cell(row, columns, "amount")
    if _is_blank(raw_amount):
        raise NormalizationError(raw_amount, "missing amount")

    movement = RawMovement(
        date=parse_locale_date(raw_date, extended=True),
        description=description,
        amount=parse_locale_amount(raw_amount),
    )

    # Balance is optional; in tolerant mode a bad value does not drop the row.
    raw_balance = _cell(row, columns, "balance")
    if not _is_blank(raw_balance):
        try:
            movement.balance = parse_locale_amount(raw_balance)
        except NormalizationError as exc:
            if not config.tolerate_format_errors:
                raise
            logger.warning("Row %d: unreadable balance, defaulting to 0: %s", row_no, exc)
            errors.append(f"row {row_no}: unreadable balance treated as 0 ({exc})")
            movement.balance = _ZERO

    movement.source_category = _optional_label(_cell(row, columns, "category"))
    movement.source_subcategory = _optional_label(_cell(row, columns, "subcategory"))
    return movement
