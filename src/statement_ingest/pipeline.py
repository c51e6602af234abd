"""Pipeline orchestration for statement ingestion.

Composes the processing stages: parse, validate and clean, match against
previously imported movements, and categorize. The pipeline accumulates
diagnostics from every stage into a final
:class:`~statement_ingest.models.IngestResult`.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from pathlib import Path

from statement_ingest.categorizer import CategorizationEngine
from statement_ingest.duplicates import detect_duplicate
from statement_ingest.models import IngestResult, ParserConfig, RawMovement
from statement_ingest.parsers import get_parser
from statement_ingest.validator import validate_and_clean
from statement_ingest.workbook import CSV_SUFFIXES, WORKBOOK_SUFFIXES, read_grid

logger = logging.getLogger(__name__)

PDF_TEXT_SUFFIX = ".pdf.txt"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def ingest(
    payload: object,
    kind: str,
    config: ParserConfig,
    engine: CategorizationEngine,
    account_id: str | None = None,
    existing: Sequence[RawMovement] = (),
) -> IngestResult:
    """Run the full ingestion pipeline over one statement.

    Stages executed in order:

    1. **Parse** -- the parser registered under *kind* turns the payload
       into raw movements plus diagnostics.
    2. **Validate and clean** -- per-record checks, duplicate detection,
       and (for text sources) balance reconciliation. Rejected movements
       do not continue.
    3. **Match stored movements** -- only when *existing* is given.
       Movements that look already imported are reported; exact matches
       are dropped when ``exclude_duplicates`` is set.
    4. **Categorize** -- the engine refreshes its rules for *account_id*
       and categorizes every valid movement.

    Args:
        payload: Statement text for ``text``/``pdf``, a cell grid (or
            ``None``) for ``tabular``.
        kind: Parser name, see :data:`statement_ingest.parsers.PARSERS`.
        config: Parser and validation switches.
        engine: Categorization engine.
        account_id: Account whose scoped rules should apply.
        existing: Movements imported earlier, e.g. a previous export of
            an overlapping statement.

    Returns:
        An :class:`IngestResult`. Parser and validator diagnostics are in
        ``warnings``; rejected movements are listed in ``errors``.

    Raises:
        KeyError: If *kind* is not a registered parser.
        MalformedRecordError: In strict mode, on the first malformed
            record.
    """
    all_warnings: list[str] = []
    all_errors: list[str] = []

    # -- Stage 1: Parse -------------------------------------------------------
    parser = get_parser(kind)
    parse_result = parser(payload, config)
    all_warnings.extend(parse_result.errors)
    logger.info(
        "Parsed %d movement(s) as %s", len(parse_result.movements), parse_result.detected_format.value
    )

    # -- Stage 2: Validate and clean ------------------------------------------
    # The tabular parser reconciles against the original row order before
    # reordering; checking again here would use the reordered list.
    validation_config = config
    if kind == "tabular":
        validation_config = dataclasses.replace(config, validate_balances=False)
    validation = validate_and_clean(parse_result.movements, validation_config)
    all_warnings.extend(validation.warnings)
    all_errors.extend(validation.errors)

    # -- Stage 3: Match stored movements -------------------------------------
    valid_movements = validation.valid_movements
    already_imported = 0
    if existing:
        valid_movements, already_imported, notes = _match_existing(
            valid_movements, list(existing), config.exclude_duplicates
        )
        all_warnings.extend(notes)

    # -- Stage 4: Categorize --------------------------------------------------
    movements = engine.categorize_all(valid_movements, account_id=account_id)
    logger.info("Categorized %d movement(s)", len(movements))

    return IngestResult(
        parse_result=parse_result,
        validation=validation,
        movements=movements,
        warnings=all_warnings,
        errors=all_errors,
        already_imported=already_imported,
    )


def ingest_file(
    path: Path,
    config: ParserConfig,
    engine: CategorizationEngine,
    kind: str | None = None,
    account_id: str | None = None,
    existing: Sequence[RawMovement] = (),
) -> IngestResult:
    """Read *path* and run :func:`ingest` on its contents.

    Args:
        path: Statement file.
        kind: Parser name; detected from the file name when ``None``.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the file is a raw PDF or an unsupported
            spreadsheet format.
    """
    path = Path(path)
    kind = kind or detect_kind(path)
    return ingest(
        load_payload(path, kind), kind, config, engine, account_id=account_id, existing=existing
    )


def detect_kind(path: Path) -> str:
    """Map a file name to a parser name.

    ``.xlsx``, ``.xlsm`` and ``.csv`` are tabular, ``*.pdf.txt`` (text saved
    from a PDF) is pdf, everything else is plain text.
    """
    name = Path(path).name.lower()
    if name.endswith(PDF_TEXT_SUFFIX):
        return "pdf"
    suffix = Path(path).suffix.lower()
    if suffix in WORKBOOK_SUFFIXES or suffix in CSV_SUFFIXES:
        return "tabular"
    return "text"


def load_payload(path: Path, kind: str) -> object:
    """Read the payload the parser named *kind* expects from *path*."""
    path = Path(path)
    if kind == "tabular":
        return read_grid(path)
    if path.suffix.lower() == ".pdf":
        raise ValueError(
            f"{path}: PDF files must be converted to text first (save as {PDF_TEXT_SUFFIX})"
        )
    return path.read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _match_existing(
    movements: list[RawMovement],
    existing: list[RawMovement],
    drop_exact: bool,
) -> tuple[list[RawMovement], int, list[str]]:
    """Compare *movements* with previously imported ones.

    Returns:
        ``(kept, matched_count, warnings)``. Only exact matches
        (confidence 100) are removed, and only when *drop_exact* is set.
    """
    kept: list[RawMovement] = []
    notes: list[str] = []
    matched = 0
    for movement in movements:
        match = detect_duplicate(movement, existing)
        if not match.is_duplicate:
            kept.append(movement)
            continue
        matched += 1
        notes.append(
            f"{movement.date.isoformat()} {movement.description!r} {movement.amount} "
            f"may already be imported ({match.reason}, confidence {match.confidence})"
        )
        if not (drop_exact and match.confidence == 100):
            kept.append(movement)
    if matched:
        logger.info("%d movement(s) match previously imported ones", matched)
    return kept, matched, notes
