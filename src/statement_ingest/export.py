"""CSV export writer and ingestion summary printer.

- :func:`export` writes categorized movements, oldest first, with a fixed
  column schema that includes a stable per-movement fingerprint.
- :func:`load_export` reads such a file back, so a later run can skip
  movements that were already imported.
- :func:`print_summary` prints a human-readable summary to stdout: counts
  per stage, the statement balance summary, the categorization breakdown,
  and diagnostics.
"""

from __future__ import annotations

import csv
from collections import Counter
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path

from statement_ingest.categorizer import (
    DEFAULT_BUCKET_NAME,
    DEFAULT_HEURISTICS,
    SOURCE_MAPPING_NAME,
)
from statement_ingest.duplicates import movement_fingerprint
from statement_ingest.models import CategorizedMovement, IngestResult, RawMovement
from statement_ingest.reconciliation import chronological_order

CSV_COLUMNS = [
    "date",
    "description",
    "amount",
    "balance",
    "category",
    "subcategory",
    "confidence",
    "applied_rule",
    "source_category",
    "source_subcategory",
    "fingerprint",
]

# Movements at or below this confidence are listed as needing review.
LOW_CONFIDENCE = 50

_HEURISTIC_NAMES = {h.name for h in DEFAULT_HEURISTICS}


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------


def export(
    movements: list[CategorizedMovement],
    output_path: str | Path,
    account_id: str | None = None,
) -> Path:
    """Write *movements* to a CSV file, oldest first.

    Same-day movements keep the statement's convention (the one listed
    later in the file happened first). Overwrites an existing file.

    Args:
        movements: Categorized movements from the pipeline.
        output_path: CSV file to write; parent directories are created.
        account_id: Account the movements belong to; part of the
            ``fingerprint`` column.

    Returns:
        The :class:`~pathlib.Path` of the written file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    ordered = [movements[i] for i in chronological_order(movements)]

    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for m in ordered:
            writer.writerow(
                {
                    "date": m.date.isoformat(),
                    "description": m.description,
                    "amount": str(m.amount),
                    "balance": str(m.balance),
                    "category": m.detected_category,
                    "subcategory": m.detected_subcategory or "",
                    "confidence": m.confidence,
                    "applied_rule": m.applied_rule_name or "",
                    "source_category": m.source_category or "",
                    "source_subcategory": m.source_subcategory or "",
                    "fingerprint": movement_fingerprint(m, account_id or ""),
                }
            )

    return output_path


def load_export(path: str | Path) -> list[RawMovement]:
    """Read movements back from a file written by :func:`export`.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If a required column is missing or a row does not hold
            an ISO date and decimal amounts.
    """
    path = Path(path)
    movements: list[RawMovement] = []
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = {"date", "description", "amount"} - set(reader.fieldnames or [])
        if missing:
            raise ValueError(f"{path}: missing columns: {', '.join(sorted(missing))}")

        for row_no, row in enumerate(reader, start=2):
            try:
                movements.append(
                    RawMovement(
                        date=date.fromisoformat(row["date"]),
                        description=row["description"],
                        amount=Decimal(row["amount"]),
                        balance=Decimal(row.get("balance") or "0"),
                        source_category=row.get("source_category") or None,
                        source_subcategory=row.get("source_subcategory") or None,
                    )
                )
            except (ValueError, InvalidOperation) as exc:
                raise ValueError(f"{path}: row {row_no} is invalid: {exc}") from exc
    return movements


# ---------------------------------------------------------------------------
# Summary printer
# ---------------------------------------------------------------------------


def categorization_breakdown(movements: list[CategorizedMovement]) -> Counter[str]:
    """Count movements by how they were categorized."""
    counts: Counter[str] = Counter()
    for m in movements:
        if m.applied_rule_name == SOURCE_MAPPING_NAME:
            counts["source category"] += 1
        elif m.applied_rule_name == DEFAULT_BUCKET_NAME:
            counts["default"] += 1
        elif m.applied_rule_name in _HEURISTIC_NAMES:
            counts["heuristic"] += 1
        else:
            counts["rule"] += 1
    return counts


def print_summary(result: IngestResult, source: str = "") -> None:
    """Print a human-readable ingestion summary to stdout.

    Args:
        result: The :class:`~statement_ingest.models.IngestResult` of a
            completed ingestion.
        source: Name of the ingested file, used in the header.
    """
    parse_result = result.parse_result
    metadata = parse_result.metadata
    movements = result.movements

    header = f"== Ingestion Summary: {source} ==" if source else "== Ingestion Summary =="
    print()
    print(header)
    print()
    print(f"Format:              {parse_result.detected_format.value}")
    if metadata.pattern:
        print(f"Line pattern:        {metadata.pattern}")
    if metadata.account_name:
        print(f"Account:             {metadata.account_name}")
    if metadata.period_start and metadata.period_end:
        print(
            f"Statement period:    {metadata.period_start.isoformat()} to "
            f"{metadata.period_end.isoformat()}"
        )
    if metadata.first_date and metadata.last_date:
        print(
            f"Movement dates:      {metadata.first_date.isoformat()} to "
            f"{metadata.last_date.isoformat()}"
        )

    print()
    print(f"Parsed:              {len(parse_result.movements)}")
    print(f"Rejected:            {len(result.validation.invalid_movements)}")
    print(f"Duplicates:          {len(result.validation.duplicates)}")
    if result.already_imported:
        print(f"Already imported:    {result.already_imported}")
    print(f"Imported:            {len(movements)}")

    report = metadata.reconciliation
    if report is not None and report.summary is not None:
        s = report.summary
        print()
        print("Balances:")
        print(f"  Opening:           {s.opening_balance:.2f}")
        print(f"  Movements total:   {s.total_amount:.2f}")
        print(f"  Closing (stated):  {s.stated_closing_balance:.2f}")
        print(f"  Closing (implied): {s.inferred_closing_balance:.2f}")
        print(f"  Mismatches:        {len(report.minor)} minor, {len(report.severe)} severe")

    if movements:
        breakdown = categorization_breakdown(movements)
        low = [m for m in movements if m.confidence <= LOW_CONFIDENCE]
        print()
        print("Categorization:")
        for label in ("rule", "source category", "heuristic", "default"):
            print(f"  {label + ':':<19}{breakdown[label]}")
        print(f"  {'needs review:':<19}{len(low)}")

        totals: dict[str, Decimal] = {}
        for m in movements:
            totals[m.detected_category] = totals.get(m.detected_category, Decimal("0")) + m.amount
        print()
        print("By category:")
        for category, total in sorted(totals.items(), key=lambda item: abs(item[1]), reverse=True):
            print(f"  {category:<24}{total:>12.2f}")

    if result.warnings:
        print()
        print(f"Warnings ({len(result.warnings)}):")
        for w in result.warnings:
            print(f"  - {w}")

    if result.errors:
        print()
        print(f"Errors ({len(result.errors)}):")
        for e in result.errors:
            print(f"  - {e}")

    print()
