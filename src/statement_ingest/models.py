"""Core data models for statement ingestion.

This module defines the value objects that flow through the ingestion
pipeline. It has zero internal imports -- everything depends on it, but it
depends on nothing within the package.

All objects are transient: they are produced and consumed within a single
ingestion call and carry no identity. Assigning IDs is the persistence
layer's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum


class DetectedFormat(str, Enum):
    """Closed set of input shapes a parser can report."""

    PLAIN_TEXT = "plain-text"
    TABULAR = "tabular"
    PDF_DERIVED = "pdf-derived"


class MatchType(str, Enum):
    """How a categorization rule's pattern is compared to a description."""

    CONTAINS = "contains"
    STARTS_WITH = "starts-with"
    ENDS_WITH = "ends-with"
    EXACT = "exact"
    REGEX = "regex"


class DiscrepancySeverity(str, Enum):
    """Severity tier of a running-balance mismatch."""

    MINOR = "minor"
    SEVERE = "severe"


@dataclass
class RawMovement:
    """One parsed line of a bank statement.

    Attributes:
        date: Calendar date of the movement (value date when the source
            provides one).
        description: Trimmed, whitespace-normalized free text.
        amount: Signed amount. Negative means outflow, positive inflow.
        balance: Account balance right after this movement, as stated by
            the source. ``Decimal("0")`` when the source omits it; the
            reconciliation step treats exactly zero as "unknown".
        source_category: Category label carried over from the
            institution's own export, if any.
        source_subcategory: Subcategory label carried over from the
            institution's own export, if any.
    """

    date: date
    description: str
    amount: Decimal
    balance: Decimal = Decimal("0")
    source_category: str | None = None
    source_subcategory: str | None = None


@dataclass
class CategorizedMovement(RawMovement):
    """A :class:`RawMovement` with the categorization engine's verdict.

    Attributes:
        detected_category: Category assigned by the engine.
        detected_subcategory: Subcategory assigned by the engine, if any.
        confidence: Integer certainty in ``[0, 100]``.
        applied_rule_name: Name of the winning rule or heuristic path.
    """

    detected_category: str = ""
    detected_subcategory: str | None = None
    confidence: int = 0
    applied_rule_name: str | None = None


@dataclass(frozen=True)
class CategorizationRule:
    """An immutable pattern-to-category rule.

    Attributes:
        id: Stable identifier used by ``update_rule`` / ``remove_rule``.
        name: Human-readable name, reported as ``applied_rule_name``.
        pattern: Text or regular expression, interpreted per *match_type*.
        match_type: One of :class:`MatchType`.
        category: Target category.
        subcategory: Target subcategory, or ``None``.
        priority: Lower values are evaluated first and therefore win.
        active: Inactive rules are filtered out of the engine's view.
        account_id: Account the rule is scoped to, or ``None`` for a
            global rule.
    """

    id: str
    name: str
    pattern: str
    match_type: MatchType
    category: str
    subcategory: str | None = None
    priority: int = 5
    active: bool = True
    account_id: str | None = None


@dataclass
class BalanceDiscrepancy:
    """A running-balance mismatch between two adjacent movements.

    ``index`` is the position of the offending movement in the sequence
    that was handed to :func:`~statement_ingest.reconciliation.reconcile`
    (the original file order), not in the chronological ordering.
    """

    index: int
    date: date
    description: str
    expected_balance: Decimal
    stated_balance: Decimal
    difference: Decimal
    severity: DiscrepancySeverity


@dataclass
class StatementSummary:
    """Whole-statement balance arithmetic.

    Attributes:
        opening_balance: Oldest stated balance minus that movement's amount.
        total_amount: Algebraic sum of all amounts.
        inferred_closing_balance: ``opening_balance + total_amount``.
        stated_closing_balance: Balance stated on the newest movement.
        difference: ``stated_closing_balance - inferred_closing_balance``.
            Non-zero usually means movements are missing from the period.
    """

    opening_balance: Decimal
    total_amount: Decimal
    inferred_closing_balance: Decimal
    stated_closing_balance: Decimal
    difference: Decimal


@dataclass
class ReconciliationReport:
    """Diagnostic output of a balance reconciliation pass.

    Attributes:
        checked: Number of adjacent pairs whose balances were compared.
        skipped: Number of pairs skipped because a balance was unknown.
        discrepancies: Mismatches above the rounding tolerance.
        summary: Whole-statement arithmetic, or ``None`` when the oldest
            or newest stated balance is unknown.
    """

    checked: int = 0
    skipped: int = 0
    discrepancies: list[BalanceDiscrepancy] = field(default_factory=list)
    summary: StatementSummary | None = None

    @property
    def minor(self) -> list[BalanceDiscrepancy]:
        return [d for d in self.discrepancies if d.severity is DiscrepancySeverity.MINOR]

    @property
    def severe(self) -> list[BalanceDiscrepancy]:
        return [d for d in self.discrepancies if d.severity is DiscrepancySeverity.SEVERE]

    def messages(self) -> list[str]:
        """Render the report as human-readable diagnostic lines."""
        lines: list[str] = []
        for d in self.discrepancies:
            lines.append(
                f"{d.severity.value} balance mismatch at movement {d.index + 1} "
                f"({d.date.isoformat()} {d.description!r}): expected "
                f"{d.expected_balance:.2f}, stated {d.stated_balance:.2f} "
                f"(difference {d.difference:.2f})"
            )
        if self.summary is not None and self.summary.difference != 0:
            s = self.summary
            lines.append(
                f"statement closing balance {s.stated_closing_balance:.2f} differs from "
                f"inferred {s.inferred_closing_balance:.2f} (opening {s.opening_balance:.2f}, "
                f"movements total {s.total_amount:.2f}, difference {s.difference:.2f}); "
                f"movements may be missing from the period"
            )
        return lines


@dataclass
class ParseMetadata:
    """Optional facts a parser learned about the statement."""

    period_start: date | None = None
    period_end: date | None = None
    account_name: str | None = None
    pattern: str | None = None
    total_lines: int = 0
    parsed_count: int = 0
    error_count: int = 0
    header_row: int | None = None
    columns: dict[str, int] = field(default_factory=dict)
    first_date: date | None = None
    last_date: date | None = None
    reordered: bool = False
    reconciliation: ReconciliationReport | None = None


@dataclass
class ParseResult:
    """Return type for every parser.

    Parsers are tolerant by default: they process what they can and
    report what they could not in ``errors`` rather than aborting.

    Attributes:
        movements: Parsed movements, in output order.
        detected_format: Which parser produced the result.
        errors: Diagnostic and warning lines.
        metadata: Optional statement facts (period, counts, ...).
    """

    movements: list[RawMovement] = field(default_factory=list)
    detected_format: DetectedFormat = DetectedFormat.PLAIN_TEXT
    errors: list[str] = field(default_factory=list)
    metadata: ParseMetadata = field(default_factory=ParseMetadata)


@dataclass
class InvalidMovement:
    """A movement rejected by the validator, with every reason found."""

    movement: RawMovement
    errors: list[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    """Outcome of per-record validation.

    A movement is either wholly valid (in ``valid_movements``) or excluded
    with its reasons (in ``invalid_movements``); never both.

    Attributes:
        valid: True when no movement failed validation.
        errors: One line per failed check, prefixed with the movement
            position.
        warnings: Non-blocking findings such as duplicates and balance
            mismatches.
        valid_movements: Movements that passed every check.
        invalid_movements: Rejected movements and their reasons.
        duplicates: Later occurrences of duplicated movements.
    """

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    valid_movements: list[RawMovement] = field(default_factory=list)
    invalid_movements: list[InvalidMovement] = field(default_factory=list)
    duplicates: list[RawMovement] = field(default_factory=list)


@dataclass
class ParserConfig:
    """Per-call behaviour switches for parsers and the validator.

    Attributes:
        tolerate_format_errors: Skip malformed records with a warning
            (True) or raise :class:`~statement_ingest.exceptions.MalformedRecordError`
            (False).
        ignore_duplicates: Skip duplicate detection entirely.
        exclude_duplicates: Drop later duplicate occurrences from the
            valid set instead of only reporting them.
        validate_balances: Run balance reconciliation where applicable.
        detect_source_categories: Let the text parser fill
            ``source_category`` from its keyword table.
        min_date: Earliest accepted movement date.
        max_date: Latest accepted movement date. ``None`` means tomorrow,
            evaluated at validation time.
    """

    tolerate_format_errors: bool = True
    ignore_duplicates: bool = False
    exclude_duplicates: bool = False
    validate_balances: bool = True
    detect_source_categories: bool = True
    min_date: date = date(2020, 1, 1)
    max_date: date | None = None


@dataclass
class RuleStoreConfig:
    """Where the categorization engine gets its external rules from.

    Attributes:
        kind: ``"toml"``, ``"http"``, or ``"none"``.
        path: Rules file for the TOML store, relative to the project root.
        url: Base URL for the HTTP store.
        timeout: HTTP request timeout in seconds.
    """

    kind: str = "toml"
    path: str = "rules.toml"
    url: str = ""
    timeout: float = 10.0


@dataclass
class AppConfig:
    """Top-level application configuration loaded from ``ingest.toml``."""

    parser: ParserConfig = field(default_factory=ParserConfig)
    rule_store: RuleStoreConfig = field(default_factory=RuleStoreConfig)
    output_dir: str = "output"
    account_id: str | None = None


@dataclass
class IngestResult:
    """Final result of :func:`statement_ingest.pipeline.ingest`.

    Attributes:
        parse_result: Raw parser output.
        validation: Validator output over the parsed movements.
        movements: Cleaned, validated and categorized movements.
        warnings: Non-fatal diagnostics accumulated across all stages.
        errors: Record-level failures accumulated across all stages.
        already_imported: Movements that matched a previously stored one.
    """

    parse_result: ParseResult
    validation: ValidationResult
    movements: list[CategorizedMovement] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    already_imported: int = 0
