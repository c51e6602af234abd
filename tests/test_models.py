"""Tests for statement_ingest.models — value objects and report rendering."""

from dataclasses import FrozenInstanceError
from datetime import date
from decimal import Decimal

import pytest

from statement_ingest.models import (
    BalanceDiscrepancy,
    CategorizationRule,
    CategorizedMovement,
    DetectedFormat,
    DiscrepancySeverity,
    MatchType,
    ParseResult,
    RawMovement,
    ReconciliationReport,
    StatementSummary,
)


class TestRawMovement:
    def test_balance_defaults_to_unknown_zero(self):
        movement = RawMovement(date=date(2024, 1, 1), description="BAR", amount=Decimal("-1"))

        assert movement.balance == Decimal("0")
        assert movement.source_category is None

    def test_categorized_is_a_raw_movement(self):
        movement = CategorizedMovement(
            date=date(2024, 1, 1),
            description="BAR",
            amount=Decimal("-1"),
            detected_category="Otros Gastos",
            confidence=10,
        )
        assert isinstance(movement, RawMovement)
        assert movement.applied_rule_name is None


class TestCategorizationRule:
    def test_frozen(self):
        rule = CategorizationRule(
            id="x", name="X", pattern="X", match_type=MatchType.CONTAINS, category="Y"
        )
        with pytest.raises(FrozenInstanceError):
            rule.priority = 1

    def test_defaults(self):
        rule = CategorizationRule(
            id="x", name="X", pattern="X", match_type=MatchType.CONTAINS, category="Y"
        )
        assert rule.priority == 5
        assert rule.active is True
        assert rule.account_id is None


class TestEnums:
    def test_values(self):
        assert [f.value for f in DetectedFormat] == ["plain-text", "tabular", "pdf-derived"]
        assert MatchType("starts-with") is MatchType.STARTS_WITH

    def test_parse_result_defaults(self):
        result = ParseResult()
        assert result.movements == []
        assert result.detected_format is DetectedFormat.PLAIN_TEXT


class TestReconciliationReport:
    """Tests for report views and rendering."""

    def _discrepancy(self, index, severity, difference):
        return BalanceDiscrepancy(
            index=index,
            date=date(2024, 1, 2),
            description="MERCADONA",
            expected_balance=Decimal("970.00"),
            stated_balance=Decimal("970.00") + Decimal(difference),
            difference=Decimal(difference),
            severity=severity,
        )

    def test_minor_and_severe_views(self):
        report = ReconciliationReport(
            checked=2,
            discrepancies=[
                self._discrepancy(0, DiscrepancySeverity.MINOR, "0.50"),
                self._discrepancy(1, DiscrepancySeverity.SEVERE, "30.00"),
            ],
        )
        assert len(report.minor) == 1
        assert report.severe[0].index == 1

    def test_messages(self):
        report = ReconciliationReport(
            checked=1,
            discrepancies=[self._discrepancy(0, DiscrepancySeverity.SEVERE, "30.00")],
            summary=StatementSummary(
                opening_balance=Decimal("1050.00"),
                total_amount=Decimal("-80.00"),
                inferred_closing_balance=Decimal("970.00"),
                stated_closing_balance=Decimal("1000.00"),
                difference=Decimal("30.00"),
            ),
        )
        lines = report.messages()

        assert lines[0] == (
            "severe balance mismatch at movement 1 (2024-01-02 'MERCADONA'): "
            "expected 970.00, stated 1000.00 (difference 30.00)"
        )
        assert "movements may be missing" in lines[1]

    def test_clean_report_has_no_messages(self):
        assert ReconciliationReport().messages() == []
