"""Tests for statement_ingest.parsers.tabular — spreadsheet grids."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from statement_ingest.exceptions import MalformedRecordError
from statement_ingest.models import DetectedFormat, ParserConfig
from statement_ingest.parsers.tabular import find_header_row, header_role, parse

HEADER = ["F. VALOR", "CATEGORÍA", "SUBCATEGORÍA", "DESCRIPCIÓN", "IMPORTE (€)", "SALDO (€)"]


def _grid(*rows, preamble=True):
    """Build an export-shaped grid: account preamble, header, data rows."""
    grid = []
    if preamble:
        grid.extend([["Número de cuenta", "ES00 1465 0000"], ["Titular", "EJEMPLO"], [None, None]])
    grid.append(list(HEADER))
    grid.extend(list(r) for r in rows)
    return grid


# ---------------------------------------------------------------------------
# Header detection
# ---------------------------------------------------------------------------


class TestHeaderDetection:
    """Tests for locating the header row and mapping column roles."""

    @pytest.mark.parametrize(
        "label,role",
        [
            ("Fecha", "date"),
            ("F. operación", "date"),
            ("Date", "date"),
            ("F. VALOR", "value_date"),
            ("Fecha valor", "value_date"),
            ("Value date", "value_date"),
            ("Concepto", "description"),
            ("DESCRIPCIÓN", "description"),
            ("Detalle", "description"),
            ("Importe (€)", "amount"),
            ("Cantidad", "amount"),
            ("Saldo", "balance"),
            ("Balance", "balance"),
            ("Categoría", "category"),
            ("Subcategoría", "subcategory"),
            ("Notas", None),
            (None, None),
            (42, None),
        ],
    )
    def test_header_role(self, label, role):
        assert header_role(label) == role

    def test_header_after_preamble(self):
        """The preamble rows are skipped; roles map to column indexes."""
        found = find_header_row(_grid())

        assert found is not None
        idx, columns = found
        assert idx == 3
        assert columns == {
            "value_date": 0,
            "category": 1,
            "subcategory": 2,
            "description": 3,
            "amount": 4,
            "balance": 5,
        }

    def test_header_beyond_search_window(self):
        """A header below the first 15 rows is not found."""
        grid = [["x"]] * 15 + [list(HEADER)]
        assert find_header_row(grid) is None

    def test_no_header(self):
        result = parse([["a", "b"], ["c", "d"]])

        assert result.movements == []
        assert len(result.errors) == 1
        assert "no header row" in result.errors[0]

    def test_missing_required_column(self):
        """A header without an amount column cannot produce movements."""
        result = parse([["Fecha", "Concepto", "Saldo"], ["01/01/2024", "X", "1,00"]])

        assert result.movements == []
        assert "amount" in result.errors[0]


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


class TestParseRows:
    """Tests for data row conversion."""

    def test_string_cells(self):
        """Locale strings are normalized; categories are carried over."""
        result = parse(_grid(["01/01/2024", "SUPERMERCADOS", "", "MERCADONA", "-30,00", "970,00"]))

        assert result.detected_format is DetectedFormat.TABULAR
        assert result.errors == []
        m = result.movements[0]
        assert m.date == date(2024, 1, 1)
        assert m.description == "MERCADONA"
        assert m.amount == Decimal("-30.00")
        assert m.balance == Decimal("970.00")
        assert m.source_category == "SUPERMERCADOS"
        assert m.source_subcategory is None

    def test_native_cells(self):
        """Serial dates, datetimes and float amounts are accepted."""
        result = parse(
            _grid(
                [datetime(2024, 1, 2), None, None, "AMAZON", -19.99, 950.01],
                [45292, None, None, "NETFLIX", -15.0, 970.0],
            )
        )

        assert len(result.errors) == 1
        assert "reordered" in result.errors[0]
        assert [m.date for m in result.movements] == [date(2024, 1, 1), date(2024, 1, 2)]
        assert result.movements[1].amount == Decimal("-19.99")
        assert result.movements[1].balance == Decimal("950.01")

    def test_value_date_preferred(self):
        """The value date wins over the operation date."""
        grid = [
            ["Fecha", "Fecha valor", "Concepto", "Importe"],
            ["01/01/2024", "03/01/2024", "RECIBO", "-10,00"],
        ]
        result = parse(grid)
        assert result.movements[0].date == date(2024, 1, 3)

    def test_empty_rows_skipped(self):
        """Fully empty rows are ignored silently."""
        result = parse(
            _grid(
                [None, None, None, None, None, None],
                ["01/01/2024", None, None, "MERCADONA", "-30,00", "970,00"],
                ["", "  ", None, "", None, ""],
            )
        )
        assert len(result.movements) == 1
        assert result.errors == []
        assert result.metadata.total_lines == 1

    def test_balance_optional(self):
        """Without a balance column movements get the unknown balance 0."""
        grid = [["Fecha", "Concepto", "Importe"], ["01/01/2024", "MERCADONA", "-30,00"]]
        result = parse(grid)
        assert result.movements[0].balance == Decimal("0")

    def test_unreadable_balance_is_a_warning(self):
        """A bad balance keeps the row with balance 0 and reports it."""
        result = parse(_grid(["01/01/2024", None, None, "MERCADONA", "-30,00", "n/d"]))

        assert len(result.movements) == 1
        assert result.movements[0].balance == Decimal("0")
        assert len(result.errors) == 1
        assert "row 5" in result.errors[0]

    def test_malformed_rows_skipped(self):
        """Rows missing required values are skipped with a warning each."""
        result = parse(
            _grid(
                ["01/01/2024", None, None, "", "-30,00", "970,00"],
                [None, None, None, "MERCADONA", "-30,00", "970,00"],
                ["01/01/2024", None, None, "MERCADONA", None, "970,00"],
                ["31/02/2024", None, None, "MERCADONA", "-30,00", "970,00"],
                ["01/01/2024", None, None, "MERCADONA", "treinta", "970,00"],
                ["02/01/2024", None, None, "AMAZON", "-10,00", "960,00"],
            )
        )

        assert len(result.movements) == 1
        assert result.movements[0].description == "AMAZON"
        assert len(result.errors) == 5
        assert "missing description" in result.errors[0]
        assert "missing date" in result.errors[1]
        assert "missing amount" in result.errors[2]
        assert "row 8" in result.errors[3]
        assert result.metadata.error_count == 5

    def test_strict_mode_raises(self):
        with pytest.raises(MalformedRecordError) as exc_info:
            parse(
                _grid(["01/01/2024", None, None, "", "-30,00", "970,00"]),
                ParserConfig(tolerate_format_errors=False),
            )
        assert exc_info.value.location == "row 5"

    def test_strict_mode_rejects_unreadable_balance(self):
        """Strict mode does not fall back to balance 0."""
        with pytest.raises(MalformedRecordError) as exc_info:
            parse(
                _grid(["01/01/2024", None, None, "MERCADONA", "-30,00", "n/d"]),
                ParserConfig(tolerate_format_errors=False),
            )
        assert exc_info.value.location == "row 5"


# ---------------------------------------------------------------------------
# Missing sheet / empty sheet
# ---------------------------------------------------------------------------


class TestUnusableInput:
    """Tests for input-shape errors reported as diagnostics."""

    def test_no_sheet(self):
        result = parse(None)
        assert result.movements == []
        assert result.errors == ["no sheet present in workbook"]

    def test_empty_sheet(self):
        assert parse([]).errors == ["sheet is empty"]
        assert parse([[None, None], ["", ""]]).errors == ["sheet is empty"]


# ---------------------------------------------------------------------------
# Ordering and reconciliation
# ---------------------------------------------------------------------------


class TestOrderingAndReconciliation:
    """Tests for reconciliation before reordering."""

    def test_reverse_chronological_rows_are_reordered(self):
        """Rows dated 02/01 then 01/01 come out as 01/01, 02/01."""
        result = parse(
            _grid(
                ["02/01/2024", None, None, "MERCADONA", "-30,00", "970,00"],
                ["01/01/2024", None, None, "TIENDA", "-50,00", "1.000,00"],
            )
        )

        assert [m.date for m in result.movements] == [date(2024, 1, 1), date(2024, 1, 2)]
        assert result.metadata.reordered is True
        assert any("reordered" in e for e in result.errors)

    def test_consistent_statement_has_no_mismatch(self):
        """Balances consistent in file order produce no reconciliation warning."""
        result = parse(
            _grid(
                ["02/01/2024", None, None, "MERCADONA", "-30,00", "970,00"],
                ["01/01/2024", None, None, "TIENDA", "-50,00", "1.000,00"],
            )
        )

        report = result.metadata.reconciliation
        assert report is not None
        assert report.checked == 1
        assert report.discrepancies == []
        assert report.summary.opening_balance == Decimal("1050.00")
        assert not any("mismatch" in e for e in result.errors)

    def test_mismatch_reported_and_order_kept_in_report(self):
        """A wrong balance is reported with its original row position."""
        result = parse(
            _grid(
                ["02/01/2024", None, None, "MERCADONA", "-30,00", "900,00"],
                ["01/01/2024", None, None, "TIENDA", "-50,00", "1.000,00"],
            )
        )

        report = result.metadata.reconciliation
        assert len(report.severe) == 1
        assert report.severe[0].index == 0
        assert report.severe[0].expected_balance == Decimal("970.00")
        severe_msgs = [e for e in result.errors if "severe balance mismatch" in e]
        assert len(severe_msgs) == 1
        assert "movement 1" in severe_msgs[0]

    def test_reconciliation_can_be_disabled(self):
        result = parse(
            _grid(
                ["02/01/2024", None, None, "MERCADONA", "-30,00", "900,00"],
                ["01/01/2024", None, None, "TIENDA", "-50,00", "1.000,00"],
            ),
            ParserConfig(validate_balances=False),
        )
        assert result.metadata.reconciliation is None
        assert not any("mismatch" in e for e in result.errors)

    def test_chronological_rows_not_reordered(self):
        result = parse(
            _grid(
                ["01/01/2024", None, None, "TIENDA", "-50,00", "1.000,00"],
                ["02/01/2024", None, None, "MERCADONA", "-30,00", "970,00"],
            )
        )
        assert result.metadata.reordered is False
        assert not any("reordered" in e for e in result.errors)
