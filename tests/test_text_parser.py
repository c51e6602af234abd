"""Tests for statement_ingest.parsers.text — pasted statement parsing."""

from datetime import date
from decimal import Decimal

import pytest

from statement_ingest.exceptions import MalformedRecordError
from statement_ingest.models import DetectedFormat, ParserConfig
from statement_ingest.parsers.text import (
    clean_text,
    detect_source_category,
    looks_like_statement,
    parse,
)

STRICT = ParserConfig(tolerate_format_errors=False)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestParseFullFormat:
    """Tests for lines with EUR suffixes."""

    def test_single_line(self):
        """The canonical example line parses into one movement."""
        result = parse("01/12/2023 MERCADONA COMPRA SUPERMERCADO -45,67 EUR 1.234,56 EUR")

        assert result.detected_format is DetectedFormat.PLAIN_TEXT
        assert result.errors == []
        assert len(result.movements) == 1

        m = result.movements[0]
        assert m.date == date(2023, 12, 1)
        assert m.date.day == 1
        assert m.description == "MERCADONA COMPRA SUPERMERCADO"
        assert m.amount == Decimal("-45.67")
        assert m.balance == Decimal("1234.56")
        assert result.metadata.pattern == "full_with_currency"

    def test_fixture_statement(self, statement_text):
        """A full pasted statement keeps file order and all fields."""
        result = parse(statement_text)

        assert result.errors == []
        assert [m.description for m in result.movements] == [
            "BIZUM ENVIADO A LAURA",
            "NOMINA EMPRESA SL",
            "REPSOL ESTACION 123",
            "MERCADONA COMPRA SUPERMERCADO",
        ]
        assert result.movements[1].amount == Decimal("2200.00")
        assert result.movements[0].balance == Decimal("3389.89")

    def test_metadata(self, statement_text):
        """Period, counts and date range are reported."""
        meta = parse(statement_text).metadata

        assert meta.period_start == date(2023, 12, 1)
        assert meta.period_end == date(2023, 12, 31)
        assert meta.total_lines == 4
        assert meta.parsed_count == 4
        assert meta.error_count == 0
        assert meta.first_date == date(2023, 12, 1)
        assert meta.last_date == date(2023, 12, 15)

    def test_metadata_line_count_and_impossible_period(self):
        """Only date-then-amount lines count; an impossible period is dropped."""
        text = (
            "ING DIRECT\n"
            "Movimientos del 01/12/2023 al 31/11/2023\n"
            "Saldo 1.000,00 EUR a 30/11/2023\n"
            "01/12/2023 MERCADONA -45,67 EUR 954,33 EUR\n"
        )
        meta = parse(text).metadata

        assert meta.total_lines == 1
        assert meta.period_start is None
        assert meta.period_end is None

    def test_euro_sign_suffix(self):
        """The euro sign is accepted in place of EUR."""
        result = parse("02/01/2024 AMAZON EU -19,99 € 980,01 €")
        assert result.movements[0].amount == Decimal("-19.99")
        assert result.metadata.pattern == "full_with_currency"

    def test_trailing_category_column_is_kept_verbatim(self):
        """An institution category after the balance becomes source_category."""
        result = parse("02/01/2024 BAR PEPE -12,50 EUR 987,50 EUR RESTAURANTES")

        m = result.movements[0]
        assert m.description == "BAR PEPE"
        assert m.source_category == "RESTAURANTES"

    def test_windows_line_endings_and_blank_runs(self):
        """CRLF endings and blank-line runs do not affect parsing."""
        text = (
            "ING DIRECT\r\n\r\n\r\n"
            "03/01/2024 RECIBO LUZ -60,00 EUR 940,00 EUR\r\n\r\n"
            "02/01/2024 AMAZON EU -19,99 EUR 1.000,00 EUR\r\n"
        )
        result = parse(text)
        assert len(result.movements) == 2
        assert result.movements[0].date == date(2024, 1, 3)


class TestOtherLinePatterns:
    """Tests for the no-currency, tab and quoted CSV line patterns."""

    def test_no_currency(self):
        """Amount and balance without EUR suffix."""
        result = parse("01/12/2023 MERCADONA -45,67 1.234,56")

        assert result.metadata.pattern == "no_currency"
        assert result.movements[0].amount == Decimal("-45.67")
        assert result.movements[0].balance == Decimal("1234.56")

    def test_tab_delimited(self):
        """Tab-separated columns, as copied from the web view."""
        text = "01/12/2023\tMERCADONA VALENCIA\t-45,67\t1.234,56 EUR\n"
        result = parse(text)

        assert result.metadata.pattern == "tab_delimited"
        assert result.movements[0].description == "MERCADONA VALENCIA"

    def test_quoted_csv(self):
        """Quoted, semicolon-separated values."""
        text = (
            '"02/12/2023";"AMAZON MARKETPLACE";"-30,00";"1.204,56"\n'
            '"01/12/2023";"MERCADONA";"-45,67";"1.234,56"\n'
        )
        result = parse(text)

        assert result.metadata.pattern == "quoted_csv"
        assert len(result.movements) == 2
        assert result.movements[0].description == "AMAZON MARKETPLACE"
        assert result.movements[1].amount == Decimal("-45.67")

    def test_generic_fallback(self):
        """Lines matching no named pattern use the date/amount heuristic."""
        text = "Mov. 01/12/2023 MERCADONA -45,67 saldo 1.234,56 ref 998877"
        result = parse(text)

        assert result.metadata.pattern == "generic"
        assert len(result.movements) == 1
        m = result.movements[0]
        assert m.description == "MERCADONA"
        assert m.amount == Decimal("-45.67")
        assert m.balance == Decimal("1234.56")

    def test_generic_fallback_without_description_is_skipped(self):
        """A date followed directly by amounts has no description."""
        text = "ING DIRECT\nfecha 01/12/2023 -45,67 1.234,56 pendiente"
        result = parse(text)

        assert result.movements == []
        assert len(result.errors) == 1
        assert "missing description" in result.errors[0]


# ---------------------------------------------------------------------------
# Detection and failures
# ---------------------------------------------------------------------------


class TestDetection:
    """Tests for institution markers and the structural check."""

    def test_unrecognised_text(self):
        """Text with no markers and no date/amount yields a diagnostic only."""
        result = parse("Querida abuela, te escribo desde Valencia.")

        assert result.movements == []
        assert len(result.errors) == 1
        assert "not recognised" in result.errors[0]

    def test_empty_text(self):
        """Empty input is unrecognised, not an exception."""
        result = parse("")
        assert result.movements == []
        assert result.errors

    def test_markers_are_case_insensitive(self):
        assert looks_like_statement("Bienvenido a ING Direct")

    def test_structural_match_without_markers(self):
        assert looks_like_statement("01/12/2023 algo -5,00")
        assert not looks_like_statement("01/12/2023 sin importe")

    def test_clean_text(self):
        """Non-breaking spaces and trailing blanks are normalized."""
        assert clean_text("a\xa0b  \r\n\r\n\r\nc\n") == "a b\nc"


class TestMalformedLines:
    """Tests for tolerant and strict handling of bad lines."""

    TEXT = (
        "ING DIRECT\n"
        "31/02/2023 FECHA IMPOSIBLE -10,00 EUR 990,00 EUR\n"
        "01/02/2023 MERCADONA -45,67 EUR 1.000,00 EUR\n"
    )

    def test_tolerant_mode_skips_with_warning(self):
        """The impossible date is skipped and reported with its line number."""
        result = parse(self.TEXT)

        assert len(result.movements) == 1
        assert result.movements[0].description == "MERCADONA"
        assert len(result.errors) == 1
        assert "line 2" in result.errors[0]
        assert "invalid calendar date" in result.errors[0]
        assert result.metadata.error_count == 1

    def test_strict_mode_raises(self):
        """Strict mode escalates the first malformed line."""
        with pytest.raises(MalformedRecordError) as exc_info:
            parse(self.TEXT, STRICT)
        assert exc_info.value.location == "line 2"


# ---------------------------------------------------------------------------
# Source categories
# ---------------------------------------------------------------------------


class TestSourceCategories:
    """Tests for the keyword table that fills source_category."""

    @pytest.mark.parametrize(
        "description,expected",
        [
            ("BIZUM ENVIADO A JUAN", ("Bizum", "Transferencia")),
            ("Bizum recibido de Ana", ("Bizum", "Transferencia")),
            ("MERCADONA VALENCIA", ("Alimentación", "Supermercado")),
            ("REPSOL AV. DEL PUERTO", ("Transporte", "Gasolina")),
            ("BP OIL ESPAÑA", ("Transporte", "Gasolina")),
            ("AMAZON EU SARL", ("Compras Online", "Amazon")),
            ("RETIRADA CAJERO 1234", ("Efectivo", "Cajero")),
            ("TRANSFERENCIA A FAVOR DE", ("Transferencias", "Transferencia")),
            ("RECIBO IBERDROLA", ("Gastos Fijos", "Recibo")),
            ("NOMINA DICIEMBRE", ("Ingresos", "Nómina")),
            ("BAR PEPE", (None, None)),
        ],
    )
    def test_keyword_table(self, description, expected):
        assert detect_source_category(description) == expected

    def test_fuel_brand_needs_word_boundary(self):
        """'BP' inside another word is not a petrol station."""
        assert detect_source_category("SUBPROGRAMA") == (None, None)

    def test_parse_fills_source_category(self):
        result = parse("01/12/2023 MERCADONA COMPRA SUPERMERCADO -45,67 EUR 1.234,56 EUR")
        assert result.movements[0].source_category == "Alimentación"
        assert result.movements[0].source_subcategory == "Supermercado"

    def test_detection_can_be_disabled(self):
        config = ParserConfig(detect_source_categories=False)
        result = parse("01/12/2023 MERCADONA -45,67 EUR 1.234,56 EUR", config)
        assert result.movements[0].source_category is None
