"""Shared pytest fixtures for statement-ingest tests.

Provides reusable fixtures for:
- Paths to the sample statement files in ``tests/fixtures/``.
- sample_movements: a short, balance-consistent statement in the
  institution's most-recent-first order.
- tmp_project_dir: a temporary directory initialized with the default
  ``ingest.toml`` and ``rules.toml``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from statement_ingest.config import initialize
from statement_ingest.models import RawMovement

# ---------------------------------------------------------------------------
# Path constants
# ---------------------------------------------------------------------------

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ---------------------------------------------------------------------------
# Fixture file path helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def fixtures_dir() -> Path:
    """Path to the tests/fixtures/ directory."""
    return FIXTURES_DIR


@pytest.fixture
def statement_text_path() -> Path:
    """Pasted plain-text statement with four movements."""
    return FIXTURES_DIR / "ing_statement.txt"


@pytest.fixture
def statement_text(statement_text_path: Path) -> str:
    return statement_text_path.read_text(encoding="utf-8")


@pytest.fixture
def pdf_text_path() -> Path:
    """Text extracted from a statement PDF, three movements."""
    return FIXTURES_DIR / "ing_statement.pdf.txt"


@pytest.fixture
def export_csv_path() -> Path:
    """Spreadsheet export saved as CSV, most recent row first."""
    return FIXTURES_DIR / "ing_export.csv"


# ---------------------------------------------------------------------------
# Movements
# ---------------------------------------------------------------------------


def _movement(
    day: date = date(2023, 12, 1),
    description: str = "MERCADONA COMPRA SUPERMERCADO",
    amount: str = "-45.67",
    balance: str = "1234.56",
    **kwargs,
) -> RawMovement:
    """Build a RawMovement with sensible defaults; override any field."""
    return RawMovement(
        date=day,
        description=description,
        amount=Decimal(amount),
        balance=Decimal(balance),
        **kwargs,
    )


@pytest.fixture
def sample_movements() -> list[RawMovement]:
    """Four movements, newest first, with consistent running balances."""
    return [
        _movement(date(2023, 12, 15), "BIZUM ENVIADO A LAURA", "-20.00", "3389.89"),
        _movement(date(2023, 12, 5), "NOMINA EMPRESA SL", "2200.00", "3409.89"),
        _movement(date(2023, 12, 3), "REPSOL ESTACION 123", "-24.67", "1209.89"),
        _movement(date(2023, 12, 1), "MERCADONA COMPRA SUPERMERCADO", "-45.67", "1234.56"),
    ]


# ---------------------------------------------------------------------------
# tmp_project_dir -- temp directory with default configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """A project directory created by ``initialize()``."""
    project = tmp_path / "project"
    initialize(project)
    return project
