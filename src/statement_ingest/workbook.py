"""Loading spreadsheet exports into a plain cell grid.

The tabular parser works on a list of rows of cell values and does not
care where they came from. This module produces that grid from the
institution's ``.xlsx`` export (via ``openpyxl``) or from a ``.csv`` file.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path

from openpyxl import load_workbook

logger = logging.getLogger(__name__)

WORKBOOK_SUFFIXES = (".xlsx", ".xlsm")
CSV_SUFFIXES = (".csv",)


def read_grid(path: Path) -> list[list[object]] | None:
    """Read the first sheet of a workbook, or a CSV file, as rows of cells.

    Workbook cells keep their native types (``datetime``, ``float``,
    ``int``, ``str``, ``None``); formulas yield their cached values. CSV
    cells are strings, with ``;`` or ``,`` detected as the delimiter.

    Args:
        path: Path to a ``.xlsx``/``.xlsm`` or ``.csv`` file.

    Returns:
        The grid, or ``None`` if the workbook contains no sheet.

    Raises:
        ValueError: If the suffix is not a supported spreadsheet format.
        OSError: If the file cannot be read.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in WORKBOOK_SUFFIXES:
        return _read_workbook(path)
    if suffix in CSV_SUFFIXES:
        return _read_csv(path)
    raise ValueError(f"{path}: unsupported spreadsheet format {suffix!r}")


def _read_workbook(path: Path) -> list[list[object]] | None:
    workbook = load_workbook(path, read_only=True, data_only=True)
    try:
        if not workbook.worksheets:
            return None
        sheet = workbook.worksheets[0]
        logger.debug("Reading sheet %r of %s", sheet.title, path)
        return [list(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def _read_csv(path: Path) -> list[list[object]]:
    # utf-8-sig drops the BOM the institution's export starts with.
    with open(path, newline="", encoding="utf-8-sig") as f:
        content = f.read()
    if not content.strip():
        return []
    try:
        dialect = csv.Sniffer().sniff(content[:4096], delimiters=";,")
        delimiter = dialect.delimiter
    except csv.Error:
        delimiter = ";"
    return [list(row) for row in csv.reader(content.splitlines(), delimiter=delimiter)]
