"""
Loading the uploaded workbook (or the stub fixture) into a plain grid.

Everything downstream works on a list of rows of raw cell values, so the
detector and the parser can be exercised without a real .xlsx file.
"""

import io
import json
import logging
import zipfile
from pathlib import Path

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ...errors import ValidationError
from .normalize import normalize_iban, normalize_label
from .records import ImportMetadata, ParsedRow, ParsedStatement
from .parser import sort_rows
from .reconcile import reconcile_balances

logger = logging.getLogger(__name__)

SHEET_NAME = "Liste des opérations"


def _find_sheet(workbook):
    if SHEET_NAME in workbook.sheetnames:
        return workbook[SHEET_NAME]
    # Tolerate case/accent differences ("Liste des operations")
    wanted = normalize_label(SHEET_NAME)
    for name in workbook.sheetnames:
        if normalize_label(name) == wanted:
            return workbook[name]
    return None


def load_grid(content: bytes) -> list[list]:
    """Read the operations sheet of an .xlsx file as a list of rows (row 1 first)."""
    if not content:
        raise ValidationError("No Excel file received.")

    try:
        workbook = load_workbook(io.BytesIO(content), data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        raise ValidationError(f"Unreadable Excel file: {e}")

    try:
        worksheet = _find_sheet(workbook)
        if worksheet is None:
            raise ValidationError(
                f'Sheet "{SHEET_NAME}" not found.',
                details={"sheets": workbook.sheetnames},
            )
        grid = [list(row) for row in worksheet.iter_rows(min_row=1, min_col=1, values_only=True)]
    finally:
        workbook.close()

    logger.debug(f"Loaded {len(grid)} rows from sheet '{worksheet.title}'")
    return grid


def _fixture_number(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def load_stub_statement(path: Path) -> ParsedStatement:
    """
    Read the JSON fixture used when uploads are disabled.

    Shape: {"metadata": {"iban", "expected_start_balance", "expected_end_balance"},
            "rows": [{"occurred_on", "value_date", "description", "debit", "credit",
                      "balance_after", "iban"}]}
    """
    with open(path, encoding="utf-8") as fh:
        raw = json.load(fh)

    meta = raw.get("metadata") or {}
    metadata = ImportMetadata(
        iban=normalize_iban(meta.get("iban")),
        expected_start=_fixture_number(meta.get("expected_start_balance")),
        expected_end=_fixture_number(meta.get("expected_end_balance")),
    )

    rows = []
    for index, item in enumerate(raw.get("rows") or [], start=1):
        debit = _fixture_number(item.get("debit"))
        credit = _fixture_number(item.get("credit"))
        amount = round((abs(credit) if credit is not None else 0) - (abs(debit) if debit is not None else 0), 2)
        balance = _fixture_number(item.get("balance_after"))
        description = (item.get("description") or "").strip()
        rows.append(ParsedRow(
            row_number=index,
            occurred_on=item.get("occurred_on"),
            value_date=item.get("value_date"),
            description=description,
            raw_description=description,
            amount=amount,
            balance_after=round(balance, 2) if balance is not None else None,
            iban=normalize_iban(item.get("iban")) or metadata.iban,
        ))

    rows = sort_rows(rows)
    return ParsedStatement(metadata=reconcile_balances(rows, metadata), rows=rows)
