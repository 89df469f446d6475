"""
Bank statement reading: workbook → grid → detected layout → parsed rows,
with expected balances reconciled from whatever the file provides.
"""

from typing import Optional

from .normalize import format_date, normalize_header, normalize_iban, normalize_label, parse_date, parse_number
from .parser import parse_rows
from .reconcile import reconcile_balances
from .records import DetectedSchema, ImportMetadata, ParsedRow, ParsedStatement
from .schema import detect_schema, parse_start_row, resolve_rows
from .workbook import SHEET_NAME, load_grid, load_stub_statement


def parse_grid(grid, start_row: Optional[int] = None, default_header_row: int = 9) -> ParsedStatement:
    schema = detect_schema(grid, start_row=start_row, default_header_row=default_header_row)
    rows = parse_rows(grid, schema)
    return ParsedStatement(metadata=reconcile_balances(rows, schema.metadata), rows=rows)


def read_statement(content: bytes, start_row: Optional[int] = None, default_header_row: int = 9) -> ParsedStatement:
    """Parse an uploaded .xlsx export."""
    return parse_grid(load_grid(content), start_row=start_row, default_header_row=default_header_row)


__all__ = [
    "DetectedSchema", "ImportMetadata", "ParsedRow", "ParsedStatement", "SHEET_NAME",
    "detect_schema", "format_date", "load_grid", "load_stub_statement", "normalize_header",
    "normalize_iban", "normalize_label", "parse_date", "parse_grid", "parse_number",
    "parse_rows", "parse_start_row", "read_statement", "reconcile_balances", "resolve_rows",
]
