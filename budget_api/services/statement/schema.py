"""
Worksheet layout detection for the "Liste des opérations" export.

The export has a free-form metadata block (account IBAN, opening and
closing balances) above a header row, then one operation per row:

    row 1..8   Compte      | CH93 0076 2011 6238 5295 7
               Solde initial | 1'250.40
               Solde final   | 980.15
    row 9      Date d'exécution | Date valeur | Libellé | Débit | Crédit | Solde
    row 10..   ...

Header matching is table-driven: every header cell is normalized and
looked up in HEADER_FIELDS. Unknown headers are ignored.
"""

import logging
import re
from typing import Optional, Sequence

from ...errors import SchemaError
from .normalize import normalize_header, normalize_iban, parse_number, to_text
from .records import DetectedSchema, ImportMetadata

logger = logging.getLogger(__name__)

Grid = Sequence[Sequence]

# normalized header label → canonical field
HEADER_FIELDS = {
    # date of the operation
    "dateoperation": "occurred_on",
    "date operation": "occurred_on",
    "date d operation": "occurred_on",
    "date comptable": "occurred_on",
    "date d execution": "occurred_on",
    "date": "occurred_on",
    "transaction date": "occurred_on",
    "booking date": "occurred_on",
    # value date
    "datevaleur": "value_date",
    "date valeur": "value_date",
    "date de valeur": "value_date",
    "value date": "value_date",
    # description
    "description": "description",
    "libelle": "description",
    "libelleoperation": "description",
    "libelle operation": "description",
    "libelle de l operation": "description",
    "operations": "description",
    "operation": "description",
    "texte": "description",
    # amounts
    "debit": "debit",
    "debit chf": "debit",
    "montant debit": "debit",
    "credit": "credit",
    "credit chf": "credit",
    "montant credit": "credit",
    # running balance
    "solde": "balance",
    "soldeapresoperation": "balance",
    "solde apres operation": "balance",
    "solde chf": "balance",
    "balance": "balance",
    "running balance": "balance",
    # account
    "compte": "iban",
    "iban": "iban",
    "compteiban": "iban",
    "compte iban": "iban",
    "account": "iban",
}

OPENING_BALANCE_RE = re.compile(
    r"solde ?(?:initial|de ?debut|debut)\b|\b(?:initial|opening|starting) balance\b"
)
CLOSING_BALANCE_RE = re.compile(
    r"solde ?(?:final|de ?fin|fin)\b|\b(?:final|closing|ending) balance\b"
)


def parse_start_row(value) -> Optional[int]:
    """Form field "start_row" → positive int, or None."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        if not value:
            return None
        value = value[0]
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    match = re.match(r"^\s*([+-]?\d+)", str(value))
    if not match:
        return None
    number = int(match.group(1))
    return number if number > 0 else None


def resolve_rows(start_row: Optional[int], default_header_row: int) -> tuple[int, int]:
    """
    Turn the caller's 1-based start-row hint into (header_row, first_data_row).

    start_row points at the first operation; the header is the row above.
    """
    if not isinstance(start_row, int) or isinstance(start_row, bool) or start_row <= 0:
        return default_header_row, default_header_row + 1
    if start_row == 1:
        return 1, 2
    header_row = max(1, start_row - 1)
    return header_row, max(header_row + 1, start_row)


def get_row(grid: Grid, row_number: int) -> Sequence:
    if row_number < 1 or row_number > len(grid):
        return ()
    return grid[row_number - 1] or ()


def get_cell(grid: Grid, row_number: int, col_number: int):
    row = get_row(grid, row_number)
    if col_number < 1 or col_number > len(row):
        return None
    return row[col_number - 1]


def extract_metadata(grid: Grid, header_row: int) -> ImportMetadata:
    """Scan every row above the header for the IBAN and the expected balances."""
    metadata = ImportMetadata()

    for row_number in range(1, header_row):
        row = get_row(grid, row_number)
        for col_number, value in enumerate(row, start=1):
            raw_text = to_text(value).strip()
            if not raw_text:
                continue

            normalized = normalize_header(raw_text)

            # IBAN: on the cell itself or its right neighbour
            if metadata.iban is None:
                candidate = normalize_iban(raw_text)
                if candidate is None:
                    candidate = normalize_iban(get_cell(grid, row_number, col_number + 1))
                if candidate:
                    metadata.iban = candidate

            if metadata.expected_start is None and OPENING_BALANCE_RE.search(normalized):
                neighbour = parse_number(get_cell(grid, row_number, col_number + 1))
                if neighbour is not None:
                    metadata.expected_start = neighbour

            if metadata.expected_end is None and CLOSING_BALANCE_RE.search(normalized):
                neighbour = parse_number(get_cell(grid, row_number, col_number + 1))
                if neighbour is not None:
                    metadata.expected_end = neighbour

    return metadata


def detect_columns(grid: Grid, header_row: int) -> dict[int, str]:
    row = get_row(grid, header_row)
    if not any(to_text(value).strip() for value in row):
        raise SchemaError(f"Header row not found (expected on row {header_row}).")

    columns = {}
    for col_number, value in enumerate(row, start=1):
        field = HEADER_FIELDS.get(normalize_header(value))
        if field:
            columns[col_number] = field

    if not columns:
        raise SchemaError(
            'Expected columns not found in the "Liste des opérations" sheet.',
            details={"header_row": header_row, "headers": [to_text(v) for v in row if to_text(v)]},
        )
    return columns


def detect_schema(grid: Grid, start_row: Optional[int] = None, default_header_row: int = 9) -> DetectedSchema:
    header_row, first_data_row = resolve_rows(start_row, default_header_row)
    metadata = extract_metadata(grid, header_row)
    columns = detect_columns(grid, header_row)
    logger.debug(
        f"Detected header on row {header_row} "
        f"({', '.join(sorted(set(columns.values())))}), data from row {first_data_row}"
    )
    return DetectedSchema(
        header_row_number=header_row,
        first_data_row_number=first_data_row,
        columns=columns,
        metadata=metadata,
    )
