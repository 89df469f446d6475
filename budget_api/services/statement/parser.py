"""
Row parsing for the "Liste des opérations" export.

Walks the data rows under the detected header, producing ParsedRow
records with a signed amount (credit positive, debit negative).
"""

from .normalize import format_date, normalize_iban, parse_number, to_text
from .records import DetectedSchema, ParsedRow
from .schema import Grid, get_row


def _round2(value):
    return round(value, 2) if value is not None else None


def signed_amount(debit, credit):
    if debit is not None and credit is not None:
        return _round2(credit - debit)
    if debit is not None:
        return _round2(-abs(debit))
    if credit is not None:
        return _round2(abs(credit))
    return None


def sort_rows(rows: list[ParsedRow]) -> list[ParsedRow]:
    """
    Order rows by occurred_on, keeping file order for equal dates.

    Undated rows stay where they were relative to their dated neighbours
    that precede them in the file: each undated row inherits the date of
    the closest dated row above it.
    """
    keyed = []
    last_date = ""
    for row in rows:
        if row.occurred_on:
            last_date = row.occurred_on
        keyed.append(((row.occurred_on or last_date), row.row_number, row))
    keyed.sort(key=lambda item: (item[0], item[1]))
    return [row for _, _, row in keyed]


def parse_rows(grid: Grid, schema: DetectedSchema) -> list[ParsedRow]:
    rows = []
    start = schema.first_data_row_number
    if start <= schema.header_row_number:
        start = schema.header_row_number + 1

    for row_number in range(start, len(grid) + 1):
        cells = get_row(grid, row_number)
        if not cells:
            continue

        record = {}
        for col_number, field in schema.columns.items():
            record[field] = cells[col_number - 1] if col_number <= len(cells) else None

        raw_description = to_text(record.get("description")).strip()
        description = " ".join(raw_description.split())
        occurred_on = format_date(record.get("occurred_on"))
        value_date = format_date(record.get("value_date"))
        amount = signed_amount(parse_number(record.get("debit")), parse_number(record.get("credit")))
        balance_after = parse_number(record.get("balance"))
        iban = normalize_iban(record.get("iban")) if record.get("iban") else None

        # Blank row
        if not description and amount is None and not occurred_on:
            continue

        rows.append(ParsedRow(
            row_number=row_number,
            occurred_on=occurred_on,
            value_date=value_date,
            description=description,
            raw_description=raw_description,
            amount=amount,
            balance_after=_round2(balance_after),
            iban=iban,
        ))

    return sort_rows(rows)
