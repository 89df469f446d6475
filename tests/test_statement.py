from datetime import datetime

import pytest

from budget_api.errors import SchemaError, ValidationError
from budget_api.services.statement import load_grid, load_stub_statement, parse_grid, read_statement
from budget_api.services.statement.parser import parse_rows, signed_amount
from budget_api.services.statement.reconcile import reconcile_balances
from budget_api.services.statement.records import ImportMetadata, ParsedRow
from budget_api.services.statement.schema import (
    HEADER_FIELDS,
    detect_columns,
    detect_schema,
    extract_metadata,
    parse_start_row,
    resolve_rows,
)
from budget_api.config import DEFAULT_STUB_FIXTURE

from conftest import IBAN, build_workbook, default_metadata


def grid_with_header(header, rows, header_row=9, metadata=None):
    grid = [list(r) for r in (metadata or [])]
    while len(grid) < header_row - 1:
        grid.append([])
    grid.append(list(header))
    grid.extend(list(r) for r in rows)
    return grid


# ── Start row / header row resolution ──

@pytest.mark.parametrize(
    "hint, expected",
    [
        (None, (9, 10)),
        (0, (9, 10)),
        (-3, (9, 10)),
        (1, (1, 2)),
        (2, (1, 2)),
        (12, (11, 12)),
    ],
)
def test_resolve_rows(hint, expected):
    assert resolve_rows(hint, 9) == expected


def test_parse_start_row():
    assert parse_start_row("12") == 12
    assert parse_start_row(["4", "7"]) == 4
    assert parse_start_row(3) == 3
    assert parse_start_row("0") is None
    assert parse_start_row("-2") is None
    assert parse_start_row("abc") is None
    assert parse_start_row(None) is None


# ── Header mapping ──

@pytest.mark.parametrize(
    "label, field",
    [
        ("Date d'exécution", "occurred_on"),
        ("Date comptable", "occurred_on"),
        ("Date valeur", "value_date"),
        ("Libellé", "description"),
        ("Opérations", "description"),
        ("Débit", "debit"),
        ("Crédit", "credit"),
        ("Solde après opération", "balance"),
        ("Compte IBAN", "iban"),
    ],
)
def test_header_labels_map_to_fields(label, field):
    grid = grid_with_header([label], [], header_row=1)
    assert detect_columns(grid, 1) == {1: field}
    assert field in HEADER_FIELDS.values()


def test_unknown_headers_are_ignored():
    grid = grid_with_header(["Date", "Référence interne", "Libellé", "Débit"], [], header_row=1)
    assert detect_columns(grid, 1) == {1: "occurred_on", 3: "description", 4: "debit"}


def test_missing_header_row_raises():
    with pytest.raises(SchemaError):
        detect_columns([["x"]], 9)
    with pytest.raises(SchemaError):
        detect_columns(grid_with_header([None, ""], [], header_row=2), 2)


def test_no_recognized_columns_raises():
    grid = grid_with_header(["Foo", "Bar"], [], header_row=1)
    with pytest.raises(SchemaError):
        detect_columns(grid, 1)


# ── Metadata block ──

def test_extract_metadata_reads_iban_and_balances():
    grid = [
        ["Liste des opérations"],
        ["Compte", "CH93 0076 2011 6238 5295 7"],
        ["Solde initial", "1'250.40"],
        [None, "Solde final", -80.5],
    ]
    metadata = extract_metadata(grid, header_row=9)
    assert metadata.iban == IBAN
    assert metadata.expected_start == 1250.40
    assert metadata.expected_end == -80.5


def test_extract_metadata_keeps_first_values():
    grid = [
        ["IBAN CH9300762011623852957"],
        ["Compte", "DE89370400440532013000"],
        ["Solde de début", 10],
        ["Solde de début", 20],
    ]
    metadata = extract_metadata(grid, header_row=9)
    assert metadata.iban == IBAN
    assert metadata.expected_start == 10
    assert metadata.expected_end is None


def test_extract_metadata_skips_period_line():
    grid = [
        ["Liste des opérations"],
        ["Période du 01.01.2024 au 31.01.2024"],
        ["Compte", "CH93 0076 2011 6238 5295 7"],
    ]
    grid = grid_with_header(["Date", "Libellé", "Débit"], [["2024-01-02", "Migros", 5]], metadata=grid)
    statement = parse_grid(grid)
    assert statement.metadata.iban == IBAN


def test_extract_metadata_ignores_rows_below_header():
    grid = grid_with_header(["Date", "Libellé"], [["Solde final", 99]], header_row=3)
    assert extract_metadata(grid, header_row=3).expected_end is None


# ── Row parsing ──

def test_signed_amount():
    assert signed_amount(10.0, None) == -10.0
    assert signed_amount(-10.0, None) == -10.0
    assert signed_amount(None, 25.456) == 25.46
    assert signed_amount(5.0, 20.0) == 15.0
    assert signed_amount(None, None) is None


def test_parse_rows_blank_rows_are_dropped():
    grid = grid_with_header(
        ["Date", "Libellé", "Débit", "Crédit"],
        [
            ["2024-01-02", "Migros", 10, None],
            [None, None, None, None],
            [None, "   ", "", None],
            ["2024-01-03", "Salaire", None, 100],
        ],
        header_row=1,
    )
    schema = detect_schema(grid, start_row=2)
    rows = parse_rows(grid, schema)
    assert [r.description for r in rows] == ["Migros", "Salaire"]
    assert [r.amount for r in rows] == [-10.0, 100.0]


def test_parse_rows_sorted_by_date_stable():
    grid = grid_with_header(
        ["Date", "Libellé", "Débit"],
        [
            ["05.01.2024", "C", 1],
            ["02.01.2024", "A", 1],
            ["05.01.2024", "D", 1],
            ["02.01.2024", "B", 1],
        ],
        header_row=1,
    )
    rows = parse_rows(grid, detect_schema(grid, start_row=2))
    assert [r.description for r in rows] == ["A", "B", "C", "D"]
    assert [r.row_number for r in rows] == [3, 5, 2, 4]


def test_parse_rows_keeps_undated_rows_with_previous_row():
    grid = grid_with_header(
        ["Date", "Libellé", "Débit"],
        [
            ["03.01.2024", "late", 1],
            ["01.01.2024", "early", 1],
            [None, "early detail", 1],
        ],
        header_row=1,
    )
    rows = parse_rows(grid, detect_schema(grid, start_row=2))
    assert [r.description for r in rows] == ["early", "early detail", "late"]


def test_parse_rows_reads_every_field():
    grid = grid_with_header(
        ["Date d'exécution", "Date valeur", "Libellé", "Débit", "Crédit", "Solde", "Compte"],
        [[datetime(2024, 1, 2), "03.01.2024", "  Achat   Migros ", 84.349, None, "1'415.651", "de89 3704 0044 0532 0130 00"]],
    )
    rows = parse_rows(grid, detect_schema(grid))
    assert len(rows) == 1
    row = rows[0]
    assert row.row_number == 10
    assert row.occurred_on == "2024-01-02"
    assert row.value_date == "2024-01-03"
    assert row.description == "Achat Migros"
    assert row.raw_description == "Achat   Migros"
    assert row.amount == -84.35
    assert row.balance_after == 1415.65
    assert row.iban == "DE89370400440532013000"


def test_start_row_hint_moves_header():
    grid = grid_with_header(["Date", "Libellé", "Débit"], [["2024-01-02", "X", 5]], header_row=4)
    statement = parse_grid(grid, start_row=5)
    assert len(statement.rows) == 1
    with pytest.raises(SchemaError):
        parse_grid(grid)  # default header row 9 is empty


# ── Balance reconciliation ──

def _row(n, amount, balance=None, day=None):
    return ParsedRow(
        row_number=n,
        occurred_on=day or f"2024-01-{n:02d}",
        description=f"op {n}",
        amount=amount,
        balance_after=balance,
    )


def test_reconcile_from_first_and_last_balance_rows():
    rows = [_row(1, -20.0, 980.0), _row(2, 50.0), _row(3, -30.0, 1000.0)]
    result = reconcile_balances(rows, ImportMetadata())
    assert result.expected_start == 1000.0  # 980 - (-20)
    assert result.expected_end == 1000.0


def test_reconcile_derives_end_from_start():
    rows = [_row(1, -20.0), _row(2, 50.5)]
    result = reconcile_balances(rows, ImportMetadata(expected_start=100.0))
    assert result.expected_end == 130.5


def test_reconcile_derives_start_from_end():
    rows = [_row(1, -20.0), _row(2, 50.5)]
    result = reconcile_balances(rows, ImportMetadata(expected_end=100.0))
    assert result.expected_start == 69.5


def test_reconcile_explicit_values_win():
    rows = [_row(1, -20.0, 980.0)]
    result = reconcile_balances(rows, ImportMetadata(expected_start=1.0, expected_end=2.0))
    assert (result.expected_start, result.expected_end) == (1.0, 2.0)


def test_reconcile_without_evidence_leaves_nulls():
    result = reconcile_balances([_row(1, -20.0)], ImportMetadata(iban=IBAN))
    assert result.expected_start is None
    assert result.expected_end is None
    assert result.iban == IBAN


def test_reconcile_first_balance_row_without_amount():
    rows = [ParsedRow(row_number=1, occurred_on="2024-01-01", description="report", amount=None, balance_after=500.0)]
    result = reconcile_balances(rows, ImportMetadata())
    assert result.expected_start == 500.0
    assert result.expected_end == 500.0


# ── Workbook loading ──

def test_read_statement_from_workbook():
    content = build_workbook(
        [
            ["02.01.2024", "02.01.2024", "Achat Migros", 84.35, None, 1415.65, None],
            ["05.01.2024", "05.01.2024", "Salaire janvier", None, 5200, 6615.65, None],
        ],
        metadata_rows=default_metadata(),
    )
    statement = read_statement(content)
    assert statement.metadata.iban == IBAN
    assert statement.metadata.expected_start == 1500.0
    assert statement.metadata.expected_end == 6615.65
    assert [r.amount for r in statement.rows] == [-84.35, 5200.0]


def test_load_grid_rejects_missing_sheet():
    content = build_workbook([], sheet="Feuil1")
    with pytest.raises(ValidationError):
        load_grid(content)


def test_load_grid_accepts_unaccented_sheet_name():
    content = build_workbook([["2024-01-02", None, "X", 1]], sheet="Liste des operations")
    assert len(load_grid(content)) == 10


def test_load_grid_rejects_garbage():
    with pytest.raises(ValidationError):
        load_grid(b"not a workbook")
    with pytest.raises(ValidationError):
        load_grid(b"")


def test_stub_fixture():
    statement = load_stub_statement(DEFAULT_STUB_FIXTURE)
    assert len(statement.rows) == 4
    assert statement.rows[0].amount == -84.35
    assert all(r.iban == IBAN for r in statement.rows)
    assert statement.metadata.expected_start == 1500.0
    assert statement.metadata.expected_end == round(1500.0 - 84.35 + 5200.0 - 1850.0 - 185.0, 2)
