import io
from datetime import datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook

from budget_api import database
from budget_api.config import Settings, get_settings
from budget_api.main import app
from budget_api.models import Account, Category, Rule, Transaction
from budget_api.services.batch_store import InMemoryBatchStore

IBAN = "CH9300762011623852957"
OTHER_IBAN = "DE89370400440532013000"

HEADERS = ["Date d'exécution", "Date valeur", "Libellé", "Débit", "Crédit", "Solde", "Compte"]


def build_workbook(rows, metadata_rows=None, headers=None, header_row=9, sheet="Liste des opérations"):
    """An in-memory .xlsx shaped like the bank's "Liste des opérations" export."""
    wb = Workbook()
    ws = wb.active
    ws.title = sheet
    for r, values in enumerate(metadata_rows or [], start=1):
        for c, value in enumerate(values, start=1):
            ws.cell(row=r, column=c, value=value)
    for c, value in enumerate(headers or HEADERS, start=1):
        ws.cell(row=header_row, column=c, value=value)
    for r, values in enumerate(rows, start=header_row + 1):
        for c, value in enumerate(values, start=1):
            ws.cell(row=r, column=c, value=value)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def default_metadata(iban="CH93 0076 2011 6238 5295 7", start=None, end=None):
    rows = [
        ["Liste des opérations"],
        ["Compte", iban],
    ]
    if start is not None:
        rows.append(["Solde initial", start])
    if end is not None:
        rows.append(["Solde final", end])
    return rows


@pytest.fixture()
def db_url(tmp_path: Path):
    return f"sqlite:///{tmp_path / 'test.sqlite'}"


@pytest.fixture()
def settings(db_url):
    return Settings(database_url=db_url)


@pytest.fixture()
def db(db_url):
    database.configure_engine(db_url)
    database.init_db()
    session = database.SessionLocal()
    yield session
    session.close()
    database.engine.dispose()


@pytest.fixture()
def client(db, settings):
    app.dependency_overrides[get_settings] = lambda: settings
    app.state.batch_memory = InMemoryBatchStore()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def account(db):
    acct = Account(name="Compte courant", iban=IBAN, currency_code="CHF")
    db.add(acct)
    db.commit()
    return acct


@pytest.fixture()
def categories(db):
    cats = {
        "Divers-income": Category(name="Divers", kind="income"),
        "Divers-expense": Category(name="Divers", kind="expense"),
        "Courses": Category(name="Courses", kind="expense"),
        "Salaire": Category(name="Salaire", kind="income"),
        "Logement": Category(name="Logement", kind="expense"),
    }
    db.add_all(cats.values())
    db.commit()
    return cats


def add_rule(db, kind, category, keywords, priority=0, enabled=True, created_at=None):
    rule = Rule(
        target_kind=kind,
        category_id=category.id,
        keywords=keywords,
        priority=priority,
        enabled=enabled,
        created_at=created_at or datetime.utcnow(),
    )
    db.add(rule)
    db.commit()
    return rule


def add_ledger_transaction(db, account, occurred_on, amount, description):
    txn = Transaction(
        account_id=account.id,
        occurred_on=occurred_on,
        amount=amount,
        currency_code="CHF",
        description=description,
        status="real",
    )
    db.add(txn)
    db.commit()
    return txn


def upload(client, content, filename="liste_operations.xlsx", **form):
    return client.post(
        "/imports/excel",
        files={"file": (filename, content, "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")},
        data=form,
    )
