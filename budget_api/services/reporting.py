"""
Import reports and the cross-import summary.

Every report carries every key with explicit zeros, so clients can
render totals without checking for missing fields:

    {
        "totals":   {"parsed": 9, "created": 6, "ignored": 3},
        "ignored":  {"duplicates": 2, "missing_account": 1, "invalid": 0},
        "accounts": [{"id", "name", "iban", "created"}],
        "categories": [{"id", "name", "kind", "count"}],   # count descending
        "balances": {"expected": {"start", "end"}, "actual": {"start", "end"}},
    }
"""

import io
import json
import logging
from collections import OrderedDict
from typing import Iterable, Optional

import pandas as pd

from ..models import BATCH_STATUSES

logger = logging.getLogger(__name__)

IGNORED_BUCKETS = ("duplicates", "missing_account", "invalid")


def empty_report(expected_start: Optional[float] = None, expected_end: Optional[float] = None) -> dict:
    return {
        "totals": {"parsed": 0, "created": 0, "ignored": 0},
        "ignored": {bucket: 0 for bucket in IGNORED_BUCKETS},
        "accounts": [],
        "categories": [],
        "balances": {
            "expected": {"start": expected_start, "end": expected_end},
            "actual": {"start": None, "end": None},
        },
    }


def actual_balances(entries: Iterable[tuple]) -> dict:
    """
    (occurred_on, amount, balance_after) entries, in insertion order →
    {"start", "end"}: end is the balance after the latest entry carrying
    one, start is end minus the net amount of all entries.
    """
    entries = list(entries)
    result = {"start": None, "end": None}
    if not entries:
        return result

    net = sum(float(amount) for _, amount, _ in entries)
    with_balance = [e for e in entries if e[2] is not None]
    # sorted() is stable: same-day entries keep insertion order
    with_balance = sorted(with_balance, key=lambda e: str(e[0]))
    if with_balance:
        end = float(with_balance[-1][2])
        result["end"] = round(end, 2)
        result["start"] = round(end - net, 2)
    return result


def _sort_categories(categories: Iterable[dict]) -> list[dict]:
    return sorted(categories, key=lambda c: -c["count"])


class ImportReport:
    """Tallies built up while a batch is processed."""

    def __init__(self, parsed: int, expected_start=None, expected_end=None):
        self.parsed = parsed
        self.expected_start = expected_start
        self.expected_end = expected_end
        self.ignored = {bucket: 0 for bucket in IGNORED_BUCKETS}
        self.accounts: "OrderedDict[int, dict]" = OrderedDict()
        self.categories: "OrderedDict[int, dict]" = OrderedDict()
        self.created_entries: list[tuple] = []

    @property
    def created(self) -> int:
        return len(self.created_entries)

    def ignore(self, bucket: str):
        self.ignored[bucket] += 1

    def record_created(self, account, category, occurred_on, amount, balance_after):
        self.created_entries.append((occurred_on, amount, balance_after))

        if account.id not in self.accounts:
            self.accounts[account.id] = {
                "id": account.id,
                "name": account.name,
                "iban": account.iban,
                "created": 0,
            }
        self.accounts[account.id]["created"] += 1

        if category is not None:
            if category.id not in self.categories:
                self.categories[category.id] = {
                    "id": category.id,
                    "name": category.name,
                    "kind": category.kind,
                    "count": 0,
                }
            self.categories[category.id]["count"] += 1

    def to_dict(self) -> dict:
        report = empty_report(self.expected_start, self.expected_end)
        report["totals"] = {
            "parsed": self.parsed,
            "created": self.created,
            "ignored": sum(self.ignored.values()),
        }
        report["ignored"] = dict(self.ignored)
        report["accounts"] = list(self.accounts.values())
        report["categories"] = _sort_categories(self.categories.values())
        report["balances"]["actual"] = actual_balances(self.created_entries)
        return report


def load_stored_report(message: Optional[str]) -> dict:
    """The JSON report saved on a batch, or {} when the message is an error text."""
    if not message:
        return {}
    try:
        stored = json.loads(message)
    except (TypeError, ValueError):
        return {}
    return stored if isinstance(stored, dict) else {}


def _int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def normalize_report(batch, transactions: list) -> dict:
    """
    Rebuild a batch report from its stored transactions and its saved message.

    Created counts, per-account and per-category tallies and actual balances
    come from the ledger; parsed count, ignored buckets and expected
    balances can only come from the saved report.
    """
    stored = load_stored_report(batch.message)
    stored_totals = stored.get("totals") or {}
    stored_ignored = stored.get("ignored") or {}
    expected = (stored.get("balances") or {}).get("expected") or {}

    report = ImportReport(
        parsed=_int(stored_totals.get("parsed", batch.rows_count)),
        expected_start=expected.get("start"),
        expected_end=expected.get("end"),
    )
    for bucket in IGNORED_BUCKETS:
        report.ignored[bucket] = _int(stored_ignored.get(bucket))

    for txn in sorted(transactions, key=lambda t: t.id):
        report.record_created(txn.account, txn.category, txn.occurred_on, txn.amount, txn.balance_after)

    stored_created = stored_totals.get("created")
    if stored_created is not None and _int(stored_created) != report.created:
        logger.warning(
            f"Import {batch.id}: stored report says {stored_created} created, "
            f"ledger has {report.created}; using the ledger"
        )
    return report.to_dict()


def batch_to_dict(batch) -> dict:
    return {
        "id": batch.id,
        "source": batch.source,
        "original_filename": batch.original_filename,
        "hash": batch.hash,
        "status": batch.status,
        "rows_count": batch.rows_count,
        "message": batch.message,
        "created_at": batch.created_at.isoformat() if batch.created_at else None,
    }


# ── Cross-import summary ──

def empty_summary() -> dict:
    return {
        "counts": {
            "batches": 0, "completed": 0, "failed": 0, "pending": 0,
            "parsed": 0, "created": 0, "ignored": 0,
        },
        "ignored": {bucket: 0 for bucket in IGNORED_BUCKETS},
        "accounts": [],
        "categories": [],
        "balances": {"start": None, "end": None},
        "batches": [],
    }


def add_batch_to_summary(summary: dict, batch_row: dict, report: dict):
    """Fold one batch (as batch_to_dict-like dict) and its report into the summary counts."""
    counts = summary["counts"]
    counts["batches"] += 1
    if batch_row["status"] in BATCH_STATUSES:
        counts[batch_row["status"]] += 1

    ignored = report.get("ignored") or {}
    ignored_total = 0
    for bucket in IGNORED_BUCKETS:
        value = _int(ignored.get(bucket))
        summary["ignored"][bucket] += value
        ignored_total += value

    created = _int((report.get("totals") or {}).get("created"))
    counts["parsed"] += _int((report.get("totals") or {}).get("parsed"))
    counts["created"] += created
    counts["ignored"] += ignored_total

    summary["batches"].append({
        "id": batch_row["id"],
        "original_filename": batch_row.get("original_filename"),
        "status": batch_row["status"],
        "created_at": batch_row.get("created_at"),
        "rows_count": batch_row.get("rows_count", 0),
        "created": created,
        "ignored": ignored_total,
    })


def summary_totals_balances(accounts: list[dict]) -> dict:
    starts = [a["balance"]["start"] for a in accounts if a["balance"]["start"] is not None]
    ends = [a["balance"]["end"] for a in accounts if a["balance"]["end"] is not None]
    return {
        "start": round(sum(starts), 2) if starts else None,
        "end": round(sum(ends), 2) if ends else None,
    }


def summary_workbook(summary: dict) -> bytes:
    """Render the summary as an .xlsx file: a global sheet and a per-import sheet."""
    counts = pd.DataFrame(
        [{"metric": key, "value": value} for key, value in summary["counts"].items()]
        + [{"metric": f"ignored_{key}", "value": value} for key, value in summary["ignored"].items()]
        + [{"metric": f"balance_{key}", "value": value} for key, value in summary["balances"].items()]
    )
    accounts = pd.DataFrame(
        [
            {
                "account_id": a["id"],
                "name": a["name"],
                "iban": a["iban"],
                "transactions": a["transactions"],
                "net_amount": a["net_amount"],
                "balance_start": a["balance"]["start"],
                "balance_end": a["balance"]["end"],
            }
            for a in summary["accounts"]
        ],
        columns=["account_id", "name", "iban", "transactions", "net_amount", "balance_start", "balance_end"],
    )
    categories = pd.DataFrame(
        summary["categories"],
        columns=["id", "name", "kind", "count", "amount"],
    )
    batches = pd.DataFrame(
        summary["batches"],
        columns=["id", "original_filename", "status", "created_at", "rows_count", "created", "ignored"],
    )

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        counts.to_excel(writer, sheet_name="Global summary", index=False, startrow=0)
        row = len(counts) + 2
        accounts.to_excel(writer, sheet_name="Global summary", index=False, startrow=row)
        row += len(accounts) + 2
        categories.to_excel(writer, sheet_name="Global summary", index=False, startrow=row)
        batches.to_excel(writer, sheet_name="Imports", index=False)
    return buffer.getvalue()
