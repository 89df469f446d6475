"""
Import batch stores.

The routers talk to a BatchStore and never to the database directly, so
the same endpoints serve both operating modes:

- SqlBatchStore: the normal mode. Imports run through the orchestrator
  against the ledger; batches and reports are read back from the tables.
- InMemoryBatchStore: the no-database mode (DISABLE_DB=1). Statements are
  parsed and counted but nothing is deduplicated, categorized or
  persisted; batches live in this process only, in the instance the app
  owns (app.state.batch_memory).
"""

import logging
import threading
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..errors import NotFoundError
from ..models import Account, Category, ImportBatch, Transaction
from .importer import ImportResult, offline_report, run_import
from .reporting import (
    actual_balances, add_batch_to_summary, batch_to_dict, empty_summary,
    load_stored_report, normalize_report, summary_totals_balances,
)
from .statement.records import ParsedStatement

logger = logging.getLogger(__name__)


class BatchStore:
    """Contract shared by both modes."""

    def run_import(
        self,
        parsed: ParsedStatement,
        filename: Optional[str] = None,
        file_hash: Optional[str] = None,
        manual_iban: Optional[str] = None,
    ) -> ImportResult:
        raise NotImplementedError

    def get(self, batch_id: int) -> dict:
        """Batch fields plus its normalized report. NotFoundError if unknown."""
        raise NotImplementedError

    def commit(self, batch_id: int):
        """Mark a batch completed (idempotent). NotFoundError if unknown."""
        raise NotImplementedError

    def summary(self) -> dict:
        raise NotImplementedError


class SqlBatchStore(BatchStore):
    def __init__(self, db: Session, default_currency: str = "CHF"):
        self.db = db
        self.default_currency = default_currency

    def run_import(self, parsed, filename=None, file_hash=None, manual_iban=None) -> ImportResult:
        return run_import(
            self.db,
            parsed,
            filename=filename,
            file_hash=file_hash,
            manual_iban=manual_iban,
            default_currency=self.default_currency,
        )

    def _transactions_for(self, batch_id: int) -> list[Transaction]:
        return (
            self.db.query(Transaction)
            .options(joinedload(Transaction.account), joinedload(Transaction.category))
            .filter(Transaction.import_batch_id == batch_id)
            .order_by(Transaction.id)
            .all()
        )

    def get(self, batch_id: int) -> dict:
        batch = self.db.query(ImportBatch).get(batch_id)
        if not batch:
            raise NotFoundError("Import not found")
        result = batch_to_dict(batch)
        result["report"] = normalize_report(batch, self._transactions_for(batch_id))
        return result

    def commit(self, batch_id: int):
        updated = (
            self.db.query(ImportBatch)
            .filter(ImportBatch.id == batch_id)
            .update({ImportBatch.status: "completed"}, synchronize_session=False)
        )
        if not updated:
            self.db.rollback()
            raise NotFoundError("Import not found")
        self.db.commit()
        logger.info(f"Import {batch_id} marked completed")

    def summary(self) -> dict:
        db = self.db
        summary = empty_summary()

        created_by_batch = dict(
            db.query(Transaction.import_batch_id, func.count(Transaction.id))
            .filter(Transaction.import_batch_id.isnot(None))
            .group_by(Transaction.import_batch_id)
            .all()
        )

        for batch in db.query(ImportBatch).order_by(ImportBatch.id).all():
            stored = load_stored_report(batch.message)
            totals = dict(stored.get("totals") or {})
            totals.setdefault("parsed", batch.rows_count)
            totals["created"] = created_by_batch.get(batch.id, 0)
            add_batch_to_summary(
                summary,
                batch_to_dict(batch),
                {"totals": totals, "ignored": stored.get("ignored") or {}},
            )

        imported = (
            db.query(Transaction)
            .filter(Transaction.import_batch_id.isnot(None))
            .order_by(Transaction.occurred_on, Transaction.id)
            .all()
        )

        accounts = {}
        for txn in imported:
            entry = accounts.setdefault(txn.account_id, {"entries": [], "count": 0, "net": 0.0})
            entry["entries"].append((txn.occurred_on, txn.amount, txn.balance_after))
            entry["count"] += 1
            entry["net"] += txn.amount

        account_rows = {a.id: a for a in db.query(Account).filter(Account.id.in_(list(accounts))).all()}
        for account_id, entry in accounts.items():
            account = account_rows.get(account_id)
            summary["accounts"].append({
                "id": account_id,
                "name": account.name if account else None,
                "iban": account.iban if account else None,
                "transactions": entry["count"],
                "net_amount": round(entry["net"], 2),
                "balance": actual_balances(entry["entries"]),
            })

        category_rows = (
            db.query(
                Category.id,
                Category.name,
                Category.kind,
                func.count(Transaction.id).label("count"),
                func.coalesce(func.sum(Transaction.amount), 0).label("amount"),
            )
            .join(Transaction, Transaction.category_id == Category.id)
            .filter(Transaction.import_batch_id.isnot(None))
            .group_by(Category.id, Category.name, Category.kind)
            .all()
        )
        summary["categories"] = sorted(
            (
                {"id": r.id, "name": r.name, "kind": r.kind, "count": r.count, "amount": round(float(r.amount), 2)}
                for r in category_rows
            ),
            key=lambda c: (-c["count"], c["id"]),
        )
        summary["balances"] = summary_totals_balances(summary["accounts"])
        return summary


class InMemoryBatchStore(BatchStore):
    def __init__(self):
        self._batches: dict[int, dict] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def run_import(self, parsed, filename=None, file_hash=None, manual_iban=None) -> ImportResult:
        report = offline_report(parsed)
        with self._lock:
            batch_id = self._next_id
            self._next_id += 1
            self._batches[batch_id] = {
                "id": batch_id,
                "source": "excel",
                "original_filename": filename or "stub.json",
                "hash": file_hash,
                "status": "completed",
                "rows_count": len(parsed.rows),
                "message": None,
                "created_at": datetime.utcnow().isoformat(),
                "report": report,
            }
        logger.info(f"Import {batch_id} (no database): {len(parsed.rows)} rows parsed")
        return ImportResult(import_batch_id=batch_id, report=report)

    def get(self, batch_id: int) -> dict:
        hit = self._batches.get(batch_id)
        if hit is None:
            raise NotFoundError("Import not found (no-database mode)")
        return dict(hit)

    def commit(self, batch_id: int):
        with self._lock:
            hit = self._batches.get(batch_id)
            if hit is None:
                raise NotFoundError("Import not found (no-database mode)")
            hit["status"] = "completed"

    def summary(self) -> dict:
        summary = empty_summary()
        for batch_id in sorted(self._batches):
            batch = self._batches[batch_id]
            add_batch_to_summary(summary, batch, batch["report"])
        return summary
