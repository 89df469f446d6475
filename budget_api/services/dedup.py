"""
Duplicate detection for imported rows.

A row is identified by a fingerprint of (IBAN, date, amount, description).
Before an account's rows are processed, the fingerprints of its existing
ledger entries within the file's date window are loaded; every row
created during the batch is added as it goes, so the same operation is
never inserted twice, whether it is already in the ledger or repeated
inside the file.
"""

import hashlib
import logging
from datetime import date
from typing import Optional, Union

from sqlalchemy.orm import Session

from ..models import Account, Transaction
from .statement.normalize import normalize_label

logger = logging.getLogger(__name__)

DateLike = Union[str, date]


def _iso(value: DateLike) -> str:
    return value.isoformat() if isinstance(value, date) else str(value)


def fingerprint(iban: str, occurred_on: DateLike, amount: float, description: str) -> str:
    payload = f"{iban}|{_iso(occurred_on)}|{float(amount):.2f}|{normalize_label(description)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def load_existing_fingerprints(
    db: Session,
    iban: Optional[str],
    min_date: Optional[DateLike],
    max_date: Optional[DateLike],
) -> set[str]:
    """Fingerprints of ledger transactions on `iban` between min_date and max_date (inclusive)."""
    if not iban or not min_date or not max_date:
        return set()

    if isinstance(min_date, str):
        min_date = date.fromisoformat(min_date)
    if isinstance(max_date, str):
        max_date = date.fromisoformat(max_date)

    rows = (
        db.query(Transaction.occurred_on, Transaction.amount, Transaction.description)
        .join(Account, Account.id == Transaction.account_id)
        .filter(
            Account.iban == iban,
            Transaction.occurred_on >= min_date,
            Transaction.occurred_on <= max_date,
        )
        .all()
    )
    return {fingerprint(iban, r.occurred_on, r.amount, r.description) for r in rows}


class DedupIndex:
    """Batch-wide seen set plus the preloaded ledger fingerprints per IBAN."""

    def __init__(self):
        self.seen: set[str] = set()
        self.existing: dict[str, set[str]] = {}

    def preload(self, iban: str, fingerprints: set[str]):
        self.existing[iban] = set(fingerprints)

    def is_duplicate(self, iban: str, fp: str) -> bool:
        return fp in self.seen or fp in self.existing.get(iban, ())

    def add(self, iban: str, fp: str):
        self.seen.add(fp)
        self.existing.setdefault(iban, set()).add(fp)

    def check_and_add(self, iban: str, fp: str) -> bool:
        """True if `fp` was already known; otherwise record it and return False."""
        if self.is_duplicate(iban, fp):
            return True
        self.add(iban, fp)
        return False


def date_window(dates) -> tuple[Optional[str], Optional[str]]:
    present = sorted(d for d in dates if d)
    if not present:
        return None, None
    return present[0], present[-1]
