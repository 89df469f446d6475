"""
Statement Import Orchestrator

Drives one parsed statement into the ledger inside a single database
transaction:

    pending batch → resolve accounts → load categories & rules
    → preload ledger fingerprints per account → per row:
        missing account? → invalid? → duplicate? → categorize → insert
    → report → batch completed → COMMIT

Any exception after the batch row exists rolls the whole thing back; a
`failed` batch carrying the error message is then written in a separate
session so the attempt stays on record with no transactions attached.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ..database import new_session
from ..errors import ConflictError, PipelineError, map_database_error
from ..models import Account, Category, ImportBatch, Transaction
from .categorize import build_fallback_categories, categorize, load_rules
from .dedup import DedupIndex, date_window, fingerprint, load_existing_fingerprints
from .reporting import ImportReport
from .statement.normalize import normalize_iban
from .statement.records import ParsedStatement

logger = logging.getLogger(__name__)

SOURCE = "excel"


@dataclass
class ImportResult:
    import_batch_id: int
    report: dict


def collect_ibans(parsed: ParsedStatement, manual_iban: Optional[str] = None) -> set[str]:
    """Every IBAN the statement refers to: rows, metadata, and the caller's override."""
    ibans = {row.iban for row in parsed.rows if row.iban}
    if parsed.metadata.iban:
        ibans.add(parsed.metadata.iban)
    if manual_iban:
        ibans.add(manual_iban)
    return ibans


def row_iban(row, parsed: ParsedStatement) -> Optional[str]:
    return normalize_iban(row.iban or parsed.metadata.iban)


def check_not_imported(db: Session, file_hash: Optional[str]):
    if not file_hash:
        return
    existing = (
        db.query(ImportBatch)
        .filter(ImportBatch.hash == file_hash, ImportBatch.status != "failed")
        .first()
    )
    if existing:
        raise ConflictError(
            "This file has already been imported.",
            details={"import_batch_id": existing.id},
        )


def record_failed_batch(bind, filename: Optional[str], file_hash: Optional[str], rows_count: int, message: str) -> Optional[int]:
    """Persist a failed batch outside the rolled-back transaction. Returns its id."""
    session = new_session(bind)
    try:
        batch = ImportBatch(
            source=SOURCE,
            original_filename=filename,
            hash=file_hash,
            status="failed",
            rows_count=rows_count,
            message=message,
        )
        session.add(batch)
        session.commit()
        return batch.id
    except Exception:
        session.rollback()
        logger.exception("Could not record failed import batch")
        return None
    finally:
        session.close()


def _parse_iso(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _process_rows(
    db: Session,
    batch: ImportBatch,
    parsed: ParsedStatement,
    ibans: set[str],
    default_currency: str,
) -> dict:
    accounts_by_iban = {
        normalize_iban(account.iban): account
        for account in db.query(Account).filter(Account.iban.in_(sorted(ibans))).all()
    }

    categories = db.query(Category).order_by(Category.id).all()
    categories_by_id = {c.id: c for c in categories}
    fallbacks = build_fallback_categories(categories)
    rules = load_rules(db)

    # Preload existing fingerprints per account over the file's date span
    rows_by_iban: dict[str, list] = {}
    for row in parsed.rows:
        iban = row_iban(row, parsed)
        if iban:
            rows_by_iban.setdefault(iban, []).append(row)

    dedup = DedupIndex()
    for iban, rows in rows_by_iban.items():
        min_date, max_date = date_window(r.occurred_on for r in rows)
        dedup.preload(iban, load_existing_fingerprints(db, iban, min_date, max_date))

    report = ImportReport(
        parsed=len(parsed.rows),
        expected_start=parsed.metadata.expected_start,
        expected_end=parsed.metadata.expected_end,
    )

    for row in parsed.rows:
        iban = row_iban(row, parsed)
        account = accounts_by_iban.get(iban) if iban else None
        if account is None:
            report.ignore("missing_account")
            continue

        if not row.occurred_on or row.amount is None or not row.description:
            report.ignore("invalid")
            continue

        fp = fingerprint(iban, row.occurred_on, row.amount, row.description)
        if dedup.check_and_add(iban, fp):
            report.ignore("duplicates")
            continue

        match = categorize(row.description, row.amount, rules, fallbacks)

        txn = Transaction(
            account_id=account.id,
            import_batch_id=batch.id,
            rule_id=match.rule_id,
            category_id=match.category_id,
            occurred_on=_parse_iso(row.occurred_on),
            value_date=_parse_iso(row.value_date),
            amount=row.amount,
            currency_code=account.currency_code or default_currency,
            description=row.description,
            raw_description=row.raw_description or row.description,
            balance_after=row.balance_after,
            status="real",
        )
        db.add(txn)
        db.flush()
        logger.debug(
            f"Transaction inserted: account={account.id} {row.occurred_on} "
            f"{row.amount} {row.description}"
        )

        report.record_created(
            account,
            categories_by_id.get(match.category_id) if match.category_id else None,
            row.occurred_on,
            row.amount,
            row.balance_after,
        )

    return report.to_dict()


def run_import(
    db: Session,
    parsed: ParsedStatement,
    filename: Optional[str] = None,
    file_hash: Optional[str] = None,
    manual_iban: Optional[str] = None,
    default_currency: str = "CHF",
) -> ImportResult:
    """
    Import a parsed statement atomically.

    Raises ConflictError before anything is written if the same file was
    already imported, and PipelineError (after recording a failed batch)
    if anything goes wrong while rows are processed.
    """
    check_not_imported(db, file_hash)
    ibans = collect_ibans(parsed, manual_iban)

    batch = ImportBatch(
        source=SOURCE,
        original_filename=filename,
        hash=file_hash,
        status="pending",
        rows_count=0,
    )
    db.add(batch)
    db.flush()
    logger.info(f"Import {batch.id}: {filename or 'stub'}, {len(parsed.rows)} rows, IBANs {sorted(ibans)}")

    try:
        report = _process_rows(db, batch, parsed, ibans, default_currency)

        batch.status = "completed"
        batch.rows_count = len(parsed.rows)
        batch.message = json.dumps(report)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception(f"Import of {filename or 'stub'} failed")
        mapped = map_database_error(e)
        message = getattr(mapped, "message", None) or str(e) or "Import failed"
        failed_id = record_failed_batch(db.get_bind(), filename, file_hash, len(parsed.rows), message)
        raise PipelineError(
            message,
            batch_id=failed_id,
            details={"import_batch_id": failed_id},
            status_code=getattr(mapped, "status_code", 500),
        ) from e

    logger.info(
        f"Import {batch.id} completed: {report['totals']['created']} created, "
        f"{report['ignored']['duplicates']} duplicates, "
        f"{report['ignored']['missing_account']} without account, "
        f"{report['ignored']['invalid']} invalid"
    )
    return ImportResult(import_batch_id=batch.id, report=report)


def offline_report(parsed: ParsedStatement) -> dict:
    """
    Report for the no-database mode: rows are parsed and counted, nothing
    is deduplicated, categorized or written.
    """
    report = ImportReport(
        parsed=len(parsed.rows),
        expected_start=parsed.metadata.expected_start,
        expected_end=parsed.metadata.expected_end,
    ).to_dict()
    report["totals"]["created"] = len(parsed.rows)
    return report
