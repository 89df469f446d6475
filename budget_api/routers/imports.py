"""
Statement import endpoints.

- POST /imports/excel             — Import a "Liste des opérations" .xlsx export
- GET  /imports/summary           — Totals across every import
- GET  /imports/summary/export    — Same summary as an .xlsx download
- GET  /imports/{id}              — One batch with its normalized report
- POST /imports/{id}/commit       — Mark a batch completed (manual recovery)
"""

import hashlib
import logging
from contextlib import contextmanager
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ..config import Settings, get_settings
from ..database import get_db
from ..errors import CapabilityDisabledError, ValidationError
from ..services.batch_store import BatchStore, InMemoryBatchStore, SqlBatchStore
from ..services.reporting import summary_workbook
from ..services.statement import load_stub_statement, normalize_iban, parse_start_row, read_statement
from ..services.importer import collect_ibans

logger = logging.getLogger(__name__)

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# --- Pydantic Schemas ---

class ImportCreated(BaseModel):
    import_batch_id: int
    report: dict


# --- Dependencies ---

def get_batch_store(request: Request, settings: Settings = Depends(get_settings)):
    """The store for the configured mode: in-memory when DISABLE_DB=1, else the database."""
    if settings.disable_db:
        store = getattr(request.app.state, "batch_memory", None)
        if store is None:
            store = request.app.state.batch_memory = InMemoryBatchStore()
        yield store
        return

    # Only open a session when there is a database to talk to
    with contextmanager(get_db)() as db:
        yield SqlBatchStore(db, default_currency=settings.default_currency)


# --- Endpoints ---

@router.post("/excel", status_code=201, response_model=ImportCreated)
def import_excel(
    file: Optional[UploadFile] = File(None),
    iban: Optional[str] = Form(None),
    IBAN: Optional[str] = Form(None),
    start_row: Optional[str] = Form(None),
    startRow: Optional[str] = Form(None),
    settings: Settings = Depends(get_settings),
    store: BatchStore = Depends(get_batch_store),
):
    """Parse an uploaded bank export and import its operations."""
    has_file = file is not None and bool(file.filename)
    if settings.enable_upload and not has_file:
        raise ValidationError("No file received.")
    if has_file and not file.filename.lower().endswith(".xlsx"):
        raise ValidationError("Invalid format: an .xlsx file is expected.")

    manual_iban = normalize_iban(iban if iban is not None else IBAN)
    start = parse_start_row(start_row if start_row is not None else startRow)

    content = b""
    file_hash = None
    filename = None
    if settings.enable_upload:
        content = file.file.read()
        if len(content) > settings.max_upload_bytes:
            raise ValidationError(f"File too large (limit {settings.max_upload_mb} MB).")
        if not settings.enable_xlsx:
            raise CapabilityDisabledError("Excel import is disabled (ENABLE_XLSX=0).")
        parsed = read_statement(content, start_row=start, default_header_row=settings.header_row)
        file_hash = hashlib.sha256(content).hexdigest()
        filename = file.filename
    else:
        # No-upload stub mode: operations come from the bundled fixture
        parsed = load_stub_statement(settings.stub_fixture)
        filename = "stub.json"

    if manual_iban:
        parsed.metadata.iban = manual_iban

    if not parsed.rows:
        raise ValidationError("No operations found in the file.")

    if not collect_ibans(parsed, manual_iban):
        raise ValidationError("Could not determine the IBAN of the account.")

    result = store.run_import(parsed, filename=filename, file_hash=file_hash, manual_iban=manual_iban)
    return ImportCreated(import_batch_id=result.import_batch_id, report=result.report)


@router.get("/summary")
def imports_summary(store: BatchStore = Depends(get_batch_store)):
    """Aggregate counts, balances and per-import totals across all batches."""
    return store.summary()


@router.get("/summary/export")
def export_summary(
    settings: Settings = Depends(get_settings),
    store: BatchStore = Depends(get_batch_store),
):
    """Download the summary as a workbook (global sheet + per-import sheet)."""
    if not settings.enable_xlsx:
        raise CapabilityDisabledError("Excel export is disabled (ENABLE_XLSX=0).")

    content = summary_workbook(store.summary())
    return StreamingResponse(
        iter([content]),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="imports-summary.xlsx"'},
    )


@router.get("/{batch_id}")
def get_import(batch_id: int, store: BatchStore = Depends(get_batch_store)):
    """One import batch with its report rebuilt from the ledger."""
    return store.get(batch_id)


@router.post("/{batch_id}/commit", status_code=204)
def commit_import(batch_id: int, store: BatchStore = Depends(get_batch_store)):
    """Mark an import as completed."""
    store.commit(batch_id)
    return Response(status_code=204)
