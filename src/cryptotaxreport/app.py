# app.py
"""
Main FastAPI application.

This file wires together:
- the database session and the storage collaborator (store.py)
- the CSV parsing service
- the FIFO tax report engine and its exporters

Endpoints:
  GET  /health                 → liveness check
  GET  /version                → app version metadata
  POST /upload/csv             → parse CSV and PREVIEW (no DB writes)
  POST /import/csv             → parse CSV and SAVE to DB
  GET  /transactions           → list saved transactions (paginated)
  POST /transactions           → record one transaction (buy, sell, transfer, ...)
  POST /transactions/strike    → record a "Buy with Strike" purchase
  GET  /report/{year}          → FIFO tax report for a calendar year (JSON + raw transactions)
  GET  /export/report.csv      → same report, one CSV line per lot slice + raw transactions

  Command to start the server: uvicorn cryptotaxreport.app:app --reload
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Body, FastAPI, File, HTTPException, Query, Response, UploadFile
from pydantic import ValidationError

from .__about__ import __title__, __version__
from .config import ReportConfig, load_config
from .csv_normalizer import parse_csv
from .db import db_session, init_db
from .errors import InvalidTransaction, UnmatchedDisposal
from .fifo_engine import TaxReport, compute_tax_report
from .report_digest import report_digests
from .report_export import report_to_csv, report_to_dict
from .schemas import CSVPreviewResponse, ImportCSVResponse, StrikeBuyCreate, Transaction
from .store import add_transaction, add_transactions, load_transactions

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Application factory & startup
# -----------------------------------------------------------------------------
app = FastAPI(
    title=__title__,
    version=__version__,
    description="FIFO crypto tax report: lot matching, holding periods, taxable vs. exempt profit.",
)


@app.on_event("startup")
def on_startup() -> None:
    """
    Runs when the server starts.
    - Ensures database tables exist (idempotent).
    """
    init_db()


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

async def _read_csv_upload(file: UploadFile) -> bytes:
    filename = file.filename or ""
    if not filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Please upload a .csv file")
    data = await file.read()
    if len(data) == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    return data


def _report_config() -> ReportConfig:
    """Read CRYPTO_TAXREPORT_* settings; a bad value is a server-side problem (500)."""
    try:
        return load_config()
    except ValueError as e:  # pydantic's ValidationError is a ValueError too
        logger.error("Invalid report configuration: %s", e)
        raise HTTPException(status_code=500, detail=f"Invalid report configuration: {e!s}") from e


def _build_report(year: int, cfg: ReportConfig) -> Tuple[TaxReport, List[Transaction]]:
    """
    Load a snapshot of all transactions and run the engine; map engine errors to HTTP.
    Returns the report and the snapshot it was computed from.
    """
    with db_session() as session:
        transactions = load_transactions(session)

    try:
        return compute_tax_report(transactions, year, cfg), transactions
    except InvalidTransaction as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except UnmatchedDisposal as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


# -----------------------------------------------------------------------------
# Health + version endpoints (simple sanity checks)
# -----------------------------------------------------------------------------
@app.get("/health")
def health() -> Dict[str, str]:
    """Quick liveness check for monitoring or manual testing."""
    return {"status": "ok"}


@app.get("/version")
def version() -> Dict[str, str]:
    """Show the backend name and version (useful to confirm deployments)."""
    return {"name": __title__, "version": __version__}


# -----------------------------------------------------------------------------
# Transactions in
# -----------------------------------------------------------------------------
@app.post("/upload/csv", response_model=CSVPreviewResponse)
async def upload_csv(file: UploadFile = File(...)) -> Dict[str, Any]:
    """
    Accepts a CSV upload, parses it into normalized Transaction objects,
    and returns a small preview and error list.
    """
    data = await _read_csv_upload(file)
    try:
        valid_rows, errors = parse_csv(data)
    except UnicodeDecodeError as e:
        raise HTTPException(status_code=400, detail=f"CSV is not valid UTF-8: {e!s}") from e

    return {
        "filename": file.filename,
        "total_valid": len(valid_rows),
        "total_errors": len(errors),
        "preview_first_5": valid_rows[:5],
        "errors": errors[:5],  # return only the first few errors to keep response small
    }


@app.post("/import/csv", response_model=ImportCSVResponse)
async def import_csv(file: UploadFile = File(...)) -> Dict[str, Any]:
    """
    Parse a CSV and store every valid row. Rows whose id is already stored are
    skipped; invalid rows are counted, never half-imported.
    """
    data = await _read_csv_upload(file)
    try:
        valid_rows, errors = parse_csv(data)
    except UnicodeDecodeError as e:
        raise HTTPException(status_code=400, detail=f"CSV is not valid UTF-8: {e!s}") from e

    with db_session() as session:
        inserted, skipped = add_transactions(session, valid_rows)

    logger.info("Imported %s: %d inserted, %d duplicates, %d errors",
                file.filename, inserted, skipped, len(errors))
    return {
        "filename": file.filename,
        "inserted": inserted,
        "skipped_duplicates": skipped,
        "skipped_errors": len(errors),
        "note": "Rows with the same id as a stored transaction are skipped.",
    }


@app.post("/transactions", status_code=201)
def add_single_transaction(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """
    Record one transaction of any type. A missing id gets a fresh UUID;
    an id that is already stored is a conflict (409).
    """
    data = dict(payload)
    if not data.get("id"):
        data["id"] = str(uuid.uuid4())
    try:
        tx = Transaction.model_validate(data)
    except ValidationError as ve:
        raise HTTPException(
            status_code=422,
            detail=ve.errors(include_url=False, include_context=False),
        ) from ve

    with db_session() as session:
        if not add_transaction(session, tx):
            raise HTTPException(status_code=409, detail=f"Transaction {tx.id} already exists")
    logger.info("Recorded %s transaction %s (%s %s)", tx.type, tx.id, tx.amount, tx.crypto_currency)
    return tx.model_dump(mode="json", by_alias=True)


@app.post("/transactions/strike", status_code=201)
def add_strike_buy(payload: StrikeBuyCreate) -> Dict[str, Any]:
    """Record a purchase made with Strike; fee = priceOrder - amount * pricePerBtc."""
    tx = payload.to_transaction()
    with db_session() as session:
        add_transaction(session, tx)
    logger.info("Recorded Strike buy %s (%s BTC)", tx.id, tx.amount)
    return tx.model_dump(mode="json", by_alias=True)


@app.get("/transactions")
def list_transactions(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
) -> Dict[str, Any]:
    """Stored transactions, oldest first, paginated."""
    with db_session() as session:
        txs = load_transactions(session)

    start = (page - 1) * page_size
    items: list[Transaction] = txs[start:start + page_size]
    return {
        "meta": {"page": page, "page_size": page_size, "total": len(txs)},
        "items": [t.model_dump(mode="json", by_alias=True) for t in items],
    }


# -----------------------------------------------------------------------------
# Tax report out
# -----------------------------------------------------------------------------
@app.get("/report/{year}")
def tax_report(
    year: int,
    round_dp: Optional[int] = Query(None, ge=0, le=18, description="Round money fields for display"),
) -> Dict[str, Any]:
    """
    FIFO tax report for a calendar year: per-sale rows with their lot slices,
    total profit and the taxable part (lots held <= the exemption period).
    Digests are computed over the unrounded numbers and cover the report
    itself, not the raw "transactions" appendix.
    """
    report, transactions = _build_report(year, _report_config())
    payload = report_to_dict(report, round_dp=round_dp, transactions=transactions)
    payload["digests"] = report_digests(report)
    return payload


@app.get("/export/report.csv", summary="Download the FIFO tax report as CSV")
def export_report_csv(year: int) -> Response:
    cfg = _report_config()
    report, transactions = _build_report(year, cfg)
    csv_text = report_to_csv(report, round_dp=cfg.round_dp, transactions=transactions)
    headers = {"Content-Disposition": f'attachment; filename="taxreport-{year}.csv"'}
    return Response(content=csv_text.encode("utf-8"), media_type="text/csv; charset=utf-8", headers=headers)
