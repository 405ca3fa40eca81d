# store.py
"""
Storage collaborator: moves Transactions in and out of the database.

The report engine never touches the DB; the API loads a snapshot with
load_transactions() and hands that list to compute_tax_report().
"""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Iterable, List

from sqlalchemy.orm import Session

from .models import TransactionRow
from .schemas import Transaction

logger = logging.getLogger(__name__)


def transaction_to_row(tx: Transaction) -> TransactionRow:
    # SQLite keeps naive datetimes; store UTC
    naive_utc = tx.date.astimezone(timezone.utc).replace(tzinfo=None)
    return TransactionRow(
        id=tx.id,
        type=tx.type,
        date=naive_utc,
        amount=tx.amount,
        price_per_btc=tx.price_per_btc,
        fee=tx.fee,
        crypto_currency=tx.crypto_currency,
        price_order=tx.price_order,
        comments=tx.comments,
        tx_hash=tx.tx_hash,
        wallet_address=tx.wallet_address,
        order_of_use=tx.order_of_use,
    )


def row_to_transaction(r: TransactionRow) -> Transaction:
    return Transaction(
        id=r.id,
        type=r.type,
        date=r.date,  # naive UTC; the schema attaches tzinfo
        amount=r.amount,
        price_per_btc=r.price_per_btc,
        fee=r.fee,
        crypto_currency=r.crypto_currency,
        price_order=r.price_order,
        comments=r.comments,
        tx_hash=r.tx_hash,
        wallet_address=r.wallet_address,
        order_of_use=r.order_of_use,
    )


def load_transactions(session: Session) -> List[Transaction]:
    """All stored transactions, oldest first (ties keep insertion order)."""
    rows = (
        session.query(TransactionRow)
        .order_by(TransactionRow.date.asc(), TransactionRow.created_at.asc())
        .all()
    )
    return [row_to_transaction(r) for r in rows]


def add_transaction(session: Session, tx: Transaction) -> bool:
    """
    Insert one transaction. Returns False (and writes nothing) when a row with
    the same id already exists.
    """
    if session.get(TransactionRow, tx.id) is not None:
        return False
    session.add(transaction_to_row(tx))
    return True


def add_transactions(session: Session, txs: Iterable[Transaction]) -> tuple[int, int]:
    """Insert many; returns (inserted, skipped_duplicates)."""
    inserted = skipped = 0
    seen: set[str] = set()
    for tx in txs:
        if tx.id in seen or not add_transaction(session, tx):
            skipped += 1
            continue
        seen.add(tx.id)
        inserted += 1
    session.flush()
    logger.info("Stored %d transaction(s), skipped %d duplicate(s)", inserted, skipped)
    return inserted, skipped
