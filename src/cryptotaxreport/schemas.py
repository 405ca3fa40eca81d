from __future__ import annotations

"""
Pydantic schemas (data models) used by the engine and the API.
- Transaction is the immutable input record of the tax report engine.
- Storage keys are camelCase (pricePerBtc, priceOrder); aliases accept both
  spellings so rows from the JSON/CSV world and Python callers both validate.

Core ideas:
- Keep schemas separate from database models (ORM) to avoid coupling business logic to storage.
- Money and quantities are Decimal; floats never enter the engine.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def _parse_timestamp(v: Any) -> Any:
    """
    Accept 'YYYY-MM-DD', 'YYYY-MM-DDTHH:MM[:SS]' and a trailing 'Z'.
    Anything else is handed to pydantic unchanged so it reports the error.
    """
    if not isinstance(v, str):
        return v
    t = v.strip()
    if t.endswith("Z"):
        t = t[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(t)
    except ValueError:
        return v


def _dec_to_str(v: Decimal | None) -> str | None:
    if v is None:
        return None
    s = format(v, "f")
    return s.rstrip("0").rstrip(".") if "." in s else s


class Transaction(BaseModel):
    """
    One buy / sell / transfer event as supplied by the storage collaborator.

    Fields:
      id: unique identifier.
      type: free-text label; the engine only looks for "buy" / "sell" in it.
      date: when it happened. Naive values are taken as UTC.
      amount: quantity of the asset (e.g. BTC), never negative.
      price_per_btc: unit price in the settlement currency.
      fee: fee in the settlement currency; None means no fee.
      crypto_currency: asset symbol, copied into report rows.

    The remaining fields are carried along for display only.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, from_attributes=True)

    id: str
    type: str = Field(..., examples=["Buy with Strike", "Sell", "Transfer"])
    date: datetime
    amount: Decimal = Field(..., ge=0)
    price_per_btc: Decimal = Field(..., alias="pricePerBtc")
    fee: Optional[Decimal] = None
    crypto_currency: str = "BTC"

    price_order: Optional[Decimal] = Field(None, alias="priceOrder")
    comments: Optional[str] = None
    tx_hash: Optional[str] = None
    wallet_address: Optional[str] = None
    order_of_use: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def _iso_date(cls, v: Any) -> Any:
        return _parse_timestamp(v)

    @field_validator("date")
    @classmethod
    def _utc_if_naive(cls, v: datetime) -> datetime:
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v

    @field_serializer("amount", "price_per_btc", "fee", "price_order")
    def _ser_decimal(self, v: Decimal | None) -> str | None:
        return _dec_to_str(v)


class StrikeBuyCreate(BaseModel):
    """
    Payload of the "Buy with Strike" form.
    The fee is not entered: it is whatever the order cost beyond amount * price.
    """

    model_config = ConfigDict(populate_by_name=True)

    date: datetime
    amount: Decimal = Field(..., gt=0)
    price_per_btc: Decimal = Field(..., alias="pricePerBtc", gt=0)
    price_order: Decimal = Field(..., alias="priceOrder", ge=0)
    comments: str = ""
    transaction_id: Optional[str] = Field(None, alias="transactionId")

    @field_validator("date", mode="before")
    @classmethod
    def _iso_date(cls, v: Any) -> Any:
        return _parse_timestamp(v)

    def to_transaction(self) -> Transaction:
        return Transaction(
            id=str(uuid.uuid4()),
            type="Buy with Strike",
            date=self.date,
            amount=self.amount,
            price_per_btc=self.price_per_btc,
            price_order=self.price_order,
            comments=self.comments,
            fee=self.price_order - self.amount * self.price_per_btc,
            crypto_currency="BTC",
            tx_hash=self.transaction_id or None,
            wallet_address="Strike",
            order_of_use="FIFO",
        )


class CSVPreviewResponse(BaseModel):
    """
    API response model for /upload/csv (preview only).
    """

    filename: str
    total_valid: int
    total_errors: int
    preview_first_5: List[Transaction]
    errors: List[Any]


class ImportCSVResponse(BaseModel):
    """
    API response model for /import/csv (persists to DB).
    """

    filename: str
    inserted: int
    skipped_duplicates: int
    skipped_errors: int
    note: str
