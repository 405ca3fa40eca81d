from __future__ import annotations
import datetime
from decimal import Decimal
from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# ---------- Base ----------
class Base(DeclarativeBase):
    pass

# ---------- Decimal helper (exact, stored as text) ----------
class DecimalText(TypeDecorator):
    """SQLite has no exact decimal type; keep the string so no digit is lost."""
    impl = String(64)
    cache_ok = True
    def process_bind_param(self, value, dialect):
        if value is None: return None
        return format(Decimal(value), "f")
    def process_result_value(self, value, dialect):
        if value is None: return None
        return Decimal(value)

# ---------- ORM models ----------
class TransactionRow(Base):
    __tablename__ = "transactions"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Stored as naive UTC datetimes in SQLite
    date: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    amount: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    price_per_btc: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    fee: Mapped[Decimal | None] = mapped_column(DecimalText, nullable=True)
    crypto_currency: Mapped[str] = mapped_column(String(20), nullable=False, default="BTC")

    price_order: Mapped[Decimal | None] = mapped_column(DecimalText, nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    tx_hash: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    wallet_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    order_of_use: Mapped[str | None] = mapped_column(String(16), nullable=True)

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        default=lambda: datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None),
    )

Index("idx_transactions_date", TransactionRow.date)
