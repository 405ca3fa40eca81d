# fifo_engine.py
"""
Deterministic FIFO tax report engine.

Goal:
- Split a flat transaction list into acquisition lots (type contains "buy")
  and disposals (type contains "sell"). Anything else (transfers, ...) is ignored.
- For every sale in the requested year, consume the oldest open lots first,
  prorating the lot fee and the sale proceeds over each consumed slice.
- A slice whose lot was held more than `holding_exemption_days` (365) whole days
  is tax free; its profit still counts towards the total profit.

Assumptions (kept exactly as the reporting rules require):
- Input order is chronological order. Nothing is re-sorted.
- Lots are shared across the whole run of disposals, never reset per sale.
- The lot fee is prorated against the lot's *current* remaining amount and is
  never reduced, so a lot that was partially sold before carries its full fee
  into the next proration.
- Only in-year sales consume lots unless `carry_prior_disposals` is set.

Design:
- Pure logic (no DB, no I/O). Give it transactions and a year; get a TaxReport.
- Full Decimal precision. Rounding is the job of whoever displays the numbers.
- Caller data is never mutated: lots are fresh working copies per call.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, localcontext
from typing import Any, List, Tuple

from pydantic import ValidationError

from .config import ReportConfig
from .errors import InvalidTransaction, UnmatchedDisposal
from .schemas import Transaction

# Precision for money math (increase if you need sub-satoshi granularity).
PRECISION = 28

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class AcquisitionLot:
    """
    Working copy of a buy while it is being consumed.
    - remaining_amount: how much is still available to be sold
    - fee: the buy's full fee; intentionally never decremented
    """

    lot_id: str
    date: datetime
    remaining_amount: Decimal
    price_per_btc: Decimal
    fee: Decimal
    crypto_currency: str

    @classmethod
    def from_transaction(cls, tx: Transaction) -> "AcquisitionLot":
        return cls(
            lot_id=tx.id,
            date=tx.date,
            remaining_amount=tx.amount,
            price_per_btc=tx.price_per_btc,
            fee=tx.fee if tx.fee is not None else ZERO,
            crypto_currency=tx.crypto_currency,
        )


@dataclass(frozen=True)
class LotConsumption:
    """
    How one sale consumed (part of) one lot.
    """

    lot_id: str
    lot_date: datetime
    amount_used: Decimal
    price_per_btc: Decimal
    total_cost: Decimal  # amount_used * lot price + fee_part
    fee_part: Decimal
    holding_days: int
    is_tax_free: bool
    profit_part: Decimal


@dataclass
class SaleReportRow:
    """
    One reported sale and the lots it was matched against, oldest first.
    """

    sale_id: str
    date: datetime
    coin: str
    amount: Decimal
    sell_value: Decimal  # amount * price - fee, always over the full amount
    buy_value: Decimal
    profit: Decimal
    taxable_profit: Decimal
    fee: Decimal
    consumptions: List[LotConsumption] = field(default_factory=list)
    unmatched_amount: Decimal = ZERO


@dataclass
class TaxReport:
    year: int
    total_profit: Decimal
    taxable_profit: Decimal
    rows: List[SaleReportRow] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class LotQueue:
    """
    Acquisition lots in FIFO order, walked with an index cursor.

    Lots before the cursor are exhausted; the lot at the cursor is the oldest
    still-open one.
    """

    def __init__(self, lots: Iterable[AcquisitionLot]):
        self._lots: List[AcquisitionLot] = list(lots)
        self._cursor = 0
        self._skip_exhausted()

    def __bool__(self) -> bool:
        return self._cursor < len(self._lots)

    def __len__(self) -> int:
        return len(self._lots) - self._cursor

    def front(self) -> AcquisitionLot:
        if not self:
            raise IndexError("no open acquisition lots")
        return self._lots[self._cursor]

    def consume(self, qty: Decimal) -> None:
        """Take `qty` from the front lot; advance past it once it is used up."""
        lot = self.front()
        lot.remaining_amount -= qty
        self._skip_exhausted()

    def open_quantity(self) -> Decimal:
        return sum((l.remaining_amount for l in self._lots[self._cursor:]), ZERO)

    def _skip_exhausted(self) -> None:
        while self._cursor < len(self._lots) and self._lots[self._cursor].remaining_amount <= 0:
            self._cursor += 1


def _field(tx: Any, name: str) -> Any:
    if isinstance(tx, Mapping):
        return tx.get(name)
    return getattr(tx, name, None)


def _validated(tx: Any) -> Transaction:
    """Turn a raw record into a Transaction or fail with InvalidTransaction."""
    if isinstance(tx, Transaction):
        return tx
    try:
        if isinstance(tx, Mapping):
            return Transaction.model_validate(dict(tx))
        return Transaction.model_validate(tx, from_attributes=True)
    except ValidationError as ve:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<record>'}: {err['msg']}"
            for err in ve.errors()
        )
        raise InvalidTransaction(_field(tx, "id"), problems) from ve


def classify_transactions(
    transactions: Sequence[Transaction | Mapping[str, Any]],
) -> Tuple[List[Transaction], List[Transaction]]:
    """
    Partition transactions into (acquisitions, disposals), both in input order.

    - type contains "buy" (any case)  -> acquisition
    - else type contains "sell"       -> disposal
    - anything else is skipped without further validation

    A record without a string type, or a buy/sell that does not validate,
    raises InvalidTransaction.
    """
    acquisitions: List[Transaction] = []
    disposals: List[Transaction] = []

    for tx in transactions:
        ttype = _field(tx, "type")
        if not isinstance(ttype, str):
            raise InvalidTransaction(_field(tx, "id"), "type is missing or not a string")

        label = ttype.lower()
        if "buy" in label:
            acquisitions.append(_validated(tx))
        elif "sell" in label:
            disposals.append(_validated(tx))

    return acquisitions, disposals


def _holding_days(lot_date: datetime, sale_date: datetime) -> int:
    # timedelta.days is the floor of the elapsed time in whole days
    return (sale_date - lot_date).days


def _match_sale(
    sale: Transaction, queue: LotQueue, cfg: ReportConfig
) -> SaleReportRow:
    """Consume lots for one sale and build its report row."""
    sale_fee = sale.fee if sale.fee is not None else ZERO
    sell_value = sale.amount * sale.price_per_btc - sale_fee

    remaining = sale.amount
    acquisition_cost = ZERO
    profit = ZERO
    taxable = ZERO
    consumptions: List[LotConsumption] = []

    while remaining > 0 and queue:
        lot = queue.front()
        available = min(remaining, lot.remaining_amount)

        fee_part = (available / lot.remaining_amount) * lot.fee
        cost = available * lot.price_per_btc + fee_part

        days = _holding_days(lot.date, sale.date)
        tax_free = days > cfg.holding_exemption_days

        proceeds_part = (available / sale.amount) * sell_value
        profit_part = proceeds_part - cost

        consumptions.append(
            LotConsumption(
                lot_id=lot.lot_id,
                lot_date=lot.date,
                amount_used=available,
                price_per_btc=lot.price_per_btc,
                total_cost=cost,
                fee_part=fee_part,
                holding_days=days,
                is_tax_free=tax_free,
                profit_part=profit_part,
            )
        )

        queue.consume(available)
        remaining -= available

        acquisition_cost += cost
        profit += profit_part
        if not tax_free:
            taxable += profit_part

    return SaleReportRow(
        sale_id=sale.id,
        date=sale.date,
        coin=sale.crypto_currency,
        amount=sale.amount,
        sell_value=sell_value,
        buy_value=acquisition_cost,
        profit=profit,
        taxable_profit=taxable,
        fee=sale_fee,
        consumptions=consumptions,
        unmatched_amount=remaining if remaining > 0 else ZERO,
    )


def _handle_unmatched(row: SaleReportRow, cfg: ReportConfig, warnings: List[str]) -> None:
    if row.unmatched_amount <= 0 or cfg.unmatched_policy == "ignore":
        return
    if cfg.unmatched_policy == "raise":
        raise UnmatchedDisposal(row.sale_id, row.amount, row.unmatched_amount)

    msg = (
        f"Sale {row.sale_id} at {row.date.isoformat()} sells {row.amount} {row.coin} but only "
        f"{row.amount - row.unmatched_amount} could be matched to acquisition lots; "
        f"cost basis covers the matched part only."
    )
    logger.warning(msg)
    warnings.append(msg)


def compute_tax_report(
    transactions: Sequence[Transaction | Mapping[str, Any]],
    year: int,
    config: ReportConfig | None = None,
) -> TaxReport:
    """
    Core FIFO report:
      - classify into lots and sales
      - walk the sales of `year` (calendar year in cfg.timezone) in input order
      - consume the oldest open lot first, shared across all walked sales
      - totals include every profit part; taxable totals skip tax-free slices

    Raises InvalidTransaction for malformed buys/sells and, with
    unmatched_policy="raise", UnmatchedDisposal for a sale no lot can cover.
    """
    if isinstance(year, bool) or not isinstance(year, int) or not 1 <= year <= 9999:
        raise ValueError(f"year must be a calendar year, got {year!r}")

    cfg = config or ReportConfig()
    # the caller's decimal context is left untouched
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return _walk_disposals(transactions, year, cfg)


def _walk_disposals(
    transactions: Sequence[Transaction | Mapping[str, Any]],
    year: int,
    cfg: ReportConfig,
) -> TaxReport:
    zone = cfg.zone()

    acquisitions, disposals = classify_transactions(transactions)
    queue = LotQueue(AcquisitionLot.from_transaction(t) for t in acquisitions)

    rows: List[SaleReportRow] = []
    warnings: List[str] = []
    total_profit = ZERO
    taxable_profit = ZERO

    for sale in disposals:
        sale_year = sale.date.astimezone(zone).year
        if sale_year != year:
            if cfg.carry_prior_disposals and sale_year < year:
                carried = _match_sale(sale, queue, cfg)
                logger.debug(
                    "Carried %s sale %s through the lot queue (unmatched=%s)",
                    sale_year, sale.id, carried.unmatched_amount,
                )
            continue

        row = _match_sale(sale, queue, cfg)
        _handle_unmatched(row, cfg, warnings)

        logger.debug(
            "Sale %s: %d lot slice(s), profit=%s taxable=%s",
            row.sale_id, len(row.consumptions), row.profit, row.taxable_profit,
        )

        total_profit += row.profit
        taxable_profit += row.taxable_profit
        rows.append(row)

    return TaxReport(
        year=year,
        total_profit=total_profit,
        taxable_profit=taxable_profit,
        rows=rows,
        warnings=warnings,
    )
