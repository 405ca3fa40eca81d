# report_export.py
"""
Presentation helpers for TaxReport.

The engine keeps full Decimal precision; this is the only place numbers get
rounded, and only when the caller asks for it (round_dp).
"""

from __future__ import annotations

import csv
import io
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Any, Dict, List, Optional, Sequence

from .fifo_engine import LotConsumption, SaleReportRow, TaxReport
from .schemas import Transaction

CSV_COLUMNS = [
    "sale_id",
    "sale_date",
    "coin",
    "sale_amount",
    "sell_value",
    "buy_value",
    "profit",
    "taxable_profit",
    "sale_fee",
    "unmatched_amount",
    "lot_id",
    "lot_date",
    "amount_used",
    "lot_price_per_btc",
    "total_cost",
    "fee_part",
    "holding_days",
    "is_tax_free",
    "profit_part",
]

# Raw appendix columns; same headers the CSV importer accepts.
TRANSACTION_COLUMNS = [
    "id",
    "type",
    "date",
    "amount",
    "pricePerBtc",
    "fee",
    "crypto_currency",
    "priceOrder",
    "comments",
    "tx_hash",
    "wallet_address",
    "order_of_use",
]


def dec_to_str(x: Decimal, round_dp: Optional[int] = None) -> str:
    """Plain (non-scientific) string; optionally rounded half-up for display."""
    if round_dp is not None:
        # quantize needs room for every integer digit plus round_dp decimals
        with localcontext() as ctx:
            ctx.prec = max(28, x.adjusted() + round_dp + 2)
            x = x.quantize(Decimal(1).scaleb(-round_dp), rounding=ROUND_HALF_UP)
        return format(x, "f")
    s = format(x, "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s or "0"


def _consumption_to_dict(c: LotConsumption, round_dp: Optional[int]) -> Dict[str, Any]:
    return {
        "lot_id": c.lot_id,
        "lot_date": c.lot_date.isoformat(),
        "amount_used": dec_to_str(c.amount_used),
        "price_per_btc": dec_to_str(c.price_per_btc, round_dp),
        "total_cost": dec_to_str(c.total_cost, round_dp),
        "fee_part": dec_to_str(c.fee_part, round_dp),
        "holding_days": c.holding_days,
        "is_tax_free": c.is_tax_free,
        "profit_part": dec_to_str(c.profit_part, round_dp),
    }


def _row_to_dict(r: SaleReportRow, round_dp: Optional[int]) -> Dict[str, Any]:
    return {
        "sale_id": r.sale_id,
        "date": r.date.isoformat(),
        "coin": r.coin,
        "amount": dec_to_str(r.amount),
        "sell_value": dec_to_str(r.sell_value, round_dp),
        "buy_value": dec_to_str(r.buy_value, round_dp),
        "profit": dec_to_str(r.profit, round_dp),
        "taxable_profit": dec_to_str(r.taxable_profit, round_dp),
        "fee": dec_to_str(r.fee, round_dp),
        "unmatched_amount": dec_to_str(r.unmatched_amount),
        "used_lots": [_consumption_to_dict(c, round_dp) for c in r.consumptions],
    }


def _transaction_to_dict(tx: Transaction) -> Dict[str, Any]:
    return tx.model_dump(mode="json", by_alias=True)


def report_to_dict(
    report: TaxReport,
    round_dp: Optional[int] = None,
    transactions: Optional[Sequence[Transaction]] = None,
) -> Dict[str, Any]:
    """
    JSON-ready view of a report. Quantities (amounts) are never rounded; money
    fields are rounded to `round_dp` decimals when given.

    When `transactions` is given (the snapshot the report was computed from),
    it is appended unrounded as the raw "transactions" list.
    """
    payload = {
        "year": report.year,
        "total_profit": dec_to_str(report.total_profit, round_dp),
        "taxable_profit": dec_to_str(report.taxable_profit, round_dp),
        "sales": [_row_to_dict(r, round_dp) for r in report.rows],
        "warnings": list(report.warnings),
    }
    if transactions is not None:
        payload["transactions"] = [_transaction_to_dict(t) for t in transactions]
    return payload


def report_to_csv(
    report: TaxReport,
    round_dp: Optional[int] = 2,
    transactions: Optional[Sequence[Transaction]] = None,
) -> str:
    """
    One line per lot slice, with the sale columns repeated on each line.
    A sale that matched no lot still gets a line with empty lot columns.

    With `transactions`, a blank line and a second section follow: every
    transaction with TRANSACTION_COLUMNS headers (re-importable as-is).
    """
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)

    for sale in report.rows:
        s = _row_to_dict(sale, round_dp)
        head: List[Any] = [
            s["sale_id"], s["date"], s["coin"], s["amount"], s["sell_value"],
            s["buy_value"], s["profit"], s["taxable_profit"], s["fee"], s["unmatched_amount"],
        ]
        if not s["used_lots"]:
            writer.writerow(head + [""] * (len(CSV_COLUMNS) - len(head)))
            continue
        for c in s["used_lots"]:
            writer.writerow(head + [
                c["lot_id"], c["lot_date"], c["amount_used"], c["price_per_btc"],
                c["total_cost"], c["fee_part"], c["holding_days"],
                "yes" if c["is_tax_free"] else "no", c["profit_part"],
            ])

    if transactions is not None:
        writer.writerow([])
        writer.writerow(TRANSACTION_COLUMNS)
        for tx in transactions:
            t = _transaction_to_dict(tx)
            writer.writerow(["" if t[k] is None else t[k] for k in TRANSACTION_COLUMNS])

    return buf.getvalue()
