# errors.py
"""
Typed failures raised by the tax report engine.

The engine never substitutes defaults for broken input: a bad row aborts the
whole report, because a partial tax computation is worse than none. The API
layer maps these to HTTP errors.
"""

from __future__ import annotations
from decimal import Decimal


class TaxReportError(Exception):
    """Base class for every failure the report engine communicates outward."""


class InvalidTransaction(TaxReportError):
    """A transaction is missing a usable type, date, amount or price."""

    def __init__(self, tx_id: str | None, reason: str):
        self.tx_id = tx_id
        self.reason = reason
        super().__init__(f"Invalid transaction {tx_id or '<no id>'}: {reason}")


class UnmatchedDisposal(TaxReportError):
    """A sale needs more quantity than the open acquisition lots still hold."""

    def __init__(self, sale_id: str, requested: Decimal, unmatched: Decimal):
        self.sale_id = sale_id
        self.requested = requested
        self.unmatched = unmatched
        super().__init__(
            f"Sale {sale_id} disposes of {requested} but {unmatched} could not be "
            f"matched against any acquisition lot."
        )
