# report_digest.py
from __future__ import annotations
import json, hashlib
from typing import Any, Dict

from .fifo_engine import TaxReport
from .report_export import report_to_dict

def _json_c14n(obj: Any) -> str:
    """
    Canonical JSON dump:
      - sort keys
      - no spaces (compact separators)
      - input is report_to_dict output, so numbers are already plain strings
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))

def _sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()

def report_digest(report: TaxReport) -> str:
    """
    SHA-256 over the unrounded report. Two runs over the same transactions and
    year must produce the same digest.
    """
    return _sha256_hex(_json_c14n(report_to_dict(report)))

def report_digests(report: TaxReport) -> Dict[str, str]:
    """
    Split digests:
      - totals_hash: year + totals only
      - rows_hash: the per-sale breakdown
      - report_hash: everything
    """
    full = report_to_dict(report)
    totals = {k: full[k] for k in ("year", "total_profit", "taxable_profit")}
    return {
        "totals_hash": _sha256_hex(_json_c14n(totals)),
        "rows_hash": _sha256_hex(_json_c14n(full["sales"])),
        "report_hash": _sha256_hex(_json_c14n(full)),
    }
