# csv_normalizer.py
"""
CSV parsing and normalization to our Transaction schema.

Responsibilities:
- Read uploaded CSV bytes safely.
- Normalize header names (case-insensitive, '_' optional: pricePerBtc == price_per_btc).
- Validate required columns are present.
- Drop empty optional cells so schema defaults apply.
- Validate each row using Pydantic (Transaction), returning:
  (valid_rows, errors) so the API can preview and/or persist.

Design choices:
- This module is "pure" (no DB calls). It converts raw bytes -> typed objects.
- A row without an id gets a fresh uuid4 so it can be stored.
"""

import csv
import uuid
from io import BytesIO, TextIOWrapper
from typing import Any, Dict, List, Tuple

from pydantic import ValidationError

from .schemas import Transaction

# Header spelling (lowercase, underscores removed) -> Transaction field name
HEADER_FIELDS = {
    "id": "id",
    "type": "type",
    "date": "date",
    "amount": "amount",
    "priceperbtc": "price_per_btc",
    "fee": "fee",
    "cryptocurrency": "crypto_currency",
    "priceorder": "price_order",
    "comments": "comments",
    "txhash": "tx_hash",
    "walletaddress": "wallet_address",
    "orderofuse": "order_of_use",
}
REQUIRED_COLUMNS = {"type", "date", "amount", "price_per_btc"}
OPTIONAL_COLUMNS = set(HEADER_FIELDS.values()) - REQUIRED_COLUMNS


def _normalize_header(header: str) -> str:
    """Lowercase, strip whitespace and underscores so headers are matched flexibly."""
    key = header.strip().lower().replace("_", "").replace(" ", "")
    return HEADER_FIELDS.get(key, header.strip().lower())


def parse_csv(file_bytes: bytes, encoding: str = "utf-8") -> Tuple[List[Transaction], List[Dict[str, Any]]]:
    """
    Parse CSV bytes into a list of Transaction objects.
    Returns:
      valid_rows: list[Transaction]
      errors: list of {row_number, error, raw_row}
    """
    valid: List[Transaction] = []
    errors: List[Dict[str, Any]] = []

    # utf-8-sig drops a BOM that spreadsheet exports like to add
    if encoding.lower().replace("-", "") == "utf8":
        encoding = "utf-8-sig"
    text_stream = TextIOWrapper(BytesIO(file_bytes), encoding=encoding, newline="")
    reader = csv.DictReader(text_stream)

    if reader.fieldnames is None:
        errors.append({"row_number": 0, "error": "CSV has no header", "raw_row": None})
        return valid, errors

    header_map = {orig: _normalize_header(orig) for orig in reader.fieldnames}

    missing = REQUIRED_COLUMNS - set(header_map.values())
    if missing:
        errors.append({"row_number": 0, "error": f"Missing required columns: {sorted(missing)}", "raw_row": None})
        return valid, errors

    for i, row in enumerate(reader, start=2):  # start=2 because row 1 is the header
        normalized: Dict[str, Any] = {}
        for orig_key, value in row.items():
            if orig_key is None:
                continue  # surplus cells without a header
            key = header_map.get(orig_key, orig_key)
            value = value.strip() if isinstance(value, str) else value
            if value == "" and key in OPTIONAL_COLUMNS:
                continue  # let the schema default apply
            normalized[key] = value

        if not normalized.get("id"):
            normalized["id"] = str(uuid.uuid4())

        try:
            valid.append(Transaction(**normalized))
        except ValidationError as ve:
            errors.append({"row_number": i, "error": ve.errors(include_url=False, include_context=False), "raw_row": normalized})

    return valid, errors
