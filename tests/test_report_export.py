from decimal import Decimal

from cryptotaxreport.config import ReportConfig
from cryptotaxreport.csv_normalizer import parse_csv
from cryptotaxreport.fifo_engine import compute_tax_report
from cryptotaxreport.report_digest import report_digest, report_digests
from cryptotaxreport.report_export import (
    CSV_COLUMNS,
    TRANSACTION_COLUMNS,
    dec_to_str,
    report_to_csv,
    report_to_dict,
)
from cryptotaxreport.schemas import Transaction


TXS = [
    Transaction(id="b1", type="buy", date="2023-01-01", amount="3", pricePerBtc="10", fee="1"),
    Transaction(id="s1", type="sell", date="2023-02-01", amount="1", pricePerBtc="20"),
    Transaction(id="s2", type="sell", date="2023-03-01", amount="4", pricePerBtc="20"),
]


def _report():
    return compute_tax_report(TXS, 2023, ReportConfig(unmatched_policy="ignore"))


def test_dec_to_str():
    assert dec_to_str(Decimal("150.0")) == "150"
    assert dec_to_str(Decimal("0.00000100")) == "0.000001"
    assert dec_to_str(Decimal("150.0"), 2) == "150.00"
    assert dec_to_str(Decimal("2.345"), 2) == "2.35"
    assert dec_to_str(Decimal("-0.005"), 2) == "-0.01"


def test_dict_keeps_full_precision_unless_rounding_requested():
    report = _report()

    raw = report_to_dict(report)
    first_slice = raw["sales"][0]["used_lots"][0]
    assert first_slice["fee_part"].startswith("0.33333333")
    assert first_slice["total_cost"].startswith("10.3333333")

    rounded = report_to_dict(report, round_dp=2)
    first_slice = rounded["sales"][0]["used_lots"][0]
    assert first_slice["fee_part"] == "0.33"
    assert first_slice["total_cost"] == "10.33"
    assert rounded["sales"][0]["profit"] == "9.67"
    # quantities are never rounded
    assert rounded["sales"][0]["amount"] == "1"
    assert rounded["year"] == 2023


def test_csv_has_one_line_per_slice():
    lines = report_to_csv(_report()).strip().split("\n")

    assert lines[0] == ",".join(CSV_COLUMNS)
    # s1: one slice, s2: one slice (the rest of b1), 2 unmatched
    assert len(lines) == 3
    assert lines[1].startswith("s1,")
    s2 = lines[2].split(",")
    assert s2[0] == "s2"
    assert s2[CSV_COLUMNS.index("unmatched_amount")] == "2"
    assert s2[CSV_COLUMNS.index("lot_id")] == "b1"
    assert s2[CSV_COLUMNS.index("is_tax_free")] == "no"


def test_csv_sale_without_any_lot_still_listed():
    txs = [Transaction(id="s1", type="sell", date="2023-02-01", amount="1", pricePerBtc="20")]
    report = compute_tax_report(txs, 2023, ReportConfig(unmatched_policy="ignore"))

    lines = report_to_csv(report).strip().split("\n")
    assert len(lines) == 2
    cells = lines[1].split(",")
    assert len(cells) == len(CSV_COLUMNS)
    assert cells[CSV_COLUMNS.index("lot_id")] == ""


def test_digests_are_stable_and_sensitive():
    a = _report()
    b = _report()
    assert report_digest(a) == report_digest(b)
    assert report_digests(a) == report_digests(b)
    assert report_digests(a)["report_hash"] == report_digest(a)

    b.rows[0].profit += Decimal("0.01")
    assert report_digest(a) != report_digest(b)
    assert report_digests(a)["totals_hash"] == report_digests(b)["totals_hash"]
    assert report_digests(a)["rows_hash"] != report_digests(b)["rows_hash"]


def test_rounding_large_values_beyond_default_precision():
    # 11 integer digits + 18 decimals do not fit the default 28-digit context
    txs = [
        Transaction(id="b1", type="buy", date="2023-01-01", amount="1000", pricePerBtc="100"),
        Transaction(id="s1", type="sell", date="2023-06-01", amount="1000", pricePerBtc="20000000"),
    ]
    report = compute_tax_report(txs, 2023)

    sale = report_to_dict(report, round_dp=18)["sales"][0]
    assert sale["sell_value"] == "20000000000." + "0" * 18
    assert sale["profit"] == "19999900000." + "0" * 18

    assert dec_to_str(Decimal("1E+30"), 2) == "1" + "0" * 30 + ".00"
    assert dec_to_str(Decimal("123456789012345678901234567.891"), 2) == "123456789012345678901234567.89"


def test_dict_appends_raw_transactions_when_given():
    assert "transactions" not in report_to_dict(_report())

    raw = report_to_dict(_report(), round_dp=2, transactions=TXS)["transactions"]
    assert [t["id"] for t in raw] == ["b1", "s1", "s2"]
    assert raw[0]["pricePerBtc"] == "10"
    assert raw[0]["fee"] == "1"
    assert raw[1]["fee"] is None
    assert raw[2]["amount"] == "4"


def test_csv_appends_raw_transactions_section_that_can_be_reimported():
    text = report_to_csv(_report(), transactions=TXS)
    report_part, appendix = text.strip().split("\n\n")

    assert len(report_part.split("\n")) == 3
    lines = appendix.split("\n")
    assert lines[0] == ",".join(TRANSACTION_COLUMNS)
    assert len(lines) == 4

    b1 = lines[1].split(",")
    assert b1[TRANSACTION_COLUMNS.index("id")] == "b1"
    assert b1[TRANSACTION_COLUMNS.index("fee")] == "1"
    assert b1[TRANSACTION_COLUMNS.index("crypto_currency")] == "BTC"
    assert b1[TRANSACTION_COLUMNS.index("priceOrder")] == ""

    valid, errors = parse_csv(appendix.encode("utf-8"))
    assert errors == []
    assert [t.id for t in valid] == ["b1", "s1", "s2"]
    assert valid[0].date == TXS[0].date
