# tests/test_api.py
# Run with:
#   pytest -q -m smoke --maxfail=1 --disable-warnings -rA

from __future__ import annotations
import os
import tempfile

# Point the app at a throwaway SQLite file *before* the package creates its engine.
_TMP_DIR = tempfile.mkdtemp(prefix="cryptotaxreport-")
os.environ["CRYPTO_TAXREPORT_DB_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from cryptotaxreport.app import app  # noqa: E402

pytestmark = pytest.mark.smoke

SALES_CSV = (
    "id,type,date,amount,pricePerBtc,fee\n"
    "api-s1,Sell,2023-06-01,0.4,150,0\n"
    "api-t1,Transfer to wallet,2023-07-01,0.1,0,\n"
    "api-s2,Sell,2030-01-01,5,150,0\n"
).encode("utf-8")


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as c:
        r = c.post(
            "/transactions/strike",
            json={"date": "2023-01-01", "amount": "1.0", "pricePerBtc": "100", "priceOrder": "110",
                  "comments": "first stack", "transactionId": "abc123"},
        )
        assert r.status_code == 201, r.text
        r = c.post("/import/csv", files={"file": ("sales.csv", SALES_CSV, "text/csv")})
        assert r.status_code == 200, r.text
        yield c


# --------------------------------------------------------------------------------------
# Tests
# --------------------------------------------------------------------------------------
def test_health_and_version(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/version").json()["name"] == "CryptoTaxReport"


def test_strike_buy_fee_is_order_price_minus_value(client):
    items = client.get("/transactions").json()["items"]
    strike = [t for t in items if t["type"] == "Buy with Strike"]
    assert strike, "strike buy should be stored"
    assert strike[0]["fee"] == "10"
    assert strike[0]["wallet_address"] == "Strike"
    assert strike[0]["tx_hash"] == "abc123"


def test_reimport_skips_duplicates(client):
    r = client.post("/import/csv", files={"file": ("sales.csv", SALES_CSV, "text/csv")})
    body = r.json()
    assert body["inserted"] == 0
    assert body["skipped_duplicates"] == 3


def test_upload_preview_does_not_store(client):
    before = client.get("/transactions").json()["meta"]["total"]
    data = b"id,type,date,amount,pricePerBtc\npreview-1,buy,2023-01-01,1,1\nbad,buy,nope,1,1\n"
    r = client.post("/upload/csv", files={"file": ("p.csv", data, "text/csv")})
    assert r.status_code == 200
    body = r.json()
    assert body["total_valid"] == 1
    assert body["total_errors"] == 1
    assert body["preview_first_5"][0]["pricePerBtc"] == "1"
    assert client.get("/transactions").json()["meta"]["total"] == before


def test_upload_rejects_non_csv(client):
    r = client.post("/upload/csv", files={"file": ("x.txt", b"hello", "text/plain")})
    assert r.status_code == 400


def test_report_for_year(client):
    r = client.get("/report/2023")
    assert r.status_code == 200, r.text
    body = r.json()

    assert body["year"] == 2023
    assert [s["sale_id"] for s in body["sales"]] == ["api-s1"]
    lot = body["sales"][0]["used_lots"][0]
    # 0.4 of the strike buy: 40 + 0.4 * 10 fee
    assert lot["total_cost"] == "44"
    assert lot["holding_days"] == 151
    assert lot["is_tax_free"] is False
    assert body["total_profit"] == "16"
    assert body["taxable_profit"] == "16"
    assert set(body["digests"]) == {"totals_hash", "rows_hash", "report_hash"}

    # raw appendix: every stored transaction, transfers included
    raw_ids = [t["id"] for t in body["transactions"]]
    assert len(raw_ids) == 4
    assert {"api-s1", "api-t1", "api-s2"} <= set(raw_ids)

    again = client.get("/report/2023").json()
    assert again["digests"] == body["digests"]


def test_report_rounding(client):
    body = client.get("/report/2023", params={"round_dp": 2}).json()
    assert body["total_profit"] == "16.00"


def test_oversold_year_warns_by_default_and_conflicts_when_strict(client, monkeypatch):
    body = client.get("/report/2030").json()
    assert body["sales"][0]["unmatched_amount"] == "4"
    assert len(body["warnings"]) == 1

    monkeypatch.setenv("CRYPTO_TAXREPORT_UNMATCHED_POLICY", "raise")
    r = client.get("/report/2030")
    assert r.status_code == 409


def test_report_csv_export(client):
    r = client.get("/export/report.csv", params={"year": 2023})
    assert r.status_code == 200
    assert "text/csv" in r.headers["content-type"]
    report_part, appendix = r.text.strip().split("\n\n")
    lines = report_part.splitlines()
    assert len(lines) == 2
    assert lines[1].startswith("api-s1,")

    raw = appendix.splitlines()
    assert raw[0].startswith("id,type,date,amount,pricePerBtc")
    assert len(raw) == 5
    assert any(line.startswith("api-t1,Transfer to wallet,") for line in raw)


def test_bad_year_is_client_error(client):
    assert client.get("/report/0").status_code == 400


def test_bad_report_settings_are_server_errors(client, monkeypatch):
    monkeypatch.setenv("CRYPTO_TAXREPORT_HOLDING_DAYS", "soon")
    r = client.get("/report/2023")
    assert r.status_code == 500
    assert "Invalid report configuration" in r.json()["detail"]

    monkeypatch.setenv("CRYPTO_TAXREPORT_HOLDING_DAYS", "365")
    monkeypatch.setenv("CRYPTO_TAXREPORT_UNMATCHED_POLICY", "shrug")
    assert client.get("/export/report.csv", params={"year": 2023}).status_code == 500


# Runs last: adds transactions the report tests above do not expect.
def test_posted_sell_shows_up_in_report(client):
    sale = {"id": "api-s3", "type": "Sell", "date": "2024-03-01", "amount": "0.5", "pricePerBtc": "200"}
    r = client.post("/transactions", json=sale)
    assert r.status_code == 201, r.text
    assert r.json()["id"] == "api-s3"

    assert client.post("/transactions", json=sale).status_code == 409

    body = client.get("/report/2024").json()
    assert [s["sale_id"] for s in body["sales"]] == ["api-s3"]
    lot = body["sales"][0]["used_lots"][0]
    # half of the strike lot: 50 + 0.5 * 10 fee, held 425 days
    assert lot["total_cost"] == "55"
    assert lot["holding_days"] == 425
    assert lot["is_tax_free"] is True
    assert body["total_profit"] == "45"
    assert body["taxable_profit"] == "0"


def test_posted_transaction_without_id_gets_one(client):
    r = client.post(
        "/transactions",
        json={"type": "Transfer to wallet", "date": "2024-04-01", "amount": "0.1", "pricePerBtc": "0"},
    )
    assert r.status_code == 201, r.text
    assert r.json()["id"]

    r = client.post("/transactions", json={"type": "Sell", "date": "2024-04-02"})
    assert r.status_code == 422
