import io
import json

import pytest

from conftest import basic_auth


def _post_tx(client, **over):
    payload = {"amount": 100, "type": "expense", "category": "Food", "currency": "EUR", "date": "2024-01-05"}
    payload.update(over)
    return client.post("/api/transactions", json=payload)


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    body = r.get_json()
    assert body["status"] == "ok"
    assert body["db"] is True


def test_api_headers(client):
    r = client.get("/api/health")
    assert r.headers["Access-Control-Allow-Origin"] == "*"
    assert "no-store" in r.headers["Cache-Control"]


# ---- transactions ----
def test_transaction_crud(client):
    r = _post_tx(client, note="groceries")
    assert r.status_code == 201
    tx = r.get_json()
    assert tx["category"] == "food"
    assert tx["createdAt"]

    r = client.get(f"/api/transactions/{tx['id']}")
    assert r.status_code == 200 and r.get_json()["note"] == "groceries"

    r = client.put(f"/api/transactions/{tx['id']}", json={"amount": 42})
    assert r.status_code == 200
    assert r.get_json()["amount"] == 42

    r = client.delete(f"/api/transactions/{tx['id']}")
    assert r.status_code == 204
    assert client.get(f"/api/transactions/{tx['id']}").status_code == 404
    assert client.delete(f"/api/transactions/{tx['id']}").status_code == 404


@pytest.mark.parametrize("payload, error", [
    ({"type": "expense"}, "Amount, type, and category are required"),
    ({"amount": 5, "type": "expense", "category": "Ghost"}, "Category does not exist"),
    ({"amount": 0, "type": "expense", "category": "Food"}, "Amount must be a positive number"),
])
def test_create_transaction_errors(client, payload, error):
    r = client.post("/api/transactions", json=payload)
    assert r.status_code == 400
    assert r.get_json() == {"error": error}


def test_update_without_fields_is_rejected(client):
    tx = _post_tx(client).get_json()
    r = client.put(f"/api/transactions/{tx['id']}", json={})
    assert r.status_code == 400
    assert r.get_json()["error"] == "No fields to update"


def test_list_transactions_with_filters(client):
    _post_tx(client, date="2024-01-01")
    _post_tx(client, date="2024-01-31", type="income", category="Salary")
    _post_tx(client, date="2024-02-01")

    rows = client.get("/api/transactions").get_json()
    assert [r["date"] for r in rows] == ["2024-02-01", "2024-01-31", "2024-01-01"]

    rows = client.get("/api/transactions?type=expense&startDate=2024-01-01&endDate=2024-01-31").get_json()
    assert [r["date"] for r in rows] == ["2024-01-01"]

    rows = client.get("/api/transactions?category=Salary").get_json()
    assert len(rows) == 1 and rows[0]["type"] == "income"

    assert client.get("/api/transactions?startDate=yesterday-ish").status_code == 400


def test_recent_transactions(client):
    client.put("/api/settings", json={"currency": "EUR"})
    _post_tx(client, date="2024-01-01", currency="USD", amount=108)
    _post_tx(client, date="2024-03-01")
    rows = client.get("/api/transactions/recent?limit=1").get_json()
    assert len(rows) == 1
    assert rows[0]["date"] == "2024-03-01"
    assert rows[0]["displayCurrency"] == "EUR"

    rows = client.get("/api/transactions/recent").get_json()
    assert rows[1]["convertedAmount"] == pytest.approx(100)
    assert rows[1]["sign"] == "-"
    assert client.get("/api/transactions/recent?limit=x").status_code == 400


def test_csv_export(client):
    _post_tx(client, description="Lunch")
    r = client.get("/api/transactions/export.csv?currency=RUB")
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    assert "attachment" in r.headers["Content-Disposition"]
    lines = r.get_data(as_text=True).strip().splitlines()
    assert lines[0].split(",")[:4] == ["Date", "Type", "Category", "Amount"]
    row = lines[1].split(",")
    assert row[3] == "-100.0"
    assert float(row[5]) == pytest.approx(-9500)
    assert row[6] == "RUB"


# ---- categories ----
def test_category_endpoints(client):
    cats = client.get("/api/categories").get_json()
    assert "food" in [c["id"] for c in cats]
    income = client.get("/api/categories?type=income").get_json()
    assert [c["id"] for c in income] == ["salary"]

    r = client.post("/api/categories", json={"name": "Pets", "type": "expense", "color": "#AABBCC"})
    assert r.status_code == 201
    assert r.get_json()["color"] == "#aabbcc"
    assert client.post("/api/categories", json={"name": "pets", "type": "expense"}).status_code == 409
    assert client.post("/api/categories", json={"name": "NoType"}).status_code == 400

    r = client.put("/api/categories/pets", json={"name": "Animals", "type": "expense"})
    assert r.status_code == 200
    assert r.get_json()["color"] == "#aabbcc"
    assert client.put("/api/categories/nope", json={"name": "X", "type": "expense"}).status_code == 404

    assert client.delete("/api/categories/pets").status_code == 204
    assert client.get("/api/categories/pets").status_code == 404


def test_category_in_use_cannot_be_deleted(client):
    _post_tx(client)
    r = client.delete("/api/categories/food")
    assert r.status_code == 409
    assert r.get_json() == {"error": "Cannot delete category that is used by transactions"}


# ---- settings ----
def test_settings_merge(client):
    assert client.get("/api/settings").get_json()["currency"] == "USD"
    r = client.put("/api/settings", json={"language": "ru", "decimalPlaces": 7})
    assert r.status_code == 200
    body = r.get_json()
    assert body["language"] == "ru"
    assert body["decimalPlaces"] == 4
    assert body["currency"] == "USD"
    assert client.put("/api/settings", json={"currency": "XYZ"}).status_code == 400


# ---- fx ----
def test_fx_rates_and_convert(client):
    body = client.get("/api/fx").get_json()
    assert body["base"] == "EUR"
    assert body["rates"] == {"EUR": 1.0, "USD": 1.08, "RUB": 95.0}
    assert body["symbols"]["USD"] == "$"

    r = client.put("/api/fx", json={"rates": {"USD": 1.1, "EUR": 5, "BAD": -1}})
    assert r.status_code == 200
    body = r.get_json()
    assert body["rates"]["USD"] == 1.1
    assert body["rates"]["EUR"] == 1.0
    assert body["rejected"] == ["BAD"]

    r = client.get("/api/fx/convert?amount=100&from=EUR&to=RUB")
    assert r.get_json()["result"] == pytest.approx(9500)
    assert r.get_json()["degraded"] is None

    r = client.get("/api/fx/convert?amount=100&from=XYZ&to=EUR")
    assert r.get_json()["degraded"] == "unknown_currency"
    assert client.get("/api/fx/convert?amount=1&from=EUR").status_code == 400


# ---- summary ----
def test_summary_scenario(client):
    client.put("/api/settings", json={"currency": "EUR"})
    _post_tx(client)
    _post_tx(client, amount=50, currency="USD", type="income", category="Salary", date="2024-01-06")

    body = client.get("/api/summary").get_json()
    assert body["currency"] == "EUR"
    assert body["totals"] == {"income": 46.3, "expense": 100.0, "balance": -53.7}
    assert body["byCategory"] == [{"category": "food", "amount": 100.0}]
    assert body["byDate"] == [
        {"date": "2024-01-05", "income": 0.0, "expense": 100.0},
        {"date": "2024-01-06", "income": 46.3, "expense": 0.0},
    ]
    assert body["clean"] is True

    body = client.get("/api/summary?currency=RUB&precision=0&type=expense").get_json()
    assert body["totals"]["expense"] == 9500
    assert body["totals"]["income"] == 0
    assert body["count"] == 1


# ---- export / import ----
def test_export_download(client):
    _post_tx(client)
    r = client.get("/api/export")
    assert r.status_code == 200
    assert "expense-tracker-export.json" in r.headers["Content-Disposition"]
    dump = json.loads(r.get_data(as_text=True))
    assert len(dump["transactions"]) == 1
    assert dump["fxRates"]["RUB"] == 95.0


def test_import_from_uploaded_file(client):
    _post_tx(client)
    dump = client.get("/api/export").get_data()
    client.delete(f"/api/transactions/{json.loads(dump)['transactions'][0]['id']}")

    r = client.post(
        "/api/import",
        data={"file": (io.BytesIO(dump), "backup.json")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.get_json()["imported"]["transactions"] == 1
    assert len(client.get("/api/transactions").get_json()) == 1


def test_import_rejects_bad_input(client):
    r = client.post("/api/import", data="not json", content_type="text/plain")
    assert r.status_code == 400
    assert r.get_json() == {"error": "Invalid import data format"}

    r = client.post(
        "/api/import",
        data={"file": (io.BytesIO(b"{broken"), "backup.json")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400

    r = client.post("/api/import", json={"transactions": [{"amount": 1, "type": "expense", "category": "Ghost"}]})
    assert r.status_code == 400
    assert "transactions[0]" in r.get_json()["error"]


# ---- errors / auth ----
def test_unknown_route_is_json_404(client):
    r = client.get("/api/nothing-here")
    assert r.status_code == 404
    assert "error" in r.get_json()


def test_unexpected_error_is_json_500(client, monkeypatch):
    import web_app.app as app_module

    def boom(*args, **kwargs):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(app_module, "summarize", boom)
    r = client.get("/api/summary")
    assert r.status_code == 500
    assert r.get_json() == {"error": "Internal server error"}


def test_password_gate(client, monkeypatch):
    monkeypatch.setenv("APP_PASSWORD", "s3cret")
    assert client.get("/api/transactions").status_code == 401
    assert client.get("/api/health").status_code == 200
    assert client.get("/api/transactions", headers=basic_auth("anyone", "s3cret")).status_code == 200
    assert client.get("/api/transactions", headers=basic_auth("anyone", "wrong")).status_code == 401

    monkeypatch.setenv("APP_USER", "me")
    assert client.get("/api/transactions", headers=basic_auth("anyone", "s3cret")).status_code == 401
    assert client.get("/api/transactions", headers=basic_auth("me", "s3cret")).status_code == 200
