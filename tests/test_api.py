import csv
from io import StringIO

from pharmledger.api.deps import get_license_status
from pharmledger.core.license import LicenseStatus
from pharmledger.main import app

API = "/api"


def _create_medicine(client, **overrides):
    payload = {
        "name": "Dolo 650",
        "category": "Tablet",
        "tablets_per_strip": 10,
        "quantity": 50,
        "unit_price": "30",
        "location": {"rack": "A", "shelf": "2"},
    }
    payload.update(overrides)
    r = client.post(f"{API}/medicines", json=payload)
    assert r.status_code == 201, r.text
    return r.json()["data"]


def test_health(client):
    assert client.get("/").status_code == 200


def test_create_and_list_medicines(client):
    med = _create_medicine(client)
    assert med["quantity"] == 50
    assert med["location"]["rack"] == "A"
    assert med["audit_history"][0]["action"] == "created"

    body = client.get(f"{API}/medicines").json()
    assert body["ok"] is True
    assert [m["id"] for m in body["data"]] == [med["id"]]


def test_missing_medicine_is_404(client):
    r = client.get(f"{API}/medicines/med_missing")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NOT_FOUND"


def test_validation_error_envelope(client):
    r = client.post(f"{API}/medicines", json={"name": "", "category": "Tablet"})
    assert r.status_code == 422
    body = r.json()
    assert body["ok"] is False
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["details"]


def test_quote_uses_fefo(client):
    med = _create_medicine(client, quantity=0, batches=[
        {"batch_number": "B1", "expiry_date": "2025-01-01", "quantity": 20, "unit_price": "10"},
        {"batch_number": "B2", "expiry_date": "2025-06-01", "quantity": 100, "unit_price": "12"},
    ])
    r = client.get(f"{API}/medicines/{med['id']}/quote", params={"quantity": 25})
    data = r.json()["data"]
    assert float(data["total_cost"]) == 26.0
    assert [d["batch_number"] for d in data["draws"]] == ["B1", "B2"]
    assert (data["strip_qty"], data["loose_qty"]) == (2, 5)


def test_bill_lifecycle(client):
    med = _create_medicine(client)

    r = client.post(f"{API}/bills", json={
        "items": [{"medicine_id": med["id"], "quantity": 12}],
        "discount_percent": 10,
        "customer_name": "  Ravi  ",
    })
    assert r.status_code == 201, r.text
    bill = r.json()["data"]
    assert bill["bill_number"] == "BILL-0001"
    assert bill["customer_name"] == "Ravi"
    assert float(bill["grand_total"]) == 32.4

    r = client.put(f"{API}/bills/{bill['id']}", json={
        "items": [{"medicine_id": med["id"], "quantity": 5}],
    })
    assert r.status_code == 200, r.text
    stock = client.get(f"{API}/medicines/{med['id']}").json()["data"]
    assert stock["quantity"] == 45

    assert client.delete(f"{API}/bills/{bill['id']}").json()["data"] == {"deleted": True}
    assert client.get(f"{API}/bills").json()["data"] == []
    assert client.get(f"{API}/bills/{bill['id']}").status_code == 404


def test_insufficient_stock_is_409(client):
    med = _create_medicine(client, quantity=3)
    r = client.post(f"{API}/bills", json={"items": [{"medicine_id": med["id"], "quantity": 4}]})
    assert r.status_code == 409
    error = r.json()["error"]
    assert error["code"] == "INSUFFICIENT_STOCK"
    assert error["details"] == {"medicine_name": "Dolo 650", "available": 3, "requested": 4}


def test_expired_license_is_read_only(client):
    med = _create_medicine(client)
    app.dependency_overrides[get_license_status] = lambda: LicenseStatus(is_demo_expired=True)

    r = client.post(f"{API}/bills", json={"items": [{"medicine_id": med["id"], "quantity": 1}]})
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "LICENSE_READ_ONLY"
    assert r.json()["error"]["details"] == {"kind": "demo"}

    # reads still work
    assert client.get(f"{API}/medicines").status_code == 200
    assert client.get(f"{API}/medicines/{med['id']}").json()["data"]["quantity"] == 50


def test_medicine_csv_export(client):
    _create_medicine(client, name="Export, Me")
    r = client.get(f"{API}/medicines/export", params={"format": "csv"})
    assert r.status_code == 200
    assert "attachment; filename=inventory_" in r.headers["content-disposition"]
    rows = list(csv.reader(StringIO(r.text)))
    assert rows[1][0] == "Export, Me"


def test_bills_xlsx_export(client):
    r = client.get(f"{API}/bills/export", params={"format": "xlsx"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/vnd.openxmlformats")
    assert client.get(f"{API}/bills/export", params={"format": "pdf"}).status_code == 422


def test_csv_import(client):
    csv_text = "name,category,quantity,price\nAmox,Capsule,20,28\n,Tablet,1,1\n"

    r = client.post(f"{API}/medicines/import", params={"dry_run": True},
                    files={"file": ("stock.csv", csv_text, "text/csv")})
    data = r.json()["data"]
    assert len(data["valid"]) == 1 and len(data["invalid"]) == 1
    assert client.get(f"{API}/medicines").json()["data"] == []

    r = client.post(f"{API}/medicines/import",
                    files={"file": ("stock.csv", csv_text, "text/csv")})
    assert r.json()["data"]["imported"] == 1
    assert r.json()["data"]["invalid"][0]["errors"] == ["Name is required"]


def test_snapshot_and_restore(client):
    med = _create_medicine(client)
    r = client.get(f"{API}/backup/snapshot")
    assert r.status_code == 200
    snapshot = r.json()
    # downloading alone records nothing
    assert client.get(f"{API}/backup/status").json()["data"]["reminder_due"] is True
    r = client.post(f"{API}/backup/done")
    assert r.json()["data"]["reminder_due"] is False
    assert client.get(f"{API}/backup/status").json()["data"]["last_backup_at"]

    client.delete(f"{API}/medicines/{med['id']}")
    r = client.post(f"{API}/backup/restore", json={"snapshot": snapshot})
    assert r.json()["data"]["medicines_restored"] == 1
    assert client.get(f"{API}/medicines/{med['id']}").status_code == 200

    r = client.post(f"{API}/backup/restore", json={"snapshot": {"version": 1}})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "MALFORMED_SNAPSHOT"

    actions = [a["action"] for a in client.get(f"{API}/backup/activity").json()["data"]]
    assert "RESTORE" in actions
