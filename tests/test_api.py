import io
import os

import pytest
from PIL import Image


def _login(client, username, password):
    return client.post("/api/v1/login", json={"username": username, "password": password})


@pytest.fixture
def admin_client(client):
    assert _login(client, "admin", "admin").status_code == 200
    assert client.post("/api/v1/site", json={"site": "Salé"}).status_code == 200
    return client


@pytest.fixture
def seeded(app, admin_client):
    resp = admin_client.post("/api/v1/accounts", json={
        "username": "AB-123", "driver_name": "Youssef", "password": "pw123", "phone": "0600",
    })
    assert resp.status_code == 201
    admin_client.post("/api/v1/logout")
    return resp.get_json()["account"]


def _entry_form(png, odometer, **extra):
    data = {"odometer": str(odometer), "liters": "40", "total_cost": "480",
            "receipts": (io.BytesIO(png), "receipt.png")}
    data.update(extra)
    return data


def test_healthz(client):
    assert client.get("/healthz").data == b"ok"


def test_bad_login_is_generic(client):
    resp = _login(client, "admin", "nope")
    assert resp.status_code == 401
    assert resp.get_json() == {"ok": False, "error": "Invalid credentials. Please try again."}


def test_session_required(client):
    assert client.get("/api/v1/entries").status_code == 401
    assert client.get("/api/v1/session").status_code == 401


def test_admin_must_pick_a_site(client):
    _login(client, "admin", "admin")
    resp = client.get("/api/v1/accounts")
    assert resp.status_code == 400
    assert client.post("/api/v1/site", json={"site": "Rabat"}).status_code == 400


def test_account_lifecycle(admin_client):
    created = admin_client.post("/api/v1/accounts", json={
        "username": "AB-123", "driver_name": "Youssef", "password": "pw123",
    })
    assert created.status_code == 201
    account = created.get_json()["account"]
    assert "password" not in account
    assert account["site"] == "Salé"

    dup = admin_client.post("/api/v1/accounts", json={
        "username": "AB-123", "driver_name": "X", "password": "x",
    })
    assert dup.status_code == 400
    assert "AB-123" in dup.get_json()["error"]

    upd = admin_client.put(f"/api/v1/accounts/{account['id']}", json={"driver_name": "Y. B."})
    assert upd.get_json()["account"]["driver_name"] == "Y. B."

    assert admin_client.delete(f"/api/v1/accounts/{account['id']}").status_code == 409
    assert admin_client.delete(f"/api/v1/accounts/{account['id']}?confirm=1").status_code == 200
    assert admin_client.get("/api/v1/accounts").get_json()["accounts"] == []
    assert admin_client.delete(f"/api/v1/accounts/{account['id']}?confirm=1").status_code == 404


def test_create_account_requires_password(client, admin_client):
    resp = admin_client.post("/api/v1/accounts", json={"username": "ZZ-1", "driver_name": "No Pw"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Password is required."
    admin_client.post("/api/v1/logout")
    assert _login(client, "ZZ-1", "").status_code == 401


def test_driver_cannot_use_admin_routes(client, seeded):
    _login(client, "AB-123", "pw123")
    assert client.get("/api/v1/accounts").status_code == 403
    assert client.get("/api/v1/reports").status_code == 403


def test_fuel_entry_review_flow(client, seeded, png_bytes):
    # driver submits with an uploaded photo
    assert _login(client, "AB-123", "pw123").status_code == 200
    resp = client.post("/api/v1/entries", data=_entry_form(png_bytes, 10000),
                       content_type="multipart/form-data")
    assert resp.status_code == 201
    first = resp.get_json()["entry"]
    assert first["status"] == "pending"
    assert first["receipt_count"] == 1

    no_photo = client.post("/api/v1/entries", json={"odometer": 10100, "liters": 1, "total_cost": 1})
    assert no_photo.status_code == 400

    receipt = client.get(f"/api/v1/entries/{first['id']}/receipts/0")
    assert receipt.status_code == 200
    assert receipt.mimetype == "image/jpeg"
    client.post("/api/v1/logout")

    # administrator approves
    _login(client, "admin", "admin")
    client.post("/api/v1/site", json={"site": "Salé"})
    approved = client.post(f"/api/v1/entries/{first['id']}/approve")
    assert approved.get_json()["entry"]["status"] == "approved"
    client.post("/api/v1/logout")

    # floor now applies
    _login(client, "AB-123", "pw123")
    assert client.get("/api/v1/odometer-floor").get_json()["floor"] == 10000
    low = client.post("/api/v1/entries", data=_entry_form(png_bytes, 9999),
                      content_type="multipart/form-data")
    assert low.status_code == 400
    assert low.get_json()["floor"] == 10000
    assert "10000" in low.get_json()["error"]

    second = client.post("/api/v1/entries", data=_entry_form(png_bytes, 10500),
                         content_type="multipart/form-data").get_json()["entry"]
    client.post("/api/v1/logout")

    # administrator rejects; a reason is required
    _login(client, "admin", "admin")
    client.post("/api/v1/site", json={"site": "Salé"})
    assert client.post(f"/api/v1/entries/{second['id']}/reject", json={"reason": ""}).status_code == 400
    rejected = client.post(f"/api/v1/entries/{second['id']}/reject",
                           json={"reason": "illegible receipt"}).get_json()["entry"]
    assert rejected["status"] == "rejected"
    assert rejected["rejection_reason"] == "illegible receipt"
    client.post("/api/v1/logout")

    # driver corrects it, keeping the receipt on file
    _login(client, "AB-123", "pw123")
    edited = client.put(f"/api/v1/entries/{second['id']}",
                        json={"odometer": 10500, "liters": 42, "total_cost": 500})
    assert edited.status_code == 200
    entry = edited.get_json()["entry"]
    assert entry["status"] == "pending"
    assert entry["rejection_reason"] == ""
    assert entry["receipt_count"] == 1

    listing = client.get("/api/v1/entries").get_json()["entries"]
    assert {e["odometer"]: e["distance"] for e in listing} == {10000: None, 10500: 500}


def test_reports_and_exports(admin_client):
    empty = admin_client.get("/api/v1/reports?start=2020-01-01&end=2020-01-31").get_json()
    assert empty["is_empty"] is True
    assert empty["total_cost"] == 0
    assert empty["total_liters"] == 0

    pdf = admin_client.get("/reports/export.pdf?start=2020-01-01&end=2020-01-31")
    assert pdf.status_code == 200
    assert pdf.mimetype == "application/pdf"
    assert pdf.data.startswith(b"%PDF")

    csv_resp = admin_client.get("/reports/export.csv?plate=all")
    assert csv_resp.status_code == 200
    assert csv_resp.data.decode("utf-8-sig").startswith("Date,Chauffeur,Plaque")

    assert admin_client.get("/api/v1/reports?start=01-01-2020").status_code == 400


def test_dashboard(admin_client):
    summary = admin_client.get("/api/v1/dashboard").get_json()
    assert summary["pending_count"] == 0
    assert summary["latest_pending"] == []
    chart = admin_client.get("/dashboard/chart.png")
    assert chart.mimetype == "image/png"


def test_admin_profile_update(client, app):
    _login(client, "admin", "admin")
    bad = client.put("/api/v1/admin/profile",
                     json={"username": "chef", "password": "a", "confirm": "b"})
    assert bad.status_code == 400
    ok = client.put("/api/v1/admin/profile",
                    json={"username": "chef", "password": "s3cret", "confirm": "s3cret"})
    assert ok.get_json()["account"]["username"] == "chef"
    client.post("/api/v1/logout")

    assert _login(client, "admin", "admin").status_code == 401
    assert _login(client, "chef", "s3cret").status_code == 200


def test_audit_trail_written(client, app):
    _login(client, "admin", "nope")
    _login(client, "admin", "admin")
    with open(app.config["AUDIT_PATH"], encoding="utf-8-sig") as f:
        lines = f.read().splitlines()
    assert lines[0].startswith("timestamp,action")
    assert any(",login_failed," in line for line in lines)
    assert os.path.isfile(os.path.join(app.config["DATA_DIR"], "fuel-log-user.json"))


def test_malformed_receipt_list_is_rejected(client, seeded):
    _login(client, "AB-123", "pw123")
    resp = client.post("/api/v1/entries", json={
        "odometer": 100, "liters": 10, "total_cost": 120, "receipt_photos": 123,
    })
    assert resp.status_code == 400
    assert "receipt_photos" in resp.get_json()["error"]


def test_unknown_entry_is_404(client, seeded):
    _login(client, "AB-123", "pw123")
    resp = client.get("/api/v1/entries/42/receipts/0")
    assert resp.status_code == 404
    assert resp.get_json() == {"ok": False, "error": "Entry 42 not found"}


def test_oversized_upload_is_rejected(client, seeded):
    buf = io.BytesIO()
    Image.new("1", (20000, 20000)).save(buf, format="PNG")
    _login(client, "AB-123", "pw123")
    resp = client.post("/api/v1/entries", data=_entry_form(buf.getvalue(), 100),
                       content_type="multipart/form-data")
    assert resp.status_code == 400
    assert "receipt" in resp.get_json()["error"].lower()
