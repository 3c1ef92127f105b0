"""HTTP tests for the scan session API."""
from unittest.mock import MagicMock, patch

import pytest

from scan_backend.reports import EmailDeliveryError


# ============================================================================
# AUTH
# ============================================================================

def test_login_wrong_password(client):
    resp = client.post("/api/auth/login", json={"username": "lager", "password": "nope"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid username or password."


def test_login_wrong_username(client):
    resp = client.post("/api/auth/login", json={"username": "admin", "password": "skanna-2024"})
    assert resp.status_code == 401


def test_login_password_is_not_trimmed(client):
    resp = client.post(
        "/api/auth/login", json={"username": "lager", "password": " skanna-2024 "}
    )
    assert resp.status_code == 401


def test_status_and_logout(client, token):
    headers = {"Authorization": f"Bearer {token}"}

    assert client.get("/api/auth/status", headers=headers).json() == {"authenticated": True}
    assert client.post("/api/auth/logout", headers=headers).json() == {"success": True}
    assert client.get("/api/auth/status", headers=headers).status_code == 401


@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Bearer forged"}, {"Authorization": "Basic abc"}],
)
def test_session_routes_require_auth(client, headers):
    resp = client.post(
        "/api/scan-sessions", json={"deliveryNoteNumber": "FS-1"}, headers=headers
    )
    assert resp.status_code == 401
    assert resp.json() == {"error": "Authentication required."}


def test_login_lockout_via_redis(client):
    fake = MagicMock()
    fake.get.return_value = "5"
    fake.ttl.return_value = 600
    with patch("scan_backend.main._redis_client", return_value=fake):
        resp = client.post(
            "/api/auth/login", json={"username": "lager", "password": "skanna-2024"}
        )
    assert resp.status_code == 423
    assert resp.json()["retry_after"] == 600


def test_login_failure_counted_in_redis(client):
    fake = MagicMock()
    fake.get.return_value = None
    fake.incr.return_value = 1
    with patch("scan_backend.main._redis_client", return_value=fake):
        client.post("/api/auth/login", json={"username": "lager", "password": "bad"})
    fake.incr.assert_called_once()
    fake.expire.assert_called_once()


def test_health_is_public(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "sessions": 0}
    assert "X-Request-ID" in resp.headers


# ============================================================================
# SESSIONS CRUD
# ============================================================================

def test_create_and_get(client, auth_headers):
    resp = client.post(
        "/api/scan-sessions",
        json={"deliveryNoteNumber": " FS-1 ", "barcodes": ["A", "B"]},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    created = resp.json()
    assert created["id"] == 1
    assert created["deliveryNoteNumber"] == "FS-1"
    assert created["barcodes"] == ["A", "B"]
    assert created["emailSent"] == "pending"

    fetched = client.get("/api/scan-sessions/1", headers=auth_headers).json()
    assert fetched == created


def test_create_requires_delivery_note(client, auth_headers):
    resp = client.post(
        "/api/scan-sessions", json={"deliveryNoteNumber": "  "}, headers=auth_headers
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "Invalid request."


def test_get_unknown_is_404(client, auth_headers):
    resp = client.get("/api/scan-sessions/7", headers=auth_headers)
    assert resp.status_code == 404
    assert resp.json() == {"error": "Scan session not found"}


def test_patch_status_keeps_barcodes(client, auth_headers, store):
    session = store.create("FS-1", ["A", "B"])

    resp = client.patch(
        f"/api/scan-sessions/{session.id}", json={"emailSent": "sent"}, headers=auth_headers
    )

    body = resp.json()
    assert body["emailSent"] == "sent"
    assert body["barcodes"] == ["A", "B"]
    assert body["createdAt"] == session.to_dict()["createdAt"]


def test_patch_backward_transition_is_409(client, auth_headers, store):
    session = store.create("FS-1", ["A"])
    store.update(session.id, email_sent="sent")

    resp = client.patch(
        f"/api/scan-sessions/{session.id}", json={"emailSent": "pending"}, headers=auth_headers
    )
    assert resp.status_code == 409


def test_patch_unknown_is_404(client, auth_headers):
    resp = client.patch("/api/scan-sessions/3", json={"barcodes": []}, headers=auth_headers)
    assert resp.status_code == 404


def test_delete_and_list(client, auth_headers, store):
    store.create("FS-1")
    store.create("FS-2")

    assert client.delete("/api/scan-sessions/1", headers=auth_headers).json() == {"success": True}
    assert client.delete("/api/scan-sessions/1", headers=auth_headers).status_code == 404

    items = client.get("/api/scan-sessions", headers=auth_headers).json()["items"]
    assert [s["deliveryNoteNumber"] for s in items] == ["FS-2"]


# ============================================================================
# SCANNING
# ============================================================================

def test_add_barcode_and_duplicate(client, auth_headers, store):
    session = store.create("FS-1", ["A", "B"])
    url = f"/api/scan-sessions/{session.id}/barcodes"

    dup = client.post(url, json={"barcode": "A"}, headers=auth_headers)
    assert dup.status_code == 409
    assert dup.json()["barcode"] == "A"
    assert store.get(session.id).barcodes == ["A", "B"]

    ok = client.post(url, json={"barcode": " C "}, headers=auth_headers)
    assert ok.status_code == 200
    assert ok.json()["barcodes"] == ["A", "B", "C"]


def test_add_structured_fields(client, auth_headers, store):
    session = store.create("FS-1")

    resp = client.post(
        f"/api/scan-sessions/{session.id}/barcodes",
        json={"orderNumber": "75555", "articleNumber": "S-1", "batchNumber": "G-1"},
        headers=auth_headers,
    )

    assert resp.json()["barcodes"] == ["75555;S-1;G-1;0"]


def test_add_incomplete_structured_fields_is_400(client, auth_headers, store):
    session = store.create("FS-1")
    resp = client.post(
        f"/api/scan-sessions/{session.id}/barcodes",
        json={"orderNumber": "75555"},
        headers=auth_headers,
    )
    assert resp.status_code == 400


def test_add_to_unknown_session_is_404(client, auth_headers):
    resp = client.post("/api/scan-sessions/9/barcodes", json={"barcode": "A"}, headers=auth_headers)
    assert resp.status_code == 404


def test_summary(client, auth_headers, store):
    session = store.create("FS-1", ["1;a;b;10", "1;c;d;5", "x"])

    body = client.get(f"/api/scan-sessions/{session.id}/summary", headers=auth_headers).json()

    assert body["totalWeight"] == 15
    assert body["totalWeightFormatted"] == "15.0 kg"
    assert body["unstructured"] == ["x"]
    assert body["orders"][0]["itemCount"] == 2


def test_parse_endpoint(client, auth_headers):
    structured = client.post(
        "/api/qr/parse", json={"code": "1;2;3;abc"}, headers=auth_headers
    ).json()
    plain = client.post("/api/qr/parse", json={"code": "4006381333931"}, headers=auth_headers).json()

    assert structured["structured"] is True
    assert structured["parsed"]["weight"] == 0
    assert plain == {"structured": False, "parsed": None}


# ============================================================================
# SEND EMAIL
# ============================================================================

def test_send_email_success(client, auth_headers, store, deliver):
    session = store.create("FS-1", ["1;a;b;10"])

    resp = client.post(f"/api/scan-sessions/{session.id}/send-email", headers=auth_headers)

    assert resp.status_code == 200
    assert resp.json()["emailSent"] == "sent"
    deliver.assert_called_once()
    assert store.get(session.id).email_sent.value == "sent"


def test_send_email_failure_then_retry(client, auth_headers, store, deliver):
    session = store.create("FS-1", ["A"])
    url = f"/api/scan-sessions/{session.id}/send-email"
    deliver.side_effect = [EmailDeliveryError("connection refused"), None]

    failed = client.post(url, headers=auth_headers)
    assert failed.status_code == 502
    assert failed.json()["emailSent"] == "failed"
    assert failed.json()["retryable"] is True
    assert store.get(session.id).barcodes == ["A"]

    retried = client.post(url, headers=auth_headers)
    assert retried.status_code == 200
    assert retried.json()["emailSent"] == "sent"


def test_send_email_twice_is_409(client, auth_headers, store):
    session = store.create("FS-1", ["A"])
    url = f"/api/scan-sessions/{session.id}/send-email"

    client.post(url, headers=auth_headers)
    resp = client.post(url, headers=auth_headers)

    assert resp.status_code == 409
    assert resp.json()["emailSent"] == "sent"


def test_send_email_without_barcodes_is_400(client, auth_headers, store, deliver):
    session = store.create("FS-1")
    resp = client.post(f"/api/scan-sessions/{session.id}/send-email", headers=auth_headers)

    assert resp.status_code == 400
    deliver.assert_not_called()


def test_send_email_unknown_is_404(client, auth_headers):
    resp = client.post("/api/scan-sessions/5/send-email", headers=auth_headers)
    assert resp.status_code == 404


def test_smtp_check(client, auth_headers):
    client.app.state.mailer.verify.return_value = {"host": "h", "port": 587, "user": "u"}
    resp = client.post("/api/test-smtp", headers=auth_headers)
    assert resp.json()["success"] is True

    client.app.state.mailer.verify.side_effect = EmailDeliveryError("refused")
    resp = client.post("/api/test-smtp", headers=auth_headers)
    assert resp.status_code == 500
    assert resp.json()["success"] is False
