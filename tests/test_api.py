import csv
import io
import json

import pytest

from qr_attendance import deps
from qr_attendance.core.broadcast import ADMIN_GROUP, hub
from qr_attendance.services.scans import ScanLedger

from .conftest import ADMIN, DISPLAY, USER, scan_payload

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"

async def _current(client, display_id="kiosk-api"):
    r = await client.get("/display/qr/current", params={"displayId": display_id}, headers=DISPLAY)
    assert r.status_code == 200
    return r.json()

async def _scan(client, token, **overrides):
    return await client.post("/scan", json=scan_payload(token, **overrides), headers=USER)

async def test_health(client):
    r = await client.get("/health")
    assert r.json() == {"status": "ok", "service": "qr-attendance-svc"}
    db = await client.get("/health/db")
    assert db.json()["ok"] is True

async def test_qr_image(client):
    r = await client.get("/qr/image", params={"text": "hello"})
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert r.content.startswith(PNG_MAGIC)
    assert (await client.get("/qr/image")).status_code == 400

async def test_display_current_is_stable_until_consumed(client):
    first = await _current(client)
    assert set(first) >= {"token", "expiresAtHint", "qrImageDataUrl"}
    assert (await _current(client))["token"] == first["token"]

async def test_admin_issue_supersedes_the_current_code(client):
    first = await _current(client)
    r = await client.post("/admin/qr", json={"displayId": "kiosk-api"}, headers=ADMIN)
    assert r.status_code == 200
    issued = r.json()
    assert issued["token"] != first["token"]
    assert (await _current(client))["token"] == issued["token"]

async def test_admin_issue_without_body_uses_the_default_display(client):
    r = await client.post("/admin/qr", headers=ADMIN)
    assert r.status_code == 200
    current = await client.get("/display/qr/current", headers=DISPLAY)
    assert current.json()["token"] == r.json()["token"]

@pytest.mark.parametrize("method,url,headers", [
    ("post", "/admin/qr", USER),
    ("post", "/admin/qr", None),
    ("get", "/display/qr/current", USER),
    ("get", "/qr/validate?token=abcdefgh", ADMIN),
    ("post", "/scan", DISPLAY),
    ("get", "/admin/scans", DISPLAY),
    ("get", "/admin/stats", USER),
    ("post", "/admin/reset", USER),
    ("get", "/admin/export.csv", None),
    ("get", "/api/companies", {"Authorization": "Bearer wrong"}),
])
async def test_role_enforcement(client, method, url, headers):
    r = await client.request(method, url, headers=headers or {})
    assert r.status_code == 401
    assert r.json() == {"detail": "unauthorized"}

async def test_validate_endpoint(client):
    token = (await _current(client))["token"]
    ok = await client.get("/qr/validate", params={"token": token}, headers=USER)
    assert ok.status_code == 200
    assert ok.json() == {"valid": True}

    missing = await client.get("/qr/validate", headers=USER)
    assert missing.status_code == 400
    assert missing.json() == {"valid": False, "error": "token_required"}

    unknown = await client.get("/qr/validate", params={"token": "not-a-known-token"}, headers=USER)
    assert unknown.status_code == 400
    assert unknown.json()["error"] == "expired_or_unknown_qr"

async def test_scan_flow_and_replay(client):
    token = (await _current(client))["token"]

    r = await _scan(client, token)
    assert r.status_code == 200
    body = r.json()
    assert body["fullNameSnapshot"] == "Nguyen Van A"
    assert body["displayId"] == "kiosk-api"
    assert body["createdAt"]

    replay = await _scan(client, token)
    assert replay.status_code == 409
    assert replay.json() == {"error": "already_used"}

    validate = await client.get("/qr/validate", params={"token": token}, headers=USER)
    assert validate.status_code == 409
    assert validate.json() == {"valid": False, "error": "already_used"}

    # the display moved on to a new code
    assert (await _current(client))["token"] != token

async def test_scan_with_bad_payload_reports_fields(client):
    token = (await _current(client))["token"]
    r = await _scan(client, token, lat="north")
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "invalid_payload"
    assert any(d["field"] == "lat" for d in body["details"])

    # the code was not consumed
    ok = await client.get("/qr/validate", params={"token": token}, headers=USER)
    assert ok.json() == {"valid": True}

async def test_scan_with_nan_literal_is_rejected_before_consuming_the_code(client):
    token = (await _current(client))["token"]
    # json.dumps writes a bare NaN literal, which the request body parser accepts
    body = json.dumps(scan_payload(token, lat=float("nan")))
    assert "NaN" in body
    r = await client.post("/scan", content=body, headers={**USER, "Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_payload"
    assert any(d["field"] == "lat" for d in r.json()["details"])

    ok = await client.get("/qr/validate", params={"token": token}, headers=USER)
    assert ok.json() == {"valid": True}

async def test_scan_not_recorded_maps_to_500(client, monkeypatch):
    from sqlalchemy.exc import OperationalError

    async def broken_append(self, **fields):
        raise OperationalError("INSERT INTO scans", {}, Exception("disk full"))

    token = (await _current(client))["token"]
    monkeypatch.setattr(ScanLedger, "append", broken_append)
    r = await _scan(client, token)
    assert r.status_code == 500
    assert r.json() == {"error": "scan_not_recorded"}
    monkeypatch.undo()
    assert (await _scan(client, token)).status_code == 409

async def test_rate_limited_routes_return_429(client, monkeypatch):
    async def deny(ip, route_key):
        return False

    monkeypatch.setattr(deps, "allow_request", deny)
    r = await client.get("/qr/validate", params={"token": "abcdefgh"}, headers=USER)
    assert r.status_code == 429
    assert (await client.post("/scan", json={}, headers=USER)).status_code == 429

async def test_admin_list_search_and_stats(client):
    for name, kind in (("Alice Nguyen", "check-in"), ("Bob Tran", "check-out"), ("Alice Pham", "check-out")):
        token = (await _current(client))["token"]
        assert (await _scan(client, token, fullName=name, type=kind)).status_code == 200

    listed = await client.get("/admin/scans", headers=ADMIN)
    assert listed.status_code == 200
    names = [s["fullNameSnapshot"] for s in listed.json()["data"]]
    assert names == ["Alice Pham", "Bob Tran", "Alice Nguyen"]

    found = await client.get("/admin/scans", params={"search": "alice"}, headers=ADMIN)
    assert {s["fullNameSnapshot"] for s in found.json()["data"]} == {"Alice Nguyen", "Alice Pham"}

    limited = await client.get("/admin/scans", params={"limit": 1}, headers=ADMIN)
    assert len(limited.json()["data"]) == 1
    assert (await client.get("/admin/scans", params={"limit": 0}, headers=ADMIN)).status_code == 422

    stats = await client.get("/admin/stats", headers=ADMIN)
    assert stats.json() == {"total": 3, "checkIns": 1, "checkOuts": 2, "today": 3}

async def test_csv_export_accepts_query_token(client):
    token = (await _current(client))["token"]
    await _scan(client, token, fullName='Quote "Q" Person')

    r = await client.get("/admin/export.csv", params={"token": "admin-t"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    disposition = r.headers["content-disposition"]
    assert disposition.startswith('attachment; filename="Attendance_') and disposition.endswith('.csv"')

    rows = list(csv.reader(io.StringIO(r.text)))
    assert rows[0] == ["id", "fullName", "jobTitle", "employeeId", "type", "lat", "lng", "accuracy", "createdAt"]
    assert len(rows) == 2
    assert rows[1][1] == 'Quote "Q" Person'
    assert rows[1][4] == "check-in"

    header_auth = await client.get("/admin/export.csv", headers=ADMIN)
    assert header_auth.status_code == 200

async def test_reset_clears_scans_and_notifies_admins(client):
    token = (await _current(client))["token"]
    await _scan(client, token)
    live = (await _current(client))["token"]

    sub = hub.subscribe(ADMIN_GROUP)
    try:
        r = await client.post("/admin/reset", headers=ADMIN)
        assert r.json() == {"ok": True, "message": "All scans cleared"}
        assert sub.queue.get_nowait()["event"] == "dashboard:reset"
    finally:
        hub.unsubscribe(sub)

    assert (await client.get("/admin/scans", headers=ADMIN)).json() == {"data": []}
    # the live code was retired; the display gets a new one on its next pull
    assert (await client.get("/qr/validate", params={"token": live}, headers=USER)).status_code == 409
    assert (await _current(client))["token"] != live

async def test_directory_endpoints(client, directory):
    companies = await client.get("/api/companies", headers=USER)
    assert companies.status_code == 200
    assert [c["name"] for c in companies.json()] == ["Acme Corp", "Globex"]
    assert companies.json()[0]["employeeCount"] == 12
    assert companies.json()[0]["locationLabel"] == "Hanoi"

    displays = await client.get("/api/companies/acme/displays", headers=DISPLAY)
    assert [d["label"] for d in displays.json()] == ["Back Door", "Main Gate"]
    assert (await client.get("/api/companies/nobody/displays", headers=ADMIN)).json() == []

async def test_scan_from_a_registered_display_carries_company(client, directory):
    token = (await _current(client, "kiosk-acme"))["token"]
    body = (await _scan(client, token)).json()
    assert body["companyId"] == "acme"
    assert body["companyNameSnapshot"] == "Acme Corp"

    scoped = await client.get("/admin/stats", params={"companyId": "globex"}, headers=ADMIN)
    assert scoped.json()["total"] == 0
