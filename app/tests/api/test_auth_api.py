from sqlalchemy import select

from app.models.audit_log import AuditLog
from app.models.enums import AuditActionType

# every seeded test user shares this password
PASSWORD = "pass123"


def test_login_returns_token_and_me(client, users):
    r = client.post("/api/v1/auth/login", json={"email": "Emp.JED@injazak.com", "password": PASSWORD})
    assert r.status_code == 200, r.text
    token = r.json()["access_token"]

    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    body = me.json()
    assert body["email"] == "emp.jed@injazak.com"
    assert body["role"] == "employee"
    assert body["branchId"] == users["jed_employee"].branch_id


def test_login_rejects_bad_password(client, users):
    r = client.post("/api/v1/auth/login", json={"email": "emp.jed@injazak.com", "password": "nope"})
    assert r.status_code == 401


def test_login_and_logout_are_audited(client, db, users):
    r = client.post(
        "/api/v1/auth/login",
        json={"email": "mgr.jed@injazak.com", "password": PASSWORD},
        headers={"User-Agent": "contract-tests", "X-Request-Id": "login-req-1"},
    )
    token = r.json()["access_token"]
    out = client.post("/api/v1/auth/logout", headers={"Authorization": f"Bearer {token}"})
    assert out.status_code == 200

    rows = db.execute(
        select(AuditLog).where(AuditLog.user_id == users["jed_manager"].id).order_by(AuditLog.id)
    ).scalars().all()
    assert [r.action_type for r in rows] == [AuditActionType.login.value, AuditActionType.logout.value]
    assert rows[0].user_agent == "contract-tests"
    assert rows[0].request_id == "login-req-1"


def test_protected_routes_need_a_valid_token(client, users):
    assert client.get("/api/v1/contracts").status_code in (401, 403)
    bad = client.get("/api/v1/contracts", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


def test_health_echoes_request_id(client):
    r = client.get("/api/v1/health", headers={"X-Request-Id": "abc-123"})
    assert r.status_code == 200
    assert r.json()["request_id"] == "abc-123"
    assert r.headers["X-Request-Id"] == "abc-123"
