import csv
import io
from decimal import Decimal

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.middleware_rate_limit import SigningLinkRateLimitMiddleware
from app.core.rate_limit import InMemoryRateLimiter

CLIENT_SIG = {"signature_data": "data:image/png;base64,Q0xJRU5U"}


def _create(client, headers, **overrides):
    payload = {
        "client_name": "Red Sea Holdings",
        "client_phone": "+966500000000",
        "contract_type": "agreement",
        "value": "1000",
        "duration_months": 12,
    }
    payload.update(overrides)
    r = client.post("/api/v1/contracts", json=payload, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def test_full_signature_flow_over_http(client, auth_headers, branches):
    emp = auth_headers("jed_employee")
    c = _create(client, emp)
    assert c["status"] == "draft"
    assert c["contractNumber"].startswith("JED-")
    cid = c["contractId"]

    r = client.post(f"/api/v1/contracts/{cid}/request-signature", headers=emp)
    assert r.status_code == 200, r.text
    link = r.json()["signingLink"]
    assert len(link) == 32

    # the client needs nothing but the link
    view = client.get(f"/api/v1/sign/{link}")
    assert view.status_code == 200
    assert view.json()["contractNumber"] == c["contractNumber"]
    assert "contractId" not in view.json()

    signed = client.post(f"/api/v1/sign/{link}", json=CLIENT_SIG)
    assert signed.status_code == 200, signed.text
    assert signed.json()["status"] == "client_signed"
    assert client.post(f"/api/v1/sign/{link}", json=CLIENT_SIG).status_code == 409

    denied = client.post(f"/api/v1/contracts/{cid}/approve", json={}, headers=auth_headers("mec_employee"))
    assert denied.status_code == 403

    approved = client.post(f"/api/v1/contracts/{cid}/approve", json={}, headers=emp)
    assert approved.status_code == 200, approved.text
    assert approved.json()["status"] == "employee_approved"

    sealed = client.post(f"/api/v1/contracts/{cid}/seal", json={}, headers=auth_headers("jed_manager"))
    assert sealed.status_code == 200, sealed.text
    assert sealed.json()["status"] == "fully_executed"
    assert sealed.json()["lockedAtIso"] is not None

    edit = client.patch(f"/api/v1/contracts/{cid}", json={"value": "5000"}, headers=emp)
    assert edit.status_code == 403

    progress = client.get(f"/api/v1/contracts/{cid}/workflow", headers=emp).json()
    assert progress["isComplete"] is True
    assert progress["locked"] is True

    sigs = client.get(f"/api/v1/contracts/{cid}/signatures", headers=emp).json()
    assert sorted(s["signatureType"] for s in sigs) == ["client", "employee", "management_seal"]


def test_validation_and_state_errors_map_to_status_codes(client, auth_headers, branches):
    emp = auth_headers("jed_employee")

    r = client.post(
        "/api/v1/contracts",
        json={"client_name": "X", "contract_type": "agreement", "value": "0", "duration_months": 12},
        headers=emp,
    )
    assert r.status_code == 422

    c = _create(client, emp)
    assert client.post(f"/api/v1/contracts/{c['contractId']}/seal", json={}, headers=auth_headers("jed_manager")).status_code == 409
    assert client.get("/api/v1/contracts/9999", headers=emp).status_code == 404
    assert client.get(f"/api/v1/contracts/{c['contractId']}", headers=auth_headers("mec_employee")).status_code == 403


def test_unknown_signing_link(client, branches):
    assert client.get("/api/v1/sign/" + "A" * 32).status_code == 404
    assert client.get("/api/v1/sign/short").status_code == 422


def test_listing_and_admin_rollback(client, auth_headers, branches):
    emp = auth_headers("jed_employee")
    c = _create(client, emp)
    _create(client, auth_headers("mec_employee"))
    cid = c["contractId"]

    listed = client.get("/api/v1/contracts", headers=emp).json()
    assert [x["contractId"] for x in listed["contracts"]] == [cid]
    assert len(client.get("/api/v1/contracts", headers=auth_headers("admin")).json()["contracts"]) == 2

    link = client.post(f"/api/v1/contracts/{cid}/request-signature", headers=emp).json()["signingLink"]
    client.post(f"/api/v1/sign/{link}", json=CLIENT_SIG)

    assert client.post(f"/api/v1/contracts/{cid}/rollback", json={"reason": "wrong"}, headers=auth_headers("jed_manager")).status_code == 403
    r = client.post(f"/api/v1/contracts/{cid}/rollback", json={"reason": "wrong amount"}, headers=auth_headers("admin"))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "draft"
    assert client.get(f"/api/v1/sign/{link}").status_code == 404


def test_payments_over_http(client, auth_headers, branches):
    emp = auth_headers("jed_employee")
    c = _create(client, emp)

    r = client.post(
        "/api/v1/payments",
        json={"contract_id": c["contractId"], "amount": "500", "due_date": "2020-01-01"},
        headers=emp,
    )
    assert r.status_code == 201, r.text
    payment = r.json()
    assert payment["status"] == "overdue"

    overdue = client.get("/api/v1/payments", params={"status": "overdue"}, headers=emp).json()["payments"]
    assert [p["paymentId"] for p in overdue] == [payment["paymentId"]]

    paid = client.post(f"/api/v1/payments/{payment['paymentId']}/pay", json={"paid_date": "2020-01-05"}, headers=emp)
    assert paid.status_code == 200
    assert paid.json()["status"] == "paid"
    assert Decimal(paid.json()["amount"]) == Decimal("500")

    assert client.post("/api/v1/payments/refresh-overdue", headers=emp).status_code == 403
    assert client.post("/api/v1/payments/refresh-overdue", headers=auth_headers("admin")).json() == {"updated": 0}


def test_audit_trail_visibility(client, auth_headers, branches):
    emp = auth_headers("jed_employee")
    c = _create(client, {**emp, "X-Request-Id": "create-req-9"})

    assert client.get("/api/v1/audit", headers=emp).status_code == 403

    records = client.get(
        "/api/v1/audit",
        params={"tableName": "contracts", "recordId": c["contractId"]},
        headers=auth_headers("jed_manager"),
    ).json()["records"]
    assert [r["actionType"] for r in records] == ["create"]
    assert records[0]["requestId"] == "create-req-9"

    mec = client.get("/api/v1/audit", params={"recordId": c["contractId"]}, headers=auth_headers("mec_manager"))
    assert mec.json()["records"] == []


def test_notifications_over_http(client, auth_headers, branches):
    emp = auth_headers("jed_employee")
    c = _create(client, emp)
    client.post(f"/api/v1/contracts/{c['contractId']}/request-signature", headers=emp)

    notes = client.get("/api/v1/notifications", headers=emp).json()["notifications"]
    assert [n["type"] for n in notes] == ["signature_required"]

    r = client.post(f"/api/v1/notifications/{notes[0]['id']}/read", headers=emp)
    assert r.status_code == 200 and r.json()["read"] is True
    assert client.post(f"/api/v1/notifications/{notes[0]['id']}/read", headers=auth_headers("jed_manager")).status_code == 404


def test_export_contracts_csv(client, auth_headers, branches):
    c = _create(client, auth_headers("jed_employee"))
    _create(client, auth_headers("mec_employee"))

    r = client.get("/api/v1/export/contracts.csv", headers=auth_headers("jed_manager"))
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")

    rows = list(csv.DictReader(io.StringIO(r.text)))
    assert [row["contract_number"] for row in rows] == [c["contractNumber"]]
    assert rows[0]["branch_code"] == "JED"
    assert "signing_link" not in rows[0]

    assert client.get(
        "/api/v1/export/contracts.csv", params={"branchId": branches["MEC"].id}, headers=auth_headers("jed_manager")
    ).status_code == 403


def test_branches_listing(client, auth_headers, branches):
    own = client.get("/api/v1/branches", headers=auth_headers("mec_employee")).json()["branches"]
    assert [b["code"] for b in own] == ["MEC"]
    everything = client.get("/api/v1/branches", headers=auth_headers("admin")).json()["branches"]
    assert [b["code"] for b in everything] == ["JED", "MEC", "AHS", "HAL"]


def test_signing_endpoints_are_rate_limited():
    app = FastAPI()
    app.add_middleware(
        SigningLinkRateLimitMiddleware,
        limiter=InMemoryRateLimiter(capacity=2, refill_per_sec=0.0),
        path_prefix="/api/v1/sign/",
    )

    @app.get("/api/v1/sign/{link}")
    async def view(link: str):
        return {"link": link}

    @app.get("/api/v1/health")
    async def health():
        return {"status": "ok"}

    client = TestClient(app)
    assert client.get("/api/v1/sign/a").status_code == 200
    assert client.get("/api/v1/sign/b").status_code == 200
    limited = client.get("/api/v1/sign/c")
    assert limited.status_code == 429
    assert limited.headers["Retry-After"] == "60"
    # other routes are untouched
    assert client.get("/api/v1/health").status_code == 200


def test_listings_report_page_metadata_and_date_ranges(client, auth_headers, branches):
    emp = auth_headers("jed_employee")
    for name in ("Alpha", "Beta", "Gamma"):
        _create(client, emp, client_name=name)

    page = client.get("/api/v1/contracts", params={"limit": 2, "offset": 2}, headers=emp).json()
    assert len(page["contracts"]) == 1
    assert (page["total"], page["limit"], page["offset"], page["page"], page["totalPages"]) == (3, 2, 2, 2, 2)

    future = client.get("/api/v1/contracts", params={"dateFrom": "2999-01-01"}, headers=emp).json()
    assert future["total"] == 0 and future["contracts"] == []
    everything = client.get(
        "/api/v1/contracts", params={"dateFrom": "2000-01-01", "dateTo": "2999-12-31"}, headers=emp
    ).json()
    assert everything["total"] == 3

    r = client.get("/api/v1/contracts", params={"dateFrom": "2026-05-02", "dateTo": "2026-05-01"}, headers=emp)
    assert r.status_code == 422


def test_payment_listing_by_due_date(client, auth_headers, branches):
    emp = auth_headers("jed_employee")
    cid = _create(client, emp)["contractId"]
    for due in ("2030-01-15", "2030-02-15", "2030-03-15"):
        r = client.post("/api/v1/payments", json={"contract_id": cid, "amount": "100", "due_date": due}, headers=emp)
        assert r.status_code == 201, r.text

    body = client.get(
        "/api/v1/payments", params={"dueDateFrom": "2030-02-01", "dueDateTo": "2030-03-15"}, headers=emp
    ).json()
    assert [p["dueDate"] for p in body["payments"]] == ["2030-02-15", "2030-03-15"]
    assert body["total"] == 2 and body["totalPages"] == 1


def test_export_honours_the_date_range(client, auth_headers, branches):
    c = _create(client, auth_headers("jed_employee"))
    mgr = auth_headers("jed_manager")

    r = client.get("/api/v1/export/contracts.csv", params={"dateFrom": "2999-01-01"}, headers=mgr)
    assert r.status_code == 200
    assert list(csv.DictReader(io.StringIO(r.text))) == []

    r = client.get(
        "/api/v1/export/contracts.csv", params={"dateFrom": "2000-01-01", "dateTo": "2999-12-31"}, headers=mgr
    )
    assert [row["contract_number"] for row in csv.DictReader(io.StringIO(r.text))] == [c["contractNumber"]]

    r = client.get("/api/v1/export/contracts.csv", params={"dateFrom": "2026-05-02", "dateTo": "2026-05-01"}, headers=mgr)
    assert r.status_code == 422
