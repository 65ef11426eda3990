from datetime import date, time

from hrms_payroll.extensions import db
from hrms_payroll.models.attendance import Schedule, ClockRecord
from hrms_payroll.models.claims import Claim, ClaimStatus

from conftest import auth_headers, make_employee


def test_health(client):
    r = client.get("/api/v1/health")
    assert r.status_code == 200
    assert r.get_json()["data"] == {"status": "ok", "database": True}


def test_token_required(client, company):
    r = client.post("/api/v1/payroll/runs", json={"company_id": company.id, "month": 1, "year": 2025})
    assert r.status_code == 401


def test_clock_endpoint_persists_only_on_shift(client, company, headers):
    emp = make_employee(company)
    db.session.add(Schedule(employee_id=emp.id, work_date=date(2025, 3, 3), shift_start=time(9, 0),
                            shift_end=time(17, 30)))
    db.session.commit()

    r = client.post("/api/v1/attendance/clock", headers=headers,
                    json={"employee_id": emp.id, "date": "2025-03-03", "time": "15:02"})
    assert r.status_code == 200
    body = r.get_json()["data"]
    assert body["persisted"] is False
    assert body["attendance_status"] == "wrong_shift"
    assert ClockRecord.query.count() == 0

    r = client.post("/api/v1/attendance/clock", headers=headers,
                    json={"employee_id": emp.id, "date": "2025-03-03", "time": "09:04"})
    assert r.status_code == 201
    assert r.get_json()["data"]["attendance_status"] == "in_progress"

    r = client.post("/api/v1/attendance/clock", headers=headers,
                    json={"employee_id": emp.id, "date": "2025-03-03"})
    assert r.status_code == 400
    assert r.get_json()["error"]["code"] == "VALIDATION_ERROR"


def test_verify_is_advice_only(client, company, headers):
    emp = make_employee(company)
    claim = Claim(company_id=company.id, employee_id=emp.id, category="TRAVEL", amount=45,
                  claim_date=date(2025, 3, 10), status=ClaimStatus.pending)
    db.session.add(claim)
    db.session.commit()

    r = client.post(f"/api/v1/claims/{claim.id}/verify", headers=headers,
                    json={"extracted": {"amount": "45.00", "merchant": "Grab", "fingerprint": "fp-9"}})
    assert r.status_code == 200
    assert r.get_json()["data"]["decision"] == "manual"
    assert r.get_json()["data"]["reason"] == "category_not_auto_approved"

    r = client.post(f"/api/v1/claims/{claim.id}/verify", headers=headers, json={})
    assert r.get_json()["data"]["reason"] == "verifier_unavailable"

    r = client.get(f"/api/v1/claims/{claim.id}", headers=headers)
    assert r.get_json()["data"]["status"] == "pending"


def test_run_create_conflict_and_generate(client, company, headers):
    make_employee(company)
    payload = {"company_id": company.id, "month": 1, "year": 2025}

    r = client.post("/api/v1/payroll/runs", headers=headers, json=payload)
    assert r.status_code == 201
    run_id = r.get_json()["data"]["run_id"]
    assert r.get_json()["data"]["status"] == "draft"

    r = client.post("/api/v1/payroll/runs", headers=headers, json=payload)
    assert r.status_code == 409
    err = r.get_json()["error"]
    assert err["code"] == "RUN_EXISTS"
    assert err["detail"]["run_id"] == run_id

    r = client.post(f"/api/v1/payroll/runs/{run_id}/generate", headers=headers)
    assert r.status_code == 200
    assert r.get_json()["data"]["totals"]["headcount"] == 1

    r = client.post(f"/api/v1/payroll/runs/{run_id}/generate?stream=1", headers=headers)
    lines = [line for line in r.get_data(as_text=True).splitlines() if line]
    assert r.mimetype == "application/x-ndjson"
    assert '"event": "start"' in lines[0]
    assert '"event": "done"' in lines[-1]


def test_other_tenant_is_forbidden(client, company):
    headers = auth_headers(roles=("hr",), company_id=company.id + 1, perms=("payroll.*",))
    r = client.post("/api/v1/payroll/runs", headers=headers,
                    json={"company_id": company.id, "month": 1, "year": 2025})
    assert r.status_code == 403
    assert r.get_json()["error"]["code"] == "FORBIDDEN"


def test_settings_round_trip(client, company, headers):
    url = f"/api/v1/companies/{company.id}/settings"
    r = client.put(url, headers=headers, json={"grace_minutes": 5, "claims_auto_approve_max_amount": "300"})
    assert r.status_code == 200
    assert r.get_json()["data"]["grace_minutes"] == 5

    body = client.get(url, headers=headers).get_json()
    assert body["data"]["claims_auto_approve_max_amount"] == 300.0
    assert body["meta"]["overrides"] == {
        "payroll_config": {"grace_minutes": 5},
        "automation_config": {"claims_auto_approve_max_amount": "300"},
    }

    r = client.put(url, headers=headers, json={"grace_minutes": None})
    assert r.get_json()["data"]["grace_minutes"] == 10

    r = client.put(url, headers=headers, json={"grace_minutes": "soon"})
    assert r.status_code == 400


def test_rate_preview(client, company, headers):
    r = client.get("/api/v1/rate-tables/preview?wage=6000&age=30&on=2025-03-31", headers=headers)
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["socso"]["employee"] == 29.75
    assert data["eis"]["employee"] == 11.90
    assert set(data["versions"]) == {"EPF", "SOCSO", "EIS", "PCB"}

    r = client.get("/api/v1/rate-tables/preview?wage=6000", headers=headers)
    assert r.status_code == 400


def test_claims_list_stays_inside_the_callers_company(client, company, headers):
    emp = make_employee(company)
    for amount in (45, 60):
        db.session.add(Claim(company_id=company.id, employee_id=emp.id, category="TRAVEL", amount=amount,
                             claim_date=date(2025, 3, 10), status=ClaimStatus.pending))
    db.session.commit()

    r = client.get(f"/api/v1/claims?company_id={company.id}", headers=headers)
    assert r.status_code == 200
    assert sorted(c["amount"] for c in r.get_json()["data"]) == [45.0, 60.0]

    pinned = auth_headers(roles=("hr",), company_id=company.id, perms=("claims.*",))
    r = client.get(f"/api/v1/claims?employee_id={emp.id}&status=pending", headers=pinned)
    assert len(r.get_json()["data"]) == 2

    other = auth_headers(roles=("hr",), company_id=company.id + 1, perms=("claims.*",))
    r = client.get(f"/api/v1/claims?employee_id={emp.id}", headers=other)
    assert r.status_code == 403
