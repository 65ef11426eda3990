from io import BytesIO

from openpyxl import load_workbook

from hrms_payroll.extensions import db
from hrms_payroll.services import payroll_run

from conftest import make_employee


def _paid_run(company):
    run = payroll_run.create(company.id, 1, 2025)
    payroll_run.generate(run.id)
    payroll_run.approve(run.id)
    payroll_run.lock(run.id)
    payroll_run.pay(run.id, "PAY-202501")
    db.session.commit()
    return run


def test_payslip_lists_nonzero_lines(client, company, headers):
    make_employee(company, "E001", basic_salary_default=3300, allowance_default=150)
    run = _paid_run(company)
    item = run.items.first()

    r = client.get(f"/api/v1/payroll/runs/{run.id}/items/{item.id}/payslip", headers=headers)
    assert r.status_code == 200
    slip = r.get_json()["data"]
    assert [l["code"] for l in slip["earnings"]] == ["basic_salary", "allowance"]
    assert {l["code"] for l in slip["deductions"]} >= {"epf_employee", "socso_employee", "eis_employee"}
    assert slip["totals"]["gross_pay"] == 3450.0
    assert slip["run"]["status"] == "paid"
    assert slip["employee"]["department"] == "Office"

    r = client.get(f"/api/v1/payroll/runs/{run.id}/items/{item.id}", headers=headers)
    assert r.get_json()["data"]["snapshot_matches"] is True


def test_register_export(client, company, headers):
    make_employee(company, "E001", basic_salary_default=3000)
    make_employee(company, "E002", basic_salary_default=5000)
    run = _paid_run(company)

    r = client.get(f"/api/v1/payroll/runs/{run.id}/export.xlsx", headers=headers)
    assert r.status_code == 200
    ws = load_workbook(BytesIO(r.data)).active
    rows = list(ws.iter_rows(values_only=True))
    assert rows[0][:4] == ("EMP CODE", "NAME", "STATUS", "BASIC")
    assert [row[0] for row in rows[1:3]] == ["E001", "E002"]
    assert rows[-1][1] == "TOTAL"
    assert rows[-1][3] == 8000.0


def test_ea_endpoints(client, company, headers):
    emp = make_employee(company, "E001", basic_salary_default=3300)
    _paid_run(company)

    r = client.post("/api/v1/ea-forms/generate/2025", headers=headers, json={"company_id": company.id})
    assert r.status_code == 200
    assert r.get_json()["data"]["generated"] == [emp.id]

    r = client.get(f"/api/v1/ea-forms/2025/{emp.id}", headers=headers)
    assert r.get_json()["data"]["form_data"]["remuneration"]["salary_wages"] == 3300.0

    r = client.get(f"/api/v1/ea-forms/2025/summary?company_id={company.id}", headers=headers)
    assert r.get_json()["data"]["employees"] == 1

    r = client.get(f"/api/v1/ea-forms/2025/export.xlsx?company_id={company.id}", headers=headers)
    rows = list(load_workbook(BytesIO(r.data)).active.iter_rows(values_only=True))
    assert rows[1][0] == "E001"
    assert rows[1][5] == 3300.0
