from datetime import date
from decimal import Decimal

import pytest

from hrms_payroll.common.errors import InvalidTransitionError, ValidationError
from hrms_payroll.extensions import db
from hrms_payroll.models.payroll.advances import SalaryAdvanceDeduction, AdvanceStatus
from hrms_payroll.models.payroll.pay_run import PayrollItem
from hrms_payroll.services import payroll_run, salary_advances

from conftest import make_employee


def _advance(emp, amount, method="full", installment=None, deduct_from=None):
    adv = salary_advances.create(emp, Decimal(amount), date(2025, 1, 10), deduction_method=method,
                                 installment_amount=installment, deduct_from=deduct_from)
    salary_advances.approve(adv)
    db.session.commit()
    return adv


def _run(company, emp, month, approve=True):
    run = payroll_run.create(company.id, month, 2025)
    payroll_run.generate(run.id)
    if approve:
        payroll_run.approve(run.id)
    db.session.commit()
    return run, PayrollItem.query.filter_by(run_id=run.id, employee_id=emp.id).one()


def test_installments_run_down_the_balance(app, company):
    emp = make_employee(company, basic_salary_default=3000)
    adv = _advance(emp, "1000", "installment", Decimal("400"))

    for month, expected, left in ((1, "400.00", "600.00"), (2, "400.00", "200.00"), (3, "200.00", "0.00")):
        _, item = _run(company, emp, month)
        assert item.advance_deduction == Decimal(expected)
        assert item.net_pay == item.gross_salary - item.total_deductions
        assert adv.remaining_balance == Decimal(left)

    assert adv.total_deducted == Decimal("1000.00")
    assert adv.status == AdvanceStatus.completed
    assert [d.month for d in SalaryAdvanceDeduction.query.filter_by(advance_id=adv.id).all()] == [1, 2, 3]


def test_full_recovery_waits_for_its_month(app, company):
    emp = make_employee(company, basic_salary_default=3000)
    adv = _advance(emp, "500", deduct_from=(2025, 2))

    _, jan = _run(company, emp, 1)
    assert jan.advance_deduction == Decimal("0.00")
    assert adv.remaining_balance == Decimal("500.00")

    _, feb = _run(company, emp, 2)
    assert feb.advance_deduction == Decimal("500.00")
    assert adv.status == AdvanceStatus.completed


def test_balance_moves_only_on_approval(app, company):
    emp = make_employee(company, basic_salary_default=3000)
    adv = _advance(emp, "300")

    run, item = _run(company, emp, 1, approve=False)
    payroll_run.generate(run.id)
    db.session.commit()
    assert item.advance_deduction == Decimal("300.00")
    assert item.calc_meta["advances"] == [{"advance_id": adv.id, "amount": 300.0}]
    assert adv.remaining_balance == Decimal("300.00")

    payroll_run.approve(run.id)
    db.session.commit()
    assert adv.remaining_balance == Decimal("0.00")
    assert SalaryAdvanceDeduction.query.filter_by(advance_id=adv.id).count() == 1


def test_pending_advance_is_not_recovered(app, company):
    emp = make_employee(company, basic_salary_default=3000)
    salary_advances.create(emp, Decimal("300"), date(2025, 1, 10))
    db.session.commit()

    _, item = _run(company, emp, 1, approve=False)
    assert item.advance_deduction == Decimal("0.00")


def test_advance_validation_and_cancel(app, company):
    emp = make_employee(company)
    with pytest.raises(ValidationError):
        salary_advances.create(emp, Decimal("300"), date(2025, 1, 10), deduction_method="installment")
    with pytest.raises(ValidationError):
        salary_advances.create(emp, Decimal("0"), date(2025, 1, 10))

    adv = _advance(emp, "1000", "installment", Decimal("250"))
    _run(company, emp, 1)
    with pytest.raises(InvalidTransitionError):
        salary_advances.cancel(adv)

    other = _advance(emp, "100")
    salary_advances.cancel(other)
    assert other.status == AdvanceStatus.cancelled


def test_advance_endpoints(client, company, headers):
    emp = make_employee(company)
    r = client.post("/api/v1/advances", headers=headers, json={
        "employee_id": emp.id, "amount": "600", "advance_date": "2025-01-10",
        "deduction_method": "installment", "installment_amount": "200", "approve": True,
    })
    assert r.status_code == 201
    body = r.get_json()["data"]
    assert body["status"] == "active"
    assert body["remaining_balance"] == 600.0
    assert body["deduct_from"] == "2025-01"

    r = client.get(f"/api/v1/advances?company_id={company.id}", headers=headers)
    assert [a["id"] for a in r.get_json()["data"]] == [body["id"]]

    r = client.post("/api/v1/advances", headers=headers, json={"employee_id": emp.id})
    assert r.status_code == 400
