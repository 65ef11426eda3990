from decimal import Decimal

import pytest

from hrms_payroll.common.errors import YearNotFinalizedError, NotFoundError
from hrms_payroll.extensions import db
from hrms_payroll.models.payroll.ea_form import EAForm, BenefitInKind
from hrms_payroll.models.payroll.pay_run import PayrollItem
from hrms_payroll.services import ea_generator, payroll_run

from conftest import make_employee


def _paid_run(company, month, year=2025):
    run = payroll_run.create(company.id, month, year)
    payroll_run.generate(run.id)
    payroll_run.approve(run.id)
    payroll_run.lock(run.id)
    payroll_run.pay(run.id, f"PAY-{year}{month:02d}")
    db.session.commit()
    return run


def test_form_totals_match_paid_items(app, company):
    emp = make_employee(company, basic_salary_default=3300, allowance_default=200)
    _paid_run(company, 1)
    _paid_run(company, 2)
    # approved but never paid: not on the form
    locked = payroll_run.create(company.id, 3, 2025)
    payroll_run.generate(locked.id)
    payroll_run.approve(locked.id)
    db.session.commit()

    result = ea_generator.generate(company.id, 2025)
    db.session.commit()
    assert result["generated"] == [emp.id]
    assert result["errors"] == []

    items = ea_generator.paid_items(emp.id, 2025)
    assert len(items) == 2
    form = ea_generator.get_form(emp.id, 2025)
    data = form.form_data
    assert data["version"] == ea_generator.FORM_VERSION
    assert data["months_paid"] == 2
    assert data["remuneration"]["salary_wages"] == 6600.0
    assert data["remuneration"]["allowances"] == 400.0
    assert form.total_epf == sum(Decimal(it.epf_employee) for it in items)
    assert form.total_pcb == sum(Decimal(it.pcb) for it in items)
    assert form.total_employment_income == Decimal("7000.00")
    assert [m["month"] for m in data["monthly_breakdown"]] == [1, 2]
    assert data["employer"]["registration_no"] == "201901000123"


def test_regeneration_is_idempotent_until_sources_change(app, company):
    emp = make_employee(company)
    _paid_run(company, 1)
    first = ea_generator.generate(company.id, 2025)
    db.session.commit()
    generated_at = ea_generator.get_form(emp.id, 2025).generated_at

    again = ea_generator.generate(company.id, 2025)
    db.session.commit()
    assert (again["generated"], again["unchanged"]) == ([], [emp.id])
    assert ea_generator.get_form(emp.id, 2025).generated_at == generated_at
    assert EAForm.query.count() == 1

    db.session.add(BenefitInKind(employee_id=emp.id, year=2025, description="Company car", value=Decimal("1200")))
    db.session.commit()
    third = ea_generator.generate(company.id, 2025)
    db.session.commit()
    assert third["generated"] == [emp.id]
    form = ea_generator.get_form(emp.id, 2025)
    assert form.form_data["benefits_in_kind"]["total"] == 1200.0
    assert form.total_employment_income == Decimal(
        PayrollItem.query.filter_by(employee_id=emp.id).one().gross_salary
    ) + 1200
    assert first["generated"] == [emp.id]


def test_draft_runs_block_the_year(app, company):
    emp = make_employee(company)
    _paid_run(company, 1)
    draft = payroll_run.create(company.id, 2, 2025)
    payroll_run.generate(draft.id)
    db.session.commit()

    with pytest.raises(YearNotFinalizedError) as exc:
        ea_generator.generate(company.id, 2025)
    assert exc.value.payload["draft_months"] == [2]

    result = ea_generator.generate(company.id, 2025, allow_draft=True)
    assert result["generated"] == [emp.id]
    assert ea_generator.get_form(emp.id, 2025).form_data["months_paid"] == 1


def test_no_form_without_paid_payroll(app, company):
    emp = make_employee(company)
    assert ea_generator.generate(company.id, 2025)["generated"] == []
    with pytest.raises(NotFoundError):
        ea_generator.get_form(emp.id, 2025)
    with pytest.raises(NotFoundError):
        ea_generator.generate_for_employee(emp, 2025)
