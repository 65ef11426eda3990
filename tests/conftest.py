import os
from datetime import date

import pytest
from flask_jwt_extended import create_access_token

from hrms_payroll import create_app
from hrms_payroll.extensions import db
from hrms_payroll.models.employee import Employee
from hrms_payroll.models.leave import LeaveType
from hrms_payroll.models.master import Company, Department
from hrms_payroll.models.payroll.structure import PayrollStructure, PayrollStructureComponent
from hrms_payroll.services.rate_resolver import seed_defaults


@pytest.fixture
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    app.config["TESTING"] = True
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def auth_headers(roles=("admin",), company_id=None, perms=()):
    token = create_access_token(
        identity="1",
        additional_claims={"roles": list(roles), "perms": list(perms), "company_id": company_id},
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers(app):
    return auth_headers()


def make_structure(company, components=("basic_salary", "allowance", "commission", "bonus", "ot_amount"),
                   code="OFFICE", modes=None):
    modes = modes or {}
    s = PayrollStructure(company_id=company.id, code=code, name=code.title())
    for pos, name in enumerate(components):
        s.components.append(PayrollStructureComponent(component=name, mode=modes.get(name, "fixed"), position=pos))
    db.session.add(s)
    db.session.flush()
    return s


@pytest.fixture
def company(app):
    """Company with the 2025 statutory tables, one department and AL/MC/UL leave types."""
    c = Company(code="ACME", name="Acme Sdn Bhd", registration_no="201901000123")
    db.session.add(c)
    db.session.flush()
    seed_defaults(date(2025, 1, 1))
    s = make_structure(c)
    db.session.add(Department(company_id=c.id, name="Office", payroll_structure_id=s.id))
    db.session.add_all([
        LeaveType(company_id=c.id, code="AL", name="Annual Leave", default_days_per_year=14, is_paid=True),
        LeaveType(company_id=c.id, code="MC", name="Medical Leave", default_days_per_year=14, is_paid=True),
        LeaveType(company_id=c.id, code="UL", name="Unpaid Leave", default_days_per_year=0, is_paid=False),
    ])
    db.session.commit()
    return c


def leave_type(company, code):
    return LeaveType.query.filter_by(company_id=company.id, code=code).one()


def make_employee(company, code="E001", **kw):
    dept = Department.query.filter_by(company_id=company.id).first()
    values = dict(
        company_id=company.id,
        department_id=dept.id if dept else None,
        employee_code=code,
        name=kw.pop("name", f"Employee {code}"),
        join_date=kw.pop("join_date", date(2020, 1, 1)),
        date_of_birth=kw.pop("date_of_birth", date(1995, 1, 1)),
        basic_salary_default=kw.pop("basic_salary_default", 3300),
    )
    values.update(kw)
    e = Employee(**values)
    db.session.add(e)
    db.session.commit()
    return e
