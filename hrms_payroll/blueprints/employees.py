from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from flask import Blueprint, request, jsonify

from hrms_payroll.common.auth import requires_perms, ensure_tenant
from hrms_payroll.common.errors import ValidationError, NotFoundError, ConflictError
from hrms_payroll.extensions import db
from hrms_payroll.models.employee import Employee, normalize_ic
from hrms_payroll.models.employee_bank import EmployeeBankAccount
from hrms_payroll.models.master import Company, Department, Outlet
from hrms_payroll.services import leave_ledger
from hrms_payroll.services.employees import employee_dict

log = logging.getLogger(__name__)

bp = Blueprint("employees", __name__, url_prefix="/api/v1/employees")

ENUMS = {
    "gender": ("male", "female"),
    "employment_type": ("probation", "confirmed"),
    "work_type": ("full_time", "part_time"),
    "residency_status": ("citizen", "permanent_resident", "foreign"),
    "epf_contribution_type": ("normal", "senior_voluntary", "foreign"),
    "marital_status": ("single", "married"),
    "status": ("active", "inactive"),
}
TEXT = ("name", "email", "designation", "ic_number", "passport_no", "tax_no")
MONEY = ("basic_salary_default", "allowance_default", "ot_rate", "commission_rate",
         "fixed_ot_amount", "per_trip_rate", "outstation_rate")
DATES = ("date_of_birth", "join_date", "last_working_day")


def _ok(data=None, status=200, **meta):
    payload = {"success": True, "data": data}
    if meta:
        payload["meta"] = meta
    return jsonify(payload), status


def _parse_date(val):
    if not val:
        return None
    try:
        return datetime.strptime(str(val), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"Invalid date '{val}', expected YYYY-MM-DD")


def _apply(x: Employee, d: dict):
    for k, allowed in ENUMS.items():
        if k in d and d[k] is not None:
            if d[k] not in allowed:
                raise ValidationError(f"{k} must be one of {', '.join(allowed)}")
            setattr(x, k, d[k])
    for k in TEXT:
        if k in d:
            setattr(x, k, (str(d[k]).strip() or None) if d[k] is not None else None)
    for k in MONEY:
        if k in d:
            try:
                setattr(x, k, Decimal(str(d[k])) if d[k] not in (None, "") else None)
            except InvalidOperation:
                raise ValidationError(f"{k} must be a number")
    for k in DATES:
        if k in d:
            setattr(x, k, _parse_date(d[k]))
    for k in ("department_id", "outlet_id"):
        if k in d:
            setattr(x, k, int(d[k]) if d[k] else None)
    if "children_count" in d:
        x.children_count = int(d["children_count"] or 0)
    for k in ("spouse_working", "outstation_meal_allowance"):
        if k in d:
            setattr(x, k, bool(d[k]))
    if "ic_number" in d:
        x.normalized_ic = normalize_ic(x.ic_number)


def _check_fks(x: Employee):
    if x.department_id:
        dept = db.session.get(Department, x.department_id)
        if dept is None or dept.company_id != x.company_id:
            raise ValidationError("Invalid department_id")
    if x.outlet_id:
        outlet = db.session.get(Outlet, x.outlet_id)
        if outlet is None or outlet.company_id != x.company_id:
            raise ValidationError("Invalid outlet_id")


@bp.get("")
@requires_perms("employee.read")
def list_employees():
    cid = request.args.get("company_id", type=int)
    if not cid:
        raise ValidationError("company_id is required")
    ensure_tenant(cid)
    q = Employee.query.filter_by(company_id=cid)
    if request.args.get("status"):
        q = q.filter_by(status=request.args["status"])
    return _ok([employee_dict(e) for e in q.order_by(Employee.employee_code.asc()).all()])


@bp.get("/<int:eid>")
@requires_perms("employee.read")
def get_employee(eid: int):
    x = db.session.get(Employee, eid)
    if x is None:
        raise NotFoundError("Employee not found")
    ensure_tenant(x.company_id)
    return _ok(employee_dict(x))


@bp.post("")
@requires_perms("employee.write")
def create_employee():
    d = request.get_json(silent=True) or {}
    try:
        cid = int(d.get("company_id"))
    except (TypeError, ValueError):
        raise ValidationError("company_id is required")
    ensure_tenant(cid)
    if db.session.get(Company, cid) is None:
        raise ValidationError("Invalid company_id")

    code = (d.get("employee_code") or "").strip()
    if not (code and (d.get("name") or "").strip() and d.get("join_date")):
        raise ValidationError("employee_code, name and join_date are required")
    if Employee.query.filter_by(company_id=cid, employee_code=code).first():
        raise ConflictError("Employee code already exists for this company")

    x = Employee(company_id=cid, employee_code=code)
    _apply(x, d)
    _check_fks(x)
    db.session.add(x)
    db.session.flush()
    leave_ledger.initialize(x, max(x.join_date.year, datetime.utcnow().year))
    db.session.commit()
    return _ok(employee_dict(x), 201)


@bp.patch("/<int:eid>")
@requires_perms("employee.write")
def update_employee(eid: int):
    x = db.session.get(Employee, eid)
    if x is None:
        raise NotFoundError("Employee not found")
    ensure_tenant(x.company_id)
    d = request.get_json(silent=True) or {}
    d.pop("company_id", None)
    d.pop("employee_code", None)
    _apply(x, d)
    _check_fks(x)
    db.session.commit()
    return _ok(employee_dict(x))


# ---------- bank account ----------
def _bank_row(a: EmployeeBankAccount) -> dict:
    return {
        "id": a.id,
        "bank_name": a.bank_name,
        "account_number": a.account_number,
        "account_holder": a.account_holder,
        "is_primary": a.is_primary,
    }


@bp.get("/<int:eid>/bank-accounts")
@requires_perms("employee.read")
def list_bank_accounts(eid: int):
    x = db.session.get(Employee, eid)
    if x is None:
        raise NotFoundError("Employee not found")
    ensure_tenant(x.company_id)
    return _ok([_bank_row(a) for a in x.bank_accounts])


@bp.put("/<int:eid>/bank-account")
@requires_perms("employee.write")
def set_primary_bank_account(eid: int):
    """Salary account used by bank payment files; replaces the current primary."""
    x = db.session.get(Employee, eid)
    if x is None:
        raise NotFoundError("Employee not found")
    ensure_tenant(x.company_id)
    d = request.get_json(silent=True) or {}
    bank = (d.get("bank_name") or "").strip()
    number = "".join(ch for ch in str(d.get("account_number") or "") if ch.isalnum())
    if not bank or not number:
        raise ValidationError("bank_name and account_number are required")

    for a in x.bank_accounts:
        a.is_primary = False
    acct = EmployeeBankAccount(employee_id=x.id, bank_name=bank, account_number=number,
                               account_holder=(d.get("account_holder") or "").strip() or None, is_primary=True)
    db.session.add(acct)
    db.session.commit()
    return _ok(_bank_row(acct))
