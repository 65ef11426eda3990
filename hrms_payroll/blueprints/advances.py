from __future__ import annotations
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from flask import Blueprint, request, jsonify

from hrms_payroll.common.auth import requires_perms, ensure_tenant, current_user_id
from hrms_payroll.common.errors import ValidationError, NotFoundError
from hrms_payroll.extensions import db
from hrms_payroll.models.employee import Employee
from hrms_payroll.models.payroll.advances import SalaryAdvance, AdvanceStatus
from hrms_payroll.services import salary_advances

bp = Blueprint("advances", __name__, url_prefix="/api/v1/advances")


# ---------- helpers ----------
def _ok(data=None, status=200, **meta):
    payload = {"success": True, "data": data}
    if meta: payload["meta"] = meta
    return jsonify(payload), status

def _dec(x) -> Optional[Decimal]:
    if x is None or x == "": return None
    try: return Decimal(str(x))
    except InvalidOperation: return None

def _date(s, field: str) -> date:
    try:
        return date.fromisoformat(str(s))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be YYYY-MM-DD")

def _load(adv_id: int) -> SalaryAdvance:
    a = db.session.get(SalaryAdvance, adv_id)
    if a is None:
        raise NotFoundError("Advance not found")
    ensure_tenant(a.company_id)
    return a


# ---------- endpoints ----------
@bp.get("")
@requires_perms("payroll.advance.read")
def list_advances():
    q = SalaryAdvance.query
    emp_id = request.args.get("employee_id", type=int)
    company_id = request.args.get("company_id", type=int)
    if emp_id:
        emp = db.session.get(Employee, emp_id)
        if emp is None:
            raise NotFoundError("Employee not found")
        ensure_tenant(emp.company_id)
        q = q.filter_by(employee_id=emp_id)
    elif company_id:
        ensure_tenant(company_id)
        q = q.filter_by(company_id=company_id)
    else:
        raise ValidationError("employee_id or company_id is required")
    status = request.args.get("status")
    if status:
        try:
            q = q.filter_by(status=AdvanceStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown status '{status}'")
    rows = q.order_by(SalaryAdvance.advance_date.desc(), SalaryAdvance.id.desc()).all()
    return _ok([salary_advances.advance_dict(a) for a in rows])


@bp.get("/<int:adv_id>")
@requires_perms("payroll.advance.read")
def get_advance(adv_id: int):
    return _ok(salary_advances.advance_dict(_load(adv_id), full=True))


@bp.post("")
@requires_perms("payroll.advance.write")
def create_advance():
    d = request.get_json(silent=True) or {}
    emp = db.session.get(Employee, d.get("employee_id")) if d.get("employee_id") else None
    if emp is None:
        raise NotFoundError("Employee not found")
    ensure_tenant(emp.company_id)

    amount = _dec(d.get("amount"))
    if amount is None:
        raise ValidationError("amount is required")
    advance_date = _date(d.get("advance_date") or date.today().isoformat(), "advance_date")
    deduct_from = None
    if d.get("deduct_from"):
        try:
            year, month = (int(p) for p in str(d["deduct_from"]).split("-"))
        except ValueError:
            raise ValidationError("deduct_from must be YYYY-MM")
        deduct_from = (year, month)

    a = salary_advances.create(
        emp, amount, advance_date,
        deduction_method=(d.get("deduction_method") or "full").strip().lower(),
        installment_amount=_dec(d.get("installment_amount")),
        deduct_from=deduct_from, reason=d.get("reason"), reference_no=d.get("reference_no"),
        actor_id=current_user_id(),
    )
    if d.get("approve"):
        salary_advances.approve(a, actor_id=current_user_id())
    db.session.commit()
    return _ok(salary_advances.advance_dict(a), 201)


@bp.post("/<int:adv_id>/approve")
@requires_perms("payroll.advance.write")
def approve_advance(adv_id: int):
    a = salary_advances.approve(_load(adv_id), actor_id=current_user_id())
    db.session.commit()
    return _ok(salary_advances.advance_dict(a))


@bp.post("/<int:adv_id>/cancel")
@requires_perms("payroll.advance.write")
def cancel_advance(adv_id: int):
    a = salary_advances.cancel(_load(adv_id), actor_id=current_user_id())
    db.session.commit()
    return _ok(salary_advances.advance_dict(a))
