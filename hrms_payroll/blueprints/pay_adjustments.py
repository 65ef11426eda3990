from __future__ import annotations
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from flask import Blueprint, request, jsonify

from hrms_payroll.common.auth import requires_perms, ensure_tenant, current_user_id
from hrms_payroll.common.errors import ValidationError, NotFoundError, InvalidTransitionError
from hrms_payroll.extensions import db
from hrms_payroll.models.employee import Employee
from hrms_payroll.models.payroll.adjustments import PayrollAdjustment, ADJUSTMENT_TYPES
from hrms_payroll.models.payroll.pay_run import PayrollRun, RunStatus

bp = Blueprint("pay_adjustments", __name__, url_prefix="/api/v1/adjustments")

PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


# ---------- helpers ----------
def _ok(data=None, status=200, **meta):
    payload = {"success": True, "data": data}
    if meta: payload["meta"] = meta
    return jsonify(payload), status

def _dec(x) -> Optional[Decimal]:
    if x is None or x == "": return None
    try: return Decimal(str(x))
    except InvalidOperation: return None

def _row(a: PayrollAdjustment) -> Dict[str, Any]:
    return {
        "id": a.id,
        "employee_id": a.employee_id,
        "period": a.period,
        "type": a.type,
        "amount": float(a.amount or 0),
        "quantity": float(a.quantity) if a.quantity is not None else None,
        "reason": a.reason,
        "created_at": a.created_at.isoformat() if a.created_at else None,
    }

def _period_closed(company_id: int, period: str) -> bool:
    """Inputs are frozen once the period's run has left draft."""
    year, month = (int(p) for p in period.split("-"))
    run = PayrollRun.query.filter_by(company_id=company_id, year=year, month=month).first()
    return run is not None and run.status != RunStatus.draft


# ---------- endpoints ----------
@bp.get("")
@requires_perms("payroll.adjustments.read")
def list_adjustments():
    q = PayrollAdjustment.query
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
    if request.args.get("period"):
        q = q.filter_by(period=request.args["period"])
    rows = q.order_by(PayrollAdjustment.period.desc(), PayrollAdjustment.id.asc()).all()
    return _ok([_row(a) for a in rows])


@bp.post("")
@requires_perms("payroll.adjustments.write")
def create_adjustment():
    d = request.get_json(silent=True) or {}
    emp = db.session.get(Employee, d.get("employee_id")) if d.get("employee_id") else None
    if emp is None:
        raise NotFoundError("Employee not found")
    ensure_tenant(emp.company_id)

    period = str(d.get("period") or "")
    if not PERIOD_RE.match(period):
        raise ValidationError("period must be YYYY-MM")
    kind = (d.get("type") or "").strip().lower()
    if kind not in ADJUSTMENT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(ADJUSTMENT_TYPES)}")
    amount, qty = _dec(d.get("amount")), _dec(d.get("quantity"))
    if amount is None and qty is None:
        raise ValidationError("amount or quantity is required")
    if (amount is not None and amount < 0) or (qty is not None and qty < 0):
        raise ValidationError("amount and quantity cannot be negative")
    if _period_closed(emp.company_id, period):
        raise InvalidTransitionError(f"Payroll for {period} is no longer draft")

    a = PayrollAdjustment(company_id=emp.company_id, employee_id=emp.id, period=period, type=kind,
                          amount=amount or 0, quantity=qty, reason=d.get("reason"), created_by=current_user_id())
    db.session.add(a)
    db.session.commit()
    return _ok(_row(a), 201)


@bp.delete("/<int:adj_id>")
@requires_perms("payroll.adjustments.write")
def delete_adjustment(adj_id: int):
    a = db.session.get(PayrollAdjustment, adj_id)
    if a is None:
        raise NotFoundError("Adjustment not found")
    ensure_tenant(a.company_id)
    if _period_closed(a.company_id, a.period):
        raise InvalidTransitionError(f"Payroll for {a.period} is no longer draft")
    db.session.delete(a)
    db.session.commit()
    return _ok({"deleted": True, "id": adj_id})
