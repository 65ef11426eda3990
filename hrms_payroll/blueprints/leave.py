from datetime import datetime
from flask import Blueprint, request, jsonify

from hrms_payroll.common.auth import requires_perms, ensure_tenant, current_user_id
from hrms_payroll.common.errors import ValidationError, NotFoundError
from hrms_payroll.extensions import db
from hrms_payroll.models.employee import Employee
from hrms_payroll.models.leave import LeaveType, LeaveBalance, LeaveRequest, LeaveStatus
from hrms_payroll.services import leave_ledger as ledger

bp = Blueprint("leave", __name__, url_prefix="/api/v1/leave")

def _ok(data=None, status=200): return jsonify({"success": True, "data": data}), status

def _parse_date(s):
    if not s: return None
    for fmt in ("%Y-%m-%d", "%d-%m-%Y"):
        try: return datetime.strptime(s, fmt).date()
        except (TypeError, ValueError): pass
    return None

def _get_current_year():
    return datetime.utcnow().year

def _employee(emp_id) -> Employee:
    emp = db.session.get(Employee, emp_id) if emp_id else None
    if emp is None:
        raise NotFoundError("Employee not found")
    ensure_tenant(emp.company_id)
    return emp

def _request_or_404(req_id: int) -> LeaveRequest:
    req = db.session.get(LeaveRequest, req_id)
    if req is None:
        raise NotFoundError("Leave request not found")
    ensure_tenant(req.company_id)
    return req

# ---------- Leave Types ----------
@bp.get("/types")
@requires_perms("leave.request.read")
def list_types():
    company_id = request.args.get("company_id", type=int)
    if not company_id:
        raise ValidationError("company_id is required")
    ensure_tenant(company_id)
    items = (LeaveType.query.filter_by(company_id=company_id, is_active=True)
             .order_by(LeaveType.code.asc()).all())
    return _ok([{
        "id": t.id, "code": t.code, "name": t.name,
        "is_paid": t.is_paid,
        "default_days_per_year": float(t.default_days_per_year or 0),
        "gender_restriction": t.gender_restriction,
        "carry_forward_max": float(t.carry_forward_max) if t.carry_forward_max is not None else None,
    } for t in items])

# ---------- Balances ----------
@bp.get("/balances")
@requires_perms("leave.request.read")
def get_balances():
    emp = _employee(request.args.get("employee_id", type=int))
    year = request.args.get("year", type=int) or _get_current_year()
    rows = (LeaveBalance.query
            .filter_by(employee_id=emp.id, year=year)
            .join(LeaveType)
            .order_by(LeaveType.code.asc())
            .all())
    return _ok([ledger.balance_dict(r) for r in rows])

@bp.post("/balances/initialize")
@requires_perms("leave.balance.manage")
def initialize_balances():
    d = request.get_json(silent=True) or {}
    year = int(d.get("year") or _get_current_year())
    if d.get("employee_id"):
        emp = _employee(d["employee_id"])
        created = ledger.initialize(emp, year)
        db.session.commit()
        return _ok({"employee_id": emp.id, "year": year, "created": len(created)})
    company_id = d.get("company_id")
    if not company_id:
        raise ValidationError("employee_id or company_id is required")
    ensure_tenant(company_id)
    result = ledger.initialize_company(int(company_id), year, d.get("employee_ids"))
    db.session.commit()
    return _ok(result)

# ---------- Requests ----------
@bp.get("/requests")
@requires_perms("leave.request.read")
def list_requests():
    q = LeaveRequest.query
    emp_id = request.args.get("employee_id", type=int)
    if emp_id:
        q = q.filter_by(employee_id=_employee(emp_id).id)
    else:
        company_id = request.args.get("company_id", type=int)
        if not company_id:
            raise ValidationError("employee_id or company_id is required")
        ensure_tenant(company_id)
        q = q.filter_by(company_id=company_id)
    status = request.args.get("status")
    if status:
        try:
            q = q.filter_by(status=LeaveStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown status '{status}'")
    rows = q.order_by(LeaveRequest.start_date.desc(), LeaveRequest.id.desc()).all()
    return _ok([ledger.request_dict(r) for r in rows])

@bp.post("/requests")
@requires_perms("leave.request.create")
def apply_leave():
    d = request.get_json(silent=True) or {}
    req_fields = ("employee_id", "leave_type_id", "start_date", "end_date")
    if any(not d.get(k) for k in req_fields):
        raise ValidationError("Missing required fields")

    emp = _employee(d["employee_id"])
    sd, ed = _parse_date(d["start_date"]), _parse_date(d["end_date"])
    if not (sd and ed):
        raise ValidationError("Invalid dates")
    lt = db.session.get(LeaveType, d["leave_type_id"])
    if lt is None:
        raise NotFoundError("Invalid leave type")

    req = ledger.request(emp, lt, sd, ed, d.get("reason"), current_user_id())
    db.session.commit()
    return _ok(ledger.request_dict(req), 201)

@bp.post("/requests/<int:req_id>/approve")
@requires_perms("leave.request.approve")
def approve_leave(req_id):
    req = ledger.approve(_request_or_404(req_id), current_user_id())
    db.session.commit()
    return _ok(ledger.request_dict(req))

@bp.post("/requests/<int:req_id>/reject")
@requires_perms("leave.request.approve")
def reject_leave(req_id):
    d = request.get_json(silent=True) or {}
    req = ledger.reject(_request_or_404(req_id), d.get("reason"), current_user_id())
    db.session.commit()
    return _ok(ledger.request_dict(req))

@bp.post("/requests/<int:req_id>/cancel")
@requires_perms("leave.request.create", "leave.request.approve")
def cancel_leave(req_id):
    req = ledger.cancel(_request_or_404(req_id), current_user_id())
    db.session.commit()
    return _ok(ledger.request_dict(req))
