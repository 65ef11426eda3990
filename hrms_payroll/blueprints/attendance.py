from __future__ import annotations

from datetime import date, datetime, time
from typing import Optional

from flask import Blueprint, request, jsonify

from hrms_payroll.common.auth import requires_perms, ensure_tenant
from hrms_payroll.common.errors import ValidationError, NotFoundError
from hrms_payroll.extensions import db
from hrms_payroll.models.attendance import ClockRecord, Schedule
from hrms_payroll.models.employee import Employee
from hrms_payroll.services import clock_service
from hrms_payroll.services.clock_service import TIME_FIELDS

bp = Blueprint("attendance", __name__, url_prefix="/api/v1/attendance")


# ---------- helpers ----------
def _ok(data=None, status=200, **meta):
    payload = {"success": True, "data": data}
    if meta:
        payload["meta"] = meta
    return jsonify(payload), status


def _d(s) -> Optional[date]:
    if not s:
        return None
    try:
        return date.fromisoformat(str(s))
    except ValueError:
        return None


def _t(s) -> Optional[time]:
    if not s:
        return None
    for fmt in ("%H:%M:%S", "%H:%M"):
        try:
            return datetime.strptime(str(s), fmt).time()
        except ValueError:
            continue
    raise ValidationError(f"Invalid time '{s}', expected HH:MM")


def _hm(t: Optional[time]):
    return t.strftime("%H:%M") if t else None


def _employee(emp_id) -> Employee:
    emp = db.session.get(Employee, emp_id) if emp_id else None
    if emp is None:
        raise NotFoundError("Employee not found")
    ensure_tenant(emp.company_id)
    return emp


def _row(r: ClockRecord) -> dict:
    d = {
        "id": r.id,
        "employee_id": r.employee_id,
        "work_date": r.work_date.isoformat(),
        "attendance_status": r.attendance_status.value,
        "total_work_minutes": r.total_work_minutes,
        "total_work_hours": float(r.total_work_hours or 0),
        "ot_minutes": r.ot_minutes,
        "ot_hours": float(r.ot_hours or 0),
        "ot_flagged": r.ot_flagged,
        "ot_approved": r.ot_approved,
        "late_minutes": r.late_minutes,
        "early_minutes": r.early_minutes,
        "deduction_amount": float(r.deduction_amount or 0),
        "notes": r.notes,
    }
    d.update({f: _hm(getattr(r, f)) for f in TIME_FIELDS})
    return d


def _record_or_404(rec_id: int) -> ClockRecord:
    rec = db.session.get(ClockRecord, rec_id)
    if rec is None:
        raise NotFoundError("Clock record not found")
    ensure_tenant(rec.company_id)
    return rec


# ---------- clock ----------
@bp.post("/clock")
@requires_perms("attendance.clock")
def clock():
    d = request.get_json(silent=True) or {}
    emp = _employee(d.get("employee_id"))
    work_date, at = _d(d.get("date")), _t(d.get("time"))
    if work_date is None or at is None:
        raise ValidationError("date (YYYY-MM-DD) and time (HH:MM) are required")
    result = clock_service.clock(emp, work_date, at)
    db.session.commit()
    return _ok(result, 201 if result["persisted"] else 200)


@bp.put("/records")
@requires_perms("attendance.manage")
def upsert_record():
    d = request.get_json(silent=True) or {}
    emp = _employee(d.get("employee_id"))
    work_date = _d(d.get("work_date"))
    if work_date is None:
        raise ValidationError("work_date (YYYY-MM-DD) is required")
    times = {k: _t(v) for k, v in (d.get("times") or {}).items()}
    rec = clock_service.upsert_record(emp, work_date, times)
    db.session.commit()
    return _ok(_row(rec))


@bp.get("/records")
@requires_perms("attendance.read")
def list_records():
    emp = _employee(request.args.get("employee_id", type=int))
    start, end = _d(request.args.get("from")), _d(request.args.get("to"))
    q = ClockRecord.query.filter_by(employee_id=emp.id)
    if start:
        q = q.filter(ClockRecord.work_date >= start)
    if end:
        q = q.filter(ClockRecord.work_date <= end)
    rows = q.order_by(ClockRecord.work_date.asc()).all()
    return _ok([_row(r) for r in rows])


@bp.post("/records/<int:rec_id>/ot/approve")
@requires_perms("attendance.ot.approve")
def approve_ot(rec_id: int):
    rec = clock_service.set_ot_approval(_record_or_404(rec_id), True)
    db.session.commit()
    return _ok(_row(rec))


@bp.post("/records/<int:rec_id>/ot/reject")
@requires_perms("attendance.ot.approve")
def reject_ot(rec_id: int):
    rec = clock_service.set_ot_approval(_record_or_404(rec_id), False)
    db.session.commit()
    return _ok(_row(rec))


# ---------- schedules ----------
@bp.put("/schedules")
@requires_perms("attendance.manage")
def upsert_schedule():
    d = request.get_json(silent=True) or {}
    emp = _employee(d.get("employee_id"))
    work_date = _d(d.get("work_date"))
    start, end = _t(d.get("shift_start")), _t(d.get("shift_end"))
    if work_date is None or start is None or end is None:
        raise ValidationError("work_date, shift_start and shift_end are required")
    s = Schedule.query.filter_by(employee_id=emp.id, work_date=work_date).first()
    if s is None:
        s = Schedule(employee_id=emp.id, work_date=work_date)
        db.session.add(s)
    s.shift_start, s.shift_end = start, end
    s.break_minutes = int(d.get("break_minutes", 60))
    s.is_rest_day = bool(d.get("is_rest_day", False))
    db.session.commit()
    return _ok({"id": s.id, "work_date": s.work_date.isoformat(), "shift_start": _hm(s.shift_start),
                "shift_end": _hm(s.shift_end), "break_minutes": s.break_minutes, "is_rest_day": s.is_rest_day})
