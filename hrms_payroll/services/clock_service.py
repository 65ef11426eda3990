"""
Clock-record writes. One row per (employee, work_date); a rewrite replaces the
row's times and every derived field is recomputed from scratch.
"""
from __future__ import annotations

import logging
from datetime import date, time as _time
from typing import Optional

from hrms_payroll.common.errors import ValidationError, ConflictError
from hrms_payroll.extensions import db
from hrms_payroll.models.attendance import ClockRecord, Schedule, AttendanceStatus
from hrms_payroll.services.attendance_deduction import assess
from hrms_payroll.services.company_config import settings_for
from hrms_payroll.services.time_arithmetic import compute_work, BreakPolicy, STATE_IN_PROGRESS, STATE_ABSENT

log = logging.getLogger(__name__)

TIME_FIELDS = ("clock_in_1", "clock_out_1", "clock_in_2", "clock_out_2")


def schedule_for(employee_id: int, work_date: date) -> Optional[Schedule]:
    return Schedule.query.filter_by(employee_id=employee_id, work_date=work_date).first()


def _locked_record(employee_id: int, work_date: date) -> Optional[ClockRecord]:
    return (
        ClockRecord.query
        .filter_by(employee_id=employee_id, work_date=work_date)
        .with_for_update()
        .first()
    )


def recompute(rec: ClockRecord, employee, schedule: Optional[Schedule], settings) -> ClockRecord:
    """Fill the derived columns of `rec` from its four times."""
    work = compute_work(
        rec,
        BreakPolicy(standard_minutes=settings.standard_minutes),
        part_time=employee.is_part_time,
    )
    rec.total_work_minutes = work.total_minutes
    rec.total_work_hours = work.total_hours
    rec.ot_minutes = work.ot_minutes
    rec.ot_hours = work.ot_hours
    rec.ot_flagged = work.ot_minutes > 0
    if not rec.ot_flagged:
        rec.ot_approved = None

    result = assess(rec, schedule, employee.basic_salary_default, settings)
    rec.late_minutes = result.late_minutes
    rec.early_minutes = result.early_minutes
    rec.deduction_amount = result.deduction_amount

    status = result.status
    if status == AttendanceStatus.wrong_shift:
        # keep the punches for the operator but nothing on the row may pay
        rec.total_work_minutes = 0
        rec.total_work_hours = 0
        rec.ot_minutes = 0
        rec.ot_hours = 0
        rec.ot_flagged = False
    elif work.state == STATE_IN_PROGRESS:
        # nothing on an open day counts until it is closed
        status = AttendanceStatus.in_progress
        rec.late_minutes = 0
        rec.early_minutes = 0
        rec.deduction_amount = 0
    elif work.state == STATE_ABSENT and schedule is not None:
        status = AttendanceStatus.absent
    rec.attendance_status = status

    notes = list(work.warnings)
    if result.rejection_reason:
        notes.append(result.rejection_reason)
    rec.notes = notes or None
    return rec


def clock(employee, work_date: date, at: _time) -> dict:
    """
    A single punch from a terminal/ESS. Punches fill in1, then out2; a third
    punch splits the day into a break (out1, in2) and a fourth closes it.

    A first punch that lands on the wrong shift is answered but not stored.
    """
    settings = settings_for(employee.company)
    schedule = schedule_for(employee.id, work_date)
    rec = _locked_record(employee.id, work_date)

    punches = [getattr(rec, f) for f in TIME_FIELDS if getattr(rec, f) is not None] if rec else []
    if len(punches) >= 4:
        raise ConflictError("All four punches already recorded for this day")
    punches.append(at)

    if rec is None:
        trial = ClockRecord(clock_in_1=at)
        first = assess(trial, schedule, employee.basic_salary_default, settings)
        if first.status == AttendanceStatus.wrong_shift:
            log.warning("[clock] wrong shift employee=%s date=%s: %s", employee.id, work_date, first.rejection_reason)
            return {
                "attendance_status": first.status.value,
                "schedule": _schedule_dict(schedule),
                "rejection_reason": first.rejection_reason,
                "persisted": False,
            }
        rec = ClockRecord(company_id=employee.company_id, employee_id=employee.id, work_date=work_date)
        db.session.add(rec)

    slots = {
        1: ("clock_in_1",),
        2: ("clock_in_1", "clock_out_2"),
        3: ("clock_in_1", "clock_out_1", "clock_in_2"),
        4: ("clock_in_1", "clock_out_1", "clock_in_2", "clock_out_2"),
    }[len(punches)]
    for f in TIME_FIELDS:
        setattr(rec, f, None)
    for f, t in zip(slots, punches):
        setattr(rec, f, t)

    recompute(rec, employee, schedule, settings)
    db.session.flush()
    return {
        "attendance_status": rec.attendance_status.value,
        "schedule": _schedule_dict(schedule),
        "rejection_reason": None,
        "persisted": True,
        "record_id": rec.id,
    }


def upsert_record(employee, work_date: date, times: dict) -> ClockRecord:
    """Replace the day's four times (missing keys become null) and recompute."""
    unknown = set(times) - set(TIME_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown clock fields: {', '.join(sorted(unknown))}")

    settings = settings_for(employee.company)
    schedule = schedule_for(employee.id, work_date)
    rec = _locked_record(employee.id, work_date)
    if rec is None:
        rec = ClockRecord(company_id=employee.company_id, employee_id=employee.id, work_date=work_date)
        db.session.add(rec)
    for f in TIME_FIELDS:
        setattr(rec, f, times.get(f))
    rec.ot_approved = None
    recompute(rec, employee, schedule, settings)
    db.session.flush()
    return rec


def set_ot_approval(rec: ClockRecord, approved: bool) -> ClockRecord:
    if not rec.ot_flagged:
        raise ValidationError("Record has no overtime to approve")
    if not rec.attendance_status.payable:
        raise ValidationError(f"Record is {rec.attendance_status.value}; overtime cannot be approved")
    rec.ot_approved = bool(approved)
    return rec


def _schedule_dict(s: Optional[Schedule]):
    if s is None:
        return None
    return {
        "work_date": s.work_date.isoformat(),
        "shift_start": s.shift_start.strftime("%H:%M"),
        "shift_end": s.shift_end.strftime("%H:%M"),
        "break_minutes": s.break_minutes,
    }
