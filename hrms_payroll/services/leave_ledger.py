"""
Leave ledger: per (employee, leave type, year) balances and the request
lifecycle pending -> approved/rejected -> cancelled.

Balance changes always happen under a row lock on the balance row. Nothing in
here commits; callers own the transaction.
"""
from __future__ import annotations

import logging
from calendar import monthrange
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import or_

from hrms_payroll.common.errors import (
    ValidationError, LeaveOverlapError, InvalidTransitionError, InsufficientBalanceError,
)
from hrms_payroll.common.money import D, round_to_half
from hrms_payroll.extensions import db
from hrms_payroll.models.attendance import PublicHoliday
from hrms_payroll.models.employee import Employee
from hrms_payroll.models.leave import (
    LeaveType, LeaveBalance, LeaveRequest, LeaveApprovalAction, LeaveStatus,
)

log = logging.getLogger(__name__)

OPEN_STATUSES = (LeaveStatus.pending, LeaveStatus.approved)


# ---------- entitlement ----------

def entitlement_for(leave_type: LeaveType, employee: Employee, year: int) -> Decimal:
    """Yearly days before pro-rating: highest service tier reached at the start of the year, else the default."""
    days = D(leave_type.default_days_per_year)
    service = employee.years_of_service(date(year, 1, 1))
    for tier in sorted(leave_type.entitlement_rules or [], key=lambda r: r.get("min_years", 0)):
        if service >= int(tier.get("min_years", 0)):
            days = D(tier.get("days", days))
    return days


def prorate(days, join_date: date, year: int) -> Decimal:
    """Full year if joined on/before 1 Jan, nothing if joined after 31 Dec, else by months left (join month counts)."""
    if join_date <= date(year, 1, 1):
        return D(days)
    if join_date > date(year, 12, 31):
        return Decimal("0")
    months_remaining = 12 - join_date.month + 1
    return round_to_half(D(days) * months_remaining / 12)


def _carry_forward(leave_type: LeaveType, employee_id: int, year: int) -> Decimal:
    if leave_type.carry_forward_max is None:
        return Decimal("0")
    prev = LeaveBalance.query.filter_by(employee_id=employee_id, leave_type_id=leave_type.id, year=year - 1).first()
    if prev is None:
        return Decimal("0")
    return max(Decimal("0"), min(prev.available, D(leave_type.carry_forward_max)))


def initialize(employee: Employee, year: int) -> List[LeaveBalance]:
    """Create missing balance rows for every paid, active, eligible leave type. Existing rows are left alone."""
    created = []
    types = LeaveType.query.filter_by(company_id=employee.company_id, is_active=True, is_paid=True).all()
    for lt in types:
        if not lt.eligible(employee):
            continue
        exists = LeaveBalance.query.filter_by(employee_id=employee.id, leave_type_id=lt.id, year=year).first()
        if exists:
            continue
        bal = LeaveBalance(
            employee_id=employee.id,
            leave_type_id=lt.id,
            year=year,
            entitled_days=prorate(entitlement_for(lt, employee, year), employee.join_date, year),
            used_days=0,
            carried_forward=_carry_forward(lt, employee.id, year),
        )
        db.session.add(bal)
        created.append(bal)
    db.session.flush()
    return created


def initialize_company(company_id: int, year: int, employee_ids: Optional[Iterable[int]] = None) -> dict:
    q = Employee.query.filter_by(company_id=company_id, status="active")
    if employee_ids:
        q = q.filter(Employee.id.in_(list(employee_ids)))
    processed = created = 0
    for emp in q.all():
        created += len(initialize(emp, year))
        processed += 1
    return {"company_id": company_id, "year": year, "employees_processed": processed, "balances_created": created}


def _locked_balance(employee_id: int, leave_type_id: int, year: int) -> Optional[LeaveBalance]:
    return (
        LeaveBalance.query
        .filter_by(employee_id=employee_id, leave_type_id=leave_type_id, year=year)
        .with_for_update()
        .first()
    )


# ---------- calendar ----------

def holidays_between(company_id: int, start: date, end: date) -> set:
    rows = (
        PublicHoliday.query
        .filter(PublicHoliday.date >= start, PublicHoliday.date <= end)
        .filter(or_(PublicHoliday.company_id.is_(None), PublicHoliday.company_id == company_id))
        .all()
    )
    return {h.date for h in rows}


def working_days(company_id: int, start: date, end: date) -> Decimal:
    """Inclusive day count without Saturdays, Sundays and public holidays."""
    if end < start:
        return Decimal("0")
    off = holidays_between(company_id, start, end)
    n, d = 0, start
    while d <= end:
        if d.weekday() < 5 and d not in off:
            n += 1
        d += timedelta(days=1)
    return Decimal(n)


# ---------- requests ----------

def _act(req: LeaveRequest, action: str, user_id: Optional[int], comment: Optional[str] = None):
    db.session.add(LeaveApprovalAction(
        leave_request_id=req.id, action=action, comment=comment,
        acted_by_user_id=user_id, acted_at=datetime.utcnow(),
    ))


def request(employee: Employee, leave_type: LeaveType, start: date, end: date,
            reason: Optional[str] = None, user_id: Optional[int] = None) -> LeaveRequest:
    if end < start:
        raise ValidationError("Start date cannot be after end date")
    if start.year != end.year:
        raise ValidationError("A leave request cannot span two leave years; split it at 31 Dec")
    if leave_type.company_id != employee.company_id or not leave_type.is_active:
        raise ValidationError("Invalid leave type")
    if not leave_type.eligible(employee):
        raise ValidationError(f"{leave_type.name} is restricted to {leave_type.gender_restriction} employees")

    total = working_days(employee.company_id, start, end)
    if total <= 0:
        raise ValidationError("Requested range has no working days")

    clash = (
        LeaveRequest.query
        .filter(LeaveRequest.employee_id == employee.id)
        .filter(LeaveRequest.status.in_(OPEN_STATUSES))
        .filter(LeaveRequest.start_date <= end, LeaveRequest.end_date >= start)
        .first()
    )
    if clash:
        raise LeaveOverlapError(
            f"Overlaps leave request #{clash.id} ({clash.start_date.isoformat()} to {clash.end_date.isoformat()})",
            payload={"conflicting_request_id": clash.id},
        )

    if leave_type.is_paid:
        bal = LeaveBalance.query.filter_by(employee_id=employee.id, leave_type_id=leave_type.id, year=start.year).first()
        if bal is None:
            initialize(employee, start.year)
            bal = LeaveBalance.query.filter_by(employee_id=employee.id, leave_type_id=leave_type.id, year=start.year).first()
        available = bal.available if bal else Decimal("0")
        if total > available:
            raise InsufficientBalanceError(total, available)

    req = LeaveRequest(
        company_id=employee.company_id,
        employee_id=employee.id,
        leave_type_id=leave_type.id,
        start_date=start,
        end_date=end,
        total_days=total,
        reason=reason,
        status=LeaveStatus.pending,
        applied_by_user_id=user_id,
    )
    db.session.add(req)
    db.session.flush()
    _act(req, "applied", user_id)
    return req


def approve(req: LeaveRequest, user_id: Optional[int] = None) -> LeaveRequest:
    if req.status != LeaveStatus.pending:
        raise InvalidTransitionError(f"Cannot approve request in '{req.status.value}' status")

    if req.leave_type.is_paid:
        bal = _locked_balance(req.employee_id, req.leave_type_id, req.start_date.year)
        available = bal.available if bal else Decimal("0")
        if bal is None or D(req.total_days) > available:
            raise InsufficientBalanceError(D(req.total_days), available)
        bal.used_days = D(bal.used_days) + D(req.total_days)

    req.status = LeaveStatus.approved
    req.approved_by_user_id = user_id
    req.approved_at = datetime.utcnow()
    _act(req, "approved", user_id)
    db.session.flush()
    return req


def reject(req: LeaveRequest, reason: Optional[str] = None, user_id: Optional[int] = None) -> LeaveRequest:
    if req.status != LeaveStatus.pending:
        raise InvalidTransitionError(f"Cannot reject request in '{req.status.value}' status")
    req.status = LeaveStatus.rejected
    req.rejection_reason = reason
    _act(req, "rejected", user_id, reason)
    db.session.flush()
    return req


def cancel(req: LeaveRequest, user_id: Optional[int] = None, action: str = "cancelled") -> LeaveRequest:
    if req.status not in OPEN_STATUSES:
        raise InvalidTransitionError(f"Cannot cancel request in '{req.status.value}' status")

    if req.status == LeaveStatus.approved and req.leave_type.is_paid:
        bal = _locked_balance(req.employee_id, req.leave_type_id, req.start_date.year)
        if bal is not None:
            bal.used_days = max(Decimal("0"), D(bal.used_days) - D(req.total_days))
        else:
            log.warning("[leave.cancel] request %s approved without a balance row", req.id)

    req.status = LeaveStatus.cancelled
    _act(req, action, user_id)
    db.session.flush()
    return req


def forfeit_pending(employee: Employee, user_id: Optional[int] = None) -> int:
    """Resignation: pending requests are cancelled and marked forfeited."""
    pending = LeaveRequest.query.filter_by(employee_id=employee.id, status=LeaveStatus.pending).all()
    for req in pending:
        cancel(req, user_id, action="forfeited")
    return len(pending)


# ---------- payroll reads ----------

def unpaid_leave_days_in_period(employee_id: int, month: int, year: int) -> Decimal:
    """Working days of approved unpaid leave that fall inside the month."""
    first = date(year, month, 1)
    last = date(year, month, monthrange(year, month)[1])
    rows = (
        LeaveRequest.query
        .join(LeaveType, LeaveType.id == LeaveRequest.leave_type_id)
        .filter(LeaveRequest.employee_id == employee_id)
        .filter(LeaveRequest.status == LeaveStatus.approved)
        .filter(LeaveType.is_paid.is_(False))
        .filter(LeaveRequest.start_date <= last, LeaveRequest.end_date >= first)
        .all()
    )
    total = Decimal("0")
    for r in rows:
        if r.start_date >= first and r.end_date <= last:
            total += D(r.total_days)
        else:
            total += working_days(r.company_id, max(r.start_date, first), min(r.end_date, last))
    return total


def leave_dates_between(employee_id: int, start: date, end: date) -> set:
    """Calendar dates inside [start, end] covered by an approved request of any type."""
    rows = (
        LeaveRequest.query
        .filter(LeaveRequest.employee_id == employee_id)
        .filter(LeaveRequest.status == LeaveStatus.approved)
        .filter(LeaveRequest.start_date <= end, LeaveRequest.end_date >= start)
        .all()
    )
    out = set()
    for r in rows:
        d = max(r.start_date, start)
        while d <= min(r.end_date, end):
            out.add(d)
            d += timedelta(days=1)
    return out


def balance_dict(b: LeaveBalance) -> dict:
    return {
        "id": b.id,
        "employee_id": b.employee_id,
        "leave_type": {"id": b.leave_type.id, "code": b.leave_type.code, "name": b.leave_type.name},
        "year": b.year,
        "entitled_days": float(b.entitled_days or 0),
        "carried_forward": float(b.carried_forward or 0),
        "used_days": float(b.used_days or 0),
        "available": float(b.available),
    }


def request_dict(r: LeaveRequest) -> dict:
    return {
        "id": r.id,
        "employee_id": r.employee_id,
        "leave_type_id": r.leave_type_id,
        "leave_type": r.leave_type.code if r.leave_type else None,
        "start_date": r.start_date.isoformat(),
        "end_date": r.end_date.isoformat(),
        "total_days": float(r.total_days),
        "status": r.status.value,
        "reason": r.reason,
        "rejection_reason": r.rejection_reason,
        "approved_at": r.approved_at.isoformat() if r.approved_at else None,
    }
