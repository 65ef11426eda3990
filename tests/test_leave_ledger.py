from datetime import date
from decimal import Decimal

import pytest

from hrms_payroll.common.errors import (
    InsufficientBalanceError, LeaveOverlapError, InvalidTransitionError, ValidationError,
)
from hrms_payroll.extensions import db
from hrms_payroll.models.attendance import PublicHoliday
from hrms_payroll.models.leave import LeaveApprovalAction, LeaveBalance, LeaveStatus
from hrms_payroll.services import leave_ledger

from conftest import make_employee, leave_type


def _balance(emp, lt, year=2025):
    return LeaveBalance.query.filter_by(employee_id=emp.id, leave_type_id=lt.id, year=year).one()


def test_prorate_counts_the_join_month():
    assert leave_ledger.prorate(14, date(2025, 10, 1), 2025) == Decimal("3.5")
    assert leave_ledger.prorate(14, date(2024, 6, 1), 2025) == Decimal("14")
    assert leave_ledger.prorate(14, date(2026, 1, 2), 2025) == Decimal("0")
    # 14 * 7 / 12 = 8.17 -> nearest half
    assert leave_ledger.prorate(14, date(2025, 6, 15), 2025) == Decimal("8.0")


def test_initialize_creates_paid_types_only_once(app, company):
    emp = make_employee(company, join_date=date(2025, 10, 1))
    created = leave_ledger.initialize(emp, 2025)
    assert {b.leave_type.code for b in created} == {"AL", "MC"}
    assert _balance(emp, leave_type(company, "AL")).entitled_days == Decimal("3.5")
    assert leave_ledger.initialize(emp, 2025) == []


def test_service_tiers_and_carry_forward(app, company):
    al = leave_type(company, "AL")
    al.entitlement_rules = [{"min_years": 2, "days": 16}, {"min_years": 5, "days": 18}]
    al.carry_forward_max = 5
    emp = make_employee(company, join_date=date(2021, 3, 1))
    db.session.add(LeaveBalance(employee_id=emp.id, leave_type_id=al.id, year=2024,
                                entitled_days=16, used_days=8, carried_forward=0))
    db.session.commit()

    leave_ledger.initialize(emp, 2025)
    bal = _balance(emp, al)
    assert bal.entitled_days == Decimal("16")
    assert bal.carried_forward == Decimal("5")
    assert bal.available == Decimal("21")


def test_working_days_skip_weekends_and_holidays(app, company):
    db.session.add(PublicHoliday(company_id=None, date=date(2025, 3, 31), year=2025, name="Hari Raya Aidilfitri"))
    db.session.commit()
    # Fri 28 Mar .. Tue 1 Apr
    assert leave_ledger.working_days(company.id, date(2025, 3, 28), date(2025, 4, 1)) == Decimal("2")


def test_approve_then_cancel_restores_balance(app, company):
    emp = make_employee(company)
    al = leave_type(company, "AL")
    req = leave_ledger.request(emp, al, date(2025, 3, 3), date(2025, 3, 5), "family trip")
    assert req.total_days == Decimal("3")
    assert req.status == LeaveStatus.pending
    assert _balance(emp, al).used_days == Decimal("0")

    leave_ledger.approve(req)
    assert _balance(emp, al).available == Decimal("11")

    leave_ledger.cancel(req)
    assert req.status == LeaveStatus.cancelled
    assert _balance(emp, al).available == Decimal("14")
    assert [a.action for a in LeaveApprovalAction.query
            .filter_by(leave_request_id=req.id).order_by(LeaveApprovalAction.id)] == ["applied", "approved", "cancelled"]


def test_request_beyond_balance_is_refused(app, company):
    emp = make_employee(company, join_date=date(2025, 10, 1))
    with pytest.raises(InsufficientBalanceError) as exc:
        leave_ledger.request(emp, leave_type(company, "AL"), date(2025, 10, 6), date(2025, 10, 10))
    assert exc.value.available == Decimal("3.5")
    assert exc.value.requested == Decimal("5")


def test_overlapping_requests_are_refused(app, company):
    emp = make_employee(company)
    first = leave_ledger.request(emp, leave_type(company, "AL"), date(2025, 3, 3), date(2025, 3, 5))
    with pytest.raises(LeaveOverlapError) as exc:
        leave_ledger.request(emp, leave_type(company, "MC"), date(2025, 3, 5), date(2025, 3, 6))
    assert exc.value.payload["conflicting_request_id"] == first.id

    leave_ledger.reject(first, "busy month")
    # a rejected request no longer blocks the dates
    leave_ledger.request(emp, leave_type(company, "MC"), date(2025, 3, 5), date(2025, 3, 6))


def test_transitions_are_guarded(app, company):
    emp = make_employee(company)
    req = leave_ledger.request(emp, leave_type(company, "AL"), date(2025, 3, 3), date(2025, 3, 3))
    leave_ledger.reject(req)
    with pytest.raises(InvalidTransitionError):
        leave_ledger.approve(req)
    with pytest.raises(InvalidTransitionError):
        leave_ledger.cancel(req)


def test_bad_ranges(app, company):
    emp = make_employee(company)
    al = leave_type(company, "AL")
    with pytest.raises(ValidationError):
        leave_ledger.request(emp, al, date(2025, 3, 5), date(2025, 3, 3))
    with pytest.raises(ValidationError):
        leave_ledger.request(emp, al, date(2025, 12, 31), date(2026, 1, 2))
    with pytest.raises(ValidationError):
        # Saturday and Sunday only
        leave_ledger.request(emp, al, date(2025, 3, 8), date(2025, 3, 9))


def test_unpaid_days_are_split_by_month(app, company):
    emp = make_employee(company)
    ul = leave_type(company, "UL")
    # Thu 30 Jan .. Tue 4 Feb: two working days on each side
    req = leave_ledger.request(emp, ul, date(2025, 1, 30), date(2025, 2, 4))
    assert req.total_days == Decimal("4")
    assert leave_ledger.unpaid_leave_days_in_period(emp.id, 1, 2025) == Decimal("0")

    leave_ledger.approve(req)
    assert leave_ledger.unpaid_leave_days_in_period(emp.id, 1, 2025) == Decimal("2")
    assert leave_ledger.unpaid_leave_days_in_period(emp.id, 2, 2025) == Decimal("2")
    assert leave_ledger.unpaid_leave_days_in_period(emp.id, 3, 2025) == Decimal("0")


def test_forfeit_pending_on_resignation(app, company):
    emp = make_employee(company)
    req = leave_ledger.request(emp, leave_type(company, "AL"), date(2025, 3, 3), date(2025, 3, 4))
    assert leave_ledger.forfeit_pending(emp) == 1
    assert req.status == LeaveStatus.cancelled
