"""
Salary advances: cash paid ahead of payroll, recovered from payslips.

A run's builder only plans the recovery (``planned_recoveries``) and keeps
the plan in the item's calc_meta. Balances move once, when the run is
approved (``apply_for_item``), so regenerating a draft never double-counts.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from hrms_payroll.common.errors import ValidationError, InvalidTransitionError, DataInconsistencyError
from hrms_payroll.common.money import D, money, ZERO
from hrms_payroll.extensions import db
from hrms_payroll.models.payroll.advances import (
    SalaryAdvance, SalaryAdvanceDeduction, AdvanceStatus, DEDUCTION_METHODS,
)
from hrms_payroll.models.payroll.pay_run import PayrollItem, PayrollRun
from hrms_payroll.services import audit

log = logging.getLogger(__name__)


def _period_key(year: int, month: int) -> int:
    return year * 12 + month


def due_advances(employee_id: int, year: int, month: int) -> List[SalaryAdvance]:
    """Active advances with money left whose first recovery month is on or before the period."""
    rows = (
        SalaryAdvance.query
        .filter(SalaryAdvance.employee_id == employee_id)
        .filter(SalaryAdvance.status == AdvanceStatus.active)
        .filter(SalaryAdvance.remaining_balance > 0)
        .order_by(SalaryAdvance.advance_date.asc(), SalaryAdvance.id.asc())
        .all()
    )
    key = _period_key(year, month)
    return [a for a in rows if _period_key(a.deduct_from_year, a.deduct_from_month) <= key]


def recovery_amount(advance: SalaryAdvance) -> Decimal:
    remaining = D(advance.remaining_balance)
    if advance.deduction_method == "installment":
        return money(min(D(advance.installment_amount), remaining))
    return money(remaining)


def planned_recoveries(employee_id: int, year: int, month: int) -> List[Tuple[SalaryAdvance, Decimal]]:
    return [(a, recovery_amount(a)) for a in due_advances(employee_id, year, month)]


def create(employee, amount, advance_date: date, deduction_method: str = "full",
           installment_amount=None, deduct_from: Optional[Tuple[int, int]] = None,
           reason: Optional[str] = None, reference_no: Optional[str] = None,
           actor_id: Optional[int] = None) -> SalaryAdvance:
    amount = D(amount)
    if amount <= 0:
        raise ValidationError("amount must be positive")
    if deduction_method not in DEDUCTION_METHODS:
        raise ValidationError(f"deduction_method must be one of {', '.join(DEDUCTION_METHODS)}")
    if deduction_method == "installment":
        if installment_amount is None or D(installment_amount) <= 0:
            raise ValidationError("installment_amount is required for installment advances")
        if D(installment_amount) > amount:
            raise ValidationError("installment_amount cannot exceed the advance amount")
    else:
        installment_amount = None

    year, month = deduct_from or (advance_date.year, advance_date.month)
    if not 1 <= int(month) <= 12:
        raise ValidationError("deduct_from month must be 1..12")

    adv = SalaryAdvance(
        company_id=employee.company_id, employee_id=employee.id,
        amount=money(amount), advance_date=advance_date, reason=reason, reference_no=reference_no,
        deduction_method=deduction_method,
        installment_amount=money(installment_amount) if installment_amount is not None else None,
        total_deducted=ZERO, remaining_balance=money(amount),
        deduct_from_year=int(year), deduct_from_month=int(month),
        status=AdvanceStatus.pending, created_by=actor_id,
    )
    db.session.add(adv)
    db.session.flush()
    audit.record("salary_advance", adv.id, "create", new=advance_dict(adv),
                 company_id=adv.company_id, actor_id=actor_id)
    return adv


def approve(adv: SalaryAdvance, actor_id: Optional[int] = None) -> SalaryAdvance:
    if adv.status != AdvanceStatus.pending:
        raise InvalidTransitionError(f"Cannot approve an advance in '{adv.status.value}' status")
    adv.status = AdvanceStatus.active
    adv.approved_by = actor_id
    adv.approved_at = datetime.utcnow()
    audit.record("salary_advance", adv.id, "approve", old={"status": "pending"}, new={"status": "active"},
                 company_id=adv.company_id, actor_id=actor_id)
    db.session.flush()
    return adv


def cancel(adv: SalaryAdvance, actor_id: Optional[int] = None) -> SalaryAdvance:
    if adv.status not in (AdvanceStatus.pending, AdvanceStatus.active):
        raise InvalidTransitionError(f"Cannot cancel an advance in '{adv.status.value}' status")
    if D(adv.total_deducted) > 0:
        raise InvalidTransitionError("Advance has already been partly recovered")
    old = adv.status.value
    adv.status = AdvanceStatus.cancelled
    audit.record("salary_advance", adv.id, "cancel", old={"status": old}, new={"status": "cancelled"},
                 company_id=adv.company_id, actor_id=actor_id)
    db.session.flush()
    return adv


def apply_for_item(item: PayrollItem, run: PayrollRun, actor_id: Optional[int] = None) -> Decimal:
    """Book the item's planned recoveries against the advances. Returns the amount applied."""
    applied = ZERO
    for plan in (item.calc_meta or {}).get("advances") or []:
        adv = db.session.get(SalaryAdvance, plan["advance_id"])
        if adv is None or adv.employee_id != item.employee_id:
            raise DataInconsistencyError(f"Advance {plan['advance_id']} does not belong to item {item.id}")
        if adv.status != AdvanceStatus.active:
            log.warning("advance %s is %s; skipping recovery on item %s", adv.id, adv.status.value, item.id)
            continue
        amount = min(D(plan["amount"]), D(adv.remaining_balance))
        if amount <= 0:
            continue
        db.session.add(SalaryAdvanceDeduction(advance_id=adv.id, payroll_item_id=item.id, amount=money(amount),
                                              year=run.year, month=run.month))
        adv.total_deducted = money(D(adv.total_deducted) + amount)
        adv.remaining_balance = money(D(adv.remaining_balance) - amount)
        if D(adv.remaining_balance) <= 0:
            adv.status = AdvanceStatus.completed
        audit.record("salary_advance", adv.id, "deduct",
                     new={"payroll_item_id": item.id, "amount": money(amount),
                          "remaining_balance": D(adv.remaining_balance)},
                     company_id=adv.company_id, actor_id=actor_id)
        applied += amount
    return money(applied)


def advance_dict(a: SalaryAdvance, full: bool = False) -> dict:
    out = {
        "id": a.id,
        "employee_id": a.employee_id,
        "employee_code": a.employee.employee_code if a.employee else None,
        "amount": float(a.amount or 0),
        "advance_date": a.advance_date.isoformat() if a.advance_date else None,
        "deduction_method": a.deduction_method,
        "installment_amount": float(a.installment_amount) if a.installment_amount is not None else None,
        "total_deducted": float(a.total_deducted or 0),
        "remaining_balance": float(a.remaining_balance or 0),
        "deduct_from": f"{a.deduct_from_year:04d}-{a.deduct_from_month:02d}",
        "status": a.status.value if a.status else None,
        "reason": a.reason,
        "reference_no": a.reference_no,
    }
    if full:
        out["deductions"] = [
            {"payroll_item_id": d.payroll_item_id, "amount": float(d.amount),
             "period": f"{d.year:04d}-{d.month:02d}"}
            for d in a.deductions
        ]
    return out
