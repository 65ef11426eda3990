"""
Payroll run coordinator: draft -> approved -> locked -> paid.

Every transition takes the run row lock first. Generation builds each
employee inside its own savepoint so one bad employee marks only its item
failed. Nothing here commits; the caller commits or rolls back the whole
operation.
"""
from __future__ import annotations

import logging
from calendar import monthrange
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, Iterator, List, Optional

from hrms_payroll.common.deadline import Deadline
from hrms_payroll.common.errors import (
    ValidationError, NotFoundError, RunExistsError, InvalidTransitionError,
    ItemFailure, InvalidAgeError, MissingRateTableError,
)
from hrms_payroll.common.http import to_json
from hrms_payroll.common.money import D, money, ZERO
from hrms_payroll.extensions import db
from hrms_payroll.models.claims import Claim, ClaimStatus
from hrms_payroll.models.employee import Employee
from hrms_payroll.models.master import Company
from hrms_payroll.models.payroll.pay_run import (
    PayrollRun, PayrollItem, RunStatus, ItemStatus,
    EARNING_FIELDS, STATUTORY_FIELDS, DEDUCTION_FIELDS,
)
from hrms_payroll.services import audit, salary_advances
from hrms_payroll.services.company_config import settings_for
from hrms_payroll.services.payroll_builder import build_item, unlink_claims, link_claims
from hrms_payroll.services.rate_resolver import load_rate_set

log = logging.getLogger(__name__)

TOTAL_FIELDS = EARNING_FIELDS + STATUTORY_FIELDS + (
    "attendance_deduction", "absent_deduction", "unpaid_leave_deduction",
    "advance_deduction", "other_deductions",
    "gross_salary", "total_deductions", "net_pay",
)


# ---------- helpers ----------

def period_bounds(year: int, month: int):
    return date(year, month, 1), date(year, month, monthrange(year, month)[1])


def lock_run(run_id: int) -> PayrollRun:
    run = PayrollRun.query.filter_by(id=run_id).with_for_update().first()
    if run is None:
        raise NotFoundError(f"Payroll run {run_id} not found")
    return run


def _require(run: PayrollRun, *allowed: RunStatus, action: str):
    if run.status not in allowed:
        raise InvalidTransitionError(
            f"Cannot {action} a run in '{run.status.value}' status",
            payload={"run_id": run.id, "status": run.status.value},
        )


def active_employees(run: PayrollRun, employee_ids: Optional[Iterable[int]] = None) -> List[Employee]:
    q = (
        Employee.query
        .filter(Employee.company_id == run.company_id)
        .filter(Employee.status == "active")
        .filter(Employee.join_date <= run.period_end)
        .filter((Employee.last_working_day.is_(None)) | (Employee.last_working_day >= run.period_start))
    )
    if employee_ids:
        q = q.filter(Employee.id.in_(list(employee_ids)))
    return q.order_by(Employee.employee_code.asc()).all()


def compute_totals(run: PayrollRun) -> dict:
    totals = {f: ZERO for f in TOTAL_FIELDS}
    headcount = failed = flagged = 0
    for it in run.items:
        if it.status == ItemStatus.failed:
            failed += 1
            continue
        headcount += 1
        flagged += 1 if it.variance_flagged else 0
        for f in TOTAL_FIELDS:
            totals[f] += D(getattr(it, f))
    out = {f: money(v) for f, v in totals.items()}
    out.update({"headcount": headcount, "failed": failed, "flagged": flagged})
    return to_json(out)


def _prior_run(run: PayrollRun) -> Optional[PayrollRun]:
    y, m = (run.year, run.month - 1) if run.month > 1 else (run.year - 1, 12)
    return PayrollRun.query.filter_by(company_id=run.company_id, year=y, month=m).first()


def apply_variance(run: PayrollRun, threshold) -> int:
    """Compare each item's net with the same employee's net last month."""
    prior = _prior_run(run)
    prior_net = {}
    if prior is not None:
        prior_net = {
            it.employee_id: D(it.net_pay)
            for it in prior.items.filter(PayrollItem.status != ItemStatus.failed).all()
        }
    flagged = 0
    for it in run.items:
        before = prior_net.get(it.employee_id)
        if it.status == ItemStatus.failed or not before:
            it.variance_pct = None
            it.variance_flagged = False
            continue
        pct = (D(it.net_pay) - before) / before
        it.variance_pct = pct.quantize(Decimal("0.0001"))
        it.variance_flagged = abs(pct) > D(threshold)
        flagged += 1 if it.variance_flagged else 0
    return flagged


def item_dict(it: PayrollItem, full: bool = False) -> dict:
    d = {
        "id": it.id,
        "employee_id": it.employee_id,
        "employee_code": it.employee.employee_code if it.employee else None,
        "employee_name": it.employee.name if it.employee else None,
        "status": it.status.value,
        "gross": float(it.gross_salary or 0),
        "net": float(it.net_pay or 0),
        "total_deductions": float(it.total_deductions or 0),
        "variance_pct": float(it.variance_pct) if it.variance_pct is not None else None,
        "variance_flagged": bool(it.variance_flagged),
        "warnings": it.warnings or [],
    }
    if full:
        for f in TOTAL_FIELDS + ("statutory_base", "epf_wage"):
            d[f] = float(getattr(it, f) or 0)
        d.update({
            "worked_minutes": it.worked_minutes,
            "ot_hours": float(it.ot_hours or 0),
            "absent_days": it.absent_days,
            "unpaid_leave_days": float(it.unpaid_leave_days or 0),
            "late_minutes": it.late_minutes,
            "early_minutes": it.early_minutes,
            "claim_ids": sorted(link.claim_id for link in it.claim_links),
            "calc_meta": it.calc_meta,
            "locked_at": it.locked_at.isoformat() if it.locked_at else None,
        })
    return d


def run_dict(run: PayrollRun) -> dict:
    return {
        "id": run.id,
        "company_id": run.company_id,
        "month": run.month,
        "year": run.year,
        "period_start": run.period_start.isoformat(),
        "period_end": run.period_end.isoformat(),
        "status": run.status.value,
        "totals": run.totals,
        "generated_at": run.generated_at.isoformat() if run.generated_at else None,
        "approved_at": run.approved_at.isoformat() if run.approved_at else None,
        "locked_at": run.locked_at.isoformat() if run.locked_at else None,
        "paid_at": run.paid_at.isoformat() if run.paid_at else None,
        "payment_ref": run.payment_ref,
    }


def ordered_items(run: PayrollRun) -> List[PayrollItem]:
    return (
        run.items
        .join(Employee, Employee.id == PayrollItem.employee_id)
        .order_by(Employee.employee_code.asc(), PayrollItem.id.asc())
        .all()
    )


# ---------- transitions ----------

def create(company_id: int, month: int, year: int, actor_id: Optional[int] = None) -> PayrollRun:
    if not (1 <= int(month) <= 12):
        raise ValidationError("month must be 1..12")
    if not (2000 <= int(year) <= 2100):
        raise ValidationError("year out of range")
    company = Company.query.filter_by(id=company_id).with_for_update().first()
    if company is None:
        raise NotFoundError(f"Company {company_id} not found")

    existing = PayrollRun.query.filter_by(company_id=company_id, year=year, month=month).first()
    if existing is not None:
        raise RunExistsError(
            f"Payroll run for {year}-{month:02d} already exists",
            payload={"run_id": existing.id, "company_id": company_id, "month": month, "year": year},
        )

    start, end = period_bounds(int(year), int(month))
    run = PayrollRun(company_id=company_id, month=month, year=year, period_start=start, period_end=end,
                     status=RunStatus.draft, created_by=actor_id)
    db.session.add(run)
    db.session.flush()
    audit.record("payroll_run", run.id, "create", new={"month": month, "year": year},
                 company_id=company_id, actor_id=actor_id)
    return run


def _mark_failed(run: PayrollRun, emp: Employee, item: Optional[PayrollItem], err: Exception) -> PayrollItem:
    if item is None:
        item = PayrollItem(run_id=run.id, employee_id=emp.id)
        db.session.add(item)
    else:
        unlink_claims(item)
    for f in TOTAL_FIELDS + ("statutory_base", "epf_wage", "ot_hours", "unpaid_leave_days"):
        setattr(item, f, ZERO)
    item.worked_minutes = item.late_minutes = item.early_minutes = item.absent_days = 0
    item.variance_pct = None
    item.variance_flagged = False
    item.calc_meta = None
    item.status = ItemStatus.failed
    item.warnings = [f"{getattr(err, 'code', type(err).__name__)}: {getattr(err, 'message', str(err))}"]
    item.computed_at = datetime.utcnow()
    db.session.flush()
    return item


def iter_generate(run_id: int, actor_id: Optional[int] = None,
                  deadline: Optional[Deadline] = None) -> Iterator[dict]:
    """Build every active employee's item, yielding progress events; the last event carries the result."""
    deadline = deadline or Deadline(None)
    run = lock_run(run_id)
    _require(run, RunStatus.draft, action="generate")

    settings = settings_for(run.company)
    try:
        rates, rate_error = load_rate_set(run.company_id, run.period_end), None
    except MissingRateTableError as e:
        rates, rate_error = None, e

    employees = active_employees(run)
    existing = {it.employee_id: it for it in run.items.all()}
    keep = {e.id for e in employees}
    for emp_id, it in list(existing.items()):
        if emp_id not in keep:
            unlink_claims(it)
            db.session.delete(it)
            existing.pop(emp_id)
    db.session.flush()

    log.info("[payroll] generate run=%s company=%s %s-%02d employees=%s",
             run.id, run.company_id, run.year, run.month, len(employees))
    yield {"event": "start", "run_id": run.id, "total": len(employees)}

    for i, emp in enumerate(employees, 1):
        deadline.check("payroll generation")
        item = existing.get(emp.id)
        sp = db.session.begin_nested()
        try:
            if rate_error is not None:
                raise rate_error
            item = build_item(emp, run, settings, rates, item)
            sp.commit()
        except (ItemFailure, InvalidAgeError) as e:
            sp.rollback()
            item = _mark_failed(run, emp, PayrollItem.query.filter_by(run_id=run.id, employee_id=emp.id).first(), e)
            log.warning("[payroll] run=%s employee=%s failed: %s", run.id, emp.employee_code, e)
        yield {
            "event": "item", "index": i, "total": len(employees),
            "employee_id": emp.id, "status": item.status.value,
            "gross": float(item.gross_salary or 0), "net": float(item.net_pay or 0),
        }

    flagged = apply_variance(run, settings.payroll_variance_threshold)
    run.totals = compute_totals(run)
    run.generated_at = datetime.utcnow()
    audit.record("payroll_run", run.id, "generate", new=run.totals, company_id=run.company_id, actor_id=actor_id)
    db.session.flush()
    log.info("[payroll] run=%s generated: headcount=%s failed=%s flagged=%s",
             run.id, run.totals["headcount"], run.totals["failed"], flagged)

    yield {
        "event": "done",
        "run_id": run.id,
        "totals": run.totals,
        "items": [
            {"employee_id": it.employee_id, "gross": float(it.gross_salary or 0),
             "net": float(it.net_pay or 0), "status": it.status.value, "warnings": it.warnings or []}
            for it in ordered_items(run)
        ],
    }


def generate(run_id: int, actor_id: Optional[int] = None, deadline: Optional[Deadline] = None) -> dict:
    result = None
    for event in iter_generate(run_id, actor_id, deadline):
        result = event
    return result


def approve(run_id: int, actor_id: Optional[int] = None) -> PayrollRun:
    run = lock_run(run_id)
    _require(run, RunStatus.draft, action="approve")
    items = run.items.all()
    if not items:
        raise ValidationError("Run has no items; generate it first")
    failed = [it.employee_id for it in items if it.status == ItemStatus.failed]
    if failed:
        raise ValidationError(f"{len(failed)} item(s) failed; fix and regenerate before approving",
                              code="ITEMS_FAILED", payload={"failed_employee_ids": failed})

    now = datetime.utcnow()
    for it in items:
        it.status = ItemStatus.locked
        it.locked_at = now
        audit.record("payroll_item", it.id, "lock", new=audit.item_snapshot(it),
                     company_id=run.company_id, actor_id=actor_id)
        salary_advances.apply_for_item(it, run, actor_id=actor_id)
    run.status = RunStatus.approved
    run.approved_at = now
    run.approved_by = actor_id
    run.totals = compute_totals(run)
    audit.record("payroll_run", run.id, "approve", old={"status": "draft"}, new={"status": "approved"},
                 company_id=run.company_id, actor_id=actor_id)
    db.session.flush()
    return run


def lock(run_id: int, actor_id: Optional[int] = None) -> PayrollRun:
    run = lock_run(run_id)
    _require(run, RunStatus.approved, action="lock")
    run.status = RunStatus.locked
    run.locked_at = datetime.utcnow()
    audit.record("payroll_run", run.id, "lock", old={"status": "approved"}, new={"status": "locked"},
                 company_id=run.company_id, actor_id=actor_id)
    db.session.flush()
    return run


def pay(run_id: int, payment_ref: Optional[str] = None, meta: Optional[dict] = None,
        actor_id: Optional[int] = None) -> PayrollRun:
    run = lock_run(run_id)
    _require(run, RunStatus.locked, action="pay")
    run.status = RunStatus.paid
    run.paid_at = datetime.utcnow()
    run.payment_ref = payment_ref
    run.payment_meta = meta
    for it in run.items.all():
        for link in it.claim_links:
            if link.claim is not None and link.claim.status == ClaimStatus.approved:
                link.claim.status = ClaimStatus.paid
    audit.record("payroll_run", run.id, "pay", old={"status": "locked"},
                 new={"status": "paid", "payment_ref": payment_ref}, company_id=run.company_id, actor_id=actor_id)
    db.session.flush()
    return run


def _clear_items(run: PayrollRun) -> int:
    items = run.items.all()
    for it in items:
        unlink_claims(it)
        db.session.delete(it)
    db.session.flush()
    return len(items)


def reopen(run_id: int, actor_id: Optional[int] = None) -> PayrollRun:
    """Discard a draft's items so it can be generated from scratch."""
    run = lock_run(run_id)
    _require(run, RunStatus.draft, action="reopen")
    cleared = _clear_items(run)
    run.totals = None
    run.generated_at = None
    audit.record("payroll_run", run.id, "reopen", new={"items_cleared": cleared},
                 company_id=run.company_id, actor_id=actor_id)
    db.session.flush()
    return run


def delete(run_id: int, actor_id: Optional[int] = None) -> None:
    run = lock_run(run_id)
    _require(run, RunStatus.draft, action="delete")
    _clear_items(run)
    audit.record("payroll_run", run.id, "delete", old={"month": run.month, "year": run.year},
                 company_id=run.company_id, actor_id=actor_id)
    db.session.delete(run)
    db.session.flush()


def relink_claims(run_id: int, employee_ids: Optional[Iterable[int]] = None,
                  actor_id: Optional[int] = None) -> dict:
    """Attach late-approved claims to the draft's items; only claims, gross and net move."""
    run = lock_run(run_id)
    _require(run, RunStatus.draft, action="relink claims on")

    q = run.items.filter(PayrollItem.status == ItemStatus.computed)
    if employee_ids:
        q = q.filter(PayrollItem.employee_id.in_(list(employee_ids)))

    changed = []
    for it in q.all():
        claims = (
            Claim.query
            .filter(Claim.employee_id == it.employee_id)
            .filter(Claim.status == ClaimStatus.approved)
            .filter(Claim.linked_payroll_item_id.is_(None))
            .filter(Claim.claim_date <= run.period_end)
            .order_by(Claim.claim_date.asc(), Claim.id.asc())
            .all()
        )
        if not claims:
            continue
        delta = money(sum((D(c.amount) for c in claims), ZERO))
        before = {"claims_amount": D(it.claims_amount), "gross_salary": D(it.gross_salary), "net_pay": D(it.net_pay)}
        link_claims(it, claims)
        it.claims_amount = money(D(it.claims_amount) + delta)
        it.gross_salary = money(D(it.gross_salary) + delta)
        it.net_pay = money(D(it.net_pay) + delta)
        after = {"claims_amount": it.claims_amount, "gross_salary": it.gross_salary, "net_pay": it.net_pay,
                 "delta": delta, "claim_ids": [c.id for c in claims]}
        audit.record("payroll_item", it.id, "relink_claims", old=before, new=after,
                     company_id=run.company_id, actor_id=actor_id)
        changed.append({"employee_id": it.employee_id, "delta": float(delta), "claim_ids": [c.id for c in claims]})

    db.session.flush()
    run.totals = compute_totals(run)
    db.session.flush()
    log.info("[payroll] run=%s relinked claims for %s item(s)", run.id, len(changed))
    return {"run_id": run.id, "items": changed, "totals": run.totals,
            "delta_total": float(sum((D(c["delta"]) for c in changed), ZERO))}


# ---------- automation ----------

def auto_generate(today: date, deadline_seconds: Optional[float] = None) -> List[dict]:
    """Create and generate this month's run for companies whose automation day has come."""
    results = []
    for company in Company.query.filter_by(is_active=True).order_by(Company.id.asc()).all():
        s = settings_for(company)
        if not s.payroll_auto_generate or today.day < s.payroll_auto_generate_day:
            continue
        if PayrollRun.query.filter_by(company_id=company.id, year=today.year, month=today.month).first():
            continue
        run = create(company.id, today.month, today.year)
        result = generate(run.id, deadline=Deadline(deadline_seconds))
        approved = False
        if s.payroll_auto_approve and result["totals"]["failed"] == 0 and result["totals"]["flagged"] == 0:
            approve(run.id)
            approved = True
        results.append({"company_id": company.id, "run_id": run.id, "approved": approved,
                        "totals": result["totals"]})
    return results


def auto_lock(today: date) -> List[int]:
    locked = []
    for company in Company.query.filter_by(is_active=True).order_by(Company.id.asc()).all():
        days = settings_for(company).payroll_lock_after_days
        if days <= 0:
            continue
        cutoff = datetime.combine(today - timedelta(days=days), datetime.max.time())
        runs = (
            PayrollRun.query
            .filter_by(company_id=company.id, status=RunStatus.approved)
            .filter(PayrollRun.approved_at <= cutoff)
            .all()
        )
        for run in runs:
            lock(run.id)
            locked.append(run.id)
    return locked
