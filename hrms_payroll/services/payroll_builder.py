"""
Per-employee payroll composer.

Reads the employee's structure, the period's clock records, leave, claims
and adjustments; writes one PayrollItem. It never touches leave balances.
Failures are raised as ConfigurationError / MissingRateTableError /
DataInconsistencyError and turned into a failed item by the run.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_

from hrms_payroll.common.errors import ConfigurationError, DataInconsistencyError
from hrms_payroll.common.http import to_json
from hrms_payroll.common.money import D, money, floor_to, ZERO
from hrms_payroll.extensions import db
from hrms_payroll.models.attendance import AttendanceStatus, ClockRecord, Schedule, PublicHoliday
from hrms_payroll.models.claims import Claim, ClaimStatus
from hrms_payroll.models.payroll.adjustments import PayrollAdjustment
from hrms_payroll.models.payroll.pay_run import (
    PayrollRun, PayrollItem, PayrollItemClaim, RunStatus, ItemStatus,
)
from hrms_payroll.services import rate_tables, salary_advances
from hrms_payroll.services.leave_ledger import unpaid_leave_days_in_period, leave_dates_between
from hrms_payroll.services.rate_resolver import RateSet
from hrms_payroll.services.time_arithmetic import minutes_hours_agree

log = logging.getLogger(__name__)

# structure component -> PayrollItem column
COMPONENT_FIELD = {
    "basic_salary": "basic_salary",
    "allowance": "allowance",
    "commission": "commission",
    "bonus": "bonus",
    "incentive": "incentive",
    "trip_commission": "trip_commission",
    "outstation": "outstation_amount",
    "ot_amount": "ot_amount",
    "ph_pay": "ph_pay",
    "attendance_bonus": "attendance_bonus",
    "other_earnings": "other_earnings",
}

# adjustment type -> the component that consumes it
ADJUSTMENT_COMPONENT = {
    "bonus": "bonus", "commission": "commission", "sales": "commission",
    "incentive": "incentive", "trips": "trip_commission", "trip_commission": "trip_commission",
    "outstation": "outstation", "other_earnings": "other_earnings",
    "attendance_bonus": "attendance_bonus",
}

DAY_NORMAL, DAY_REST, DAY_PH = "normal", "rest_day", "public_holiday"


@dataclass
class PeriodInputs:
    amounts: Dict[str, Decimal]
    quantities: Dict[str, Decimal]
    records: List[ClockRecord]
    holidays: set
    rest_days: set
    unpaid_days: Decimal
    claims: List[Claim]
    ytd: Dict[str, Decimal]
    absent_dates: List[date] = field(default_factory=list)
    advances: List[Tuple[object, Decimal]] = field(default_factory=list)


@dataclass
class Computation:
    values: Dict[str, Decimal] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    meta: dict = field(default_factory=dict)
    claims: List[Claim] = field(default_factory=list)


# ---------- input gathering ----------

def _adjustments(employee_id: int, year: int, month: int):
    amounts, quantities = defaultdict(Decimal), defaultdict(Decimal)
    rows = PayrollAdjustment.query.filter_by(
        employee_id=employee_id, period=PayrollAdjustment.period_tag(year, month)
    ).all()
    for a in rows:
        amounts[a.type] += D(a.amount)
        quantities[a.type] += D(a.quantity)
    return dict(amounts), dict(quantities)


def _ytd(employee_id: int, run: PayrollRun) -> Dict[str, Decimal]:
    """Finalised items earlier in the same tax year."""
    rows = (
        PayrollItem.query
        .join(PayrollRun, PayrollRun.id == PayrollItem.run_id)
        .filter(PayrollItem.employee_id == employee_id)
        .filter(PayrollRun.year == run.year, PayrollRun.month < run.month)
        .filter(PayrollRun.status != RunStatus.draft)
        .filter(PayrollItem.status != ItemStatus.failed)
        .all()
    )
    out = defaultdict(Decimal)
    for it in rows:
        out["Y"] += D(it.statutory_base)
        out["Yt"] += D(it.bonus)
        out["K"] += D(it.epf_employee)
        out["X"] += D(it.pcb)
        out["LP"] += D(it.socso_employee) + D(it.eis_employee)
    return dict(out)


def collect_inputs(employee, run: PayrollRun) -> PeriodInputs:
    amounts, quantities = _adjustments(employee.id, run.year, run.month)

    records = (
        ClockRecord.query
        .filter(ClockRecord.employee_id == employee.id)
        .filter(ClockRecord.work_date >= run.period_start, ClockRecord.work_date <= run.period_end)
        .order_by(ClockRecord.work_date.asc())
        .all()
    )
    holidays = {
        h.date for h in PublicHoliday.query
        .filter(PublicHoliday.date >= run.period_start, PublicHoliday.date <= run.period_end)
        .filter(or_(PublicHoliday.company_id.is_(None), PublicHoliday.company_id == employee.company_id))
        .all()
    }
    rest_days = {
        s.work_date for s in Schedule.query
        .filter(Schedule.employee_id == employee.id, Schedule.is_rest_day.is_(True))
        .filter(Schedule.work_date >= run.period_start, Schedule.work_date <= run.period_end)
        .all()
    }
    scheduled = {
        s.work_date for s in Schedule.query
        .filter(Schedule.employee_id == employee.id)
        .filter(Schedule.work_date >= run.period_start, Schedule.work_date <= run.period_end)
        .all()
    }
    # scheduled working days already over with nothing clocked and no approved leave
    cutoff = min(run.period_end, date.today() - timedelta(days=1))
    seen = {r.work_date: r.attendance_status for r in records}
    on_leave = leave_dates_between(employee.id, run.period_start, run.period_end)
    absent_dates = sorted(
        d for d in scheduled - rest_days - holidays - on_leave
        if d <= cutoff and seen.get(d, AttendanceStatus.absent) == AttendanceStatus.absent
    )
    # unscheduled weekend work counts as rest-day work
    for r in records:
        if r.work_date not in scheduled and r.work_date.weekday() >= 5:
            rest_days.add(r.work_date)

    claims = (
        Claim.query
        .filter(Claim.employee_id == employee.id)
        .filter(Claim.status == ClaimStatus.approved)
        .filter(Claim.linked_payroll_item_id.is_(None))
        .filter(Claim.claim_date <= run.period_end)
        .order_by(Claim.claim_date.asc(), Claim.id.asc())
        .all()
    )

    return PeriodInputs(
        amounts=amounts,
        quantities=quantities,
        records=records,
        holidays=holidays,
        rest_days=rest_days,
        unpaid_days=unpaid_leave_days_in_period(employee.id, run.month, run.year),
        claims=claims,
        ytd=_ytd(employee.id, run),
        absent_dates=absent_dates,
        advances=salary_advances.planned_recoveries(employee.id, run.year, run.month),
    )


# ---------- computation ----------

def _check_record(rec: ClockRecord):
    if not minutes_hours_agree(rec.total_work_minutes or 0, rec.total_work_hours or 0):
        raise DataInconsistencyError(
            f"Clock record {rec.work_date.isoformat()}: {rec.total_work_minutes} min vs {rec.total_work_hours} h"
        )
    if not minutes_hours_agree(rec.ot_minutes or 0, rec.ot_hours or 0):
        raise DataInconsistencyError(
            f"Clock record {rec.work_date.isoformat()}: OT {rec.ot_minutes} min vs {rec.ot_hours} h"
        )
    if rec.notes and "negative_span" in rec.notes:
        raise DataInconsistencyError(f"Clock record {rec.work_date.isoformat()} has an inverted clock span")


def _ot_counts(rec: ClockRecord, settings) -> bool:
    if rec.ot_approved is True:
        return True
    if rec.ot_approved is False:
        return False
    return not settings.ot_requires_approval


def _day_kind(d: date, inputs: PeriodInputs) -> str:
    if d in inputs.holidays:
        return DAY_PH
    if d in inputs.rest_days:
        return DAY_REST
    return DAY_NORMAL


def _ot_multiplier(kind: str, settings) -> Decimal:
    if kind == DAY_PH:
        after = settings.ot_ph_after_hours_multiplier
        return D(after if after is not None else settings.ot_ph_multiplier)
    if kind == DAY_REST:
        return D(settings.ot_rest_day_multiplier)
    return D(settings.ot_normal_multiplier)


def pcb_for(employee, run: PayrollRun, statutory_base, bonus, epf_employee, lp_current,
            monthly_rebate, ytd: Dict[str, Decimal], table: dict) -> Tuple[Decimal, dict]:
    """LHDN computerised MTD with year-to-date figures; the current month's base is projected forward."""
    n = 12 - run.month
    cap = D(table["epf_relief_cap"])
    k_ytd = min(D(ytd.get("K")), cap)
    k1 = min(D(epf_employee), max(ZERO, cap - k_ytd))
    # LHDN takes K2 in whole ringgit, rounded down
    k2 = floor_to(max(ZERO, min(k1, (cap - k_ytd - k1) / n)), 1) if n else ZERO
    lp = min(D(ytd.get("LP")) + D(lp_current), D(table.get("socso_eis_relief_cap", "350")))
    y1 = D(statutory_base)

    annual = (
        (D(ytd.get("Y")) + D(ytd.get("Yt")) - k_ytd)
        + (y1 - k1)
        + (y1 - k2) * n
        + D(bonus)
        - lp
    )
    spouse = employee.marital_status == "married" and not employee.spouse_working
    value = rate_tables.pcb(
        annual,
        rebates=monthly_rebate,
        spouse=spouse,
        children=employee.children_count or 0,
        months_remaining=n,
        paid_to_date=ytd.get("X", ZERO),
        table=table,
    )
    meta = {
        "n": n, "K": k_ytd, "K1": k1, "K2": k2, "LP": lp,
        "annual_income": money(annual), "category": 2 if spouse else 1,
        "paid_to_date": D(ytd.get("X")), "monthly_rebate": D(monthly_rebate),
    }
    return value, meta


def compute(employee, run: PayrollRun, settings, rates: RateSet, inputs: PeriodInputs) -> Computation:
    out = Computation()
    grouping = employee.grouping()
    structure = grouping.payroll_structure if grouping is not None else None
    if structure is None:
        where = grouping.name if grouping is not None else f"no {employee.company.grouping_type}"
        raise ConfigurationError(f"No payroll structure for {employee.employee_code} ({where})")
    components = structure.enabled_components()
    if not components:
        raise ConfigurationError(f"Payroll structure {structure.code} has no enabled components")
    by_name = {c.component: c for c in components}

    age = employee.age_on(run.period_end)
    if age is None:
        raise ConfigurationError(f"Cannot determine age of {employee.employee_code}: no date of birth or MyKad")

    part_time = employee.is_part_time
    days, hrs = D(settings.work_days_per_month), D(settings.work_hours_per_day)
    amt, qty = inputs.amounts, inputs.quantities

    # time
    payable = [r for r in inputs.records if r.attendance_status.payable]
    for r in payable:
        _check_record(r)
    approved_minutes = sum(int(r.total_work_minutes or 0) for r in payable)

    # monthly basic before any proration; drives hourly/daily rates
    basic_comp = by_name.get("basic_salary")
    basic_ref = D(employee.basic_salary_default) if employee.basic_salary_default is not None else \
        D(basic_comp.amount if basic_comp is not None else 0)
    hourly = basic_ref / days / hrs
    daily = basic_ref / days
    ot_hourly = D(employee.ot_rate) if employee.ot_rate is not None else hourly

    v: Dict[str, Decimal] = {f: ZERO for f in COMPONENT_FIELD.values()}
    handled = set()

    def _rate(comp, override=None):
        if override is not None:
            return D(override)
        return D(comp.rate) if comp is not None and comp.rate is not None else ZERO

    def _higher_of():
        trigger = next(c for c in components if c.mode == "higher_of")
        comm_comp = by_name.get("commission")
        rate = _rate(comm_comp if comm_comp is not None and comm_comp.rate is not None else trigger,
                     employee.commission_rate)
        floor = D(trigger.floor) if trigger.floor is not None else basic_ref
        commission = money(D(amt.get("sales")) * rate)
        if commission >= floor:
            v["commission"], v["basic_salary"] = commission, ZERO
        else:
            v["commission"], v["basic_salary"] = ZERO, money(floor)
        out.meta["higher_of"] = {"floor": floor, "sales": D(amt.get("sales")), "rate": rate,
                                 "took": "commission" if commission >= floor else "basic"}
        handled.update({"basic_salary", "commission"})

    for comp in components:
        name, mode = comp.component, comp.mode
        if name in handled:
            continue
        if mode == "higher_of":
            _higher_of()
            continue

        if name == "basic_salary":
            if mode == "hourly":
                rate = _rate(comp) or D(settings.part_time_hourly_rate)
                if rate <= 0:
                    raise ConfigurationError("part_time_hourly_rate is not configured")
                normal_min = sum(int(r.total_work_minutes or 0) for r in payable if r.work_date not in inputs.holidays)
                ph_min = approved_minutes - normal_min
                v["basic_salary"] = money(
                    D(normal_min) / 60 * rate + D(ph_min) / 60 * rate * D(settings.part_time_ph_multiplier)
                )
                out.meta["hourly_basic"] = {"rate": rate, "normal_minutes": normal_min, "ph_minutes": ph_min}
            elif part_time:
                ratio = D(approved_minutes) / settings.minutes_per_month
                v["basic_salary"] = money(basic_ref * ratio)
                out.meta["prorate_ratio"] = ratio
            else:
                v["basic_salary"] = money(basic_ref)

        elif name == "allowance":
            base = employee.allowance_default if employee.allowance_default is not None else comp.amount
            v["allowance"] = money(base or 0)

        elif name == "commission":
            if mode == "percentage":
                v["commission"] = money(D(amt.get("sales")) * _rate(comp, employee.commission_rate))
            else:
                v["commission"] = money(amt.get("commission") or comp.amount or 0)

        elif name == "trip_commission":
            if mode == "per_trip":
                v["trip_commission"] = money(D(qty.get("trips")) * _rate(comp, employee.per_trip_rate))
            else:
                v["trip_commission"] = money(amt.get("trip_commission") or 0)

        elif name == "outstation":
            if mode == "per_trip":
                v["outstation_amount"] = money(D(qty.get("outstation")) * _rate(comp, employee.outstation_rate))
            else:
                v["outstation_amount"] = money(amt.get("outstation") or 0)

        elif name == "ot_amount":
            if employee.fixed_ot_amount is not None:
                v["ot_amount"] = money(employee.fixed_ot_amount)
                out.meta["ot"] = {"fixed": D(employee.fixed_ot_amount)}
            elif not part_time:
                by_kind = defaultdict(Decimal)
                for r in payable:
                    if r.ot_minutes and _ot_counts(r, settings):
                        by_kind[_day_kind(r.work_date, inputs)] += D(r.ot_hours)
                total = sum((h * ot_hourly * _ot_multiplier(k, settings) for k, h in by_kind.items()), ZERO)
                v["ot_amount"] = money(total)
                out.meta["ot"] = {"hourly": money(ot_hourly), "hours": dict(by_kind)}

        elif name == "ph_pay":
            if not part_time:
                ph_min = sum(
                    int(r.total_work_minutes or 0) - int(r.ot_minutes or 0)
                    for r in payable if r.work_date in inputs.holidays
                )
                v["ph_pay"] = money(D(ph_min) / 60 * hourly * (D(settings.ot_ph_multiplier) - 1))

        elif name in ("bonus", "incentive", "attendance_bonus", "other_earnings"):
            v[COMPONENT_FIELD[name]] = money(amt.get(name) or (comp.amount if mode == "fixed" else 0) or 0)

        handled.add(name)

    for adj_type, comp_name in ADJUSTMENT_COMPONENT.items():
        if (amt.get(adj_type) or qty.get(adj_type)) and comp_name not in by_name:
            out.warnings.append(f"{adj_type} adjustment ignored: {comp_name} is not in structure {structure.code}")

    # claims
    claims_amount = money(sum((D(c.amount) for c in inputs.claims), ZERO))
    out.claims = list(inputs.claims)

    # deductions
    unpaid_deduction = ZERO if part_time else money(D(inputs.unpaid_days) * daily)
    attendance_deduction = ZERO if part_time else money(sum((D(r.deduction_amount) for r in payable), ZERO))
    absent_days = 0 if part_time or not settings.deduct_absent_days else len(inputs.absent_dates)
    absent_deduction = money(D(absent_days) * daily)
    advance_deduction = money(sum((amount for _, amount in inputs.advances), ZERO))
    other_deductions = money(amt.get("other_deduction") or 0)

    # statutory base
    base = v["basic_salary"]
    if settings.statutory_on_commission:
        base += v["commission"]
    if settings.statutory_on_allowance:
        base += v["allowance"]
    if settings.statutory_on_ot:
        base += v["ot_amount"]
    if settings.statutory_on_ph_pay:
        base += v["ph_pay"]
    if settings.statutory_on_incentive:
        base += v["incentive"]
    base = money(base)
    epf_wage = money(base + (v["bonus"] if settings.epf_on_bonus else ZERO))

    gross = money(sum(v.values(), ZERO) + claims_amount)
    contribution_wage = gross - claims_amount

    epf = rate_tables.epf(epf_wage, age, employee.epf_contribution_type, rates.epf)
    socso = rate_tables.socso(contribution_wage, age, rates.socso)
    eis = rate_tables.eis(contribution_wage, age, rates.eis)
    pcb, pcb_meta = pcb_for(
        employee, run, base, v["bonus"], epf["employee"],
        socso["employee"] + eis["employee"], amt.get("monthly_rebate") or ZERO,
        inputs.ytd, rates.pcb,
    )

    total_deductions = money(
        epf["employee"] + socso["employee"] + eis["employee"] + pcb
        + attendance_deduction + absent_deduction + unpaid_deduction
        + advance_deduction + other_deductions
    )
    net = gross - total_deductions
    if net < 0:
        out.warnings.append(f"Net pay is negative ({net})")

    out.values = dict(v)
    out.values.update({
        "claims_amount": claims_amount,
        "statutory_base": base,
        "epf_wage": epf["wage"],
        "epf_employee": epf["employee"],
        "epf_employer": epf["employer"],
        "socso_employee": socso["employee"],
        "socso_employer": socso["employer"],
        "eis_employee": eis["employee"],
        "eis_employer": eis["employer"],
        "pcb": pcb,
        "attendance_deduction": attendance_deduction,
        "absent_deduction": absent_deduction,
        "unpaid_leave_deduction": unpaid_deduction,
        "advance_deduction": advance_deduction,
        "other_deductions": other_deductions,
        "gross_salary": gross,
        "total_deductions": total_deductions,
        "net_pay": net,
        "worked_minutes": approved_minutes,
        "ot_hours": money(sum((D(r.ot_hours) for r in payable if r.ot_minutes and _ot_counts(r, settings)), ZERO)),
        "absent_days": absent_days,
        "unpaid_leave_days": D(inputs.unpaid_days),
        "late_minutes": sum(int(r.late_minutes or 0) for r in payable),
        "early_minutes": sum(int(r.early_minutes or 0) for r in payable),
    })
    out.meta.update({
        "structure": structure.code,
        "age": age,
        "socso_category": socso["category"],
        "hourly_rate": money(hourly),
        "daily_rate": money(daily),
        "rate_tables": rates.versions,
        "settings_version": settings.version,
        "pcb": pcb_meta,
    })
    if absent_days:
        out.meta["absent_dates"] = [d.isoformat() for d in inputs.absent_dates]
    if inputs.advances:
        out.meta["advances"] = [{"advance_id": a.id, "amount": amount} for a, amount in inputs.advances]
    return out


# ---------- persistence ----------

def unlink_claims(item: PayrollItem):
    for link in list(item.claim_links):
        if link.claim is not None and link.claim.linked_payroll_item_id == item.id:
            link.claim.linked_payroll_item_id = None
        item.claim_links.remove(link)


def link_claims(item: PayrollItem, claims: List[Claim]):
    for c in claims:
        item.claim_links.append(PayrollItemClaim(claim_id=c.id, amount=c.amount, linked_at=datetime.utcnow()))
        c.linked_payroll_item_id = item.id


def build_item(employee, run: PayrollRun, settings, rates: RateSet, item: Optional[PayrollItem] = None) -> PayrollItem:
    """Compute and write the item for `employee`. Raises ItemFailure subclasses on bad input."""
    if item is None:
        item = PayrollItem(run_id=run.id, employee_id=employee.id, status=ItemStatus.pending)
        db.session.add(item)
        db.session.flush()
    elif item.status == ItemStatus.locked:
        raise DataInconsistencyError(f"Payroll item {item.id} is locked")
    else:
        unlink_claims(item)
        db.session.flush()

    comp = compute(employee, run, settings, rates, collect_inputs(employee, run))
    for k, val in comp.values.items():
        setattr(item, k, val)
    link_claims(item, comp.claims)

    item.warnings = comp.warnings or None
    item.calc_meta = to_json(comp.meta)
    item.status = ItemStatus.computed
    item.computed_at = datetime.utcnow()
    db.session.flush()
    return item
