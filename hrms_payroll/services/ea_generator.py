"""
Borang EA (yearly statement of remuneration) per employee.

Source rows are the locked items of runs that reached ``paid`` in the year.
``form_data`` carries ``version``; readers must tolerate extra keys.
"""
from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from hrms_payroll.common.deadline import Deadline
from hrms_payroll.common.errors import YearNotFinalizedError, NotFoundError, APIError
from hrms_payroll.common.http import to_json
from hrms_payroll.common.money import D, money, ZERO
from hrms_payroll.extensions import db
from hrms_payroll.models.employee import Employee
from hrms_payroll.models.master import Company
from hrms_payroll.models.payroll.ea_form import EAForm, BenefitInKind
from hrms_payroll.models.payroll.pay_run import PayrollRun, PayrollItem, RunStatus, ItemStatus

log = logging.getLogger(__name__)

FORM_VERSION = "ea-2025.1"

# form_data remuneration key -> item columns summed into it
REMUNERATION = {
    "salary_wages": ("basic_salary",),
    "allowances": ("allowance",),
    "commission": ("commission", "trip_commission"),
    "bonus": ("bonus",),
    "overtime": ("ot_amount", "ph_pay"),
    "incentives": ("incentive", "attendance_bonus"),
    "other_cash_payments": ("outstation_amount", "other_earnings"),
    "claims_reimbursed": ("claims_amount",),
}
STATUTORY = {
    "epf": "epf_employee",
    "socso": "socso_employee",
    "eis": "eis_employee",
    "pcb": "pcb",
}


def paid_items(employee_id: int, year: int) -> List[PayrollItem]:
    return (
        PayrollItem.query
        .join(PayrollRun, PayrollRun.id == PayrollItem.run_id)
        .filter(PayrollItem.employee_id == employee_id)
        .filter(PayrollRun.year == year)
        .filter(PayrollRun.status == RunStatus.paid)
        .filter(PayrollItem.status != ItemStatus.failed)
        .order_by(PayrollRun.month.asc())
        .all()
    )


def benefits(employee_id: int, year: int) -> List[BenefitInKind]:
    return (
        BenefitInKind.query
        .filter_by(employee_id=employee_id, year=year, is_active=True)
        .order_by(BenefitInKind.id.asc())
        .all()
    )


def source_hash(items: List[PayrollItem], bik: List[BenefitInKind]) -> str:
    """Digest of everything the form is derived from."""
    src = {
        "items": [
            [it.id, it.run.month] + [str(money(getattr(it, f))) for cols in REMUNERATION.values() for f in cols]
            + [str(money(getattr(it, f))) for f in STATUTORY.values()] + [str(money(it.gross_salary))]
            for it in items
        ],
        "bik": [[b.id, b.description, str(money(b.value))] for b in bik],
        "version": FORM_VERSION,
    }
    return hashlib.sha256(json.dumps(src, sort_keys=True).encode("utf-8")).hexdigest()


def build_form(employee: Employee, year: int, items: List[PayrollItem], bik: List[BenefitInKind]) -> dict:
    company: Company = employee.company
    rem = {k: sum((D(getattr(it, f)) for it in items for f in cols), ZERO) for k, cols in REMUNERATION.items()}
    stat = {k: sum((D(getattr(it, f)) for it in items), ZERO) for k, f in STATUTORY.items()}
    gross = sum((D(it.gross_salary) for it in items), ZERO)
    bik_total = sum((D(b.value) for b in bik), ZERO)

    return to_json({
        "version": FORM_VERSION,
        "year": year,
        "employer": {
            "name": company.name,
            "registration_no": company.registration_no,
            "address": company.address,
            "epf_no": company.epf_employer_no,
            "income_tax_no": company.income_tax_employer_no,
        },
        "employee": {
            "name": employee.name,
            "employee_no": employee.employee_code,
            "ic_no": employee.ic_number,
            "passport_no": employee.passport_no,
            "tax_no": employee.tax_no,
            "designation": employee.designation,
            "commencement_date": employee.join_date,
            "cessation_date": employee.last_working_day,
        },
        "remuneration": dict(
            {k: money(v) for k, v in rem.items()},
            total_gross=money(gross),
            bik_total=money(bik_total),
            total_remuneration=money(gross + bik_total),
        ),
        "benefits_in_kind": {
            "items": [{"description": b.description, "value": money(b.value)} for b in bik],
            "total": money(bik_total),
        },
        "deductions": {k: money(v) for k, v in stat.items()},
        "monthly_breakdown": [
            {
                "month": it.run.month,
                "gross": money(it.gross_salary),
                "epf": money(it.epf_employee),
                "socso": money(it.socso_employee),
                "eis": money(it.eis_employee),
                "pcb": money(it.pcb),
                "net": money(it.net_pay),
            }
            for it in items
        ],
        "months_paid": len(items),
    })


def draft_months(company_id: int, year: int) -> List[int]:
    rows = (
        PayrollRun.query
        .filter_by(company_id=company_id, year=year, status=RunStatus.draft)
        .order_by(PayrollRun.month.asc())
        .all()
    )
    return [r.month for r in rows]


def eligible_employees(company_id: int, year: int, employee_ids: Optional[Iterable[int]] = None) -> List[Employee]:
    q = (
        Employee.query
        .join(PayrollItem, PayrollItem.employee_id == Employee.id)
        .join(PayrollRun, PayrollRun.id == PayrollItem.run_id)
        .filter(PayrollRun.company_id == company_id)
        .filter(PayrollRun.year == year)
        .filter(PayrollRun.status == RunStatus.paid)
        .distinct()
    )
    if employee_ids:
        q = q.filter(Employee.id.in_(list(employee_ids)))
    return q.order_by(Employee.employee_code.asc()).all()


def generate_for_employee(employee: Employee, year: int) -> tuple:
    """Upsert one form. Returns (form, changed)."""
    items = paid_items(employee.id, year)
    if not items:
        raise NotFoundError(f"No paid payroll for employee {employee.id} in {year}")
    bik = benefits(employee.id, year)
    digest = source_hash(items, bik)

    form = EAForm.query.filter_by(employee_id=employee.id, year=year).with_for_update().first()
    if form is not None and form.source_hash == digest:
        return form, False

    data = build_form(employee, year, items, bik)
    if form is None:
        form = EAForm(company_id=employee.company_id, employee_id=employee.id, year=year)
        db.session.add(form)
    form.form_data = data
    form.total_employment_income = D(data["remuneration"]["total_remuneration"])
    form.total_epf = D(data["deductions"]["epf"])
    form.total_pcb = D(data["deductions"]["pcb"])
    form.source_hash = digest
    form.generated_at = datetime.utcnow()
    db.session.flush()
    return form, True


def generate(company_id: int, year: int, employee_ids: Optional[Iterable[int]] = None,
             allow_draft: bool = False, deadline: Optional[Deadline] = None) -> dict:
    deadline = deadline or Deadline(None)
    drafts = draft_months(company_id, year)
    if drafts and not allow_draft:
        raise YearNotFinalizedError(
            f"{year} still has draft payroll runs",
            payload={"company_id": company_id, "year": year, "draft_months": drafts},
        )

    generated, unchanged, errors = [], [], []
    for emp in eligible_employees(company_id, year, employee_ids):
        deadline.check("EA generation")
        sp = db.session.begin_nested()
        try:
            form, changed = generate_for_employee(emp, year)
            sp.commit()
        except APIError as e:
            sp.rollback()
            log.warning("[ea] employee=%s year=%s failed: %s", emp.id, year, e.message)
            errors.append({"employee_id": emp.id, "code": e.code, "message": e.message})
            continue
        (generated if changed else unchanged).append(emp.id)

    log.info("[ea] company=%s year=%s generated=%s unchanged=%s errors=%s",
             company_id, year, len(generated), len(unchanged), len(errors))
    return {"year": year, "generated": generated, "unchanged": unchanged, "errors": errors}


def get_form(employee_id: int, year: int) -> EAForm:
    form = EAForm.query.filter_by(employee_id=employee_id, year=year).first()
    if form is None:
        raise NotFoundError(f"No EA form for employee {employee_id} in {year}")
    return form


def form_dict(form: EAForm) -> dict:
    return {
        "id": form.id,
        "employee_id": form.employee_id,
        "year": form.year,
        "form_data": form.form_data,
        "total_employment_income": float(form.total_employment_income or 0),
        "total_epf": float(form.total_epf or 0),
        "total_pcb": float(form.total_pcb or 0),
        "generated_at": form.generated_at.isoformat() if form.generated_at else None,
    }


def company_summary(company_id: int, year: int) -> Dict[str, Decimal]:
    forms = EAForm.query.filter_by(company_id=company_id, year=year).all()
    out = {"employees": len(forms), "total_employment_income": ZERO, "total_epf": ZERO, "total_pcb": ZERO}
    for f in forms:
        out["total_employment_income"] += D(f.total_employment_income)
        out["total_epf"] += D(f.total_epf)
        out["total_pcb"] += D(f.total_pcb)
    return to_json(out)
