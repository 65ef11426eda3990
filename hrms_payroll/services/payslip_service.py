from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import List, Dict, Any, Optional

from hrms_payroll.common.http import to_json
from hrms_payroll.common.money import D, ZERO
from hrms_payroll.models.payroll.pay_run import PayrollItem

# item column -> payslip label, in payslip order
EARNING_LINES = [
    ("basic_salary", "Basic Salary"),
    ("allowance", "Allowance"),
    ("commission", "Commission"),
    ("trip_commission", "Trip Commission"),
    ("outstation_amount", "Outstation"),
    ("ot_amount", "Overtime"),
    ("ph_pay", "Public Holiday Pay"),
    ("bonus", "Bonus"),
    ("incentive", "Incentive"),
    ("attendance_bonus", "Attendance Bonus"),
    ("other_earnings", "Other Earnings"),
    ("claims_amount", "Claims"),
]
DEDUCTION_LINES = [
    ("epf_employee", "EPF"),
    ("socso_employee", "SOCSO"),
    ("eis_employee", "EIS"),
    ("pcb", "PCB"),
    ("unpaid_leave_deduction", "Unpaid Leave"),
    ("absent_deduction", "Absent Days"),
    ("attendance_deduction", "Late / Early"),
    ("advance_deduction", "Salary Advance"),
    ("other_deductions", "Other Deductions"),
]
EMPLOYER_LINES = [
    ("epf_employer", "EPF"),
    ("socso_employer", "SOCSO"),
    ("eis_employer", "EIS"),
]


@dataclass
class PayslipLine:
    code: str
    name: str
    amount: Decimal


@dataclass
class PayslipDTO:
    company: Dict[str, Any]
    employee: Dict[str, Any]
    run: Dict[str, Any]
    attendance: Dict[str, Any]
    earnings: List[PayslipLine]
    deductions: List[PayslipLine]
    employer_contributions: List[PayslipLine]
    totals: Dict[str, Any]
    warnings: Optional[List[str]] = None


def _lines(item: PayrollItem, fields) -> List[PayslipLine]:
    """Zero lines are left off the slip."""
    out = []
    for field, label in fields:
        amt = D(getattr(item, field))
        if amt != ZERO:
            out.append(PayslipLine(code=field, name=label, amount=amt))
    return out


class PayslipService:
    def build_payslip_dto(self, item: PayrollItem) -> dict:
        run = item.run
        emp = item.employee
        company = run.company
        grouping = emp.grouping()

        employer = _lines(item, EMPLOYER_LINES)
        dto = PayslipDTO(
            company={
                "id": company.id,
                "code": company.code,
                "name": company.name,
                "registration_no": company.registration_no,
                "epf_no": company.epf_employer_no,
            },
            employee={
                "id": emp.id,
                "code": emp.employee_code,
                "name": emp.name,
                "ic_no": emp.ic_number,
                "tax_no": emp.tax_no,
                "designation": emp.designation,
                "department": grouping.name if grouping else None,
                "work_type": emp.work_type,
                "join_date": emp.join_date,
            },
            run={
                "run_id": run.id,
                "year": run.year,
                "month": run.month,
                "period_start": run.period_start,
                "period_end": run.period_end,
                "status": run.status.value,
            },
            attendance={
                "worked_hours": round(item.worked_minutes / 60, 2) if item.worked_minutes else 0,
                "ot_hours": item.ot_hours,
                "unpaid_leave_days": item.unpaid_leave_days,
                "absent_days": item.absent_days,
                "late_minutes": item.late_minutes,
                "early_minutes": item.early_minutes,
            },
            earnings=_lines(item, EARNING_LINES),
            deductions=_lines(item, DEDUCTION_LINES),
            employer_contributions=employer,
            totals={
                "gross_pay": item.gross_salary,
                "total_deductions": item.total_deductions,
                "net_pay": item.net_pay,
                "employer_total": sum((l.amount for l in employer), ZERO),
            },
            warnings=item.warnings or None,
        )
        return to_json(asdict(dto))
