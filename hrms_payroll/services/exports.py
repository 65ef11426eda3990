from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Font

from hrms_payroll.models.payroll.ea_form import EAForm
from hrms_payroll.models.payroll.pay_run import PayrollRun, ItemStatus
from hrms_payroll.models.employee import Employee
from hrms_payroll.services.payroll_run import ordered_items

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

REGISTER_COLUMNS = [
    ("EMP CODE", None), ("NAME", None), ("STATUS", None),
    ("BASIC", "basic_salary"), ("ALLOWANCE", "allowance"), ("COMMISSION", "commission"),
    ("BONUS", "bonus"), ("INCENTIVE", "incentive"), ("TRIP", "trip_commission"),
    ("OUTSTATION", "outstation_amount"), ("OT", "ot_amount"), ("PH PAY", "ph_pay"),
    ("ATT BONUS", "attendance_bonus"), ("OTHER EARN", "other_earnings"), ("CLAIMS", "claims_amount"),
    ("GROSS", "gross_salary"),
    ("EPF EE", "epf_employee"), ("EPF ER", "epf_employer"),
    ("SOCSO EE", "socso_employee"), ("SOCSO ER", "socso_employer"),
    ("EIS EE", "eis_employee"), ("EIS ER", "eis_employer"), ("PCB", "pcb"),
    ("ATT DED", "attendance_deduction"), ("ABSENT", "absent_deduction"),
    ("UNPAID LEAVE", "unpaid_leave_deduction"), ("ADVANCE", "advance_deduction"),
    ("OTHER DED", "other_deductions"), ("TOTAL DED", "total_deductions"), ("NET", "net_pay"),
]


def _num(x):
    return float(x) if x is not None else 0.0


def _save(wb) -> BytesIO:
    bio = BytesIO()
    wb.save(bio)
    bio.seek(0)
    return bio


def run_register(run: PayrollRun):
    """Returns (stream, filename)."""
    wb = Workbook()
    ws = wb.active
    ws.title = f"{run.year}-{run.month:02d}"
    ws.append([h for h, _ in REGISTER_COLUMNS])
    for cell in ws[1]:
        cell.font = Font(bold=True)

    totals = [0.0] * len(REGISTER_COLUMNS)
    for it in ordered_items(run):
        row = [it.employee.employee_code, it.employee.name, it.status.value]
        for i, (_, field) in enumerate(REGISTER_COLUMNS[3:], 3):
            v = _num(getattr(it, field))
            row.append(v)
            if it.status != ItemStatus.failed:
                totals[i] += v
        ws.append(row)
    ws.append([None, "TOTAL", None] + [round(t, 2) for t in totals[3:]])
    ws[ws.max_row][1].font = Font(bold=True)

    filename = f"payroll_register_{run.company.code}_{run.year}{run.month:02d}.xlsx"
    return _save(wb), filename


def ea_summary(company_id: int, year: int):
    wb = Workbook()
    ws = wb.active
    ws.title = f"EA {year}"
    headers = ["EMP CODE", "NAME", "IC NO", "TAX NO", "MONTHS", "TOTAL GROSS", "BIK",
               "TOTAL REMUNERATION", "EPF", "SOCSO", "EIS", "PCB"]
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    forms = (
        EAForm.query
        .join(Employee, Employee.id == EAForm.employee_id)
        .filter(EAForm.company_id == company_id, EAForm.year == year)
        .order_by(Employee.employee_code.asc())
        .all()
    )
    for f in forms:
        data = f.form_data or {}
        emp = data.get("employee") or {}
        rem = data.get("remuneration") or {}
        ded = data.get("deductions") or {}
        ws.append([
            emp.get("employee_no"), emp.get("name"), emp.get("ic_no"), emp.get("tax_no"),
            data.get("months_paid"),
            _num(rem.get("total_gross")), _num(rem.get("bik_total")), _num(rem.get("total_remuneration")),
            _num(ded.get("epf")), _num(ded.get("socso")), _num(ded.get("eis")), _num(ded.get("pcb")),
        ])
    return _save(wb), f"ea_summary_{company_id}_{year}.xlsx"
