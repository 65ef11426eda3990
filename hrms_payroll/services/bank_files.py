"""
Bulk salary payment files for Malaysian banks.

Each format takes the run's payable lines (non-failed items whose employee
has a bank account) and returns text. Fixed-width formats carry amounts in
sen, zero-padded; CSV formats carry ringgit with two decimals.
"""
from __future__ import annotations

import csv
import io
import logging
import re
from calendar import month_abbr
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from hrms_payroll.common.errors import ValidationError, InvalidTransitionError
from hrms_payroll.common.money import D, money, ZERO
from hrms_payroll.models.payroll.pay_run import PayrollRun, ItemStatus, RunStatus
from hrms_payroll.services.payroll_run import ordered_items

log = logging.getLogger(__name__)

# substring of the bank name -> SWIFT code
BANK_CODES = [
    ("maybank", "MBBEMYKL"), ("malayan banking", "MBBEMYKL"),
    ("cimb", "CIBBMYKL"),
    ("public bank", "PBBEMYKL"), ("publicbank", "PBBEMYKL"),
    ("rhb", "RHBBMYKL"),
    ("hong leong", "HLBBMYKL"),
    ("ambank", "ARBKMYKL"),
    ("bank islam", "BIMBMYKL"),
    ("bank rakyat", "BKRMMYKL"),
    ("affin", "PHBMMYKL"),
    ("alliance", "MFBBMYKL"),
    ("standard chartered", "SCBLMYKX"),
    ("hsbc", "HBMBMYKL"),
    ("ocbc", "OCBCMYKL"),
    ("uob", "UOVBMYKL"),
    ("bsn", "BSNAMYK1"),
]

# substring of the bank name -> name Maybank's bulk upload expects
MAYBANK_BULK_NAMES = [
    ("maybank", "MAYBANK"), ("malayan banking", "MAYBANK"),
    ("cimb", "CIMB"),
    ("public bank", "PUBLIC BANK"), ("publicbank", "PUBLIC BANK"),
    ("rhb", "RHB"),
    ("hong leong", "HONG LEONG"), ("hlb", "HONG LEONG"),
    ("ambank", "AMBANK"),
    ("bank islam", "BANK ISLAM"), ("bimb", "BANK ISLAM"),
    ("bank rakyat", "BANK RAKYAT"),
    ("muamalat", "MUAMALAT"),
    ("affin", "AFFIN BANK"),
    ("alliance", "ALLIANCE BANK"),
    ("standard chartered", "STANDARD CHARTERED"),
    ("hsbc", "HSBC"),
    ("ocbc", "OCBC"),
    ("uob", "UOB"),
    ("bsn", "BSN"), ("bank simpanan nasional", "BSN"),
    ("agro bank", "AGRO BANK"), ("agrobank", "AGRO BANK"),
]


def bank_code(bank_name: Optional[str]) -> str:
    if not bank_name:
        return ""
    name = bank_name.lower()
    for key, code in BANK_CODES:
        if key in name:
            return code
    return "UNKNOWN"


def maybank_bulk_name(bank_name: Optional[str]) -> str:
    if not bank_name:
        return ""
    name = bank_name.lower().strip()
    for key, label in MAYBANK_BULK_NAMES:
        if key in name:
            return label
    return bank_name.upper()


@dataclass
class PaymentLine:
    employee_code: str
    name: str
    ic_number: str
    email: str
    bank_name: str
    account_number: str
    amount: Decimal


@dataclass
class FileContext:
    run: PayrollRun
    company_name: str
    credit_date: date
    debit_account: str = ""
    company_code: str = ""

    @property
    def month_tag(self) -> str:
        return f"{self.run.month}/{self.run.year}"


def _cents(amount) -> str:
    return str(int((money(amount) * 100).to_integral_value()))


def _rpad(s, n: int) -> str:
    return str(s or "").ljust(n)[:n]


def _lpad(s, n: int, fill: str = " ") -> str:
    return str(s or "").rjust(n, fill)[:n]


def _total(lines: List[PaymentLine]) -> Decimal:
    return money(sum((l.amount for l in lines), ZERO))


def _csv(rows) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\r\n")
    writer.writerows(rows)
    return output.getvalue()


# ---------- formats ----------

def maybank_bulk(lines: List[PaymentLine], ctx: FileContext) -> str:
    """Maybank2u Biz bulk salary upload."""
    ref = f"SALARY{month_abbr[ctx.run.month].upper()}{ctx.run.year}"
    rows = [
        ["Employer Info :"] + [""] * 7,
        ["Crediting Date (eg. dd/MM/yyyy)", ctx.credit_date.strftime("%d/%m/%Y")] + [""] * 6,
        ["Payment Reference"] + [""] * 7,
        ["Payment Description"] + [""] * 7,
        ["Bulk Payment Type", "Salary"] + [""] * 6,
        [""] * 8,
        ["Beneficiary Name", "Beneficiary Bank", "Beneficiary Account No", "ID Type", "ID Number",
         "Payment Amount", "Payment Reference", "Payment Description"],
    ]
    for l in lines:
        rows.append([
            l.name.upper().replace(",", ""), maybank_bulk_name(l.bank_name), l.account_number,
            "NRIC", l.ic_number.replace("-", ""), f"{l.amount:.2f}", ref, ref,
        ])
    return _csv(rows)


def maybank_ibg(lines: List[PaymentLine], ctx: FileContext) -> str:
    """Maybank interbank GIRO; header record 01, detail records 02."""
    out = ["".join([
        "01",
        _rpad(ctx.company_name, 35),
        _lpad(ctx.debit_account, 17),
        ctx.credit_date.strftime("%Y%m%d"),
        _lpad(len(lines), 6, "0"),
        _lpad(_cents(_total(lines)), 15, "0"),
        _rpad(f"PAY{ctx.run.year}{ctx.run.month:02d}", 20),
        "S",
    ])]
    for seq, l in enumerate(lines, 1):
        code = bank_code(l.bank_name)
        out.append("".join([
            "02",
            _lpad(seq, 6, "0"),
            _rpad(l.account_number, 17),
            _rpad(code, 11),
            _rpad(l.name, 35),
            _lpad(_cents(l.amount), 15, "0"),
            _rpad(l.employee_code, 20),
            "L" if code == "MBBEMYKL" else "I",
            _rpad("", 50),
        ]))
    return "\r\n".join(out)


def cimb(lines: List[PaymentLine], ctx: FileContext) -> str:
    """CIMB BizChannel."""
    rows = [["Beneficiary Account No", "Beneficiary Name", "Beneficiary ID", "Amount", "Bank Code",
             "Payment Reference", "Payment Details", "Email"]]
    for l in lines:
        rows.append([
            l.account_number, l.name, l.ic_number or l.employee_code, f"{l.amount:.2f}",
            bank_code(l.bank_name), f"SALARY {ctx.month_tag}", f"Salary payment for {l.name}", l.email,
        ])
    return _csv(rows)


def public_bank(lines: List[PaymentLine], ctx: FileContext) -> str:
    """Public Bank fixed width; H header, D details, T trailer."""
    total = _cents(_total(lines))
    out = ["".join([
        "H",
        _rpad(ctx.company_code, 10),
        _rpad(ctx.debit_account, 14),
        ctx.credit_date.strftime("%Y%m%d"),
        _lpad(len(lines), 6, "0"),
        _lpad(total, 13, "0"),
    ])]
    for seq, l in enumerate(lines, 1):
        out.append("".join([
            "D",
            _lpad(seq, 6, "0"),
            _rpad(l.account_number, 14),
            _lpad(_cents(l.amount), 13, "0"),
            _rpad(l.name, 40),
            _rpad(l.ic_number, 14),
            _rpad("SALARY", 20),
        ]))
    out.append("".join(["T", _lpad(len(lines) + 1, 6, "0"), _lpad(total, 15, "0")]))
    return "\r\n".join(out)


def rhb(lines: List[PaymentLine], ctx: FileContext) -> str:
    """RHB Reflex corporate."""
    rows = [["RECORD TYPE", "TRANSACTION REF", "BENEFICIARY NAME", "BENEFICIARY ACCOUNT",
             "BENEFICIARY BANK", "AMOUNT", "EMAIL", "NARRATIVE"]]
    for seq, l in enumerate(lines, 1):
        rows.append([
            "D", f"SAL{ctx.run.year}{ctx.run.month:02d}{seq:04d}", l.name, l.account_number,
            bank_code(l.bank_name), f"{l.amount:.2f}", l.email, f"Salary {ctx.month_tag}",
        ])
    return _csv(rows)


def generic_csv(lines: List[PaymentLine], ctx: FileContext) -> str:
    rows = [["Employee ID", "Employee Name", "IC Number", "Bank Name", "Bank Account No",
             "Net Pay (RM)", "Reference"]]
    for l in lines:
        rows.append([
            l.employee_code, l.name, l.ic_number, l.bank_name, l.account_number,
            f"{l.amount:.2f}", f"SALARY-{ctx.month_tag}",
        ])
    return _csv(rows)


@dataclass(frozen=True)
class BankFormat:
    key: str
    name: str
    extension: str
    render: Callable[[List[PaymentLine], FileContext], str]

    @property
    def mimetype(self) -> str:
        return "text/csv" if self.extension == "csv" else "text/plain"


BANK_FORMATS: Dict[str, BankFormat] = {f.key: f for f in (
    BankFormat("maybank_bulk", "Maybank Bulk Transfer", "csv", maybank_bulk),
    BankFormat("maybank", "Maybank IBG", "txt", maybank_ibg),
    BankFormat("cimb", "CIMB BizChannel", "csv", cimb),
    BankFormat("publicbank", "Public Bank", "txt", public_bank),
    BankFormat("rhb", "RHB Corporate", "csv", rhb),
    BankFormat("csv", "Generic CSV", "csv", generic_csv),
)}


def available_formats() -> List[dict]:
    return [{"key": f.key, "name": f.name, "extension": f.extension} for f in BANK_FORMATS.values()]


def default_credit_date(run: PayrollRun) -> date:
    """5th of the month after the period."""
    if run.month == 12:
        return date(run.year + 1, 1, 5)
    return date(run.year, run.month + 1, 5)


def payment_lines(run: PayrollRun) -> List[PaymentLine]:
    out = []
    for it in ordered_items(run):
        if it.status == ItemStatus.failed:
            continue
        acct = it.employee.primary_bank_account()
        if acct is None or not acct.account_number:
            log.info("run %s: %s has no bank account; left out of the bank file",
                     run.id, it.employee.employee_code)
            continue
        out.append(PaymentLine(
            employee_code=it.employee.employee_code,
            name=acct.account_holder or it.employee.name,
            ic_number=it.employee.ic_number or "",
            email=it.employee.email or "",
            bank_name=acct.bank_name,
            account_number=re.sub(r"[^0-9A-Za-z]", "", acct.account_number),
            amount=money(D(it.net_pay)),
        ))
    return out


def generate(run: PayrollRun, fmt: str = "csv", credit_date: Optional[date] = None,
             debit_account: str = "", company_code: str = "") -> dict:
    """Render the run's payment file. Returns content bytes plus metadata."""
    layout = BANK_FORMATS.get((fmt or "").lower())
    if layout is None:
        raise ValidationError(f"Unknown bank format '{fmt}'. Available: {', '.join(BANK_FORMATS)}")
    if run.status not in (RunStatus.locked, RunStatus.paid):
        raise InvalidTransitionError(
            f"Bank files need a locked run; this one is '{run.status.value}'",
            payload={"run_id": run.id, "status": run.status.value},
        )
    lines = payment_lines(run)
    if not lines:
        raise ValidationError("No employees with bank details in this run")

    ctx = FileContext(
        run=run,
        company_name=run.company.name if run.company else "",
        credit_date=credit_date or default_credit_date(run),
        debit_account=debit_account,
        company_code=company_code or (run.company.code if run.company else ""),
    )
    content = layout.render(lines, ctx)
    return {
        "content": content.encode("utf-8"),
        "filename": f"salary_{run.year}_{run.month:02d}_{layout.key}.{layout.extension}",
        "mimetype": layout.mimetype,
        "format": layout.name,
        "records": len(lines),
        "total_amount": _total(lines),
    }
