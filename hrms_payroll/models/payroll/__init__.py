# hrms_payroll/models/payroll/__init__.py
# Import order matters: structures first, then runs (claims link to items).
from hrms_payroll.extensions import db  # noqa

from .structure import PayrollStructure, PayrollStructureComponent
from .adjustments import PayrollAdjustment
from .rate_table import RateTable
from .pay_run import PayrollRun, PayrollItem, PayrollItemClaim, RunStatus, ItemStatus
from .advances import SalaryAdvance, SalaryAdvanceDeduction, AdvanceStatus
from .ea_form import EAForm, BenefitInKind

__all__ = [
    "PayrollStructure", "PayrollStructureComponent",
    "PayrollAdjustment", "RateTable",
    "PayrollRun", "PayrollItem", "PayrollItemClaim", "RunStatus", "ItemStatus",
    "SalaryAdvance", "SalaryAdvanceDeduction", "AdvanceStatus",
    "EAForm", "BenefitInKind",
]
