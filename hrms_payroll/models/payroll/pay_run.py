import enum
from datetime import datetime

from hrms_payroll.extensions import db


class RunStatus(str, enum.Enum):
    draft = "draft"
    approved = "approved"
    locked = "locked"
    paid = "paid"


class ItemStatus(str, enum.Enum):
    pending = "pending"
    computed = "computed"
    locked = "locked"
    failed = "failed"


def _values(e):
    return [m.value for m in e]


EARNING_FIELDS = (
    "basic_salary", "allowance", "commission", "bonus", "incentive",
    "trip_commission", "outstation_amount", "ot_amount", "ph_pay",
    "attendance_bonus", "other_earnings", "claims_amount",
)
STATUTORY_FIELDS = (
    "epf_employee", "epf_employer", "socso_employee", "socso_employer",
    "eis_employee", "eis_employer", "pcb",
)
DEDUCTION_FIELDS = (
    "epf_employee", "socso_employee", "eis_employee", "pcb",
    "attendance_deduction", "absent_deduction", "unpaid_leave_deduction",
    "advance_deduction", "other_deductions",
)


class PayrollRun(db.Model):
    __tablename__ = "payroll_runs"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    status = db.Column(
        db.Enum(RunStatus, name="payroll_run_status_enum", values_callable=_values),
        nullable=False, default=RunStatus.draft,
    )
    totals = db.Column(db.JSON)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    generated_at = db.Column(db.DateTime)
    approved_at = db.Column(db.DateTime)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    locked_at = db.Column(db.DateTime)
    paid_at = db.Column(db.DateTime)
    payment_ref = db.Column(db.String(120))
    payment_meta = db.Column(db.JSON)

    __table_args__ = (
        db.UniqueConstraint("company_id", "year", "month", name="uq_payroll_run_company_period"),
    )

    company = db.relationship("Company", lazy="joined")


class PayrollItem(db.Model):
    __tablename__ = "payroll_items"

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(db.Integer, db.ForeignKey("payroll_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)
    status = db.Column(
        db.Enum(ItemStatus, name="payroll_item_status_enum", values_callable=_values),
        nullable=False, default=ItemStatus.pending,
    )

    # earnings
    basic_salary = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    allowance = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    commission = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    bonus = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    incentive = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    trip_commission = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    outstation_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    ot_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    ph_pay = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    attendance_bonus = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    other_earnings = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    claims_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    # statutory
    statutory_base = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    epf_wage = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    epf_employee = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    epf_employer = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    socso_employee = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    socso_employer = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    eis_employee = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    eis_employer = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    pcb = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    # other deductions
    attendance_deduction = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    absent_deduction = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    unpaid_leave_deduction = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    advance_deduction = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    other_deductions = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    gross_salary = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_deductions = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    net_pay = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    # time inputs used
    worked_minutes = db.Column(db.Integer, nullable=False, default=0)
    ot_hours = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    absent_days = db.Column(db.Integer, nullable=False, default=0)
    unpaid_leave_days = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    late_minutes = db.Column(db.Integer, nullable=False, default=0)
    early_minutes = db.Column(db.Integer, nullable=False, default=0)

    variance_pct = db.Column(db.Numeric(8, 4))
    variance_flagged = db.Column(db.Boolean, nullable=False, default=False)
    warnings = db.Column(db.JSON)
    calc_meta = db.Column(db.JSON)

    computed_at = db.Column(db.DateTime)
    locked_at = db.Column(db.DateTime)

    __table_args__ = (
        db.UniqueConstraint("run_id", "employee_id", name="uq_payroll_item_run_employee"),
    )

    run = db.relationship("PayrollRun", backref=db.backref("items", lazy="dynamic", passive_deletes=True))
    employee = db.relationship("Employee", lazy="joined")
    claim_links = db.relationship("PayrollItemClaim", cascade="all, delete-orphan", lazy="selectin")


class PayrollItemClaim(db.Model):
    """Item -> claim ownership. Claim.linked_payroll_item_id mirrors it."""
    __tablename__ = "payroll_item_claims"

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("payroll_items.id", ondelete="CASCADE"), nullable=False, index=True)
    claim_id = db.Column(db.Integer, db.ForeignKey("claims.id"), nullable=False, unique=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    linked_at = db.Column(db.DateTime, default=datetime.utcnow)

    claim = db.relationship("Claim", lazy="joined")
