import enum
from datetime import datetime

from hrms_payroll.extensions import db


class AdvanceStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


def _values(e):
    return [m.value for m in e]


DEDUCTION_METHODS = ("full", "installment")


class SalaryAdvance(db.Model):
    """Cash paid ahead of payroll and recovered from later payslips."""
    __tablename__ = "salary_advances"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    advance_date = db.Column(db.Date, nullable=False)
    reason = db.Column(db.String(255))
    reference_no = db.Column(db.String(50))

    deduction_method = db.Column(db.Enum(*DEDUCTION_METHODS, name="advance_deduction_method_enum"),
                                 nullable=False, default="full")
    installment_amount = db.Column(db.Numeric(14, 2))
    total_deducted = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    remaining_balance = db.Column(db.Numeric(14, 2), nullable=False)

    # first payroll month the advance is recovered in
    deduct_from_year = db.Column(db.Integer, nullable=False)
    deduct_from_month = db.Column(db.Integer, nullable=False)

    status = db.Column(
        db.Enum(AdvanceStatus, name="salary_advance_status_enum", values_callable=_values),
        nullable=False, default=AdvanceStatus.pending,
    )
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    approved_at = db.Column(db.DateTime)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_salary_advance_due", "status", "deduct_from_year", "deduct_from_month"),
    )

    employee = db.relationship("Employee", lazy="joined")
    deductions = db.relationship("SalaryAdvanceDeduction", backref="advance", lazy="selectin",
                                 order_by="SalaryAdvanceDeduction.id")


class SalaryAdvanceDeduction(db.Model):
    __tablename__ = "salary_advance_deductions"

    id = db.Column(db.Integer, primary_key=True)
    advance_id = db.Column(db.Integer, db.ForeignKey("salary_advances.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    payroll_item_id = db.Column(db.Integer, db.ForeignKey("payroll_items.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    month = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("advance_id", "payroll_item_id", name="uq_advance_deduction_item"),
    )
