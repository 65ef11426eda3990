from datetime import datetime
from hrms_payroll.extensions import db

ADJUSTMENT_TYPES = (
    "bonus", "commission", "incentive", "sales", "trips", "trip_commission", "outstation",
    "other_earnings", "attendance_bonus", "other_deduction", "monthly_rebate",
)


class PayrollAdjustment(db.Model):
    """Period inputs keyed in by HR: sales figures, trip counts, bonuses, one-off deductions."""
    __tablename__ = "payroll_adjustments"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)
    period = db.Column(db.String(7), nullable=False)  # YYYY-MM

    type = db.Column(db.Enum(*ADJUSTMENT_TYPES, name="payroll_adjustment_type_enum"), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    quantity = db.Column(db.Numeric(10, 2))   # trips / outstation days
    reason = db.Column(db.String(255))

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_payroll_adj_emp_period", "employee_id", "period"),
    )

    employee = db.relationship("Employee", lazy="joined")

    @staticmethod
    def period_tag(year: int, month: int) -> str:
        return f"{year:04d}-{month:02d}"
