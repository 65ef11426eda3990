import enum
from datetime import datetime
from decimal import Decimal

from hrms_payroll.extensions import db


class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


class LeaveType(db.Model):
    __tablename__ = "leave_types"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    code = db.Column(db.String(20), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    is_paid = db.Column(db.Boolean, nullable=False, default=True)
    default_days_per_year = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    gender_restriction = db.Column(db.Enum("male", "female", name="leave_gender_enum"), nullable=True)
    carry_forward_max = db.Column(db.Numeric(5, 2), nullable=True)   # null => no carry forward
    # service-year tiers, e.g. [{"min_years": 2, "days": 12}, {"min_years": 5, "days": 16}]
    entitlement_rules = db.Column(db.JSON)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("company_id", "code", name="uq_leave_type_company_code"),
    )

    def eligible(self, employee) -> bool:
        return not self.gender_restriction or self.gender_restriction == employee.gender


class LeaveBalance(db.Model):
    __tablename__ = "leave_balances"
    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_type_id = db.Column(db.Integer, db.ForeignKey("leave_types.id", ondelete="CASCADE"), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False)
    entitled_days = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    used_days = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    carried_forward = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("employee_id", "leave_type_id", "year", name="uq_leave_balance_year"),
    )

    leave_type = db.relationship("LeaveType")

    @property
    def available(self) -> Decimal:
        return Decimal(self.entitled_days or 0) + Decimal(self.carried_forward or 0) - Decimal(self.used_days or 0)


class LeaveRequest(db.Model):
    __tablename__ = "leave_requests"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_type_id = db.Column(db.Integer, db.ForeignKey("leave_types.id", ondelete="RESTRICT"), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    total_days = db.Column(db.Numeric(6, 2), nullable=False)
    reason = db.Column(db.Text)
    status = db.Column(
        db.Enum(LeaveStatus, name="leave_status_enum", values_callable=lambda e: [m.value for m in e]),
        nullable=False, default=LeaveStatus.pending,
    )

    applied_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    approved_at = db.Column(db.DateTime)
    rejection_reason = db.Column(db.Text)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    employee = db.relationship("Employee", backref="leave_requests")
    leave_type = db.relationship("LeaveType")


class LeaveApprovalAction(db.Model):
    __tablename__ = "leave_approval_actions"
    id = db.Column(db.Integer, primary_key=True)
    leave_request_id = db.Column(db.Integer, db.ForeignKey("leave_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    action = db.Column(db.String(20), nullable=False)  # applied|approved|rejected|cancelled|forfeited
    comment = db.Column(db.Text)
    acted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    acted_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
