import enum
from datetime import datetime

from hrms_payroll.extensions import db


class ClaimStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    paid = "paid"


class ClaimType(db.Model):
    __tablename__ = "claim_types"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    code = db.Column(db.String(30), nullable=False)            # matches Claim.category (upper-case)
    name = db.Column(db.String(120), nullable=False)
    auto_approve_enabled = db.Column(db.Boolean, nullable=False, default=False)
    auto_approve_max_amount = db.Column(db.Numeric(14, 2), nullable=True)   # per-category cap
    max_per_month = db.Column(db.Numeric(14, 2), nullable=True)
    max_per_year = db.Column(db.Numeric(14, 2), nullable=True)
    require_receipt = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("company_id", "code", name="uq_claim_type_company_code"),
    )


class DepartmentClaimRestriction(db.Model):
    """Limits which claim categories a department may submit. No row => unrestricted."""
    __tablename__ = "department_claim_restrictions"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"), nullable=False, unique=True)
    allowed_categories = db.Column(db.JSON, nullable=False)


class Claim(db.Model):
    __tablename__ = "claims"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    category = db.Column(db.String(30), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    claim_date = db.Column(db.Date, nullable=False)
    description = db.Column(db.Text)
    receipt_ref = db.Column(db.String(255))
    receipt_fingerprint = db.Column(db.String(128), index=True)
    status = db.Column(
        db.Enum(ClaimStatus, name="claim_status_enum", values_callable=lambda e: [m.value for m in e]),
        nullable=False, default=ClaimStatus.pending,
    )
    auto_approved = db.Column(db.Boolean, nullable=False, default=False)
    approved_at = db.Column(db.DateTime)
    # denormalised back-pointer; PayrollItemClaim owns the link
    linked_payroll_item_id = db.Column(db.Integer, db.ForeignKey("payroll_items.id", ondelete="SET NULL"), index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    employee = db.relationship("Employee", lazy="joined")
