from datetime import datetime
from hrms_payroll.extensions import db


class EAForm(db.Model):
    __tablename__ = "ea_forms"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False)

    form_data = db.Column(db.JSON, nullable=False)
    total_employment_income = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_epf = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_pcb = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    # digest of the source items; unchanged digest => stored snapshot wins
    source_hash = db.Column(db.String(64), nullable=False)
    generated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("employee_id", "year", name="uq_ea_form_employee_year"),
    )

    employee = db.relationship("Employee", lazy="joined")


class BenefitInKind(db.Model):
    __tablename__ = "benefits_in_kind"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False)
    value = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
