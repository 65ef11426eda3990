from datetime import datetime

from sqlalchemy.sql import func

from hrms_payroll.extensions import db


class Company(db.Model):
    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    # which organisational unit binds payroll structures
    grouping_type = db.Column(db.Enum("department", "outlet", name="company_grouping_enum"),
                              nullable=False, default="department")
    registration_no = db.Column(db.String(50))
    epf_employer_no = db.Column(db.String(50))
    income_tax_employer_no = db.Column(db.String(50))
    address = db.Column(db.Text)

    # overrides only; merged over defaults by services.company_config
    payroll_config = db.Column(db.JSON)
    automation_config = db.Column(db.JSON)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    deleted_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def soft_delete(self):
        self.is_active = False
        self.deleted_at = func.now()


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    payroll_structure_id = db.Column(db.Integer, db.ForeignKey("payroll_structures.id", ondelete="SET NULL"))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_department_company_name"),
    )

    company = db.relationship("Company", backref=db.backref("departments", lazy="dynamic"))
    payroll_structure = db.relationship("PayrollStructure", lazy="joined")


class Outlet(db.Model):
    """Retail outlet; used instead of departments when company.grouping_type == 'outlet'."""
    __tablename__ = "outlets"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    payroll_structure_id = db.Column(db.Integer, db.ForeignKey("payroll_structures.id", ondelete="SET NULL"))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_outlet_company_name"),
    )

    company = db.relationship("Company", backref=db.backref("outlets", lazy="dynamic"))
    payroll_structure = db.relationship("PayrollStructure", lazy="joined")
