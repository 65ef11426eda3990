import re
from datetime import datetime, date

from hrms_payroll.extensions import db


def normalize_ic(ic) -> str | None:
    """MyKad / passport number without separators, upper-cased."""
    if not ic:
        return None
    return re.sub(r"[^0-9A-Za-z]", "", str(ic)).upper() or None


class Employee(db.Model):
    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    company_id    = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=True)
    outlet_id     = db.Column(db.Integer, db.ForeignKey("outlets.id", ondelete="RESTRICT"), nullable=True)
    user_id       = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, unique=True)

    employee_code = db.Column(db.String(32), nullable=False)    # unique per company
    name          = db.Column(db.String(160), nullable=False)
    email         = db.Column(db.String(255), nullable=True)
    designation   = db.Column(db.String(120), nullable=True)

    ic_number     = db.Column(db.String(30), nullable=True)
    normalized_ic = db.Column(db.String(30), nullable=True, unique=True)
    passport_no   = db.Column(db.String(30), nullable=True)
    tax_no        = db.Column(db.String(30), nullable=True)
    date_of_birth = db.Column(db.Date, nullable=True)
    gender        = db.Column(db.Enum("male", "female", name="employee_gender_enum"), nullable=True)

    employment_type = db.Column(db.Enum("probation", "confirmed", name="employment_type_enum"),
                                nullable=False, default="probation")
    work_type       = db.Column(db.Enum("full_time", "part_time", name="work_type_enum"),
                                nullable=False, default="full_time")
    residency_status = db.Column(db.Enum("citizen", "permanent_resident", "foreign", name="residency_status_enum"),
                                 nullable=False, default="citizen")
    epf_contribution_type = db.Column(db.Enum("normal", "senior_voluntary", "foreign", name="epf_contribution_enum"),
                                      nullable=False, default="normal")

    # PCB reliefs
    marital_status  = db.Column(db.Enum("single", "married", name="marital_status_enum"), nullable=False, default="single")
    spouse_working  = db.Column(db.Boolean, nullable=False, default=True)
    children_count  = db.Column(db.Integer, nullable=False, default=0)

    join_date        = db.Column(db.Date, nullable=False)
    last_working_day = db.Column(db.Date, nullable=True)
    status           = db.Column(db.String(16), default="active", nullable=False)   # active/inactive

    basic_salary_default = db.Column(db.Numeric(14, 2), nullable=True)
    allowance_default    = db.Column(db.Numeric(14, 2), nullable=True)
    # per-employee overrides over the department payroll structure
    ot_rate          = db.Column(db.Numeric(10, 2), nullable=True)   # hourly OT base
    commission_rate  = db.Column(db.Numeric(7, 4), nullable=True)    # fraction of sales
    fixed_ot_amount  = db.Column(db.Numeric(14, 2), nullable=True)
    per_trip_rate    = db.Column(db.Numeric(10, 2), nullable=True)
    outstation_rate  = db.Column(db.Numeric(10, 2), nullable=True)   # per outstation day
    outstation_meal_allowance = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("company_id", "employee_code", name="uq_employee_company_code"),
        db.Index("ix_emp_company_id", "company_id"),
        db.Index("ix_emp_dept_id", "department_id"),
        db.Index("ix_emp_outlet_id", "outlet_id"),
    )

    company    = db.relationship("Company", lazy="joined")
    department = db.relationship("Department", lazy="joined")
    outlet     = db.relationship("Outlet", lazy="joined")

    def __init__(self, **kw):
        super().__init__(**kw)
        if self.ic_number and not self.normalized_ic:
            self.normalized_ic = normalize_ic(self.ic_number)

    @property
    def is_part_time(self) -> bool:
        return self.work_type == "part_time"

    def grouping(self):
        """Department or outlet, following the company's grouping type."""
        if self.company is not None and self.company.grouping_type == "outlet":
            return self.outlet
        return self.department

    def birth_date(self) -> date | None:
        """Explicit DOB, else decoded from a 12-digit MyKad (YYMMDD...)."""
        if self.date_of_birth:
            return self.date_of_birth
        ic = normalize_ic(self.ic_number)
        if not ic or len(ic) != 12 or not ic.isdigit():
            return None
        yy, mm, dd = int(ic[0:2]), int(ic[2:4]), int(ic[4:6])
        century = 2000 if yy <= (date.today().year % 100) else 1900
        try:
            return date(century + yy, mm, dd)
        except ValueError:
            return None

    def age_on(self, on: date) -> int | None:
        dob = self.birth_date()
        if dob is None:
            return None
        return on.year - dob.year - ((on.month, on.day) < (dob.month, dob.day))

    def years_of_service(self, on: date) -> int:
        j = self.join_date
        return max(0, on.year - j.year - ((on.month, on.day) < (j.month, j.day)))

    def primary_bank_account(self):
        accounts = list(self.bank_accounts or [])
        for a in accounts:
            if a.is_primary:
                return a
        return accounts[0] if accounts else None
