from datetime import datetime
from hrms_payroll.extensions import db

EARNING_COMPONENTS = (
    "basic_salary", "allowance", "commission", "bonus", "incentive",
    "trip_commission", "outstation", "ot_amount", "ph_pay",
    "attendance_bonus", "other_earnings",
)
CALC_MODES = ("fixed", "percentage", "hourly", "per_trip", "higher_of")


class PayrollStructure(db.Model):
    __tablename__ = "payroll_structures"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    code = db.Column(db.String(40), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("company_id", "code", name="uq_payroll_structure_company_code"),
    )

    components = db.relationship(
        "PayrollStructureComponent",
        order_by="PayrollStructureComponent.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def enabled_components(self):
        return [c for c in self.components if c.enabled]


class PayrollStructureComponent(db.Model):
    __tablename__ = "payroll_structure_components"

    id = db.Column(db.Integer, primary_key=True)
    structure_id = db.Column(db.Integer, db.ForeignKey("payroll_structures.id", ondelete="CASCADE"), nullable=False, index=True)
    component = db.Column(db.Enum(*EARNING_COMPONENTS, name="earning_component_enum"), nullable=False)
    mode = db.Column(db.Enum(*CALC_MODES, name="component_mode_enum"), nullable=False, default="fixed")
    position = db.Column(db.Integer, nullable=False, default=0)
    enabled = db.Column(db.Boolean, nullable=False, default=True)

    amount = db.Column(db.Numeric(14, 2))   # fixed default (employee value wins)
    rate = db.Column(db.Numeric(10, 4))     # percentage of sales / hourly / per-trip rate
    floor = db.Column(db.Numeric(14, 2))    # higher_of floor when the employee has no basic

    __table_args__ = (
        db.UniqueConstraint("structure_id", "component", name="uq_structure_component"),
    )
