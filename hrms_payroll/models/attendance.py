import enum
from datetime import datetime

from hrms_payroll.extensions import db


class AttendanceStatus(str, enum.Enum):
    present = "present"
    late = "late"
    left_early = "left_early"
    wrong_shift = "wrong_shift"
    no_schedule = "no_schedule"
    absent = "absent"
    in_progress = "in_progress"

    @property
    def payable(self) -> bool:
        return self not in (AttendanceStatus.wrong_shift, AttendanceStatus.in_progress, AttendanceStatus.absent)


def _enum_values(e):
    return [m.value for m in e]


class PublicHoliday(db.Model):
    __tablename__ = "public_holidays"
    id = db.Column(db.Integer, primary_key=True)
    # null company => national holiday for every company
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=True, index=True)
    date       = db.Column(db.Date, nullable=False, index=True)
    year       = db.Column(db.Integer, nullable=False)
    name       = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    __table_args__ = (
        db.UniqueConstraint("company_id", "date", name="uq_public_holiday_company_date"),
    )


class Schedule(db.Model):
    __tablename__ = "schedules"
    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    work_date   = db.Column(db.Date, nullable=False)
    shift_start = db.Column(db.Time, nullable=False)
    shift_end   = db.Column(db.Time, nullable=False)      # < shift_start => ends next day
    break_minutes = db.Column(db.Integer, nullable=False, default=60)
    is_rest_day = db.Column(db.Boolean, nullable=False, default=False)
    created_at  = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    __table_args__ = (
        db.UniqueConstraint("employee_id", "work_date", name="uq_schedule_employee_date"),
    )

    employee = db.relationship("Employee", lazy="joined")


class ClockRecord(db.Model):
    __tablename__ = "clock_records"
    id = db.Column(db.Integer, primary_key=True)
    company_id  = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    work_date   = db.Column(db.Date, nullable=False)

    clock_in_1  = db.Column(db.Time)
    clock_out_1 = db.Column(db.Time)   # break start
    clock_in_2  = db.Column(db.Time)   # break end
    clock_out_2 = db.Column(db.Time)

    total_work_minutes = db.Column(db.Integer, nullable=False, default=0)
    total_work_hours   = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    ot_minutes  = db.Column(db.Integer, nullable=False, default=0)
    ot_hours    = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    ot_flagged  = db.Column(db.Boolean, nullable=False, default=False)
    ot_approved = db.Column(db.Boolean, nullable=True)   # None pending / True approved / False rejected

    attendance_status = db.Column(
        db.Enum(AttendanceStatus, name="attendance_status_enum", values_callable=_enum_values),
        nullable=False, default=AttendanceStatus.in_progress,
    )
    late_minutes     = db.Column(db.Integer, nullable=False, default=0)
    early_minutes    = db.Column(db.Integer, nullable=False, default=0)
    deduction_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    notes = db.Column(db.JSON)    # warnings from time arithmetic

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("employee_id", "work_date", name="uq_clock_employee_date"),
    )

    employee = db.relationship("Employee", lazy="joined")
