from datetime import date, time
from decimal import Decimal
from types import SimpleNamespace

from hrms_payroll.extensions import db
from hrms_payroll.models.attendance import ClockRecord, Schedule, AttendanceStatus
from hrms_payroll.services import clock_service
from hrms_payroll.services.attendance_deduction import assess
from hrms_payroll.services.company_config import DEFAULTS
from hrms_payroll.services.time_arithmetic import (
    span, ot_minutes, compute_work, minutes_hours_agree, BreakPolicy, STATE_IN_PROGRESS, STATE_ABSENT,
)

from conftest import make_employee


def _clock(in1=None, out1=None, in2=None, out2=None):
    return SimpleNamespace(clock_in_1=in1, clock_out_1=out1, clock_in_2=in2, clock_out_2=out2)


def _shift(start, end, brk=60):
    return SimpleNamespace(shift_start=start, shift_end=end, break_minutes=brk)


# ---------- time arithmetic ----------

def test_span_crosses_midnight_only_for_evening_to_small_hours():
    assert span(time(15, 0), time(1, 30)) == 630
    assert span(time(9, 0), time(8, 0)) == 0
    assert span(time(9, 0), time(17, 30)) == 510


def test_ot_rounds_down_to_half_hours_after_one_hour():
    assert ot_minutes(450 + 59) == 0
    assert ot_minutes(450 + 60) == 60
    assert ot_minutes(450 + 89) == 60
    assert ot_minutes(450 + 95) == 90
    assert ot_minutes(600, part_time=True) == 0


def test_overnight_driver_single_span():
    work = compute_work(_clock(in1=time(15, 0), out2=time(1, 30)))
    assert work.total_minutes == 630
    assert work.ot_minutes == 180
    assert work.total_hours == Decimal("10.50")
    assert work.ot_hours == Decimal("3.00")


def test_four_punches_sum_both_halves():
    work = compute_work(_clock(time(9, 0), time(13, 0), time(14, 0), time(18, 0)))
    assert work.total_minutes == 480
    assert work.ot_minutes == 0
    assert work.warnings == []


def test_half_recorded_break_is_read_as_one_span():
    work = compute_work(_clock(in1=time(9, 0), out1=time(13, 0), out2=time(17, 0)))
    assert work.total_minutes == 480
    assert "break_unpaired" in work.warnings


def test_unrecorded_break_deducted_only_when_asked():
    c = _clock(in1=time(9, 0), out2=time(18, 0))
    assert compute_work(c).total_minutes == 540
    policy = BreakPolicy.from_schedule(_shift(time(9, 0), time(18, 0)), deduct_unrecorded=True)
    assert compute_work(c, policy).total_minutes == 480


def test_incomplete_days():
    assert compute_work(_clock(in1=time(9, 0))).state == STATE_IN_PROGRESS
    assert compute_work(_clock()).state == STATE_ABSENT


def test_minutes_and_hours_always_agree():
    for total in range(0, 24 * 60, 7):
        work = compute_work(_clock(in1=time(0, 0), out2=time(total // 60, total % 60)))
        assert minutes_hours_agree(work.total_minutes, work.total_hours)
        assert minutes_hours_agree(work.ot_minutes, work.ot_hours)
        assert work.ot_minutes <= max(0, work.total_minutes - 450)


# ---------- attendance deduction ----------

def test_wrong_shift_is_rejected_not_deducted():
    result = assess(_clock(in1=time(15, 2)), _shift(time(9, 0), time(17, 30)), Decimal("3300"), DEFAULTS)
    assert result.status == AttendanceStatus.wrong_shift
    assert result.deduction_amount == 0
    assert "362 min" in result.rejection_reason
    assert not result.payable


def test_lateness_within_grace_is_ignored():
    result = assess(_clock(in1=time(9, 8), out2=time(17, 30)), _shift(time(9, 0), time(17, 30)),
                    Decimal("3300"), DEFAULTS)
    assert result.status == AttendanceStatus.present
    assert result.late_minutes == 0


def test_lateness_past_grace_counts_every_minute():
    result = assess(_clock(in1=time(9, 15), out2=time(17, 30)), _shift(time(9, 0), time(17, 30)),
                    Decimal("3300"), DEFAULTS)
    assert result.status == AttendanceStatus.late
    assert result.late_minutes == 15
    # 3300 / 22 / 7.5 / 60 = 0.3333 per minute
    assert result.deduction_amount == Decimal("5.00")


def test_leaving_early_on_an_overnight_shift():
    result = assess(_clock(in1=time(22, 0), out2=time(5, 0)), _shift(time(22, 0), time(6, 0)),
                    Decimal("3300"), DEFAULTS)
    assert result.status == AttendanceStatus.left_early
    assert result.early_minutes == 60


def test_overnight_shift_ending_after_six_leaves_early_for_the_whole_shift():
    result = assess(_clock(in1=time(22, 0), out2=time(6, 30)), _shift(time(22, 0), time(7, 0)),
                    Decimal("3300"), DEFAULTS)
    assert result.status == AttendanceStatus.left_early
    assert result.early_minutes == 540
    assert result.deduction_amount == Decimal("180.00")


def test_no_schedule():
    assert assess(_clock(in1=time(9, 0)), None, Decimal("3300"), DEFAULTS).status == AttendanceStatus.no_schedule


# ---------- clock service ----------

def _schedule(emp, day, start, end, brk=60):
    db.session.add(Schedule(employee_id=emp.id, work_date=day, shift_start=start, shift_end=end, break_minutes=brk))
    db.session.commit()


def test_wrong_shift_first_punch_is_not_stored(app, company):
    emp = make_employee(company)
    day = date(2025, 3, 3)
    _schedule(emp, day, time(9, 0), time(17, 30))

    result = clock_service.clock(emp, day, time(15, 2))
    assert result["persisted"] is False
    assert result["attendance_status"] == "wrong_shift"
    assert result["schedule"]["shift_start"] == "09:00"
    assert ClockRecord.query.filter_by(employee_id=emp.id).count() == 0


def test_punches_fill_in_order(app, company):
    emp = make_employee(company)
    day = date(2025, 3, 3)
    _schedule(emp, day, time(9, 0), time(17, 30))

    assert clock_service.clock(emp, day, time(9, 0))["attendance_status"] == "in_progress"
    clock_service.clock(emp, day, time(17, 30))
    rec = ClockRecord.query.filter_by(employee_id=emp.id, work_date=day).one()
    assert (rec.clock_in_1, rec.clock_out_2) == (time(9, 0), time(17, 30))
    assert rec.attendance_status == AttendanceStatus.present
    assert rec.total_work_minutes == 510

    clock_service.clock(emp, day, time(18, 0))
    rec = ClockRecord.query.filter_by(employee_id=emp.id, work_date=day).one()
    assert (rec.clock_out_1, rec.clock_in_2, rec.clock_out_2) == (time(17, 30), time(18, 0), None)


def test_overnight_record_upsert(app, company):
    emp = make_employee(company)
    day = date(2025, 3, 3)
    _schedule(emp, day, time(15, 0), time(1, 30), brk=0)

    rec = clock_service.upsert_record(emp, day, {"clock_in_1": time(15, 0), "clock_out_2": time(1, 30)})
    db.session.commit()
    assert rec.total_work_minutes == 630
    assert rec.total_work_hours == Decimal("10.50")
    assert rec.ot_minutes == 180
    assert rec.ot_hours == Decimal("3.00")
    assert rec.ot_flagged is True
    assert rec.attendance_status == AttendanceStatus.present


def test_wrong_shift_record_pays_nothing(app, company):
    emp = make_employee(company)
    day = date(2025, 3, 3)
    _schedule(emp, day, time(9, 0), time(17, 30))

    rec = clock_service.upsert_record(emp, day, {"clock_in_1": time(15, 2), "clock_out_2": time(23, 30)})
    assert rec.attendance_status == AttendanceStatus.wrong_shift
    assert rec.total_work_minutes == 0
    assert rec.ot_minutes == 0
    assert rec.deduction_amount == 0


def test_late_open_day_is_in_progress_and_deducts_nothing(app, company):
    emp = make_employee(company)
    day = date(2025, 3, 3)
    _schedule(emp, day, time(9, 0), time(17, 30))

    rec = clock_service.upsert_record(emp, day, {"clock_in_1": time(9, 30)})
    assert rec.attendance_status == AttendanceStatus.in_progress
    assert rec.attendance_status.payable is False
    assert (rec.late_minutes, rec.early_minutes) == (0, 0)
    assert rec.deduction_amount == 0

    rec = clock_service.upsert_record(emp, day, {"clock_in_1": time(9, 30), "clock_out_2": time(17, 30)})
    assert rec.attendance_status == AttendanceStatus.late
    assert rec.late_minutes == 30
    assert rec.deduction_amount == Decimal("10.00")
