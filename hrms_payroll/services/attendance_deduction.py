from __future__ import annotations

from dataclasses import dataclass
from datetime import time as _time
from decimal import Decimal
from typing import Optional

from hrms_payroll.common.money import D, money, ZERO
from hrms_payroll.models.attendance import AttendanceStatus
from hrms_payroll.services.time_arithmetic import span

DAY = 24 * 60


def _mins(t: _time) -> int:
    return t.hour * 60 + t.minute


def _signed_offset(actual: _time, planned: _time) -> int:
    """actual - planned in minutes, folded into [-12h, +12h) so 00:10 vs 23:50 is +20."""
    diff = (_mins(actual) - _mins(planned)) % DAY
    return diff - DAY if diff >= DAY // 2 else diff


def shift_length(schedule) -> int:
    """Scheduled minutes start->end; an end before the start is always next day."""
    return (_mins(schedule.shift_end) - _mins(schedule.shift_start)) % DAY


def minute_rate(basic_salary, days_per_month, hours_per_day) -> Decimal:
    return D(basic_salary) / D(days_per_month) / D(hours_per_day) / 60


@dataclass
class Assessment:
    status: AttendanceStatus
    late_minutes: int = 0
    early_minutes: int = 0
    deduction_amount: Decimal = ZERO
    rejection_reason: Optional[str] = None

    @property
    def payable(self) -> bool:
        return self.status.payable

    def as_dict(self):
        return {
            "attendance_status": self.status.value,
            "late_minutes": self.late_minutes,
            "early_minutes": self.early_minutes,
            "deduction_amount": self.deduction_amount,
            "rejection_reason": self.rejection_reason,
        }


def assess(clock, schedule, basic_salary, policy) -> Assessment:
    """
    Late/early against the schedule.

    `policy` is a CompanySettings (grace_minutes, wrong_shift_tolerance_minutes,
    work_days_per_month, work_hours_per_day). Lateness within grace is ignored;
    past grace every late minute counts. A clock-in further than the tolerance
    from the shift start is a wrong shift: rejected, never deducted.
    """
    if schedule is None:
        return Assessment(status=AttendanceStatus.no_schedule)
    if clock is None or clock.clock_in_1 is None:
        return Assessment(status=AttendanceStatus.absent)

    offset = _signed_offset(clock.clock_in_1, schedule.shift_start)
    if abs(offset) > int(policy.wrong_shift_tolerance_minutes):
        return Assessment(
            status=AttendanceStatus.wrong_shift,
            rejection_reason=(
                f"Clock-in {clock.clock_in_1.strftime('%H:%M')} is {abs(offset)} min from scheduled start "
                f"{schedule.shift_start.strftime('%H:%M')}"
            ),
        )

    late = offset if offset > int(policy.grace_minutes) else 0

    early = 0
    if clock.clock_out_2 is not None:
        left_at = offset + span(clock.clock_in_1, clock.clock_out_2)
        early = max(0, shift_length(schedule) - left_at)

    if late:
        status = AttendanceStatus.late
    elif early:
        status = AttendanceStatus.left_early
    else:
        status = AttendanceStatus.present

    deduction = ZERO
    if late or early:
        rate = minute_rate(basic_salary or 0, policy.work_days_per_month, policy.work_hours_per_day)
        deduction = money((late + early) * rate)

    return Assessment(status=status, late_minutes=late, early_minutes=early, deduction_amount=deduction)
