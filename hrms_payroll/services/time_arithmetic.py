"""
Minute/hour math over a day's clock fields.

A clock record carries up to four times: clock_in_1, clock_out_1 (break
start), clock_in_2 (break end) and clock_out_2. Results are whole minutes plus
an hours figure rounded to two decimals; the two always agree within a minute.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time as _time
from decimal import Decimal
from typing import List, Optional

from hrms_payroll.common.money import D, money, floor_to

STANDARD_MINUTES = 450          # 7.5h
OT_MIN_MINUTES = 60
OT_STEP_MINUTES = 30

# a span is read as crossing midnight only when it starts in the afternoon/evening
# and ends in the small hours
OVERNIGHT_END_BEFORE = _time(6, 0)
OVERNIGHT_START_AFTER = _time(12, 0)

STATE_COMPLETE = "complete"
STATE_IN_PROGRESS = "in_progress"
STATE_ABSENT = "absent"


def _mins(t: _time) -> int:
    return t.hour * 60 + t.minute


def span(a: _time, b: _time) -> int:
    """Minutes from a to b. Overnight only when b < 06:00 and a > 12:00, else never negative."""
    ma, mb = _mins(a), _mins(b)
    if mb < ma and b < OVERNIGHT_END_BEFORE and a > OVERNIGHT_START_AFTER:
        return mb + 24 * 60 - ma
    return max(0, mb - ma)


def hours(minutes) -> Decimal:
    return money(D(minutes) / 60)


def minutes_hours_agree(minutes, hrs, tolerance: int = 1) -> bool:
    return abs(D(minutes) - D(hrs) * 60) <= tolerance


def ot_minutes(total_minutes: int, part_time: bool = False, standard: int = STANDARD_MINUTES) -> int:
    """0 unless the excess over `standard` is at least an hour; then floored to 30-minute steps."""
    if part_time:
        return 0
    raw = max(0, int(total_minutes) - int(standard))
    if raw < OT_MIN_MINUTES:
        return 0
    return int(floor_to(raw, OT_STEP_MINUTES))


@dataclass(frozen=True)
class BreakPolicy:
    # deducted only when the record is a single span with no break punches
    unrecorded_break_minutes: int = 0
    standard_minutes: int = STANDARD_MINUTES

    @classmethod
    def from_schedule(cls, schedule, deduct_unrecorded: bool = False, standard_minutes: int = STANDARD_MINUTES):
        mins = int(schedule.break_minutes or 0) if (schedule is not None and deduct_unrecorded) else 0
        return cls(unrecorded_break_minutes=mins, standard_minutes=standard_minutes)


@dataclass
class WorkResult:
    state: str
    total_minutes: int = 0
    ot_minutes: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def total_hours(self) -> Decimal:
        return hours(self.total_minutes)

    @property
    def ot_hours(self) -> Decimal:
        return hours(self.ot_minutes)

    def as_dict(self):
        return {
            "state": self.state,
            "total_minutes": self.total_minutes,
            "total_hours": self.total_hours,
            "ot_minutes": self.ot_minutes,
            "ot_hours": self.ot_hours,
            "warnings": list(self.warnings),
        }


def compute_work(clock, break_policy: Optional[BreakPolicy] = None, part_time: bool = False) -> WorkResult:
    """
    `clock` is anything with clock_in_1/clock_out_1/clock_in_2/clock_out_2 attributes.

    1. all four present      -> span(in1, out1) + span(in2, out2)
    2. in1 and out2 only     -> span(in1, out2) less any unrecorded break the policy asks for
    3. out2 missing          -> in_progress, nothing payable
    A half-recorded break (only one of out1/in2) is read as case 2 with a warning.
    """
    policy = break_policy or BreakPolicy()
    in1, out1 = clock.clock_in_1, clock.clock_out_1
    in2, out2 = clock.clock_in_2, clock.clock_out_2

    if in1 is None:
        return WorkResult(state=STATE_ABSENT)
    if out2 is None:
        return WorkResult(state=STATE_IN_PROGRESS)

    warnings: List[str] = []
    if out1 is not None and in2 is not None:
        first, second = span(in1, out1), span(in2, out2)
        if (first == 0 and out1 != in1) or (second == 0 and out2 != in2):
            warnings.append("negative_span")
        total = first + second
    else:
        if (out1 is None) != (in2 is None):
            warnings.append("break_unpaired")
        total = span(in1, out2)
        if total == 0 and out2 != in1:
            warnings.append("negative_span")
        total = max(0, total - int(policy.unrecorded_break_minutes or 0))

    return WorkResult(
        state=STATE_COMPLETE,
        total_minutes=total,
        ot_minutes=ot_minutes(total, part_time, policy.standard_minutes),
        warnings=warnings,
    )
