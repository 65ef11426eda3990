"""
Per-company settings.

Companies store only their overrides (``payroll_config`` and
``automation_config`` JSON columns). Every reader goes through
``merge_settings`` so defaults live in exactly one place.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields, asdict, replace
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from hrms_payroll.common.errors import ValidationError

SETTINGS_VERSION = 1


@dataclass(frozen=True)
class CompanySettings:
    version: int = SETTINGS_VERSION

    # time & proration
    work_hours_per_day: Decimal = Decimal("7.5")
    work_days_per_month: Decimal = Decimal("22")
    standard_minutes: int = 450
    part_time_hourly_rate: Decimal = Decimal("0")
    part_time_ph_multiplier: Decimal = Decimal("2.0")

    # statutory base membership
    statutory_on_allowance: bool = False
    statutory_on_ot: bool = False
    statutory_on_ph_pay: bool = False
    statutory_on_incentive: bool = False
    statutory_on_commission: bool = True
    epf_on_bonus: bool = True

    # overtime
    ot_requires_approval: bool = False
    ot_normal_multiplier: Decimal = Decimal("1.5")
    ot_rest_day_multiplier: Decimal = Decimal("1.5")
    ot_ph_multiplier: Decimal = Decimal("2.0")
    ot_ph_after_hours_multiplier: Optional[Decimal] = Decimal("3.0")

    # attendance policy
    grace_minutes: int = 10
    wrong_shift_tolerance_minutes: int = 120
    # scheduled working days with no attendance and no approved leave
    deduct_absent_days: bool = True

    # payroll automation
    payroll_auto_generate: bool = False
    payroll_auto_generate_day: int = 25
    payroll_auto_approve: bool = False
    payroll_variance_threshold: Decimal = Decimal("0.05")
    payroll_lock_after_days: int = 0

    # claims automation
    claims_auto_approve: bool = True
    claims_auto_approve_categories: Tuple[str, ...] = field(default_factory=tuple)
    claims_auto_approve_max_amount: Decimal = Decimal("500")
    claims_require_receipt_above: Decimal = Decimal("0")
    outstation_meal_cap: Decimal = Decimal("20")
    duplicate_window_days: int = 180

    @property
    def minutes_per_month(self) -> Decimal:
        return self.work_days_per_month * self.work_hours_per_day * 60

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["claims_auto_approve_categories"] = list(self.claims_auto_approve_categories)
        return out


DEFAULTS = CompanySettings()

# keys that live in automation_config rather than payroll_config
AUTOMATION_KEYS = frozenset({
    "payroll_auto_generate", "payroll_auto_generate_day", "payroll_auto_approve",
    "payroll_variance_threshold", "payroll_lock_after_days",
    "claims_auto_approve", "claims_auto_approve_categories", "claims_auto_approve_max_amount",
    "claims_require_receipt_above", "outstation_meal_cap", "duplicate_window_days",
})

_BOOL_TRUE = {"1", "true", "yes", "on", "y"}
_BOOL_FALSE = {"0", "false", "no", "off", "n", ""}


def _coerce(name: str, kind, raw):
    if raw is None:
        return None
    try:
        if kind is bool:
            if isinstance(raw, bool):
                return raw
            s = str(raw).strip().lower()
            if s in _BOOL_TRUE:
                return True
            if s in _BOOL_FALSE:
                return False
            raise ValueError(raw)
        if kind is int:
            return int(raw)
        if kind is Decimal:
            return Decimal(str(raw))
        if kind is tuple:
            if isinstance(raw, str):
                raw = [x for x in raw.split(",")]
            return tuple(str(x).strip().upper() for x in raw if str(x).strip())
    except (ValueError, TypeError, ArithmeticError):
        raise ValidationError(f"Invalid value for setting '{name}': {raw!r}")
    return raw


_KINDS = {
    "version": int,
    "standard_minutes": int, "grace_minutes": int, "wrong_shift_tolerance_minutes": int,
    "payroll_auto_generate_day": int, "payroll_lock_after_days": int, "duplicate_window_days": int,
    "claims_auto_approve_categories": tuple,
}


def _kind_of(f) -> type:
    if f.name in _KINDS:
        return _KINDS[f.name]
    if isinstance(f.default, bool):
        return bool
    return Decimal


def merge_settings(payroll_config: Optional[dict] = None,
                   automation_config: Optional[dict] = None) -> CompanySettings:
    """The single merge: defaults <- payroll_config <- automation_config. Unknown keys are ignored."""
    overrides: Dict[str, Any] = {}
    known = {f.name: f for f in fields(CompanySettings)}
    for source in (payroll_config or {}, automation_config or {}):
        if not isinstance(source, dict):
            raise ValidationError("Settings must be an object")
        for key, raw in source.items():
            f = known.get(key)
            if f is None or key == "version":
                continue
            value = _coerce(key, _kind_of(f), raw)
            if value is None and key != "ot_ph_after_hours_multiplier":
                continue
            overrides[key] = value

    s = replace(DEFAULTS, **overrides)
    if s.work_days_per_month <= 0 or s.work_hours_per_day <= 0:
        raise ValidationError("work_days_per_month and work_hours_per_day must be positive")
    if not 1 <= s.payroll_auto_generate_day <= 28:
        raise ValidationError("payroll_auto_generate_day must be between 1 and 28")
    return s


def settings_for(company) -> CompanySettings:
    return merge_settings(company.payroll_config, company.automation_config)


def split_overrides(values: dict) -> Tuple[dict, dict]:
    """Route incoming keys to (payroll_config, automation_config) after validation."""
    merge_settings(values)  # raises on bad input
    known = {f.name for f in fields(CompanySettings)} - {"version"}
    payroll, automation = {}, {}
    for k, v in values.items():
        if k not in known:
            continue
        (automation if k in AUTOMATION_KEYS else payroll)[k] = v
    return payroll, automation
