from decimal import Decimal

import pytest

from hrms_payroll.common.errors import ValidationError
from hrms_payroll.services.company_config import DEFAULTS, merge_settings, split_overrides, settings_for


def test_defaults():
    assert DEFAULTS.grace_minutes == 10
    assert DEFAULTS.wrong_shift_tolerance_minutes == 120
    assert DEFAULTS.minutes_per_month == Decimal("9900")
    assert DEFAULTS.statutory_on_commission is True
    assert DEFAULTS.statutory_on_allowance is False


def test_automation_overrides_payroll_overrides_defaults():
    s = merge_settings(
        {"grace_minutes": "5", "statutory_on_allowance": "yes", "unknown_key": 1},
        {"claims_auto_approve_categories": "meal, parking", "claims_auto_approve_max_amount": 300},
    )
    assert s.grace_minutes == 5
    assert s.statutory_on_allowance is True
    assert s.claims_auto_approve_categories == ("MEAL", "PARKING")
    assert s.claims_auto_approve_max_amount == Decimal("300")
    assert s.work_days_per_month == Decimal("22")


@pytest.mark.parametrize("bad", [
    {"grace_minutes": "ten"},
    {"statutory_on_ot": "maybe"},
    {"work_days_per_month": 0},
    {"payroll_auto_generate_day": 31},
])
def test_invalid_values_are_refused(bad):
    with pytest.raises(ValidationError):
        merge_settings(bad)


def test_split_routes_keys_to_their_column():
    payroll, automation = split_overrides({
        "grace_minutes": 15, "payroll_auto_generate": True, "outstation_meal_cap": "25", "nope": 1,
    })
    assert payroll == {"grace_minutes": 15}
    assert automation == {"payroll_auto_generate": True, "outstation_meal_cap": "25"}


def test_settings_for_company(app, company):
    company.payroll_config = {"work_hours_per_day": "8"}
    assert settings_for(company).minutes_per_month == Decimal("10560")
