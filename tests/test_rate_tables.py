from datetime import date
from decimal import Decimal

import pytest

from hrms_payroll.common.errors import InvalidAgeError, MissingRateTableError
from hrms_payroll.extensions import db
from hrms_payroll.models.payroll.rate_table import RateTable
from hrms_payroll.services import rate_tables as calc
from hrms_payroll.services.rate_resolver import load_rate_set, resolve_rate_table, seed_defaults


def test_epf_uses_wage_band_ceiling():
    # RM2,210 sits in the 2,200.01-2,220 band
    r = calc.epf(Decimal("2210"), 30)
    assert r["wage"] == Decimal("2220.00")
    assert r["employee"] == Decimal("245.00")   # 244.20 rounded up to the ringgit
    assert r["employer"] == Decimal("289.00")   # 13% below RM5,000


def test_epf_employer_rate_drops_above_5000():
    r = calc.epf(Decimal("10000"), 30)
    assert r["employee"] == Decimal("1100.00")
    assert r["employer"] == Decimal("1200.00")


def test_epf_exact_wage_above_last_band():
    r = calc.epf(Decimal("26170"), 30)
    assert r["wage"] == Decimal("26170.00")
    assert r["employee"] == Decimal("2879.00")
    assert r["employer"] == Decimal("3141.00")


def test_epf_senior_and_foreign_rates():
    senior = calc.epf(Decimal("3000"), 62)
    assert senior["employee"] == Decimal("0.00")
    assert senior["employer"] == Decimal("120.00")
    voluntary = calc.epf(Decimal("3000"), 62, "senior_voluntary")
    assert voluntary["employee"] == Decimal("165.00")
    foreign = calc.epf(Decimal("3000"), 30, "foreign")
    assert foreign["employee"] == foreign["employer"] == Decimal("60.00")


def test_zero_wage_contributes_nothing():
    assert calc.epf(0, 30)["employee"] == Decimal("0")
    assert calc.socso(0, 30)["employer"] == Decimal("0")
    assert calc.eis(0, 30)["employee"] == Decimal("0")


def test_negative_age_is_rejected():
    with pytest.raises(InvalidAgeError):
        calc.epf(Decimal("3000"), -1)
    with pytest.raises(InvalidAgeError):
        calc.socso(Decimal("3000"), None)


def test_socso_cap_is_inclusive():
    at_cap = calc.socso(Decimal("6000"), 30)
    assert (at_cap["employee"], at_cap["employer"]) == (Decimal("29.75"), Decimal("104.15"))
    above = calc.socso(Decimal("10500"), 30)
    assert (above["employee"], above["employer"]) == (Decimal("29.75"), Decimal("104.15"))


def test_socso_category_two_from_sixty():
    r = calc.socso(Decimal("3000"), 60)
    assert r["category"] == 2
    assert r["employee"] == Decimal("0.00")
    assert r["employer"] > 0


def test_eis_cap_is_exclusive_and_age_limited():
    # exactly RM5,000 still reads the last step
    last_step = calc.eis(Decimal("5000"), 30)
    assert last_step["employee"] == Decimal("9.90")
    capped = calc.eis(Decimal("5000.01"), 30)
    assert capped["employee"] == Decimal("11.90")
    assert calc.eis(Decimal("3000"), 57)["employee"] == Decimal("0")


def test_pcb_single_resident_high_earner():
    # January, RM10,000 statutory base, EPF 1,100, SOCSO+EIS 41.65
    k2 = Decimal("263")  # (4000 - 1100) / 11 rounded down to the ringgit
    annual = (Decimal("10000") - Decimal("1100")) + (Decimal("10000") - k2) * 11 - Decimal("41.65")
    value = calc.pcb(annual, months_remaining=11)
    assert value == Decimal("928.45")


def test_pcb_below_threshold_or_cancelled_by_bracket_rebate():
    assert calc.pcb(Decimal("13000")) == Decimal("0")
    # the bracket rebate outweighs the tax on RM7,000 chargeable
    assert calc.pcb(Decimal("16000"), months_remaining=11) == Decimal("0")


def test_pcb_monthly_rebate_can_zero_the_deduction():
    assert calc.pcb(Decimal("300000"), months_remaining=11) > 0
    assert calc.pcb(Decimal("300000"), rebates=Decimal("5000"), months_remaining=11) == Decimal("0")


def test_resolver_prefers_company_scope(app, company):
    override = dict(calc.MY_2025_EPF, employee_rate="0.09")
    row = RateTable(kind="EPF", key="ACME_EPF", value_json=override, effective_from=date(2025, 1, 1),
                    scope_company_id=company.id)
    db.session.add(row)
    db.session.commit()

    assert resolve_rate_table("EPF", company.id, date(2025, 3, 31)).id == row.id
    assert resolve_rate_table("EPF", None, date(2025, 3, 31)).scope_company_id is None
    rates = load_rate_set(company.id, date(2025, 3, 31))
    assert rates.epf["employee_rate"] == "0.09"
    assert set(rates.versions) == {"EPF", "SOCSO", "EIS", "PCB"}


def test_resolver_missing_table(app):
    with pytest.raises(MissingRateTableError):
        resolve_rate_table("PCB", None, date(2025, 3, 31))


def test_seed_defaults_is_idempotent(app, company):
    assert seed_defaults(date(2025, 1, 1)) == []
    assert RateTable.query.count() == 4
