"""
Malaysian statutory contribution tables (EPF, SOCSO, EIS, PCB).

The calculators are pure: they take a wage/age and a table payload (the
``value_json`` of a :class:`RateTable` version) and return Decimals. Which
version applies to a period is decided by ``services.rate_resolver``.

value_json shapes:
- EPF:   {"employee_rate", "employer_rate_low", "employer_rate_high", "employer_low_wage_limit",
          "senior_age", "senior_employee_rate", "senior_voluntary_rate", "senior_employer_rate",
          "foreign_employee_rate", "foreign_employer_rate", "bands": [{"upto", "step"}, ...]}
- SOCSO: {"cap_wage", "cap_inclusive", "cap": {"employee", "employer"}, "category2_age",
          "steps": [[upto, employee, employer], ...]}
- EIS:   {"max_age", "cap_wage", "cap_inclusive", "cap": {...}, "steps": [...]}
- PCB:   {"individual_relief", "spouse_relief", "child_relief", "epf_relief_cap",
          "rebate_threshold", "socso_eis_relief_cap", "minimum_deduction",
          "brackets": [{"upto", "M", "R", "B1", "B2"}, ...]}
"""
from __future__ import annotations

from decimal import Decimal
from typing import Dict, Optional

from hrms_payroll.common.errors import InvalidAgeError
from hrms_payroll.common.money import D, money, ringgit_up, nearest_5_sen, ZERO


# ---------------------------------------------------------------------------
# Malaysia 2025 defaults (seeded by `flask rates seed-defaults`)
# ---------------------------------------------------------------------------

MY_2025_EPF = {
    "employee_rate": "0.11",
    "employer_rate_low": "0.13",
    "employer_rate_high": "0.12",
    "employer_low_wage_limit": "5000",
    "senior_age": 60,
    "senior_employee_rate": "0",
    "senior_voluntary_rate": "0.055",
    "senior_employer_rate": "0.04",
    "foreign_employee_rate": "0.02",
    "foreign_employer_rate": "0.02",
    # KWSP Third Schedule wage bands; above the last band the exact wage is used
    "bands": [{"upto": "5000", "step": "20"}, {"upto": "20000", "step": "100"}],
}


def _socso_steps():
    steps = [
        ["30", "0.10", "0.40"], ["50", "0.20", "0.70"], ["70", "0.30", "1.00"],
        ["100", "0.40", "1.30"], ["140", "0.60", "1.90"], ["200", "0.85", "2.65"],
    ]
    ee, er = Decimal("1.25"), Decimal("3.85")
    for upto in range(300, 6001, 100):
        steps.append([str(upto), str(ee), str(er)])
        ee += Decimal("0.50")
        er += Decimal("1.50")
    return steps


MY_2025_SOCSO = {
    "cap_wage": "6000",
    "cap_inclusive": True,
    "cap": {"employee": "29.75", "employer": "104.15"},
    "category2_age": 60,
    "steps": _socso_steps(),
}


def _eis_steps():
    steps = [
        ["30", "0.05"], ["50", "0.10"], ["70", "0.15"], ["100", "0.20"],
        ["140", "0.25"], ["200", "0.35"],
    ]
    amt = Decimal("0.50")
    for upto in range(300, 5001, 100):
        steps.append([str(upto), str(amt)])
        amt += Decimal("0.20")
    return [[u, a, a] for u, a in steps]


MY_2025_EIS = {
    "max_age": 57,
    "cap_wage": "5000",
    "cap_inclusive": False,
    "cap": {"employee": "11.90", "employer": "11.90"},
    "steps": _eis_steps(),
}

MY_2025_PCB = {
    "individual_relief": "9000",
    "spouse_relief": "4000",
    "child_relief": "2000",
    "epf_relief_cap": "4000",
    "rebate_threshold": "5000",
    "socso_eis_relief_cap": "350",
    # computed MTD below this is not deducted
    "minimum_deduction": "10",
    # B1: category 1 & 3, B2: category 2 (non-working spouse); rebates folded into B
    "brackets": [
        {"upto": "5000", "M": "0", "R": "0", "B1": "0", "B2": "0"},
        {"upto": "20000", "M": "5000", "R": "0.01", "B1": "-400", "B2": "-800"},
        {"upto": "35000", "M": "20000", "R": "0.03", "B1": "-250", "B2": "-650"},
        {"upto": "50000", "M": "35000", "R": "0.06", "B1": "600", "B2": "600"},
        {"upto": "70000", "M": "50000", "R": "0.11", "B1": "1500", "B2": "1500"},
        {"upto": "100000", "M": "70000", "R": "0.19", "B1": "3700", "B2": "3700"},
        {"upto": "400000", "M": "100000", "R": "0.25", "B1": "9400", "B2": "9400"},
        {"upto": "600000", "M": "400000", "R": "0.26", "B1": "84400", "B2": "84400"},
        {"upto": "2000000", "M": "600000", "R": "0.28", "B1": "136400", "B2": "136400"},
        {"upto": None, "M": "2000000", "R": "0.30", "B1": "528400", "B2": "528400"},
    ],
}

MY_2025 = {"EPF": MY_2025_EPF, "SOCSO": MY_2025_SOCSO, "EIS": MY_2025_EIS, "PCB": MY_2025_PCB}


# ---------------------------------------------------------------------------
# EPF
# ---------------------------------------------------------------------------

def epf_band_wage(wage, table: Optional[dict] = None) -> Decimal:
    """Upper bound of the statutory wage band containing `wage` (exact wage above the last band)."""
    t = table or MY_2025_EPF
    w = money(wage)
    if w <= 0:
        return ZERO
    for band in t.get("bands") or []:
        if w <= D(band["upto"]):
            step = D(band["step"])
            return money(ringgit_up(w / step) * step)
    return w


def epf(statutory_base, age, contribution_type: str = "normal", table: Optional[dict] = None) -> Dict[str, Decimal]:
    t = table or MY_2025_EPF
    if age is None or age < 0:
        raise InvalidAgeError(f"Invalid age: {age}")
    wage = money(statutory_base)
    if wage <= 0:
        return {"employee": ZERO, "employer": ZERO, "wage": wage}

    senior = age >= int(t["senior_age"])
    if contribution_type == "foreign":
        ee_rate, er_rate = D(t["foreign_employee_rate"]), D(t["foreign_employer_rate"])
    elif senior:
        ee_rate = D(t["senior_voluntary_rate"] if contribution_type == "senior_voluntary" else t["senior_employee_rate"])
        er_rate = D(t["senior_employer_rate"])
    else:
        ee_rate = D(t["employee_rate"])
        er_rate = D(t["employer_rate_low"] if wage <= D(t["employer_low_wage_limit"]) else t["employer_rate_high"])

    band = epf_band_wage(wage, t)
    return {
        "employee": money(ringgit_up(band * ee_rate)),
        "employer": money(ringgit_up(band * er_rate)),
        "wage": band,
    }


# ---------------------------------------------------------------------------
# SOCSO / EIS (step tables)
# ---------------------------------------------------------------------------

def _step_lookup(wage: Decimal, t: dict):
    cap_wage = D(t["cap_wage"])
    at_cap = wage >= cap_wage if t.get("cap_inclusive") else wage > cap_wage
    if at_cap:
        return D(t["cap"]["employee"]), D(t["cap"]["employer"])
    for upto, ee, er in t["steps"]:
        if wage <= D(upto):
            return D(ee), D(er)
    return D(t["cap"]["employee"]), D(t["cap"]["employer"])


def socso(gross, age, table: Optional[dict] = None) -> Dict[str, object]:
    """Category 1 (injury + invalidity) below category2_age; category 2 (employer injury scheme only) from it."""
    t = table or MY_2025_SOCSO
    if age is None or age < 0:
        raise InvalidAgeError(f"Invalid age: {age}")
    wage = money(gross)
    category = 2 if age >= int(t.get("category2_age", 60)) else 1
    if wage <= 0:
        return {"employee": ZERO, "employer": ZERO, "category": category}
    ee, er = _step_lookup(wage, t)
    if category == 2:
        ee = ZERO
    return {"employee": money(ee), "employer": money(er), "category": category}


def eis(gross, age, table: Optional[dict] = None) -> Dict[str, Decimal]:
    t = table or MY_2025_EIS
    if age is None or age < 0:
        raise InvalidAgeError(f"Invalid age: {age}")
    wage = money(gross)
    if wage <= 0 or age >= int(t.get("max_age", 57)):
        return {"employee": ZERO, "employer": ZERO}
    ee, er = _step_lookup(wage, t)
    return {"employee": money(ee), "employer": money(er)}


# ---------------------------------------------------------------------------
# PCB (MTD, computerised calculation method)
# ---------------------------------------------------------------------------

def pcb_bracket(chargeable, table: Optional[dict] = None) -> dict:
    t = table or MY_2025_PCB
    p = D(chargeable)
    for b in t["brackets"]:
        if b["upto"] is None or p <= D(b["upto"]):
            return b
    return t["brackets"][-1]


def annual_tax(chargeable, category: int = 1, table: Optional[dict] = None) -> Decimal:
    """(P - M) x R + B for the bracket holding P; category 2 uses the B2 column."""
    b = pcb_bracket(chargeable, table)
    base = D(b["B2"] if category == 2 else b["B1"])
    return money((D(chargeable) - D(b["M"])) * D(b["R"]) + base)


def pcb(annual_chargeable_income, reliefs=None, rebates=0, spouse: bool = False, children: int = 0, *,
        months_remaining: int = 0, paid_to_date=0, zakat_to_date=0, table: Optional[dict] = None) -> Decimal:
    """
    Monthly tax deduction.

    annual_chargeable_income: projected annual remuneration net of EPF (capped) and SOCSO/EIS relief
    reliefs:          annual reliefs; defaults to the individual relief
    rebates:          monthly rebates (zakat, fees) taken off the monthly figure
    spouse:           non-working spouse (adds spouse relief, category 2 base tax)
    children:         qualifying children
    months_remaining: months left in the year after the current one (n)
    paid_to_date:     PCB already deducted this year (X)
    zakat_to_date:    zakat already paid this year (Z)
    """
    t = table or MY_2025_PCB
    relief = D(t["individual_relief"]) if reliefs is None else D(reliefs)
    if spouse:
        relief += D(t["spouse_relief"])
    relief += D(t["child_relief"]) * int(children or 0)

    chargeable = money(D(annual_chargeable_income) - relief)
    if chargeable <= D(t.get("rebate_threshold", 0)):
        return ZERO

    tax = annual_tax(chargeable, 2 if spouse else 1, t)
    monthly = (tax - (D(zakat_to_date) + D(paid_to_date))) / (int(months_remaining) + 1) - D(rebates)
    if monthly <= 0:
        return ZERO
    monthly = nearest_5_sen(monthly)
    if monthly < D(t.get("minimum_deduction", 0)):
        return ZERO
    return monthly
