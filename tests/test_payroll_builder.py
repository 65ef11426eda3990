from datetime import date, time
from decimal import Decimal

import pytest

from hrms_payroll.common.errors import ConfigurationError
from hrms_payroll.extensions import db
from hrms_payroll.models.attendance import Schedule
from hrms_payroll.models.claims import Claim, ClaimStatus
from hrms_payroll.models.payroll.adjustments import PayrollAdjustment
from hrms_payroll.models.payroll.pay_run import ItemStatus
from hrms_payroll.services import clock_service, leave_ledger, payroll_run
from hrms_payroll.services.company_config import settings_for
from hrms_payroll.services.payroll_builder import build_item
from hrms_payroll.services.rate_resolver import load_rate_set

from conftest import make_employee, leave_type


def _build(company, emp, month=1, year=2025):
    run = payroll_run.create(company.id, month, year)
    item = build_item(emp, run, settings_for(company), load_rate_set(company.id, run.period_end))
    db.session.commit()
    return item


def _adjust(emp, period, **amounts):
    for kind, amount in amounts.items():
        db.session.add(PayrollAdjustment(company_id=emp.company_id, employee_id=emp.id, period=period,
                                         type=kind, amount=Decimal(amount)))
    db.session.commit()


def _balanced(item):
    assert item.net_pay == item.gross_salary - item.total_deductions


def test_salaried_high_earner(app, company):
    emp = make_employee(company, name="Lau", basic_salary_default=10000, allowance_default=500)
    item = _build(company, emp)

    assert item.status == ItemStatus.computed
    assert item.basic_salary == Decimal("10000.00")
    assert item.allowance == Decimal("500.00")
    assert item.gross_salary == Decimal("10500.00")
    # allowance is outside the statutory base by default
    assert item.statutory_base == Decimal("10000.00")
    assert (item.epf_employee, item.epf_employer) == (Decimal("1100.00"), Decimal("1200.00"))
    assert (item.socso_employee, item.socso_employer) == (Decimal("29.75"), Decimal("104.15"))
    assert (item.eis_employee, item.eis_employer) == (Decimal("11.90"), Decimal("11.90"))
    assert item.pcb == Decimal("928.45")
    assert item.calc_meta["pcb"]["K2"] == 263.0
    _balanced(item)
    assert item.calc_meta["pcb"]["n"] == 11


def test_commission_earner_with_rebate(app, company):
    emp = make_employee(company, name="Rafina", basic_salary_default=0)
    _adjust(emp, "2025-01", commission="25170", bonus="1000", monthly_rebate="5000")
    item = _build(company, emp)

    assert item.commission == Decimal("25170.00")
    assert item.bonus == Decimal("1000.00")
    assert item.statutory_base == Decimal("25170.00")
    assert item.epf_wage == Decimal("26170.00")
    assert (item.epf_employee, item.epf_employer) == (Decimal("2879.00"), Decimal("3141.00"))
    assert item.pcb == Decimal("0.00")
    _balanced(item)


def test_commission_without_rebate_is_taxed(app, company):
    emp = make_employee(company, basic_salary_default=0)
    _adjust(emp, "2025-01", commission="25170", bonus="1000")
    assert _build(company, emp).pcb > Decimal("4000")


def test_unpaid_leave_is_deducted_outside_the_statutory_base(app, company):
    emp = make_employee(company, basic_salary_default=2200)
    req = leave_ledger.request(emp, leave_type(company, "UL"), date(2025, 3, 3), date(2025, 3, 4))
    leave_ledger.approve(req)
    db.session.commit()

    item = _build(company, emp, month=3)
    assert item.unpaid_leave_days == Decimal("2")
    assert item.unpaid_leave_deduction == Decimal("200.00")
    assert item.statutory_base == Decimal("2200.00")
    assert item.gross_salary == Decimal("2200.00")
    _balanced(item)


def test_lateness_and_overtime_flow_into_the_item(app, company):
    emp = make_employee(company, basic_salary_default=3300)
    late_day, ot_day = date(2025, 3, 3), date(2025, 3, 4)
    db.session.add_all([
        Schedule(employee_id=emp.id, work_date=late_day, shift_start=time(9, 0), shift_end=time(17, 30)),
        Schedule(employee_id=emp.id, work_date=ot_day, shift_start=time(15, 0), shift_end=time(1, 30),
                 break_minutes=0),
    ])
    db.session.commit()
    clock_service.upsert_record(emp, late_day, {"clock_in_1": time(9, 15), "clock_out_2": time(17, 30)})
    clock_service.upsert_record(emp, ot_day, {"clock_in_1": time(15, 0), "clock_out_2": time(1, 30)})
    db.session.commit()

    item = _build(company, emp, month=3)
    assert item.late_minutes == 15
    assert item.attendance_deduction == Decimal("5.00")
    # 3 h at 3300 / 22 / 7.5 = RM20/h, x1.5
    assert item.ot_hours == Decimal("3.00")
    assert item.ot_amount == Decimal("90.00")
    assert item.statutory_base == Decimal("3300.00")
    _balanced(item)


def test_approved_claims_are_paid_but_not_contributory(app, company):
    emp = make_employee(company, basic_salary_default=3300)
    claim = Claim(company_id=company.id, employee_id=emp.id, category="TRAVEL", amount=Decimal("120"),
                  claim_date=date(2025, 1, 15), status=ClaimStatus.approved)
    db.session.add(claim)
    db.session.commit()

    item = _build(company, emp)
    assert item.claims_amount == Decimal("120.00")
    assert item.gross_salary == Decimal("3420.00")
    assert claim.linked_payroll_item_id == item.id
    assert [link.claim_id for link in item.claim_links] == [claim.id]
    _balanced(item)


def test_missing_age_is_a_configuration_error(app, company):
    emp = make_employee(company, date_of_birth=None, ic_number=None)
    run = payroll_run.create(company.id, 1, 2025)
    with pytest.raises(ConfigurationError):
        build_item(emp, run, settings_for(company), load_rate_set(company.id, run.period_end))


def test_mykad_supplies_the_age(app, company):
    emp = make_employee(company, date_of_birth=None, ic_number="950101-14-5678")
    item = _build(company, emp)
    assert item.calc_meta["age"] == 30


def _schedule(emp, *days):
    db.session.add_all([
        Schedule(employee_id=emp.id, work_date=d, shift_start=time(9, 0), shift_end=time(17, 30)) for d in days
    ])
    db.session.commit()


def test_scheduled_day_without_attendance_is_an_absent_day(app, company):
    emp = make_employee(company, basic_salary_default=2200)
    worked, missed, on_leave = date(2025, 3, 3), date(2025, 3, 5), date(2025, 3, 6)
    _schedule(emp, worked, missed, on_leave)
    clock_service.upsert_record(emp, worked, {"clock_in_1": time(9, 0), "clock_out_2": time(17, 30)})
    req = leave_ledger.request(emp, leave_type(company, "UL"), on_leave, on_leave)
    leave_ledger.approve(req)
    db.session.commit()

    item = _build(company, emp, month=3)
    assert item.absent_days == 1
    assert item.absent_deduction == Decimal("100.00")
    assert item.calc_meta["absent_dates"] == ["2025-03-05"]
    # the leave day is charged as unpaid leave, not again as absence
    assert item.unpaid_leave_deduction == Decimal("100.00")
    assert item.statutory_base == Decimal("2200.00")
    _balanced(item)


def test_absent_days_can_be_switched_off(app, company):
    company.payroll_config = {"deduct_absent_days": False}
    db.session.commit()
    emp = make_employee(company, basic_salary_default=2200)
    _schedule(emp, date(2025, 3, 5))

    item = _build(company, emp, month=3)
    assert item.absent_days == 0
    assert item.absent_deduction == Decimal("0.00")


def test_open_late_day_costs_nothing(app, company):
    emp = make_employee(company, basic_salary_default=3300)
    day = date(2025, 3, 5)
    _schedule(emp, day)
    clock_service.upsert_record(emp, day, {"clock_in_1": time(9, 30)})
    db.session.commit()

    item = _build(company, emp, month=3)
    assert item.late_minutes == 0
    assert item.attendance_deduction == Decimal("0.00")
    assert item.absent_days == 0
    assert item.absent_deduction == Decimal("0.00")
    assert item.worked_minutes == 0
    _balanced(item)
