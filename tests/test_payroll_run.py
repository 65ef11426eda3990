from datetime import date, timedelta
from decimal import Decimal

import pytest

from hrms_payroll.common.deadline import Deadline
from hrms_payroll.common.errors import (
    RunExistsError, ValidationError, InvalidTransitionError, DeadlineExceededError,
)
from hrms_payroll.extensions import db
from hrms_payroll.models.audit import AuditLog
from hrms_payroll.models.claims import Claim, ClaimStatus
from hrms_payroll.models.payroll.pay_run import PayrollRun, PayrollItem, RunStatus, ItemStatus
from hrms_payroll.services import audit, payroll_run

from conftest import make_employee


def _generated(company, month=1, year=2025):
    run = payroll_run.create(company.id, month, year)
    result = payroll_run.generate(run.id)
    db.session.commit()
    return run, result


def _claim(emp, amount, status=ClaimStatus.approved, claim_date=date(2025, 1, 15)):
    c = Claim(company_id=emp.company_id, employee_id=emp.id, category="TRAVEL", amount=Decimal(amount),
              claim_date=claim_date, status=status)
    db.session.add(c)
    db.session.commit()
    return c


def test_one_run_per_company_month(app, company):
    run = payroll_run.create(company.id, 1, 2025)
    db.session.commit()
    assert run.status == RunStatus.draft
    assert (run.period_start, run.period_end) == (date(2025, 1, 1), date(2025, 1, 31))
    with pytest.raises(RunExistsError) as exc:
        payroll_run.create(company.id, 1, 2025)
    assert exc.value.payload["run_id"] == run.id


def test_bad_period_is_rejected(app, company):
    with pytest.raises(ValidationError):
        payroll_run.create(company.id, 13, 2025)


def test_generate_totals_only_count_good_items(app, company):
    make_employee(company, "E001", basic_salary_default=3000)
    make_employee(company, "E002", basic_salary_default=4000)
    make_employee(company, "E003", date_of_birth=None)
    run, result = _generated(company)

    assert result["event"] == "done"
    assert result["totals"]["headcount"] == 2
    assert result["totals"]["failed"] == 1
    assert result["totals"]["basic_salary"] == 7000.0
    statuses = {i["employee_id"]: i["status"] for i in result["items"]}
    assert sorted(statuses.values()) == ["computed", "computed", "failed"]
    failed = PayrollItem.query.filter_by(run_id=run.id, status=ItemStatus.failed).one()
    assert failed.net_pay == 0
    assert failed.warnings[0].startswith("CONFIGURATION_ERROR")


def test_failed_items_block_approval_until_fixed(app, company):
    make_employee(company, "E001")
    broken = make_employee(company, "E002", date_of_birth=None)
    run, _ = _generated(company)

    with pytest.raises(ValidationError) as exc:
        payroll_run.approve(run.id)
    assert exc.value.code == "ITEMS_FAILED"
    assert exc.value.payload["failed_employee_ids"] == [broken.id]
    db.session.rollback()

    broken.date_of_birth = date(1990, 5, 5)
    db.session.commit()
    payroll_run.generate(run.id)
    payroll_run.approve(run.id)
    db.session.commit()

    assert run.status == RunStatus.approved
    for it in run.items:
        assert it.status == ItemStatus.locked
        assert audit.snapshot_matches(it)


def test_snapshot_detects_tampering(app, company):
    make_employee(company)
    run, _ = _generated(company)
    payroll_run.approve(run.id)
    db.session.commit()

    item = run.items.first()
    assert audit.snapshot_matches(item)
    item.net_pay = Decimal(item.net_pay) + 1
    assert not audit.snapshot_matches(item)
    db.session.rollback()

    item = run.items.first()
    assert audit.snapshot_matches(item)
    item.ot_hours = Decimal("2.00")
    assert not audit.snapshot_matches(item)
    db.session.rollback()

    item = run.items.first()
    item.calc_meta = dict(item.calc_meta, age=99)
    assert not audit.snapshot_matches(item)


def test_locked_run_cannot_be_regenerated(app, company):
    make_employee(company)
    run, _ = _generated(company)
    payroll_run.approve(run.id)
    db.session.commit()
    with pytest.raises(InvalidTransitionError):
        payroll_run.generate(run.id)
    with pytest.raises(InvalidTransitionError):
        payroll_run.reopen(run.id)
    with pytest.raises(InvalidTransitionError):
        payroll_run.pay(run.id, "BANK-1")


def test_lock_and_pay_settle_linked_claims(app, company):
    emp = make_employee(company)
    claim = _claim(emp, "80")
    run, result = _generated(company)
    assert result["totals"]["claims_amount"] == 80.0

    payroll_run.approve(run.id)
    payroll_run.lock(run.id)
    payroll_run.pay(run.id, "MBB-20250131-01")
    db.session.commit()

    assert run.status == RunStatus.paid
    assert run.payment_ref == "MBB-20250131-01"
    assert db.session.get(Claim, claim.id).status == ClaimStatus.paid
    actions = [a.action for a in AuditLog.query.filter_by(entity="payroll_run", entity_id=run.id)
               .order_by(AuditLog.id)]
    assert actions == ["create", "generate", "approve", "lock", "pay"]


def test_relink_moves_only_claims_gross_and_net(app, company):
    emp = make_employee(company)
    run, _ = _generated(company)
    item = run.items.first()
    before = {f: Decimal(getattr(item, f)) for f in ("gross_salary", "net_pay", "epf_employee", "pcb")}

    late = _claim(emp, "120")
    result = payroll_run.relink_claims(run.id)
    db.session.commit()

    assert result["delta_total"] == 120.0
    assert result["items"][0]["claim_ids"] == [late.id]
    item = run.items.first()
    assert item.gross_salary == before["gross_salary"] + 120
    assert item.net_pay == before["net_pay"] + 120
    assert item.epf_employee == before["epf_employee"]
    assert item.pcb == before["pcb"]
    assert db.session.get(Claim, late.id).linked_payroll_item_id == item.id

    # nothing new to attach
    assert payroll_run.relink_claims(run.id)["delta_total"] == 0


def test_regenerate_does_not_double_link_claims(app, company):
    emp = make_employee(company)
    _claim(emp, "50")
    run, first = _generated(company)
    second = payroll_run.generate(run.id)
    db.session.commit()
    assert first["totals"]["claims_amount"] == second["totals"]["claims_amount"] == 50.0


def test_reopen_and_delete(app, company):
    emp = make_employee(company)
    claim = _claim(emp, "30")
    run, _ = _generated(company)
    payroll_run.reopen(run.id)
    db.session.commit()
    assert run.items.count() == 0
    assert run.totals is None
    assert db.session.get(Claim, claim.id).linked_payroll_item_id is None

    payroll_run.delete(run.id)
    db.session.commit()
    assert db.session.get(PayrollRun, run.id) is None


def test_variance_against_last_month(app, company):
    emp = make_employee(company, basic_salary_default=3000)
    _generated(company, month=1)
    emp.basic_salary_default = 4000
    db.session.commit()
    run, _ = _generated(company, month=2)
    item = run.items.first()
    assert item.variance_flagged is True
    assert item.variance_pct > 0


def test_deadline_stops_generation(app, company):
    make_employee(company)
    run = payroll_run.create(company.id, 1, 2025)
    with pytest.raises(DeadlineExceededError):
        payroll_run.generate(run.id, deadline=Deadline(0))


def test_automation_generates_and_locks(app, company):
    make_employee(company)
    company.automation_config = {"payroll_auto_generate": True, "payroll_auto_generate_day": 25,
                                 "payroll_auto_approve": True, "payroll_lock_after_days": 3}
    db.session.commit()

    assert payroll_run.auto_generate(date(2025, 3, 24)) == []
    results = payroll_run.auto_generate(date(2025, 3, 25))
    db.session.commit()
    assert len(results) == 1 and results[0]["approved"] is True
    # second call finds the run already there
    assert payroll_run.auto_generate(date(2025, 3, 26)) == []

    assert payroll_run.auto_lock(date.today()) == []
    locked = payroll_run.auto_lock(date.today() + timedelta(days=4))
    db.session.commit()
    assert locked == [results[0]["run_id"]]
    assert db.session.get(PayrollRun, locked[0]).status == RunStatus.locked
