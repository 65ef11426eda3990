from datetime import date, time

from hrms_payroll.extensions import db
from hrms_payroll.models.attendance import Schedule
from hrms_payroll.models.employee import Employee
from hrms_payroll.models.leave import LeaveBalance, LeaveStatus
from hrms_payroll.models.payroll.pay_run import PayrollRun
from hrms_payroll.models.payroll.rate_table import RateTable
from hrms_payroll.services import leave_ledger
from hrms_payroll.services.employees import deactivate_resigned

from conftest import make_employee, leave_type


def test_resigned_employee_is_wound_down(app, company):
    emp = make_employee(company, last_working_day=date(2025, 3, 14))
    stays = make_employee(company, "E002")
    for d in (date(2025, 3, 14), date(2025, 3, 17), date(2025, 3, 18)):
        db.session.add(Schedule(employee_id=emp.id, work_date=d, shift_start=time(9, 0), shift_end=time(17, 30)))
    db.session.commit()
    req = leave_ledger.request(emp, leave_type(company, "AL"), date(2025, 3, 10), date(2025, 3, 11))
    db.session.commit()

    assert deactivate_resigned(date(2025, 3, 13)) == []
    done = deactivate_resigned(date(2025, 3, 14))
    db.session.commit()

    assert done == [{"employee_id": emp.id, "schedules_removed": 2, "leave_forfeited": 1}]
    assert db.session.get(Employee, emp.id).status == "inactive"
    assert db.session.get(Employee, stays.id).status == "active"
    assert Schedule.query.filter_by(employee_id=emp.id).count() == 1
    assert req.status == LeaveStatus.cancelled


def test_cli_rates_and_leave(app, company):
    make_employee(company)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["rates", "seed-defaults"])
    assert result.exit_code == 0
    assert "already present" in result.output
    assert RateTable.query.count() == 4

    result = runner.invoke(args=["leave", "init-year", "--company-id", str(company.id), "--year", "2025"])
    assert result.exit_code == 0
    assert LeaveBalance.query.count() == 2


def test_cli_payroll_automation(app, company):
    make_employee(company)
    company.automation_config = {"payroll_auto_generate": True, "payroll_auto_generate_day": 20}
    db.session.commit()

    result = app.test_cli_runner().invoke(args=["payroll", "auto-generate", "--today", "2025-04-21"])
    assert result.exit_code == 0
    assert "headcount=1" in result.output
    assert PayrollRun.query.filter_by(company_id=company.id, year=2025, month=4).count() == 1
