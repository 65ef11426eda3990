from datetime import date

import pytest

from hrms_payroll.common.errors import InvalidTransitionError, ValidationError
from hrms_payroll.extensions import db
from hrms_payroll.models.employee_bank import EmployeeBankAccount
from hrms_payroll.models.payroll.pay_run import PayrollItem
from hrms_payroll.services import bank_files, payroll_run

from conftest import make_employee


def _with_account(company, code, name, ic, bank, number):
    emp = make_employee(company, code, name=name, ic_number=ic)
    db.session.add(EmployeeBankAccount(employee_id=emp.id, bank_name=bank, account_number=number, is_primary=True))
    db.session.commit()
    return emp


@pytest.fixture
def locked_run(company):
    _with_account(company, "E001", "Aminah binti Ali", "900101-14-5678", "Maybank", "1144-2233-5566")
    _with_account(company, "E002", "Tan, Mei Ling", "880202-10-1234", "Public Bank Berhad", "3188776655")
    make_employee(company, "E003", name="No Account")
    run = payroll_run.create(company.id, 1, 2025)
    payroll_run.generate(run.id)
    payroll_run.approve(run.id)
    payroll_run.lock(run.id)
    db.session.commit()
    return run


def _net(run, code):
    item = next(i for i in PayrollItem.query.filter_by(run_id=run.id) if i.employee.employee_code == code)
    return item.net_pay


def test_bank_codes():
    assert bank_files.bank_code("Hong Leong Bank") == "HLBBMYKL"
    assert bank_files.bank_code("MAYBANK") == "MBBEMYKL"
    assert bank_files.bank_code("Bank XYZ") == "UNKNOWN"
    assert bank_files.maybank_bulk_name("Public Bank Berhad") == "PUBLIC BANK"
    assert bank_files.maybank_bulk_name("Bank XYZ") == "BANK XYZ"


def test_maybank_bulk_layout(app, locked_run):
    out = bank_files.generate(locked_run, "maybank_bulk")
    text = out["content"].decode()
    lines = text.split("\r\n")

    assert out["records"] == 2
    assert out["filename"] == "salary_2025_01_maybank_bulk.csv"
    assert lines[1] == "Crediting Date (eg. dd/MM/yyyy),05/02/2025,,,,,,"
    assert lines[5] == ",,,,,,,"
    assert lines[6].startswith("Beneficiary Name,Beneficiary Bank,")
    assert lines[7] == (f"AMINAH BINTI ALI,MAYBANK,114422335566,NRIC,900101145678,"
                        f"{_net(locked_run, 'E001'):.2f},SALARYJAN2025,SALARYJAN2025")
    assert lines[8].startswith("TAN MEI LING,PUBLIC BANK,3188776655,")
    assert text.endswith("\r\n")
    assert "No Account" not in text


def test_public_bank_fixed_width(app, locked_run):
    text = bank_files.generate(locked_run, "publicbank", credit_date=date(2025, 1, 31),
                               debit_account="3000111222").get("content").decode()
    header, first, second, trailer = text.split("\r\n")
    total = _net(locked_run, "E001") + _net(locked_run, "E002")
    cents = str(int(total * 100))

    assert header == "H" + "ACME".ljust(10) + "3000111222".ljust(14) + "20250131" + "000002" + cents.rjust(13, "0")
    assert first.startswith("D000001" + "114422335566".ljust(14))
    assert first[21:34] == str(int(_net(locked_run, "E001") * 100)).rjust(13, "0")
    assert second[34:74] == "Tan, Mei Ling".ljust(40)
    assert trailer == "T000003" + cents.rjust(15, "0")


def test_rhb_and_maybank_ibg(app, locked_run):
    rhb = bank_files.generate(locked_run, "rhb")["content"].decode().split("\r\n")
    assert rhb[1].startswith("D,SAL2025010001,Aminah binti Ali,114422335566,MBBEMYKL,")
    assert rhb[2].startswith('D,SAL2025010002,"Tan, Mei Ling",3188776655,PBBEMYKL,')

    ibg = bank_files.generate(locked_run, "maybank")["content"].decode().split("\r\n")
    assert ibg[0].startswith("01" + "Acme Sdn Bhd".ljust(35))
    assert ibg[1][:8] == "02000001"
    assert ibg[1][-51] == "L"
    assert ibg[2][-51] == "I"


def test_only_locked_runs_produce_files(app, company):
    emp = make_employee(company)
    db.session.add(EmployeeBankAccount(employee_id=emp.id, bank_name="CIMB", account_number="7000", is_primary=True))
    run = payroll_run.create(company.id, 1, 2025)
    payroll_run.generate(run.id)
    db.session.commit()

    with pytest.raises(InvalidTransitionError):
        bank_files.generate(run, "cimb")
    payroll_run.approve(run.id)
    payroll_run.lock(run.id)
    db.session.commit()
    with pytest.raises(ValidationError):
        bank_files.generate(run, "swift")
    assert bank_files.generate(run, "cimb")["records"] == 1


def test_bank_file_endpoint(client, headers, locked_run):
    r = client.get(f"/api/v1/payroll/runs/{locked_run.id}/bank-file?format=cimb", headers=headers)
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    assert "salary_2025_01_cimb.csv" in r.headers["Content-Disposition"]
    assert r.data.decode().startswith("Beneficiary Account No,Beneficiary Name,")

    r = client.get("/api/v1/payroll/runs/bank-formats", headers=headers)
    assert [f["key"] for f in r.get_json()["data"]][:2] == ["maybank_bulk", "maybank"]
