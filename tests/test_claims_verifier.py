from datetime import date
from decimal import Decimal

import pytest
import requests

from hrms_payroll.extensions import db
from hrms_payroll.models.claims import Claim, ClaimType, ClaimStatus, DepartmentClaimRestriction
from hrms_payroll.services.claims_verifier import (
    classify, Extracted, HttpReceiptExtractor, AUTO_APPROVE, MANUAL, REJECT,
)

from conftest import make_employee


def _claim(emp, amount="45.00", category="TRAVEL", receipt_ref="s3://receipts/1.jpg", **kw):
    c = Claim(company_id=emp.company_id, employee_id=emp.id, category=category, amount=Decimal(amount),
              claim_date=kw.pop("claim_date", date(2025, 3, 10)), receipt_ref=receipt_ref,
              status=kw.pop("status", ClaimStatus.pending), **kw)
    db.session.add(c)
    db.session.commit()
    return c


def _extracted(amount="45.00", merchant="Grab", fingerprint="fp-1", confidence="high"):
    return Extracted.from_dict({"amount": amount, "merchant": merchant, "fingerprint": fingerprint,
                                "confidence": confidence})


@pytest.fixture
def travel_type(company):
    t = ClaimType(company_id=company.id, code="TRAVEL", name="Travel", auto_approve_enabled=True,
                  auto_approve_max_amount=Decimal("200"))
    db.session.add(t)
    db.session.commit()
    return t


def test_no_extraction_goes_to_manual(app, company):
    claim = _claim(make_employee(company))
    d = classify(claim, None)
    assert (d.decision, d.reason) == (MANUAL, "verifier_unavailable")


def test_matching_receipt_auto_approves(app, company, travel_type):
    claim = _claim(make_employee(company))
    d = classify(claim, _extracted())
    assert (d.decision, d.reason) == (AUTO_APPROVE, "all_criteria_met")
    assert d.detected_amount == Decimal("45.00")


def test_reused_receipt_is_rejected(app, company, travel_type):
    emp = make_employee(company)
    earlier = _claim(emp, claim_date=date(2025, 1, 20), status=ClaimStatus.approved, receipt_fingerprint="fp-1")
    claim = _claim(emp)
    d = classify(claim, _extracted(fingerprint="fp-1"))
    assert (d.decision, d.reason) == (REJECT, "duplicate_receipt")
    assert f"#{earlier.id}" in d.detail


def test_old_duplicates_fall_outside_the_window(app, company, travel_type):
    emp = make_employee(company)
    _claim(emp, claim_date=date(2024, 6, 1), status=ClaimStatus.approved, receipt_fingerprint="fp-1")
    d = classify(_claim(emp), _extracted(fingerprint="fp-1"))
    assert d.decision == AUTO_APPROVE


def test_amount_mismatch_and_missing_merchant(app, company, travel_type):
    emp = make_employee(company)
    claim = _claim(emp, amount="100.00")
    assert classify(claim, _extracted(amount="95.00")).reason == "amount_mismatch"
    # within 1%
    assert classify(claim, _extracted(amount="99.50")).decision == AUTO_APPROVE
    assert classify(claim, _extracted(amount="100.00", merchant="  ")).reason == "merchant_missing"


def test_category_must_be_enabled(app, company):
    claim = _claim(make_employee(company), category="PARKING")
    assert classify(claim, _extracted()).reason == "category_not_auto_approved"

    company.automation_config = {"claims_auto_approve_categories": ["parking"]}
    db.session.commit()
    assert classify(claim, _extracted()).decision == AUTO_APPROVE


def test_caps_and_receipts(app, company, travel_type):
    emp = make_employee(company)
    big = _claim(emp, amount="250.00")
    assert classify(big, _extracted(amount="250.00")).reason == "over_category_cap"

    no_receipt = _claim(emp, receipt_ref=None)
    assert classify(no_receipt, _extracted()).reason == "receipt_required"


def test_department_restriction_rejects(app, company, travel_type):
    emp = make_employee(company)
    db.session.add(DepartmentClaimRestriction(company_id=company.id, department_id=emp.department_id,
                                              allowed_categories=["meal"]))
    db.session.commit()
    d = classify(_claim(emp), _extracted())
    assert (d.decision, d.reason) == (REJECT, "category_not_allowed")


def test_outstation_meal_allowance(app, company):
    emp = make_employee(company, outstation_meal_allowance=True)
    small = _claim(emp, amount="18.00", category="MEAL", receipt_ref=None)
    d = classify(small, _extracted(amount=None, merchant=None))
    assert (d.decision, d.reason) == (AUTO_APPROVE, "outstation_meal_allowance")

    large = _claim(emp, amount="35.00", category="MEAL")
    assert classify(large, _extracted(amount="35.00")).reason == "category_not_auto_approved"


def test_auto_approve_switched_off(app, company, travel_type):
    company.automation_config = {"claims_auto_approve": False}
    db.session.commit()
    assert classify(_claim(make_employee(company)), _extracted()).reason == "auto_approve_disabled"


class _Resp:
    def __init__(self, body, status=200):
        self.body, self.status = body, status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.body


class _Session:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append((url, json, timeout))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def test_http_extractor_reads_envelope(app, company):
    claim = _claim(make_employee(company))
    session = _Session(_Resp({"success": True, "data": {"amount": "45.00", "merchant": "Grab",
                                                        "receipt_hash": "abc"}}))
    ex = HttpReceiptExtractor("http://verifier.local/extract", timeout=5, session=session).extract(claim)
    assert ex.amount == Decimal("45.00")
    assert ex.fingerprint == "abc"
    assert session.calls[0][1]["claim_id"] == claim.id
    assert session.calls[0][2] == 5


@pytest.mark.parametrize("outcome", [requests.ConnectionError("refused"), _Resp({}, status=502)])
def test_http_extractor_unavailable(app, company, outcome):
    claim = _claim(make_employee(company))
    assert HttpReceiptExtractor("http://verifier.local/extract", session=_Session(outcome)).extract(claim) is None
