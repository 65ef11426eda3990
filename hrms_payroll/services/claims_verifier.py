"""
Receipt gate for expense claims.

``classify`` returns a :class:`Decision`; it never raises for an outcome and
never writes. The claims blueprint decides what to do with the advice.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import requests
from sqlalchemy import func, extract

from hrms_payroll.common.money import D, money
from hrms_payroll.extensions import db
from hrms_payroll.models.claims import Claim, ClaimType, ClaimStatus, DepartmentClaimRestriction
from hrms_payroll.services.company_config import settings_for

log = logging.getLogger(__name__)

AUTO_APPROVE = "auto_approve"
MANUAL = "manual"
REJECT = "reject"

MEAL_CATEGORIES = ("MEAL", "FOOD", "MAKAN")
AMOUNT_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class Extracted:
    """Structured result of the external receipt reader."""
    amount: Optional[Decimal] = None
    merchant: Optional[str] = None
    date: Optional[str] = None
    confidence: Optional[str] = None
    fingerprint: Optional[str] = None
    warnings: tuple = ()

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> Optional["Extracted"]:
        if not d:
            return None
        amount = d.get("amount")
        try:
            amount = None if amount in (None, "") else Decimal(str(amount))
        except InvalidOperation:
            amount = None
        return cls(
            amount=amount,
            merchant=(d.get("merchant") or "").strip() or None,
            date=d.get("date"),
            confidence=d.get("confidence"),
            fingerprint=d.get("fingerprint") or d.get("receipt_hash"),
            warnings=tuple(d.get("warnings") or ()),
        )


@dataclass
class Decision:
    decision: str
    reason: str
    detected_amount: Optional[Decimal] = None
    warnings: List[str] = field(default_factory=list)
    detail: Optional[str] = None

    def as_dict(self):
        return {
            "decision": self.decision,
            "reason": self.reason,
            "detected_amount": self.detected_amount,
            "warnings": list(self.warnings),
            "detail": self.detail,
        }


class HttpReceiptExtractor:
    """Client for the receipt verification service. Returns None when the service cannot answer."""

    def __init__(self, url: str, timeout: float = 15, session=None):
        self.url = url
        self.timeout = timeout
        self.http = session or requests

    def extract(self, claim: Claim) -> Optional[Extracted]:
        payload = {
            "claim_id": claim.id,
            "receipt_ref": claim.receipt_ref,
            "amount": str(claim.amount),
            "category": claim.category,
        }
        try:
            resp = self.http.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            log.warning("[claims.verify] extractor unavailable for claim %s: %s", claim.id, e)
            return None
        return Extracted.from_dict(body.get("data", body) if isinstance(body, dict) else None)


# ---------- lookups ----------

def find_duplicate(claim: Claim, fingerprint: str, window_days: int) -> Optional[Claim]:
    since = claim.claim_date - timedelta(days=window_days)
    q = (
        Claim.query
        .filter(Claim.employee_id == claim.employee_id)
        .filter(Claim.receipt_fingerprint == fingerprint)
        .filter(Claim.status.in_([ClaimStatus.approved, ClaimStatus.paid]))
        .filter(Claim.claim_date >= since)
    )
    if claim.id is not None:
        q = q.filter(Claim.id != claim.id)
    return q.order_by(Claim.claim_date.desc()).first()


def allowed_categories(employee) -> Optional[List[str]]:
    """None when the employee's department has no restriction."""
    if employee.department_id is None:
        return None
    row = DepartmentClaimRestriction.query.filter_by(department_id=employee.department_id).first()
    if row is None or row.allowed_categories is None:
        return None
    return [str(c).upper() for c in row.allowed_categories]


def _period_total(claim: Claim, year: int, month: Optional[int] = None) -> Decimal:
    q = (
        db.session.query(func.coalesce(func.sum(Claim.amount), 0))
        .filter(Claim.employee_id == claim.employee_id)
        .filter(func.upper(Claim.category) == claim.category.upper())
        .filter(Claim.status.in_([ClaimStatus.approved, ClaimStatus.pending, ClaimStatus.paid]))
        .filter(extract("year", Claim.claim_date) == year)
    )
    if claim.id is not None:
        q = q.filter(Claim.id != claim.id)
    if month is not None:
        q = q.filter(extract("month", Claim.claim_date) == month)
    return D(q.scalar())


# ---------- the gate ----------

def classify(claim: Claim, extracted: Optional[Extracted], settings=None) -> Decision:
    employee = claim.employee
    settings = settings or settings_for(employee.company)
    category = (claim.category or "").upper()
    amount = money(claim.amount)

    if extracted is None:
        return Decision(MANUAL, "verifier_unavailable",
                        warnings=["Receipt could not be verified automatically"])

    warnings = list(extracted.warnings)
    if extracted.confidence and extracted.confidence != "high":
        warnings.append(f"Extractor confidence: {extracted.confidence}")
    detected = money(extracted.amount) if extracted.amount is not None else None

    def _manual(reason, detail=None):
        return Decision(MANUAL, reason, detected, warnings, detail)

    fingerprint = extracted.fingerprint or claim.receipt_fingerprint
    if fingerprint:
        dup = find_duplicate(claim, fingerprint, settings.duplicate_window_days)
        if dup is not None:
            return Decision(REJECT, "duplicate_receipt", detected, warnings,
                            f"Receipt already used on claim #{dup.id} ({dup.claim_date.isoformat()})")

    allowed = allowed_categories(employee)
    if allowed is not None and category not in allowed:
        return Decision(REJECT, "category_not_allowed", detected, warnings,
                        f"Department may only claim: {', '.join(allowed)}")

    # outstation meal allowance bypasses receipt matching
    if employee.outstation_meal_allowance and category in MEAL_CATEGORIES \
            and amount <= D(settings.outstation_meal_cap):
        return Decision(AUTO_APPROVE, "outstation_meal_allowance", detected, warnings,
                        f"RM{amount} within RM{settings.outstation_meal_cap} outstation meal limit")

    if not settings.claims_auto_approve:
        return _manual("auto_approve_disabled")

    claim_type = ClaimType.query.filter_by(company_id=claim.company_id, code=category, is_active=True).first()

    if detected is None or abs(detected - amount) > amount * AMOUNT_TOLERANCE:
        return _manual("amount_mismatch", f"Receipt shows {detected}, claimed {amount}")
    if not extracted.merchant:
        return _manual("merchant_missing")

    in_list = category in settings.claims_auto_approve_categories
    type_enabled = claim_type is not None and claim_type.auto_approve_enabled
    if not (in_list or type_enabled):
        return _manual("category_not_auto_approved")

    if claim_type is not None and claim_type.auto_approve_max_amount is not None \
            and amount > D(claim_type.auto_approve_max_amount):
        return _manual("over_category_cap", f"Limit RM{claim_type.auto_approve_max_amount}")
    if amount > D(settings.claims_auto_approve_max_amount):
        return _manual("over_company_cap", f"Limit RM{settings.claims_auto_approve_max_amount}")

    has_receipt = bool(claim.receipt_ref)
    if claim_type is not None and claim_type.require_receipt and not has_receipt:
        return _manual("receipt_required")
    if D(settings.claims_require_receipt_above) > 0 and amount > D(settings.claims_require_receipt_above) \
            and not has_receipt:
        return _manual("receipt_required", f"Receipt required above RM{settings.claims_require_receipt_above}")

    if claim_type is not None and claim_type.max_per_month is not None:
        if _period_total(claim, claim.claim_date.year, claim.claim_date.month) + amount > D(claim_type.max_per_month):
            return _manual("over_monthly_limit", f"Monthly limit RM{claim_type.max_per_month}")
    if claim_type is not None and claim_type.max_per_year is not None:
        if _period_total(claim, claim.claim_date.year) + amount > D(claim_type.max_per_year):
            return _manual("over_yearly_limit", f"Yearly limit RM{claim_type.max_per_year}")

    return Decision(AUTO_APPROVE, "all_criteria_met", detected, warnings)
