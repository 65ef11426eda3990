from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from flask import Blueprint, request, jsonify, current_app

from hrms_payroll.common.auth import requires_perms, ensure_tenant, current_user_id, current_company_id
from hrms_payroll.common.errors import ValidationError, NotFoundError, InvalidTransitionError
from hrms_payroll.common.http import to_json
from hrms_payroll.extensions import db
from hrms_payroll.models.claims import Claim, ClaimStatus
from hrms_payroll.models.employee import Employee
from hrms_payroll.services.claims_verifier import (
    classify, Extracted, HttpReceiptExtractor, AUTO_APPROVE, REJECT,
)

log = logging.getLogger(__name__)

bp = Blueprint("claims", __name__, url_prefix="/api/v1/claims")


# ---------- helpers ----------
def _ok(data=None, status=200, **meta):
    payload = {"success": True, "data": data}
    if meta:
        payload["meta"] = meta
    return jsonify(payload), status


def _d(s) -> Optional[date]:
    if not s:
        return None
    try:
        return date.fromisoformat(str(s))
    except ValueError:
        return None


def _dec(x) -> Optional[Decimal]:
    if x is None or x == "":
        return None
    try:
        return Decimal(str(x))
    except InvalidOperation:
        return None


def _row(c: Claim) -> dict:
    return {
        "id": c.id,
        "employee_id": c.employee_id,
        "category": c.category,
        "amount": float(c.amount),
        "claim_date": c.claim_date.isoformat(),
        "description": c.description,
        "receipt_ref": c.receipt_ref,
        "status": c.status.value,
        "auto_approved": c.auto_approved,
        "approved_at": c.approved_at.isoformat() if c.approved_at else None,
        "linked_payroll_item_id": c.linked_payroll_item_id,
    }


def _claim_or_404(claim_id: int) -> Claim:
    c = db.session.get(Claim, claim_id)
    if c is None:
        raise NotFoundError("Claim not found")
    ensure_tenant(c.company_id)
    return c


def _extractor() -> Optional[HttpReceiptExtractor]:
    url = current_app.config.get("RECEIPT_VERIFIER_URL")
    if not url:
        return None
    return HttpReceiptExtractor(url, timeout=current_app.config.get("RECEIPT_VERIFIER_TIMEOUT", 15))


def _extract(claim: Claim, body: dict) -> Optional[Extracted]:
    """Caller-supplied extraction wins; else ask the verifier service if one is configured."""
    if isinstance(body.get("extracted"), dict):
        return Extracted.from_dict(body["extracted"])
    svc = _extractor()
    return svc.extract(claim) if svc else None


def _set_status(c: Claim, status: ClaimStatus, auto: bool = False):
    if c.status != ClaimStatus.pending:
        raise InvalidTransitionError(f"Cannot change a claim in '{c.status.value}' status")
    c.status = status
    c.auto_approved = auto
    if status == ClaimStatus.approved:
        c.approved_at = datetime.utcnow()


# ---------- CRUD ----------
@bp.get("")
@requires_perms("claims.read")
def list_claims():
    q = Claim.query
    emp_id = request.args.get("employee_id", type=int)
    company_id = request.args.get("company_id", type=int)
    if emp_id:
        emp = db.session.get(Employee, emp_id)
        if emp is None:
            raise NotFoundError("Employee not found")
        ensure_tenant(emp.company_id)
        q = q.filter_by(employee_id=emp_id)
    elif company_id:
        ensure_tenant(company_id)
        q = q.filter_by(company_id=company_id)
    else:
        raise ValidationError("employee_id or company_id is required")
    pinned = current_company_id()
    if pinned is not None:
        q = q.filter_by(company_id=pinned)
    status = request.args.get("status")
    if status:
        try:
            q = q.filter_by(status=ClaimStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown status '{status}'")
    rows = q.order_by(Claim.claim_date.desc(), Claim.id.desc()).all()
    return _ok([_row(c) for c in rows])


@bp.post("")
@requires_perms("claims.create")
def create_claim():
    d = request.get_json(silent=True) or {}
    emp = db.session.get(Employee, d.get("employee_id")) if d.get("employee_id") else None
    if emp is None:
        raise NotFoundError("Employee not found")
    ensure_tenant(emp.company_id)

    amount, claim_date = _dec(d.get("amount")), _d(d.get("claim_date"))
    category = (d.get("category") or "").strip().upper()
    if amount is None or amount <= 0:
        raise ValidationError("amount must be a positive number")
    if claim_date is None:
        raise ValidationError("claim_date must be YYYY-MM-DD")
    if not category:
        raise ValidationError("category is required")

    c = Claim(
        company_id=emp.company_id, employee_id=emp.id, category=category, amount=amount,
        claim_date=claim_date, description=d.get("description"), receipt_ref=d.get("receipt_ref"),
        receipt_fingerprint=d.get("receipt_fingerprint"), status=ClaimStatus.pending,
    )
    db.session.add(c)
    db.session.commit()
    return _ok(_row(c), 201)


@bp.get("/<int:claim_id>")
@requires_perms("claims.read")
def get_claim(claim_id: int):
    return _ok(_row(_claim_or_404(claim_id)))


# ---------- verification ----------
@bp.post("/<int:claim_id>/verify")
@requires_perms("claims.verify")
def verify(claim_id: int):
    """Advice only; the claim is not changed."""
    c = _claim_or_404(claim_id)
    decision = classify(c, _extract(c, request.get_json(silent=True) or {}))
    return _ok(to_json(decision.as_dict()))


@bp.post("/<int:claim_id>/auto-process")
@requires_perms("claims.verify")
def auto_process(claim_id: int):
    """Apply the verifier's decision: approve or reject; manual leaves the claim pending."""
    c = _claim_or_404(claim_id)
    body = request.get_json(silent=True) or {}
    extracted = _extract(c, body)
    decision = classify(c, extracted)
    if extracted is not None and extracted.fingerprint and not c.receipt_fingerprint:
        c.receipt_fingerprint = extracted.fingerprint
    if decision.decision == AUTO_APPROVE:
        _set_status(c, ClaimStatus.approved, auto=True)
    elif decision.decision == REJECT:
        _set_status(c, ClaimStatus.rejected)
    db.session.commit()
    log.info("[claims] claim=%s decision=%s reason=%s", c.id, decision.decision, decision.reason)
    return _ok({"claim": _row(c), "decision": to_json(decision.as_dict())})


@bp.post("/<int:claim_id>/approve")
@requires_perms("claims.approve")
def approve(claim_id: int):
    c = _claim_or_404(claim_id)
    _set_status(c, ClaimStatus.approved)
    db.session.commit()
    return _ok(_row(c))


@bp.post("/<int:claim_id>/reject")
@requires_perms("claims.approve")
def reject(claim_id: int):
    c = _claim_or_404(claim_id)
    _set_status(c, ClaimStatus.rejected)
    db.session.commit()
    return _ok(_row(c))
