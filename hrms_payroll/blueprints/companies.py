# hrms_payroll/blueprints/companies.py
from __future__ import annotations

from flask import Blueprint, request, jsonify
from sqlalchemy import or_

from hrms_payroll.common.auth import requires_perms, ensure_tenant, current_company_id
from hrms_payroll.common.errors import ValidationError, NotFoundError
from hrms_payroll.common.http import to_json
from hrms_payroll.extensions import db
from hrms_payroll.models.master import Company
from hrms_payroll.services.company_config import settings_for, split_overrides, merge_settings

bp = Blueprint("companies", __name__, url_prefix="/api/v1/companies")


# -------- uniform envelopes --------
def _ok(data=None, status=200, **meta):
    payload = {"success": True, "data": data}
    if meta:
        payload["meta"] = meta
    return jsonify(payload), status


# -------- row shape --------
def _row(x: Company):
    return {
        "id": x.id,
        "code": x.code,
        "name": x.name,
        "grouping_type": x.grouping_type,
        "registration_no": x.registration_no,
        "epf_employer_no": x.epf_employer_no,
        "income_tax_employer_no": x.income_tax_employer_no,
        "address": x.address,
        "is_active": x.is_active,
        "created_at": x.created_at.isoformat() if x.created_at else None,
    }


def _company_or_404(company_id: int) -> Company:
    ensure_tenant(company_id)
    c = db.session.get(Company, company_id)
    if c is None or not c.is_active:
        raise NotFoundError("Company not found")
    return c


EDITABLE = ("name", "registration_no", "epf_employer_no", "income_tax_employer_no", "address", "grouping_type")


# -------- routes --------
@bp.get("")
@requires_perms("master.companies.read")
def list_companies():
    qry = Company.query.filter(Company.is_active.is_(True))
    pinned = current_company_id()
    if pinned is not None:
        qry = qry.filter(Company.id == pinned)
    s = (request.args.get("q") or "").strip()
    if s:
        like = f"%{s}%"
        qry = qry.filter(or_(Company.name.ilike(like), Company.code.ilike(like)))
    return _ok([_row(c) for c in qry.order_by(Company.name.asc()).all()])


@bp.post("")
@requires_perms("master.companies.write")
def create_company():
    d = request.get_json(silent=True) or {}
    code, name = (d.get("code") or "").strip(), (d.get("name") or "").strip()
    if not code or not name:
        raise ValidationError("code and name are required")
    if d.get("grouping_type", "department") not in ("department", "outlet"):
        raise ValidationError("grouping_type must be department or outlet")
    c = Company(code=code, name=name, **{k: d[k] for k in EDITABLE if k in d and k != "name"})
    db.session.add(c)
    db.session.commit()
    return _ok(_row(c), 201)


@bp.get("/<int:company_id>")
@requires_perms("master.companies.read")
def get_company(company_id: int):
    return _ok(_row(_company_or_404(company_id)))


@bp.patch("/<int:company_id>")
@requires_perms("master.companies.write")
def update_company(company_id: int):
    c = _company_or_404(company_id)
    d = request.get_json(silent=True) or {}
    if "grouping_type" in d and d["grouping_type"] not in ("department", "outlet"):
        raise ValidationError("grouping_type must be department or outlet")
    for k in EDITABLE:
        if k in d:
            setattr(c, k, d[k])
    db.session.commit()
    return _ok(_row(c))


# -------- settings --------
@bp.get("/<int:company_id>/settings")
@requires_perms("settings.read", "settings.manage")
def get_settings(company_id: int):
    c = _company_or_404(company_id)
    return _ok(to_json(settings_for(c).as_dict()),
               overrides={"payroll_config": c.payroll_config or {}, "automation_config": c.automation_config or {}})


@bp.put("/<int:company_id>/settings")
@requires_perms("settings.manage")
def put_settings(company_id: int):
    """Merge the given keys into the stored overrides. A null value drops the override."""
    c = _company_or_404(company_id)
    d = request.get_json(silent=True)
    if not isinstance(d, dict):
        raise ValidationError("Body must be an object")

    dropped = {k for k, v in d.items() if v is None}
    payroll, automation = split_overrides({k: v for k, v in d.items() if v is not None})
    new_payroll = {k: v for k, v in dict(c.payroll_config or {}, **payroll).items() if k not in dropped}
    new_automation = {k: v for k, v in dict(c.automation_config or {}, **automation).items() if k not in dropped}
    merged = merge_settings(new_payroll, new_automation)

    c.payroll_config = new_payroll
    c.automation_config = new_automation
    db.session.commit()
    return _ok(to_json(merged.as_dict()))
