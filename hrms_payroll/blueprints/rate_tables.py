from __future__ import annotations
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from flask import Blueprint, request, jsonify
from sqlalchemy import or_

from hrms_payroll.common.auth import requires_perms, ensure_tenant, current_user_id
from hrms_payroll.common.errors import ValidationError, NotFoundError, ConflictError
from hrms_payroll.common.http import to_json
from hrms_payroll.extensions import db
from hrms_payroll.models.payroll.rate_table import RateTable, RATE_KINDS
from hrms_payroll.services import rate_tables as calc
from hrms_payroll.services.rate_resolver import load_rate_set, close_rate_table

bp = Blueprint("rate_tables", __name__, url_prefix="/api/v1/rate-tables")


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


def _row(x: RateTable) -> dict:
    return {
        "id": x.id,
        "kind": x.kind,
        "key": x.key,
        "value": x.value_json,
        "scope_company_id": x.scope_company_id,
        "priority": x.priority,
        "effective_from": x.effective_from.isoformat() if x.effective_from else None,
        "effective_to": x.effective_to.isoformat() if x.effective_to else None,
        "closed_at": x.closed_at.isoformat() if x.closed_at else None,
    }


# ---------- endpoints ----------
@bp.get("")
@requires_perms("rates.read")
def list_tables():
    q = RateTable.query
    if request.args.get("kind"):
        q = q.filter(RateTable.kind == request.args["kind"].upper())
    company_id = request.args.get("company_id", type=int)
    if company_id:
        ensure_tenant(company_id)
        q = q.filter(or_(RateTable.scope_company_id == company_id, RateTable.scope_company_id.is_(None)))
    active_on = _d(request.args.get("active_on"))
    if active_on:
        q = q.filter(
            RateTable.effective_from <= active_on,
            or_(RateTable.effective_to.is_(None), RateTable.effective_to >= active_on),
        )
    rows = q.order_by(RateTable.kind.asc(), RateTable.effective_from.desc(), RateTable.priority.asc()).all()
    return _ok([_row(r) for r in rows])


@bp.post("")
@requires_perms("rates.manage")
def create_table():
    j = request.get_json(silent=True) or {}
    kind = (j.get("kind") or "").strip().upper()
    if kind not in RATE_KINDS:
        raise ValidationError(f"kind must be one of {', '.join(RATE_KINDS)}")
    eff_from = _d(j.get("effective_from"))
    if not eff_from:
        raise ValidationError("effective_from is required (YYYY-MM-DD)")
    eff_to = _d(j.get("effective_to"))
    if eff_to and eff_to < eff_from:
        raise ValidationError("effective_to must be >= effective_from")
    value = j.get("value")
    if not isinstance(value, dict):
        raise ValidationError("value (JSON object) is required")
    comp = j.get("scope_company_id")
    try:
        comp = int(comp) if comp not in (None, "") else None
        prio = int(j.get("priority", 100))
    except (TypeError, ValueError):
        raise ValidationError("scope_company_id and priority must be integers")
    if comp is not None:
        ensure_tenant(comp)

    # same kind + scope + priority may not overlap in time
    clash = (
        RateTable.query
        .filter(RateTable.kind == kind, RateTable.priority == prio)
        .filter(RateTable.scope_company_id == comp if comp is not None else RateTable.scope_company_id.is_(None))
        .filter(RateTable.effective_from <= (eff_to or date.max))
        .filter(or_(RateTable.effective_to.is_(None), RateTable.effective_to >= eff_from))
        .first()
    )
    if clash:
        raise ConflictError("Overlapping rate table version; close the existing one first",
                            payload={"conflicting_id": clash.id})

    row = RateTable(kind=kind, key=j.get("key") or f"{kind}_{eff_from.isoformat()}", value_json=value,
                    effective_from=eff_from, effective_to=eff_to, scope_company_id=comp, priority=prio,
                    created_by=current_user_id())
    db.session.add(row)
    db.session.commit()
    return _ok(_row(row), 201)


@bp.put("/<int:table_id>/close")
@requires_perms("rates.manage")
def close_table(table_id: int):
    row = db.session.get(RateTable, table_id)
    if row is None:
        raise NotFoundError("Rate table not found")
    if row.scope_company_id is not None:
        ensure_tenant(row.scope_company_id)
    j = request.get_json(silent=True) or {}
    close_rate_table(row, current_user_id(), _d(j.get("effective_to")))
    db.session.commit()
    return _ok(_row(row))


@bp.get("/preview")
@requires_perms("rates.read")
def preview():
    """Contributions for one wage/age with the tables effective on `on`."""
    wage = _dec(request.args.get("wage"))
    age = request.args.get("age", type=int)
    if wage is None or age is None:
        raise ValidationError("wage and age are required")
    on = _d(request.args.get("on")) or date.today()
    company_id = request.args.get("company_id", type=int)
    if company_id:
        ensure_tenant(company_id)
    contribution_type = request.args.get("contribution_type", "normal")

    rates = load_rate_set(company_id, on)
    return _ok(to_json({
        "on": on,
        "versions": rates.versions,
        "epf": calc.epf(wage, age, contribution_type, rates.epf),
        "socso": calc.socso(wage, age, rates.socso),
        "eis": calc.eis(wage, age, rates.eis),
    }))
