from __future__ import annotations

import enum
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from hrms_payroll.common.http import to_json
from hrms_payroll.common.money import D
from hrms_payroll.extensions import db
from hrms_payroll.models.audit import AuditLog
from hrms_payroll.models.payroll.pay_run import PayrollItem


def record(entity: str, entity_id: int, action: str, old=None, new=None,
           company_id: Optional[int] = None, actor_id: Optional[int] = None) -> AuditLog:
    row = AuditLog(
        company_id=company_id, entity=entity, entity_id=entity_id, action=action,
        old_values=to_json(old) if old is not None else None,
        new_values=to_json(new) if new is not None else None,
        actor_id=actor_id,
    )
    db.session.add(row)
    return row


def _canonical(column, value):
    if value is None:
        return None
    if isinstance(column.type, db.Numeric):
        return str(D(value).quantize(Decimal(1).scaleb(-(column.type.scale or 0))))
    if isinstance(column.type, db.JSON):
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def item_snapshot(item: PayrollItem) -> dict:
    """Every persisted column in a fixed text form, plus the linked claims."""
    snap = {c.name: _canonical(c, getattr(item, c.key)) for c in PayrollItem.__table__.columns}
    snap["claim_ids"] = sorted(link.claim_id for link in item.claim_links)
    return snap


def latest_snapshot(item: PayrollItem) -> Optional[dict]:
    row = (
        AuditLog.query
        .filter_by(entity="payroll_item", entity_id=item.id, action="lock")
        .order_by(AuditLog.id.desc())
        .first()
    )
    return row.new_values if row else None


def snapshot_matches(item: PayrollItem) -> bool:
    return latest_snapshot(item) == item_snapshot(item)


def history(entity: str, entity_id: int):
    return (
        AuditLog.query
        .filter_by(entity=entity, entity_id=entity_id)
        .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
        .all()
    )


def as_dict(a: AuditLog) -> dict:
    return {
        "id": a.id,
        "entity": a.entity,
        "entity_id": a.entity_id,
        "action": a.action,
        "old_values": a.old_values,
        "new_values": a.new_values,
        "actor_id": a.actor_id,
        "created_at": a.created_at.isoformat() if a.created_at else None,
    }
