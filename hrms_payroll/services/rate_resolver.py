from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional

from hrms_payroll.common.errors import MissingRateTableError, ValidationError
from hrms_payroll.extensions import db
from hrms_payroll.models.payroll.rate_table import RateTable, RATE_KINDS


def resolve_rate_tables(kind: str, company_id: Optional[int], on_date: date) -> List[RateTable]:
    """
    Return RateTable versions of `kind` effective on `on_date`, ordered by resolution:
    1) company-scoped
    2) global (no scope)

    Within each tier, lower `priority` wins; tie-breaker is most-recent `effective_from`.
    """
    q = (
        RateTable.query
        .filter(RateTable.kind == kind)
        .filter(RateTable.effective_from <= on_date)
        .filter((RateTable.effective_to.is_(None)) | (RateTable.effective_to >= on_date))
    )

    def _ordered(subq):
        return subq.order_by(RateTable.priority.asc(), RateTable.effective_from.desc(), RateTable.id.desc()).all()

    out: List[RateTable] = []
    if company_id is not None:
        out.extend(_ordered(q.filter(RateTable.scope_company_id == company_id)))
    out.extend(_ordered(q.filter(RateTable.scope_company_id.is_(None))))
    return out


def resolve_rate_table(kind: str, company_id: Optional[int], on_date: date) -> RateTable:
    rows = resolve_rate_tables(kind, company_id, on_date)
    if not rows:
        raise MissingRateTableError(f"No {kind} rate table effective on {on_date.isoformat()}")
    return rows[0]


@dataclass(frozen=True)
class RateSet:
    """The four statutory tables that apply to one payroll period."""
    epf: dict
    socso: dict
    eis: dict
    pcb: dict
    versions: Dict[str, int]


def load_rate_set(company_id: Optional[int], on_date: date) -> RateSet:
    rows = {k: resolve_rate_table(k, company_id, on_date) for k in RATE_KINDS}
    return RateSet(
        epf=rows["EPF"].value_json,
        socso=rows["SOCSO"].value_json,
        eis=rows["EIS"].value_json,
        pcb=rows["PCB"].value_json,
        versions={k: r.id for k, r in rows.items()},
    )


def close_rate_table(row: RateTable, closed_by: Optional[int], effective_to: Optional[date] = None) -> RateTable:
    """End a version. Historical versions stay so old periods recompute the same way."""
    if row.effective_to is not None and row.closed_at is not None:
        raise ValidationError("Rate table already closed")
    end = effective_to or date.today()
    if end < row.effective_from:
        raise ValidationError("effective_to cannot be before effective_from")
    row.effective_to = end
    row.closed_by = closed_by
    row.closed_at = datetime.utcnow()
    return row


def seed_defaults(effective_from: date, created_by: Optional[int] = None) -> List[RateTable]:
    """Insert the Malaysia 2025 tables as global versions (skips kinds already covered on that date)."""
    from hrms_payroll.services.rate_tables import MY_2025

    added = []
    for kind in RATE_KINDS:
        if resolve_rate_tables(kind, None, effective_from):
            continue
        row = RateTable(kind=kind, key=f"MY_2025_{kind}", value_json=MY_2025[kind],
                        effective_from=effective_from, created_by=created_by)
        db.session.add(row)
        added.append(row)
    db.session.flush()
    return added
