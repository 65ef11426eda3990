from datetime import datetime, date
from hrms_payroll.extensions import db

RATE_KINDS = ("EPF", "SOCSO", "EIS", "PCB")


class RateTable(db.Model):
    """
    One version of a statutory table. value_json shape depends on `kind`
    (see services.rate_tables for the readers).
    """
    __tablename__ = "rate_tables"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.Enum(*RATE_KINDS, name="rate_table_kind_enum"), nullable=False)
    key = db.Column(db.String(80), nullable=False)      # human label, e.g. "MY_2025_EPF"
    value_json = db.Column(db.JSON, nullable=False)

    effective_from = db.Column(db.Date, nullable=False, default=date.today)
    effective_to = db.Column(db.Date)

    # null => applies to every company
    scope_company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True)
    priority = db.Column(db.Integer, nullable=False, default=100)

    created_by = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    closed_by = db.Column(db.Integer)
    closed_at = db.Column(db.DateTime)

    __table_args__ = (
        db.Index("ix_rate_table_resolve", "kind", "scope_company_id", "effective_from", "effective_to", "priority"),
    )
