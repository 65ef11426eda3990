from datetime import datetime
from hrms_payroll.extensions import db


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)
    entity = db.Column(db.String(40), nullable=False)      # payroll_run, payroll_item, leave_request, ...
    entity_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(40), nullable=False)
    old_values = db.Column(db.JSON)
    new_values = db.Column(db.JSON)
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_audit_entity", "entity", "entity_id"),
    )
