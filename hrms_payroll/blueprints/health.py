from flask import Blueprint, jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from hrms_payroll.extensions import db

bp = Blueprint("health", __name__, url_prefix="/api/v1")


@bp.get("/health")
def health():
    try:
        db.session.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as e:
        current_app.logger.warning("health: database unreachable: %s", e)
        db.session.rollback()
        db_ok = False
    body = {"success": db_ok, "data": {"status": "ok" if db_ok else "degraded", "database": db_ok}}
    return jsonify(body), 200 if db_ok else 503
