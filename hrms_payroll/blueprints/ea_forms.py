from flask import Blueprint, request, jsonify, current_app, send_file

from hrms_payroll.common.auth import requires_perms, ensure_tenant, current_company_id
from hrms_payroll.common.deadline import Deadline
from hrms_payroll.common.errors import ValidationError, NotFoundError
from hrms_payroll.extensions import db
from hrms_payroll.models.employee import Employee
from hrms_payroll.services import ea_generator
from hrms_payroll.services.exports import ea_summary, XLSX_MIMETYPE

bp = Blueprint("ea_forms", __name__, url_prefix="/api/v1/ea-forms")


def _ok(data=None, status=200):
    return jsonify({"success": True, "data": data}), status


def _truthy(v) -> bool:
    return str(v).strip().lower() in ("1", "true", "yes", "on") if v is not None else False


def _company_id(d: dict) -> int:
    cid = d.get("company_id") or request.args.get("company_id") or current_company_id()
    try:
        cid = int(cid)
    except (TypeError, ValueError):
        raise ValidationError("company_id is required")
    ensure_tenant(cid)
    return cid


@bp.post("/generate/<int:year>")
@requires_perms("ea.generate")
def generate(year: int):
    d = request.get_json(silent=True) or {}
    company_id = _company_id(d)
    employee_ids = d.get("employee_ids")
    if employee_ids is not None and not isinstance(employee_ids, list):
        raise ValidationError("employee_ids must be a list")
    allow_draft = _truthy(d.get("allow_draft", request.args.get("allow_draft")))

    result = ea_generator.generate(
        company_id, year, employee_ids=employee_ids, allow_draft=allow_draft,
        deadline=Deadline(current_app.config.get("PAYROLL_GENERATE_DEADLINE_SECONDS")),
    )
    db.session.commit()
    return _ok(result)


@bp.get("/<int:year>/<int:employee_id>")
@requires_perms("ea.read")
def get_form(year: int, employee_id: int):
    emp = db.session.get(Employee, employee_id)
    if emp is None:
        raise NotFoundError("Employee not found")
    ensure_tenant(emp.company_id)
    return _ok(ea_generator.form_dict(ea_generator.get_form(employee_id, year)))


@bp.get("/<int:year>/summary")
@requires_perms("ea.read")
def summary(year: int):
    return _ok(ea_generator.company_summary(_company_id({}), year))


@bp.get("/<int:year>/export.xlsx")
@requires_perms("ea.read")
def export(year: int):
    stream, filename = ea_summary(_company_id({}), year)
    return send_file(stream, mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=filename)
