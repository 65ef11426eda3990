from __future__ import annotations

import json
from datetime import date
from io import BytesIO
import logging

from flask import Blueprint, request, jsonify, current_app, send_file, Response, stream_with_context

from hrms_payroll.common.auth import requires_perms, ensure_tenant, current_user_id
from hrms_payroll.common.deadline import Deadline
from hrms_payroll.common.errors import APIError, ValidationError, NotFoundError
from hrms_payroll.extensions import db
from hrms_payroll.models.payroll.pay_run import PayrollRun, PayrollItem
from hrms_payroll.services import payroll_run as runs
from hrms_payroll.services import audit, bank_files
from hrms_payroll.services.exports import run_register, XLSX_MIMETYPE
from hrms_payroll.services.payslip_service import PayslipService

log = logging.getLogger(__name__)

bp = Blueprint("payroll_runs", __name__, url_prefix="/api/v1/payroll/runs")
payslips = PayslipService()


# ---------- helpers ----------
def _ok(data=None, status=200, **meta):
    payload = {"success": True, "data": data}
    if meta:
        payload["meta"] = meta
    return jsonify(payload), status


def _int(v, name):
    try:
        return int(v)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def _ids(values, name="employee_ids"):
    if values is None:
        return None
    if not isinstance(values, list):
        raise ValidationError(f"{name} must be a list")
    return [_int(v, name) for v in values]


def _run_or_404(run_id: int) -> PayrollRun:
    run = db.session.get(PayrollRun, run_id)
    if run is None:
        raise NotFoundError("Payroll run not found")
    ensure_tenant(run.company_id)
    return run


def _deadline() -> Deadline:
    return Deadline(current_app.config.get("PAYROLL_GENERATE_DEADLINE_SECONDS"))


# ---------- runs ----------
@bp.get("")
@requires_perms("payroll.run.read")
def list_runs():
    company_id = _int(request.args.get("company_id"), "company_id")
    ensure_tenant(company_id)
    q = PayrollRun.query.filter_by(company_id=company_id)
    year = request.args.get("year", type=int)
    if year:
        q = q.filter_by(year=year)
    rows = q.order_by(PayrollRun.year.desc(), PayrollRun.month.desc()).all()
    return _ok([runs.run_dict(r) for r in rows])


@bp.post("")
@requires_perms("payroll.run.write")
def create_run():
    d = request.get_json(silent=True) or {}
    missing = [k for k in ("company_id", "month", "year") if d.get(k) in (None, "")]
    if missing:
        raise ValidationError(f"Missing fields: {', '.join(missing)}")
    company_id = _int(d["company_id"], "company_id")
    ensure_tenant(company_id)
    run = runs.create(company_id, _int(d["month"], "month"), _int(d["year"], "year"), current_user_id())
    db.session.commit()
    return _ok({"run_id": run.id, "status": run.status.value}, 201)


@bp.get("/<int:run_id>")
@requires_perms("payroll.run.read")
def get_run(run_id: int):
    return _ok(runs.run_dict(_run_or_404(run_id)))


@bp.delete("/<int:run_id>")
@requires_perms("payroll.run.write")
def delete_run(run_id: int):
    _run_or_404(run_id)
    runs.delete(run_id, current_user_id())
    db.session.commit()
    return _ok({"deleted": True, "run_id": run_id})


@bp.post("/<int:run_id>/generate")
@requires_perms("payroll.run.write")
def generate(run_id: int):
    _run_or_404(run_id)
    actor = current_user_id()

    if request.args.get("stream") not in ("1", "true", "yes"):
        result = runs.generate(run_id, actor, _deadline())
        db.session.commit()
        return _ok({"totals": result["totals"], "items": result["items"]})

    deadline = _deadline()

    def _events():
        try:
            for event in runs.iter_generate(run_id, actor, deadline):
                if event["event"] == "done":
                    db.session.commit()
                yield json.dumps(event) + "\n"
        except APIError as e:
            db.session.rollback()
            log.warning("[payroll] streamed generate run=%s aborted: %s", run_id, e.message)
            yield json.dumps({"event": "error", "code": e.code, "message": e.message}) + "\n"
        except Exception:
            db.session.rollback()
            log.exception("[payroll] streamed generate run=%s crashed", run_id)
            yield json.dumps({"event": "error", "code": "INTERNAL", "message": "Internal server error"}) + "\n"

    return Response(stream_with_context(_events()), mimetype="application/x-ndjson")


@bp.post("/<int:run_id>/approve")
@requires_perms("payroll.run.approve")
def approve(run_id: int):
    _run_or_404(run_id)
    run = runs.approve(run_id, current_user_id())
    db.session.commit()
    return _ok({"run_id": run.id, "status": run.status.value})


@bp.post("/<int:run_id>/lock")
@requires_perms("payroll.run.approve")
def lock(run_id: int):
    _run_or_404(run_id)
    run = runs.lock(run_id, current_user_id())
    db.session.commit()
    return _ok({"run_id": run.id, "status": run.status.value})


@bp.post("/<int:run_id>/pay")
@requires_perms("payroll.run.approve")
def pay(run_id: int):
    _run_or_404(run_id)
    d = request.get_json(silent=True) or {}
    meta = d.get("meta")
    if meta is not None and not isinstance(meta, dict):
        raise ValidationError("meta must be an object")
    run = runs.pay(run_id, d.get("payment_ref"), meta, current_user_id())
    db.session.commit()
    return _ok({"run_id": run.id, "status": run.status.value, "paid_at": run.paid_at.isoformat()})


@bp.post("/<int:run_id>/reopen")
@requires_perms("payroll.run.write")
def reopen(run_id: int):
    _run_or_404(run_id)
    run = runs.reopen(run_id, current_user_id())
    db.session.commit()
    return _ok({"run_id": run.id, "status": run.status.value})


@bp.post("/<int:run_id>/relink")
@requires_perms("payroll.run.write")
def relink(run_id: int):
    _run_or_404(run_id)
    d = request.get_json(silent=True) or {}
    result = runs.relink_claims(run_id, _ids(d.get("employee_ids")), current_user_id())
    db.session.commit()
    return _ok(result)


# ---------- items ----------
@bp.get("/<int:run_id>/items")
@requires_perms("payroll.run.read")
def list_items(run_id: int):
    run = _run_or_404(run_id)
    full = request.args.get("full") in ("1", "true", "yes")
    return _ok([runs.item_dict(it, full=full) for it in runs.ordered_items(run)])


def _item_or_404(run_id: int, item_id: int) -> PayrollItem:
    _run_or_404(run_id)
    item = PayrollItem.query.filter_by(id=item_id, run_id=run_id).first()
    if item is None:
        raise NotFoundError("Payroll item not found")
    return item


@bp.get("/<int:run_id>/items/<int:item_id>")
@requires_perms("payroll.run.read")
def get_item(run_id: int, item_id: int):
    item = _item_or_404(run_id, item_id)
    data = runs.item_dict(item, full=True)
    if item.locked_at is not None:
        data["snapshot_matches"] = audit.snapshot_matches(item)
    return _ok(data)


@bp.get("/<int:run_id>/items/<int:item_id>/payslip")
@requires_perms("payroll.run.read")
def payslip(run_id: int, item_id: int):
    return _ok(payslips.build_payslip_dto(_item_or_404(run_id, item_id)))


@bp.get("/<int:run_id>/items/<int:item_id>/audit")
@requires_perms("payroll.run.read")
def item_audit(run_id: int, item_id: int):
    item = _item_or_404(run_id, item_id)
    return _ok([audit.as_dict(a) for a in audit.history("payroll_item", item.id)])


# ---------- export ----------
@bp.get("/<int:run_id>/export.xlsx")
@requires_perms("payroll.run.read")
def export_register(run_id: int):
    run = _run_or_404(run_id)
    stream, filename = run_register(run)
    return send_file(stream, mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=filename)


@bp.get("/bank-formats")
@requires_perms("payroll.run.read")
def list_bank_formats():
    return _ok(bank_files.available_formats())


@bp.get("/<int:run_id>/bank-file")
@requires_perms("payroll.run.read")
def export_bank_file(run_id: int):
    run = _run_or_404(run_id)
    credit_date = None
    if request.args.get("credit_date"):
        try:
            credit_date = date.fromisoformat(request.args["credit_date"])
        except ValueError:
            raise ValidationError("credit_date must be YYYY-MM-DD")
    out = bank_files.generate(
        run, request.args.get("format", "csv"), credit_date=credit_date,
        debit_account=request.args.get("debit_account", ""),
        company_code=request.args.get("company_code", ""),
    )
    log.info("bank file %s for run %s: %s records", out["filename"], run.id, out["records"])
    return send_file(BytesIO(out["content"]), mimetype=out["mimetype"], as_attachment=True,
                     download_name=out["filename"])
