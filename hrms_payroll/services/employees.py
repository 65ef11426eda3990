from __future__ import annotations

import logging
from datetime import date
from typing import List

from hrms_payroll.extensions import db
from hrms_payroll.models.attendance import Schedule
from hrms_payroll.models.employee import Employee
from hrms_payroll.services.leave_ledger import forfeit_pending

log = logging.getLogger(__name__)


def deactivate_resigned(today: date) -> List[dict]:
    """Employees at or past their last working day: inactive, future schedules dropped, pending leave forfeited."""
    rows = (
        Employee.query
        .filter(Employee.status == "active")
        .filter(Employee.last_working_day.isnot(None))
        .filter(Employee.last_working_day <= today)
        .order_by(Employee.id.asc())
        .all()
    )
    out = []
    for emp in rows:
        removed = (
            Schedule.query
            .filter(Schedule.employee_id == emp.id, Schedule.work_date > emp.last_working_day)
            .delete(synchronize_session=False)
        )
        forfeited = forfeit_pending(emp)
        emp.status = "inactive"
        out.append({"employee_id": emp.id, "schedules_removed": removed, "leave_forfeited": forfeited})
        log.info("[employees] deactivated %s (lwd=%s): schedules=%s leave=%s",
                 emp.employee_code, emp.last_working_day, removed, forfeited)
    db.session.flush()
    return out


def employee_dict(e: Employee) -> dict:
    return {
        "id": e.id,
        "company_id": e.company_id,
        "department_id": e.department_id,
        "outlet_id": e.outlet_id,
        "employee_code": e.employee_code,
        "name": e.name,
        "email": e.email,
        "designation": e.designation,
        "work_type": e.work_type,
        "employment_type": e.employment_type,
        "residency_status": e.residency_status,
        "join_date": e.join_date.isoformat() if e.join_date else None,
        "last_working_day": e.last_working_day.isoformat() if e.last_working_day else None,
        "status": e.status,
    }
