from hrms_payroll.extensions import db
from hrms_payroll.models.security import Role, Permission, RolePermission, UserRole
from hrms_payroll.models.user import User

DEFAULT_ROLES = [
    ("admin", "Administrator"),
    ("hr", "HR"),
    ("payroll", "Payroll Officer"),
    ("manager", "Manager"),
    ("employee", "Employee"),
]

DEFAULT_PERMS = [
    # Masters / settings
    "master.companies.read", "master.companies.write",
    "settings.read", "settings.manage",
    "employee.read", "employee.write",

    # Attendance
    "attendance.clock", "attendance.read", "attendance.manage", "attendance.ot.approve",

    # Leave
    "leave.request.read", "leave.request.create", "leave.request.approve", "leave.balance.manage",

    # Claims
    "claims.read", "claims.create", "claims.verify", "claims.approve",

    # Payroll
    "payroll.run.read", "payroll.run.write", "payroll.run.approve",
    "payroll.adjustments.read", "payroll.adjustments.write",
    "payroll.advance.read", "payroll.advance.write",
    "rates.read", "rates.manage",
    "ea.read", "ea.generate",
]

PAYROLL_PERMS = [p for p in DEFAULT_PERMS if p.startswith(("payroll.", "rates.", "ea.", "claims."))]

ROLE_PERM_MAP = {
    "admin": DEFAULT_PERMS,
    "hr": DEFAULT_PERMS,
    "payroll": PAYROLL_PERMS + ["employee.read", "attendance.read", "leave.request.read", "settings.read"],
    "manager": [
        "employee.read",
        "attendance.read", "attendance.ot.approve",
        "leave.request.read", "leave.request.approve",
        "claims.read", "claims.approve",
    ],
    "employee": [
        "attendance.clock", "attendance.read",
        "leave.request.read", "leave.request.create",
        "claims.read", "claims.create",
    ],
}

def _ensure_roles():
    code_to_role = {}
    for code, name in DEFAULT_ROLES:
        r = Role.query.filter_by(code=code).first()
        if not r:
            r = Role(code=code)
            db.session.add(r)
            db.session.flush()
        code_to_role[code] = r
    return code_to_role

def _ensure_permissions():
    code_to_perm = {}
    for code in DEFAULT_PERMS:
        p = Permission.query.filter_by(code=code).first()
        if not p:
            p = Permission(code=code, name=code.replace(".", " ").title())
            db.session.add(p)
            db.session.flush()
        code_to_perm[code] = p
    return code_to_perm

def _map_role_perms(code_to_role, code_to_perm):
    for rcode, perms in ROLE_PERM_MAP.items():
        r = code_to_role[rcode]
        # existing mapping cache (avoid duplicates)
        existing = {(rp.role_id, rp.permission_id) for rp in r.permissions}
        for pcode in perms:
            p = code_to_perm[pcode]
            if (r.id, p.id) not in existing:
                db.session.add(RolePermission(role_id=r.id, permission_id=p.id))

def _assign_admin_role(admin_email: str):
    admin_user = User.query.filter_by(email=admin_email).first()
    if not admin_user:
        return
    if not any(ur.role.code == "admin" for ur in admin_user.user_roles):
        admin_role = Role.query.filter_by(code="admin").first()
        if admin_role:
            db.session.add(UserRole(user_id=admin_user.id, role_id=admin_role.id))

def run(admin_email: str = "admin@demo.local"):
    code_to_role = _ensure_roles()
    code_to_perm = _ensure_permissions()
    _map_role_perms(code_to_role, code_to_perm)
    _assign_admin_role(admin_email)
    db.session.commit()
    return {"ok": True, "roles": len(DEFAULT_ROLES), "perms": len(DEFAULT_PERMS)}
