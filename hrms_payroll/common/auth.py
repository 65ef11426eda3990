# hrms_payroll/common/auth.py
from __future__ import annotations

from functools import wraps
from typing import Iterable, Optional, Set

from flask_jwt_extended import jwt_required, get_jwt, get_jwt_identity

from hrms_payroll.common.errors import TenantMismatchError
from hrms_payroll.common.http import fail
from hrms_payroll.extensions import db
from hrms_payroll.models.user import User
from hrms_payroll.models.security import Role, UserRole, user_permission_codes


# ---------- helpers ----------

def _wildcard_match(user_perm: str, required: str) -> bool:
    """
    Match required permission against a user's permission with simple wildcards.
      'payroll.*'      matches 'payroll.run.write'
      'payroll.run.*'  matches 'payroll.run.approve'
    """
    if user_perm == required:
        return True
    if user_perm.endswith(".*"):
        return required.startswith(user_perm[:-2])
    return False


def _has_any_perm(user_perms: Set[str], required_perms: Iterable[str]) -> bool:
    if not required_perms:
        return True
    if not user_perms:
        return False
    return any(_wildcard_match(up, req) for req in required_perms for up in user_perms)


def _collect_roles_from_db(user_id: int) -> Set[str]:
    q = (
        db.session.query(Role.code)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .distinct()
    )
    return {row[0] for row in q.all()}


def _load_user(uid) -> Optional[User]:
    try:
        return db.session.get(User, int(uid))
    except (TypeError, ValueError):
        return None


def current_user_id() -> Optional[int]:
    uid = get_jwt_identity()
    try:
        return int(uid) if uid is not None else None
    except (TypeError, ValueError):
        return None


def current_company_id() -> Optional[int]:
    """Tenant pinned in the token; None for group-level users."""
    cid = (get_jwt() or {}).get("company_id")
    return int(cid) if cid is not None else None


def ensure_tenant(company_id) -> None:
    """Raise 403 when the caller is pinned to another company. Never says which one owns it."""
    pinned = current_company_id()
    if pinned is not None and company_id is not None and int(company_id) != pinned:
        raise TenantMismatchError()


# ---------- decorators ----------

def requires_roles(*codes: str):
    """
    Require that the current user has AT LEAST ONE of the given role codes.
    Uses roles in JWT if present; falls back to DB. 'admin' always passes.
    """
    def outer(fn):
        @wraps(fn)
        @jwt_required()
        def inner(*args, **kwargs):
            claims = get_jwt() or {}
            roles = set(claims.get("roles") or [])
            if not roles:
                user = _load_user(get_jwt_identity())
                if not user:
                    return fail("Unauthorized", status=401)
                roles = _collect_roles_from_db(user.id)

            if "admin" in roles or any(r in roles for r in codes):
                return fn(*args, **kwargs)
            return fail("Forbidden", status=403)
        return inner
    return outer


def requires_perms(*perm_codes: str):
    """
    Require that the current user has ANY of the given permission codes.

    Fast path: 'perms' and 'roles' from JWT claims.
    Fallback:  DB permissions via role mappings (covers stale tokens).
    """
    def outer(fn):
        @wraps(fn)
        @jwt_required()
        def inner(*args, **kwargs):
            if not perm_codes:
                return fn(*args, **kwargs)

            claims = get_jwt() or {}
            if "admin" in set(claims.get("roles") or []):
                return fn(*args, **kwargs)
            if _has_any_perm(set(claims.get("perms") or []), perm_codes):
                return fn(*args, **kwargs)

            user = _load_user(get_jwt_identity())
            if not user:
                return fail("Unauthorized", status=401)
            if "admin" in _collect_roles_from_db(user.id):
                return fn(*args, **kwargs)
            if not _has_any_perm(user_permission_codes(user.id), perm_codes):
                return fail("Forbidden", status=403)
            return fn(*args, **kwargs)
        return inner
    return outer
