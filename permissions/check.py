from flask import current_app

from extensions import db
from models import Staff
from permissions.matrix import ACTION_FLAGS, SUPER_ADMIN_ROLES


def _role_of(actor):
    role = getattr(actor, "role", None)
    if role is None or not getattr(role, "is_active", False):
        return None
    return role


def is_super_admin(actor) -> bool:
    role = _role_of(actor)
    if role is None:
        return False
    return (role.role_name or "").strip().lower() in SUPER_ADMIN_ROLES


def has_permission(actor, module, action) -> bool:
    """Role permission matrix lookup: may ``actor`` do ``action`` in ``module``?"""
    if actor is None or getattr(actor, "employment_status", None) != "active":
        return False

    role = _role_of(actor)
    if role is None:
        return False
    if is_super_admin(actor):
        return True

    flag = ACTION_FLAGS.get((action or "").strip().lower())
    if not flag:
        return False

    for perm in role.permissions or []:
        module_row = perm.module
        if module_row is None or not module_row.is_active:
            continue
        if module_row.module_name == module:
            return bool(getattr(perm, flag, False))
    return False


def can_approve_for(actor, staff, module="leave_management") -> bool:
    """Approval authority scoped to the target's department.

    Admin roles approve anywhere; others must share the department or be
    the direct supervisor.
    """
    if not has_permission(actor, module, "approve"):
        return False
    role = _role_of(actor)
    if role is not None and role.is_admin_role:
        return True
    if staff.supervisor_id is not None and staff.supervisor_id == actor.id:
        return True
    return actor.department_id == staff.department_id


def permissions_enforced() -> bool:
    return bool(current_app.config.get("LEDGER_ENFORCE_PERMISSIONS", True))


def load_actor(actor_id):
    if actor_id is None:
        return None
    return db.session.get(Staff, int(actor_id))
