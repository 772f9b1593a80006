"""
Role hierarchy for access control.

Roles are strictly ordered: general < admin < superadmin. Every permission
check in the codebase goes through `has_at_least` so the ordering lives in
one place.

- general: sell, reserve, register parts; never sees cost price
- admin: edit parts and bills, refunds, user management (except superadmins)
- superadmin: everything, including cost price and the audit log
"""

from __future__ import annotations

from .errors import PermissionDeniedError, ValidationError

GENERAL = "general"
ADMIN = "admin"
SUPERADMIN = "superadmin"

ROLE_LEVELS = {
    GENERAL: 1,
    ADMIN: 2,
    SUPERADMIN: 3,
}

ALL_ROLES = tuple(sorted(ROLE_LEVELS, key=ROLE_LEVELS.get))


def validate_role(role: str | None) -> str:
    if role not in ROLE_LEVELS:
        raise ValidationError(
            f"Invalid role: {role}",
            details={"allowed_roles": list(ALL_ROLES)},
        )
    return role


def has_at_least(role: str | None, required: str) -> bool:
    """True if `role` ranks at or above `required`. Unknown roles rank lowest."""
    return ROLE_LEVELS.get(role, 0) >= ROLE_LEVELS[required]


def require_role(actor, required: str, action: str | None = None) -> None:
    """Raise PermissionDeniedError unless the actor ranks at or above `required`."""
    role = getattr(actor, "role", None)
    if not has_at_least(role, required):
        what = action or "this action"
        raise PermissionDeniedError(
            f"{required.capitalize()} access required for {what}",
            details={"required_role": required},
        )


def can_view_cost_price(role: str | None) -> bool:
    return has_at_least(role, SUPERADMIN)


def assignable_roles(actor_role: str | None) -> tuple[str, ...]:
    """Roles an actor may grant: admins up to admin, superadmins anything."""
    if has_at_least(actor_role, SUPERADMIN):
        return ALL_ROLES
    if has_at_least(actor_role, ADMIN):
        return (GENERAL, ADMIN)
    return ()


def can_manage(actor_role: str | None, target_role: str | None) -> bool:
    """Admins manage admins and general users; only a superadmin touches a superadmin."""
    if not has_at_least(actor_role, ADMIN):
        return False
    if target_role == SUPERADMIN:
        return has_at_least(actor_role, SUPERADMIN)
    return True
