# Overview: User registration and administration under the role hierarchy.

"""
User Management Service

- Public sign-up always yields a general user. An authenticated admin may
  create general/admin users, a superadmin any role.
- Admins never see, modify, deactivate or delete a superadmin.
- Nobody deactivates or deletes their own account.
- A user with recorded activity is deactivated, never deleted, so audit,
  bill, reservation, refund and stock movement references stay valid.
"""

from __future__ import annotations

from ..errors import ConflictError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from ..extensions import db
from ..models import AuditLogEntry, Bill, Refund, Reservation, SessionToken, StockMovement, User
from ..roles import ADMIN, GENERAL, SUPERADMIN, assignable_roles, can_manage, require_role, validate_role
from . import audit_service, session_service
from .auth_service import hash_password
from .concurrency import transaction

USERNAME_MAX_LENGTH = 64


def _clean_username(username) -> str:
    name = username.strip() if isinstance(username, str) else ""
    if not name:
        raise ValidationError("username is required")
    if len(name) > USERNAME_MAX_LENGTH:
        raise ValidationError(f"username exceeds max length {USERNAME_MAX_LENGTH}")
    return name


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
    return user


def _require_manageable(actor, target: User, action: str) -> None:
    require_role(actor, ADMIN, action)
    if not can_manage(actor.role, target.role):
        raise PermissionDeniedError(
            f"Admins cannot {action} a superadmin",
            details={"user_id": target.id},
        )


def register_user(username, password, *, role: str | None = None, actor=None) -> User:
    """Create an account; the grantable role depends on who is asking."""
    username = _clean_username(username)

    if actor is None:
        if role not in (None, GENERAL):
            raise PermissionDeniedError("Public registration can only create general users")
        role = GENERAL
    else:
        role = validate_role(role or GENERAL)
        allowed = assignable_roles(actor.role)
        if actor.role == GENERAL or role not in allowed:
            raise PermissionDeniedError(
                f"You cannot create users with role {role}",
                details={"assignable_roles": list(allowed)},
            )

    password_hash = hash_password(password)

    with transaction():
        if db.session.query(User.id).filter(User.username == username).first():
            raise ConflictError(
                f"Username {username} already exists",
                details={"username": username},
            )
        user = User(username=username, password_hash=password_hash, role=role, is_active=True)
        db.session.add(user)

    audit_service.log_action(
        actor=actor,
        action=audit_service.ACTION_CREATE,
        table_name="users",
        record_id=user.id,
        new_values=user.to_dict(),
    )
    return user


def list_users(*, actor) -> list[User]:
    require_role(actor, ADMIN, "listing users")
    query = db.session.query(User)
    if actor.role != SUPERADMIN:
        query = query.filter(User.role != SUPERADMIN)
    return query.order_by(User.created_at.asc(), User.id.asc()).all()


def change_role(user_id: int, role: str, *, actor) -> User:
    role = validate_role(role)
    target = _get_user(user_id)
    _require_manageable(actor, target, "change the role of")
    if role not in assignable_roles(actor.role):
        raise PermissionDeniedError(
            f"You cannot assign role {role}",
            details={"assignable_roles": list(assignable_roles(actor.role))},
        )
    if target.id == actor.id:
        raise InvalidStateError("You cannot change your own role")

    with transaction():
        old_values = target.to_dict()
        target.role = role

    audit_service.log_action(
        actor=actor,
        action=audit_service.ACTION_ROLE_CHANGE,
        table_name="users",
        record_id=target.id,
        old_values=old_values,
        new_values=target.to_dict(),
    )
    return target


def deactivate_user(user_id: int, *, actor) -> User:
    """Disable login and revoke every open session."""
    target = _get_user(user_id)
    _require_manageable(actor, target, "deactivate")
    if target.id == actor.id:
        raise InvalidStateError("You cannot deactivate your own account")
    if not target.is_active:
        raise InvalidStateError("User is already inactive", details={"user_id": target.id})

    with transaction():
        old_values = target.to_dict()
        target.is_active = False
        session_service.revoke_all_user_sessions(target.id, reason="User account deactivated")

    audit_service.log_action(
        actor=actor,
        action=audit_service.ACTION_DEACTIVATE,
        table_name="users",
        record_id=target.id,
        old_values=old_values,
        new_values=target.to_dict(),
    )
    return target


def reactivate_user(user_id: int, *, actor) -> User:
    target = _get_user(user_id)
    _require_manageable(actor, target, "reactivate")
    if target.is_active:
        raise InvalidStateError("User is already active", details={"user_id": target.id})

    with transaction():
        old_values = target.to_dict()
        target.is_active = True

    audit_service.log_action(
        actor=actor,
        action=audit_service.ACTION_REACTIVATE,
        table_name="users",
        record_id=target.id,
        old_values=old_values,
        new_values=target.to_dict(),
    )
    return target


def activity_counts(user_id: int) -> dict[str, int]:
    """Rows in other tables that reference this user."""
    counts = {
        "audit_logs": db.session.query(AuditLogEntry).filter(AuditLogEntry.user_id == user_id).count(),
        "bills": db.session.query(Bill).filter(Bill.created_by == user_id).count(),
        "reservations": db.session.query(Reservation).filter(Reservation.created_by == user_id).count(),
        "refunds": db.session.query(Refund).filter(Refund.refunded_by == user_id).count(),
        "stock_movements": db.session.query(StockMovement).filter(StockMovement.created_by == user_id).count(),
    }
    return {table: n for table, n in counts.items() if n}


def delete_user(user_id: int, *, actor) -> None:
    """Hard delete, allowed only for accounts with no recorded activity."""
    target = _get_user(user_id)
    _require_manageable(actor, target, "delete")
    if target.id == actor.id:
        raise InvalidStateError("You cannot delete your own account")

    activity = activity_counts(target.id)
    if activity:
        raise InvalidStateError(
            "User has recorded activity and cannot be deleted; deactivate the account instead",
            details={"user_id": target.id, "activity": activity},
        )

    old_values = target.to_dict()
    with transaction():
        db.session.query(SessionToken).filter(SessionToken.user_id == target.id).delete(
            synchronize_session=False
        )
        db.session.delete(target)

    audit_service.log_action(
        actor=actor,
        action=audit_service.ACTION_DELETE,
        table_name="users",
        record_id=user_id,
        old_values=old_values,
    )
