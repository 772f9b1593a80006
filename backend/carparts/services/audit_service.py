# Overview: Best-effort audit sink and the read API over it.

from __future__ import annotations

from flask import current_app, has_request_context, request
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLogEntry
from .query_utils import like_pattern

"""
Audit sink rules

- Called after the business transaction has committed.
- A failed audit write is logged and rolled back; it never raises into the
  caller and never undoes the action it describes.
- old_values / new_values are JSON snapshots (to_dict output).
"""

ACTION_CREATE = "CREATE"
ACTION_UPDATE = "UPDATE"
ACTION_SELL = "SELL"
ACTION_RESERVE = "RESERVE"
ACTION_COMPLETE = "COMPLETE"
ACTION_CANCEL = "CANCEL"
ACTION_FULL_REFUND = "FULL_REFUND"
ACTION_PARTIAL_REFUND = "PARTIAL_REFUND"
ACTION_DEACTIVATE = "DEACTIVATE"
ACTION_REACTIVATE = "REACTIVATE"
ACTION_DELETE = "DELETE"
ACTION_ROLE_CHANGE = "ROLE_CHANGE"


def _client_context() -> tuple[str | None, str | None]:
    if not has_request_context():
        return None, None
    return request.remote_addr, request.headers.get("User-Agent")


def log_action(
    *,
    actor,
    action: str,
    table_name: str,
    record_id: int | None = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
) -> AuditLogEntry | None:
    """
    Record one mutating action. Returns the entry, or None if the write failed.
    """
    ip_address, user_agent = _client_context()
    try:
        entry = AuditLogEntry(
            user_id=getattr(actor, "id", None),
            username=getattr(actor, "username", None),
            action=action,
            table_name=table_name,
            record_id=record_id,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
            user_agent=user_agent[:512] if user_agent else None,
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to write audit entry %s on %s #%s", action, table_name, record_id
        )
        return None


def list_audit_logs(
    *,
    table_name: str | None = None,
    action: str | None = None,
    username: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AuditLogEntry], int]:
    """Newest first. username is a case-insensitive substring match."""
    query = db.session.query(AuditLogEntry)
    if table_name:
        query = query.filter(AuditLogEntry.table_name == table_name)
    if action:
        query = query.filter(AuditLogEntry.action == action)
    if username:
        query = query.filter(
            func.lower(AuditLogEntry.username).like(like_pattern(username.lower()), escape="\\")
        )

    total = query.count()
    logs = (
        query.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return logs, total


def get_filter_options() -> dict:
    table_names = [
        row[0] for row in
        db.session.query(AuditLogEntry.table_name).distinct().order_by(AuditLogEntry.table_name).all()
    ]
    actions = [
        row[0] for row in
        db.session.query(AuditLogEntry.action).distinct().order_by(AuditLogEntry.action).all()
    ]
    return {"table_names": table_names, "actions": actions}
