from __future__ import annotations

from ..extensions import db
from carparts.time_utils import to_utc_z


class AuditLogEntry(db.Model):
    """
    Compliance trail of mutating actions.

    Written after the business transaction commits; a failed write never
    undoes the action it describes. username is denormalised so entries
    stay readable if the user is later renamed.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_table_record", "table_name", "record_id"),
        db.Index("ix_audit_logs_action_created", "action", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    username = db.Column(db.String(64), nullable=True)

    # CREATE, UPDATE, SELL, RESERVE, COMPLETE, CANCEL, FULL_REFUND, PARTIAL_REFUND, ...
    action = db.Column(db.String(32), nullable=False)
    table_name = db.Column(db.String(64), nullable=False)
    record_id = db.Column(db.Integer, nullable=True)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.username,
            "action": self.action,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "timestamp": to_utc_z(self.created_at),
        }
