from __future__ import annotations

from ..extensions import db
from carparts.time_utils import to_utc_z

RESERVATION_STATUS_RESERVED = "reserved"
RESERVATION_STATUS_COMPLETED = "completed"
RESERVATION_STATUS_CANCELLED = "cancelled"

RESERVATION_STATUSES = (
    RESERVATION_STATUS_RESERVED,
    RESERVATION_STATUS_COMPLETED,
    RESERVATION_STATUS_CANCELLED,
)


class Reservation(db.Model):
    """
    Stock held against a customer before sale.

    State machine:
        reserved -> completed   (reserved stock becomes sold, a Bill is created)
        reserved -> cancelled   (reserved stock returns to available)

    completed and cancelled are terminal. version_id guards the single
    terminal transition against concurrent completes/cancels.
    """
    __tablename__ = "reservations"
    __table_args__ = (
        db.CheckConstraint("deposit_amount_cents >= 0", name="ck_reservations_deposit_nonneg"),
        db.CheckConstraint(
            "status IN ('reserved', 'completed', 'cancelled')",
            name="ck_reservations_status",
        ),
        db.Index("ix_reservations_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=RESERVATION_STATUS_RESERVED, index=True)

    deposit_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Set on completion; the bill also points back through reservation_id
    bill_id = db.Column(db.Integer, nullable=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "ReservationItem", back_populates="reservation", order_by="ReservationItem.id", lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "status": self.status,
            "deposit_amount_cents": self.deposit_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "bill_id": self.bill_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReservationItem(db.Model):
    __tablename__ = "reservation_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_reservation_items_quantity_pos"),
        db.UniqueConstraint("reservation_id", "part_id", name="uq_reservation_items_res_part"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("reservations.id"), nullable=False, index=True)
    part_id = db.Column(db.Integer, db.ForeignKey("parts.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    reservation = db.relationship("Reservation", back_populates="items")
    part = db.relationship("Part")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reservation_id": self.reservation_id,
            "part_id": self.part_id,
            "part_name": self.part.name if self.part else None,
            "manufacturer": self.part.manufacturer if self.part else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
        }
