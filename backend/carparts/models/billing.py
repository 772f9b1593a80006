from __future__ import annotations

from ..extensions import db
from carparts.time_utils import to_utc_z

BILL_STATUS_ACTIVE = "active"
BILL_STATUS_PARTIALLY_REFUNDED = "partially_refunded"
BILL_STATUS_REFUNDED = "refunded"

REFUND_TYPE_FULL = "full"
REFUND_TYPE_PARTIAL = "partial"


def derive_bill_status(
    total_amount_cents: int,
    total_refunded_cents: int,
    *,
    billed_units: int = 0,
    refunded_units: int = 0,
) -> str:
    """
    Bill status is a pure function of (total, refunded).

    A zero-total bill carries no money to compare, so its status follows
    the returned units instead.
    """
    if total_amount_cents == 0 and billed_units > 0:
        if refunded_units >= billed_units:
            return BILL_STATUS_REFUNDED
        if refunded_units > 0:
            return BILL_STATUS_PARTIALLY_REFUNDED
        return BILL_STATUS_ACTIVE
    if total_refunded_cents > 0 and total_refunded_cents >= total_amount_cents:
        return BILL_STATUS_REFUNDED
    if total_refunded_cents > 0:
        return BILL_STATUS_PARTIALLY_REFUNDED
    return BILL_STATUS_ACTIVE


class Bill(db.Model):
    """
    Record of a completed sale.

    Created together with its items by a direct sale or by completing a
    reservation. Afterwards only the customer metadata and the refund
    running totals change; items and total_amount_cents are immutable.
    """
    __tablename__ = "bills"
    __table_args__ = (
        db.CheckConstraint("total_refunded_cents >= 0", name="ck_bills_refunded_nonneg"),
        db.CheckConstraint(
            "total_refunded_cents <= total_amount_cents",
            name="ck_bills_refunded_le_total",
        ),
        db.Index("ix_bills_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bill_number = db.Column(db.String(64), nullable=True, unique=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(32), nullable=False, default=BILL_STATUS_ACTIVE, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False)
    total_refunded_cents = db.Column(db.Integer, nullable=False, default=0)
    total_quantity = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("reservations.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "BillItem", back_populates="bill", order_by="BillItem.id", lazy=True,
    )
    refunds = db.relationship(
        "Refund", back_populates="bill", order_by="Refund.id", lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True, include_refunds: bool = False) -> dict:
        data = {
            "id": self.id,
            "bill_number": self.bill_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "total_refunded_cents": self.total_refunded_cents,
            "total_quantity": self.total_quantity,
            "created_by": self.created_by,
            "reservation_id": self.reservation_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_refunds:
            data["refunds"] = [refund.to_dict() for refund in self.refunds]
        return data


class BillItem(db.Model):
    """Immutable line item on a bill; name and manufacturer are snapshotted."""
    __tablename__ = "bill_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_bill_items_quantity_pos"),
        db.UniqueConstraint("bill_id", "part_id", name="uq_bill_items_bill_part"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    part_id = db.Column(db.Integer, db.ForeignKey("parts.id"), nullable=False, index=True)

    part_name = db.Column(db.String(255), nullable=False)
    manufacturer = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    bill = db.relationship("Bill", back_populates="items")
    part = db.relationship("Part")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "part_id": self.part_id,
            "part_name": self.part_name,
            "manufacturer": self.manufacturer,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
        }


class Refund(db.Model):
    """
    Money and stock returned against a bill.

    A bill may carry many refunds. Each refund owns its RefundItems through
    refund_id; refund history is always rebuilt by joining on that key.
    """
    __tablename__ = "refunds"
    __table_args__ = (
        db.CheckConstraint("refund_amount_cents >= 0", name="ck_refunds_amount_nonneg"),
        db.CheckConstraint("refund_type IN ('full', 'partial')", name="ck_refunds_type"),
        db.Index("ix_refunds_bill_created", "bill_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False)
    refund_type = db.Column(db.String(16), nullable=False)
    refund_amount_cents = db.Column(db.Integer, nullable=False)
    refund_reason = db.Column(db.Text, nullable=False)
    refunded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    bill = db.relationship("Bill", back_populates="refunds")
    items = db.relationship(
        "RefundItem", back_populates="refund", order_by="RefundItem.id", lazy=True,
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "bill_id": self.bill_id,
            "refund_type": self.refund_type,
            "refund_amount_cents": self.refund_amount_cents,
            "refund_reason": self.refund_reason,
            "refunded_by": self.refunded_by,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["refund_items"] = [item.to_dict() for item in self.items]
        return data


class RefundItem(db.Model):
    __tablename__ = "refund_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_refund_items_quantity_pos"),
        db.UniqueConstraint("refund_id", "part_id", name="uq_refund_items_refund_part"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=False, index=True)
    bill_item_id = db.Column(db.Integer, db.ForeignKey("bill_items.id"), nullable=False, index=True)
    part_id = db.Column(db.Integer, db.ForeignKey("parts.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    refund = db.relationship("Refund", back_populates="items")
    bill_item = db.relationship("BillItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "refund_id": self.refund_id,
            "bill_item_id": self.bill_item_id,
            "part_id": self.part_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
        }
