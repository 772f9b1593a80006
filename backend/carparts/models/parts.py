from __future__ import annotations

from ..extensions import db
from carparts.time_utils import to_utc_z, to_iso_date


class Part(db.Model):
    """
    Car part master record with its stock counters.

    Invariant (enforced by CHECK constraints and by the stock ledger):
        total_stock == available_stock + reserved_stock + sold_stock
        and every counter is >= 0

    Counters are only ever changed through services.stock_ledger.adjust_stock.
    """
    __tablename__ = "parts"
    __table_args__ = (
        db.CheckConstraint("available_stock >= 0", name="ck_parts_available_nonneg"),
        db.CheckConstraint("reserved_stock >= 0", name="ck_parts_reserved_nonneg"),
        db.CheckConstraint("sold_stock >= 0", name="ck_parts_sold_nonneg"),
        db.CheckConstraint(
            "total_stock = available_stock + reserved_stock + sold_stock",
            name="ck_parts_stock_balance",
        ),
        db.Index("ix_parts_name_manufacturer", "name", "manufacturer"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    manufacturer = db.Column(db.String(255), nullable=False)
    part_number = db.Column(db.String(64), nullable=True, unique=True)

    total_stock = db.Column(db.Integer, nullable=False, default=0)
    available_stock = db.Column(db.Integer, nullable=False, default=0)
    reserved_stock = db.Column(db.Integer, nullable=False, default=0)
    sold_stock = db.Column(db.Integer, nullable=False, default=0)

    # Prices in cents; cost price is superadmin-only
    cost_price_cents = db.Column(db.Integer, nullable=True)
    recommended_price_cents = db.Column(db.Integer, nullable=True)

    # Provenance (set at creation, never edited)
    container_no = db.Column(db.String(64), nullable=True, index=True)
    local_purchase = db.Column(db.Boolean, nullable=False, default=False)

    # Kit / sub-part hierarchy; informational only
    parent_id = db.Column(db.Integer, db.ForeignKey("parts.id"), nullable=True, index=True)
    available_from = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    parent = db.relationship("Part", remote_side=[id], backref=db.backref("children", lazy=True))

    @property
    def stock_status(self) -> str:
        if self.available_stock > 0:
            return "available"
        if self.reserved_stock > 0:
            return "reserved"
        return "sold"

    def to_dict(self, include_cost: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "manufacturer": self.manufacturer,
            "part_number": self.part_number,
            "total_stock": self.total_stock,
            "available_stock": self.available_stock,
            "reserved_stock": self.reserved_stock,
            "sold_stock": self.sold_stock,
            "stock_status": self.stock_status,
            "recommended_price_cents": self.recommended_price_cents,
            "container_no": self.container_no,
            "local_purchase": self.local_purchase,
            "parent_id": self.parent_id,
            "available_from": to_iso_date(self.available_from),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
        if include_cost:
            data["cost_price_cents"] = self.cost_price_cents
        return data

    def stock_snapshot(self) -> dict:
        return {
            "total_stock": self.total_stock,
            "available_stock": self.available_stock,
            "reserved_stock": self.reserved_stock,
            "sold_stock": self.sold_stock,
        }


class StockMovement(db.Model):
    """
    Append-only journal of stock counter changes.

    One row per adjust_stock call, written in the same transaction as the
    counter update it describes. Never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_part_created", "part_id", "created_at"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    part_id = db.Column(db.Integer, db.ForeignKey("parts.id"), nullable=False)

    # restock, adjustment, sale, reservation, reservation_release, reservation_complete, return
    movement_type = db.Column(db.String(32), nullable=False, index=True)

    available_delta = db.Column(db.Integer, nullable=False, default=0)
    reserved_delta = db.Column(db.Integer, nullable=False, default=0)
    sold_delta = db.Column(db.Integer, nullable=False, default=0)
    total_delta = db.Column(db.Integer, nullable=False, default=0)

    previous_available = db.Column(db.Integer, nullable=False)
    new_available = db.Column(db.Integer, nullable=False)

    # bill, reservation, refund, manual
    reference_type = db.Column(db.String(32), nullable=False, default="manual")
    reference_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    part = db.relationship("Part", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "part_id": self.part_id,
            "movement_type": self.movement_type,
            "available_delta": self.available_delta,
            "reserved_delta": self.reserved_delta,
            "sold_delta": self.sold_delta,
            "total_delta": self.total_delta,
            "previous_available": self.previous_available,
            "new_available": self.new_available,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
