"""
Reservation Service

State machine:
    reserved -> completed   reserved -> sold for every line, Bill created
    reserved -> cancelled   reserved -> available for every line

Only a reservation in `reserved` may transition, exactly once. The row is
locked and version-checked so two concurrent completes/cancels cannot both
succeed.
"""

from __future__ import annotations

from sqlalchemy.orm import selectinload

from ..errors import InsufficientStockError, InvalidStateError, NotFoundError, PartNotFoundError, ValidationError
from ..extensions import db
from ..models import Bill, Part, Reservation, ReservationItem
from ..models.reservations import (
    RESERVATION_STATUS_CANCELLED,
    RESERVATION_STATUS_COMPLETED,
    RESERVATION_STATUS_RESERVED,
    RESERVATION_STATUSES,
)
from ..roles import GENERAL, require_role
from ..time_utils import utcnow
from ..validation import LineItemInput, ensure_distinct_parts
from . import audit_service, stock_ledger
from .concurrency import lock_for_update, transaction
from .query_utils import paginate
from .sales_service import create_bill_record


class ReservationError(InvalidStateError):
    """Raised when a reservation is not in a state that allows the transition."""
    def __init__(self, reservation: Reservation, attempted: str):
        super().__init__(
            f"Cannot {attempted} a {reservation.status} reservation",
            details={"reservation_id": reservation.id, "status": reservation.status},
        )


def _load_for_transition(reservation_id: int, attempted: str) -> Reservation:
    reservation = lock_for_update(
        db.session.query(Reservation).filter_by(id=reservation_id)
    ).first()
    if not reservation:
        raise NotFoundError(
            f"Reservation {reservation_id} not found",
            details={"reservation_id": reservation_id},
        )
    if reservation.status != RESERVATION_STATUS_RESERVED:
        raise ReservationError(reservation, attempted)
    return reservation


def reserve(
    items: list[LineItemInput],
    *,
    customer_name: str,
    customer_phone: str,
    deposit_amount_cents: int | None = None,
    notes: str | None = None,
    actor,
) -> Reservation:
    """Hold stock for a customer: available -> reserved for every line."""
    require_role(actor, GENERAL, "reserving parts")
    if not items:
        raise ValidationError("items must be a non-empty list")
    ensure_distinct_parts(items)
    customer_name = customer_name.strip() if isinstance(customer_name, str) else ""
    customer_phone = customer_phone.strip() if isinstance(customer_phone, str) else ""
    if not customer_name:
        raise ValidationError("customer_name is required")
    if not customer_phone:
        raise ValidationError("customer_phone is required")
    deposit = deposit_amount_cents or 0
    if deposit < 0:
        raise ValidationError("deposit_amount_cents must be >= 0")

    with transaction():
        insufficient = []
        lines = []
        for item in items:
            part = db.session.get(Part, item.part_id)
            if not part:
                raise PartNotFoundError(item.part_id)
            available = stock_ledger.get_available(part.id)
            if available < item.quantity:
                insufficient.append({
                    "part_id": part.id,
                    "requested_quantity": item.quantity,
                    "available_stock": available,
                })
                continue
            price = item.unit_price_cents
            if price is None:
                price = part.recommended_price_cents or 0
            lines.append((part, item.quantity, price))

        if insufficient:
            raise InsufficientStockError(
                "Insufficient stock to reserve",
                details={"items": insufficient},
            )

        reservation = Reservation(
            customer_name=customer_name,
            customer_phone=customer_phone,
            status=RESERVATION_STATUS_RESERVED,
            deposit_amount_cents=deposit,
            total_amount_cents=sum(quantity * price for _, quantity, price in lines),
            notes=notes,
            created_by=actor.id,
        )
        db.session.add(reservation)
        db.session.flush()

        for part, quantity, price in lines:
            db.session.add(ReservationItem(
                reservation_id=reservation.id,
                part_id=part.id,
                quantity=quantity,
                unit_price_cents=price,
                total_price_cents=quantity * price,
            ))
            stock_ledger.adjust_stock(
                part.id,
                available=-quantity,
                reserved=quantity,
                movement_type=stock_ledger.MOVEMENT_RESERVATION,
                reference_type=stock_ledger.REFERENCE_RESERVATION,
                reference_id=reservation.id,
                user_id=actor.id,
            )

    audit_service.log_action(
        actor=actor,
        action=audit_service.ACTION_RESERVE,
        table_name="reservations",
        record_id=reservation.id,
        new_values=reservation.to_dict(),
    )
    return reservation


def complete(
    reservation_id: int,
    *,
    final_items: list[LineItemInput] | None = None,
    bill_number: str | None = None,
    actor,
) -> Bill:
    """
    Convert a reservation into a sale.

    final_items may only restate the reserved parts and quantities with
    adjusted unit prices; stock moves reserved -> sold for every line.
    """
    require_role(actor, GENERAL, "completing reservations")

    with transaction():
        reservation = _load_for_transition(reservation_id, "complete")
        old_values = reservation.to_dict()

        final_prices = {}
        if final_items:
            reserved_qty = {item.part_id: item.quantity for item in reservation.items}
            for final in final_items:
                if final.part_id not in reserved_qty:
                    raise ValidationError(
                        f"Part {final.part_id} is not on this reservation",
                        details={"part_id": final.part_id},
                    )
                if final.quantity != reserved_qty[final.part_id]:
                    raise ValidationError(
                        f"Quantity for part {final.part_id} must match the reservation",
                        details={"part_id": final.part_id, "reserved_quantity": reserved_qty[final.part_id]},
                    )
                if final.unit_price_cents is not None:
                    final_prices[final.part_id] = final.unit_price_cents

        lines = []
        for item in reservation.items:
            price = final_prices.get(item.part_id, item.unit_price_cents)
            lines.append((item.part, item.quantity, price))

        bill = create_bill_record(
            lines=lines,
            customer_name=reservation.customer_name,
            customer_phone=reservation.customer_phone,
            bill_number=bill_number.strip() if bill_number and bill_number.strip() else None,
            actor=actor,
            reservation_id=reservation.id,
        )

        for part, quantity, _ in lines:
            stock_ledger.adjust_stock(
                part.id,
                reserved=-quantity,
                sold=quantity,
                movement_type=stock_ledger.MOVEMENT_RESERVATION_COMPLETE,
                reference_type=stock_ledger.REFERENCE_RESERVATION,
                reference_id=reservation.id,
                notes=f"Bill {bill.bill_number}",
                user_id=actor.id,
            )

        reservation.status = RESERVATION_STATUS_COMPLETED
        reservation.completed_at = utcnow()
        reservation.bill_id = bill.id

    audit_service.log_action(
        actor=actor,
        action=audit_service.ACTION_COMPLETE,
        table_name="reservations",
        record_id=reservation.id,
        old_values=old_values,
        new_values=reservation.to_dict() | {"bill": bill.to_dict()},
    )
    return bill


def cancel(reservation_id: int, *, actor) -> Reservation:
    """Release held stock: reserved -> available for every line."""
    require_role(actor, GENERAL, "cancelling reservations")

    with transaction():
        reservation = _load_for_transition(reservation_id, "cancel")
        old_values = reservation.to_dict()

        for item in reservation.items:
            stock_ledger.adjust_stock(
                item.part_id,
                available=item.quantity,
                reserved=-item.quantity,
                movement_type=stock_ledger.MOVEMENT_RESERVATION_RELEASE,
                reference_type=stock_ledger.REFERENCE_RESERVATION,
                reference_id=reservation.id,
                user_id=actor.id,
            )

        reservation.status = RESERVATION_STATUS_CANCELLED
        reservation.cancelled_at = utcnow()

    audit_service.log_action(
        actor=actor,
        action=audit_service.ACTION_CANCEL,
        table_name="reservations",
        record_id=reservation.id,
        old_values=old_values,
        new_values=reservation.to_dict(),
    )
    return reservation


def get_reservation(reservation_id: int) -> Reservation:
    reservation = (
        db.session.query(Reservation)
        .options(selectinload(Reservation.items))
        .filter(Reservation.id == reservation_id)
        .first()
    )
    if not reservation:
        raise NotFoundError(
            f"Reservation {reservation_id} not found",
            details={"reservation_id": reservation_id},
        )
    return reservation


def list_reservations(
    *,
    status: str | None = None,
    page: int | None = 1,
    per_page: int | None = None,
) -> tuple[list[Reservation], dict | None]:
    """Newest first. status='active' is an alias for reserved."""
    query = db.session.query(Reservation).options(selectinload(Reservation.items))
    if status == "active":
        status = RESERVATION_STATUS_RESERVED
    if status and status != "all":
        if status not in RESERVATION_STATUSES:
            raise ValidationError(
                f"Invalid reservation status: {status}",
                details={"allowed": list(RESERVATION_STATUSES) + ["active", "all"]},
            )
        query = query.filter(Reservation.status == status)
    query = query.order_by(Reservation.created_at.desc(), Reservation.id.desc())
    return paginate(query, page, per_page)
