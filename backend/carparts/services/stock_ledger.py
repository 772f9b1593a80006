# Overview: Single write path for part stock counters, plus the movement journal.

from __future__ import annotations

from sqlalchemy import update

from ..errors import ConflictError, InsufficientStockError, PartNotFoundError, ValidationError
from ..extensions import db
from ..models import Part, StockMovement
from .concurrency import lock_for_update

"""
Stock ledger invariants (authoritative)

- total_stock == available_stock + reserved_stock + sold_stock, every counter >= 0.
- Counters change only through adjust_stock; no service writes stock columns.
- adjust_stock never commits. It runs inside the caller's transaction so the
  counter change and the Bill/Reservation/Refund it backs succeed or fail together.
- Every adjustment appends exactly one StockMovement row.
"""

MOVEMENT_RESTOCK = "restock"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_SALE = "sale"
MOVEMENT_RESERVATION = "reservation"
MOVEMENT_RESERVATION_RELEASE = "reservation_release"
MOVEMENT_RESERVATION_COMPLETE = "reservation_complete"
MOVEMENT_RETURN = "return"

REFERENCE_BILL = "bill"
REFERENCE_RESERVATION = "reservation"
REFERENCE_REFUND = "refund"
REFERENCE_MANUAL = "manual"


def _load_locked(part_id: int) -> Part:
    part = lock_for_update(db.session.query(Part).filter_by(id=part_id)).first()
    if not part:
        raise PartNotFoundError(part_id)
    return part


def get_available(part_id: int) -> int:
    """Read-only view of a part's sellable quantity."""
    available = db.session.query(Part.available_stock).filter(Part.id == part_id).scalar()
    if available is None:
        raise PartNotFoundError(part_id)
    return available


def adjust_stock(
    part_id: int,
    *,
    available: int = 0,
    reserved: int = 0,
    sold: int = 0,
    total: int = 0,
    movement_type: str,
    reference_type: str = REFERENCE_MANUAL,
    reference_id: int | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> StockMovement:
    """
    Apply counter deltas to one part atomically.

    The deltas must keep the balance: total == available + reserved + sold.
    Raises InsufficientStockError if any counter would go negative and
    PartNotFoundError if the part does not exist. The UPDATE itself is
    guarded on the resulting counters, so a concurrent writer that slipped
    past the lock is caught as ConflictError instead of driving stock negative.
    """
    if total != available + reserved + sold:
        raise ValidationError(
            "Unbalanced stock adjustment",
            details={"part_id": part_id, "available": available, "reserved": reserved,
                     "sold": sold, "total": total},
        )

    part = _load_locked(part_id)
    previous_available = part.available_stock

    deltas = {
        "available_stock": available,
        "reserved_stock": reserved,
        "sold_stock": sold,
        "total_stock": total,
    }
    for counter, delta in deltas.items():
        current = getattr(part, counter)
        if current + delta < 0:
            raise InsufficientStockError(
                f"Insufficient stock for part {part_id}",
                details={
                    "part_id": part_id,
                    "counter": counter,
                    "current": current,
                    "requested": -delta,
                },
            )

    stmt = (
        update(Part)
        .where(Part.id == part_id)
        .where(Part.available_stock + available >= 0)
        .where(Part.reserved_stock + reserved >= 0)
        .where(Part.sold_stock + sold >= 0)
        .values(
            available_stock=Part.available_stock + available,
            reserved_stock=Part.reserved_stock + reserved,
            sold_stock=Part.sold_stock + sold,
            total_stock=Part.total_stock + total,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise ConflictError(
            f"Stock for part {part_id} changed concurrently",
            details={"part_id": part_id},
        )
    db.session.refresh(part)

    movement = StockMovement(
        part_id=part_id,
        movement_type=movement_type,
        available_delta=available,
        reserved_delta=reserved,
        sold_delta=sold,
        total_delta=total,
        previous_available=previous_available,
        new_available=part.available_stock,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        created_by=user_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def list_movements(
    *,
    part_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    limit: int = 100,
) -> list[StockMovement]:
    query = db.session.query(StockMovement)
    if part_id is not None:
        query = query.filter(StockMovement.part_id == part_id)
    if reference_type:
        query = query.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(StockMovement.reference_id == reference_id)
    return query.order_by(StockMovement.id.desc()).limit(limit).all()
