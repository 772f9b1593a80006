"""
Refund Processing Service

Given a Bill, return money and stock in full or itemized part.

DESIGN PRINCIPLES:
- Cumulative refunded quantity per part never exceeds the billed quantity,
  counted across every Refund of the bill
- A full refund restores only what earlier refunds have not already restored
- RefundItem.refund_id is always set from the Refund flushed in the same
  transaction; history is rebuilt by joining on that key and nothing else
- Stock restoration, Refund, RefundItems and the Bill totals commit together
- Bill.status is derived from (total_amount_cents, total_refunded_cents)
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import InvalidStateError, NotFoundError, OverRefundError, ValidationError
from ..extensions import db
from ..models import Bill, BillItem, Refund, RefundItem
from ..models.billing import (
    BILL_STATUS_REFUNDED,
    REFUND_TYPE_FULL,
    REFUND_TYPE_PARTIAL,
    derive_bill_status,
)
from ..roles import ADMIN, require_role
from ..validation import LineItemInput, ensure_distinct_parts
from . import audit_service, stock_ledger
from .concurrency import lock_for_update, transaction

REFUND_TYPES = (REFUND_TYPE_FULL, REFUND_TYPE_PARTIAL)


# =============================================================================
# QUANTITY ACCOUNTING
# =============================================================================

def refunded_quantities(bill_id: int) -> dict[int, int]:
    """Sum of RefundItem.quantity per part across every refund of the bill."""
    rows = (
        db.session.query(RefundItem.part_id, func.sum(RefundItem.quantity))
        .join(Refund, RefundItem.refund_id == Refund.id)
        .filter(Refund.bill_id == bill_id)
        .group_by(RefundItem.part_id)
        .all()
    )
    return {part_id: int(qty or 0) for part_id, qty in rows}


def _full_refund_lines(bill: Bill, already: dict[int, int]) -> list[tuple[BillItem, int, int]]:
    lines = []
    for bill_item in bill.items:
        remaining = bill_item.quantity - already.get(bill_item.part_id, 0)
        if remaining > 0:
            lines.append((bill_item, remaining, bill_item.unit_price_cents))
    return lines


def _partial_refund_lines(
    bill: Bill,
    items: list[LineItemInput],
    already: dict[int, int],
) -> list[tuple[BillItem, int, int]]:
    by_part = {bill_item.part_id: bill_item for bill_item in bill.items}

    lines = []
    for item in items:
        bill_item = by_part.get(item.part_id)
        if not bill_item:
            raise ValidationError(
                f"Part {item.part_id} is not on bill {bill.id}",
                details={"part_id": item.part_id, "bill_id": bill.id},
            )

        refunded = already.get(item.part_id, 0)
        if refunded + item.quantity > bill_item.quantity:
            raise OverRefundError(
                f"Refund would exceed the billed quantity for part {item.part_id}",
                details={
                    "part_id": item.part_id,
                    "bill_quantity": bill_item.quantity,
                    "already_refunded": refunded,
                    "requested_quantity": item.quantity,
                    "refundable_quantity": bill_item.quantity - refunded,
                },
            )

        unit_price = item.unit_price_cents
        if unit_price is None:
            unit_price = bill_item.unit_price_cents
        elif unit_price > bill_item.unit_price_cents:
            raise ValidationError(
                f"Refund unit price for part {item.part_id} exceeds the billed price",
                details={"part_id": item.part_id, "billed_unit_price_cents": bill_item.unit_price_cents},
            )

        lines.append((bill_item, item.quantity, unit_price))
    return lines


# =============================================================================
# REFUND PROCESSING
# =============================================================================

def refund(
    bill_id: int,
    *,
    refund_type: str,
    refund_reason: str,
    items: list[LineItemInput] | None = None,
    refund_amount_cents: int | None = None,
    actor,
) -> Refund:
    """
    Refund a bill in full or in part.

    full:    refunds the bill's remaining amount and restores every not yet
             refunded unit to available stock.
    partial: refunds exactly `items`; each unit price defaults to the billed
             price and may only be lowered.

    refund_amount_cents, when given, must equal the computed amount.

    Raises:
        NotFoundError: unknown bill
        InvalidStateError: bill already fully refunded or nothing left to refund
        OverRefundError: cumulative quantity for a part would exceed the bill
        ValidationError: malformed request
    """
    require_role(actor, ADMIN, "refunds")

    if refund_type not in REFUND_TYPES:
        raise ValidationError(
            f"Invalid refund_type: {refund_type}",
            details={"allowed": list(REFUND_TYPES)},
        )
    reason = refund_reason.strip() if isinstance(refund_reason, str) else ""
    if not reason:
        raise ValidationError("refund_reason is required")
    if refund_type == REFUND_TYPE_PARTIAL and not items:
        raise ValidationError("refund_items are required for a partial refund")
    if items:
        ensure_distinct_parts(items)

    with transaction():
        bill = lock_for_update(db.session.query(Bill).filter_by(id=bill_id)).first()
        if not bill:
            raise NotFoundError(f"Bill {bill_id} not found", details={"bill_id": bill_id})
        if bill.status == BILL_STATUS_REFUNDED:
            raise InvalidStateError(
                "Bill is already fully refunded",
                details={"bill_id": bill.id, "status": bill.status},
            )
        old_values = bill.to_dict(include_items=False)

        already = refunded_quantities(bill.id)
        if refund_type == REFUND_TYPE_FULL:
            lines = _full_refund_lines(bill, already)
            amount = bill.total_amount_cents - bill.total_refunded_cents
            if not lines and amount <= 0:
                raise InvalidStateError(
                    "Nothing left to refund on this bill",
                    details={"bill_id": bill.id},
                )
        else:
            lines = _partial_refund_lines(bill, items, already)
            amount = sum(quantity * price for _, quantity, price in lines)

        if refund_amount_cents is not None and refund_amount_cents != amount:
            raise ValidationError(
                "refund_amount_cents does not match the refunded items",
                details={"expected_refund_amount_cents": amount},
            )
        if bill.total_refunded_cents + amount > bill.total_amount_cents:
            raise OverRefundError(
                "Refund would exceed the bill total",
                details={
                    "bill_id": bill.id,
                    "total_amount_cents": bill.total_amount_cents,
                    "total_refunded_cents": bill.total_refunded_cents,
                    "requested_refund_cents": amount,
                },
            )

        record = Refund(
            bill_id=bill.id,
            refund_type=refund_type,
            refund_amount_cents=amount,
            refund_reason=reason,
            refunded_by=actor.id,
        )
        db.session.add(record)
        db.session.flush()

        for bill_item, quantity, unit_price in lines:
            db.session.add(RefundItem(
                refund_id=record.id,
                bill_item_id=bill_item.id,
                part_id=bill_item.part_id,
                quantity=quantity,
                unit_price_cents=unit_price,
                total_price_cents=quantity * unit_price,
            ))
            stock_ledger.adjust_stock(
                bill_item.part_id,
                available=quantity,
                sold=-quantity,
                movement_type=stock_ledger.MOVEMENT_RETURN,
                reference_type=stock_ledger.REFERENCE_REFUND,
                reference_id=record.id,
                notes=f"Bill {bill.bill_number}",
                user_id=actor.id,
            )

        bill.total_refunded_cents = bill.total_refunded_cents + amount
        bill.status = derive_bill_status(
            bill.total_amount_cents,
            bill.total_refunded_cents,
            billed_units=bill.total_quantity,
            refunded_units=sum(already.values()) + sum(quantity for _, quantity, _ in lines),
        )
        db.session.flush()

    current_app.logger.info(
        "Refund %s (%s) on bill %s: %d cents", record.id, refund_type, bill.bill_number, amount
    )
    audit_service.log_action(
        actor=actor,
        action=(
            audit_service.ACTION_FULL_REFUND if refund_type == REFUND_TYPE_FULL
            else audit_service.ACTION_PARTIAL_REFUND
        ),
        table_name="bills",
        record_id=bill.id,
        old_values=old_values,
        new_values=bill.to_dict(include_items=False) | {"refund": record.to_dict()},
    )
    return record


# =============================================================================
# REFUND HISTORY
# =============================================================================

def get_refund_history(bill_id: int) -> list[dict]:
    """
    Every refund of a bill, oldest first, each with exactly its own items.

    Items are attached by RefundItem.refund_id only.
    """
    if not db.session.get(Bill, bill_id):
        raise NotFoundError(f"Bill {bill_id} not found", details={"bill_id": bill_id})

    refunds = (
        db.session.query(Refund)
        .filter(Refund.bill_id == bill_id)
        .order_by(Refund.created_at.asc(), Refund.id.asc())
        .all()
    )
    refund_ids = [r.id for r in refunds]

    items_by_refund: dict[int, list[dict]] = {refund_id: [] for refund_id in refund_ids}
    if refund_ids:
        rows = (
            db.session.query(RefundItem)
            .filter(RefundItem.refund_id.in_(refund_ids))
            .order_by(RefundItem.id.asc())
            .all()
        )
        for row in rows:
            items_by_refund[row.refund_id].append(row.to_dict())

    history = []
    for r in refunds:
        entry = r.to_dict(include_items=False)
        entry["refund_items"] = items_by_refund[r.id]
        history.append(entry)
    return history
