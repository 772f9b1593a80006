"""
Sales Service - itemized sales into bills

A sale is all-or-nothing: every line's stock moves available -> sold and
the Bill with its BillItems is written in one transaction. If any line is
short the whole sale is rejected and nothing is persisted.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.orm import selectinload

from ..errors import ConflictError, InsufficientStockError, NotFoundError, PartNotFoundError, ValidationError
from ..extensions import db
from ..models import Bill, BillItem, Part, Refund
from ..models.billing import BILL_STATUS_ACTIVE, derive_bill_status
from ..roles import ADMIN, GENERAL, require_role
from ..validation import BILL_UPDATE_POLICY, LineItemInput, ensure_distinct_parts, validate_payload
from . import audit_service, stock_ledger
from .concurrency import lock_for_update, transaction
from .query_utils import like_pattern, paginate


def _validate_available(items: list[LineItemInput]) -> None:
    insufficient = []
    for item in items:
        available = stock_ledger.get_available(item.part_id)
        if available < item.quantity:
            insufficient.append({
                "part_id": item.part_id,
                "requested_quantity": item.quantity,
                "available_stock": available,
            })

    if insufficient:
        raise InsufficientStockError(
            "Insufficient stock to complete sale",
            details={"items": insufficient},
        )


def _resolve_unit_price(part: Part, item: LineItemInput) -> int:
    if item.unit_price_cents is not None:
        return item.unit_price_cents
    if part.recommended_price_cents is None:
        raise ValidationError(
            f"Part {part.id} has no recommended price; unit_price_cents is required",
            details={"part_id": part.id},
        )
    return part.recommended_price_cents


def _check_bill_number_free(bill_number: str | None, exclude_id: int | None = None) -> None:
    if not bill_number:
        return
    query = db.session.query(Bill.id).filter(Bill.bill_number == bill_number)
    if exclude_id is not None:
        query = query.filter(Bill.id != exclude_id)
    if query.first():
        raise ConflictError(
            f"Bill number {bill_number} already exists",
            details={"bill_number": bill_number},
        )


def format_bill_number(bill_id: int) -> str:
    return f"B-{bill_id:06d}"


def _clean_customer(customer_name, customer_phone) -> tuple[str, str | None]:
    name = (customer_name or "").strip() if isinstance(customer_name, str) else ""
    if not name:
        raise ValidationError("customer_name is required")
    phone = customer_phone.strip() if isinstance(customer_phone, str) else None
    return name, phone or None


def create_bill_record(
    *,
    lines: list[tuple[Part, int, int]],
    customer_name: str,
    customer_phone: str | None,
    bill_number: str | None,
    actor,
    reservation_id: int | None = None,
) -> Bill:
    """
    Insert a Bill and its BillItems from (part, quantity, unit_price_cents) lines.

    Does not touch stock and does not commit; callers run it inside their
    transaction next to the matching ledger adjustments.
    """
    _check_bill_number_free(bill_number)

    total_amount = sum(quantity * price for _, quantity, price in lines)
    bill = Bill(
        bill_number=bill_number,
        customer_name=customer_name,
        customer_phone=customer_phone,
        status=BILL_STATUS_ACTIVE,
        total_amount_cents=total_amount,
        total_refunded_cents=0,
        total_quantity=sum(quantity for _, quantity, _ in lines),
        created_by=getattr(actor, "id", None),
        reservation_id=reservation_id,
    )
    db.session.add(bill)
    db.session.flush()

    if not bill.bill_number:
        bill.bill_number = format_bill_number(bill.id)

    for part, quantity, price in lines:
        db.session.add(BillItem(
            bill_id=bill.id,
            part_id=part.id,
            part_name=part.name,
            manufacturer=part.manufacturer,
            quantity=quantity,
            unit_price_cents=price,
            total_price_cents=quantity * price,
        ))
    db.session.flush()
    return bill


def sell(
    items: list[LineItemInput],
    *,
    customer_name: str,
    customer_phone: str | None = None,
    bill_number: str | None = None,
    actor,
) -> Bill:
    """
    Sell one or more parts as a single bill.

    Raises InsufficientStockError (nothing persisted) if any line exceeds
    the part's available stock at commit time.
    """
    require_role(actor, GENERAL, "selling parts")
    if not items:
        raise ValidationError("items must be a non-empty list")
    ensure_distinct_parts(items)
    customer_name, customer_phone = _clean_customer(customer_name, customer_phone)
    bill_number = bill_number.strip() if isinstance(bill_number, str) and bill_number.strip() else None

    with transaction():
        _validate_available(items)

        lines = []
        for item in items:
            part = db.session.get(Part, item.part_id)
            if not part:
                raise PartNotFoundError(item.part_id)
            lines.append((part, item.quantity, _resolve_unit_price(part, item)))

        bill = create_bill_record(
            lines=lines,
            customer_name=customer_name,
            customer_phone=customer_phone,
            bill_number=bill_number,
            actor=actor,
        )

        for part, quantity, _ in lines:
            stock_ledger.adjust_stock(
                part.id,
                available=-quantity,
                sold=quantity,
                movement_type=stock_ledger.MOVEMENT_SALE,
                reference_type=stock_ledger.REFERENCE_BILL,
                reference_id=bill.id,
                user_id=actor.id,
            )

    current_app.logger.info(
        "Bill %s created by %s: %d cents", bill.bill_number, actor.username, bill.total_amount_cents
    )
    audit_service.log_action(
        actor=actor,
        action=audit_service.ACTION_SELL,
        table_name="bills",
        record_id=bill.id,
        new_values=bill.to_dict(),
    )
    return bill


def quick_sell(part_id: int, *, sold_price_cents: int | None = None, actor) -> tuple[Part, Bill]:
    """
    Legacy single-unit sale of one part to the walk-in customer.

    Same path as sell() with one line; the price defaults to the part's
    recommended price.
    """
    item = LineItemInput(part_id=part_id, quantity=1, unit_price_cents=sold_price_cents)
    bill = sell(
        [item],
        customer_name=current_app.config["DEFAULT_WALK_IN_CUSTOMER"],
        actor=actor,
    )
    return db.session.get(Part, part_id), bill


# =============================================================================
# BILL QUERIES AND METADATA EDITS
# =============================================================================

def get_bill(bill_id: int) -> Bill:
    bill = (
        db.session.query(Bill)
        .options(selectinload(Bill.items), selectinload(Bill.refunds).selectinload(Refund.items))
        .filter(Bill.id == bill_id)
        .first()
    )
    if not bill:
        raise NotFoundError(f"Bill {bill_id} not found", details={"bill_id": bill_id})
    return bill


def list_bills(
    *,
    search: str | None = None,
    status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> tuple[list[Bill], dict | None]:
    query = db.session.query(Bill).options(selectinload(Bill.items))

    if search:
        pattern = like_pattern(search.strip())
        query = query.filter(or_(
            Bill.bill_number.ilike(pattern, escape="\\"),
            Bill.customer_name.ilike(pattern, escape="\\"),
            Bill.customer_phone.ilike(pattern, escape="\\"),
        ))
    if status:
        query = query.filter(Bill.status == status)

    query = query.order_by(Bill.created_at.desc(), Bill.id.desc())
    return paginate(query, page, per_page)


def update_bill_metadata(bill_id: int, payload: dict, *, actor) -> Bill:
    """Edit customer_name, customer_phone and bill_number only; items and amounts are immutable."""
    require_role(actor, ADMIN, "editing bills")
    patch = validate_payload(model=Bill, payload=payload, policy=BILL_UPDATE_POLICY, partial=True)
    if not patch:
        raise ValidationError("No fields to update")

    with transaction():
        bill = lock_for_update(db.session.query(Bill).filter_by(id=bill_id)).first()
        if not bill:
            raise NotFoundError(f"Bill {bill_id} not found", details={"bill_id": bill_id})
        old_values = bill.to_dict(include_items=False)

        if patch.get("bill_number"):
            _check_bill_number_free(patch["bill_number"], exclude_id=bill.id)
        elif "bill_number" in patch:
            patch["bill_number"] = format_bill_number(bill.id)

        for field, value in patch.items():
            setattr(bill, field, value)

    audit_service.log_action(
        actor=actor,
        action=audit_service.ACTION_UPDATE,
        table_name="bills",
        record_id=bill.id,
        old_values=old_values,
        new_values=bill.to_dict(include_items=False),
    )
    return bill


def bill_status_is_consistent(bill: Bill) -> bool:
    """Recompute status and refunded total from stored refunds and compare with the row."""
    refunded = sum(refund.refund_amount_cents for refund in bill.refunds)
    refunded_units = sum(item.quantity for refund in bill.refunds for item in refund.items)
    status = derive_bill_status(
        bill.total_amount_cents,
        refunded,
        billed_units=bill.total_quantity,
        refunded_units=refunded_units,
    )
    return refunded == bill.total_refunded_cents and status == bill.status
