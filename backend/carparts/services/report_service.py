# Overview: Sold stock reporting over bills, net of refunds.

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Bill, BillItem, Part, RefundItem
from ..time_utils import parse_iso_date, to_iso_date, to_utc_z

DEFAULT_TOP_PARTS = 10


def _parse_date(value: str | None, field: str) -> date | None:
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", details={"field": field})


def _parse_range(start_date: str | None, end_date: str | None) -> tuple[date | None, date | None]:
    start = _parse_date(start_date, "start_date")
    end = _parse_date(end_date, "end_date")
    if start and end and end < start:
        raise ValidationError("end_date cannot be before start_date")
    return start, end


def _sold_lines(
    *,
    start: date | None,
    end: date | None,
    local_purchase: bool | None,
    container_no: str | None,
) -> list[dict]:
    """
    One row per bill item still (at least partly) sold, newest bill first.

    Quantities and revenue are net of every refund against the item; lines
    refunded in full are left out.
    """
    refunded = (
        db.session.query(
            RefundItem.bill_item_id.label("bill_item_id"),
            func.sum(RefundItem.quantity).label("quantity"),
            func.sum(RefundItem.total_price_cents).label("amount"),
        )
        .group_by(RefundItem.bill_item_id)
        .subquery()
    )

    query = (
        db.session.query(
            BillItem,
            Bill,
            Part,
            func.coalesce(refunded.c.quantity, 0),
            func.coalesce(refunded.c.amount, 0),
        )
        .join(Bill, BillItem.bill_id == Bill.id)
        .join(Part, BillItem.part_id == Part.id)
        .outerjoin(refunded, refunded.c.bill_item_id == BillItem.id)
    )

    # Date range is inclusive of whole calendar days (UTC)
    if start:
        query = query.filter(Bill.created_at >= datetime.combine(start, time.min))
    if end:
        query = query.filter(Bill.created_at < datetime.combine(end + timedelta(days=1), time.min))
    if local_purchase is not None:
        query = query.filter(Part.local_purchase.is_(local_purchase))
    if container_no:
        query = query.filter(Part.container_no == container_no)

    rows = []
    for item, bill, part, refunded_qty, refunded_amount in query.order_by(
        Bill.created_at.desc(), BillItem.id.desc()
    ).all():
        net_quantity = item.quantity - int(refunded_qty)
        if net_quantity <= 0:
            continue
        rows.append({
            "bill_item_id": item.id,
            "bill_id": bill.id,
            "bill_number": bill.bill_number,
            "customer_name": bill.customer_name,
            "sold_at": to_utc_z(bill.created_at),
            "part_id": part.id,
            "part_name": item.part_name,
            "manufacturer": item.manufacturer,
            "part_number": part.part_number,
            "container_no": part.container_no,
            "local_purchase": bool(part.local_purchase),
            "unit_price_cents": item.unit_price_cents,
            "billed_quantity": item.quantity,
            "refunded_quantity": int(refunded_qty),
            "sold_quantity": net_quantity,
            "revenue_cents": item.total_price_cents - int(refunded_amount),
            "_cost_price_cents": part.cost_price_cents,
        })
    return rows


def _summarize(rows: list[dict]) -> dict:
    items_sold = sum(r["sold_quantity"] for r in rows)
    revenue = sum(r["revenue_cents"] for r in rows)
    return {
        "total_items_sold": items_sold,
        "total_revenue_cents": revenue,
        "total_bills": len({r["bill_id"] for r in rows}),
        "unique_parts_sold": len({r["part_id"] for r in rows}),
        "unique_containers": len({r["container_no"] for r in rows if r["container_no"]}),
        "container_items": sum(r["sold_quantity"] for r in rows if r["container_no"]),
        "local_purchase_items": sum(r["sold_quantity"] for r in rows if r["local_purchase"]),
        "average_selling_price_cents": round(revenue / items_sold) if items_sold else 0,
    }


def _filters(start, end, local_purchase, container_no) -> dict:
    return {
        "start_date": to_iso_date(start),
        "end_date": to_iso_date(end),
        "local_purchase": local_purchase,
        "container_no": container_no,
    }


def sold_stock_report(
    *,
    start_date: str | None = None,
    end_date: str | None = None,
    local_purchase: bool | None = None,
    container_no: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> dict:
    """
    Sold bill lines with a summary over every matching line.

    local_purchase=True keeps locally bought parts, False keeps the rest.
    limit/offset page the lines only; the summary always covers the full
    filtered set.
    """
    start, end = _parse_range(start_date, end_date)
    rows = _sold_lines(start=start, end=end, local_purchase=local_purchase, container_no=container_no)

    page = rows[offset:offset + limit]
    for row in page:
        row.pop("_cost_price_cents")
    return {
        "filters": _filters(start, end, local_purchase, container_no),
        "summary": _summarize(rows),
        "sold_stock": page,
        "total": len(rows),
        "limit": limit,
        "offset": offset,
    }


def sold_stock_summary(
    *,
    start_date: str | None = None,
    end_date: str | None = None,
    local_purchase: bool | None = None,
    container_no: str | None = None,
    include_cost: bool = False,
    top: int = DEFAULT_TOP_PARTS,
) -> dict:
    """
    Aggregate view of the same data: price range and top selling parts.

    With include_cost, estimated_profit_cents subtracts cost price from
    revenue for lines whose part has a cost price; parts_without_cost
    counts the parts that were skipped.
    """
    start, end = _parse_range(start_date, end_date)
    rows = _sold_lines(start=start, end=end, local_purchase=local_purchase, container_no=container_no)

    summary = _summarize(rows)
    prices = [r["unit_price_cents"] for r in rows]
    summary["min_selling_price_cents"] = min(prices) if prices else 0
    summary["max_selling_price_cents"] = max(prices) if prices else 0

    if include_cost:
        costed = [r for r in rows if r["_cost_price_cents"] is not None]
        summary["estimated_profit_cents"] = sum(
            r["revenue_cents"] - r["sold_quantity"] * r["_cost_price_cents"] for r in costed
        )
        summary["parts_without_cost"] = len(
            {r["part_id"] for r in rows if r["_cost_price_cents"] is None}
        )

    by_part: dict[int, dict] = {}
    for r in rows:
        entry = by_part.setdefault(r["part_id"], {
            "part_id": r["part_id"],
            "name": r["part_name"],
            "manufacturer": r["manufacturer"],
            "total_sold": 0,
            "total_revenue_cents": 0,
        })
        entry["total_sold"] += r["sold_quantity"]
        entry["total_revenue_cents"] += r["revenue_cents"]
    top_parts = sorted(
        by_part.values(),
        key=lambda e: (-e["total_sold"], -e["total_revenue_cents"], e["part_id"]),
    )[:top]

    return {
        "filters": _filters(start, end, local_purchase, container_no),
        "summary": summary,
        "top_selling_parts": top_parts,
    }
