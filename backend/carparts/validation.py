from __future__ import annotations
from datetime import date
from carparts.time_utils import parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

MAX_LINE_QUANTITY = 100_000


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - superadmin_fields: writable only by a superadmin (checked by the service)
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()
    superadmin_fields: frozenset[str] = frozenset()


PART_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "name", "manufacturer", "part_number", "total_stock",
        "cost_price_cents", "recommended_price_cents",
        "container_no", "local_purchase", "parent_id", "available_from",
    }),
    required_on_create=frozenset({"name", "manufacturer"}),
    superadmin_fields=frozenset({"cost_price_cents"}),
)

# Provenance (container_no, local_purchase) is deliberately absent
PART_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "name", "manufacturer", "part_number", "total_stock",
        "cost_price_cents", "recommended_price_cents",
        "parent_id", "available_from",
    }),
    superadmin_fields=frozenset({"cost_price_cents"}),
)

BILL_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"customer_name", "customer_phone", "bill_number"}),
)


@dataclass(frozen=True)
class LineItemInput:
    """One requested line of a sale, reservation or partial refund."""
    part_id: int
    quantity: int
    unit_price_cents: int | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                parsed = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            return parsed
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", details={"field": k})
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", details={"field": k})

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and isinstance(val, str) and val == "":
            if not col.nullable:
                raise ValidationError(f"{k} cannot be blank")
            val = None

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_price(field: str, price: int | None) -> None:
    if price is None:
        return
    if price < 0:
        raise ValidationError(f"{field} must be >= 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_part(patch: dict) -> None:
    """Business rules on part fields not captured by column metadata."""
    for field in ("cost_price_cents", "recommended_price_cents"):
        if field in patch:
            _check_price(field, patch[field])

    if "total_stock" in patch:
        if patch["total_stock"] is None or patch["total_stock"] < 0:
            raise ValidationError("total_stock must be >= 0")


def ensure_distinct_parts(items: list[LineItemInput]) -> None:
    """A part may appear on at most one line of a sale, reservation or refund."""
    seen: set[int] = set()
    for item in items:
        if item.part_id in seen:
            raise ValidationError(
                f"Part {item.part_id} appears more than once",
                details={"part_id": item.part_id},
            )
        seen.add(item.part_id)


def parse_line_items(raw_items: Any, *, require_price: bool = False, field: str = "items") -> list[LineItemInput]:
    """
    Parse a request's item list.

    Each entry is {"part_id": int, "quantity": int, "unit_price_cents": int?}.
    Rejects an empty list, non-positive quantities, negative prices and the
    same part appearing twice in one request.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError(f"{field} must be a non-empty list")

    parsed: list[LineItemInput] = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"{field}[{index}] must be an object")
        if raw.get("part_id") is None:
            raise ValidationError(f"{field}[{index}].part_id is required")
        part_id = coerce_int(raw["part_id"], f"{field}[{index}].part_id")

        if raw.get("quantity") is None:
            raise ValidationError(f"{field}[{index}].quantity is required")
        quantity = coerce_int(raw["quantity"], f"{field}[{index}].quantity")
        if quantity <= 0:
            raise ValidationError(
                f"{field}[{index}].quantity must be > 0",
                details={"part_id": part_id},
            )
        if quantity > MAX_LINE_QUANTITY:
            raise ValidationError(f"{field}[{index}].quantity cannot exceed {MAX_LINE_QUANTITY}")

        price = raw.get("unit_price_cents")
        if price is None:
            if require_price:
                raise ValidationError(f"{field}[{index}].unit_price_cents is required")
        else:
            price = coerce_int(price, f"{field}[{index}].unit_price_cents")
            _check_price(f"{field}[{index}].unit_price_cents", price)

        parsed.append(LineItemInput(part_id=part_id, quantity=quantity, unit_price_cents=price))

    ensure_distinct_parts(parsed)
    return parsed


def parse_optional_cents(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    cents = coerce_int(value, field)
    _check_price(field, cents)
    return cents


def optional_text(payload: dict, field: str, max_length: int = 255) -> str | None:
    value = payload.get(field)
    if value is None:
        return None
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text or None
