# Overview: Part registration, maintenance and queries.

"""
Parts Service

- Registration seeds stock through the ledger (a restock movement), so
  even the first units have a journal entry.
- Edits go through an explicit allow-list. cost_price_cents is checked
  per field against the superadmin role.
- container_no / local_purchase are fixed at creation.
- Parts are never deleted.
"""

from __future__ import annotations

from sqlalchemy import or_

from ..errors import ConflictError, PartNotFoundError, PermissionDeniedError, ValidationError
from ..extensions import db
from ..models import Part
from ..roles import ADMIN, GENERAL, can_view_cost_price, require_role
from ..validation import (
    PART_CREATE_POLICY,
    PART_UPDATE_POLICY,
    ModelValidationPolicy,
    enforce_rules_part,
    validate_payload,
)
from . import audit_service, stock_ledger
from .concurrency import lock_for_update, transaction
from .query_utils import like_pattern, paginate

PROVENANCE_CONTAINER = "container"
PROVENANCE_LOCAL = "local"


def serialize_part(part: Part, actor) -> dict:
    return part.to_dict(include_cost=can_view_cost_price(getattr(actor, "role", None)))


def _check_field_permissions(patch: dict, policy: ModelValidationPolicy, actor) -> None:
    for field in sorted(policy.superadmin_fields & patch.keys()):
        if not can_view_cost_price(actor.role):
            raise PermissionDeniedError(
                f"Only a superadmin may set {field}",
                details={"field": field},
            )


def _check_part_number_free(part_number: str | None, exclude_id: int | None = None) -> None:
    if not part_number:
        return
    query = db.session.query(Part.id).filter(Part.part_number == part_number)
    if exclude_id is not None:
        query = query.filter(Part.id != exclude_id)
    if query.first():
        raise ConflictError(
            f"Part number {part_number} already exists",
            details={"part_number": part_number},
        )


def _check_parent(parent_id: int | None, part_id: int | None = None) -> None:
    if parent_id is None:
        return
    if part_id is not None and parent_id == part_id:
        raise ValidationError("A part cannot be its own parent")
    if not db.session.get(Part, parent_id):
        raise PartNotFoundError(parent_id)


def get_part(part_id: int) -> Part:
    part = db.session.get(Part, part_id)
    if not part:
        raise PartNotFoundError(part_id)
    return part


def create_part(payload: dict, *, actor) -> Part:
    """
    Register a part. total_stock defaults to 1 and seeds available_stock.
    """
    require_role(actor, GENERAL, "registering parts")
    patch = validate_payload(model=Part, payload=payload, policy=PART_CREATE_POLICY, partial=False)
    enforce_rules_part(patch)
    _check_field_permissions(patch, PART_CREATE_POLICY, actor)

    initial_stock = patch.pop("total_stock", None)
    if initial_stock is None:
        initial_stock = 1

    with transaction():
        _check_part_number_free(patch.get("part_number"))
        _check_parent(patch.get("parent_id"))

        part = Part(
            total_stock=0,
            available_stock=0,
            reserved_stock=0,
            sold_stock=0,
            local_purchase=bool(patch.pop("local_purchase", False)),
            **patch,
        )
        db.session.add(part)
        db.session.flush()

        if initial_stock > 0:
            stock_ledger.adjust_stock(
                part.id,
                available=initial_stock,
                total=initial_stock,
                movement_type=stock_ledger.MOVEMENT_RESTOCK,
                notes="Initial stock",
                user_id=actor.id,
            )

    audit_service.log_action(
        actor=actor,
        action=audit_service.ACTION_CREATE,
        table_name="parts",
        record_id=part.id,
        new_values=part.to_dict(include_cost=True),
    )
    return part


def update_part(part_id: int, payload: dict, *, actor) -> Part:
    """
    Apply an allow-listed patch. total_stock changes move total and
    available by the same delta and cannot drop below reserved + sold.
    """
    require_role(actor, ADMIN, "editing parts")
    if isinstance(payload, dict):
        for field in ("container_no", "local_purchase"):
            if field in payload:
                raise ValidationError(
                    f"{field} cannot be changed after creation",
                    details={"field": field},
                )
    patch = validate_payload(model=Part, payload=payload, policy=PART_UPDATE_POLICY, partial=True)
    if not patch:
        raise ValidationError("No fields to update")
    enforce_rules_part(patch)
    _check_field_permissions(patch, PART_UPDATE_POLICY, actor)

    with transaction():
        part = lock_for_update(db.session.query(Part).filter_by(id=part_id)).first()
        if not part:
            raise PartNotFoundError(part_id)
        old_values = part.to_dict(include_cost=True)

        if "part_number" in patch:
            _check_part_number_free(patch["part_number"], exclude_id=part.id)
        if "parent_id" in patch:
            _check_parent(patch["parent_id"], part_id=part.id)

        new_total = patch.pop("total_stock", None)
        for field, value in patch.items():
            setattr(part, field, value)

        if new_total is not None and new_total != part.total_stock:
            delta = new_total - part.total_stock
            committed = part.reserved_stock + part.sold_stock
            if new_total < committed:
                raise ValidationError(
                    "total_stock cannot be lower than reserved + sold stock",
                    details={"part_id": part.id, "minimum_total_stock": committed},
                )
            stock_ledger.adjust_stock(
                part.id,
                available=delta,
                total=delta,
                movement_type=stock_ledger.MOVEMENT_RESTOCK if delta > 0 else stock_ledger.MOVEMENT_ADJUSTMENT,
                notes="Manual stock correction",
                user_id=actor.id,
            )

    audit_service.log_action(
        actor=actor,
        action=audit_service.ACTION_UPDATE,
        table_name="parts",
        record_id=part.id,
        old_values=old_values,
        new_values=part.to_dict(include_cost=True),
    )
    return part


def list_parts(
    *,
    search: str | None = None,
    provenance: str | None = None,
    container_no: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> tuple[list[Part], dict | None]:
    query = db.session.query(Part)

    if search:
        pattern = like_pattern(search.strip())
        query = query.filter(or_(
            Part.name.ilike(pattern, escape="\\"),
            Part.manufacturer.ilike(pattern, escape="\\"),
            Part.part_number.ilike(pattern, escape="\\"),
        ))

    if provenance == PROVENANCE_CONTAINER:
        query = query.filter(Part.container_no.isnot(None))
    elif provenance == PROVENANCE_LOCAL:
        query = query.filter(Part.local_purchase.is_(True))
    elif provenance:
        raise ValidationError(
            f"Invalid provenance filter: {provenance}",
            details={"allowed": [PROVENANCE_CONTAINER, PROVENANCE_LOCAL]},
        )

    if container_no:
        query = query.filter(Part.container_no == container_no)

    query = query.order_by(Part.created_at.desc(), Part.id.desc())
    return paginate(query, page, per_page)


def list_available_parts() -> list[Part]:
    return (
        db.session.query(Part)
        .filter(Part.available_stock > 0)
        .order_by(Part.name.asc(), Part.manufacturer.asc(), Part.id.asc())
        .all()
    )
