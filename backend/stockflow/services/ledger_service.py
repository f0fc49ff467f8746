# Overview: Service-layer operations for the movement ledger; encapsulates business logic and database work.

from __future__ import annotations

import json
import logging
from decimal import Decimal

from ..context import ActorContext
from ..errors import InsufficientStockError, InvalidMovementReferenceError, NotFoundError
from ..extensions import db
from ..models import DamagedProduct, Product, StockAddition, StockCorrection, StockMovement
from ..models.inventory import MOVEMENT_STATUSES, MOVEMENT_TYPES
from ..time_utils import today, utcnow
from ..validation import (
    MONEY_QUANTUM,
    ValidationError,
    decimal_str,
    enforce_rules_product,
    parse_date_filter,
    require_choice,
    to_decimal,
    validate_payload,
)
from . import inventory_service
from .concurrency import read_with_retry, run_with_retry
from .movement_requests import (
    EDITABLE_PRODUCT_FIELDS,
    DamageReport,
    MovementRequest,
    NewStockRequest,
    ProductCreateRequest,
    ProductDeleteRequest,
    ProductEditRequest,
    StockCorrectionRequest,
)
"""
Stock Movement Ledger Invariants (authoritative)

- Append-only: rows are inserted once; afterwards only status and its
  resolution metadata change, and only out of 'pending'.
- Each stock-affecting movement points at exactly one source record of the
  matching kind, in the same tenant and for the same product.
- A movement touches the projection exactly once: when it is inserted as
  completed (damage reports) or when approval flips it to completed.
- Ledger reads never write.
"""


logger = logging.getLogger(__name__)


# movement_type -> (reference column, source model)
REFERENCE_COLUMNS = {
    "damaged": ("damaged_id", DamagedProduct),
    "new_stock": ("stock_addition_id", StockAddition),
    "stock_correction": ("correction_id", StockCorrection),
}
PRODUCT_DELETION_MARKER = "product_deletion"
PRODUCT_CREATION_MARKER = "product_creation"
PENDING_DELETION = "PENDING_DELETION"


def _check_reference(
    *,
    tenant_id: str,
    product_id: int | None,
    movement_type: str,
    box_change: int,
    kg_change: Decimal,
    field_changed: str | None,
    references: dict,
) -> None:
    """
    Enforce the type -> reference rule before the row ever reaches the DB.

    The CHECK constraint on stock_movements says the same thing; this gives
    callers a typed error instead of an IntegrityError.
    """
    expected = REFERENCE_COLUMNS.get(movement_type)
    supplied = {k for k, v in references.items() if v is not None}

    if expected is None:
        if supplied:
            raise InvalidMovementReferenceError(
                f"{movement_type} movements carry no source reference (got {', '.join(sorted(supplied))})"
            )
        if not field_changed:
            raise InvalidMovementReferenceError(f"{movement_type} movements must name field_changed")
        if box_change != 0 or kg_change != 0:
            raise InvalidMovementReferenceError(f"{movement_type} movements cannot change stock")
        if (movement_type == "product_create") != (product_id is None):
            raise InvalidMovementReferenceError(
                "product_create movements start without a product; every other type needs one"
            )
        return

    column, model = expected
    if supplied != {column}:
        raise InvalidMovementReferenceError(
            f"{movement_type} movements must reference exactly {column}"
        )
    if box_change == 0 and kg_change == 0:
        raise InvalidMovementReferenceError(f"{movement_type} movements must change stock")

    record = db.session.query(model).filter_by(id=references[column], tenant_id=tenant_id).first()
    if record is None:
        raise InvalidMovementReferenceError(f"{model.__name__} {references[column]} not found")
    if record.product_id != product_id:
        raise InvalidMovementReferenceError(
            f"{model.__name__} {record.id} belongs to product {record.product_id}, not {product_id}"
        )


def append_movement(
    *,
    tenant_id: str,
    product_id: int | None,
    movement_type: str,
    performed_by: str,
    box_change: int = 0,
    kg_change: Decimal = Decimal("0"),
    field_changed: str | None = None,
    old_value: str | None = None,
    new_value: str | None = None,
    damaged_id: int | None = None,
    stock_addition_id: int | None = None,
    correction_id: int | None = None,
    reason: str | None = None,
    status: str = "pending",
) -> StockMovement:
    """
    Append one ledger row inside the caller's transaction.

    - No domain logic beyond the reference rule.
    - No updates or deletes of existing rows.
    - Does not touch the projection; see apply_to_projection().
    """
    require_choice(movement_type, "movement_type", MOVEMENT_TYPES)
    require_choice(status, "status", MOVEMENT_STATUSES)

    _check_reference(
        tenant_id=tenant_id,
        product_id=product_id,
        movement_type=movement_type,
        box_change=box_change,
        kg_change=kg_change,
        field_changed=field_changed,
        references={
            "damaged_id": damaged_id,
            "stock_addition_id": stock_addition_id,
            "correction_id": correction_id,
        },
    )

    movement = StockMovement(
        tenant_id=tenant_id,
        product_id=product_id,
        movement_type=movement_type,
        box_change=box_change,
        kg_change=kg_change,
        field_changed=field_changed,
        old_value=old_value,
        new_value=new_value,
        damaged_id=damaged_id,
        stock_addition_id=stock_addition_id,
        correction_id=correction_id,
        reason=reason,
        status=status,
        performed_by=performed_by,
    )
    if status == "completed":
        movement.resolved_by = performed_by
        movement.resolved_at = utcnow()
    db.session.add(movement)
    db.session.flush()
    return movement


def apply_to_projection(movement: StockMovement) -> Product:
    """
    Add the movement's deltas to its product under a row lock.

    A product soft-deleted after the movement was filed refuses it; the
    movement stays pending until someone rejects or cancels it.
    """
    product = inventory_service.get_product(
        movement.tenant_id, movement.product_id, require_active=True, lock=True
    )
    return inventory_service.apply_stock_delta(
        product, int(movement.box_change or 0), to_decimal(movement.kg_change)
    )


# --- per-variant recorders ---------------------------------------------------


def _record_new_stock(ctx: ActorContext, req: NewStockRequest) -> StockMovement:
    inventory_service.get_product(ctx.tenant_id, req.product_id, require_active=True)

    addition = StockAddition(
        tenant_id=ctx.tenant_id,
        product_id=req.product_id,
        boxes_added=req.boxes_added,
        kg_added=req.kg_added,
        total_cost=req.total_cost,
        delivery_date=req.delivery_date or today(),
        performed_by=ctx.actor_id,
    )
    db.session.add(addition)
    db.session.flush()

    return append_movement(
        tenant_id=ctx.tenant_id,
        product_id=req.product_id,
        movement_type="new_stock",
        performed_by=ctx.actor_id,
        box_change=req.boxes_added,
        kg_change=req.kg_added,
        stock_addition_id=addition.id,
        reason=f"Stock addition of {req.boxes_added} box(es) and {req.kg_added}kg",
    )


def _record_stock_correction(ctx: ActorContext, req: StockCorrectionRequest) -> StockMovement:
    inventory_service.get_product(ctx.tenant_id, req.product_id, require_active=True)

    correction = StockCorrection(
        tenant_id=ctx.tenant_id,
        product_id=req.product_id,
        box_adjustment=req.box_adjustment,
        kg_adjustment=req.kg_adjustment,
        correction_reason=req.correction_reason,
        performed_by=ctx.actor_id,
    )
    db.session.add(correction)
    db.session.flush()

    return append_movement(
        tenant_id=ctx.tenant_id,
        product_id=req.product_id,
        movement_type="stock_correction",
        performed_by=ctx.actor_id,
        box_change=req.box_adjustment,
        kg_change=req.kg_adjustment,
        correction_id=correction.id,
        reason=req.correction_reason,
    )


def _record_damage(ctx: ActorContext, req: DamageReport) -> StockMovement:
    """Damage is written off immediately: completed movement + projection debit."""
    product = inventory_service.get_product(ctx.tenant_id, req.product_id, require_active=True, lock=True)

    on_hand_kg = to_decimal(product.quantity_kg)
    if req.damaged_boxes > product.quantity_box or req.damaged_kg > on_hand_kg:
        raise InsufficientStockError(
            f"Cannot write off {req.damaged_boxes} box(es) / {req.damaged_kg}kg; "
            f"only {product.quantity_box} box(es) / {on_hand_kg}kg on hand",
            requested_kg=req.damaged_kg,
            requested_boxes=req.damaged_boxes,
            available_kg=on_hand_kg,
            available_boxes=product.quantity_box,
        )

    loss_value = (
        req.damaged_boxes * to_decimal(product.price_per_box)
        + req.damaged_kg * to_decimal(product.price_per_kg)
    ).quantize(MONEY_QUANTUM)

    damaged = DamagedProduct(
        tenant_id=ctx.tenant_id,
        product_id=product.id,
        damaged_boxes=req.damaged_boxes,
        damaged_kg=req.damaged_kg,
        damaged_reason=req.damaged_reason,
        description=req.description,
        loss_value=loss_value,
        damaged_date=today(),
        reported_by=ctx.actor_id,
    )
    db.session.add(damaged)
    db.session.flush()

    movement = append_movement(
        tenant_id=ctx.tenant_id,
        product_id=product.id,
        movement_type="damaged",
        performed_by=ctx.actor_id,
        box_change=-req.damaged_boxes,
        kg_change=-req.damaged_kg,
        damaged_id=damaged.id,
        reason=req.damaged_reason,
        status="completed",
    )
    apply_to_projection(movement)
    return movement


def normalize_product_field(field_name: str, raw) -> object:
    patch = validate_payload(
        model=Product,
        payload={field_name: raw},
        policy=inventory_service.PRODUCT_POLICY,
        partial=True,
    )
    enforce_rules_product(patch)
    return patch[field_name]


def _as_text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return decimal_str(value)
    return str(value)


def _unchanged(current, new_value) -> bool:
    if isinstance(new_value, Decimal):
        return to_decimal(current) == new_value
    return current == new_value


def _record_product_edit(ctx: ActorContext, req: ProductEditRequest) -> StockMovement:
    product = inventory_service.get_product(ctx.tenant_id, req.product_id, require_active=True)
    new_value = normalize_product_field(req.field_name, req.new_value)
    old_value = getattr(product, req.field_name)

    if _unchanged(old_value, new_value):
        raise ValidationError(f"{req.field_name} already has value {_as_text(old_value)}")

    return append_movement(
        tenant_id=ctx.tenant_id,
        product_id=product.id,
        movement_type="product_edit",
        performed_by=ctx.actor_id,
        field_changed=req.field_name,
        old_value=_as_text(old_value),
        new_value=_as_text(new_value),
        reason=req.reason or f"Edit {EDITABLE_PRODUCT_FIELDS[req.field_name]}",
    )


def _record_product_delete(ctx: ActorContext, req: ProductDeleteRequest) -> StockMovement:
    product = inventory_service.get_product(ctx.tenant_id, req.product_id, require_active=True)
    return append_movement(
        tenant_id=ctx.tenant_id,
        product_id=product.id,
        movement_type="product_delete",
        performed_by=ctx.actor_id,
        field_changed=PRODUCT_DELETION_MARKER,
        old_value=f"Product: {product.name} (ID: {product.id})",
        new_value=PENDING_DELETION,
        reason=req.reason,
    )


def _record_product_create(ctx: ActorContext, req: ProductCreateRequest) -> StockMovement:
    attributes = parse_product_attributes(req.attributes)
    return append_movement(
        tenant_id=ctx.tenant_id,
        product_id=None,
        movement_type="product_create",
        performed_by=ctx.actor_id,
        field_changed=PRODUCT_CREATION_MARKER,
        new_value=json.dumps({k: _as_text(v) for k, v in attributes.items()}, sort_keys=True),
        reason=req.reason or f"Create product {attributes['name']}",
    )


def parse_product_attributes(raw: dict) -> dict:
    """Validate a full product definition (used at request time and again on approval)."""
    patch = validate_payload(
        model=Product,
        payload=raw,
        policy=inventory_service.PRODUCT_POLICY,
        partial=False,
    )
    enforce_rules_product(patch)
    return patch


_RECORDERS = {
    NewStockRequest: _record_new_stock,
    StockCorrectionRequest: _record_stock_correction,
    DamageReport: _record_damage,
    ProductEditRequest: _record_product_edit,
    ProductDeleteRequest: _record_product_delete,
    ProductCreateRequest: _record_product_create,
}


def record_movement(ctx: ActorContext, request: MovementRequest) -> StockMovement:
    """
    Write the source record and ledger row for one request variant.

    Runs inside the caller's transaction and does not commit.
    """
    recorder = _RECORDERS.get(type(request))
    if recorder is None:
        raise ValidationError(f"Unsupported movement request {type(request).__name__}")
    request.check()
    return recorder(ctx, request)


def create_movement(ctx: ActorContext, request: MovementRequest) -> StockMovement:
    """Record one movement as its own retried, committed unit of work."""
    def _op():
        movement = record_movement(ctx, request)
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    logger.info(
        "Recorded %s movement %s (%s) for product %s by %s",
        movement.movement_type, movement.id, movement.status, movement.product_id, ctx.actor_id,
    )
    return movement


# --- per-type entry points ---------------------------------------------------


def request_stock_addition(ctx: ActorContext, product_id: int, *, boxes_added: int = 0,
                           kg_added=Decimal("0"), total_cost=Decimal("0"), delivery_date=None) -> StockMovement:
    return create_movement(ctx, NewStockRequest.from_payload({
        "product_id": product_id,
        "boxes_added": boxes_added,
        "kg_added": kg_added,
        "total_cost": total_cost,
        "delivery_date": delivery_date,
    }))


def record_damaged_product(ctx: ActorContext, product_id: int, *, damaged_boxes: int = 0,
                           damaged_kg=Decimal("0"), damaged_reason: str, description: str | None = None) -> StockMovement:
    return create_movement(ctx, DamageReport.from_payload({
        "product_id": product_id,
        "damaged_boxes": damaged_boxes,
        "damaged_kg": damaged_kg,
        "damaged_reason": damaged_reason,
        "description": description,
    }))


def request_stock_correction(ctx: ActorContext, product_id: int, *, box_adjustment: int = 0,
                             kg_adjustment=Decimal("0"), correction_reason: str) -> StockMovement:
    return create_movement(ctx, StockCorrectionRequest.from_payload({
        "product_id": product_id,
        "box_adjustment": box_adjustment,
        "kg_adjustment": kg_adjustment,
        "correction_reason": correction_reason,
    }))


def request_product_edit(ctx: ActorContext, product_id: int, changes: dict, reason: str | None = None) -> list[StockMovement]:
    """
    One pending product_edit per field that actually changes.

    All rows are written in one transaction; a bad field rejects the lot.
    """
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No changes supplied")

    def _op():
        product = inventory_service.get_product(ctx.tenant_id, product_id, require_active=True)
        movements = []
        for field_name, raw in changes.items():
            req = ProductEditRequest(product_id=product.id, field_name=field_name, new_value=raw, reason=reason)
            req.check()
            new_value = normalize_product_field(field_name, raw)
            if _unchanged(getattr(product, field_name), new_value):
                continue
            movements.append(record_movement(ctx, req))
        if not movements:
            raise ValidationError("No changes detected")
        db.session.commit()
        return movements

    movements = run_with_retry(_op)
    logger.info(
        "Recorded %d product_edit movement(s) for product %s by %s",
        len(movements), product_id, ctx.actor_id,
    )
    return movements


def request_product_delete(ctx: ActorContext, product_id: int, reason: str) -> StockMovement:
    return create_movement(ctx, ProductDeleteRequest.from_payload({"product_id": product_id, "reason": reason}))


def request_product_create(ctx: ActorContext, attributes: dict, reason: str | None = None) -> StockMovement:
    return create_movement(ctx, ProductCreateRequest(attributes=attributes or {}, reason=reason))


# --- reads ---------------------------------------------------------------------


def list_movements(
    ctx: ActorContext,
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    status: str | None = None,
    date_from=None,
    date_to=None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    """
    Filtered, paginated ledger read (newest first).

    date_from / date_to are inclusive; a bare date for date_to covers the
    whole day.
    """
    if movement_type is not None:
        require_choice(movement_type, "movement_type", MOVEMENT_TYPES)
    if status is not None:
        require_choice(status, "status", MOVEMENT_STATUSES)
    start, end = _date_window(date_from, date_to, limit, offset)

    def _op():
        q = db.session.query(StockMovement).filter(StockMovement.tenant_id == ctx.tenant_id)
        if product_id is not None:
            q = q.filter(StockMovement.product_id == product_id)
        if movement_type is not None:
            q = q.filter(StockMovement.movement_type == movement_type)
        if status is not None:
            q = q.filter(StockMovement.status == status)
        if start is not None:
            q = q.filter(StockMovement.created_at >= start)
        if end is not None:
            q = q.filter(StockMovement.created_at <= end)

        total = q.count()
        rows = (
            q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )
        return {
            "items": [m.to_dict() for m in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    return read_with_retry(_op)


def get_movement(ctx: ActorContext, movement_id: int) -> StockMovement:
    movement = db.session.query(StockMovement).filter_by(id=movement_id, tenant_id=ctx.tenant_id).first()
    if movement is None:
        raise NotFoundError(f"Movement {movement_id} not found")
    return movement


def _date_window(date_from, date_to, limit: int, offset: int):
    start = parse_date_filter(date_from, "date_from")
    end = parse_date_filter(date_to, "date_to", end=True)
    if start and end and start > end:
        raise ValidationError("date_from must be on or before date_to")
    if limit < 1 or offset < 0:
        raise ValidationError("limit must be >= 1 and offset >= 0")
    return start, end


def _list_source_records(ctx: ActorContext, model, *, product_id, date_from, date_to, limit, offset) -> dict:
    """Newest-first page of one source-record table, with the product name attached."""
    start, end = _date_window(date_from, date_to, limit, offset)

    def _op():
        q = (
            db.session.query(model, Product.name)
            .join(Product, Product.id == model.product_id)
            .filter(model.tenant_id == ctx.tenant_id)
        )
        if product_id is not None:
            q = q.filter(model.product_id == product_id)
        if start is not None:
            q = q.filter(model.created_at >= start)
        if end is not None:
            q = q.filter(model.created_at <= end)

        total = q.count()
        rows = q.order_by(model.created_at.desc(), model.id.desc()).limit(limit).offset(offset).all()
        return {
            "items": [dict(record.to_dict(), product_name=name) for record, name in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    return read_with_retry(_op)


def list_stock_additions(ctx: ActorContext, *, product_id: int | None = None, date_from=None,
                         date_to=None, limit: int = 50, offset: int = 0) -> dict:
    """Delivery records behind new_stock movements, pending or not."""
    return _list_source_records(
        ctx, StockAddition,
        product_id=product_id, date_from=date_from, date_to=date_to, limit=limit, offset=offset,
    )


def list_damaged_products(ctx: ActorContext, *, product_id: int | None = None, date_from=None,
                          date_to=None, limit: int = 50, offset: int = 0) -> dict:
    return _list_source_records(
        ctx, DamagedProduct,
        product_id=product_id, date_from=date_from, date_to=date_to, limit=limit, offset=offset,
    )
