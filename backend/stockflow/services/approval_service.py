# Overview: Service-layer operations for movement approval; encapsulates business logic and database work.

"""
Movement Approval Workflow

================================================================================
STATE MACHINE:
    pending -> completed   (approve_movement, manager/admin)
    pending -> rejected    (reject_movement, manager/admin)
    pending -> cancelled   (cancel_movement, original requester)

    completed / rejected / cancelled are terminal.

RULES:
1. The status flip is a conditional UPDATE ... WHERE status = 'pending'.
   Exactly one concurrent resolver wins; the rest get AlreadyResolvedError.
2. The movement's effect is applied in the same transaction as the flip.
   If the effect fails (e.g. a correction would go negative) the whole unit
   rolls back and the movement stays pending.
3. Rejection and cancellation never touch the projection.
================================================================================
"""

from __future__ import annotations

import json
import logging

from ..context import ActorContext, require_approver
from ..errors import UnauthorizedActionError
from ..extensions import db
from ..models import Product, StockMovement
from ..time_utils import utcnow
from ..validation import parse_text
from . import inventory_service
from .concurrency import conditional_transition, run_with_retry
from .ledger_service import (
    REFERENCE_COLUMNS,
    apply_to_projection,
    get_movement,
    normalize_product_field,
    parse_product_attributes,
)


logger = logging.getLogger(__name__)


def _resolve(ctx: ActorContext, movement: StockMovement, status: str, **extra) -> None:
    conditional_transition(
        StockMovement,
        record_id=movement.id,
        tenant_id=ctx.tenant_id,
        status_column="status",
        expected="pending",
        values={
            "status": status,
            "resolved_by": ctx.actor_id,
            "resolved_at": utcnow(),
            **extra,
        },
    )


def _apply_product_edit(ctx: ActorContext, movement: StockMovement) -> None:
    product = inventory_service.get_product(ctx.tenant_id, movement.product_id, require_active=True, lock=True)
    value = normalize_product_field(movement.field_changed, movement.new_value)
    setattr(product, movement.field_changed, value)
    db.session.flush()


def _apply_product_delete(ctx: ActorContext, movement: StockMovement) -> None:
    product = inventory_service.get_product(ctx.tenant_id, movement.product_id, require_active=True, lock=True)
    product.is_active = False
    db.session.flush()


def _apply_product_create(ctx: ActorContext, movement: StockMovement) -> Product:
    attributes = parse_product_attributes(json.loads(movement.new_value or "{}"))
    product = Product(tenant_id=ctx.tenant_id, **attributes)
    db.session.add(product)
    db.session.flush()
    return product


def approve_movement(ctx: ActorContext, movement_id: int) -> StockMovement:
    """
    Approve a pending movement (pending -> completed) and apply its effect.

    Raises:
        UnauthorizedActionError: actor is not manager/admin
        NotFoundError: unknown movement or foreign tenant
        AlreadyResolvedError: movement is no longer pending
        InsufficientStockError: applying the deltas would go negative
    """
    require_approver(ctx, "approve movements")

    def _op():
        movement = get_movement(ctx, movement_id)
        _resolve(ctx, movement, "completed")

        # Effect failures roll the flip back with everything else
        if movement.movement_type in REFERENCE_COLUMNS:
            apply_to_projection(movement)
        elif movement.movement_type == "product_edit":
            _apply_product_edit(ctx, movement)
        elif movement.movement_type == "product_delete":
            _apply_product_delete(ctx, movement)
        elif movement.movement_type == "product_create":
            product = _apply_product_create(ctx, movement)
            db.session.query(StockMovement).filter_by(id=movement.id).update(
                {"product_id": product.id}, synchronize_session=False
            )
        db.session.commit()
        db.session.refresh(movement)
        return movement

    movement = run_with_retry(_op)
    logger.info(
        "Approved %s movement %s for product %s by %s",
        movement.movement_type, movement.id, movement.product_id, ctx.actor_id,
    )
    return movement


def reject_movement(ctx: ActorContext, movement_id: int, reason: str) -> StockMovement:
    require_approver(ctx, "reject movements")
    reason = parse_text(reason, "rejection_reason")

    def _op():
        movement = get_movement(ctx, movement_id)
        _resolve(ctx, movement, "rejected", rejection_reason=reason)
        db.session.commit()
        db.session.refresh(movement)
        return movement

    movement = run_with_retry(_op)
    logger.info("Rejected %s movement %s by %s", movement.movement_type, movement.id, ctx.actor_id)
    return movement


def cancel_movement(ctx: ActorContext, movement_id: int) -> StockMovement:
    """Withdraw a pending request. Only whoever filed it may cancel it."""
    def _op():
        movement = get_movement(ctx, movement_id)
        if movement.performed_by != ctx.actor_id:
            raise UnauthorizedActionError(
                f"Only the requester ({movement.performed_by}) can cancel movement {movement.id}"
            )
        _resolve(ctx, movement, "cancelled")
        db.session.commit()
        db.session.refresh(movement)
        return movement

    movement = run_with_retry(_op)
    logger.info("Cancelled %s movement %s by %s", movement.movement_type, movement.id, ctx.actor_id)
    return movement


def list_pending_movements(ctx: ActorContext) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(tenant_id=ctx.tenant_id, status="pending")
        .order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
        .all()
    )
