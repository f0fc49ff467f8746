# Overview: Service-layer operations for retroactive sale edits and deletions.

"""
Sales Audit Workflow

A completed sale is never edited in place by a worker. Instead a SaleAudit
records the proposed change (old_values / new_values) and waits for a
manager or admin:

    propose_sale_edit / propose_sale_deletion   -> pending
    approve_sale_audit                          -> approved, change applied
    reject_sale_audit                           -> rejected, nothing applied

Rules:
- At most one pending audit per sale (checked under the sale lock and
  backed by a partial unique index).
- One audit_type per record: quantity edits and payment-method edits are
  proposed separately.
- Approval re-validates against the projection as it is *now*; a proposal
  that was feasible when filed can still fail with InsufficientStockError.
- Quantity edits re-price at the unit prices snapshotted on the sale.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..context import ActorContext, require_approver
from ..errors import ConflictingPendingAuditError, NotFoundError
from ..extensions import db
from ..models import Sale, SaleAudit
from ..models.sales import AUDIT_STATUSES, AUDIT_TYPES, EDITABLE_SALE_FIELDS, PAYMENT_METHODS
from ..time_utils import utcnow
from ..validation import (
    KG_QUANTUM,
    ValidationError,
    decimal_str,
    parse_decimal,
    parse_int,
    parse_text,
    require_choice,
    to_decimal,
)
from . import inventory_service
from .allocation_service import StockLevels, allocate, price_of
from .concurrency import conditional_transition, read_with_retry, run_with_retry
from .sales_service import get_sale


logger = logging.getLogger(__name__)


def _parse_changes(changes: dict) -> dict:
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No changes supplied")

    unknown = sorted(k for k in changes if k not in EDITABLE_SALE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Field(s) cannot be edited: {', '.join(unknown)}. "
            f"Editable: {', '.join(EDITABLE_SALE_FIELDS)}"
        )

    parsed = {}
    if "boxes_quantity" in changes:
        parsed["boxes_quantity"] = parse_int(changes["boxes_quantity"], "boxes_quantity")
    if "kg_quantity" in changes:
        kg = parse_decimal(changes["kg_quantity"], "kg_quantity")
        if kg != kg.quantize(KG_QUANTUM):
            raise ValidationError("kg_quantity supports at most 3 decimal places")
        parsed["kg_quantity"] = kg
    if "payment_method" in changes:
        parsed["payment_method"] = require_choice(changes["payment_method"], "payment_method", PAYMENT_METHODS)
    return parsed


def _diff(sale: Sale, parsed: dict) -> dict:
    """Keep only fields whose value actually changes."""
    diff = {}
    for key, value in parsed.items():
        current = getattr(sale, key)
        if key == "kg_quantity":
            if to_decimal(current) != value:
                diff[key] = value
        elif current != value:
            diff[key] = value
    return diff


def _restored_levels(product, sale: Sale) -> StockLevels:
    """The projection as it would be with the sale's quantities handed back."""
    return StockLevels.of(
        product,
        extra_boxes=int(sale.boxes_quantity or 0),
        extra_kg=to_decimal(sale.kg_quantity),
    )


def _ensure_no_pending(ctx: ActorContext, sale_id: int) -> None:
    existing = (
        db.session.query(SaleAudit.id)
        .filter_by(tenant_id=ctx.tenant_id, sale_id=sale_id, approval_status="pending")
        .first()
    )
    if existing is not None:
        raise ConflictingPendingAuditError(
            f"Sale {sale_id} already has a pending audit ({existing.id})"
        )


def _insert_audit(audit: SaleAudit) -> SaleAudit:
    db.session.add(audit)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Lost the race to the partial unique index
        raise ConflictingPendingAuditError(
            f"Sale {audit.sale_id} already has a pending audit"
        ) from exc
    return audit


def propose_sale_edit(ctx: ActorContext, sale_id: int, changes: dict, reason: str) -> SaleAudit:
    """
    File a pending quantity_change or payment_method_change for a sale.

    Raises:
        ValidationError: unknown field, no effective change, mixed change kinds
        ConflictingPendingAuditError: the sale already has a pending audit
        InsufficientStockError: new quantities cannot be covered even with
            the old ones handed back
    """
    reason = parse_text(reason, "reason")
    parsed = _parse_changes(changes)

    def _op():
        sale = get_sale(ctx, sale_id, lock=True)
        _ensure_no_pending(ctx, sale.id)

        diff = _diff(sale, parsed)
        if not diff:
            raise ValidationError("No changes detected")

        quantity_keys = {"boxes_quantity", "kg_quantity"} & diff.keys()
        if quantity_keys and "payment_method" in diff:
            raise ValidationError("Propose quantity and payment method changes separately")

        if "payment_method" in diff:
            audit = SaleAudit(
                tenant_id=ctx.tenant_id,
                sale_id=sale.id,
                audit_type="payment_method_change",
                old_values=sale.snapshot(),
                new_values={"payment_method": diff["payment_method"]},
                reason=reason,
                performed_by=ctx.actor_id,
            )
        else:
            new_boxes = diff.get("boxes_quantity", sale.boxes_quantity)
            new_kg = diff.get("kg_quantity", to_decimal(sale.kg_quantity))
            if new_boxes == 0 and new_kg == 0:
                raise ValidationError("A sale cannot be edited down to nothing; propose a deletion instead")

            product = inventory_service.get_product(ctx.tenant_id, sale.product_id)
            allocate(_restored_levels(product, sale), new_kg, new_boxes)

            audit = SaleAudit(
                tenant_id=ctx.tenant_id,
                sale_id=sale.id,
                audit_type="quantity_change",
                boxes_change=new_boxes - sale.boxes_quantity,
                kg_change=new_kg - to_decimal(sale.kg_quantity),
                old_values=sale.snapshot(),
                new_values={"boxes_quantity": new_boxes, "kg_quantity": decimal_str(new_kg)},
                reason=reason,
                performed_by=ctx.actor_id,
            )

        _insert_audit(audit)
        db.session.commit()
        return audit

    audit = run_with_retry(_op)
    logger.info("Proposed %s audit %s for sale %s by %s", audit.audit_type, audit.id, sale_id, ctx.actor_id)
    return audit


def propose_sale_deletion(ctx: ActorContext, sale_id: int, reason: str) -> SaleAudit:
    reason = parse_text(reason, "reason")

    def _op():
        sale = get_sale(ctx, sale_id, lock=True)
        _ensure_no_pending(ctx, sale.id)
        audit = _insert_audit(SaleAudit(
            tenant_id=ctx.tenant_id,
            sale_id=sale.id,
            audit_type="deletion",
            old_values=sale.snapshot(),
            new_values=None,
            reason=reason,
            performed_by=ctx.actor_id,
        ))
        db.session.commit()
        return audit

    audit = run_with_retry(_op)
    logger.info("Proposed deletion audit %s for sale %s by %s", audit.id, sale_id, ctx.actor_id)
    return audit


def get_sale_audit(ctx: ActorContext, audit_id: int) -> SaleAudit:
    audit = db.session.query(SaleAudit).filter_by(id=audit_id, tenant_id=ctx.tenant_id).first()
    if audit is None:
        raise NotFoundError(f"Sale audit {audit_id} not found")
    return audit


def _apply_quantity_change(ctx: ActorContext, sale: Sale, audit: SaleAudit) -> None:
    new_boxes = int(audit.new_values["boxes_quantity"])
    new_kg = Decimal(str(audit.new_values["kg_quantity"]))

    product = inventory_service.get_product(ctx.tenant_id, sale.product_id, lock=True)
    allocation = allocate(_restored_levels(product, sale), new_kg, new_boxes)
    inventory_service.set_stock_levels(product, boxes=allocation.final_boxes, kg=allocation.final_kg)

    total = price_of(new_kg, new_boxes, price_per_kg=to_decimal(sale.kg_price), price_per_box=to_decimal(sale.box_price))
    sale.boxes_quantity = new_boxes
    sale.kg_quantity = new_kg
    sale.total_amount = total
    sale.remaining_amount = max(Decimal("0.00"), total - to_decimal(sale.amount_paid))


def _apply_deletion(ctx: ActorContext, sale: Sale) -> None:
    product = inventory_service.get_product(ctx.tenant_id, sale.product_id, lock=True)
    inventory_service.apply_stock_delta(product, int(sale.boxes_quantity or 0), to_decimal(sale.kg_quantity))

    # Audit history outlives the sale
    (
        db.session.query(SaleAudit)
        .filter(SaleAudit.tenant_id == ctx.tenant_id, SaleAudit.sale_id == sale.id)
        .update({"sale_id": None}, synchronize_session=False)
    )
    db.session.delete(sale)
    db.session.flush()


def approve_sale_audit(ctx: ActorContext, audit_id: int) -> SaleAudit:
    """
    Approve a pending audit and apply it to the sale and the projection.

    Raises:
        UnauthorizedActionError: actor is not manager/admin
        AlreadyResolvedError: audit is no longer pending
        InsufficientStockError: a quantity increase no longer fits the stock
    """
    require_approver(ctx, "approve sale audits")

    def _op():
        audit = get_sale_audit(ctx, audit_id)
        conditional_transition(
            SaleAudit,
            record_id=audit.id,
            tenant_id=ctx.tenant_id,
            status_column="approval_status",
            expected="pending",
            values={"approval_status": "approved", "approved_by": ctx.actor_id, "approved_at": utcnow()},
        )

        sale = get_sale(ctx, audit.sale_id, lock=True)
        if audit.audit_type == "quantity_change":
            _apply_quantity_change(ctx, sale, audit)
        elif audit.audit_type == "payment_method_change":
            sale.payment_method = audit.new_values["payment_method"]
        elif audit.audit_type == "deletion":
            _apply_deletion(ctx, sale)

        db.session.commit()
        db.session.refresh(audit)
        return audit

    audit = run_with_retry(_op)
    logger.info("Approved %s audit %s by %s", audit.audit_type, audit.id, ctx.actor_id)
    return audit


def reject_sale_audit(ctx: ActorContext, audit_id: int, reason: str) -> SaleAudit:
    require_approver(ctx, "reject sale audits")
    reason = parse_text(reason, "rejection_reason")

    def _op():
        audit = get_sale_audit(ctx, audit_id)
        conditional_transition(
            SaleAudit,
            record_id=audit.id,
            tenant_id=ctx.tenant_id,
            status_column="approval_status",
            expected="pending",
            values={
                "approval_status": "rejected",
                "approved_by": ctx.actor_id,
                "approved_at": utcnow(),
                "rejection_reason": reason,
            },
        )
        db.session.commit()
        db.session.refresh(audit)
        return audit

    audit = run_with_retry(_op)
    logger.info("Rejected %s audit %s by %s", audit.audit_type, audit.id, ctx.actor_id)
    return audit


def list_sale_audits(
    ctx: ActorContext,
    *,
    sale_id: int | None = None,
    approval_status: str | None = None,
    audit_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    if approval_status is not None:
        require_choice(approval_status, "approval_status", AUDIT_STATUSES)
    if audit_type is not None:
        require_choice(audit_type, "audit_type", AUDIT_TYPES)
    if limit < 1 or offset < 0:
        raise ValidationError("limit must be >= 1 and offset >= 0")

    def _op():
        q = db.session.query(SaleAudit).filter(SaleAudit.tenant_id == ctx.tenant_id)
        if sale_id is not None:
            q = q.filter(SaleAudit.sale_id == sale_id)
        if approval_status is not None:
            q = q.filter(SaleAudit.approval_status == approval_status)
        if audit_type is not None:
            q = q.filter(SaleAudit.audit_type == audit_type)
        total = q.count()
        rows = q.order_by(SaleAudit.created_at.desc(), SaleAudit.id.desc()).limit(limit).offset(offset).all()
        return {"items": [a.to_dict() for a in rows], "total": total, "limit": limit, "offset": offset}

    return read_with_retry(_op)
