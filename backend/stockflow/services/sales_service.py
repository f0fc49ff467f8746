"""
Sales Service - allocation-backed sale recording

A sale is written in one transaction with its allocation: the product row
is locked, the request is allocated, the projection is set to the
allocation's final balances and the sale row is inserted. Either all of it
commits or none of it does.

Sales are not approval-gated. Retroactive changes go through
sales_audit_service.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..context import ActorContext
from ..errors import NotFoundError
from ..extensions import db
from ..models import Sale
from ..models.sales import PAYMENT_METHODS, PAYMENT_STATUSES
from ..validation import (
    MAX_MONEY,
    MONEY_PLACES,
    MONEY_QUANTUM,
    ValidationError,
    decimal_str,
    parse_date_filter,
    parse_decimal,
    parse_int,
    parse_text,
    require_choice,
    to_decimal,
)
from . import inventory_service
from .allocation_service import Allocation, allocate
from .concurrency import lock_for_update, read_with_retry, run_with_retry


logger = logging.getLogger(__name__)


def parse_payment(payment: dict | None) -> dict:
    """
    Normalize payment details.

    payment_status defaults to 'paid'. pending/partial sales must name the
    client, and partial sales must say how much was paid.
    """
    payment = payment or {}
    if not isinstance(payment, dict):
        raise ValidationError("payment must be an object")

    method = require_choice(payment.get("payment_method"), "payment_method", PAYMENT_METHODS)
    status = require_choice(payment.get("payment_status", "paid"), "payment_status", PAYMENT_STATUSES)

    client_name = parse_text(payment.get("client_name"), "client_name", max_length=255, required=False)
    if status in ("pending", "partial") and not client_name:
        raise ValidationError(f"client_name is required when payment_status is {status}")

    amount_paid = None
    if status == "partial":
        amount_paid = parse_decimal(
            payment.get("amount_paid"), "amount_paid", maximum=MAX_MONEY, positive=True, places=MONEY_PLACES
        )

    return {
        "payment_method": method,
        "payment_status": status,
        "amount_paid": amount_paid,
        "client_name": client_name,
        "email_address": parse_text(payment.get("email_address"), "email_address", max_length=150, required=False),
        "phone": parse_text(payment.get("phone"), "phone", max_length=15, required=False),
    }


def settle_amounts(total_amount: Decimal, payment_status: str, amount_paid: Decimal | None) -> tuple[Decimal, Decimal]:
    """Return (amount_paid, remaining_amount) for a sale total."""
    if payment_status == "paid":
        return total_amount, Decimal("0.00")
    if payment_status == "pending":
        return Decimal("0.00"), total_amount
    paid = to_decimal(amount_paid)
    # Never negative, even if a re-priced total drops below what was paid
    return paid, max(Decimal("0.00"), total_amount - paid).quantize(MONEY_QUANTUM)


def _profit(price, cost) -> Decimal:
    return (to_decimal(price) - to_decimal(cost)).quantize(MONEY_QUANTUM)


def create_fish_sale(
    ctx: ActorContext,
    product_id: int,
    requested_kg=Decimal("0"),
    requested_boxes=0,
    payment: dict | None = None,
) -> tuple[Sale, Allocation]:
    """
    Allocate and record a sale.

    Raises:
        ValidationError: bad request or payment details
        NotFoundError: unknown or inactive product
        InsufficientStockError: stock cannot cover the request
    """
    product_id = parse_int(product_id, "product_id", minimum=1)
    requested_kg = parse_decimal(requested_kg, "requested_kg")
    requested_boxes = parse_int(requested_boxes, "requested_boxes")
    details = parse_payment(payment)

    def _op():
        product = inventory_service.get_product(ctx.tenant_id, product_id, require_active=True, lock=True)
        allocation = allocate(product, requested_kg, requested_boxes)

        if details["payment_status"] == "partial" and details["amount_paid"] >= allocation.total_amount:
            raise ValidationError("amount_paid must be less than total_amount for a partial payment")
        amount_paid, remaining = settle_amounts(
            allocation.total_amount, details["payment_status"], details["amount_paid"]
        )

        sale = Sale(
            tenant_id=ctx.tenant_id,
            product_id=product.id,
            boxes_quantity=requested_boxes,
            kg_quantity=requested_kg,
            box_price=to_decimal(product.price_per_box),
            kg_price=to_decimal(product.price_per_kg),
            profit_per_box=_profit(product.price_per_box, product.cost_per_box),
            profit_per_kg=_profit(product.price_per_kg, product.cost_per_kg),
            total_amount=allocation.total_amount,
            amount_paid=amount_paid,
            remaining_amount=remaining,
            payment_status=details["payment_status"],
            payment_method=details["payment_method"],
            client_name=details["client_name"],
            email_address=details["email_address"],
            phone=details["phone"],
            performed_by=ctx.actor_id,
        )
        inventory_service.set_stock_levels(product, boxes=allocation.final_boxes, kg=allocation.final_kg)
        db.session.add(sale)
        db.session.commit()
        return sale, allocation

    sale, allocation = run_with_retry(_op)
    logger.info(
        "Sale %s: product %s, %s box(es) + %skg for %s by %s",
        sale.id, product_id, requested_boxes, decimal_str(requested_kg),
        decimal_str(allocation.total_amount), ctx.actor_id,
    )
    return sale, allocation


def get_sale(ctx: ActorContext, sale_id: int, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id, tenant_id=ctx.tenant_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def list_sales(
    ctx: ActorContext,
    *,
    product_id: int | None = None,
    payment_status: str | None = None,
    date_from=None,
    date_to=None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    if payment_status is not None:
        require_choice(payment_status, "payment_status", PAYMENT_STATUSES)
    start = parse_date_filter(date_from, "date_from")
    end = parse_date_filter(date_to, "date_to", end=True)
    if limit < 1 or offset < 0:
        raise ValidationError("limit must be >= 1 and offset >= 0")

    def _op():
        q = db.session.query(Sale).filter(Sale.tenant_id == ctx.tenant_id)
        if product_id is not None:
            q = q.filter(Sale.product_id == product_id)
        if payment_status is not None:
            q = q.filter(Sale.payment_status == payment_status)
        if start is not None:
            q = q.filter(Sale.created_at >= start)
        if end is not None:
            q = q.filter(Sale.created_at <= end)
        total = q.count()
        rows = q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).offset(offset).all()
        return {"items": [s.to_dict() for s in rows], "total": total, "limit": limit, "offset": offset}

    return read_with_retry(_op)
