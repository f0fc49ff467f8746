# Overview: Service-layer operations for the stock projection; encapsulates business logic and database work.

"""
Stock projection invariants (authoritative)

Projection model:
- Product.quantity_box / Product.quantity_kg hold the live balance.
- The ledger (stock_movements) explains every non-sale change to it; sales
  and approved sale audits explain the rest.

Business invariants:
- quantity_box >= 0 and quantity_kg >= 0 after every commit.
- Every mutation goes through apply_stock_delta() on a row fetched with
  lock=True, inside the same DB transaction as the ledger, status or sale
  write. set_stock_levels() is a thin wrapper over it.
- A delta that would drive either balance negative is refused with
  InsufficientStockError; nothing is clamped.

Reads never lock and never write.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func

from ..context import ActorContext
from ..errors import InsufficientStockError, NotFoundError
from ..extensions import db
from ..models import Product, StockMovement
from ..validation import ModelValidationPolicy, decimal_str, to_decimal
from .concurrency import lock_for_update, read_with_retry


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "box_to_kg_ratio",
        "price_per_box",
        "price_per_kg",
        "cost_per_box",
        "cost_per_kg",
        "boxed_low_stock_threshold",
        "quantity_box",
        "quantity_kg",
    },
    required_on_create={"name", "box_to_kg_ratio"},
)


def get_product(
    tenant_id: str,
    product_id: int,
    *,
    require_active: bool = False,
    lock: bool = False,
) -> Product:
    query = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        # Foreign-tenant ids look exactly like missing ones
        raise NotFoundError(f"Product {product_id} not found")
    if require_active and not product.is_active:
        raise NotFoundError(f"Product {product_id} is inactive")
    return product


def apply_stock_delta(product: Product, box_change: int, kg_change: Decimal) -> Product:
    """
    Add signed deltas to a locked product row.

    Caller owns the transaction; this only mutates the ORM object and
    flushes so the version counter is checked immediately.
    """
    new_boxes = int(product.quantity_box or 0) + int(box_change)
    new_kg = to_decimal(product.quantity_kg) + to_decimal(kg_change)
    if new_boxes < 0 or new_kg < 0:
        raise InsufficientStockError(
            f"Stock change would make product {product.id} negative "
            f"({product.quantity_box} boxes / {product.quantity_kg}kg on hand, "
            f"change {box_change} boxes / {kg_change}kg)",
            requested_kg=-to_decimal(kg_change) if kg_change < 0 else Decimal("0"),
            requested_boxes=-int(box_change) if box_change < 0 else 0,
            available_kg=to_decimal(product.quantity_kg),
            available_boxes=int(product.quantity_box or 0),
        )
    product.quantity_box = new_boxes
    product.quantity_kg = new_kg
    db.session.flush()
    return product


def set_stock_levels(product: Product, *, boxes: int, kg: Decimal) -> Product:
    """Overwrite balances with an allocation's final figures (same guard as apply_stock_delta)."""
    return apply_stock_delta(
        product,
        boxes - int(product.quantity_box or 0),
        kg - to_decimal(product.quantity_kg),
    )


def projection_snapshot(product: Product) -> dict:
    ratio = to_decimal(product.box_to_kg_ratio)
    kg = to_decimal(product.quantity_kg)
    return {
        "product_id": product.id,
        "name": product.name,
        "quantity_box": product.quantity_box,
        "quantity_kg": decimal_str(product.quantity_kg),
        "box_to_kg_ratio": decimal_str(product.box_to_kg_ratio),
        "total_available_kg": decimal_str(kg + product.quantity_box * ratio),
        "is_low_stock": product.quantity_box <= product.boxed_low_stock_threshold,
        "is_active": product.is_active,
        "version_id": product.version_id,
    }


def get_projection(ctx: ActorContext, product_id: int) -> dict:
    return read_with_retry(lambda: projection_snapshot(get_product(ctx.tenant_id, product_id)))


def list_projection(ctx: ActorContext, *, include_inactive: bool = False, low_stock_only: bool = False) -> list[dict]:
    def _op():
        q = Product.query.filter_by(tenant_id=ctx.tenant_id)
        if not include_inactive:
            q = q.filter_by(is_active=True)
        if low_stock_only:
            q = q.filter(Product.quantity_box <= Product.boxed_low_stock_threshold)
        return [projection_snapshot(p) for p in q.order_by(Product.name.asc(), Product.id.asc()).all()]

    return read_with_retry(_op)


def get_stock_summary(ctx: ActorContext, product_id: int) -> dict:
    """
    Current stock plus ledger totals for one product.

    Totals count completed movements only; pending ones are reported
    separately so a reviewer sees what approval would change.
    """
    def _op():
        product = get_product(ctx.tenant_id, product_id)

        rows = (
            db.session.query(
                StockMovement.movement_type,
                StockMovement.status,
                func.coalesce(func.sum(StockMovement.box_change), 0),
                func.coalesce(func.sum(StockMovement.kg_change), 0),
                func.count(StockMovement.id),
            )
            .filter(
                StockMovement.tenant_id == ctx.tenant_id,
                StockMovement.product_id == product_id,
            )
            .group_by(StockMovement.movement_type, StockMovement.status)
            .all()
        )

        totals = {
            "boxes_in": 0,
            "kg_in": Decimal("0"),
            "boxes_damaged": 0,
            "kg_damaged": Decimal("0"),
            "boxes_corrected": 0,
            "kg_corrected": Decimal("0"),
        }
        pending = {"count": 0, "box_change": 0, "kg_change": Decimal("0")}

        for movement_type, status, boxes, kg, count in rows:
            boxes = int(boxes or 0)
            kg = to_decimal(kg)
            if status == "pending":
                pending["count"] += count
                pending["box_change"] += boxes
                pending["kg_change"] += kg
                continue
            if status != "completed":
                continue
            if movement_type == "new_stock":
                totals["boxes_in"] += boxes
                totals["kg_in"] += kg
            elif movement_type == "damaged":
                totals["boxes_damaged"] += abs(boxes)
                totals["kg_damaged"] += abs(kg)
            elif movement_type == "stock_correction":
                totals["boxes_corrected"] += boxes
                totals["kg_corrected"] += kg

        return {
            "current_stock": projection_snapshot(product),
            "low_stock_threshold": product.boxed_low_stock_threshold,
            "movements": {k: decimal_str(v) if isinstance(v, Decimal) else v for k, v in totals.items()},
            "pending": {k: decimal_str(v) if isinstance(v, Decimal) else v for k, v in pending.items()},
        }

    return read_with_retry(_op)
