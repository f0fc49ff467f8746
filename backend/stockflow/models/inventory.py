from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import decimal_str


MOVEMENT_TYPES = (
    "damaged",
    "new_stock",
    "stock_correction",
    "product_edit",
    "product_delete",
    "product_create",
)
MOVEMENT_STATUSES = ("pending", "completed", "cancelled", "rejected")
TERMINAL_MOVEMENT_STATUSES = ("completed", "cancelled", "rejected")


def _in_list(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Product(db.Model):
    """
    Product master data plus the current stock projection.

    MULTI-TENANT: Products are scoped by tenant_id, an opaque id supplied by
    the upstream auth layer.

    PROJECTION:
    quantity_box / quantity_kg are the live balances. They change only when
    a sale is allocated, a movement is applied (status -> completed), or a
    sale audit is approved. Every one of those paths locks the row and the
    version counter catches writers that slipped past the lock (SQLite).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("quantity_box >= 0", name="ck_products_quantity_box_nonneg"),
        db.CheckConstraint("quantity_kg >= 0", name="ck_products_quantity_kg_nonneg"),
        db.CheckConstraint("box_to_kg_ratio > 0", name="ck_products_ratio_positive"),
        db.Index("ix_products_tenant_name", "tenant_id", "name"),
        db.Index("ix_products_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)

    quantity_box = db.Column(db.Integer, nullable=False, default=0)
    quantity_kg = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    # kg yielded by breaking one box into loose stock
    box_to_kg_ratio = db.Column(db.Numeric(10, 3), nullable=False)

    price_per_box = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    price_per_kg = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cost_per_box = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cost_per_kg = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    boxed_low_stock_threshold = db.Column(db.Integer, nullable=False, default=0)

    # Approved product_delete flips this; ledger rows keep their product_id
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Product id={self.id} name={self.name!r} tenant_id={self.tenant_id!r} "
            f"boxes={self.quantity_box} kg={self.quantity_kg}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "quantity_box": self.quantity_box,
            "quantity_kg": decimal_str(self.quantity_kg),
            "box_to_kg_ratio": decimal_str(self.box_to_kg_ratio),
            "price_per_box": decimal_str(self.price_per_box),
            "price_per_kg": decimal_str(self.price_per_kg),
            "cost_per_box": decimal_str(self.cost_per_box),
            "cost_per_kg": decimal_str(self.cost_per_kg),
            "boxed_low_stock_threshold": self.boxed_low_stock_threshold,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockAddition(db.Model):
    """Delivery record behind a new_stock movement."""
    __tablename__ = "stock_additions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    boxes_added = db.Column(db.Integer, nullable=False, default=0)
    kg_added = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    total_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    delivery_date = db.Column(db.Date, nullable=False)

    performed_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "boxes_added": self.boxes_added,
            "kg_added": decimal_str(self.kg_added),
            "total_cost": decimal_str(self.total_cost),
            "delivery_date": self.delivery_date.isoformat() if self.delivery_date else None,
            "performed_by": self.performed_by,
            "created_at": to_utc_z(self.created_at),
        }


class DamagedProduct(db.Model):
    """Damage report behind a damaged movement."""
    __tablename__ = "damaged_products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    damaged_boxes = db.Column(db.Integer, nullable=False, default=0)
    damaged_kg = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    damaged_reason = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    # Valued at selling price, not cost
    loss_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    damaged_date = db.Column(db.Date, nullable=False)

    reported_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "damaged_boxes": self.damaged_boxes,
            "damaged_kg": decimal_str(self.damaged_kg),
            "damaged_reason": self.damaged_reason,
            "description": self.description,
            "loss_value": decimal_str(self.loss_value),
            "damaged_date": self.damaged_date.isoformat() if self.damaged_date else None,
            "reported_by": self.reported_by,
            "created_at": to_utc_z(self.created_at),
        }


class StockCorrection(db.Model):
    """Manual count correction behind a stock_correction movement."""
    __tablename__ = "stock_corrections"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    box_adjustment = db.Column(db.Integer, nullable=False, default=0)
    kg_adjustment = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    correction_reason = db.Column(db.String(255), nullable=False)

    performed_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "box_adjustment": self.box_adjustment,
            "kg_adjustment": decimal_str(self.kg_adjustment),
            "correction_reason": self.correction_reason,
            "performed_by": self.performed_by,
            "created_at": to_utc_z(self.created_at),
        }


class StockMovement(db.Model):
    """
    Append-only ledger of inventory-affecting events.

    Only status and its resolution metadata (resolved_by, resolved_at,
    rejection_reason) change after insert, and only while status is pending.
    product_create rows get their product_id when approval creates the
    product.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint(_in_list("movement_type", MOVEMENT_TYPES), name="ck_stock_movements_type"),
        db.CheckConstraint(_in_list("status", MOVEMENT_STATUSES), name="ck_stock_movements_status"),
        db.CheckConstraint(
            "(movement_type = 'damaged' AND damaged_id IS NOT NULL) OR "
            "(movement_type = 'new_stock' AND stock_addition_id IS NOT NULL) OR "
            "(movement_type = 'stock_correction' AND correction_id IS NOT NULL) OR "
            "(movement_type IN ('product_edit', 'product_delete', 'product_create') "
            "AND field_changed IS NOT NULL)",
            name="ck_stock_movements_references",
        ),
        db.CheckConstraint(
            "product_id IS NOT NULL OR movement_type = 'product_create'",
            name="ck_stock_movements_product",
        ),
        db.Index("ix_stock_movements_tenant_product_created", "tenant_id", "product_id", "created_at"),
        db.Index("ix_stock_movements_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    movement_type = db.Column(db.String(20), nullable=False, index=True)

    # Signed deltas; zero for product_edit / product_delete / product_create
    box_change = db.Column(db.Integer, nullable=False, default=0)
    kg_change = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    field_changed = db.Column(db.String(64), nullable=True)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)

    damaged_id = db.Column(db.Integer, db.ForeignKey("damaged_products.id"), nullable=True, index=True)
    stock_addition_id = db.Column(db.Integer, db.ForeignKey("stock_additions.id"), nullable=True, index=True)
    correction_id = db.Column(db.Integer, db.ForeignKey("stock_corrections.id"), nullable=True, index=True)

    reason = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    performed_by = db.Column(db.String(64), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    resolved_by = db.Column(db.String(64), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    def __repr__(self) -> str:
        return f"<StockMovement id={self.id} type={self.movement_type} status={self.status}>"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_MOVEMENT_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "box_change": self.box_change,
            "kg_change": decimal_str(self.kg_change),
            "field_changed": self.field_changed,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "damaged_id": self.damaged_id,
            "stock_addition_id": self.stock_addition_id,
            "correction_id": self.correction_id,
            "reason": self.reason,
            "status": self.status,
            "performed_by": self.performed_by,
            "created_at": to_utc_z(self.created_at),
            "resolved_by": self.resolved_by,
            "resolved_at": to_utc_z(self.resolved_at),
            "rejection_reason": self.rejection_reason,
        }
