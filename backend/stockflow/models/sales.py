from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import decimal_str


PAYMENT_METHODS = ("momo_pay", "cash", "bank_transfer")
PAYMENT_STATUSES = ("paid", "pending", "partial")

AUDIT_TYPES = ("quantity_change", "payment_method_change", "deletion")
AUDIT_STATUSES = ("pending", "approved", "rejected")

# Only these sale fields can change after creation
EDITABLE_SALE_FIELDS = ("boxes_quantity", "kg_quantity", "payment_method")


class Sale(db.Model):
    """
    A completed sale.

    Created together with its stock allocation; afterwards it changes only
    through an approved SaleAudit. Unit prices are snapshotted so approved
    quantity edits re-price at the original rate.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("boxes_quantity >= 0", name="ck_sales_boxes_nonneg"),
        db.CheckConstraint("kg_quantity >= 0", name="ck_sales_kg_nonneg"),
        db.Index("ix_sales_tenant_created", "tenant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    boxes_quantity = db.Column(db.Integer, nullable=False, default=0)
    kg_quantity = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    box_price = db.Column(db.Numeric(12, 2), nullable=False)
    kg_price = db.Column(db.Numeric(12, 2), nullable=False)
    profit_per_box = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    profit_per_kg = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    remaining_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    payment_status = db.Column(db.String(16), nullable=False, default="paid")
    payment_method = db.Column(db.String(32), nullable=False)

    client_name = db.Column(db.String(255), nullable=True)
    email_address = db.Column(db.String(150), nullable=True)
    phone = db.Column(db.String(15), nullable=True)

    performed_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("sales", lazy="dynamic"))

    def __repr__(self) -> str:
        return f"<Sale id={self.id} product_id={self.product_id} boxes={self.boxes_quantity} kg={self.kg_quantity}>"

    def snapshot(self) -> dict:
        """JSON-safe copy kept in audit old_values."""
        return {
            "id": self.id,
            "product_id": self.product_id,
            "boxes_quantity": self.boxes_quantity,
            "kg_quantity": decimal_str(self.kg_quantity),
            "box_price": decimal_str(self.box_price),
            "kg_price": decimal_str(self.kg_price),
            "total_amount": decimal_str(self.total_amount),
            "amount_paid": decimal_str(self.amount_paid),
            "remaining_amount": decimal_str(self.remaining_amount),
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "client_name": self.client_name,
        }

    def to_dict(self) -> dict:
        return {
            **self.snapshot(),
            "tenant_id": self.tenant_id,
            "profit_per_box": decimal_str(self.profit_per_box),
            "profit_per_kg": decimal_str(self.profit_per_kg),
            "email_address": self.email_address,
            "phone": self.phone,
            "performed_by": self.performed_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SaleAudit(db.Model):
    """
    Proposed retroactive change to a completed sale.

    Only approval_status and its resolution metadata change after insert.
    sale_id is nulled when an approved deletion removes the sale; the audit
    row itself is kept.
    """
    __tablename__ = "sales_audit"
    __table_args__ = (
        db.CheckConstraint(
            "audit_type IN ('quantity_change', 'payment_method_change', 'deletion')",
            name="ck_sales_audit_type",
        ),
        db.CheckConstraint(
            "approval_status IN ('pending', 'approved', 'rejected')",
            name="ck_sales_audit_status",
        ),
        db.CheckConstraint(
            "audit_type = 'quantity_change' OR (boxes_change = 0 AND kg_change = 0)",
            name="ck_sales_audit_quantity_fields",
        ),
        # One outstanding proposal per sale, even under concurrent inserts
        db.Index(
            "uq_sales_audit_one_pending",
            "sale_id",
            unique=True,
            sqlite_where=db.text("approval_status = 'pending'"),
            postgresql_where=db.text("approval_status = 'pending'"),
        ),
        db.Index("ix_sales_audit_tenant_status", "tenant_id", "approval_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="SET NULL"), nullable=True, index=True)

    audit_type = db.Column(db.String(32), nullable=False, index=True)

    # new - old; only populated for quantity_change
    boxes_change = db.Column(db.Integer, nullable=False, default=0)
    kg_change = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)

    reason = db.Column(db.Text, nullable=False)
    performed_by = db.Column(db.String(64), nullable=False)

    approval_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    approved_by = db.Column(db.String(64), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<SaleAudit id={self.id} sale_id={self.sale_id} type={self.audit_type} status={self.approval_status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sale_id": self.sale_id,
            "audit_type": self.audit_type,
            "boxes_change": self.boxes_change,
            "kg_change": decimal_str(self.kg_change),
            "old_values": self.old_values,
            "new_values": self.new_values,
            "reason": self.reason,
            "performed_by": self.performed_by,
            "approval_status": self.approval_status,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
