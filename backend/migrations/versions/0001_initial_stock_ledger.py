"""initial stock ledger schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the complete stockflow schema:
- products: master data + live box/kg projection (optimistic version_id)
- stock_additions / damaged_products / stock_corrections: movement sources
- stock_movements: append-only ledger with pending/completed/cancelled/rejected
- sales: allocation-backed sales with snapshotted unit prices
- sales_audit: proposed retroactive sale changes, one pending per sale
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


MOVEMENT_TYPES = "('damaged', 'new_stock', 'stock_correction', 'product_edit', 'product_delete', 'product_create')"
MOVEMENT_STATUSES = "('pending', 'completed', 'cancelled', 'rejected')"


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    # ============================================================================
    # products: master data + stock projection
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('quantity_box', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_kg', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('box_to_kg_ratio', sa.Numeric(10, 3), nullable=False),
        sa.Column('price_per_box', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('price_per_kg', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('cost_per_box', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('cost_per_kg', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('boxed_low_stock_threshold', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.CheckConstraint('quantity_box >= 0', name='ck_products_quantity_box_nonneg'),
        sa.CheckConstraint('quantity_kg >= 0', name='ck_products_quantity_kg_nonneg'),
        sa.CheckConstraint('box_to_kg_ratio > 0', name='ck_products_ratio_positive'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_tenant_id', 'products', ['tenant_id'])
    op.create_index('ix_products_tenant_name', 'products', ['tenant_id', 'name'])
    op.create_index('ix_products_tenant_active', 'products', ['tenant_id', 'is_active'])

    # ============================================================================
    # movement source records
    # ============================================================================
    op.create_table(
        'stock_additions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('boxes_added', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('kg_added', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('total_cost', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('delivery_date', sa.Date(), nullable=False),
        sa.Column('performed_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_additions_tenant_id', 'stock_additions', ['tenant_id'])
    op.create_index('ix_stock_additions_product_id', 'stock_additions', ['product_id'])

    op.create_table(
        'damaged_products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('damaged_boxes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('damaged_kg', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('damaged_reason', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('loss_value', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('damaged_date', sa.Date(), nullable=False),
        sa.Column('reported_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_damaged_products_tenant_id', 'damaged_products', ['tenant_id'])
    op.create_index('ix_damaged_products_product_id', 'damaged_products', ['product_id'])

    op.create_table(
        'stock_corrections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('box_adjustment', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('kg_adjustment', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('correction_reason', sa.String(length=255), nullable=False),
        sa.Column('performed_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_corrections_tenant_id', 'stock_corrections', ['tenant_id'])
    op.create_index('ix_stock_corrections_product_id', 'stock_corrections', ['product_id'])

    # ============================================================================
    # stock_movements: append-only ledger
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=True),
        sa.Column('movement_type', sa.String(length=20), nullable=False),
        sa.Column('box_change', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('kg_change', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('field_changed', sa.String(length=64), nullable=True),
        sa.Column('old_value', sa.Text(), nullable=True),
        sa.Column('new_value', sa.Text(), nullable=True),
        sa.Column('damaged_id', sa.Integer(), sa.ForeignKey('damaged_products.id'), nullable=True),
        sa.Column('stock_addition_id', sa.Integer(), sa.ForeignKey('stock_additions.id'), nullable=True),
        sa.Column('correction_id', sa.Integer(), sa.ForeignKey('stock_corrections.id'), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('performed_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('resolved_by', sa.String(length=64), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.CheckConstraint(f'movement_type IN {MOVEMENT_TYPES}', name='ck_stock_movements_type'),
        sa.CheckConstraint(f'status IN {MOVEMENT_STATUSES}', name='ck_stock_movements_status'),
        sa.CheckConstraint(
            "(movement_type = 'damaged' AND damaged_id IS NOT NULL) OR "
            "(movement_type = 'new_stock' AND stock_addition_id IS NOT NULL) OR "
            "(movement_type = 'stock_correction' AND correction_id IS NOT NULL) OR "
            "(movement_type IN ('product_edit', 'product_delete', 'product_create') "
            "AND field_changed IS NOT NULL)",
            name='ck_stock_movements_references',
        ),
        sa.CheckConstraint(
            "product_id IS NOT NULL OR movement_type = 'product_create'",
            name='ck_stock_movements_product',
        ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    for column in ('tenant_id', 'product_id', 'movement_type', 'damaged_id', 'stock_addition_id',
                   'correction_id', 'status', 'performed_by', 'created_at'):
        op.create_index(f'ix_stock_movements_{column}', 'stock_movements', [column])
    op.create_index('ix_stock_movements_tenant_product_created', 'stock_movements',
                    ['tenant_id', 'product_id', 'created_at'])
    op.create_index('ix_stock_movements_tenant_status', 'stock_movements', ['tenant_id', 'status'])

    # ============================================================================
    # sales
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('boxes_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('kg_quantity', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('box_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('kg_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('profit_per_box', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('profit_per_kg', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('remaining_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='paid'),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('client_name', sa.String(length=255), nullable=True),
        sa.Column('email_address', sa.String(length=150), nullable=True),
        sa.Column('phone', sa.String(length=15), nullable=True),
        sa.Column('performed_by', sa.String(length=64), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('boxes_quantity >= 0', name='ck_sales_boxes_nonneg'),
        sa.CheckConstraint('kg_quantity >= 0', name='ck_sales_kg_nonneg'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_tenant_id', 'sales', ['tenant_id'])
    op.create_index('ix_sales_product_id', 'sales', ['product_id'])
    op.create_index('ix_sales_created_at', 'sales', ['created_at'])
    op.create_index('ix_sales_tenant_created', 'sales', ['tenant_id', 'created_at'])

    # ============================================================================
    # sales_audit: one pending proposal per sale
    # ============================================================================
    op.create_table(
        'sales_audit',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('sale_id', sa.Integer(), sa.ForeignKey('sales.id', ondelete='SET NULL'), nullable=True),
        sa.Column('audit_type', sa.String(length=32), nullable=False),
        sa.Column('boxes_change', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('kg_change', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('performed_by', sa.String(length=64), nullable=False),
        sa.Column('approval_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('approved_by', sa.String(length=64), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "audit_type IN ('quantity_change', 'payment_method_change', 'deletion')",
            name='ck_sales_audit_type',
        ),
        sa.CheckConstraint(
            "approval_status IN ('pending', 'approved', 'rejected')",
            name='ck_sales_audit_status',
        ),
        sa.CheckConstraint(
            "audit_type = 'quantity_change' OR (boxes_change = 0 AND kg_change = 0)",
            name='ck_sales_audit_quantity_fields',
        ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    for column in ('tenant_id', 'sale_id', 'audit_type', 'approval_status'):
        op.create_index(f'ix_sales_audit_{column}', 'sales_audit', [column])
    op.create_index('ix_sales_audit_tenant_status', 'sales_audit', ['tenant_id', 'approval_status'])
    op.create_index(
        'uq_sales_audit_one_pending', 'sales_audit', ['sale_id'],
        unique=True,
        sqlite_where=sa.text("approval_status = 'pending'"),
        postgresql_where=sa.text("approval_status = 'pending'"),
    )


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('sales_audit')
    op.drop_table('sales')
    op.drop_table('stock_movements')
    op.drop_table('stock_corrections')
    op.drop_table('damaged_products')
    op.drop_table('stock_additions')
    op.drop_table('products')
