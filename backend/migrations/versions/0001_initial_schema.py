"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete stockroom schema:
- products: catalogue plus the live stock quantity
- product_search_entries: lower-cased search text per product
- sales / sale_items: immutable committed sales with denormalised lines
- inventory_counts: physical counts and their variance
- ledger_events: append-only audit trail

Money columns are integer cents; timestamps are epoch milliseconds.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # products
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('barcode', sa.String(length=13), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('stock_quantity', sa.Integer(), nullable=False),
        sa.Column('min_stock_level', sa.Integer(), nullable=False),
        sa.Column('created_at_ms', sa.BigInteger(), nullable=False),
        sa.Column('updated_at_ms', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('barcode', name='uq_products_barcode'),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_products_stock_non_negative'),
        sa.CheckConstraint('price_cents >= 0', name='ck_products_price_non_negative'),
    )
    op.create_index('ix_products_category', 'products', ['category'])
    op.create_index('ix_products_category_stock', 'products', ['category', 'stock_quantity'])
    op.create_index('ix_products_low_stock', 'products', ['stock_quantity', 'min_stock_level'])
    op.create_index('ix_products_name', 'products', ['name'])

    op.create_table(
        'product_search_entries',
        sa.Column('product_id', sa.String(length=32), nullable=False),
        sa.Column('search_text', sa.Text(), nullable=False),
        sa.Column('indexed_at_ms', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('product_id'),
    )

    # ============================================================================
    # sales / sale_items
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('timestamp_ms', sa.BigInteger(), nullable=False),
        sa.Column('customer_name', sa.String(length=120), nullable=True),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('idempotency_key', sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', name='uq_sales_idempotency_key'),
        sa.CheckConstraint('total_cents = subtotal_cents + tax_cents', name='ck_sales_total'),
    )
    op.create_index('ix_sales_timestamp_ms', 'sales', ['timestamp_ms'])
    op.create_index('ix_sales_timestamp_total', 'sales', ['timestamp_ms', 'total_cents'])
    op.create_index('ix_sales_payment_method', 'sales', ['payment_method'])

    op.create_table(
        'sale_items',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('sale_id', sa.String(length=32), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.String(length=32), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_barcode', sa.String(length=13), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('total_price_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', 'line_number', name='uq_sale_items_sale_line'),
        sa.CheckConstraint('quantity > 0', name='ck_sale_items_quantity_positive'),
    )
    op.create_index('ix_sale_items_sale_id', 'sale_items', ['sale_id'])
    op.create_index('ix_sale_items_product_quantity', 'sale_items', ['product_id', 'quantity'])

    # ============================================================================
    # inventory_counts
    # ============================================================================
    op.create_table(
        'inventory_counts',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('product_id', sa.String(length=32), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_barcode', sa.String(length=13), nullable=False),
        sa.Column('system_count', sa.Integer(), nullable=False),
        sa.Column('physical_count', sa.Integer(), nullable=False),
        sa.Column('variance', sa.Integer(), nullable=False),
        sa.Column('count_date_ms', sa.BigInteger(), nullable=False),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('counted_by', sa.String(length=120), nullable=False),
        sa.Column('applied_at_ms', sa.BigInteger(), nullable=True),
        sa.Column('applied_by', sa.String(length=120), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('physical_count >= 0', name='ck_counts_physical_non_negative'),
        sa.CheckConstraint('variance = physical_count - system_count', name='ck_counts_variance_derived'),
    )
    op.create_index('ix_inventory_counts_count_date_ms', 'inventory_counts', ['count_date_ms'])
    op.create_index('ix_inventory_counts_product_date', 'inventory_counts', ['product_id', 'count_date_ms'])
    op.create_index('ix_inventory_counts_variance', 'inventory_counts', ['variance'])

    # ============================================================================
    # ledger_events: append-only audit trail
    # ============================================================================
    op.create_table(
        'ledger_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.String(length=32), nullable=False),
        sa.Column('occurred_at_ms', sa.BigInteger(), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_ledger_events_event_type', 'ledger_events', ['event_type'])
    op.create_index('ix_ledger_events_occurred_at_ms', 'ledger_events', ['occurred_at_ms'])
    op.create_index('ix_ledger_entity', 'ledger_events', ['entity_type', 'entity_id'])


def downgrade():
    op.drop_table('ledger_events')
    op.drop_table('inventory_counts')
    op.drop_table('sale_items')
    op.drop_table('sales')
    op.drop_table('product_search_entries')
    op.drop_table('products')
