"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the RetailPOS schema in the main database:
- products / inventory_logs: catalog and append-only stock ledger
- customers: loyalty master data
- app_settings: singleton holding the invoice counter
- invoices / invoice_lines: committed sales
- exchanges / exchange_return_lines / exchange_new_lines / refunds
- goods_receipts / goods_receipt_lines: supplier receipts
- offers: promotion catalog

The offline queue lives in the separate "offline" bind and is created with
`flask system init` (db.create_all covers every bind).
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    """
    Create all tables from scratch.

    WHY: stock >= 0 and loyalty_points >= 0 are CHECK constraints so the
    database rejects a negative value even if a code path slips past the
    service-level checks.
    """

    # ============================================================================
    # products: catalog (unit_price is tax inclusive)
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=128), nullable=True),
        sa.Column('hsn_code', sa.String(length=32), nullable=True),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('cost_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('tax_rate_pct', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reorder_level', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_name', 'products', ['name'])
    op.create_index('ix_products_active', 'products', ['is_active'])
    op.create_index('ix_products_category', 'products', ['category'])

    # ============================================================================
    # customers
    # ============================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('kids_dob', sa.Date(), nullable=True),
        sa.Column('loyalty_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_spend', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('phone', name='uq_customers_phone'),
        sa.CheckConstraint('loyalty_points >= 0', name='ck_customers_points_non_negative'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # app_settings: singleton (id = 1), owns the invoice counter
    # ============================================================================
    op.create_table(
        'app_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_name', sa.String(length=255), nullable=False, server_default='My Store'),
        sa.Column('currency', sa.String(length=8), nullable=False, server_default='INR'),
        sa.Column('invoice_prefix', sa.String(length=16), nullable=False, server_default='INV'),
        sa.Column('next_invoice_sequence', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
    )

    # ============================================================================
    # invoices + invoice_lines
    # ============================================================================
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('bill_discount_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('discount_total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('grand_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('balance_due', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='cash'),
        sa.Column('payment_reference_id', sa.String(length=128), nullable=True),
        sa.Column('cashier_user_id', sa.String(length=64), nullable=False),
        sa.Column('cashier_name', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='paid'),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),

        # Exchange linkage (only on invoices created by an exchange)
        sa.Column('exchange_of_invoice_id', sa.Integer(), nullable=True),
        sa.Column('exchange_id', sa.Integer(), nullable=True),

        # Idempotency key for redelivered offline operations
        sa.Column('op_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['exchange_of_invoice_id'], ['invoices.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_number', name='uq_invoices_number'),
        sa.UniqueConstraint('op_id', name='uq_invoices_op_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoices_issued_at', 'invoices', ['issued_at'])
    op.create_index('ix_invoices_customer_id', 'invoices', ['customer_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_exchange_of_invoice_id', 'invoices', ['exchange_of_invoice_id'])
    op.create_index('ix_invoices_exchange_id', 'invoices', ['exchange_id'])

    op.create_table(
        'invoice_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_rate_pct', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoice_lines_invoice_id', 'invoice_lines', ['invoice_id'])
    op.create_index('ix_invoice_lines_product_id', 'invoice_lines', ['product_id'])

    # ============================================================================
    # goods_receipts + goods_receipt_lines
    # ============================================================================
    op.create_table(
        'goods_receipts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('supplier_name', sa.String(length=255), nullable=True),
        sa.Column('supplier_code', sa.String(length=64), nullable=True),
        sa.Column('doc_no', sa.String(length=64), nullable=True),
        sa.Column('doc_date', sa.Date(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.String(length=64), nullable=False),
        sa.Column('op_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('op_id', name='uq_goods_receipts_op_id'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'goods_receipt_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost', sa.Numeric(12, 2), nullable=True),
        sa.ForeignKeyConstraint(['receipt_id'], ['goods_receipts.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_goods_receipt_lines_receipt_id', 'goods_receipt_lines', ['receipt_id'])

    # ============================================================================
    # inventory_logs: append-only (rows are never updated or deleted)
    # ============================================================================
    op.create_table(
        'inventory_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),

        # Signed: negative for sale/damage, positive for purchase/return
        sa.Column('quantity_change', sa.Integer(), nullable=False),

        # sale, purchase, return, damage, adjustment
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('related_invoice_id', sa.Integer(), nullable=True),
        sa.Column('related_receipt_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('previous_stock', sa.Integer(), nullable=True),
        sa.Column('new_stock', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['related_invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['related_receipt_id'], ['goods_receipts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_logs_product_id', 'inventory_logs', ['product_id'])
    op.create_index('ix_inventory_logs_type', 'inventory_logs', ['type'])
    op.create_index('ix_inventory_logs_related_invoice_id', 'inventory_logs', ['related_invoice_id'])
    op.create_index('ix_inventory_logs_related_receipt_id', 'inventory_logs', ['related_receipt_id'])
    op.create_index('ix_invlog_product_created', 'inventory_logs', ['product_id', 'created_at'])
    op.create_index('ix_invlog_type_created', 'inventory_logs', ['type', 'created_at'])

    # ============================================================================
    # exchanges + lines + refunds
    # ============================================================================
    op.create_table(
        'exchanges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('original_invoice_id', sa.Integer(), nullable=False),
        sa.Column('new_invoice_id', sa.Integer(), nullable=True),
        sa.Column('return_credit', sa.Numeric(12, 2), nullable=False),
        sa.Column('new_subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('difference', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_type', sa.String(length=16), nullable=True),
        sa.Column('payment_method', sa.String(length=16), nullable=True),
        sa.Column('payment_reference_id', sa.String(length=128), nullable=True),
        sa.Column('created_by_user_id', sa.String(length=64), nullable=False),
        sa.Column('op_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['original_invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['new_invoice_id'], ['invoices.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('op_id', name='uq_exchanges_op_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_exchanges_original_invoice_id', 'exchanges', ['original_invoice_id'])

    op.create_table(
        'exchange_return_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('exchange_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('defect', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('credit_per_unit', sa.Numeric(12, 2), nullable=False),
        sa.Column('credit_total', sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(['exchange_id'], ['exchanges.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_exchange_return_lines_exchange_id', 'exchange_return_lines', ['exchange_id'])
    op.create_index('ix_exchange_return_lines_product_id', 'exchange_return_lines', ['product_id'])

    op.create_table(
        'exchange_new_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('exchange_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(['exchange_id'], ['exchanges.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_exchange_new_lines_exchange_id', 'exchange_new_lines', ['exchange_id'])

    op.create_table(
        'refunds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('exchange_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False, server_default='cash'),
        sa.Column('reference_id', sa.String(length=128), nullable=True),
        sa.Column('created_by_user_id', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['exchange_id'], ['exchanges.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount > 0', name='ck_refunds_amount_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_refunds_exchange_id', 'refunds', ['exchange_id'])

    # ============================================================================
    # offers
    # ============================================================================
    op.create_table(
        'offers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('event_name', sa.String(length=128), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rule_type', sa.String(length=16), nullable=True),
        sa.Column('discount_type', sa.String(length=16), nullable=True),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('buy_qty', sa.Integer(), nullable=True),
        sa.Column('get_qty', sa.Integer(), nullable=True),
        sa.Column('product_ids', sa.JSON(), nullable=True),
        sa.Column('category_names', sa.JSON(), nullable=True),
        sa.Column('dob_month_only', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('exclusive', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_offers_is_active', 'offers', ['is_active'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('offers')
    op.drop_table('refunds')
    op.drop_table('exchange_new_lines')
    op.drop_table('exchange_return_lines')
    op.drop_table('exchanges')
    op.drop_table('inventory_logs')
    op.drop_table('goods_receipt_lines')
    op.drop_table('goods_receipts')
    op.drop_table('invoice_lines')
    op.drop_table('invoices')
    op.drop_table('app_settings')
    op.drop_table('customers')
    op.drop_table('products')
