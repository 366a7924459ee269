"""Initial hub schema: branches, catalog, inventory ledger, transactions, sync logs

INITIAL MIGRATION:
1. Creates branch registry (branches, employees)
2. Creates catalog (products, branch_product_pricing) and customers
3. Creates sync log and per-type push watermark tables before transactions
4. Creates inventory aggregate and append-only stock_movements
5. Creates schema_meta and stamps version 1

Revision ID: ch001_initial_schema
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.sql import table, column


# revision identifiers, used by Alembic.
revision = 'ch001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


QUANTITY = sa.Numeric(12, 3)


def upgrade():
    # ==========================================================================
    # STEP 1: Branch registry
    # ==========================================================================
    op.create_table('branches',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('network_status', sa.String(length=16), nullable=False, server_default='unknown'),
        sa.Column('api_endpoint', sa.String(length=512), nullable=True),
        sa.Column('api_key_hash', sa.String(length=64), nullable=True),
        sa.Column('outbound_api_key', sa.String(length=255), nullable=True),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_response_time_ms', sa.Integer(), nullable=True),
        sa.Column('server_info', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sa.UniqueConstraint('api_key_hash'),
    )
    op.create_index('ix_branches_active_status', 'branches', ['is_active', 'network_status'])

    op.create_table('employees',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('branch_id', sa.String(length=36), nullable=False),
        sa.Column('employee_code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'employee_code', name='uq_employees_branch_code'),
    )
    op.create_index('ix_employees_branch_id', 'employees', ['branch_id'])

    # ==========================================================================
    # STEP 2: Catalog and customers
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('external_id', sa.String(length=64), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('unit', sa.String(length=16), nullable=False, server_default='pcs'),
        sa.Column('base_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost_cents', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id'),
        sa.UniqueConstraint('sku'),
        sa.UniqueConstraint('barcode'),
    )
    op.create_index('ix_products_active_updated', 'products', ['is_active', 'updated_at'])

    op.create_table('branch_product_pricing',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('branch_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('cost_cents', sa.Integer(), nullable=True),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('last_pushed_price_cents', sa.Integer(), nullable=True),
        sa.Column('last_pushed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'product_id', name='uq_branch_pricing_branch_product'),
    )
    op.create_index('ix_branch_product_pricing_branch_id', 'branch_product_pricing', ['branch_id'])
    op.create_index('ix_branch_product_pricing_product_id', 'branch_product_pricing', ['product_id'])

    op.create_table('customers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('loyalty_card_number', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('phone'),
        sa.UniqueConstraint('loyalty_card_number'),
    )

    # ==========================================================================
    # STEP 3: Sync logs and transactions
    # ==========================================================================
    op.create_table('branch_sync_logs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('branch_id', sa.String(length=36), nullable=False),
        sa.Column('sync_type', sa.String(length=32), nullable=False),
        sa.Column('direction', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='started'),
        sa.Column('records_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_branch_sync_logs_branch_id', 'branch_sync_logs', ['branch_id'])
    op.create_index('ix_sync_logs_branch_type_started', 'branch_sync_logs', ['branch_id', 'sync_type', 'started_at'])
    op.create_index('ix_sync_logs_status', 'branch_sync_logs', ['status'])

    op.create_table('branch_push_watermarks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('branch_id', sa.String(length=36), nullable=False),
        sa.Column('sync_type', sa.String(length=32), nullable=False),
        sa.Column('pushed_through', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sync_log_id', sa.String(length=36), nullable=True),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['sync_log_id'], ['branch_sync_logs.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'sync_type', name='uq_push_watermarks_branch_type'),
    )

    op.create_table('transactions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('branch_id', sa.String(length=36), nullable=False),
        sa.Column('transaction_number', sa.String(length=64), nullable=False),
        sa.Column('receipt_number', sa.String(length=64), nullable=True),
        sa.Column('external_id', sa.String(length=64), nullable=True),
        sa.Column('employee_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('transaction_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('payload_hash', sa.String(length=64), nullable=True),
        sa.Column('sync_log_id', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['employee_id'], ['employees.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['sync_log_id'], ['branch_sync_logs.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'transaction_number', name='uq_transactions_branch_number'),
    )
    op.create_index('ix_transactions_branch_id', 'transactions', ['branch_id'])
    op.create_index('ix_transactions_status', 'transactions', ['status'])
    op.create_index('ix_transactions_branch_status_created', 'transactions', ['branch_id', 'status', 'created_at'])

    op.create_table('transaction_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('transaction_id', sa.String(length=36), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=True),
        sa.Column('product_token', sa.String(length=64), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=True),
        sa.Column('quantity', QUANTITY, nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_transaction_items_transaction_id', 'transaction_items', ['transaction_id'])
    op.create_index('ix_transaction_items_product_id', 'transaction_items', ['product_id'])

    # ==========================================================================
    # STEP 4: Inventory aggregate and movement ledger
    # ==========================================================================
    op.create_table('branch_inventory',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('branch_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('quantity_in_stock', QUANTITY, nullable=False, server_default='0'),
        sa.Column('min_stock_level', QUANTITY, nullable=True),
        sa.Column('max_stock_level', QUANTITY, nullable=True),
        sa.Column('last_movement_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'product_id', name='uq_branch_inventory_branch_product'),
        sa.CheckConstraint('quantity_in_stock >= 0', name='ck_branch_inventory_non_negative'),
    )
    op.create_index('ix_branch_inventory_branch_id', 'branch_inventory', ['branch_id'])
    op.create_index('ix_branch_inventory_product_id', 'branch_inventory', ['product_id'])

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('branch_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('quantity', QUANTITY, nullable=False),
        sa.Column('delta', QUANTITY, nullable=False),
        sa.Column('quantity_before', QUANTITY, nullable=False),
        sa.Column('quantity_after', QUANTITY, nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('transaction_id', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_stock_movements_branch_id', 'stock_movements', ['branch_id'])
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_kind', 'stock_movements', ['kind'])
    op.create_index('ix_stock_movements_branch_product_created', 'stock_movements', ['branch_id', 'product_id', 'created_at'])
    op.create_index('ix_stock_movements_transaction', 'stock_movements', ['transaction_id'])

    # ==========================================================================
    # STEP 5: Schema version marker
    # ==========================================================================
    op.create_table('schema_meta',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    schema_meta = table('schema_meta',
        column('id', sa.Integer),
        column('version', sa.Integer),
    )
    op.execute(schema_meta.insert().values(id=1, version=1))


def downgrade():
    op.drop_table('schema_meta')
    op.drop_index('ix_stock_movements_transaction', table_name='stock_movements')
    op.drop_index('ix_stock_movements_branch_product_created', table_name='stock_movements')
    op.drop_index('ix_stock_movements_kind', table_name='stock_movements')
    op.drop_index('ix_stock_movements_product_id', table_name='stock_movements')
    op.drop_index('ix_stock_movements_branch_id', table_name='stock_movements')
    op.drop_table('stock_movements')
    op.drop_index('ix_branch_inventory_product_id', table_name='branch_inventory')
    op.drop_index('ix_branch_inventory_branch_id', table_name='branch_inventory')
    op.drop_table('branch_inventory')
    op.drop_index('ix_transaction_items_product_id', table_name='transaction_items')
    op.drop_index('ix_transaction_items_transaction_id', table_name='transaction_items')
    op.drop_table('transaction_items')
    op.drop_index('ix_transactions_branch_status_created', table_name='transactions')
    op.drop_index('ix_transactions_status', table_name='transactions')
    op.drop_index('ix_transactions_branch_id', table_name='transactions')
    op.drop_table('transactions')
    op.drop_table('branch_push_watermarks')
    op.drop_index('ix_sync_logs_status', table_name='branch_sync_logs')
    op.drop_index('ix_sync_logs_branch_type_started', table_name='branch_sync_logs')
    op.drop_index('ix_branch_sync_logs_branch_id', table_name='branch_sync_logs')
    op.drop_table('branch_sync_logs')
    op.drop_table('customers')
    op.drop_index('ix_branch_product_pricing_product_id', table_name='branch_product_pricing')
    op.drop_index('ix_branch_product_pricing_branch_id', table_name='branch_product_pricing')
    op.drop_table('branch_product_pricing')
    op.drop_index('ix_products_active_updated', table_name='products')
    op.drop_table('products')
    op.drop_index('ix_employees_branch_id', table_name='employees')
    op.drop_table('employees')
    op.drop_index('ix_branches_active_status', table_name='branches')
    op.drop_table('branches')
