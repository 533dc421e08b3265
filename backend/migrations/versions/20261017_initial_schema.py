"""Initial schema: tenancy, catalog, stock ledger, sales, loyalty, tax

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17

This migration creates:
1. tenants, sites (public slug per site)
2. categories, products (current_stock maintained by the stock ledger)
3. stock_batches, stock_movements (append-only ledger)
4. sales, sale_items (frozen line snapshots), document_sequences
5. royalty_* tables (points ledger, rewards, redemptions)
6. site_tax_configs
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*names):
    return [
        sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
        for name in names
    ]


def upgrade():
    # ==========================================================================
    # 1. TENANCY
    # ==========================================================================
    op.create_table('tenants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_tenants_code', 'tenants', ['code'], unique=True)
    op.create_index('ix_tenants_is_active', 'tenants', ['is_active'])

    op.create_table('sites',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('slug', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps('created_at'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_sites_tenant_name'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sites_tenant_id', 'sites', ['tenant_id'])
    op.create_index('ix_sites_slug', 'sites', ['slug'], unique=True)

    # ==========================================================================
    # 2. CATALOG
    # ==========================================================================
    op.create_table('categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('short_name', sa.String(length=32), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False, server_default='PRODUCT'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps('created_at'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id', 'type', 'name', name='uq_categories_site_type_name'),
        sa.UniqueConstraint('site_id', 'type', 'short_name', name='uq_categories_site_type_short'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_categories_site_id', 'categories', ['site_id'])

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('short_name', sa.String(length=64), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('unit_code', sa.String(length=16), nullable=False, server_default='EA'),
        sa.Column('mrp_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sale_rate_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('purchase_rate_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps('created_at', 'updated_at'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id', 'name', name='uq_products_site_name'),
        sa.UniqueConstraint('site_id', 'short_name', name='uq_products_site_short'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_site_id', 'products', ['site_id'])
    op.create_index('ix_products_category_id', 'products', ['category_id'])
    op.create_index('ix_products_site_stock', 'products', ['site_id', 'current_stock'])

    # ==========================================================================
    # 3. SALES (before stock_movements, which references sales)
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('bill_no', sa.String(length=32), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('remark', sa.Text(), nullable=True),
        sa.Column('gross_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('bill_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reward_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('due_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='UNPAID'),
        sa.Column('is_edited', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('edit_reason', sa.Text(), nullable=True),
        sa.Column('edited_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('edited_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps('created_at'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id', 'bill_no', name='uq_sales_site_bill_no'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_site_id', 'sales', ['site_id'])
    op.create_index('ix_sales_customer_phone', 'sales', ['customer_phone'])
    op.create_index('ix_sales_payment_status', 'sales', ['payment_status'])
    op.create_index('ix_sales_site_created', 'sales', ['site_id', 'created_at'])

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id', 'document_type', name='uq_document_sequences_site_type'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_document_sequences_site_id', 'document_sequences', ['site_id'])

    # ==========================================================================
    # 4. STOCK LEDGER
    # ==========================================================================
    op.create_table('stock_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('remaining_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps('created_at'),
        sa.CheckConstraint('remaining_qty >= 0', name='ck_stock_batches_remaining_nonneg'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_batches_site_id', 'stock_batches', ['site_id'])
    op.create_index('ix_stock_batches_created_at', 'stock_batches', ['created_at'])

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('location', sa.String(length=16), nullable=False, server_default='STORE'),
        sa.Column('mrp_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sale_rate_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('purchase_rate_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('batch_number', sa.String(length=64), nullable=True),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('remark', sa.Text(), nullable=True),
        sa.Column('source_id', sa.String(length=36), nullable=True),
        sa.Column('transfer_ref', sa.String(length=36), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps('created_at'),
        sa.CheckConstraint('quantity_delta <> 0', name='ck_stock_movements_delta_nonzero'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['stock_batches.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_movements_site_id', 'stock_movements', ['site_id'])
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_batch_id', 'stock_movements', ['batch_id'])
    op.create_index('ix_stock_movements_type', 'stock_movements', ['type'])
    op.create_index('ix_stock_movements_expiry_date', 'stock_movements', ['expiry_date'])
    op.create_index('ix_stock_movements_source_id', 'stock_movements', ['source_id'])
    op.create_index('ix_stock_movements_transfer_ref', 'stock_movements', ['transfer_ref'])
    op.create_index('ix_stock_movements_sale_id', 'stock_movements', ['sale_id'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])
    op.create_index('ix_stock_movements_site_product', 'stock_movements', ['site_id', 'product_id'])
    op.create_index('ix_stock_movements_site_created', 'stock_movements', ['site_id', 'created_at'])

    op.create_table('sale_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('line_no', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('batch_number', sa.String(length=64), nullable=True),
        sa.Column('is_reward_item', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('mrp_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rate_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gst_rate', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('hst_rate', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('pst_rate', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('qst_rate', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gst_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('hst_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pst_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('qst_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('line_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['stock_batches.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_items_sale_id', 'sale_items', ['sale_id'])
    op.create_index('ix_sale_items_product_id', 'sale_items', ['product_id'])

    # ==========================================================================
    # 5. LOYALTY
    # ==========================================================================
    op.create_table('royalty_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('points_per_amount', sa.Numeric(10, 4), nullable=False, server_default='1'),
        sa.Column('amount_per_point', sa.Numeric(10, 4), nullable=False, server_default='1'),
        sa.Column('min_bill_for_points_cents', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps('created_at', 'updated_at'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id'),
        sqlite_autoincrement=True,
    )

    op.create_table('royalty_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('customer_phone', sa.String(length=32), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('current_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_points_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_points_redeemed', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps('created_at', 'updated_at'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('current_points >= 0', name='ck_royalty_accounts_points_nonneg'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id', 'customer_phone', name='uq_royalty_accounts_site_phone'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_royalty_accounts_site_id', 'royalty_accounts', ['site_id'])

    op.create_table('royalty_rewards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('reward_type', sa.String(length=16), nullable=False),
        sa.Column('points_required', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('coupon_name', sa.String(length=64), nullable=True),
        sa.Column('discount_percent', sa.Numeric(5, 2), nullable=True),
        sa.Column('discount_max_cap_cents', sa.Integer(), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('product_qty', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps('created_at', 'updated_at'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id', 'name', name='uq_royalty_rewards_site_name'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_royalty_rewards_site_id', 'royalty_rewards', ['site_id'])
    op.create_index('ix_royalty_rewards_status', 'royalty_rewards', ['status'])

    op.create_table('royalty_redemptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('reward_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('points_used', sa.Integer(), nullable=False),
        sa.Column('discount_applied_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('sale_bill_no', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='APPLIED'),
        *_timestamps('used_at'),
        sa.ForeignKeyConstraint(['account_id'], ['royalty_accounts.id']),
        sa.ForeignKeyConstraint(['reward_id'], ['royalty_rewards.id']),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_royalty_redemptions_account_id', 'royalty_redemptions', ['account_id'])
    op.create_index('ix_royalty_redemptions_reward_id', 'royalty_redemptions', ['reward_id'])
    op.create_index('ix_royalty_redemptions_site_id', 'royalty_redemptions', ['site_id'])
    op.create_index('ix_royalty_redemptions_sale_id', 'royalty_redemptions', ['sale_id'])

    op.create_table('royalty_point_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('sale_bill_no', sa.String(length=32), nullable=True),
        sa.Column('bill_amount_cents', sa.Integer(), nullable=True),
        sa.Column('redemption_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        *_timestamps('created_at'),
        sa.ForeignKeyConstraint(['account_id'], ['royalty_accounts.id']),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['redemption_id'], ['royalty_redemptions.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_royalty_point_transactions_account_id', 'royalty_point_transactions', ['account_id'])
    op.create_index('ix_royalty_point_transactions_site_id', 'royalty_point_transactions', ['site_id'])
    op.create_index('ix_royalty_point_transactions_sale_id', 'royalty_point_transactions', ['sale_id'])
    op.create_index('ix_royalty_point_tx_account_created', 'royalty_point_transactions', ['account_id', 'created_at'])

    # ==========================================================================
    # 6. TAX
    # ==========================================================================
    op.create_table('site_tax_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('province_code', sa.String(length=4), nullable=False),
        sa.Column('province_name', sa.String(length=64), nullable=False),
        sa.Column('gst_rate', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('hst_rate', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('pst_rate', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('qst_rate', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('total_rate', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('gst_number', sa.String(length=32), nullable=True),
        sa.Column('pst_number', sa.String(length=32), nullable=True),
        sa.Column('qst_number', sa.String(length=32), nullable=True),
        *_timestamps('created_at', 'updated_at'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id'),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table('site_tax_configs')
    op.drop_table('royalty_point_transactions')
    op.drop_table('royalty_redemptions')
    op.drop_table('royalty_rewards')
    op.drop_table('royalty_accounts')
    op.drop_table('royalty_configs')
    op.drop_table('sale_items')
    op.drop_table('stock_movements')
    op.drop_table('stock_batches')
    op.drop_table('document_sequences')
    op.drop_table('sales')
    op.drop_table('products')
    op.drop_table('categories')
    op.drop_table('sites')
    op.drop_table('tenants')
