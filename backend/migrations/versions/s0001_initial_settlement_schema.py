"""initial settlement schema

Revision ID: s0001
Revises:
Create Date: 2025-03-10 00:00:00.000000

Creates the complete settlement schema:
- companies / users: customer directory and mileage account holders
- products: catalog master
- stock_records / stock_movements: stock projection and its append-only ledger
- mileage_accounts / mileage_entries: cached balance and its append-only ledger
- orders / order_lines: wholesale orders, listed by business day
- return_statements / deduction_statements (+ lines): settlement documents
- document_sequences: per-day document numbering
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 's0001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def _line_columns():
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('statement_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('color', sa.String(length=64), nullable=False),
        sa.Column('size', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Integer(), nullable=False),
    ]


def upgrade():
    """
    Create all tables from scratch.

    WHY: stock_records.quantity_on_hand and mileage_accounts.balance are
    projections of their ledgers; the CHECK constraints and version_id
    columns back the service-layer invariants at the database level.
    """

    # ============================================================================
    # Directory
    # ============================================================================
    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('business_number', sa.String(length=32), nullable=True),
        sa.Column('owner_user_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_companies_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_companies_owner_user_id', 'companies', ['owner_user_id'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=True),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=128), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username', name='uq_users_username'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_company_id', 'users', ['company_id'])

    # ============================================================================
    # Catalog and stock ledger
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('base_price', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_products_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_name', 'products', ['name'])

    op.create_table(
        'stock_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('color', sa.String(length=64), nullable=False),
        sa.Column('size', sa.String(length=64), nullable=False),
        sa.Column('quantity_on_hand', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('updated_at', nullable=True),
        sa.CheckConstraint('quantity_on_hand >= 0', name='ck_stock_records_non_negative'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'color', 'size', name='uq_stock_records_variant'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_records_product_id', 'stock_records', ['product_id'])

    # Append-only: rows are never updated or deleted
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('stock_record_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('color', sa.String(length=64), nullable=False),
        sa.Column('size', sa.String(length=64), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('resulting_quantity', sa.Integer(), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.CheckConstraint('delta <> 0', name='ck_stock_movements_non_zero'),
        sa.CheckConstraint('resulting_quantity >= 0', name='ck_stock_movements_non_negative'),
        sa.ForeignKeyConstraint(['stock_record_id'], ['stock_records.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_stock_record_id', 'stock_movements', ['stock_record_id'])
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_variant_created', 'stock_movements',
                    ['product_id', 'color', 'size', 'created_at'])
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference_type', 'reference_id'])

    # ============================================================================
    # Mileage ledger
    # ============================================================================
    op.create_table(
        'mileage_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('updated_at', nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', name='uq_mileage_accounts_user'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_mileage_accounts_user_id', 'mileage_accounts', ['user_id'])

    op.create_table(
        'mileage_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=8), nullable=False),
        sa.Column('source', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        _timestamp('status_changed_at', nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_mileage_entries_user_id', 'mileage_entries', ['user_id'])
    op.create_index('ix_mileage_entries_source', 'mileage_entries', ['source'])
    op.create_index('ix_mileage_entries_status', 'mileage_entries', ['status'])
    op.create_index('ix_mileage_entries_user_created', 'mileage_entries', ['user_id', 'created_at'])
    op.create_index('ix_mileage_entries_reference', 'mileage_entries', ['reference_type', 'reference_id'])

    # ============================================================================
    # Orders
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('company_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('tracking_number', sa.String(length=64), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at', nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_company_id', 'orders', ['company_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    op.create_table(
        'order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('color', sa.String(length=64), nullable=False),
        sa.Column('size', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('shipped_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_price', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_lines_order_id', 'order_lines', ['order_id'])
    op.create_index('ix_order_lines_variant', 'order_lines', ['product_id', 'color', 'size'])

    # ============================================================================
    # Settlement statements
    # ============================================================================
    op.create_table(
        'return_statements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('statement_number', sa.String(length=32), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('reason_code', sa.String(length=64), nullable=True),
        sa.Column('return_type', sa.String(length=32), nullable=True),
        sa.Column('refund_method', sa.String(length=16), nullable=False, server_default='mileage'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('rejection_reason', sa.String(length=255), nullable=True),
        _timestamp('created_at'),
        _timestamp('approved_at', nullable=True),
        _timestamp('processed_at', nullable=True),
        _timestamp('updated_at', nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('statement_number', name='uq_return_statements_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_return_statements_order_id', 'return_statements', ['order_id'])
    op.create_index('ix_return_statements_company_id', 'return_statements', ['company_id'])
    op.create_index('ix_return_statements_status', 'return_statements', ['status'])
    op.create_index('ix_return_statements_status_created', 'return_statements', ['status', 'created_at'])

    op.create_table(
        'return_statement_lines',
        *_line_columns(),
        sa.ForeignKeyConstraint(['statement_id'], ['return_statements.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('statement_id', 'position', name='uq_return_lines_position'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_return_statement_lines_statement_id', 'return_statement_lines', ['statement_id'])

    op.create_table(
        'deduction_statements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('statement_number', sa.String(length=32), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('reason_code', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        _timestamp('created_at'),
        _timestamp('processed_at', nullable=True),
        _timestamp('cancelled_at', nullable=True),
        _timestamp('updated_at', nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('statement_number', name='uq_deduction_statements_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_deduction_statements_company_id', 'deduction_statements', ['company_id'])
    op.create_index('ix_deduction_statements_status', 'deduction_statements', ['status'])
    op.create_index('ix_deduction_statements_status_created', 'deduction_statements', ['status', 'created_at'])

    op.create_table(
        'deduction_statement_lines',
        *_line_columns(),
        sa.ForeignKeyConstraint(['statement_id'], ['deduction_statements.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('statement_id', 'position', name='uq_deduction_lines_position'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_deduction_statement_lines_statement_id', 'deduction_statement_lines', ['statement_id'])

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('sequence_date', sa.String(length=8), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', 'sequence_date', name='uq_doc_sequences_type_date'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])


def downgrade():
    """Drop all tables in reverse dependency order."""
    for table in (
        'document_sequences',
        'deduction_statement_lines',
        'deduction_statements',
        'return_statement_lines',
        'return_statements',
        'order_lines',
        'orders',
        'mileage_entries',
        'mileage_accounts',
        'stock_movements',
        'stock_records',
        'products',
        'users',
        'companies',
    ):
        op.drop_table(table)
