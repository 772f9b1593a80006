"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete car parts schema:
- users, session_tokens: accounts and opaque bearer sessions
- parts: part master with stock counters (balance enforced by CHECK)
- stock_movements: append-only journal of counter changes
- reservations, reservation_items: held stock
- bills, bill_items: completed sales
- refunds, refund_items: money/stock returned, items owned by refund_id
- audit_logs: compliance trail
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
    # users / session_tokens
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("role IN ('general', 'admin', 'superadmin')", name='ck_users_role'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_is_revoked', 'session_tokens', ['is_revoked'])
    op.create_index('ix_session_tokens_user_active', 'session_tokens', ['user_id', 'is_revoked'])

    # ============================================================================
    # parts / stock_movements
    # ============================================================================
    op.create_table(
        'parts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('manufacturer', sa.String(length=255), nullable=False),
        sa.Column('part_number', sa.String(length=64), nullable=True),
        sa.Column('total_stock', sa.Integer(), nullable=False),
        sa.Column('available_stock', sa.Integer(), nullable=False),
        sa.Column('reserved_stock', sa.Integer(), nullable=False),
        sa.Column('sold_stock', sa.Integer(), nullable=False),
        sa.Column('cost_price_cents', sa.Integer(), nullable=True),
        sa.Column('recommended_price_cents', sa.Integer(), nullable=True),
        sa.Column('container_no', sa.String(length=64), nullable=True),
        sa.Column('local_purchase', sa.Boolean(), nullable=False),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.Column('available_from', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('available_stock >= 0', name='ck_parts_available_nonneg'),
        sa.CheckConstraint('reserved_stock >= 0', name='ck_parts_reserved_nonneg'),
        sa.CheckConstraint('sold_stock >= 0', name='ck_parts_sold_nonneg'),
        sa.CheckConstraint(
            'total_stock = available_stock + reserved_stock + sold_stock',
            name='ck_parts_stock_balance'
        ),
        sa.ForeignKeyConstraint(['parent_id'], ['parts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('part_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_parts_container_no', 'parts', ['container_no'])
    op.create_index('ix_parts_parent_id', 'parts', ['parent_id'])
    op.create_index('ix_parts_name_manufacturer', 'parts', ['name', 'manufacturer'])

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('part_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('available_delta', sa.Integer(), nullable=False),
        sa.Column('reserved_delta', sa.Integer(), nullable=False),
        sa.Column('sold_delta', sa.Integer(), nullable=False),
        sa.Column('total_delta', sa.Integer(), nullable=False),
        sa.Column('previous_available', sa.Integer(), nullable=False),
        sa.Column('new_available', sa.Integer(), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=False),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['part_id'], ['parts.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_part_created', 'stock_movements', ['part_id', 'created_at'])
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference_type', 'reference_id'])

    # ============================================================================
    # reservations / reservation_items
    # ============================================================================
    op.create_table(
        'reservations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('deposit_amount_cents', sa.Integer(), nullable=False),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('bill_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('deposit_amount_cents >= 0', name='ck_reservations_deposit_nonneg'),
        sa.CheckConstraint(
            "status IN ('reserved', 'completed', 'cancelled')",
            name='ck_reservations_status'
        ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_reservations_status', 'reservations', ['status'])
    op.create_index('ix_reservations_created_by', 'reservations', ['created_by'])
    op.create_index('ix_reservations_bill_id', 'reservations', ['bill_id'])
    op.create_index('ix_reservations_status_created', 'reservations', ['status', 'created_at'])

    op.create_table(
        'reservation_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reservation_id', sa.Integer(), nullable=False),
        sa.Column('part_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('total_price_cents', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_reservation_items_quantity_pos'),
        sa.ForeignKeyConstraint(['reservation_id'], ['reservations.id']),
        sa.ForeignKeyConstraint(['part_id'], ['parts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reservation_id', 'part_id', name='uq_reservation_items_res_part'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_reservation_items_reservation_id', 'reservation_items', ['reservation_id'])
    op.create_index('ix_reservation_items_part_id', 'reservation_items', ['part_id'])

    # ============================================================================
    # bills / bill_items
    # ============================================================================
    op.create_table(
        'bills',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_number', sa.String(length=64), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('total_refunded_cents', sa.Integer(), nullable=False),
        sa.Column('total_quantity', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('reservation_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('total_refunded_cents >= 0', name='ck_bills_refunded_nonneg'),
        sa.CheckConstraint(
            'total_refunded_cents <= total_amount_cents',
            name='ck_bills_refunded_le_total'
        ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.ForeignKeyConstraint(['reservation_id'], ['reservations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bill_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bills_status', 'bills', ['status'])
    op.create_index('ix_bills_created_by', 'bills', ['created_by'])
    op.create_index('ix_bills_reservation_id', 'bills', ['reservation_id'])
    op.create_index('ix_bills_status_created', 'bills', ['status', 'created_at'])

    op.create_table(
        'bill_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=False),
        sa.Column('part_id', sa.Integer(), nullable=False),
        sa.Column('part_name', sa.String(length=255), nullable=False),
        sa.Column('manufacturer', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('total_price_cents', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_bill_items_quantity_pos'),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
        sa.ForeignKeyConstraint(['part_id'], ['parts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bill_id', 'part_id', name='uq_bill_items_bill_part'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bill_items_bill_id', 'bill_items', ['bill_id'])
    op.create_index('ix_bill_items_part_id', 'bill_items', ['part_id'])

    # ============================================================================
    # refunds / refund_items
    # ============================================================================
    op.create_table(
        'refunds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=False),
        sa.Column('refund_type', sa.String(length=16), nullable=False),
        sa.Column('refund_amount_cents', sa.Integer(), nullable=False),
        sa.Column('refund_reason', sa.Text(), nullable=False),
        sa.Column('refunded_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('refund_amount_cents >= 0', name='ck_refunds_amount_nonneg'),
        sa.CheckConstraint("refund_type IN ('full', 'partial')", name='ck_refunds_type'),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
        sa.ForeignKeyConstraint(['refunded_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_refunds_refunded_by', 'refunds', ['refunded_by'])
    op.create_index('ix_refunds_bill_created', 'refunds', ['bill_id', 'created_at'])

    op.create_table(
        'refund_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('refund_id', sa.Integer(), nullable=False),
        sa.Column('bill_item_id', sa.Integer(), nullable=False),
        sa.Column('part_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('total_price_cents', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_refund_items_quantity_pos'),
        sa.ForeignKeyConstraint(['refund_id'], ['refunds.id']),
        sa.ForeignKeyConstraint(['bill_item_id'], ['bill_items.id']),
        sa.ForeignKeyConstraint(['part_id'], ['parts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('refund_id', 'part_id', name='uq_refund_items_refund_part'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_refund_items_refund_id', 'refund_items', ['refund_id'])
    op.create_index('ix_refund_items_bill_item_id', 'refund_items', ['bill_item_id'])
    op.create_index('ix_refund_items_part_id', 'refund_items', ['part_id'])

    # ============================================================================
    # audit_logs
    # ============================================================================
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('username', sa.String(length=64), nullable=True),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('table_name', sa.String(length=64), nullable=False),
        sa.Column('record_id', sa.Integer(), nullable=True),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_table_record', 'audit_logs', ['table_name', 'record_id'])
    op.create_index('ix_audit_logs_action_created', 'audit_logs', ['action', 'created_at'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('refund_items')
    op.drop_table('refunds')
    op.drop_table('bill_items')
    op.drop_table('bills')
    op.drop_table('reservation_items')
    op.drop_table('reservations')
    op.drop_table('stock_movements')
    op.drop_table('parts')
    op.drop_table('session_tokens')
    op.drop_table('users')
