"""custody ledger schema

Revision ID: 0001_custody
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the complete trade-in custody schema:
- sequence_counters: named global counters (order numbers)
- intake_records: pickup requests and showroom walk-ins
- verification_records: capture evidence, one per intake
- qc_decisions: routing outcome, one per intake
- inventory_items: custody snapshot, one per physical unit
- stock_movements: append-only custody log

Cross references between record families are plain ids checked by the
service layer, not foreign keys.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_custody'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # sequence_counters
    # ============================================================================
    op.create_table(
        'sequence_counters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_sequence_counters_name'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # intake_records
    # ============================================================================
    op.create_table(
        'intake_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('source_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('brand', sa.String(length=64), nullable=True),
        sa.Column('price', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('customer_address', sa.Text(), nullable=True),
        sa.Column('postal_code', sa.String(length=16), nullable=True),
        sa.Column('showroom_id', sa.String(length=64), nullable=True),
        sa.Column('assigned_agent_id', sa.String(length=64), nullable=True),
        sa.Column('assigned_agent_name', sa.String(length=255), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', name='uq_intake_records_order_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_intake_records_status', 'intake_records', ['status'])
    op.create_index('ix_intake_records_status_source', 'intake_records', ['status', 'source_type'])
    op.create_index('ix_intake_records_showroom_id', 'intake_records', ['showroom_id'])
    op.create_index('ix_intake_records_assigned_agent_id', 'intake_records', ['assigned_agent_id'])

    # ============================================================================
    # verification_records
    # ============================================================================
    op.create_table(
        'verification_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('intake_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('performed_by', sa.String(length=64), nullable=False),
        sa.Column('performed_by_name', sa.String(length=255), nullable=True),
        sa.Column('device_photos', sa.JSON(), nullable=False),
        sa.Column('id_proof_photos', sa.JSON(), nullable=False),
        sa.Column('serial_number', sa.String(length=128), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('intake_id', name='uq_verification_records_intake'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_verification_records_intake_id', 'verification_records', ['intake_id'])
    op.create_index('ix_verification_records_order_id', 'verification_records', ['order_id'])

    # ============================================================================
    # qc_decisions
    # ============================================================================
    op.create_table(
        'qc_decisions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('intake_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('source_type', sa.String(length=32), nullable=False),
        sa.Column('decision', sa.String(length=32), nullable=False),
        sa.Column('target_showroom_id', sa.String(length=64), nullable=True),
        sa.Column('reviewer_id', sa.String(length=64), nullable=False),
        sa.Column('reviewer_name', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('intake_id', name='uq_qc_decisions_intake'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_qc_decisions_order_id', 'qc_decisions', ['order_id'])
    op.create_index('ix_qc_decisions_decision', 'qc_decisions', ['decision'])

    # ============================================================================
    # inventory_items: custody snapshot (projection of stock_movements)
    # ============================================================================
    op.create_table(
        'inventory_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('intake_id', sa.Integer(), nullable=False),
        sa.Column('qc_decision_id', sa.Integer(), nullable=True),
        sa.Column('verification_id', sa.Integer(), nullable=True),
        sa.Column('source_type', sa.String(length=32), nullable=False),
        sa.Column('source_showroom_id', sa.String(length=64), nullable=True),
        sa.Column('serial_number', sa.String(length=128), nullable=False, server_default=''),
        sa.Column('product_name', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('brand', sa.String(length=64), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('current_location', sa.String(length=32), nullable=False),
        sa.Column('current_showroom_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('agreed_price', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_in_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('intake_id', name='uq_inventory_items_intake'),
        sa.UniqueConstraint('order_id', name='uq_inventory_items_order_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_items_location_status', 'inventory_items', ['current_location', 'status'])
    op.create_index('ix_inventory_items_status', 'inventory_items', ['status'])
    op.create_index('ix_inventory_items_serial_number', 'inventory_items', ['serial_number'])
    op.create_index('ix_inventory_items_brand', 'inventory_items', ['brand'])
    op.create_index('ix_inventory_items_category', 'inventory_items', ['category'])

    # ============================================================================
    # stock_movements: append-only custody log
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('serial_number', sa.String(length=128), nullable=True),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('from_location', sa.String(length=32), nullable=True),
        sa.Column('to_location', sa.String(length=32), nullable=True),
        sa.Column('to_showroom_id', sa.String(length=64), nullable=True),
        sa.Column('resulting_status', sa.String(length=32), nullable=False),
        sa.Column('reason', sa.String(length=64), nullable=False),
        sa.Column('performed_by', sa.String(length=64), nullable=False),
        sa.Column('performed_by_name', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_pending', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_inventory_created', 'stock_movements', ['inventory_id', 'created_at'])
    op.create_index('ix_stock_movements_order_id', 'stock_movements', ['order_id'])
    op.create_index('ix_stock_movements_type', 'stock_movements', ['type'])
    op.create_index('ix_stock_movements_is_pending', 'stock_movements', ['is_pending'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])


def downgrade():
    op.drop_table('stock_movements')
    op.drop_table('inventory_items')
    op.drop_table('qc_decisions')
    op.drop_table('verification_records')
    op.drop_table('intake_records')
    op.drop_table('sequence_counters')
