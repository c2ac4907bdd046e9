"""initial co2 ledger schema

Revision ID: c0a1b2c3d4e5
Revises:
Create Date: 2026-10-17 00:00:00.000000

This migration creates the complete CO2 ledger schema from scratch:
- cylinders: registry of physical cylinders (status + location)
- co2_tank: singleton bulk tank with materialized level
- fillings / transfers / tank_movements: reversible ledger rows
- inventory_adjustments: immutable physical-count corrections
- approval_logs: append-only audit trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c0a1b2c3d4e5'
down_revision = None
branch_labels = None
depends_on = None


def _reversal_columns():
    return [
        sa.Column('is_reversed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reversed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reversed_by', sa.String(length=120), nullable=True),
        sa.Column('reversal_reason', sa.Text(), nullable=True),
    ]


def upgrade():
    """
    Create all tables.

    WHY: Every ledger row that can be undone carries the same reversal
    columns; reversal stamps them instead of deleting the row.
    """

    # ============================================================================
    # cylinders: registry
    # ============================================================================
    op.create_table(
        'cylinders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('serial_number', sa.String(length=64), nullable=False),
        sa.Column('capacity', sa.String(length=8), nullable=False),
        sa.Column('valve_type', sa.String(length=64), nullable=True),
        sa.Column('manufacturing_date', sa.Date(), nullable=False),
        sa.Column('last_hydrostatic_test', sa.Date(), nullable=False),
        sa.Column('next_test_due', sa.Date(), nullable=False),
        sa.Column('current_status', sa.String(length=16), nullable=False),
        sa.Column('current_location', sa.String(length=32), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('customer_owned', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('customer_info', sa.Text(), nullable=True),
        sa.Column('observations', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cylinders_serial_number', 'cylinders', ['serial_number'], unique=True)
    op.create_index('ix_cylinders_next_test_due', 'cylinders', ['next_test_due'])
    op.create_index('ix_cylinders_current_status', 'cylinders', ['current_status'])
    op.create_index('ix_cylinders_current_location', 'cylinders', ['current_location'])
    op.create_index('ix_cylinders_active_location_status', 'cylinders',
                    ['is_active', 'current_location', 'current_status'])

    # ============================================================================
    # co2_tank: singleton bulk tank
    # ============================================================================
    op.create_table(
        'co2_tank',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('current_level', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('capacity', sa.Numeric(12, 3), nullable=False),
        sa.Column('minimum_threshold', sa.Numeric(5, 2), nullable=False, server_default='20'),
        sa.Column('last_refill_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # fillings: one row per cylinder filled
    # ============================================================================
    op.create_table(
        'fillings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cylinder_id', sa.Integer(), nullable=False),
        sa.Column('tank_id', sa.Integer(), nullable=False),
        sa.Column('weight_filled', sa.Numeric(12, 3), nullable=False),
        sa.Column('operator_name', sa.String(length=120), nullable=False),
        sa.Column('batch_number', sa.String(length=64), nullable=True),
        sa.Column('filling_datetime', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('is_approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('approved_by', sa.String(length=120), nullable=True),
        sa.Column('shrinkage_percentage', sa.Numeric(5, 2), nullable=False, server_default='1.0'),
        sa.Column('shrinkage_amount', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('observations', sa.Text(), nullable=True),
        *_reversal_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['cylinder_id'], ['cylinders.id']),
        sa.ForeignKeyConstraint(['tank_id'], ['co2_tank.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_fillings_cylinder_id', 'fillings', ['cylinder_id'])
    op.create_index('ix_fillings_tank_id', 'fillings', ['tank_id'])
    op.create_index('ix_fillings_batch_number', 'fillings', ['batch_number'])
    op.create_index('ix_fillings_is_reversed', 'fillings', ['is_reversed'])
    op.create_index('ix_fillings_batch_reversed', 'fillings', ['batch_number', 'is_reversed'])

    # ============================================================================
    # transfers: one row per cylinder moved
    # ============================================================================
    op.create_table(
        'transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cylinder_id', sa.Integer(), nullable=False),
        sa.Column('from_location', sa.String(length=32), nullable=False),
        sa.Column('to_location', sa.String(length=32), nullable=False),
        sa.Column('previous_status', sa.String(length=16), nullable=True),
        sa.Column('new_status', sa.String(length=16), nullable=True),
        sa.Column('operator_name', sa.String(length=120), nullable=False),
        sa.Column('driver_name', sa.String(length=120), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('transfer_number', sa.String(length=64), nullable=True),
        sa.Column('nota_envio_number', sa.String(length=64), nullable=True),
        sa.Column('delivery_order_number', sa.String(length=64), nullable=True),
        sa.Column('trip_closure', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('transfer_date', sa.Date(), nullable=True),
        sa.Column('observations', sa.Text(), nullable=True),
        *_reversal_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['cylinder_id'], ['cylinders.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transfers_cylinder_id', 'transfers', ['cylinder_id'])
    op.create_index('ix_transfers_transfer_number', 'transfers', ['transfer_number'])
    op.create_index('ix_transfers_nota_envio_number', 'transfers', ['nota_envio_number'])
    op.create_index('ix_transfers_delivery_order_number', 'transfers', ['delivery_order_number'])
    op.create_index('ix_transfers_is_reversed', 'transfers', ['is_reversed'])
    op.create_index('ix_transfers_to_location_closure', 'transfers',
                    ['to_location', 'trip_closure', 'is_reversed'])

    # ============================================================================
    # tank_movements: entrances and exits against the tank
    # ============================================================================
    op.create_table(
        'tank_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tank_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('shrinkage_percentage', sa.Numeric(5, 2), nullable=False, server_default='3.0'),
        sa.Column('shrinkage_amount', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('operator_name', sa.String(length=120), nullable=False),
        sa.Column('supplier', sa.String(length=255), nullable=True),
        sa.Column('reference_filling_id', sa.Integer(), nullable=True),
        sa.Column('level_before', sa.Numeric(12, 3), nullable=True),
        sa.Column('level_after', sa.Numeric(12, 3), nullable=True),
        sa.Column('observations', sa.Text(), nullable=True),
        *_reversal_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tank_id'], ['co2_tank.id']),
        sa.ForeignKeyConstraint(['reference_filling_id'], ['fillings.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tank_movements_tank_id', 'tank_movements', ['tank_id'])
    op.create_index('ix_tank_movements_reference_filling_id', 'tank_movements', ['reference_filling_id'])
    op.create_index('ix_tank_movements_is_reversed', 'tank_movements', ['is_reversed'])
    op.create_index('ix_tank_movements_type_created', 'tank_movements', ['movement_type', 'created_at'])

    # ============================================================================
    # inventory_adjustments: physical count corrections (immutable)
    # ============================================================================
    op.create_table(
        'inventory_adjustments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('location', sa.String(length=32), nullable=False),
        sa.Column('cylinder_id', sa.Integer(), nullable=False),
        sa.Column('adjustment_type', sa.String(length=32), nullable=False),
        sa.Column('previous_status', sa.String(length=16), nullable=True),
        sa.Column('new_status', sa.String(length=16), nullable=True),
        sa.Column('previous_location', sa.String(length=32), nullable=True),
        sa.Column('new_location', sa.String(length=32), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('performed_by', sa.String(length=120), nullable=False),
        sa.Column('adjustment_date', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['cylinder_id'], ['cylinders.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_adjustments_location', 'inventory_adjustments', ['location'])
    op.create_index('ix_inventory_adjustments_cylinder_id', 'inventory_adjustments', ['cylinder_id'])

    # ============================================================================
    # approval_logs: append-only audit trail
    # ============================================================================
    op.create_table(
        'approval_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('table_name', sa.String(length=64), nullable=False),
        sa.Column('record_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=16), nullable=False),
        sa.Column('previous_data', sa.JSON(), nullable=True),
        sa.Column('new_data', sa.JSON(), nullable=True),
        sa.Column('performed_by', sa.String(length=120), nullable=False),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_approval_logs_action', 'approval_logs', ['action'])
    op.create_index('ix_approval_logs_created_at', 'approval_logs', ['created_at'])
    op.create_index('ix_approval_logs_table_record', 'approval_logs', ['table_name', 'record_id'])


def downgrade():
    op.drop_table('approval_logs')
    op.drop_table('inventory_adjustments')
    op.drop_table('tank_movements')
    op.drop_table('transfers')
    op.drop_table('fillings')
    op.drop_table('co2_tank')
    op.drop_table('cylinders')
