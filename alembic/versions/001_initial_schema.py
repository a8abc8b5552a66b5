"""Initial schema - Create all tables

Revision ID: 001_initial_schema
Revises: 
Create Date: 2026-03-01

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(name: str, *values: str) -> postgresql.ENUM:
    return postgresql.ENUM(*values, name=name, create_type=False)


def upgrade() -> None:
    # Create enum types
    op.execute("CREATE TYPE assignment_status AS ENUM ('unfilled', 'scheduled', 'active', 'completed', 'cancelled')")
    op.execute("CREATE TYPE assigned_by AS ENUM ('algorithm', 'manager', 'bid')")
    op.execute("CREATE TYPE cancel_type AS ENUM ('driver', 'late', 'auto_drop', 'no_show')")
    op.execute("CREATE TYPE bid_window_mode AS ENUM ('competitive', 'instant', 'emergency')")
    op.execute("CREATE TYPE bid_window_status AS ENUM ('open', 'closed', 'resolved')")
    op.execute("CREATE TYPE bid_status AS ENUM ('pending', 'won', 'lost')")
    op.execute("CREATE TYPE job_run_status AS ENUM ('pending', 'running', 'succeeded', 'failed')")
    op.execute("CREATE TYPE actor_type AS ENUM ('user', 'system')")

    # Create drivers table
    op.create_table(
        'drivers',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('preferred_route_ids', postgresql.JSON(), nullable=False, server_default='[]'),
        sa.Column('is_flagged', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('flag_warning_at', sa.DateTime(), nullable=True),
        sa.Column('weekly_cap', sa.Integer(), nullable=False, server_default='4'),
        sa.Column('health_reinstated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Create warehouses table
    op.create_table(
        'warehouses',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('manager_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Create routes table
    op.create_table(
        'routes',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('warehouse_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('warehouses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Create assignments table
    op.create_table(
        'assignments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('route_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('routes.id'), nullable=False, index=True),
        sa.Column('warehouse_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('warehouses.id'), nullable=False, index=True),
        sa.Column('driver_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('drivers.id'), nullable=True, index=True),
        sa.Column('date', sa.Date(), nullable=False, index=True),
        sa.Column('status', _enum('assignment_status', 'unfilled', 'scheduled', 'active', 'completed', 'cancelled'), nullable=False, server_default='unfilled'),
        sa.Column('assigned_by', _enum('assigned_by', 'algorithm', 'manager', 'bid'), nullable=True),
        sa.Column('assigned_at', sa.DateTime(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('cancel_type', _enum('cancel_type', 'driver', 'late', 'auto_drop', 'no_show'), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_assignments_status_date', 'assignments', ['status', 'date'])
    # At most one live assignment per driver per day
    op.create_index(
        'uq_assignments_driver_date_active', 'assignments', ['driver_id', 'date'],
        unique=True,
        postgresql_where=sa.text("driver_id IS NOT NULL AND status <> 'cancelled'"),
    )

    # Create shifts table
    op.create_table(
        'shifts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('assignment_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('assignments.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('arrived_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('editable_until', sa.DateTime(), nullable=True),
        sa.Column('parcels_start', sa.Integer(), nullable=True),
        sa.Column('parcels_delivered', sa.Integer(), nullable=True),
        sa.Column('parcels_returned', sa.Integer(), nullable=True),
        sa.Column('excepted_returns', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('exception_notes', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancel_reason', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Create bid_windows table
    op.create_table(
        'bid_windows',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('assignment_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('assignments.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('mode', _enum('bid_window_mode', 'competitive', 'instant', 'emergency'), nullable=False),
        sa.Column('status', _enum('bid_window_status', 'open', 'closed', 'resolved'), nullable=False, server_default='open'),
        sa.Column('trigger', sa.String(50), nullable=True),
        sa.Column('pay_bonus_percent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('opens_at', sa.DateTime(), nullable=False),
        sa.Column('closes_at', sa.DateTime(), nullable=False),
        sa.Column('winner_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('drivers.id'), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_bid_windows_status_closes_at', 'bid_windows', ['status', 'closes_at'])
    # At most one open window per assignment
    op.create_index(
        'uq_bid_windows_open_assignment', 'bid_windows', ['assignment_id'],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
    )

    # Create bids table
    op.create_table(
        'bids',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('bid_window_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('bid_windows.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('assignment_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('assignments.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('assignment_date', sa.Date(), nullable=False),
        sa.Column('driver_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('drivers.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column('status', _enum('bid_status', 'pending', 'won', 'lost'), nullable=False, server_default='pending'),
        sa.Column('bid_at', sa.DateTime(), nullable=False),
        sa.Column('window_closes_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('bid_window_id', 'driver_id', name='uq_bids_window_driver'),
    )
    # At most one pending bid per driver per shift date
    op.create_index(
        'uq_bids_pending_driver_date', 'bids', ['driver_id', 'assignment_date'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    # Create health_snapshots table
    op.create_table(
        'health_snapshots',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('driver_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('drivers.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('evaluated_on', sa.Date(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('attendance_rate', sa.Float(), nullable=False),
        sa.Column('completion_rate', sa.Float(), nullable=False),
        sa.Column('late_cancel_count_30d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('no_show_count_30d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('hard_stop_triggered', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reasons', postgresql.JSON(), nullable=False, server_default='[]'),
        sa.Column('contributions', postgresql.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('driver_id', 'evaluated_on', name='uq_health_snapshots_driver_day'),
    )

    # Create health_states table
    op.create_table(
        'health_states',
        sa.Column('driver_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('drivers.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('current_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('streak_weeks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stars', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_qualified_week', sa.Date(), nullable=True),
        sa.Column('next_milestone_stars', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('pool_eligible', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('requires_manager_intervention', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_score_reset_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Create notifications table
    op.create_table(
        'notifications',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('payload', postgresql.JSON(), nullable=False, server_default='{}'),
        sa.Column('dedupe_key', sa.String(255), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Create job_runs table
    op.create_table(
        'job_runs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('job_name', sa.String(100), nullable=False, index=True),
        sa.Column('status', _enum('job_run_status', 'pending', 'running', 'succeeded', 'failed'), nullable=False, server_default='pending'),
        sa.Column('summary', postgresql.JSON(), nullable=False, server_default='{}'),
        sa.Column('failed_entity_ids', postgresql.JSON(), nullable=False, server_default='[]'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
    )

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('actor_type', _enum('actor_type', 'user', 'system'), nullable=False),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('changes', postgresql.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('job_runs')
    op.drop_table('notifications')
    op.drop_table('health_states')
    op.drop_table('health_snapshots')
    op.drop_table('bids')
    op.drop_table('bid_windows')
    op.drop_table('shifts')
    op.drop_table('assignments')
    op.drop_table('routes')
    op.drop_table('warehouses')
    op.drop_table('drivers')

    op.execute("DROP TYPE IF EXISTS actor_type")
    op.execute("DROP TYPE IF EXISTS job_run_status")
    op.execute("DROP TYPE IF EXISTS bid_status")
    op.execute("DROP TYPE IF EXISTS bid_window_status")
    op.execute("DROP TYPE IF EXISTS bid_window_mode")
    op.execute("DROP TYPE IF EXISTS cancel_type")
    op.execute("DROP TYPE IF EXISTS assigned_by")
    op.execute("DROP TYPE IF EXISTS assignment_status")
