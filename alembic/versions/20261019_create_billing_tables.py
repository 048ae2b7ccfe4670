"""Create tenants, users, subscription plans and the FastSpring event ledger

Revision ID: 20261019_create_billing_tables
Revises:
Create Date: 2026-10-19

This migration:
1. Creates tenants with a unique billing_email (tenant creation upserts on it)
2. Creates users linked to tenants
3. Creates subscription_plans (served by GET /api/fastspring/plans)
4. Creates subscription_events with a unique event_id (webhook idempotency key)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_create_billing_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ==========================================================================
    # Step 1: tenants
    # subscription_status is stored as VARCHAR (non-native enum) so new
    # provider states need no ALTER TYPE
    # ==========================================================================
    op.create_table(
        'tenants',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False, unique=True),
        sa.Column('billing_email', sa.String(), nullable=True),
        sa.Column('fastspring_customer_id', sa.String(), nullable=True),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='trialing'),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('subscription_plan', sa.String(100), nullable=True),
        sa.Column('subscription_id', sa.String(255), nullable=True),
        sa.Column('subscription_metadata', sa.JSON(), nullable=True),
        sa.Column('trial_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trial_ends', sa.DateTime(timezone=True), nullable=True),
        sa.Column('subscription_start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('subscription_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_billing_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_tenants_id', 'tenants', ['id'])
    op.create_index('uq_tenants_billing_email', 'tenants', ['billing_email'], unique=True)

    # ==========================================================================
    # Step 2: users
    # ==========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='member'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('tenant_id', sa.String(), sa.ForeignKey('tenants.id'), nullable=True),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_tenant_id', 'users', ['tenant_id'])

    # ==========================================================================
    # Step 3: subscription_plans
    # ==========================================================================
    op.create_table(
        'subscription_plans',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('billing_interval', sa.String(20), nullable=False, server_default='month'),
        sa.Column('max_users', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
    )

    # ==========================================================================
    # Step 4: subscription_events
    # ==========================================================================
    op.create_table(
        'subscription_events',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('tenant_id', sa.String(), sa.ForeignKey('tenants.id'), nullable=True),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('fastspring_order_id', sa.String(255), nullable=True),
        sa.Column('fastspring_subscription_id', sa.String(255), nullable=True),
        sa.Column('customer_id', sa.String(255), nullable=True),
        sa.Column('product_id', sa.String(100), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=True),
        sa.Column('is_test', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('event_data', sa.JSON(), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('dead_lettered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('claim_token', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_subscription_events_event_id', 'subscription_events', ['event_id'], unique=True)
    op.create_index('ix_subscription_events_tenant_id', 'subscription_events', ['tenant_id'])
    op.create_index('ix_subscription_events_event_type', 'subscription_events', ['event_type'])
    op.create_index('ix_subscription_events_fastspring_subscription_id', 'subscription_events',
                    ['fastspring_subscription_id'])
    op.create_index('ix_subscription_events_processed', 'subscription_events', ['processed'])
    op.create_index('ix_subscription_events_created_at', 'subscription_events', ['created_at'])

    # Sweep query: processed = false AND dead_lettered_at IS NULL, oldest first
    op.create_index(
        'ix_subscription_events_pending',
        'subscription_events',
        ['created_at'],
        postgresql_where=sa.text('processed = false AND dead_lettered_at IS NULL'),
    )


def downgrade() -> None:
    op.drop_index('ix_subscription_events_pending', table_name='subscription_events')
    op.drop_table('subscription_events')
    op.drop_table('subscription_plans')
    op.drop_table('users')
    op.drop_table('tenants')
