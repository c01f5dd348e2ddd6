"""baseline_subscription_engine

Revision ID: 3a91c0d7e5b2
Revises:
Create Date: 2026-10-18 09:00:00.000000

Creates the plan catalog, subscription ledger and notification tables, and
the businesses table when the directory has not created it already.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '3a91c0d7e5b2'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def table_exists(table_name: str) -> bool:
    """Check if a table exists in the database."""
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    if not table_exists('businesses'):
        op.create_table('businesses',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('owner_id', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('current_subscription_id', sa.Integer(), nullable=True),
            sa.Column('subscription_started_at', sa.DateTime(), nullable=True),
            sa.Column('subscription_expires_at', sa.DateTime(), nullable=True),
            sa.Column('can_create_advertisements', sa.Boolean(), nullable=False),
            sa.Column('promoted_until', sa.DateTime(), nullable=True),
            sa.Column('is_verified', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_businesses_id'), 'businesses', ['id'], unique=False)
        op.create_index(op.f('ix_businesses_owner_id'), 'businesses', ['owner_id'], unique=False)
        op.create_index(op.f('ix_businesses_status'), 'businesses', ['status'], unique=False)
        op.create_index(op.f('ix_businesses_current_subscription_id'), 'businesses', ['current_subscription_id'], unique=False)

    if not table_exists('subscription_plans'):
        op.create_table('subscription_plans',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('slug', sa.String(), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('price', sa.Numeric(10, 2), nullable=False),
            sa.Column('sale_price', sa.Numeric(10, 2), nullable=True),
            sa.Column('currency', sa.String(length=3), nullable=False),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('billing_interval', sa.String(), nullable=False),
            sa.Column('interval_count', sa.Integer(), nullable=False),
            sa.Column('custom_interval_days', sa.Integer(), nullable=True),
            sa.Column('verified_badge', sa.Boolean(), nullable=False),
            sa.Column('top_placement', sa.Boolean(), nullable=False),
            sa.Column('allow_advertisements', sa.Boolean(), nullable=False),
            sa.Column('max_advertisements', sa.Integer(), nullable=True),
            sa.Column('coupon_code', sa.String(), nullable=True),
            sa.Column('coupon_type', sa.String(), nullable=True),
            sa.Column('coupon_value', sa.Numeric(10, 2), nullable=True),
            sa.Column('coupon_max_discount', sa.Numeric(10, 2), nullable=True),
            sa.Column('coupon_starts_at', sa.DateTime(), nullable=True),
            sa.Column('coupon_ends_at', sa.DateTime(), nullable=True),
            sa.Column('coupon_usage_limit', sa.Integer(), nullable=True),
            sa.Column('coupon_usage_count', sa.Integer(), nullable=False),
            sa.Column('is_sponsor_plan', sa.Boolean(), nullable=False),
            sa.Column('notes', sa.Text(), nullable=True),
            sa.Column('metadata', sa.JSON(), nullable=True),
            sa.Column('created_by_id', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_subscription_plans_id'), 'subscription_plans', ['id'], unique=False)
        op.create_index(op.f('ix_subscription_plans_slug'), 'subscription_plans', ['slug'], unique=True)
        op.create_index(op.f('ix_subscription_plans_status'), 'subscription_plans', ['status'], unique=False)
        op.create_index(op.f('ix_subscription_plans_is_sponsor_plan'), 'subscription_plans', ['is_sponsor_plan'], unique=False)

    if not table_exists('business_subscriptions'):
        op.create_table('business_subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('business_id', sa.Integer(), nullable=False),
            sa.Column('plan_id', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('started_at', sa.DateTime(), nullable=False),
            sa.Column('ends_at', sa.DateTime(), nullable=False),
            sa.Column('price', sa.Numeric(10, 2), nullable=False),
            sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False),
            sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
            sa.Column('coupon_code', sa.String(), nullable=True),
            sa.Column('payment_reference', sa.String(), nullable=True),
            sa.Column('payment_provider', sa.String(), nullable=True),
            sa.Column('notes', sa.Text(), nullable=True),
            sa.Column('metadata', sa.JSON(), nullable=True),
            sa.Column('cancelled_at', sa.DateTime(), nullable=True),
            sa.Column('failed_at', sa.DateTime(), nullable=True),
            sa.Column('created_by_id', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
            sa.ForeignKeyConstraint(['plan_id'], ['subscription_plans.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_business_subscriptions_id'), 'business_subscriptions', ['id'], unique=False)
        op.create_index(op.f('ix_business_subscriptions_business_id'), 'business_subscriptions', ['business_id'], unique=False)
        op.create_index(op.f('ix_business_subscriptions_plan_id'), 'business_subscriptions', ['plan_id'], unique=False)
        op.create_index(op.f('ix_business_subscriptions_payment_reference'), 'business_subscriptions', ['payment_reference'], unique=False)
        op.create_index('idx_subscription_status_ends_at', 'business_subscriptions', ['status', 'ends_at'], unique=False)

    if not table_exists('notifications'):
        op.create_table('notifications',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('type', sa.String(), nullable=False),
            sa.Column('title', sa.String(), nullable=False),
            sa.Column('message', sa.Text(), nullable=False),
            sa.Column('link', sa.String(), nullable=True),
            sa.Column('business_id', sa.Integer(), nullable=True),
            sa.Column('plan_id', sa.Integer(), nullable=True),
            sa.Column('is_read', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_notifications_id'), 'notifications', ['id'], unique=False)
        op.create_index(op.f('ix_notifications_user_id'), 'notifications', ['user_id'], unique=False)
        op.create_index(op.f('ix_notifications_type'), 'notifications', ['type'], unique=False)
        op.create_index(op.f('ix_notifications_created_at'), 'notifications', ['created_at'], unique=False)
        op.create_index('idx_notification_dedupe', 'notifications', ['type', 'business_id', 'plan_id', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_notification_dedupe', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('idx_subscription_status_ends_at', table_name='business_subscriptions')
    op.drop_table('business_subscriptions')
    op.drop_table('subscription_plans')
