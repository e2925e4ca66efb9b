"""baseline_billing_schema

Revision ID: 5c1e7a9d3b20
Revises: 
Create Date: 2026-10-18 09:12:44.581203

Creates the billing tables only where they are missing, so it can run
against a database that was bootstrapped with create_all.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '5c1e7a9d3b20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def table_exists(table_name: str) -> bool:
    """Check if a table exists in the database."""
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def _timestamps(updated: bool = True):
    columns = [sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True)]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True))
    return columns


def upgrade() -> None:
    if not table_exists('users'):
        op.create_table('users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('email', sa.String(), nullable=False),
            sa.Column('password_hash', sa.String(), nullable=True),
            sa.Column('role', sa.String(), nullable=False, server_default='buyer'),
            sa.Column('is_seller', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('is_contractor', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('seller_tier', sa.String(), nullable=False, server_default='buyer'),
            sa.Column('seller_subscription_status', sa.String(), nullable=True),
            sa.Column('seller_subscription_id', sa.String(), nullable=True),
            sa.Column('contractor_tier', sa.String(), nullable=False, server_default='none'),
            sa.Column('contractor_subscription_status', sa.String(), nullable=True),
            sa.Column('contractor_subscription_id', sa.String(), nullable=True),
            sa.Column('contractor_verification_status', sa.String(), nullable=False, server_default='none'),
            sa.Column('is_verified_seller', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('verified_seller_tier', sa.String(), nullable=True),
            sa.Column('verified_seller_status', sa.String(), nullable=False, server_default='none'),
            sa.Column('verified_seller_started_at', sa.DateTime(), nullable=True),
            sa.Column('verified_seller_expires_at', sa.DateTime(), nullable=True),
            sa.Column('verified_seller_subscription_id', sa.String(), nullable=True),
            sa.Column('stripe_customer_id', sa.String(), nullable=True),
            sa.Column('subscription_current_period_end', sa.DateTime(), nullable=True),
            sa.Column('subscription_cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(updated=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
        op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
        op.create_index(op.f('ix_users_stripe_customer_id'), 'users', ['stripe_customer_id'], unique=False)

    if not table_exists('subscriptions'):
        op.create_table('subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('kind', sa.String(), nullable=False),
            sa.Column('tier', sa.String(), nullable=True),
            sa.Column('status', sa.String(), nullable=False, server_default='incomplete'),
            sa.Column('stripe_customer_id', sa.String(), nullable=True),
            sa.Column('stripe_subscription_id', sa.String(), nullable=True),
            sa.Column('current_period_end', sa.DateTime(), nullable=True),
            sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('user_id', 'kind', name='uq_subscription_user_kind')
        )
        op.create_index(op.f('ix_subscriptions_id'), 'subscriptions', ['id'], unique=False)
        op.create_index(op.f('ix_subscriptions_user_id'), 'subscriptions', ['user_id'], unique=False)
        op.create_index(op.f('ix_subscriptions_stripe_subscription_id'), 'subscriptions', ['stripe_subscription_id'], unique=True)

    if not table_exists('contractor_profiles'):
        op.create_table('contractor_profiles',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('business_name', sa.String(), nullable=False),
            sa.Column('verification_status', sa.String(), nullable=False, server_default='none'),
            sa.Column('verified_badge_purchased', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('verified_at', sa.DateTime(), nullable=True),
            sa.Column('verified_badge_expires_at', sa.DateTime(), nullable=True),
            sa.Column('visibility_tier', sa.String(), nullable=False, server_default='none'),
            sa.Column('visibility_subscription_status', sa.String(), nullable=False, server_default='none'),
            *_timestamps(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_contractor_profiles_id'), 'contractor_profiles', ['id'], unique=False)
        op.create_index(op.f('ix_contractor_profiles_user_id'), 'contractor_profiles', ['user_id'], unique=True)
        op.create_index(op.f('ix_contractor_profiles_verification_status'), 'contractor_profiles', ['verification_status'], unique=False)

    if not table_exists('listings'):
        op.create_table('listings',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('seller_id', sa.Integer(), nullable=False),
            sa.Column('title', sa.String(), nullable=False),
            sa.Column('status', sa.String(), nullable=False, server_default='active'),
            sa.Column('premium_add_ons', sa.JSON(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(['seller_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_listings_id'), 'listings', ['id'], unique=False)
        op.create_index(op.f('ix_listings_seller_id'), 'listings', ['seller_id'], unique=False)

    if not table_exists('addon_purchases'):
        op.create_table('addon_purchases',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('listing_id', sa.Integer(), nullable=True),
            sa.Column('contractor_id', sa.Integer(), nullable=True),
            sa.Column('type', sa.String(), nullable=False),
            sa.Column('status', sa.String(), nullable=False, server_default='pending'),
            sa.Column('amount', sa.Integer(), nullable=False),
            sa.Column('currency', sa.String(), nullable=False, server_default='usd'),
            sa.Column('stripe_session_id', sa.String(), nullable=True),
            sa.Column('stripe_payment_intent_id', sa.String(), nullable=True),
            sa.Column('started_at', sa.DateTime(), nullable=True),
            sa.Column('expires_at', sa.DateTime(), nullable=True),
            sa.Column('cancelled_at', sa.DateTime(), nullable=True),
            sa.Column('cancel_reason', sa.String(), nullable=True),
            *_timestamps(updated=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.ForeignKeyConstraint(['listing_id'], ['listings.id'], ),
            sa.ForeignKeyConstraint(['contractor_id'], ['contractor_profiles.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_addon_purchases_id'), 'addon_purchases', ['id'], unique=False)
        op.create_index(op.f('ix_addon_purchases_user_id'), 'addon_purchases', ['user_id'], unique=False)
        op.create_index(op.f('ix_addon_purchases_listing_id'), 'addon_purchases', ['listing_id'], unique=False)
        op.create_index(op.f('ix_addon_purchases_status'), 'addon_purchases', ['status'], unique=False)
        op.create_index(op.f('ix_addon_purchases_stripe_payment_intent_id'), 'addon_purchases', ['stripe_payment_intent_id'], unique=False)

    if not table_exists('seller_verifications'):
        op.create_table('seller_verifications',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(), nullable=False, server_default='draft'),
            sa.Column('status_history', sa.JSON(), nullable=False),
            sa.Column('verification_tier', sa.String(), nullable=True),
            sa.Column('stripe_payment_id', sa.String(), nullable=True),
            sa.Column('stripe_subscription_id', sa.String(), nullable=True),
            sa.Column('subscription_status', sa.String(), nullable=True),
            sa.Column('approved_at', sa.DateTime(), nullable=True),
            sa.Column('expires_at', sa.DateTime(), nullable=True),
            sa.Column('ranking_boost_expires_at', sa.DateTime(), nullable=True),
            sa.Column('rejection_reason', sa.String(), nullable=True),
            sa.Column('renewal_reminders_sent', sa.JSON(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_seller_verifications_id'), 'seller_verifications', ['id'], unique=False)
        op.create_index(op.f('ix_seller_verifications_user_id'), 'seller_verifications', ['user_id'], unique=True)
        op.create_index(op.f('ix_seller_verifications_status'), 'seller_verifications', ['status'], unique=False)

    if not table_exists('webhook_events'):
        op.create_table('webhook_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('event_id', sa.String(), nullable=False),
            sa.Column('event_type', sa.String(), nullable=False),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('error', sa.Text(), nullable=True),
            sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_webhook_events_id'), 'webhook_events', ['id'], unique=False)
        op.create_index(op.f('ix_webhook_events_event_id'), 'webhook_events', ['event_id'], unique=True)


def downgrade() -> None:
    for table in ('webhook_events', 'seller_verifications', 'addon_purchases',
                  'listings', 'contractor_profiles', 'subscriptions', 'users'):
        if table_exists(table):
            op.drop_table(table)
