"""Marketplace schema: users, listings, offers, orders and supporting tables.

Revision ID: 0001_marketplace
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_marketplace'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(128), nullable=False),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('account_tier', sa.String(20), nullable=False, server_default='free'),
        sa.Column('subscription_id', sa.String(100), nullable=True),
        sa.Column('subscription_status', sa.String(30), nullable=True),
        sa.Column('subscription_end_date', sa.DateTime(), nullable=True),
        sa.Column('stripe_connect_account_id', sa.String(100), nullable=True),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # Create listings table
    op.create_table(
        'listings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('short_id', sa.String(16), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=True),
        sa.Column('offers_only', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('condition', sa.String(50), nullable=True),
        sa.Column('game_category', sa.String(50), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('image_urls', sa.JSON(), nullable=False),
        sa.Column('is_graded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('grading_company', sa.String(20), nullable=True),
        sa.Column('grade', sa.Numeric(3, 1), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('previous_status', sa.String(20), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('archived_at', sa.DateTime(), nullable=True),
        sa.Column('original_created_at', sa.DateTime(), nullable=True),
        sa.Column('expiration_reason', sa.String(40), nullable=True),
        sa.Column('delete_at', sa.DateTime(), nullable=True),
        sa.Column('sold_to', sa.String(128), nullable=True),
        sa.Column('moderated_at', sa.DateTime(), nullable=True),
        sa.Column('moderation_details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('short_id'),
    )

    # Create short_id_mappings table (no FK: removed explicitly on delete)
    op.create_table(
        'short_id_mappings',
        sa.Column('short_id', sa.String(16), nullable=False),
        sa.Column('listing_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('short_id'),
    )

    # Create offers table
    op.create_table(
        'offers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('listing_id', sa.Integer(), nullable=False),
        sa.Column('buyer_id', sa.String(128), nullable=False),
        sa.Column('seller_id', sa.String(128), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('counter_offer', sa.Numeric(10, 2), nullable=True),
        sa.Column('listing_snapshot', sa.JSON(), nullable=False),
        sa.Column('is_pickup', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('requires_shipping_info', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('shipping_address', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('cleared', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # Create orders table
    op.create_table(
        'orders',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('listing_id', sa.Integer(), nullable=False),
        sa.Column('buyer_id', sa.String(128), nullable=False),
        sa.Column('seller_id', sa.String(128), nullable=False),
        sa.Column('offer_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('is_pickup', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('shipping_address', sa.JSON(), nullable=False),
        sa.Column('listing_snapshot', sa.JSON(), nullable=False),
        sa.Column('seller_has_stripe_account', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('payment_required', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('offer_id'),
    )

    # Create user_order_index table (derived from orders)
    op.create_table(
        'user_order_index',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('order_id', sa.String(64), nullable=False),
        sa.Column('role', sa.String(10), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'order_id', 'role', name='uq_user_order_index_user_order_role'),
    )

    # Create favorites table
    op.create_table(
        'favorites',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('listing_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['listing_id'], ['listings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'listing_id', name='uq_favorites_user_listing'),
    )

    # Create wanted_posts table
    op.create_table(
        'wanted_posts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('game_category', sa.String(50), nullable=False),
        sa.Column('condition', sa.String(50), nullable=True),
        sa.Column('budget_min', sa.Numeric(10, 2), nullable=True),
        sa.Column('budget_max', sa.Numeric(10, 2), nullable=True),
        sa.Column('location', sa.String(120), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('legacy_id', sa.String(128), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('legacy_id'),
    )

    # Create notifications table
    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('title', sa.String(160), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # Create outbox_messages table
    op.create_table(
        'outbox_messages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('recipient_id', sa.String(128), nullable=False),
        sa.Column('subject', sa.String(200), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('next_attempt_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    # Create job_runs table
    op.create_table(
        'job_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_name', sa.String(64), nullable=False),
        sa.Column('trigger', sa.String(32), nullable=False, server_default='schedule'),
        sa.Column('ran_at', sa.DateTime(), nullable=False),
        sa.Column('ok', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('summary', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    # Create indexes
    op.create_index('ix_listings_user_id', 'listings', ['user_id'])
    op.create_index('ix_listings_game_category', 'listings', ['game_category'])
    op.create_index('ix_listings_status_expires_at', 'listings', ['status', 'expires_at'])
    op.create_index('ix_listings_status_delete_at', 'listings', ['status', 'delete_at'])
    op.create_index('ix_short_id_mappings_listing_id', 'short_id_mappings', ['listing_id'])
    op.create_index('ix_offers_listing_id', 'offers', ['listing_id'])
    op.create_index('ix_offers_buyer_id', 'offers', ['buyer_id'])
    op.create_index('ix_offers_seller_id', 'offers', ['seller_id'])
    op.create_index('ix_offers_status_expires_at', 'offers', ['status', 'expires_at'])
    # One pending offer per buyer per listing
    op.create_index(
        'uq_offers_pending_buyer_listing',
        'offers',
        ['buyer_id', 'listing_id'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )
    op.create_index('ix_orders_listing_id', 'orders', ['listing_id'])
    op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'])
    op.create_index('ix_orders_seller_id', 'orders', ['seller_id'])
    op.create_index('ix_user_order_index_user_id', 'user_order_index', ['user_id'])
    op.create_index('ix_favorites_user_id', 'favorites', ['user_id'])
    op.create_index('ix_wanted_posts_user_id', 'wanted_posts', ['user_id'])
    op.create_index('ix_wanted_posts_game_category', 'wanted_posts', ['game_category'])
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_outbox_messages_status_next_attempt_at', 'outbox_messages', ['status', 'next_attempt_at'])
    op.create_index('ix_job_runs_job_name', 'job_runs', ['job_name'])
    op.create_index('ix_job_runs_ran_at', 'job_runs', ['ran_at'])


def downgrade() -> None:
    op.drop_table('job_runs')
    op.drop_table('outbox_messages')
    op.drop_table('notifications')
    op.drop_table('wanted_posts')
    op.drop_table('favorites')
    op.drop_table('user_order_index')
    op.drop_table('orders')
    op.drop_table('offers')
    op.drop_table('short_id_mappings')
    op.drop_table('listings')
    op.drop_table('users')
