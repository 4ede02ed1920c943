"""create_auction_tables

Revision ID: 001_create_auction_tables
Revises:
Create Date: 2026-01-01

Creates auctions, the append-only bids ledger, orders, notifications and
finalization_jobs.

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '001_create_auction_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'auctions',
        sa.Column('auction_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('seller_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('starting_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('reserve_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('state', sa.String(20), nullable=False),
        sa.Column('high_bid_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('high_bidder_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('bid_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('winner_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('final_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('close_reason', sa.String(20), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('starting_price > 0', name='chk_auction_starting_price_positive'),
        sa.CheckConstraint(
            'reserve_price IS NULL OR reserve_price >= starting_price',
            name='chk_auction_reserve_price',
        ),
    )
    op.create_index('idx_auctions_state_end_time', 'auctions', ['state', 'end_time'])
    op.create_index('idx_auctions_seller', 'auctions', ['seller_id'])

    op.create_table(
        'bids',
        sa.Column('bid_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'auction_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('auctions.auction_id'),
            nullable=False,
        ),
        sa.Column('bidder_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('amount > 0', name='chk_bid_amount_positive'),
        sa.UniqueConstraint('auction_id', 'sequence', name='uq_bids_auction_sequence'),
    )
    op.create_index('idx_bids_auction_amount', 'bids', ['auction_id', 'amount'])
    op.create_index('idx_bids_bidder_created', 'bids', ['bidder_id', 'created_at'])

    op.create_table(
        'orders',
        sa.Column('order_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'auction_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('auctions.auction_id'),
            nullable=False,
            unique=True,
        ),
        sa.Column('buyer_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('seller_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('final_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending_payment'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('final_price > 0', name='chk_order_final_price_positive'),
    )
    op.create_index('idx_orders_buyer_created', 'orders', ['buyer_id', 'created_at'])

    op.create_table(
        'notifications',
        sa.Column('notification_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('kind', sa.String(30), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('dedupe_key', sa.String(200), nullable=False, unique=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_notifications_user_created', 'notifications', ['user_id', 'created_at'])

    op.create_table(
        'finalization_jobs',
        sa.Column(
            'auction_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('auctions.auction_id'),
            primary_key=True,
        ),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        'idx_finalization_jobs_status_next', 'finalization_jobs', ['status', 'next_attempt_at']
    )


def downgrade() -> None:
    op.drop_index('idx_finalization_jobs_status_next', table_name='finalization_jobs')
    op.drop_table('finalization_jobs')
    op.drop_index('idx_notifications_user_created', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('idx_orders_buyer_created', table_name='orders')
    op.drop_table('orders')
    op.drop_index('idx_bids_bidder_created', table_name='bids')
    op.drop_index('idx_bids_auction_amount', table_name='bids')
    op.drop_table('bids')
    op.drop_index('idx_auctions_seller', table_name='auctions')
    op.drop_index('idx_auctions_state_end_time', table_name='auctions')
    op.drop_table('auctions')
