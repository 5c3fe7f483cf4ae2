"""Order fulfillment columns; listings.updated_at becomes optional.

Revision ID: 0002_order_fulfillment
Revises: 0001_marketplace
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0002_order_fulfillment'
down_revision: Union[str, None] = '0001_marketplace'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('orders', sa.Column('buyer_pickup_confirmed', sa.Boolean(), nullable=False, server_default=sa.false()))
    op.add_column('orders', sa.Column('seller_pickup_confirmed', sa.Boolean(), nullable=False, server_default=sa.false()))
    op.add_column('orders', sa.Column('completed_at', sa.DateTime(), nullable=True))
    op.add_column('orders', sa.Column('completed_by', sa.String(128), nullable=True))
    op.alter_column('listings', 'updated_at', existing_type=sa.DateTime(), nullable=True)


def downgrade() -> None:
    op.execute("UPDATE listings SET updated_at = created_at WHERE updated_at IS NULL")
    op.alter_column('listings', 'updated_at', existing_type=sa.DateTime(), nullable=False)
    op.drop_column('orders', 'completed_by')
    op.drop_column('orders', 'completed_at')
    op.drop_column('orders', 'seller_pickup_confirmed')
    op.drop_column('orders', 'buyer_pickup_confirmed')
