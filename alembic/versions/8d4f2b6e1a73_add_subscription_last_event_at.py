"""add_subscription_last_event_at

Revision ID: 8d4f2b6e1a73
Revises: 5c1e7a9d3b20
Create Date: 2026-10-18 15:40:02.118934

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8d4f2b6e1a73'
down_revision: Union[str, None] = '5c1e7a9d3b20'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Track the newest subscription event applied to each track."""
    from sqlalchemy import inspect

    bind = op.get_bind()
    inspector = inspect(bind)
    columns = [col['name'] for col in inspector.get_columns('subscriptions')]

    if 'last_event_at' not in columns:
        op.add_column('subscriptions', sa.Column('last_event_at', sa.DateTime(), nullable=True))


def downgrade() -> None:
    op.drop_column('subscriptions', 'last_event_at')
