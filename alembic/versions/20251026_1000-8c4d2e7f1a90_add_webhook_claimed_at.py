"""add_webhook_claimed_at

Revision ID: 8c4d2e7f1a90
Revises: 3b1f5c2a9e41
Create Date: 2025-10-26 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '8c4d2e7f1a90'
down_revision: Union[str, None] = '3b1f5c2a9e41'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        'webhook_events',
        sa.Column('claimed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, comment='认领时间'),
    )
    op.create_index('ix_webhook_events_unfinished', 'webhook_events', ['processed', 'claimed_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_webhook_events_unfinished', table_name='webhook_events')
    op.drop_column('webhook_events', 'claimed_at')
