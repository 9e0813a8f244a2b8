"""create_tokens

Tracked token table: one row per token under observation, reference price
captured at enrollment, status restricted to active/inactive.

Revision ID: 0001a2b3c4d5
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001a2b3c4d5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'tokens',
        sa.Column('address', sa.String(64), primary_key=True),
        sa.Column('discovered_at', sa.DateTime(), nullable=False),
        sa.Column('price', sa.Numeric(), nullable=False),
        sa.Column('current_price', sa.Numeric(), nullable=True),
        sa.Column('last_checked_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(10), nullable=False, server_default='active'),
        sa.Column('bought_at', sa.DateTime(), nullable=True),
        sa.Column('source', sa.String(20), nullable=True),
        sa.Column('name', sa.String(255), nullable=False, server_default='Unknown'),
        sa.Column('total_supply', sa.Numeric(), nullable=False, server_default='0'),
        sa.Column('market_cap', sa.Numeric(), nullable=True),
        sa.CheckConstraint("status IN ('active', 'inactive')", name='ck_tokens_status'),
    )
    op.create_index('idx_tokens_status', 'tokens', ['status'])
    op.create_index('idx_tokens_last_checked', 'tokens', ['last_checked_at'])


def downgrade() -> None:
    op.drop_index('idx_tokens_last_checked', table_name='tokens')
    op.drop_index('idx_tokens_status', table_name='tokens')
    op.drop_table('tokens')
