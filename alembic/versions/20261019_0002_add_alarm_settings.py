"""Add alarm recipients and cooldown markers to tank_info

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0002'
down_revision: Union[str, None] = '0001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('tank_info', sa.Column('alarm_email', sa.String(length=500), nullable=True))
    op.add_column('tank_info', sa.Column('last_min_alarm_sent_at', sa.DateTime(timezone=True), nullable=True))
    op.add_column('tank_info', sa.Column('last_max_alarm_sent_at', sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    op.drop_column('tank_info', 'last_max_alarm_sent_at')
    op.drop_column('tank_info', 'last_min_alarm_sent_at')
    op.drop_column('tank_info', 'alarm_email')
