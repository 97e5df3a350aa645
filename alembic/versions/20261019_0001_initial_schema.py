"""Initial schema - tank_level and tank_info tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create tank_level table (readings)
    op.create_table(
        'tank_level',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('terminal_id', sa.String(length=50), nullable=False),
        sa.Column('serial', sa.String(length=100), nullable=True),
        sa.Column('tank_level', sa.Float(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_tank_level_terminal_id', 'tank_level', ['terminal_id'], unique=False)
    op.create_index('ix_tank_level_timestamp', 'tank_level', ['timestamp'], unique=False)
    op.create_index('ix_tank_level_recorded_at', 'tank_level', ['recorded_at'], unique=False)

    # Create tank_info table (per-terminal configuration)
    op.create_table(
        'tank_info',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('terminal_id', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=True),
        sa.Column('site', sa.String(length=200), nullable=True),
        sa.Column('emirate', sa.String(length=100), nullable=True),
        sa.Column('project_code', sa.String(length=100), nullable=True),
        sa.Column('building_name', sa.String(length=200), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('lpg_min_level', sa.Float(), nullable=True),
        sa.Column('lpg_max_level', sa.Float(), nullable=True),
        sa.Column('lpg_tank_capacity', sa.String(length=100), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_tank_info_terminal_id', 'tank_info', ['terminal_id'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_tank_info_terminal_id', table_name='tank_info')
    op.drop_table('tank_info')
    op.drop_index('ix_tank_level_recorded_at', table_name='tank_level')
    op.drop_index('ix_tank_level_timestamp', table_name='tank_level')
    op.drop_index('ix_tank_level_terminal_id', table_name='tank_level')
    op.drop_table('tank_level')
