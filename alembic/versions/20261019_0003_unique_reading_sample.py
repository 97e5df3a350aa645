"""Store each device sample once per terminal

Revision ID: 0003
Revises: 0002
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0003'
down_revision: Union[str, None] = '0002'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Keep the first stored copy of every repeated sample
    op.execute(
        """
        DELETE FROM tank_level a
        USING tank_level b
        WHERE a.terminal_id = b.terminal_id
          AND a.timestamp = b.timestamp
          AND a.id > b.id
        """
    )
    op.create_unique_constraint(
        'uq_tank_level_terminal_timestamp',
        'tank_level',
        ['terminal_id', 'timestamp'],
    )


def downgrade() -> None:
    op.drop_constraint('uq_tank_level_terminal_timestamp', 'tank_level', type_='unique')
