"""add_server_source_priority

Revision ID: 8d42e6b0c5a3
Revises: 3f1c9a7d2b10
Create Date: 2026-10-06 09:40:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8d42e6b0c5a3'
down_revision: Union[str, None] = '3f1c9a7d2b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        'servers',
        sa.Column(
            'source_priority',
            sa.Integer(),
            nullable=False,
            server_default='3',
            comment='Derived from source; user=1, official=2, registry=3',
        )
    )

    # Backfill existing rows; the ORM keeps it in step from here on
    op.execute(
        """
        UPDATE servers SET source_priority = CASE source
            WHEN 'user' THEN 1
            WHEN 'official' THEN 2
            WHEN 'registry' THEN 3
            ELSE 4
        END
        """
    )

    op.create_index(
        op.f('ix_servers_source_priority'),
        'servers',
        ['source_priority'],
        unique=False
    )


def downgrade() -> None:
    op.drop_index(op.f('ix_servers_source_priority'), table_name='servers')
    op.drop_column('servers', 'source_priority')
