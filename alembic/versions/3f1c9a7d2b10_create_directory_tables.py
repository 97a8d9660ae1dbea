"""create_directory_tables

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-09-28 14:05:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7d2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'servers',
        sa.Column('id', sa.String(length=201), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('organization', sa.String(length=100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('version', sa.String(length=50), nullable=True),
        sa.Column('repository_url', sa.String(length=500), nullable=True),
        sa.Column('category', sa.String(length=20), nullable=False, server_default='other'),
        sa.Column('source', sa.String(length=20), nullable=False),
        sa.Column('owner_id', sa.String(length=64), nullable=True),
        sa.Column('avg_trustworthiness', sa.Float(), nullable=False, server_default='0'),
        sa.Column('avg_usefulness', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total_ratings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('combined_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('recent_ratings_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    for column in (
        'name', 'category', 'source', 'owner_id', 'total_ratings',
        'combined_score', 'recent_ratings_count', 'created_at',
    ):
        op.create_index(op.f(f'ix_servers_{column}'), 'servers', [column], unique=False)

    op.create_table(
        'ratings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('server_id', sa.String(length=201), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('trustworthiness', sa.Integer(), nullable=False),
        sa.Column('usefulness', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('helpful_count', sa.Integer(), nullable=False),
        sa.Column('not_helpful_count', sa.Integer(), nullable=False),
        sa.Column('flag_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            'trustworthiness >= 1 AND trustworthiness <= 5',
            name='ck_rating_trustworthiness_range',
        ),
        sa.CheckConstraint(
            'usefulness >= 1 AND usefulness <= 5',
            name='ck_rating_usefulness_range',
        ),
        sa.ForeignKeyConstraint(['server_id'], ['servers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('server_id', 'user_id', name='uq_rating_server_user'),
    )
    op.create_index(op.f('ix_ratings_id'), 'ratings', ['id'], unique=False)
    op.create_index(op.f('ix_ratings_server_id'), 'ratings', ['server_id'], unique=False)
    op.create_index(op.f('ix_ratings_user_id'), 'ratings', ['user_id'], unique=False)
    op.create_index(op.f('ix_ratings_created_at'), 'ratings', ['created_at'], unique=False)

    op.create_table(
        'review_votes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('rating_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('helpful', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['rating_id'], ['ratings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('rating_id', 'user_id', name='uq_review_vote_rating_user'),
    )
    op.create_index(op.f('ix_review_votes_rating_id'), 'review_votes', ['rating_id'], unique=False)

    op.create_table(
        'review_flags',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('rating_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['rating_id'], ['ratings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('rating_id', 'user_id', name='uq_review_flag_rating_user'),
    )
    op.create_index(op.f('ix_review_flags_rating_id'), 'review_flags', ['rating_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_review_flags_rating_id'), table_name='review_flags')
    op.drop_table('review_flags')
    op.drop_index(op.f('ix_review_votes_rating_id'), table_name='review_votes')
    op.drop_table('review_votes')
    for column in ('created_at', 'user_id', 'server_id', 'id'):
        op.drop_index(op.f(f'ix_ratings_{column}'), table_name='ratings')
    op.drop_table('ratings')
    for column in (
        'name', 'category', 'source', 'owner_id', 'total_ratings',
        'combined_score', 'recent_ratings_count', 'created_at',
    ):
        op.drop_index(op.f(f'ix_servers_{column}'), table_name='servers')
    op.drop_table('servers')
