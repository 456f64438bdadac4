"""initial scoreboard schema: user, profile, match, frame, match_event

Revision ID: 3c9a7e51b2d0
Revises:
Create Date: 2025-09-14 10:20:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c9a7e51b2d0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
        sa.Column('is_referee', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_username', 'user', ['username'], unique=True)

    op.create_table(
        'profile',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('first_name', sa.String(length=64), nullable=False),
        sa.Column('last_name', sa.String(length=64), nullable=False),
        sa.Column('picture_url', sa.String(length=512), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'match',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('player1_id', sa.Integer(), nullable=False),
        sa.Column('player2_id', sa.Integer(), nullable=False),
        sa.Column('frames_to_win', sa.Integer(), nullable=False),
        sa.Column('scheduled_time', sa.DateTime(), nullable=True),
        sa.Column('broadcast_url', sa.String(length=512), nullable=True),
        sa.Column('state_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('outcome', sa.String(length=16), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['player1_id'], ['profile.id']),
        sa.ForeignKeyConstraint(['player2_id'], ['profile.id']),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'frame',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('match_id', sa.Integer(), nullable=False),
        sa.Column('frame_number', sa.Integer(), nullable=False),
        sa.Column('winner_id', sa.Integer(), nullable=True),
        sa.Column('player1_ball_group', sa.String(length=16), nullable=True),
        sa.Column('player2_ball_group', sa.String(length=16), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['match_id'], ['match.id']),
        sa.ForeignKeyConstraint(['winner_id'], ['profile.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('match_id', 'frame_number', name='uq_frame_match_number'),
    )
    op.create_index('ix_frame_match_id', 'frame', ['match_id'])

    op.create_table(
        'match_event',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('frame_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('player_id', sa.Integer(), nullable=True),
        sa.Column('ball_ids', sa.Text(), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['frame_id'], ['frame.id']),
        sa.ForeignKeyConstraint(['player_id'], ['profile.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_match_event_frame_id', 'match_event', ['frame_id'])


def downgrade():
    op.drop_index('ix_match_event_frame_id', table_name='match_event')
    op.drop_table('match_event')
    op.drop_index('ix_frame_match_id', table_name='frame')
    op.drop_table('frame')
    op.drop_table('match')
    op.drop_table('profile')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
