"""Create users, campaigns, campaign_members, characters and sessions

Revision ID: 3f9a1c2b7d10
Revises:
Create Date: 2026-02-09 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = '3f9a1c2b7d10'
down_revision = None
branch_labels = None
depends_on = None

JSONData = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _timestamps(soft_delete=True):
    columns = [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]
    if soft_delete:
        columns.append(sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True))
    return columns


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('username', sa.String(length=50), nullable=False),
        sa.Column('display_name', sa.String(length=100), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('preferences', JSONData, nullable=True),
        sa.Column('email_verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sa.UniqueConstraint('username', name='uq_users_username'),
    )

    op.create_table('campaigns',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('cover_image_url', sa.Text(), nullable=True),
        sa.Column('game_system', sa.String(length=50), nullable=False),
        sa.Column('world_info', JSONData, nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('ai_settings', JSONData, nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id']),
    )
    op.create_index('idx_campaigns_owner', 'campaigns', ['owner_id'])
    op.create_index('idx_campaigns_status', 'campaigns', ['status'])
    op.create_index('idx_campaigns_slug', 'campaigns', ['slug'])

    op.create_table('campaign_members',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('campaign_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('nickname', sa.String(length=50), nullable=True),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('left_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('settings', JSONData, nullable=True),
        *_timestamps(soft_delete=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.UniqueConstraint('campaign_id', 'user_id', name='uq_campaign_members_campaign_user'),
    )
    op.create_index('idx_campaign_members_campaign', 'campaign_members', ['campaign_id'])
    op.create_index('idx_campaign_members_user', 'campaign_members', ['user_id'])

    op.create_table('characters',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('campaign_id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.Uuid(), nullable=True),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('character_type', sa.String(length=20), nullable=False),
        sa.Column('race', sa.String(length=50), nullable=True),
        sa.Column('class', sa.String(length=100), nullable=True),
        sa.Column('level', sa.Integer(), nullable=True),
        sa.Column('background', sa.String(length=50), nullable=True),
        sa.Column('alignment', sa.String(length=20), nullable=True),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('token_url', sa.Text(), nullable=True),
        sa.Column('stats', JSONData, nullable=True),
        sa.Column('inventory', JSONData, nullable=True),
        sa.Column('abilities', JSONData, nullable=True),
        sa.Column('backstory', sa.Text(), nullable=True),
        sa.Column('personality', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('ai_behavior', JSONData, nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('died_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('idx_characters_campaign', 'characters', ['campaign_id'])
    op.create_index('idx_characters_owner', 'characters', ['owner_id'])
    op.create_index('idx_characters_type', 'characters', ['character_type'])
    op.create_index('idx_characters_active', 'characters', ['campaign_id', 'is_active'])

    op.create_table('sessions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('campaign_id', sa.Uuid(), nullable=False),
        sa.Column('session_number', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('highlights', JSONData, nullable=True),
        sa.Column('attendees', JSONData, nullable=True),
        sa.Column('rewards', JSONData, nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('campaign_id', 'session_number', name='uq_sessions_campaign_number'),
    )
    op.create_index('idx_sessions_campaign', 'sessions', ['campaign_id'])
    op.create_index('idx_sessions_status', 'sessions', ['status'])
    op.create_index('idx_sessions_scheduled', 'sessions', ['scheduled_at'])


def downgrade():
    op.drop_table('sessions')
    op.drop_table('characters')
    op.drop_table('campaign_members')
    op.drop_table('campaigns')
    op.drop_table('users')
