"""Add messages, world_elements, dice_rolls, media and audit_logs

Revision ID: 8c4e2d6a1b93
Revises: 3f9a1c2b7d10
Create Date: 2026-02-09 12:05:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = '8c4e2d6a1b93'
down_revision = '3f9a1c2b7d10'
branch_labels = None
depends_on = None

JSONData = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')
IPAddress = sa.String(length=45).with_variant(postgresql.INET(), 'postgresql')


def upgrade():
    op.create_table('messages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('campaign_id', sa.Uuid(), nullable=False),
        sa.Column('session_id', sa.Uuid(), nullable=True),
        sa.Column('sender_type', sa.String(length=20), nullable=False),
        sa.Column('sender_id', sa.Uuid(), nullable=True),
        sa.Column('character_id', sa.Uuid(), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('message_type', sa.String(length=30), nullable=False),
        sa.Column('metadata', JSONData, nullable=True),
        sa.Column('ai_model', sa.String(length=50), nullable=True),
        sa.Column('ai_context', JSONData, nullable=True),
        sa.Column('tokens_used', sa.Integer(), nullable=True),
        sa.Column('visible_to', JSONData, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['character_id'], ['characters.id'], ondelete='SET NULL'),
    )
    op.create_index('idx_messages_campaign', 'messages', ['campaign_id', 'created_at'])
    op.create_index('idx_messages_session', 'messages', ['session_id', 'created_at'])
    op.create_index('idx_messages_sender', 'messages', ['sender_id'])
    op.create_index('idx_messages_type', 'messages', ['campaign_id', 'message_type'])

    op.create_table('world_elements',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('campaign_id', sa.Uuid(), nullable=False),
        sa.Column('parent_id', sa.Uuid(), nullable=True),
        sa.Column('element_type', sa.String(length=30), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('properties', JSONData, nullable=True),
        sa.Column('tags', JSONData, nullable=True),
        sa.Column('is_secret', sa.Boolean(), nullable=True),
        sa.Column('revealed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('coordinates', JSONData, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['parent_id'], ['world_elements.id'], ondelete='SET NULL'),
    )
    op.create_index('idx_world_elements_campaign', 'world_elements', ['campaign_id'])
    op.create_index('idx_world_elements_type', 'world_elements', ['campaign_id', 'element_type'])
    op.create_index('idx_world_elements_parent', 'world_elements', ['parent_id'])
    op.create_index('idx_world_elements_secret', 'world_elements', ['campaign_id', 'is_secret'])

    op.create_table('dice_rolls',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('campaign_id', sa.Uuid(), nullable=False),
        sa.Column('session_id', sa.Uuid(), nullable=True),
        sa.Column('message_id', sa.Uuid(), nullable=True),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('character_id', sa.Uuid(), nullable=True),
        sa.Column('expression', sa.String(length=100), nullable=False),
        sa.Column('results', JSONData, nullable=False),
        sa.Column('modifier', sa.Integer(), nullable=True),
        sa.Column('total', sa.Integer(), nullable=False),
        sa.Column('roll_type', sa.String(length=30), nullable=True),
        sa.Column('context', JSONData, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['character_id'], ['characters.id'], ondelete='SET NULL'),
    )
    op.create_index('idx_dice_rolls_campaign', 'dice_rolls', ['campaign_id', 'created_at'])
    op.create_index('idx_dice_rolls_session', 'dice_rolls', ['session_id'])
    op.create_index('idx_dice_rolls_user', 'dice_rolls', ['user_id'])

    op.create_table('media',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('campaign_id', sa.Uuid(), nullable=True),
        sa.Column('uploaded_by', sa.Uuid(), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=False),
        sa.Column('original_name', sa.String(length=255), nullable=True),
        sa.Column('mime_type', sa.String(length=100), nullable=False),
        sa.Column('size_bytes', sa.BigInteger(), nullable=False),
        sa.Column('storage_path', sa.Text(), nullable=False),
        sa.Column('cdn_url', sa.Text(), nullable=True),
        sa.Column('media_type', sa.String(length=30), nullable=False),
        sa.Column('metadata', JSONData, nullable=True),
        sa.Column('is_public', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['uploaded_by'], ['users.id']),
    )
    op.create_index('idx_media_campaign', 'media', ['campaign_id'])
    op.create_index('idx_media_type', 'media', ['campaign_id', 'media_type'])

    # Audit rows outlive the user and campaign they mention
    op.create_table('audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('campaign_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=True),
        sa.Column('entity_id', sa.Uuid(), nullable=True),
        sa.Column('old_values', JSONData, nullable=True),
        sa.Column('new_values', JSONData, nullable=True),
        sa.Column('ip_address', IPAddress, nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='SET NULL'),
    )
    op.create_index('idx_audit_logs_user', 'audit_logs', ['user_id', 'created_at'])
    op.create_index('idx_audit_logs_campaign', 'audit_logs', ['campaign_id', 'created_at'])
    op.create_index('idx_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'])
    op.create_index('idx_audit_logs_action', 'audit_logs', ['action', 'created_at'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('media')
    op.drop_table('dice_rolls')
    op.drop_table('world_elements')
    op.drop_table('messages')
