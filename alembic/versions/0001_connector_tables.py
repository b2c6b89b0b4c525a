"""Connector Tables

Revision ID: 0001_connector_tables
Revises:
Create Date: 2026-10-17

Creates the connector tables:
- subaccounts: CRM locations bound to tenants
- sessions: WhatsApp pairing attempts
- messages: inbound/outbound messages
- location_session_map: location -> ready session
- provider_installations: CRM conversation-provider credentials
- marketplace_accounts: marketplace OAuth accounts
"""

from alembic import op
import sqlalchemy as sa

revision = '0001_connector_tables'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade():
    # =========================================================================
    # SUBACCOUNTS
    # =========================================================================

    op.create_table(
        'subaccounts',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('location_id', sa.String(100), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', name='uq_subaccounts_location_id'),
    )
    op.create_index('ix_subaccounts_user_id', 'subaccounts', ['user_id'])

    # =========================================================================
    # SESSIONS
    # =========================================================================

    op.create_table(
        'sessions',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('subaccount_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(20), server_default='initializing', nullable=False),
        sa.Column('pairing_code', sa.Text(), nullable=True),
        sa.Column('phone_number', sa.String(20), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['subaccount_id'], ['subaccounts.id'], ondelete='CASCADE'),
        sa.CheckConstraint(
            "status IN ('initializing', 'qr', 'ready', 'disconnected', 'auth_failure')",
            name='ck_sessions_status',
        ),
    )
    op.create_index('ix_sessions_user_id', 'sessions', ['user_id'])
    op.create_index('idx_sessions_subaccount_created', 'sessions', ['subaccount_id', 'created_at'])

    # =========================================================================
    # MESSAGES
    # =========================================================================

    op.create_table(
        'messages',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('session_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('subaccount_id', sa.Uuid(), nullable=False),
        sa.Column('from_number', sa.String(40), nullable=False),
        sa.Column('to_number', sa.String(40), nullable=False),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('media_url', sa.Text(), nullable=True),
        sa.Column('media_mime', sa.String(100), nullable=True),
        sa.Column('direction', sa.String(3), nullable=False),
        sa.Column('provider_message_id', sa.String(150), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], ondelete='CASCADE'),
        sa.CheckConstraint("direction IN ('in', 'out')", name='ck_messages_direction'),
    )
    op.create_index('ix_messages_session_id', 'messages', ['session_id'])
    op.create_index('idx_messages_subaccount_created', 'messages', ['subaccount_id', 'created_at'])
    op.create_index('idx_messages_session_created', 'messages', ['session_id', 'created_at'])

    # =========================================================================
    # LOCATION SESSION MAP
    # =========================================================================

    op.create_table(
        'location_session_map',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('location_id', sa.String(100), nullable=False),
        sa.Column('session_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('subaccount_id', sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('location_id', name='uq_location_session_map_location_id'),
    )
    op.create_index('ix_location_session_map_session_id', 'location_session_map', ['session_id'])

    # =========================================================================
    # PROVIDER INSTALLATIONS
    # =========================================================================

    op.create_table(
        'provider_installations',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('subaccount_id', sa.Uuid(), nullable=False),
        sa.Column('location_id', sa.String(100), nullable=True),
        sa.Column('conversation_provider_id', sa.String(150), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['subaccount_id'], ['subaccounts.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('subaccount_id', name='uq_provider_installations_subaccount_id'),
    )
    op.create_index('ix_provider_installations_user_id', 'provider_installations', ['user_id'])

    # =========================================================================
    # MARKETPLACE ACCOUNTS
    # =========================================================================

    op.create_table(
        'marketplace_accounts',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.String(100), nullable=True),
        sa.Column('user_type', sa.String(50), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', name='uq_marketplace_accounts_user_id'),
    )


def downgrade():
    op.drop_table('marketplace_accounts')
    op.drop_table('provider_installations')
    op.drop_table('location_session_map')
    op.drop_table('messages')
    op.drop_table('sessions')
    op.drop_table('subaccounts')
