"""create connection sync tables

Revision ID: 3c1d2e9a7b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1d2e9a7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('user_provider_credentials',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(), nullable=False),
    sa.Column('provider_name', sa.String(), nullable=False),
    sa.Column('provider_identity', sa.String(), nullable=False),
    sa.Column('provider_secret', sa.String(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('rotated_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_user_provider_credentials_user_id'), 'user_provider_credentials', ['user_id'], unique=False)
    op.create_index('ix_credential_provider_identity', 'user_provider_credentials', ['provider_name', 'provider_identity'], unique=False)
    op.create_index(
        'uix_live_credential_per_user_provider',
        'user_provider_credentials',
        ['user_id', 'provider_name'],
        unique=True,
        sqlite_where=sa.text('rotated_at IS NULL'),
        postgresql_where=sa.text('rotated_at IS NULL'),
    )

    op.create_table('connections',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('authorization_id', sa.String(), nullable=False),
    sa.Column('user_id', sa.String(), nullable=False),
    sa.Column('provider_name', sa.String(), nullable=False),
    sa.Column('institution_name', sa.String(), nullable=True),
    sa.Column('status', sa.String(), nullable=False),
    sa.Column('disabled', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.Column('last_synced_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_connections_authorization_id'), 'connections', ['authorization_id'], unique=True)
    op.create_index(op.f('ix_connections_user_id'), 'connections', ['user_id'], unique=False)

    op.create_table('external_accounts',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('connection_id', sa.String(length=36), nullable=False),
    sa.Column('provider_account_id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('account_type', sa.String(), nullable=True),
    sa.Column('account_number', sa.String(), nullable=True),
    sa.Column('balance', sa.Numeric(precision=18, scale=2), nullable=True),
    sa.Column('currency', sa.String(length=8), nullable=False),
    sa.Column('positions', sa.JSON(), nullable=True),
    sa.Column('last_holdings_sync_at', sa.DateTime(), nullable=True),
    sa.Column('last_transactions_sync_at', sa.DateTime(), nullable=True),
    sa.Column('initial_sync_completed', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['connection_id'], ['connections.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('connection_id', 'provider_account_id', name='uix_connection_provider_account')
    )
    op.create_index(op.f('ix_external_accounts_connection_id'), 'external_accounts', ['connection_id'], unique=False)
    op.create_index(op.f('ix_external_accounts_provider_account_id'), 'external_accounts', ['provider_account_id'], unique=False)

    op.create_table('sync_runs',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('trigger', sa.String(), nullable=False),
    sa.Column('status', sa.String(), nullable=False),
    sa.Column('started_at', sa.DateTime(), nullable=False),
    sa.Column('finished_at', sa.DateTime(), nullable=True),
    sa.Column('users_succeeded', sa.Integer(), nullable=False),
    sa.Column('users_failed', sa.Integer(), nullable=False),
    sa.Column('users_skipped', sa.Integer(), nullable=False),
    sa.Column('accounts_refreshed', sa.Integer(), nullable=False),
    sa.Column('accounts_failed', sa.Integer(), nullable=False),
    sa.Column('failures', sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )

    op.create_table('webhook_events',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('event_id', sa.String(), nullable=True),
    sa.Column('provider_name', sa.String(), nullable=False),
    sa.Column('raw_type', sa.String(), nullable=True),
    sa.Column('canonical_type', sa.String(), nullable=True),
    sa.Column('provider_identity', sa.String(), nullable=True),
    sa.Column('user_id', sa.String(), nullable=True),
    sa.Column('authorization_id', sa.String(), nullable=True),
    sa.Column('event_created_at', sa.DateTime(), nullable=True),
    sa.Column('payload', sa.JSON(), nullable=True),
    sa.Column('outcome', sa.String(), nullable=False),
    sa.Column('error', sa.Text(), nullable=True),
    sa.Column('received_at', sa.DateTime(), nullable=False),
    sa.Column('processed_at', sa.DateTime(), nullable=True),
    sa.Column('processing_ms', sa.Float(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_webhook_events_event_id'), 'webhook_events', ['event_id'], unique=False)
    op.create_index(op.f('ix_webhook_events_user_id'), 'webhook_events', ['user_id'], unique=False)
    op.create_index(op.f('ix_webhook_events_authorization_id'), 'webhook_events', ['authorization_id'], unique=False)
    op.create_index(op.f('ix_webhook_events_received_at'), 'webhook_events', ['received_at'], unique=False)

    op.create_table('job_locks',
    sa.Column('job_name', sa.String(), nullable=False),
    sa.Column('holder', sa.String(), nullable=False),
    sa.Column('acquired_at', sa.DateTime(), nullable=False),
    sa.Column('expires_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('job_name')
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('job_locks')
    op.drop_index(op.f('ix_webhook_events_received_at'), table_name='webhook_events')
    op.drop_index(op.f('ix_webhook_events_authorization_id'), table_name='webhook_events')
    op.drop_index(op.f('ix_webhook_events_user_id'), table_name='webhook_events')
    op.drop_index(op.f('ix_webhook_events_event_id'), table_name='webhook_events')
    op.drop_table('webhook_events')
    op.drop_table('sync_runs')
    op.drop_index(op.f('ix_external_accounts_provider_account_id'), table_name='external_accounts')
    op.drop_index(op.f('ix_external_accounts_connection_id'), table_name='external_accounts')
    op.drop_table('external_accounts')
    op.drop_index(op.f('ix_connections_user_id'), table_name='connections')
    op.drop_index(op.f('ix_connections_authorization_id'), table_name='connections')
    op.drop_table('connections')
    op.drop_index('uix_live_credential_per_user_provider', table_name='user_provider_credentials')
    op.drop_index('ix_credential_provider_identity', table_name='user_provider_credentials')
    op.drop_index(op.f('ix_user_provider_credentials_user_id'), table_name='user_provider_credentials')
    op.drop_table('user_provider_credentials')
