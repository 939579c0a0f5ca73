"""create_sync_engine_tables

Revision ID: a1c4e2f7b9d0
Revises:
Create Date: 2026-10-19 09:12:44.318205

Creates the full schema:
- tenants
- oauth_credentials (one per tenant + provider)
- gsc_sites, ga4_properties (one binding per tenant)
- gsc_data, gsc_data_aggregated
- ga4_data, ga4_data_aggregated
- sync_runs
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c4e2f7b9d0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _tenant_fk() -> sa.Column:
    return sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def _traffic_metrics() -> list:
    return [
        sa.Column('sessions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('users', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('new_users', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('engagement_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('average_session_duration', sa.Float(), nullable=False, server_default='0'),
        sa.Column('conversions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversion_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('revenue', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
    ]


def _search_metrics() -> list:
    return [
        sa.Column('clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('impressions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ctr', sa.Float(), nullable=False, server_default='0'),
        sa.Column('position', sa.Float(), nullable=False, server_default='0'),
    ]


def upgrade() -> None:
    """Create sync engine tables."""
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('domain', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_tenants_id', 'tenants', ['id'])

    op.create_table(
        'oauth_credentials',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('token_type', sa.String(50), nullable=False, server_default='Bearer'),
        sa.Column('scope', sa.Text(), nullable=False, server_default=''),
        sa.Column('account_email', sa.String(255), nullable=True),
        sa.Column('refresh_token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('invalidated_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'provider', name='uq_oauth_credentials_tenant_provider'),
    )
    op.create_index('ix_oauth_credentials_id', 'oauth_credentials', ['id'])
    op.create_index('ix_oauth_credentials_tenant_id', 'oauth_credentials', ['tenant_id'])
    op.create_index('ix_oauth_credentials_provider', 'oauth_credentials', ['provider'])

    op.create_table(
        'gsc_sites',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('site_url', sa.String(500), nullable=False),
        sa.Column('permission_level', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('tenant_id', name='uq_gsc_sites_tenant'),
    )
    op.create_index('ix_gsc_sites_id', 'gsc_sites', ['id'])
    op.create_index('ix_gsc_sites_tenant_id', 'gsc_sites', ['tenant_id'])

    op.create_table(
        'ga4_properties',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('property_id', sa.String(100), nullable=False),
        sa.Column('property_name', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('tenant_id', name='uq_ga4_properties_tenant'),
    )
    op.create_index('ix_ga4_properties_id', 'ga4_properties', ['id'])
    op.create_index('ix_ga4_properties_tenant_id', 'ga4_properties', ['tenant_id'])

    op.create_table(
        'gsc_data',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('page', sa.String(1000), nullable=False),
        sa.Column('query', sa.String(500), nullable=False),
        sa.Column('country', sa.String(10), nullable=False, server_default='all'),
        sa.Column('device', sa.String(20), nullable=False, server_default='all'),
        *_search_metrics(),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'date', 'page', 'query', 'country', 'device', name='uq_gsc_data_key'),
    )
    op.create_index('ix_gsc_data_id', 'gsc_data', ['id'])
    op.create_index('ix_gsc_data_tenant_date', 'gsc_data', ['tenant_id', 'date'])
    op.create_index('ix_gsc_data_tenant_page', 'gsc_data', ['tenant_id', 'page'])
    op.create_index('ix_gsc_data_tenant_query', 'gsc_data', ['tenant_id', 'query'])

    op.create_table(
        'gsc_data_aggregated',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('site_url', sa.String(500), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        *_search_metrics(),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'site_url', 'date', name='uq_gsc_data_aggregated_key'),
    )
    op.create_index('ix_gsc_data_aggregated_id', 'gsc_data_aggregated', ['id'])
    op.create_index('ix_gsc_data_aggregated_tenant_date', 'gsc_data_aggregated', ['tenant_id', 'date'])

    op.create_table(
        'ga4_data',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('source', sa.String(255), nullable=False, server_default='(direct)'),
        sa.Column('medium', sa.String(100), nullable=False, server_default='(none)'),
        sa.Column('device_category', sa.String(50), nullable=False, server_default='desktop'),
        *_traffic_metrics(),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'date', 'source', 'medium', 'device_category', name='uq_ga4_data_key'),
    )
    op.create_index('ix_ga4_data_id', 'ga4_data', ['id'])
    op.create_index('ix_ga4_data_tenant_date', 'ga4_data', ['tenant_id', 'date'])

    op.create_table(
        'ga4_data_aggregated',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('property_id', sa.String(100), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        *_traffic_metrics(),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'property_id', 'date', name='uq_ga4_data_aggregated_key'),
    )
    op.create_index('ix_ga4_data_aggregated_id', 'ga4_data_aggregated', ['id'])
    op.create_index('ix_ga4_data_aggregated_tenant_date', 'ga4_data_aggregated', ['tenant_id', 'date'])

    op.create_table(
        'sync_runs',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('run_type', sa.String(20), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('dry_run', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('state', sa.String(30), nullable=False),
        sa.Column('skip_reason', sa.String(50), nullable=True),
        sa.Column('binding', sa.String(500), nullable=True),
        sa.Column('granular_rows_fetched', sa.Integer(), nullable=True),
        sa.Column('granular_rows_written', sa.Integer(), nullable=True),
        sa.Column('aggregate_rows_fetched', sa.Integer(), nullable=True),
        sa.Column('aggregate_rows_written', sa.Integer(), nullable=True),
        sa.Column('chunks_failed', sa.Integer(), nullable=True),
        sa.Column('chunks_truncated', sa.Integer(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_sync_runs_id', 'sync_runs', ['id'])
    op.create_index('ix_sync_runs_status', 'sync_runs', ['status'])
    op.create_index('ix_sync_runs_tenant_provider', 'sync_runs', ['tenant_id', 'provider'])


def downgrade() -> None:
    """Drop sync engine tables."""
    op.drop_table('sync_runs')
    op.drop_table('ga4_data_aggregated')
    op.drop_table('ga4_data')
    op.drop_table('gsc_data_aggregated')
    op.drop_table('gsc_data')
    op.drop_table('ga4_properties')
    op.drop_table('gsc_sites')
    op.drop_table('oauth_credentials')
    op.drop_table('tenants')
