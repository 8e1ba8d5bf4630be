"""add migration pipeline tables

Revision ID: 001_migration_pipeline_tables
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = '001_migration_pipeline_tables'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text("timezone('utc', now())"))


def upgrade():
    op.create_table(
        'migrations',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('title', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('csv_file_path', sa.Text(), nullable=True),
        sa.Column('csv_row_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='uploaded'),
        sa.Column('analysis_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('target_bucket', sa.String(length=255), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('job_id', sa.String(length=64), nullable=True),
        sa.Column('progress_percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_events', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('successful_events', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_events', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('skipped_events', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('analyzed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('execution_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('execution_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('approved_by', sa.String(length=255), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("timezone('utc', now())")),
        sa.CheckConstraint(
            "status IN ('uploaded', 'analyzing', 'analyzed', 'decisions_pending', "
            "'decisions_complete', 'approved', 'executing', 'completed', 'failed', 'cancelled')",
            name='ck_migrations_status'
        ),
        sa.CheckConstraint(
            'progress_percentage BETWEEN 0 AND 100',
            name='ck_migrations_progress'
        )
    )
    op.create_index('ix_migrations_status', 'migrations', ['status'])

    op.create_table(
        'migration_file_catalogs',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('migration_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('migrations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_code', sa.String(length=255), nullable=False),
        sa.Column('s3_directory', sa.Text(), nullable=False, server_default=''),
        sa.Column('filename', sa.Text(), nullable=False),
        sa.Column('s3_key', sa.Text(), nullable=False),
        sa.Column('file_type', sa.String(length=32), nullable=False),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('extension', sa.String(length=32), nullable=False, server_default=''),
        sa.Column('file_size', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('mime_type', sa.String(length=128), nullable=True),
        sa.Column('suggested_action', sa.String(length=16), nullable=False, server_default='review'),
        sa.Column('suggested_category', sa.String(length=32), nullable=True),
        sa.Column('conflicts', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created_at(),
        sa.UniqueConstraint('migration_id', 's3_key', name='uq_catalog_migration_key')
    )
    op.create_index('ix_migration_file_catalogs_migration_id', 'migration_file_catalogs', ['migration_id'])
    op.create_index('ix_catalog_migration_event', 'migration_file_catalogs', ['migration_id', 'event_code'])

    op.create_table(
        'migration_file_decisions',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('migration_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('migrations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('catalog_id', sa.BigInteger(),
                  sa.ForeignKey('migration_file_catalogs.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('action', sa.String(length=16), nullable=False),
        sa.Column('new_filename', sa.Text(), nullable=True),
        sa.Column('target_category', sa.String(length=32), nullable=True),
        sa.Column('target_s3_key', sa.Text(), nullable=True),
        sa.Column('metadata_overrides', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('decided_by', sa.String(length=255), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("timezone('utc', now())")),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "action IN ('include', 'ignore', 'rename', 'review')",
            name='ck_decisions_action'
        )
    )
    op.create_index('ix_migration_file_decisions_migration_id', 'migration_file_decisions', ['migration_id'])

    op.create_table(
        'migration_logs',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('migration_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('migrations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('level', sa.String(length=16), nullable=False, server_default='info'),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('event_code', sa.String(length=255), nullable=True),
        sa.Column('context', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("timezone('utc', now())"))
    )
    op.create_index('ix_migration_logs_migration_id', 'migration_logs', ['migration_id'])
    op.create_index('ix_migration_logs_event_code', 'migration_logs', ['event_code'])

    op.create_table(
        'media_files',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('event_code', sa.String(length=255), nullable=False),
        sa.Column('file_type', sa.String(length=32), nullable=False),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('filename', sa.Text(), nullable=False),
        sa.Column('s3_key', sa.Text(), nullable=False),
        sa.Column('s3_bucket', sa.String(length=255), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=True),
        sa.Column('mime_type', sa.String(length=128), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('bitrate', sa.Integer(), nullable=True),
        sa.Column('codec', sa.String(length=64), nullable=True),
        sa.Column('resolution', sa.String(length=32), nullable=True),
        sa.Column('session_number', sa.Integer(), nullable=True),
        sa.Column('track_number', sa.Integer(), nullable=True),
        sa.Column('is_translation', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_legacy', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('language', sa.String(length=16), nullable=True),
        sa.Column('page_count', sa.Integer(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('migrated_from', sa.Text(), nullable=True),
        sa.Column('migration_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('migrations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('decision_id', sa.BigInteger(), nullable=True),
        _created_at(),
        sa.UniqueConstraint('s3_bucket', 's3_key', name='uq_media_bucket_key')
    )
    op.create_index('ix_media_files_event_code', 'media_files', ['event_code'])
    op.create_index('ix_media_files_migration_id', 'media_files', ['migration_id'])

    op.create_table(
        'reference_values',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('name_alt', sa.String(length=255), nullable=True),
        sa.Column('abbreviation', sa.String(length=32), nullable=True),
        sa.Column('aliases', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created_at(),
        sa.UniqueConstraint('kind', 'name', name='uq_reference_kind_name')
    )
    op.create_index('ix_reference_values_kind', 'reference_values', ['kind'])


def downgrade():
    op.drop_index('ix_reference_values_kind', table_name='reference_values')
    op.drop_table('reference_values')
    op.drop_index('ix_media_files_migration_id', table_name='media_files')
    op.drop_index('ix_media_files_event_code', table_name='media_files')
    op.drop_table('media_files')
    op.drop_index('ix_migration_logs_event_code', table_name='migration_logs')
    op.drop_index('ix_migration_logs_migration_id', table_name='migration_logs')
    op.drop_table('migration_logs')
    op.drop_index('ix_migration_file_decisions_migration_id', table_name='migration_file_decisions')
    op.drop_table('migration_file_decisions')
    op.drop_index('ix_catalog_migration_event', table_name='migration_file_catalogs')
    op.drop_index('ix_migration_file_catalogs_migration_id', table_name='migration_file_catalogs')
    op.drop_table('migration_file_catalogs')
    op.drop_index('ix_migrations_status', table_name='migrations')
    op.drop_table('migrations')
