"""lead_sync_tables

Revision ID: 001
Revises:
Create Date: 2026-10-18 10:12:41.502113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table('leads'):
        op.create_table('leads',
        sa.Column('id', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('nome', sa.Text(), nullable=True),
        sa.Column('telefone', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('idade', sa.Integer(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('responsible', sa.Text(), nullable=True),
        sa.Column('scouter', sa.Text(), nullable=True),
        sa.Column('valor_ficha', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('ficha_confirmada', sa.Boolean(), nullable=True),
        sa.Column('raw', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sync_source', sa.String(length=50), nullable=True),
        sa.Column('sync_status', sa.String(length=50), nullable=True),
        sa.Column('sync_errors', sa.JSON(), nullable=True),
        sa.Column('has_sync_errors', sa.Boolean(), server_default=sa.text('false'), nullable=True),
        sa.PrimaryKeyConstraint('id')
        )

    if not inspector.has_table('change_events'):
        op.create_table('change_events',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('target_table', sa.String(length=100), nullable=False),
        sa.Column('target_row_id', sa.String(length=100), nullable=False),
        sa.Column('operation', sa.String(length=20), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('origin', sa.String(length=50), nullable=True),
        sa.Column('retry_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('annotation', sa.String(length=100), nullable=True),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_change_events_status_created', 'change_events', ['status', 'created_at'], unique=False)
        op.create_index(op.f('ix_change_events_target_row_id'), 'change_events', ['target_row_id'], unique=False)

    if not inspector.has_table('sync_jobs'):
        op.create_table('sync_jobs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('total_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('processed_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('updated_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('skipped_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('error_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('batch_size', sa.Integer(), server_default='50', nullable=False),
        sa.Column('current_batch', sa.Integer(), server_default='0', nullable=False),
        sa.Column('cursor', sa.BigInteger(), nullable=True),
        sa.Column('filter_criteria', sa.JSON(), nullable=True),
        sa.Column('error_details', sa.JSON(), server_default=sa.text("'[]'"), nullable=False),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('locked_by', sa.String(length=64), nullable=True),
        sa.Column('locked_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paused_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_sync_jobs_status'), 'sync_jobs', ['status'], unique=False)

    if not inspector.has_table('field_mappings'):
        op.create_table('field_mappings',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('scope', sa.String(length=20), nullable=False),
        sa.Column('source_field', sa.String(length=255), nullable=False),
        sa.Column('target_field', sa.String(length=255), nullable=False),
        sa.Column('source_type', sa.String(length=100), server_default='string', nullable=False),
        sa.Column('target_type', sa.String(length=100), server_default='text', nullable=False),
        sa.Column('transformation', sa.String(length=50), nullable=True),
        sa.Column('value_map', sa.JSON(), nullable=True),
        sa.Column('priority', sa.Integer(), server_default='0', nullable=False),
        sa.Column('active', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_field_mappings_scope'), 'field_mappings', ['scope'], unique=False)
        op.create_index('ix_field_mappings_scope_target', 'field_mappings', ['scope', 'target_field'], unique=False)

    if not inspector.has_table('sync_logs_summary'):
        op.create_table('sync_logs_summary',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('source', sa.String(length=100), nullable=False),
        sa.Column('direction', sa.String(length=100), nullable=False),
        sa.Column('records_synced', sa.Integer(), server_default='0', nullable=False),
        sa.Column('records_failed', sa.Integer(), server_default='0', nullable=False),
        sa.Column('records_skipped', sa.Integer(), server_default='0', nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processing_time_ms', sa.Integer(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
        )

    if not inspector.has_table('sync_logs_detailed'):
        op.create_table('sync_logs_detailed',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('endpoint', sa.String(length=100), nullable=False),
        sa.Column('table_name', sa.String(length=100), nullable=True),
        sa.Column('record_id', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
        )


def downgrade() -> None:
    """Downgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table in ('sync_logs_detailed', 'sync_logs_summary', 'field_mappings', 'sync_jobs', 'change_events'):
        if inspector.has_table(table):
            op.drop_table(table)
    # leads no se borra: contiene datos de negocio y columnas agregadas por reconciliacion
