"""Initial schema - custody tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Filing cases (projection used for vault authorization)
    op.create_table('filing_cases',
        sa.Column('case_id', sa.String(255), primary_key=True),
        sa.Column('owner_user_id', sa.String(255), nullable=False, index=True),
        sa.Column('assigned_handler_id', sa.String(255), nullable=True),
        sa.Column('status', sa.String(32), nullable=False, server_default='intake'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )

    # Encrypted credentials
    op.create_table('case_credentials',
        sa.Column('case_id', sa.String(255), primary_key=True),
        sa.Column('encrypted_username', sa.Text(), nullable=False),
        sa.Column('encrypted_password', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )

    # Disclosure log (append-only)
    op.create_table('access_log',
        sa.Column('entry_id', sa.String(64), primary_key=True),
        sa.Column('who', sa.String(255), nullable=False),
        sa.Column('what', sa.String(255), nullable=False),
        sa.Column('subject_type', sa.String(32), nullable=False, server_default='case'),
        sa.Column('when', sa.DateTime(timezone=True), nullable=False),
        sa.Column('note', sa.Text(), nullable=False, server_default=''),
        sa.Column('event_hash', sa.String(64), nullable=False),
    )
    op.create_index('idx_access_log_what_when', 'access_log', ['what', 'when'])

    # Share codes
    op.create_table('share_codes',
        sa.Column('share_code_id', sa.String(64), primary_key=True),
        sa.Column('owner_user_id', sa.String(255), nullable=False, index=True),
        sa.Column('code_name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('owner_prefix', sa.String(16), nullable=True, index=True),
        sa.Column('code_hash', sa.String(64), nullable=False, index=True),
        sa.Column('categories', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='active', index=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('access_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_accessed_at', sa.DateTime(timezone=True), nullable=True),
    )

    # Third-party document access (append-only)
    op.create_table('document_access_events',
        sa.Column('event_id', sa.String(64), primary_key=True),
        sa.Column('share_code_id', sa.String(64), nullable=False),
        sa.Column('owner_user_id', sa.String(255), nullable=False),
        sa.Column('document_id', sa.String(255), nullable=False),
        sa.Column('document_name', sa.String(512), nullable=False, server_default='Document'),
        sa.Column('action', sa.String(16), nullable=False),
        sa.Column('client_address', sa.String(64), nullable=False, server_default='unknown'),
        sa.Column('user_agent', sa.Text(), nullable=False, server_default='unknown'),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('suspicious', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('suspicious_reason', sa.Text(), nullable=True),
    )
    op.create_index('idx_doc_access_code_time', 'document_access_events', ['share_code_id', 'occurred_at'])
    op.create_index(
        'idx_doc_access_owner_code_time', 'document_access_events',
        ['owner_user_id', 'share_code_id', 'occurred_at'],
    )

    # Vault documents (read-only projection)
    op.create_table('vault_documents',
        sa.Column('document_id', sa.String(255), primary_key=True),
        sa.Column('owner_user_id', sa.String(255), nullable=False, index=True),
        sa.Column('name', sa.String(512), nullable=False),
        sa.Column('category', sa.String(64), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('vault_documents')
    op.drop_index('idx_doc_access_owner_code_time', table_name='document_access_events')
    op.drop_index('idx_doc_access_code_time', table_name='document_access_events')
    op.drop_table('document_access_events')
    op.drop_table('share_codes')
    op.drop_index('idx_access_log_what_when', table_name='access_log')
    op.drop_table('access_log')
    op.drop_table('case_credentials')
    op.drop_table('filing_cases')
