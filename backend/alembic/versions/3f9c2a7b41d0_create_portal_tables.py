"""create_portal_tables

Revision ID: 3f9c2a7b41d0
Revises:
Create Date: 2026-10-17 09:12:44.318205

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c2a7b41d0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('portal_documents',
    sa.Column('token_hash', sa.String(length=64), nullable=False),
    sa.Column('document_id', sa.String(length=64), nullable=False),
    sa.Column('kind', sa.Enum('offer', 'invoice', name='documentkind'), nullable=False),
    sa.Column('customer_ref', sa.String(length=255), nullable=False),
    sa.Column('customer_label', sa.String(length=255), nullable=True),
    sa.Column('published_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('snapshot', sa.JSON(), nullable=True),
    sa.Column('pdf_key', sa.String(length=255), nullable=True),
    sa.Column('decision', sa.Enum('accepted', 'declined', name='decisionvalue'), nullable=True),
    sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('accepted_name', sa.String(length=255), nullable=True),
    sa.Column('accepted_email', sa.String(length=255), nullable=True),
    sa.Column('decision_text_version', sa.String(length=64), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    sa.PrimaryKeyConstraint('token_hash')
    )
    with op.batch_alter_table('portal_documents', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_portal_documents_document_id'), ['document_id'], unique=True)
        batch_op.create_index('ix_portal_documents_customer_published', ['customer_ref', 'published_at'], unique=False)

    op.create_table('customer_access_tokens',
    sa.Column('token_hash', sa.String(length=64), nullable=False),
    sa.Column('customer_ref', sa.String(length=255), nullable=False),
    sa.Column('customer_label', sa.String(length=255), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint('token_hash')
    )
    with op.batch_alter_table('customer_access_tokens', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_customer_access_tokens_customer_ref'), ['customer_ref'], unique=False)


def downgrade() -> None:
    with op.batch_alter_table('customer_access_tokens', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_customer_access_tokens_customer_ref'))

    op.drop_table('customer_access_tokens')
    with op.batch_alter_table('portal_documents', schema=None) as batch_op:
        batch_op.drop_index('ix_portal_documents_customer_published')
        batch_op.drop_index(batch_op.f('ix_portal_documents_document_id'))

    op.drop_table('portal_documents')
