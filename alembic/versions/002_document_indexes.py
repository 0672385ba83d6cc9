"""Indexes backing the JSONB filter predicates of SqlDocumentStore.

Equality filters compile to ``data @> '{...}'`` containment, served by a GIN
index. Period scans over the ledger compare the stored timestamp text
within one collection group.

Revision ID: 002_document_indexes
Revises: 001_documents
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_document_indexes"
down_revision: str | None = "001_documents"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_documents_data
        ON documents USING GIN (data jsonb_path_ops)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_documents_group_timestamp
        ON documents(collection_id, (data -> 'timestamp' ->> '$ts'))
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_documents_group_timestamp")
    op.execute("DROP INDEX IF EXISTS ix_documents_data")
