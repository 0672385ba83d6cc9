"""Baseline: path-addressed document table.

Every engine document (progress, ledger entries, achievements, streaks,
ranking snapshots) is one row keyed by its full slash-joined path.

Revision ID: 001_documents
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_documents"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS documents (
            path VARCHAR(1024) PRIMARY KEY,
            collection_path VARCHAR(1024) NOT NULL,
            collection_id VARCHAR(255) NOT NULL,
            doc_id VARCHAR(255) NOT NULL,
            data JSONB NOT NULL DEFAULT '{}',
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    # list_ids / query scan one collection
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_documents_collection_path
        ON documents(collection_path)
    """)
    # collection-group scans (ledger across all users)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_documents_collection_id
        ON documents(collection_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS documents CASCADE")
