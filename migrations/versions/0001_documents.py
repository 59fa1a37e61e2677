"""Create the documents table.

Notes:
- ``id`` is UNIQUEIDENTIFIER on SQL Server and CHAR(36) elsewhere.
- ``tags`` and ``related_documents`` hold JSON arrays as text.
"""

from __future__ import annotations

from typing import Optional

import sqlalchemy as sa
from alembic import op

from casedocs_api.db import JSONList, UTCDateTime, UUIDType

revision = "0001_documents"
down_revision: Optional[str] = None
branch_labels: Optional[str] = None
depends_on: Optional[str] = None


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column("id", UUIDType(), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("storage_key", sa.String(length=1024), nullable=False),
        sa.Column("original_file_name", sa.String(length=255), nullable=False),
        sa.Column("stored_file_name", sa.String(length=255), nullable=False),
        sa.Column("file_size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(length=255), nullable=True),
        sa.Column("checksum", sa.String(length=128), nullable=False),
        sa.Column("checksum_algorithm", sa.String(length=16), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("tags", JSONList(), nullable=False),
        sa.Column("related_documents", JSONList(), nullable=False),
        sa.Column("confidentiality_level", sa.String(length=32), nullable=True),
        sa.Column("uploaded_by", sa.String(length=255), nullable=True),
        sa.Column("upload_date", UTCDateTime(), nullable=False),
        sa.Column("last_accessed", UTCDateTime(), nullable=True),
        sa.Column("access_count", sa.Integer(), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False),
        sa.Column("retention_date", UTCDateTime(), nullable=False),
        sa.Column("approved_by", sa.String(length=255), nullable=True),
        sa.Column("approval_date", UTCDateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("updated_by", sa.String(length=255), nullable=True),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("documents_pkey")),
    )
    op.create_index("documents_client_upload_idx", "documents", ["client_id", "upload_date"])
    op.create_index("documents_category_idx", "documents", ["category"])


def downgrade() -> None:
    op.drop_index("documents_category_idx", table_name="documents")
    op.drop_index("documents_client_upload_idx", table_name="documents")
    op.drop_table("documents")
