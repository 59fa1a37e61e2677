"""ORM model for stored client documents."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from casedocs_api.db import Base, JSONList, UTCDateTime, UUIDType, new_uuid, utc_now


class Document(Base):
    """Metadata row describing one blob in the document store."""

    __tablename__ = "documents"

    id: Mapped[UUID] = mapped_column(UUIDType(), primary_key=True, default=new_uuid)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    original_file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    stored_file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    checksum: Mapped[str] = mapped_column(String(128), nullable=False)
    checksum_algorithm: Mapped[str] = mapped_column(String(16), nullable=False, default="sha256")

    category: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONList(), nullable=False, default=list)
    related_documents: Mapped[list[str]] = mapped_column(
        JSONList(),
        nullable=False,
        default=list,
    )
    confidentiality_level: Mapped[str | None] = mapped_column(String(32), nullable=True)
    uploaded_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    upload_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)
    last_accessed: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    retention_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approval_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)

    @property
    def document_id(self) -> UUID:
        return self.id

    __table_args__ = (
        Index("documents_client_upload_idx", "client_id", "upload_date"),
        Index("documents_category_idx", "category"),
    )


__all__ = ["Document"]
