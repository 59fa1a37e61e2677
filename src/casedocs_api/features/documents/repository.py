"""Persistence helpers for document metadata."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import Select, case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Document

RECENT_UPLOAD_WINDOW = timedelta(days=7)
RETENTION_ALERT_WINDOW = timedelta(days=30)


@dataclass(frozen=True, slots=True)
class DocumentFilters:
    category: str | None = None
    is_archived: bool | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True, slots=True)
class SummaryRow:
    total_documents: int
    total_file_size: int
    average_file_size: float
    recent_uploads: int
    pending_approvals: int
    archived_documents: int
    last_upload: datetime | None
    retention_alerts: int
    most_accessed_file_name: str | None


class DocumentsRepository:
    """Query helper responsible for document rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def insert(self, document: Document) -> Document:
        self._session.add(document)
        await self._session.flush()
        return document

    async def get_by_id(self, document_id: UUID) -> Document | None:
        return await self._session.get(Document, document_id)

    async def list_by_client(self, client_id: str, filters: DocumentFilters) -> list[Document]:
        """Return a page of ``client_id``'s documents, most recent first."""

        stmt: Select[tuple[Document]] = (
            select(Document)
            .where(Document.client_id == client_id)
            .order_by(Document.upload_date.desc(), Document.id.desc())
        )
        if filters.category is not None:
            stmt = stmt.where(Document.category == filters.category)
        if filters.is_archived is not None:
            stmt = stmt.where(Document.is_archived == filters.is_archived)
        stmt = stmt.offset(filters.offset).limit(filters.limit)

        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update(self, document_id: UUID, values: Mapping[str, Any]) -> Document | None:
        document = await self.get_by_id(document_id)
        if document is None:
            return None
        for name, value in values.items():
            setattr(document, name, value)
        await self._session.flush()
        return document

    async def delete(self, document_id: UUID) -> bool:
        result = await self._session.execute(delete(Document).where(Document.id == document_id))
        return bool(result.rowcount)

    async def record_access(self, document_id: UUID, *, accessed_at: datetime) -> bool:
        """Increment the access counter in place; the row is never read back."""

        result = await self._session.execute(
            update(Document)
            .where(Document.id == document_id)
            .values(
                access_count=Document.access_count + 1,
                last_accessed=accessed_at,
            )
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    async def count_by_category(self, client_id: str) -> dict[str, int]:
        stmt = (
            select(Document.category, func.count())
            .where(Document.client_id == client_id, ~Document.is_archived)
            .group_by(Document.category)
        )
        result = await self._session.execute(stmt)
        return {category: int(count) for category, count in result.all()}

    async def summary(self, client_id: str, *, now: datetime) -> SummaryRow:
        def _count_where(condition) -> Any:
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        stmt = select(
            func.count(),
            func.coalesce(func.sum(Document.file_size_bytes), 0),
            func.coalesce(func.avg(Document.file_size_bytes), 0),
            _count_where(Document.upload_date >= now - RECENT_UPLOAD_WINDOW),
            _count_where(Document.approved_by.is_(None)),
            _count_where(Document.is_archived),
            func.max(Document.upload_date),
            _count_where(Document.retention_date <= now + RETENTION_ALERT_WINDOW),
        ).where(Document.client_id == client_id)
        row = (await self._session.execute(stmt)).one()

        most_accessed = await self._session.scalar(
            select(Document.original_file_name)
            .where(Document.client_id == client_id)
            .order_by(Document.access_count.desc(), Document.upload_date.desc())
            .limit(1)
        )

        return SummaryRow(
            total_documents=int(row[0]),
            total_file_size=int(row[1]),
            average_file_size=float(row[2]),
            recent_uploads=int(row[3]),
            pending_approvals=int(row[4]),
            archived_documents=int(row[5]),
            last_upload=row[6],
            retention_alerts=int(row[7]),
            most_accessed_file_name=most_accessed,
        )


__all__ = ["DocumentFilters", "DocumentsRepository", "SummaryRow"]
