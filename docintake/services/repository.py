"""
DocumentRepository — persistence collaborator for the extraction pipeline.

Each public method runs in its own short transaction: the pipeline holds no
session across provider calls (which can take a minute), so connections go
back to the pool between steps.

Write semantics:
  - ExtractedData: replace (delete existing row, insert new one)
  - CostMetrics:   upsert keyed by document_id
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintake.models.documents import (
    BatchJob,
    CostMetrics,
    Document,
    ExtractedData,
)

logger = logging.getLogger(__name__)


class DocumentRepository:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    # -----------------------------------------------------------------------
    # Documents
    # -----------------------------------------------------------------------

    async def get_document(self, document_id: str) -> Optional[Document]:
        async with self._session_factory() as session:
            return await session.get(Document, document_id)

    async def create_document(self, **fields: Any) -> Document:
        doc = Document(**fields)
        async with self._transaction() as session:
            session.add(doc)
        logger.debug("Repository | document created id=%s", doc.id)
        return doc

    async def update_document(self, document_id: str, **fields: Any) -> Optional[Document]:
        async with self._transaction() as session:
            doc = await session.get(Document, document_id)
            if doc is None:
                return None
            for key, value in fields.items():
                setattr(doc, key, value)
        return doc

    # -----------------------------------------------------------------------
    # Extracted data
    # -----------------------------------------------------------------------

    async def get_extracted_data(self, document_id: str) -> Optional[ExtractedData]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ExtractedData).where(ExtractedData.document_id == document_id)
            )
            return result.scalars().first()

    async def replace_extracted_data(self, document_id: str, **fields: Any) -> ExtractedData:
        row = ExtractedData(document_id=document_id, **fields)
        async with self._transaction() as session:
            await session.execute(
                delete(ExtractedData).where(ExtractedData.document_id == document_id)
            )
            session.add(row)
        return row

    # -----------------------------------------------------------------------
    # Cost metrics
    # -----------------------------------------------------------------------

    async def upsert_cost_metrics(self, document_id: str, **fields: Any) -> CostMetrics:
        async with self._transaction() as session:
            result = await session.execute(
                select(CostMetrics).where(CostMetrics.document_id == document_id)
            )
            row = result.scalars().first()
            if row is None:
                row = CostMetrics(document_id=document_id, **fields)
                session.add(row)
            else:
                for key, value in fields.items():
                    setattr(row, key, value)
        return row

    async def get_cost_metrics(self, document_id: str) -> Optional[CostMetrics]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CostMetrics).where(CostMetrics.document_id == document_id)
            )
            return result.scalars().first()

    async def list_cost_metrics(self, since: Optional[datetime] = None) -> list[CostMetrics]:
        stmt = select(CostMetrics).order_by(CostMetrics.created_at)
        if since is not None:
            stmt = stmt.where(CostMetrics.created_at >= since)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # -----------------------------------------------------------------------
    # Batch jobs
    # -----------------------------------------------------------------------

    async def create_batch_job(self, **fields: Any) -> BatchJob:
        job = BatchJob(**fields)
        async with self._transaction() as session:
            session.add(job)
        return job

    async def get_batch_job(self, batch_id: str) -> Optional[BatchJob]:
        async with self._session_factory() as session:
            return await session.get(BatchJob, batch_id)

    async def update_batch_job(self, batch_id: str, **fields: Any) -> Optional[BatchJob]:
        async with self._transaction() as session:
            job = await session.get(BatchJob, batch_id)
            if job is None:
                return None
            for key, value in fields.items():
                setattr(job, key, value)
        return job

