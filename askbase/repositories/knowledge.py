"""
Knowledge Repository

Data access layer for the ASKBASE index.
Persists documents together with their chunk embeddings and exposes
the snapshot reads used by the linear-scan retrieval engine.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from askbase.models.orm import DocumentRecord, EmbeddingRecord

logger = logging.getLogger(__name__)


class KnowledgeRepository:
    """
    Repository for document and embedding persistence.

    All methods expect an externally managed ``AsyncSession``. Write
    methods only flush: the caller owns the transaction, so a document
    replacement (delete + insert) or a full rebuild (clear + insert)
    commits as one unit.
    """

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def add_document(
        self,
        session: AsyncSession,
        *,
        document: DocumentRecord,
        embeddings: list[EmbeddingRecord],
    ) -> DocumentRecord:
        """
        Stage a document and its embeddings in the current transaction.

        Args:
            session: Active async database session.
            document: DocumentRecord to persist.
            embeddings: EmbeddingRecords to attach (document_id is set here).

        Returns:
            The flushed document with its primary key populated.
        """
        session.add(document)
        await session.flush()

        for record in embeddings:
            record.document_id = document.id
        session.add_all(embeddings)
        await session.flush()

        logger.debug(
            "Staged document '%s' (id=%d) with %d embeddings",
            document.file_name,
            document.id,
            len(embeddings),
        )
        return document

    async def delete_document(self, session: AsyncSession, file_path: str) -> bool:
        """
        Delete a document and its embeddings by source path.

        Embeddings are deleted explicitly so the result does not depend on
        the backend enforcing ``ON DELETE CASCADE``.

        Returns:
            True if a document was deleted.
        """
        document_id = await session.scalar(
            select(DocumentRecord.id).where(DocumentRecord.file_path == file_path)
        )
        if document_id is None:
            return False

        await session.execute(
            delete(EmbeddingRecord).where(EmbeddingRecord.document_id == document_id)
        )
        await session.execute(delete(DocumentRecord).where(DocumentRecord.id == document_id))
        await session.flush()
        return True

    async def clear_all(self, session: AsyncSession) -> None:
        """Delete every embedding and document."""
        await session.execute(delete(EmbeddingRecord))
        await session.execute(delete(DocumentRecord))
        await session.flush()

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def get_document_by_path(
        self,
        session: AsyncSession,
        file_path: str,
    ) -> DocumentRecord | None:
        """Look up a document by its source path."""
        stmt = select(DocumentRecord).where(DocumentRecord.file_path == file_path)
        result = await session.execute(stmt)
        return result.scalars().first()

    async def list_documents_with_counts(
        self,
        session: AsyncSession,
    ) -> list[tuple[DocumentRecord, int]]:
        """All documents with their embedding counts, ordered by id."""
        stmt = (
            select(DocumentRecord, func.count(EmbeddingRecord.id))
            .outerjoin(EmbeddingRecord, EmbeddingRecord.document_id == DocumentRecord.id)
            .group_by(DocumentRecord.id)
            .order_by(DocumentRecord.id)
        )
        result = await session.execute(stmt)
        return [(row[0], int(row[1])) for row in result.all()]

    async def list_embeddings(
        self,
        session: AsyncSession,
        limit: int | None = None,
    ) -> Sequence[tuple[EmbeddingRecord, DocumentRecord]]:
        """
        Snapshot of stored embeddings joined with their documents.

        Ordered by ``(document_id, chunk_index)`` so scans over the
        snapshot are deterministic.
        """
        stmt = (
            select(EmbeddingRecord, DocumentRecord)
            .join(DocumentRecord, EmbeddingRecord.document_id == DocumentRecord.id)
            .order_by(EmbeddingRecord.document_id, EmbeddingRecord.chunk_index)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]

    async def get_embeddings_by_document(
        self,
        session: AsyncSession,
        document_id: int,
        limit: int | None = None,
    ) -> Sequence[EmbeddingRecord]:
        """Embeddings of one document, ordered by chunk index."""
        stmt = (
            select(EmbeddingRecord)
            .where(EmbeddingRecord.document_id == document_id)
            .order_by(EmbeddingRecord.chunk_index)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return result.scalars().all()

    async def count_documents(self, session: AsyncSession) -> int:
        result = await session.scalar(select(func.count()).select_from(DocumentRecord))
        return int(result or 0)

    async def count_embeddings(self, session: AsyncSession) -> int:
        result = await session.scalar(select(func.count()).select_from(EmbeddingRecord))
        return int(result or 0)


# Module-level singleton for convenience imports
knowledge_repository = KnowledgeRepository()
