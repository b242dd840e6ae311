"""
Knowledge Store

Persistent index of documents and their chunk embeddings.

Pipeline per file:
    1. Extract    — FileProcessor (text + metadata, placeholder on failure)
    2. Chunk      — SemanticChunker
    3. Embed      — EmbeddingProvider
    4. Persist    — KnowledgeRepository, one transaction per write

Consistency:
    - Every write (single-file replacement or full folder rebuild) is one
      transaction, so readers never observe a half-replaced document.
    - A folder rebuild prepares every document before touching the
      database; cancelling it before the commit leaves the previous
      index intact.
    - Calls for the same path are serialised; a rebuild excludes all
      single-file writes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import numpy as np
import numpy.typing as npt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from askbase.models.orm import MAX_TEXT_CHUNK_LENGTH, DocumentRecord, EmbeddingRecord
from askbase.models.schemas import (
    DocumentSnippet,
    DocumentSummary,
    SemanticChunk,
    SourceDocument,
)
from askbase.repositories.knowledge import KnowledgeRepository, knowledge_repository
from askbase.services.chunking import SemanticChunker, detect_chunk_type, estimate_token_count
from askbase.services.ingestion import FileProcessor, is_supported
from askbase.services.vector import EmbeddingProvider, Vector, pack_vector, unpack_vector

logger = logging.getLogger(__name__)

MIN_SNIPPET_SIMILARITY: float = 0.1
DOCUMENT_VALIDATION_THRESHOLD: float = 0.1


def normalize_path(path: str | Path) -> Path:
    """Canonical absolute form used as the document key."""
    return Path(path).expanduser().resolve()


# ---------------------------------------------------------------------------
# Snapshot of stored embeddings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IndexedChunk:
    """A stored chunk, detached from the database session."""

    document_id: int
    chunk_index: int
    title: str
    file_name: str
    file_path: str
    text: str
    headers: tuple[str, ...]

    @property
    def key(self) -> tuple[int, int]:
        return (self.document_id, self.chunk_index)

    def to_chunk(self, relevance_score: float | None = None) -> SemanticChunk:
        return SemanticChunk(
            id=f"{self.document_id}:{self.chunk_index}",
            content=self.text,
            source_document=self.title,
            file_path=self.file_path,
            chunk_index=self.chunk_index,
            token_count=estimate_token_count(self.text),
            type=detect_chunk_type(self.text),
            headers=self.headers,
            relevance_score=relevance_score,
        )


class EmbeddingSnapshot:
    """
    Immutable in-memory view of the stored embeddings.

    Holds the chunks in ``(document_id, chunk_index)`` order and a
    ``(n, dimensions)`` float32 matrix for vectorised cosine scans.
    """

    def __init__(self, chunks: list[IndexedChunk], matrix: npt.NDArray[np.float32]) -> None:
        self.chunks = chunks
        self._matrix = matrix
        self._norms = np.linalg.norm(matrix, axis=1) if len(chunks) else np.zeros(0)

    def __len__(self) -> int:
        return len(self.chunks)

    def score(self, query: Vector) -> npt.NDArray[np.float64]:
        """
        Cosine similarity of ``query`` against every stored vector.

        CPU-bound: call via ``asyncio.to_thread``. Zero-magnitude
        vectors score 0.0.

        Raises:
            ValueError: On a dimension mismatch with the query.
        """
        if not self.chunks:
            return np.zeros(0)
        query = np.asarray(query, dtype=np.float32)
        if query.shape[0] != self._matrix.shape[1]:
            raise ValueError(
                f"Vector dimension mismatch: {query.shape[0]} != {self._matrix.shape[1]}"
            )
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            return np.zeros(len(self.chunks))

        dots = self._matrix @ query
        denominators = self._norms * query_norm
        scores = np.divide(
            dots,
            denominators,
            out=np.zeros(len(self.chunks), dtype=np.float64),
            where=denominators > 0,
        )
        return np.clip(scores, -1.0, 1.0)


@dataclass
class _PreparedDocument:
    """A document extracted, chunked and embedded, ready to be written."""

    source: SourceDocument
    chunks: list[SemanticChunk]
    vectors: list[Vector]

    def to_records(self, model_version: str) -> tuple[DocumentRecord, list[EmbeddingRecord]]:
        document = DocumentRecord(
            file_path=self.source.file_path,
            file_name=self.source.file_name,
            file_type=self.source.file_type,
            file_size_bytes=self.source.file_size_bytes,
            last_modified=self.source.last_modified,
            language="en",
        )
        embeddings = [
            EmbeddingRecord(
                chunk_index=chunk.chunk_index,
                text_chunk=chunk.content[:MAX_TEXT_CHUNK_LENGTH],
                headers=list(chunk.headers),
                vector=pack_vector(vector),
                vector_dimensions=int(vector.shape[0]),
                model_version=model_version,
            )
            for chunk, vector in zip(self.chunks, self.vectors, strict=True)
        ]
        return document, embeddings


class _RebuildGate:
    """
    Many concurrent single-file writers, or one exclusive rebuild.

    A waiting rebuild blocks new writers from entering.
    """

    def __init__(self) -> None:
        self._condition = asyncio.Condition()
        self._writers = 0
        self._rebuilding = False
        self._pending_rebuilds = 0

    @contextlib.asynccontextmanager
    async def shared(self) -> AsyncIterator[None]:
        async with self._condition:
            await self._condition.wait_for(
                lambda: not self._rebuilding and self._pending_rebuilds == 0
            )
            self._writers += 1
        try:
            yield
        finally:
            async with self._condition:
                self._writers -= 1
                self._condition.notify_all()

    @contextlib.asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        async with self._condition:
            self._pending_rebuilds += 1
            try:
                await self._condition.wait_for(
                    lambda: not self._rebuilding and self._writers == 0
                )
            finally:
                self._pending_rebuilds -= 1
                self._condition.notify_all()
            self._rebuilding = True
        try:
            yield
        finally:
            async with self._condition:
                self._rebuilding = False
                self._condition.notify_all()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class KnowledgeStore:
    """
    Indexes source files and answers similarity lookups over them.

    Usage::

        store = KnowledgeStore(session_factory, SemanticChunker(), HashingEmbedder())
        await store.process_folder("./docs")
        snippets = await store.find_relevant_chunks("return window")

    Args:
        session_factory: Async session maker bound to the index database.
        chunker: Splits extracted text into chunks.
        embedder: Produces the stored vectors; its dimensionality and
            model version are recorded next to every vector.
        source: Document source (file discovery and extraction).
        repository: Data access object.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        chunker: SemanticChunker,
        embedder: EmbeddingProvider,
        source: FileProcessor | None = None,
        repository: KnowledgeRepository | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._chunker = chunker
        self._embedder = embedder
        self._source = source or FileProcessor()
        self._repository = repository or knowledge_repository
        self._path_locks: dict[str, asyncio.Lock] = {}
        self._path_lock_users: dict[str, int] = {}
        self._gate = _RebuildGate()

    @property
    def embedder(self) -> EmbeddingProvider:
        return self._embedder

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def process_folder(self, folder_path: str | Path) -> int:
        """
        Rebuild the whole index from the supported files in a folder.

        Files that fail to process are logged and skipped. The clear and
        the inserts commit together.

        Returns:
            Number of documents indexed.

        Raises:
            FileNotFoundError: If the folder does not exist.
        """
        folder = normalize_path(folder_path)
        async with self._gate.exclusive():
            files = await self._source.discover(folder)
            self._source.clear_cache()

            prepared: list[_PreparedDocument] = []
            for path in files:
                try:
                    prepared.append(await self._prepare(path))
                except Exception:
                    logger.exception("Skipping %s: processing failed", path)

            async with self._session_factory() as session, session.begin():
                await self._repository.clear_all(session)
                for item in prepared:
                    document, embeddings = item.to_records(self._embedder.model_version)
                    await self._repository.add_document(
                        session, document=document, embeddings=embeddings
                    )

        logger.info(
            "Indexed folder %s: %d documents, %d chunks",
            folder,
            len(prepared),
            sum(len(item.chunks) for item in prepared),
        )
        for item in prepared:
            await self._validate_document(item)
        return len(prepared)

    async def process_file(self, file_path: str | Path) -> bool:
        """
        Index or re-index a single file.

        The file is only re-processed when its mtime is strictly newer
        than the stored one.

        Returns:
            True if the document was (re)indexed, False if it was current.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file type is not supported.
        """
        path = normalize_path(file_path)
        key = str(path)

        async with self._gate.shared(), self._path_lock(key):
            if not await asyncio.to_thread(path.is_file):
                raise FileNotFoundError(f"File not found: {path}")
            if not is_supported(path):
                raise ValueError(f"Unsupported file type: '{path.suffix.lower()}'")

            stored = await self.last_processed(key)
            stat = await asyncio.to_thread(path.stat)
            modified = datetime.fromtimestamp(stat.st_mtime, tz=UTC)
            if stored is not None and modified <= stored:
                logger.debug("Skipping %s: already up to date", path.name)
                return False

            prepared = await self._prepare(path)
            document, embeddings = prepared.to_records(self._embedder.model_version)
            async with self._session_factory() as session, session.begin():
                replaced = await self._repository.delete_document(session, key)
                await self._repository.add_document(
                    session, document=document, embeddings=embeddings
                )

        logger.info(
            "%s document '%s' (%d chunks)",
            "Re-indexed" if replaced else "Indexed",
            prepared.source.file_name,
            len(prepared.chunks),
        )
        await self._validate_document(prepared)
        return True

    async def delete_file(self, file_path: str | Path) -> bool:
        """
        Remove a document and its embeddings.

        Returns:
            True if a document was removed.
        """
        path = normalize_path(file_path)
        key = str(path)
        async with self._gate.shared(), self._path_lock(key):
            async with self._session_factory() as session, session.begin():
                deleted = await self._repository.delete_document(session, key)
            self._source.invalidate(path)

        if deleted:
            logger.info("Removed document %s", path)
        return deleted

    # Command interface for an external folder watcher

    async def on_file_added(self, file_path: str | Path) -> bool:
        return await self.process_file(file_path)

    async def on_file_changed(self, file_path: str | Path) -> bool:
        return await self.process_file(file_path)

    async def on_file_deleted(self, file_path: str | Path) -> bool:
        return await self.delete_file(file_path)

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def find_relevant_chunks(
        self,
        question: str,
        max_results: int = 5,
    ) -> list[DocumentSnippet]:
        """
        Stored chunks most similar to ``question``.

        Only chunks scoring strictly above 0.1 are returned, best first.
        """
        if not question or not question.strip() or max_results <= 0:
            return []

        snapshot = await self.load_snapshot()
        if not snapshot:
            return []

        query_vector = await self._embedder.embed(question)
        scores = await asyncio.to_thread(snapshot.score, query_vector)

        ranked = sorted(
            (
                (float(score), chunk)
                for score, chunk in zip(scores, snapshot.chunks, strict=True)
                if score > MIN_SNIPPET_SIMILARITY
            ),
            key=lambda pair: (-pair[0], pair[1].key),
        )
        return [
            DocumentSnippet(
                file_name=chunk.file_name,
                file_path=chunk.file_path,
                snippet_text=chunk.text,
                relevance_score=score,
                start_index=0,
                end_index=len(chunk.text),
            )
            for score, chunk in ranked[:max_results]
        ]

    async def load_snapshot(self, limit: int | None = None) -> EmbeddingSnapshot:
        """
        Read stored embeddings into a snapshot for scanning.

        Records whose vector is corrupt, or whose dimensionality or model
        version differs from the current embedder, are skipped.
        """
        async with self._session_factory() as session:
            rows = await self._repository.list_embeddings(session, limit=limit)

        dimensions = self._embedder.dimensions
        model_version = self._embedder.model_version
        chunks: list[IndexedChunk] = []
        vectors: list[Vector] = []
        skipped = 0

        for record, document in rows:
            if (
                record.vector_dimensions != dimensions
                or record.model_version != model_version
            ):
                skipped += 1
                continue
            try:
                vector = unpack_vector(record.vector, record.vector_dimensions)
            except ValueError as e:
                logger.warning("Skipping embedding %d: %s", record.id, e)
                skipped += 1
                continue
            chunks.append(
                IndexedChunk(
                    document_id=record.document_id,
                    chunk_index=record.chunk_index,
                    title=Path(document.file_name).stem,
                    file_name=document.file_name,
                    file_path=document.file_path,
                    text=record.text_chunk,
                    headers=tuple(record.headers or ()),
                )
            )
            vectors.append(vector)

        if skipped:
            logger.warning(
                "Skipped %d stored embeddings incompatible with %s (%d dims)",
                skipped,
                model_version,
                dimensions,
            )

        matrix = (
            np.vstack(vectors).astype(np.float32)
            if vectors
            else np.zeros((0, dimensions), dtype=np.float32)
        )
        return EmbeddingSnapshot(chunks, matrix)

    async def get_document_chunks(
        self,
        document_id: int,
        limit: int | None = None,
    ) -> list[str]:
        """Stored chunk texts of one document, in chunk order."""
        async with self._session_factory() as session:
            records = await self._repository.get_embeddings_by_document(
                session, document_id, limit=limit
            )
        return [record.text_chunk for record in records]

    async def get_all_documents(self) -> list[DocumentSummary]:
        async with self._session_factory() as session:
            rows = await self._repository.list_documents_with_counts(session)
        return [
            DocumentSummary(
                id=document.id,
                file_name=document.file_name,
                file_path=document.file_path,
                file_type=document.file_type,
                file_size_bytes=document.file_size_bytes,
                last_modified=document.last_modified,
                chunk_count=count,
            )
            for document, count in rows
        ]

    async def is_processed(self, file_path: str | Path) -> bool:
        return await self.last_processed(file_path) is not None

    async def last_processed(self, file_path: str | Path) -> datetime | None:
        """Stored modification time of a document, or None if not indexed."""
        key = str(normalize_path(file_path))
        async with self._session_factory() as session:
            document = await self._repository.get_document_by_path(session, key)
        return document.last_modified if document is not None else None

    async def count_documents(self) -> int:
        async with self._session_factory() as session:
            return await self._repository.count_documents(session)

    async def count_embeddings(self) -> int:
        async with self._session_factory() as session:
            return await self._repository.count_embeddings(session)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _path_lock(self, key: str) -> AsyncIterator[None]:
        """Serialise writes to one path; the lock is dropped once nobody holds or awaits it."""
        lock = self._path_locks.setdefault(key, asyncio.Lock())
        self._path_lock_users[key] = self._path_lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._path_lock_users[key] -= 1
            if not self._path_lock_users[key]:
                del self._path_lock_users[key]
                del self._path_locks[key]

    async def _prepare(self, path: Path) -> _PreparedDocument:
        """Extract, chunk and embed one file without touching the database."""
        source = await self._source.load(path)
        chunks = await asyncio.to_thread(
            self._chunker.chunk,
            source.content,
            Path(source.file_name).stem,
            source.file_path,
        )
        vectors = await self._embedder.embed_many([chunk.content for chunk in chunks])
        return _PreparedDocument(source=source, chunks=chunks, vectors=vectors)

    async def _validate_document(self, prepared: _PreparedDocument) -> None:
        """Compare the file stem with the document's vectors and log the outcome."""
        name = prepared.source.file_name
        try:
            name_vector = await self._embedder.embed(Path(name).stem)
            best = max(
                (self._embedder.similarity(name_vector, vector) for vector in prepared.vectors),
                default=0.0,
            )
        except ValueError as e:
            logger.warning("Embedding validation failed for '%s': %s", name, e)
            return

        if best < DOCUMENT_VALIDATION_THRESHOLD:
            logger.warning(
                "Low embedding similarity for document '%s' (max=%.3f)", name, best
            )
        else:
            logger.debug("Embedding validation passed for '%s' (max=%.3f)", name, best)

