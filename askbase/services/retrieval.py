"""
Retrieval Engine

Multi-query similarity search over the knowledge store.

Algorithm (per call):
    1. Expand the question (QueryExpander).
    2. Read one snapshot of every stored embedding.
    3. For each expansion: embed, score the whole snapshot (vectorised
       cosine in a worker thread), keep scores >= min_similarity, take
       the top ``max_chunks``, multiply by the expansion weight.
    4. Merge by chunk identity keeping the MAXIMUM weighted score,
       sort descending (ties by document id, then chunk index) and
       truncate to ``max_chunks``.

Scale assumption: a flat scan over all vectors, no ANN index.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from pathlib import Path
from typing import Final

import numpy as np

from askbase.models.schemas import (
    EmbeddingValidationResult,
    FallbackSuggestion,
    QueryType,
    RetrievalResult,
)
from askbase.services.knowledge_store import KnowledgeStore
from askbase.services.query_expansion import QueryExpander, extract_keywords

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNKS: Final[int] = 10
DEFAULT_MIN_SIMILARITY: Final[float] = 0.1
VALIDATION_SAMPLE_SIZE: Final[int] = 100
VALIDATION_MIN_SIMILARITY: Final[float] = 0.1
DEFAULT_VALIDATION_QUERIES: Final[tuple[str, ...]] = (
    "introduction",
    "summary",
    "overview",
    "main topic",
    "key points",
)


class RetrievalEngine:
    """
    Ranks stored chunks against a question and its expansions.

    Usage::

        engine = RetrievalEngine(store)
        results = await engine.retrieve("What is the return window?")
        for r in results:
            print(r.similarity_score, r.chunk.source_document)

    Args:
        store: Knowledge store holding the embeddings.
        expander: Query expander (rule-based default).
    """

    def __init__(self, store: KnowledgeStore, expander: QueryExpander | None = None) -> None:
        self._store = store
        self._expander = expander or QueryExpander()

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def retrieve(
        self,
        query: str,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ) -> list[RetrievalResult]:
        """
        Retrieve the chunks most relevant to ``query``.

        A failing expansion is logged and skipped; the others still count.

        Returns:
            At most ``max_chunks`` results, best first. Blank queries and
            an empty store yield an empty list.
        """
        if not query or not query.strip() or max_chunks <= 0:
            return []

        expansions = self._expander.expand(query)
        snapshot = await self._store.load_snapshot()
        if not snapshot:
            logger.info("Retrieval skipped: no embeddings stored")
            return []

        embedder = self._store.embedder
        merged: dict[tuple[int, int], RetrievalResult] = {}

        for expansion in expansions:
            try:
                vector = await embedder.embed(expansion.query)
                scores = await asyncio.to_thread(snapshot.score, vector)
            except Exception:
                logger.exception("Expansion '%s' failed, skipping", expansion.query)
                continue

            candidates = np.flatnonzero(scores >= min_similarity)
            # Snapshot order is (document_id, chunk_index): index breaks ties
            top = sorted(candidates, key=lambda i: (-scores[i], i))[:max_chunks]

            for position in top:
                indexed = snapshot.chunks[position]
                weighted = float(scores[position]) * expansion.weight
                current = merged.get(indexed.key)
                if current is None or weighted > current.similarity_score:
                    merged[indexed.key] = RetrievalResult(
                        chunk=indexed.to_chunk(weighted),
                        similarity_score=weighted,
                        source_query=expansion.query,
                        is_from_expanded_query=expansion.type != QueryType.ORIGINAL,
                        document_id=indexed.document_id,
                    )

        ranked = sorted(
            merged.values(),
            key=lambda r: (-r.similarity_score, r.document_id or 0, r.chunk.chunk_index),
        )[:max_chunks]

        logger.info(
            "Retrieved %d chunks for '%s' (%d expansions, %d stored)",
            len(ranked),
            query.strip(),
            len(expansions),
            len(snapshot),
        )
        return ranked

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate_embeddings(
        self,
        test_queries: list[str] | None = None,
    ) -> EmbeddingValidationResult:
        """
        Smoke-test the stored embeddings with a battery of generic queries.

        Scores each query against the first 100 stored embeddings. Never
        raises: problems are accumulated in ``errors``.
        """
        result = EmbeddingValidationResult()
        queries = test_queries or list(DEFAULT_VALIDATION_QUERIES)

        try:
            result.total_embeddings = await self._store.count_embeddings()
            if result.total_embeddings == 0:
                result.errors.append("No embeddings found in database")
                return result

            snapshot = await self._store.load_snapshot(limit=VALIDATION_SAMPLE_SIZE)
            result.tested_embeddings = len(snapshot)
            if not snapshot:
                result.errors.append("No embeddings compatible with the current embedding model")
                return result

            total_max = 0.0
            tested = 0
            for test_query in queries:
                try:
                    vector = await self._store.embedder.embed(test_query)
                    scores = await asyncio.to_thread(snapshot.score, vector)
                except Exception as e:
                    result.errors.append(f"Error testing query '{test_query}': {e}")
                    continue

                max_similarity = float(scores.max())
                avg_similarity = float(scores.mean())
                result.test_results.append(
                    f"Query '{test_query}': Max similarity = {max_similarity:.3f}, "
                    f"Avg similarity = {avg_similarity:.3f}"
                )
                total_max += max_similarity
                tested += 1

                if max_similarity < VALIDATION_MIN_SIMILARITY:
                    result.errors.append(
                        f"No good matches found for test query: '{test_query}' "
                        f"(max similarity: {max_similarity:.3f})"
                    )

            result.average_similarity = total_max / tested if tested else 0.0
            result.is_valid = (
                not result.errors and result.average_similarity > VALIDATION_MIN_SIMILARITY
            )
        except Exception as e:
            logger.exception("Embedding validation failed")
            result.is_valid = False
            result.errors.append(f"Validation failed: {e}")

        return result

    # ------------------------------------------------------------------
    # Fallback suggestions
    # ------------------------------------------------------------------

    async def get_fallback_suggestions(
        self,
        query: str,
        max_suggestions: int = 5,
    ) -> list[FallbackSuggestion]:
        """
        Topics the knowledge base can speak to, for weak-retrieval answers.

        Built from keyword frequency over file names and the opening
        chunks of each document; ``query`` is not scored against them.
        Errors are logged and yield an empty list.
        """
        if max_suggestions <= 0:
            return []

        try:
            documents = await self._store.get_all_documents()
            if not documents:
                return []

            chunks_by_doc = {
                document.id: await self._store.get_document_chunks(document.id)
                for document in documents
            }

            counts: Counter[str] = Counter()
            for document in documents:
                counts.update(extract_keywords(Path(document.file_name).stem))
                for text in chunks_by_doc[document.id][:3]:
                    counts.update(extract_keywords(text)[:10])

            topics = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
            suggestions: list[FallbackSuggestion] = []
            for topic, count in topics[:max_suggestions]:
                related = [
                    document
                    for document in documents
                    if topic in document.file_name.lower()
                    or any(topic in text.lower() for text in chunks_by_doc[document.id])
                ][:3]
                suggestions.append(
                    FallbackSuggestion(
                        topic=topic,
                        description=f"Information about {topic}",
                        source_document=related[0].file_name if related else "Multiple documents",
                        relevance_score=count / len(documents),
                        related_chunks=[
                            text[:100] + "..."
                            for document in related
                            for text in chunks_by_doc[document.id][:2]
                        ],
                    )
                )
        except Exception:
            logger.exception("Failed to build fallback suggestions for '%s'", query)
            return []

        return suggestions
