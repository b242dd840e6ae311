"""
RAG Pipeline Orchestrator

Coordinates the question lifecycle: retrieval → sufficiency check →
context assembly → answer generation (or fallback) → follow-up
suggestions → conversation log.

This is the single entry point for the API layer. It composes the
individual services (KnowledgeStore, RetrievalEngine, ContextAssembler,
LLMService, AutoSuggestService, ConversationStore) into cohesive
workflows.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Final

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from askbase.core.config import Settings, settings
from askbase.models.schemas import (
    AnswerResult,
    ContextConfiguration,
    DocumentSnippet,
    FallbackSuggestion,
    RetrievalResult,
    SuggestedQuestion,
)
from askbase.services.chunking import SemanticChunker
from askbase.services.context import ContextAssembler
from askbase.services.conversation import AI_SENDER, USER_SENDER, ConversationStore
from askbase.services.knowledge_store import KnowledgeStore
from askbase.services.llm import LLMService
from askbase.services.retrieval import RetrievalEngine
from askbase.services.suggestions import AutoSuggestService
from askbase.services.vector import EmbeddingProvider, build_embedder

logger = logging.getLogger(__name__)

INVALID_QUESTION_MESSAGE: Final[str] = "Please enter a valid question."
ASSISTANT_SOURCE: Final[str] = "AI Assistant"
SYSTEM_SOURCE: Final[str] = "System"


class RAGPipeline:
    """
    Orchestrates indexing and question answering.

    **Indexing** (``load_folder``):
        folder → KnowledgeStore (extract → chunk → embed → persist)

    **Answering** (``ask``):
        question → RetrievalEngine → ContextAssembler → LLMService
        → AutoSuggestService, or the fallback text when retrieval is
        too weak to ground an answer.

    Usage::

        pipeline = RAGPipeline(get_session_factory())
        await pipeline.load_folder("./docs")
        result = await pipeline.ask("What is the return window?")

    Args:
        session_factory: Async session maker bound to the index database.
        embedder: Embedding provider (default selected by EMBEDDING_BACKEND).
        llm: Generative model client (default Ollama from config).
        config: Context assembly configuration (default from config).
        app_settings: Settings the defaults are built from.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedder: EmbeddingProvider | None = None,
        llm: LLMService | None = None,
        config: ContextConfiguration | None = None,
        app_settings: Settings | None = None,
    ) -> None:
        cfg = app_settings or settings
        self._settings = cfg
        self._config = config or ContextConfiguration.from_settings(cfg)

        self.store = KnowledgeStore(
            session_factory,
            SemanticChunker(),
            embedder or build_embedder(cfg),
        )
        self.engine = RetrievalEngine(self.store)
        self.assembler = ContextAssembler(self._config, cfg.SUFFICIENCY_THRESHOLD)
        self.conversations = ConversationStore(session_factory)
        self.llm = llm or LLMService()
        self.suggestions = AutoSuggestService(self.llm, self.conversations)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def load_folder(self, folder_path: str | Path) -> int:
        """
        Rebuild the index from a folder.

        Returns:
            Number of documents indexed.

        Raises:
            FileNotFoundError: If the folder does not exist.
        """
        return await self.store.process_folder(folder_path)

    # ------------------------------------------------------------------
    # Answering
    # ------------------------------------------------------------------

    async def ask(self, question: str, conversation_id: str | None = None) -> AnswerResult:
        """
        Answer a question from the indexed documents.

        The model is only called when the retrieved context is
        sufficient; otherwise the answer lists topics the knowledge base
        does cover. When ``conversation_id`` is given, recent turns feed
        the context and the exchange is appended to that conversation.
        """
        query = (question or "").strip()
        if not query:
            return AnswerResult(
                question="",
                answer=INVALID_QUESTION_MESSAGE,
                source=SYSTEM_SOURCE,
                is_fallback=True,
            )

        results = await self.engine.retrieve(
            query,
            max_chunks=self._settings.RETRIEVAL_MAX_CHUNKS,
            min_similarity=self._config.min_similarity_threshold,
        )
        source_documents = self._source_documents(results)

        if self.assembler.has_sufficient_context(results):
            answer = await self._answer_with_model(query, results, conversation_id)
        else:
            answer = await self._answer_with_fallback(query)
        answer.source_documents = source_documents

        logger.info(
            "Answered '%s' (source=%s, fallback=%s, %d chunks)",
            query[:50],
            answer.source,
            answer.is_fallback,
            len(results),
        )

        if conversation_id is not None:
            await self.conversations.add_message(
                conversation_id, USER_SENDER, query, question=query
            )
            await self.conversations.add_message(
                conversation_id,
                AI_SENDER,
                answer.answer,
                question=query,
                answer=answer.answer,
            )
        return answer

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _answer_with_model(
        self,
        query: str,
        results: list[RetrievalResult],
        conversation_id: str | None,
    ) -> AnswerResult:
        history = ""
        if conversation_id is not None and self._config.include_conversation_history:
            history = await self.conversations.get_context(
                conversation_id, self._config.max_conversation_turns
            )

        context = self.assembler.build_context(query, results, conversation_context=history)
        response = await self.llm.generate_answer(query, context)
        if response.is_fallback:
            return AnswerResult(
                question=query,
                answer=response.content,
                source=SYSTEM_SOURCE,
                is_fallback=True,
            )

        snippets = self._snippets(results)
        suggested = await self.suggestions.generate_suggestions(
            query, response.content, snippets
        )
        return AnswerResult(
            question=query,
            answer=response.content,
            source=ASSISTANT_SOURCE,
            snippets=snippets,
            suggested_questions=suggested,
            is_fallback=False,
        )

    async def _answer_with_fallback(self, query: str) -> AnswerResult:
        fallback: list[FallbackSuggestion] = []
        if self._config.enable_fallback_suggestions:
            fallback = await self.engine.get_fallback_suggestions(
                query, self._settings.MAX_FALLBACK_SUGGESTIONS
            )
        has_documents = await self.store.count_documents() > 0
        text = self.assembler.format_fallback_response(query, fallback, has_documents)

        suggested = [
            SuggestedQuestion(
                question=f"What can you tell me about {suggestion.topic}?",
                relevance_score=min(1.0, suggestion.relevance_score),
                category="topic",
            )
            for suggestion in fallback[:3]
        ]
        return AnswerResult(
            question=query,
            answer=text,
            source=SYSTEM_SOURCE,
            suggested_questions=suggested,
            is_fallback=True,
        )

    @staticmethod
    def _source_documents(results: Sequence[RetrievalResult]) -> list[str]:
        seen: dict[str, None] = {}
        for result in results:
            seen.setdefault(result.chunk.source_document, None)
        return list(seen)

    @staticmethod
    def _snippets(results: Sequence[RetrievalResult]) -> list[DocumentSnippet]:
        return [
            DocumentSnippet(
                file_name=Path(result.chunk.file_path).name,
                file_path=result.chunk.file_path,
                snippet_text=result.chunk.content,
                relevance_score=result.similarity_score,
                start_index=0,
                end_index=len(result.chunk.content),
            )
            for result in results
        ]
