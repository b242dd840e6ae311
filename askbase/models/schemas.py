"""
ASKBASE Domain Schemas

Pydantic models for the data flowing through the retrieval pipeline:
source documents, semantic chunks, expanded queries, retrieval results,
fallback suggestions and the context-assembly configuration.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from askbase.core.config import Settings

DEFAULT_SYSTEM_PROMPT: str = (
    "You are a helpful AI assistant that answers questions based on the "
    "provided context. Please provide a clear, accurate, and helpful answer "
    "based on the information given. If the context doesn't contain enough "
    "information to answer the question, please say so."
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ChunkType(StrEnum):
    """Structure of a chunk's content."""

    PARAGRAPH = "paragraph"
    HEADING = "heading"
    LIST = "list"
    TABLE = "table"
    CODE = "code"
    MIXED = "mixed"


class SegmentType(StrEnum):
    """Structure of a single line-run segment."""

    PARAGRAPH = "paragraph"
    HEADING = "heading"
    LIST = "list"
    TABLE = "table"
    CODE = "code"


class QueryType(StrEnum):
    """How an expanded query was derived from the user question."""

    ORIGINAL = "original"
    SYNONYM = "synonym"
    RELATED = "related"
    BROADER = "broader"
    NARROWER = "narrower"
    CONTEXTUAL = "contextual"


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class SourceDocument(BaseModel):
    """
    A document as yielded by the document source.

    Parsing failures surface as placeholder ``content``, never as
    exceptions, so ``content`` may be degenerate.
    """

    model_config = ConfigDict(frozen=True)

    content: str
    file_name: str
    file_path: str
    last_modified: datetime
    file_size_bytes: int = Field(ge=0)
    file_type: str = Field(description="Lower-case extension, e.g. '.md'")


class SemanticSegment(BaseModel):
    """A run of consecutive lines of the same structural type."""

    content: str
    type: SegmentType
    start_index: int = Field(ge=0)
    end_index: int = Field(ge=0)
    token_count: int = Field(ge=0)


class SemanticChunk(BaseModel):
    """
    A bounded span of a document treated as one retrieval unit.

    Immutable once created: re-chunking the owning document supersedes
    chunks, nothing edits them.

    Attributes:
        id: Unique chunk identifier.
        content: Chunk text.
        source_document: Display name of the source file.
        file_path: Path of the source file.
        chunk_index: Zero-based position within the source document.
        token_count: ``max(1, len(content) // 4)`` estimate.
        type: Structural type of the content.
        headers: Up to 3 most recent ancestor headings.
        relevance_score: Set only when returned from a query.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    content: str
    source_document: str
    file_path: str
    chunk_index: int = Field(ge=0)
    token_count: int = Field(ge=0)
    type: ChunkType = ChunkType.PARAGRAPH
    headers: tuple[str, ...] = ()
    relevance_score: float | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class DocumentSummary(BaseModel):
    """An indexed document with the number of chunks stored for it."""

    id: int
    file_name: str
    file_path: str
    file_type: str
    file_size_bytes: int
    last_modified: datetime
    chunk_count: int = 0


class DocumentSnippet(BaseModel):
    """A scored piece of a stored document, used for citations."""

    file_name: str
    file_path: str
    snippet_text: str
    relevance_score: float
    start_index: int = 0
    end_index: int = 0


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


class ExpandedQuery(BaseModel):
    """A derived variant of the user question."""

    model_config = ConfigDict(frozen=True)

    query: str
    type: QueryType
    weight: float = Field(default=1.0, gt=0.0, le=1.0)
    reason: str = ""


class RetrievalResult(BaseModel):
    """
    A chunk matched by one of the expanded queries.

    ``similarity_score`` is the cosine similarity multiplied by the
    weight of the query that produced it.
    """

    chunk: SemanticChunk
    similarity_score: float
    source_query: str
    is_from_expanded_query: bool = False
    document_id: int | None = None
    retrieved_at: datetime = Field(default_factory=_utcnow)


class FallbackSuggestion(BaseModel):
    """A topic offered to the user when retrieval is too weak to answer."""

    topic: str
    description: str
    source_document: str
    relevance_score: float
    related_chunks: list[str] = Field(default_factory=list)


class EmbeddingValidationResult(BaseModel):
    """Report of a smoke test over the stored embeddings."""

    is_valid: bool = False
    test_results: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    total_embeddings: int = 0
    tested_embeddings: int = 0
    average_similarity: float = 0.0
    validated_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Context assembly
# ---------------------------------------------------------------------------


class ContextConfiguration(BaseModel):
    """Token limits and feature switches for context assembly."""

    max_context_tokens: int = Field(default=8000, ge=1)
    max_chunks_to_include: int = Field(default=10, ge=0)
    min_similarity_threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    include_conversation_history: bool = True
    max_conversation_turns: int = Field(default=5, ge=0)
    enable_fallback_suggestions: bool = True
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    @classmethod
    def from_settings(cls, settings: Settings) -> ContextConfiguration:
        """Process-wide default built from environment settings."""
        return cls(
            max_context_tokens=settings.MAX_CONTEXT_TOKENS,
            max_chunks_to_include=settings.MAX_CHUNKS_TO_INCLUDE,
            min_similarity_threshold=settings.RETRIEVAL_MIN_SIMILARITY,
            include_conversation_history=settings.INCLUDE_CONVERSATION_HISTORY,
            max_conversation_turns=settings.MAX_CONVERSATION_TURNS,
            enable_fallback_suggestions=settings.ENABLE_FALLBACK_SUGGESTIONS,
        )


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


class ChatMessage(BaseModel):
    """One stored message of a conversation."""

    sender: str
    content: str
    turn_number: int
    timestamp: datetime
    question: str | None = None
    answer: str | None = None


class ConversationSummary(BaseModel):
    """A conversation with its message count."""

    conversation_id: str
    title: str
    created_at: datetime
    last_activity_at: datetime
    message_count: int = 0


# ---------------------------------------------------------------------------
# Answers
# ---------------------------------------------------------------------------


class SuggestedQuestion(BaseModel):
    """A follow-up question proposed after an answer."""

    question: str
    relevance_score: float
    category: str = "follow-up"


class AnswerResult(BaseModel):
    """
    Final answer to a user question.

    Attributes:
        question: The (trimmed) user question.
        answer: Model answer, or the fallback text when context was
            insufficient.
        source: "AI Assistant" when the model answered, else "System".
        source_documents: Distinct source names of the retrieved chunks.
        snippets: Cited chunks (only when the model answered).
        suggested_questions: Up to 3 follow-up questions.
        is_fallback: True when the model was bypassed or failed.
    """

    question: str
    answer: str
    source: str
    source_documents: list[str] = Field(default_factory=list)
    snippets: list[DocumentSnippet] = Field(default_factory=list)
    suggested_questions: list[SuggestedQuestion] = Field(default_factory=list)
    is_fallback: bool = False
    answered_at: datetime = Field(default_factory=_utcnow)
