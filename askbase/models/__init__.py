"""Models package — Pydantic schemas and SQLAlchemy ORM for the ASKBASE pipeline."""

from askbase.models.orm import (
    MAX_TEXT_CHUNK_LENGTH,
    ChatMessageRecord,
    ConversationRecord,
    DocumentRecord,
    EmbeddingRecord,
)
from askbase.models.schemas import (
    AnswerResult,
    ChatMessage,
    ChunkType,
    ContextConfiguration,
    ConversationSummary,
    DocumentSnippet,
    DocumentSummary,
    EmbeddingValidationResult,
    ExpandedQuery,
    FallbackSuggestion,
    QueryType,
    RetrievalResult,
    SegmentType,
    SemanticChunk,
    SemanticSegment,
    SourceDocument,
    SuggestedQuestion,
)

__all__ = [
    # Pydantic schemas (pipeline data)
    "AnswerResult",
    "ChatMessage",
    "ChunkType",
    "ContextConfiguration",
    "ConversationSummary",
    "DocumentSnippet",
    "DocumentSummary",
    "EmbeddingValidationResult",
    "ExpandedQuery",
    "FallbackSuggestion",
    "QueryType",
    "RetrievalResult",
    "SegmentType",
    "SemanticChunk",
    "SemanticSegment",
    "SourceDocument",
    "SuggestedQuestion",
    # SQLAlchemy ORM (persistence layer)
    "ChatMessageRecord",
    "ConversationRecord",
    "DocumentRecord",
    "EmbeddingRecord",
    "MAX_TEXT_CHUNK_LENGTH",
]
