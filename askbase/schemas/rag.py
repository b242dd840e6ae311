"""
Knowledge Base API Schemas

Pydantic models for the ASKBASE endpoint request/response cycle.
Domain results (snippets, retrieval results, answers) are returned as
the pipeline's own schemas.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class FolderRequest(BaseModel):
    """Request body for a full index rebuild."""

    folder_path: str = Field(
        ...,
        min_length=1,
        description="Folder whose supported files are indexed",
    )


class FolderResponse(BaseModel):
    """Outcome of a full index rebuild."""

    folder_path: str
    documents_indexed: int = Field(description="Documents written to the index")
    embeddings_stored: int = Field(description="Chunk embeddings now stored")


class FileRequest(BaseModel):
    """Request body for single-file indexing or removal."""

    file_path: str = Field(..., min_length=1, description="Path of the source file")


class FileStatus(StrEnum):
    INDEXED = "indexed"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    NOT_INDEXED = "not_indexed"


class FileResponse(BaseModel):
    """Outcome of a single-file operation."""

    file_path: str
    status: FileStatus


class FileEventType(StrEnum):
    """Change notification kinds sent by an external folder watcher."""

    ADDED = "added"
    CHANGED = "changed"
    DELETED = "deleted"


class FileEventRequest(BaseModel):
    """A folder watcher notification."""

    event: FileEventType
    file_path: str = Field(..., min_length=1)


class SearchRequest(BaseModel):
    """Request body for a single-query similarity lookup."""

    query: str = Field(
        ...,
        min_length=1,
        description="Natural language search query",
    )
    k: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Number of snippets to return",
    )


class RetrieveRequest(BaseModel):
    """Request body for multi-query retrieval."""

    query: str = Field(..., min_length=1, description="User question")
    max_chunks: int = Field(default=10, ge=1, le=50)
    min_similarity: float = Field(default=0.1, ge=0.0, le=1.0)


class AskRequest(BaseModel):
    """Request body for question answering."""

    question: str = Field(
        ...,
        max_length=2000,
        description="Natural language question to answer",
    )
    conversation_id: str | None = Field(
        default=None,
        description="Conversation to read history from and append the turn to",
    )


class ConversationCreateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=255)


class ConversationResponse(BaseModel):
    conversation_id: str
