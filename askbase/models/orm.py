"""
ASKBASE Database Models

SQLAlchemy 2.0 ORM models for the knowledge base index and the
conversation log. Vectors are stored as packed float32 bytes and
compared by a linear scan in the retrieval layer (no vector extension).

Tables:
    documents      — One row per source file, unique by path.
    embeddings     — Chunk text + vector, keyed by (document_id, chunk_index).
    conversations  — Chat sessions referenced by a public string id.
    chat_messages  — Ordered turns of a conversation.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from askbase.models.base import Base, TimestampMixin, UTCDateTime, utcnow

# Upper bound for the chunk text copy kept next to each vector
MAX_TEXT_CHUNK_LENGTH: int = 4000


class DocumentRecord(TimestampMixin, Base):
    """
    Persistent storage for ingested documents.

    Each record represents one processed source file. ``file_path`` is
    unique: re-ingesting a file replaces its record.

    Attributes:
        id: Integer primary key.
        file_path: Absolute path of the source file, unique index.
        file_name: Display name used in citations.
        file_type: Lower-case extension (".md", ".pdf", ...).
        file_size_bytes: Size on disk at ingestion time.
        last_modified: Source mtime (UTC) at ingestion time.
        language: Content language tag.
        embeddings: Related EmbeddingRecord instances (cascade delete).
    """

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file_path: Mapped[str] = mapped_column(String(500), unique=True, nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(10), nullable=False, default="")
    file_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_modified: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, index=True
    )
    language: Mapped[str] = mapped_column(String(10), nullable=False, default="en")

    # Embeddings are deleted with their document
    embeddings: Mapped[list[EmbeddingRecord]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="EmbeddingRecord.chunk_index",
    )

    def __repr__(self) -> str:
        return f"<DocumentRecord(id={self.id}, file_name='{self.file_name}')>"


class EmbeddingRecord(Base):
    """
    Persistent storage for chunk embeddings.

    Attributes:
        id: Integer primary key.
        document_id: Foreign key to parent document (CASCADE delete).
        chunk_index: Zero-based position within the parent document.
        text_chunk: Chunk text, truncated to MAX_TEXT_CHUNK_LENGTH.
        headers: Heading breadcrumb of the chunk (up to 3 entries).
        vector: Packed little-endian float32 values.
        vector_dimensions: Number of floats in ``vector``.
        model_version: Tag of the embedder that produced ``vector``.
        document: Back-reference to parent DocumentRecord.
    """

    __tablename__ = "embeddings"
    __table_args__ = (Index("ix_embeddings_document_chunk", "document_id", "chunk_index"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    text_chunk: Mapped[str] = mapped_column(
        String(MAX_TEXT_CHUNK_LENGTH), nullable=False
    )
    headers: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    vector: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    vector_dimensions: Mapped[int] = mapped_column(Integer, nullable=False)
    model_version: Mapped[str] = mapped_column(String(50), nullable=False, default="1.0")
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )

    document: Mapped[DocumentRecord] = relationship(back_populates="embeddings")

    def __repr__(self) -> str:
        return (
            f"<EmbeddingRecord(id={self.id}, doc={self.document_id}, "
            f"idx={self.chunk_index})>"
        )


class ConversationRecord(Base):
    """
    A chat session.

    Attributes:
        id: Integer primary key.
        conversation_id: Public identifier (uuid4 hex string), unique.
        title: Display title.
        created_at: Creation timestamp.
        last_activity_at: Timestamp of the latest message.
        messages: Ordered ChatMessageRecord instances (cascade delete).
    """

    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="New Conversation")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    last_activity_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, index=True
    )

    messages: Mapped[list[ChatMessageRecord]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChatMessageRecord.turn_number",
    )


class ChatMessageRecord(Base):
    """One message of a conversation, ordered by ``turn_number``."""

    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_conversation_turn", "conversation_id", "turn_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    question: Mapped[str | None] = mapped_column(Text, nullable=True)
    answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    turn_number: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    conversation: Mapped[ConversationRecord] = relationship(back_populates="messages")
