"""
Conversation Store

Persists chat sessions and their ordered messages, and renders the
recent turns as a text block for context assembly.
"""

from __future__ import annotations

import logging
from typing import Final
from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from askbase.models.base import utcnow
from askbase.models.orm import ChatMessageRecord, ConversationRecord
from askbase.models.schemas import ChatMessage, ConversationSummary

logger = logging.getLogger(__name__)

USER_SENDER: Final[str] = "User"
AI_SENDER: Final[str] = "AI"
DEFAULT_TITLE: Final[str] = "New Conversation"


class ConversationStore:
    """
    Async store for conversations.

    Each method opens its own session from the injected factory and
    commits before returning.

    Usage::

        store = ConversationStore(session_factory)
        conversation_id = await store.create_conversation()
        await store.add_message(conversation_id, USER_SENDER, "Hi")
        history = await store.get_context(conversation_id, max_turns=5)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def create_conversation(self, title: str | None = None) -> str:
        """Create a conversation and return its public id."""
        conversation = ConversationRecord(
            conversation_id=uuid4().hex,
            title=title or DEFAULT_TITLE,
        )
        async with self._session_factory() as session, session.begin():
            session.add(conversation)
        logger.info("Created conversation %s", conversation.conversation_id)
        return conversation.conversation_id

    async def add_message(
        self,
        conversation_id: str,
        sender: str,
        content: str,
        question: str | None = None,
        answer: str | None = None,
    ) -> bool:
        """
        Append a message as the next turn.

        Returns:
            False if the conversation does not exist.
        """
        async with self._session_factory() as session, session.begin():
            conversation = await self._get(session, conversation_id)
            if conversation is None:
                logger.warning("Conversation %s not found, message dropped", conversation_id)
                return False

            last_turn = await session.scalar(
                select(func.max(ChatMessageRecord.turn_number)).where(
                    ChatMessageRecord.conversation_id == conversation.id
                )
            )
            session.add(
                ChatMessageRecord(
                    conversation_id=conversation.id,
                    sender=sender,
                    content=content,
                    question=question,
                    answer=answer,
                    turn_number=(last_turn or 0) + 1,
                )
            )
            conversation.last_activity_at = utcnow()
        return True

    async def delete_conversation(self, conversation_id: str) -> bool:
        async with self._session_factory() as session, session.begin():
            conversation = await self._get(session, conversation_id)
            if conversation is None:
                return False
            await session.execute(
                delete(ChatMessageRecord).where(
                    ChatMessageRecord.conversation_id == conversation.id
                )
            )
            await session.delete(conversation)
        logger.info("Deleted conversation %s", conversation_id)
        return True

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def exists(self, conversation_id: str) -> bool:
        async with self._session_factory() as session:
            return await self._get(session, conversation_id) is not None

    async def list_conversations(self) -> list[ConversationSummary]:
        """All conversations, most recently active first."""
        stmt = (
            select(ConversationRecord, func.count(ChatMessageRecord.id))
            .outerjoin(
                ChatMessageRecord,
                ChatMessageRecord.conversation_id == ConversationRecord.id,
            )
            .group_by(ConversationRecord.id)
            .order_by(ConversationRecord.last_activity_at.desc(), ConversationRecord.id.desc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [
            ConversationSummary(
                conversation_id=record.conversation_id,
                title=record.title,
                created_at=record.created_at,
                last_activity_at=record.last_activity_at,
                message_count=int(count),
            )
            for record, count in rows
        ]

    async def get_chat_history(
        self,
        conversation_id: str,
        max_turns: int = 5,
    ) -> list[ChatMessage]:
        """The last ``2 * max_turns`` messages, oldest first."""
        if max_turns <= 0:
            return []
        stmt = (
            select(ChatMessageRecord)
            .join(ConversationRecord, ChatMessageRecord.conversation_id == ConversationRecord.id)
            .where(ConversationRecord.conversation_id == conversation_id)
            .order_by(ChatMessageRecord.turn_number.desc())
            .limit(max_turns * 2)
        )
        async with self._session_factory() as session:
            records = (await session.execute(stmt)).scalars().all()
        return [
            ChatMessage(
                sender=record.sender,
                content=record.content,
                turn_number=record.turn_number,
                timestamp=record.timestamp,
                question=record.question,
                answer=record.answer,
            )
            for record in reversed(records)
        ]

    async def get_context(self, conversation_id: str, max_turns: int = 5) -> str:
        """Recent turns as ``User: ...`` / ``AI: ...`` lines, or ``""``."""
        messages = await self.get_chat_history(conversation_id, max_turns)
        lines = [
            f"{message.sender}: {message.content}"
            for message in messages
            if message.sender in (USER_SENDER, AI_SENDER)
        ]
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _get(session: AsyncSession, conversation_id: str) -> ConversationRecord | None:
        result = await session.execute(
            select(ConversationRecord).where(ConversationRecord.conversation_id == conversation_id)
        )
        return result.scalars().first()
