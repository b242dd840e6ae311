"""
Conversation Store Tests

Runs against a temporary SQLite database (aiosqlite).
"""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from askbase.services.conversation import (
    AI_SENDER,
    DEFAULT_TITLE,
    USER_SENDER,
    ConversationStore,
)


@pytest.fixture
def conversations(session_factory: async_sessionmaker[AsyncSession]) -> ConversationStore:
    return ConversationStore(session_factory)


async def _exchange(store: ConversationStore, conversation_id: str, turns: int) -> None:
    for i in range(turns):
        await store.add_message(
            conversation_id, USER_SENDER, f"question {i}", question=f"question {i}"
        )
        await store.add_message(
            conversation_id, AI_SENDER, f"answer {i}", question=f"question {i}", answer=f"answer {i}"
        )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create(self, conversations: ConversationStore) -> None:
        conversation_id = await conversations.create_conversation()

        assert await conversations.exists(conversation_id)
        [summary] = await conversations.list_conversations()
        assert summary.conversation_id == conversation_id
        assert summary.title == DEFAULT_TITLE
        assert summary.message_count == 0

    @pytest.mark.asyncio
    async def test_custom_title(self, conversations: ConversationStore) -> None:
        await conversations.create_conversation("Returns questions")

        [summary] = await conversations.list_conversations()
        assert summary.title == "Returns questions"

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, conversations: ConversationStore) -> None:
        first = await conversations.create_conversation()
        second = await conversations.create_conversation()

        assert first != second
        assert len(await conversations.list_conversations()) == 2

    @pytest.mark.asyncio
    async def test_delete(self, conversations: ConversationStore) -> None:
        conversation_id = await conversations.create_conversation()
        await _exchange(conversations, conversation_id, 1)

        assert await conversations.delete_conversation(conversation_id) is True
        assert not await conversations.exists(conversation_id)
        assert await conversations.get_chat_history(conversation_id) == []
        assert await conversations.delete_conversation(conversation_id) is False

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, conversations: ConversationStore) -> None:
        assert await conversations.add_message("missing", USER_SENDER, "Hi") is False
        assert not await conversations.exists("missing")
        assert await conversations.get_context("missing") == ""


# ---------------------------------------------------------------------------
# Messages and history
# ---------------------------------------------------------------------------


class TestHistory:
    @pytest.mark.asyncio
    async def test_turn_numbers_increase(self, conversations: ConversationStore) -> None:
        conversation_id = await conversations.create_conversation()
        await _exchange(conversations, conversation_id, 2)

        history = await conversations.get_chat_history(conversation_id)

        assert [m.turn_number for m in history] == [1, 2, 3, 4]
        assert history[1].sender == AI_SENDER
        assert history[1].question == "question 0"
        assert history[1].answer == "answer 0"

    @pytest.mark.asyncio
    async def test_history_keeps_last_turns_in_order(self, conversations: ConversationStore) -> None:
        conversation_id = await conversations.create_conversation()
        await _exchange(conversations, conversation_id, 4)

        history = await conversations.get_chat_history(conversation_id, max_turns=2)

        assert [m.content for m in history] == [
            "question 2",
            "answer 2",
            "question 3",
            "answer 3",
        ]

    @pytest.mark.asyncio
    async def test_zero_turns(self, conversations: ConversationStore) -> None:
        conversation_id = await conversations.create_conversation()
        await _exchange(conversations, conversation_id, 1)

        assert await conversations.get_chat_history(conversation_id, max_turns=0) == []

    @pytest.mark.asyncio
    async def test_context_block(self, conversations: ConversationStore) -> None:
        conversation_id = await conversations.create_conversation()
        await _exchange(conversations, conversation_id, 2)

        context = await conversations.get_context(conversation_id, max_turns=1)

        assert context == "User: question 1\nAI: answer 1"

    @pytest.mark.asyncio
    async def test_message_count_in_listing(self, conversations: ConversationStore) -> None:
        conversation_id = await conversations.create_conversation()
        await _exchange(conversations, conversation_id, 3)

        [summary] = await conversations.list_conversations()

        assert summary.message_count == 6
        assert summary.last_activity_at >= summary.created_at
