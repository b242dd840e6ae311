"""
Follow-up Suggestion Unit Tests

Parsing of model output and the keyword fallback. The LLM client is an
AsyncMock; no Ollama required.
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from askbase.models.schemas import ChatMessage, DocumentSnippet
from askbase.services.suggestions import MAX_SUGGESTIONS, AutoSuggestService

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def llm() -> MagicMock:
    mock = MagicMock()
    mock.generate_suggestions = AsyncMock(return_value="[]")
    return mock


@pytest.fixture
def service(llm: MagicMock) -> AutoSuggestService:
    return AutoSuggestService(llm)


def _snippet(name: str, text: str) -> DocumentSnippet:
    return DocumentSnippet(
        file_name=name,
        file_path=f"/docs/{name}",
        snippet_text=text,
        relevance_score=0.5,
    )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParseSuggestions:
    def test_json_array(self, service: AutoSuggestService) -> None:
        suggestions = service.parse_suggestions(
            '["How do I start a return?", "Are refunds taxed?"]'
        )

        assert [s.question for s in suggestions] == [
            "How do I start a return?",
            "Are refunds taxed?",
        ]
        assert [s.relevance_score for s in suggestions] == [1.0, 0.9]
        assert all(s.category == "follow-up" for s in suggestions)

    def test_json_inside_prose(self, service: AutoSuggestService) -> None:
        raw = 'Sure! Here you go:\n["Q1 about returns?", "Q2 about refunds?"]\nHope it helps.'

        suggestions = service.parse_suggestions(raw)

        assert [s.question for s in suggestions] == ["Q1 about returns?", "Q2 about refunds?"]

    def test_capped_at_three(self, service: AutoSuggestService) -> None:
        suggestions = service.parse_suggestions('["a?", "b?", "c?", "d?", "e?"]')

        assert len(suggestions) == MAX_SUGGESTIONS

    def test_question_lines(self, service: AutoSuggestService) -> None:
        raw = (
            "Here are some ideas:\n"
            "- How long does shipping take?\n"
            "• Can I return opened items?\n"
            "* Why?\n"
            "This line is not a question.\n"
        )

        suggestions = service.parse_suggestions(raw)

        assert [s.question for s in suggestions] == [
            "How long does shipping take?",
            "Can I return opened items?",
        ]

    def test_empty_array_uses_fallback(self, service: AutoSuggestService) -> None:
        suggestions = service.parse_suggestions("[]", answer="Plain answer.")

        assert [s.question for s in suggestions] == [
            "Can you provide more details about this?",
            "What else should I know about this topic?",
            "Are there any exceptions or special cases?",
        ]

    def test_garbage_uses_fallback(self, service: AutoSuggestService) -> None:
        suggestions = service.parse_suggestions("no questions here", answer="")

        assert len(suggestions) == MAX_SUGGESTIONS


class TestFallbackSuggestions:
    def test_price_and_feature_keywords(self) -> None:
        suggestions = AutoSuggestService.fallback_suggestions(
            "The price includes every feature."
        )

        assert [(s.question, s.relevance_score) for s in suggestions] == [
            ("Are there any discounts or special offers available?", 0.9),
            ("What are the main benefits of this?", 0.8),
            ("Can you provide more details about this?", 0.5),
        ]

    def test_generic_scores_descend(self) -> None:
        suggestions = AutoSuggestService.fallback_suggestions("Nothing special.")

        assert [s.relevance_score for s in suggestions] == [0.7, 0.6, 0.5]


# ---------------------------------------------------------------------------
# Prompt and generation
# ---------------------------------------------------------------------------


class TestPrompt:
    def test_includes_exchange_and_format(self) -> None:
        prompt = AutoSuggestService.build_prompt("What is the window?", "30 days.")

        assert "Original Question: What is the window?" in prompt
        assert "AI Answer: 30 days." in prompt
        assert prompt.rstrip().endswith('["Question 1", "Question 2", "Question 3"]')
        assert "Relevant document snippets" not in prompt

    def test_snippets_truncated_and_capped(self) -> None:
        snippets = [_snippet(f"doc{i}.md", "x" * 500) for i in range(5)]

        prompt = AutoSuggestService.build_prompt("q", "a", snippets)

        assert "- From doc0.md: " + "x" * 200 + "...\n" in prompt
        assert "doc2.md" in prompt
        assert "doc3.md" not in prompt
        assert "x" * 201 not in prompt


class TestGenerate:
    @pytest.mark.asyncio
    async def test_generate_suggestions(
        self, service: AutoSuggestService, llm: MagicMock
    ) -> None:
        llm.generate_suggestions.return_value = '["What about exchanges?"]'

        suggestions = await service.generate_suggestions("q", "a", [_snippet("a.md", "text")])

        assert [s.question for s in suggestions] == ["What about exchanges?"]
        prompt = llm.generate_suggestions.await_args.args[0]
        assert "- From a.md: text..." in prompt

    @pytest.mark.asyncio
    async def test_contextual_without_store_uses_fallback(
        self, service: AutoSuggestService, llm: MagicMock
    ) -> None:
        suggestions = await service.generate_contextual_suggestions("abc", "The cost is $5.")

        assert suggestions[0].question == "Are there any discounts or special offers available?"
        llm.generate_suggestions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_contextual_uses_recent_history(self, llm: MagicMock) -> None:
        conversations = MagicMock()
        now = datetime.now(UTC)
        conversations.get_chat_history = AsyncMock(
            return_value=[
                ChatMessage(sender="User", content="Hi there", turn_number=1, timestamp=now),
                ChatMessage(sender="AI", content="Hello!", turn_number=2, timestamp=now),
            ]
        )
        llm.generate_suggestions.return_value = '["Anything else to know?"]'
        service = AutoSuggestService(llm, conversations)

        suggestions = await service.generate_contextual_suggestions("abc", "Latest answer")

        conversations.get_chat_history.assert_awaited_once_with("abc", max_turns=3)
        prompt = llm.generate_suggestions.await_args.args[0]
        assert "User: Hi there\nAI: Hello!" in prompt
        assert "Latest AI Response: Latest answer" in prompt
        assert [s.question for s in suggestions] == ["Anything else to know?"]
