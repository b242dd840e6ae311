"""
Context Assembler Unit Tests

Sufficiency rule, prompt layout, budget truncation and the fallback
answer text. Pure functions over in-memory results; no database.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from askbase.models.schemas import (
    ContextConfiguration,
    FallbackSuggestion,
    RetrievalResult,
    SemanticChunk,
)
from askbase.services.context import (
    NO_DOCUMENTS_MESSAGE,
    NO_MATCH_MESSAGE,
    NOT_AVAILABLE_ANSWER,
    ContextAssembler,
    has_sufficient_context,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _result(
    score: float,
    content: str = "Items may be returned within 30 days.",
    source: str = "Returns Policy",
    index: int = 0,
    headers: tuple[str, ...] = (),
) -> RetrievalResult:
    chunk = SemanticChunk(
        content=content,
        source_document=source,
        file_path=f"/docs/{source}.txt",
        chunk_index=index,
        token_count=max(1, len(content) // 4),
        headers=headers,
    )
    return RetrievalResult(chunk=chunk, similarity_score=score, source_query="q")


def _suggestion(topic: str, chunks: list[str] | None = None) -> FallbackSuggestion:
    return FallbackSuggestion(
        topic=topic,
        description=f"Information about {topic}",
        source_document=f"{topic}.md",
        relevance_score=1.0,
        related_chunks=chunks or [],
    )


@pytest.fixture
def assembler() -> ContextAssembler:
    return ContextAssembler()


# ---------------------------------------------------------------------------
# Sufficiency
# ---------------------------------------------------------------------------


class TestSufficiency:
    def test_single_strong_match(self) -> None:
        assert has_sufficient_context([_result(0.35)])

    def test_two_moderate_matches(self) -> None:
        assert has_sufficient_context([_result(0.25), _result(0.22, index=1)])

    def test_single_moderate_match(self) -> None:
        assert not has_sufficient_context([_result(0.25)])

    def test_no_results(self) -> None:
        assert not has_sufficient_context([])

    def test_custom_threshold(self, assembler: ContextAssembler) -> None:
        assert assembler.has_sufficient_context([_result(0.15)], threshold=0.1)


# ---------------------------------------------------------------------------
# Prompt layout
# ---------------------------------------------------------------------------


class TestBuildContext:
    def test_layout_with_sufficient_context(self, assembler: ContextAssembler) -> None:
        context = assembler.build_context(
            "What is the return window?",
            [_result(0.42, headers=("Returns", "Window"))],
            conversation_context="User: Hi\nAI: Hello",
        )

        assert context.startswith(assembler.config.system_prompt)
        assert "Previous conversation context:\nUser: Hi\nAI: Hello" in context
        assert "Relevant Document Chunks:" in context
        assert "[Chunk 1]" in context
        assert "Context: Returns > Window" in context
        assert "Source: Returns Policy" in context
        assert "Relevance: 0.42" in context
        assert "User Question: What is the return window?" in context
        assert NOT_AVAILABLE_ANSWER not in context
        assert context.index("Previous conversation") < context.index("Relevant Document")
        assert context.index("Relevant Document") < context.index("User Question")

    def test_insufficient_context_lists_topics(self, assembler: ContextAssembler) -> None:
        context = assembler.build_context(
            "warranty?",
            [_result(0.12)],
            fallback_suggestions=[_suggestion("shipping"), _suggestion("returns")],
        )

        assert "Available Topics (no direct match found):" in context
        assert "- shipping: Information about shipping" in context
        assert NOT_AVAILABLE_ANSWER in context

    def test_topics_omitted_when_sufficient(self, assembler: ContextAssembler) -> None:
        context = assembler.build_context(
            "q", [_result(0.9)], fallback_suggestions=[_suggestion("shipping")]
        )

        assert "Available Topics" not in context

    def test_history_disabled(self) -> None:
        assembler = ContextAssembler(ContextConfiguration(include_conversation_history=False))

        context = assembler.build_context("q", [_result(0.9)], conversation_context="User: Hi")

        assert "Previous conversation context" not in context

    def test_chunks_ranked_and_capped(self) -> None:
        assembler = ContextAssembler(ContextConfiguration(max_chunks_to_include=2))
        results = [
            _result(0.4, content="low", index=0),
            _result(0.9, content="high", index=1),
            _result(0.6, content="mid", index=2),
        ]

        context = assembler.build_context("q", results)

        assert "[Chunk 3]" not in context
        assert context.index("high") < context.index("mid")
        assert "\nlow\n" not in context

    def test_budget_truncates_chunk_with_ellipsis(self) -> None:
        config = ContextConfiguration(max_context_tokens=150, system_prompt="System.")
        assembler = ContextAssembler(config)

        context = assembler.build_context("q", [_result(0.9, content="word " * 400)])

        assert len(context) <= config.max_context_tokens * 4
        assert "word wor" in context
        assert "...\n\nUser Question: q" in context

    def test_budget_drops_oldest_history_first(self) -> None:
        config = ContextConfiguration(max_context_tokens=100, system_prompt="System.")
        assembler = ContextAssembler(config)
        history = "User: " + "old " * 200 + "\nAI: newest reply"

        context = assembler.build_context("q", [], conversation_context=history)

        assert len(context) <= config.max_context_tokens * 4
        assert "newest reply" in context

    def test_budget_drops_lowest_ranked_topics(self) -> None:
        config = ContextConfiguration(max_context_tokens=80, system_prompt="System.")
        assembler = ContextAssembler(config)
        topics = ["shipping", "returns", "warranty", "payments", "accounts"]

        context = assembler.build_context(
            "q", [], fallback_suggestions=[_suggestion(t) for t in topics]
        )

        assert len(context) <= config.max_context_tokens * 4
        assert "- shipping: Information about shipping" in context
        assert "returns" not in context
        assert context.endswith(f'"{NOT_AVAILABLE_ANSWER}"\n')

    def test_oversized_prompt_is_logged(self) -> None:
        config = ContextConfiguration(max_context_tokens=10, system_prompt="System.")
        assembler = ContextAssembler(config)

        with patch("askbase.services.context.logger") as log:
            context = assembler.build_context(
                "q", [], fallback_suggestions=[_suggestion("shipping")]
            )

        assert "Available Topics" not in context
        log.warning.assert_called_once()


# ---------------------------------------------------------------------------
# Fallback answers and topics
# ---------------------------------------------------------------------------


class TestFallbackResponse:
    def test_no_documents(self, assembler: ContextAssembler) -> None:
        text = assembler.format_fallback_response("q", [], has_documents=False)

        assert text == NO_DOCUMENTS_MESSAGE

    def test_no_suggestions(self, assembler: ContextAssembler) -> None:
        text = assembler.format_fallback_response("q", [], has_documents=True)

        assert text == NO_MATCH_MESSAGE

    def test_lists_topics(self, assembler: ContextAssembler) -> None:
        text = assembler.format_fallback_response(
            "q",
            [_suggestion("shipping", ["Standard shipping takes..."]), _suggestion("returns")],
            has_documents=True,
        )

        assert text.startswith("Couldn't find an exact answer to your question.")
        assert "• **shipping** - Information about shipping" in text
        assert "  *Available in: shipping.md*" in text
        assert "*Available in: returns.md*" not in text
        assert "Please ask a more specific question" in text


class TestKeyTopics:
    def test_most_frequent_keywords(self, assembler: ContextAssembler) -> None:
        results = [
            _result(0.5, content="Refund policy for refund requests", headers=("Refunds",)),
            _result(0.4, content="Refund timing", index=1),
        ]

        topics = assembler.extract_key_topics(results, max_topics=2)

        assert topics[0] == "refund"
        assert len(topics) == 2
