"""
Context Assembly Service

Builds the prompt text handed to the generative model from ranked
retrieval results, optional conversation history and fallback topics,
within a token budget (4 characters per token).

Layout:
    system prompt
    Previous conversation context       (if enabled and present)
    Relevant Document Chunks            (top MAX_CHUNKS_TO_INCLUDE)
    Available Topics                    (only when context is insufficient)
    User Question + answering instruction
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from typing import Final

from askbase.models.schemas import ContextConfiguration, FallbackSuggestion, RetrievalResult
from askbase.services.chunking import CHARS_PER_TOKEN
from askbase.services.query_expansion import extract_keywords

logger = logging.getLogger(__name__)

SUFFICIENCY_THRESHOLD: Final[float] = 0.3
SUPPORTING_THRESHOLD: Final[float] = 0.2
SUPPORTING_MATCHES: Final[int] = 2
MAX_TOPICS_SHOWN: Final[int] = 5
TRUNCATION_SUFFIX: Final[str] = "..."

NOT_AVAILABLE_ANSWER: Final[str] = "Not available in loaded documents."
NO_DOCUMENTS_MESSAGE: Final[str] = (
    "No documents have been loaded. Please select a folder containing documents first."
)
NO_MATCH_MESSAGE: Final[str] = (
    "I couldn't find information related to your question in the loaded documents. "
    "Please try rephrasing your question or ask about a different topic."
)


def has_sufficient_context(
    results: Sequence[RetrievalResult],
    threshold: float = SUFFICIENCY_THRESHOLD,
) -> bool:
    """
    True if one result scores >= ``threshold`` or two score >= 0.2.

    Several moderately relevant matches count as much evidence as one
    strong match.
    """
    if not results:
        return False
    if any(r.similarity_score >= threshold for r in results):
        return True
    supporting = sum(1 for r in results if r.similarity_score >= SUPPORTING_THRESHOLD)
    return supporting >= SUPPORTING_MATCHES


class ContextAssembler:
    """
    Turns retrieval output into bounded prompt text.

    Usage::

        assembler = ContextAssembler(ContextConfiguration.from_settings(settings))
        if assembler.has_sufficient_context(results):
            prompt = assembler.build_context(question, results)

    Args:
        config: Default configuration, overridable per ``build_context`` call.
        sufficiency_threshold: Score a single result needs to be sufficient.
    """

    def __init__(
        self,
        config: ContextConfiguration | None = None,
        sufficiency_threshold: float = SUFFICIENCY_THRESHOLD,
    ) -> None:
        self._config = config or ContextConfiguration()
        self._threshold = sufficiency_threshold

    @property
    def config(self) -> ContextConfiguration:
        return self._config

    def has_sufficient_context(
        self,
        results: Sequence[RetrievalResult],
        threshold: float | None = None,
    ) -> bool:
        return has_sufficient_context(
            results, self._threshold if threshold is None else threshold
        )

    # ------------------------------------------------------------------
    # Prompt assembly
    # ------------------------------------------------------------------

    def build_context(
        self,
        query: str,
        results: Sequence[RetrievalResult],
        conversation_context: str | None = None,
        fallback_suggestions: Sequence[FallbackSuggestion] | None = None,
        config: ContextConfiguration | None = None,
    ) -> str:
        """
        Assemble the prompt text.

        The fixed parts (system prompt, conversation, topics, question,
        instruction) are reserved first. Chunks then fill the remaining
        budget in rank order; the first chunk that does not fit is cut
        with a ``...`` suffix and later ones are dropped.
        """
        cfg = config or self._config
        sufficient = self.has_sufficient_context(results)
        budget = cfg.max_context_tokens * CHARS_PER_TOKEN

        head = f"{cfg.system_prompt}\n\n"

        history = (conversation_context or "").strip() if cfg.include_conversation_history else ""
        conversation = self._conversation_block(history) if history else ""

        topic_lines: list[str] = []
        if not sufficient and cfg.enable_fallback_suggestions and fallback_suggestions:
            topic_lines = [
                f"- {s.topic}: {s.description}"
                for s in list(fallback_suggestions)[:MAX_TOPICS_SHOWN]
            ]
        topics = self._topics_block(topic_lines)

        tail = (
            f"User Question: {query}\n\n"
            "Answer the user's question using only the information provided above.\n"
        )
        if not sufficient:
            tail += (
                "If the information above doesn't contain enough detail to answer "
                f'the question, say: "{NOT_AVAILABLE_ANSWER}"\n'
            )

        fixed_length = len(head) + len(conversation) + len(topics) + len(tail)
        if fixed_length > budget and history:
            # Oldest conversation text goes first
            history = history[fixed_length - budget :]
            conversation = self._conversation_block(history) if history else ""
            fixed_length = len(head) + len(conversation) + len(topics) + len(tail)
        while fixed_length > budget and topic_lines:
            # Lowest-ranked topics go next
            topic_lines.pop()
            topics = self._topics_block(topic_lines)
            fixed_length = len(head) + len(conversation) + len(topics) + len(tail)
        if fixed_length > budget:
            logger.warning(
                "Context exceeds max_context_tokens by %d chars: "
                "system prompt and question do not fit",
                fixed_length - budget,
            )

        chunks = self._chunk_section(results, cfg, budget - fixed_length)
        context = head + conversation + chunks + topics + tail

        logger.debug(
            "Built context: %d chars (~%d tokens), sufficient=%s",
            len(context),
            len(context) // CHARS_PER_TOKEN,
            sufficient,
        )
        return context

    def format_fallback_response(
        self,
        query: str,
        suggestions: Sequence[FallbackSuggestion],
        has_documents: bool,
    ) -> str:
        """Answer text used instead of the model when context is insufficient."""
        if not has_documents:
            return NO_DOCUMENTS_MESSAGE
        if not suggestions:
            return NO_MATCH_MESSAGE

        lines = [
            "Couldn't find an exact answer to your question. "
            "Do you mean one of these related topics:",
            "",
        ]
        for suggestion in list(suggestions)[:MAX_TOPICS_SHOWN]:
            lines.append(f"• **{suggestion.topic}** - {suggestion.description}")
            if suggestion.related_chunks:
                lines.append(f"  *Available in: {suggestion.source_document}*")
        lines.append("")
        lines.append(
            "Please ask a more specific question about any of these topics, "
            "or try rephrasing your original question."
        )
        return "\n".join(lines) + "\n"

    def extract_key_topics(
        self,
        results: Sequence[RetrievalResult],
        max_topics: int = 5,
    ) -> list[str]:
        """Most frequent keywords across result headers and chunk openings."""
        counts: Counter[str] = Counter()
        for result in results:
            for header in result.chunk.headers:
                counts.update(extract_keywords(header))
            counts.update(extract_keywords(result.chunk.content[:200])[:10])
        return [topic for topic, _ in counts.most_common(max_topics)]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _conversation_block(text: str) -> str:
        return f"Previous conversation context:\n{text}\n\n"

    @staticmethod
    def _topics_block(lines: list[str]) -> str:
        if not lines:
            return ""
        return "Available Topics (no direct match found):\n\n" + "\n".join(lines) + "\n\n"

    @staticmethod
    def _chunk_section(
        results: Sequence[RetrievalResult],
        cfg: ContextConfiguration,
        remaining: int,
    ) -> str:
        if not results or cfg.max_chunks_to_include <= 0:
            return ""

        section_header = "Relevant Document Chunks:\n\n"
        remaining -= len(section_header)
        if remaining <= 0:
            return ""

        ranked = sorted(results, key=lambda r: -r.similarity_score)[: cfg.max_chunks_to_include]
        blocks: list[str] = []
        for number, result in enumerate(ranked, start=1):
            chunk = result.chunk
            meta = f"[Chunk {number}]\n"
            if chunk.headers:
                meta += f"Context: {' > '.join(chunk.headers)}\n"
            meta += f"Source: {chunk.source_document}\n"
            meta += f"Relevance: {result.similarity_score:.2f}\n\n"

            block = f"{meta}{chunk.content}\n\n"
            if len(block) <= remaining:
                blocks.append(block)
                remaining -= len(block)
                continue

            room = remaining - len(meta) - len(TRUNCATION_SUFFIX) - 2
            if room > 0:
                blocks.append(f"{meta}{chunk.content[:room]}{TRUNCATION_SUFFIX}\n\n")
            break

        if not blocks:
            return ""
        return section_header + "".join(blocks)
