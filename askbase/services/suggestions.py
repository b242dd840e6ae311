"""
Follow-up Suggestion Service

Asks the generative model for follow-up questions after an answer and
parses whatever comes back. Always yields at most 3 suggestions, falling
back to keyword heuristics when the model output is unusable.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import Final

from askbase.models.schemas import DocumentSnippet, SuggestedQuestion
from askbase.services.conversation import ConversationStore
from askbase.services.llm import LLMService

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS: Final[int] = 3
MIN_QUESTION_LENGTH: Final[int] = 10
SNIPPET_PREVIEW_CHARS: Final[int] = 200

_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)
_BULLET_PREFIXES = ("-", "•", "*")

_OUTPUT_FORMAT = """

Generate exactly 3 follow-up questions that are:
1. Natural and conversational
2. Build upon the current answer
3. Help the user explore related topics
4. Are specific and actionable

Format your response as a JSON array of strings:
["Question 1", "Question 2", "Question 3"]"""

_GENERIC_QUESTIONS: Final[tuple[str, ...]] = (
    "Can you provide more details about this?",
    "What else should I know about this topic?",
    "Are there any exceptions or special cases?",
)


class AutoSuggestService:
    """
    Generates follow-up questions for an answered question.

    Usage::

        service = AutoSuggestService(llm_service)
        suggestions = await service.generate_suggestions(question, answer, snippets)

    Args:
        llm: Client used for the suggestion prompt.
        conversations: Optional store for history-aware suggestions.
    """

    def __init__(
        self,
        llm: LLMService,
        conversations: ConversationStore | None = None,
    ) -> None:
        self._llm = llm
        self._conversations = conversations

    async def generate_suggestions(
        self,
        question: str,
        answer: str,
        snippets: Sequence[DocumentSnippet] | None = None,
    ) -> list[SuggestedQuestion]:
        prompt = self.build_prompt(question, answer, snippets)
        raw = await self._llm.generate_suggestions(prompt)
        return self.parse_suggestions(raw, answer)

    async def generate_contextual_suggestions(
        self,
        conversation_id: str,
        current_answer: str,
    ) -> list[SuggestedQuestion]:
        """Suggestions that take the last 3 turns of a conversation into account."""
        if self._conversations is None:
            return self.fallback_suggestions(current_answer)

        history = await self._conversations.get_chat_history(conversation_id, max_turns=3)
        transcript = "\n".join(f"{m.sender}: {m.content}" for m in history)
        prompt = (
            "Based on the following conversation history and the latest AI response, "
            "generate 3 relevant follow-up questions.\n\n"
            f"Conversation History:\n{transcript}\n\n"
            f"Latest AI Response: {current_answer}"
            + _OUTPUT_FORMAT
        )
        raw = await self._llm.generate_suggestions(prompt)
        return self.parse_suggestions(raw, current_answer)

    # ------------------------------------------------------------------
    # Prompt and parsing
    # ------------------------------------------------------------------

    @staticmethod
    def build_prompt(
        question: str,
        answer: str,
        snippets: Sequence[DocumentSnippet] | None = None,
    ) -> str:
        prompt = (
            "Based on the following Q&A exchange, generate 3 relevant follow-up "
            "questions that a user might ask.\n"
            "The questions should be natural, helpful, and build upon the "
            "information provided.\n\n"
            f"Original Question: {question}\n\n"
            f"AI Answer: {answer}"
        )
        if snippets:
            prompt += "\n\nRelevant document snippets:\n"
            for snippet in list(snippets)[:3]:
                preview = snippet.snippet_text[:SNIPPET_PREVIEW_CHARS]
                prompt += f"- From {snippet.file_name}: {preview}...\n"
        return prompt + _OUTPUT_FORMAT

    def parse_suggestions(self, raw: str, answer: str = "") -> list[SuggestedQuestion]:
        """
        Parse model output.

        Tries a JSON array of strings first, then lines ending in ``?``,
        then keyword heuristics on ``answer``.
        """
        match = _JSON_ARRAY.search(raw)
        if match is not None:
            try:
                parsed = json.loads(match.group(0))
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                questions = [q.strip() for q in parsed if isinstance(q, str) and q.strip()]
                if questions:
                    return self._scored(questions)
                return self.fallback_suggestions(answer)

        questions = self._questions_from_text(raw)
        if questions:
            return self._scored(questions)
        return self.fallback_suggestions(answer)

    @staticmethod
    def fallback_suggestions(answer: str) -> list[SuggestedQuestion]:
        """Keyword-driven suggestions used when the model gives nothing usable."""
        suggestions: list[SuggestedQuestion] = []
        lowered = answer.lower()
        if "price" in lowered or "cost" in lowered:
            suggestions.append(
                SuggestedQuestion(
                    question="Are there any discounts or special offers available?",
                    relevance_score=0.9,
                )
            )
        if "feature" in lowered or "include" in lowered:
            suggestions.append(
                SuggestedQuestion(
                    question="What are the main benefits of this?",
                    relevance_score=0.8,
                )
            )
        for generic in _GENERIC_QUESTIONS:
            if len(suggestions) >= MAX_SUGGESTIONS:
                break
            suggestions.append(
                SuggestedQuestion(
                    question=generic,
                    relevance_score=round(0.7 - 0.1 * len(suggestions), 2),
                )
            )
        return suggestions[:MAX_SUGGESTIONS]

    @staticmethod
    def _questions_from_text(text: str) -> list[str]:
        questions: list[str] = []
        for line in text.splitlines():
            candidate = line.strip()
            if candidate.startswith(_BULLET_PREFIXES):
                candidate = candidate[1:].strip()
            if candidate.endswith("?") and len(candidate) > MIN_QUESTION_LENGTH:
                questions.append(candidate)
        return questions

    @staticmethod
    def _scored(questions: list[str]) -> list[SuggestedQuestion]:
        return [
            SuggestedQuestion(question=question, relevance_score=round(1.0 - index * 0.1, 2))
            for index, question in enumerate(questions[:MAX_SUGGESTIONS])
        ]
