"""
Query Expansion Service

Derives weighted variants of a user question to widen retrieval recall.

Expansion kinds (weights multiply similarity scores downstream):
    - Original   (1.0): the question itself, always first
    - Broader    (0.8): phrase substitutions, vague questions only
    - Narrower   (0.6): top 3 keywords as single-term queries, vague only
    - Synonym    (0.7): one variant per synonym of a matched word
    - Contextual (0.5): question + a generic term, always
"""

from __future__ import annotations

import logging
import re
from typing import Final

from askbase.models.schemas import ExpandedQuery, QueryType

logger = logging.getLogger(__name__)

BROADER_WEIGHT: Final[float] = 0.8
SYNONYM_WEIGHT: Final[float] = 0.7
NARROWER_WEIGHT: Final[float] = 0.6
CONTEXTUAL_WEIGHT: Final[float] = 0.5
MAX_NARROWER_TERMS: Final[int] = 3

STOP_WORDS: Final[frozenset[str]] = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "is", "are", "was", "were", "be", "been", "have", "has", "had",
        "do", "does", "did", "will", "would", "could", "should", "may", "might", "can",
        "what", "how", "when", "where", "why", "who", "this", "that", "these", "those",
        "i", "you", "he", "she", "it", "we", "they", "about", "into", "through",
        "during", "before", "after", "above", "below", "up", "down", "out", "off",
        "over", "under",
    }
)  # fmt: skip

SYNONYMS: Final[dict[str, tuple[str, ...]]] = {
    "help": ("assist", "support", "aid"),
    "problem": ("issue", "trouble", "difficulty"),
    "information": ("data", "details", "facts"),
    "explain": ("describe", "clarify", "elaborate"),
}

BROADER_SUBSTITUTIONS: Final[tuple[tuple[str, str, str], ...]] = (
    ("how to", "information about", "how-to question"),
    ("what is", "about", "definition question"),
    ("what are", "about", "definition question"),
    ("tell me about", "information about", "open request"),
    ("explain", "overview of", "explanation request"),
)

CONTEXTUAL_TERMS: Final[tuple[str, ...]] = ("introduction", "overview", "basics", "fundamentals")

_PRONOUNS = r"(this|that|it|they|them|these|those)"
_VAGUE_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    # Interrogative + existential with nothing concrete after it
    re.compile(
        r"^\s*(what|how|why|when|where|who)\s+(is|are|was|were|do|does|did)\s+"
        + _PRONOUNS
        + r"(\s+(about|mean|for))?\s*[?.!]*\s*$",
        re.IGNORECASE,
    ),
    re.compile(r"\b(tell me|explain|describe|overview|summary|summarize)\b", re.IGNORECASE),
    re.compile(r"\b(everything|anything|general)\b", re.IGNORECASE),
)

_TOKEN = re.compile(r"[^\W_]+")


def extract_keywords(text: str) -> list[str]:
    """
    Lower-case content words of ``text`` in order of appearance.

    Tokens of 2 characters or fewer and stop words are dropped;
    duplicates are kept.
    """
    return [
        token
        for token in _TOKEN.findall(text.lower())
        if len(token) > 2 and token not in STOP_WORDS
    ]


def is_vague_query(query: str) -> bool:
    return any(pattern.search(query) for pattern in _VAGUE_PATTERNS)


class QueryExpander:
    """
    Rule-based query expander.

    Usage::

        expander = QueryExpander()
        for variant in expander.expand("tell me about this"):
            print(variant.type, variant.weight, variant.query)
    """

    def expand(self, original_query: str) -> list[ExpandedQuery]:
        """
        Expand a question into weighted variants, Original first.

        Variants whose text repeats an earlier one are dropped.
        """
        query = original_query.strip()
        expansions = [
            ExpandedQuery(
                query=query,
                type=QueryType.ORIGINAL,
                weight=1.0,
                reason="Original query",
            )
        ]
        if not query:
            return expansions

        if is_vague_query(query):
            expansions.extend(self._broader(query))
            expansions.extend(self._narrower(query))
        expansions.extend(self._synonyms(query))
        expansions.extend(self._contextual(query))

        seen: set[str] = set()
        unique: list[ExpandedQuery] = []
        for expansion in expansions:
            key = expansion.query.lower()
            if key not in seen:
                seen.add(key)
                unique.append(expansion)

        logger.debug("Expanded '%s' into %d queries", query, len(unique))
        return unique

    # ------------------------------------------------------------------
    # Expansion kinds
    # ------------------------------------------------------------------

    @staticmethod
    def _broader(query: str) -> list[ExpandedQuery]:
        variants: list[ExpandedQuery] = []
        for phrase, replacement, kind in BROADER_SUBSTITUTIONS:
            pattern = re.compile(rf"\b{re.escape(phrase)}\b", re.IGNORECASE)
            if pattern.search(query):
                variants.append(
                    ExpandedQuery(
                        query=pattern.sub(replacement, query),
                        type=QueryType.BROADER,
                        weight=BROADER_WEIGHT,
                        reason=f"Broader context for {kind}",
                    )
                )
        return variants

    @staticmethod
    def _narrower(query: str) -> list[ExpandedQuery]:
        return [
            ExpandedQuery(
                query=keyword,
                type=QueryType.NARROWER,
                weight=NARROWER_WEIGHT,
                reason=f"Specific focus on key term: {keyword}",
            )
            for keyword in extract_keywords(query)[:MAX_NARROWER_TERMS]
        ]

    @staticmethod
    def _synonyms(query: str) -> list[ExpandedQuery]:
        variants: list[ExpandedQuery] = []
        for word, replacements in SYNONYMS.items():
            pattern = re.compile(rf"\b{word}\b", re.IGNORECASE)
            if not pattern.search(query):
                continue
            for replacement in replacements:
                variants.append(
                    ExpandedQuery(
                        query=pattern.sub(replacement, query),
                        type=QueryType.SYNONYM,
                        weight=SYNONYM_WEIGHT,
                        reason=f"Synonym replacement: {word} -> {replacement}",
                    )
                )
        return variants

    @staticmethod
    def _contextual(query: str) -> list[ExpandedQuery]:
        return [
            ExpandedQuery(
                query=f"{query} {term}",
                type=QueryType.CONTEXTUAL,
                weight=CONTEXTUAL_WEIGHT,
                reason=f"Contextual expansion with: {term}",
            )
            for term in CONTEXTUAL_TERMS
        ]
