"""
Chunking Service Unit Tests

Verifies SemanticChunker behaviour: line classification, segment
building, chunk bounds, overlap handling, header tracking and edge
cases.

No external services required — runs entirely offline.
"""

from __future__ import annotations

import pytest

from askbase.models.schemas import ChunkType, SegmentType, SemanticChunk
from askbase.services.chunking import (
    MAX_CHUNK_TOKENS,
    MAX_HEADER_DEPTH,
    OVERLAP_TOKENS,
    SemanticChunker,
    classify_line,
    detect_chunk_type,
    estimate_token_count,
    split_into_sentences,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sections(count: int) -> str:
    """Markdown with ``count`` heading + paragraph sections."""
    return "\n\n".join(
        f"# Part {i}\n"
        f"Filler words for part {i} go here and continue for a while. End of part {i}."
        for i in range(count)
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def chunker() -> SemanticChunker:
    """Default SemanticChunker instance."""
    return SemanticChunker()


@pytest.fixture
def small_chunker() -> SemanticChunker:
    """SemanticChunker with small settings for deterministic testing."""
    return SemanticChunker(max_chunk_tokens=40, overlap_tokens=10)


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


class TestTokenEstimate:
    def test_blank_text_is_zero(self) -> None:
        assert estimate_token_count("") == 0
        assert estimate_token_count("   \n") == 0

    def test_short_text_is_at_least_one(self) -> None:
        assert estimate_token_count("abc") == 1

    def test_four_chars_per_token(self) -> None:
        assert estimate_token_count("a" * 40) == 10


class TestSentences:
    def test_splits_on_terminal_punctuation(self) -> None:
        assert split_into_sentences("Hello world. How are you? Fine!") == [
            "Hello world.",
            "How are you?",
            "Fine!",
        ]

    def test_keeps_unterminated_tail(self) -> None:
        assert split_into_sentences("One. Two") == ["One.", "Two"]

    def test_decimal_without_space_is_not_split(self) -> None:
        assert split_into_sentences("Costs 3.50 today.") == ["Costs 3.50 today."]


class TestClassifyLine:
    @pytest.mark.parametrize(
        ("line", "expected"),
        [
            ("# Title", SegmentType.HEADING),
            ("INTRODUCTION", SegmentType.HEADING),
            ("```python", SegmentType.CODE),
            ("    indented = True", SegmentType.CODE),
            ("- item", SegmentType.LIST),
            ("* item", SegmentType.LIST),
            ("2) second", SegmentType.LIST),
            ("| a | b |", SegmentType.TABLE),
            ("Just a sentence.", SegmentType.PARAGRAPH),
            ("---", SegmentType.HEADING),
            ("== NOTES ==", SegmentType.HEADING),
        ],
    )
    def test_line_types(self, line: str, expected: SegmentType) -> None:
        assert classify_line(line) == expected

    def test_long_caps_line_is_paragraph(self) -> None:
        assert classify_line("A" * 120) == SegmentType.PARAGRAPH


class TestDetectChunkType:
    def test_heading_wins(self) -> None:
        assert detect_chunk_type("# Title\n- item\nText") == ChunkType.HEADING

    def test_list(self) -> None:
        assert detect_chunk_type("- a\n- b") == ChunkType.LIST

    def test_table_before_code(self) -> None:
        assert detect_chunk_type("| a | b |\n    code") == ChunkType.TABLE

    def test_plain_paragraph(self) -> None:
        assert detect_chunk_type("Just prose.\nMore prose.") == ChunkType.PARAGRAPH


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------


class TestSegments:
    def test_runs_of_same_type_merge(self, chunker: SemanticChunker) -> None:
        segments = chunker.split_into_segments(
            "# Title\nFirst line.\nSecond line.\n- a\n- b"
        )

        assert [s.type for s in segments] == [
            SegmentType.HEADING,
            SegmentType.PARAGRAPH,
            SegmentType.LIST,
        ]
        assert segments[1].content == "First line.\nSecond line."

    def test_heading_closes_previous_heading(self, chunker: SemanticChunker) -> None:
        segments = chunker.split_into_segments("# One\n# Two")

        assert [s.content for s in segments] == ["# One", "# Two"]

    def test_fenced_block_is_one_code_segment(self, chunker: SemanticChunker) -> None:
        segments = chunker.split_into_segments(
            "Intro text.\n```\n# not a heading\n- not a list\n```\nAfter."
        )

        assert [s.type for s in segments] == [
            SegmentType.PARAGRAPH,
            SegmentType.CODE,
            SegmentType.PARAGRAPH,
        ]
        assert "# not a heading" in segments[1].content

    def test_blank_lines_are_skipped(self, chunker: SemanticChunker) -> None:
        segments = chunker.split_into_segments("\n\nOnly text.\n\n")

        assert len(segments) == 1
        assert segments[0].token_count == estimate_token_count("Only text.")


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


class TestChunking:
    def test_empty_content_yields_no_chunks(self, chunker: SemanticChunker) -> None:
        assert chunker.chunk("", "Empty", "/docs/empty.txt") == []
        assert chunker.chunk("  \n\t", "Empty", "/docs/empty.txt") == []

    def test_short_document_single_chunk(self, chunker: SemanticChunker) -> None:
        chunks = chunker.chunk(
            "Items may be returned within 30 days.", "Returns Policy", "/docs/r.txt"
        )

        assert len(chunks) == 1
        chunk = chunks[0]
        assert isinstance(chunk, SemanticChunk)
        assert chunk.chunk_index == 0
        assert chunk.source_document == "Returns Policy"
        assert chunk.file_path == "/docs/r.txt"
        assert chunk.type == ChunkType.PARAGRAPH

    def test_indices_are_sequential(self, small_chunker: SemanticChunker) -> None:
        chunks = small_chunker.chunk(_sections(6), "Guide", "/docs/guide.md")

        assert len(chunks) > 1
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))

    def test_chunks_respect_token_ceiling(self, small_chunker: SemanticChunker) -> None:
        chunks = small_chunker.chunk(_sections(6), "Guide", "/docs/guide.md")

        assert all(c.token_count <= small_chunker.max_chunk_tokens for c in chunks)

    def test_overlap_carries_trailing_sentence(self, small_chunker: SemanticChunker) -> None:
        chunks = small_chunker.chunk(_sections(4), "Guide", "/docs/guide.md")

        assert chunks[0].content.endswith("# Part 1")
        assert chunks[1].content.startswith("End of part 0.")

    def test_headers_capped_at_depth(self, small_chunker: SemanticChunker) -> None:
        chunks = small_chunker.chunk(_sections(8), "Guide", "/docs/guide.md")

        assert all(len(c.headers) <= MAX_HEADER_DEPTH for c in chunks)
        assert chunks[-1].headers[-1] == "# Part 7"

    def test_oversized_segment_split_by_sentences(self) -> None:
        chunker = SemanticChunker(max_chunk_tokens=50, overlap_tokens=10)
        text = " ".join(f"Sentence number {i} has some words." for i in range(40))

        chunks = chunker.chunk(text, "Long", "/docs/long.txt")

        assert len(chunks) > 1
        assert all(len(c.content) <= 50 * 4 for c in chunks)
        assert chunks[0].content.startswith("Sentence number 0")

    def test_unbreakable_word_is_hard_wrapped(self) -> None:
        chunker = SemanticChunker(max_chunk_tokens=50, overlap_tokens=10)

        chunks = chunker.chunk("x" * 1000, "Blob", "/docs/blob.txt")

        assert len(chunks) == 5
        assert all(len(c.content) == 200 for c in chunks)

    def test_chunks_cover_every_word(self) -> None:
        chunker = SemanticChunker(max_chunk_tokens=50, overlap_tokens=10)
        long_paragraph = " ".join(
            f"Paragraph sentence {i} mentions refund{i} and carrier{i}." for i in range(30)
        )
        text = (
            "# Returns Handbook\n\n"
            "WARRANTY TERMS\n"
            "- keep the receipt\n"
            "- pack items securely\n\n"
            "| region | days |\n"
            "| EU | 30 |\n\n"
            f"{long_paragraph}\n\n"
            "```\nrefund --all\n```\n"
            "Closing words."
        )

        chunks = chunker.chunk(text, "Handbook", "/docs/handbook.md")

        joined = "\n".join(c.content for c in chunks)
        missing = [word for word in text.split() if word not in joined]
        assert missing == []
        assert all(c.token_count <= 50 for c in chunks)

    def test_markdown_heading_chunk_type(self, chunker: SemanticChunker) -> None:
        chunks = chunker.chunk("# Title\nBody text.", "Doc", "/docs/doc.md")

        assert chunks[0].type == ChunkType.HEADING
        assert chunks[0].headers == ("# Title",)


class TestConfiguration:
    def test_defaults(self, chunker: SemanticChunker) -> None:
        assert chunker.max_chunk_tokens == MAX_CHUNK_TOKENS
        assert chunker.overlap_tokens == OVERLAP_TOKENS

    def test_overlap_must_be_below_max(self) -> None:
        with pytest.raises(ValueError, match="overlap_tokens"):
            SemanticChunker(max_chunk_tokens=100, overlap_tokens=100)
