"""
Semantic Chunking Service

Splits document text into token-bounded chunks that respect the
document's structure (headings, lists, tables, code, paragraphs) and
carry a breadcrumb of the most recent headings.

Sizing uses a fixed heuristic of 4 characters per token, not a real
tokenizer:
    - MAX_CHUNK_TOKENS=800: hard ceiling for a chunk built from segments
    - OVERLAP_TOKENS=75: whole trailing sentences carried into the next chunk
    - TARGET_CHUNK_TOKENS / MIN_CHUNK_TOKENS: documented soft targets only
"""

from __future__ import annotations

import logging
import re
import unicodedata
from collections import deque

from langchain_text_splitters import RecursiveCharacterTextSplitter

from askbase.models.schemas import ChunkType, SegmentType, SemanticChunk, SemanticSegment

logger = logging.getLogger(__name__)

TARGET_CHUNK_TOKENS: int = 600
MAX_CHUNK_TOKENS: int = 800
MIN_CHUNK_TOKENS: int = 200
OVERLAP_TOKENS: int = 75
CHARS_PER_TOKEN: int = 4
MAX_HEADER_DEPTH: int = 3

_SEGMENT_SEPARATOR = "\n\n"
_NUMBERED_ITEM = re.compile(r"^\d+[.)]\s")
_SENTENCE_END = re.compile(r"[.!?](?=\s|$)")
_BULLETS = ("- ", "* ", "• ")
# Sentence boundaries first, then lines, then words, then a hard cut
_OVERSIZE_SEPARATORS = [r"(?<=[.!?])\s+", "\n", " ", ""]


def estimate_token_count(text: str) -> int:
    """``max(1, len // 4)`` for non-blank text, 0 otherwise."""
    if not text or not text.strip():
        return 0
    return max(1, len(text) // CHARS_PER_TOKEN)


def split_into_sentences(text: str) -> list[str]:
    """
    Split on ``.``, ``!`` or ``?`` followed by whitespace or end of text.

    Abbreviations and decimals followed by a space are split too; this is
    a known limitation of the heuristic.
    """
    sentences: list[str] = []
    start = 0
    for match in _SENTENCE_END.finditer(text):
        sentence = text[start : match.end()].strip()
        if sentence:
            sentences.append(sentence)
        start = match.end()
    tail = text[start:].strip()
    if tail:
        sentences.append(tail)
    return sentences


def _is_caps_heading(line: str) -> bool:
    """Short line made only of upper-case letters, whitespace and punctuation."""
    if not line or len(line) >= 100:
        return False
    return all(
        ch.isupper() or ch.isspace() or unicodedata.category(ch).startswith("P")
        for ch in line
    )


def classify_line(raw_line: str) -> SegmentType:
    """Structural type of one line (indentation is read before trimming)."""
    line = raw_line.strip()
    if line.startswith("#"):
        return SegmentType.HEADING
    if line.startswith("```") or raw_line.startswith(("    ", "\t")):
        return SegmentType.CODE
    if line.startswith(_BULLETS) or _NUMBERED_ITEM.match(line):
        return SegmentType.LIST
    if line.count("|") >= 2:
        return SegmentType.TABLE
    if _is_caps_heading(line):
        return SegmentType.HEADING
    return SegmentType.PARAGRAPH


def detect_chunk_type(content: str) -> ChunkType:
    """Chunk type from its lines: heading > list > table > code > mixed > paragraph."""
    line_types = {classify_line(line) for line in content.split("\n") if line.strip()}
    for segment_type, chunk_type in (
        (SegmentType.HEADING, ChunkType.HEADING),
        (SegmentType.LIST, ChunkType.LIST),
        (SegmentType.TABLE, ChunkType.TABLE),
        (SegmentType.CODE, ChunkType.CODE),
    ):
        if segment_type in line_types:
            return chunk_type
    if len(line_types) > 1:
        return ChunkType.MIXED
    return ChunkType.PARAGRAPH


class SemanticChunker:
    """
    Splits document text into boundary-aware SemanticChunks.

    Algorithm:
        1. Classify lines and merge runs of the same type into segments.
           A heading or the start of a code block always closes the
           current segment.
        2. Accumulate segments into a buffer. When the next segment would
           push the buffer past ``max_chunk_tokens``, emit the buffer and
           seed the next one with the overlap tail of the emitted chunk.
        3. A segment that alone exceeds ``max_chunk_tokens`` is split by
           sentences into its own chunks, without overlap.
        4. Every chunk records the last 3 headings seen so far.

    Usage::

        chunker = SemanticChunker()
        chunks = chunker.chunk(text, "Returns Policy", "/docs/returns.md")

    Args:
        max_chunk_tokens: Hard ceiling for segment-built chunks.
        overlap_tokens: Budget for the sentence overlap between chunks.
    """

    def __init__(
        self,
        max_chunk_tokens: int = MAX_CHUNK_TOKENS,
        overlap_tokens: int = OVERLAP_TOKENS,
    ) -> None:
        if overlap_tokens >= max_chunk_tokens:
            raise ValueError(
                f"overlap_tokens ({overlap_tokens}) must be less than "
                f"max_chunk_tokens ({max_chunk_tokens})"
            )
        self._max_tokens = max_chunk_tokens
        self._overlap_tokens = overlap_tokens
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=max_chunk_tokens * CHARS_PER_TOKEN,
            chunk_overlap=0,
            length_function=len,
            separators=_OVERSIZE_SEPARATORS,
            is_separator_regex=True,
        )

    @property
    def max_chunk_tokens(self) -> int:
        """Hard ceiling for segment-built chunks."""
        return self._max_tokens

    @property
    def overlap_tokens(self) -> int:
        """Budget for the overlap tail carried between chunks."""
        return self._overlap_tokens

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def estimate_token_count(self, text: str) -> int:
        return estimate_token_count(text)

    def split_into_segments(self, text: str) -> list[SemanticSegment]:
        """
        Split raw text into typed segments.

        Blank lines are skipped. Lines inside a fenced code block belong
        to the code segment regardless of their own shape.
        """
        segments: list[SemanticSegment] = []
        current: list[str] = []
        current_type = SegmentType.PARAGRAPH
        offset = 0
        in_fence = False

        def close() -> None:
            nonlocal current, offset
            content = "\n".join(current).strip()
            if content:
                segments.append(
                    SemanticSegment(
                        content=content,
                        type=current_type,
                        start_index=offset,
                        end_index=offset + len(content),
                        token_count=estimate_token_count(content),
                    )
                )
                offset += len(content) + 1
            current = []

        for raw_line in text.split("\n"):
            raw_line = raw_line.rstrip()

            if in_fence:
                current.append(raw_line)
                if raw_line.strip().startswith("```"):
                    in_fence = False
                    close()
                continue

            if not raw_line.strip():
                continue

            line_type = classify_line(raw_line)
            opens_fence = raw_line.strip().startswith("```")

            starts_block = line_type == SegmentType.HEADING or (
                line_type == SegmentType.CODE
                and (opens_fence or current_type != SegmentType.CODE)
            )
            if current and (line_type != current_type or starts_block):
                close()

            current_type = line_type
            current.append(raw_line if line_type == SegmentType.CODE else raw_line.strip())
            in_fence = opens_fence

        close()
        return segments

    def chunk(
        self,
        content: str,
        source_name: str,
        source_path: str,
    ) -> list[SemanticChunk]:
        """
        Chunk a document's text.

        Args:
            content: Extracted document text.
            source_name: Display name recorded on every chunk.
            source_path: Source path recorded on every chunk.

        Returns:
            Ordered chunks with sequential ``chunk_index``. Empty or
            whitespace-only content yields an empty list.
        """
        if not content or not content.strip():
            return []

        chunks: list[SemanticChunk] = []
        headers: deque[str] = deque(maxlen=MAX_HEADER_DEPTH)
        buffer: list[str] = []
        buffer_has_new_content = False

        def emit(text: str) -> None:
            chunks.append(
                self._create_chunk(text, source_name, source_path, len(chunks), headers)
            )

        for segment in self.split_into_segments(content):
            if segment.token_count > self._max_tokens:
                if buffer_has_new_content:
                    emit(_SEGMENT_SEPARATOR.join(buffer))
                if segment.type == SegmentType.HEADING:
                    headers.append(segment.content)
                for piece in self._split_large_segment(segment.content):
                    emit(piece)
                buffer, buffer_has_new_content = [], False
                continue

            if buffer and self._joined_tokens(buffer, segment.content) > self._max_tokens:
                if buffer_has_new_content:
                    closed = _SEGMENT_SEPARATOR.join(buffer)
                    emit(closed)
                    overlap = self._overlap_tail(closed)
                    buffer = [overlap] if overlap else []
                else:
                    buffer = []
                buffer_has_new_content = False
                # The overlap seed never pushes a chunk past the ceiling
                if buffer and self._joined_tokens(buffer, segment.content) > self._max_tokens:
                    buffer = []

            if segment.type == SegmentType.HEADING:
                headers.append(segment.content)

            buffer.append(segment.content)
            buffer_has_new_content = True

        if buffer_has_new_content:
            emit(_SEGMENT_SEPARATOR.join(buffer))

        logger.info(
            "Split document '%s' into %d chunks (max=%d tokens, overlap=%d)",
            source_name,
            len(chunks),
            self._max_tokens,
            self._overlap_tokens,
        )
        return chunks

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _joined_tokens(buffer: list[str], addition: str) -> int:
        joined_length = sum(len(part) for part in buffer)
        joined_length += len(_SEGMENT_SEPARATOR) * len(buffer) + len(addition)
        return max(1, joined_length // CHARS_PER_TOKEN)

    def _split_large_segment(self, text: str) -> list[str]:
        """Split by sentences, then whitespace, then characters, up to ``max_chunk_tokens``."""
        return self._splitter.split_text(text)

    def _overlap_tail(self, text: str) -> str:
        """Longest run of whole trailing sentences within the overlap budget."""
        budget = self._overlap_tokens * CHARS_PER_TOKEN
        if len(text) <= budget:
            return text.strip()

        tail: list[str] = []
        length = 0
        for sentence in reversed(split_into_sentences(text)):
            added = len(sentence) + (1 if tail else 0)
            if length + added > budget:
                break
            tail.append(sentence)
            length += added
        return " ".join(reversed(tail))

    def _create_chunk(
        self,
        text: str,
        source_name: str,
        source_path: str,
        chunk_index: int,
        headers: deque[str],
    ) -> SemanticChunk:
        content = text.strip()
        return SemanticChunk(
            content=content,
            source_document=source_name,
            file_path=source_path,
            chunk_index=chunk_index,
            token_count=estimate_token_count(content),
            type=detect_chunk_type(content),
            headers=tuple(headers),
        )
