"""
Ingestion Service Unit Tests

Verifies FileProcessor behaviour: discovery, PDF / Markdown / JSON
extraction, the parse-failure placeholder, the extraction cache and
error handling.

No external services required — runs entirely offline.
"""

from __future__ import annotations

import os
from pathlib import Path

import fitz
import pytest

from askbase.core.cache import KeyedCache
from askbase.models.schemas import SourceDocument
from askbase.services.ingestion import (
    PARSE_FAILURE_PLACEHOLDER,
    SUPPORTED_EXTENSIONS,
    FileProcessor,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def processor() -> FileProcessor:
    """Fresh FileProcessor instance."""
    return FileProcessor()


@pytest.fixture
def sample_pdf(tmp_path: Path) -> Path:
    """Create a minimal single-page PDF with known text content."""
    path = tmp_path / "test.pdf"
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Hello ASKBASE")
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture
def sample_md(tmp_path: Path) -> Path:
    """Create a minimal Markdown file."""
    path = tmp_path / "test.md"
    path.write_text("# ASKBASE\n\nKnowledge base documentation.\n", encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_lists_supported_files_recursively(
        self, processor: FileProcessor, tmp_path: Path
    ) -> None:
        (tmp_path / "b.md").write_text("b", encoding="utf-8")
        (tmp_path / "a.txt").write_text("a", encoding="utf-8")
        (tmp_path / "image.png").write_bytes(b"\x89PNG")
        nested = tmp_path / "nested"
        nested.mkdir()
        (nested / "c.json").write_text("{}", encoding="utf-8")

        files = await processor.discover(tmp_path)

        assert [p.name for p in files] == ["a.txt", "b.md", "c.json"]

    @pytest.mark.asyncio
    async def test_missing_folder(self, processor: FileProcessor, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            await processor.discover(tmp_path / "missing")


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


class TestExtraction:
    @pytest.mark.asyncio
    async def test_pdf_text(self, processor: FileProcessor, sample_pdf: Path) -> None:
        doc = await processor.load(sample_pdf)

        assert isinstance(doc, SourceDocument)
        assert "Hello ASKBASE" in doc.content
        assert doc.file_type == ".pdf"

    @pytest.mark.asyncio
    async def test_markdown_metadata(self, processor: FileProcessor, sample_md: Path) -> None:
        doc = await processor.load(sample_md)

        assert doc.content.startswith("# ASKBASE")
        assert doc.file_name == "test.md"
        assert doc.file_path == str(sample_md)
        assert doc.file_size_bytes == sample_md.stat().st_size
        assert doc.last_modified.tzinfo is not None

    @pytest.mark.asyncio
    async def test_json_is_flattened(self, processor: FileProcessor, tmp_path: Path) -> None:
        path = tmp_path / "faq.json"
        path.write_text(
            '{"returns": {"window_days": 30, "policy": "Full refund"}, "tags": ["a", "b"]}',
            encoding="utf-8",
        )

        doc = await processor.load(path)

        assert doc.content.splitlines() == [
            "returns.window_days: 30",
            "returns.policy: Full refund",
            "tags[0]: a",
            "tags[1]: b",
        ]

    @pytest.mark.asyncio
    async def test_invalid_utf8_is_replaced(
        self, processor: FileProcessor, tmp_path: Path
    ) -> None:
        path = tmp_path / "latin.txt"
        path.write_bytes(b"caf\xe9 menu")

        doc = await processor.load(path)

        assert doc.content == "caf\ufffd menu"


class TestParseFailures:
    @pytest.mark.asyncio
    async def test_corrupt_pdf_yields_placeholder(
        self, processor: FileProcessor, tmp_path: Path
    ) -> None:
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"this is not a pdf")

        doc = await processor.load(path)

        assert doc.content == PARSE_FAILURE_PLACEHOLDER
        assert doc.file_name == "broken.pdf"

    @pytest.mark.asyncio
    async def test_empty_file_yields_placeholder(
        self, processor: FileProcessor, tmp_path: Path
    ) -> None:
        path = tmp_path / "empty.txt"
        path.write_text("   \n", encoding="utf-8")

        doc = await processor.load(path)

        assert doc.content == PARSE_FAILURE_PLACEHOLDER


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class TestExtractionCache:
    @pytest.mark.asyncio
    async def test_unchanged_file_served_from_cache(self, sample_md: Path) -> None:
        cache: KeyedCache[str, SourceDocument] = KeyedCache()
        processor = FileProcessor(cache=cache)

        first = await processor.load(sample_md)
        second = await processor.load(sample_md)

        assert second is first
        assert str(sample_md) in cache

    @pytest.mark.asyncio
    async def test_modified_file_is_re_extracted(
        self, processor: FileProcessor, sample_md: Path
    ) -> None:
        first = await processor.load(sample_md)
        sample_md.write_text("# Changed\n\nNew content here.\n", encoding="utf-8")
        stat = sample_md.stat()
        os.utime(sample_md, (stat.st_atime, stat.st_mtime + 10))

        second = await processor.load(sample_md)

        assert second is not first
        assert second.content.startswith("# Changed")

    @pytest.mark.asyncio
    async def test_invalidate_drops_entry(
        self, processor: FileProcessor, sample_md: Path
    ) -> None:
        await processor.load(sample_md)

        processor.invalidate(sample_md)

        assert str(sample_md) not in processor.cache


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


class TestErrorHandling:
    @pytest.mark.asyncio
    async def test_unsupported_extension(
        self, processor: FileProcessor, tmp_path: Path
    ) -> None:
        path = tmp_path / "notes.docx"
        path.write_bytes(b"binary")

        with pytest.raises(ValueError, match="Unsupported file type"):
            await processor.load(path)

    @pytest.mark.asyncio
    async def test_file_not_found(self, processor: FileProcessor, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            await processor.load(tmp_path / "nonexistent.md")

    def test_supported_extensions_constant(self) -> None:
        assert SUPPORTED_EXTENSIONS == {".txt", ".md", ".json", ".pdf"}
