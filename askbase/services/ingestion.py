"""
Document Ingestion Service

Document source for the ASKBASE knowledge store.
Discovers supported files in a folder and extracts their text with
file metadata (name, path, size, modification time).

Supported formats:
    - Plain text (.txt) and Markdown (.md): UTF-8 decoding
    - JSON (.json): flattened to ``path.to.key: value`` lines
    - PDF (.pdf): text extraction via PyMuPDF (fitz)

A file that cannot be read or parsed is still yielded, with
placeholder content, so it stays visible in the index.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import fitz  # PyMuPDF

from askbase.core.cache import KeyedCache
from askbase.models.schemas import SourceDocument

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS: Final[frozenset[str]] = frozenset({".txt", ".md", ".json", ".pdf"})
PARSE_FAILURE_PLACEHOLDER: Final[str] = "No content extracted - parsing failed"


def is_supported(path: Path) -> bool:
    return path.suffix.lower() in SUPPORTED_EXTENSIONS


class FileProcessor:
    """
    Async document source with a per-path extraction cache.

    Blocking I/O (stat, file reads, PDF parsing) is offloaded to a thread
    pool via asyncio.to_thread. Extracted documents are cached by path
    and reused while the file's mtime and size are unchanged.

    Usage::

        processor = FileProcessor()
        for path in await processor.discover(Path("./docs")):
            doc = await processor.load(path)
            print(doc.file_name, len(doc.content))

    Args:
        cache: Extraction cache; a private one is created when omitted.
    """

    def __init__(self, cache: KeyedCache[str, SourceDocument] | None = None) -> None:
        self._cache: KeyedCache[str, SourceDocument] = (
            cache if cache is not None else KeyedCache(max_entries=512)
        )

    @property
    def cache(self) -> KeyedCache[str, SourceDocument]:
        return self._cache

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def discover(self, folder: Path) -> list[Path]:
        """
        List supported files under ``folder`` (recursive, sorted).

        Raises:
            FileNotFoundError: If the folder does not exist.
        """
        if not await asyncio.to_thread(folder.is_dir):
            raise FileNotFoundError(f"Folder not found: {folder}")

        def _scan() -> list[Path]:
            return sorted(p for p in folder.rglob("*") if p.is_file() and is_supported(p))

        files = await asyncio.to_thread(_scan)
        logger.info("Discovered %d supported files in %s", len(files), folder)
        return files

    async def load(self, file_path: Path) -> SourceDocument:
        """
        Extract a file's text and metadata.

        Args:
            file_path: Path to the source file.

        Returns:
            SourceDocument; ``content`` is the parse-failure placeholder
            when extraction failed.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file extension is not supported.
        """
        if not await asyncio.to_thread(file_path.is_file):
            raise FileNotFoundError(f"File not found: {file_path}")

        suffix = file_path.suffix.lower()
        if suffix not in SUPPORTED_EXTENSIONS:
            raise ValueError(
                f"Unsupported file type: '{suffix}'. "
                f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
            )

        stat = await asyncio.to_thread(file_path.stat)
        last_modified = datetime.fromtimestamp(stat.st_mtime, tz=UTC)
        key = str(file_path)

        cached = self._cache.get(key)
        if (
            cached is not None
            and cached.last_modified == last_modified
            and cached.file_size_bytes == stat.st_size
        ):
            logger.debug("Extraction cache hit: %s", file_path.name)
            return cached

        try:
            raw = await asyncio.to_thread(file_path.read_bytes)
            content = await asyncio.to_thread(self._extract, suffix, raw)
        except (OSError, ValueError, RuntimeError) as e:
            logger.warning("Failed to parse %s: %s", file_path, e)
            content = PARSE_FAILURE_PLACEHOLDER

        if not content.strip():
            content = PARSE_FAILURE_PLACEHOLDER

        document = SourceDocument(
            content=content,
            file_name=file_path.name,
            file_path=key,
            last_modified=last_modified,
            file_size_bytes=stat.st_size,
            file_type=suffix,
        )
        self._cache.put(key, document)

        logger.info(
            "Processed %s: %s (%d bytes, %d chars)",
            suffix.lstrip(".").upper(),
            file_path.name,
            stat.st_size,
            len(content),
        )
        return document

    def invalidate(self, file_path: Path) -> None:
        self._cache.invalidate(str(file_path))

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @classmethod
    def _extract(cls, suffix: str, raw: bytes) -> str:
        """
        Dispatch on extension.

        Synchronous: always call via ``asyncio.to_thread``.
        """
        if suffix == ".pdf":
            return cls._extract_pdf_content(raw)
        text = raw.decode("utf-8", errors="replace")
        if suffix == ".json":
            return cls._flatten_json_text(text)
        return text

    @staticmethod
    def _extract_pdf_content(raw: bytes) -> str:
        doc = fitz.open(stream=raw, filetype="pdf")
        try:
            return "\n".join(page.get_text() for page in doc)
        finally:
            doc.close()

    @classmethod
    def _flatten_json_text(cls, text: str) -> str:
        """Flatten a JSON document into ``dotted.path: value`` lines."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return text
        lines: list[str] = []
        cls._flatten(data, "", lines)
        return "\n".join(lines)

    @classmethod
    def _flatten(cls, value: Any, prefix: str, lines: list[str]) -> None:
        if isinstance(value, dict):
            for key, item in value.items():
                cls._flatten(item, f"{prefix}.{key}" if prefix else str(key), lines)
        elif isinstance(value, list):
            for index, item in enumerate(value):
                cls._flatten(item, f"{prefix}[{index}]", lines)
        else:
            text = value if isinstance(value, str) else json.dumps(value)
            lines.append(f"{prefix}: {text}" if prefix else text)
