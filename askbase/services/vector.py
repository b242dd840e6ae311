"""
Vector Embedding Service

Turns text into fixed-dimension float32 vectors and compares them.

Backends (selected by ``EMBEDDING_BACKEND``):
    - HashingEmbedder: deterministic signed feature hashing of character
      trigrams. No model download, stable across processes; the default.
    - SentenceTransformerEmbedder: local all-MiniLM-L6-v2 (384 dimensions),
      lazily loaded, inference offloaded with asyncio.to_thread.

Vectors are stored as packed little-endian float32 bytes
(see ``pack_vector`` / ``unpack_vector``).
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import numpy as np
import numpy.typing as npt

if TYPE_CHECKING:
    from askbase.core.config import Settings

logger = logging.getLogger(__name__)

MODEL_NAME: str = "all-MiniLM-L6-v2"
EMBEDDING_DIMENSION: int = 384
HASHING_MODEL_VERSION: str = "hashing-trigram-v1"

Vector = npt.NDArray[np.float32]

_WORD = re.compile(r"\w+")
_FLOAT32 = np.dtype("<f4")


# ---------------------------------------------------------------------------
# Vector helpers
# ---------------------------------------------------------------------------


def cosine_similarity(a: Sequence[float] | Vector, b: Sequence[float] | Vector) -> float:
    """
    Plain cosine similarity in [-1, 1].

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        ValueError: If the vectors differ in length.
    """
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape:
        raise ValueError(f"Vector dimension mismatch: {va.shape[0]} != {vb.shape[0]}")

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = float(np.dot(va, vb)) / (norm_a * norm_b)
    return max(-1.0, min(1.0, score))


def pack_vector(vector: Sequence[float] | Vector) -> bytes:
    """Serialize a vector as little-endian float32 bytes."""
    return np.asarray(vector, dtype=_FLOAT32).tobytes()


def unpack_vector(data: bytes, dimensions: int) -> Vector:
    """
    Deserialize little-endian float32 bytes.

    Raises:
        ValueError: If ``len(data)`` is not ``4 * dimensions``.
    """
    expected = dimensions * _FLOAT32.itemsize
    if len(data) != expected:
        raise ValueError(
            f"Corrupt vector: {len(data)} bytes, expected {expected} "
            f"for {dimensions} dimensions"
        )
    return np.frombuffer(data, dtype=_FLOAT32).astype(np.float32)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class EmbeddingProvider(ABC):
    """
    Async embedding contract shared by every backend.

    Subclasses implement ``_encode_sync`` (CPU-bound, batch); the public
    coroutines run it in a worker thread so the event loop stays free.
    Empty or whitespace-only text always maps to the all-zero vector.
    """

    def __init__(self, dimensions: int) -> None:
        if dimensions < 1:
            raise ValueError(f"dimensions must be positive, got {dimensions}")
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    @abstractmethod
    def model_version(self) -> str:
        """Tag stored next to every vector this provider produces."""

    @abstractmethod
    def _encode_sync(self, texts: list[str]) -> npt.NDArray[np.float32]:
        """Encode non-empty texts into a ``(len(texts), dimensions)`` array."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> Vector:
        """Embed a single text."""
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: Sequence[str]) -> list[Vector]:
        """
        Embed a batch of texts, preserving order.

        Blank entries are not sent to the backend; they become zero vectors.
        """
        if not texts:
            return []

        results: list[Vector] = [
            np.zeros(self._dimensions, dtype=np.float32) for _ in texts
        ]
        positions = [i for i, text in enumerate(texts) if text and text.strip()]
        if positions:
            encoded = await asyncio.to_thread(
                self._encode_sync, [texts[i] for i in positions]
            )
            for row, position in zip(encoded, positions, strict=True):
                results[position] = np.asarray(row, dtype=np.float32)
        return results

    def similarity(self, a: Sequence[float] | Vector, b: Sequence[float] | Vector) -> float:
        return cosine_similarity(a, b)


class HashingEmbedder(EmbeddingProvider):
    """
    Deterministic embedder based on signed feature hashing.

    Each word is padded with spaces and split into character trigrams;
    every trigram is hashed with blake2b into a bucket and a sign.
    The summed vector is L2-normalised. Words that share a stem share
    most of their trigrams ("return" / "returned"), which gives useful
    lexical similarity without any model download.

    Usage::

        embedder = HashingEmbedder()
        vector = await embedder.embed("What is the return window?")
        assert vector.shape == (384,)
    """

    def __init__(self, dimensions: int = EMBEDDING_DIMENSION) -> None:
        super().__init__(dimensions)

    @property
    def model_version(self) -> str:
        return f"{HASHING_MODEL_VERSION}-{self._dimensions}"

    def _encode_sync(self, texts: list[str]) -> npt.NDArray[np.float32]:
        matrix = np.zeros((len(texts), self._dimensions), dtype=np.float32)
        for row, text in enumerate(texts):
            for gram in self._trigrams(text):
                bucket, sign = self._hash(gram)
                matrix[row, bucket] += sign

        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        np.divide(matrix, norms, out=matrix, where=norms > 0)
        return matrix

    @staticmethod
    def _trigrams(text: str) -> list[str]:
        grams: list[str] = []
        for word in _WORD.findall(text.lower()):
            padded = f" {word} "
            grams.extend(padded[i : i + 3] for i in range(len(padded) - 2))
        return grams

    def _hash(self, gram: str) -> tuple[int, float]:
        digest = hashlib.blake2b(gram.encode("utf-8"), digest_size=8).digest()
        bucket = int.from_bytes(digest[:4], "little") % self._dimensions
        sign = 1.0 if digest[4] & 1 else -1.0
        return bucket, sign


class SentenceTransformerEmbedder(EmbeddingProvider):
    """
    Embedder backed by a local sentence-transformers model.

    The model is loaded lazily on first use (or by ``preload``) and kept
    for the lifetime of the instance.

    Usage::

        embedder = SentenceTransformerEmbedder()
        await embedder.preload()
        vectors = await embedder.embed_many(["hello", "world"])
    """

    def __init__(
        self,
        model_name: str = MODEL_NAME,
        dimensions: int = EMBEDDING_DIMENSION,
    ) -> None:
        super().__init__(dimensions)
        self._model_name = model_name
        self._model: Any = None
        self._load_lock = threading.Lock()

    @property
    def model_version(self) -> str:
        return self._model_name

    def _get_model(self) -> Any:
        """
        Get or lazily initialize the sentence-transformers model.

        The import is deferred so that ``sentence_transformers`` is not
        required at module-import time (keeps test collection fast).
        """
        with self._load_lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                logger.info("Loading embedding model: %s ...", self._model_name)
                model = SentenceTransformer(self._model_name)
                loaded_dim = model.get_sentence_embedding_dimension()
                if loaded_dim is not None and loaded_dim != self._dimensions:
                    logger.warning(
                        "Model %s produces %d dimensions, configured %d; using %d",
                        self._model_name,
                        loaded_dim,
                        self._dimensions,
                        loaded_dim,
                    )
                    self._dimensions = int(loaded_dim)
                self._model = model
                logger.info("Model loaded (dim=%d)", self._dimensions)
            return self._model

    def _encode_sync(self, texts: list[str]) -> npt.NDArray[np.float32]:
        model = self._get_model()
        embeddings = model.encode(texts, normalize_embeddings=True)
        return np.asarray(embeddings, dtype=np.float32)

    async def preload(self) -> None:
        """Load the model ahead of the first request."""
        await asyncio.to_thread(self._get_model)

    def reset(self) -> None:
        """Release the model from memory."""
        with self._load_lock:
            self._model = None
        logger.info("Embedding model %s released", self._model_name)


def build_embedder(settings: Settings) -> EmbeddingProvider:
    """
    Create the embedding provider selected by ``EMBEDDING_BACKEND``.

    Raises:
        ValueError: If the backend name is unknown.
    """
    backend = settings.EMBEDDING_BACKEND.strip().lower()
    if backend == "hashing":
        return HashingEmbedder(dimensions=settings.EMBEDDING_DIMENSION)
    if backend in ("sentence-transformers", "sentence_transformers"):
        return SentenceTransformerEmbedder(
            model_name=settings.EMBEDDING_MODEL,
            dimensions=settings.EMBEDDING_DIMENSION,
        )
    raise ValueError(
        f"Unknown EMBEDDING_BACKEND '{settings.EMBEDDING_BACKEND}'. "
        "Supported: hashing, sentence-transformers"
    )
