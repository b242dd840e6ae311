"""
Pytest Configuration and Fixtures

Shared fixtures for the offline test suite: a throwaway SQLite index
per test, the deterministic hashing embedder and a small corpus of
documents on disk.
"""

import os
import tempfile

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Test environment defaults — MUST be before any askbase imports.
#
# 1. Load .env first so local overrides are available.
# 2. setdefault fills in anything still missing so that the app under
#    test never touches a real database, model download or Ollama.
# ---------------------------------------------------------------------------
load_dotenv()  # .env → os.environ (no-op if file is missing)

_test_env = {
    "DATABASE_URL": (
        f"sqlite+aiosqlite:///{tempfile.gettempdir()}/askbase-test-{os.getpid()}.db"
    ),
    "EMBEDDING_BACKEND": "hashing",
    "OLLAMA_BASE_URL": "http://127.0.0.1:9",
    "LOG_LEVEL": "WARNING",
}
for _key, _value in _test_env.items():
    os.environ.setdefault(_key, _value)

# ---------------------------------------------------------------------------
# Imports (safe now that env vars are set)
# ---------------------------------------------------------------------------
from collections.abc import AsyncGenerator  # noqa: E402
from pathlib import Path  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from askbase.core.database import build_engine, init_db  # noqa: E402
from askbase.services.chunking import SemanticChunker  # noqa: E402
from askbase.services.knowledge_store import KnowledgeStore  # noqa: E402
from askbase.services.vector import HashingEmbedder  # noqa: E402

RETURNS_POLICY = (
    "Returns Policy\n\n"
    "Items may be returned within 30 days of delivery for a full refund. "
    "Refunds are issued to the original payment method.\n"
)
SHIPPING_GUIDE = (
    "# Shipping\n\n"
    "Standard shipping takes 5 business days. "
    "Express shipping is delivered within 2 business days.\n"
)


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Engine on a fresh SQLite file with the schema created."""
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'index.db'}")
    await init_db(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def embedder() -> HashingEmbedder:
    """Deterministic embedder, no model download."""
    return HashingEmbedder()


@pytest.fixture
def store(
    session_factory: async_sessionmaker[AsyncSession],
    embedder: HashingEmbedder,
) -> KnowledgeStore:
    return KnowledgeStore(session_factory, SemanticChunker(), embedder)


@pytest.fixture
def docs_folder(tmp_path: Path) -> Path:
    """Folder with a returns policy and a shipping guide."""
    folder = tmp_path / "docs"
    folder.mkdir()
    (folder / "Returns Policy.txt").write_text(RETURNS_POLICY, encoding="utf-8")
    (folder / "shipping.md").write_text(SHIPPING_GUIDE, encoding="utf-8")
    return folder
