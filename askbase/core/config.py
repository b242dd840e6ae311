"""
ASKBASE Configuration

Centralized settings management using Pydantic BaseSettings.
All values are loaded from environment variables or .env file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable binding.

    No env var is required: every field has a local-first default
    (SQLite index, hashing embedder, Ollama on localhost).

    Optional env vars:
        DATABASE_URL (sqlite+aiosqlite:///./askbase.db),
        EMBEDDING_BACKEND (hashing), EMBEDDING_MODEL (all-MiniLM-L6-v2),
        OLLAMA_BASE_URL, OLLAMA_MODEL, OLLAMA_TIMEOUT,
        DOCUMENTS_FOLDER, LOG_LEVEL (INFO), ENVIRONMENT (local)
    """

    PROJECT_NAME: str = "ASKBASE Knowledge Base"

    # Database (async driver URL: sqlite+aiosqlite or postgresql+asyncpg)
    DATABASE_URL: str = "sqlite+aiosqlite:///./askbase.db"

    # Embeddings
    EMBEDDING_BACKEND: str = "hashing"  # "hashing" | "sentence-transformers"
    EMBEDDING_MODEL: str = "all-MiniLM-L6-v2"
    EMBEDDING_DIMENSION: int = 384

    # Generative model (Ollama)
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "mistral"
    OLLAMA_TIMEOUT: float = 30.0
    MAX_CONTEXT_CHARS: int = 8000

    # Retrieval
    RETRIEVAL_MAX_CHUNKS: int = 10
    RETRIEVAL_MIN_SIMILARITY: float = 0.1
    SUFFICIENCY_THRESHOLD: float = 0.3
    MAX_FALLBACK_SUGGESTIONS: int = 5

    # Context assembly
    MAX_CONTEXT_TOKENS: int = 8000
    MAX_CHUNKS_TO_INCLUDE: int = 10
    INCLUDE_CONVERSATION_HISTORY: bool = True
    MAX_CONVERSATION_TURNS: int = 5
    ENABLE_FALLBACK_SUGGESTIONS: bool = True

    # Folder indexed at startup (optional)
    DOCUMENTS_FOLDER: str | None = None

    # Logging
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "local"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",  # Silently ignore unknown env vars
    )


settings = Settings()
