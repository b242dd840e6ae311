"""
ASKBASE Knowledge Base — Application Entry Point

FastAPI application exposing document indexing, retrieval and
question answering over a local folder of documents.

Start locally:
    uvicorn askbase.main:app --host 0.0.0.0 --port 8001 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from askbase.api.v1.rag import router as kb_router
from askbase.core.config import settings
from askbase.core.database import dispose_engine, get_session_factory, init_db
from askbase.core.logging import setup_logging
from askbase.services.rag_pipeline import RAGPipeline
from askbase.services.vector import SentenceTransformerEmbedder

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
        1. Create the index schema.
        2. Build the pipeline and pre-load the embedding model
           (avoids cold-start on first request).
        3. Index DOCUMENTS_FOLDER if configured.

    Shutdown:
        1. Release the embedding model from memory.
        2. Dispose the database engine.
    """
    logger.info("Starting %s...", settings.PROJECT_NAME)
    logger.info("Log Level: %s", settings.LOG_LEVEL)

    await init_db()
    pipeline = RAGPipeline(get_session_factory())
    app.state.pipeline = pipeline

    embedder = pipeline.store.embedder
    if isinstance(embedder, SentenceTransformerEmbedder):
        logger.info("Pre-loading embedding model...")
        await embedder.preload()
        logger.info("Embedding model ready")

    if settings.DOCUMENTS_FOLDER:
        try:
            await pipeline.load_folder(settings.DOCUMENTS_FOLDER)
        except FileNotFoundError:
            logger.error("DOCUMENTS_FOLDER not found: %s", settings.DOCUMENTS_FOLDER)

    yield

    # Shutdown
    if isinstance(embedder, SentenceTransformerEmbedder):
        embedder.reset()
    await dispose_engine()
    logger.info("ASKBASE shutdown complete")


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Document indexing, semantic retrieval and grounded question answering.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(kb_router, prefix="/api/v1/kb", tags=["Knowledge Base"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check for load balancers and orchestrators."""
    return {
        "status": "ok",
        "service": "askbase",
        "environment": settings.ENVIRONMENT,
    }
