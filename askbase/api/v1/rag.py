"""
Knowledge Base API Router

HTTP endpoints for the ASKBASE retrieval-augmented generation pipeline.

Endpoints:
    POST   /folders                 Rebuild the index from a folder.
    POST   /files                   Index or re-index one file.
    DELETE /files                   Remove one file from the index.
    POST   /events                  Folder watcher notification (added/changed/deleted).
    GET    /documents               Indexed documents with chunk counts.
    POST   /search                  Single-query snippet lookup.
    POST   /retrieve                Multi-query retrieval with expansion.
    POST   /ask                     Full RAG: retrieve, assemble, answer.
    GET    /validate                Smoke-test the stored embeddings.
    POST   /conversations           Start a conversation.
    GET    /conversations           List conversations.
    GET    /conversations/{id}/messages
    DELETE /conversations/{id}
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from askbase.models.schemas import (
    AnswerResult,
    ChatMessage,
    ConversationSummary,
    DocumentSnippet,
    DocumentSummary,
    EmbeddingValidationResult,
    RetrievalResult,
)
from askbase.schemas.rag import (
    AskRequest,
    ConversationCreateRequest,
    ConversationResponse,
    FileEventRequest,
    FileEventType,
    FileRequest,
    FileResponse,
    FileStatus,
    FolderRequest,
    FolderResponse,
    RetrieveRequest,
    SearchRequest,
)
from askbase.services.rag_pipeline import RAGPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_pipeline(request: Request) -> RAGPipeline:
    """FastAPI dependency: the pipeline built in the application lifespan."""
    return request.app.state.pipeline


async def _index_file(pipeline: RAGPipeline, file_path: str) -> FileResponse:
    try:
        changed = await pipeline.store.process_file(file_path)
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return FileResponse(
        file_path=file_path,
        status=FileStatus.INDEXED if changed else FileStatus.UNCHANGED,
    )


async def _remove_file(pipeline: RAGPipeline, file_path: str) -> FileResponse:
    deleted = await pipeline.store.delete_file(file_path)
    return FileResponse(
        file_path=file_path,
        status=FileStatus.DELETED if deleted else FileStatus.NOT_INDEXED,
    )


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------


@router.post(
    "/folders",
    response_model=FolderResponse,
    summary="Rebuild the index from a folder",
    responses={404: {"description": "Folder not found"}},
)
async def load_folder(
    request: FolderRequest,
    pipeline: RAGPipeline = Depends(_get_pipeline),
) -> FolderResponse:
    """
    Replace the whole index with the supported files of a folder.

    Files that fail to process are skipped; the previous index stays
    visible until the rebuild commits.
    """
    try:
        indexed = await pipeline.load_folder(request.folder_path)
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    return FolderResponse(
        folder_path=request.folder_path,
        documents_indexed=indexed,
        embeddings_stored=await pipeline.store.count_embeddings(),
    )


@router.post("/files", response_model=FileResponse, summary="Index one file")
async def index_file(
    request: FileRequest,
    pipeline: RAGPipeline = Depends(_get_pipeline),
) -> FileResponse:
    """Index a file, or re-index it if it changed since it was stored."""
    return await _index_file(pipeline, request.file_path)


@router.delete("/files", response_model=FileResponse, summary="Remove one file")
async def remove_file(
    request: FileRequest,
    pipeline: RAGPipeline = Depends(_get_pipeline),
) -> FileResponse:
    return await _remove_file(pipeline, request.file_path)


@router.post("/events", response_model=FileResponse, summary="Apply a folder watcher event")
async def file_event(
    request: FileEventRequest,
    pipeline: RAGPipeline = Depends(_get_pipeline),
) -> FileResponse:
    logger.info("File event: %s %s", request.event, request.file_path)
    if request.event == FileEventType.DELETED:
        return await _remove_file(pipeline, request.file_path)
    return await _index_file(pipeline, request.file_path)


@router.get(
    "/documents",
    response_model=list[DocumentSummary],
    summary="List indexed documents",
)
async def list_documents(
    pipeline: RAGPipeline = Depends(_get_pipeline),
) -> list[DocumentSummary]:
    return await pipeline.store.get_all_documents()


# ---------------------------------------------------------------------------
# Retrieval and answering
# ---------------------------------------------------------------------------


@router.post(
    "/search",
    response_model=list[DocumentSnippet],
    summary="Similarity search across documents",
)
async def search(
    request: SearchRequest,
    pipeline: RAGPipeline = Depends(_get_pipeline),
) -> list[DocumentSnippet]:
    """Embed the query once and return the closest stored chunks."""
    return await pipeline.store.find_relevant_chunks(request.query, request.k)


@router.post(
    "/retrieve",
    response_model=list[RetrievalResult],
    summary="Multi-query retrieval",
)
async def retrieve(
    request: RetrieveRequest,
    pipeline: RAGPipeline = Depends(_get_pipeline),
) -> list[RetrievalResult]:
    """Expand the query and merge the ranked matches of every variant."""
    return await pipeline.engine.retrieve(
        request.query,
        max_chunks=request.max_chunks,
        min_similarity=request.min_similarity,
    )


@router.post("/ask", response_model=AnswerResult, summary="Ask a question using RAG")
async def ask(
    request: AskRequest,
    pipeline: RAGPipeline = Depends(_get_pipeline),
) -> AnswerResult:
    """
    Answer a question using the full RAG pipeline.

    Process:
        1. Retrieve chunks for the question and its expansions.
        2. If the matches are strong enough, assemble the context and
           ask the local model (Ollama).
        3. Otherwise answer with the topics the documents do cover.

    Graceful Degradation:
        If Ollama is unavailable, the answer explains the failure and
        ``is_fallback`` is true.
    """
    if request.conversation_id is not None and not await pipeline.conversations.exists(
        request.conversation_id
    ):
        raise HTTPException(
            status_code=404,
            detail=f"Conversation '{request.conversation_id}' not found",
        )

    logger.info("/ask request: question='%s'", request.question[:50])
    result = await pipeline.ask(request.question, request.conversation_id)
    if result.is_fallback:
        logger.warning("Returning fallback answer for '%s'", request.question[:50])
    return result


@router.get(
    "/validate",
    response_model=EmbeddingValidationResult,
    summary="Validate stored embeddings",
)
async def validate(
    pipeline: RAGPipeline = Depends(_get_pipeline),
) -> EmbeddingValidationResult:
    return await pipeline.engine.validate_embeddings()


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


@router.post(
    "/conversations",
    response_model=ConversationResponse,
    status_code=201,
    summary="Start a conversation",
)
async def create_conversation(
    request: ConversationCreateRequest,
    pipeline: RAGPipeline = Depends(_get_pipeline),
) -> ConversationResponse:
    conversation_id = await pipeline.conversations.create_conversation(request.title)
    return ConversationResponse(conversation_id=conversation_id)


@router.get(
    "/conversations",
    response_model=list[ConversationSummary],
    summary="List conversations",
)
async def list_conversations(
    pipeline: RAGPipeline = Depends(_get_pipeline),
) -> list[ConversationSummary]:
    return await pipeline.conversations.list_conversations()


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=list[ChatMessage],
    summary="Recent messages of a conversation",
)
async def conversation_messages(
    conversation_id: str,
    max_turns: int = 5,
    pipeline: RAGPipeline = Depends(_get_pipeline),
) -> list[ChatMessage]:
    if not await pipeline.conversations.exists(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return await pipeline.conversations.get_chat_history(conversation_id, max_turns)


@router.delete(
    "/conversations/{conversation_id}",
    status_code=204,
    summary="Delete a conversation",
)
async def delete_conversation(
    conversation_id: str,
    pipeline: RAGPipeline = Depends(_get_pipeline),
) -> Response:
    if not await pipeline.conversations.delete_conversation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return Response(status_code=204)
