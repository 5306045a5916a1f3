# api/endpoints.py
"""
API endpoints for the document intelligence service.

Identity comes from the trusted `X-User-Id` header set by the upstream gateway;
every service call is scoped to that owner.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Optional, TypeVar

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from docintel.api.schemas import (
    ChatReplyResponse, ChatRequest, CollectionResponse, CreateCollectionRequest,
    CreateSessionRequest, DocumentResponse, Envelope, IngestDocumentRequest, IngestionResponse,
    MessageResponse, RetrievedChunkResponse, SearchRequest, SessionResponse, StatisticsResponse,
    StatusResponse, dump,
)
from docintel.config import settings
from docintel.services.factory import get_chain, get_rag_service
from docintel.services.fallback_chain import ProviderFallbackChain
from docintel.services.rag_service import DocumentIntelligenceService
from docintel.utils.common import validate_uuid

logger = logging.getLogger(settings.LOGGER_NAME)

router = APIRouter()

T = TypeVar("T")

DISCONNECT_POLL_SECONDS = 0.5
CLIENT_CLOSED_REQUEST = 499


# ---------- Helpers ----------
def get_owner_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    owner_id = (x_user_id or "").strip()
    if not owner_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return owner_id


def _check_id(value: str, kind: str) -> None:
    if not validate_uuid(value):
        raise HTTPException(status_code=422, detail=f"Invalid {kind} ID format")


async def run_until_disconnect(request: Request, work: Awaitable[T]) -> T:
    """
    Await `work` in its own task and cancel it if the client goes away.

    Long operations (ingestion, chat) observe the cancellation and clean up
    after themselves.
    """
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.warning(f"Client disconnected from {request.url.path}, cancelling")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                raise HTTPException(status_code=CLIENT_CLOSED_REQUEST, detail="Client closed request")
    finally:
        if not task.done():
            task.cancel()


def ok(data: Any = None, message: Optional[str] = None) -> Envelope:
    return Envelope(success=True, data=data, message=message)


# ---------- Service status ----------
@router.get("/status", response_model=Envelope)
async def get_status(chain: ProviderFallbackChain = Depends(get_chain)) -> Envelope:
    payload = StatusResponse(
        status="ok",
        version=settings.APP_VERSION,
        providers_configured=[entry["name"] for entry in chain.describe()],
        timestamp=datetime.now(timezone.utc),
    )
    return ok(dump(payload))


@router.get("/statistics", response_model=Envelope)
async def get_statistics(
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    stats = await rag_service.get_statistics(owner_id)
    return ok(dump(StatisticsResponse(**stats)))


# ---------- Providers ----------
@router.get("/providers/status", response_model=Envelope)
async def get_provider_status(
    refresh: bool = False,
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    statuses = await rag_service.provider_status(refresh=refresh)
    return ok({name: provider.to_dict() for name, provider in statuses.items()})


@router.get("/providers/models", response_model=Envelope)
async def get_provider_models(
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    return ok(rag_service.provider_models())


# ---------- Collections ----------
@router.post("/collections", response_model=Envelope, status_code=status.HTTP_201_CREATED)
async def create_collection(
    body: CreateCollectionRequest,
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    collection = await rag_service.create_collection(owner_id, **body.model_dump())
    return ok(dump(CollectionResponse.model_validate(collection)), "Collection created")


@router.get("/collections", response_model=Envelope)
async def list_collections(
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    collections = await rag_service.list_collections(owner_id)
    return ok([dump(CollectionResponse.model_validate(c)) for c in collections])


@router.get("/collections/{collection_id}", response_model=Envelope)
async def get_collection(
    collection_id: str,
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    _check_id(collection_id, "collection")
    collection = await rag_service.get_collection(owner_id, collection_id)
    return ok(dump(CollectionResponse.model_validate(collection)))


@router.delete("/collections/{collection_id}", response_model=Envelope)
async def delete_collection(
    collection_id: str,
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    _check_id(collection_id, "collection")
    documents = await rag_service.delete_collection(owner_id, collection_id)
    return ok({"documents_deleted": documents}, "Collection deleted successfully")


# ---------- Documents ----------
@router.post("/collections/{collection_id}/documents", response_model=Envelope,
             status_code=status.HTTP_201_CREATED)
async def ingest_document(
    collection_id: str,
    body: IngestDocumentRequest,
    request: Request,
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    _check_id(collection_id, "collection")
    document, result = await run_until_disconnect(
        request,
        rag_service.ingest_document(
            owner_id, collection_id, body.title, body.text, body.content_type, body.source
        ),
    )
    return ok(
        {
            "document": dump(DocumentResponse.model_validate(document)),
            "ingestion": dump(IngestionResponse.model_validate(result)),
        },
        f"Document processed into {result.chunk_count} chunks",
    )


@router.get("/collections/{collection_id}/documents", response_model=Envelope)
async def list_documents(
    collection_id: str,
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    _check_id(collection_id, "collection")
    documents = await rag_service.list_documents(owner_id, collection_id)
    return ok([dump(DocumentResponse.model_validate(d)) for d in documents])


@router.post("/documents/{document_id}/reprocess", response_model=Envelope)
async def reprocess_document(
    document_id: str,
    request: Request,
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    _check_id(document_id, "document")
    result = await run_until_disconnect(request, rag_service.reprocess_document(owner_id, document_id))
    return ok(dump(IngestionResponse.model_validate(result)), "Document reprocessed")


@router.delete("/documents/{document_id}", response_model=Envelope)
async def delete_document(
    document_id: str,
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    _check_id(document_id, "document")
    await rag_service.delete_document(owner_id, document_id)
    return ok(message="Document deleted successfully")


# ---------- Search (retrieval preview) ----------
@router.post("/collections/{collection_id}/search", response_model=Envelope)
async def search_collection(
    collection_id: str,
    body: SearchRequest,
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    _check_id(collection_id, "collection")
    chunks = await rag_service.search(owner_id, collection_id, body.query, body.top_k)
    return ok({
        "query": body.query,
        "results": [dump(RetrievedChunkResponse.model_validate(c)) for c in chunks],
        "total_results": len(chunks),
    })


# ---------- Chat sessions ----------
@router.post("/sessions", response_model=Envelope, status_code=status.HTTP_201_CREATED)
async def create_session(
    body: CreateSessionRequest,
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    _check_id(body.collection_id, "collection")
    options = body.model_dump(exclude={"collection_id"})
    chat_session = await rag_service.create_session(owner_id, body.collection_id, **options)
    return ok(dump(SessionResponse.model_validate(chat_session)), "Session created")


@router.get("/sessions", response_model=Envelope)
async def list_sessions(
    collection_id: Optional[str] = None,
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    sessions = await rag_service.list_sessions(owner_id, collection_id)
    return ok([dump(SessionResponse.model_validate(s)) for s in sessions])


@router.post("/sessions/{session_id}/chat", response_model=Envelope)
async def chat(
    session_id: str,
    body: ChatRequest,
    request: Request,
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    _check_id(session_id, "session")
    reply = await run_until_disconnect(request, rag_service.chat(owner_id, session_id, body.message))
    return ok(dump(ChatReplyResponse.model_validate(reply)))


@router.post("/sessions/{session_id}/retry", response_model=Envelope)
async def retry_chat(
    session_id: str,
    request: Request,
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    _check_id(session_id, "session")
    reply = await run_until_disconnect(request, rag_service.retry(owner_id, session_id))
    return ok(dump(ChatReplyResponse.model_validate(reply)))


@router.get("/sessions/{session_id}/history", response_model=Envelope)
async def get_history(
    session_id: str,
    owner_id: str = Depends(get_owner_id),
    rag_service: DocumentIntelligenceService = Depends(get_rag_service),
) -> Envelope:
    _check_id(session_id, "session")
    messages = await rag_service.get_history(owner_id, session_id)
    return ok([dump(MessageResponse.model_validate(m)) for m in messages])
