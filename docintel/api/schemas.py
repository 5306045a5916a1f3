# api/schemas.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from docintel.core.enums import MessageRole, ProcessingStatus


class Envelope(BaseModel):
    """Every response body, success or failure"""
    success: bool
    data: Optional[Any] = None
    message: Optional[str] = None
    error: Optional[str] = None


# ============ REQUESTS ============

class CreateCollectionRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    embedding_model: Optional[str] = None
    embedding_dimension: Optional[int] = None
    chunk_size: Optional[int] = None
    chunk_overlap: Optional[int] = None
    max_retrieval_count: Optional[int] = None


class IngestDocumentRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    text: str
    content_type: str = "text/plain"
    source: Optional[str] = None


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    top_k: Optional[int] = None


class CreateSessionRequest(BaseModel):
    collection_id: str
    title: Optional[str] = None
    model: Optional[str] = None
    context_window: Optional[int] = None
    temperature: Optional[float] = None
    max_retrieval_count: Optional[int] = None


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)


# ============ RESPONSES ============

class _FromDomain(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class CollectionConfigResponse(_FromDomain):
    embedding_model: str
    embedding_dimension: int
    chunk_size: int
    chunk_overlap: int
    max_retrieval_count: int


class CollectionResponse(_FromDomain):
    id: str
    name: str
    description: str
    config: CollectionConfigResponse
    created_at: datetime


class DocumentResponse(_FromDomain):
    id: str
    collection_id: str
    title: str
    content_type: str
    processing_status: ProcessingStatus
    chunk_count: int
    error_message: Optional[str] = None
    source: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class IngestionResponse(_FromDomain):
    document_id: str
    status: ProcessingStatus
    chunk_count: int
    embedded_count: int


class RetrievedChunkResponse(_FromDomain):
    chunk_id: str
    document_id: str
    document_title: str
    ordinal: int
    score: float
    text: str


class SessionResponse(_FromDomain):
    id: str
    collection_id: str
    title: str
    model: str
    context_window: int
    temperature: float
    max_retrieval_count: int
    created_at: datetime


class SourceResponse(_FromDomain):
    chunk_id: str
    document_id: str
    document_title: str
    ordinal: int
    score: float


class MessageResponse(_FromDomain):
    id: str
    sequence: int
    role: MessageRole
    content: str
    sources: List[SourceResponse] = []
    provider: Optional[str] = None
    model: Optional[str] = None
    tokens_used: int = 0
    created_at: datetime


class ChatReplyResponse(_FromDomain):
    session_id: str
    message_id: str
    user_message_id: str
    response: str
    sources: List[SourceResponse]
    provider: str
    model: str
    tokens_used: int = 0


class StatisticsResponse(BaseModel):
    collections: int
    documents: int
    sessions: int
    messages: int


class StatusResponse(BaseModel):
    status: str
    version: str
    providers_configured: List[str]
    timestamp: datetime


def dump(model: BaseModel) -> Dict[str, Any]:
    """JSON-safe dict for the envelope's `data`."""
    return model.model_dump(mode="json")
