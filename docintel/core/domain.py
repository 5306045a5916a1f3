# core/domain.py
"""Domain models shared across layers"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional

from docintel.core.enums import Capability, MessageRole, ProcessingStatus, ProviderKind
from docintel.utils.tokens import estimate_message_tokens


# ============= Collections & Documents =============

@dataclass(frozen=True)
class CollectionConfig:
    """Retrieval configuration carried by a collection"""
    embedding_model: str
    embedding_dimension: int
    chunk_size: int
    chunk_overlap: int
    max_retrieval_count: int


@dataclass
class Collection:
    id: str
    owner_id: str
    name: str
    description: str
    config: CollectionConfig
    created_at: datetime

    @property
    def embedding_model(self) -> str:
        return self.config.embedding_model

    @property
    def embedding_dimension(self) -> int:
        return self.config.embedding_dimension


@dataclass
class Document:
    """Domain model for documents (source text loaded only on demand)"""
    id: str
    collection_id: str
    title: str
    content_type: str
    content_hash: str
    processing_status: ProcessingStatus
    chunk_count: int
    created_at: datetime
    source: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    source_text: Optional[str] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class TextChunk:
    """A chunk produced by the chunker; start/end are character offsets."""
    ordinal: int
    text: str
    start: int
    end: int


@dataclass
class ChunkRecord:
    """Embedded chunk ready for storage"""
    document_id: str
    collection_id: str
    ordinal: int
    text: str
    vector: List[float]
    embedding_model: str

    @property
    def dimension(self) -> int:
        return len(self.vector)


@dataclass
class RetrievedChunk:
    """Domain model for search results"""
    chunk_id: str
    document_id: str
    collection_id: str
    document_title: str
    text: str
    ordinal: int
    score: float
    document_created_at: Optional[datetime] = None


@dataclass
class IngestionResult:
    document_id: str
    status: ProcessingStatus
    chunk_count: int
    embedded_count: int


# ============= Chat =============

@dataclass
class ChatSession:
    id: str
    owner_id: str
    collection_id: str
    title: str
    context_window: int
    temperature: float
    model: str
    max_retrieval_count: int
    created_at: datetime


@dataclass(frozen=True)
class SourceRef:
    """Citation of a chunk used to answer a turn"""
    chunk_id: str
    document_id: str
    document_title: str
    ordinal: int
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "document_title": self.document_title,
            "ordinal": self.ordinal,
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceRef":
        return cls(
            chunk_id=data["chunk_id"],
            document_id=data["document_id"],
            document_title=data.get("document_title", ""),
            ordinal=int(data.get("ordinal", 0)),
            score=float(data.get("score", 0.0)),
        )

    @classmethod
    def from_retrieved(cls, chunk: RetrievedChunk) -> "SourceRef":
        return cls(
            chunk_id=chunk.chunk_id,
            document_id=chunk.document_id,
            document_title=chunk.document_title,
            ordinal=chunk.ordinal,
            score=chunk.score,
        )


@dataclass
class ChatMessage:
    id: str
    session_id: str
    sequence: int
    role: MessageRole
    content: str
    created_at: datetime
    sources: List[SourceRef] = field(default_factory=list)
    provider: Optional[str] = None
    model: Optional[str] = None
    tokens_used: int = 0


@dataclass
class ChatReply:
    session_id: str
    message_id: str
    user_message_id: str
    response: str
    sources: List[SourceRef]
    provider: str
    model: str
    tokens_used: int = 0


@dataclass(frozen=True)
class ChatTurn:
    role: MessageRole
    content: str


@dataclass
class Prompt:
    """
    Provider-neutral prompt: system instructions followed by ordered turns.

    The last turn is the user's new message with the retrieved context folded in;
    earlier turns are conversation history.
    """
    system: str
    turns: List[ChatTurn]

    def estimated_tokens(self) -> int:
        total = estimate_message_tokens(self.system) if self.system else 0
        return total + sum(estimate_message_tokens(t.content) for t in self.turns)


@dataclass(frozen=True)
class CompletionOptions:
    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 2048


# ============= Providers =============

@dataclass(frozen=True)
class ProviderDescriptor:
    """What a provider can do, declared up front"""
    name: str
    kind: ProviderKind
    capabilities: FrozenSet[Capability]
    embedding_models: Dict[str, int] = field(default_factory=dict)
    chat_models: List[str] = field(default_factory=list)
    max_context_tokens: int = 0

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def serves_embedding_model(self, model: str) -> bool:
        return model in self.embedding_models

    def embedding_dimension(self, model: str) -> Optional[int]:
        return self.embedding_models.get(model)


@dataclass
class EmbeddingResult:
    vectors: List[List[float]]
    model: str
    provider: str
    dimension: int


@dataclass
class CompletionResult:
    content: str
    model: str
    provider: str
    tokens_used: int = 0
    finish_reason: Optional[str] = None


@dataclass
class ProviderStatus:
    name: str
    kind: ProviderKind
    available: bool
    capabilities: List[str]
    checked_at: datetime
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "available": self.available,
            "kind": self.kind.value,
            "capabilities": self.capabilities,
            "checked_at": self.checked_at.isoformat(),
            "reason": self.reason,
        }