# core/interfaces.py
"""Core interfaces for the document intelligence engine"""
from abc import ABC, abstractmethod
from typing import List, Optional, Set

from docintel.core.domain import (
    ChatMessage, ChatSession, ChunkRecord, Collection, CollectionConfig,
    CompletionOptions, CompletionResult, Document, EmbeddingResult, Prompt,
    ProviderDescriptor, RetrievedChunk, SourceRef,
)
from docintel.core.enums import Capability, MessageRole, ProcessingStatus


# ============= Vector Store Interface =============
class IVectorStore(ABC):
    """
    Interface for embedded chunk storage and similarity search.

    Writes are staged on the caller's transaction; the caller commits.
    """

    @abstractmethod
    async def add_chunks(self, chunks: List[ChunkRecord], dimension: int) -> int:
        """Stage chunks; every vector must have exactly `dimension` components"""
        pass

    @abstractmethod
    async def search(
        self,
        collection_id: str,
        query_vector: List[float],
        top_k: int,
        dimension: int,
    ) -> List[RetrievedChunk]:
        """Cosine search restricted to completed documents of one collection"""
        pass

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> int:
        """Delete all chunks for a document"""
        pass

    @abstractmethod
    async def delete_by_collection(self, collection_id: str) -> int:
        """Delete all chunks for a collection"""
        pass

    @abstractmethod
    async def count(self, collection_id: str) -> int:
        """Number of searchable chunks in a collection"""
        pass

    @abstractmethod
    async def count_by_document(self, document_id: str) -> int:
        pass

    @abstractmethod
    async def stored_models(self, collection_id: str) -> Set[str]:
        """Embedding models that produced the searchable vectors of a collection"""
        pass


# ============= AI Provider Interface =============
class IAIProvider(ABC):
    """
    Uniform capability interface over local and remote AI services.

    Implementations raise ProviderError (or any exception) on failure; the
    fallback chain decides what happens next.
    """

    @property
    def name(self) -> str:
        return self.describe().name

    @abstractmethod
    def describe(self) -> ProviderDescriptor:
        """Static description: kind, capabilities, models, context length"""
        pass

    @abstractmethod
    async def embed(self, texts: List[str], model: str) -> EmbeddingResult:
        """Embed texts with the given model, one vector per text"""
        pass

    @abstractmethod
    async def complete(self, prompt: Prompt, options: CompletionOptions) -> CompletionResult:
        """Generate a completion for the prompt"""
        pass

    @abstractmethod
    async def probe(self) -> bool:
        """Cheap availability check that does not run a real operation"""
        pass

    def supports(self, capability: Capability) -> bool:
        return self.describe().supports(capability)


# ============= Repository Interfaces =============
class ICollectionRepository(ABC):
    """Collection persistence. Soft-deleted rows are invisible to every read."""

    @abstractmethod
    async def create(self, owner_id: str, name: str, description: str,
                     config: CollectionConfig) -> Collection:
        pass

    @abstractmethod
    async def get_by_id(self, collection_id: str) -> Optional[Collection]:
        pass

    @abstractmethod
    async def get_by_name(self, owner_id: str, name: str) -> Optional[Collection]:
        pass

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> List[Collection]:
        pass

    @abstractmethod
    async def soft_delete(self, collection_id: str) -> bool:
        pass

    @abstractmethod
    async def count_by_owner(self, owner_id: str) -> int:
        pass


class IDocumentRepository(ABC):
    """
    Document metadata and processing status.

    The relational row is the only record of a document's status; there is no
    in-memory progress map.
    """

    @abstractmethod
    async def create(self, collection_id: str, title: str, source_text: str,
                     content_type: str, content_hash: str,
                     source: Optional[str] = None) -> Document:
        pass

    @abstractmethod
    async def get_by_id(self, document_id: str, with_text: bool = False) -> Optional[Document]:
        pass

    @abstractmethod
    async def get_by_hash(self, collection_id: str, content_hash: str) -> Optional[Document]:
        """Find a live document with identical content in the collection"""
        pass

    @abstractmethod
    async def list_by_collection(self, collection_id: str) -> List[Document]:
        pass

    @abstractmethod
    async def update_status(self, document_id: str, status: ProcessingStatus,
                            chunk_count: Optional[int] = None,
                            error_message: Optional[str] = None) -> None:
        pass

    @abstractmethod
    async def soft_delete(self, document_id: str) -> bool:
        pass

    @abstractmethod
    async def soft_delete_by_collection(self, collection_id: str) -> int:
        pass

    @abstractmethod
    async def count_by_collections(self, collection_ids: List[str]) -> int:
        pass


class IChatSessionRepository(ABC):

    @abstractmethod
    async def create(self, owner_id: str, collection_id: str, title: str,
                     context_window: int, temperature: float, model: str,
                     max_retrieval_count: int) -> ChatSession:
        pass

    @abstractmethod
    async def get_by_id(self, session_id: str) -> Optional[ChatSession]:
        pass

    @abstractmethod
    async def list_by_owner(self, owner_id: str,
                            collection_id: Optional[str] = None) -> List[ChatSession]:
        pass

    @abstractmethod
    async def count_by_owner(self, owner_id: str) -> int:
        pass


class IMessageRepository(ABC):
    """Append-only conversation history ordered by a per-session sequence"""

    @abstractmethod
    async def append(self, session_id: str, role: MessageRole, content: str,
                     sources: Optional[List[SourceRef]] = None,
                     provider: Optional[str] = None, model: Optional[str] = None,
                     tokens_used: int = 0) -> ChatMessage:
        """Append a message with the next sequence number"""
        pass

    @abstractmethod
    async def list_by_session(self, session_id: str,
                              before_sequence: Optional[int] = None) -> List[ChatMessage]:
        """Messages in sequence order, optionally only those before a sequence"""
        pass

    @abstractmethod
    async def last_message(self, session_id: str) -> Optional[ChatMessage]:
        pass

    @abstractmethod
    async def count_by_sessions(self, session_ids: List[str]) -> int:
        pass
