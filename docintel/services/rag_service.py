# services/rag_service.py
"""Service facade behind the HTTP API: one method per exposed operation"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from docintel.config import settings
from docintel.core.domain import (
    ChatMessage, ChatReply, ChatSession, Collection, Document, IngestionResult, ProviderStatus,
    RetrievedChunk,
)
from docintel.core.errors import RAGError
from docintel.core.interfaces import IChatSessionRepository, IMessageRepository
from docintel.services.chat_session_manager import ChatSessionManager
from docintel.services.collection_registry import CollectionRegistry, build_collection_config
from docintel.services.fallback_chain import ProviderFallbackChain
from docintel.services.ingestion_pipeline import DocumentIngestionPipeline
from docintel.services.retrieval_engine import RetrievalEngine

logger = logging.getLogger(settings.LOGGER_NAME)


class DocumentIntelligenceService:
    """
    Orchestrates the registry, ingestion pipeline, retrieval engine and chat
    manager for one request. `owner_id` is the verified caller identity and is
    passed to every ownership check.
    """

    def __init__(
        self,
        registry: CollectionRegistry,
        pipeline: DocumentIngestionPipeline,
        retrieval: RetrievalEngine,
        chat_manager: ChatSessionManager,
        chain: ProviderFallbackChain,
        session_repo: IChatSessionRepository,
        message_repo: IMessageRepository,
    ):
        self.registry = registry
        self.pipeline = pipeline
        self.retrieval = retrieval
        self.chat_manager = chat_manager
        self.chain = chain
        self.session_repo = session_repo
        self.message_repo = message_repo

    # ============ COLLECTIONS ============

    async def create_collection(
        self,
        owner_id: str,
        name: str,
        description: str = "",
        embedding_model: Optional[str] = None,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        max_retrieval_count: Optional[int] = None,
        embedding_dimension: Optional[int] = None,
    ) -> Collection:
        config = build_collection_config(
            embedding_model=embedding_model,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            max_retrieval_count=max_retrieval_count,
            embedding_dimension=embedding_dimension,
        )
        return await self.registry.create_collection(owner_id, name, description, config)

    async def list_collections(self, owner_id: str) -> List[Collection]:
        return await self.registry.list_collections(owner_id)

    async def get_collection(self, owner_id: str, collection_id: str) -> Collection:
        return await self.registry.get_collection(owner_id, collection_id)

    async def delete_collection(self, owner_id: str, collection_id: str) -> int:
        return await self.registry.delete_collection(owner_id, collection_id)

    # ============ DOCUMENTS ============

    async def ingest_document(
        self,
        owner_id: str,
        collection_id: str,
        title: str,
        text: str,
        content_type: str = "text/plain",
        source: Optional[str] = None,
    ) -> Tuple[Document, IngestionResult]:
        """
        Register and process a document synchronously.

        On failure the document stays `failed` and the raised error carries its id
        in `data` so the caller can find it in listDocuments.
        """
        collection = await self.registry.get_collection(owner_id, collection_id)
        document = await self.registry.create_document(
            owner_id, collection_id, title, text, content_type, source
        )
        logger.info(f"[INGEST] Processing '{document.title}' ({document.id}) in collection {collection_id}")
        result = await self._run_pipeline(document, text, collection)
        return document, result

    async def reprocess_document(self, owner_id: str, document_id: str) -> IngestionResult:
        """Re-chunk and re-embed with the collection's current configuration."""
        document = await self.registry.get_document(owner_id, document_id, with_text=True)
        collection = await self.registry.get_collection(owner_id, document.collection_id)
        logger.info(f"[INGEST] Reprocessing document {document_id}")
        return await self._run_pipeline(document, document.source_text or "", collection)

    async def _run_pipeline(self, document: Document, text: str, collection: Collection) -> IngestionResult:
        try:
            return await self.pipeline.ingest(document.id, text, collection.config)
        except RAGError as e:
            e.data = {"document_id": document.id, "status": "failed"}
            raise

    async def list_documents(self, owner_id: str, collection_id: str) -> List[Document]:
        return await self.registry.list_documents(owner_id, collection_id)

    async def delete_document(self, owner_id: str, document_id: str) -> None:
        await self.registry.delete_document(owner_id, document_id)

    # ============ RETRIEVAL ============

    async def search(self, owner_id: str, collection_id: str, query: str,
                     top_k: Optional[int] = None) -> List[RetrievedChunk]:
        collection = await self.registry.get_collection(owner_id, collection_id)
        return await self.retrieval.retrieve(
            collection, query, top_k or collection.config.max_retrieval_count
        )

    # ============ CHAT ============

    async def create_session(self, owner_id: str, collection_id: str, **options) -> ChatSession:
        return await self.chat_manager.create_session(owner_id, collection_id, **options)

    async def list_sessions(self, owner_id: str, collection_id: Optional[str] = None) -> List[ChatSession]:
        return await self.chat_manager.list_sessions(owner_id, collection_id)

    async def chat(self, owner_id: str, session_id: str, message: str) -> ChatReply:
        return await self.chat_manager.chat(owner_id, session_id, message)

    async def retry(self, owner_id: str, session_id: str) -> ChatReply:
        return await self.chat_manager.retry(owner_id, session_id)

    async def get_history(self, owner_id: str, session_id: str) -> List[ChatMessage]:
        return await self.chat_manager.get_history(owner_id, session_id)

    # ============ PROVIDERS & STATS ============

    async def provider_status(self, refresh: bool = False) -> Dict[str, ProviderStatus]:
        return await self.chain.status(refresh=refresh)

    def provider_models(self) -> List[Dict[str, Any]]:
        return self.chain.describe()

    async def get_statistics(self, owner_id: str) -> Dict[str, int]:
        collections = await self.registry.list_collections(owner_id)
        sessions = await self.session_repo.list_by_owner(owner_id)
        return {
            "collections": await self.registry.collection_repo.count_by_owner(owner_id),
            "documents": await self.registry.document_repo.count_by_collections([c.id for c in collections]),
            "sessions": await self.session_repo.count_by_owner(owner_id),
            "messages": await self.message_repo.count_by_sessions([s.id for s in sessions]),
        }
