# services/factory.py
from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from docintel.database.session import get_db
from docintel.infrastructure.chunker import TextChunker
from docintel.infrastructure.repositories import (
    SQLChatSessionRepository, SQLCollectionRepository, SQLDocumentRepository, SQLMessageRepository,
)
from docintel.infrastructure.vector_store import SQLVectorStore
from docintel.services.chat_session_manager import ChatSessionManager
from docintel.services.collection_registry import CollectionRegistry
from docintel.services.fallback_chain import ProviderFallbackChain
from docintel.services.ingestion_pipeline import DocumentIngestionPipeline
from docintel.services.provider_registry import build_chain
from docintel.services.rag_service import DocumentIntelligenceService
from docintel.services.retrieval_engine import RetrievalEngine

# The chain is process-wide: its availability cache must outlive a request.
_chain: Optional[ProviderFallbackChain] = None


def get_chain() -> ProviderFallbackChain:
    """Create the provider fallback chain on first use."""
    global _chain
    if _chain is None:
        _chain = build_chain()
    return _chain


def create_rag_service(session: AsyncSession, chain: ProviderFallbackChain) -> DocumentIntelligenceService:
    """Wire repositories and services around one database session."""
    collection_repo = SQLCollectionRepository(session)
    document_repo = SQLDocumentRepository(session)
    session_repo = SQLChatSessionRepository(session)
    message_repo = SQLMessageRepository(session)
    vector_store = SQLVectorStore(session)

    registry = CollectionRegistry(session, collection_repo, document_repo, vector_store)
    pipeline = DocumentIngestionPipeline(session, document_repo, vector_store, chain, TextChunker())
    retrieval = RetrievalEngine(vector_store, chain)
    chat_manager = ChatSessionManager(
        session, registry, session_repo, message_repo, retrieval, chain
    )
    return DocumentIntelligenceService(
        registry=registry,
        pipeline=pipeline,
        retrieval=retrieval,
        chat_manager=chat_manager,
        chain=chain,
        session_repo=session_repo,
        message_repo=message_repo,
    )


# Main service provider using FastAPI DI
def get_rag_service(
    session: AsyncSession = Depends(get_db),
    chain: ProviderFallbackChain = Depends(get_chain),
) -> DocumentIntelligenceService:
    """
    Request-scoped service. Override `get_chain` or `get_db` in tests to swap
    providers or the database.
    """
    return create_rag_service(session, chain)
