# services/collection_registry.py
"""Owner-scoped collections and the documents filed under them"""
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from docintel.config import settings
from docintel.core.domain import Collection, CollectionConfig, Document
from docintel.core.errors import (
    DuplicateCollection, DuplicateDocument, InvalidConfiguration, IsolationViolation, NotFound,
)
from docintel.core.interfaces import ICollectionRepository, IDocumentRepository, IVectorStore
from docintel.utils.common import get_content_hash

logger = logging.getLogger(settings.LOGGER_NAME)


def _check_range(label: str, value, low, high) -> None:
    if not low <= value <= high:
        raise InvalidConfiguration(f"{label} must be between {low} and {high}, got {value}")


def build_collection_config(
    embedding_model: Optional[str] = None,
    chunk_size: Optional[int] = None,
    chunk_overlap: Optional[int] = None,
    max_retrieval_count: Optional[int] = None,
    embedding_dimension: Optional[int] = None,
) -> CollectionConfig:
    """
    Fill defaults from settings and validate ranges.

    The dimension is looked up from the known model table when not given.

    Raises:
        InvalidConfiguration: Out-of-range values, overlap >= chunk size or an
            unknown model without an explicit dimension.
    """
    model = embedding_model or settings.DEFAULT_EMBEDDING_MODEL
    size = settings.DEFAULT_CHUNK_SIZE if chunk_size is None else chunk_size
    overlap = settings.DEFAULT_CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
    top_k = settings.DEFAULT_MAX_RETRIEVAL_COUNT if max_retrieval_count is None else max_retrieval_count

    _check_range("chunk_size", size, settings.CHUNK_SIZE_MIN, settings.CHUNK_SIZE_MAX)
    _check_range("chunk_overlap", overlap, settings.CHUNK_OVERLAP_MIN, settings.CHUNK_OVERLAP_MAX)
    _check_range("max_retrieval_count", top_k, settings.RETRIEVAL_COUNT_MIN, settings.RETRIEVAL_COUNT_MAX)
    if overlap >= size:
        raise InvalidConfiguration(f"chunk_overlap ({overlap}) must be smaller than chunk_size ({size})")

    dimension = embedding_dimension or settings.EMBEDDING_MODEL_DIMENSIONS.get(model)
    if not dimension or dimension <= 0:
        raise InvalidConfiguration(
            f"Unknown embedding model '{model}'; pass its embedding_dimension explicitly"
        )
    return CollectionConfig(
        embedding_model=model,
        embedding_dimension=dimension,
        chunk_size=size,
        chunk_overlap=overlap,
        max_retrieval_count=top_k,
    )


class CollectionRegistry:
    """
    Collections belong to exactly one owner. Every lookup checks ownership;
    reaching for someone else's collection or document is an IsolationViolation,
    never a silent re-scope.
    """

    def __init__(self, session: AsyncSession, collection_repo: ICollectionRepository,
                 document_repo: IDocumentRepository, vector_store: IVectorStore):
        self.session = session
        self.collection_repo = collection_repo
        self.document_repo = document_repo
        self.vector_store = vector_store

    @staticmethod
    def _deny(owner_id: str, kind: str, resource_id: str) -> IsolationViolation:
        logger.warning(f"[SECURITY] Owner {owner_id} attempted to access {kind} {resource_id} of another owner")
        return IsolationViolation(f"Access to {kind} {resource_id} denied")

    # ============ COLLECTIONS ============

    async def create_collection(self, owner_id: str, name: str, description: str = "",
                                config: Optional[CollectionConfig] = None) -> Collection:
        name = (name or "").strip()
        if not name:
            raise InvalidConfiguration("Collection name must not be empty")
        config = config or build_collection_config()
        if config.chunk_overlap >= config.chunk_size:
            raise InvalidConfiguration(
                f"chunk_overlap ({config.chunk_overlap}) must be smaller than chunk_size ({config.chunk_size})"
            )
        if await self.collection_repo.get_by_name(owner_id, name):
            raise DuplicateCollection(f"Collection '{name}' already exists")

        collection = await self.collection_repo.create(owner_id, name, description or "", config)
        await self.session.commit()
        return collection

    async def get_collection(self, owner_id: str, collection_id: str) -> Collection:
        collection = await self.collection_repo.get_by_id(collection_id)
        if collection is None:
            raise NotFound(f"Collection {collection_id} not found")
        if collection.owner_id != owner_id:
            raise self._deny(owner_id, "collection", collection_id)
        return collection

    async def list_collections(self, owner_id: str) -> List[Collection]:
        return await self.collection_repo.list_by_owner(owner_id)

    async def delete_collection(self, owner_id: str, collection_id: str) -> int:
        """Soft-delete a collection and its documents; their chunks are removed. Returns documents deleted."""
        await self.get_collection(owner_id, collection_id)
        removed_chunks = await self.vector_store.delete_by_collection(collection_id)
        documents = await self.document_repo.soft_delete_by_collection(collection_id)
        await self.collection_repo.soft_delete(collection_id)
        await self.session.commit()
        logger.info(
            f"Deleted collection {collection_id}: {documents} documents, {removed_chunks} chunks"
        )
        return documents

    # ============ DOCUMENTS ============

    async def create_document(self, owner_id: str, collection_id: str, title: str, text: str,
                              content_type: str = "text/plain",
                              source: Optional[str] = None) -> Document:
        """Register an uploaded document as `pending`."""
        await self.get_collection(owner_id, collection_id)
        title = (title or "").strip()
        if not title:
            raise InvalidConfiguration("Document title must not be empty")
        if text is None:
            raise InvalidConfiguration("Document text is required")
        if len(text) > settings.MAX_DOCUMENT_CHARS:
            raise InvalidConfiguration(
                f"Document has {len(text)} characters, limit is {settings.MAX_DOCUMENT_CHARS}"
            )

        content_hash = get_content_hash(text)
        if settings.REJECT_DUPLICATE_DOCUMENTS:
            existing = await self.document_repo.get_by_hash(collection_id, content_hash)
            if existing:
                raise DuplicateDocument(
                    f"Identical content already stored as '{existing.title}' ({existing.id})"
                )

        document = await self.document_repo.create(
            collection_id, title, text, content_type or "text/plain", content_hash, source
        )
        await self.session.commit()
        return document

    async def get_document(self, owner_id: str, document_id: str,
                           with_text: bool = False) -> Document:
        document = await self.document_repo.get_by_id(document_id, with_text=with_text)
        if document is None:
            raise NotFound(f"Document {document_id} not found")
        collection = await self.collection_repo.get_by_id(document.collection_id)
        if collection is None:
            raise NotFound(f"Document {document_id} not found")
        if collection.owner_id != owner_id:
            raise self._deny(owner_id, "document", document_id)
        return document

    async def list_documents(self, owner_id: str, collection_id: str) -> List[Document]:
        await self.get_collection(owner_id, collection_id)
        return await self.document_repo.list_by_collection(collection_id)

    async def delete_document(self, owner_id: str, document_id: str) -> None:
        await self.get_document(owner_id, document_id)
        await self.vector_store.delete_by_document(document_id)
        await self.document_repo.soft_delete(document_id)
        await self.session.commit()
        logger.info(f"Deleted document {document_id}")
