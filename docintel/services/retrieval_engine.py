# services/retrieval_engine.py
"""Query embedding + collection-scoped similarity search"""
import asyncio
import logging
from typing import List

from docintel.config import settings
from docintel.core.domain import Collection, RetrievedChunk
from docintel.core.enums import ErrorCode
from docintel.core.errors import EmbeddingModelMismatch, InvalidConfiguration, IsolationViolation
from docintel.core.interfaces import IVectorStore
from docintel.infrastructure.vector_store import rank_key
from docintel.services.fallback_chain import ProviderFallbackChain

logger = logging.getLogger(settings.LOGGER_NAME)


class RetrievalEngine:
    def __init__(self, vector_store: IVectorStore, chain: ProviderFallbackChain,
                 query_timeout: float = settings.VECTOR_QUERY_TIMEOUT_SECONDS):
        self.vector_store = vector_store
        self.chain = chain
        self.query_timeout = query_timeout

    async def retrieve(self, collection: Collection, query_text: str, top_k: int) -> List[RetrievedChunk]:
        """
        Top-k chunks of one collection ranked by cosine similarity.

        Ties are broken by earlier document creation, then lower ordinal. A
        collection without searchable chunks yields [] without calling any
        provider.

        Raises:
            InvalidConfiguration: top_k < 1, blank query or dimension mismatch.
            EmbeddingModelMismatch: stored or query vectors come from another model.
            AllProvidersUnavailable: the query could not be embedded.
            IsolationViolation: the store returned a chunk of another collection.
        """
        if top_k < 1:
            raise InvalidConfiguration(f"top_k must be at least 1, got {top_k}")
        if not query_text or not query_text.strip():
            raise InvalidConfiguration("Query text must not be empty")

        if await self.vector_store.count(collection.id) == 0:
            logger.info(f"[RETRIEVE] Collection {collection.id} has no searchable chunks")
            return []

        stored = await self.vector_store.stored_models(collection.id)
        foreign = stored - {collection.embedding_model}
        if foreign:
            raise EmbeddingModelMismatch(
                f"Collection {collection.id} holds vectors from {sorted(foreign)}, "
                f"configured model is '{collection.embedding_model}'; reprocess its documents"
            )

        embedding = await self.chain.embed([query_text], collection.embedding_model)
        if embedding.model != collection.embedding_model:
            raise EmbeddingModelMismatch(
                f"Query embedded with '{embedding.model}' by {embedding.provider}, "
                f"collection uses '{collection.embedding_model}'"
            )
        query_vector = embedding.vectors[0]
        if len(query_vector) != collection.embedding_dimension:
            raise InvalidConfiguration(
                f"Query vector has {len(query_vector)} dimensions, "
                f"collection expects {collection.embedding_dimension}",
                ErrorCode.DIMENSION_MISMATCH,
            )

        results = await asyncio.wait_for(
            self.vector_store.search(collection.id, query_vector, top_k, collection.embedding_dimension),
            timeout=self.query_timeout,
        )

        leaked = [r for r in results if r.collection_id != collection.id]
        if leaked:
            logger.error(
                f"[SECURITY] Vector search for collection {collection.id} returned "
                f"{len(leaked)} chunks of other collections; request rejected"
            )
            raise IsolationViolation("Retrieval crossed a collection boundary")

        results = sorted(results, key=rank_key)[:top_k]
        logger.info(
            f"[RETRIEVE] {len(results)} chunks from collection {collection.id} "
            f"(top score {results[0].score:.3f})" if results else
            f"[RETRIEVE] No matches in collection {collection.id}"
        )
        return results
