# services/ingestion_pipeline.py
"""Turns raw document text into stored, searchable embedded chunks"""
import asyncio
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from docintel.config import settings
from docintel.core.domain import ChunkRecord, CollectionConfig, EmbeddingResult, IngestionResult, TextChunk
from docintel.core.enums import ErrorCode, ProcessingStatus
from docintel.core.errors import EmbeddingModelMismatch, InvalidConfiguration, NotFound
from docintel.core.interfaces import IDocumentRepository, IVectorStore
from docintel.infrastructure.chunker import TextChunker
from docintel.services.fallback_chain import ProviderFallbackChain

logger = logging.getLogger(settings.LOGGER_NAME)

CANCELLED_REASON = "Cancelled"


class DocumentIngestionPipeline:
    """
    pending -> chunking -> embedding -> completed | failed

    Status changes are committed as they happen so listDocuments always shows
    where a document is. Chunks are written in the same transaction that marks
    the document completed, so a document never has a partial chunk set.
    """

    def __init__(
        self,
        session: AsyncSession,
        document_repo: IDocumentRepository,
        vector_store: IVectorStore,
        chain: ProviderFallbackChain,
        chunker: Optional[TextChunker] = None,
        max_workers: int = settings.EMBEDDING_WORKERS,
    ):
        if max_workers < 1:
            raise InvalidConfiguration(f"max_workers must be at least 1, got {max_workers}")
        self.session = session
        self.document_repo = document_repo
        self.vector_store = vector_store
        self.chain = chain
        self.chunker = chunker or TextChunker()
        self.max_workers = max_workers

    async def ingest(self, document_id: str, raw_text: str,
                     config: CollectionConfig) -> IngestionResult:
        """
        Chunk, embed and store a document, replacing any chunks from earlier runs.

        Raises:
            InvalidConfiguration: Bad chunking or dimension settings (nothing is touched).
            NotFound: Unknown or deleted document.
            AllProvidersUnavailable / EmbeddingModelMismatch: Embedding failed;
                the document is left `failed` with no chunks.
        """
        TextChunker.validate(config.chunk_size, config.chunk_overlap)
        if config.embedding_dimension <= 0:
            raise InvalidConfiguration(
                f"Embedding dimension must be positive, got {config.embedding_dimension}"
            )

        document = await self.document_repo.get_by_id(document_id)
        if document is None:
            raise NotFound(f"Document {document_id} not found")

        try:
            # ============ CHUNKING ============
            removed = await self.vector_store.delete_by_document(document_id)
            if removed:
                logger.info(f"[INGEST] Removed {removed} chunks from a previous run of {document_id}")
            await self.document_repo.update_status(document_id, ProcessingStatus.CHUNKING, chunk_count=0)
            await self.session.commit()

            chunks = await asyncio.to_thread(
                self.chunker.chunk, raw_text, config.chunk_size, config.chunk_overlap
            )
            logger.info(f"[INGEST] Document {document_id}: {len(chunks)} chunks")

            # ============ EMBEDDING ============
            await self.document_repo.update_status(document_id, ProcessingStatus.EMBEDDING, chunk_count=0)
            await self.session.commit()

            vectors = await self._embed_all(chunks, config)

            # ============ COMMIT ============
            records = [
                ChunkRecord(
                    document_id=document_id,
                    collection_id=document.collection_id,
                    ordinal=chunk.ordinal,
                    text=chunk.text,
                    vector=vector,
                    embedding_model=config.embedding_model,
                )
                for chunk, vector in zip(chunks, vectors)
            ]
            await self.vector_store.add_chunks(records, config.embedding_dimension)
            await self.document_repo.update_status(
                document_id, ProcessingStatus.COMPLETED, chunk_count=len(records)
            )
            await self.session.commit()

        except asyncio.CancelledError:
            await self._mark_failed(document_id, CANCELLED_REASON)
            raise
        except Exception as e:
            await self._mark_failed(document_id, str(e))
            raise

        logger.info(f"[INGEST] Document {document_id} completed with {len(records)} chunks")
        return IngestionResult(
            document_id=document_id,
            status=ProcessingStatus.COMPLETED,
            chunk_count=len(records),
            embedded_count=len(vectors),
        )

    async def _embed_all(self, chunks: List[TextChunk], config: CollectionConfig) -> List[List[float]]:
        """
        Embed chunks on a bounded worker pool.

        Ordinals are fixed by the chunker before dispatch; each worker writes into
        its chunk's slot, so completion order does not matter. The first failure
        cancels the remaining workers.
        """
        slots: List[Optional[List[float]]] = [None] * len(chunks)
        semaphore = asyncio.Semaphore(self.max_workers)

        async def worker(chunk: TextChunk) -> None:
            async with semaphore:
                result = await self.chain.embed([chunk.text], config.embedding_model)
            slots[chunk.ordinal] = self._checked_vector(result, config)

        tasks = [asyncio.create_task(worker(chunk)) for chunk in chunks]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return [vector for vector in slots if vector is not None]

    @staticmethod
    def _checked_vector(result: EmbeddingResult, config: CollectionConfig) -> List[float]:
        if result.model != config.embedding_model:
            raise EmbeddingModelMismatch(
                f"Provider {result.provider} embedded with '{result.model}', "
                f"collection uses '{config.embedding_model}'"
            )
        if len(result.vectors) != 1:
            raise InvalidConfiguration(f"Expected one vector from {result.provider}, got {len(result.vectors)}")
        vector = result.vectors[0]
        if len(vector) != config.embedding_dimension:
            raise InvalidConfiguration(
                f"Provider {result.provider} returned {len(vector)} dimensions, "
                f"collection expects {config.embedding_dimension}",
                ErrorCode.DIMENSION_MISMATCH,
            )
        return vector

    async def _mark_failed(self, document_id: str, reason: str) -> None:
        """Roll back staged work, drop any chunks and record the failure."""
        try:
            await self.session.rollback()
            await self.vector_store.delete_by_document(document_id)
            await self.document_repo.update_status(
                document_id, ProcessingStatus.FAILED, chunk_count=0, error_message=reason
            )
            await self.session.commit()
        except Exception as cleanup_error:
            logger.error(f"[INGEST] Could not mark document {document_id} failed: {cleanup_error}", exc_info=True)
            return
        logger.error(f"[INGEST] Document {document_id} failed: {reason}")
