"""
Tests for document ingestion: status lifecycle, atomic chunk replacement and cancellation.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from docintel.core.domain import CollectionConfig, EmbeddingResult
from docintel.core.enums import ProcessingStatus
from docintel.core.errors import (
    AllProvidersUnavailable, EmbeddingModelMismatch, InvalidConfiguration, NotFound,
)
from docintel.infrastructure.chunker import TextChunker
from docintel.infrastructure.repositories import SQLDocumentRepository
from docintel.infrastructure.vector_store import SQLVectorStore
from docintel.services.ingestion_pipeline import CANCELLED_REASON, DocumentIngestionPipeline
from docintel.utils.common import get_content_hash

from conftest import TEST_DIMENSION, TEST_MODEL, create_collection, make_config

TEXT = " ".join(f"Paragraph {i} explains pump maintenance step {i}." for i in range(60))


@pytest.fixture
def documents(session):
    return SQLDocumentRepository(session)


@pytest.fixture
def store(session):
    return SQLVectorStore(session)


@pytest.fixture
def pipeline(session, documents, store, chain):
    return DocumentIngestionPipeline(session, documents, store, chain, max_workers=3)


async def pending_document(session, documents, collection, text=TEXT):
    document = await documents.create(
        collection.id, "Pump manual", text, "text/plain", get_content_hash(text)
    )
    await session.commit()
    return document


class TestIngestion:
    """Test the happy path and chunk replacement."""

    async def test_ingest_stores_all_chunks_and_completes(self, session, pipeline, documents, store):
        collection = await create_collection(session)
        document = await pending_document(session, documents, collection)

        result = await pipeline.ingest(document.id, TEXT, collection.config)

        stored = await documents.get_by_id(document.id)
        assert result.status == ProcessingStatus.COMPLETED
        assert result.chunk_count > 1
        assert result.embedded_count == result.chunk_count
        assert stored.processing_status == ProcessingStatus.COMPLETED
        assert stored.chunk_count == result.chunk_count
        assert await store.count_by_document(document.id) == result.chunk_count

    async def test_reprocess_replaces_previous_chunks(self, session, pipeline, documents, store):
        collection = await create_collection(session)
        document = await pending_document(session, documents, collection)
        first = await pipeline.ingest(document.id, TEXT, collection.config)

        bigger_chunks = make_config(chunk_size=1000, chunk_overlap=50)
        second = await pipeline.ingest(document.id, TEXT, bigger_chunks)

        assert second.chunk_count < first.chunk_count
        assert await store.count_by_document(document.id) == second.chunk_count

    async def test_empty_text_completes_with_zero_chunks(self, session, pipeline, documents, store):
        collection = await create_collection(session)
        document = await pending_document(session, documents, collection, text="   ")

        result = await pipeline.ingest(document.id, "   ", collection.config)

        assert result.chunk_count == 0
        assert (await documents.get_by_id(document.id)).processing_status == ProcessingStatus.COMPLETED

    async def test_parallel_embedding_keeps_chunk_order(self, session, pipeline, documents, store):
        collection = await create_collection(session)
        document = await pending_document(session, documents, collection)

        await pipeline.ingest(document.id, TEXT, collection.config)

        results = await store.search(
            collection.id, [1.0] * TEST_DIMENSION, 100, TEST_DIMENSION
        )
        expected = TextChunker().chunk(TEXT, collection.config.chunk_size, collection.config.chunk_overlap)
        assert {r.ordinal: r.text for r in results} == {c.ordinal: c.text for c in expected}


class TestIngestionFailures:
    """Test that failures leave a failed document with no chunks."""

    async def test_provider_outage_marks_document_failed(self, session, pipeline, documents, store, provider):
        collection = await create_collection(session)
        document = await pending_document(session, documents, collection)
        provider.fail_embed = True

        with pytest.raises(AllProvidersUnavailable):
            await pipeline.ingest(document.id, TEXT, collection.config)

        stored = await documents.get_by_id(document.id)
        assert stored.processing_status == ProcessingStatus.FAILED
        assert "embedding is down" in stored.error_message
        assert stored.chunk_count == 0
        assert await store.count_by_document(document.id) == 0

    async def test_reprocess_succeeds_as_soon_as_provider_recovers(
        self, session, pipeline, documents, store, provider
    ):
        collection = await create_collection(session)
        document = await pending_document(session, documents, collection)
        provider.fail_embed = True
        with pytest.raises(AllProvidersUnavailable):
            await pipeline.ingest(document.id, TEXT, collection.config)

        provider.fail_embed = False
        result = await pipeline.ingest(document.id, TEXT, collection.config)

        assert result.status == ProcessingStatus.COMPLETED
        assert await store.count_by_document(document.id) == result.chunk_count

    async def test_failed_reprocess_removes_old_chunks(self, session, pipeline, documents, store, provider):
        collection = await create_collection(session)
        document = await pending_document(session, documents, collection)
        await pipeline.ingest(document.id, TEXT, collection.config)

        provider.fail_embed = True
        with pytest.raises(AllProvidersUnavailable):
            await pipeline.ingest(document.id, TEXT, collection.config)

        assert await store.count_by_document(document.id) == 0
        assert await store.count(collection.id) == 0

    async def test_wrong_model_from_provider_fails(self, session, pipeline, documents, chain):
        collection = await create_collection(session)
        document = await pending_document(session, documents, collection)
        chain.embed = AsyncMock(return_value=EmbeddingResult(
            vectors=[[0.1] * TEST_DIMENSION], model="other", provider="rogue", dimension=TEST_DIMENSION
        ))

        with pytest.raises(EmbeddingModelMismatch):
            await pipeline.ingest(document.id, TEXT, collection.config)
        assert (await documents.get_by_id(document.id)).processing_status == ProcessingStatus.FAILED

    async def test_wrong_dimension_from_provider_fails(self, session, pipeline, documents, chain, store):
        collection = await create_collection(session)
        document = await pending_document(session, documents, collection)
        chain.embed = AsyncMock(return_value=EmbeddingResult(
            vectors=[[0.1, 0.2]], model=TEST_MODEL, provider="rogue", dimension=2
        ))

        with pytest.raises(InvalidConfiguration):
            await pipeline.ingest(document.id, TEXT, collection.config)
        assert await store.count_by_document(document.id) == 0

    async def test_invalid_chunking_touches_nothing(self, session, pipeline, documents):
        collection = await create_collection(session)
        document = await pending_document(session, documents, collection)
        bad = CollectionConfig(TEST_MODEL, TEST_DIMENSION, chunk_size=200, chunk_overlap=200, max_retrieval_count=5)

        with pytest.raises(InvalidConfiguration):
            await pipeline.ingest(document.id, TEXT, bad)
        assert (await documents.get_by_id(document.id)).processing_status == ProcessingStatus.PENDING

    async def test_unknown_document_raises_not_found(self, session, pipeline):
        collection = await create_collection(session)
        with pytest.raises(NotFound):
            await pipeline.ingest("missing", TEXT, collection.config)

    async def test_cancellation_marks_document_failed(self, session, pipeline, documents, store, provider):
        """Test that a cancelled ingestion leaves the document failed with reason Cancelled."""
        collection = await create_collection(session)
        document = await pending_document(session, documents, collection)
        provider.embed_delay = 10

        task = asyncio.create_task(pipeline.ingest(document.id, TEXT, collection.config))
        await provider.embed_started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        stored = await documents.get_by_id(document.id)
        assert stored.processing_status == ProcessingStatus.FAILED
        assert stored.error_message == CANCELLED_REASON
        assert await store.count_by_document(document.id) == 0

    def test_rejects_zero_workers(self, session, documents, store, chain):
        with pytest.raises(InvalidConfiguration):
            DocumentIngestionPipeline(session, documents, store, chain, max_workers=0)
