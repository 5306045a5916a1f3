"""
Tests for owner-scoped collections and document bookkeeping.
"""
import logging
from unittest.mock import patch

import pytest

from docintel.core.enums import ProcessingStatus
from docintel.core.errors import (
    DuplicateCollection, DuplicateDocument, InvalidConfiguration, IsolationViolation, NotFound,
)
from docintel.infrastructure.vector_store import SQLVectorStore
from docintel.services.collection_registry import build_collection_config

from conftest import TEST_DIMENSION, TEST_MODEL, make_config, seed_document


@pytest.fixture
def registry(rag_service):
    return rag_service.registry


class TestCollectionConfig:
    """Test default filling and range validation."""

    def test_defaults_come_from_settings(self):
        config = build_collection_config()
        assert config.embedding_model == "nomic-embed-text"
        assert config.embedding_dimension == 768
        assert (config.chunk_size, config.chunk_overlap, config.max_retrieval_count) == (1000, 200, 5)

    @pytest.mark.parametrize("options", [
        {"chunk_size": 50},
        {"chunk_size": 20000},
        {"chunk_overlap": 600},
        {"chunk_size": 300, "chunk_overlap": 300},
        {"max_retrieval_count": 21},
        {"embedding_model": "unknown-model"},
    ])
    def test_out_of_range_values_are_rejected(self, options):
        with pytest.raises(InvalidConfiguration):
            build_collection_config(**options)

    def test_explicit_dimension_allows_unknown_model(self):
        config = build_collection_config(embedding_model="custom", embedding_dimension=12)
        assert config.embedding_dimension == 12


class TestCollections:
    """Test ownership, uniqueness and soft deletion."""

    async def test_create_and_list_only_own_collections(self, registry):
        mine = await registry.create_collection("alice", "Contracts", config=make_config())
        await registry.create_collection("bob", "Contracts", config=make_config())

        collections = await registry.list_collections("alice")

        assert [c.id for c in collections] == [mine.id]
        assert mine.embedding_model == TEST_MODEL
        assert mine.embedding_dimension == TEST_DIMENSION

    async def test_duplicate_name_for_same_owner_is_rejected(self, registry):
        await registry.create_collection("alice", "Contracts", config=make_config())
        with pytest.raises(DuplicateCollection):
            await registry.create_collection("alice", "Contracts", config=make_config())

    async def test_blank_name_is_rejected(self, registry):
        with pytest.raises(InvalidConfiguration):
            await registry.create_collection("alice", "   ", config=make_config())

    async def test_foreign_collection_access_is_denied_and_logged(self, registry, caplog):
        collection = await registry.create_collection("alice", "Private", config=make_config())

        with caplog.at_level(logging.WARNING, logger="docintel"):
            with pytest.raises(IsolationViolation):
                await registry.get_collection("mallory", collection.id)

        assert any("[SECURITY]" in record.getMessage() for record in caplog.records)

    async def test_missing_collection_raises_not_found(self, registry):
        with pytest.raises(NotFound):
            await registry.get_collection("alice", "missing")

    async def test_delete_soft_deletes_documents_and_removes_chunks(self, session, registry):
        collection = await registry.create_collection("alice", "Temp", config=make_config())
        await seed_document(session, collection, "One", ["first text"])
        await seed_document(session, collection, "Two", ["second text"])

        deleted = await registry.delete_collection("alice", collection.id)

        assert deleted == 2
        assert await SQLVectorStore(session).count(collection.id) == 0
        with pytest.raises(NotFound):
            await registry.get_collection("alice", collection.id)
        assert await registry.list_collections("alice") == []

    async def test_name_can_be_reused_after_delete(self, registry):
        first = await registry.create_collection("alice", "Reports", config=make_config())
        await registry.delete_collection("alice", first.id)

        second = await registry.create_collection("alice", "Reports", config=make_config())
        assert second.id != first.id


class TestDocuments:
    """Test document registration and access checks."""

    async def test_create_document_is_pending(self, registry):
        collection = await registry.create_collection("alice", "Docs", config=make_config())

        document = await registry.create_document("alice", collection.id, "Memo", "Some memo text")

        assert document.processing_status == ProcessingStatus.PENDING
        assert document.source_text is None
        stored = await registry.get_document("alice", document.id, with_text=True)
        assert stored.source_text == "Some memo text"

    async def test_duplicate_content_is_rejected(self, registry):
        collection = await registry.create_collection("alice", "Docs", config=make_config())
        await registry.create_document("alice", collection.id, "Memo", "Same text")

        with pytest.raises(DuplicateDocument):
            await registry.create_document("alice", collection.id, "Memo copy", "Same text")

    async def test_duplicate_content_allowed_when_configured(self, registry):
        collection = await registry.create_collection("alice", "Docs", config=make_config())
        await registry.create_document("alice", collection.id, "Memo", "Same text")

        with patch("docintel.services.collection_registry.settings.REJECT_DUPLICATE_DOCUMENTS", False):
            copy = await registry.create_document("alice", collection.id, "Memo copy", "Same text")
        assert copy.title == "Memo copy"

    async def test_oversized_document_is_rejected(self, registry):
        collection = await registry.create_collection("alice", "Docs", config=make_config())
        with patch("docintel.services.collection_registry.settings.MAX_DOCUMENT_CHARS", 10):
            with pytest.raises(InvalidConfiguration):
                await registry.create_document("alice", collection.id, "Big", "x" * 11)

    async def test_foreign_document_access_is_denied(self, registry):
        collection = await registry.create_collection("alice", "Docs", config=make_config())
        document = await registry.create_document("alice", collection.id, "Memo", "text")

        with pytest.raises(IsolationViolation):
            await registry.get_document("mallory", document.id)
        with pytest.raises(IsolationViolation):
            await registry.delete_document("mallory", document.id)
        with pytest.raises(IsolationViolation):
            await registry.list_documents("mallory", collection.id)

    async def test_delete_document_hides_it(self, session, registry):
        collection = await registry.create_collection("alice", "Docs", config=make_config())
        document = await seed_document(session, collection, "Gone", ["bye"])

        await registry.delete_document("alice", document.id)

        assert await registry.list_documents("alice", collection.id) == []
        assert await SQLVectorStore(session).count_by_document(document.id) == 0
        with pytest.raises(NotFound):
            await registry.get_document("alice", document.id)
