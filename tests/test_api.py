"""
End-to-end API tests through the ASGI app with an in-memory database.
"""
import pytest
from httpx import ASGITransport, AsyncClient

from docintel.database.session import get_db
from docintel.main import app, status_for
from docintel.core.errors import (
    AllProvidersUnavailable, DuplicateCollection, GenerationFailed, IsolationViolation, NotFound,
)
from docintel.services.factory import get_chain

from conftest import TEST_DIMENSION, TEST_MODEL

ALICE = {"X-User-Id": "alice"}
MALLORY = {"X-User-Id": "mallory"}

DOCUMENT_TEXT = (
    "The warehouse opens at seven in the morning. "
    "Forklift drivers must wear helmets at all times. "
    "Deliveries are accepted until four in the afternoon."
)


@pytest.fixture
async def client(session, chain):
    async def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_chain] = lambda: chain
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def create_collection(client, name="Warehouse"):
    response = await client.post("/collections", headers=ALICE, json={
        "name": name,
        "embedding_model": TEST_MODEL,
        "embedding_dimension": TEST_DIMENSION,
        "chunk_size": 100,
        "chunk_overlap": 10,
    })
    assert response.status_code == 201
    return response.json()["data"]


async def ingest(client, collection_id, text=DOCUMENT_TEXT, title="Rules"):
    return await client.post(
        f"/collections/{collection_id}/documents", headers=ALICE, json={"title": title, "text": text}
    )


class TestErrorMapping:
    """Test error to HTTP status mapping."""

    def test_status_codes(self):
        assert status_for(NotFound("x")) == 404
        assert status_for(IsolationViolation("x")) == 403
        assert status_for(DuplicateCollection("x")) == 409
        assert status_for(AllProvidersUnavailable("embed", [])) == 503
        assert status_for(GenerationFailed("x")) == 502


class TestEnvelope:
    """Test the response envelope and identity handling."""

    async def test_status_lists_providers(self, client, provider):
        response = await client.get("/status")

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["data"]["providers_configured"] == [provider.name]

    async def test_missing_identity_is_rejected(self, client):
        response = await client.get("/collections")

        assert response.status_code == 401
        assert response.json()["success"] is False

    async def test_invalid_configuration_is_422_with_code(self, client):
        response = await client.post("/collections", headers=ALICE, json={
            "name": "Bad", "embedding_model": TEST_MODEL, "embedding_dimension": TEST_DIMENSION,
            "chunk_size": 200, "chunk_overlap": 200,
        })

        assert response.status_code == 422
        assert response.json()["error"].startswith("[INVALID_CONFIGURATION]")

    async def test_request_validation_uses_envelope(self, client):
        response = await client.post("/collections", headers=ALICE, json={})

        assert response.status_code == 422
        assert response.json()["success"] is False

    async def test_malformed_id_is_rejected(self, client):
        response = await client.get("/collections/not-a-uuid", headers=ALICE)
        assert response.status_code == 422


class TestCollectionsAndDocuments:
    """Test the collection and document routes."""

    async def test_create_list_and_get_collection(self, client):
        collection = await create_collection(client)

        listed = (await client.get("/collections", headers=ALICE)).json()["data"]
        fetched = await client.get(f"/collections/{collection['id']}", headers=ALICE)

        assert [c["id"] for c in listed] == [collection["id"]]
        assert fetched.json()["data"]["config"]["chunk_size"] == 100

    async def test_duplicate_collection_name_is_409(self, client):
        await create_collection(client)
        response = await client.post("/collections", headers=ALICE, json={
            "name": "Warehouse", "embedding_model": TEST_MODEL, "embedding_dimension": TEST_DIMENSION,
        })
        assert response.status_code == 409

    async def test_other_owner_gets_403(self, client):
        collection = await create_collection(client)

        response = await client.get(f"/collections/{collection['id']}", headers=MALLORY)

        assert response.status_code == 403
        assert response.json()["error"].startswith("[ISOLATION_VIOLATION]")

    async def test_ingest_then_search(self, client):
        collection = await create_collection(client)

        ingested = await ingest(client, collection["id"])
        search = await client.post(
            f"/collections/{collection['id']}/search", headers=ALICE,
            json={"query": "forklift helmets", "top_k": 2},
        )

        assert ingested.status_code == 201
        data = ingested.json()["data"]
        assert data["ingestion"]["status"] == "completed"
        assert data["ingestion"]["chunk_count"] >= 2
        results = search.json()["data"]["results"]
        assert 1 <= len(results) <= 2
        assert results[0]["document_title"] == "Rules"

    async def test_failed_ingestion_is_visible_in_document_list(self, client, provider):
        collection = await create_collection(client)
        provider.fail_embed = True

        response = await ingest(client, collection["id"])

        assert response.status_code == 503
        failed_id = response.json()["data"]["document_id"]
        documents = (await client.get(f"/collections/{collection['id']}/documents", headers=ALICE)).json()["data"]
        assert documents[0]["id"] == failed_id
        assert documents[0]["processing_status"] == "failed"
        assert documents[0]["error_message"]

    async def test_reprocess_and_delete_document(self, client):
        collection = await create_collection(client)
        document_id = (await ingest(client, collection["id"])).json()["data"]["document"]["id"]

        reprocessed = await client.post(f"/documents/{document_id}/reprocess", headers=ALICE)
        deleted = await client.delete(f"/documents/{document_id}", headers=ALICE)
        listed = await client.get(f"/collections/{collection['id']}/documents", headers=ALICE)

        assert reprocessed.json()["data"]["status"] == "completed"
        assert deleted.status_code == 200
        assert listed.json()["data"] == []

    async def test_duplicate_document_is_409(self, client):
        collection = await create_collection(client)
        await ingest(client, collection["id"])

        response = await ingest(client, collection["id"], title="Copy")
        assert response.status_code == 409

    async def test_delete_collection(self, client):
        collection = await create_collection(client)
        await ingest(client, collection["id"])

        response = await client.delete(f"/collections/{collection['id']}", headers=ALICE)
        missing = await client.get(f"/collections/{collection['id']}", headers=ALICE)

        assert response.json()["data"] == {"documents_deleted": 1}
        assert missing.status_code == 404


class TestChatRoutes:
    """Test sessions, chat and retry over HTTP."""

    async def open_session(self, client):
        collection = await create_collection(client)
        await ingest(client, collection["id"])
        response = await client.post("/sessions", headers=ALICE, json={"collection_id": collection["id"]})
        assert response.status_code == 201
        return response.json()["data"]

    async def test_chat_and_history(self, client, provider):
        chat_session = await self.open_session(client)

        reply = await client.post(
            f"/sessions/{chat_session['id']}/chat", headers=ALICE, json={"message": "When do deliveries stop?"}
        )
        history = await client.get(f"/sessions/{chat_session['id']}/history", headers=ALICE)

        assert reply.status_code == 200
        assert reply.json()["data"]["response"] == provider.reply
        assert reply.json()["data"]["sources"]
        assert [m["role"] for m in history.json()["data"]] == ["user", "assistant"]

    async def test_generation_failure_is_502_and_retry_recovers(self, client, provider):
        chat_session = await self.open_session(client)
        provider.fail_complete = True

        failed = await client.post(
            f"/sessions/{chat_session['id']}/chat", headers=ALICE, json={"message": "Opening hours?"}
        )
        provider.fail_complete = False
        retried = await client.post(f"/sessions/{chat_session['id']}/retry", headers=ALICE)

        assert failed.status_code == 502
        assert failed.json()["data"]["user_message_id"]
        assert retried.status_code == 200
        assert retried.json()["data"]["user_message_id"] == failed.json()["data"]["user_message_id"]

    async def test_list_sessions_and_statistics(self, client):
        chat_session = await self.open_session(client)
        await client.post(f"/sessions/{chat_session['id']}/chat", headers=ALICE, json={"message": "Hi"})

        sessions = (await client.get("/sessions", headers=ALICE)).json()["data"]
        stats = (await client.get("/statistics", headers=ALICE)).json()["data"]

        assert [s["id"] for s in sessions] == [chat_session["id"]]
        assert stats == {"collections": 1, "documents": 1, "sessions": 1, "messages": 2}

    async def test_other_owner_cannot_read_history(self, client):
        chat_session = await self.open_session(client)
        response = await client.get(f"/sessions/{chat_session['id']}/history", headers=MALLORY)
        assert response.status_code == 403


class TestProviderRoutes:
    """Test provider status and model listing."""

    async def test_provider_status(self, client, provider):
        response = await client.get("/providers/status")
        assert response.json()["data"][provider.name]["available"] is True

    async def test_provider_models_exposes_no_credentials(self, client):
        data = (await client.get("/providers/models")).json()["data"]
        assert data[0]["embedding_models"] == {TEST_MODEL: TEST_DIMENSION}
        assert "api_key" not in data[0]
