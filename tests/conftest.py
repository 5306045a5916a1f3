"""
Pytest configuration and fixtures.

Every test gets its own in-memory SQLite database and deterministic fake AI
providers, so nothing touches the network or the on-disk database.
"""
import asyncio
import hashlib
from typing import AsyncGenerator, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from docintel.core.domain import (
    ChunkRecord, Collection, CompletionOptions, CompletionResult, Document, EmbeddingResult,
    Prompt, ProviderDescriptor,
)
from docintel.core.enums import Capability, ProcessingStatus, ProviderKind
from docintel.core.errors import ProviderError
from docintel.core.interfaces import IAIProvider
from docintel.database.session import init_models
from docintel.infrastructure.repositories import SQLCollectionRepository, SQLDocumentRepository
from docintel.infrastructure.vector_store import SQLVectorStore
from docintel.services.collection_registry import build_collection_config
from docintel.services.factory import create_rag_service
from docintel.services.fallback_chain import ProviderAvailabilityCache, ProviderFallbackChain
from docintel.utils.common import get_content_hash

TEST_MODEL = "test-embed"
TEST_DIMENSION = 8


def keyword_vector(text: str, dimension: int = TEST_DIMENSION) -> List[float]:
    """Bag-of-words hashed into `dimension` buckets; texts sharing words score higher."""
    vector = [0.0] * dimension
    for word in text.lower().split():
        word = word.strip(".,!?")
        if word:
            bucket = int(hashlib.sha256(word.encode("utf-8")).hexdigest(), 16) % dimension
            vector[bucket] += 1.0
    if not any(vector):
        vector[0] = 1.0
    return vector


class FakeClock:
    """Manually advanced monotonic clock for cache TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(IAIProvider):
    """Deterministic in-memory provider with switchable failures."""

    def __init__(
        self,
        name: str = "fake-local",
        kind: ProviderKind = ProviderKind.LOCAL,
        embedding_models: Optional[Dict[str, int]] = None,
        chat_models: Optional[List[str]] = None,
        max_context_tokens: int = 0,
        reply: str = "Answer based on the sources.",
        fail_embed: bool = False,
        fail_complete: bool = False,
        available: bool = True,
        embed_delay: float = 0.0,
    ):
        self.reply = reply
        self.fail_embed = fail_embed
        self.fail_complete = fail_complete
        self.available = available
        self.embed_delay = embed_delay
        self.embed_calls = 0
        self.complete_calls = 0
        self.probe_calls = 0
        self.prompts: List[Prompt] = []
        self.embed_started = asyncio.Event()
        embedding_models = {TEST_MODEL: TEST_DIMENSION} if embedding_models is None else embedding_models
        chat_models = ["fake-chat"] if chat_models is None else chat_models
        capabilities = set()
        if embedding_models:
            capabilities.add(Capability.EMBED)
        if chat_models:
            capabilities.add(Capability.COMPLETE)
        self._descriptor = ProviderDescriptor(
            name=name,
            kind=kind,
            capabilities=frozenset(capabilities),
            embedding_models=embedding_models,
            chat_models=chat_models,
            max_context_tokens=max_context_tokens,
        )

    def describe(self) -> ProviderDescriptor:
        return self._descriptor

    async def embed(self, texts: List[str], model: str) -> EmbeddingResult:
        self.embed_calls += 1
        self.embed_started.set()
        if self.embed_delay:
            await asyncio.sleep(self.embed_delay)
        if self.fail_embed:
            raise ProviderError(f"{self.name} embedding is down")
        dimension = self._descriptor.embedding_models[model]
        return EmbeddingResult(
            vectors=[keyword_vector(text, dimension) for text in texts],
            model=model,
            provider=self.name,
            dimension=dimension,
        )

    async def complete(self, prompt: Prompt, options: CompletionOptions) -> CompletionResult:
        self.complete_calls += 1
        self.prompts.append(prompt)
        if self.fail_complete:
            raise ProviderError(f"{self.name} completion is down")
        return CompletionResult(
            content=self.reply,
            model=options.model or self._descriptor.chat_models[0],
            provider=self.name,
            tokens_used=42,
            finish_reason="stop",
        )

    async def probe(self) -> bool:
        self.probe_calls += 1
        return self.available


# ============ DATABASE ============

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session


# ============ PROVIDERS ============

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def chain(provider: FakeProvider, clock: FakeClock) -> ProviderFallbackChain:
    return ProviderFallbackChain(
        [provider],
        timeout_seconds=5,
        probe_timeout_seconds=1,
        cache=ProviderAvailabilityCache(ttl_seconds=30, clock=clock),
    )


@pytest.fixture
def rag_service(session: AsyncSession, chain: ProviderFallbackChain):
    return create_rag_service(session, chain)


# ============ DATA HELPERS ============

def make_config(**overrides):
    options = dict(
        embedding_model=TEST_MODEL,
        embedding_dimension=TEST_DIMENSION,
        chunk_size=200,
        chunk_overlap=20,
        max_retrieval_count=5,
    )
    options.update(overrides)
    return build_collection_config(**options)


async def create_collection(session: AsyncSession, owner_id: str = "alice",
                            name: str = "Manuals", **overrides) -> Collection:
    collection = await SQLCollectionRepository(session).create(
        owner_id, name, "", make_config(**overrides)
    )
    await session.commit()
    return collection


async def seed_document(session: AsyncSession, collection: Collection, title: str,
                        chunk_texts: List[str],
                        status: ProcessingStatus = ProcessingStatus.COMPLETED,
                        model: str = TEST_MODEL) -> Document:
    """Store a document with pre-embedded chunks, bypassing the pipeline."""
    documents = SQLDocumentRepository(session)
    text = "\n\n".join(chunk_texts)
    document = await documents.create(
        collection.id, title, text, "text/plain", get_content_hash(title + text)
    )
    await SQLVectorStore(session).add_chunks(
        [
            ChunkRecord(
                document_id=document.id,
                collection_id=collection.id,
                ordinal=ordinal,
                text=chunk_text,
                vector=keyword_vector(chunk_text, collection.embedding_dimension),
                embedding_model=model,
            )
            for ordinal, chunk_text in enumerate(chunk_texts)
        ],
        collection.embedding_dimension,
    )
    await documents.update_status(document.id, status, chunk_count=len(chunk_texts))
    await session.commit()
    return document
