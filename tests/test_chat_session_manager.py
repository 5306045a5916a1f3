"""
Tests for chat sessions: durable history, grounded answers and retry after failure.
"""
import pytest

from docintel.core.enums import MessageRole
from docintel.core.errors import GenerationFailed, InvalidConfiguration, IsolationViolation, NotFound

from conftest import create_collection, seed_document


@pytest.fixture
def chat_manager(rag_service):
    return rag_service.chat_manager


async def grounded_collection(session):
    collection = await create_collection(session)
    await seed_document(session, collection, "Handbook", [
        "vacation requests need two weeks notice",
        "expense reports are due monthly",
    ])
    return collection


class TestSessions:
    """Test session creation and ownership."""

    async def test_create_session_uses_defaults(self, session, chat_manager):
        collection = await grounded_collection(session)

        chat_session = await chat_manager.create_session("alice", collection.id)

        assert chat_session.context_window == 4000
        assert chat_session.temperature == pytest.approx(0.7)
        assert chat_session.model == "auto"
        assert chat_session.max_retrieval_count == collection.config.max_retrieval_count
        assert chat_session.title == "Chat about Manuals"

    @pytest.mark.parametrize("options", [
        {"context_window": 500},
        {"temperature": 2.5},
        {"max_retrieval_count": 0},
    ])
    async def test_create_session_validates_ranges(self, session, chat_manager, options):
        collection = await grounded_collection(session)
        with pytest.raises(InvalidConfiguration):
            await chat_manager.create_session("alice", collection.id, **options)

    async def test_cannot_open_session_on_foreign_collection(self, session, chat_manager):
        collection = await grounded_collection(session)
        with pytest.raises(IsolationViolation):
            await chat_manager.create_session("mallory", collection.id)

    async def test_foreign_session_history_is_denied(self, session, chat_manager):
        collection = await grounded_collection(session)
        chat_session = await chat_manager.create_session("alice", collection.id)

        with pytest.raises(IsolationViolation):
            await chat_manager.get_history("mallory", chat_session.id)

    async def test_unknown_session_raises_not_found(self, chat_manager):
        with pytest.raises(NotFound):
            await chat_manager.get_history("alice", "missing")


class TestChatTurns:
    """Test turn persistence and failure handling."""

    async def test_chat_persists_both_messages_with_sources(self, session, chat_manager, provider):
        collection = await grounded_collection(session)
        chat_session = await chat_manager.create_session("alice", collection.id)

        reply = await chat_manager.chat("alice", chat_session.id, "How much notice for vacation requests?")

        assert reply.response == provider.reply
        assert reply.provider == provider.name
        assert reply.sources[0].document_title == "Handbook"
        history = await chat_manager.get_history("alice", chat_session.id)
        assert [m.role for m in history] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert [m.sequence for m in history] == [1, 2]
        assert history[1].sources == reply.sources
        assert history[1].tokens_used == 42

    async def test_prompt_contains_history_and_context(self, session, chat_manager, provider):
        collection = await grounded_collection(session)
        chat_session = await chat_manager.create_session("alice", collection.id)

        await chat_manager.chat("alice", chat_session.id, "first question about expense reports")
        await chat_manager.chat("alice", chat_session.id, "and vacation?")

        prompt = provider.prompts[-1]
        assert [t.role for t in prompt.turns] == [MessageRole.USER, MessageRole.ASSISTANT, MessageRole.USER]
        assert prompt.turns[0].content == "first question about expense reports"
        assert "Source 1" in prompt.turns[-1].content

    async def test_auto_model_lets_provider_choose(self, session, chat_manager):
        collection = await grounded_collection(session)
        chat_session = await chat_manager.create_session("alice", collection.id)

        reply = await chat_manager.chat("alice", chat_session.id, "hello")
        assert reply.model == "fake-chat"

    async def test_generation_failure_keeps_user_message(self, session, chat_manager, provider):
        collection = await grounded_collection(session)
        chat_session = await chat_manager.create_session("alice", collection.id)
        provider.fail_complete = True

        with pytest.raises(GenerationFailed) as exc_info:
            await chat_manager.chat("alice", chat_session.id, "Are expenses due monthly?")

        history = await chat_manager.get_history("alice", chat_session.id)
        assert len(history) == 1
        assert history[0].role == MessageRole.USER
        assert exc_info.value.user_message_id == history[0].id
        assert exc_info.value.failures

    async def test_retry_answers_the_saved_message(self, session, chat_manager, provider):
        collection = await grounded_collection(session)
        chat_session = await chat_manager.create_session("alice", collection.id)
        provider.fail_complete = True
        with pytest.raises(GenerationFailed):
            await chat_manager.chat("alice", chat_session.id, "Are expenses due monthly?")

        provider.fail_complete = False
        reply = await chat_manager.retry("alice", chat_session.id)

        history = await chat_manager.get_history("alice", chat_session.id)
        assert [m.role for m in history] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert reply.user_message_id == history[0].id

    async def test_retry_without_pending_message_is_rejected(self, session, chat_manager):
        collection = await grounded_collection(session)
        chat_session = await chat_manager.create_session("alice", collection.id)
        await chat_manager.chat("alice", chat_session.id, "hello")

        with pytest.raises(InvalidConfiguration):
            await chat_manager.retry("alice", chat_session.id)

    async def test_empty_message_is_rejected(self, session, chat_manager):
        collection = await grounded_collection(session)
        chat_session = await chat_manager.create_session("alice", collection.id)

        with pytest.raises(InvalidConfiguration):
            await chat_manager.chat("alice", chat_session.id, "  ")
        assert await chat_manager.get_history("alice", chat_session.id) == []

    async def test_chat_works_on_empty_collection(self, session, chat_manager, provider):
        collection = await create_collection(session, name="Empty")
        chat_session = await chat_manager.create_session("alice", collection.id)

        reply = await chat_manager.chat("alice", chat_session.id, "anything there?")

        assert reply.sources == []
        assert provider.embed_calls == 0
