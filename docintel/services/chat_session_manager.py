# services/chat_session_manager.py
"""Conversation state: retrieval-augmented chat turns with durable history"""
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from docintel.config import settings
from docintel.core.domain import (
    ChatMessage, ChatReply, ChatSession, CompletionOptions, RetrievedChunk, SourceRef,
)
from docintel.core.enums import MessageRole, TurnState
from docintel.core.errors import (
    AllProvidersUnavailable, GenerationFailed, InvalidConfiguration, IsolationViolation, NotFound,
)
from docintel.core.interfaces import IChatSessionRepository, IMessageRepository
from docintel.services.collection_registry import CollectionRegistry
from docintel.services.fallback_chain import ProviderFallbackChain
from docintel.services.prompt_builder import PromptBuilder
from docintel.services.retrieval_engine import RetrievalEngine

logger = logging.getLogger(settings.LOGGER_NAME)

SEQUENCE_CONFLICT_RETRIES = 3


class _Turn:
    """Idle -> Retrieving -> Composing -> Generating -> Persisted (or Failed)"""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.state = TurnState.IDLE

    def advance(self, state: TurnState) -> None:
        logger.debug(f"[CHAT] Session {self.session_id}: {self.state.value} -> {state.value}")
        self.state = state


class ChatSessionManager:
    def __init__(
        self,
        session: AsyncSession,
        registry: CollectionRegistry,
        session_repo: IChatSessionRepository,
        message_repo: IMessageRepository,
        retrieval: RetrievalEngine,
        chain: ProviderFallbackChain,
        prompt_builder: Optional[PromptBuilder] = None,
    ):
        self.session = session
        self.registry = registry
        self.session_repo = session_repo
        self.message_repo = message_repo
        self.retrieval = retrieval
        self.chain = chain
        self.prompt_builder = prompt_builder or PromptBuilder()

    # ============ SESSIONS ============

    async def create_session(
        self,
        owner_id: str,
        collection_id: str,
        model: Optional[str] = None,
        context_window: Optional[int] = None,
        temperature: Optional[float] = None,
        title: Optional[str] = None,
        max_retrieval_count: Optional[int] = None,
    ) -> ChatSession:
        """Create a session bound to one collection; its settings never change afterwards."""
        collection = await self.registry.get_collection(owner_id, collection_id)

        context_window = settings.DEFAULT_CONTEXT_WINDOW if context_window is None else context_window
        temperature = settings.DEFAULT_TEMPERATURE if temperature is None else temperature
        max_retrieval_count = (
            collection.config.max_retrieval_count if max_retrieval_count is None else max_retrieval_count
        )
        if not settings.CONTEXT_WINDOW_MIN <= context_window <= settings.CONTEXT_WINDOW_MAX:
            raise InvalidConfiguration(
                f"context_window must be between {settings.CONTEXT_WINDOW_MIN} and "
                f"{settings.CONTEXT_WINDOW_MAX}, got {context_window}"
            )
        if not settings.TEMPERATURE_MIN <= temperature <= settings.TEMPERATURE_MAX:
            raise InvalidConfiguration(
                f"temperature must be between {settings.TEMPERATURE_MIN} and "
                f"{settings.TEMPERATURE_MAX}, got {temperature}"
            )
        if not settings.RETRIEVAL_COUNT_MIN <= max_retrieval_count <= settings.RETRIEVAL_COUNT_MAX:
            raise InvalidConfiguration(
                f"max_retrieval_count must be between {settings.RETRIEVAL_COUNT_MIN} and "
                f"{settings.RETRIEVAL_COUNT_MAX}, got {max_retrieval_count}"
            )

        chat_session = await self.session_repo.create(
            owner_id=owner_id,
            collection_id=collection.id,
            title=(title or "").strip() or f"Chat about {collection.name}",
            context_window=context_window,
            temperature=temperature,
            model=model or settings.DEFAULT_CHAT_MODEL,
            max_retrieval_count=max_retrieval_count,
        )
        await self.session.commit()
        logger.info(f"[CHAT] Created session {chat_session.id} on collection {collection.id}")
        return chat_session

    async def get_session(self, owner_id: str, session_id: str) -> ChatSession:
        chat_session = await self.session_repo.get_by_id(session_id)
        if chat_session is None:
            raise NotFound(f"Session {session_id} not found")
        if chat_session.owner_id != owner_id:
            logger.warning(f"[SECURITY] Owner {owner_id} attempted to access session {session_id} of another owner")
            raise IsolationViolation(f"Access to session {session_id} denied")
        return chat_session

    async def list_sessions(self, owner_id: str, collection_id: Optional[str] = None) -> List[ChatSession]:
        return await self.session_repo.list_by_owner(owner_id, collection_id)

    async def get_history(self, owner_id: str, session_id: str) -> List[ChatMessage]:
        await self.get_session(owner_id, session_id)
        return await self.message_repo.list_by_session(session_id)

    # ============ TURNS ============

    async def chat(self, owner_id: str, session_id: str, user_message: str) -> ChatReply:
        """
        Run one turn. The user message is committed before anything else, so a
        failure later in the turn never loses it.

        Raises:
            GenerationFailed: No provider could embed the query or generate the answer.
        """
        chat_session = await self.get_session(owner_id, session_id)
        if not user_message or not user_message.strip():
            raise InvalidConfiguration("Message must not be empty")
        self.prompt_builder.ensure_fits(user_message, chat_session.context_window)

        user_msg = await self._append(session_id, MessageRole.USER, user_message)
        return await self._answer(owner_id, chat_session, user_msg)

    async def retry(self, owner_id: str, session_id: str) -> ChatReply:
        """Answer the trailing user message left behind by a failed turn."""
        chat_session = await self.get_session(owner_id, session_id)
        last = await self.message_repo.last_message(session_id)
        if last is None or last.role != MessageRole.USER:
            raise InvalidConfiguration(f"Session {session_id} has no unanswered message to retry")
        logger.info(f"[CHAT] Retrying message {last.id} in session {session_id}")
        return await self._answer(owner_id, chat_session, last)

    async def _answer(self, owner_id: str, chat_session: ChatSession, user_msg: ChatMessage) -> ChatReply:
        turn = _Turn(chat_session.id)
        try:
            turn.advance(TurnState.RETRIEVING)
            collection = await self.registry.get_collection(owner_id, chat_session.collection_id)
            chunks: List[RetrievedChunk] = await self.retrieval.retrieve(
                collection, user_msg.content, chat_session.max_retrieval_count
            )

            turn.advance(TurnState.COMPOSING)
            history = await self.message_repo.list_by_session(
                chat_session.id, before_sequence=user_msg.sequence
            )
            composed = self.prompt_builder.build(
                history=history,
                chunks=chunks,
                user_message=user_msg.content,
                context_window=chat_session.context_window,
                max_chunks=chat_session.max_retrieval_count,
            )

            turn.advance(TurnState.GENERATING)
            completion = await self.chain.complete(
                composed.prompt,
                CompletionOptions(
                    model=None if chat_session.model == "auto" else chat_session.model,
                    temperature=chat_session.temperature,
                    max_tokens=settings.MAX_COMPLETION_TOKENS,
                ),
            )
        except AllProvidersUnavailable as e:
            turn.advance(TurnState.FAILED)
            logger.error(f"[CHAT] Turn failed in session {chat_session.id}: {e}")
            raise GenerationFailed(
                f"No AI provider could answer; your message was saved and can be retried ({e.message})",
                user_message_id=user_msg.id,
                failures=e.failures,
            )
        except Exception:
            turn.advance(TurnState.FAILED)
            raise

        sources = [SourceRef.from_retrieved(chunk) for chunk in composed.sources]
        assistant_msg = await self._append(
            chat_session.id,
            MessageRole.ASSISTANT,
            completion.content,
            sources=sources,
            provider=completion.provider,
            model=completion.model,
            tokens_used=completion.tokens_used,
        )
        turn.advance(TurnState.PERSISTED)
        logger.info(
            f"[CHAT] Session {chat_session.id}: answered by {completion.provider} "
            f"with {len(sources)} sources"
        )
        return ChatReply(
            session_id=chat_session.id,
            message_id=assistant_msg.id,
            user_message_id=user_msg.id,
            response=completion.content,
            sources=sources,
            provider=completion.provider,
            model=completion.model,
            tokens_used=completion.tokens_used,
        )

    async def _append(self, session_id: str, role: MessageRole, content: str, **fields) -> ChatMessage:
        """Append and commit; a sequence collision with a concurrent turn is retried."""
        for attempt in range(1, SEQUENCE_CONFLICT_RETRIES + 1):
            try:
                message = await self.message_repo.append(session_id, role, content, **fields)
                await self.session.commit()
                return message
            except IntegrityError:
                await self.session.rollback()
                if attempt == SEQUENCE_CONFLICT_RETRIES:
                    raise
                logger.warning(f"[CHAT] Sequence conflict in session {session_id}, retrying ({attempt})")
