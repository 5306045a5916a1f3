# infrastructure/repositories.py
"""
Database repository implementations.

Repositories stage changes and flush; transaction boundaries (commit/rollback)
belong to the calling service.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from docintel.config import settings
from docintel.core.domain import (
    ChatMessage, ChatSession, Collection, CollectionConfig, Document, SourceRef,
)
from docintel.core.enums import MessageRole, ProcessingStatus
from docintel.core.interfaces import (
    IChatSessionRepository, ICollectionRepository, IDocumentRepository, IMessageRepository,
)
from docintel.database.models import (
    CollectionEntity, DocumentEntity, MessageEntity, SessionEntity, utcnow,
)

logger = logging.getLogger(settings.LOGGER_NAME)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class SQLCollectionRepository(ICollectionRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_domain(self, row: Optional[CollectionEntity]) -> Optional[Collection]:
        """Converts an SQLAlchemy entity to a domain model."""
        if row is None:
            return None
        return Collection(
            id=row.id,
            owner_id=row.owner_id,
            name=row.name,
            description=row.description or "",
            config=CollectionConfig(
                embedding_model=row.embedding_model,
                embedding_dimension=row.embedding_dimension,
                chunk_size=row.chunk_size,
                chunk_overlap=row.chunk_overlap,
                max_retrieval_count=row.max_retrieval_count,
            ),
            created_at=as_utc(row.created_at),
        )

    async def create(self, owner_id: str, name: str, description: str,
                     config: CollectionConfig) -> Collection:
        row = CollectionEntity(
            owner_id=owner_id,
            name=name,
            description=description,
            embedding_model=config.embedding_model,
            embedding_dimension=config.embedding_dimension,
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
            max_retrieval_count=config.max_retrieval_count,
            created_at=utcnow(),
        )
        self.session.add(row)
        await self.session.flush()
        logger.info(f"Created collection {row.id} for owner {owner_id}")
        return self._to_domain(row)

    async def get_by_id(self, collection_id: str) -> Optional[Collection]:
        result = await self.session.execute(
            select(CollectionEntity).where(
                CollectionEntity.id == collection_id,
                CollectionEntity.deleted_at.is_(None),
            )
        )
        return self._to_domain(result.scalar_one_or_none())

    async def get_by_name(self, owner_id: str, name: str) -> Optional[Collection]:
        result = await self.session.execute(
            select(CollectionEntity).where(
                CollectionEntity.owner_id == owner_id,
                CollectionEntity.name == name,
                CollectionEntity.deleted_at.is_(None),
            )
        )
        return self._to_domain(result.scalars().first())

    async def list_by_owner(self, owner_id: str) -> List[Collection]:
        result = await self.session.execute(
            select(CollectionEntity)
            .where(CollectionEntity.owner_id == owner_id, CollectionEntity.deleted_at.is_(None))
            .order_by(CollectionEntity.created_at, CollectionEntity.id)
        )
        return [self._to_domain(row) for row in result.scalars().all()]

    async def soft_delete(self, collection_id: str) -> bool:
        result = await self.session.execute(
            update(CollectionEntity)
            .where(CollectionEntity.id == collection_id, CollectionEntity.deleted_at.is_(None))
            .values(deleted_at=utcnow())
        )
        return result.rowcount > 0

    async def count_by_owner(self, owner_id: str) -> int:
        result = await self.session.execute(
            select(func.count(CollectionEntity.id)).where(
                CollectionEntity.owner_id == owner_id,
                CollectionEntity.deleted_at.is_(None),
            )
        )
        return int(result.scalar_one())


class SQLDocumentRepository(IDocumentRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_domain(self, row: Optional[DocumentEntity], with_text: bool = False) -> Optional[Document]:
        if row is None:
            return None
        return Document(
            id=row.id,
            collection_id=row.collection_id,
            title=row.title,
            content_type=row.content_type,
            content_hash=row.content_hash,
            processing_status=ProcessingStatus.from_string(row.processing_status),
            chunk_count=row.chunk_count or 0,
            created_at=as_utc(row.created_at),
            source=row.source,
            error_message=row.error_message,
            # Prevent accidental mutation of DB entity metadata
            metadata=dict(row.meta or {}),
            source_text=row.source_text if with_text else None,
            updated_at=as_utc(row.updated_at),
        )

    async def create(self, collection_id: str, title: str, source_text: str,
                     content_type: str, content_hash: str,
                     source: Optional[str] = None) -> Document:
        row = DocumentEntity(
            collection_id=collection_id,
            title=title,
            source_text=source_text,
            content_type=content_type,
            content_hash=content_hash,
            source=source,
            meta={"characters": len(source_text)},
            processing_status=ProcessingStatus.PENDING.value,
            chunk_count=0,
            created_at=utcnow(),
        )
        self.session.add(row)
        await self.session.flush()
        logger.info(f"Created document {row.id} in collection {collection_id}")
        return self._to_domain(row)

    async def get_by_id(self, document_id: str, with_text: bool = False) -> Optional[Document]:
        result = await self.session.execute(
            select(DocumentEntity).where(
                DocumentEntity.id == document_id,
                DocumentEntity.deleted_at.is_(None),
            )
        )
        return self._to_domain(result.scalar_one_or_none(), with_text=with_text)

    async def get_by_hash(self, collection_id: str, content_hash: str) -> Optional[Document]:
        result = await self.session.execute(
            select(DocumentEntity).where(
                DocumentEntity.collection_id == collection_id,
                DocumentEntity.content_hash == content_hash,
                DocumentEntity.deleted_at.is_(None),
            )
        )
        return self._to_domain(result.scalars().first())

    async def list_by_collection(self, collection_id: str) -> List[Document]:
        result = await self.session.execute(
            select(DocumentEntity)
            .where(DocumentEntity.collection_id == collection_id, DocumentEntity.deleted_at.is_(None))
            .order_by(DocumentEntity.created_at, DocumentEntity.id)
        )
        return [self._to_domain(row) for row in result.scalars().all()]

    async def update_status(self, document_id: str, status: ProcessingStatus,
                            chunk_count: Optional[int] = None,
                            error_message: Optional[str] = None) -> None:
        values = {
            "processing_status": status.value,
            "error_message": error_message,
            "updated_at": utcnow(),
        }
        if chunk_count is not None:
            values["chunk_count"] = chunk_count
        await self.session.execute(
            update(DocumentEntity).where(DocumentEntity.id == document_id).values(**values)
        )
        logger.debug(f"Document {document_id} -> {status.value}")

    async def soft_delete(self, document_id: str) -> bool:
        result = await self.session.execute(
            update(DocumentEntity)
            .where(DocumentEntity.id == document_id, DocumentEntity.deleted_at.is_(None))
            .values(deleted_at=utcnow())
        )
        return result.rowcount > 0

    async def soft_delete_by_collection(self, collection_id: str) -> int:
        result = await self.session.execute(
            update(DocumentEntity)
            .where(DocumentEntity.collection_id == collection_id, DocumentEntity.deleted_at.is_(None))
            .values(deleted_at=utcnow())
        )
        return result.rowcount

    async def count_by_collections(self, collection_ids: List[str]) -> int:
        if not collection_ids:
            return 0
        result = await self.session.execute(
            select(func.count(DocumentEntity.id)).where(
                DocumentEntity.collection_id.in_(list(collection_ids)),
                DocumentEntity.deleted_at.is_(None),
            )
        )
        return int(result.scalar_one())


class SQLChatSessionRepository(IChatSessionRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_domain(self, row: Optional[SessionEntity]) -> Optional[ChatSession]:
        if row is None:
            return None
        return ChatSession(
            id=row.id,
            owner_id=row.owner_id,
            collection_id=row.collection_id,
            title=row.title,
            context_window=row.context_window,
            temperature=row.temperature,
            model=row.model,
            max_retrieval_count=row.max_retrieval_count,
            created_at=as_utc(row.created_at),
        )

    async def create(self, owner_id: str, collection_id: str, title: str,
                     context_window: int, temperature: float, model: str,
                     max_retrieval_count: int) -> ChatSession:
        row = SessionEntity(
            owner_id=owner_id,
            collection_id=collection_id,
            title=title,
            context_window=context_window,
            temperature=temperature,
            model=model,
            max_retrieval_count=max_retrieval_count,
            created_at=utcnow(),
        )
        self.session.add(row)
        await self.session.flush()
        return self._to_domain(row)

    async def get_by_id(self, session_id: str) -> Optional[ChatSession]:
        row = await self.session.get(SessionEntity, session_id)
        return self._to_domain(row)

    async def list_by_owner(self, owner_id: str,
                            collection_id: Optional[str] = None) -> List[ChatSession]:
        stmt = select(SessionEntity).where(SessionEntity.owner_id == owner_id)
        if collection_id is not None:
            stmt = stmt.where(SessionEntity.collection_id == collection_id)
        result = await self.session.execute(
            stmt.order_by(SessionEntity.created_at.desc(), SessionEntity.id)
        )
        return [self._to_domain(row) for row in result.scalars().all()]

    async def count_by_owner(self, owner_id: str) -> int:
        result = await self.session.execute(
            select(func.count(SessionEntity.id)).where(SessionEntity.owner_id == owner_id)
        )
        return int(result.scalar_one())


class SQLMessageRepository(IMessageRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_domain(self, row: MessageEntity) -> ChatMessage:
        return ChatMessage(
            id=row.id,
            session_id=row.session_id,
            sequence=row.sequence,
            role=MessageRole(row.role),
            content=row.content,
            created_at=as_utc(row.created_at),
            sources=[SourceRef.from_dict(item) for item in (row.sources or [])],
            provider=row.provider,
            model=row.model,
            tokens_used=row.tokens_used or 0,
        )

    async def _next_sequence(self, session_id: str) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(MessageEntity.sequence), 0)).where(
                MessageEntity.session_id == session_id
            )
        )
        return int(result.scalar_one()) + 1

    async def append(self, session_id: str, role: MessageRole, content: str,
                     sources: Optional[List[SourceRef]] = None,
                     provider: Optional[str] = None, model: Optional[str] = None,
                     tokens_used: int = 0) -> ChatMessage:
        # Unique (session_id, sequence) rejects a concurrent writer that read the same max
        row = MessageEntity(
            session_id=session_id,
            sequence=await self._next_sequence(session_id),
            role=role.value,
            content=content,
            sources=[s.to_dict() for s in (sources or [])],
            provider=provider,
            model=model,
            tokens_used=tokens_used,
            created_at=utcnow(),
        )
        self.session.add(row)
        await self.session.flush()
        return self._to_domain(row)

    async def list_by_session(self, session_id: str,
                              before_sequence: Optional[int] = None) -> List[ChatMessage]:
        stmt = select(MessageEntity).where(MessageEntity.session_id == session_id)
        if before_sequence is not None:
            stmt = stmt.where(MessageEntity.sequence < before_sequence)
        result = await self.session.execute(stmt.order_by(MessageEntity.sequence))
        return [self._to_domain(row) for row in result.scalars().all()]

    async def last_message(self, session_id: str) -> Optional[ChatMessage]:
        result = await self.session.execute(
            select(MessageEntity)
            .where(MessageEntity.session_id == session_id)
            .order_by(MessageEntity.sequence.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return self._to_domain(row) if row is not None else None

    async def count_by_sessions(self, session_ids: List[str]) -> int:
        if not session_ids:
            return 0
        result = await self.session.execute(
            select(func.count(MessageEntity.id)).where(MessageEntity.session_id.in_(list(session_ids)))
        )
        return int(result.scalar_one())
