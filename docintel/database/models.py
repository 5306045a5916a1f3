# database/models.py
"""SQLAlchemy entities"""
import uuid
from datetime import datetime, timezone

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint,
)

from docintel.database.session import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CollectionEntity(Base):
    __tablename__ = "collections"
    id = Column(String, primary_key=True, default=_uuid)
    owner_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    embedding_model = Column(String, nullable=False)
    embedding_dimension = Column(Integer, nullable=False)
    chunk_size = Column(Integer, nullable=False)
    chunk_overlap = Column(Integer, nullable=False)
    max_retrieval_count = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class DocumentEntity(Base):
    __tablename__ = "documents"
    id = Column(String, primary_key=True, default=_uuid)
    collection_id = Column(String, ForeignKey("collections.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    source_text = Column(Text, nullable=False)
    content_type = Column(String, nullable=False, default="text/plain")
    source = Column(String, nullable=True)
    content_hash = Column(String, nullable=False, index=True)
    meta = Column(JSON, nullable=False, default=dict)
    processing_status = Column(String, nullable=False, default="pending")
    chunk_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class ChunkEntity(Base):
    """
    One embedded chunk.

    The vector column has no declared width so collections may use models of
    different dimensionality; `dimension` is stored alongside and checked on
    every write and compare.
    """
    __tablename__ = "embeddings"
    __table_args__ = (
        UniqueConstraint("document_id", "ordinal", name="uq_embeddings_document_ordinal"),
        Index("ix_embeddings_collection", "collection_id"),
    )
    id = Column(String, primary_key=True, default=_uuid)
    document_id = Column(String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    collection_id = Column(String, ForeignKey("collections.id"), nullable=False)
    ordinal = Column(Integer, nullable=False)
    text = Column(Text, nullable=False)
    embedding = Column(Vector(), nullable=False)
    dimension = Column(Integer, nullable=False)
    embedding_model = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class SessionEntity(Base):
    __tablename__ = "sessions"
    id = Column(String, primary_key=True, default=_uuid)
    owner_id = Column(String, nullable=False, index=True)
    collection_id = Column(String, ForeignKey("collections.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    context_window = Column(Integer, nullable=False)
    temperature = Column(Float, nullable=False)
    model = Column(String, nullable=False)
    max_retrieval_count = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class MessageEntity(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("session_id", "sequence", name="uq_messages_session_sequence"),
    )
    id = Column(String, primary_key=True, default=_uuid)
    session_id = Column(String, ForeignKey("sessions.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    role = Column(String, nullable=False)  # 'user' or 'assistant'
    content = Column(Text, nullable=False)
    sources = Column(JSON, nullable=False, default=list)
    provider = Column(String, nullable=True)
    model = Column(String, nullable=True)
    tokens_used = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
