# infrastructure/vector_store.py
"""Relational vector store: pgvector column, cosine search scoped to one collection"""
import logging
from typing import List, Sequence, Set

import numpy as np
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from docintel.config import settings
from docintel.core.domain import ChunkRecord, RetrievedChunk
from docintel.core.enums import ErrorCode, ProcessingStatus
from docintel.core.errors import InvalidConfiguration
from docintel.core.interfaces import IVectorStore
from docintel.database.models import ChunkEntity, DocumentEntity, utcnow
from docintel.infrastructure.repositories import as_utc

logger = logging.getLogger(settings.LOGGER_NAME)


def cosine_scores(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of each row of `matrix` (N, D) against `query` (D,).

    Zero vectors score 0 instead of dividing by zero.
    """
    norms = np.linalg.norm(matrix, axis=1)
    q_norm = np.linalg.norm(query)
    denom = norms * q_norm
    dots = matrix @ query
    return np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)


def rank_key(chunk: RetrievedChunk):
    """Descending score, then older document, then lower ordinal, then id."""
    return (-chunk.score, chunk.document_created_at, chunk.ordinal, chunk.chunk_id)


class SQLVectorStore(IVectorStore):
    """
    Stores chunk embeddings next to document metadata.

    PostgreSQL ranks with the pgvector `<=>` operator; other engines (SQLite in
    development and tests) fall back to a brute-force numpy scan of the
    collection's vectors.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @property
    def _dialect(self) -> str:
        return self.session.get_bind().dialect.name

    def _searchable(self, collection_id: str):
        """Filters shared by every read: one collection, live completed documents."""
        return (
            ChunkEntity.collection_id == collection_id,
            DocumentEntity.collection_id == collection_id,
            DocumentEntity.deleted_at.is_(None),
            DocumentEntity.processing_status == ProcessingStatus.COMPLETED.value,
        )

    # ============ WRITE ============

    async def add_chunks(self, chunks: List[ChunkRecord], dimension: int) -> int:
        if not chunks:
            return 0

        ordinals = set()
        for chunk in chunks:
            if chunk.dimension != dimension:
                raise InvalidConfiguration(
                    f"Chunk {chunk.ordinal} of document {chunk.document_id} has "
                    f"{chunk.dimension} dimensions, collection expects {dimension}",
                    ErrorCode.DIMENSION_MISMATCH,
                )
            key = (chunk.document_id, chunk.ordinal)
            if key in ordinals:
                raise InvalidConfiguration(
                    f"Duplicate ordinal {chunk.ordinal} for document {chunk.document_id}"
                )
            ordinals.add(key)

        now = utcnow()
        self.session.add_all([
            ChunkEntity(
                document_id=chunk.document_id,
                collection_id=chunk.collection_id,
                ordinal=chunk.ordinal,
                text=chunk.text,
                embedding=[float(v) for v in chunk.vector],
                dimension=chunk.dimension,
                embedding_model=chunk.embedding_model,
                created_at=now,
            )
            for chunk in chunks
        ])
        await self.session.flush()
        logger.debug(f"[VECTOR] Staged {len(chunks)} chunks")
        return len(chunks)

    async def delete_by_document(self, document_id: str) -> int:
        result = await self.session.execute(
            delete(ChunkEntity).where(ChunkEntity.document_id == document_id)
        )
        return result.rowcount or 0

    async def delete_by_collection(self, collection_id: str) -> int:
        result = await self.session.execute(
            delete(ChunkEntity).where(ChunkEntity.collection_id == collection_id)
        )
        return result.rowcount or 0

    # ============ READ ============

    async def count(self, collection_id: str) -> int:
        result = await self.session.execute(
            select(func.count(ChunkEntity.id))
            .join(DocumentEntity, DocumentEntity.id == ChunkEntity.document_id)
            .where(*self._searchable(collection_id))
        )
        return int(result.scalar_one())

    async def count_by_document(self, document_id: str) -> int:
        result = await self.session.execute(
            select(func.count(ChunkEntity.id)).where(ChunkEntity.document_id == document_id)
        )
        return int(result.scalar_one())

    async def stored_models(self, collection_id: str) -> Set[str]:
        result = await self.session.execute(
            select(ChunkEntity.embedding_model)
            .join(DocumentEntity, DocumentEntity.id == ChunkEntity.document_id)
            .where(*self._searchable(collection_id))
            .distinct()
        )
        return {row[0] for row in result}

    async def _check_dimensions(self, collection_id: str, dimension: int) -> None:
        result = await self.session.execute(
            select(ChunkEntity.dimension)
            .join(DocumentEntity, DocumentEntity.id == ChunkEntity.document_id)
            .where(*self._searchable(collection_id))
            .distinct()
        )
        stored = {row[0] for row in result}
        if stored - {dimension}:
            raise InvalidConfiguration(
                f"Collection {collection_id} holds vectors of dimension {sorted(stored)}, "
                f"query has {dimension}",
                ErrorCode.DIMENSION_MISMATCH,
            )

    async def search(
        self,
        collection_id: str,
        query_vector: List[float],
        top_k: int,
        dimension: int,
    ) -> List[RetrievedChunk]:
        if len(query_vector) != dimension:
            raise InvalidConfiguration(
                f"Query vector has {len(query_vector)} dimensions, collection expects {dimension}",
                ErrorCode.DIMENSION_MISMATCH,
            )
        if top_k <= 0:
            return []

        await self._check_dimensions(collection_id, dimension)

        if self._dialect == "postgresql":
            results = await self._search_pgvector(collection_id, query_vector, top_k)
        else:
            results = await self._search_scan(collection_id, query_vector, top_k)

        logger.debug(f"[VECTOR] {len(results)} hits in collection {collection_id}")
        return results

    async def _search_pgvector(self, collection_id: str, query_vector: Sequence[float],
                               top_k: int) -> List[RetrievedChunk]:
        distance = ChunkEntity.embedding.cosine_distance(list(query_vector)).label("distance")
        stmt = (
            select(
                ChunkEntity.id, ChunkEntity.document_id, ChunkEntity.collection_id,
                ChunkEntity.ordinal, ChunkEntity.text,
                DocumentEntity.title, DocumentEntity.created_at, distance,
            )
            .join(DocumentEntity, DocumentEntity.id == ChunkEntity.document_id)
            .where(*self._searchable(collection_id))
            .order_by(distance, DocumentEntity.created_at, ChunkEntity.ordinal, ChunkEntity.id)
            .limit(top_k)
        )
        rows = (await self.session.execute(stmt)).all()
        return [
            RetrievedChunk(
                chunk_id=row.id,
                document_id=row.document_id,
                collection_id=row.collection_id,
                document_title=row.title,
                text=row.text,
                ordinal=row.ordinal,
                score=1.0 - float(row.distance),
                document_created_at=as_utc(row.created_at),
            )
            for row in rows
        ]

    async def _search_scan(self, collection_id: str, query_vector: Sequence[float],
                           top_k: int) -> List[RetrievedChunk]:
        stmt = (
            select(
                ChunkEntity.id, ChunkEntity.document_id, ChunkEntity.collection_id,
                ChunkEntity.ordinal, ChunkEntity.text, ChunkEntity.embedding,
                DocumentEntity.title, DocumentEntity.created_at,
            )
            .join(DocumentEntity, DocumentEntity.id == ChunkEntity.document_id)
            .where(*self._searchable(collection_id))
        )
        rows = (await self.session.execute(stmt)).all()
        if not rows:
            return []

        matrix = np.vstack([np.asarray(row.embedding, dtype=np.float64) for row in rows])
        scores = cosine_scores(matrix, np.asarray(query_vector, dtype=np.float64))

        results = [
            RetrievedChunk(
                chunk_id=row.id,
                document_id=row.document_id,
                collection_id=row.collection_id,
                document_title=row.title,
                text=row.text,
                ordinal=row.ordinal,
                score=float(score),
                document_created_at=as_utc(row.created_at),
            )
            for row, score in zip(rows, scores)
        ]
        results.sort(key=rank_key)
        return results[:top_k]
