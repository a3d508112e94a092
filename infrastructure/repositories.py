# infrastructure/repositories.py
"""Database repository implementations"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from core.domain import (
    CacheEntry,
    Document,
    DocumentChunk,
    DocumentStatus,
    Role,
    SearchAnalytics,
)
from core.interfaces import (
    ICacheRepository,
    IChunkRepository,
    IDocumentRepository,
    ISearchLogRepository,
)
from database.session import (
    ChatHistoryEntity,
    ChunkEntity,
    DocumentEntity,
    QueryCacheEntity,
    SearchAnalyticsEntity,
)
from utils.common import utc_now

logger = logging.getLogger(settings.LOGGER_NAME)

_NATIVE_UPSERT = {"sqlite": sqlite_insert, "postgresql": pg_insert}


class SQLDocumentRepository(IDocumentRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_domain(self, db_doc: Optional[DocumentEntity]) -> Optional[Document]:
        """Converts an SQLAlchemy entity to a domain model."""
        if db_doc is None:
            return None
        return Document(
            id=db_doc.id,
            filename=db_doc.filename,
            status=DocumentStatus.from_string(db_doc.status),
            accessible_by_employees=bool(db_doc.accessible_by_employees),
            accessible_by_customers=bool(db_doc.accessible_by_customers),
            error_message=db_doc.error_message,
            timestamp=db_doc.timestamp,
        )

    async def create(self, document: Document) -> Document:
        db_doc = DocumentEntity(
            id=document.id,
            filename=document.filename,
            status=document.status.value,
            accessible_by_employees=document.accessible_by_employees,
            accessible_by_customers=document.accessible_by_customers,
            error_message=document.error_message,
        )
        self.session.add(db_doc)
        await self.session.commit()
        await self.session.refresh(db_doc)
        logger.info(f"Created document {document.id} in database")

        result = self._to_domain(db_doc)
        assert result is not None, "Created document should never be None"
        return result

    async def get_by_id(self, document_id: str) -> Optional[Document]:
        db_doc = await self.session.get(DocumentEntity, document_id)
        return self._to_domain(db_doc)

    async def list_all(self) -> List[Document]:
        result = await self.session.execute(
            select(DocumentEntity).order_by(DocumentEntity.timestamp.desc(), DocumentEntity.id)
        )
        return [self._to_domain(doc) for doc in result.scalars().all()]

    async def list_by_status(self, status: DocumentStatus) -> List[Document]:
        result = await self.session.execute(
            select(DocumentEntity)
            .where(DocumentEntity.status == status.value)
            .order_by(DocumentEntity.id)
        )
        return [self._to_domain(doc) for doc in result.scalars().all()]

    async def update_status(
        self, document_id: str, status: DocumentStatus, error_message: Optional[str] = None
    ) -> bool:
        # A failed write earlier in this session leaves it unusable until rolled back
        if not self.session.is_active:
            await self.session.rollback()
        db_doc = await self.session.get(DocumentEntity, document_id)
        if not db_doc:
            return False
        db_doc.status = status.value
        db_doc.error_message = error_message
        await self.session.commit()
        logger.info(f"[INGEST] Document {document_id} -> {status.value}")
        return True

    async def delete(self, document_id: str) -> bool:
        doc = await self.session.get(DocumentEntity, document_id)
        if not doc:
            return False
        # SQLite does not enforce ON DELETE CASCADE unless foreign keys are enabled
        await self.session.execute(delete(ChunkEntity).where(ChunkEntity.document_id == document_id))
        await self.session.delete(doc)
        await self.session.commit()
        return True


class SQLChunkRepository(IChunkRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_domain(db_chunk: ChunkEntity, filename: str = "") -> DocumentChunk:
        return DocumentChunk(
            id=db_chunk.id,
            document_id=db_chunk.document_id,
            chunk_index=db_chunk.chunk_index,
            content=db_chunk.content,
            filename=filename,
            embedding=db_chunk.embedding,
        )

    async def add_chunks(self, chunks: List[DocumentChunk]) -> int:
        self.session.add_all([
            ChunkEntity(
                id=chunk.id,
                document_id=chunk.document_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                embedding=chunk.embedding,
            )
            for chunk in chunks
        ])
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return len(chunks)

    async def list_by_documents(self, document_ids: Iterable[str]) -> List[DocumentChunk]:
        ids = list(document_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(ChunkEntity, DocumentEntity.filename)
            .join(DocumentEntity, DocumentEntity.id == ChunkEntity.document_id)
            .where(ChunkEntity.document_id.in_(ids))
            .order_by(ChunkEntity.document_id, ChunkEntity.chunk_index)
            .execution_options(populate_existing=True)
        )
        return [self._to_domain(chunk, filename) for chunk, filename in result.all()]

    async def list_for_document(self, document_id: str) -> List[DocumentChunk]:
        return await self.list_by_documents([document_id])

    async def set_embeddings(self, embeddings: Dict[str, List[float]]) -> int:
        updated = 0
        try:
            for chunk_id, embedding in embeddings.items():
                result = await self.session.execute(
                    update(ChunkEntity).where(ChunkEntity.id == chunk_id).values(embedding=embedding)
                )
                updated += result.rowcount or 0
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return updated

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(ChunkEntity))
        return int(result.scalar_one())


class SQLCacheRepository(ICacheRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_domain(db_entry: QueryCacheEntity) -> CacheEntry:
        return CacheEntry(
            id=db_entry.id,
            question=db_entry.question,
            question_embedding=db_entry.question_embedding or [],
            answer=db_entry.answer,
            sources=db_entry.sources or [],
            role=Role(db_entry.role),
            hit_count=db_entry.hit_count,
            created_at=db_entry.created_at,
            last_hit_at=db_entry.last_hit_at,
            updated_at=db_entry.updated_at,
        )

    async def list_by_role(self, role: Role) -> List[CacheEntry]:
        result = await self.session.execute(
            select(QueryCacheEntity)
            .where(QueryCacheEntity.role == role.value)
            .execution_options(populate_existing=True)
        )
        return [self._to_domain(entry) for entry in result.scalars().all()]

    async def get(self, question: str, role: Role) -> Optional[CacheEntry]:
        result = await self.session.execute(
            select(QueryCacheEntity).where(
                QueryCacheEntity.question == question, QueryCacheEntity.role == role.value
            ).execution_options(populate_existing=True)
        )
        entry = result.scalar_one_or_none()
        return self._to_domain(entry) if entry else None

    async def record_hit(self, entry_id: str) -> None:
        await self.session.execute(
            update(QueryCacheEntity)
            .where(QueryCacheEntity.id == entry_id)
            .values(hit_count=QueryCacheEntity.hit_count + 1, last_hit_at=utc_now())
        )
        await self.session.commit()

    async def upsert(
        self,
        question: str,
        question_embedding: List[float],
        answer: str,
        sources: List[Dict[str, Any]],
        role: Role,
    ) -> None:
        dialect = self.session.get_bind().dialect.name
        insert_fn = _NATIVE_UPSERT.get(dialect)
        if insert_fn is None:
            await self._select_then_write(question, question_embedding, answer, sources, role)
            return

        now = utc_now()
        stmt = insert_fn(QueryCacheEntity).values(
            id=str(uuid.uuid4()),
            question=question,
            question_embedding=question_embedding,
            answer=answer,
            sources=sources,
            role=role.value,
            hit_count=1,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["question", "role"],
            set_={
                "answer": stmt.excluded.answer,
                "sources": stmt.excluded.sources,
                "question_embedding": stmt.excluded.question_embedding,
                "hit_count": QueryCacheEntity.hit_count + 1,
                "updated_at": now,
            },
        )
        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def _select_then_write(
        self,
        question: str,
        question_embedding: List[float],
        answer: str,
        sources: List[Dict[str, Any]],
        role: Role,
    ) -> None:
        """Portable upsert; a concurrent insert of the same key is retried once as an update."""
        for attempt in range(2):
            try:
                result = await self.session.execute(
                    select(QueryCacheEntity).where(
                        QueryCacheEntity.question == question, QueryCacheEntity.role == role.value
                    )
                )
                existing = result.scalar_one_or_none()
                now = utc_now()
                if existing is None:
                    self.session.add(QueryCacheEntity(
                        question=question,
                        question_embedding=question_embedding,
                        answer=answer,
                        sources=sources,
                        role=role.value,
                        hit_count=1,
                        created_at=now,
                        updated_at=now,
                    ))
                else:
                    existing.answer = answer
                    existing.sources = sources
                    existing.question_embedding = question_embedding
                    existing.hit_count = existing.hit_count + 1
                    existing.updated_at = now
                await self.session.commit()
                return
            except IntegrityError:
                await self.session.rollback()
                if attempt:
                    raise
                logger.warning("[CACHE] Concurrent cache insert detected, retrying as update")

    async def purge_stale(self, cutoff: datetime, min_hits: int) -> int:
        result = await self.session.execute(
            delete(QueryCacheEntity).where(
                QueryCacheEntity.created_at < cutoff,
                QueryCacheEntity.hit_count < min_hits,
            )
        )
        await self.session.commit()
        return result.rowcount or 0

    async def delete_referencing(self, document_id: str) -> int:
        # sources is a JSON list, matched in Python to stay dialect-neutral
        result = await self.session.execute(select(QueryCacheEntity.id, QueryCacheEntity.sources))
        stale_ids = [
            entry_id for entry_id, sources in result.all()
            if any(source.get("document_id") == document_id for source in sources or [])
        ]
        if not stale_ids:
            return 0
        try:
            await self.session.execute(delete(QueryCacheEntity).where(QueryCacheEntity.id.in_(stale_ids)))
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return len(stale_ids)

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(QueryCacheEntity))
        return int(result.scalar_one())


class SQLSearchLogRepository(ISearchLogRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record_search(self, analytics: SearchAnalytics) -> None:
        self.session.add(SearchAnalyticsEntity(
            question=analytics.question,
            role=analytics.role.value,
            question_type=analytics.question_type.value,
            fragment_count=analytics.fragment_count,
            semantic_results=analytics.semantic_results,
            keyword_results=analytics.keyword_results,
            hybrid_results=analytics.hybrid_results,
            top_result_score=analytics.top_result_score,
            search_time_ms=analytics.search_time_ms,
            cached=analytics.cached,
        ))
        await self.session.commit()

    async def save_chat(
        self, question: str, answer: str, source_document_ids: List[str], role: Role
    ) -> None:
        self.session.add(ChatHistoryEntity(
            question=question,
            answer=answer,
            source_document_ids=list(source_document_ids),
            role=role.value,
        ))
        await self.session.commit()

    async def list_recent_searches(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent search analytics rows, newest first"""
        result = await self.session.execute(
            select(SearchAnalyticsEntity)
            .order_by(SearchAnalyticsEntity.created_at.desc(), SearchAnalyticsEntity.id.desc())
            .limit(limit)
        )
        return [
            {
                "question": row.question,
                "role": row.role,
                "question_type": row.question_type,
                "fragment_count": row.fragment_count,
                "semantic_results": row.semantic_results,
                "keyword_results": row.keyword_results,
                "hybrid_results": row.hybrid_results,
                "top_result_score": row.top_result_score,
                "search_time_ms": row.search_time_ms,
                "cached": row.cached,
                "created_at": row.created_at.isoformat() if row.created_at else None,
            }
            for row in result.scalars().all()
        ]
