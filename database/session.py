# database/session.py

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import settings
from core.domain import DocumentStatus
from utils.common import utc_now

logger = logging.getLogger(settings.LOGGER_NAME)

Base = declarative_base()

# ============= Engine =============

def create_engine_from_url(url: Optional[str] = None, **kwargs) -> AsyncEngine:
    """
    Build the async engine for DATABASE_URL.

    Pool sizing only applies to server databases; SQLite uses its own pool.
    """
    url = url or settings.DATABASE_URL
    options = {"echo": False}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_pre_ping=True,  # Check connection health before using
        )
    options.update(kwargs)
    return create_async_engine(url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")

# --- SQLAlchemy Models ---

class DocumentEntity(Base):
    __tablename__ = "documents"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    filename = Column(String, nullable=False)
    status = Column(String, nullable=False, default=DocumentStatus.PROCESSING.value, index=True)
    accessible_by_employees = Column(Boolean, nullable=False, default=False)
    accessible_by_customers = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=utc_now)


class ChunkEntity(Base):
    __tablename__ = "document_chunks"
    __table_args__ = (UniqueConstraint("document_id", "chunk_index", name="uq_chunk_document_index"),)

    id = Column(String, primary_key=True)  # <document_id>_<chunk_index:05d>
    document_id = Column(String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    embedding = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utc_now)


class QueryCacheEntity(Base):
    __tablename__ = "query_cache"
    __table_args__ = (UniqueConstraint("question", "role", name="uq_query_cache_question_role"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    question = Column(Text, nullable=False)
    question_embedding = Column(JSON, nullable=False)
    answer = Column(Text, nullable=False)
    sources = Column(JSON, nullable=False, default=list)
    role = Column(String, nullable=False, index=True)
    hit_count = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    last_hit_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True, default=utc_now)


class SearchAnalyticsEntity(Base):
    __tablename__ = "search_analytics"
    id = Column(Integer, primary_key=True, autoincrement=True)
    question = Column(Text, nullable=False)
    role = Column(String, nullable=False)
    question_type = Column(String, nullable=False)
    fragment_count = Column(Integer, default=0)
    semantic_results = Column(Integer, default=0)
    keyword_results = Column(Integer, default=0)
    hybrid_results = Column(Integer, default=0)
    top_result_score = Column(Float, nullable=True)
    search_time_ms = Column(Integer, default=0)
    cached = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utc_now)


class ChatHistoryEntity(Base):
    __tablename__ = "chat_history"
    id = Column(Integer, primary_key=True, autoincrement=True)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    source_document_ids = Column(JSON, nullable=False, default=list)
    role = Column(String, nullable=False)
    timestamp = Column(DateTime, default=utc_now)


# ============= Dependencies =============

async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Provide database session for FastAPI dependency injection"""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()

# ============= Session Factory =============

@asynccontextmanager
async def get_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a new database session with proper cleanup.

    Used outside request scope (startup tasks, scripts).
    Ensures rollback on errors and explicit closure.
    """
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
