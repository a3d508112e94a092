"""Shared fixtures: in-memory database, deterministic providers, service wiring."""

import asyncio
import math
from typing import Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from config import settings
from core.domain import DocumentChunk, SearchResult
from core.interfaces import IAnswerService, IEmbeddingService
from database.session import create_session_factory, create_tables
from infrastructure.repositories import (
    SQLCacheRepository,
    SQLChunkRepository,
    SQLDocumentRepository,
    SQLSearchLogRepository,
)
from services.retrieval_service import RetrievalService
from services.semantic_cache import SemanticCache
from utils.text import tokenize

# Each vocabulary word owns one embedding dimension; other words embed to nothing.
VOCABULARY = [
    "payday", "paydays", "salary", "paid", "month", "transfer",
    "q3", "2023", "summary", "revenue", "quarter", "sales", "growth",
    "contact", "email", "phone", "office",
    "vacation", "leave", "policy", "holiday",
    "invoice", "customer", "refund", "shipping",
]


class FakeEmbeddingService(IEmbeddingService):
    """Bag-of-words embedding over VOCABULARY, L2-normalized, padded to `dimension`."""

    def __init__(self, dimension: int = settings.EMBEDDING_DIMENSION):
        self.index = {word: i for i, word in enumerate(VOCABULARY)}
        self.dimension = dimension
        self.calls: List[str] = []

    def vector(self, text: str) -> List[float]:
        values = [0.0] * self.dimension
        for token in tokenize(text):
            if token in self.index:
                values[self.index[token]] += 1.0
        norm = math.sqrt(sum(v * v for v in values))
        if norm:
            values = [v / norm for v in values]
        return values

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        return self.vector(text)

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        return [self.vector(text) for text in texts]


class FakeAnswerService(IAnswerService):
    """Records every synthesis call and returns a fixed answer."""

    def __init__(self, answer: str = "Generated answer", delay: float = 0.0):
        self.answer = answer
        self.delay = delay
        self.calls: List[Dict] = []

    async def synthesize(self, question: str, chunks: List[SearchResult], instructions: str) -> str:
        self.calls.append({"question": question, "chunks": chunks, "instructions": instructions})
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.answer


def make_chunk(
    chunk_id: str,
    content: str = "",
    embedding: Optional[List[float]] = None,
    document_id: str = "doc",
    chunk_index: int = 0,
) -> DocumentChunk:
    return DocumentChunk(
        id=chunk_id,
        document_id=document_id,
        chunk_index=chunk_index,
        content=content,
        filename=f"{document_id}.txt",
        embedding=embedding,
    )


# ============================================================================
# DATABASE
# ============================================================================


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    factory = create_session_factory(engine)
    async with factory() as session:
        yield session


@pytest.fixture
def cache_repo(session):
    return SQLCacheRepository(session)


# ============================================================================
# PROVIDERS & SERVICE
# ============================================================================


@pytest.fixture
def embedding_service():
    return FakeEmbeddingService()


@pytest.fixture
def answer_service():
    return FakeAnswerService()


@pytest.fixture
def retrieval_service(session, cache_repo, embedding_service, answer_service):
    return RetrievalService(
        document_repo=SQLDocumentRepository(session),
        chunk_repo=SQLChunkRepository(session),
        cache=SemanticCache(cache_repo, similarity_threshold=0.85, enabled=True),
        search_log_repo=SQLSearchLogRepository(session),
        embedding_service=embedding_service,
        answer_service=answer_service,
        save_chat_history=True,
    )


@pytest.fixture
def add_document(retrieval_service):
    """Create, chunk and embed a document; returns the Completed document id."""

    async def _add(
        filename: str,
        text: str,
        employees: bool = False,
        customers: bool = False,
        is_tabular: bool = False,
    ) -> str:
        document = await retrieval_service.create_document(filename, employees, customers)
        await retrieval_service.ingest(document.id, text, is_tabular)
        await retrieval_service.attach_embeddings(document.id)
        return document.id

    return _add
