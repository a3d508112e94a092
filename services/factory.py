# services/factory.py
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from core.interfaces import (
    IAnswerService,
    ICacheRepository,
    IChunkRepository,
    IDocumentRepository,
    IEmbeddingService,
    ISearchLogRepository,
)
from database.session import get_db
from infrastructure.repositories import (
    SQLCacheRepository,
    SQLChunkRepository,
    SQLDocumentRepository,
    SQLSearchLogRepository,
)
from services.llm_service import OllamaAnswerService
from services.retrieval_service import RetrievalService
from services.semantic_cache import SemanticCache

# ============= Builders (called once, in the app lifespan) =============

def build_embedding_service() -> IEmbeddingService:
    """Create embedding service based on configuration."""
    # Imported here so the model stack loads only when the app starts
    from infrastructure.embedding_services import SentenceTransformerEmbedding
    return SentenceTransformerEmbedding(settings.EMBEDDING_MODEL_NAME)


def build_answer_service() -> IAnswerService:
    """Create answer service based on configuration."""
    return OllamaAnswerService(
        base_url=settings.LLM_BASE_URL,
        model=settings.LLM_MODEL_NAME,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )

# ============= Request-scoped providers =============

def get_embedding_service(request: Request) -> IEmbeddingService:
    return request.app.state.embedding_service


def get_answer_service(request: Request) -> IAnswerService:
    return request.app.state.answer_service


def get_document_repository(session: AsyncSession = Depends(get_db)) -> IDocumentRepository:
    """Create document repository with injected session."""
    return SQLDocumentRepository(session)


def get_chunk_repository(session: AsyncSession = Depends(get_db)) -> IChunkRepository:
    return SQLChunkRepository(session)


def get_cache_repository(session: AsyncSession = Depends(get_db)) -> ICacheRepository:
    return SQLCacheRepository(session)


def get_search_log_repository(session: AsyncSession = Depends(get_db)) -> ISearchLogRepository:
    return SQLSearchLogRepository(session)


def get_semantic_cache(cache_repo: ICacheRepository = Depends(get_cache_repository)) -> SemanticCache:
    return SemanticCache(cache_repo)


# Main service provider using FastAPI DI
def get_retrieval_service(
    document_repo: IDocumentRepository = Depends(get_document_repository),
    chunk_repo: IChunkRepository = Depends(get_chunk_repository),
    cache: SemanticCache = Depends(get_semantic_cache),
    search_log_repo: ISearchLogRepository = Depends(get_search_log_repository),
    embedding_service: IEmbeddingService = Depends(get_embedding_service),
    answer_service: IAnswerService = Depends(get_answer_service),
) -> RetrievalService:
    """
    Create the retrieval service with full dependency injection.

    All repositories share the request's session (FastAPI caches `get_db`
    per request). Individual components can be overridden for testing.
    """
    return RetrievalService(
        document_repo=document_repo,
        chunk_repo=chunk_repo,
        cache=cache,
        search_log_repo=search_log_repo,
        embedding_service=embedding_service,
        answer_service=answer_service,
    )
