# main.py
"""Main application: providers, database and routes wired in the lifespan"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from api.endpoints import router
from config import settings
from core.errors import RetrievalError
from core.interfaces import IAnswerService, IEmbeddingService
from database.session import create_engine_from_url, create_session_factory, create_tables, get_session
from infrastructure.repositories import SQLCacheRepository
from services.factory import build_answer_service, build_embedding_service
from services.logger_config import setup_logging
from services.semantic_cache import SemanticCache

logger = logging.getLogger(settings.LOGGER_NAME)


def create_app(
    engine: Optional[AsyncEngine] = None,
    embedding_service: Optional[IEmbeddingService] = None,
    answer_service: Optional[IAnswerService] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Providers are created once in the lifespan and kept on `app.state`;
    tests pass their own engine and providers.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        setup_logging()
        logger.info("Starting application...")

        db_engine = engine or create_engine_from_url(settings.DATABASE_URL)
        await create_tables(db_engine)
        app.state.session_factory = create_session_factory(db_engine)
        logger.info("Database initialized")

        app.state.embedding_service = embedding_service or build_embedding_service()
        app.state.answer_service = answer_service or build_answer_service()
        logger.info("Services initialized")

        if settings.CACHE_PURGE_ON_STARTUP:
            async with get_session(app.state.session_factory) as session:
                await SemanticCache(SQLCacheRepository(session)).purge_stale()

        yield

        if engine is None:
            await db_engine.dispose()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.APP_TITLE,
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    @app.exception_handler(RetrievalError)
    async def retrieval_error_handler(request: Request, exc: RetrievalError) -> JSONResponse:
        log = logger.warning if exc.http_status < 500 else logger.error
        log(f"{request.method} {request.url.path} -> {exc}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    app.include_router(router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
