# config.py
"""Application configuration"""
from typing import List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Loads configuration from environment variables and an optional .env file."""

    # Logger configuration
    LOGGER_NAME: str = "hybrid_rag"
    LOG_FILE_PATH: str = ""  # Empty -> <project_root>/log/hybrid_rag.log

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./rag.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_RECYCLE: int = 3600  # Recycle connections after 1 hour

    # Embedding model
    EMBEDDING_MODEL_NAME: str = "paraphrase-multilingual-mpnet-base-v2"
    EMBEDDING_DIMENSION: int = 768
    EMBEDDING_BATCH_SIZE: int = 32

    # Answer synthesis (Ollama-compatible endpoint)
    LLM_MODEL_NAME: str = "llama3.1:8b"
    LLM_BASE_URL: str = "http://localhost:11434"

    # External calls (embedding, synthesis)
    PROVIDER_TIMEOUT_SECONDS: float = 30.0

    # Chunking
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200
    CHUNK_SPLIT_MIN_OFFSET: int = 100

    # Semantic / keyword search
    SEMANTIC_MIN_SIMILARITY: float = 0.15
    SEARCH_TOP_K: int = 15
    BM25_K1: float = 1.5
    BM25_B: float = 0.75

    # Fusion
    RRF_K: int = 60
    SEMANTIC_WEIGHT: float = 0.6
    KEYWORD_WEIGHT: float = 0.4
    KEYWORD_HEAVY_SEMANTIC_WEIGHT: float = 0.4
    KEYWORD_HEAVY_KEYWORD_WEIGHT: float = 0.6
    KEYWORD_HEAVY_MAX_LENGTH: int = 20

    # Query decomposition
    DECOMPOSER_SEPARATORS: List[str] = [" and ", " AND ", " also ", " ALSO ", "; ", ","]
    DECOMPOSER_MIN_FRAGMENT_LENGTH: int = 3  # fragments must be longer than this

    # Orchestration
    FINAL_CONTEXT_SIZE: int = 25
    MAX_QUESTION_LENGTH: int = 2000
    SOURCE_SNIPPET_LENGTH: int = 200
    SAVE_CHAT_HISTORY: bool = True

    # Semantic cache
    CACHE_ENABLED: bool = True
    CACHE_SIMILARITY_THRESHOLD: float = 0.85
    CACHE_TTL_DAYS: int = 90
    CACHE_PURGE_MIN_HITS: int = 3
    CACHE_PURGE_ON_STARTUP: bool = False

    # App metadata
    APP_TITLE: str = "Hybrid Document RAG"
    APP_VERSION: str = "1.0.0"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
