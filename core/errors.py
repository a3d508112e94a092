"""Error taxonomy surfaced to callers of the retrieval engine."""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Stable, machine-readable error kinds."""
    INVALID_INPUT = "invalid_input"
    DOCUMENTS_UNAVAILABLE = "documents_unavailable"
    EMBEDDING_FAILED = "embedding_failed"
    NO_RELEVANT_CONTENT = "no_relevant_content"
    SYNTHESIS_FAILED = "synthesis_failed"
    CACHE_WRITE_FAILED = "cache_write_failed"
    INGESTION_FAILED = "ingestion_failed"


class RetrievalError(Exception):
    """
    Base class for every error the engine surfaces.

    `message` is sanitized and safe to show to a caller; provider and internal
    detail is logged where the error is raised, never stored here.
    """

    kind: ErrorKind = ErrorKind.INVALID_INPUT
    default_message: str = "Request failed"
    http_status: int = 500

    def __init__(self, message: Optional[str] = None, *, retryable: bool = False):
        self.message = message or self.default_message
        self.retryable = retryable
        super().__init__(self.message)

    def __str__(self):
        return f"[{self.kind.value}] {self.message}"

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message, "retryable": self.retryable}


class InvalidInput(RetrievalError):
    kind = ErrorKind.INVALID_INPUT
    default_message = "Invalid input"
    http_status = 422


class DocumentsUnavailable(RetrievalError):
    kind = ErrorKind.DOCUMENTS_UNAVAILABLE
    default_message = "No documents available. Upload and process documents first."
    http_status = 404


class EmbeddingFailed(RetrievalError):
    kind = ErrorKind.EMBEDDING_FAILED
    default_message = "Embeddings are unavailable for this request"
    http_status = 503


class NoRelevantContent(RetrievalError):
    kind = ErrorKind.NO_RELEVANT_CONTENT
    default_message = (
        "I could not find any relevant information to answer your question "
        "in the available documents."
    )
    http_status = 200


class SynthesisFailed(RetrievalError):
    kind = ErrorKind.SYNTHESIS_FAILED
    default_message = "The answer could not be generated"
    http_status = 502


class CacheWriteFailed(RetrievalError):
    kind = ErrorKind.CACHE_WRITE_FAILED
    default_message = "The answer could not be cached"
    http_status = 500


class IngestionFailed(RetrievalError):
    kind = ErrorKind.INGESTION_FAILED
    default_message = "Document ingestion failed"
    http_status = 500
