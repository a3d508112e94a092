# core/interfaces.py
"""Core interfaces for the retrieval engine"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Dict, Any, Optional, Iterable

from core.domain import (
    CacheEntry,
    Document,
    DocumentChunk,
    DocumentStatus,
    Role,
    SearchAnalytics,
    SearchResult,
)

# ============= Embedding Service Interface =============
class IEmbeddingService(ABC):
    """Interface for embedding generation"""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Generate embedding for a single text (query or chunk)"""
        pass

    @abstractmethod
    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for several texts, order preserved"""
        pass

# ============= Answer Service Interface =============
class IAnswerService(ABC):
    """Interface for answer synthesis over retrieved chunks"""

    @abstractmethod
    async def synthesize(self, question: str, chunks: List[SearchResult], instructions: str) -> str:
        """Generate an answer grounded in the given chunks"""
        pass

# ============= Query Decomposer Interface =============
class IQueryDecomposer(ABC):
    """Splits a multi-part question into independently searchable fragments"""

    @abstractmethod
    def decompose(self, question: str) -> List[str]:
        """Ordered, deduplicated, non-empty fragments"""
        pass

# ============= Repository Interfaces =============
class IDocumentRepository(ABC):
    """Interface for document metadata"""

    @abstractmethod
    async def create(self, document: Document) -> Document:
        pass

    @abstractmethod
    async def get_by_id(self, document_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    async def list_all(self) -> List[Document]:
        pass

    @abstractmethod
    async def list_by_status(self, status: DocumentStatus) -> List[Document]:
        pass

    @abstractmethod
    async def update_status(
        self, document_id: str, status: DocumentStatus, error_message: Optional[str] = None
    ) -> bool:
        """Move a document to a new lifecycle status"""
        pass

    @abstractmethod
    async def delete(self, document_id: str) -> bool:
        """Delete a document and its chunks"""
        pass


class IChunkRepository(ABC):
    """Interface for chunk storage"""

    @abstractmethod
    async def add_chunks(self, chunks: List[DocumentChunk]) -> int:
        pass

    @abstractmethod
    async def list_by_documents(self, document_ids: Iterable[str]) -> List[DocumentChunk]:
        """Filtered chunk scan: chunks of the given documents with their filename, ordered"""
        pass

    @abstractmethod
    async def list_for_document(self, document_id: str) -> List[DocumentChunk]:
        pass

    @abstractmethod
    async def set_embeddings(self, embeddings: Dict[str, List[float]]) -> int:
        """Attach embeddings keyed by chunk id"""
        pass

    @abstractmethod
    async def count(self) -> int:
        pass


class ICacheRepository(ABC):
    """Interface for the semantic answer cache"""

    @abstractmethod
    async def list_by_role(self, role: Role) -> List[CacheEntry]:
        pass

    @abstractmethod
    async def record_hit(self, entry_id: str) -> None:
        """Atomically increment hit_count and refresh last_hit_at"""
        pass

    @abstractmethod
    async def upsert(
        self,
        question: str,
        question_embedding: List[float],
        answer: str,
        sources: List[Dict[str, Any]],
        role: Role,
    ) -> None:
        """Insert or update the entry keyed by (question, role)"""
        pass

    @abstractmethod
    async def purge_stale(self, cutoff: datetime, min_hits: int) -> int:
        """Delete entries created before cutoff with fewer than min_hits hits"""
        pass

    @abstractmethod
    async def delete_referencing(self, document_id: str) -> int:
        """Delete entries whose sources cite the document"""
        pass

    @abstractmethod
    async def count(self) -> int:
        pass


class ISearchLogRepository(ABC):
    """Interface for search analytics and chat history"""

    @abstractmethod
    async def record_search(self, analytics: SearchAnalytics) -> None:
        pass

    @abstractmethod
    async def save_chat(
        self, question: str, answer: str, source_document_ids: List[str], role: Role
    ) -> None:
        pass

    @abstractmethod
    async def list_recent_searches(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent search analytics, newest first"""
        pass
