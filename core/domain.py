"""Domain models and shared enumerations."""
from enum import Enum

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Optional

# ============= Enums =============

class DocumentStatus(str, Enum):
    """Document ingestion lifecycle. Only COMPLETED documents are searchable."""
    PROCESSING = "processing"
    CHUNKS_READY = "chunks_ready"
    COMPLETED = "completed"
    FAILED = "failed"

    @staticmethod
    def from_string(status: str) -> 'DocumentStatus':
        """Convert string to DocumentStatus enum."""
        try:
            return DocumentStatus(status)
        except ValueError:
            return DocumentStatus.FAILED


class Role(str, Enum):
    """Access-control partition for documents and cache entries."""
    BUSINESS_OWNER = "business_owner"
    EMPLOYEE = "employee"
    CUSTOMER = "customer"


class Provenance(str, Enum):
    """Which ranking channel(s) produced a search result."""
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    HYBRID = "hybrid"
    SEMANTIC_FALLBACK = "semantic-fallback"


class QueryType(str, Enum):
    KEYWORD_HEAVY = "keyword_heavy"
    SEMANTIC_HEAVY = "semantic_heavy"


# ============= Domain Models =============

@dataclass
class Document:
    """Domain model for documents"""
    id: str
    filename: str
    status: DocumentStatus
    accessible_by_employees: bool = False
    accessible_by_customers: bool = False
    error_message: Optional[str] = None
    timestamp: Optional[datetime] = None

    def is_visible_to(self, role: Role) -> bool:
        if role == Role.BUSINESS_OWNER:
            return True
        if role == Role.EMPLOYEE:
            return self.accessible_by_employees
        if role == Role.CUSTOMER:
            return self.accessible_by_customers
        return False


@dataclass
class DocumentChunk:
    """Domain model for document chunks"""
    id: str
    document_id: str
    chunk_index: int
    content: str
    filename: str = ""
    embedding: Optional[List[float]] = None  # Vector of float numbers


@dataclass
class SearchResult:
    """A ranked chunk with per-channel scores and the channel(s) it came from."""
    chunk: DocumentChunk
    semantic_score: float = 0.0
    keyword_score: float = 0.0
    combined_score: float = 0.0
    provenance: Provenance = Provenance.SEMANTIC
    fragment: Optional[str] = None

    @property
    def chunk_id(self) -> str:
        return self.chunk.id

    @property
    def document_id(self) -> str:
        return self.chunk.document_id

    @property
    def filename(self) -> str:
        return self.chunk.filename


@dataclass
class FusionWeights:
    """Weights for reciprocal rank fusion; must sum to 1."""
    semantic: float
    keyword: float

    def __post_init__(self):
        if self.semantic < 0 or self.keyword < 0:
            raise ValueError("Fusion weights must be non-negative")
        if abs(self.semantic + self.keyword - 1.0) > 1e-6:
            raise ValueError(
                f"Fusion weights must sum to 1 (got {self.semantic} + {self.keyword})"
            )


@dataclass
class QueryFragment:
    """One independent sub-question and its embedding."""
    text: str
    embedding: List[float]


@dataclass
class SourceReference:
    """A source as returned to callers and stored with cached answers."""
    document_id: str
    filename: str
    chunk_content: str
    relevance_score: float
    provenance: str = Provenance.SEMANTIC.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "filename": self.filename,
            "chunk_content": self.chunk_content,
            "relevance_score": self.relevance_score,
            "provenance": self.provenance,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'SourceReference':
        return SourceReference(
            document_id=str(data.get("document_id", "")),
            filename=str(data.get("filename", "")),
            chunk_content=str(data.get("chunk_content", "")),
            relevance_score=float(data.get("relevance_score", 0.0)),
            provenance=str(data.get("provenance", Provenance.SEMANTIC.value)),
        )


@dataclass
class CacheEntry:
    """Cached question -> answer pair, scoped to one role."""
    id: str
    question: str
    question_embedding: List[float]
    answer: str
    sources: List[Dict[str, Any]]
    role: Role
    hit_count: int
    created_at: datetime
    last_hit_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class CacheHit:
    entry: CacheEntry
    similarity: float


@dataclass
class SearchAnalytics:
    """Per-query search telemetry."""
    question: str
    role: Role
    question_type: QueryType
    fragment_count: int = 0
    semantic_results: int = 0
    keyword_results: int = 0
    hybrid_results: int = 0
    top_result_score: Optional[float] = None
    search_time_ms: int = 0
    cached: bool = False


@dataclass
class QueryResult:
    """Well-formed answer to a query, including the structured empty case."""
    answer: str
    sources: List[SourceReference] = field(default_factory=list)
    cached: bool = False
    similarity: Optional[float] = None
    fragments: List[str] = field(default_factory=list)
    error_kind: Optional[str] = None
