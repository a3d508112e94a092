# api/schemas.py
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from core.domain import DocumentStatus, Role


class CreateDocumentRequest(BaseModel):
    filename: str
    accessible_by_employees: bool = False
    accessible_by_customers: bool = False

class DocumentItem(BaseModel):
    id: str
    filename: str
    status: DocumentStatus
    accessible_by_employees: bool
    accessible_by_customers: bool
    error_message: Optional[str] = None
    timestamp: Optional[datetime] = None

class DocumentsListResponse(BaseModel):
    documents: List[DocumentItem]

class IngestRequest(BaseModel):
    text: str
    is_tabular: bool = False

class IngestResponse(BaseModel):
    document_id: str
    status: DocumentStatus
    chunks: int

class DeleteResponse(BaseModel):
    status: str
    message: str

class QueryRequest(BaseModel):
    question: str
    role: Role
    document_ids: Optional[List[str]] = None
    # Overrides adaptive weighting; keyword weight is 1 - semantic_weight
    semantic_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)

class SourceItem(BaseModel):
    document_id: str
    filename: str
    chunk_content: str
    relevance_score: float
    provenance: str

class QueryResponse(BaseModel):
    answer: str
    sources: List[SourceItem]
    cached: bool
    similarity: Optional[float] = None
    fragments: List[str] = []
    error_kind: Optional[str] = None

class PurgeCacheRequest(BaseModel):
    max_age_days: Optional[int] = Field(default=None, ge=0)
    min_hits: Optional[int] = Field(default=None, ge=0)

class PurgeCacheResponse(BaseModel):
    deleted: int

class StatusResponse(BaseModel):
    documents: int = 0
    documents_by_status: Dict[str, int] = {}
    chunks_available: int = 0
    cache_entries: int = 0
    ready_for_queries: bool = False

class SearchAnalyticsItem(BaseModel):
    question: str
    role: str
    question_type: str
    fragment_count: int
    semantic_results: int
    keyword_results: int
    hybrid_results: int
    top_result_score: Optional[float] = None
    search_time_ms: int
    cached: bool
    created_at: Optional[str] = None

class SearchAnalyticsResponse(BaseModel):
    searches: List[SearchAnalyticsItem]

class ErrorResponse(BaseModel):
    kind: str
    message: str
    retryable: bool = False
