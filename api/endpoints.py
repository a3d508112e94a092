# api/endpoints.py
"""
API endpoints for the hybrid retrieval engine.

Callers pass their role explicitly; authentication is handled upstream.
Engine errors are raised as RetrievalError and rendered by the handler
registered in main.py.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.schemas import (
    CreateDocumentRequest,
    DeleteResponse,
    DocumentItem,
    DocumentsListResponse,
    ErrorResponse,
    IngestRequest,
    IngestResponse,
    PurgeCacheRequest,
    PurgeCacheResponse,
    QueryRequest,
    QueryResponse,
    SearchAnalyticsResponse,
    SourceItem,
    StatusResponse,
)
from core.domain import Document, DocumentStatus, FusionWeights
from core.interfaces import ISearchLogRepository
from services.factory import get_retrieval_service, get_search_log_repository
from services.retrieval_service import RetrievalService
from utils.common import validate_document_id

router = APIRouter()

# Engine errors rendered by the RetrievalError handler
ERROR_RESPONSES = {
    status: {"model": ErrorResponse} for status in (404, 422, 500, 502, 503)
}


def _document_item(document: Document) -> DocumentItem:
    return DocumentItem(
        id=document.id,
        filename=document.filename,
        status=document.status,
        accessible_by_employees=document.accessible_by_employees,
        accessible_by_customers=document.accessible_by_customers,
        error_message=document.error_message,
        timestamp=document.timestamp,
    )


def _require_valid_id(document_id: str) -> None:
    if not validate_document_id(document_id):
        raise HTTPException(status_code=400, detail="Invalid document ID format")


# ---------- Documents ----------
@router.post("/documents", response_model=DocumentItem, status_code=201)
async def create_document(
    request: CreateDocumentRequest,
    service: RetrievalService = Depends(get_retrieval_service),
) -> DocumentItem:
    document = await service.create_document(
        request.filename,
        accessible_by_employees=request.accessible_by_employees,
        accessible_by_customers=request.accessible_by_customers,
    )
    return _document_item(document)


@router.get("/documents", response_model=DocumentsListResponse)
async def list_documents(
    service: RetrievalService = Depends(get_retrieval_service),
) -> DocumentsListResponse:
    documents = await service.list_documents()
    return DocumentsListResponse(documents=[_document_item(d) for d in documents])


@router.delete("/documents/{document_id}", response_model=DeleteResponse)
async def delete_document(
    document_id: str,
    service: RetrievalService = Depends(get_retrieval_service),
) -> DeleteResponse:
    _require_valid_id(document_id)
    if not await service.delete_document(document_id):
        raise HTTPException(status_code=404, detail="Document not found")
    return DeleteResponse(status="success", message=f"Document {document_id} deleted")


@router.post("/documents/{document_id}/ingest", response_model=IngestResponse, responses=ERROR_RESPONSES)
async def ingest_document(
    document_id: str,
    request: IngestRequest,
    service: RetrievalService = Depends(get_retrieval_service),
) -> IngestResponse:
    _require_valid_id(document_id)
    chunks = await service.ingest(document_id, request.text, request.is_tabular)
    return IngestResponse(document_id=document_id, status=DocumentStatus.CHUNKS_READY, chunks=chunks)


@router.post("/documents/{document_id}/embeddings", response_model=IngestResponse, responses=ERROR_RESPONSES)
async def embed_document(
    document_id: str,
    service: RetrievalService = Depends(get_retrieval_service),
) -> IngestResponse:
    _require_valid_id(document_id)
    chunks = await service.attach_embeddings(document_id)
    return IngestResponse(document_id=document_id, status=DocumentStatus.COMPLETED, chunks=chunks)


# ---------- Query ----------
@router.post("/query", response_model=QueryResponse, responses=ERROR_RESPONSES)
async def query(
    request: QueryRequest,
    service: RetrievalService = Depends(get_retrieval_service),
) -> QueryResponse:
    weights: Optional[FusionWeights] = None
    if request.semantic_weight is not None:
        weights = FusionWeights(semantic=request.semantic_weight, keyword=1.0 - request.semantic_weight)

    result = await service.query(
        request.question,
        request.role,
        document_scope=request.document_ids,
        weights=weights,
    )
    return QueryResponse(
        answer=result.answer,
        sources=[SourceItem(**source.to_dict()) for source in result.sources],
        cached=result.cached,
        similarity=result.similarity,
        fragments=result.fragments,
        error_kind=result.error_kind,
    )


# ---------- Cache & status ----------
@router.post("/cache/purge", response_model=PurgeCacheResponse)
async def purge_cache(
    request: PurgeCacheRequest,
    service: RetrievalService = Depends(get_retrieval_service),
) -> PurgeCacheResponse:
    deleted = await service.purge_cache(request.max_age_days, request.min_hits)
    return PurgeCacheResponse(deleted=deleted)


@router.get("/status", response_model=StatusResponse)
async def get_status(
    service: RetrievalService = Depends(get_retrieval_service),
) -> StatusResponse:
    return StatusResponse(**await service.get_status())


@router.get("/analytics/searches", response_model=SearchAnalyticsResponse)
async def recent_searches(
    limit: int = Query(default=10, ge=1, le=100),
    search_log_repo: ISearchLogRepository = Depends(get_search_log_repository),
) -> SearchAnalyticsResponse:
    return SearchAnalyticsResponse(searches=await search_log_repo.list_recent_searches(limit))
