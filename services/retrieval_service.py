# services/retrieval_service.py
"""Retrieval orchestration: ingestion, cached hybrid search and answer synthesis."""
import asyncio
import logging
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Union

from config import settings
from core.domain import (
    Document,
    DocumentChunk,
    DocumentStatus,
    FusionWeights,
    Provenance,
    QueryFragment,
    QueryResult,
    Role,
    SearchAnalytics,
    SearchResult,
    SourceReference,
)
from core.errors import (
    CacheWriteFailed,
    DocumentsUnavailable,
    EmbeddingFailed,
    ErrorKind,
    IngestionFailed,
    InvalidInput,
    NoRelevantContent,
    RetrievalError,
    SynthesisFailed,
)
from core.interfaces import (
    IAnswerService,
    IChunkRepository,
    IDocumentRepository,
    IEmbeddingService,
    IQueryDecomposer,
    ISearchLogRepository,
)
from infrastructure.text_chunker import TextChunker
from services.candidate_filter import filter_candidates
from services.fusion import FusionEngine, classify_query, merge_fragment_results
from services.llm_service import build_answer_instructions
from services.query_decomposer import SeparatorQueryDecomposer
from services.search_strategies import HybridSearch, KeywordSearch, SemanticSearch
from services.semantic_cache import SemanticCache
from utils.common import make_chunk_id
from utils.text import truncate

logger = logging.getLogger(settings.LOGGER_NAME)


class RetrievalService:
    def __init__(
        self,
        document_repo: IDocumentRepository,
        chunk_repo: IChunkRepository,
        cache: SemanticCache,
        search_log_repo: ISearchLogRepository,
        embedding_service: IEmbeddingService,
        answer_service: IAnswerService,
        decomposer: Optional[IQueryDecomposer] = None,
        fusion: Optional[FusionEngine] = None,
        text_chunker: Optional[TextChunker] = None,
        provider_timeout: Optional[float] = None,
        embedding_dimension: Optional[int] = None,
        final_context_size: Optional[int] = None,
        top_k: Optional[int] = None,
        save_chat_history: Optional[bool] = None,
    ):
        self.document_repo = document_repo
        self.chunk_repo = chunk_repo
        self.cache = cache
        self.search_log_repo = search_log_repo
        self.embedding_service = embedding_service
        self.answer_service = answer_service
        self.decomposer = decomposer or SeparatorQueryDecomposer()
        self.fusion = fusion or FusionEngine()
        self.text_chunker = text_chunker or TextChunker()
        self.provider_timeout = provider_timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.embedding_dimension = embedding_dimension or settings.EMBEDDING_DIMENSION
        self.final_context_size = final_context_size or settings.FINAL_CONTEXT_SIZE
        self.top_k = top_k or settings.SEARCH_TOP_K
        self.save_chat_history = settings.SAVE_CHAT_HISTORY if save_chat_history is None else save_chat_history

    # ============ DOCUMENTS ============

    async def create_document(
        self,
        filename: str,
        accessible_by_employees: bool = False,
        accessible_by_customers: bool = False,
    ) -> Document:
        if not filename or not filename.strip():
            raise InvalidInput("Filename is required")

        document = Document(
            id=str(uuid.uuid4()),
            filename=filename.strip(),
            status=DocumentStatus.PROCESSING,
            accessible_by_employees=accessible_by_employees,
            accessible_by_customers=accessible_by_customers,
        )
        return await self.document_repo.create(document)

    async def _require_document(self, document_id: str, expected: DocumentStatus) -> Document:
        document = await self.document_repo.get_by_id(document_id)
        if document is None:
            raise DocumentsUnavailable(f"Document {document_id} not found")
        if document.status != expected:
            raise InvalidInput(
                f"Document {document_id} is '{document.status.value}', expected '{expected.value}'"
            )
        return document

    async def _mark_failed(self, document_id: str, message: str) -> None:
        try:
            await self.document_repo.update_status(document_id, DocumentStatus.FAILED, message)
        except Exception:
            logger.exception(f"[INGEST] Could not mark document {document_id} as failed")

    async def ingest(self, document_id: str, raw_text: str, is_tabular: bool = False) -> int:
        """Chunk a Processing document and advance it to ChunksReady. Returns the chunk count."""
        document = await self._require_document(document_id, DocumentStatus.PROCESSING)

        try:
            pieces = self.text_chunker.chunk(raw_text, is_tabular)
            chunks = [
                DocumentChunk(
                    id=make_chunk_id(document_id, index),
                    document_id=document_id,
                    chunk_index=index,
                    content=piece,
                    filename=document.filename,
                )
                for index, piece in enumerate(pieces)
            ]
            if not chunks:
                raise IngestionFailed("No chunks could be created from the document text")

            await self.chunk_repo.add_chunks(chunks)
            await self.document_repo.update_status(document_id, DocumentStatus.CHUNKS_READY)

        except RetrievalError as e:
            logger.error(f"[INGEST] Chunking failed for '{document.filename}': {e.message}")
            await self._mark_failed(document_id, e.message)
            raise
        except Exception as e:
            logger.exception(f"[INGEST] Unexpected error chunking '{document.filename}'")
            await self._mark_failed(document_id, "Chunking failed")
            raise IngestionFailed() from e

        logger.info(
            f"[INGEST] '{document.filename}' -> {len(chunks)} chunks "
            f"({'tabular' if is_tabular else 'prose'})"
        )
        return len(chunks)

    async def attach_embeddings(self, document_id: str) -> int:
        """Embed a ChunksReady document's chunks and advance it to Completed."""
        document = await self._require_document(document_id, DocumentStatus.CHUNKS_READY)

        try:
            chunks = await self.chunk_repo.list_for_document(document_id)
            if not chunks:
                raise IngestionFailed("Document has no chunks to embed")

            embeddings = await self._with_timeout(
                self.embedding_service.embed_many([chunk.content for chunk in chunks]),
                EmbeddingFailed,
                "Chunk embedding",
            )
            if len(embeddings) != len(chunks):
                raise EmbeddingFailed(f"Expected {len(chunks)} embeddings, got {len(embeddings)}")

            dimensions = {len(embedding) for embedding in embeddings}
            if dimensions != {self.embedding_dimension}:
                logger.error(f"[EMBED] Got dimensions {sorted(dimensions)}, expected {self.embedding_dimension}")
                raise EmbeddingFailed(f"Embeddings must have dimension {self.embedding_dimension}")

            await self.chunk_repo.set_embeddings(
                {chunk.id: embedding for chunk, embedding in zip(chunks, embeddings)}
            )
            await self.document_repo.update_status(document_id, DocumentStatus.COMPLETED)

        except RetrievalError as e:
            logger.error(f"[INGEST] Embedding failed for '{document.filename}': {e.message}")
            await self._mark_failed(document_id, e.message)
            raise
        except Exception as e:
            logger.exception(f"[INGEST] Unexpected error embedding '{document.filename}'")
            await self._mark_failed(document_id, "Embedding failed")
            raise IngestionFailed() from e

        logger.info(f"[INGEST] '{document.filename}' completed with {len(chunks)} embedded chunks")
        return len(chunks)

    async def delete_document(self, document_id: str) -> bool:
        deleted = await self.document_repo.delete(document_id)
        if deleted:
            logger.info(f"Deleted document {document_id}")
            try:
                await self.cache.invalidate_document(document_id)
            except Exception as e:
                logger.warning(f"[CACHE] Failed to invalidate entries for {document_id}: {e}", exc_info=True)
        return deleted

    async def list_documents(self) -> List[Document]:
        return await self.document_repo.list_all()

    async def get_status(self) -> Dict[str, Any]:
        """Get system status"""
        documents = await self.document_repo.list_all()
        chunk_count = await self.chunk_repo.count()
        cache_entries = await self.cache.cache_repo.count()

        by_status = {status.value: 0 for status in DocumentStatus}
        for document in documents:
            by_status[document.status.value] += 1

        return {
            "documents": len(documents),
            "documents_by_status": by_status,
            "chunks_available": chunk_count,
            "cache_entries": cache_entries,
            "ready_for_queries": by_status[DocumentStatus.COMPLETED.value] > 0,
        }

    async def purge_cache(self, max_age_days: Optional[int] = None, min_hits: Optional[int] = None) -> int:
        return await self.cache.purge_stale(max_age_days, min_hits)

    # ============ PROVIDERS ============

    async def _with_timeout(self, awaitable, error_cls, what: str):
        """Bound an external call; timeouts and unexpected failures become `error_cls`."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.provider_timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"{what} timed out after {self.provider_timeout}s")
            raise error_cls(f"{what} timed out", retryable=True) from e
        except RetrievalError:
            raise
        except Exception as e:
            logger.error(f"{what} failed: {e}", exc_info=True)
            raise error_cls() from e

    async def _embed(self, text: str) -> List[float]:
        embedding = await self._with_timeout(
            self.embedding_service.embed(text), EmbeddingFailed, "Query embedding"
        )
        if not embedding:
            raise EmbeddingFailed("The embedding service returned an empty vector")
        return embedding

    # ============ QUERY ============

    @staticmethod
    def _coerce_role(role: Union[Role, str]) -> Role:
        try:
            return Role(role)
        except ValueError:
            raise InvalidInput(f"Unknown role '{role}'") from None

    @staticmethod
    def _validate_question(question: str) -> str:
        question = (question or "").strip()
        if not question:
            raise InvalidInput("Question must not be empty")
        if len(question) > settings.MAX_QUESTION_LENGTH:
            raise InvalidInput(f"Question exceeds {settings.MAX_QUESTION_LENGTH} characters")
        return question

    async def query(
        self,
        question: str,
        role: Union[Role, str],
        document_scope: Optional[Iterable[str]] = None,
        weights: Optional[FusionWeights] = None,
    ) -> QueryResult:
        """
        Answer a question from the documents visible to `role`.

        Pipeline:
        1. Cache probe (hit returns immediately)
        2. Candidate filter
        3. Decomposition, then per-part hybrid search (concurrent)
        4. Cross-part merge, synthesis, cache write, analytics
        """
        started = time.perf_counter()
        question = self._validate_question(question)
        role = self._coerce_role(role)

        question_embedding = await self._embed(question)

        # Cache entries are keyed by (question, role) only, so scoped queries bypass it
        use_cache = document_scope is None
        hit = await self._cache_lookup(question_embedding, role) if use_cache else None
        if hit is not None:
            await self._record_analytics(SearchAnalytics(
                question=question,
                role=role,
                question_type=classify_query(question),
                search_time_ms=self._elapsed_ms(started),
                cached=True,
            ))
            return QueryResult(
                answer=hit.entry.answer,
                sources=[SourceReference.from_dict(source) for source in hit.entry.sources],
                cached=True,
                similarity=hit.similarity,
            )

        documents = await self.document_repo.list_by_status(DocumentStatus.COMPLETED)
        eligible_ids = filter_candidates(role, documents, document_scope)
        chunks = await self.chunk_repo.list_by_documents(eligible_ids)

        fragments = self.decomposer.decompose(question)
        if not chunks:
            logger.info(f"[SEARCH] Eligible documents have no chunks for role={role.value}")
            return self._no_relevant_content(fragments)

        results = await self._hybrid_search(question, question_embedding, fragments, chunks, weights)
        if not results:
            logger.info(f"[SEARCH] No relevant chunks for: {question[:60]}")
            await self._record_analytics(self._analytics(question, role, fragments, results, started))
            return self._no_relevant_content(fragments)

        answer = await self._with_timeout(
            self.answer_service.synthesize(question, results, build_answer_instructions(fragments)),
            SynthesisFailed,
            "Answer synthesis",
        )

        sources = [
            SourceReference(
                document_id=result.document_id,
                filename=result.filename,
                chunk_content=truncate(result.chunk.content, settings.SOURCE_SNIPPET_LENGTH),
                relevance_score=result.combined_score,
                provenance=result.provenance.value,
            )
            for result in results
        ]

        if use_cache:
            try:
                await self.cache.store(
                    question, question_embedding, answer, [s.to_dict() for s in sources], role
                )
            except CacheWriteFailed as e:
                logger.warning(f"[CACHE] {e}; answer returned uncached")

        await self._record_analytics(self._analytics(question, role, fragments, results, started))
        await self._save_chat(question, answer, sources, role)

        logger.info(
            f"[SEARCH] Answered with {len(results)} chunks across {len(fragments)} parts "
            f"in {self._elapsed_ms(started)}ms"
        )
        return QueryResult(answer=answer, sources=sources, cached=False, fragments=fragments)

    async def _cache_lookup(self, question_embedding: List[float], role: Role):
        try:
            return await self.cache.lookup(question_embedding, role)
        except Exception as e:
            logger.warning(f"[CACHE] Lookup failed, treating as miss: {e}", exc_info=True)
            return None

    async def _hybrid_search(
        self,
        question: str,
        question_embedding: List[float],
        fragments: List[str],
        chunks: List[DocumentChunk],
        weights: Optional[FusionWeights],
    ) -> List[SearchResult]:
        search = HybridSearch(SemanticSearch(), KeywordSearch(), self.fusion)
        await asyncio.to_thread(search.setup_document_store, chunks)

        async def search_fragment(text: str) -> List[SearchResult]:
            if text.lower() == question.lower():
                embedding = question_embedding
            else:
                embedding = await self._embed(text)
            return await asyncio.to_thread(
                search.search, QueryFragment(text=text, embedding=embedding), self.top_k, weights
            )

        per_fragment = await asyncio.gather(*(search_fragment(text) for text in fragments))

        for text, results in zip(fragments, per_fragment):
            logger.debug(f"[SEARCH] Part '{text[:50]}' -> {len(results)} results")

        return merge_fragment_results(per_fragment, self.final_context_size)

    @staticmethod
    def _no_relevant_content(fragments: List[str]) -> QueryResult:
        return QueryResult(
            answer=NoRelevantContent.default_message,
            sources=[],
            cached=False,
            fragments=fragments,
            error_kind=ErrorKind.NO_RELEVANT_CONTENT.value,
        )

    # ============ ANALYTICS & HISTORY ============

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)

    def _analytics(
        self,
        question: str,
        role: Role,
        fragments: List[str],
        results: List[SearchResult],
        started: float,
    ) -> SearchAnalytics:
        provenances = [result.provenance for result in results]
        return SearchAnalytics(
            question=question,
            role=role,
            question_type=classify_query(question),
            fragment_count=len(fragments),
            semantic_results=sum(
                p in (Provenance.SEMANTIC, Provenance.SEMANTIC_FALLBACK) for p in provenances
            ),
            keyword_results=provenances.count(Provenance.KEYWORD),
            hybrid_results=provenances.count(Provenance.HYBRID),
            top_result_score=results[0].combined_score if results else None,
            search_time_ms=self._elapsed_ms(started),
            cached=False,
        )

    async def _record_analytics(self, analytics: SearchAnalytics) -> None:
        try:
            await self.search_log_repo.record_search(analytics)
        except Exception as e:
            logger.warning(f"[SEARCH] Failed to record analytics: {e}", exc_info=True)

    async def _save_chat(
        self, question: str, answer: str, sources: List[SourceReference], role: Role
    ) -> None:
        if not self.save_chat_history or role == Role.CUSTOMER:
            return
        document_ids = list(dict.fromkeys(source.document_id for source in sources))
        try:
            await self.search_log_repo.save_chat(question, answer, document_ids, role)
        except Exception as e:
            logger.warning(f"Failed to save chat history: {e}", exc_info=True)
