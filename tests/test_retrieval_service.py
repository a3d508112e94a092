"""End-to-end tests for ingestion and cached hybrid querying."""

import pytest
from sqlalchemy import select

from conftest import FakeAnswerService, FakeEmbeddingService
from core.domain import DocumentStatus, FusionWeights, QueryFragment, Role
from core.errors import (
    DocumentsUnavailable,
    EmbeddingFailed,
    ErrorKind,
    InvalidInput,
    NoRelevantContent,
    SynthesisFailed,
)
from database.session import ChatHistoryEntity, SearchAnalyticsEntity
from infrastructure.repositories import (
    SQLCacheRepository,
    SQLChunkRepository,
    SQLDocumentRepository,
    SQLSearchLogRepository,
)
from services.retrieval_service import RetrievalService
from services.search_strategies import SemanticSearch
from services.semantic_cache import SemanticCache

PAYROLL_TEXT = (
    "Paydays are the 15th and the last working day of each month. "
    "Salary is paid by bank transfer."
)
SUMMARY_TEXT = (
    "Q3 2023 summary: revenue grew strongly this quarter. "
    "Sales growth came from new customers."
)
CONTACT_TEXT = "Contact the office by email or phone during business hours."


class TestIngestion:
    async def test_lifecycle(self, retrieval_service, session):
        document = await retrieval_service.create_document("payroll.txt", accessible_by_employees=True)
        assert document.status == DocumentStatus.PROCESSING

        chunks = await retrieval_service.ingest(document.id, PAYROLL_TEXT)
        assert chunks == 1
        doc = await SQLDocumentRepository(session).get_by_id(document.id)
        assert doc.status == DocumentStatus.CHUNKS_READY

        embedded = await retrieval_service.attach_embeddings(document.id)
        assert embedded == 1
        doc = await SQLDocumentRepository(session).get_by_id(document.id)
        assert doc.status == DocumentStatus.COMPLETED

        stored = await SQLChunkRepository(session).list_for_document(document.id)
        assert [c.id for c in stored] == [f"{document.id}_00000"]
        assert stored[0].filename == "payroll.txt"
        assert len(stored[0].embedding) == FakeEmbeddingService().dimension

    async def test_tabular_ingest_keeps_sheet_headers(self, retrieval_service, session):
        rows = "\n".join(f"ROW {i}: Name: Employee {i}, Salary: {4000 + i}" for i in range(1, 80))
        text = f"=== SHEET: Payroll ===\nCOLUMNS: Name | Salary\n{'=' * 80}\n{rows}"
        document = await retrieval_service.create_document("payroll.xlsx")

        count = await retrieval_service.ingest(document.id, text, is_tabular=True)

        stored = await SQLChunkRepository(session).list_for_document(document.id)
        assert count == len(stored) > 1
        assert [c.chunk_index for c in stored] == list(range(count))
        assert all(c.content.startswith("=== SHEET: Payroll ===") for c in stored)

    async def test_empty_text_fails_document(self, retrieval_service, session):
        document = await retrieval_service.create_document("empty.txt")
        with pytest.raises(InvalidInput):
            await retrieval_service.ingest(document.id, "   ")

        doc = await SQLDocumentRepository(session).get_by_id(document.id)
        assert doc.status == DocumentStatus.FAILED
        assert doc.error_message

    async def test_ingest_requires_processing_status(self, retrieval_service, add_document):
        document_id = await add_document("payroll.txt", PAYROLL_TEXT)
        with pytest.raises(InvalidInput):
            await retrieval_service.ingest(document_id, PAYROLL_TEXT)

    async def test_unknown_document(self, retrieval_service):
        with pytest.raises(DocumentsUnavailable):
            await retrieval_service.ingest("00000000-0000-0000-0000-000000000000", PAYROLL_TEXT)

    async def test_wrong_embedding_dimension_fails_document(self, session, cache_repo, answer_service):
        service = RetrievalService(
            document_repo=SQLDocumentRepository(session),
            chunk_repo=SQLChunkRepository(session),
            cache=SemanticCache(cache_repo),
            search_log_repo=SQLSearchLogRepository(session),
            embedding_service=FakeEmbeddingService(dimension=16),
            answer_service=answer_service,
            embedding_dimension=768,
        )
        document = await service.create_document("payroll.txt")
        await service.ingest(document.id, PAYROLL_TEXT)

        with pytest.raises(EmbeddingFailed):
            await service.attach_embeddings(document.id)

        doc = await SQLDocumentRepository(session).get_by_id(document.id)
        assert doc.status == DocumentStatus.FAILED

    async def test_delete_document_removes_chunks(self, retrieval_service, add_document, session):
        document_id = await add_document("payroll.txt", PAYROLL_TEXT)
        assert await retrieval_service.delete_document(document_id) is True
        assert await SQLChunkRepository(session).count() == 0
        assert await retrieval_service.delete_document(document_id) is False

    async def test_create_document_requires_filename(self, retrieval_service):
        with pytest.raises(InvalidInput):
            await retrieval_service.create_document("  ")


class TestQuery:
    async def test_cache_miss_then_hit(self, retrieval_service, add_document, answer_service, cache_repo):
        await add_document("payroll.txt", PAYROLL_TEXT, employees=True)
        question = "When are the paydays each month?"

        first = await retrieval_service.query(question, Role.EMPLOYEE)
        second = await retrieval_service.query(question, Role.EMPLOYEE)

        assert first.cached is False
        assert first.answer == "Generated answer"
        assert first.sources and first.sources[0].filename == "payroll.txt"
        assert second.cached is True
        assert second.similarity == pytest.approx(1.0, abs=1e-5)
        assert second.answer == first.answer
        assert [s.to_dict() for s in second.sources] == [s.to_dict() for s in first.sources]
        assert len(answer_service.calls) == 1

        entry = await cache_repo.get(question, Role.EMPLOYEE)
        assert entry.hit_count == 2

    async def test_customer_cache_not_served_to_employee(self, retrieval_service, add_document, answer_service):
        await add_document("payroll.txt", PAYROLL_TEXT, employees=True, customers=True)
        question = "When are the paydays each month?"

        customer = await retrieval_service.query(question, Role.CUSTOMER)
        employee = await retrieval_service.query(question, Role.EMPLOYEE)

        assert customer.cached is False
        assert employee.cached is False
        assert len(answer_service.calls) == 2

    async def test_two_part_question_covers_both_topics(self, retrieval_service, add_document, session, answer_service):
        payroll_id = await add_document("payroll.txt", PAYROLL_TEXT, employees=True)
        summary_id = await add_document("summary.txt", SUMMARY_TEXT, employees=True)
        await add_document("contact.txt", CONTACT_TEXT, employees=True)

        result = await retrieval_service.query(
            "What are the paydays and give me the Q3 2023 summary", Role.EMPLOYEE
        )

        assert result.fragments == ["What are the paydays", "give me the Q3 2023 summary"]
        context_ids = {c.chunk_id for c in answer_service.calls[0]["chunks"]}

        chunks = await SQLChunkRepository(session).list_by_documents([payroll_id, summary_id])
        embedder = FakeEmbeddingService()
        semantic = SemanticSearch()
        semantic.setup_document_store(chunks)
        for text in result.fragments:
            top5 = semantic.search(QueryFragment(text=text, embedding=embedder.vector(text)), top_k=5)
            assert top5
            assert context_ids & {r.chunk_id for r in top5}

        assert {s.document_id for s in result.sources} >= {payroll_id, summary_id}
        instructions = answer_service.calls[0]["instructions"]
        assert "What are the paydays" in instructions
        assert "give me the Q3 2023 summary" in instructions

    async def test_role_visibility(self, retrieval_service, add_document):
        await add_document("payroll.txt", PAYROLL_TEXT, employees=True)
        with pytest.raises(DocumentsUnavailable):
            await retrieval_service.query("When are the paydays?", Role.CUSTOMER)

        result = await retrieval_service.query("When are the paydays?", Role.BUSINESS_OWNER)
        assert result.sources

    async def test_document_scope(self, retrieval_service, add_document):
        payroll_id = await add_document("payroll.txt", PAYROLL_TEXT, employees=True)
        await add_document("summary.txt", SUMMARY_TEXT, employees=True)

        result = await retrieval_service.query(
            "Tell me the salary and the revenue", Role.EMPLOYEE, document_scope=[payroll_id]
        )
        assert {s.document_id for s in result.sources} == {payroll_id}

    async def test_scoped_queries_bypass_cache(self, retrieval_service, add_document, answer_service, cache_repo):
        payroll_id = await add_document("payroll.txt", PAYROLL_TEXT, employees=True)
        summary_id = await add_document("summary.txt", SUMMARY_TEXT, employees=True)
        question = "Tell me the salary and the revenue"

        payroll = await retrieval_service.query(question, Role.EMPLOYEE, document_scope=[payroll_id])
        summary = await retrieval_service.query(question, Role.EMPLOYEE, document_scope=[summary_id])

        assert payroll.cached is False
        assert summary.cached is False
        assert {s.document_id for s in summary.sources} == {summary_id}
        assert len(answer_service.calls) == 2
        assert await cache_repo.count() == 0

    async def test_deleted_document_is_not_served_from_cache(
        self, retrieval_service, add_document, answer_service, cache_repo
    ):
        payroll_id = await add_document("payroll.txt", PAYROLL_TEXT, employees=True)
        await add_document("summary.txt", SUMMARY_TEXT, employees=True)
        question = "When are the paydays each month?"

        await retrieval_service.query(question, Role.EMPLOYEE)
        assert await cache_repo.count() == 1

        await retrieval_service.delete_document(payroll_id)
        assert await cache_repo.count() == 0

        result = await retrieval_service.query(question, Role.EMPLOYEE)
        assert result.cached is False
        assert payroll_id not in {s.document_id for s in result.sources}

    async def test_no_relevant_content_is_structured(self, retrieval_service, add_document, answer_service):
        await add_document("payroll.txt", PAYROLL_TEXT, employees=True)

        result = await retrieval_service.query("Tell me about zebras", Role.EMPLOYEE)

        assert result.error_kind == ErrorKind.NO_RELEVANT_CONTENT.value
        assert result.answer == NoRelevantContent.default_message
        assert result.sources == []
        assert answer_service.calls == []

    async def test_corpus_without_embeddings_raises(self, retrieval_service, session):
        document = await retrieval_service.create_document("payroll.txt", accessible_by_employees=True)
        await retrieval_service.ingest(document.id, PAYROLL_TEXT)
        await SQLDocumentRepository(session).update_status(document.id, DocumentStatus.COMPLETED)

        with pytest.raises(EmbeddingFailed):
            await retrieval_service.query("When are the paydays?", Role.EMPLOYEE)

    async def test_invalid_questions(self, retrieval_service):
        with pytest.raises(InvalidInput):
            await retrieval_service.query("   ", Role.EMPLOYEE)
        with pytest.raises(InvalidInput):
            await retrieval_service.query("x" * 2001, Role.EMPLOYEE)
        with pytest.raises(InvalidInput):
            await retrieval_service.query("When are the paydays?", "auditor")

    async def test_no_documents(self, retrieval_service):
        with pytest.raises(DocumentsUnavailable):
            await retrieval_service.query("When are the paydays?", Role.BUSINESS_OWNER)

    async def test_explicit_weights(self, retrieval_service, add_document):
        await add_document("payroll.txt", PAYROLL_TEXT, employees=True)
        result = await retrieval_service.query(
            "When are the paydays?", Role.EMPLOYEE, weights=FusionWeights(semantic=1.0, keyword=0.0)
        )
        assert result.sources[0].relevance_score == pytest.approx(1.0)

    async def test_synthesis_timeout_is_retryable(self, session, cache_repo, add_document):
        await add_document("payroll.txt", PAYROLL_TEXT, employees=True)
        service = RetrievalService(
            document_repo=SQLDocumentRepository(session),
            chunk_repo=SQLChunkRepository(session),
            cache=SemanticCache(cache_repo),
            search_log_repo=SQLSearchLogRepository(session),
            embedding_service=FakeEmbeddingService(),
            answer_service=FakeAnswerService(delay=1.0),
            provider_timeout=0.05,
        )
        with pytest.raises(SynthesisFailed) as excinfo:
            await service.query("When are the paydays?", Role.EMPLOYEE)
        assert excinfo.value.retryable is True

    async def test_cache_write_failure_is_not_fatal(self, session, add_document, answer_service):
        class FailingCacheRepository(SQLCacheRepository):
            async def upsert(self, *args, **kwargs):
                raise RuntimeError("disk full")

        await add_document("payroll.txt", PAYROLL_TEXT, employees=True)
        service = RetrievalService(
            document_repo=SQLDocumentRepository(session),
            chunk_repo=SQLChunkRepository(session),
            cache=SemanticCache(FailingCacheRepository(session), enabled=True),
            search_log_repo=SQLSearchLogRepository(session),
            embedding_service=FakeEmbeddingService(),
            answer_service=answer_service,
        )
        result = await service.query("When are the paydays?", Role.EMPLOYEE)
        assert result.answer == "Generated answer"
        assert result.cached is False


class TestHistoryAndAnalytics:
    async def test_chat_history_skips_customers(self, retrieval_service, add_document, session):
        await add_document("payroll.txt", PAYROLL_TEXT, employees=True, customers=True)

        await retrieval_service.query("When are the paydays?", Role.CUSTOMER)
        await retrieval_service.query("When is the salary paid?", Role.EMPLOYEE)

        rows = (await session.execute(select(ChatHistoryEntity))).scalars().all()
        assert [row.role for row in rows] == ["employee"]
        assert rows[0].source_document_ids

    async def test_analytics_recorded_for_miss_and_hit(self, retrieval_service, add_document, session):
        await add_document("payroll.txt", PAYROLL_TEXT, employees=True)

        await retrieval_service.query("When are the paydays?", Role.EMPLOYEE)
        await retrieval_service.query("When are the paydays?", Role.EMPLOYEE)

        rows = (await session.execute(
            select(SearchAnalyticsEntity).order_by(SearchAnalyticsEntity.id)
        )).scalars().all()
        assert [row.cached for row in rows] == [False, True]
        assert rows[0].fragment_count == 1
        assert rows[0].question_type == "semantic_heavy"
        assert rows[0].top_result_score is not None

        recent = await SQLSearchLogRepository(session).list_recent_searches(limit=1)
        assert len(recent) == 1

    async def test_status_and_purge(self, retrieval_service, add_document):
        await add_document("payroll.txt", PAYROLL_TEXT, employees=True)
        await retrieval_service.query("When are the paydays?", Role.EMPLOYEE)

        status = await retrieval_service.get_status()
        assert status["documents"] == 1
        assert status["documents_by_status"]["completed"] == 1
        assert status["chunks_available"] == 1
        assert status["cache_entries"] == 1
        assert status["ready_for_queries"] is True

        assert await retrieval_service.purge_cache(max_age_days=0, min_hits=5) == 1
