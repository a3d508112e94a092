"""Tests for role and scope based document eligibility."""

import pytest

from core.domain import Document, DocumentStatus, Role
from core.errors import DocumentsUnavailable
from services.candidate_filter import filter_candidates


@pytest.fixture
def documents():
    return [
        Document(id="d-owner", filename="owner.txt", status=DocumentStatus.COMPLETED),
        Document(id="d-staff", filename="staff.txt", status=DocumentStatus.COMPLETED,
                 accessible_by_employees=True),
        Document(id="d-public", filename="public.txt", status=DocumentStatus.COMPLETED,
                 accessible_by_employees=True, accessible_by_customers=True),
        Document(id="d-pending", filename="pending.txt", status=DocumentStatus.CHUNKS_READY,
                 accessible_by_employees=True, accessible_by_customers=True),
        Document(id="d-failed", filename="failed.txt", status=DocumentStatus.FAILED,
                 accessible_by_employees=True, accessible_by_customers=True),
    ]


class TestFilterCandidates:
    def test_business_owner_sees_every_completed_document(self, documents):
        assert filter_candidates(Role.BUSINESS_OWNER, documents) == ["d-owner", "d-public", "d-staff"]

    def test_employee_sees_flagged_documents(self, documents):
        assert filter_candidates(Role.EMPLOYEE, documents) == ["d-public", "d-staff"]

    def test_customer_sees_customer_documents_only(self, documents):
        assert filter_candidates(Role.CUSTOMER, documents) == ["d-public"]

    def test_scope_narrows_the_result(self, documents):
        assert filter_candidates(Role.BUSINESS_OWNER, documents, ["d-staff", "d-pending"]) == ["d-staff"]

    def test_empty_result_raises(self, documents):
        with pytest.raises(DocumentsUnavailable):
            filter_candidates(Role.CUSTOMER, documents, ["d-staff"])

    def test_no_documents_raises(self):
        with pytest.raises(DocumentsUnavailable):
            filter_candidates(Role.BUSINESS_OWNER, [])
