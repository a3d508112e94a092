# services/candidate_filter.py
"""Role and scope based document eligibility."""
import logging
from typing import Iterable, List, Optional

from config import settings
from core.domain import Document, DocumentStatus, Role
from core.errors import DocumentsUnavailable

logger = logging.getLogger(settings.LOGGER_NAME)


def is_eligible(document: Document, role: Role, document_scope: Optional[set] = None) -> bool:
    if document.status != DocumentStatus.COMPLETED:
        return False
    if not document.is_visible_to(role):
        return False
    if document_scope is not None and document.id not in document_scope:
        return False
    return True


def filter_candidates(
    role: Role,
    documents: Iterable[Document],
    document_scope: Optional[Iterable[str]] = None,
) -> List[str]:
    """
    Return the sorted ids of documents the role may search.

    Raises DocumentsUnavailable when nothing is eligible, so no search runs.
    """
    scope = set(document_scope) if document_scope is not None else None
    eligible = sorted(doc.id for doc in documents if is_eligible(doc, role, scope))

    if not eligible:
        logger.info(f"[SEARCH] No eligible documents for role={role.value}, scope={scope}")
        raise DocumentsUnavailable()

    logger.debug(f"[SEARCH] {len(eligible)} eligible documents for role={role.value}")
    return eligible
