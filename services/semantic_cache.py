# services/semantic_cache.py
"""Role-isolated semantic answer cache."""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from config import settings
from core.domain import CacheHit, Role
from core.errors import CacheWriteFailed
from core.interfaces import ICacheRepository
from utils.common import utc_now
from utils.vectors import cosine_similarities, to_unit_matrix

logger = logging.getLogger(settings.LOGGER_NAME)


class SemanticCache:
    """Looks up previous answers by question-embedding similarity within one role."""

    def __init__(
        self,
        cache_repo: ICacheRepository,
        similarity_threshold: Optional[float] = None,
        enabled: Optional[bool] = None,
    ):
        self.cache_repo = cache_repo
        self.similarity_threshold = (
            settings.CACHE_SIMILARITY_THRESHOLD if similarity_threshold is None else similarity_threshold
        )
        self.enabled = settings.CACHE_ENABLED if enabled is None else enabled

    async def lookup(self, question_embedding: List[float], role: Role) -> Optional[CacheHit]:
        """Best same-role entry at or above the threshold; newest wins a tie."""
        if not self.enabled or not question_embedding:
            return None

        entries = await self.cache_repo.list_by_role(role)
        candidates = [
            entry for entry in entries
            if entry.role == role
            and entry.question_embedding
            and len(entry.question_embedding) == len(question_embedding)
        ]
        if not candidates:
            logger.debug(f"[CACHE] Miss (no entries) for role={role.value}")
            return None

        similarities = cosine_similarities(
            question_embedding, to_unit_matrix([e.question_embedding for e in candidates])
        )

        best: Optional[CacheHit] = None
        for entry, similarity in zip(candidates, similarities):
            similarity = float(similarity)
            if similarity < self.similarity_threshold:
                continue
            if best is None or (similarity, entry.created_at) > (best.similarity, best.entry.created_at):
                best = CacheHit(entry=entry, similarity=similarity)

        if best is None:
            logger.debug(f"[CACHE] Miss for role={role.value} across {len(candidates)} entries")
            return None

        await self.cache_repo.record_hit(best.entry.id)
        best.entry.hit_count += 1
        best.entry.last_hit_at = utc_now()

        logger.info(
            f"[CACHE] Hit for role={role.value} (similarity={best.similarity:.3f}, "
            f"hits={best.entry.hit_count}): '{best.entry.question[:50]}'"
        )
        return best

    async def store(
        self,
        question: str,
        question_embedding: List[float],
        answer: str,
        sources: List[Dict[str, Any]],
        role: Role,
    ) -> None:
        if not self.enabled:
            return
        try:
            await self.cache_repo.upsert(question, question_embedding, answer, sources, role)
            logger.debug(f"[CACHE] Stored answer for role={role.value}: '{question[:50]}'")
        except Exception as e:
            logger.error(f"[CACHE] Failed to store answer: {e}", exc_info=True)
            raise CacheWriteFailed() from e

    async def purge_stale(self, max_age_days: Optional[int] = None, min_hits: Optional[int] = None) -> int:
        """Delete old entries that were rarely reused."""
        max_age_days = settings.CACHE_TTL_DAYS if max_age_days is None else max_age_days
        min_hits = settings.CACHE_PURGE_MIN_HITS if min_hits is None else min_hits

        cutoff = utc_now() - timedelta(days=max_age_days)
        deleted = await self.cache_repo.purge_stale(cutoff, min_hits)
        logger.info(f"[CACHE] Purged {deleted} entries older than {max_age_days} days with < {min_hits} hits")
        return deleted

    async def invalidate_document(self, document_id: str) -> int:
        deleted = await self.cache_repo.delete_referencing(document_id)
        if deleted:
            logger.info(f"[CACHE] Invalidated {deleted} entries citing document {document_id}")
        return deleted
