# services/fusion.py
"""Reciprocal rank fusion of semantic and keyword rankings."""
import logging
import re
from typing import Dict, Iterable, List, Optional

from config import settings
from core.domain import FusionWeights, Provenance, QueryType, SearchResult

logger = logging.getLogger(settings.LOGGER_NAME)

_DIGITS_RE = re.compile(r"\d+")
_QUOTED_RE = re.compile(r'"[^"]+"|“[^”]+”')


def classify_query(text: str, max_length: Optional[int] = None) -> QueryType:
    """
    Keyword-heavy queries (numbers, quoted phrases, very short) lean on exact
    term matching; everything else leans on semantic similarity.
    """
    max_length = max_length or settings.KEYWORD_HEAVY_MAX_LENGTH
    text = text or ""
    if _DIGITS_RE.search(text) or _QUOTED_RE.search(text) or len(text.strip()) < max_length:
        return QueryType.KEYWORD_HEAVY
    return QueryType.SEMANTIC_HEAVY


def choose_weights(text: str) -> FusionWeights:
    if classify_query(text) == QueryType.KEYWORD_HEAVY:
        return FusionWeights(
            semantic=settings.KEYWORD_HEAVY_SEMANTIC_WEIGHT,
            keyword=settings.KEYWORD_HEAVY_KEYWORD_WEIGHT,
        )
    return FusionWeights(semantic=settings.SEMANTIC_WEIGHT, keyword=settings.KEYWORD_WEIGHT)


def _rank_by(results: Iterable[SearchResult], score_attr: str) -> Dict[str, tuple]:
    """chunk_id -> (1-based rank, result), ranked by the list's own score, ties by chunk_id."""
    ordered = sorted(results, key=lambda r: (-getattr(r, score_attr), r.chunk_id))
    ranked: Dict[str, tuple] = {}
    for result in ordered:
        if result.chunk_id not in ranked:
            ranked[result.chunk_id] = (len(ranked) + 1, result)
    return ranked


def sort_results(results: Iterable[SearchResult]) -> List[SearchResult]:
    return sorted(results, key=lambda r: (-r.combined_score, r.chunk_id))


class FusionEngine:
    """Weighted RRF; a chunk ranked first in both lists scores 1.0."""

    def __init__(self, rrf_k: Optional[int] = None, top_k: Optional[int] = None):
        self.rrf_k = rrf_k or settings.RRF_K
        self.top_k = top_k or settings.SEARCH_TOP_K

    def fuse(
        self,
        semantic_results: List[SearchResult],
        keyword_results: List[SearchResult],
        weights: FusionWeights,
        top_k: Optional[int] = None,
        provenance_override: Optional[Provenance] = None,
        fragment: Optional[str] = None,
    ) -> List[SearchResult]:
        k = self.rrf_k
        limit = top_k or self.top_k

        semantic_ranks = _rank_by(semantic_results, "semantic_score")
        keyword_ranks = _rank_by(keyword_results, "keyword_score")

        fused: List[SearchResult] = []
        for chunk_id in set(semantic_ranks) | set(keyword_ranks):
            rrf = 0.0
            semantic_score = keyword_score = 0.0
            source = None

            if chunk_id in semantic_ranks:
                rank, source = semantic_ranks[chunk_id]
                rrf += weights.semantic / (k + rank)
                semantic_score = source.semantic_score

            if chunk_id in keyword_ranks:
                rank, kw_result = keyword_ranks[chunk_id]
                rrf += weights.keyword / (k + rank)
                keyword_score = kw_result.keyword_score
                source = source or kw_result

            if provenance_override is not None:
                provenance = provenance_override
            elif chunk_id in semantic_ranks and chunk_id in keyword_ranks:
                provenance = Provenance.HYBRID
            elif chunk_id in semantic_ranks:
                provenance = Provenance.SEMANTIC
            else:
                provenance = Provenance.KEYWORD

            fused.append(SearchResult(
                chunk=source.chunk,
                semantic_score=semantic_score,
                keyword_score=keyword_score,
                combined_score=rrf * (k + 1),
                provenance=provenance,
                fragment=fragment if fragment is not None else source.fragment,
            ))

        fused = sort_results(fused)[:limit]
        logger.debug(
            f"[FUSION] semantic={len(semantic_ranks)}, keyword={len(keyword_ranks)}, "
            f"weights=({weights.semantic}, {weights.keyword}) -> {len(fused)} results"
        )
        return fused


def merge_fragment_results(result_lists: Iterable[List[SearchResult]], limit: int) -> List[SearchResult]:
    """Union of per-fragment results, keeping each chunk's best combined score."""
    best: Dict[str, SearchResult] = {}
    for results in result_lists:
        for result in results:
            current = best.get(result.chunk_id)
            if current is None or result.combined_score > current.combined_score:
                best[result.chunk_id] = result
    return sort_results(best.values())[:limit]
