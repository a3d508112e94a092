# services/search_strategies.py
"""Search strategy implementations for the retrieval engine"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import numpy as np
from rank_bm25 import BM25Okapi

from config import settings
from core.domain import DocumentChunk, FusionWeights, Provenance, QueryFragment, SearchResult
from core.errors import EmbeddingFailed
from services.fusion import FusionEngine, choose_weights
from utils.text import extract_keywords, tokenize
from utils.vectors import cosine_similarities, to_unit_matrix

logger = logging.getLogger(settings.LOGGER_NAME)


def _ranked(results: List[SearchResult], score_attr: str, top_k: int) -> List[SearchResult]:
    results.sort(key=lambda r: (-getattr(r, score_attr), r.chunk_id))
    return results[:top_k]


class SearchStrategy(ABC):
    """Abstract base class for different search strategies"""

    @abstractmethod
    def setup_document_store(self, chunks: List[DocumentChunk]) -> bool:
        """Index the eligible chunks for this request"""
        pass

    @abstractmethod
    def search(self, fragment: QueryFragment, top_k: int = 15) -> List[SearchResult]:
        """Search for relevant chunks"""
        pass

    @abstractmethod
    def get_chunks_count(self) -> int:
        """Get total number of indexed chunks"""
        pass


class KeywordSearch(SearchStrategy):
    """BM25 ranking restricted to chunks sharing a query term"""

    def __init__(self, k1: Optional[float] = None, b: Optional[float] = None):
        self.k1 = k1 or settings.BM25_K1
        self.b = settings.BM25_B if b is None else b
        self.chunks: List[DocumentChunk] = []
        self.token_sets: List[set] = []
        self.bm25 = None

    def setup_document_store(self, chunks: List[DocumentChunk]) -> bool:
        """Tokenize chunks and build the BM25 index"""
        try:
            self.chunks = list(chunks)
            tokenized_corpus = [tokenize(chunk.content) for chunk in self.chunks]
            self.token_sets = [set(tokens) for tokens in tokenized_corpus]
            if any(tokenized_corpus):
                self.bm25 = BM25Okapi(tokenized_corpus, k1=self.k1, b=self.b)
            else:
                self.bm25 = None
            logger.debug(f"[SEARCH] Built BM25 index over {len(self.chunks)} chunks")
            return True
        except Exception as e:
            logger.error(f"[SEARCH] Failed to build BM25 index: {e}", exc_info=True)
            self.bm25 = None
            return False

    def search(self, fragment: QueryFragment, top_k: int = 15) -> List[SearchResult]:
        if not any(self.token_sets):
            return []
        if self.bm25 is None:
            raise RuntimeError("BM25 index not initialized. Call setup_document_store first.")

        keywords = extract_keywords(fragment.text)
        if not keywords:
            return []

        scores = self.bm25.get_scores(keywords)
        wanted = set(keywords)

        results = []
        for chunk, token_set, score in zip(self.chunks, self.token_sets, scores):
            if wanted.isdisjoint(token_set):
                continue
            results.append(SearchResult(
                chunk=chunk,
                keyword_score=float(score),
                combined_score=float(score),
                provenance=Provenance.KEYWORD,
                fragment=fragment.text,
            ))

        results = _ranked(results, "keyword_score", top_k)
        logger.debug(f"[SEARCH] Keyword search matched {len(results)} chunks for '{fragment.text[:50]}'")
        return results

    def get_chunks_count(self) -> int:
        return len(self.chunks)


class SemanticSearch(SearchStrategy):
    """Exact cosine ranking over chunk embeddings"""

    def __init__(self, min_similarity: Optional[float] = None):
        self.min_similarity = (
            settings.SEMANTIC_MIN_SIMILARITY if min_similarity is None else min_similarity
        )
        self.chunks: List[DocumentChunk] = []
        # dimension -> (chunks, unit-normalized embedding matrix)
        self.matrices: Dict[int, Tuple[List[DocumentChunk], np.ndarray]] = {}

    def setup_document_store(self, chunks: List[DocumentChunk]) -> bool:
        self.chunks = list(chunks)
        groups: Dict[int, List[DocumentChunk]] = {}
        for chunk in self.chunks:
            if chunk.embedding:
                groups.setdefault(len(chunk.embedding), []).append(chunk)

        self.matrices = {
            dim: (members, to_unit_matrix([m.embedding for m in members]))
            for dim, members in groups.items()
        }

        usable = sum(len(members) for members in groups.values())
        if usable < len(self.chunks):
            logger.warning(f"[SEARCH] {len(self.chunks) - usable} of {len(self.chunks)} chunks have no embedding")
        return True

    def search(self, fragment: QueryFragment, top_k: int = 15) -> List[SearchResult]:
        if not self.chunks:
            return []

        group = self.matrices.get(len(fragment.embedding or []))
        if group is None:
            logger.error(
                f"[SEARCH] No chunk embedding matches query dimension {len(fragment.embedding or [])} "
                f"(available: {sorted(self.matrices)})"
            )
            raise EmbeddingFailed("No document chunks have embeddings usable for this query")

        members, matrix = group
        similarities = cosine_similarities(fragment.embedding, matrix)

        results = [
            SearchResult(
                chunk=chunk,
                semantic_score=float(score),
                combined_score=float(score),
                provenance=Provenance.SEMANTIC,
                fragment=fragment.text,
            )
            for chunk, score in zip(members, similarities)
            if score >= self.min_similarity
        ]

        results = _ranked(results, "semantic_score", top_k)
        logger.debug(f"[SEARCH] Semantic search kept {len(results)} chunks above {self.min_similarity}")
        return results

    def get_chunks_count(self) -> int:
        return len(self.chunks)


class HybridSearch(SearchStrategy):
    """Combines keyword and semantic search with reciprocal rank fusion"""

    def __init__(
        self,
        semantic_search: Optional[SemanticSearch] = None,
        keyword_search: Optional[KeywordSearch] = None,
        fusion: Optional[FusionEngine] = None,
    ):
        self.semantic_search = semantic_search or SemanticSearch()
        self.keyword_search = keyword_search or KeywordSearch()
        self.fusion = fusion or FusionEngine()
        self.keyword_ready = False

    def setup_document_store(self, chunks: List[DocumentChunk]) -> bool:
        self.semantic_search.setup_document_store(chunks)
        self.keyword_ready = self.keyword_search.setup_document_store(chunks)
        if not self.keyword_ready:
            logger.warning("[FUSION] Keyword index unavailable, searches fall back to semantic only")
        return True

    def search(
        self,
        fragment: QueryFragment,
        top_k: int = 15,
        weights: Optional[FusionWeights] = None,
    ) -> List[SearchResult]:
        """Semantic errors propagate; keyword errors degrade to semantic-only results."""
        semantic_results = self.semantic_search.search(fragment, top_k)

        keyword_results = None
        if self.keyword_ready:
            try:
                keyword_results = self.keyword_search.search(fragment, top_k)
            except Exception as e:
                logger.warning(f"[FUSION] Keyword search failed: {e}. Falling back to semantic search.", exc_info=True)

        if keyword_results is None:
            return self.fusion.fuse(
                semantic_results,
                [],
                FusionWeights(semantic=1.0, keyword=0.0),
                top_k=top_k,
                provenance_override=Provenance.SEMANTIC_FALLBACK,
                fragment=fragment.text,
            )

        return self.fusion.fuse(
            semantic_results,
            keyword_results,
            weights or choose_weights(fragment.text),
            top_k=top_k,
            fragment=fragment.text,
        )

    def get_chunks_count(self) -> int:
        """Get chunks count from semantic search (primary store)"""
        return self.semantic_search.get_chunks_count()
