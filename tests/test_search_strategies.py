"""Tests for semantic, keyword and hybrid search strategies."""

import pytest

from conftest import make_chunk
from core.domain import FusionWeights, Provenance, QueryFragment
from core.errors import EmbeddingFailed
from services.search_strategies import HybridSearch, KeywordSearch, SemanticSearch


def fragment(text: str, embedding=None) -> QueryFragment:
    return QueryFragment(text=text, embedding=embedding or [1.0, 0.0, 0.0])


class TestSemanticSearch:
    def test_ranks_by_cosine_and_applies_threshold(self):
        chunks = [
            make_chunk("c1", "far", [0.0, 1.0, 0.0]),
            make_chunk("c2", "close", [0.9, 0.1, 0.0]),
            make_chunk("c3", "exact", [2.0, 0.0, 0.0]),
            make_chunk("c4", "weak", [0.1, 1.0, 0.0]),
        ]
        search = SemanticSearch(min_similarity=0.15)
        search.setup_document_store(chunks)

        results = search.search(fragment("query"), top_k=15)

        assert [r.chunk_id for r in results] == ["c3", "c2"]
        assert results[0].semantic_score == pytest.approx(1.0)
        assert all(r.provenance == Provenance.SEMANTIC for r in results)
        assert all(r.fragment == "query" for r in results)

    def test_ties_broken_by_chunk_id(self):
        chunks = [make_chunk(cid, cid, [1.0, 0.0, 0.0]) for cid in ("b", "c", "a")]
        search = SemanticSearch()
        search.setup_document_store(chunks)
        assert [r.chunk_id for r in search.search(fragment("q"))] == ["a", "b", "c"]

    def test_cap(self):
        chunks = [make_chunk(f"c{i:02d}", "x", [1.0, i * 0.01, 0.0]) for i in range(30)]
        search = SemanticSearch()
        search.setup_document_store(chunks)
        assert len(search.search(fragment("q"), top_k=15)) == 15

    def test_skips_missing_and_mismatched_embeddings(self):
        chunks = [
            make_chunk("ok", "x", [1.0, 0.0, 0.0]),
            make_chunk("missing", "x", None),
            make_chunk("wrong-dim", "x", [1.0, 0.0]),
        ]
        search = SemanticSearch()
        search.setup_document_store(chunks)
        assert [r.chunk_id for r in search.search(fragment("q"))] == ["ok"]

    def test_no_usable_embeddings_raises(self):
        search = SemanticSearch()
        search.setup_document_store([make_chunk("a", "x"), make_chunk("b", "y")])
        with pytest.raises(EmbeddingFailed):
            search.search(fragment("q"))

    def test_empty_corpus_returns_nothing(self):
        search = SemanticSearch()
        search.setup_document_store([])
        assert search.search(fragment("q")) == []


class TestKeywordSearch:
    @pytest.fixture
    def corpus(self):
        return [
            make_chunk("c0", "invoice invoice alpha beta"),
            make_chunk("c1", "invoice alpha beta gamma"),
            make_chunk("c2", "delta epsilon zeta eta"),
            make_chunk("c3", "theta iota kappa lambda"),
            make_chunk("c4", "revenue for 2023 grew"),
            make_chunk("c5", "mu nu xi omicron"),
        ]

    def test_ranks_by_bm25(self, corpus):
        search = KeywordSearch()
        search.setup_document_store(corpus)
        results = search.search(fragment("Where is the invoice?"))
        assert [r.chunk_id for r in results] == ["c0", "c1"]
        assert results[0].keyword_score > results[1].keyword_score
        assert all(r.provenance == Provenance.KEYWORD for r in results)

    def test_numbers_are_searchable(self, corpus):
        search = KeywordSearch()
        search.setup_document_store(corpus)
        assert [r.chunk_id for r in search.search(fragment("2023"))] == ["c4"]

    def test_only_chunks_sharing_a_term_are_returned(self):
        search = KeywordSearch()
        search.setup_document_store([make_chunk("a", "refund policy"), make_chunk("b", "shipping times")])
        assert [r.chunk_id for r in search.search(fragment("refund"))] == ["a"]

    def test_stopword_only_query_matches_nothing(self, corpus):
        search = KeywordSearch()
        search.setup_document_store(corpus)
        assert search.search(fragment("what is the")) == []

    def test_search_before_setup_fails(self):
        search = KeywordSearch()
        search.token_sets = [{"x"}]
        with pytest.raises(RuntimeError):
            search.search(fragment("x"))


class BrokenKeywordSearch(KeywordSearch):
    def search(self, fragment, top_k=15):
        raise RuntimeError("index corrupted")


class UnbuildableKeywordSearch(KeywordSearch):
    def setup_document_store(self, chunks):
        return False


class TestHybridSearch:
    @pytest.fixture
    def chunks(self):
        return [
            make_chunk("a", "refund policy for customers", [1.0, 0.0, 0.0]),
            make_chunk("b", "shipping times", [0.8, 0.6, 0.0]),
            make_chunk("c", "refund window is 30 days", [0.0, 0.0, 1.0]),
        ]

    def test_fuses_both_channels(self, chunks):
        search = HybridSearch()
        search.setup_document_store(chunks)
        results = search.search(fragment("refund"), weights=FusionWeights(0.5, 0.5))

        by_id = {r.chunk_id: r for r in results}
        assert by_id["a"].provenance == Provenance.HYBRID
        assert by_id["b"].provenance == Provenance.SEMANTIC
        assert by_id["c"].provenance == Provenance.KEYWORD
        assert results[0].chunk_id == "a"
        assert search.get_chunks_count() == 3

    def test_keyword_failure_falls_back_to_semantic(self, chunks):
        search = HybridSearch(keyword_search=BrokenKeywordSearch())
        search.setup_document_store(chunks)
        results = search.search(fragment("refund"))

        assert [r.chunk_id for r in results] == ["a", "b"]
        assert all(r.provenance == Provenance.SEMANTIC_FALLBACK for r in results)
        assert results[0].combined_score == pytest.approx(1.0)

    def test_keyword_index_failure_falls_back_to_semantic(self, chunks):
        search = HybridSearch(keyword_search=UnbuildableKeywordSearch())
        search.setup_document_store(chunks)
        results = search.search(fragment("refund"))
        assert all(r.provenance == Provenance.SEMANTIC_FALLBACK for r in results)

    def test_semantic_failure_propagates(self):
        search = HybridSearch()
        search.setup_document_store([make_chunk("a", "refund policy")])
        with pytest.raises(EmbeddingFailed):
            search.search(fragment("refund"))
