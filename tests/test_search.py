"""Tests for brute-force cosine ranking and the search engine join."""

import asyncio
import json

import numpy as np

from conftest import unit
from eli.retrieval.search import SimilaritySearchEngine, parse_vector, rank_embeddings
from eli.schemas import Chunk, Document, Embedding
from eli.store import InMemoryStore


def _query():
    return np.asarray(unit(1.0, 0.0, 0.0), dtype=np.float32)


class TestParseVector:

    def test_accepts_list_and_json_string(self):
        assert parse_vector([1.0, 0.0, 0.0], 3).shape == (3,)
        assert parse_vector(json.dumps([0.0, 1.0, 0.0]), 3).tolist() == [0.0, 1.0, 0.0]

    def test_rejects_malformed(self):
        assert parse_vector("not json", 3) is None
        assert parse_vector([1.0, 0.0], 3) is None
        assert parse_vector([1.0, "x", 0.0], 3) is None
        assert parse_vector([1.0, float("nan"), 0.0], 3) is None
        assert parse_vector({"v": [1, 2, 3]}, 3) is None
        assert parse_vector(None, 3) is None


class TestRankEmbeddings:

    def test_sorted_non_increasing(self):
        rng = np.random.default_rng(7)
        embeddings = [
            Embedding(chunk_id=f"c{i}", vector=unit(*rng.normal(size=3)))
            for i in range(40)
        ]
        ranked = rank_embeddings(_query(), embeddings, top_k=50)

        scores = [s for _, s in ranked]
        assert scores == sorted(scores, reverse=True)
        assert len(ranked) == 40

    def test_respects_top_k(self):
        embeddings = [Embedding(chunk_id=f"c{i}", vector=unit(1.0, i, 0.0)) for i in range(10)]
        assert len(rank_embeddings(_query(), embeddings, top_k=3)) == 3
        assert rank_embeddings(_query(), embeddings, top_k=0) == []

    def test_ties_keep_scan_order(self):
        same = unit(1.0, 1.0, 0.0)
        embeddings = [Embedding(chunk_id=cid, vector=same) for cid in ("b", "a", "c")]
        assert [cid for cid, _ in rank_embeddings(_query(), embeddings, top_k=3)] == ["b", "a", "c"]

    def test_malformed_vectors_never_outrank_valid_ones(self):
        embeddings = [
            Embedding(chunk_id="broken", vector="[1.0, 0.0"),
            Embedding(chunk_id="short", vector=[1.0]),
            Embedding(chunk_id="good", vector=unit(1.0, 1.0, 0.0)),
            Embedding(chunk_id="negative", vector=unit(-1.0, 0.0, 0.0)),
        ]
        ranked = rank_embeddings(_query(), embeddings, top_k=10)

        assert [cid for cid, _ in ranked] == ["good", "negative"]

    def test_no_threshold_filtering(self):
        embeddings = [Embedding(chunk_id="far", vector=unit(-1.0, 0.0, 0.0))]
        ranked = rank_embeddings(_query(), embeddings, top_k=5)
        assert ranked[0][0] == "far"
        assert ranked[0][1] < 0


class TestSimilaritySearchEngine:

    def test_joins_chunks_and_documents_in_rank_order(self, store):
        engine = SimilaritySearchEngine(store, top_k=50)
        results = asyncio.run(engine.search(_query()))

        assert [r.id for r in results] == ["c1", "c2", "c3", "c4"]
        assert results[0].title == "Level 3 ICT Apprenticeship"
        assert results[0].source_type == "route"
        assert results[3].source_type == "policy"

    def test_never_more_results_than_chunks(self, store):
        engine = SimilaritySearchEngine(store)
        assert len(asyncio.run(engine.search(_query(), top_k=1000))) == 4
        assert len(asyncio.run(engine.search(_query(), top_k=2))) == 2

    def test_missing_document_uses_defaults(self):
        store = InMemoryStore(
            chunks=[Chunk(id="orphan", document_id="gone", content="text")],
            embeddings=[Embedding(chunk_id="orphan", vector=unit(1.0, 0.0, 0.0))],
        )
        [result] = asyncio.run(SimilaritySearchEngine(store).search(_query()))
        assert result.title == "Unknown"
        assert result.source_type == "unknown"
        assert result.url == ""

    def test_embedding_without_chunk_is_skipped(self):
        store = InMemoryStore(
            documents=[Document(id="d", source_type="route", title="T")],
            chunks=[Chunk(id="c", document_id="d", content="x")],
            embeddings=[
                Embedding(chunk_id="dangling", vector=unit(1.0, 0.0, 0.0)),
                Embedding(chunk_id="c", vector=unit(1.0, 1.0, 0.0)),
            ],
        )
        results = asyncio.run(SimilaritySearchEngine(store).search(_query()))
        assert [r.id for r in results] == ["c"]

    def test_empty_corpus(self):
        assert asyncio.run(SimilaritySearchEngine(InMemoryStore()).search(_query())) == []
