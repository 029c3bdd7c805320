"""
Similarity Search Engine
-------------------------
Brute-force cosine ranking over the full embedding set.

Per query:
  1. load every stored embedding (chunk_id + vector)
  2. score = dot(query, vector)  -- vectors are unit length, so this is
     cosine similarity
  3. stable sort descending (ties keep scan order), keep top_k
  4. fetch chunk content + parent document for exactly those ids

There is no score threshold: ranking is relative only.  A stored vector
that cannot be parsed (bad JSON, wrong dimension, non-finite values) scores
-inf, sorts last, and is dropped from the results.

The scan is O(N) per query and runs in a worker thread so concurrent turns
are not blocked.  Revisit once the corpus grows past low-to-mid thousands
of chunks.
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

import numpy as np
import orjson
from langsmith import traceable
from loguru import logger

from eli.schemas import Embedding, RetrievalResult
from eli.store import DocumentStore

MALFORMED_SCORE = float("-inf")


def parse_vector(raw: Any, dimensions: int) -> Optional[np.ndarray]:
    """Coerce a stored vector (list or JSON string) to float32, or None if malformed."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = orjson.loads(raw)
        except orjson.JSONDecodeError:
            return None
    if not isinstance(raw, (list, tuple, np.ndarray)):
        return None
    try:
        vec = np.asarray(raw, dtype=np.float32)
    except (TypeError, ValueError):
        return None
    if vec.shape != (dimensions,) or not np.all(np.isfinite(vec)):
        return None
    return vec


def rank_embeddings(
    query_vec: np.ndarray,
    embeddings: list[Embedding],
    top_k: int,
) -> list[tuple[str, float]]:
    """
    Score every embedding against the query and return the top_k
    (chunk_id, score) pairs, best first.  Pure and synchronous.
    """
    if top_k <= 0 or not embeddings:
        return []

    query = np.asarray(query_vec, dtype=np.float32).reshape(-1)
    dims = query.shape[0]

    scores = np.full(len(embeddings), MALFORMED_SCORE, dtype=np.float64)
    valid_rows: list[int] = []
    vectors: list[np.ndarray] = []
    for i, emb in enumerate(embeddings):
        vec = parse_vector(emb.vector, dims)
        if vec is not None:
            valid_rows.append(i)
            vectors.append(vec)

    if vectors:
        matrix = np.vstack(vectors)
        scores[valid_rows] = matrix @ query

    malformed = len(embeddings) - len(valid_rows)
    if malformed:
        logger.warning(f"[Search] {malformed} malformed stored vectors scored as -inf")

    # Stable sort on the negated score keeps scan order for equal scores
    order = np.argsort(-scores, kind="stable")[:top_k]
    return [
        (embeddings[i].chunk_id, float(scores[i]))
        for i in order
        if scores[i] != MALFORMED_SCORE
    ]


class SimilaritySearchEngine:
    """Ranks the whole corpus for a query vector and joins the winners back to content."""

    def __init__(self, store: DocumentStore, top_k: int = 50) -> None:
        self.store = store
        self.top_k = top_k

    @traceable(name="similarity_search", run_type="retriever")
    async def search(self, query_vec: np.ndarray, top_k: Optional[int] = None) -> list[RetrievalResult]:
        k = self.top_k if top_k is None else top_k

        embeddings = await self.store.load_embeddings()
        logger.debug(f"[Search] Scanning {len(embeddings)} vectors")

        ranked = await asyncio.to_thread(rank_embeddings, query_vec, embeddings, k)
        if not ranked:
            logger.info("[Search] No results")
            return []

        rows = await self.store.fetch_chunks([cid for cid, _ in ranked])
        by_id = {chunk.id: (chunk, doc) for chunk, doc in rows}

        results: list[RetrievalResult] = []
        for chunk_id, score in ranked:
            if chunk_id not in by_id:
                continue
            chunk, doc = by_id[chunk_id]
            results.append(
                RetrievalResult(
                    id=chunk.id,
                    content=chunk.content,
                    similarity=score,
                    title=(doc.title if doc and doc.title else "Unknown"),
                    url=(doc.url if doc else ""),
                    source_type=(doc.source_type if doc else "unknown"),
                )
            )

        logger.info(
            f"[Search] {len(results)} results of {len(embeddings)} vectors "
            f"(top score: {results[0].similarity:.4f})" if results else "[Search] No results"
        )
        return results
