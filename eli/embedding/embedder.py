"""
OpenAI Embedding Client with LangSmith instrumentation
---------------------------------------------------------
Wraps the OpenAI text-embedding-3-small API (async client) with:
  - LangSmith run tracing for cost / latency observability
  - Retry logic via tenacity
  - Token usage accounting

The stored corpus vectors were produced by the same model, so the query
vector is directly comparable with them.
"""
from __future__ import annotations

import os
import time

import numpy as np
from langsmith import traceable
from loguru import logger
from openai import AsyncOpenAI
from tenacity import retry, stop_after_attempt, wait_exponential

from eli.utils.helpers import single_line

MODEL = "text-embedding-3-small"
DIMENSIONS = 1536          # text-embedding-3-small native dimensions


class Embedder:
    """
    Generates L2-normalised query embeddings.

    OpenAI already returns unit vectors; normalising again is cheap and
    keeps dot product == cosine similarity even if the model changes.
    """

    def __init__(self, model: str = MODEL, dimensions: int = DIMENSIONS, client: AsyncOpenAI | None = None) -> None:
        self.model = model
        self.dimensions = dimensions
        self._client = client or AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"))
        self.total_tokens_used: int = 0
        self.total_api_calls: int = 0

    @traceable(name="embed_query", run_type="embedding")
    async def embed_query(self, text: str) -> np.ndarray:
        """Embed a single query string. Returns shape (dimensions,) float32 array."""
        embedding, tokens = await self._embed(single_line(text) or " ")
        self.total_tokens_used += tokens
        self.total_api_calls += 1
        # text-embedding-3-small: $0.020 per million tokens
        logger.debug(
            f"[Embedder] Totals: {self.total_api_calls} calls | {self.total_tokens_used} tokens | "
            f"${self.total_tokens_used / 1_000_000 * 0.020:.6f}"
        )

        vec = np.asarray(embedding, dtype=np.float32)
        if vec.shape != (self.dimensions,):
            raise ValueError(
                f"{self.model} returned {vec.size} dims, expected {self.dimensions}"
            )
        norm = np.linalg.norm(vec)
        return vec / norm if norm else vec

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    async def _embed(self, text: str) -> tuple[list[float], int]:
        """Call the OpenAI Embeddings API for one input."""
        start = time.perf_counter()
        response = await self._client.embeddings.create(model=self.model, input=text)
        elapsed = time.perf_counter() - start

        tokens_used = response.usage.total_tokens
        logger.debug(f"[Embedder] API call: {tokens_used} tokens, {elapsed:.2f}s")
        return response.data[0].embedding, tokens_used
