"""Tests for the OpenAI query embedder with a stubbed async client."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from eli.embedding.embedder import Embedder


def _client(vector, tokens=7):
    client = MagicMock()
    client.embeddings.create = AsyncMock(
        return_value=SimpleNamespace(
            data=[SimpleNamespace(embedding=vector)],
            usage=SimpleNamespace(total_tokens=tokens),
        )
    )
    return client


class TestEmbedder:

    def test_returns_unit_vector_of_configured_size(self):
        client = _client([3.0, 4.0, 0.0])
        embedder = Embedder(model="text-embedding-3-small", dimensions=3, client=client)

        vec = asyncio.run(embedder.embed_query("level 3\naccounting"))

        assert vec.shape == (3,)
        assert np.allclose(vec, [0.6, 0.8, 0.0])
        assert client.embeddings.create.await_args.kwargs["input"] == "level 3 accounting"
        assert (embedder.total_api_calls, embedder.total_tokens_used) == (1, 7)

    def test_wrong_dimensions_raise(self):
        embedder = Embedder(dimensions=1536, client=_client([0.1, 0.2, 0.3]))

        with pytest.raises(ValueError, match="expected 1536"):
            asyncio.run(embedder.embed_query("hello"))
