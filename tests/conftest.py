"""
Shared test fixtures for the Eli test suite.

Provides a small in-memory corpus, learner tables, settings, and scripted
stand-ins for the embedding and chat model providers.
"""

from datetime import date

import numpy as np
import orjson
import pytest

from eli.auth import Principal, StaticTokenIdentityProvider
from eli.config import Settings
from eli.schemas import Chunk, Document, Embedding
from eli.serving.pipeline import ChatPipeline
from eli.serving.rate_limit import InMemoryRateLimiter
from eli.store import InMemoryStore

TODAY = date(2025, 3, 10)
STAFF_TOKEN = "staff-token"
SCOPED_TOKEN = "scoped-token"


def unit(*components):
    """Unit vector from raw components (float list, ready for storage)."""
    vec = np.asarray(components, dtype=np.float32)
    return (vec / np.linalg.norm(vec)).tolist()


def save_json(data, path):
    """Write a JSON fixture file the way the ingestion side lays out the data dir."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2))


# ---------------------------------------------------------------------------
# Provider stand-ins
# ---------------------------------------------------------------------------

class FakeEmbedder:
    """Returns a fixed query vector and counts calls."""

    model = "fake-embedding"

    def __init__(self, vector=None, error=None):
        self.vector = np.asarray(vector if vector is not None else unit(1.0, 0.0, 0.0), dtype=np.float32)
        self.error = error
        self.calls = []

    async def embed_query(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.vector


class FakeChatModel:
    """
    Scripted chat model.  Each entry of `rounds` is the list of
    (event, data) tuples yielded for one stream() call.
    """

    def __init__(self, rounds, model="gpt-4o"):
        self.rounds = list(rounds)
        self.model = model
        self.calls = []

    async def stream(self, system_prompt, messages, tools=None, tool_choice=None):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "messages": [dict(m) for m in messages],
                "tools": tools,
                "tool_choice": tool_choice,
            }
        )
        index = min(len(self.calls) - 1, len(self.rounds) - 1)
        for event in self.rounds[index]:
            yield event


def text_round(*pieces, prompt_tokens=100, completion_tokens=20):
    events = [("text", p) for p in pieces]
    events.append(("usage", {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens}))
    return events


def tool_round(name, arguments, call_id="call_1"):
    return [
        ("tool_call", {"id": call_id, "name": name, "arguments": arguments}),
        ("usage", {"prompt_tokens": 80, "completion_tokens": 10}),
    ]


# ---------------------------------------------------------------------------
# Data fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def corpus():
    """Three route documents, one policy document; one chunk + embedding each."""
    documents = [
        Document(id="d1", source_type="route", source_slug="ict-l3", title="Level 3 ICT Apprenticeship",
                 url="https://solveway.co.uk/courses/ict-l3"),
        Document(id="d2", source_type="route", source_slug="data-l4", title="Data Analyst Level 4", url=""),
        Document(id="d3", source_type="route", source_slug="swd-l4",
                 title="[Source: Software Developer (route)]", url="https://solveway.co.uk/courses/swd"),
        Document(id="d4", source_type="policy", source_slug="privacy", title="Privacy Policy",
                 url="https://solveway.co.uk/privacy"),
    ]
    chunks = [
        Chunk(id="c1", document_id="d1", content="The Level 3 ICT course is a 15-month\napprenticeship. " * 5),
        Chunk(id="c2", document_id="d2", content="Data analysts learn SQL and reporting."),
        Chunk(id="c3", document_id="d3", content="Software developers build web applications."),
        Chunk(id="c4", document_id="d4", content="We never sell your personal data."),
    ]
    embeddings = [
        Embedding(chunk_id="c1", vector=unit(1.0, 0.1, 0.0)),
        Embedding(chunk_id="c2", vector=unit(1.0, 0.3, 0.0)),
        Embedding(chunk_id="c3", vector=unit(1.0, 0.6, 0.0)),
        Embedding(chunk_id="c4", vector=unit(0.0, 0.0, 1.0)),
    ]
    return documents, chunks, embeddings


@pytest.fixture
def learner_tables():
    learners = [
        {"uln": "1000000001", "first_name": "Amira", "last_name": "Khan", "employer": "Acme Ltd"},
        {"uln": "1000000002", "first_name": "Ben", "last_name": "Hughes", "employer": "Acme Ltd"},
        {"uln": "1000000003", "first_name": "Chloe", "last_name": "Price", "employer": "Globex"},
    ]
    sessions = [
        {"id": "s1", "session_name": "Networking 101", "session_datetime": "2025-03-10T09:30:00Z"},
        {"id": "s2", "session_name": "Excel Basics", "session_datetime": "2025-03-11T09:30:00Z"},
    ]
    assignments = [
        {"session_id": "s1", "learner_uln": "1000000001"},
        {"session_id": "s1", "learner_uln": "1000000002"},
        {"session_id": "s1", "learner_uln": "1000000003"},
        {"session_id": "s2", "learner_uln": "1000000001"},
    ]
    attendance = [
        {"session_id": "s1", "learner_uln": "1000000001", "attendance_status": "Present"},
        {"session_id": "s1", "learner_uln": "1000000002", "attendance_status": "Late_Absent"},
    ]
    return learners, sessions, assignments, attendance


@pytest.fixture
def store(corpus, learner_tables):
    documents, chunks, embeddings = corpus
    learners, sessions, assignments, attendance = learner_tables
    return InMemoryStore(
        documents=documents,
        chunks=chunks,
        embeddings=embeddings,
        learners=learners,
        training_sessions=sessions,
        session_assignments=assignments,
        attendance_records=attendance,
    )


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def identity():
    return StaticTokenIdentityProvider(
        {
            STAFF_TOKEN: Principal(id="staff-1", email="ops@solveway.co.uk", role="admin"),
            SCOPED_TOKEN: Principal(id="staff-2", email="acme@solveway.co.uk", employers=["Acme Ltd"]),
        }
    )


@pytest.fixture
def make_pipeline(settings, store, identity):
    """Factory: a ChatPipeline over the fixture store with scripted providers."""

    def _make(rounds, embedder=None, rate_limiter=None):
        return ChatPipeline(
            settings=settings,
            store=store,
            embedder=embedder or FakeEmbedder(),
            model=FakeChatModel(rounds),
            identity=identity,
            rate_limiter=rate_limiter or InMemoryRateLimiter(),
            today=lambda: TODAY,
        )

    return _make
