"""
Document Store
---------------
The persistent side of the assistant: read access to the corpus
(documents / chunks / embeddings) and to the learner tables behind the
dashboard tools, append-only writes for chat turns and leads.

Two implementations share one async interface:

  InMemoryStore  -- plain lists and dicts; used by tests and the CLI demo
  JsonFileStore  -- InMemoryStore hydrated from a data directory:

      <data_dir>/documents.json            [Document]
      <data_dir>/chunks.json               [Chunk]
      <data_dir>/embeddings.json           [Embedding]
      <data_dir>/learners.json             [{uln, first_name, last_name, employer, ...}]
      <data_dir>/training_sessions.json    [{id, session_name, session_datetime}]
      <data_dir>/session_assignments.json  [{session_id, learner_uln}]
      <data_dir>/attendance_records.json   [{session_id, learner_uln, attendance_status}]
      <data_dir>/chat_logs.jsonl           ChatTurn per line (appended)
      <data_dir>/leads.jsonl               LeadRecord per line (appended)

The corpus is populated by the ingestion pipeline while the service runs,
so JsonFileStore re-reads corpus files whenever their mtime changes.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from loguru import logger

from eli.schemas import ChatTurn, Chunk, Document, Embedding, LeadRecord
from eli.utils.helpers import append_jsonl, load_json, load_jsonl

Row = dict[str, Any]


class DocumentStore(ABC):
    """Async interface the core talks to; no caller sees the backing storage."""

    # --- Corpus ---------------------------------------------------------------

    @abstractmethod
    async def load_embeddings(self) -> list[Embedding]:
        ...

    @abstractmethod
    async def fetch_chunks(self, chunk_ids: Iterable[str]) -> list[tuple[Chunk, Optional[Document]]]:
        """Return (chunk, parent document) for every id that exists, in id order."""
        ...

    @abstractmethod
    async def corpus_stats(self) -> dict[str, int]:
        ...

    # --- Conversation log -----------------------------------------------------

    @abstractmethod
    async def append_turn(self, turn: ChatTurn) -> None:
        ...

    @abstractmethod
    async def turns_for_session(self, session_id: str) -> list[ChatTurn]:
        """Turns sharing `session_id`, oldest first."""
        ...

    @abstractmethod
    async def append_lead(self, lead: LeadRecord) -> LeadRecord:
        ...

    # --- Learner data (dashboard tools) ---------------------------------------

    @abstractmethod
    async def find_learners_by_uln(self, uln: str) -> list[Row]:
        ...

    @abstractmethod
    async def search_learners_by_name(self, term: str, limit: int = 5) -> list[Row]:
        ...

    @abstractmethod
    async def sessions_on(self, day: date) -> list[Row]:
        ...

    @abstractmethod
    async def assignments_for(self, session_ids: list[str]) -> list[Row]:
        """Assignments with the learner row joined under the `learner` key."""
        ...

    @abstractmethod
    async def attendance_for(self, session_ids: list[str]) -> list[Row]:
        ...


def _session_day(row: Row) -> Optional[date]:
    raw = row.get("session_datetime")
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, str) and raw:
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


class InMemoryStore(DocumentStore):
    """List-backed store."""

    def __init__(
        self,
        documents: Iterable[Document] = (),
        chunks: Iterable[Chunk] = (),
        embeddings: Iterable[Embedding] = (),
        learners: Iterable[Row] = (),
        training_sessions: Iterable[Row] = (),
        session_assignments: Iterable[Row] = (),
        attendance_records: Iterable[Row] = (),
    ) -> None:
        self.documents: dict[str, Document] = {d.id: d for d in documents}
        self.chunks: dict[str, Chunk] = {c.id: c for c in chunks}
        self.embeddings: list[Embedding] = list(embeddings)
        self.learners: list[Row] = list(learners)
        self.training_sessions: list[Row] = list(training_sessions)
        self.session_assignments: list[Row] = list(session_assignments)
        self.attendance_records: list[Row] = list(attendance_records)
        self.turns: list[ChatTurn] = []
        self.leads: list[LeadRecord] = []

    # --- Corpus ---------------------------------------------------------------

    async def load_embeddings(self) -> list[Embedding]:
        return list(self.embeddings)

    async def fetch_chunks(self, chunk_ids: Iterable[str]) -> list[tuple[Chunk, Optional[Document]]]:
        rows = []
        for cid in chunk_ids:
            chunk = self.chunks.get(cid)
            if chunk is not None:
                rows.append((chunk, self.documents.get(chunk.document_id)))
        return rows

    async def corpus_stats(self) -> dict[str, int]:
        return {
            "documents": len(self.documents),
            "chunks": len(self.chunks),
            "embeddings": len(self.embeddings),
            "turns": len(self.turns),
            "leads": len(self.leads),
        }

    # --- Conversation log -----------------------------------------------------

    async def append_turn(self, turn: ChatTurn) -> None:
        self.turns.append(turn)

    async def turns_for_session(self, session_id: str) -> list[ChatTurn]:
        turns = [t for t in self.turns if t.session_id == session_id]
        return sorted(turns, key=lambda t: t.created_at)

    async def append_lead(self, lead: LeadRecord) -> LeadRecord:
        self.leads.append(lead)
        return lead

    # --- Learner data ---------------------------------------------------------

    async def find_learners_by_uln(self, uln: str) -> list[Row]:
        return [dict(r) for r in self.learners if str(r.get("uln", "")) == uln]

    async def search_learners_by_name(self, term: str, limit: int = 5) -> list[Row]:
        needle = term.lower()
        matches = [
            dict(r)
            for r in self.learners
            if needle in str(r.get("first_name", "")).lower()
            or needle in str(r.get("last_name", "")).lower()
        ]
        return matches[:limit]

    async def sessions_on(self, day: date) -> list[Row]:
        return [dict(r) for r in self.training_sessions if _session_day(r) == day]

    async def assignments_for(self, session_ids: list[str]) -> list[Row]:
        by_uln = {str(r.get("uln")): r for r in self.learners}
        wanted = set(session_ids)
        rows = []
        for a in self.session_assignments:
            if a.get("session_id") in wanted:
                row = dict(a)
                row["learner"] = by_uln.get(str(a.get("learner_uln")))
                rows.append(row)
        return rows

    async def attendance_for(self, session_ids: list[str]) -> list[Row]:
        wanted = set(session_ids)
        return [dict(r) for r in self.attendance_records if r.get("session_id") in wanted]


class JsonFileStore(InMemoryStore):
    """InMemoryStore backed by JSON files in `data_dir`."""

    _CORPUS_FILES = ("documents.json", "chunks.json", "embeddings.json")
    _TABLE_FILES = (
        "learners.json",
        "training_sessions.json",
        "session_assignments.json",
        "attendance_records.json",
    )

    def __init__(self, data_dir: str | Path) -> None:
        super().__init__()
        self.data_dir = Path(data_dir)
        self._mtimes: dict[str, float] = {}
        self._write_lock = asyncio.Lock()

        self._reload_corpus_if_changed()
        for name in self._TABLE_FILES:
            setattr(self, name.removesuffix(".json"), self._read_list(name))

        self.turns = [ChatTurn.model_validate(r) for r in load_jsonl(self.data_dir / "chat_logs.jsonl")]
        self.leads = [LeadRecord.model_validate(r) for r in load_jsonl(self.data_dir / "leads.jsonl")]

        logger.info(
            f"[JsonFileStore] {self.data_dir} | {len(self.documents)} documents | "
            f"{len(self.chunks)} chunks | {len(self.embeddings)} embeddings | "
            f"{len(self.turns)} logged turns"
        )

    def _read_list(self, name: str) -> list[Row]:
        path = self.data_dir / name
        if not path.exists():
            return []
        raw = load_json(path)
        return raw if isinstance(raw, list) else raw.get("records", [])

    def _reload_corpus_if_changed(self) -> None:
        mtimes = {}
        for name in self._CORPUS_FILES:
            path = self.data_dir / name
            mtimes[name] = path.stat().st_mtime if path.exists() else 0.0
        if mtimes == self._mtimes:
            return

        self.documents = {d.id: d for d in map(Document.model_validate, self._read_list("documents.json"))}
        self.chunks = {c.id: c for c in map(Chunk.model_validate, self._read_list("chunks.json"))}
        self.embeddings = [Embedding.model_validate(r) for r in self._read_list("embeddings.json")]
        self._mtimes = mtimes
        logger.debug(f"[JsonFileStore] Corpus (re)loaded | {len(self.embeddings)} embeddings")

    async def load_embeddings(self) -> list[Embedding]:
        await asyncio.to_thread(self._reload_corpus_if_changed)
        return await super().load_embeddings()

    async def append_turn(self, turn: ChatTurn) -> None:
        async with self._write_lock:
            await asyncio.to_thread(
                append_jsonl, turn.model_dump(mode="json"), self.data_dir / "chat_logs.jsonl"
            )
            await super().append_turn(turn)

    async def append_lead(self, lead: LeadRecord) -> LeadRecord:
        async with self._write_lock:
            await asyncio.to_thread(
                append_jsonl, lead.model_dump(mode="json"), self.data_dir / "leads.jsonl"
            )
            return await super().append_lead(lead)
