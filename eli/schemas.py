"""
Core Pydantic schemas for the Eli assistant.

Corpus records (Document, Chunk, Embedding) are owned by the ingestion
side and are read-only here.  RetrievalResult and the UI component models
are transient; ChatTurn and LeadRecord are the only records the core
writes.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Enumerations ------------------------------------------------------------

class Surface(str, Enum):
    """The calling context of a turn."""

    PUBLIC = "public"        # company website widget
    INTERNAL = "internal"    # staff dashboard

    @classmethod
    def _missing_(cls, value: object) -> Optional["Surface"]:
        # Legacy names sent by older widget builds
        aliases = {"website": cls.PUBLIC, "dashboard": cls.INTERNAL}
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None


# --- Corpus Models ------------------------------------------------------------

class Document(BaseModel):
    """One logical content unit (policy, course, location, ...)."""

    id: str
    source_type: str                    # e.g. "route", "policy", "location"
    source_slug: str = ""
    title: str = ""
    url: str = ""


class Chunk(BaseModel):
    """A bounded slice of a document's text - the unit of retrieval."""

    id: str
    document_id: str
    content: str
    chunk_index: int = 0


class Embedding(BaseModel):
    """
    One stored vector per chunk.

    `vector` is kept raw: the store may hand back a JSON array or a
    JSON-encoded string, and parsing is the search engine's job.
    """

    chunk_id: str
    vector: Any


class RetrievalResult(BaseModel):
    """A ranked chunk joined back to its parent document.  Never persisted."""

    id: str
    content: str
    similarity: float
    title: str = "Unknown"
    url: str = ""
    source_type: str = "unknown"


# --- UI Components ------------------------------------------------------------

class UICard(BaseModel):
    title: str
    description: str = ""
    url: str = ""
    image: Optional[str] = None


class CarouselData(BaseModel):
    items: list[UICard] = Field(default_factory=list)


class CarouselComponent(BaseModel):
    type: Literal["carousel"] = "carousel"
    data: CarouselData


# --- Conversation Models ------------------------------------------------------

class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = ""


class PageContext(BaseModel):
    url: Optional[str] = None
    title: Optional[str] = None


class ChatRequest(BaseModel):
    """Inbound turn.  `messages` is optional so an absent list maps to a 400, not a 422."""

    model_config = ConfigDict(populate_by_name=True)

    messages: Optional[list[ChatMessage]] = None
    surface: Surface = Surface.PUBLIC
    page_context: Optional[PageContext] = Field(default=None, alias="pageContext")
    session_id: Optional[str] = Field(default=None, alias="sessionId")

    @field_validator("surface", mode="before")
    @classmethod
    def coerce_surface(cls, v: Any) -> Any:
        if isinstance(v, str):
            return Surface(v)
        return v


class TurnMetadata(BaseModel):
    surface: str
    page: str = "unknown"
    is_course_query: bool = False
    sources_found: int = 0
    generated_tokens: int = 0
    has_carousel_generated: bool = False
    tool_calls: list[str] = Field(default_factory=list)
    user_id: Optional[str] = None


class ChatTurn(BaseModel):
    """One completed turn.  Append-only; a session is the ordered set of its turns."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str = "anonymous"
    user_message: str
    assistant_response: str
    metadata: TurnMetadata
    created_at: datetime = Field(default_factory=_utcnow)


class LeadRecord(BaseModel):
    """Contact details captured by the lead form."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    email: str
    phone: Optional[str] = None
    intent: Optional[str] = None
    source_url: Optional[str] = None
    chat_session_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
