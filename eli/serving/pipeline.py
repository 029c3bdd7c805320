"""
Chat Serving Pipeline
----------------------
Orchestrates one inbound turn:

    ChatRequest
        |
        v
    RateLimiter          (429 on reject)
        |
        v
    message check        (400 when the list is missing or empty)
        |
        v
    PersonaSelector      (401 on internal surface without a valid token)
        |
        v
    Embedder + SimilaritySearchEngine   (failure -> empty context, turn continues)
        |
        v
    ContextAssembler     (context block + deterministic recommendation)
        |
        v
    ChatOrchestrator     (streamed answer, tool loop, logged ChatTurn)

Everything that can fail fast does so before the first provider call.
"""
from __future__ import annotations

import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from langsmith import traceable
from loguru import logger

from eli.auth import IdentityProvider, build_identity_provider
from eli.config import Settings
from eli.embedding.embedder import Embedder
from eli.errors import BadRequest, RateLimited, RetrievalDegraded
from eli.generation.llm import ChatModel, OpenAIChatModel
from eli.generation.orchestrator import ChatOrchestrator, TurnContext, TurnStream
from eli.retrieval.context import ContextAssembler
from eli.retrieval.search import SimilaritySearchEngine
from eli.schemas import ChatRequest, LeadRecord, RetrievalResult
from eli.serving.rate_limit import InMemoryRateLimiter, RateLimiter
from eli.store import DocumentStore, JsonFileStore
from eli.surfaces import PersonaSelector
from eli.tools.dashboard import ToolRegistry


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


async def session_history(store: DocumentStore, session_id: str) -> list[dict[str, Any]]:
    """Rebuild the user/assistant message sequence of a session from its logged turns."""
    messages: list[dict[str, Any]] = []
    for turn in await store.turns_for_session(session_id):
        created = turn.created_at.isoformat()
        if turn.user_message:
            messages.append(
                {"id": f"{turn.id}-user", "role": "user", "content": turn.user_message, "createdAt": created}
            )
        if turn.assistant_response:
            messages.append(
                {
                    "id": f"{turn.id}-assistant",
                    "role": "assistant",
                    "content": turn.assistant_response,
                    "createdAt": created,
                }
            )
    return messages


class ChatPipeline:
    """
    End-to-end turn handler.

    Usage:
        pipeline = ChatPipeline.from_settings(load_settings())
        stream = await pipeline.handle_turn(request, client_key="203.0.113.7", authorization=None)
        async for piece in stream:
            print(piece, end="")
    """

    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        embedder: Embedder,
        model: ChatModel,
        identity: IdentityProvider,
        rate_limiter: Optional[RateLimiter] = None,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self.settings = settings
        self.store = store
        self.embedder = embedder
        self.model = model
        self.rate_limiter = rate_limiter or InMemoryRateLimiter()
        self._today = today

        self.search = SimilaritySearchEngine(store, top_k=settings.retrieval.top_k)
        self.assembler = ContextAssembler(settings.recommendations, settings.project.home_url)
        self.tools = ToolRegistry(store, today=today)
        self.selector = PersonaSelector(identity, self.tools)
        self.orchestrator = ChatOrchestrator(
            model, self.tools, store, max_steps=settings.models.max_tool_steps
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChatPipeline":
        logger.info(f"[ChatPipeline] Loading store from {settings.storage.data_dir}...")
        models = settings.models
        pipeline = cls(
            settings=settings,
            store=JsonFileStore(settings.storage.data_dir),
            embedder=Embedder(model=models.embedding_model, dimensions=models.dimensions),
            model=OpenAIChatModel(
                model=models.chat_model,
                temperature=models.temperature,
                max_tokens=models.max_tokens,
            ),
            identity=build_identity_provider(settings.auth),
        )
        logger.info(
            f"[ChatPipeline] Ready | model={models.chat_model} | "
            f"embeddings={models.embedding_model} | top_k={settings.retrieval.top_k} | "
            f"auth={settings.auth.provider}"
        )
        return pipeline

    # --- Turn -----------------------------------------------------------------

    async def handle_turn(
        self,
        request: ChatRequest,
        client_key: str,
        authorization: Optional[str] = None,
    ) -> TurnStream:
        limits = self.settings.rate_limit
        if not self.rate_limiter.admit(client_key, limits.limit, limits.window_ms):
            raise RateLimited()

        if not request.messages:
            raise BadRequest()

        selection = await self.selector.select(request.surface, authorization)

        user_message = next(
            (m.content for m in reversed(request.messages) if m.role == "user"),
            request.messages[-1].content,
        )
        logger.info(
            f"[ChatPipeline] Turn | surface={request.surface.value} | "
            f"session={request.session_id or '-'} | query={user_message[:80]!r}"
        )

        try:
            results = await self.retrieve(user_message)
        except RetrievalDegraded as exc:
            logger.warning(f"[ChatPipeline] Retrieval degraded, answering without context: {exc}")
            results = []

        assembled = self.assembler.assemble(results, user_message, request.surface)
        page = request.page_context
        system_prompt = selection.system_prompt(
            self.settings.project,
            assembled.context_block,
            recommendation_token=assembled.recommendation_token,
            page=page,
            today=self._today(),
        )

        turn = TurnContext(
            user_message=user_message,
            surface=request.surface,
            session_id=request.session_id,
            page=(page.url if page and page.url else "unknown"),
            is_course_query=assembled.is_course_query,
            sources_found=assembled.sources_found,
            recommendation_token=assembled.recommendation_token,
            principal=selection.principal,
        )
        return self.orchestrator.start(system_prompt, request.messages, selection.tools, turn)

    @traceable(name="retrieve", run_type="retriever")
    async def retrieve(self, query: str) -> list[RetrievalResult]:
        """Embed the query and rank the corpus.  Any failure becomes RetrievalDegraded."""
        t0 = time.perf_counter()
        try:
            query_vec = await self.embedder.embed_query(query)
            results = await self.search.search(query_vec)
        except Exception as exc:
            raise RetrievalDegraded(f"{type(exc).__name__}: {exc}") from exc
        logger.debug(f"[ChatPipeline] Retrieval {(time.perf_counter() - t0) * 1000:.0f}ms")
        return results

    # --- History & leads ------------------------------------------------------

    async def history(self, session_id: str) -> list[dict[str, Any]]:
        return await session_history(self.store, session_id)

    async def capture_lead(self, lead: LeadRecord) -> LeadRecord:
        saved = await self.store.append_lead(lead)
        logger.info(f"[ChatPipeline] Lead captured | session={lead.chat_session_id or '-'}")
        return saved

    async def health(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "corpus": await self.store.corpus_stats(),
            "chat_model": self.model.model,
            "embedding_model": self.embedder.model,
            "top_k": self.search.top_k,
        }
