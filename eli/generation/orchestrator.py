"""
Chat Orchestrator
------------------
Drives one assistant turn:

    system prompt + history
        |
        v
    model stream  --text-->  caller
        |
        | tool calls?  (internal surface only)
        v
    ToolRegistry.execute() -> results fed back -> next model round
        |                      (at most `max_steps` rounds; the last one
        v                       is forced to answer in text)
    recommendation fallback  (append the injected carousel if the model dropped it)
        |
        v
    ChatTurn persisted  (failures logged, never surfaced)

start() runs the turn in a detached task feeding a queue.  The HTTP layer
drains the queue; if the client goes away the turn still completes and is
logged.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from loguru import logger

from eli.auth import Principal
from eli.directives import parse_directives
from eli.errors import LoggingFailed
from eli.generation.llm import ChatModel, cost_usd
from eli.schemas import ChatMessage, ChatTurn, Surface, TurnMetadata
from eli.store import DocumentStore
from eli.tools.dashboard import ToolRegistry
from eli.utils.helpers import dumps_compact

DEFAULT_SESSION_ID = "anonymous"

# Detached turn tasks; referenced here so they are not garbage-collected mid-turn
_RUNNING_TURNS: set[asyncio.Task] = set()


@dataclass
class TurnContext:
    """Everything about the turn that ends up in the logged metadata."""

    user_message: str
    surface: Surface
    session_id: Optional[str] = None
    page: str = "unknown"
    is_course_query: bool = False
    sources_found: int = 0
    recommendation_token: Optional[str] = None
    principal: Optional[Principal] = None


class TurnStream:
    """Async iterator over a turn's text that never cancels the turn itself."""

    _DONE = object()

    def __init__(self, source: AsyncIterator[str]) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task = asyncio.create_task(self._pump(source))
        _RUNNING_TURNS.add(self._task)
        self._task.add_done_callback(_RUNNING_TURNS.discard)

    async def _pump(self, source: AsyncIterator[str]) -> None:
        try:
            async for piece in source:
                await self._queue.put(piece)
        except Exception:
            logger.exception("[Orchestrator] Turn failed mid-stream")
        finally:
            await self._queue.put(self._DONE)

    async def __aiter__(self):
        while True:
            item = await self._queue.get()
            if item is self._DONE:
                return
            yield item

    async def read_all(self) -> str:
        return "".join([piece async for piece in self])

    async def wait(self) -> None:
        """Wait for the turn (including its logging) to finish."""
        await self._task


def _has_carousel(text: str) -> bool:
    return bool(parse_directives(text).explicit_carousels)


class ChatOrchestrator:
    def __init__(
        self,
        model: ChatModel,
        tools: ToolRegistry,
        store: DocumentStore,
        max_steps: int = 5,
    ) -> None:
        self.model = model
        self.tools = tools
        self.store = store
        self.max_steps = max(1, max_steps)

    def start(
        self,
        system_prompt: str,
        history: list[ChatMessage],
        tools: list[dict[str, Any]],
        turn: TurnContext,
    ) -> TurnStream:
        return TurnStream(self.run(system_prompt, history, tools, turn))

    async def run(
        self,
        system_prompt: str,
        history: list[ChatMessage],
        tools: list[dict[str, Any]],
        turn: TurnContext,
    ) -> AsyncIterator[str]:
        messages: list[dict[str, Any]] = [
            {"role": m.role, "content": m.content}
            for m in history
            if m.role in ("user", "assistant")
        ]
        parts: list[str] = []
        tool_calls_made: list[str] = []
        prompt_tokens = completion_tokens = 0

        for step in range(self.max_steps):
            final_step = step == self.max_steps - 1
            step_text: list[str] = []
            calls: list[dict[str, str]] = []

            async for event, data in self.model.stream(
                system_prompt,
                messages,
                tools=tools or None,
                tool_choice="none" if (tools and final_step) else None,
            ):
                if event == "text":
                    step_text.append(data)
                    parts.append(data)
                    yield data
                elif event == "tool_call":
                    calls.append(data)
                elif event == "usage":
                    prompt_tokens += data.get("prompt_tokens") or 0
                    completion_tokens += data.get("completion_tokens") or 0

            if not calls or not tools or final_step:
                break

            messages.append(
                {
                    "role": "assistant",
                    "content": "".join(step_text) or None,
                    "tool_calls": [
                        {
                            "id": c["id"],
                            "type": "function",
                            "function": {"name": c["name"], "arguments": c["arguments"]},
                        }
                        for c in calls
                    ],
                }
            )
            for call in calls:
                result = await self.tools.execute(call["name"], call["arguments"], turn.principal)
                tool_calls_made.append(call["name"])
                messages.append(
                    {"role": "tool", "tool_call_id": call["id"], "content": dumps_compact(result)}
                )
            logger.debug(f"[Orchestrator] Step {step + 1} ran tools: {[c['name'] for c in calls]}")

        text = "".join(parts)
        if turn.recommendation_token and not _has_carousel(text):
            tail = "\n\n" + turn.recommendation_token
            parts.append(tail)
            logger.info("[Orchestrator] Model omitted the recommendation; appended it")
            yield tail

        logger.info(
            f"[Orchestrator] Done | {self.model.model} | prompt={prompt_tokens} "
            f"completion={completion_tokens} | tools={tool_calls_made} | "
            f"cost=${cost_usd(self.model.model, prompt_tokens, completion_tokens):.5f}"
        )

        try:
            await self._persist(turn, "".join(parts), completion_tokens, tool_calls_made)
        except LoggingFailed as exc:
            logger.error(f"[Orchestrator] Failed to log chat turn: {exc}")

    async def _persist(
        self,
        turn: TurnContext,
        response_text: str,
        completion_tokens: int,
        tool_calls_made: list[str],
    ) -> None:
        record = ChatTurn(
            session_id=turn.session_id or DEFAULT_SESSION_ID,
            user_message=turn.user_message,
            assistant_response=response_text,
            metadata=TurnMetadata(
                surface=Surface(turn.surface).value,
                page=turn.page,
                is_course_query=turn.is_course_query,
                sources_found=turn.sources_found,
                generated_tokens=completion_tokens,
                has_carousel_generated=turn.recommendation_token is not None,
                tool_calls=tool_calls_made,
                user_id=turn.principal.id if turn.principal else None,
            ),
        )
        try:
            await self.store.append_turn(record)
        except Exception as exc:
            raise LoggingFailed(str(exc)) from exc
