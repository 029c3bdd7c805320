"""
Chat Model Provider
--------------------
Streaming chat completion with tool calling, provider-agnostic on the
consumer side.  stream() yields (event_type, data) tuples:

  ("text", str)                                   -- text delta
  ("tool_call", {"id", "name", "arguments"})      -- one complete tool call
  ("usage", {"prompt_tokens", "completion_tokens"})

Tool calls are emitted after the text of the same round, once their
argument fragments have been fully accumulated.
"""
from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

import openai
from loguru import logger
from openai import AsyncOpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

ModelEvent = tuple[str, Any]


# ---------------------------------------------------------------------------
# Model pricing table  (input_$/M, output_$/M)
# ---------------------------------------------------------------------------

_MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o-mini": (0.150, 0.600),
    "gpt-4o":      (2.500, 10.000),
}


def cost_usd(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Estimated cost in USD for a given model and token counts."""
    rates = _MODEL_PRICING.get(model, (2.500, 10.000))
    return (prompt_tokens * rates[0] + completion_tokens * rates[1]) / 1_000_000


class ChatModel(ABC):
    model: str

    @abstractmethod
    def stream(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
    ) -> AsyncIterator[ModelEvent]:
        ...


class OpenAIChatModel(ChatModel):
    """OpenAI chat completions (gpt-4o by default) over the async streaming API."""

    def __init__(
        self,
        model: str = "gpt-4o",
        temperature: float = 0.3,
        max_tokens: int = 1024,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client or AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"))

    @retry(
        retry=retry_if_exception_type((openai.APIConnectionError, openai.RateLimitError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    async def _open_stream(self, params: dict[str, Any]):
        return await self._client.chat.completions.create(**params)

    async def stream(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
    ) -> AsyncIterator[ModelEvent]:
        params: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            params["tools"] = tools
            if tool_choice:
                params["tool_choice"] = tool_choice

        logger.debug(
            f"[OpenAIChatModel] {self.model} | {len(messages)} messages | "
            f"tools={len(tools or [])} | tool_choice={tool_choice}"
        )
        response = await self._open_stream(params)

        # Tool-call fragments arrive keyed by index; accumulate until the round ends
        calls: dict[int, dict[str, str]] = {}
        async for chunk in response:
            if chunk.usage:
                yield (
                    "usage",
                    {
                        "prompt_tokens": chunk.usage.prompt_tokens,
                        "completion_tokens": chunk.usage.completion_tokens,
                    },
                )
            if not chunk.choices:
                continue

            delta = chunk.choices[0].delta
            if delta.content:
                yield ("text", delta.content)

            for tc in delta.tool_calls or []:
                slot = calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                if tc.id:
                    slot["id"] = tc.id
                if tc.function is not None:
                    if tc.function.name:
                        slot["name"] = tc.function.name
                    if tc.function.arguments:
                        slot["arguments"] += tc.function.arguments

        for index in sorted(calls):
            yield ("tool_call", calls[index])
