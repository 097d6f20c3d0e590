"""Adapter for OpenAI-compatible chat completion endpoints (Groq, vLLM, ...).

Wire format: `data: {json}` lines, terminated by `data: [DONE]`. Tool call
fragments arrive keyed by `index` and are only complete once a choice
reports `finish_reason == "tool_calls"`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx

from agentforge.agent.constants import UNKNOWN_TOOL_NAME
from agentforge.agent.events import (
    DeltaEvent,
    EndEvent,
    ErrorEvent,
    ReasoningDeltaEvent,
    ReasoningEndEvent,
    StreamEvent,
    ToolCallEvent,
)
from agentforge.agent.state import ChatMessage
from agentforge.config import settings
from agentforge.providers.base import (
    HttpStreamingAdapter,
    ProviderConfig,
    StreamOptions,
    parse_arguments,
)
from agentforge.providers.notifications import extract_notification_events

logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think>(.*?)</think>", re.IGNORECASE | re.DOTALL)


@dataclass
class _ToolAccumulator:
    id: str | None = None
    name: str | None = None
    args: str = ""


def format_messages(messages: list[ChatMessage]) -> list[dict]:
    formatted = []
    for m in messages:
        if m.role == "assistant" and m.tool_call_id:
            formatted.append(
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": m.tool_call_id,
                            "type": "function",
                            "function": {"name": m.name or "", "arguments": m.content},
                        }
                    ],
                }
            )
        elif m.role == "tool":
            formatted.append(
                {
                    "role": "tool",
                    "tool_call_id": m.tool_call_id or m.name or "tool",
                    "content": m.content,
                }
            )
        else:
            role = "system" if m.role == "developer" else m.role
            formatted.append({"role": role, "content": m.content})
    return formatted


def format_tools(tools: list[dict] | None) -> list[dict] | None:
    if not tools:
        return None
    formatted = []
    for tool in tools:
        function: dict[str, Any] = {
            "name": tool["name"],
            "parameters": tool.get("parameters") or {"type": "object"},
        }
        if tool.get("description"):
            function["description"] = tool["description"]
        formatted.append({"type": "function", "function": function})
    return formatted


def split_think_segments(text: str) -> tuple[list[str], str]:
    """Pull `<think>...</think>` spans out of assistant text."""
    reasoning = [m.strip() for m in _THINK_RE.findall(text) if m.strip()]
    remainder = _THINK_RE.sub("", text)
    return reasoning, remainder


class OpenAICompatibleAdapter(HttpStreamingAdapter):
    name = "openai_compatible"

    def __init__(
        self,
        config: ProviderConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config or ProviderConfig(name=self.name), client)

    @property
    def base_url(self) -> str:
        return (self.config.base_url or settings.OPENAI_COMPATIBLE_BASE_URL).rstrip("/")

    def _headers(self) -> dict[str, str]:
        api_key = self.config.api_key or settings.OPENAI_COMPATIBLE_API_KEY
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
            **self.config.headers,
        }

    async def list_models(self) -> list[str]:
        try:
            body = await self._get_json(f"{self.base_url}/models", self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Could not list models from %s: %s", self.base_url, exc)
            return []
        data = body.get("data") if isinstance(body, dict) else None
        return [
            item["id"]
            for item in data or []
            if isinstance(item, dict) and isinstance(item.get("id"), str)
        ]

    async def stream(self, options: StreamOptions) -> AsyncIterator[StreamEvent]:
        tools = format_tools(options.tools)
        body: dict[str, Any] = {
            "model": options.model,
            "stream": True,
            "messages": format_messages(options.messages),
        }
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"
        if options.response_format:
            body["response_format"] = options.response_format

        try:
            client, owns_client, response = await self._post_stream(
                f"{self.base_url}/chat/completions", body, self._headers()
            )
        except httpx.HTTPError as exc:
            yield ErrorEvent(message="OpenAI-compatible request failed", cause=exc)
            return

        try:
            if not response.is_success:
                await response.aread()
                yield ErrorEvent(
                    message=(
                        "OpenAI-compatible request failed: "
                        f"{response.status_code} {response.reason_phrase}"
                    ),
                    cause=response.text,
                )
                return

            async for event in self._decode(response, options):
                yield event
        except httpx.HTTPError as exc:
            yield ErrorEvent(message="OpenAI-compatible stream failed", cause=exc)
        finally:
            await response.aclose()
            if owns_client:
                await client.aclose()

    async def _decode(
        self, response: httpx.Response, options: StreamOptions
    ) -> AsyncIterator[StreamEvent]:
        tool_buffer: dict[int, _ToolAccumulator] = {}
        reasoning_segments: list[str] = []
        reasoning_done = False

        def reasoning_chunk(chunk: Any) -> ReasoningDeltaEvent | None:
            if not isinstance(chunk, str) or not chunk.strip():
                return None
            reasoning_segments.append(chunk.strip())
            return ReasoningDeltaEvent(text=chunk.strip())

        def reasoning_end() -> ReasoningEndEvent | None:
            nonlocal reasoning_done
            if reasoning_done or not reasoning_segments:
                return None
            reasoning_done = True
            return ReasoningEndEvent(metadata={"text": "".join(reasoning_segments)})

        def assistant_content(text: str) -> list[StreamEvent]:
            emitted: list[StreamEvent] = []
            reasoning, remainder = split_think_segments(text)
            for chunk in reasoning:
                event = reasoning_chunk(chunk)
                if event:
                    emitted.append(event)
            cleaned = remainder.lstrip() if reasoning else remainder
            if cleaned:
                emitted.append(DeltaEvent(text=cleaned))
            return emitted

        def flush_tool_calls() -> list[ToolCallEvent]:
            calls = [
                ToolCallEvent(
                    id=acc.id,
                    name=acc.name or UNKNOWN_TOOL_NAME,
                    arguments=parse_arguments(acc.args),
                    raw=acc.args,
                )
                for _, acc in sorted(tool_buffer.items())
            ]
            tool_buffer.clear()
            return calls

        async for line in self.iter_records(response, "\n", options):
            trimmed = line.strip()
            if not trimmed.startswith("data:"):
                continue
            payload = trimmed[5:].strip()
            if not payload:
                continue
            if payload == "[DONE]":
                for call in flush_tool_calls():
                    yield call
                end = reasoning_end()
                if end:
                    yield end
                yield EndEvent()
                return

            try:
                chunk = json.loads(payload)
            except json.JSONDecodeError as exc:
                yield ErrorEvent(
                    message="Failed to parse OpenAI-compatible payload", cause=exc
                )
                continue

            for notification in extract_notification_events(chunk):
                yield notification

            choices = chunk.get("choices") if isinstance(chunk, dict) else None
            choice = choices[0] if choices else {}
            delta = choice.get("delta") or {}

            reasoning_content = delta.get("reasoning_content")
            if isinstance(reasoning_content, list):
                pieces = [
                    p if isinstance(p, str) else p.get("text")
                    for p in reasoning_content
                    if isinstance(p, (str, dict))
                ]
            else:
                pieces = [reasoning_content]
            for piece in pieces:
                event = reasoning_chunk(piece)
                if event:
                    yield event

            content = delta.get("content")
            if isinstance(content, str):
                for event in assistant_content(content):
                    yield event
            elif isinstance(content, list):
                for item in content:
                    text = item if isinstance(item, str) else (
                        item.get("text") if isinstance(item, dict) else None
                    )
                    if isinstance(text, str):
                        for event in assistant_content(text):
                            yield event

            for call in delta.get("tool_calls") or []:
                index = call.get("index", 0)
                acc = tool_buffer.setdefault(index, _ToolAccumulator(id=call.get("id")))
                if call.get("id"):
                    acc.id = call["id"]
                function = call.get("function") or {}
                if function.get("name"):
                    acc.name = function["name"]
                if function.get("arguments"):
                    acc.args += function["arguments"]

            finish_reason = choice.get("finish_reason")
            if finish_reason == "tool_calls":
                for event in flush_tool_calls():
                    yield event
            elif finish_reason:
                end = reasoning_end()
                if end:
                    yield end
                yield EndEvent(reason=finish_reason, usage=chunk.get("usage"))
                return

        if options.cancelled:
            yield EndEvent(reason="cancelled")
            return

        # Body ended without [DONE]
        for call in flush_tool_calls():
            yield call
        end = reasoning_end()
        if end:
            yield end
        yield EndEvent(reason="eof")
