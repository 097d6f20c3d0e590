"""Adapter for the Anthropic Messages API.

Wire format: SSE blocks separated by a blank line, each with an `event:` and
a `data:` line. Tool input arrives as `input_json_delta` fragments per
content block and is emitted once that block stops.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from agentforge.agent.constants import (
    ANTHROPIC_API_VERSION,
    ANTHROPIC_MAX_TOKENS,
    UNKNOWN_TOOL_NAME,
)
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


@dataclass
class _ToolState:
    id: str | None = None
    name: str | None = None
    args: str = ""


@dataclass
class _ReasoningState:
    segments: list[str] = field(default_factory=list)


def _block_list(content: Any) -> list[dict]:
    if isinstance(content, list):
        return content
    return [{"type": "text", "text": content}]


def format_messages(messages: list[ChatMessage]) -> tuple[str | None, list[dict]]:
    """Split out system text and convert the transcript to Messages API turns.

    Consecutive turns with the same role are merged into one turn of blocks.
    """
    system_parts: list[str] = []
    turns: list[dict] = []

    for m in messages:
        if m.role in ("system", "developer"):
            system_parts.append(m.content)
            continue

        if m.role == "assistant" and m.tool_call_id:
            turn = {
                "role": "assistant",
                "content": [
                    {
                        "type": "tool_use",
                        "id": m.tool_call_id,
                        "name": m.name or UNKNOWN_TOOL_NAME,
                        "input": parse_arguments(m.content),
                    }
                ],
            }
        elif m.role == "tool":
            turn = {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": m.tool_call_id or m.name or "tool",
                        "content": m.content,
                    }
                ],
            }
        else:
            turn = {"role": m.role, "content": m.content}

        if turns and turns[-1]["role"] == turn["role"]:
            turns[-1]["content"] = _block_list(turns[-1]["content"]) + _block_list(
                turn["content"]
            )
        else:
            turns.append(turn)

    system = "\n\n".join(p for p in system_parts if p) or None
    return system, turns


def format_tools(tools: list[dict] | None) -> list[dict] | None:
    if not tools:
        return None
    return [
        {
            "name": tool["name"],
            "description": tool.get("description") or "",
            "input_schema": tool.get("parameters") or {"type": "object"},
        }
        for tool in tools
    ]


def _parse_sse_block(block: str) -> tuple[str | None, str]:
    event_name = None
    data_lines = []
    for line in block.splitlines():
        if line.startswith("event:"):
            event_name = line[6:].strip()
        elif line.startswith("data:"):
            data_lines.append(line[5:].strip())
    return event_name, "\n".join(data_lines)


class AnthropicAdapter(HttpStreamingAdapter):
    name = "anthropic"

    def __init__(
        self,
        config: ProviderConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config or ProviderConfig(name=self.name), client)

    @property
    def base_url(self) -> str:
        return (self.config.base_url or settings.ANTHROPIC_BASE_URL).rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.config.api_key or settings.ANTHROPIC_API_KEY,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "content-type": "application/json",
            **self.config.headers,
        }

    async def stream(self, options: StreamOptions) -> AsyncIterator[StreamEvent]:
        system, turns = format_messages(options.messages)
        body: dict[str, Any] = {
            "model": options.model,
            "max_tokens": ANTHROPIC_MAX_TOKENS,
            "messages": turns,
            "stream": True,
        }
        if system:
            body["system"] = system
        tools = format_tools(options.tools)
        if tools:
            body["tools"] = tools
        if options.metadata and isinstance(options.metadata.get("user_id"), str):
            body["metadata"] = {"user_id": options.metadata["user_id"]}

        try:
            client, owns_client, response = await self._post_stream(
                f"{self.base_url}/v1/messages", body, self._headers()
            )
        except httpx.HTTPError as exc:
            yield ErrorEvent(message="Anthropic request failed", cause=exc)
            return

        try:
            if not response.is_success:
                await response.aread()
                yield ErrorEvent(
                    message=(
                        "Anthropic request failed: "
                        f"{response.status_code} {response.reason_phrase}"
                    ),
                    cause=response.text,
                )
                return

            async for event in self._decode(response, options):
                yield event
        except httpx.HTTPError as exc:
            yield ErrorEvent(message="Anthropic stream failed", cause=exc)
        finally:
            await response.aclose()
            if owns_client:
                await client.aclose()

    async def _decode(
        self, response: httpx.Response, options: StreamOptions
    ) -> AsyncIterator[StreamEvent]:
        tools: dict[int, _ToolState] = {}
        reasoning: dict[int, _ReasoningState] = {}
        response_id: str | None = None
        stop_reason: str | None = None
        usage: dict[str, Any] = {}

        def finish(reason: str | None) -> EndEvent:
            return EndEvent(
                reason=reason,
                usage=usage or None,
                response_id=response_id,
            )

        async for block in self.iter_records(response, "\n\n", options):
            event_name, data = _parse_sse_block(block.replace("\r\n", "\n"))
            if not data:
                continue
            if data == "[DONE]":
                yield finish(stop_reason)
                return

            try:
                payload = json.loads(data)
            except json.JSONDecodeError as exc:
                yield ErrorEvent(message="Failed to parse Anthropic payload", cause=exc)
                continue

            for notification in extract_notification_events(payload):
                yield notification

            kind = payload.get("type") or event_name
            index = payload.get("index", 0)

            if kind == "message_start":
                message = payload.get("message") or {}
                response_id = message.get("id")
                usage.update(message.get("usage") or {})

            elif kind == "content_block_start":
                content_block = payload.get("content_block") or {}
                block_type = content_block.get("type")
                if block_type == "tool_use":
                    tools[index] = _ToolState(
                        id=content_block.get("id"), name=content_block.get("name")
                    )
                elif block_type == "thinking":
                    reasoning[index] = _ReasoningState()
                elif block_type == "text" and content_block.get("text"):
                    yield DeltaEvent(text=content_block["text"])

            elif kind == "content_block_delta":
                delta = payload.get("delta") or {}
                delta_type = delta.get("type")
                if delta_type == "text_delta" and delta.get("text"):
                    yield DeltaEvent(text=delta["text"])
                elif delta_type == "thinking_delta" and delta.get("thinking"):
                    state = reasoning.setdefault(index, _ReasoningState())
                    state.segments.append(delta["thinking"])
                    yield ReasoningDeltaEvent(text=delta["thinking"])
                elif delta_type == "input_json_delta":
                    state = tools.setdefault(index, _ToolState())
                    state.args += delta.get("partial_json") or ""

            elif kind == "content_block_stop":
                if index in tools:
                    state = tools.pop(index)
                    yield ToolCallEvent(
                        id=state.id,
                        name=state.name or UNKNOWN_TOOL_NAME,
                        arguments=parse_arguments(state.args),
                        raw=state.args,
                    )
                elif index in reasoning:
                    state = reasoning.pop(index)
                    text = "".join(state.segments)
                    if text:
                        yield ReasoningEndEvent(
                            metadata={"text": text}, response_id=response_id
                        )

            elif kind == "message_delta":
                stop_reason = (payload.get("delta") or {}).get("stop_reason") or stop_reason
                usage.update(payload.get("usage") or {})

            elif kind == "message_stop":
                yield finish(stop_reason)
                return

            elif kind == "error":
                error = payload.get("error") or {}
                yield ErrorEvent(
                    message=error.get("message") or "Anthropic stream error",
                    cause=error,
                )

        yield finish("cancelled" if options.cancelled else stop_reason or "eof")
