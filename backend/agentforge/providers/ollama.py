"""Adapter for a local Ollama server (`/api/chat`, newline-delimited JSON).

Some Ollama builds resend the whole message so far instead of a fragment,
so content is diffed against what was already emitted.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from agentforge.agent.constants import UNKNOWN_TOOL_NAME
from agentforge.agent.events import (
    DeltaEvent,
    EndEvent,
    ErrorEvent,
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

USAGE_FIELDS = (
    "total_duration",
    "load_duration",
    "eval_duration",
    "prompt_eval_duration",
    "eval_count",
    "prompt_eval_count",
)


def format_messages(messages: list[ChatMessage]) -> list[dict]:
    formatted = []
    for m in messages:
        role = "system" if m.role == "developer" else m.role
        if m.role == "assistant" and m.tool_call_id:
            formatted.append(
                {
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [
                        {
                            "function": {
                                "name": m.name or "",
                                "arguments": parse_arguments(m.content),
                            }
                        }
                    ],
                }
            )
            continue
        entry: dict[str, Any] = {"role": role, "content": m.content}
        if m.role == "tool" and m.name:
            entry["tool_name"] = m.name
        formatted.append(entry)
    return formatted


def format_tools(tools: list[dict] | None) -> list[dict] | None:
    if not tools:
        return None
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool.get("description"),
                "parameters": tool.get("parameters"),
            },
        }
        for tool in tools
    ]


def _common_prefix_length(a: str, b: str) -> int:
    limit = min(len(a), len(b))
    i = 0
    while i < limit and a[i] == b[i]:
        i += 1
    return i


class _ContentTracker:
    """Turns possibly-cumulative content chunks into fresh deltas."""

    def __init__(self) -> None:
        self.previous = ""

    def delta(self, content: str) -> str | None:
        if not self.previous:
            self.previous = content
            return content

        prefix = _common_prefix_length(self.previous, content)
        appended = content[prefix:]

        if prefix == 0:
            self.previous += content
            return content
        if prefix == len(content):
            # Nothing new
            self.previous = content
            return None
        if prefix == len(self.previous):
            self.previous = content
            return appended or None
        if appended:
            self.previous = self.previous[:prefix] + appended
            return appended
        self.previous = content
        return None


def _usage(chunk: dict) -> dict[str, Any] | None:
    usage = {
        k: chunk[k]
        for k in USAGE_FIELDS
        if isinstance(chunk.get(k), (int, float)) and not isinstance(chunk.get(k), bool)
    }
    return usage or None


class OllamaAdapter(HttpStreamingAdapter):
    name = "ollama"

    def __init__(
        self,
        config: ProviderConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config or ProviderConfig(name=self.name), client)

    @property
    def base_url(self) -> str:
        return (self.config.base_url or settings.OLLAMA_BASE_URL).rstrip("/")

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", **self.config.headers}
        api_key = self.config.api_key or settings.OLLAMA_API_KEY
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    async def list_models(self) -> list[str]:
        try:
            body = await self._get_json(f"{self.base_url}/api/tags", self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Could not list Ollama models: %s", exc)
            return []
        models = body.get("models") if isinstance(body, dict) else None
        return [
            m["name"]
            for m in models or []
            if isinstance(m, dict) and isinstance(m.get("name"), str)
        ]

    async def stream(self, options: StreamOptions) -> AsyncIterator[StreamEvent]:
        body: dict[str, Any] = {
            "model": options.model,
            "messages": format_messages(options.messages),
            "stream": True,
        }
        tools = format_tools(options.tools)
        if tools:
            body["tools"] = tools
        if options.response_format:
            body["format"] = options.response_format

        try:
            client, owns_client, response = await self._post_stream(
                f"{self.base_url}/api/chat", body, self._headers()
            )
        except httpx.HTTPError as exc:
            yield ErrorEvent(message="Failed to start Ollama chat stream", cause=exc)
            return

        try:
            if not response.is_success:
                await response.aread()
                yield ErrorEvent(
                    message=(
                        "Ollama request failed: "
                        f"{response.status_code} {response.reason_phrase}"
                    ),
                    cause=response.text,
                )
                return

            async for event in self._decode(response, options):
                yield event
        except httpx.HTTPError as exc:
            yield ErrorEvent(message="Ollama chat stream failed", cause=exc)
        finally:
            await response.aclose()
            if owns_client:
                await client.aclose()

    async def _decode(
        self, response: httpx.Response, options: StreamOptions
    ) -> AsyncIterator[StreamEvent]:
        tracker = _ContentTracker()
        emitted_tools: set[str] = set()

        async for line in self.iter_records(response, "\n", options):
            if not line.strip():
                continue
            try:
                chunk = json.loads(line)
            except json.JSONDecodeError as exc:
                yield ErrorEvent(message="Failed to parse Ollama payload", cause=exc)
                continue
            if not isinstance(chunk, dict):
                continue

            for notification in extract_notification_events(chunk):
                yield notification

            if isinstance(chunk.get("error"), str) and chunk["error"]:
                yield ErrorEvent(message=chunk["error"])
                continue

            message = chunk.get("message")
            if isinstance(message, dict):
                content = message.get("content")
                if isinstance(content, str) and content:
                    delta = tracker.delta(content)
                    if delta:
                        yield DeltaEvent(text=delta)

                for call in message.get("tool_calls") or []:
                    if not isinstance(call, dict):
                        continue
                    function = call.get("function") if isinstance(call.get("function"), dict) else {}
                    if call.get("id"):
                        key = f"id:{call['id']}"
                    else:
                        key = "fn:" + json.dumps(function, sort_keys=True, default=str)
                    if key in emitted_tools:
                        continue
                    emitted_tools.add(key)

                    arguments = function.get("arguments")
                    if isinstance(arguments, str):
                        arguments = parse_arguments(arguments)
                    yield ToolCallEvent(
                        id=call.get("id") if isinstance(call.get("id"), str) else None,
                        name=function.get("name") or UNKNOWN_TOOL_NAME,
                        arguments=arguments if isinstance(arguments, dict) else {},
                    )

            if chunk.get("done"):
                yield EndEvent(
                    reason=chunk.get("done_reason") if isinstance(chunk.get("done_reason"), str) else None,
                    usage=_usage(chunk),
                )
                return

        yield EndEvent(reason="cancelled" if options.cancelled else "eof")
