"""Adapter for the OpenAI Responses API, using the OpenAI SDK.

Retries transient failures (429 rate limit, 5xx server errors, timeouts,
connection errors) with exponential backoff. Does NOT retry mid-stream; only
the initial stream creation is retried. Function call arguments are buffered
per output index and emitted once the SDK reports them done.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI, OpenAIError

from agentforge.agent.constants import (
    HTTP_CONNECT_TIMEOUT_SECONDS,
    LLM_MAX_RETRIES,
    LLM_RETRYABLE_STATUS_CODES,
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
    ProviderAdapter,
    ProviderConfig,
    StreamOptions,
    parse_arguments,
    retry_delay,
)
from agentforge.providers.notifications import extract_notification_events

logger = logging.getLogger(__name__)

_REASONING_DELTA_TYPES = {
    "response.reasoning_summary_text.delta",
    "response.reasoning_text.delta",
}


@dataclass
class _ToolAccumulator:
    arguments: str = ""
    call_id: str | None = None
    name: str | None = None
    emitted: bool = False


def _is_retryable(exc: Exception) -> bool:
    """Determine if an exception is transient and worth retrying."""
    if isinstance(exc, APITimeoutError):
        return True
    if isinstance(exc, APIConnectionError):
        return True
    if isinstance(exc, APIStatusError) and exc.status_code in LLM_RETRYABLE_STATUS_CODES:
        return True
    return False


def _to_payload(event: Any) -> dict:
    if isinstance(event, dict):
        return event
    if hasattr(event, "model_dump"):
        return event.model_dump()
    return dict(vars(event))


def format_input(messages: list[ChatMessage]) -> list[dict]:
    items = []
    for m in messages:
        if m.role == "tool":
            items.append(
                {
                    "type": "function_call_output",
                    "call_id": m.tool_call_id or m.name or "tool",
                    "output": m.content,
                }
            )
        elif m.role == "assistant" and m.tool_call_id:
            items.append(
                {
                    "type": "function_call",
                    "call_id": m.tool_call_id,
                    "name": m.name or UNKNOWN_TOOL_NAME,
                    "arguments": m.content,
                }
            )
        else:
            items.append({"type": "message", "role": m.role, "content": m.content})
    return items


def format_tools(tools: list[dict] | None) -> list[dict] | None:
    if not tools:
        return None
    return [
        {
            "type": "function",
            "name": tool["name"],
            "description": tool.get("description"),
            "parameters": tool.get("parameters"),
            "strict": False,
        }
        for tool in tools
    ]


def format_metadata(metadata: dict[str, Any] | None) -> dict[str, str] | None:
    if not metadata:
        return None
    return {k: str(v) for k, v in metadata.items() if v is not None}


class OpenAIAdapter(ProviderAdapter):
    name = "openai"

    def __init__(
        self,
        config: ProviderConfig | None = None,
        client: AsyncOpenAI | Any | None = None,
    ) -> None:
        self.config = config or ProviderConfig(name=self.name)
        self._client = client

    def get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.config.api_key or settings.OPENAI_API_KEY or None,
                base_url=self.config.base_url or settings.OPENAI_BASE_URL,
                default_headers=self.config.headers or None,
                timeout=httpx.Timeout(
                    settings.HTTP_TIMEOUT_SECONDS, connect=HTTP_CONNECT_TIMEOUT_SECONDS
                ),
            )
        return self._client

    async def list_models(self) -> list[str]:
        try:
            page = await self.get_client().models.list()
        except OpenAIError as exc:
            logger.warning("Could not list OpenAI models: %s", exc)
            return []
        return [model.id for model in page.data]

    def _params(self, options: StreamOptions) -> dict:
        params: dict[str, Any] = {
            "model": options.model,
            "input": format_input(options.messages),
            "stream": True,
        }
        tools = format_tools(options.tools)
        if tools:
            params["tools"] = tools
        metadata = format_metadata(options.metadata)
        if metadata:
            params["metadata"] = metadata
        if options.previous_response_id:
            params["previous_response_id"] = options.previous_response_id
        if options.response_format:
            params["text"] = {"format": options.response_format}
        return params

    async def _create_stream(self, params: dict):
        client = self.get_client()

        # Retry only the stream creation (initial HTTP handshake)
        for attempt in range(1, LLM_MAX_RETRIES + 1):
            try:
                return await client.responses.create(**params)
            except Exception as exc:
                if attempt < LLM_MAX_RETRIES and _is_retryable(exc):
                    delay = retry_delay(attempt)
                    logger.warning(
                        "OpenAI stream creation attempt %d/%d failed (%s), retrying in %.1fs",
                        attempt,
                        LLM_MAX_RETRIES,
                        exc,
                        delay,
                    )
                    await asyncio.sleep(delay)
                else:
                    raise

    async def stream(self, options: StreamOptions) -> AsyncIterator[StreamEvent]:
        try:
            stream = await self._create_stream(self._params(options))
        except APIStatusError as exc:
            yield ErrorEvent(
                message=f"OpenAI request failed: {exc.status_code} {exc.message}",
                cause=exc,
            )
            return
        except OpenAIError as exc:
            yield ErrorEvent(message="Failed to start OpenAI response stream", cause=exc)
            return

        tools: dict[int, _ToolAccumulator] = {}
        reasoning_segments: list[str] = []
        reasoning_done = False
        response_id: str | None = None
        end_reason: str | None = None
        usage: dict[str, Any] | None = None

        def reasoning_end() -> ReasoningEndEvent | None:
            nonlocal reasoning_done
            if reasoning_done or not reasoning_segments:
                return None
            reasoning_done = True
            return ReasoningEndEvent(
                metadata={"text": "".join(reasoning_segments)}, response_id=response_id
            )

        def emit_tool(acc: _ToolAccumulator, fallback: dict) -> ToolCallEvent:
            acc.emitted = True
            raw = acc.arguments or fallback.get("arguments") or ""
            return ToolCallEvent(
                id=acc.call_id or fallback.get("call_id") or fallback.get("item_id"),
                name=acc.name or fallback.get("name") or UNKNOWN_TOOL_NAME,
                arguments=parse_arguments(raw),
                raw=raw,
            )

        try:
            async for raw_event in stream:
                if options.cancelled:
                    close = getattr(stream, "close", None)
                    if close is not None:
                        await close()
                    yield EndEvent(reason="cancelled", response_id=response_id)
                    return

                event = _to_payload(raw_event)
                kind = event.get("type")

                if kind == "response.created":
                    response_id = (event.get("response") or {}).get("id") or response_id

                for notification in extract_notification_events(event):
                    yield notification

                index = event.get("output_index")
                index = index if isinstance(index, int) else -1

                if kind == "response.output_item.added":
                    item = event.get("item") or {}
                    if item.get("type") == "function_call":
                        tools[index] = _ToolAccumulator(
                            arguments=item.get("arguments") or "",
                            call_id=item.get("call_id"),
                            name=item.get("name"),
                        )

                elif kind == "response.function_call_arguments.delta":
                    acc = tools.setdefault(index, _ToolAccumulator())
                    acc.arguments += event.get("delta") or ""

                elif kind == "response.function_call_arguments.done":
                    acc = tools.setdefault(index, _ToolAccumulator())
                    if isinstance(event.get("arguments"), str):
                        acc.arguments = event["arguments"]
                    if not acc.emitted:
                        yield emit_tool(acc, event)

                elif kind == "response.output_item.done":
                    item = event.get("item") or {}
                    if item.get("type") == "function_call":
                        acc = tools.setdefault(index, _ToolAccumulator())
                        if not acc.emitted:
                            yield emit_tool(acc, item)
                    elif item.get("type") == "reasoning":
                        end = reasoning_end()
                        if end:
                            yield end

                elif kind == "response.output_text.delta":
                    if event.get("delta"):
                        yield DeltaEvent(text=event["delta"])

                elif kind in _REASONING_DELTA_TYPES:
                    text = event.get("delta")
                    if isinstance(text, str) and text:
                        reasoning_segments.append(text)
                        yield ReasoningDeltaEvent(text=text)

                elif kind in ("response.completed", "response.incomplete"):
                    response = event.get("response") or {}
                    response_id = response.get("id") or response_id
                    usage = response.get("usage") or usage
                    end_reason = response.get("status") or end_reason

                elif kind == "response.failed":
                    response = event.get("response") or {}
                    error = response.get("error") or {}
                    yield ErrorEvent(
                        message=error.get("message") or "OpenAI response failed",
                        cause=error,
                    )
                    end_reason = "failed"

                elif kind == "error":
                    yield ErrorEvent(
                        message=event.get("message") or "OpenAI stream error",
                        cause=event,
                    )
        except OpenAIError as exc:
            yield ErrorEvent(message="OpenAI response stream failed", cause=exc)
            return

        end = reasoning_end()
        if end:
            yield end
        yield EndEvent(reason=end_reason, usage=usage, response_id=response_id)
