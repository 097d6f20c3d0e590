"""Provider adapter contract and shared HTTP streaming helpers.

An adapter turns one model call into an async generator of StreamEvents. It
never raises for protocol problems: non-2xx responses, dropped connections
and undecodable records all become `error` events. Only stream creation is
retried; once bytes start flowing, failures are reported, not retried.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator

import httpx

from agentforge.agent.constants import (
    HTTP_CONNECT_TIMEOUT_SECONDS,
    LLM_MAX_RETRIES,
    LLM_RETRY_BASE_DELAY_SECONDS,
    LLM_RETRY_MAX_DELAY_SECONDS,
    LLM_RETRYABLE_STATUS_CODES,
)
from agentforge.agent.events import StreamEvent
from agentforge.agent.state import ChatMessage
from agentforge.config import settings

if TYPE_CHECKING:
    from agentforge.agent.cancellation import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class StreamOptions:
    model: str
    messages: list[ChatMessage]
    tools: list[dict] | None = None
    response_format: dict | None = None
    metadata: dict[str, Any] | None = None
    previous_response_id: str | None = None
    cancellation: CancellationToken | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancellation is not None and self.cancellation.cancelled


@dataclass
class ProviderConfig:
    name: str
    base_url: str | None = None
    api_key: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


class ProviderAdapter(ABC):
    name: str

    @abstractmethod
    def stream(self, options: StreamOptions) -> AsyncIterator[StreamEvent]:
        """Yield canonical StreamEvents for one model call."""
        ...

    async def list_models(self) -> list[str]:
        return []


def retry_delay(attempt: int) -> float:
    return min(
        LLM_RETRY_BASE_DELAY_SECONDS * (2 ** (attempt - 1)),
        LLM_RETRY_MAX_DELAY_SECONDS,
    )


def _is_retryable(exc: Exception) -> bool:
    """Determine if an exception is transient and worth retrying."""
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))


class HttpStreamingAdapter(ProviderAdapter):
    """Base for adapters speaking to a streaming HTTP endpoint with httpx.

    A client passed to the constructor is reused and never closed here;
    otherwise a client is created for each call and closed afterwards.
    """

    def __init__(
        self,
        config: ProviderConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._client = client

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(
                settings.HTTP_TIMEOUT_SECONDS, connect=HTTP_CONNECT_TIMEOUT_SECONDS
            )
        )

    async def _send(
        self, client: httpx.AsyncClient, request: httpx.Request
    ) -> httpx.Response:
        """Send a streaming request, retrying transient failures.

        Only the initial handshake is retried. The caller owns the returned
        response and must close it.
        """
        for attempt in range(1, LLM_MAX_RETRIES + 1):
            try:
                response = await client.send(request, stream=True)
            except Exception as exc:
                if attempt < LLM_MAX_RETRIES and _is_retryable(exc):
                    delay = retry_delay(attempt)
                    logger.warning(
                        "%s stream creation attempt %d/%d failed (%s), retrying in %.1fs",
                        self.name,
                        attempt,
                        LLM_MAX_RETRIES,
                        exc,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise

            if (
                response.status_code in LLM_RETRYABLE_STATUS_CODES
                and attempt < LLM_MAX_RETRIES
            ):
                await response.aclose()
                delay = retry_delay(attempt)
                logger.warning(
                    "%s returned %d on attempt %d/%d, retrying in %.1fs",
                    self.name,
                    response.status_code,
                    attempt,
                    LLM_MAX_RETRIES,
                    delay,
                )
                await asyncio.sleep(delay)
                continue
            return response

        raise RuntimeError("unreachable")  # pragma: no cover

    @staticmethod
    async def iter_records(
        response: httpx.Response,
        separator: str,
        options: StreamOptions,
    ) -> AsyncIterator[str]:
        """Split the response body into complete records.

        Text after the last separator stays buffered until more bytes arrive;
        whatever is left when the body ends is yielded as a final record.
        A pending read is abandoned as soon as the cancellation token fires.
        """
        buffer = ""
        chunks = response.aiter_text()
        while True:
            chunk = await _next_chunk(chunks, options.cancellation)
            if options.cancelled:
                return
            if chunk is None:
                break
            buffer += chunk
            parts = buffer.split(separator)
            buffer = parts.pop()
            for part in parts:
                yield part
        if buffer.strip():
            yield buffer

    async def _post_stream(
        self,
        url: str,
        body: dict,
        headers: dict[str, str],
    ) -> tuple[httpx.AsyncClient, bool, httpx.Response]:
        client = self._client or self._new_client()
        owns_client = self._client is None
        request = client.build_request("POST", url, json=body, headers=headers)
        try:
            response = await self._send(client, request)
        except Exception:
            if owns_client:
                await client.aclose()
            raise
        return client, owns_client, response

    async def _get_json(self, url: str, headers: dict[str, str]) -> Any:
        client = self._client or self._new_client()
        try:
            response = await client.get(url, headers=headers)
            response.raise_for_status()
            return response.json()
        finally:
            if self._client is None:
                await client.aclose()


async def _next_chunk(
    chunks: AsyncIterator[str], cancellation: CancellationToken | None
) -> str | None:
    """Await the next body chunk; None when the body ends or the run is cancelled."""
    if cancellation is None:
        return await anext(chunks, None)
    read = asyncio.ensure_future(anext(chunks, None))
    cancelled = asyncio.ensure_future(cancellation.wait())
    done, _ = await asyncio.wait({read, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    if read in done:
        cancelled.cancel()
        return read.result()
    read.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await read
    return None


def parse_arguments(raw: str | None) -> dict:
    """Parse accumulated tool-call arguments; non-objects become {"input": value}."""
    text = raw or "{}"
    try:
        parsed: Any = json.loads(text)
    except json.JSONDecodeError:
        parsed = text
    return parsed if isinstance(parsed, dict) else {"input": parsed}
