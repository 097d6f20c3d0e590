from __future__ import annotations

import asyncio

from agentforge.agent.errors import AgentCancelledError


class CancellationToken:
    """Cooperative cancellation shared by one agent run and its subagents."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise AgentCancelledError(self.reason or "Agent run was cancelled.")
