"""Transcript compaction policies.

A compactor only proposes a plan; the orchestrator decides when to ask,
fires the preCompact hook, and then applies the plan, which edits the
invocation's messages in place.
"""

from __future__ import annotations

import inspect
import logging
import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, Union

from agentforge.agent.constants import (
    COMPACTION_KEEP_LAST,
    COMPACTION_MAX_MESSAGES,
    ESTIMATED_CHARS_PER_TOKEN,
    ESTIMATED_TOKENS_PER_MESSAGE,
)
from agentforge.agent.state import ChatMessage

if TYPE_CHECKING:
    from agentforge.agent.invocation import AgentInvocation
    from agentforge.agent.state import AgentRuntimeDescriptor

logger = logging.getLogger(__name__)

TOOL_CONTENT_OMIT_THRESHOLD = 800
SUMMARY_MAX_LINES = 10
SUMMARY_LINE_MAX_CHARS = 240


@dataclass
class CompactionResult:
    removed_messages: int


@dataclass
class CompactionPlan:
    apply: Callable[[], Union[CompactionResult, Awaitable[CompactionResult]]]
    reason: str | None = None

    async def run(self) -> CompactionResult:
        result = self.apply()
        if inspect.isawaitable(result):
            result = await result
        return result


class TranscriptCompactor(Protocol):
    def plan(
        self, invocation: AgentInvocation, iteration: int
    ) -> CompactionPlan | None | Awaitable[CompactionPlan | None]: ...


CompactorSelector = Callable[
    ["AgentInvocation", "AgentRuntimeDescriptor"], "TranscriptCompactor | None"
]


def estimate_tokens(messages: list[ChatMessage]) -> int:
    """Rough token estimate: a fixed overhead per message plus chars / 4."""
    return sum(
        ESTIMATED_TOKENS_PER_MESSAGE
        + math.ceil(len(m.content or "") / ESTIMATED_CHARS_PER_TOKEN)
        for m in messages
    )


class SimpleTranscriptCompactor:
    """Drops the oldest non-system messages once the transcript exceeds max_messages.

    System messages and the most recent keep_last messages are never removed.
    """

    def __init__(
        self,
        max_messages: int = COMPACTION_MAX_MESSAGES,
        keep_last: int = COMPACTION_KEEP_LAST,
    ):
        self.max_messages = max_messages
        self.keep_last = keep_last

    def plan(self, invocation: AgentInvocation, iteration: int) -> CompactionPlan | None:
        messages = invocation.messages
        total = len(messages)
        if total <= self.max_messages:
            return None

        protected_from = max(0, total - self.keep_last)
        candidates = [
            i for i in range(protected_from) if messages[i].role != "system"
        ]
        count = min(total - self.max_messages, len(candidates))
        if count <= 0:
            return None

        def apply() -> CompactionResult:
            doomed = set(map(id, (messages[i] for i in candidates[:count])))
            before = len(messages)
            messages[:] = [m for m in messages if id(m) not in doomed]
            return CompactionResult(removed_messages=before - len(messages))

        return CompactionPlan(
            apply=apply,
            reason=(
                f"truncate {count} oldest messages "
                f"(limit {self.max_messages}; iteration {iteration})"
            ),
        )


def naive_summarize(messages: list[ChatMessage]) -> str:
    lines = []
    for m in messages:
        if m.role == "tool" or not m.content:
            continue
        text = re.sub(r"\s+", " ", m.content).strip()
        if not text:
            continue
        suffix = "..." if len(text) > SUMMARY_LINE_MAX_CHARS else ""
        lines.append(f"- {m.role}: {text[:SUMMARY_LINE_MAX_CHARS]}{suffix}")
        if len(lines) >= SUMMARY_MAX_LINES:
            break
    return "\n".join(lines)


def _human_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def take_tail_with_tool_pairs(
    messages: list[ChatMessage], keep_tail: int
) -> list[ChatMessage]:
    """Take the last keep_tail messages, pulling in the other half of any tool call pair."""
    picked: set[int] = set()
    index = len(messages) - 1
    while index >= 0 and len(picked) < keep_tail:
        message = messages[index]
        picked.add(index)
        if message.tool_call_id and message.role in ("assistant", "tool"):
            partner_role = "tool" if message.role == "assistant" else "assistant"
            for j in range(index - 1, -1, -1):
                candidate = messages[j]
                if (
                    candidate.role == partner_role
                    and candidate.tool_call_id == message.tool_call_id
                ):
                    picked.add(j)
                    break
        index -= 1
    return [messages[i] for i in sorted(picked)]


class TokenBudgetCompactor:
    """Keeps the estimated transcript size under a token budget.

    Old tool output is replaced by a placeholder first; if that is not enough
    the head of the transcript is replaced by a short summary; as a last
    resort only system messages and the tail survive.
    """

    def __init__(
        self,
        token_budget: int,
        keep_tail: int = 6,
        summarize: Callable[[list[ChatMessage]], str] = naive_summarize,
    ):
        self.token_budget = token_budget
        self.keep_tail = keep_tail
        self.summarize = summarize

    def plan(self, invocation: AgentInvocation, iteration: int) -> CompactionPlan | None:
        tokens = estimate_tokens(invocation.messages)
        if tokens <= self.token_budget:
            return None

        def apply() -> CompactionResult:
            before = len(invocation.messages)
            self._compact(invocation.messages)
            return CompactionResult(removed_messages=max(0, before - len(invocation.messages)))

        return CompactionPlan(
            apply=apply,
            reason=(
                f"history tokens {tokens} exceeded budget {self.token_budget} "
                f"on iteration {iteration}"
            ),
        )

    def _compact(self, messages: list[ChatMessage]) -> None:
        system = [m for m in messages if m.role == "system"]
        others = [m for m in messages if m.role != "system"]
        tail = take_tail_with_tool_pairs(others, self.keep_tail)
        tail_ids = set(map(id, tail))
        head = [m for m in others if id(m) not in tail_ids]

        for m in head:
            if m.role == "tool" and len(m.content) > TOOL_CONTENT_OMIT_THRESHOLD:
                size = len(m.content.encode("utf-8"))
                m.content = f"[tool:{m.name or 'unnamed'} {_human_bytes(size)} omitted]"

        assembled = system + head + tail
        if estimate_tokens(assembled) > self.token_budget:
            summary = self.summarize(head).strip()
            content = (
                f"Summary of earlier context:\n{summary}"
                if summary
                else "[summary omitted: previous context retained only as tail window]"
            )
            assembled = system + [ChatMessage(role="assistant", content=content)] + tail

        if estimate_tokens(assembled) > self.token_budget:
            assembled = system + tail

        messages[:] = assembled


def compactor_for(
    compactors: dict[str, Any], default: Any = None
) -> CompactorSelector:
    """Select a compactor per agent id, falling back to a default."""

    def select(invocation: AgentInvocation, descriptor: AgentRuntimeDescriptor):
        return compactors.get(descriptor.id, compactors.get(invocation.id, default))

    return select
