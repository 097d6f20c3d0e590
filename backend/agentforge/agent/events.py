"""StreamEvent — the canonical event types produced by provider adapters.

Every adapter decodes its wire format into these classes and nothing else
crosses the adapter/orchestrator boundary. The orchestrator also forwards
each event to the stream renderer, tagged with the emitting agent's id.

Known types:
    delta            — assistant text fragment: text
    reasoning_delta  — model reasoning fragment: text
    reasoning_end    — reasoning finished: metadata={"text": str, ...}
    tool_call        — complete tool call: id, name, arguments (dict)
    tool_result      — executed tool result: name, result (ToolResult)
    notification     — side-channel message: payload, metadata
    error            — non-fatal protocol error: message, cause
    end              — terminal event: reason, usage, response_id
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, ClassVar


class StreamEvent:
    type: ClassVar[str]

    def with_agent(self, agent_id: str):
        return dataclasses.replace(self, agent_id=agent_id)

    def to_dict(self) -> dict:
        data = {
            k: v
            for k, v in dataclasses.asdict(self).items()
            if v is not None and k != "cause"
        }
        return {"type": self.type, **data}


@dataclass
class DeltaEvent(StreamEvent):
    type: ClassVar[str] = "delta"
    text: str
    agent_id: str | None = None


@dataclass
class ReasoningDeltaEvent(StreamEvent):
    type: ClassVar[str] = "reasoning_delta"
    text: str
    id: str | None = None
    agent_id: str | None = None


@dataclass
class ReasoningEndEvent(StreamEvent):
    type: ClassVar[str] = "reasoning_end"
    metadata: dict[str, Any] = field(default_factory=dict)
    response_id: str | None = None
    agent_id: str | None = None


@dataclass
class ToolCallEvent(StreamEvent):
    type: ClassVar[str] = "tool_call"
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    raw: str | None = None
    agent_id: str | None = None


@dataclass
class ToolResultEvent(StreamEvent):
    type: ClassVar[str] = "tool_result"
    name: str
    result: Any
    id: str | None = None
    agent_id: str | None = None


@dataclass
class NotificationEvent(StreamEvent):
    type: ClassVar[str] = "notification"
    payload: Any
    metadata: dict[str, Any] | None = None
    agent_id: str | None = None


@dataclass
class ErrorEvent(StreamEvent):
    type: ClassVar[str] = "error"
    message: str
    cause: Any = None
    agent_id: str | None = None


@dataclass
class EndEvent(StreamEvent):
    type: ClassVar[str] = "end"
    reason: str | None = None
    usage: dict[str, Any] | None = None
    response_id: str | None = None
    agent_id: str | None = None
