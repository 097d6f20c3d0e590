"""Console rendering of StreamEvents as they arrive."""

from __future__ import annotations

import json
import sys
from typing import Any, TextIO

from agentforge.agent.events import StreamEvent


class StreamRenderer:
    """Writes a human-readable view of the event stream to a text stream.

    Consecutive events from the same agent share one `[agent]` prefix; a new
    prefix line starts whenever the emitting agent changes.
    """

    def __init__(self, out: TextIO | None = None, show_reasoning: bool = False):
        self.out = out or sys.stdout
        self.show_reasoning = show_reasoning
        self._current_agent: str | None = None
        self._line_open = False
        # True while only the agent prefix has been written on the open line
        self._bare_prefix = False

    def _prefix(self, event: StreamEvent) -> None:
        agent_id = getattr(event, "agent_id", None)
        if agent_id and agent_id != self._current_agent:
            if self._line_open:
                self.out.write("\n")
            self.out.write(f"[{agent_id}] ")
            self._current_agent = agent_id
            self._line_open = True
            self._bare_prefix = True

    def _line(self, text: str) -> None:
        if self._line_open and not self._bare_prefix:
            self.out.write("\n")
        self.out.write(text + "\n")
        self._line_open = False
        self._bare_prefix = False

    def render(self, event: StreamEvent) -> None:
        self._prefix(event)
        kind = event.type

        if kind == "delta":
            self.out.write(event.text)
            self._line_open = True
            self._bare_prefix = False
        elif kind == "reasoning_delta":
            if self.show_reasoning:
                self.out.write(event.text)
                self._line_open = True
                self._bare_prefix = False
        elif kind == "reasoning_end":
            if self.show_reasoning:
                self._line("")
        elif kind == "tool_call":
            self._line(f"[tool_call] {event.name} {_compact_json(event.arguments)}")
        elif kind == "tool_result":
            schema = getattr(event.result, "schema", None)
            content = getattr(event.result, "content", event.result)
            label = f"[tool_result] <{schema}>" if schema else "[tool_result]"
            self._line(f"{label} {event.name}: {content}")
        elif kind == "notification":
            payload = event.payload
            text = payload if isinstance(payload, str) else _compact_json(payload)
            self._line(f"[notification] {text}")
        elif kind == "error":
            self._line(f"[error] {event.message}")
        elif kind == "end":
            self._line("[done]" + (f" ({event.reason})" if event.reason else ""))
        self.out.flush()

    def flush(self) -> None:
        if self._line_open:
            self.out.write("\n")
            self._line_open = False
        self._bare_prefix = False
        self._current_agent = None
        self.out.flush()


def _compact_json(value: Any) -> str:
    try:
        return json.dumps(value, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)
