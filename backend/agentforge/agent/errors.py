"""Exception types raised by the agent runtime.

Recoverable tool failures never surface as exceptions: the orchestrator folds
them into the transcript. Everything defined here either aborts a tool call
or unwinds the whole run.
"""

from __future__ import annotations

from typing import Any


class ToolValidationError(ValueError):
    """Tool arguments, result envelope, or structured data failed validation."""

    def __init__(
        self,
        message: str,
        tool_name: str | None = None,
        context: str | None = None,
        issues: list[Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.context = context
        self.issues = issues or []


class UnknownToolError(LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name

    def __str__(self) -> str:
        return self.args[0]


class HookDispatchError(RuntimeError):
    """A hook listener failed with something that is not an exception."""

    def __init__(self, event: str, message: str, cause: Any = None) -> None:
        super().__init__(f'Hook "{event}" failed: {message}')
        self.event = event
        self.cause = cause


class HookBlockedError(RuntimeError):
    """A listener blocked a critical session-level event."""

    def __init__(self, event: str, reason: str | None = None) -> None:
        super().__init__(reason or f'Hook "{event}" blocked execution.')
        self.event = event
        self.reason = reason


class MissingAgentRunnerError(RuntimeError):
    pass


class SubagentError(ValueError):
    pass


class AgentCancelledError(RuntimeError):
    pass
