"""Hook bus — ordered, short-circuiting extension points around the agent loop.

Listeners for one event run strictly in registration order. The first
listener returning a block response, or raising, stops dispatch; the bus
reports that outcome in a HookDispatchResult instead of raising, so each call
site decides whether a block or failure is fatal.

Listener results:
    anything               — recorded in results, dispatch continues
    block_hook(reason)     — dispatch stops, result.blocked is set
    continue_hook(*msgs)   — "stop" only: msgs are appended and another turn
                             runs; an empty continue ends the run as usual
"""

from __future__ import annotations

import importlib
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from agentforge.agent.errors import (
    HookBlockedError,
    HookDispatchError,
    MissingAgentRunnerError,
)
from agentforge.agent.state import ChatMessage, PackedContext

if TYPE_CHECKING:
    from agentforge.agent.events import ErrorEvent, NotificationEvent, ToolCallEvent
    from agentforge.agent.tool_registry import ToolResult

logger = logging.getLogger(__name__)


class HookEvent(str, Enum):
    BEFORE_CONTEXT_PACK = "beforeContextPack"
    AFTER_CONTEXT_PACK = "afterContextPack"
    SESSION_START = "sessionStart"
    USER_PROMPT_SUBMIT = "userPromptSubmit"
    SESSION_END = "sessionEnd"
    BEFORE_AGENT_START = "beforeAgentStart"
    AFTER_AGENT_COMPLETE = "afterAgentComplete"
    ON_AGENT_ERROR = "onAgentError"
    BEFORE_MODEL_CALL = "beforeModelCall"
    PRE_COMPACT = "preCompact"
    PRE_TOOL_USE = "preToolUse"
    BEFORE_SPAWN_SUBAGENT = "beforeSpawnSubagent"
    POST_TOOL_USE = "postToolUse"
    NOTIFICATION = "notification"
    ON_ERROR = "onError"
    STOP = "stop"
    SUBAGENT_STOP = "subagentStop"


# ── Session payloads ─────────────────────────────────────────────


@dataclass
class SessionMetadata:
    id: str
    started_at: str
    prompt: str
    provider: str
    model: str
    trace_path: str | None = None


@dataclass
class ContextPackStartPayload:
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class ContextPackedPayload:
    context: PackedContext


@dataclass
class SessionStartPayload:
    metadata: SessionMetadata
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class UserPromptSubmitPayload:
    metadata: SessionMetadata
    prompt: str
    history_length: int
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionEndPayload:
    metadata: SessionMetadata
    status: str  # "success" | "error"
    duration_ms: int
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None


# ── Agent payloads ───────────────────────────────────────────────


@dataclass
class AgentMetadata:
    id: str
    depth: int
    is_root: bool
    system_prompt: str
    tools: list[str]
    parent_id: str | None = None
    model: str | None = None
    provider: str | None = None


@dataclass
class AgentContextSummary:
    total_bytes: int
    file_count: int


@dataclass
class AgentLifecyclePayload:
    metadata: AgentMetadata
    prompt: str
    context: AgentContextSummary
    history_length: int


@dataclass
class AgentIterationPayload(AgentLifecyclePayload):
    iteration: int
    messages: list[ChatMessage]


@dataclass
class AgentCompactionPayload(AgentIterationPayload):
    reason: str | None = None


@dataclass
class AgentCompletionPayload(AgentLifecyclePayload):
    messages: list[ChatMessage]
    iterations: int


@dataclass
class AgentToolCallPayload(AgentLifecyclePayload):
    iteration: int
    event: ToolCallEvent


@dataclass
class AgentToolResultPayload(AgentToolCallPayload):
    result: ToolResult


@dataclass
class AgentStreamErrorPayload(AgentLifecyclePayload):
    iteration: int
    error: ErrorEvent


@dataclass
class AgentErrorPayload(AgentLifecyclePayload):
    error: dict[str, Any]  # {"message", "stack", "cause"}


@dataclass
class AgentNotificationPayload(AgentLifecyclePayload):
    iteration: int
    event: NotificationEvent


# ── Subagent delegation ──────────────────────────────────────────


@dataclass
class SpawnSubagentTarget:
    id: str
    model: str
    provider: str
    metadata: dict[str, Any] | None = None


@dataclass
class SpawnSubagentRequest:
    agent_id: str
    prompt: str
    variables: dict[str, Any] | None = None
    context: PackedContext | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class HookAgentRunOptions:
    agent_id: str
    prompt: str
    variables: dict[str, Any] | None = None
    context: PackedContext | None = None


@dataclass
class HookAgentRunResult:
    prompt: str
    messages: list[ChatMessage]
    target: SpawnSubagentTarget


@dataclass
class SpawnSubagentPayload(AgentLifecyclePayload):
    event: ToolCallEvent
    request: SpawnSubagentRequest
    target: SpawnSubagentTarget
    allowed_targets: list[SpawnSubagentTarget]
    spawn: Callable[[HookAgentRunOptions], Awaitable[HookAgentRunResult]]


@dataclass
class SpawnSubagentOverride:
    prompt: str | None = None
    variables: dict[str, Any] | None = None
    context: PackedContext | None = None
    allowed_subagents: list[str] | None = None


HOOK_PAYLOAD_TYPES: dict[HookEvent, type] = {
    HookEvent.BEFORE_CONTEXT_PACK: ContextPackStartPayload,
    HookEvent.AFTER_CONTEXT_PACK: ContextPackedPayload,
    HookEvent.SESSION_START: SessionStartPayload,
    HookEvent.USER_PROMPT_SUBMIT: UserPromptSubmitPayload,
    HookEvent.SESSION_END: SessionEndPayload,
    HookEvent.BEFORE_AGENT_START: AgentLifecyclePayload,
    HookEvent.AFTER_AGENT_COMPLETE: AgentCompletionPayload,
    HookEvent.ON_AGENT_ERROR: AgentErrorPayload,
    HookEvent.BEFORE_MODEL_CALL: AgentIterationPayload,
    HookEvent.PRE_COMPACT: AgentCompactionPayload,
    HookEvent.PRE_TOOL_USE: AgentToolCallPayload,
    HookEvent.BEFORE_SPAWN_SUBAGENT: SpawnSubagentPayload,
    HookEvent.POST_TOOL_USE: AgentToolResultPayload,
    HookEvent.NOTIFICATION: AgentNotificationPayload,
    HookEvent.ON_ERROR: AgentStreamErrorPayload,
    HookEvent.STOP: AgentIterationPayload,
    HookEvent.SUBAGENT_STOP: AgentLifecyclePayload,
}


# ── Listener results ─────────────────────────────────────────────


@dataclass
class HookBlockResponse:
    reason: str | None = None
    blocked: bool = True


@dataclass
class HookContinueResponse:
    enqueue: list[ChatMessage] = field(default_factory=list)


def block_hook(reason: str | None = None) -> HookBlockResponse:
    return HookBlockResponse(reason=reason)


def is_block_response(value: Any) -> bool:
    if isinstance(value, HookBlockResponse):
        return value.blocked is True
    return isinstance(value, dict) and value.get("blocked") is True


def _as_block_response(value: Any) -> HookBlockResponse:
    if isinstance(value, HookBlockResponse):
        return value
    reason = value.get("reason")
    return HookBlockResponse(reason=reason if isinstance(reason, str) else None)


def normalize_stop_messages(
    messages: Iterable[ChatMessage | dict],
) -> list[ChatMessage]:
    """Keep only role, content, name and tool_call_id of enqueued messages."""
    normalized = []
    for message in messages:
        m = ChatMessage.coerce(message)
        normalized.append(
            ChatMessage(
                role=m.role,
                content=m.content,
                name=m.name or None,
                tool_call_id=m.tool_call_id or None,
            )
        )
    return normalized


def continue_hook(*messages: ChatMessage | dict) -> HookContinueResponse:
    return HookContinueResponse(enqueue=normalize_stop_messages(messages))


def as_continue_response(value: Any) -> HookContinueResponse | None:
    if isinstance(value, HookContinueResponse):
        return value
    if isinstance(value, dict) and value.get("continue") is True:
        enqueue = value.get("enqueue")
        if isinstance(enqueue, list):
            return HookContinueResponse(enqueue=normalize_stop_messages(enqueue))
    return None


def as_spawn_override(value: Any) -> SpawnSubagentOverride | None:
    if isinstance(value, SpawnSubagentOverride):
        return value
    if not isinstance(value, dict):
        return None
    if not any(k in value for k in ("prompt", "variables", "context")):
        return None
    context = value.get("context")
    if isinstance(context, dict):
        context = PackedContext.from_dict(context)
    allowed = value.get("allowed_subagents")
    return SpawnSubagentOverride(
        prompt=value.get("prompt") if isinstance(value.get("prompt"), str) else None,
        variables=value.get("variables") if isinstance(value.get("variables"), dict) else None,
        context=context if isinstance(context, PackedContext) else None,
        allowed_subagents=list(allowed) if isinstance(allowed, list) else None,
    )


def is_spawn_override(value: Any) -> bool:
    return as_spawn_override(value) is not None


@dataclass
class HookDispatchResult:
    results: list[Any] = field(default_factory=list)
    blocked: HookBlockResponse | None = None
    error: Any = None


HookListener = Callable[[Any], Any]
HookAgentRunner = Callable[[HookAgentRunOptions], Awaitable[HookAgentRunResult]]


# ── Bus ──────────────────────────────────────────────────────────


class HookBus:
    """Named-event dispatcher with ordered, short-circuiting listeners."""

    def __init__(self) -> None:
        self._listeners: dict[HookEvent, list[HookListener]] = {}
        self._agent_runner: HookAgentRunner | None = None

    def on(self, event: HookEvent | str, listener: HookListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that removes it again."""
        key = HookEvent(event)
        self._listeners.setdefault(key, []).append(listener)
        return lambda: self.off(key, listener)

    def off(self, event: HookEvent | str, listener: HookListener) -> None:
        listeners = self._listeners.get(HookEvent(event), [])
        if listener in listeners:
            listeners.remove(listener)

    def listeners(self, event: HookEvent | str) -> list[HookListener]:
        return list(self._listeners.get(HookEvent(event), []))

    def clear(self, event: HookEvent | str | None = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(HookEvent(event), None)

    async def emit(self, event: HookEvent | str, payload: Any) -> HookDispatchResult:
        key = HookEvent(event)
        results: list[Any] = []

        # Snapshot so listeners registering listeners don't affect this dispatch
        for listener in list(self._listeners.get(key, [])):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as exc:
                logger.error(
                    "Hook listener for %s failed: %s", key.value, exc, exc_info=True
                )
                return HookDispatchResult(results=results, error=exc)

            results.append(result)
            if is_block_response(result):
                return HookDispatchResult(
                    results=results, blocked=_as_block_response(result)
                )

        return HookDispatchResult(results=results)

    # ------------------------------------------------------------------
    # Agent runner
    # ------------------------------------------------------------------

    def set_agent_runner(self, runner: HookAgentRunner) -> None:
        self._agent_runner = runner

    def clear_agent_runner(self) -> None:
        self._agent_runner = None

    def has_agent_runner(self) -> bool:
        return self._agent_runner is not None

    async def run_agent(self, options: HookAgentRunOptions) -> HookAgentRunResult:
        if self._agent_runner is None:
            raise MissingAgentRunnerError("No agent runner has been registered for hooks.")
        return await self._agent_runner(options)


def install_hook_modules(bus: HookBus, module_names: Iterable[str]) -> None:
    """Import hook modules and let each register its listeners.

    A module either defines register_hooks(bus) or a HOOKS mapping of
    event name to listener (or list of listeners).
    """
    for name in module_names:
        module = importlib.import_module(name)
        register = getattr(module, "register_hooks", None)
        if callable(register):
            register(bus)
        elif isinstance(getattr(module, "HOOKS", None), dict):
            for event, listeners in module.HOOKS.items():
                if not isinstance(listeners, (list, tuple)):
                    listeners = [listeners]
                for listener in listeners:
                    bus.on(event, listener)
        else:
            raise ValueError(
                f"Hook module {name} defines neither register_hooks() nor HOOKS"
            )
        logger.info("Installed hook module %s", name)


# ── Call-site helpers ────────────────────────────────────────────


async def dispatch_or_raise(
    bus: HookBus, event: HookEvent | str, payload: Any
) -> HookDispatchResult:
    """Dispatch an event and turn a listener failure into an exception.

    Block responses are returned untouched; whether a block matters is up to
    the caller.
    """
    result = await bus.emit(event, payload)
    if result.error is not None:
        error = result.error
        name = HookEvent(event).value
        if isinstance(error, Exception):
            raise error
        raise HookDispatchError(name, str(error), cause=error)
    return result


async def dispatch_critical(
    bus: HookBus, event: HookEvent | str, payload: Any
) -> HookDispatchResult:
    """Like dispatch_or_raise, but a block response aborts as well."""
    result = await dispatch_or_raise(bus, event, payload)
    if result.blocked is not None:
        raise HookBlockedError(HookEvent(event).value, result.blocked.reason)
    return result
