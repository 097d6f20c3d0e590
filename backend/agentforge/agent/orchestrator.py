"""AgentOrchestrator — drives one agent invocation through its model/tool loop.

Each iteration streams one model call, executes the tool calls it yields,
and feeds their results back into the transcript. The loop ends when an
iteration produces no tool calls and no stop hook asks for another turn.

Hook failures outside the observational events abort the invocation:
onAgentError fires, an agent_error trace record is written, and the
exception propagates through every ancestor up to the session.
"""

from __future__ import annotations

import contextvars
import inspect
import json
import logging
import os
import traceback
import uuid
from contextlib import aclosing
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable

from agentforge.agent.cancellation import CancellationToken
from agentforge.agent.catalog import AgentCatalog
from agentforge.agent.compaction import CompactorSelector, TranscriptCompactor
from agentforge.agent.constants import (
    SPAWN_BLOCKED_MESSAGE,
    SPAWN_TOOL_NAME,
    SPAWN_TOOL_RESULT_SCHEMA,
    TOOL_BLOCKED_MESSAGE,
)
from agentforge.agent.errors import (
    AgentCancelledError,
    SubagentError,
    ToolValidationError,
)
from agentforge.agent.events import (
    ErrorEvent,
    NotificationEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from agentforge.agent.hooks import (
    AgentCompactionPayload,
    AgentCompletionPayload,
    AgentContextSummary,
    AgentErrorPayload,
    AgentIterationPayload,
    AgentLifecyclePayload,
    AgentNotificationPayload,
    AgentStreamErrorPayload,
    AgentToolCallPayload,
    AgentToolResultPayload,
    HookAgentRunOptions,
    HookAgentRunResult,
    HookBus,
    HookEvent,
    SpawnSubagentPayload,
    SpawnSubagentRequest,
    as_continue_response,
    as_spawn_override,
    dispatch_or_raise,
)
from agentforge.agent.invocation import (
    AgentInvocation,
    AgentInvocationFactory,
    InvocationOptions,
)
from agentforge.agent.spawn import (
    SpawnArguments,
    build_spawn_tool_schema,
    parse_spawn_arguments,
    target_summary,
)
from agentforge.agent.state import (
    AgentDefinition,
    AgentRuntimeDescriptor,
    ChatMessage,
    PackedContext,
)
from agentforge.agent.tool_registry import ToolCall, ToolExecutionContext, ToolResult
from agentforge.config import settings
from agentforge.providers.base import StreamOptions
from agentforge.services.stream_renderer import StreamRenderer
from agentforge.services.trace_writer import JsonlTraceWriter

logger = logging.getLogger(__name__)

# The invocation whose loop is currently running, used to parent agents
# launched from hook listeners.
_current_invocation: contextvars.ContextVar[AgentInvocation | None] = (
    contextvars.ContextVar("agentforge_current_invocation", default=None)
)


class StreamErrorPolicy(str, Enum):
    CONTINUE = "continue"  # log, fire onError, keep consuming the stream
    ABORT = "abort"  # additionally fail the invocation


async def deny_all(message: str) -> bool:
    return False


@dataclass
class AgentRunRequest:
    definition: AgentDefinition
    prompt: str
    context: PackedContext | None = None
    history: list[ChatMessage] | None = None
    parent: AgentInvocation | None = None
    variables: dict[str, Any] | None = None
    prompt_template: str | None = None


@dataclass
class AgentRuntimeOptions:
    """Everything one run needs besides the request itself."""

    catalog: AgentCatalog
    hooks: HookBus = field(default_factory=HookBus)
    confirm: Callable[[str], Awaitable[bool]] = deny_all
    cwd: str = field(default_factory=os.getcwd)
    env: dict[str, str] = field(default_factory=dict)
    logger: logging.Logger | None = None
    trace_path: str | Path | None = field(default_factory=lambda: settings.TRACE_PATH)
    trace_append: bool = field(default_factory=lambda: settings.TRACE_APPEND)
    transcript_compactor: TranscriptCompactor | CompactorSelector | None = None
    stream_error_policy: StreamErrorPolicy = field(
        default_factory=lambda: StreamErrorPolicy(settings.STREAM_ERROR_POLICY)
    )
    cancellation: CancellationToken | None = None
    session_id: str | None = None


@dataclass
class _IterationOutcome:
    had_tool_calls: bool = False
    continue_loop: bool = False
    failed: bool = False


def serialize_error(exc: BaseException) -> dict[str, Any]:
    cause = exc.__cause__ or exc.__context__
    return {
        "message": str(exc),
        "stack": "".join(traceback.format_exception(exc)),
        "cause": repr(cause) if cause is not None else None,
    }


def collect_invocations(root: AgentInvocation) -> list[AgentInvocation]:
    """Flatten a spawn tree in pre-order: each parent before its children."""
    ordered: list[AgentInvocation] = []
    stack = [root]
    while stack:
        node = stack.pop()
        ordered.append(node)
        stack.extend(reversed(node.children))
    return ordered


def _lifecycle(invocation: AgentInvocation) -> dict[str, Any]:
    return {
        "metadata": invocation.metadata(),
        "prompt": invocation.prompt,
        "context": AgentContextSummary(
            total_bytes=invocation.context.total_bytes,
            file_count=len(invocation.context.files),
        ),
        "history_length": len(invocation.history),
    }


class AgentOrchestrator:
    def __init__(
        self,
        invocation_factory: AgentInvocationFactory | None = None,
        renderer: StreamRenderer | None = None,
        trace_writer: JsonlTraceWriter | None = None,
    ) -> None:
        self.invocation_factory = invocation_factory or AgentInvocationFactory()
        self.renderer = renderer or StreamRenderer()
        self.trace_writer = trace_writer or JsonlTraceWriter()

    # ── Entry points ────────────────────────────────────────────

    async def run_agent(
        self, request: AgentRunRequest, runtime: AgentRuntimeOptions
    ) -> AgentInvocation:
        """Create an invocation for the request and run it to completion."""
        invocation = self.invocation_factory.create(
            request.definition,
            InvocationOptions(
                prompt=request.prompt,
                context=request.context,
                history=request.history,
                variables=request.variables,
                prompt_template=request.prompt_template,
            ),
            request.parent,
        )
        invocation.spawn_handler = (
            lambda definition, options: self.spawn_subagent(
                invocation, definition, options, runtime
            )
        )
        descriptor = runtime.catalog.get_agent(request.definition.id)
        if descriptor is None:
            raise ValueError(
                f"No runtime descriptor registered for agent {request.definition.id}"
            )
        invocation.runtime = descriptor
        if request.parent is not None:
            request.parent.add_child(invocation)

        owns_runner = invocation.is_root and not runtime.hooks.has_agent_runner()
        if owns_runner:
            runtime.hooks.set_agent_runner(
                lambda options: self._run_for_hook(options, runtime)
            )
        try:
            await self._execute(invocation, runtime)
        finally:
            if owns_runner:
                runtime.hooks.clear_agent_runner()
        return invocation

    async def spawn_subagent(
        self,
        parent: AgentInvocation,
        definition: AgentDefinition,
        options: InvocationOptions,
        runtime: AgentRuntimeOptions,
    ) -> AgentInvocation:
        if parent.runtime is None:
            raise RuntimeError(
                f"Agent {parent.id} has no runtime binding and cannot spawn subagents."
            )
        return await self.run_agent(
            AgentRunRequest(
                definition=definition,
                prompt=options.prompt,
                context=options.context,
                history=options.history,
                parent=parent,
                variables=options.variables,
                prompt_template=options.prompt_template,
            ),
            runtime,
        )

    async def _run_for_hook(
        self, options: HookAgentRunOptions, runtime: AgentRuntimeOptions
    ) -> HookAgentRunResult:
        """Run a catalog subagent underneath whichever invocation is active."""
        parent = _current_invocation.get()
        if parent is None:
            raise RuntimeError("Hook agent runs require an active agent invocation.")
        descriptor = runtime.catalog.get_subagent(options.agent_id)
        if descriptor is None:
            raise SubagentError(self._unknown_subagent_message(options.agent_id, runtime))

        child = await self.run_agent(
            AgentRunRequest(
                definition=descriptor.definition,
                prompt=options.prompt,
                context=options.context,
                parent=parent,
                variables=options.variables,
            ),
            runtime,
        )
        return HookAgentRunResult(
            prompt=child.prompt,
            messages=list(child.messages),
            target=target_summary(descriptor),
        )

    # ── Main loop ───────────────────────────────────────────────

    async def _execute(self, invocation: AgentInvocation, runtime: AgentRuntimeOptions) -> None:
        log = runtime.logger or logger
        hooks = runtime.hooks
        descriptor = invocation.runtime
        lifecycle = _lifecycle(invocation)
        token = _current_invocation.set(invocation)

        if not invocation.is_root:
            self.renderer.flush()

        iteration = 0
        failed = False
        try:
            await dispatch_or_raise(
                hooks, HookEvent.BEFORE_AGENT_START, AgentLifecyclePayload(**lifecycle)
            )
            await self._trace(
                invocation,
                runtime,
                "agent_start",
                append=runtime.trace_append if invocation.is_root else True,
            )
            log.info(
                "Agent %s started (depth %d, model %s)",
                invocation.id,
                invocation.depth,
                descriptor.model,
            )

            while True:
                self._check_cancelled(runtime)
                iteration += 1

                await self._maybe_compact(invocation, runtime, iteration, lifecycle)

                await dispatch_or_raise(
                    hooks,
                    HookEvent.BEFORE_MODEL_CALL,
                    AgentIterationPayload(
                        **lifecycle, iteration=iteration, messages=invocation.messages
                    ),
                )
                await self._trace(
                    invocation,
                    runtime,
                    "model_call",
                    {
                        "iteration": iteration,
                        "message_count": len(invocation.messages),
                        "model": descriptor.model,
                        "provider": descriptor.provider.name,
                    },
                )

                outcome = await self._run_iteration(invocation, runtime, iteration, lifecycle)
                if outcome.failed:
                    failed = True
                    break

                self._check_cancelled(runtime)
                if not outcome.had_tool_calls:
                    outcome.continue_loop = await self._dispatch_stop(
                        invocation, runtime, iteration, lifecycle
                    )

                final = invocation.final_message
                await self._trace(
                    invocation,
                    runtime,
                    "iteration_complete",
                    {
                        "iteration": iteration,
                        "message_count": len(invocation.messages),
                        "final_message": final.content if final else None,
                    },
                )
                if not outcome.continue_loop:
                    break
        except Exception as exc:
            invocation.failed = True
            error = serialize_error(exc)
            invocation.error = error
            log.error("Agent %s failed: %s", invocation.id, exc)
            try:
                await dispatch_or_raise(
                    hooks, HookEvent.ON_AGENT_ERROR, AgentErrorPayload(**lifecycle, error=error)
                )
                await self._trace(invocation, runtime, "agent_error", {"error": error})
                await self._emit_subagent_stop(invocation, runtime, lifecycle)
            finally:
                _current_invocation.reset(token)
            raise

        try:
            if failed:
                invocation.failed = True
                await self._emit_subagent_stop(invocation, runtime, lifecycle)
                return

            await dispatch_or_raise(
                hooks,
                HookEvent.AFTER_AGENT_COMPLETE,
                AgentCompletionPayload(
                    **lifecycle, messages=invocation.messages, iterations=iteration
                ),
            )
            await self._emit_subagent_stop(invocation, runtime, lifecycle)
            final = invocation.final_message
            await self._trace(
                invocation,
                runtime,
                "agent_complete",
                {
                    "iterations": iteration,
                    "message_count": len(invocation.messages),
                    "final_message": final.content if final else None,
                },
            )
            log.info("Agent %s completed after %d iteration(s)", invocation.id, iteration)
        finally:
            _current_invocation.reset(token)

    async def _run_iteration(
        self,
        invocation: AgentInvocation,
        runtime: AgentRuntimeOptions,
        iteration: int,
        lifecycle: dict[str, Any],
    ) -> _IterationOutcome:
        descriptor = invocation.runtime
        outcome = _IterationOutcome()
        buffer: list[str] = []

        options = StreamOptions(
            model=descriptor.model,
            messages=list(invocation.messages),
            tools=self._tool_schemas(invocation, runtime) or None,
            previous_response_id=invocation.previous_response_id,
            cancellation=runtime.cancellation,
        )

        async with aclosing(descriptor.provider.stream(options)) as stream:
            async for raw_event in stream:
                event = raw_event.with_agent(invocation.id)
                kind = event.type

                if kind == "delta":
                    buffer.append(event.text)
                    self.renderer.render(event)
                elif kind in ("reasoning_delta", "reasoning_end"):
                    self.renderer.render(event)
                elif kind == "tool_call":
                    outcome.had_tool_calls = True
                    self._push_assistant_text(invocation, buffer)
                    self.renderer.flush()
                    await self._handle_tool_call(
                        invocation, runtime, iteration, lifecycle, event
                    )
                elif kind == "notification":
                    self.renderer.render(event)
                    await self._emit_notification(
                        invocation, runtime, iteration, lifecycle, event
                    )
                elif kind == "error":
                    self.renderer.render(event)
                    if await self._handle_stream_error(
                        invocation, runtime, iteration, lifecycle, event
                    ):
                        outcome.failed = True
                        break
                elif kind == "end":
                    self.renderer.render(event)
                    if event.response_id:
                        invocation.previous_response_id = event.response_id
                    break
                else:
                    self.renderer.render(event)
                    (runtime.logger or logger).debug(
                        "No transcript handling for stream event %s", kind
                    )

                if runtime.cancellation is not None and runtime.cancellation.cancelled:
                    break

        self._push_assistant_text(invocation, buffer)
        return outcome

    # ── Tool calls ──────────────────────────────────────────────

    def _tool_schemas(
        self, invocation: AgentInvocation, runtime: AgentRuntimeOptions
    ) -> list[dict]:
        schemas = invocation.tool_registry.schemas()
        if runtime.catalog.delegation_enabled():
            schemas.append(build_spawn_tool_schema(runtime.catalog.list_subagents()))
        return schemas

    async def _handle_tool_call(
        self,
        invocation: AgentInvocation,
        runtime: AgentRuntimeOptions,
        iteration: int,
        lifecycle: dict[str, Any],
        event: ToolCallEvent,
    ) -> None:
        log = runtime.logger or logger
        hooks = runtime.hooks
        if not event.id:
            event = replace(event, id=f"call_{uuid.uuid4().hex[:12]}")
        self.renderer.render(event)

        call_payload = AgentToolCallPayload(**lifecycle, iteration=iteration, event=event)
        dispatch = await dispatch_or_raise(hooks, HookEvent.PRE_TOOL_USE, call_payload)
        await self._trace(
            invocation,
            runtime,
            "tool_call",
            {
                "iteration": iteration,
                "id": event.id,
                "name": event.name,
                "arguments": event.arguments,
            },
        )

        invocation.messages.append(
            ChatMessage(
                role="assistant",
                content=json.dumps(event.arguments, default=str),
                name=event.name,
                tool_call_id=event.id,
            )
        )

        if dispatch.blocked is not None:
            reason = dispatch.blocked.reason or TOOL_BLOCKED_MESSAGE
            invocation.messages.append(
                ChatMessage(role="tool", content=reason, name=event.name, tool_call_id=event.id)
            )
            log.warning("Tool %s blocked for agent %s: %s", event.name, invocation.id, reason)
            return

        if event.name == SPAWN_TOOL_NAME and runtime.catalog.delegation_enabled():
            # Bad delegation arguments are the model's to fix; failures of the
            # child run itself unwind the parent too.
            try:
                args = parse_spawn_arguments(event.arguments)
                descriptor = runtime.catalog.get_subagent(args.agent_id)
                if descriptor is None:
                    raise SubagentError(self._unknown_subagent_message(args.agent_id, runtime))
            except SubagentError as exc:
                await self._handle_tool_failure(
                    invocation, runtime, iteration, lifecycle, event, exc
                )
                return
            result = await self._spawn_from_tool(
                invocation, runtime, iteration, lifecycle, event, args, descriptor
            )
        else:
            try:
                result = await invocation.tool_registry.execute(
                    ToolCall(name=event.name, arguments=event.arguments, id=event.id),
                    ToolExecutionContext(cwd=runtime.cwd, confirm=runtime.confirm, env=runtime.env),
                )
            except (ToolValidationError, AgentCancelledError):
                raise
            except Exception as exc:
                await self._handle_tool_failure(
                    invocation, runtime, iteration, lifecycle, event, exc
                )
                return

        self.renderer.render(
            ToolResultEvent(name=event.name, result=result, id=event.id, agent_id=invocation.id)
        )
        invocation.messages.append(
            ChatMessage(
                role="tool",
                content=json.dumps(result.to_dict(), default=str),
                name=event.name,
                tool_call_id=event.id,
            )
        )
        await dispatch_or_raise(
            hooks,
            HookEvent.POST_TOOL_USE,
            AgentToolResultPayload(**lifecycle, iteration=iteration, event=event, result=result),
        )
        await self._trace(
            invocation,
            runtime,
            "tool_result",
            {
                "iteration": iteration,
                "id": event.id,
                "name": event.name,
                "result": result.to_dict(),
            },
        )

    async def _handle_tool_failure(
        self,
        invocation: AgentInvocation,
        runtime: AgentRuntimeOptions,
        iteration: int,
        lifecycle: dict[str, Any],
        event: ToolCallEvent,
        exc: Exception,
    ) -> None:
        message = f"Tool execution failed: {exc}"
        (runtime.logger or logger).warning(
            "Tool %s failed for agent %s: %s", event.name, invocation.id, exc
        )
        notification = NotificationEvent(
            payload=message,
            metadata={"tool": event.name, "tool_call_id": event.id, "severity": "error"},
            agent_id=invocation.id,
        )
        self.renderer.render(notification)
        invocation.messages.append(
            ChatMessage(role="tool", content=message, name=event.name, tool_call_id=event.id)
        )
        await self._emit_notification(invocation, runtime, iteration, lifecycle, notification)
        await self._trace(
            invocation,
            runtime,
            "tool_error",
            {"iteration": iteration, "id": event.id, "name": event.name, "error": str(exc)},
        )

    async def _spawn_from_tool(
        self,
        invocation: AgentInvocation,
        runtime: AgentRuntimeOptions,
        iteration: int,
        lifecycle: dict[str, Any],
        event: ToolCallEvent,
        args: SpawnArguments,
        descriptor: AgentRuntimeDescriptor,
    ) -> ToolResult:
        prompt = args.prompt
        variables = args.variables
        context: PackedContext | None = None

        payload = SpawnSubagentPayload(
            **lifecycle,
            event=event,
            request=SpawnSubagentRequest(
                agent_id=args.agent_id,
                prompt=prompt,
                variables=variables,
                metadata=args.metadata,
            ),
            target=target_summary(descriptor),
            allowed_targets=[target_summary(d) for d in runtime.catalog.list_subagents()],
            spawn=lambda options: self._run_for_hook(options, runtime),
        )
        dispatch = await dispatch_or_raise(runtime.hooks, HookEvent.BEFORE_SPAWN_SUBAGENT, payload)
        if dispatch.blocked is not None:
            return _blocked_spawn_result(
                args, prompt, dispatch.blocked.reason or SPAWN_BLOCKED_MESSAGE
            )

        for value in dispatch.results:
            override = as_spawn_override(value)
            if override is None:
                continue
            if override.prompt is not None:
                prompt = override.prompt
            if override.variables is not None:
                variables = override.variables
            if override.context is not None:
                context = override.context
            allowed = override.allowed_subagents
            if allowed is not None and args.agent_id not in allowed:
                return _blocked_spawn_result(
                    args,
                    prompt,
                    f'Subagent "{args.agent_id}" is not allowed here. '
                    f"Allowed agents: {', '.join(allowed) or 'none'}.",
                )

        child = await self.run_agent(
            AgentRunRequest(
                definition=descriptor.definition,
                prompt=prompt,
                context=context,
                parent=invocation,
                variables=variables,
            ),
            runtime,
        )

        final = child.final_message
        content = (
            final.content
            if final is not None and final.content.strip()
            else f"Subagent {args.agent_id} completed without a final response."
        )
        data: dict[str, Any] = {
            "agent_id": args.agent_id,
            "message_count": len(child.messages),
            "prompt": prompt,
            "final_message": content,
        }
        if variables:
            data["variables"] = variables
        if context is not None:
            data["context"] = context.to_dict()

        metadata: dict[str, Any] = {
            "agent_id": args.agent_id,
            "model": descriptor.model,
            "provider": descriptor.provider.name,
            "parent_agent_id": invocation.id,
        }
        if descriptor.metadata is not None:
            metadata.update(descriptor.metadata.to_dict())
        if args.metadata:
            metadata["request"] = args.metadata

        return ToolResult(
            schema=SPAWN_TOOL_RESULT_SCHEMA, content=content, data=data, metadata=metadata
        )

    @staticmethod
    def _unknown_subagent_message(agent_id: str, runtime: AgentRuntimeOptions) -> str:
        available = ", ".join(d.id for d in runtime.catalog.list_subagents()) or "none"
        return f'Unknown subagent "{agent_id}". Available agents: {available}.'

    # ── Stream side channels ────────────────────────────────────

    async def _emit_notification(
        self,
        invocation: AgentInvocation,
        runtime: AgentRuntimeOptions,
        iteration: int,
        lifecycle: dict[str, Any],
        event: NotificationEvent,
    ) -> None:
        result = await runtime.hooks.emit(
            HookEvent.NOTIFICATION,
            AgentNotificationPayload(**lifecycle, iteration=iteration, event=event),
        )
        if result.error is not None:
            (runtime.logger or logger).warning(
                "Notification hook failed for agent %s: %s", invocation.id, result.error
            )

    async def _handle_stream_error(
        self,
        invocation: AgentInvocation,
        runtime: AgentRuntimeOptions,
        iteration: int,
        lifecycle: dict[str, Any],
        event: ErrorEvent,
    ) -> bool:
        """Fire onError; return True when the invocation must stop."""
        (runtime.logger or logger).warning(
            "Stream error for agent %s: %s", invocation.id, event.message
        )
        await dispatch_or_raise(
            runtime.hooks,
            HookEvent.ON_ERROR,
            AgentStreamErrorPayload(**lifecycle, iteration=iteration, error=event),
        )
        if runtime.stream_error_policy != StreamErrorPolicy.ABORT:
            return False

        error = {
            "message": event.message,
            "stack": None,
            "cause": repr(event.cause) if event.cause is not None else None,
        }
        invocation.error = error
        await dispatch_or_raise(
            runtime.hooks, HookEvent.ON_AGENT_ERROR, AgentErrorPayload(**lifecycle, error=error)
        )
        await self._trace(invocation, runtime, "agent_error", {"error": error})
        return True

    async def _dispatch_stop(
        self,
        invocation: AgentInvocation,
        runtime: AgentRuntimeOptions,
        iteration: int,
        lifecycle: dict[str, Any],
    ) -> bool:
        """Fire the stop hook; return True if a listener enqueued another turn."""
        dispatch = await dispatch_or_raise(
            runtime.hooks,
            HookEvent.STOP,
            AgentIterationPayload(**lifecycle, iteration=iteration, messages=invocation.messages),
        )
        continued = False
        for value in dispatch.results:
            response = as_continue_response(value)
            if response is None or not response.enqueue:
                continue
            invocation.messages.extend(response.enqueue)
            continued = True
        return continued

    async def _emit_subagent_stop(
        self,
        invocation: AgentInvocation,
        runtime: AgentRuntimeOptions,
        lifecycle: dict[str, Any],
    ) -> None:
        if invocation.is_root:
            return
        await dispatch_or_raise(
            runtime.hooks, HookEvent.SUBAGENT_STOP, AgentLifecyclePayload(**lifecycle)
        )

    # ── Compaction ──────────────────────────────────────────────

    async def _maybe_compact(
        self,
        invocation: AgentInvocation,
        runtime: AgentRuntimeOptions,
        iteration: int,
        lifecycle: dict[str, Any],
    ) -> None:
        compactor = runtime.transcript_compactor
        if compactor is None:
            return
        if not hasattr(compactor, "plan"):
            compactor = compactor(invocation, invocation.runtime)
            if compactor is None:
                return

        plan = compactor.plan(invocation, iteration)
        if inspect.isawaitable(plan):
            plan = await plan
        if plan is None:
            return

        await dispatch_or_raise(
            runtime.hooks,
            HookEvent.PRE_COMPACT,
            AgentCompactionPayload(
                **lifecycle,
                iteration=iteration,
                messages=invocation.messages,
                reason=plan.reason,
            ),
        )
        result = await plan.run()
        (runtime.logger or logger).info(
            "Compacted transcript for agent %s: removed %d message(s) (%s)",
            invocation.id,
            result.removed_messages,
            plan.reason,
        )

    # ── Helpers ─────────────────────────────────────────────────

    @staticmethod
    def _push_assistant_text(invocation: AgentInvocation, buffer: list[str]) -> None:
        text = "".join(buffer)
        buffer.clear()
        if text.strip():
            invocation.messages.append(ChatMessage(role="assistant", content=text))

    @staticmethod
    def _check_cancelled(runtime: AgentRuntimeOptions) -> None:
        if runtime.cancellation is not None:
            runtime.cancellation.raise_if_cancelled()

    async def _trace(
        self,
        invocation: AgentInvocation,
        runtime: AgentRuntimeOptions,
        phase: str,
        data: dict[str, Any] | None = None,
        append: bool = True,
    ) -> None:
        if not runtime.trace_path:
            return
        record = {
            "phase": phase,
            "agent": asdict(invocation.metadata()),
            "prompt": invocation.prompt,
            "context": {
                "total_bytes": invocation.context.total_bytes,
                "file_count": len(invocation.context.files),
            },
            "history_length": len(invocation.history),
            "data": data or {},
            "session_id": runtime.session_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        await self.trace_writer.write(runtime.trace_path, record, append)


def _blocked_spawn_result(args: SpawnArguments, prompt: str, reason: str) -> ToolResult:
    return ToolResult(
        schema=SPAWN_TOOL_RESULT_SCHEMA,
        content=reason,
        data={
            "agent_id": args.agent_id,
            "message_count": 0,
            "prompt": prompt,
            "blocked": True,
        },
    )
