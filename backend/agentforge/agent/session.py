"""Session runner — wraps one manager-agent run in the session-level hooks.

sessionStart, beforeContextPack and userPromptSubmit are critical: a block
or a listener failure aborts the session before any model call. sessionEnd
always fires, with status "success" or "error".
"""

from __future__ import annotations

import inspect
import logging
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from agentforge.agent.hooks import (
    ContextPackedPayload,
    ContextPackStartPayload,
    HookEvent,
    SessionEndPayload,
    SessionMetadata,
    SessionStartPayload,
    UserPromptSubmitPayload,
    dispatch_critical,
    dispatch_or_raise,
)
from agentforge.agent.invocation import AgentInvocation
from agentforge.agent.orchestrator import (
    AgentOrchestrator,
    AgentRunRequest,
    AgentRuntimeOptions,
    collect_invocations,
    serialize_error,
)
from agentforge.agent.state import ChatMessage, PackedContext

logger = logging.getLogger(__name__)

ContextPacker = Callable[[], "PackedContext | Awaitable[PackedContext]"]


@dataclass
class SessionResult:
    session_id: str
    root: AgentInvocation
    invocations: list[AgentInvocation]
    duration_ms: int

    @property
    def final_message(self) -> ChatMessage | None:
        return self.root.final_message


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def run_session(
    prompt: str,
    runtime: AgentRuntimeOptions,
    *,
    history: list[ChatMessage] | None = None,
    context: PackedContext | None = None,
    context_packer: ContextPacker | None = None,
    variables: dict[str, Any] | None = None,
    orchestrator: AgentOrchestrator | None = None,
    options: dict[str, Any] | None = None,
) -> SessionResult:
    """Run the catalog's manager agent for one user prompt."""
    orchestrator = orchestrator or AgentOrchestrator()
    runtime = replace(runtime, session_id=runtime.session_id or uuid.uuid4().hex)
    hooks = runtime.hooks
    options = options or {}
    history = history or []
    manager = runtime.catalog.get_manager()

    metadata = SessionMetadata(
        id=runtime.session_id,
        started_at=datetime.now(timezone.utc).isoformat(),
        prompt=prompt,
        provider=manager.provider.name,
        model=manager.model,
        trace_path=str(runtime.trace_path) if runtime.trace_path else None,
    )
    started = time.monotonic()
    logger.info("Session %s started with %s/%s", metadata.id, metadata.provider, metadata.model)

    try:
        await dispatch_critical(hooks, HookEvent.SESSION_START, SessionStartPayload(metadata, options))

        if context_packer is not None:
            await dispatch_critical(
                hooks, HookEvent.BEFORE_CONTEXT_PACK, ContextPackStartPayload(options)
            )
            packed = context_packer()
            if inspect.isawaitable(packed):
                packed = await packed
            context = packed
            await dispatch_or_raise(
                hooks, HookEvent.AFTER_CONTEXT_PACK, ContextPackedPayload(context)
            )

        await dispatch_critical(
            hooks,
            HookEvent.USER_PROMPT_SUBMIT,
            UserPromptSubmitPayload(metadata, prompt, len(history), options),
        )

        root = await orchestrator.run_agent(
            AgentRunRequest(
                definition=manager.definition,
                prompt=prompt,
                context=context,
                history=history,
                variables=variables,
            ),
            runtime,
        )
    except Exception as exc:
        logger.error("Session %s failed: %s", metadata.id, exc)
        end = await hooks.emit(
            HookEvent.SESSION_END,
            SessionEndPayload(
                metadata, "error", _elapsed_ms(started), error=serialize_error(exc)
            ),
        )
        if end.error is not None:
            logger.warning("sessionEnd hook failed: %s", end.error)
        raise

    invocations = collect_invocations(root)
    duration_ms = _elapsed_ms(started)
    if root.failed:
        logger.error("Session %s ended after agent %s failed", metadata.id, root.id)
    end = await hooks.emit(
        HookEvent.SESSION_END,
        SessionEndPayload(
            metadata,
            "error" if root.failed else "success",
            duration_ms,
            result={
                "message_count": len(root.messages),
                "agent_count": len(invocations),
                "failed": root.failed,
            },
            error=root.error if root.failed else None,
        ),
    )
    if end.error is not None:
        logger.warning("sessionEnd hook failed: %s", end.error)

    logger.info(
        "Session %s finished in %d ms (%d agent(s))", metadata.id, duration_ms, len(invocations)
    )
    return SessionResult(
        session_id=metadata.id,
        root=root,
        invocations=invocations,
        duration_ms=duration_ms,
    )
