"""Tests for the agent loop: tool round trips, hook gates, stop/continue,
stream error policies, tracing, compaction, cancellation and subagents.

Every model call is served by ScriptedProvider, so the tests exercise the
orchestrator without any network access.
"""

from __future__ import annotations

import asyncio
import io
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from fakes import (
    ECHO_TOOL,
    MemoryTraceWriter,
    ScriptedProvider,
    answer,
    make_definition,
    make_descriptor,
    make_orchestrator,
    make_runtime,
    record_hooks,
)

from agentforge.agent.cancellation import CancellationToken
from agentforge.agent.compaction import SimpleTranscriptCompactor, compactor_for
from agentforge.agent.constants import SPAWN_TOOL_RESULT_SCHEMA, TOOL_BLOCKED_MESSAGE
from agentforge.agent.errors import AgentCancelledError, ToolValidationError
from agentforge.agent.events import (
    DeltaEvent,
    EndEvent,
    ErrorEvent,
    NotificationEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from agentforge.agent.hooks import (
    HookAgentRunOptions,
    HookBus,
    HookEvent,
    block_hook,
    continue_hook,
)
from agentforge.agent.invocation import AgentInvocationFactory, InvocationOptions
from agentforge.agent.orchestrator import (
    AgentOrchestrator,
    AgentRunRequest,
    StreamErrorPolicy,
    collect_invocations,
)
from agentforge.agent.state import ChatMessage
from agentforge.agent.tool_registry import ToolDefinition, ToolResult
from agentforge.services.stream_renderer import StreamRenderer


# ── Helpers ──────────────────────────────────────────────────────


def run_manager(runtime, prompt="do it", orchestrator=None, **request_kwargs):
    orchestrator = orchestrator or make_orchestrator()
    request = AgentRunRequest(
        definition=runtime.catalog.get_manager().definition,
        prompt=prompt,
        **request_kwargs,
    )
    return asyncio.run(orchestrator.run_agent(request, runtime))


def tool_turn(name="echo", arguments=None, call_id="call-1"):
    return [
        ToolCallEvent(name=name, arguments=arguments or {"text": "hi"}, id=call_id),
        EndEvent(reason="tool_calls"),
    ]


def make_researcher(*turns, tools=()):
    provider = ScriptedProvider(*(turns or (answer("facts"),)))
    return provider, make_descriptor("researcher", provider, tools, description="Finds facts")


def spawn_turn(arguments, call_id="s1"):
    return tool_turn("spawn_subagent", arguments, call_id)


# ── 1. Basic loop ───────────────────────────────────────────────


def test_plain_answer():
    provider = ScriptedProvider(
        [DeltaEvent(text="Hel"), DeltaEvent(text="lo"), EndEvent(reason="stop", response_id="resp-1")]
    )
    root = run_manager(make_runtime(provider))

    assert [m.role for m in root.messages] == ["system", "user", "assistant"]
    assert root.final_message.content == "Hello"
    assert root.previous_response_id == "resp-1"
    assert not root.failed

    options = provider.calls[0]
    assert options.model == "manager-model"
    assert [t["name"] for t in options.tools] == ["echo"]
    print("  PASS: plain answer")


def test_tool_call_round_trip():
    bus = HookBus()
    log = record_hooks(
        bus,
        HookEvent.BEFORE_AGENT_START,
        HookEvent.BEFORE_MODEL_CALL,
        HookEvent.PRE_TOOL_USE,
        HookEvent.POST_TOOL_USE,
        HookEvent.STOP,
        HookEvent.AFTER_AGENT_COMPLETE,
    )
    provider = ScriptedProvider(tool_turn(), answer("done"))
    root = run_manager(make_runtime(provider, hooks=bus))

    assert root.messages[2] == ChatMessage(
        role="assistant", content='{"text": "hi"}', name="echo", tool_call_id="call-1"
    )
    tool_message = root.messages[3]
    assert (tool_message.role, tool_message.name, tool_message.tool_call_id) == (
        "tool",
        "echo",
        "call-1",
    )
    assert json.loads(tool_message.content) == {"schema": "test.echo.v1", "content": "hi"}
    assert root.final_message.content == "done"

    assert len(provider.calls) == 2
    assert len(provider.calls[1].messages) == 4

    assert [event for event, _ in log] == [
        "beforeAgentStart",
        "beforeModelCall",
        "preToolUse",
        "postToolUse",
        "beforeModelCall",
        "stop",
        "afterAgentComplete",
    ]
    post_payload = log[3][1]
    assert post_payload.result.content == "hi"
    assert post_payload.iteration == 1
    print("  PASS: tool round trip")


def test_tool_call_without_id_gets_paired_id():
    provider = ScriptedProvider(
        [ToolCallEvent(name="echo", arguments={"text": "x"}), EndEvent()], answer("done")
    )
    root = run_manager(make_runtime(provider))
    call, result = root.messages[2], root.messages[3]
    assert call.tool_call_id and call.tool_call_id.startswith("call_")
    assert result.tool_call_id == call.tool_call_id
    print("  PASS: generated tool call ids")


def test_stream_without_end_event_keeps_text():
    provider = ScriptedProvider([DeltaEvent(text="partial")])
    root = run_manager(make_runtime(provider))
    assert root.final_message.content == "partial"
    print("  PASS: exhausted stream keeps text")


def test_missing_runtime_descriptor():
    runtime = make_runtime(ScriptedProvider())
    request = AgentRunRequest(definition=make_definition("ghost"), prompt="hi")
    with pytest.raises(ValueError, match="No runtime descriptor registered for agent ghost"):
        asyncio.run(make_orchestrator().run_agent(request, runtime))
    print("  PASS: missing descriptor")


# ── 2. Tool gates and failures ──────────────────────────────────


def make_counting_tool(calls):
    async def handler(arguments, ctx):
        calls.append(arguments)
        return {"schema": "test.count.v1", "content": "counted"}

    return ToolDefinition(name="echo", json_schema=ECHO_TOOL.json_schema, handler=handler)


def test_pre_tool_use_block_skips_handler():
    bus = HookBus()
    bus.on(HookEvent.PRE_TOOL_USE, lambda payload: block_hook("not allowed"))
    post = record_hooks(bus, HookEvent.POST_TOOL_USE)
    calls = []

    provider = ScriptedProvider(tool_turn(), answer("done"))
    root = run_manager(make_runtime(provider, tools=[make_counting_tool(calls)], hooks=bus))

    assert calls == []
    assert post == []
    assert root.messages[3] == ChatMessage(
        role="tool", content="not allowed", name="echo", tool_call_id="call-1"
    )
    print("  PASS: preToolUse block")


def test_block_without_reason_uses_default_message():
    bus = HookBus()
    bus.on(HookEvent.PRE_TOOL_USE, lambda payload: block_hook())
    root = run_manager(make_runtime(ScriptedProvider(tool_turn(), answer("done")), hooks=bus))
    assert root.messages[3].content == TOOL_BLOCKED_MESSAGE
    print("  PASS: default block reason")


def test_handler_exception_is_recoverable():
    async def explode(arguments, ctx):
        raise RuntimeError("boom")

    tool = ToolDefinition(name="explode", json_schema={"type": "object"}, handler=explode)
    bus = HookBus()
    notifications = record_hooks(bus, HookEvent.NOTIFICATION)

    provider = ScriptedProvider(tool_turn("explode", {}), answer("recovered"))
    root = run_manager(make_runtime(provider, tools=[tool], hooks=bus))

    assert root.messages[3] == ChatMessage(
        role="tool", content="Tool execution failed: boom", name="explode", tool_call_id="call-1"
    )
    assert len(notifications) == 1
    event = notifications[0][1].event
    assert event.payload == "Tool execution failed: boom"
    assert event.metadata == {"tool": "explode", "tool_call_id": "call-1", "severity": "error"}
    assert root.final_message.content == "recovered"
    assert not root.failed
    print("  PASS: handler exception recoverable")


def test_unknown_tool_is_recoverable():
    provider = ScriptedProvider(tool_turn("ghost", {}), answer("ok"))
    root = run_manager(make_runtime(provider))
    assert root.messages[3].content == "Tool execution failed: Unknown tool: ghost"
    print("  PASS: unknown tool recoverable")


def test_invalid_arguments_are_fatal():
    bus = HookBus()
    errors = record_hooks(bus, HookEvent.ON_AGENT_ERROR)
    provider = ScriptedProvider(tool_turn(arguments={"text": 5}), answer("unreachable"))

    with pytest.raises(ToolValidationError):
        run_manager(make_runtime(provider, hooks=bus))

    assert len(provider.calls) == 1
    assert len(errors) == 1
    assert errors[0][1].error["message"].startswith("Validation failed for tool echo")
    print("  PASS: validation errors fatal")


def test_hook_failure_aborts_before_model_call():
    bus = HookBus()
    boom = RuntimeError("hook down")

    def failing(payload):
        raise boom

    bus.on(HookEvent.BEFORE_MODEL_CALL, failing)
    errors = record_hooks(bus, HookEvent.ON_AGENT_ERROR)
    provider = ScriptedProvider(answer("unreachable"))

    with pytest.raises(RuntimeError) as info:
        run_manager(make_runtime(provider, hooks=bus))

    assert info.value is boom
    assert provider.calls == []
    assert errors[0][1].error["message"] == "hook down"
    assert "RuntimeError" in errors[0][1].error["stack"]
    print("  PASS: hook failure aborts")


def test_pre_tool_use_failure_is_fatal():
    bus = HookBus()

    def failing(payload):
        raise RuntimeError("pre-hook failure")

    bus.on(HookEvent.PRE_TOOL_USE, failing)
    post = record_hooks(bus, HookEvent.POST_TOOL_USE)
    calls = []
    provider = ScriptedProvider(tool_turn(), answer("unreachable"))

    with pytest.raises(RuntimeError, match="pre-hook failure"):
        run_manager(make_runtime(provider, tools=[make_counting_tool(calls)], hooks=bus))

    assert calls == []
    assert post == []
    assert len(provider.calls) == 1
    print("  PASS: preToolUse failure fatal")


def test_failing_notification_listener_is_only_logged():
    bus = HookBus()

    def failing(payload):
        raise RuntimeError("observer broke")

    bus.on(HookEvent.NOTIFICATION, failing)
    provider = ScriptedProvider(
        [NotificationEvent(payload="heads up", metadata={"source": "server"}), *answer("ok")]
    )
    root = run_manager(make_runtime(provider, hooks=bus))
    assert root.final_message.content == "ok"
    print("  PASS: notification failures observational")


def test_notifications_are_tagged_with_agent():
    bus = HookBus()
    log = record_hooks(bus, HookEvent.NOTIFICATION)
    provider = ScriptedProvider([NotificationEvent(payload="heads up"), *answer("ok")])
    run_manager(make_runtime(provider, hooks=bus))
    event = log[0][1].event
    assert (event.payload, event.agent_id) == ("heads up", "manager")
    print("  PASS: notifications tagged")


# ── 3. Stop hook and stream errors ──────────────────────────────


def test_stop_hook_can_enqueue_another_turn():
    bus = HookBus()
    stops = []

    def on_stop(payload):
        stops.append(payload.iteration)
        if len(stops) == 1:
            return continue_hook({"role": "user", "content": "keep going"})
        return None

    bus.on(HookEvent.STOP, on_stop)
    provider = ScriptedProvider(answer("first"), answer("second"))
    root = run_manager(make_runtime(provider, hooks=bus))

    assert stops == [1, 2]
    assert [(m.role, m.content) for m in root.messages[2:]] == [
        ("assistant", "first"),
        ("user", "keep going"),
        ("assistant", "second"),
    ]
    print("  PASS: stop/continue")


def test_empty_continue_response_ends_run():
    bus = HookBus()
    bus.on(HookEvent.STOP, lambda payload: continue_hook())
    provider = ScriptedProvider(answer("first"), answer("second"))
    root = run_manager(make_runtime(provider, hooks=bus))

    assert len(provider.calls) == 1
    assert [m.role for m in root.messages] == ["system", "user", "assistant"]
    assert root.final_message.content == "first"
    print("  PASS: empty continue ends run")


def test_stream_error_continue_policy():
    bus = HookBus()
    log = record_hooks(bus, HookEvent.ON_ERROR, HookEvent.ON_AGENT_ERROR)
    provider = ScriptedProvider([ErrorEvent(message="bad chunk"), *answer("ok")])
    root = run_manager(
        make_runtime(provider, hooks=bus, stream_error_policy=StreamErrorPolicy.CONTINUE)
    )

    assert [event for event, _ in log] == ["onError"]
    assert log[0][1].error.message == "bad chunk"
    assert root.final_message.content == "ok"
    assert not root.failed
    print("  PASS: stream error continue")


def test_stream_error_abort_policy():
    bus = HookBus()
    log = record_hooks(
        bus, HookEvent.ON_ERROR, HookEvent.ON_AGENT_ERROR, HookEvent.AFTER_AGENT_COMPLETE
    )
    provider = ScriptedProvider([ErrorEvent(message="bad chunk"), *answer("never")])
    root = run_manager(make_runtime(provider, hooks=bus, stream_error_policy=StreamErrorPolicy.ABORT))

    assert [event for event, _ in log] == ["onError", "onAgentError"]
    assert root.failed
    assert root.final_message is None
    print("  PASS: stream error abort")


# ── 4. Tracing and rendering ────────────────────────────────────


def test_trace_phases_in_order():
    writer = MemoryTraceWriter()
    out = io.StringIO()
    orchestrator = AgentOrchestrator(renderer=StreamRenderer(out=out), trace_writer=writer)
    runtime = make_runtime(
        ScriptedProvider(tool_turn(), answer("done")),
        trace_path="trace.jsonl",
        trace_append=False,
        session_id="s-1",
    )
    run_manager(runtime, orchestrator=orchestrator)

    assert writer.phases == [
        "agent_start",
        "model_call",
        "tool_call",
        "tool_result",
        "iteration_complete",
        "model_call",
        "iteration_complete",
        "agent_complete",
    ]
    assert writer.appends[0] is False
    assert all(writer.appends[1:])

    model_call = writer.records[1]
    assert model_call["data"] == {
        "iteration": 1,
        "message_count": 2,
        "model": "manager-model",
        "provider": "scripted",
    }
    assert model_call["agent"]["id"] == "manager"
    assert model_call["session_id"] == "s-1"
    assert writer.records[-1]["data"]["final_message"] == "done"

    rendered = out.getvalue()
    assert "[manager] " in rendered
    assert "[tool_result] <test.echo.v1> echo: hi" in rendered
    print("  PASS: trace order")


def test_no_trace_without_path():
    writer = MemoryTraceWriter()
    run_manager(make_runtime(ScriptedProvider()), orchestrator=make_orchestrator(writer))
    assert writer.records == []
    print("  PASS: tracing disabled")


def test_every_inbound_event_reaches_renderer():
    out = io.StringIO()
    orchestrator = AgentOrchestrator(renderer=StreamRenderer(out=out))
    provider = ScriptedProvider(
        [
            ToolResultEvent(name="echo", result=ToolResult(schema="test.echo.v1", content="out")),
            *answer("ok"),
        ]
    )
    root = run_manager(make_runtime(provider), orchestrator=orchestrator)

    assert "[manager] [tool_result] <test.echo.v1> echo: out\n" in out.getvalue()
    assert [m.role for m in root.messages] == ["system", "user", "assistant"]
    print("  PASS: tool_result rendered")


# ── 5. Compaction ───────────────────────────────────────────────


def test_compaction_runs_with_pre_compact_hook():
    bus = HookBus()
    seen = []
    bus.on(
        HookEvent.PRE_COMPACT,
        lambda payload: seen.append((len(payload.messages), payload.reason)),
    )
    provider = ScriptedProvider(answer("ok"))
    runtime = make_runtime(
        provider,
        hooks=bus,
        transcript_compactor=SimpleTranscriptCompactor(max_messages=3, keep_last=1),
    )
    history = [ChatMessage(role="user", content=f"old {i}") for i in range(4)]
    run_manager(runtime, history=history)

    assert seen == [(6, "truncate 3 oldest messages (limit 3; iteration 1)")]
    assert [m.content for m in provider.calls[0].messages] == [
        "You are manager.",
        "old 3",
        "do it",
    ]
    print("  PASS: compaction")


def test_compactor_selector_per_agent():
    bus = HookBus()
    seen = record_hooks(bus, HookEvent.PRE_COMPACT)
    selector = compactor_for({"someone-else": SimpleTranscriptCompactor(max_messages=1)})
    runtime = make_runtime(ScriptedProvider(), hooks=bus, transcript_compactor=selector)
    run_manager(runtime)
    assert seen == []
    print("  PASS: compactor selector")


# ── 6. Cancellation ─────────────────────────────────────────────


def test_cancelled_before_start():
    token = CancellationToken()
    token.cancel("user abort")
    provider = ScriptedProvider()
    with pytest.raises(AgentCancelledError, match="user abort"):
        run_manager(make_runtime(provider, cancellation=token))
    assert provider.calls == []
    print("  PASS: cancelled before start")


def test_cancelled_during_tool_call():
    token = CancellationToken()

    async def cancel_handler(arguments, ctx):
        token.cancel()
        return {"schema": "test.cancel.v1", "content": "cancelling"}

    tool = ToolDefinition(name="echo", json_schema=ECHO_TOOL.json_schema, handler=cancel_handler)
    provider = ScriptedProvider(tool_turn(), answer("unreachable"))
    with pytest.raises(AgentCancelledError):
        run_manager(make_runtime(provider, tools=[tool], cancellation=token))
    assert len(provider.calls) == 1
    print("  PASS: cancelled mid-run")


# ── 7. Subagents ────────────────────────────────────────────────


def test_spawn_subagent_tool():
    researcher_provider, researcher = make_researcher()
    bus = HookBus()
    log = record_hooks(bus, HookEvent.BEFORE_SPAWN_SUBAGENT, HookEvent.SUBAGENT_STOP)
    provider = ScriptedProvider(
        spawn_turn({"agentId": "researcher", "message": "find facts"}), answer("summary")
    )
    root = run_manager(make_runtime(provider, subagents=[researcher], hooks=bus))

    spawn_schema = next(t for t in provider.calls[0].tools if t["name"] == "spawn_subagent")
    assert "researcher: Finds facts" in spawn_schema["description"]

    child = root.children[0]
    assert (child.id, child.depth, child.parent_id) == ("researcher", 1, "manager")
    assert child.parent is root
    assert child.messages[1].content == "find facts"

    result = json.loads(root.messages[3].content)
    assert result["schema"] == SPAWN_TOOL_RESULT_SCHEMA
    assert result["content"] == "facts"
    assert result["data"]["agent_id"] == "researcher"
    assert result["data"]["prompt"] == "find facts"
    assert result["data"]["message_count"] == 3
    assert result["metadata"]["parent_agent_id"] == "manager"
    assert result["metadata"]["provider"] == "scripted"
    assert result["metadata"]["description"] == "Finds facts"

    assert [event for event, _ in log] == ["beforeSpawnSubagent", "subagentStop"]
    assert log[0][1].target.id == "researcher"
    assert log[1][1].metadata.id == "researcher"
    assert [i.id for i in collect_invocations(root)] == ["manager", "researcher"]
    assert root.final_message.content == "summary"
    print("  PASS: spawn_subagent")


def test_spawn_blocked_by_hook():
    researcher_provider, researcher = make_researcher()
    bus = HookBus()
    bus.on(HookEvent.BEFORE_SPAWN_SUBAGENT, lambda payload: block_hook("not now"))
    provider = ScriptedProvider(
        spawn_turn({"agent": "researcher", "prompt": "go"}), answer("fine")
    )
    root = run_manager(make_runtime(provider, subagents=[researcher], hooks=bus))

    assert root.children == []
    assert researcher_provider.calls == []
    result = json.loads(root.messages[3].content)
    assert result["content"] == "not now"
    assert result["data"] == {
        "agent_id": "researcher",
        "message_count": 0,
        "prompt": "go",
        "blocked": True,
    }
    print("  PASS: spawn blocked")


def test_spawn_override_rewrites_request():
    researcher_provider, researcher = make_researcher()
    bus = HookBus()
    bus.on(
        HookEvent.BEFORE_SPAWN_SUBAGENT,
        lambda payload: {"prompt": "rewritten task", "variables": {"focus": "dates"}},
    )
    provider = ScriptedProvider(spawn_turn({"agent": "researcher", "prompt": "go"}), answer("ok"))
    root = run_manager(make_runtime(provider, subagents=[researcher], hooks=bus))

    child = root.children[0]
    assert child.prompt == "rewritten task"
    assert child.variables == {"focus": "dates"}
    data = json.loads(root.messages[3].content)["data"]
    assert data["variables"] == {"focus": "dates"}
    print("  PASS: spawn override")


def test_spawn_unknown_agent_is_recoverable():
    researcher_provider, researcher = make_researcher()
    provider = ScriptedProvider(spawn_turn({"agent": "ghost", "prompt": "x"}), answer("ok"))
    root = run_manager(make_runtime(provider, subagents=[researcher]))

    assert root.messages[3].content == (
        'Tool execution failed: Unknown subagent "ghost". Available agents: researcher.'
    )
    assert researcher_provider.calls == []
    print("  PASS: unknown subagent")


def test_spawn_requires_prompt():
    _, researcher = make_researcher()
    provider = ScriptedProvider(spawn_turn({"agent": "researcher"}), answer("ok"))
    root = run_manager(make_runtime(provider, subagents=[researcher]))
    assert root.messages[3].content == (
        'Tool execution failed: spawn_subagent requires a non-empty "prompt".'
    )
    print("  PASS: spawn prompt required")


def test_child_failure_unwinds_parent():
    researcher_provider, researcher = make_researcher(
        tool_turn(arguments={"text": 5}), tools=[ECHO_TOOL]
    )
    bus = HookBus()
    log = record_hooks(bus, HookEvent.ON_AGENT_ERROR, HookEvent.SUBAGENT_STOP)
    provider = ScriptedProvider(spawn_turn({"agent": "researcher", "prompt": "go"}))

    with pytest.raises(ToolValidationError):
        run_manager(make_runtime(provider, subagents=[researcher], hooks=bus))

    assert [(event, payload.metadata.id) for event, payload in log] == [
        ("onAgentError", "researcher"),
        ("subagentStop", "researcher"),
        ("onAgentError", "manager"),
    ]
    print("  PASS: child failure unwinds")


def test_hooks_can_run_subagents():
    _, researcher = make_researcher(answer("checked"))
    bus = HookBus()
    results = []

    async def on_stop(payload):
        if payload.metadata.id == "manager" and not results:
            results.append(
                await bus.run_agent(
                    HookAgentRunOptions(agent_id="researcher", prompt="double check")
                )
            )

    bus.on(HookEvent.STOP, on_stop)
    root = run_manager(make_runtime(ScriptedProvider(answer("draft")), subagents=[researcher], hooks=bus))

    assert [c.id for c in root.children] == ["researcher"]
    assert results[0].target.id == "researcher"
    assert results[0].messages[-1].content == "checked"
    assert not bus.has_agent_runner()
    print("  PASS: hook agent runner")


def test_spawn_from_invocation_handle():
    _, researcher = make_researcher(answer("direct"))
    runtime = make_runtime(ScriptedProvider(answer("ok")), subagents=[researcher])
    orchestrator = make_orchestrator()

    async def scenario():
        root = await orchestrator.run_agent(
            AgentRunRequest(definition=runtime.catalog.get_manager().definition, prompt="hi"),
            runtime,
        )
        child = await root.spawn(researcher.definition, InvocationOptions(prompt="direct task"))
        return root, child

    root, child = asyncio.run(scenario())
    assert root.children == [child]
    assert child.final_message.content == "direct"
    print("  PASS: spawn via invocation")


def test_spawn_of_unregistered_agent_leaves_no_child():
    runtime = make_runtime(ScriptedProvider(answer("ok")))
    orchestrator = make_orchestrator()

    async def scenario():
        root = await orchestrator.run_agent(
            AgentRunRequest(definition=runtime.catalog.get_manager().definition, prompt="hi"),
            runtime,
        )
        with pytest.raises(ValueError, match="No runtime descriptor registered for agent ghost"):
            await root.spawn(make_definition("ghost"), InvocationOptions(prompt="boo"))
        return root

    root = asyncio.run(scenario())
    assert root.children == []
    assert [i.id for i in collect_invocations(root)] == ["manager"]
    print("  PASS: failed spawn not recorded")


def test_collect_invocations_is_pre_order():
    factory = AgentInvocationFactory()

    def create(agent_id, parent=None):
        invocation = factory.create(
            make_definition(agent_id), InvocationOptions(prompt=agent_id), parent
        )
        if parent is not None:
            parent.add_child(invocation)
        return invocation

    root = create("root")
    a = create("a", root)
    create("a1", a)
    create("b", root)

    assert [i.id for i in collect_invocations(root)] == ["root", "a", "a1", "b"]
    print("  PASS: pre-order collection")
