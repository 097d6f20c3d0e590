"""Tests for HookBus dispatch semantics and the listener-result helpers."""

from __future__ import annotations

import asyncio
import sys
import types
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from agentforge.agent.errors import (
    HookBlockedError,
    HookDispatchError,
    MissingAgentRunnerError,
)
from agentforge.agent.hooks import (
    HookAgentRunOptions,
    HookBlockResponse,
    HookBus,
    HookEvent,
    HookDispatchResult,
    SpawnSubagentOverride,
    as_continue_response,
    as_spawn_override,
    block_hook,
    continue_hook,
    dispatch_critical,
    dispatch_or_raise,
    install_hook_modules,
    is_block_response,
)
from agentforge.agent.state import ChatMessage


# ── 1. Ordering and short-circuit ───────────────────────────────


def test_listeners_run_in_registration_order():
    bus = HookBus()
    calls = []
    bus.on(HookEvent.STOP, lambda p: calls.append("first"))
    bus.on("stop", lambda p: calls.append("second"))

    async def third(payload):
        calls.append("third")
        return "done"

    bus.on(HookEvent.STOP, third)
    result = asyncio.run(bus.emit(HookEvent.STOP, {}))

    assert calls == ["first", "second", "third"]
    assert result.results == [None, None, "done"]
    assert result.blocked is None and result.error is None
    print("  PASS: registration order")


def test_block_stops_dispatch():
    bus = HookBus()
    calls = []
    bus.on(HookEvent.PRE_TOOL_USE, lambda p: calls.append(1))
    bus.on(HookEvent.PRE_TOOL_USE, lambda p: block_hook("denied"))
    bus.on(HookEvent.PRE_TOOL_USE, lambda p: calls.append(3))

    result = asyncio.run(bus.emit(HookEvent.PRE_TOOL_USE, {}))
    assert calls == [1]
    assert result.blocked == HookBlockResponse(reason="denied")
    assert len(result.results) == 2
    print("  PASS: block short-circuits")


def test_dict_block_response_is_recognised():
    bus = HookBus()
    bus.on(HookEvent.PRE_TOOL_USE, lambda p: {"blocked": True, "reason": "policy"})
    result = asyncio.run(bus.emit(HookEvent.PRE_TOOL_USE, {}))
    assert result.blocked.reason == "policy"
    assert is_block_response({"blocked": True})
    assert not is_block_response({"blocked": "yes"})
    print("  PASS: dict block response")


def test_listener_error_is_captured_not_raised():
    bus = HookBus()
    calls = []
    boom = RuntimeError("listener down")

    def failing(payload):
        raise boom

    bus.on(HookEvent.BEFORE_MODEL_CALL, failing)
    bus.on(HookEvent.BEFORE_MODEL_CALL, lambda p: calls.append("never"))

    result = asyncio.run(bus.emit(HookEvent.BEFORE_MODEL_CALL, {}))
    assert result.error is boom
    assert calls == []
    print("  PASS: errors captured")


def test_unsubscribe_and_clear():
    bus = HookBus()
    calls = []
    off = bus.on(HookEvent.NOTIFICATION, lambda p: calls.append("a"))
    bus.on(HookEvent.NOTIFICATION, lambda p: calls.append("b"))
    off()
    asyncio.run(bus.emit(HookEvent.NOTIFICATION, {}))
    assert calls == ["b"]

    bus.clear(HookEvent.NOTIFICATION)
    assert bus.listeners(HookEvent.NOTIFICATION) == []
    print("  PASS: unsubscribe/clear")


def test_listener_added_during_dispatch_waits_for_next_emit():
    bus = HookBus()
    calls = []

    def register_more(payload):
        calls.append("outer")
        bus.on(HookEvent.STOP, lambda p: calls.append("late"))

    bus.on(HookEvent.STOP, register_more)
    asyncio.run(bus.emit(HookEvent.STOP, {}))
    assert calls == ["outer"]
    print("  PASS: dispatch snapshots listeners")


def test_unknown_event_name_rejected():
    with pytest.raises(ValueError):
        HookBus().on("afterEverything", lambda p: None)
    print("  PASS: unknown event rejected")


# ── 2. Call-site helpers ────────────────────────────────────────


def test_dispatch_or_raise_reraises_listener_exception():
    bus = HookBus()
    boom = KeyError("missing")

    def failing(payload):
        raise boom

    bus.on(HookEvent.POST_TOOL_USE, failing)
    with pytest.raises(KeyError) as info:
        asyncio.run(dispatch_or_raise(bus, HookEvent.POST_TOOL_USE, {}))
    assert info.value is boom
    print("  PASS: dispatch_or_raise re-raises")


def test_dispatch_or_raise_wraps_non_exception_errors():
    class OddBus(HookBus):
        async def emit(self, event, payload):
            return HookDispatchResult(error="plain string failure")

    with pytest.raises(HookDispatchError) as info:
        asyncio.run(dispatch_or_raise(OddBus(), HookEvent.STOP, {}))
    assert str(info.value) == 'Hook "stop" failed: plain string failure'
    print("  PASS: non-exception errors wrapped")


def test_dispatch_or_raise_returns_blocks():
    bus = HookBus()
    bus.on(HookEvent.PRE_TOOL_USE, lambda p: block_hook())
    result = asyncio.run(dispatch_or_raise(bus, HookEvent.PRE_TOOL_USE, {}))
    assert result.blocked is not None
    print("  PASS: blocks returned to caller")


def test_dispatch_critical_raises_on_block():
    bus = HookBus()
    bus.on(HookEvent.SESSION_START, lambda p: block_hook("maintenance window"))
    with pytest.raises(HookBlockedError) as info:
        asyncio.run(dispatch_critical(bus, HookEvent.SESSION_START, {}))
    assert str(info.value) == "maintenance window"
    assert info.value.event == "sessionStart"
    print("  PASS: critical block raises")


# ── 3. Result helpers ───────────────────────────────────────────


def test_continue_response_normalizes_messages():
    response = continue_hook(
        {"role": "user", "content": "again", "name": "", "extra": "dropped"},
        ChatMessage(role="assistant", content="ok"),
    )
    assert response.enqueue == [
        ChatMessage(role="user", content="again"),
        ChatMessage(role="assistant", content="ok"),
    ]

    from_dict = as_continue_response(
        {"continue": True, "enqueue": [{"role": "user", "content": "x"}]}
    )
    assert from_dict.enqueue == [ChatMessage(role="user", content="x")]
    assert as_continue_response({"continue": False}) is None
    assert as_continue_response(None) is None
    print("  PASS: continue responses")


def test_spawn_override_from_dict():
    override = as_spawn_override(
        {"prompt": "rewritten", "allowed_subagents": ["researcher"]}
    )
    assert override == SpawnSubagentOverride(
        prompt="rewritten", allowed_subagents=["researcher"]
    )
    assert as_spawn_override({"unrelated": 1}) is None
    assert as_spawn_override(block_hook()) is None
    print("  PASS: spawn overrides")


# ── 4. Agent runner and hook modules ────────────────────────────


def test_agent_runner_requires_registration():
    bus = HookBus()
    options = HookAgentRunOptions(agent_id="researcher", prompt="look")
    with pytest.raises(MissingAgentRunnerError):
        asyncio.run(bus.run_agent(options))

    async def runner(opts):
        return f"ran {opts.agent_id}"

    bus.set_agent_runner(runner)
    assert bus.has_agent_runner()
    assert asyncio.run(bus.run_agent(options)) == "ran researcher"
    bus.clear_agent_runner()
    assert not bus.has_agent_runner()
    print("  PASS: agent runner")


def test_install_hook_modules(monkeypatch):
    seen = []

    with_register = types.ModuleType("audit_hooks")
    with_register.register_hooks = lambda bus: bus.on(HookEvent.STOP, lambda p: seen.append("register"))

    with_mapping = types.ModuleType("mapping_hooks")
    with_mapping.HOOKS = {"stop": [lambda p: seen.append("mapping")]}

    monkeypatch.setitem(sys.modules, "audit_hooks", with_register)
    monkeypatch.setitem(sys.modules, "mapping_hooks", with_mapping)

    bus = HookBus()
    install_hook_modules(bus, ["audit_hooks", "mapping_hooks"])
    asyncio.run(bus.emit(HookEvent.STOP, {}))
    assert seen == ["register", "mapping"]

    empty = types.ModuleType("empty_hooks")
    monkeypatch.setitem(sys.modules, "empty_hooks", empty)
    with pytest.raises(ValueError):
        install_hook_modules(bus, ["empty_hooks"])
    print("  PASS: hook modules")
