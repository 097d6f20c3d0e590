"""Agent runtime: invocations, hooks, tools, and the orchestrator loop."""

from agentforge.agent.catalog import AgentCatalog
from agentforge.agent.hooks import HookBus, HookEvent, block_hook, continue_hook
from agentforge.agent.invocation import AgentInvocation, AgentInvocationFactory
from agentforge.agent.orchestrator import (
    AgentOrchestrator,
    AgentRunRequest,
    AgentRuntimeOptions,
    StreamErrorPolicy,
    collect_invocations,
)
from agentforge.agent.session import SessionResult, run_session
from agentforge.agent.state import AgentDefinition, AgentRuntimeDescriptor, ChatMessage
from agentforge.agent.tool_registry import ToolDefinition, ToolRegistry, ToolResult

__all__ = [
    "AgentCatalog",
    "AgentDefinition",
    "AgentInvocation",
    "AgentInvocationFactory",
    "AgentOrchestrator",
    "AgentRunRequest",
    "AgentRuntimeDescriptor",
    "AgentRuntimeOptions",
    "ChatMessage",
    "HookBus",
    "HookEvent",
    "SessionResult",
    "StreamErrorPolicy",
    "ToolDefinition",
    "ToolRegistry",
    "ToolResult",
    "block_hook",
    "collect_invocations",
    "continue_hook",
    "run_session",
]
