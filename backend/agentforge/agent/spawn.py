"""The spawn_subagent tool: schema, description, and argument parsing.

Models are inconsistent about argument names, so a few aliases are accepted
for the target agent and the delegated prompt.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from agentforge.agent.constants import SPAWN_TOOL_NAME
from agentforge.agent.errors import SubagentError
from agentforge.agent.hooks import SpawnSubagentTarget
from agentforge.agent.state import AgentRuntimeDescriptor

AGENT_ALIASES = ("agent", "agentId", "agent_id", "id", "target")
PROMPT_ALIASES = ("prompt", "message", "input", "instructions")

SPAWN_TOOL_PARAMETERS: dict = {
    "type": "object",
    "additionalProperties": False,
    "required": ["agent", "prompt"],
    "properties": {
        "agent": {
            "type": "string",
            "description": "Id of the subagent to delegate to.",
        },
        "prompt": {
            "type": "string",
            "description": "Self-contained task description for the subagent.",
        },
        "variables": {
            "type": "object",
            "description": "Template variables passed to the subagent's prompts.",
        },
        "metadata": {
            "type": "object",
            "description": "Free-form metadata recorded with the delegation.",
        },
    },
}


@dataclass
class SpawnArguments:
    agent_id: str
    prompt: str
    variables: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


def describe_subagents(subagents: list[AgentRuntimeDescriptor]) -> str:
    lines = []
    for descriptor in subagents:
        meta = descriptor.metadata
        summary = (meta.description or meta.name) if meta else None
        lines.append(f"- {descriptor.id}: {summary}" if summary else f"- {descriptor.id}")
    return "\n".join(lines)


def build_spawn_tool_schema(subagents: list[AgentRuntimeDescriptor]) -> dict:
    description = (
        "Delegate a focused task to a specialised subagent and receive its "
        "final answer. Available agents:\n" + describe_subagents(subagents)
    )
    return {
        "type": "function",
        "name": SPAWN_TOOL_NAME,
        "description": description,
        "parameters": SPAWN_TOOL_PARAMETERS,
    }


def _first_string(arguments: dict, keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = arguments.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def parse_spawn_arguments(arguments: Any) -> SpawnArguments:
    if not isinstance(arguments, dict):
        raise SubagentError(f'{SPAWN_TOOL_NAME} requires an "agent" property.')

    agent_id = _first_string(arguments, AGENT_ALIASES)
    if agent_id is None:
        raise SubagentError(f'{SPAWN_TOOL_NAME} requires an "agent" property.')

    prompt = _first_string(arguments, PROMPT_ALIASES)
    if prompt is None:
        raise SubagentError(f'{SPAWN_TOOL_NAME} requires a non-empty "prompt".')

    variables = arguments.get("variables")
    metadata = arguments.get("metadata")
    return SpawnArguments(
        agent_id=agent_id,
        prompt=prompt,
        variables=variables if isinstance(variables, dict) else None,
        metadata=metadata if isinstance(metadata, dict) else None,
    )


def target_summary(descriptor: AgentRuntimeDescriptor) -> SpawnSubagentTarget:
    return SpawnSubagentTarget(
        id=descriptor.id,
        model=descriptor.model,
        provider=descriptor.provider.name,
        metadata=descriptor.metadata.to_dict() if descriptor.metadata else None,
    )
