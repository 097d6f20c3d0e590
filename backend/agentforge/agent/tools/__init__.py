from agentforge.agent.tool_registry import ToolDefinition, ToolRegistry
from agentforge.agent.tools.command_tools import COMMAND_TOOLS
from agentforge.agent.tools.file_tools import FILE_TOOLS

BUILTIN_TOOLS: list[ToolDefinition] = [*FILE_TOOLS, *COMMAND_TOOLS]


def builtin_tools(names: list[str] | None = None) -> list[ToolDefinition]:
    """Return builtin tool definitions, optionally only the named ones."""
    if names is None:
        return list(BUILTIN_TOOLS)
    by_name = {t.name: t for t in BUILTIN_TOOLS}
    unknown = [n for n in names if n not in by_name]
    if unknown:
        raise ValueError(f"Unknown builtin tool(s): {', '.join(unknown)}")
    return [by_name[n] for n in names]


def register_builtin_tools(registry: ToolRegistry, names: list[str] | None = None) -> None:
    for definition in builtin_tools(names):
        registry.register(definition)
