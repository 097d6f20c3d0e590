"""Prompt rendering with Jinja2.

TemplateEngine renders named template files and inline strings. PromptRenderer
builds the variable set for one agent invocation (builtins, then definition
variables, then caller variables, deep-merged in that order) and renders the
system and user prompts from it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from jinja2 import BaseLoader, Environment, FileSystemLoader

from agentforge.config import settings

if TYPE_CHECKING:
    from agentforge.agent.invocation import InvocationOptions
    from agentforge.agent.state import AgentDefinition, ChatMessage, PackedContext

logger = logging.getLogger(__name__)


class TemplateEngine:
    def __init__(self, template_dir: Path | str | None = None):
        template_dir = Path(template_dir or settings.TEMPLATES_DIR)
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            keep_trailing_newline=True,
        )
        self.string_env = Environment(loader=BaseLoader(), keep_trailing_newline=True)

    def render_template(self, name: str, variables: dict[str, Any]) -> str:
        return self.env.get_template(name).render(**variables)

    def render_string(self, source: str, variables: dict[str, Any]) -> str:
        return self.string_env.from_string(source).render(**variables)


def merge_variables(*sources: dict[str, Any] | None) -> dict[str, Any]:
    """Deep-merge mappings left to right; later values win, dicts merge."""
    result: dict[str, Any] = {}
    for source in sources:
        if not source:
            continue
        for key, value in source.items():
            result[key] = _merge_value(result.get(key), value)
    return result


def _merge_value(existing: Any, incoming: Any) -> Any:
    if isinstance(incoming, dict):
        merged = dict(existing) if isinstance(existing, dict) else {}
        for key, value in incoming.items():
            merged[key] = _merge_value(merged.get(key), value)
        return merged
    return incoming


class PromptRenderer:
    def __init__(self, engine: TemplateEngine | None = None):
        self.engine = engine or TemplateEngine()

    def build_variables(
        self,
        definition: AgentDefinition,
        options: InvocationOptions,
        context: PackedContext,
        history: list[ChatMessage],
        parent_id: str | None = None,
    ) -> dict[str, Any]:
        builtin: dict[str, Any] = {
            "agent": {"id": definition.id},
            "prompt": options.prompt,
            "context": context,
            "history": [m.to_dict() for m in history],
            "system_prompt": definition.system_prompt,
        }
        if parent_id:
            builtin["parent"] = {"id": parent_id}
        return merge_variables(builtin, definition.variables, options.variables)

    def render_system_prompt(
        self, definition: AgentDefinition, variables: dict[str, Any]
    ) -> str:
        if definition.system_prompt_template:
            rendered = self.engine.render_template(
                definition.system_prompt_template, variables
            )
        else:
            rendered = self.engine.render_string(definition.system_prompt, variables)
        variables["system_prompt"] = rendered
        logger.debug("Rendered system prompt for %s", definition.id)
        return rendered

    def render_user_prompt(
        self,
        definition: AgentDefinition,
        options: InvocationOptions,
        variables: dict[str, Any],
    ) -> str:
        template = options.prompt_template or definition.user_prompt_template
        if template:
            logger.debug("Rendering user prompt for %s from %s", definition.id, template)
            return self.engine.render_template(template, variables)
        return self.engine.render_string(options.prompt, variables)
