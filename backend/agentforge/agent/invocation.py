"""AgentInvocation — one running instance of an agent definition.

The invocation owns its transcript and its children. The parent link is a
weak reference used for lookups only, so the spawn tree has a single owning
edge from parent to child.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import weakref
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from agentforge.agent.hooks import AgentMetadata
from agentforge.agent.state import AgentDefinition, ChatMessage, PackedContext
from agentforge.agent.tool_registry import ToolRegistry
from agentforge.services.template_engine import PromptRenderer

if TYPE_CHECKING:
    from agentforge.agent.state import AgentRuntimeDescriptor

logger = logging.getLogger(__name__)


@dataclass
class InvocationOptions:
    prompt: str
    context: PackedContext | None = None
    history: list[ChatMessage] | None = None
    variables: dict[str, Any] | None = None
    prompt_template: str | None = None


SpawnHandler = Callable[[AgentDefinition, InvocationOptions], Awaitable["AgentInvocation"]]


def compose_user_message(prompt: str, context: PackedContext) -> str:
    text = context.text.strip() if context.text else ""
    if not text:
        return prompt
    return f"{prompt}\n\n<workspace_context>\n{text}\n</workspace_context>"


class AgentInvocation:
    def __init__(
        self,
        definition: AgentDefinition,
        options: InvocationOptions,
        parent: AgentInvocation | None = None,
    ) -> None:
        self.definition = definition
        self.prompt = options.prompt
        self.context = options.context or PackedContext()
        self.history = list(options.history or [])
        self.variables = dict(options.variables or {})
        self.children: list[AgentInvocation] = []
        self.tool_registry = ToolRegistry(definition.tools)
        self.runtime: AgentRuntimeDescriptor | None = None
        self.spawn_handler: SpawnHandler | None = None
        self.failed = False
        self.error: dict[str, Any] | None = None
        self.previous_response_id: str | None = None

        self._parent_ref = weakref.ref(parent) if parent is not None else None
        self.parent_id = parent.id if parent is not None else None
        self.depth = parent.depth + 1 if parent is not None else 0

        self.messages: list[ChatMessage] = [
            ChatMessage(role="system", content=definition.system_prompt),
            *self.history,
            ChatMessage(role="user", content=compose_user_message(self.prompt, self.context)),
        ]

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def parent(self) -> AgentInvocation | None:
        return self._parent_ref() if self._parent_ref is not None else None

    @property
    def is_root(self) -> bool:
        return self.depth == 0

    @property
    def final_message(self) -> ChatMessage | None:
        for message in reversed(self.messages):
            if message.role == "assistant" and not message.tool_call_id:
                return message
        return None

    def add_child(self, child: AgentInvocation) -> None:
        self.children.append(child)

    async def spawn(
        self, definition: AgentDefinition, options: InvocationOptions
    ) -> AgentInvocation:
        if self.spawn_handler is None:
            raise RuntimeError(
                "This agent cannot spawn subagents without an orchestrator binding."
            )
        return await self.spawn_handler(definition, options)

    def metadata(self) -> AgentMetadata:
        runtime = self.runtime
        return AgentMetadata(
            id=self.id,
            parent_id=self.parent_id,
            depth=self.depth,
            is_root=self.is_root,
            system_prompt=self.definition.system_prompt,
            tools=self.tool_registry.list_tools(),
            model=runtime.model if runtime else self.definition.model,
            provider=runtime.provider.name if runtime else self.definition.provider,
        )

    def __repr__(self) -> str:
        return f"AgentInvocation(id={self.id!r}, depth={self.depth}, messages={len(self.messages)})"


class AgentInvocationFactory:
    """Builds invocations with rendered prompts and private copies of their inputs."""

    def __init__(self, prompt_renderer: PromptRenderer | None = None):
        self.prompt_renderer = prompt_renderer or PromptRenderer()

    def create(
        self,
        definition: AgentDefinition,
        options: InvocationOptions,
        parent: AgentInvocation | None = None,
    ) -> AgentInvocation:
        context = options.context.clone() if options.context else PackedContext()
        history = [dataclasses.replace(m) for m in options.history or []]

        variables = self.prompt_renderer.build_variables(
            definition,
            options,
            context,
            history,
            parent_id=parent.id if parent else None,
        )
        system_prompt = self.prompt_renderer.render_system_prompt(definition, variables)
        prompt = self.prompt_renderer.render_user_prompt(definition, options, variables)

        rendered = dataclasses.replace(definition, system_prompt=system_prompt)
        return AgentInvocation(
            rendered,
            InvocationOptions(
                prompt=prompt,
                context=context,
                history=history,
                variables=copy.deepcopy(options.variables) if options.variables else None,
            ),
            parent,
        )
