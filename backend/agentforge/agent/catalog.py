"""AgentCatalog — the set of runtime descriptors one session can run."""

from __future__ import annotations

import logging
from typing import Iterable

from agentforge.agent.state import AgentRuntimeDescriptor
from agentforge.config import settings

logger = logging.getLogger(__name__)


class AgentCatalog:
    """Maps agent ids to runtime descriptors.

    The manager is the root agent of every session; subagents are the
    descriptors the spawn tool may delegate to.
    """

    def __init__(
        self,
        manager: AgentRuntimeDescriptor,
        subagents: Iterable[AgentRuntimeDescriptor] = (),
        enable_subagents: bool | None = None,
    ) -> None:
        self._manager = manager
        self._subagents: dict[str, AgentRuntimeDescriptor] = {}
        for descriptor in subagents:
            if descriptor.id in self._subagents:
                logger.warning("Duplicate subagent id %s, keeping the last one", descriptor.id)
            self._subagents[descriptor.id] = descriptor
        self.enable_subagents = (
            settings.ENABLE_SUBAGENTS if enable_subagents is None else enable_subagents
        )

    def get_manager(self) -> AgentRuntimeDescriptor:
        return self._manager

    def get_agent(self, agent_id: str) -> AgentRuntimeDescriptor | None:
        if agent_id == self._manager.id:
            return self._manager
        return self._subagents.get(agent_id)

    def get_subagent(self, agent_id: str) -> AgentRuntimeDescriptor | None:
        return self._subagents.get(agent_id)

    def list_subagents(self) -> list[AgentRuntimeDescriptor]:
        return list(self._subagents.values())

    def delegation_enabled(self) -> bool:
        return bool(self.enable_subagents and self._subagents)
