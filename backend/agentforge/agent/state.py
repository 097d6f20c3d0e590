"""Data model for the agent runtime.

Definitions are immutable templates loaded from configuration. Runtime
descriptors bind a definition to a concrete provider adapter and model.
Transcripts are plain lists of ChatMessage owned by one invocation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from agentforge.agent.tool_registry import ToolDefinition
    from agentforge.providers.base import ProviderAdapter


Role = Literal["system", "user", "assistant", "tool", "developer"]


# ── Transcript ───────────────────────────────────────────────────


@dataclass
class ChatMessage:
    role: Role
    content: str
    name: str | None = None
    tool_call_id: str | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name:
            d["name"] = self.name
        if self.tool_call_id:
            d["tool_call_id"] = self.tool_call_id
        return d

    @classmethod
    def from_dict(cls, d: dict) -> ChatMessage:
        return cls(
            role=d["role"],
            content=d.get("content") or "",
            name=d.get("name"),
            tool_call_id=d.get("tool_call_id"),
        )

    @classmethod
    def coerce(cls, value: ChatMessage | dict) -> ChatMessage:
        if isinstance(value, ChatMessage):
            return value
        return cls.from_dict(value)


# ── Packed context ───────────────────────────────────────────────


@dataclass
class PackedFile:
    path: str
    content: str
    bytes: int = 0


@dataclass
class PackedContext:
    """Workspace files already selected and read by the context packer."""

    files: list[PackedFile] = field(default_factory=list)
    total_bytes: int = 0
    text: str = ""

    def clone(self) -> PackedContext:
        return PackedContext(
            files=[PackedFile(f.path, f.content, f.bytes) for f in self.files],
            total_bytes=self.total_bytes,
            text=self.text,
        )

    def to_dict(self) -> dict:
        return {
            "files": [
                {"path": f.path, "bytes": f.bytes} for f in self.files
            ],
            "total_bytes": self.total_bytes,
        }

    @classmethod
    def from_dict(cls, d: dict) -> PackedContext:
        return cls(
            files=[
                PackedFile(
                    path=f["path"],
                    content=f.get("content", ""),
                    bytes=f.get("bytes", 0),
                )
                for f in d.get("files", [])
            ],
            total_bytes=d.get("total_bytes", 0),
            text=d.get("text", ""),
        )


# ── Agent definitions ────────────────────────────────────────────


@dataclass(frozen=True)
class AgentDefinition:
    """One configured role: system prompt, tools, and model selection."""

    id: str
    system_prompt: str
    system_prompt_template: str | None = None
    user_prompt_template: str | None = None
    tools: list[ToolDefinition] = field(default_factory=list)
    model: str | None = None
    provider: str | None = None
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentRuntimeMetadata:
    name: str | None = None
    description: str | None = None
    routing_threshold: float | None = None
    profile_id: str | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class AgentRuntimeDescriptor:
    """A definition resolved to an executable provider/model pair."""

    id: str
    definition: AgentDefinition
    provider: ProviderAdapter
    model: str
    metadata: AgentRuntimeMetadata | None = None
