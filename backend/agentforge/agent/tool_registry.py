from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from jsonschema import Draft7Validator

from agentforge.agent.constants import TOOL_SCHEMA_PREFIX
from agentforge.agent.errors import ToolValidationError, UnknownToolError
from agentforge.agent.validation import format_validation_errors, issues_from_errors

logger = logging.getLogger(__name__)


TOOL_RESULT_ENVELOPE_SCHEMA: dict = {
    "type": "object",
    "additionalProperties": False,
    "required": ["schema", "content"],
    "properties": {
        "schema": {"type": "string", "minLength": 1},
        "content": {"type": "string"},
        "data": {},
        "metadata": {"type": "object"},
    },
}


@dataclass
class ToolResult:
    schema: str
    content: str
    data: Any = None
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"schema": self.schema, "content": self.content}
        if self.data is not None:
            d["data"] = self.data
        if self.metadata is not None:
            d["metadata"] = self.metadata
        return d

    @classmethod
    def from_dict(cls, d: dict) -> ToolResult:
        return cls(
            schema=d["schema"],
            content=d["content"],
            data=d.get("data"),
            metadata=d.get("metadata"),
        )


@dataclass
class ToolExecutionContext:
    """Per-call capabilities handed to tool handlers."""

    cwd: str
    confirm: Callable[[str], Awaitable[bool]]
    env: dict[str, str] = field(default_factory=dict)


ToolHandler = Callable[[dict, ToolExecutionContext], Awaitable["ToolResult | dict"]]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    json_schema: dict
    handler: ToolHandler
    description: str | None = None
    output_schema: dict | None = None


@dataclass
class ToolCall:
    name: str
    arguments: Any = None
    id: str | None = None


# Compiled validators shared by every registry, keyed by schema id.
_VALIDATOR_CACHE: dict[str, tuple[dict, Draft7Validator]] = {}


def _compile(schema_id: str, schema: dict) -> Draft7Validator:
    cached = _VALIDATOR_CACHE.get(schema_id)
    if cached is not None and cached[0] == schema:
        return cached[1]
    Draft7Validator.check_schema(schema)
    validator = Draft7Validator(schema)
    _VALIDATOR_CACHE[schema_id] = (schema, validator)
    return validator


def _coerce_arguments(raw: Any) -> dict:
    if raw is None:
        return {}
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {"input": raw}
        return parsed if isinstance(parsed, dict) else {"input": parsed}
    return raw


@dataclass
class _RegisteredTool:
    definition: ToolDefinition
    input_validator: Draft7Validator
    output_schema_id: str | None = None
    data_validator: Draft7Validator | None = None


class ToolRegistry:
    """Registry of tools an agent may call.

    Argument and result schemas are compiled once at registration time.
    execute() validates arguments, runs the handler, and validates the
    returned ToolResult envelope plus its structured data. Handler exceptions
    are left to the caller.
    """

    def __init__(
        self,
        definitions: Iterable[ToolDefinition] | None = None,
        schema_prefix: str = TOOL_SCHEMA_PREFIX,
    ):
        self._tools: dict[str, _RegisteredTool] = {}
        self._schema_prefix = schema_prefix
        self._envelope_validator = _compile(
            f"{schema_prefix}.tool.result.envelope", TOOL_RESULT_ENVELOPE_SCHEMA
        )
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: ToolDefinition) -> None:
        input_id = (
            definition.json_schema.get("$id")
            or f"{self._schema_prefix}.tool.{definition.name}.arguments"
        )
        registered = _RegisteredTool(
            definition=definition,
            input_validator=_compile(input_id, definition.json_schema),
        )

        if definition.output_schema is not None:
            schema_id = (
                definition.output_schema.get("$id")
                or definition.output_schema.get("id")
                or f"{self._schema_prefix}.tool.{definition.name}.result.{uuid.uuid4()}"
            )
            data_schema = {**definition.output_schema, "$id": schema_id}
            data_schema.pop("id", None)
            registered.output_schema_id = schema_id
            registered.data_validator = _compile(schema_id, data_schema)

        if definition.name in self._tools:
            logger.debug("Replacing tool definition %s", definition.name)
        self._tools[definition.name] = registered

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> ToolDefinition | None:
        registered = self._tools.get(name)
        return registered.definition if registered else None

    def output_schema_id(self, name: str) -> str | None:
        registered = self._tools.get(name)
        return registered.output_schema_id if registered else None

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def definitions(self) -> list[ToolDefinition]:
        return [t.definition for t in self._tools.values()]

    def subset(self, names: Iterable[str]) -> ToolRegistry:
        wanted = set(names)
        return ToolRegistry(
            [t.definition for n, t in self._tools.items() if n in wanted],
            schema_prefix=self._schema_prefix,
        )

    def schemas(self) -> list[dict]:
        """Return provider-neutral function schemas for every tool."""
        return [
            {
                "type": "function",
                "name": t.definition.name,
                "description": t.definition.description,
                "parameters": t.definition.json_schema,
            }
            for t in self._tools.values()
        ]

    async def execute(self, call: ToolCall, ctx: ToolExecutionContext) -> ToolResult:
        """Execute a tool by name with the given arguments."""
        registered = self._tools.get(call.name)
        if registered is None:
            raise UnknownToolError(call.name)
        tool = registered.definition

        arguments = _coerce_arguments(call.arguments)
        self._validate(
            registered.input_validator,
            arguments,
            "arguments",
            tool.name,
            f"Validation failed for tool {tool.name}",
        )

        raw = await tool.handler(arguments, ctx)
        envelope = raw.to_dict() if isinstance(raw, ToolResult) else raw

        output_prefix = f"Output validation failed for tool {tool.name}"
        self._validate(
            self._envelope_validator, envelope, "result", tool.name, output_prefix
        )
        result = ToolResult.from_dict(envelope)

        if registered.data_validator is not None:
            expected = registered.output_schema_id
            if result.schema != expected:
                raise ToolValidationError(
                    f"{output_prefix}: expected schema {expected} but received {result.schema}",
                    tool_name=tool.name,
                    context="result",
                )
            if result.data is None:
                raise ToolValidationError(
                    f"{output_prefix}: structured data missing for schema {expected}",
                    tool_name=tool.name,
                    context="resultData",
                )
            self._validate(
                registered.data_validator,
                result.data,
                "resultData",
                tool.name,
                output_prefix,
            )

        return result

    @staticmethod
    def _validate(
        validator: Draft7Validator,
        instance: Any,
        context: str,
        tool_name: str,
        prefix: str,
    ) -> None:
        errors = list(validator.iter_errors(instance))
        if not errors:
            return
        issues = issues_from_errors(errors)
        raise ToolValidationError(
            f"{prefix}: {format_validation_errors(issues, context)}",
            tool_name=tool_name,
            context=context,
            issues=issues,
        )
