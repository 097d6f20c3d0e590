from pathlib import Path

from agentforge.agent.constants import (
    LIST_DIRECTORY_MAX_DEPTH,
    MAX_FILE_READ_CHARS,
    MAX_FILE_WRITE_BYTES,
    READ_FILE_TRUNCATION_MSG,
)
from agentforge.agent.tool_registry import ToolDefinition, ToolExecutionContext, ToolResult

FILE_READ_SCHEMA = "agentforge.tool.file_read.result.v1"
FILE_WRITE_SCHEMA = "agentforge.tool.file_write.result.v1"
FILE_EDIT_SCHEMA = "agentforge.tool.file_edit.result.v1"
LIST_DIRECTORY_SCHEMA = "agentforge.tool.list_directory.result.v1"

IGNORED_NAMES = ("__pycache__", ".git", "node_modules", ".ruff_cache", ".venv")


def _validate_path(ctx: ToolExecutionContext, relative_path: str) -> Path:
    """Resolve and validate that a path stays within the working directory."""
    root = Path(ctx.cwd).resolve()
    full_path = (root / relative_path).resolve()
    if full_path != root and root not in full_path.parents:
        raise PermissionError(f"Access denied: {relative_path} escapes the working directory")
    return full_path


async def file_read(arguments: dict, ctx: ToolExecutionContext) -> ToolResult:
    path = arguments["path"]
    file_path = _validate_path(ctx, path)
    if not file_path.is_file():
        raise FileNotFoundError(f"File not found: {path}")
    try:
        content = file_path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        raise ValueError(f"Binary file cannot be read: {path}")

    total = len(content)
    truncated = total > MAX_FILE_READ_CHARS
    if truncated:
        content = content[:MAX_FILE_READ_CHARS] + READ_FILE_TRUNCATION_MSG.format(total)
    return ToolResult(
        schema=FILE_READ_SCHEMA,
        content=content,
        data={"path": path, "chars": total, "truncated": truncated},
    )


async def file_write(arguments: dict, ctx: ToolExecutionContext) -> ToolResult:
    path = arguments["path"]
    content = arguments["content"]
    file_path = _validate_path(ctx, path)

    size = len(content.encode("utf-8"))
    if size > MAX_FILE_WRITE_BYTES:
        raise ValueError(f"File content exceeds {MAX_FILE_WRITE_BYTES} byte limit")

    approved = await ctx.confirm(f"Write {size} bytes to {path}?")
    if not approved:
        return ToolResult(
            schema=FILE_WRITE_SCHEMA,
            content=f"Write to {path} was declined.",
            data={"path": path, "bytes": 0, "written": False},
        )

    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(content, encoding="utf-8")
    return ToolResult(
        schema=FILE_WRITE_SCHEMA,
        content=f"Successfully wrote {len(content)} chars to {path}",
        data={"path": path, "bytes": size, "written": True},
    )


async def file_edit(arguments: dict, ctx: ToolExecutionContext) -> ToolResult:
    """Replace the first occurrence of old_text with new_text."""
    path = arguments["path"]
    old_text = arguments["old_text"]
    new_text = arguments["new_text"]
    file_path = _validate_path(ctx, path)
    if not file_path.is_file():
        raise FileNotFoundError(f"File not found: {path}")

    content = file_path.read_text(encoding="utf-8")
    count = content.count(old_text)
    if count == 0:
        raise ValueError(f"old_text not found in {path}. The file may have changed.")

    file_path.write_text(content.replace(old_text, new_text, 1), encoding="utf-8")
    return ToolResult(
        schema=FILE_EDIT_SCHEMA,
        content=f"Replaced text in {path} ({count} occurrence(s) found, replaced first)",
        data={"path": path, "occurrences": count},
    )


async def list_directory(arguments: dict, ctx: ToolExecutionContext) -> ToolResult:
    path = arguments.get("path", ".")
    target = _validate_path(ctx, path)
    if not target.is_dir():
        raise NotADirectoryError(f"Not a directory: {path}")

    lines: list[str] = []
    _build_tree(target, lines, prefix="", max_depth=LIST_DIRECTORY_MAX_DEPTH, current_depth=0)
    return ToolResult(
        schema=LIST_DIRECTORY_SCHEMA,
        content="\n".join(lines) if lines else "(empty directory)",
        data={"path": path, "entries": len(lines)},
    )


def _build_tree(
    current: Path,
    lines: list[str],
    prefix: str,
    max_depth: int,
    current_depth: int,
) -> None:
    if current_depth > max_depth:
        lines.append(f"{prefix}... (depth limit)")
        return

    try:
        entries = sorted(current.iterdir(), key=lambda e: (not e.is_dir(), e.name))
    except PermissionError:
        return
    entries = [e for e in entries if e.name not in IGNORED_NAMES]

    for i, entry in enumerate(entries):
        is_last = i == len(entries) - 1
        connector = "└── " if is_last else "├── "
        if entry.is_dir():
            lines.append(f"{prefix}{connector}{entry.name}/")
            extension = "    " if is_last else "│   "
            _build_tree(entry, lines, prefix + extension, max_depth, current_depth + 1)
        else:
            lines.append(f"{prefix}{connector}{entry.name} ({entry.stat().st_size}B)")


def _result_schema(schema_id: str, properties: dict, required: list[str]) -> dict:
    return {
        "$id": schema_id,
        "type": "object",
        "properties": properties,
        "required": required,
    }


FILE_TOOLS = [
    ToolDefinition(
        name="file_read",
        description="Read a text file. Path is relative to the working directory.",
        json_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path to the file"},
            },
            "required": ["path"],
            "additionalProperties": False,
        },
        handler=file_read,
        output_schema=_result_schema(
            FILE_READ_SCHEMA,
            {
                "path": {"type": "string"},
                "chars": {"type": "integer"},
                "truncated": {"type": "boolean"},
            },
            ["path", "chars", "truncated"],
        ),
    ),
    ToolDefinition(
        name="file_write",
        description="Write or create a file. The user is asked to confirm every write.",
        json_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path to the file"},
                "content": {"type": "string", "description": "Complete file content"},
            },
            "required": ["path", "content"],
            "additionalProperties": False,
        },
        handler=file_write,
        output_schema=_result_schema(
            FILE_WRITE_SCHEMA,
            {
                "path": {"type": "string"},
                "bytes": {"type": "integer"},
                "written": {"type": "boolean"},
            },
            ["path", "bytes", "written"],
        ),
    ),
    ToolDefinition(
        name="file_edit",
        description=(
            "Replace a specific text substring in a file. Use this for surgical "
            "edits instead of rewriting the entire file."
        ),
        json_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path to the file"},
                "old_text": {"type": "string", "description": "The exact text to find"},
                "new_text": {"type": "string", "description": "The replacement text"},
            },
            "required": ["path", "old_text", "new_text"],
            "additionalProperties": False,
        },
        handler=file_edit,
        output_schema=_result_schema(
            FILE_EDIT_SCHEMA,
            {"path": {"type": "string"}, "occurrences": {"type": "integer"}},
            ["path", "occurrences"],
        ),
    ),
    ToolDefinition(
        name="list_directory",
        description="List a directory as a tree. Shows files with sizes.",
        json_schema={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Relative path to the directory (default: '.')",
                    "default": ".",
                },
            },
            "required": [],
            "additionalProperties": False,
        },
        handler=list_directory,
        output_schema=_result_schema(
            LIST_DIRECTORY_SCHEMA,
            {"path": {"type": "string"}, "entries": {"type": "integer"}},
            ["path", "entries"],
        ),
    ),
]
