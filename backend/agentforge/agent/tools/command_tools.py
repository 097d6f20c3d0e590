import asyncio
import os

from agentforge.agent.constants import SHELL_COMMAND_TIMEOUT_SECONDS, SHELL_OUTPUT_MAX_CHARS
from agentforge.agent.tool_registry import ToolDefinition, ToolExecutionContext, ToolResult

BASH_SCHEMA = "agentforge.tool.bash.result.v1"


async def bash(arguments: dict, ctx: ToolExecutionContext) -> ToolResult:
    """Run a shell command in the working directory after user confirmation."""
    command = arguments["command"]
    timeout = arguments.get("timeout_seconds", SHELL_COMMAND_TIMEOUT_SECONDS)

    approved = await ctx.confirm(f"Run command: {command}")
    if not approved:
        return ToolResult(
            schema=BASH_SCHEMA,
            content="Command was declined.",
            data={"command": command, "exit_code": None, "timed_out": False, "declined": True},
        )

    proc = await asyncio.create_subprocess_shell(
        command,
        cwd=ctx.cwd,
        env={**os.environ, **ctx.env},
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return ToolResult(
            schema=BASH_SCHEMA,
            content=f"Command timed out after {timeout} seconds",
            data={"command": command, "exit_code": None, "timed_out": True, "declined": False},
        )

    output = ""
    if stdout:
        output += stdout.decode(errors="replace")
    if stderr:
        output += "\n[stderr]\n" + stderr.decode(errors="replace")

    if len(output) > SHELL_OUTPUT_MAX_CHARS:
        output = output[:SHELL_OUTPUT_MAX_CHARS] + f"\n... (truncated, {len(output)} chars total)"

    if proc.returncode != 0:
        output = f"[exit code: {proc.returncode}]\n{output}"

    return ToolResult(
        schema=BASH_SCHEMA,
        content=output.strip() or "(no output)",
        data={
            "command": command,
            "exit_code": proc.returncode,
            "timed_out": False,
            "declined": False,
        },
    )


COMMAND_TOOLS = [
    ToolDefinition(
        name="bash",
        description=(
            "Run a shell command in the working directory. The user is asked to "
            f"confirm every command. Default timeout: {SHELL_COMMAND_TIMEOUT_SECONDS} seconds."
        ),
        json_schema={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "The shell command to execute"},
                "timeout_seconds": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Kill the command after this many seconds",
                },
            },
            "required": ["command"],
            "additionalProperties": False,
        },
        handler=bash,
        output_schema={
            "$id": BASH_SCHEMA,
            "type": "object",
            "properties": {
                "command": {"type": "string"},
                "exit_code": {"type": ["integer", "null"]},
                "timed_out": {"type": "boolean"},
                "declined": {"type": "boolean"},
            },
            "required": ["command", "exit_code", "timed_out", "declined"],
        },
    ),
]
