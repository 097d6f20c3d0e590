"""Constants for the agent runtime.

Single source of truth for all magic numbers used across the orchestrator,
tools, compactors, and the provider adapters.
"""

# ---------------------------------------------------------------------------
# Provider retry
# ---------------------------------------------------------------------------
LLM_MAX_RETRIES = 3
LLM_RETRY_BASE_DELAY_SECONDS = 1.0
LLM_RETRY_MAX_DELAY_SECONDS = 15.0
LLM_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
HTTP_CONNECT_TIMEOUT_SECONDS = 10.0

# ---------------------------------------------------------------------------
# Provider wire details
# ---------------------------------------------------------------------------
ANTHROPIC_API_VERSION = "2023-06-01"
ANTHROPIC_MAX_TOKENS = 1024
UNKNOWN_TOOL_NAME = "unknown_tool"

# ---------------------------------------------------------------------------
# Tool results
# ---------------------------------------------------------------------------
TOOL_SCHEMA_PREFIX = "agentforge"
SPAWN_TOOL_NAME = "spawn_subagent"
SPAWN_TOOL_RESULT_SCHEMA = "agentforge.tool.spawn_subagent.result.v1"
TOOL_BLOCKED_MESSAGE = "Tool execution blocked by hook."
SPAWN_BLOCKED_MESSAGE = "Subagent delegation blocked by hook."

# ---------------------------------------------------------------------------
# Transcript compaction
# ---------------------------------------------------------------------------
COMPACTION_MAX_MESSAGES = 300
COMPACTION_KEEP_LAST = 50
COMPACTION_TOKEN_BUDGET = 100_000  # conservative limit under typical 128k window
ESTIMATED_CHARS_PER_TOKEN = 4
ESTIMATED_TOKENS_PER_MESSAGE = 4

# ---------------------------------------------------------------------------
# Builtin tool limits
# ---------------------------------------------------------------------------
MAX_FILE_WRITE_BYTES = 1_000_000  # 1 MB
MAX_FILE_READ_CHARS = 50_000  # ~50 KB
READ_FILE_TRUNCATION_MSG = "\n... (truncated, {} chars total)"
SHELL_COMMAND_TIMEOUT_SECONDS = 60
SHELL_OUTPUT_MAX_CHARS = 5_000
LIST_DIRECTORY_MAX_DEPTH = 4
