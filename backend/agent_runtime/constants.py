"""Constants for the agent runtime.

Single source of truth for the magic numbers used across the thread log,
the tool pipeline, and the provider client.
"""

# ---------------------------------------------------------------------------
# Agent loop limits
# ---------------------------------------------------------------------------
DEFAULT_MAX_TOOL_ROUNDS = 20

# ---------------------------------------------------------------------------
# Output truncation
# ---------------------------------------------------------------------------
TOOL_RESULT_EVENT_MAX_CHARS = 2000
COMMAND_OUTPUT_MAX_CHARS = 5000

# ---------------------------------------------------------------------------
# Resource limits
# ---------------------------------------------------------------------------
MAX_FILE_WRITE_BYTES = 1_000_000  # 1 MB
MAX_FILE_READ_CHARS = 50_000  # ~50 KB
READ_FILE_TRUNCATION_MSG = "\n... (truncated, {} chars total)"

# ---------------------------------------------------------------------------
# Shell execution
# ---------------------------------------------------------------------------
SHELL_COMMAND_TIMEOUT_SECONDS = 30

# ---------------------------------------------------------------------------
# LLM retry
# ---------------------------------------------------------------------------
LLM_MAX_RETRIES = 3
LLM_RETRY_BASE_DELAY_SECONDS = 1.0
LLM_RETRY_MAX_DELAY_SECONDS = 15.0
LLM_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

# ---------------------------------------------------------------------------
# Compaction
# ---------------------------------------------------------------------------
ESTIMATED_CHARS_PER_TOKEN = 4
DEFAULT_COMPACTION_RETAIN = 0
COMPACTED_PLACEHOLDER = "[compacted tool output: {bytes} bytes, ~{tokens} tokens]"
COMPACT_COMMAND = "/compact"
