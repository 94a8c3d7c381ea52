"""Error taxonomy for the agent runtime.

Only store failures and programming defects are expected to escape the
``Agent`` methods. Provider and tool failures are turned into visible thread
events or an explicit error on the turn result.
"""

from __future__ import annotations


class AgentRuntimeError(Exception):
    """Base class for every error raised by this package."""


class NotFoundError(AgentRuntimeError):
    """An unknown thread, tool, or pending approval was referenced."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")


class AlreadyExistsError(AgentRuntimeError):
    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' already exists")


class ValidationError(AgentRuntimeError):
    """Bad tool input. Converted into an error tool result, never raised to callers."""


class ProviderError(AgentRuntimeError):
    """Network, auth or rate-limit failure talking to the model provider.

    ``attempts`` counts the requests made before giving up.
    """

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = False,
        status_code: int | None = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code
        self.attempts = attempts


class ToolExecutionError(AgentRuntimeError):
    """Raised by tool handlers to report a failure with a clean message."""


class CancellationError(AgentRuntimeError):
    """The current turn was aborted. Swallowed inside the agent."""
