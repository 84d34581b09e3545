"""Error taxonomy shared across the execution engine."""

from __future__ import annotations


class FleetError(RuntimeError):
    """Base class for Fleet MCP errors."""


class ValidationError(FleetError):
    """Raised when a target, recipient, or path fails validation."""


class NotFoundError(FleetError):
    """Raised when a target, agent, or queue item does not exist."""


class PathTraversalError(ValidationError):
    """Raised when a mailbox destination escapes its directory."""


class PersistenceError(FleetError):
    """Raised (and logged) when a durable write fails."""


class ProcessExecutionError(FleetError):
    """Base class for failures of a spawned Claude CLI process."""


class ToolNotFoundError(ProcessExecutionError):
    """Raised when the Claude CLI executable cannot be located."""


class ExecutionTimeoutError(ProcessExecutionError):
    """Raised when a process exceeds its wall-clock timeout."""

    def __init__(self, timeout_ms: int) -> None:
        minutes = round(timeout_ms / 60000)
        super().__init__(f"Timed out after {minutes} minutes ({timeout_ms} ms).")
        self.timeout_ms = timeout_ms


class BufferOverflowError(ProcessExecutionError):
    """Raised when accumulated assistant output exceeds the buffer limit."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Output exceeded the buffer limit of {limit} characters.")
        self.limit = limit


class ProcessError(ProcessExecutionError):
    """Raised when the process exits non-zero without a result event."""

    def __init__(self, returncode: int | None, stderr: str = "") -> None:
        message = f"Process exited with code {returncode}."
        if stderr:
            message += f" stderr: {stderr}"
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


__all__ = [
    "BufferOverflowError",
    "ExecutionTimeoutError",
    "FleetError",
    "NotFoundError",
    "PathTraversalError",
    "PersistenceError",
    "ProcessError",
    "ProcessExecutionError",
    "ToolNotFoundError",
    "ValidationError",
]
