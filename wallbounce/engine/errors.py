"""Exception hierarchy for the consultation engine.

Specific exceptions for each failure mode. Parse degradation is not
an exception: it lowers result quality (see ParseDegradation) and the
call still succeeds.
"""
from __future__ import annotations


class WallBounceError(Exception):
    """Base exception for all engine errors."""


class ConfigError(WallBounceError):
    """Configuration value is missing or malformed."""


class SpawnError(WallBounceError):
    """The external command could not be started."""
    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to spawn '{command}': {reason}")


class InvocationTimeoutError(WallBounceError):
    """The supervised process was killed by a timer."""
    phase = "timeout"

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{self.phase.capitalize()} timeout after {timeout_seconds}s"
        )


class InitialResponseTimeout(InvocationTimeoutError):
    """No substantial output before the time-to-first-byte deadline."""
    phase = "initial response"


class InactivityTimeout(InvocationTimeoutError):
    """Output stopped for longer than the inactivity gap."""
    phase = "inactivity"


class ProcessExitError(WallBounceError):
    """The process exited with a nonzero status."""
    def __init__(self, exit_code: int, stderr_preview: str = ""):
        self.exit_code = exit_code
        self.stderr_preview = stderr_preview
        message = f"Process exited with code {exit_code}"
        if stderr_preview:
            message += f": {stderr_preview}"
        super().__init__(message)


class UnknownToolError(WallBounceError):
    """Requested tool is not in the registry."""
    def __init__(self, tool_id: str):
        self.tool_id = tool_id
        super().__init__(f"Tool configuration not found: {tool_id}")
