"""Failure taxonomy for external command invocation and output parsing."""

from __future__ import annotations


class CommandError(Exception):
    """Base class for failures fetching data from an external command."""

    def __init__(self, command: str, message: str) -> None:
        self.command = command
        super().__init__(f"{command}: {message}")


class CommandTimeout(CommandError):
    """Raised when a command exceeds its wall-clock budget and is killed."""

    def __init__(self, command: str, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(command, f"timed out after {timeout_seconds:.1f}s")


class ProcessFailed(CommandError):
    """Raised when a command exits non-zero without usable output."""

    def __init__(self, command: str, returncode: int, stderr: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no stderr"
        super().__init__(command, f"exited with code {returncode} ({detail[:200]})")


class MalformedOutput(CommandError):
    """Raised when stdout holds no parseable payload."""


class ParseFailed(CommandError):
    """Raised when a payload parses but does not have the expected shape."""
