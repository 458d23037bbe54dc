"""Error definitions for githooks."""

from __future__ import annotations

from typing import Sequence


class GitHooksError(RuntimeError):
    """Base class for githooks errors."""


class ConfigError(GitHooksError):
    """Raised when a configuration option cannot be understood."""

    def __init__(self, message: str, *, option: str | None = None, details: str | None = None) -> None:
        super().__init__(message)
        self.option = option
        self.details = details


class GroupCycleError(ConfigError):
    """Raised when a group definition refers back to itself."""


class GitCommandError(GitHooksError):
    """Raised when an external command exits abnormally."""

    def __init__(self, argv: Sequence[str], returncode: int | None, stderr: str = "", stdout: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(f"command {' '.join(self.argv)!r} {self.describe_status()}")

    def describe_status(self) -> str:
        if self.returncode is None:
            return "could not be executed"
        if self.returncode < 0:
            return f"was killed by signal {-self.returncode}"
        return f"exited with code {self.returncode}"


class CommandTimeout(GitCommandError):
    """Raised when an external command exceeds its time bound."""

    def __init__(self, argv: Sequence[str], timeout: float, stdout: str = "", stderr: str = "") -> None:
        self.timeout = timeout
        super().__init__(argv, None, stderr=stderr, stdout=stdout)

    def describe_status(self) -> str:
        return f"timed out after {self.timeout:g} seconds"


class FatalHookError(GitHooksError):
    """Raised when the whole invocation must be rejected at once."""
