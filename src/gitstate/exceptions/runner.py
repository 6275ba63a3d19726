from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from gitstate.exceptions.base import GitStateError


class ProcessError(GitStateError):
    """An external command failed.

    Attributes:
        message: Human-readable error message.
        command: The argv that was executed.
        returncode: Exit status, or None if the process never exited normally.
        stderr: Captured diagnostic output (already stripped).
    """

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        """Initialize the ProcessError.

        Args:
            message: Human-readable error message.
            command: The argv that was executed.
            returncode: Exit status of the process.
            stderr: Captured diagnostic output.
        """
        self.command = list(command) if command is not None else None
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class WorkingDirectoryError(ProcessError):
    """Working directory does not exist or is not accessible.

    Attributes:
        message: Human-readable error message.
        path: The path that was not found.
    """

    def __init__(self, message: str, path: Path | str | None = None) -> None:
        self.path = path
        super().__init__(message)


class CommandTimeoutError(ProcessError):
    """Command execution exceeded its timeout and was terminated.

    This is a cancellation-kind failure: the tool never got to accept or
    reject the operation.

    Attributes:
        timeout_seconds: The timeout that was exceeded.
    """

    def __init__(
        self,
        message: str,
        *,
        timeout_seconds: float | None = None,
        command: Sequence[str] | None = None,
        stderr: str = "",
    ) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(message, command=command, stderr=stderr)


class CommandNotFoundError(ProcessError):
    """Executable not found in PATH.

    Attributes:
        executable: The command that was not found.
    """

    def __init__(self, message: str, executable: str | None = None) -> None:
        self.executable = executable
        super().__init__(message, returncode=127)
