from __future__ import annotations

from collections.abc import Sequence

from gitstate.exceptions.runner import ProcessError


class GitError(ProcessError):
    """Exception for git operation failures.

    Raised when git ran to completion but rejected the operation.

    Attributes:
        message: Human-readable error message.
        operation: Git operation that failed (e.g., "fetch", "push").
    """

    default_operation: str | None = None

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        command: Sequence[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        """Initialize the GitError.

        Args:
            message: Human-readable error message.
            operation: Git operation that failed.
            command: The git argv that was executed.
            returncode: Exit status from git.
            stderr: Captured stderr from git.
        """
        self.operation = operation or self.default_operation
        super().__init__(
            message, command=command, returncode=returncode, stderr=stderr
        )


class NotReadyError(GitError):
    """The repository cache has not completed its initial clone and fetch."""

    default_operation = "ready"


class CloneError(GitError):
    """Cloning the mirror or a working checkout failed."""

    default_operation = "clone"


class FetchError(GitError):
    """Fetching from the remote into a local repository failed."""

    default_operation = "fetch"


class PushError(GitError):
    """The remote refused a push, or the repository is read-only."""

    default_operation = "push"


class NonFastForwardError(PushError):
    """Push was rejected because the remote branch moved on.

    Retried internally by ``Checkout.commit_and_push``; surfaced only
    once the retry budget is spent.
    """


class CommitError(GitError):
    """Creating a commit (or signing it) failed."""

    default_operation = "commit"


class NothingToCommitError(CommitError):
    """The working tree has no changes to commit."""

    def __init__(self, message: str = "Nothing to commit", **kwargs) -> None:
        super().__init__(message, **kwargs)


class ResolveError(GitError):
    """A revision could not be resolved to a commit."""

    default_operation = "rev-parse"


class HistoryError(GitError):
    """Reading commit history failed."""

    default_operation = "log"
