from __future__ import annotations


class GitStateError(Exception):
    """Base exception class for all gitstate errors.

    Callers that orchestrate sync work can catch this at their boundary
    and decide whether to retry, alert or abort, while letting system
    exceptions (and ``asyncio.CancelledError``) propagate naturally.

    Attributes:
        message: Human-readable error message describing what went wrong.

    Example:
        ```python
        try:
            await checkout.commit_and_push(CommitAction(message="Release"))
        except GitStateError as e:
            log.error("sync_failed", error=e.message)
        ```
    """

    def __init__(self, message: str) -> None:
        """Initialize the GitStateError.

        Args:
            message: Human-readable error message.
        """
        self.message = message
        super().__init__(message)
