"""Async client for the ``git`` CLI.

:class:`GitClient` is the narrow command surface the rest of gitstate
uses. It runs every invocation through
:class:`~gitstate.runners.command.CommandRunner` and converts failures
into the typed exceptions of :mod:`gitstate.exceptions`, so failure
classification lives in exactly one place (:func:`classify_git_error`).
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from gitstate.exceptions import (
    CommandNotFoundError,
    CommandTimeoutError,
    GitError,
    NonFastForwardError,
    NothingToCommitError,
    PushError,
    ResolveError,
)
from gitstate.git.models import Commit
from gitstate.logging import get_logger
from gitstate.runners.command import CommandRunner

if TYPE_CHECKING:
    from collections.abc import Sequence

    from gitstate.runners.models import CommandResult

__all__ = ["GitClient", "classify_git_error", "parse_log"]

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Default timeout for local git operations (seconds).
GIT_TIMEOUT: float = 20.0

#: Timeout for clone / fetch / push (seconds).
GIT_NETWORK_TIMEOUT: float = 120.0

#: Environment applied to every git child process.
GIT_ENV: dict[str, str] = {
    "GIT_TERMINAL_PROMPT": "0",
    "LC_ALL": "C",
}

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"

#: ``git log`` format: revision, key id, signature status, author,
#: committer timestamp and raw body.
LOG_FORMAT = (
    _FIELD_SEP.join(["%H", "%GK", "%G?", "%an <%ae>", "%ct", "%B"]) + _RECORD_SEP
)

_NON_FAST_FORWARD_PATTERNS: tuple[str, ...] = (
    "non-fast-forward",
    "fetch first",
    "updates were rejected",
    "stale info",
    "cannot lock ref",
    "failed to update ref",
)

_NOTHING_TO_COMMIT_PATTERNS: tuple[str, ...] = (
    "nothing to commit",
    "nothing added to commit",
    "no changes added to commit",
)

_UNRESOLVED_PATTERNS: tuple[str, ...] = (
    "unknown revision",
    "bad revision",
    "needed a single revision",
    "not a valid object name",
    "invalid object name",
    "failed to resolve",
    "bad object",
)


def classify_git_error(
    result: CommandResult,
    command: Sequence[str],
    *,
    error_cls: type[GitError],
    error_msg: str,
) -> GitError:
    """Map a failed git invocation onto the exception taxonomy.

    Args:
        result: The failed result.
        command: The argv that produced it.
        error_cls: Exception class used when nothing more specific matches.
        error_msg: Message prefix.

    Returns:
        The exception to raise.
    """
    stderr = result.stderr.strip()
    # git commit reports "nothing to commit" on stdout
    diagnostic = "\n".join(s for s in (stderr, result.stdout.strip()) if s)
    lowered = diagnostic.lower()
    kwargs = {
        "command": command,
        "returncode": result.returncode,
        "stderr": diagnostic,
    }
    message = f"{error_msg}: {diagnostic}" if diagnostic else error_msg

    if issubclass(error_cls, PushError) and any(
        p in lowered for p in _NON_FAST_FORWARD_PATTERNS
    ):
        return NonFastForwardError(message, **kwargs)
    if any(p in lowered for p in _NOTHING_TO_COMMIT_PATTERNS):
        return NothingToCommitError(message, **kwargs)
    if error_cls is GitError and any(p in lowered for p in _UNRESOLVED_PATTERNS):
        return ResolveError(message, **kwargs)
    return error_cls(message, **kwargs)


def parse_log(output: str) -> list[Commit]:
    """Parse ``git log --pretty=format:LOG_FORMAT`` output."""
    commits: list[Commit] = []
    for record in output.split(_RECORD_SEP):
        record = record.lstrip("\n")
        if not record:
            continue
        revision, key, status, author, ctime, body = record.split(_FIELD_SEP, 5)
        commits.append(
            Commit(
                revision=revision,
                message=body.rstrip("\n"),
                author=author,
                timestamp=datetime.fromtimestamp(int(ctime), tz=UTC),
                signing_key=key,
                signature_status=status or "N",
            )
        )
    return commits


class GitClient:
    """Async wrapper around the ``git`` CLI.

    Uses :class:`CommandRunner` for subprocess execution. The runner can
    be injected for testing.

    Args:
        cwd: Default working directory (a checkout or a mirror).
        runner: Optional pre-configured CommandRunner.
        timeout: Default per-invocation timeout in seconds.
        network_timeout: Timeout for clone/fetch/push.
        network_retries: Extra attempts for transient network failures.

    Example:
        ```python
        client = GitClient(cwd=Path("/srv/checkout"))
        head = await client.rev_parse("HEAD")
        ```
    """

    def __init__(
        self,
        cwd: Path | None = None,
        runner: CommandRunner | None = None,
        *,
        timeout: float = GIT_TIMEOUT,
        network_timeout: float = GIT_NETWORK_TIMEOUT,
        network_retries: int = 0,
    ) -> None:
        self._cwd = cwd
        self._timeout = timeout
        self._network_timeout = network_timeout
        self._network_retries = network_retries
        self._runner = runner or CommandRunner(cwd=cwd, timeout=timeout, env=GIT_ENV)

    @property
    def cwd(self) -> Path | None:
        """Working directory for git commands."""
        return self._cwd

    def at(self, cwd: Path) -> GitClient:
        """Return a client sharing this runner and timeouts, rooted at ``cwd``."""
        return GitClient(
            cwd=cwd,
            runner=self._runner,
            timeout=self._timeout,
            network_timeout=self._network_timeout,
            network_retries=self._network_retries,
        )

    # =====================================================================
    # Internal helpers
    # =====================================================================

    async def run(
        self,
        *args: str,
        error_cls: type[GitError] = GitError,
        error_msg: str = "git command failed",
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        network: bool = False,
    ) -> CommandResult:
        """Run ``git <args>`` and return the raw :class:`CommandResult`.

        Args:
            *args: git arguments, without the leading ``git``.
            error_cls: Exception class to raise on failure.
            error_msg: Error message prefix.
            cwd: Override working directory.
            env: Extra environment for this invocation only.
            network: Use the network timeout and retry budget.

        Returns:
            :class:`CommandResult` on success.

        Raises:
            CommandTimeoutError: If git exceeded its timeout.
            CommandNotFoundError: If git is not installed.
            GitError (or subclass): If git rejected the operation.
        """
        command = ["git", *args]
        result = await self._runner.run(
            command,
            cwd=cwd if cwd is not None else self._cwd,
            timeout=self._network_timeout if network else self._timeout,
            env={**GIT_ENV, **(env or {})},
            max_retries=self._network_retries if network else 0,
        )
        if result.timed_out:
            raise CommandTimeoutError(
                f"git {args[0]} timed out",
                timeout_seconds=self._network_timeout if network else self._timeout,
                command=command,
                stderr=result.stderr.strip(),
            )
        if result.returncode == 127 and result.stderr.startswith("Command not found"):
            raise CommandNotFoundError("git CLI not found. Please install git.", "git")
        if not result.success:
            raise classify_git_error(
                result, command, error_cls=error_cls, error_msg=error_msg
            )
        logger.debug("git_completed", subcommand=args[0], duration_ms=result.duration_ms)
        return result

    async def output(self, *args: str, **kwargs) -> str:
        """Run a git command and return stdout with trailing whitespace removed."""
        result = await self.run(*args, **kwargs)
        return result.stdout.rstrip()

    # =====================================================================
    # Revisions and history
    # =====================================================================

    async def rev_parse(self, ref: str) -> str:
        """Resolve ``ref`` to a full commit identifier.

        Raises:
            ResolveError: If ``ref`` does not name a commit.
        """
        return await self.output(
            "rev-parse",
            "--verify",
            "--quiet",
            "--end-of-options",
            f"{ref}^{{commit}}",
            error_cls=ResolveError,
            error_msg=f"cannot resolve revision {ref!r}",
        )

    async def has_branches(self) -> bool:
        return bool(await self.output("for-each-ref", "--count=1", "refs/heads"))

    async def log(
        self,
        revision_range: str,
        paths: Sequence[str] = (),
        *,
        error_cls: type[GitError] = GitError,
        env: dict[str, str] | None = None,
    ) -> list[Commit]:
        """Commits in ``revision_range``, most recent first."""
        result = await self.run(
            "log",
            f"--pretty=format:{LOG_FORMAT}",
            revision_range,
            "--",
            *paths,
            error_cls=error_cls,
            error_msg=f"git log {revision_range} failed",
            env=env,
        )
        return parse_log(result.stdout)
