"""Stage and create commits in a working checkout."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from gitstate.exceptions import CommitError, GitError
from gitstate.git.client import GitClient
from gitstate.git.models import CommitAction
from gitstate.logging import get_logger

__all__ = ["CommitBuilder", "fingerprints_match", "gpg_env"]

logger = get_logger(__name__)

#: Number of trailing hex digits compared between fingerprints (a long key id).
KEY_ID_LENGTH = 16


def fingerprints_match(expected: str, actual: str) -> bool:
    """Compare two key identifiers by their trailing 16 characters.

    git reports the long key id while callers often hold the full
    fingerprint, so only the common suffix is significant.
    """
    expected = expected.replace(" ", "").upper()
    actual = actual.replace(" ", "").upper()
    if not expected or not actual:
        return False
    n = min(KEY_ID_LENGTH, len(expected), len(actual))
    return expected[-n:] == actual[-n:]


def gpg_env(gpg_home: Path | None) -> dict[str, str] | None:
    """Child-process environment selecting a GPG key store."""
    if gpg_home is None:
        return None
    return {"GNUPGHOME": str(gpg_home)}


class CommitBuilder:
    """Turn a :class:`CommitAction` into a commit in one checkout.

    Args:
        client: Git client rooted at the checkout.
        skip_message: Marker appended verbatim to every message.
    """

    def __init__(self, client: GitClient, skip_message: str = "") -> None:
        self._client = client
        self._skip_message = skip_message

    def render_message(self, message: str) -> str:
        return message + self._skip_message

    async def stage(self, paths: Sequence[Path | str]) -> list[str]:
        """Stage additions, modifications and deletions under ``paths``.

        Returns:
            Repository-relative paths now staged (possibly empty).
        """
        pathspecs = [str(p) for p in paths]
        await self._client.run(
            "add",
            "--all",
            "--",
            *pathspecs,
            error_cls=CommitError,
            error_msg="staging changes failed",
        )
        staged = await self._client.output(
            "diff", "--cached", "--name-only", error_cls=CommitError
        )
        return staged.splitlines()

    async def commit(self, action: CommitAction) -> str:
        """Create a commit from the index.

        Returns:
            The new commit's identifier.

        Raises:
            NothingToCommitError: If the index has no changes.
            CommitError: If git refuses, or the signature does not carry
                ``action.signing_key``.
        """
        args = [
            "commit",
            "--no-verify",
            "--cleanup=verbatim",
            "--message",
            self.render_message(action.message),
        ]
        if action.author:
            args.append(f"--author={action.author}")
        if action.signing_key:
            args.append(f"--gpg-sign={action.signing_key}")
        else:
            args.append("--no-gpg-sign")

        await self._client.run(
            *args,
            error_cls=CommitError,
            error_msg="commit failed",
            env=gpg_env(action.gpg_home),
        )
        revision = await self._client.rev_parse("HEAD")

        if action.signing_key:
            await self._verify_signature(revision, action)

        logger.info(
            "commit_created",
            revision=revision[:7],
            signed=bool(action.signing_key),
        )
        return revision

    async def _verify_signature(self, revision: str, action: CommitAction) -> None:
        key = await self._client.output(
            "log",
            "-1",
            "--format=%GK",
            revision,
            error_cls=CommitError,
            env=gpg_env(action.gpg_home),
        )
        if fingerprints_match(action.signing_key, key):
            return
        await self._undo_commit()
        raise CommitError(
            f"commit {revision[:7]} was signed with {key or 'no key'}, "
            f"expected {action.signing_key[-KEY_ID_LENGTH:]}",
            operation="sign",
        )

    async def _undo_commit(self) -> None:
        """Drop HEAD but keep its changes staged."""
        try:
            await self._client.run("reset", "--soft", "HEAD~1")
        except GitError:
            # root commit: there is no parent to reset to
            await self._client.run("update-ref", "-d", "HEAD")
