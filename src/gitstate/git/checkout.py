"""Exclusively owned working checkouts.

A :class:`Checkout` is a full clone bound to one branch. Its owner writes
files under :meth:`Checkout.manifest_dirs`, then calls
:meth:`Checkout.commit_and_push` to turn those edits into a commit on the
remote. A checkout is not safe for concurrent use; independent tasks
should each clone their own.
"""

from __future__ import annotations

import asyncio
import contextlib
import shutil
from collections.abc import Sequence
from pathlib import Path
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from gitstate.config import CheckoutConfig
from gitstate.exceptions import (
    FetchError,
    GitError,
    NonFastForwardError,
    PushError,
)
from gitstate.git.client import GitClient
from gitstate.git.commit import CommitBuilder, gpg_env
from gitstate.git.models import CommitAction
from gitstate.git.notes import NoteStore, encode_note
from gitstate.logging import get_logger

__all__ = ["Checkout"]

logger = get_logger(__name__)

T = TypeVar("T")

#: Default message for annotated sync tags.
SYNC_TAG_MESSAGE = "Sync pointer"

#: Remote name every checkout pushes to.
REMOTE = "origin"


class Checkout:
    """A working directory cloned from a :class:`~gitstate.git.Repository`.

    Created by :meth:`Repository.clone`; removed by :meth:`clean`, which
    the owner must call on every exit path (or use ``async with``).

    Args:
        path: Checkout root.
        config: Branch, identity, notes ref and sync tag, fixed at clone time.
        client: Git client rooted at ``path``.
        push_retries: Push attempts before a non-fast-forward is surfaced.
        readonly: Refuse every operation that writes to the remote.
    """

    def __init__(
        self,
        path: Path,
        config: CheckoutConfig,
        client: GitClient,
        *,
        push_retries: int = 3,
        readonly: bool = False,
    ) -> None:
        self._dir = path
        self._config = config
        self._client = client
        self._push_retries = push_retries
        self._readonly = readonly
        self._notes = NoteStore(client, config.full_notes_ref)
        self._builder = CommitBuilder(client, config.skip_message)
        self._log = logger.bind(checkout=str(path), branch=config.branch)

    def __repr__(self) -> str:
        return f"Checkout(dir={str(self._dir)!r}, branch={self._config.branch!r})"

    async def __aenter__(self) -> Checkout:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.clean()

    @property
    def dir(self) -> Path:
        """Checkout root directory."""
        return self._dir

    @property
    def config(self) -> CheckoutConfig:
        """Branch, identity and notes settings this checkout was cloned with."""
        return self._config

    # =====================================================================
    # Read side
    # =====================================================================

    def manifest_dirs(self) -> list[Path]:
        """Absolute directories holding managed files, in configured order."""
        if not self._config.paths:
            return [self._dir]
        return [self._dir / p for p in self._config.paths]

    async def head_revision(self, timeout: float | None = None) -> str:
        """Full identifier of the checked-out commit.

        Raises:
            ResolveError: If the branch has no commits.
            TimeoutError: If ``timeout`` seconds pass first.
        """
        async with asyncio.timeout(timeout):
            return await self._client.rev_parse("HEAD")

    async def changed_files(self, ref: str, paths: Sequence[str] = ()) -> list[Path]:
        """Absolute paths of files that differ between ``ref`` and HEAD.

        Limited to ``paths`` when given, otherwise to the manifest dirs.
        """
        output = await self._client.output(
            "diff",
            "--name-only",
            "--no-renames",
            ref,
            "HEAD",
            "--",
            *(list(paths) or self._pathspecs()),
            error_msg=f"diff against {ref} failed",
        )
        return [self._dir / name for name in output.splitlines()]

    async def get_note(
        self, revision: str, model: type[T] | None = None, timeout: float | None = None
    ) -> T | Any | None:
        """Note attached to ``revision`` under this checkout's notes ref.

        Returns:
            The decoded note, or None if the commit has no note.

        Raises:
            DecodeError: If the stored note is malformed for ``model``.
            TimeoutError: If ``timeout`` seconds pass first.
        """
        async with asyncio.timeout(timeout):
            return await self._notes.get(revision, model)

    async def set_note(self, revision: str, note: Any, timeout: float | None = None) -> None:
        """Attach ``note`` to ``revision`` locally.

        The notes ref is pushed by the next :meth:`commit_and_push`, with or
        without a note of its own.
        """
        async with asyncio.timeout(timeout):
            await self._notes.set(revision, note)

    async def note_rev_list(self) -> set[str]:
        """Revisions carrying a note under this checkout's notes ref."""
        return await self._notes.revisions()

    # =====================================================================
    # Write side
    # =====================================================================

    async def commit_and_push(
        self, action: CommitAction, note: Any = None, timeout: float | None = None
    ) -> str:
        """Commit the manifest dirs and push the result to the remote.

        Stages every change under :meth:`manifest_dirs`, commits it (signed
        when ``action.signing_key`` is set), attaches ``note`` and pushes
        branch and notes atomically. The notes ref is pushed whenever it
        exists locally, so notes written with :meth:`set_note` travel too.
        When the remote has moved on, its notes are merged into the local
        ones, the commit is rebased onto the remote branch, the note is
        re-attached to the rebased commit and the push retried, up to
        ``push_retries`` attempts. Afterwards the sync tag, if configured,
        is moved to the pushed commit.

        Args:
            action: Message, author and signing configuration.
            note: Optional metadata for the pushed commit.
            timeout: Give up after this many seconds.

        Returns:
            Identifier of the commit that landed on the remote.

        Raises:
            NothingToCommitError: If nothing under the manifest dirs changed.
            CommitError: If the commit could not be created or signed.
            EncodeError: If ``note`` cannot be serialized.
            PushError: If the push still fails after the retry budget, the
                rebase conflicts, or the repository is read-only.
            TimeoutError: If ``timeout`` seconds pass first.
        """
        if self._readonly:
            raise PushError("cannot push: repository is read-only")
        if note is not None:
            encode_note(note)

        async with asyncio.timeout(timeout):
            staged = await self._builder.stage(self._pathspecs())
            self._log.debug("changes_staged", files=len(staged))

            revision = await self._builder.commit(action)
            if note is not None:
                await self._notes.set(revision, note)

            revision = await self._push_with_retry(action, note)
            self._log.info("commit_pushed", revision=revision[:7])

            if self._config.sync_tag:
                await self.move_sync_tag_and_push(
                    revision,
                    SYNC_TAG_MESSAGE,
                    signing_key=action.signing_key,
                    gpg_home=action.gpg_home,
                )
        return revision

    async def move_sync_tag_and_push(
        self,
        ref: str,
        message: str,
        *,
        signing_key: str = "",
        gpg_home: Path | None = None,
    ) -> None:
        """Force the configured sync tag onto ``ref`` and push it.

        Raises:
            PushError: If the tag cannot be pushed, the repository is
                read-only, or no sync tag is configured.
        """
        tag = self._config.sync_tag
        if not tag:
            raise PushError("no sync tag configured for this checkout")
        if self._readonly:
            raise PushError("cannot move sync tag: repository is read-only")

        args = ["tag", "--force"]
        if signing_key:
            args += [f"--local-user={signing_key}", "--sign"]
        else:
            args += ["--annotate", "--no-sign"]
        args += ["--message", message, tag, ref]
        await self._client.run(
            *args,
            error_cls=PushError,
            error_msg=f"moving tag {tag} failed",
            env=gpg_env(gpg_home),
        )
        await self._client.run(
            "push",
            "--force",
            REMOTE,
            f"refs/tags/{tag}",
            error_cls=PushError,
            error_msg=f"pushing tag {tag} failed",
            network=True,
        )
        self._log.info("sync_tag_moved", tag=tag, ref=ref[:7])

    def clean(self) -> None:
        """Remove the checkout directory. Safe to call more than once."""
        shutil.rmtree(self._dir, ignore_errors=True)
        self._log.debug("checkout_cleaned")

    # =====================================================================
    # Internal helpers
    # =====================================================================

    def _pathspecs(self) -> list[str]:
        return list(self._config.paths) or ["."]

    async def _push_with_retry(self, action: CommitAction, note: Any) -> str:
        """Push, rebasing onto the remote after each non-fast-forward."""
        branch = self._config.branch
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(NonFastForwardError),
                stop=stop_after_attempt(self._push_retries),
                wait=wait_exponential(multiplier=0.2, max=2),
                before_sleep=self._log_push_rejected,
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        await self._rebase_onto_remote(action, note)
                    refspecs = [f"HEAD:refs/heads/{branch}"]
                    if await self._notes.exists():
                        refspecs.append(f"{self._notes.ref}:{self._notes.ref}")
                    await self._client.run(
                        "push",
                        "--atomic",
                        REMOTE,
                        *refspecs,
                        error_cls=PushError,
                        error_msg=f"push to {branch} failed",
                        network=True,
                    )
        except NonFastForwardError as e:
            raise PushError(
                f"push to {branch} rejected after {self._push_retries} attempts",
                command=e.command,
                returncode=e.returncode,
                stderr=e.stderr,
            ) from e

        return await self._client.rev_parse("HEAD")

    def _log_push_rejected(self, retry_state: RetryCallState) -> None:
        self._log.warning(
            "push_rejected_retrying",
            attempt=retry_state.attempt_number,
            max_attempts=self._push_retries,
        )

    async def _rebase_onto_remote(self, action: CommitAction, note: Any) -> None:
        """Replay the local commit on the remote tip and re-attach ``note``."""
        branch = self._config.branch
        tracking = f"refs/remotes/{REMOTE}/{branch}"
        await self._client.run(
            "fetch",
            REMOTE,
            f"+refs/heads/{branch}:{tracking}",
            error_cls=FetchError,
            error_msg=f"fetching {branch} failed",
            network=True,
        )
        await self._merge_remote_notes()

        # an identical patch already upstream must still yield our own commit
        args = ["rebase", "--autostash", "--reapply-cherry-picks", "--empty=keep"]
        if action.signing_key:
            args.append(f"--gpg-sign={action.signing_key}")
        args.append(tracking)
        try:
            await self._client.run(
                *args,
                error_cls=PushError,
                error_msg=f"rebasing onto {REMOTE}/{branch} failed",
                env=gpg_env(action.gpg_home),
            )
        except (GitError, asyncio.CancelledError):
            await asyncio.shield(self._abort_rebase())
            raise

        if note is not None:
            revision = await self._client.rev_parse("HEAD")
            await self._notes.set(revision, note)

    async def _merge_remote_notes(self) -> None:
        """Fold the remote's notes into the local notes ref.

        Notes that exist only locally are kept. Where both sides annotate
        the same commit, the remote's note wins.
        """
        ref = self._notes.ref
        fetched = f"refs/notes/{REMOTE}/{ref.removeprefix('refs/notes/')}"
        try:
            await self._client.run(
                "fetch",
                REMOTE,
                f"+{ref}:{fetched}",
                error_cls=FetchError,
                error_msg=f"fetching {ref} failed",
                network=True,
            )
        except FetchError as e:
            if "couldn't find remote ref" not in e.stderr.lower():
                raise
            return

        if await self._notes.exists():
            await self._client.run(
                "notes",
                f"--ref={ref}",
                "merge",
                "--strategy=theirs",
                fetched,
                error_cls=PushError,
                error_msg=f"merging remote {ref} failed",
            )
        else:
            await self._client.run(
                "update-ref", ref, fetched, error_msg=f"creating {ref} failed"
            )
        await self._client.run(
            "update-ref", "-d", fetched, error_msg=f"removing {fetched} failed"
        )

    async def _abort_rebase(self) -> None:
        with contextlib.suppress(GitError):
            await self._client.run("rebase", "--abort")
