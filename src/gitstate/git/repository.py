"""Local mirror of a remote repository.

:class:`Repository` keeps a ``git clone --mirror`` of the remote as a
fast local cache. Working checkouts are cloned from the mirror, history
queries run against it, and :meth:`Repository.refresh` brings it up to
date. All mutation of the mirror (initial clone, fetch, seeding
checkouts) happens under one lock per repository.

Example:
    ```python
    async with Repository("ssh://git@example.com/cluster.git") as repo:
        await repo.ready()
        async with await repo.clone(config) as checkout:
            (checkout.manifest_dirs()[0] / "app.yaml").write_text(manifest)
            await checkout.commit_and_push(CommitAction(message="Release app"))
        await repo.refresh()
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import shutil
import tempfile
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from gitstate.config import CheckoutConfig, GitStateSettings
from gitstate.exceptions import (
    CloneError,
    FetchError,
    GitError,
    GitStateError,
    HistoryError,
    NotReadyError,
)
from gitstate.git.checkout import REMOTE, Checkout
from gitstate.git.client import GitClient
from gitstate.git.models import Commit, RepoStatus
from gitstate.git.notes import NoteStore
from gitstate.logging import get_logger

__all__ = ["Repository"]

logger = get_logger(__name__)


class Repository:
    """Mirror clone of one remote, shared by every checkout cloned from it.

    Args:
        url: Remote URL (or local path) of the upstream repository.
        settings: Timeouts, retry budgets and cache location.
        client: Optional git client; created from ``settings`` if omitted.
    """

    def __init__(
        self,
        url: str,
        settings: GitStateSettings | None = None,
        client: GitClient | None = None,
    ) -> None:
        self._url = url
        self._settings = settings or GitStateSettings()
        self._client = client or GitClient(
            timeout=self._settings.timeout,
            network_timeout=self._settings.clone_timeout,
            network_retries=self._settings.network_retries,
        )
        self._dir: Path | None = None
        self._status = RepoStatus.NEW
        self._error: GitStateError | None = None
        self._last_refreshed: datetime | None = None
        self._lock = asyncio.Lock()
        self._ready = asyncio.Event()
        self._notify = asyncio.Event()
        self._log = logger.bind(repo_url=url)

    def __repr__(self) -> str:
        return f"Repository(url={self._url!r}, status={self._status.value!r})"

    async def __aenter__(self) -> Repository:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.clean()

    # =====================================================================
    # Properties
    # =====================================================================

    @property
    def url(self) -> str:
        """Upstream URL the mirror tracks."""
        return self._url

    @property
    def dir(self) -> Path | None:
        """Mirror directory, or None before the initial clone."""
        return self._dir

    @property
    def last_refreshed(self) -> datetime | None:
        """When the last successful fetch finished."""
        return self._last_refreshed

    @property
    def readonly(self) -> bool:
        """Whether checkouts refuse to push."""
        return self._settings.readonly

    def status(self) -> tuple[RepoStatus, GitStateError | None]:
        """Lifecycle state and the most recent background failure."""
        return self._status, self._error

    # =====================================================================
    # Lifecycle
    # =====================================================================

    async def ready(self, timeout: float | None = None) -> None:
        """Wait until the mirror is cloned and has been fetched once.

        Performs the initial clone and fetch itself when nothing else
        has yet. Concurrent callers share a single initialisation.

        Args:
            timeout: Give up after this many seconds.

        Raises:
            NotReadyError: If initialisation failed or timed out.
        """
        if self._ready.is_set():
            return
        try:
            async with asyncio.timeout(timeout):
                await self._initialise()
        except TimeoutError as e:
            raise NotReadyError(
                f"repository {self._url} not ready after {timeout}s"
            ) from e
        except GitStateError as e:
            self._error = e
            raise NotReadyError(f"repository {self._url} not ready: {e}") from e

    async def refresh(self, timeout: float | None = None) -> None:
        """Fetch branches, tags and notes from the remote into the mirror.

        Raises:
            NotReadyError: If the mirror has not been cloned yet.
            FetchError: If the fetch fails.
            TimeoutError: If ``timeout`` seconds pass first.
        """
        async with asyncio.timeout(timeout), self._lock:
            if self._dir is None:
                raise NotReadyError(f"repository {self._url} has not been cloned")
            await self._fetch()

    def notify(self) -> None:
        """Ask a running :meth:`start` loop to refresh now."""
        self._notify.set()

    async def start(self, shutdown: asyncio.Event) -> None:
        """Keep the mirror fresh until ``shutdown`` is set.

        Refreshes every ``poll_interval`` seconds, or as soon as
        :meth:`notify` is called. Failures are recorded in :meth:`status`
        and logged; the loop keeps going.
        """
        self._log.info("sync_loop_started", poll_interval=self._settings.poll_interval)
        while not shutdown.is_set():
            try:
                if self._ready.is_set():
                    await self.refresh()
                else:
                    await self.ready()
                self._error = None
            except GitStateError as e:
                self._error = e
                self._log.warning("sync_loop_refresh_failed", error=e.message)

            await self._wait_for_wakeup(shutdown)
        self._log.info("sync_loop_stopped")

    def clean(self) -> None:
        """Remove the mirror directory. Safe to call more than once."""
        if self._dir is not None:
            shutil.rmtree(self._dir, ignore_errors=True)
            self._log.debug("mirror_removed", path=str(self._dir))
        self._dir = None
        self._status = RepoStatus.NEW
        self._ready.clear()

    # =====================================================================
    # Checkouts
    # =====================================================================

    async def clone(self, config: CheckoutConfig, timeout: float | None = None) -> Checkout:
        """Create an independent working checkout of ``config.branch``.

        The checkout is seeded from the mirror as it stands now (including
        ``config.notes_ref``), then pointed at the upstream URL so pushes go
        straight to the remote. Waits for :meth:`ready` first.

        Raises:
            NotReadyError: If the mirror cannot be initialised.
            CloneError: If the checkout cannot be created. No directory is
                left behind.
            TimeoutError: If ``timeout`` seconds pass first. No directory
                is left behind.
        """
        async with asyncio.timeout(timeout):
            return await self._clone_checkout(config)

    async def _clone_checkout(self, config: CheckoutConfig) -> Checkout:
        await self.ready()
        parent = self._settings.cache_root
        if parent is not None:
            parent.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix="gitstate-checkout-", dir=parent))
        client = self._client.at(path)
        notes_ref = config.full_notes_ref

        try:
            async with self._lock:
                mirror = str(self._mirror_dir())
                await client.run(
                    "clone",
                    "--branch",
                    config.branch,
                    mirror,
                    str(path),
                    error_cls=CloneError,
                    error_msg=f"cloning branch {config.branch} failed",
                    cwd=path.parent,
                    network=True,
                )
                await self._seed_notes(client, mirror, notes_ref)
            await client.run("remote", "set-url", REMOTE, self._url, error_cls=CloneError)
            await client.run("config", "user.name", config.user_name, error_cls=CloneError)
            await client.run("config", "user.email", config.user_email, error_cls=CloneError)
        except (GitStateError, asyncio.CancelledError):
            shutil.rmtree(path, ignore_errors=True)
            raise

        self._log.info("checkout_cloned", branch=config.branch, path=str(path))
        return Checkout(
            path,
            config,
            client,
            push_retries=self._settings.push_retries,
            readonly=self._settings.readonly,
        )

    # =====================================================================
    # History
    # =====================================================================

    async def revision(self, ref: str) -> str:
        """Resolve ``ref`` against the mirror.

        Raises:
            ResolveError: If ``ref`` does not name a commit.
        """
        return await self._mirror_client().rev_parse(ref)

    async def branch_head(self, branch: str) -> str:
        """Tip of ``branch`` in the mirror."""
        return await self.revision(f"refs/heads/{branch}")

    async def commits_before(
        self, revision: str, paths: Sequence[str] = (), timeout: float | None = None
    ) -> list[Commit]:
        """Commits reachable from ``revision``, most recent first.

        Returns an empty list when the repository has no commits.

        Raises:
            HistoryError: If the log cannot be read.
            TimeoutError: If ``timeout`` seconds pass first.
        """
        client = self._mirror_client()
        async with asyncio.timeout(timeout):
            if not await client.has_branches():
                return []
            return await client.log(revision, paths, error_cls=HistoryError)

    async def commits_between(
        self, ref1: str, ref2: str, paths: Sequence[str] = ()
    ) -> list[Commit]:
        """Commits reachable from ``ref2`` but not ``ref1``, most recent first."""
        return await self._mirror_client().log(
            f"{ref1}..{ref2}", paths, error_cls=HistoryError
        )

    async def note_rev_list(self, notes_ref: str) -> set[str]:
        """Revisions carrying a note under ``notes_ref`` in the mirror."""
        return await NoteStore(self._mirror_client(), notes_ref).revisions()

    # =====================================================================
    # Internal helpers
    # =====================================================================

    def _mirror_dir(self) -> Path:
        if self._dir is None or not self._ready.is_set():
            raise NotReadyError(f"repository {self._url} is not ready")
        return self._dir

    def _mirror_client(self) -> GitClient:
        return self._client.at(self._mirror_dir())

    async def _initialise(self) -> None:
        async with self._lock:
            if self._ready.is_set():
                return
            if self._dir is None:
                await self._clone_mirror()
            await self._fetch()
            self._ready.set()
            self._log.info("repo_ready")

    async def _clone_mirror(self) -> None:
        parent = self._settings.cache_root
        if parent is not None:
            parent.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix="gitstate-mirror-", dir=parent))
        try:
            await self._client.run(
                "clone",
                "--mirror",
                self._url,
                str(path),
                error_cls=CloneError,
                error_msg=f"mirroring {self._url} failed",
                cwd=path.parent,
                network=True,
            )
        except (GitStateError, asyncio.CancelledError):
            shutil.rmtree(path, ignore_errors=True)
            raise
        self._dir = path
        self._status = RepoStatus.CLONED
        self._log.info("mirror_cloned", path=str(path))

    async def _fetch(self) -> None:
        """Fetch into the mirror. Caller holds the lock."""
        assert self._dir is not None
        started = datetime.now(tz=UTC)
        await self._client.run(
            "fetch",
            "--prune",
            "--tags",
            REMOTE,
            "+refs/*:refs/*",
            error_cls=FetchError,
            error_msg=f"fetching {self._url} failed",
            cwd=self._dir,
            network=True,
        )
        self._last_refreshed = datetime.now(tz=UTC)
        self._status = RepoStatus.READY
        self._log.debug(
            "repo_refreshed",
            duration_ms=int((self._last_refreshed - started).total_seconds() * 1000),
        )

    async def _seed_notes(self, client: GitClient, mirror: str, notes_ref: str) -> None:
        try:
            await client.run(
                "fetch",
                mirror,
                f"+{notes_ref}:{notes_ref}",
                error_cls=CloneError,
                error_msg=f"copying {notes_ref} failed",
            )
        except GitError as e:
            if "couldn't find remote ref" not in e.stderr.lower():
                raise

    async def _wait_for_wakeup(self, shutdown: asyncio.Event) -> None:
        waiters = {
            asyncio.create_task(shutdown.wait()),
            asyncio.create_task(self._notify.wait()),
        }
        try:
            await asyncio.wait(
                waiters,
                timeout=self._settings.poll_interval,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in waiters:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            self._notify.clear()
