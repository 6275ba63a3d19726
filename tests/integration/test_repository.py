"""End-to-end tests against real git repositories.

Each test builds a bare upstream with GitPython, mirrors it through a
:class:`Repository` and drives working checkouts against it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest
from git import Repo

from gitstate.config import CheckoutConfig, GitStateSettings
from gitstate.exceptions import NothingToCommitError, NotReadyError, PushError
from gitstate.git import CommitAction, Repository, fingerprints_match
from gitstate.git.models import RepoStatus
from tests.fixtures.repos import BRANCH, FILES, MANIFEST_DIR

pytestmark = [pytest.mark.integration]

NOTE = {"image": "registry.example.com/helloworld:2.0", "replicas": 2}


def _write_manifest(checkout_dir: Path, name: str, content: str) -> None:
    (checkout_dir / MANIFEST_DIR / name).write_text(content)


def _upstream_head(upstream: Path) -> str:
    return Repo(upstream).commit(BRANCH).hexsha


@pytest.mark.asyncio
async def test_ready_exposes_history(upstream: Path, settings: GitStateSettings) -> None:
    async with Repository(str(upstream), settings) as repo:
        await repo.ready()

        assert repo.status() == (RepoStatus.READY, None)
        commits = await repo.commits_before("HEAD")
        assert [c.message for c in commits] == ["Initial revision"]
        assert commits[0].revision == _upstream_head(upstream)
        assert await repo.branch_head(BRANCH) == commits[0].revision
        assert commits[0].signed is False


@pytest.mark.asyncio
async def test_clone_contains_manifests(
    upstream: Path, settings: GitStateSettings, checkout_config: CheckoutConfig
) -> None:
    async with Repository(str(upstream), settings) as repo:
        async with await repo.clone(checkout_config) as checkout:
            (manifests,) = checkout.manifest_dirs()

            assert sorted(p.name for p in manifests.iterdir()) == sorted(FILES)
            assert await checkout.head_revision() == _upstream_head(upstream)

        assert not checkout.dir.exists()


@pytest.mark.asyncio
async def test_commit_appends_skip_marker_once(
    upstream: Path, settings: GitStateSettings, checkout_config: CheckoutConfig
) -> None:
    config = checkout_config.model_copy(update={"skip_message": "\n\n[ci skip]"})
    async with Repository(str(upstream), settings) as repo:
        async with await repo.clone(config) as checkout:
            before = await checkout.head_revision()
            _write_manifest(checkout.dir, "helloworld-deploy.yaml", "kind: Deployment\n")

            revision = await checkout.commit_and_push(
                CommitAction(message="Release helloworld")
            )

            assert revision != before
            assert await checkout.head_revision() == revision
            assert await checkout.changed_files(before) == [
                checkout.dir / MANIFEST_DIR / "helloworld-deploy.yaml"
            ]

        await repo.refresh()
        commits = await repo.commits_before(BRANCH)

    assert commits[0].revision == revision
    assert commits[0].message == "Release helloworld\n\n[ci skip]"
    assert commits[0].author == "example <example@example.com>"
    assert _upstream_head(upstream) == revision


@pytest.mark.asyncio
async def test_author_override(
    upstream: Path, settings: GitStateSettings, checkout_config: CheckoutConfig
) -> None:
    async with Repository(str(upstream), settings) as repo:
        async with await repo.clone(checkout_config) as checkout:
            _write_manifest(checkout.dir, "new.yaml", "kind: ConfigMap\n")
            await checkout.commit_and_push(
                CommitAction(message="Add config", author="Release Bot <bot@example.com>")
            )
        await repo.refresh()
        commits = await repo.commits_before(BRANCH, [MANIFEST_DIR])

    assert commits[0].author == "Release Bot <bot@example.com>"


@pytest.mark.asyncio
async def test_signed_commit(
    upstream: Path,
    settings: GitStateSettings,
    checkout_config: CheckoutConfig,
    gpg_key: tuple[Path, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    gpg_home, fingerprint = gpg_key
    async with Repository(str(upstream), settings) as repo:
        async with await repo.clone(checkout_config) as checkout:
            _write_manifest(checkout.dir, "helloworld-svc.yaml", "kind: Service\n")
            revision = await checkout.commit_and_push(
                CommitAction(
                    message="Signed release", signing_key=fingerprint, gpg_home=gpg_home
                )
            )

        await repo.refresh()
        # the mirror verifies signatures with the default key store
        monkeypatch.setenv("GNUPGHOME", str(gpg_home))
        commits = await repo.commits_before(BRANCH)

    assert commits[0].revision == revision
    assert commits[0].signed is True
    assert fingerprints_match(fingerprint, commits[0].signing_key)


@pytest.mark.asyncio
async def test_convergence_with_notes(
    upstream: Path, settings: GitStateSettings, checkout_config: CheckoutConfig
) -> None:
    async with Repository(str(upstream), settings) as repo:
        async with await repo.clone(checkout_config) as first:
            _write_manifest(first.dir, "helloworld-deploy.yaml", "kind: Deployment\nspec: {}\n")
            revision = await first.commit_and_push(
                CommitAction(message="Release helloworld"), note=NOTE
            )
            assert await first.get_note(revision) == NOTE

        await repo.refresh()
        assert revision in await repo.note_rev_list(checkout_config.notes_ref)
        assert await repo.revision(checkout_config.sync_tag) == revision

        async with await repo.clone(checkout_config) as second:
            assert await second.head_revision() == revision
            content = (second.dir / MANIFEST_DIR / "helloworld-deploy.yaml").read_text()
            assert content == "kind: Deployment\nspec: {}\n"
            assert await second.get_note(revision) == NOTE
            assert await second.note_rev_list() == {revision}


@pytest.mark.asyncio
async def test_note_round_trip_and_absence(
    upstream: Path, settings: GitStateSettings, checkout_config: CheckoutConfig
) -> None:
    async with Repository(str(upstream), settings) as repo:
        async with await repo.clone(checkout_config) as checkout:
            head = await checkout.head_revision()

            assert await checkout.get_note(head) is None

            await checkout.set_note(head, {"result": "ok", "warnings": []})
            assert await checkout.get_note(head) == {"result": "ok", "warnings": []}

            await checkout.set_note(head, ["replaced"])
            assert await checkout.get_note(head) == ["replaced"]


@pytest.mark.asyncio
async def test_push_retries_after_concurrent_push(
    upstream: Path,
    settings: GitStateSettings,
    checkout_config: CheckoutConfig,
    push_from_elsewhere: Callable[[Path, str, str], str],
) -> None:
    async with Repository(str(upstream), settings) as repo:
        async with await repo.clone(checkout_config) as checkout:
            _write_manifest(checkout.dir, "helloworld-deploy.yaml", "kind: Deployment\nv: 2\n")
            other = push_from_elsewhere(upstream, "locked-service-deploy.yaml", "kind: Locked\n")

            revision = await checkout.commit_and_push(
                CommitAction(message="Release helloworld"), note=NOTE
            )

            assert (checkout.dir / MANIFEST_DIR / "locked-service-deploy.yaml").read_text() == (
                "kind: Locked\n"
            )

        await repo.refresh()
        commits = await repo.commits_before(BRANCH)
        assert [c.revision for c in commits[:2]] == [revision, other]

        async with await repo.clone(checkout_config) as fresh:
            assert await fresh.get_note(revision) == NOTE
            assert await fresh.get_note(other) is None


@pytest.mark.asyncio
async def test_note_on_existing_commit_published_by_next_push(
    upstream: Path, settings: GitStateSettings, checkout_config: CheckoutConfig
) -> None:
    async with Repository(str(upstream), settings) as repo:
        async with await repo.clone(checkout_config) as checkout:
            head = await checkout.head_revision()
            await checkout.set_note(head, {"verified": True})
            _write_manifest(checkout.dir, "new.yaml", "kind: ConfigMap\n")

            await checkout.commit_and_push(CommitAction(message="Add config"))

        await repo.refresh()
        async with await repo.clone(checkout_config) as fresh:
            assert await fresh.get_note(head) == {"verified": True}


@pytest.mark.asyncio
async def test_retry_keeps_unpublished_notes(
    upstream: Path,
    settings: GitStateSettings,
    checkout_config: CheckoutConfig,
) -> None:
    async with Repository(str(upstream), settings) as repo:
        async with await repo.clone(checkout_config) as first, await repo.clone(
            checkout_config
        ) as second:
            head = await first.head_revision()
            await first.set_note(head, {"verified": True})

            _write_manifest(second.dir, "second.yaml", "kind: Second\n")
            other = await second.commit_and_push(
                CommitAction(message="Second"), note={"by": "second"}
            )

            _write_manifest(first.dir, "first.yaml", "kind: First\n")
            revision = await first.commit_and_push(
                CommitAction(message="First"), note={"by": "first"}
            )

        await repo.refresh()
        async with await repo.clone(checkout_config) as fresh:
            assert await fresh.get_note(head) == {"verified": True}
            assert await fresh.get_note(other) == {"by": "second"}
            assert await fresh.get_note(revision) == {"by": "first"}


@pytest.mark.asyncio
async def test_identical_change_pushed_elsewhere_keeps_own_commit(
    upstream: Path,
    settings: GitStateSettings,
    checkout_config: CheckoutConfig,
    push_from_elsewhere: Callable[[Path, str, str], str],
) -> None:
    async with Repository(str(upstream), settings) as repo:
        async with await repo.clone(checkout_config) as checkout:
            _write_manifest(checkout.dir, "same.yaml", "kind: Same\n")
            other = push_from_elsewhere(upstream, "same.yaml", "kind: Same\n")

            revision = await checkout.commit_and_push(
                CommitAction(message="Release same"), note=NOTE
            )

            assert revision != other
            assert await checkout.get_note(revision) == NOTE

        await repo.refresh()
        commits = await repo.commits_before(BRANCH)
        assert [c.revision for c in commits[:2]] == [revision, other]
        assert commits[0].message == "Release same"

        async with await repo.clone(checkout_config) as fresh:
            assert await fresh.get_note(revision) == NOTE
            assert await fresh.get_note(other) is None


@pytest.mark.asyncio
async def test_concurrent_noted_pushes_both_land(
    upstream: Path, settings: GitStateSettings, checkout_config: CheckoutConfig
) -> None:
    config = checkout_config.model_copy(update={"sync_tag": ""})
    async with Repository(str(upstream), settings) as repo:
        async with await repo.clone(config) as first, await repo.clone(config) as second:
            _write_manifest(first.dir, "first.yaml", "kind: First\n")
            _write_manifest(second.dir, "second.yaml", "kind: Second\n")

            revisions = await asyncio.gather(
                first.commit_and_push(CommitAction(message="First"), note={"by": "first"}),
                second.commit_and_push(CommitAction(message="Second"), note={"by": "second"}),
            )

        await repo.refresh()
        commits = await repo.commits_before(BRANCH)
        assert set(revisions) == {c.revision for c in commits[:2]}

        async with await repo.clone(config) as fresh:
            assert await fresh.get_note(revisions[0]) == {"by": "first"}
            assert await fresh.get_note(revisions[1]) == {"by": "second"}
            assert await fresh.note_rev_list() == set(revisions)


@pytest.mark.asyncio
async def test_nothing_to_commit(
    upstream: Path, settings: GitStateSettings, checkout_config: CheckoutConfig
) -> None:
    before = _upstream_head(upstream)
    async with Repository(str(upstream), settings) as repo:
        async with await repo.clone(checkout_config) as checkout:
            with pytest.raises(NothingToCommitError):
                await checkout.commit_and_push(CommitAction(message="No-op"))

    assert _upstream_head(upstream) == before


@pytest.mark.asyncio
async def test_readonly_never_pushes(
    upstream: Path, settings: GitStateSettings, checkout_config: CheckoutConfig
) -> None:
    before = _upstream_head(upstream)
    readonly = settings.model_copy(update={"readonly": True})
    async with Repository(str(upstream), readonly) as repo:
        async with await repo.clone(checkout_config) as checkout:
            _write_manifest(checkout.dir, "new.yaml", "kind: ConfigMap\n")

            with pytest.raises(PushError):
                await checkout.commit_and_push(CommitAction(message="Blocked"))

    assert _upstream_head(upstream) == before


@pytest.mark.asyncio
async def test_empty_repository_history(
    empty_upstream: Path, settings: GitStateSettings
) -> None:
    async with Repository(str(empty_upstream), settings) as repo:
        await repo.ready()

        assert await repo.commits_before("HEAD") == []


@pytest.mark.asyncio
async def test_cancelled_clone_leaves_no_directory(
    upstream: Path, settings: GitStateSettings, checkout_config: CheckoutConfig
) -> None:
    async with Repository(str(upstream), settings) as repo:
        await repo.ready()

        with pytest.raises(TimeoutError):
            async with asyncio.timeout(0):
                await repo.clone(checkout_config)

        assert settings.cache_root is not None
        assert list(settings.cache_root.glob("gitstate-checkout-*")) == []

        # the repository is still usable afterwards
        async with await repo.clone(checkout_config) as checkout:
            assert checkout.dir.is_dir()


@pytest.mark.asyncio
async def test_ready_timeout(upstream: Path, settings: GitStateSettings) -> None:
    async with Repository(str(upstream), settings) as repo:
        with pytest.raises(NotReadyError):
            await repo.ready(timeout=0)

        assert settings.cache_root is not None
        assert list(settings.cache_root.glob("gitstate-mirror-*")) == []

        await repo.ready()
        assert repo.status()[0] is RepoStatus.READY


@pytest.mark.asyncio
async def test_clean_removes_mirror(upstream: Path, settings: GitStateSettings) -> None:
    repo = Repository(str(upstream), settings)
    await repo.ready()
    mirror = repo.dir
    assert mirror is not None and mirror.is_dir()

    repo.clean()

    assert not mirror.exists()
    with pytest.raises(NotReadyError):
        await repo.refresh()


@pytest.mark.asyncio
async def test_operation_timeouts(
    upstream: Path, settings: GitStateSettings, checkout_config: CheckoutConfig
) -> None:
    before = _upstream_head(upstream)
    async with Repository(str(upstream), settings) as repo:
        await repo.ready()

        with pytest.raises(TimeoutError):
            await repo.refresh(timeout=0)

        async with await repo.clone(checkout_config) as checkout:
            _write_manifest(checkout.dir, "new.yaml", "kind: ConfigMap\n")

            with pytest.raises(TimeoutError):
                await checkout.commit_and_push(CommitAction(message="Late"), timeout=0)

        await repo.refresh()
        assert await repo.branch_head(BRANCH) == before

    assert _upstream_head(upstream) == before
