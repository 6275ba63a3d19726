"""Git-backed state: a mirrored repository and the checkouts cloned from it.

Usage:
    ```python
    from gitstate.git import CommitAction, Repository

    repo = Repository("ssh://git@example.com/cluster.git")
    await repo.ready()
    checkout = await repo.clone(config)
    try:
        ...  # edit files under checkout.manifest_dirs()
        await checkout.commit_and_push(CommitAction(message="Update"), note)
    finally:
        checkout.clean()
    ```
"""

from __future__ import annotations

from gitstate.git.checkout import Checkout
from gitstate.git.client import GitClient
from gitstate.git.commit import CommitBuilder, fingerprints_match
from gitstate.git.models import Commit, CommitAction, RepoStatus
from gitstate.git.notes import NoteStore
from gitstate.git.repository import Repository

__all__ = [
    "Checkout",
    "Commit",
    "CommitAction",
    "CommitBuilder",
    "GitClient",
    "NoteStore",
    "RepoStatus",
    "Repository",
    "fingerprints_match",
]
