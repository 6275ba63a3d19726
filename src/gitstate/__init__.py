"""gitstate: a synchronized, Git-backed working-copy manager.

A :class:`~gitstate.git.Repository` mirrors a remote; working
:class:`~gitstate.git.Checkout` objects are cloned from the mirror,
modified, committed (optionally signed and annotated with notes) and
pushed back, retrying when another writer got there first.
"""

from __future__ import annotations

from gitstate.config import CheckoutConfig, GitStateSettings, load_settings
from gitstate.git import (
    Checkout,
    Commit,
    CommitAction,
    RepoStatus,
    Repository,
)

__version__ = "0.1.0"

__all__ = [
    "Checkout",
    "CheckoutConfig",
    "Commit",
    "CommitAction",
    "GitStateSettings",
    "RepoStatus",
    "Repository",
    "load_settings",
]
