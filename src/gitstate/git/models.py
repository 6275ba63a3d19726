"""Value objects passed into and returned from the git layer.

All models are frozen dataclasses; none of them is ever persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path


class RepoStatus(str, Enum):
    """Lifecycle state of a :class:`~gitstate.git.repository.Repository`.

    Attributes:
        NEW: No mirror exists yet.
        CLONED: The mirror exists but has not been fetched successfully.
        READY: Mirror cloned and refreshed at least once.
    """

    NEW = "new"
    CLONED = "cloned"
    READY = "ready"


@dataclass(frozen=True, slots=True)
class Commit:
    """A single commit as reported by ``git log``.

    Attributes:
        revision: Full 40-character commit identifier.
        message: Full commit message, trailing newline removed.
        author: Author as ``Name <email>``.
        timestamp: Committer timestamp.
        signing_key: Key id of the signature, empty when unsigned.
        signature_status: git's ``%G?`` code (``N`` when unsigned).
    """

    revision: str
    message: str
    author: str
    timestamp: datetime
    signing_key: str = ""
    signature_status: str = "N"

    @property
    def signed(self) -> bool:
        return self.signature_status != "N"


@dataclass(frozen=True, slots=True)
class CommitAction:
    """Configuration for exactly one commit.

    Attributes:
        message: Commit message, before any configured skip marker.
        author: ``Name <email>`` override; empty means the checkout's
            configured identity.
        signing_key: GPG key id or fingerprint to sign with; empty means
            unsigned.
        gpg_home: Key-store directory holding ``signing_key``. Passed to
            git through the child environment only.
    """

    message: str
    author: str = ""
    signing_key: str = ""
    gpg_home: Path | None = None

    def __repr__(self) -> str:
        # never includes gpg_home
        return (
            f"CommitAction(message={self.message!r}, author={self.author!r}, "
            f"signed={bool(self.signing_key)})"
        )
