"""gitstate exception hierarchy.

Exceptions are grouped by concern but all importable from here:
    from gitstate.exceptions import PushError, ResolveError, DecodeError
"""

from __future__ import annotations

# Base exception
from gitstate.exceptions.base import GitStateError

# Configuration exceptions
from gitstate.exceptions.config import ConfigError

# Git-related exceptions
from gitstate.exceptions.git import (
    CloneError,
    CommitError,
    FetchError,
    GitError,
    HistoryError,
    NonFastForwardError,
    NothingToCommitError,
    NotReadyError,
    PushError,
    ResolveError,
)

# Note payload exceptions
from gitstate.exceptions.notes import DecodeError, EncodeError, NoteError

# Runner-related exceptions
from gitstate.exceptions.runner import (
    CommandNotFoundError,
    CommandTimeoutError,
    ProcessError,
    WorkingDirectoryError,
)

__all__ = [
    # Base
    "GitStateError",
    # Config
    "ConfigError",
    # Git
    "CloneError",
    "CommitError",
    "FetchError",
    "GitError",
    "HistoryError",
    "NonFastForwardError",
    "NothingToCommitError",
    "NotReadyError",
    "PushError",
    "ResolveError",
    # Notes
    "DecodeError",
    "EncodeError",
    "NoteError",
    # Runner
    "CommandNotFoundError",
    "CommandTimeoutError",
    "ProcessError",
    "WorkingDirectoryError",
]
