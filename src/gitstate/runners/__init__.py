"""Async subprocess execution.

All git invocations go through :class:`CommandRunner`; see
:mod:`gitstate.git.client` for the git-specific layer on top of it.
"""

from __future__ import annotations

from gitstate.runners.command import CommandRunner, scrub_credentials
from gitstate.runners.models import CommandResult

__all__ = [
    "CommandResult",
    "CommandRunner",
    "scrub_credentials",
]
