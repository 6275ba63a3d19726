"""Note payload exceptions.

Raised when a note stored under a notes ref cannot be turned back into
a value, or a value cannot be turned into a note.
"""

from __future__ import annotations

from gitstate.exceptions.base import GitStateError


class NoteError(GitStateError):
    """Base exception for note encoding and decoding.

    Attributes:
        revision: The commit the note belongs to, when known.
        notes_ref: The notes ref that was read or written.
    """

    def __init__(
        self,
        message: str,
        *,
        revision: str | None = None,
        notes_ref: str | None = None,
    ) -> None:
        self.revision = revision
        self.notes_ref = notes_ref
        super().__init__(message)


class DecodeError(NoteError):
    """A stored note is malformed for the requested payload type."""


class EncodeError(NoteError):
    """A value cannot be serialized into a note."""
